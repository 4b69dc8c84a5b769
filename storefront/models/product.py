"""
Product model

A product owns its variants (size/color configurations with their own
price, discount and stock) and its reviews. When variants exist, the base
price/original_price/discount mirror the active variant and stock is the
sum of all variant stock. A before_flush listener re-applies that rule on
every write so no code path can persist a diverged product.
"""
from decimal import Decimal

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Text, JSON, Numeric, Float,
    ForeignKey, CheckConstraint, UniqueConstraint, Index, event,
)
from sqlalchemy.ext.orderinglist import ordering_list
from sqlalchemy.orm import relationship, Session

from storefront.core.database import Base
from storefront.core.utils import utcnow

VARIANT_DEFAULTS = {
    "price": Decimal("0"),
    "original_price": Decimal("0"),
    "discount": Decimal("0"),
    "stock": 0,
    "is_active": True,
}


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, index=True)
    description = Column(Text, nullable=False, default="")

    # Denormalized category reference (category tree lives elsewhere)
    category = Column(String, nullable=False, index=True)

    # Pricing
    price = Column(Numeric(12, 2), nullable=False, default=0)
    original_price = Column(Numeric(12, 2), nullable=False, default=0)
    discount = Column(Numeric(5, 2), nullable=False, default=0)  # percent

    # Inventory
    stock = Column(Integer, nullable=False, default=0)

    # Review aggregates, recomputed when a review is recorded
    rating = Column(Float, nullable=False, default=0.0)
    num_reviews = Column(Integer, nullable=False, default=0)

    # Media & metadata
    images = Column(JSON, default=list)  # [{"url", "alt", "color"}]
    tags = Column(JSON, default=list)
    specifications = Column(JSON, default=dict)
    is_featured = Column(Boolean, default=False)
    is_active = Column(Boolean, default=True, index=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    variants = relationship(
        "ProductVariant",
        back_populates="product",
        order_by="ProductVariant.position",
        collection_class=ordering_list("position"),
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    reviews = relationship(
        "ProductReview",
        back_populates="product",
        order_by="ProductReview.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    cart_items = relationship("CartItem", back_populates="product", passive_deletes=True)

    __table_args__ = (
        CheckConstraint("stock >= 0", name="check_product_stock_non_negative"),
        CheckConstraint("price >= 0", name="check_product_price_non_negative"),
        CheckConstraint("discount >= 0 AND discount <= 100", name="check_product_discount_range"),
        Index("ix_products_category_active", "category", "is_active"),
    )

    def __repr__(self) -> str:
        return f"<Product {self.id} {self.name!r}>"


class ProductVariant(Base):
    __tablename__ = "product_variants"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)  # declaration order

    size = Column(String, nullable=True)
    color = Column(String, nullable=True)

    price = Column(Numeric(12, 2), nullable=False, default=0)
    original_price = Column(Numeric(12, 2), nullable=False, default=0)
    discount = Column(Numeric(5, 2), nullable=False, default=0)
    stock = Column(Integer, nullable=False, default=0)

    sku = Column(String, nullable=True, unique=True, index=True)
    is_active = Column(Boolean, nullable=False, default=True)

    product = relationship("Product", back_populates="variants")

    def __init__(self, **kwargs):
        # Column defaults land at INSERT, after the flush listener has read them
        for field, value in VARIANT_DEFAULTS.items():
            if kwargs.get(field) is None:
                kwargs[field] = value
        super().__init__(**kwargs)

    __table_args__ = (
        # NULLs never collide, so this only binds variants with both fields present
        UniqueConstraint("product_id", "size", "color", name="uq_variant_product_size_color"),
        CheckConstraint("stock >= 0", name="check_variant_stock_non_negative"),
        CheckConstraint("price >= 0", name="check_variant_price_non_negative"),
        CheckConstraint("discount >= 0 AND discount <= 100", name="check_variant_discount_range"),
    )

    def __repr__(self) -> str:
        return f"<ProductVariant {self.id} size={self.size!r} color={self.color!r}>"


class ProductReview(Base):
    __tablename__ = "product_reviews"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    rating = Column(Integer, nullable=False)
    comment = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    product = relationship("Product", back_populates="reviews")
    user = relationship("User", back_populates="reviews")

    __table_args__ = (
        UniqueConstraint("product_id", "user_id", name="uq_review_product_user"),
        CheckConstraint("rating >= 1 AND rating <= 5", name="check_review_rating_range"),
    )


@event.listens_for(Session, "before_flush")
def _sync_products_before_flush(session, flush_context, instances):
    """Re-derive base price/stock for every product whose variants may have changed."""
    from storefront.services.pricing import sync_base_from_variants

    touched = {}
    for obj in list(session.new) + list(session.dirty) + list(session.deleted):
        if isinstance(obj, Product):
            product = obj
        elif isinstance(obj, ProductVariant):
            product = obj.product
        else:
            continue
        if product is not None and product not in session.deleted:
            touched[id(product)] = product

    for product in touched.values():
        remaining = [v for v in product.variants if v not in session.deleted]
        sync_base_from_variants(product, remaining)
