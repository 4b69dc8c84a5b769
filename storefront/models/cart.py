"""
Cart model

One cart per user, created on first write. Every write bumps `version`
(SQLAlchemy version counter), so a write based on a stale read fails with
StaleDataError instead of silently overwriting a concurrent update.
"""
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Numeric, CheckConstraint, Index
from sqlalchemy.orm import relationship

from storefront.core.database import Base
from storefront.core.utils import utcnow


class Cart(Base):
    __tablename__ = "carts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True, index=True)
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="cart")
    items = relationship(
        "CartItem",
        back_populates="cart",
        order_by="CartItem.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}


class CartItem(Base):
    __tablename__ = "cart_items"

    id = Column(Integer, primary_key=True, index=True)
    cart_id = Column(Integer, ForeignKey("carts.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    variant_id = Column(Integer, ForeignKey("product_variants.id", ondelete="SET NULL"), nullable=True)

    quantity = Column(Integer, nullable=False, default=1)
    size = Column(String, nullable=True)
    color = Column(String, nullable=True)

    # Unit price captured when the line was added (or last incremented)
    price = Column(Numeric(12, 2), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    cart = relationship("Cart", back_populates="items")
    product = relationship("Product", back_populates="cart_items", lazy="selectin")

    __table_args__ = (
        Index("ix_cart_items_cart_product", "cart_id", "product_id"),
        CheckConstraint("quantity >= 1", name="check_cart_item_quantity_positive"),
    )
