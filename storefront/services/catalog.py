"""
Catalog Service

Product reads and writes. Every write validates ranges, replaces variants
wholesale when given, and re-derives the base price/stock from the variants
before flushing.
"""
import logging
import math
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import select, func, or_, cast, String
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.exceptions import NotFoundError, ValidationError, DuplicateReviewError
from storefront.core.utils import blank_to_none
from storefront.models.product import Product, ProductVariant, ProductReview
from storefront.models.user import User
from storefront.schemas.product import ProductCreate, ProductUpdate, ReviewCreate, VariantCreate
from storefront.services.pricing import (
    is_in_sync,
    record_review,
    sync_base_from_variants,
    validate_product_fields,
    validate_variant_set,
)

logger = logging.getLogger(__name__)

MONEY_FIELDS = ("price", "original_price", "discount")

SORT_ORDERS = {
    "price-low": (Product.price.asc(), Product.id.asc()),
    "price-high": (Product.price.desc(), Product.id.desc()),
    "rating": (Product.rating.desc(), Product.id.desc()),
    "newest": (Product.created_at.desc(), Product.id.desc()),
}


def _money(value) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(value))


def _build_variant(data: VariantCreate) -> ProductVariant:
    fields = data.model_dump()
    for name in MONEY_FIELDS:
        fields[name] = _money(fields[name])
    fields["sku"] = blank_to_none(fields["sku"])
    return ProductVariant(**fields)


async def _check_skus_available(
    db: AsyncSession, variants: List[VariantCreate], product_id: Optional[int] = None
) -> None:
    """Reject SKUs already held by another product's variants."""
    positions = {}
    for index, variant in enumerate(variants):
        sku = blank_to_none(variant.sku)
        if sku is not None:
            positions.setdefault(sku, index)
    if not positions:
        return

    query = select(ProductVariant.sku).where(ProductVariant.sku.in_(list(positions)))
    if product_id is not None:
        query = query.where(ProductVariant.product_id != product_id)
    taken = (await db.execute(query)).scalars().first()
    if taken is not None:
        raise ValidationError(f"SKU {taken!r} is already in use", field=f"variants[{positions[taken]}].sku")


class ProductService:
    """Service for product catalog operations."""

    @staticmethod
    async def get(db: AsyncSession, product_id: int) -> Product:
        result = await db.execute(select(Product).where(Product.id == product_id))
        product = result.scalar_one_or_none()
        if product is None:
            raise NotFoundError("Product not found", resource="product")
        return product

    @staticmethod
    async def create(db: AsyncSession, data: ProductCreate) -> Product:
        validate_product_fields(data.price, data.original_price, data.discount, data.stock)
        validate_variant_set(data.variants)
        await _check_skus_available(db, data.variants)

        fields = data.model_dump(exclude={"variants"})
        for name in MONEY_FIELDS:
            fields[name] = _money(fields[name])

        product = Product(**fields)
        product.variants = [_build_variant(v) for v in data.variants]
        sync_base_from_variants(product)

        db.add(product)
        await db.flush()
        logger.info(f"Created product {product.id} ({len(product.variants)} variants)")
        return product

    @staticmethod
    async def update(db: AsyncSession, product_id: int, data: ProductUpdate) -> Product:
        product = await ProductService.get(db, product_id)

        fields = data.model_dump(exclude_unset=True, exclude={"variants"})
        # Every updatable column is NOT NULL or rendered as non-null
        for name, value in fields.items():
            if value is None:
                raise ValidationError(f"{name} cannot be null", field=name)
        validate_product_fields(
            fields.get("price"),
            fields.get("original_price"),
            fields.get("discount"),
            fields.get("stock"),
        )
        for name in MONEY_FIELDS:
            if name in fields:
                fields[name] = _money(fields[name])
        for name, value in fields.items():
            setattr(product, name, value)

        if data.variants is not None:
            validate_variant_set(data.variants)
            await _check_skus_available(db, data.variants, product.id)
            # Flush the removals first so replacement rows can reuse (size, color) and sku
            product.variants.clear()
            await db.flush()
            product.variants.extend(_build_variant(v) for v in data.variants)

        sync_base_from_variants(product)
        await db.flush()
        logger.info(f"Updated product {product.id}")
        return product

    @staticmethod
    async def delete(db: AsyncSession, product_id: int) -> None:
        product = await ProductService.get(db, product_id)
        await db.delete(product)
        await db.flush()
        logger.info(f"Deleted product {product_id}")

    @staticmethod
    async def list_products(
        db: AsyncSession,
        category: Optional[str] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        min_rating: Optional[float] = None,
        search: Optional[str] = None,
        sort: Optional[str] = None,
        page: int = 1,
        limit: int = 12,
    ) -> Tuple[List[Product], int]:
        """
        List active products with filtering, sorting and pagination.

        Returns tuple of (products, total_count).
        """
        filters = [Product.is_active.is_(True)]

        if category and category.lower() != "all":
            filters.append(func.lower(Product.category) == category.lower())
        if min_price is not None:
            filters.append(Product.price >= min_price)
        if max_price is not None:
            filters.append(Product.price <= max_price)
        if min_rating is not None:
            filters.append(Product.rating >= min_rating)
        if search:
            pattern = f"%{search}%"
            filters.append(or_(
                Product.name.ilike(pattern),
                Product.description.ilike(pattern),
                cast(Product.tags, String).ilike(pattern),
            ))

        total = await db.scalar(select(func.count(Product.id)).where(*filters))

        page = max(page, 1)
        order = SORT_ORDERS.get(sort or "newest", SORT_ORDERS["newest"])
        result = await db.execute(
            select(Product)
            .where(*filters)
            .order_by(*order)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total or 0

    @staticmethod
    def page_count(total: int, limit: int) -> int:
        return math.ceil(total / limit) if limit else 0

    @staticmethod
    async def similar(db: AsyncSession, product_id: int, limit: int = 8) -> List[Product]:
        """Active products from the same category, excluding the product itself."""
        product = await ProductService.get(db, product_id)
        result = await db.execute(
            select(Product)
            .where(
                Product.category == product.category,
                Product.id != product.id,
                Product.is_active.is_(True),
            )
            .order_by(Product.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    @staticmethod
    async def add_review(
        db: AsyncSession,
        product_id: int,
        user: User,
        data: ReviewCreate,
    ) -> ProductReview:
        if not data.comment or not data.comment.strip():
            raise ValidationError("Please provide a review comment", field="comment")

        product = await ProductService.get(db, product_id)
        review = ProductReview(
            user_id=user.id,
            name=data.name or user.name,
            rating=data.rating,
            comment=data.comment.strip(),
        )
        record_review(product, review)

        try:
            await db.flush()
        except IntegrityError:
            # Another request recorded this user's review first
            await db.rollback()
            raise DuplicateReviewError("Product already reviewed")

        logger.info(f"Review by user {user.id} on product {product_id}; rating now {product.rating:.2f}")
        return review

    @staticmethod
    async def sync(db: AsyncSession, product_id: int) -> Tuple[Product, bool]:
        """Explicitly re-derive a product's base fields from its variants."""
        product = await ProductService.get(db, product_id)
        changed = sync_base_from_variants(product)
        await db.flush()
        if changed:
            logger.warning(f"Product {product_id} had diverged from its variants; re-synced")
        return product, changed

    @staticmethod
    async def find_out_of_sync(db: AsyncSession) -> List[Product]:
        """Products whose stored base fields disagree with their variants."""
        result = await db.execute(
            select(Product)
            .where(Product.variants.any())
            .order_by(Product.id)
        )
        return [p for p in result.scalars().all() if not is_in_sync(p)]
