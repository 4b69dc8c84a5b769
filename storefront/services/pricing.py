"""
Product/variant pricing rules

Pure functions over products and variants. They only read attributes, so
the same code serves ORM rows on the server and the pydantic product
schemas the cart client receives from the API.

Selector matching: a requested size/color of None (or "") matches a variant
whose field is None (or ""). An empty selector never picks a variant; the
base product answers for it.
"""
import logging
from decimal import Decimal
from typing import Any, Iterable, List, Optional, Sequence

from storefront.core.exceptions import DuplicateReviewError, ValidationError
from storefront.core.utils import blank_to_none

logger = logging.getLogger(__name__)

SYNCED_PRICE_FIELDS = ("price", "original_price", "discount")


def _matches(variant_value, requested) -> bool:
    return blank_to_none(variant_value) == blank_to_none(requested)


def resolve_variant(product, size: Optional[str] = None, color: Optional[str] = None):
    """Return the variant matching (size, color), or None to use the base product."""
    size = blank_to_none(size)
    color = blank_to_none(color)
    variants = getattr(product, "variants", None) or []

    if not variants or (size is None and color is None):
        return None

    for variant in variants:
        if _matches(variant.size, size) and _matches(variant.color, color):
            return variant
    return None


def effective_price(product, variant=None):
    return variant.price if variant is not None else product.price


def effective_original_price(product, variant=None):
    return variant.original_price if variant is not None else product.original_price


def effective_discount(product, variant=None):
    return variant.discount if variant is not None else product.discount


def effective_stock(product, variant=None) -> int:
    return variant.stock if variant is not None else product.stock


def select_active_variant(variants: Sequence[Any]):
    """First variant flagged active, else the first declared; None when empty."""
    if not variants:
        return None
    for variant in variants:
        if variant.is_active:
            return variant
    return variants[0]


def sync_base_from_variants(product, variants: Optional[Sequence[Any]] = None) -> bool:
    """
    Copy the active variant's pricing onto the product and total the stock.

    `variants` defaults to product.variants. Does nothing for a product
    without variants. Returns True when any base field changed.
    """
    if variants is None:
        variants = list(getattr(product, "variants", None) or [])
    if not variants:
        return False

    active = select_active_variant(variants)
    changed = False

    for field in SYNCED_PRICE_FIELDS:
        value = getattr(active, field)
        if getattr(product, field) != value:
            setattr(product, field, value)
            changed = True

    total_stock = sum(int(v.stock or 0) for v in variants)
    if product.stock != total_stock:
        product.stock = total_stock
        changed = True

    if changed:
        logger.debug(f"Synced product {getattr(product, 'id', None)} from {len(variants)} variants")
    return changed


def is_in_sync(product) -> bool:
    """True when the base fields agree with the product's variants."""
    variants = list(getattr(product, "variants", None) or [])
    if not variants:
        return True
    active = select_active_variant(variants)
    if any(getattr(product, f) != getattr(active, f) for f in SYNCED_PRICE_FIELDS):
        return False
    return product.stock == sum(int(v.stock or 0) for v in variants)


# ==================== Validation ====================

def _check_non_negative(value, field: str, prefix: str = "") -> None:
    if value is not None and value < 0:
        raise ValidationError(f"{prefix}{field} must not be negative", field=f"{prefix}{field}")


def _check_range(value, field: str, low, high, prefix: str = "") -> None:
    if value is not None and not (low <= value <= high):
        raise ValidationError(
            f"{prefix}{field} must be between {low} and {high}", field=f"{prefix}{field}"
        )


def validate_variant_fields(
    price=None,
    original_price=None,
    discount=None,
    stock=None,
    prefix: str = "",
) -> None:
    _check_non_negative(price, "price", prefix)
    _check_non_negative(original_price, "original_price", prefix)
    _check_range(discount, "discount", 0, 100, prefix)
    _check_non_negative(stock, "stock", prefix)


def validate_product_fields(
    price=None,
    original_price=None,
    discount=None,
    stock=None,
    rating=None,
) -> None:
    """Raise ValidationError naming the first out-of-range field."""
    validate_variant_fields(price, original_price, discount, stock)
    _check_range(rating, "rating", 0, 5)


def validate_variant_set(variants: Iterable[Any]) -> None:
    """Validate each variant and reject repeated (size, color) pairs or SKUs."""
    seen = set()
    skus = set()
    for index, variant in enumerate(variants):
        sku = blank_to_none(getattr(variant, "sku", None))
        if sku is not None:
            if sku in skus:
                raise ValidationError(f"Duplicate SKU {sku!r}", field=f"variants[{index}].sku")
            skus.add(sku)
        validate_variant_fields(
            variant.price,
            variant.original_price,
            variant.discount,
            variant.stock,
            prefix=f"variants[{index}].",
        )
        size = blank_to_none(variant.size)
        color = blank_to_none(variant.color)
        if size is not None and color is not None:
            key = (size, color)
            if key in seen:
                raise ValidationError(
                    f"Duplicate variant for size {size!r} and color {color!r}",
                    field=f"variants[{index}]",
                )
            seen.add(key)


# ==================== Reviews ====================

def record_review(product, review) -> None:
    """
    Append a review and recompute the rating aggregates.

    Raises DuplicateReviewError when the review's user already reviewed
    this product.
    """
    _check_range(review.rating, "rating", 1, 5)

    if any(existing.user_id == review.user_id for existing in product.reviews):
        raise DuplicateReviewError("Product already reviewed")

    product.reviews.append(review)
    recompute_rating(product)


def recompute_rating(product) -> None:
    reviews = list(product.reviews)
    product.num_reviews = len(reviews)
    product.rating = (
        sum(r.rating for r in reviews) / len(reviews) if reviews else 0.0
    )


# ==================== Gallery ====================

def filter_images(images: Optional[List[Any]], color: Optional[str] = None) -> List[Any]:
    """
    Images to show for a selected color: those tagged with the color plus
    untagged ones. Falls back to the whole gallery when nothing is tagged
    with the color.
    """
    images = list(images or [])
    color = blank_to_none(color)
    if color is None:
        return images

    def tag(image):
        value = image.get("color") if isinstance(image, dict) else getattr(image, "color", None)
        return blank_to_none(value)

    if not any(_same_color(tag(img), color) for img in images):
        return images
    return [img for img in images if tag(img) is None or _same_color(tag(img), color)]


def _same_color(a: Optional[str], b: Optional[str]) -> bool:
    if a is None or b is None:
        return False
    return a.strip().lower() == b.strip().lower()


# ==================== Cart totals ====================

def unit_price(item) -> Decimal:
    """The item's price snapshot, else the live price of its resolved variant."""
    if item.price is not None:
        return Decimal(str(item.price))
    product = getattr(item, "product", None)
    if product is None:
        return Decimal("0")
    variant = resolve_variant(product, item.size, item.color)
    return Decimal(str(effective_price(product, variant)))


def line_total(item) -> Decimal:
    return unit_price(item) * item.quantity


def cart_total(items: Iterable[Any]) -> Decimal:
    return sum((line_total(item) for item in items), Decimal("0"))


def cart_count(items: Iterable[Any]) -> int:
    return sum(item.quantity for item in items)
