"""
Cart Service

Server-held carts for authenticated users. One cart per user, created on
first write. Line items are unique per (product, size, color); adding an
existing combination increments it. Stock is checked against the post-add
total, never just the delta, and a rejected request changes nothing.

Writes bump the cart's version counter so two sessions writing the same
cart cannot silently overwrite each other.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import inspect, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from storefront.core.exceptions import (
    CartConflictError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from storefront.core.utils import blank_to_none, utcnow
from storefront.models.cart import Cart, CartItem
from storefront.models.product import Product
from storefront.models.user import User
from storefront.schemas.cart import CartItemResponse, CartResponse
from storefront.services.pricing import (
    cart_count,
    cart_total,
    effective_price,
    effective_stock,
    resolve_variant,
)

logger = logging.getLogger(__name__)

LineKey = Tuple[int, Optional[str], Optional[str]]


@dataclass
class AddRequest:
    product_id: int
    quantity: int = 1
    size: Optional[str] = None
    color: Optional[str] = None


@dataclass
class _PlannedLine:
    key: LineKey
    product: Product
    variant: object
    quantity: int
    price: object


def line_key(product_id: int, size: Optional[str], color: Optional[str]) -> LineKey:
    return (product_id, blank_to_none(size), blank_to_none(color))


def render_cart(cart: Optional[Cart]) -> CartResponse:
    """Serialize a cart (or its absence) for the API."""
    if cart is None:
        return CartResponse()
    items = list(cart.items)
    return CartResponse(
        id=cart.id,
        items=[CartItemResponse.model_validate(item) for item in items],
        subtotal=round(float(cart_total(items)), 2),
        item_count=cart_count(items),
        version=cart.version or 0,
    )


class CartService:
    """Cart operations for one authenticated user."""

    @staticmethod
    async def get_cart(db: AsyncSession, user: User) -> Optional[Cart]:
        return await CartService._cart_for(db, user.id)

    @staticmethod
    async def _cart_for(db: AsyncSession, user_id: int, reload: bool = False) -> Optional[Cart]:
        query = select(Cart).where(Cart.user_id == user_id)
        if reload:
            query = query.execution_options(populate_existing=True)
        result = await db.execute(query)
        return result.scalar_one_or_none()

    @staticmethod
    async def _get_or_create(db: AsyncSession, user: User) -> Cart:
        cart = await CartService.get_cart(db, user)
        if cart is None:
            cart = Cart(user_id=user.id, items=[])
            db.add(cart)
        return cart

    @staticmethod
    async def _load_product(db: AsyncSession, product_id: int) -> Product:
        result = await db.execute(select(Product).where(Product.id == product_id))
        product = result.scalar_one_or_none()
        if product is None or not product.is_active:
            raise NotFoundError("Product not found", resource="product", details={"product_id": product_id})
        return product

    @staticmethod
    def _find_item(cart: Cart, key: LineKey) -> Optional[CartItem]:
        for item in cart.items:
            if line_key(item.product_id, item.size, item.color) == key:
                return item
        return None

    @staticmethod
    async def _plan(db: AsyncSession, cart: Cart, requests: Iterable[AddRequest]) -> List[_PlannedLine]:
        """
        Work out the resulting line for every request without touching the cart.

        Requests for the same line accumulate, so the stock check always sees
        the post-add total.
        """
        products: Dict[int, Product] = {}
        planned: Dict[LineKey, _PlannedLine] = {}

        for request in requests:
            if request.quantity < 1:
                raise ValidationError("Quantity must be at least 1", field="quantity")

            product = products.get(request.product_id)
            if product is None:
                product = await CartService._load_product(db, request.product_id)
                products[request.product_id] = product

            key = line_key(product.id, request.size, request.color)
            variant = resolve_variant(product, key[1], key[2])
            available = effective_stock(product, variant)

            if key in planned:
                current = planned[key].quantity
            else:
                existing = CartService._find_item(cart, key)
                current = existing.quantity if existing else 0

            new_quantity = current + request.quantity
            if available < new_quantity:
                message = "Insufficient stock for updated quantity" if current else "Insufficient stock"
                logger.info(
                    f"Stock rejection for product {product.id} size={key[1]!r} color={key[2]!r}: "
                    f"requested {new_quantity}, available {available}"
                )
                raise InsufficientStockError(
                    message,
                    product_id=product.id,
                    requested_qty=new_quantity,
                    available_qty=available,
                )

            planned[key] = _PlannedLine(
                key=key,
                product=product,
                variant=variant,
                quantity=new_quantity,
                price=effective_price(product, variant),
            )

        return list(planned.values())

    @staticmethod
    def _apply(cart: Cart, lines: List[_PlannedLine]) -> None:
        for line in lines:
            variant_id = getattr(line.variant, "id", None)
            existing = CartService._find_item(cart, line.key)
            if existing is not None:
                existing.quantity = line.quantity
                existing.price = line.price
                existing.variant_id = variant_id
            else:
                cart.items.append(CartItem(
                    product=line.product,
                    product_id=line.product.id,
                    variant_id=variant_id,
                    quantity=line.quantity,
                    size=line.key[1],
                    color=line.key[2],
                    price=line.price,
                ))

    @staticmethod
    async def _save(db: AsyncSession, cart: Cart) -> Cart:
        """
        Flush a cart write, bumping its version.

        A new cart is inserted at version 1; an existing one is touched so the
        UPDATE carries the version check even when only its items changed.
        """
        # Rollback expires every loaded row, so read this first
        user_id = cart.user_id
        if not inspect(cart).pending:
            cart.updated_at = utcnow()
        try:
            await db.flush()
        except (StaleDataError, IntegrityError) as e:
            await db.rollback()
            logger.warning(f"Concurrent write to cart of user {user_id}: {type(e).__name__}")
            raise CartConflictError("Cart was modified by another request; reload and retry")
        return cart

    @staticmethod
    async def add_item(
        db: AsyncSession,
        user: User,
        product_id: int,
        quantity: int = 1,
        size: Optional[str] = None,
        color: Optional[str] = None,
    ) -> Cart:
        cart = await CartService._get_or_create(db, user)
        with db.no_autoflush:
            lines = await CartService._plan(db, cart, [AddRequest(product_id, quantity, size, color)])
        CartService._apply(cart, lines)
        return await CartService._save(db, cart)

    @staticmethod
    async def merge_items(db: AsyncSession, user: User, requests: List[AddRequest]) -> Cart:
        """
        Fold a guest cart into the user's existing cart.

        Additive: existing lines are incremented, never replaced. Either every
        request applies or none does.
        """
        cart = await CartService._get_or_create(db, user)
        if not requests:
            if cart.id is None:
                return await CartService._save(db, cart)
            return cart

        with db.no_autoflush:
            lines = await CartService._plan(db, cart, requests)
        CartService._apply(cart, lines)
        await CartService._save(db, cart)
        logger.info(f"Merged {len(requests)} guest line(s) into cart of user {user.id}")
        return cart

    @staticmethod
    async def update_item(db: AsyncSession, user: User, item_id: int, quantity: int) -> Cart:
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1", field="quantity")

        cart = await CartService.get_cart(db, user)
        if cart is None:
            raise NotFoundError("Cart not found", resource="cart")

        item = next((i for i in cart.items if i.id == item_id), None)
        if item is None:
            raise NotFoundError("Item not found in cart", resource="cart_item")

        product = item.product
        if product is None:
            raise NotFoundError("Product not found", resource="product")

        variant = resolve_variant(product, item.size, item.color)
        available = effective_stock(product, variant)
        if available < quantity:
            raise InsufficientStockError(
                product_id=product.id,
                requested_qty=quantity,
                available_qty=available,
            )

        item.quantity = quantity
        return await CartService._save(db, cart)

    @staticmethod
    async def remove_item(db: AsyncSession, user: User, item_id: int) -> Cart:
        """
        Drop a line; an absent line is a no-op.

        Removal is idempotent, so a version conflict is retried once against
        a fresh read. Parallel removals from one cart then all succeed.
        """
        user_id = user.id
        for attempt in range(2):
            cart = await CartService._cart_for(db, user_id, reload=attempt > 0)
            if cart is None:
                raise NotFoundError("Cart not found", resource="cart")

            item = next((i for i in cart.items if i.id == item_id), None)
            if item is None:
                return cart

            cart.items.remove(item)
            try:
                return await CartService._save(db, cart)
            except CartConflictError:
                if attempt:
                    raise
                logger.info(f"Retrying removal of item {item_id} for user {user_id}")

    @staticmethod
    async def clear(db: AsyncSession, user: User) -> Optional[Cart]:
        cart = await CartService.get_cart(db, user)
        if cart is None:
            return None
        if cart.items:
            cart.items.clear()
            await CartService._save(db, cart)
        return cart
