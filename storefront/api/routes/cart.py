"""
Cart routes

All endpoints return the full cart so clients can replace their copy with
the authoritative one.
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.database import get_db
from storefront.core.rate_limit import get_cart_limit
from storefront.models.user import User
from storefront.schemas.cart import CartItemCreate, CartItemUpdate, CartMergeRequest, CartResponse
from storefront.services.cart_service import AddRequest, CartService, render_cart
from storefront.api.deps import get_current_user

router = APIRouter()


@router.get("", response_model=CartResponse)
async def get_cart(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Get current user's cart (empty when none exists yet)"""
    cart = await CartService.get_cart(db, user)
    return render_cart(cart)


@router.post("", response_model=CartResponse)
@get_cart_limit()
async def add_to_cart(
    request: Request,
    item_data: CartItemCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Add a product (optionally a size/color variant) to the cart"""
    cart = await CartService.add_item(
        db,
        user,
        item_data.product_id,
        item_data.quantity,
        item_data.size,
        item_data.color,
    )
    await db.commit()
    return render_cart(cart)


@router.post("/merge", response_model=CartResponse)
@get_cart_limit()
async def merge_cart(
    request: Request,
    merge_data: CartMergeRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Fold a guest cart into the user's cart (additive)"""
    requests = [
        AddRequest(i.product_id, i.quantity, i.size, i.color)
        for i in merge_data.items
    ]
    cart = await CartService.merge_items(db, user, requests)
    await db.commit()
    return render_cart(cart)


@router.put("/{item_id}", response_model=CartResponse)
@get_cart_limit()
async def update_cart_item(
    request: Request,
    item_id: int,
    update_data: CartItemUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Set a line item's quantity"""
    cart = await CartService.update_item(db, user, item_id, update_data.quantity)
    await db.commit()
    return render_cart(cart)


@router.delete("/{item_id}", response_model=CartResponse)
@get_cart_limit()
async def remove_from_cart(
    request: Request,
    item_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Remove a line item (absent items are a no-op)"""
    cart = await CartService.remove_item(db, user, item_id)
    await db.commit()
    return render_cart(cart)


@router.delete("", response_model=CartResponse)
async def clear_cart(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Clear entire cart; succeeds even when the user has no cart"""
    await CartService.clear(db, user)
    await db.commit()
    return CartResponse()
