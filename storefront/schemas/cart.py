"""
Cart schemas

Request bodies accept both snake_case and the camelCase keys the web client
sends (productId).
"""
from typing import List, Optional
from pydantic import BaseModel, AliasChoices, Field

from storefront.schemas.product import ProductResponse


class CartItemCreate(BaseModel):
    product_id: int = Field(..., validation_alias=AliasChoices("product_id", "productId"))
    quantity: int = 1
    size: Optional[str] = None
    color: Optional[str] = None


class CartMergeRequest(BaseModel):
    items: List[CartItemCreate] = []


class CartItemUpdate(BaseModel):
    quantity: int


class CartItemResponse(BaseModel):
    id: int
    product_id: int
    variant_id: Optional[int] = None
    product: Optional[ProductResponse] = None
    quantity: int
    size: Optional[str] = None
    color: Optional[str] = None
    price: Optional[float] = None

    class Config:
        from_attributes = True


class CartResponse(BaseModel):
    id: Optional[int] = None
    items: List[CartItemResponse] = []
    subtotal: float = 0.0
    item_count: int = 0
    version: int = 0
