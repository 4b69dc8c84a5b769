"""
Product schemas

Range checks (negative price, discount outside 0-100, ...) are done by the
catalog service so every write path reports the same ValidationError.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, AliasChoices, Field, field_validator


class ProductImage(BaseModel):
    url: str
    alt: Optional[str] = None
    color: Optional[str] = None


class VariantBase(BaseModel):
    size: Optional[str] = None
    color: Optional[str] = None
    price: float
    original_price: float = Field(0, validation_alias=AliasChoices("original_price", "originalPrice"))
    discount: float = 0
    stock: int = 0
    sku: Optional[str] = None
    is_active: bool = Field(True, validation_alias=AliasChoices("is_active", "isActive"))


class VariantCreate(VariantBase):
    pass


class VariantResponse(VariantBase):
    id: Optional[int] = None

    class Config:
        from_attributes = True
        populate_by_name = True


def _dedupe_tags(tags):
    if tags is None:
        return tags
    seen = []
    for tag in tags:
        tag = tag.strip()
        if tag and tag not in seen:
            seen.append(tag)
    return seen


class ProductBase(BaseModel):
    name: str
    description: str = ""
    category: str
    price: float = 0
    original_price: float = Field(0, validation_alias=AliasChoices("original_price", "originalPrice"))
    discount: float = 0


class ProductCreate(ProductBase):
    stock: int = 0
    images: List[ProductImage] = []
    tags: List[str] = []
    specifications: Dict[str, Any] = {}
    is_featured: bool = Field(False, validation_alias=AliasChoices("is_featured", "isFeatured"))
    is_active: bool = Field(True, validation_alias=AliasChoices("is_active", "isActive"))
    variants: List[VariantCreate] = []

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v):
        if not v or not v.strip():
            raise ValueError("Please provide product name")
        return v.strip()

    @field_validator("tags")
    @classmethod
    def clean_tags(cls, v):
        return _dedupe_tags(v)


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    price: Optional[float] = None
    original_price: Optional[float] = Field(None, validation_alias=AliasChoices("original_price", "originalPrice"))
    discount: Optional[float] = None
    stock: Optional[int] = None
    images: Optional[List[ProductImage]] = None
    tags: Optional[List[str]] = None
    specifications: Optional[Dict[str, Any]] = None
    is_featured: Optional[bool] = Field(None, validation_alias=AliasChoices("is_featured", "isFeatured"))
    is_active: Optional[bool] = Field(None, validation_alias=AliasChoices("is_active", "isActive"))
    # When present, replaces the product's variants wholesale
    variants: Optional[List[VariantCreate]] = None

    @field_validator("tags")
    @classmethod
    def clean_tags(cls, v):
        return _dedupe_tags(v)


class ReviewCreate(BaseModel):
    rating: int
    comment: str
    name: Optional[str] = None


class ReviewResponse(BaseModel):
    id: int
    user_id: int
    name: str
    rating: int
    comment: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ProductResponse(ProductBase):
    id: int
    stock: int = 0
    rating: float = 0.0
    num_reviews: int = 0
    images: List[ProductImage] = []
    tags: List[str] = []
    specifications: Dict[str, Any] = {}
    is_featured: bool = False
    is_active: bool = True
    variants: List[VariantResponse] = []
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
        populate_by_name = True

    @field_validator("images", "tags", "variants", mode="before")
    @classmethod
    def none_to_list(cls, v):
        return v or []

    @field_validator("specifications", mode="before")
    @classmethod
    def none_to_dict(cls, v):
        return v or {}


class ProductDetailResponse(ProductResponse):
    reviews: List[ReviewResponse] = []


class ProductListResponse(BaseModel):
    products: List[ProductResponse]
    page: int
    pages: int
    total: int


class SyncStatusResponse(BaseModel):
    product_id: int
    changed: bool
    price: float
    stock: int
