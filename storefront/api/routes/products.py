"""
Product routes

Public catalog reads, admin writes, and authenticated reviews. Writes go
through ProductService so the variant-derived base fields are always
re-synced.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import settings
from storefront.core.database import get_db
from storefront.models.user import User
from storefront.schemas.product import (
    ProductCreate,
    ProductDetailResponse,
    ProductImage,
    ProductListResponse,
    ProductResponse,
    ProductUpdate,
    ReviewCreate,
    SyncStatusResponse,
)
from storefront.services.catalog import ProductService
from storefront.services.pricing import filter_images
from storefront.api.deps import get_current_admin, get_current_user

router = APIRouter()


@router.get("", response_model=ProductListResponse)
async def list_products(
    category: Optional[str] = None,
    min_price: Optional[float] = Query(None, alias="minPrice"),
    max_price: Optional[float] = Query(None, alias="maxPrice"),
    rating: Optional[float] = None,
    search: Optional[str] = None,
    sort: Optional[str] = Query(None, pattern="^(price-low|price-high|rating|newest)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.PRODUCT_PAGE_SIZE, ge=1, le=settings.PRODUCT_PAGE_SIZE_MAX),
    db: AsyncSession = Depends(get_db)
):
    """List active products with filtering, sorting and pagination"""
    products, total = await ProductService.list_products(
        db,
        category=category,
        min_price=min_price,
        max_price=max_price,
        min_rating=rating,
        search=search,
        sort=sort,
        page=page,
        limit=limit,
    )
    return ProductListResponse(
        products=[ProductResponse.model_validate(p) for p in products],
        page=page,
        pages=ProductService.page_count(total, limit),
        total=total,
    )


@router.get("/out-of-sync", response_model=List[ProductResponse])
async def list_out_of_sync_products(
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db)
):
    """Consistency check: products whose base fields disagree with their variants"""
    return await ProductService.find_out_of_sync(db)


@router.get("/{product_id}", response_model=ProductDetailResponse)
async def get_product(product_id: int, db: AsyncSession = Depends(get_db)):
    """Get a single product with variants and reviews"""
    return await ProductService.get(db, product_id)


@router.get("/{product_id}/similar", response_model=List[ProductResponse])
async def get_similar_products(product_id: int, db: AsyncSession = Depends(get_db)):
    """Active products from the same category"""
    return await ProductService.similar(db, product_id, settings.SIMILAR_PRODUCTS_LIMIT)


@router.get("/{product_id}/images", response_model=List[ProductImage])
async def get_product_images(
    product_id: int,
    color: Optional[str] = None,
    db: AsyncSession = Depends(get_db)
):
    """Gallery for the selected color variant"""
    product = await ProductService.get(db, product_id)
    return filter_images(product.images, color)


@router.post("", response_model=ProductResponse, status_code=status.HTTP_201_CREATED)
async def create_product(
    data: ProductCreate,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db)
):
    product = await ProductService.create(db, data)
    await db.commit()
    return product


@router.put("/{product_id}", response_model=ProductResponse)
async def update_product(
    product_id: int,
    data: ProductUpdate,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db)
):
    product = await ProductService.update(db, product_id, data)
    await db.commit()
    return product


@router.delete("/{product_id}")
async def delete_product(
    product_id: int,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db)
):
    await ProductService.delete(db, product_id)
    await db.commit()
    return {"message": "Product removed"}


@router.post("/{product_id}/reviews", status_code=status.HTTP_201_CREATED)
async def create_review(
    product_id: int,
    data: ReviewCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    await ProductService.add_review(db, product_id, user, data)
    await db.commit()
    return {"message": "Review added"}


@router.post("/{product_id}/sync", response_model=SyncStatusResponse)
async def sync_product(
    product_id: int,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db)
):
    """Re-derive base price/stock from the product's variants"""
    product, changed = await ProductService.sync(db, product_id)
    await db.commit()
    return SyncStatusResponse(
        product_id=product.id,
        changed=changed,
        price=float(product.price),
        stock=product.stock,
    )
