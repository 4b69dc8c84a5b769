from storefront.models.user import User
from storefront.models.product import Product, ProductVariant, ProductReview
from storefront.models.cart import Cart, CartItem

__all__ = [
    "User",
    "Product",
    "ProductVariant",
    "ProductReview",
    "Cart",
    "CartItem",
]
