"""Session-side cart engine: local guest carts, server sync and merge-on-login."""
from storefront.client.api import CartApiClient, CatalogClient
from storefront.client.session import CartMode, CartSession
from storefront.client.state import CartState, LineItem
from storefront.client.storage import FileStore, KeyValueStore, MemoryStore

__all__ = [
    "CartApiClient",
    "CatalogClient",
    "CartMode",
    "CartSession",
    "CartState",
    "LineItem",
    "FileStore",
    "KeyValueStore",
    "MemoryStore",
]
