"""
Cart Session

One CartSession per user session. It owns the cart state and moves between
two modes through explicit transitions:

    ANONYMOUS --login--> AUTHENTICATED --logout--> ANONYMOUS

Anonymous carts live in the device key-value store; authenticated carts
live on the server. Logging in merges a non-empty guest cart into the
server cart exactly once, then clears the guest copy.

Quantity edits are applied locally at once and persisted after a per-item
debounce window; a failed write reverts the line to its value from before
the window opened. Removals are applied locally and deleted remotely right
away, reverting on failure. Sync failures are reported through the return
value and the optional `on_sync_error` callback. Stock and validation
rejections are raised to the caller.
"""
import asyncio
import copy
import functools
import logging
from decimal import Decimal
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from storefront.client.api import CartApiClient, CatalogClient
from storefront.client.config import client_settings
from storefront.client.debounce import ItemDebouncer
from storefront.client.state import CartState, ItemId, LineItem, get_count, get_total, new_temp_id
from storefront.client.storage import FileStore, KeyValueStore
from storefront.core.exceptions import (
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
    StorefrontError,
    TransientSyncError,
    ValidationError,
)
from storefront.core.utils import blank_to_none
from storefront.services.pricing import effective_price, effective_stock, resolve_variant

logger = logging.getLogger(__name__)


class CartMode(str, Enum):
    ANONYMOUS = "anonymous"
    AUTHENTICATED = "authenticated"


TRANSITIONS = {
    (CartMode.ANONYMOUS, "login"): CartMode.AUTHENTICATED,
    (CartMode.AUTHENTICATED, "logout"): CartMode.ANONYMOUS,
}


class CartSession:
    def __init__(
        self,
        api: CartApiClient,
        catalog: CatalogClient,
        store: KeyValueStore,
        storage_key: Optional[str] = None,
        debounce_seconds: Optional[float] = None,
        on_sync_error: Optional[Callable[[StorefrontError], None]] = None,
    ):
        self.api = api
        self.catalog = catalog
        self.store = store
        self.storage_key = storage_key or client_settings.STORAGE_KEY
        self.on_sync_error = on_sync_error

        if debounce_seconds is None:
            debounce_seconds = client_settings.update_debounce_seconds
        self._debouncer = ItemDebouncer(debounce_seconds)
        # Line value from before the currently open debounce window, per item
        self._window_snapshots: Dict[ItemId, LineItem] = {}

        self.mode = CartMode.ANONYMOUS
        self.state = CartState()
        self._owned_clients: List = []

    @classmethod
    def from_settings(
        cls,
        on_sync_error: Optional[Callable[[StorefrontError], None]] = None,
    ) -> "CartSession":
        """Session wired to the configured API and a file store on this device."""
        api = CartApiClient(client_settings.API_BASE_URL)
        catalog = CatalogClient(client_settings.API_BASE_URL)
        session = cls(api, catalog, FileStore(client_settings.STORAGE_DIR), on_sync_error=on_sync_error)
        session._owned_clients = [api, catalog]
        return session

    async def __aenter__(self) -> "CartSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def start(self) -> None:
        self.state = self._read_local()
        logger.debug(f"Cart session started with {len(self.state.items)} guest items")

    async def close(self) -> None:
        """Cancel pending windows, wait for writes in flight, release clients."""
        await self._drain()
        for client in self._owned_clients:
            await client.aclose()
        self._owned_clients = []

    async def _drain(self) -> None:
        self._debouncer.cancel_all()
        await self._debouncer.wait()
        self._window_snapshots.clear()

    @property
    def items(self) -> List[LineItem]:
        return self.state.items

    @property
    def is_authenticated(self) -> bool:
        return self.mode is CartMode.AUTHENTICATED

    def get_total(self) -> Decimal:
        return get_total(self.state)

    def get_count(self) -> int:
        return get_count(self.state)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _next_mode(self, event: str) -> CartMode:
        target = TRANSITIONS.get((self.mode, event))
        if target is None:
            raise InvalidTransitionError(
                f"Cannot {event} while {self.mode.value}",
                details={"mode": self.mode.value, "event": event},
            )
        return target

    async def login(self, token: str) -> bool:
        """
        Switch to the server cart.

        A non-empty guest cart is merged into the user's existing server cart.
        If the merge fails the server cart is fetched as-is and the guest
        items are dropped. Guest storage is cleared either way.

        Returns False when the guest items could not be merged.
        """
        target = self._next_mode("login")
        self.api.authenticate(token)

        guest = self._read_local()
        try:
            merged = await self._merge_guest(guest)
        except Exception:
            # Still a guest; local items stay where they were
            self.api.clear_token()
            raise

        self.mode = target
        self.store.delete(self.storage_key)
        logger.info("Cart session authenticated")
        return merged

    async def _merge_guest(self, guest: CartState) -> bool:
        if not guest.items:
            await self._fetch_or_empty()
            return True

        try:
            server = await self.api.merge([item.to_merge_entry() for item in guest.items])
        except StorefrontError as e:
            logger.warning(
                f"Guest cart merge failed, dropping {len(guest.items)} items: {e.code}: {e.message}"
            )
            self._report(e)
            await self._fetch_or_empty()
            return False

        self._adopt(server)
        return True

    async def logout(self) -> None:
        target = self._next_mode("logout")
        await self._drain()
        self.mode = target
        self.api.clear_token()
        self.state = self._read_local()
        logger.info("Cart session signed out")

    async def refresh(self) -> bool:
        """Reload the cart from its current source."""
        if self.mode is CartMode.ANONYMOUS:
            self.state = self._read_local()
            return True
        try:
            server = await self.api.get_cart()
        except StorefrontError as e:
            self._report(e)
            return False
        self._adopt(server)
        return True

    async def _fetch_or_empty(self) -> None:
        try:
            server = await self.api.get_cart()
        except StorefrontError as e:
            self._report(e)
            self.state = CartState()
        else:
            self._adopt(server)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def add_item(
        self,
        product_id: int,
        quantity: int = 1,
        size: Optional[str] = None,
        color: Optional[str] = None,
    ) -> bool:
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1", field="quantity")

        if self.mode is CartMode.AUTHENTICATED:
            try:
                server = await self.api.add_item(product_id, quantity, size, color)
            except TransientSyncError as e:
                self._report(e)
                return False
            self._adopt(server)
            return True

        try:
            product = await self.catalog.get_product(product_id)
        except TransientSyncError as e:
            self._report(e)
            return False
        if not product.is_active:
            raise NotFoundError("Product not found", resource="product")

        variant = resolve_variant(product, size, color)
        available = effective_stock(product, variant)
        price = Decimal(str(effective_price(product, variant)))

        existing = self.state.find_line(product_id, size, color)
        current = existing.quantity if existing else 0
        if available < current + quantity:
            raise InsufficientStockError(
                "Insufficient stock for updated quantity" if existing else "Insufficient stock",
                product_id=product_id,
                requested_qty=current + quantity,
                available_qty=available,
            )

        variant_id = variant.id if variant is not None else None
        if existing:
            existing.quantity = current + quantity
            existing.price = price
            existing.variant_id = variant_id
            existing.product = product
        else:
            self.state.items.append(LineItem(
                id=new_temp_id(),
                product_id=product_id,
                quantity=quantity,
                size=blank_to_none(size),
                color=blank_to_none(color),
                price=price,
                variant_id=variant_id,
                product=product,
            ))
        self._save_local()
        return True

    async def update_quantity(self, item_id: ItemId, quantity: int) -> bool:
        """
        Set a line's quantity. Use remove_item to drop a line.

        Authenticated edits return as soon as the local state changes; the
        write happens when the item's debounce window closes.
        """
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1", field="quantity")
        item = self.state.find(item_id)
        if item is None:
            raise NotFoundError("Cart item not found", resource="cart_item")

        if self.mode is CartMode.ANONYMOUS:
            try:
                product = await self.catalog.get_product(item.product_id)
            except TransientSyncError as e:
                self._report(e)
                return False
            item.product = product
            available = effective_stock(product, resolve_variant(product, item.size, item.color))
            if available < quantity:
                raise InsufficientStockError(
                    "Insufficient stock",
                    product_id=item.product_id,
                    requested_qty=quantity,
                    available_qty=available,
                )
            item.quantity = quantity
            self._save_local()
            return True

        if not self._debouncer.pending(item_id):
            self._window_snapshots[item_id] = copy.deepcopy(item)
        item.quantity = quantity
        self._debouncer.schedule(item_id, functools.partial(self._persist_quantity, item_id))
        return True

    async def _persist_quantity(self, item_id: ItemId) -> bool:
        snapshot = self._window_snapshots.pop(item_id, None)
        item = self.state.find(item_id)
        if item is None:
            return True

        try:
            server = await self.api.update_item(item_id, item.quantity)
        except StorefrontError as e:
            if self._debouncer.pending(item_id):
                # The server still holds the older value; the next window reverts to it
                if snapshot is not None:
                    self._window_snapshots[item_id] = snapshot
            elif snapshot is not None:
                self._restore_line(snapshot)
            self._report(e)
            return False

        self._adopt(server)
        return True

    async def remove_item(self, item_id: ItemId) -> bool:
        index = self.state.index_of(item_id)
        if index < 0:
            return True

        was_pending = self._debouncer.cancel(item_id)
        snapshot = self._window_snapshots.pop(item_id, None)
        removed = self.state.items.pop(index)

        if self.mode is CartMode.ANONYMOUS:
            self._save_local()
            return True

        try:
            server = await self.api.remove_item(item_id)
        except StorefrontError as e:
            self.state.items.insert(min(index, len(self.state.items)), removed)
            if was_pending and snapshot is not None:
                self._window_snapshots[item_id] = snapshot
                self._debouncer.schedule(item_id, functools.partial(self._persist_quantity, item_id))
            self._report(e)
            return False

        self._adopt(server)
        return True

    async def remove_items(self, item_ids: Iterable[ItemId]) -> bool:
        """
        Remove several lines at once.

        Deletes are sent concurrently. If any of them fails the server cart
        is re-fetched instead of guessing which deletes went through.
        """
        ids = [item_id for item_id in dict.fromkeys(item_ids) if self.state.find(item_id) is not None]
        if not ids:
            return True

        for item_id in ids:
            self._debouncer.cancel(item_id)
            self._window_snapshots.pop(item_id, None)
        doomed = set(ids)
        self.state.items = [item for item in self.state.items if item.id not in doomed]

        if self.mode is CartMode.ANONYMOUS:
            self._save_local()
            return True

        results = await asyncio.gather(
            *(self.api.remove_item(item_id) for item_id in ids),
            return_exceptions=True,
        )
        failures = [r for r in results if isinstance(r, BaseException)]
        for failure in failures:
            if not isinstance(failure, StorefrontError):
                raise failure

        if failures:
            logger.warning(f"{len(failures)} of {len(ids)} cart deletes failed, re-fetching cart")
            self._report(failures[0])
            await self.refresh()
            return False

        self._adopt(max(results, key=lambda state: state.version))
        return True

    async def clear_cart(self) -> bool:
        """Empty the cart. A missing server cart counts as already cleared."""
        self._debouncer.cancel_all()
        self._window_snapshots.clear()
        snapshot = self.state
        self.state = CartState(version=snapshot.version)

        if self.mode is CartMode.ANONYMOUS:
            self.store.delete(self.storage_key)
            return True

        try:
            server = await self.api.clear()
        except NotFoundError:
            return True
        except StorefrontError as e:
            self.state = snapshot
            self._report(e)
            return False

        self._adopt(server)
        return True

    async def settle(self, item_id: Optional[ItemId] = None) -> bool:
        """
        Wait for debounced writes to finish.

        Returns False if any of them failed.
        """
        results = await self._debouncer.wait(item_id)
        return all(result is True for result in results)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _adopt(self, server: CartState) -> None:
        """Take the server cart, keeping local quantities of lines still being written."""
        for item in server.items:
            if self._debouncer.active(item.id):
                local = self.state.find(item.id)
                if local is not None:
                    item.quantity = local.quantity
        self.state = server

    def _restore_line(self, snapshot: LineItem) -> None:
        index = self.state.index_of(snapshot.id)
        if index >= 0:
            self.state.items[index] = snapshot

    def _read_local(self) -> CartState:
        raw = self.store.get(self.storage_key)
        if raw is None:
            return CartState()
        try:
            return CartState.from_json(raw)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding unreadable guest cart: {type(e).__name__}: {e}")
            self.store.delete(self.storage_key)
            return CartState()

    def _save_local(self) -> None:
        self.store.set(self.storage_key, self.state.to_json())

    def _report(self, error: StorefrontError) -> None:
        logger.warning(f"Cart sync failed: {error.code}: {error.message}")
        if self.on_sync_error is not None:
            self.on_sync_error(error)
