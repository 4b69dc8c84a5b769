import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from storefront.client.api import CartApiClient, CatalogClient
from storefront.client.session import CartMode, CartSession
from storefront.client.state import CartState, LineItem
from storefront.client.storage import MemoryStore
from storefront.core.exceptions import (
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
    TransientSyncError,
    ValidationError,
)
from storefront.schemas.product import ProductResponse

DEBOUNCE = 0.05


def make_product(product_id=10, price=100.0, stock=5, variants=None):
    return ProductResponse.model_validate({
        "id": product_id,
        "name": f"Product {product_id}",
        "category": "Bags",
        "price": price,
        "original_price": price,
        "discount": 0,
        "stock": stock,
        "variants": variants or [],
    })


def line(item_id, product_id, quantity, price="100", size=None, color=None):
    return LineItem(
        id=item_id,
        product_id=product_id,
        quantity=quantity,
        size=size,
        color=color,
        price=Decimal(price),
    )


def server_cart(*items, version=1):
    return CartState(items=list(items), version=version)


@pytest.fixture
def api():
    api = AsyncMock(spec=CartApiClient)
    api.authenticate = MagicMock()
    api.clear_token = MagicMock()
    api.get_cart.return_value = server_cart()
    return api


@pytest.fixture
def catalog():
    catalog = AsyncMock(spec=CatalogClient)
    catalog.get_product.return_value = make_product()
    return catalog


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def errors():
    return []


@pytest.fixture
async def session(api, catalog, store, errors):
    session = CartSession(
        api,
        catalog,
        store,
        debounce_seconds=DEBOUNCE,
        on_sync_error=errors.append,
    )
    async with session:
        yield session


@pytest.fixture
async def signed_in(session, api):
    """Authenticated session holding X (id 1, qty 2) and Y (id 2, qty 1)."""
    api.get_cart.return_value = server_cart(line(1, 10, 2), line(2, 11, 1, price="50"))
    await session.login("token")
    return session


class TestGuestCart:
    @pytest.mark.asyncio
    async def test_add_twice_makes_one_line(self, session, store):
        assert await session.add_item(10, 1)
        assert await session.add_item(10, 1)

        assert len(session.items) == 1
        item = session.items[0]
        assert item.quantity == 2
        assert item.is_local
        assert item.price == Decimal("100.0")
        assert CartState.from_json(store.get("cart")).items[0].quantity == 2

    @pytest.mark.asyncio
    async def test_stock_guard(self, session, store):
        with pytest.raises(InsufficientStockError):
            await session.add_item(10, 6)

        assert session.items == []
        assert store.get("cart") is None

    @pytest.mark.asyncio
    async def test_stock_guard_counts_existing_quantity(self, session):
        await session.add_item(10, 4)

        with pytest.raises(InsufficientStockError) as exc:
            await session.add_item(10, 2)
        assert exc.value.requested_qty == 6
        assert session.items[0].quantity == 4

    @pytest.mark.asyncio
    async def test_variant_price_snapshot(self, session, catalog):
        catalog.get_product.return_value = make_product(variants=[
            {"id": 1, "size": "M", "color": "Red", "price": 22, "stock": 3},
            {"id": 2, "size": "M", "color": "Blue", "price": 24, "stock": 4},
        ])

        await session.add_item(10, 1, size="M", color="Blue")

        item = session.items[0]
        assert item.price == Decimal("24")
        assert item.variant_id == 2

    @pytest.mark.asyncio
    async def test_catalog_outage_reports_failure(self, session, catalog, errors):
        catalog.get_product.side_effect = TransientSyncError("offline")

        assert await session.add_item(10, 1) is False
        assert session.items == []
        assert len(errors) == 1

    @pytest.mark.asyncio
    async def test_cart_survives_new_session(self, session, api, catalog, store):
        await session.add_item(10, 2)

        async with CartSession(api, catalog, store, debounce_seconds=DEBOUNCE) as reopened:
            assert reopened.get_count() == 2
            assert reopened.get_total() == Decimal("200")

    @pytest.mark.asyncio
    async def test_update_and_remove_are_local(self, session, api, store):
        await session.add_item(10, 1)
        item_id = session.items[0].id

        assert await session.update_quantity(item_id, 3)
        assert session.items[0].quantity == 3
        assert await session.remove_item(item_id)
        assert session.items == []
        api.update_item.assert_not_called()
        api.remove_item.assert_not_called()
        assert CartState.from_json(store.get("cart")).items == []

    @pytest.mark.asyncio
    async def test_update_checks_current_catalog_stock(self, session, catalog):
        await session.add_item(10, 1)
        catalog.get_product.return_value = make_product(stock=2)

        with pytest.raises(InsufficientStockError) as exc:
            await session.update_quantity(session.items[0].id, 4)

        assert exc.value.available_qty == 2
        assert session.items[0].quantity == 1
        assert catalog.get_product.await_count == 2

    @pytest.mark.asyncio
    async def test_update_during_catalog_outage_reports_failure(self, session, catalog, errors):
        await session.add_item(10, 1)
        catalog.get_product.side_effect = TransientSyncError("offline")

        assert await session.update_quantity(session.items[0].id, 2) is False
        assert session.items[0].quantity == 1
        assert len(errors) == 1

    @pytest.mark.asyncio
    async def test_update_rejects_zero(self, session):
        await session.add_item(10, 1)

        with pytest.raises(ValidationError):
            await session.update_quantity(session.items[0].id, 0)

    @pytest.mark.asyncio
    async def test_unreadable_storage_is_discarded(self, api, catalog, store):
        store.set("cart", b"not json")

        async with CartSession(api, catalog, store) as session:
            assert session.items == []
        assert store.get("cart") is None


class TestLogin:
    @pytest.mark.asyncio
    async def test_guest_items_are_merged_once(self, session, api, store):
        await session.add_item(10, 2)
        merged = server_cart(line(1, 10, 3), line(2, 11, 1))
        api.merge.return_value = merged

        assert await session.login("token") is True

        api.authenticate.assert_called_once_with("token")
        api.merge.assert_awaited_once_with([
            {"product_id": 10, "quantity": 2, "size": None, "color": None},
        ])
        assert session.mode is CartMode.AUTHENTICATED
        assert [(i.id, i.quantity) for i in session.items] == [(1, 3), (2, 1)]
        assert store.get("cart") is None

    @pytest.mark.asyncio
    async def test_empty_guest_cart_just_fetches(self, session, api):
        api.get_cart.return_value = server_cart(line(5, 10, 1))

        assert await session.login("token") is True

        api.merge.assert_not_called()
        assert [i.id for i in session.items] == [5]

    @pytest.mark.asyncio
    async def test_merge_failure_keeps_server_cart(self, session, api, store, errors):
        await session.add_item(10, 2)
        api.merge.side_effect = TransientSyncError("merge failed")
        api.get_cart.return_value = server_cart(line(7, 12, 1))

        assert await session.login("token") is False

        assert [i.id for i in session.items] == [7]
        assert store.get("cart") is None
        assert len(errors) == 1

    @pytest.mark.asyncio
    async def test_merge_and_fetch_failure_leaves_empty_cart(self, session, api):
        await session.add_item(10, 1)
        api.merge.side_effect = TransientSyncError("merge failed")
        api.get_cart.side_effect = TransientSyncError("still down")

        assert await session.login("token") is False
        assert session.items == []

    @pytest.mark.asyncio
    async def test_unexpected_merge_error_leaves_session_anonymous(self, session, api, store):
        await session.add_item(10, 2)
        api.merge.side_effect = RuntimeError("unexpected payload")

        with pytest.raises(RuntimeError):
            await session.login("token")

        assert session.mode is CartMode.ANONYMOUS
        api.clear_token.assert_called_once()
        assert session.get_count() == 2
        assert store.get("cart") is not None

    @pytest.mark.asyncio
    async def test_transitions_are_explicit(self, session):
        with pytest.raises(InvalidTransitionError):
            await session.logout()

        await session.login("token")
        with pytest.raises(InvalidTransitionError):
            await session.login("token")

    @pytest.mark.asyncio
    async def test_logout_returns_to_local_cart(self, signed_in, api):
        await signed_in.logout()

        assert signed_in.mode is CartMode.ANONYMOUS
        api.clear_token.assert_called_once()
        assert signed_in.items == []


class TestQuantityUpdates:
    @pytest.mark.asyncio
    async def test_rapid_updates_coalesce_into_one_write(self, signed_in, api):
        api.update_item.side_effect = lambda item_id, quantity: server_cart(
            line(1, 10, quantity), line(2, 11, 1, price="50"), version=2
        )

        for quantity in (3, 4, 4):
            assert await signed_in.update_quantity(1, quantity)
        assert signed_in.items[0].quantity == 4
        api.update_item.assert_not_called()

        assert await signed_in.settle() is True
        api.update_item.assert_awaited_once_with(1, 4)
        assert signed_in.state.version == 2

    @pytest.mark.asyncio
    async def test_failed_write_reverts_to_pre_update_quantity(self, signed_in, api, errors):
        api.update_item.side_effect = TransientSyncError("offline")

        await signed_in.update_quantity(1, 5)
        assert signed_in.items[0].quantity == 5

        assert await signed_in.settle() is False
        assert signed_in.items[0].quantity == 2
        assert len(errors) == 1

    @pytest.mark.asyncio
    async def test_server_rejection_also_reverts(self, signed_in, api):
        api.update_item.side_effect = InsufficientStockError(available_qty=3)

        await signed_in.update_quantity(1, 9)

        assert await signed_in.settle() is False
        assert signed_in.items[0].quantity == 2

    @pytest.mark.asyncio
    async def test_items_debounce_independently(self, signed_in, api):
        api.update_item.side_effect = lambda item_id, quantity: server_cart(
            line(1, 10, 3 if item_id == 1 else 2), line(2, 11, 4 if item_id == 2 else 1, price="50")
        )

        await signed_in.update_quantity(1, 3)
        await signed_in.update_quantity(2, 4)
        await signed_in.settle()

        assert sorted(call.args for call in api.update_item.await_args_list) == [(1, 3), (2, 4)]

    @pytest.mark.asyncio
    async def test_failure_under_newer_window_reverts_to_oldest_value(self, signed_in, api):
        release = asyncio.Event()
        sent = []

        async def failing_update(item_id, quantity):
            sent.append(quantity)
            if len(sent) == 1:
                await release.wait()
            raise TransientSyncError("offline")

        api.update_item.side_effect = failing_update

        await signed_in.update_quantity(1, 3)
        await asyncio.sleep(DEBOUNCE * 2)
        assert sent == [3]

        await signed_in.update_quantity(1, 4)
        release.set()

        assert await signed_in.settle() is False
        assert sent == [3, 4]
        assert signed_in.items[0].quantity == 2

    @pytest.mark.asyncio
    async def test_close_cancels_pending_writes(self, signed_in, api):
        await signed_in.update_quantity(1, 3)
        await signed_in.close()

        api.update_item.assert_not_called()


class TestRemoval:
    @pytest.mark.asyncio
    async def test_remove_is_optimistic(self, signed_in, api):
        api.remove_item.return_value = server_cart(line(2, 11, 1, price="50"), version=2)

        assert await signed_in.remove_item(1) is True
        assert [i.id for i in signed_in.items] == [2]

    @pytest.mark.asyncio
    async def test_failed_remove_restores_item_in_place(self, signed_in, api, errors):
        api.remove_item.side_effect = TransientSyncError("offline")

        assert await signed_in.remove_item(1) is False
        assert [i.id for i in signed_in.items] == [1, 2]
        assert len(errors) == 1

    @pytest.mark.asyncio
    async def test_bulk_remove_failure_refetches(self, signed_in, api):
        async def remove(item_id):
            if item_id == 2:
                raise TransientSyncError("offline")
            return server_cart(line(2, 11, 1, price="50"), version=2)

        api.remove_item.side_effect = remove
        api.get_cart.return_value = server_cart(line(2, 11, 1, price="50"), version=2)

        assert await signed_in.remove_items([1, 2]) is False
        assert [i.id for i in signed_in.items] == [2]
        assert api.get_cart.await_count == 2

    @pytest.mark.asyncio
    async def test_bulk_remove_success(self, signed_in, api):
        api.remove_item.side_effect = [
            server_cart(line(2, 11, 1, price="50"), version=2),
            server_cart(version=3),
        ]

        assert await signed_in.remove_items([1, 2]) is True
        assert signed_in.items == []
        assert signed_in.state.version == 3


class TestClear:
    @pytest.mark.asyncio
    async def test_missing_server_cart_counts_as_cleared(self, signed_in, api):
        api.clear.side_effect = NotFoundError("Cart not found")

        assert await signed_in.clear_cart() is True
        assert signed_in.items == []

    @pytest.mark.asyncio
    async def test_outage_restores_items(self, signed_in, api):
        api.clear.side_effect = TransientSyncError("offline")

        assert await signed_in.clear_cart() is False
        assert [i.id for i in signed_in.items] == [1, 2]

    @pytest.mark.asyncio
    async def test_guest_clear_drops_storage(self, session, store):
        await session.add_item(10, 1)

        assert await session.clear_cart() is True
        assert store.get("cart") is None


class TestAuthenticatedAdd:
    @pytest.mark.asyncio
    async def test_add_adopts_server_cart(self, signed_in, api):
        api.add_item.return_value = server_cart(line(1, 10, 3), line(2, 11, 1, price="50"), version=2)

        assert await signed_in.add_item(10, 1) is True
        api.add_item.assert_awaited_once_with(10, 1, None, None)
        assert signed_in.get_count() == 4

    @pytest.mark.asyncio
    async def test_stock_rejection_is_raised(self, signed_in, api):
        api.add_item.side_effect = InsufficientStockError()

        with pytest.raises(InsufficientStockError):
            await signed_in.add_item(10, 10)
        assert signed_in.get_count() == 3

    @pytest.mark.asyncio
    async def test_outage_returns_false(self, signed_in, api, errors):
        api.add_item.side_effect = TransientSyncError("offline")

        assert await signed_in.add_item(10, 1) is False
        assert len(errors) == 1


@pytest.mark.asyncio
async def test_totals(signed_in):
    assert signed_in.get_total() == Decimal("250")
    assert signed_in.get_count() == 3


@pytest.mark.asyncio
async def test_from_settings_uses_file_store(tmp_path, monkeypatch):
    from storefront.client import session as session_module

    monkeypatch.setattr(session_module.client_settings, "STORAGE_DIR", str(tmp_path / "device"))

    async with CartSession.from_settings() as session:
        assert session.mode is CartMode.ANONYMOUS
        assert session.items == []
    assert (tmp_path / "device").is_dir()
