"""
HTTP collaborators for the cart session

CatalogClient reads products; CartApiClient talks to the authenticated
/cart endpoints. HTTP failures are mapped onto the storefront exception
taxonomy: 400 becomes a validation/stock rejection, 404 NotFoundError, and
network errors, conflicts, rate limits and 5xx become TransientSyncError.
"""
import logging
from typing import Any, Dict, List, Optional, Union

import httpx

from storefront.core.exceptions import (
    DuplicateReviewError,
    InsufficientStockError,
    NotFoundError,
    StorefrontError,
    TransientSyncError,
    ValidationError,
)
from storefront.client.state import CartState
from storefront.schemas.product import ProductResponse

logger = logging.getLogger(__name__)


def _error_body(response: httpx.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {"detail": response.text}
    return body if isinstance(body, dict) else {"detail": str(body)}


def raise_for_response(response: httpx.Response) -> None:
    """Raise the storefront exception matching a failed response."""
    if response.is_success:
        return

    body = _error_body(response)
    detail = body.get("detail") or body.get("message") or response.reason_phrase
    if not isinstance(detail, str):
        detail = str(detail)
    code = body.get("code")
    details = body.get("details") or {}
    status = response.status_code

    if status == 400:
        if code == "INSUFFICIENT_STOCK":
            raise InsufficientStockError(
                detail,
                product_id=details.get("product_id"),
                requested_qty=details.get("requested_qty"),
                available_qty=details.get("available_qty"),
            )
        if code == "DUPLICATE_REVIEW":
            raise DuplicateReviewError(detail)
        raise ValidationError(detail, field=details.get("field"))
    if status == 404:
        raise NotFoundError(detail, resource=details.get("resource"))
    if status == 422:
        raise ValidationError(detail)

    raise TransientSyncError(detail, code=code, details={"status_code": status})


class _ApiClient:
    def __init__(
        self,
        base_url: str,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url)

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.warning(f"{method} {path} failed: {type(e).__name__}: {e}")
            raise TransientSyncError(f"Network error: {type(e).__name__}") from e

        raise_for_response(response)
        return response.json()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class CatalogClient(_ApiClient):
    """Read-only product lookups."""

    async def get_product(self, product_id: int) -> ProductResponse:
        data = await self._request("GET", f"/products/{product_id}")
        return ProductResponse.model_validate(data)


class CartApiClient(_ApiClient):
    """Authenticated server cart."""

    def __init__(self, base_url: str, client: Optional[httpx.AsyncClient] = None):
        super().__init__(base_url, client)
        self._token: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self._token is not None

    def authenticate(self, token: str) -> None:
        self._token = token

    def clear_token(self) -> None:
        self._token = None

    async def _cart_request(self, method: str, path: str, **kwargs) -> CartState:
        if self._token is None:
            raise StorefrontError("Cart API used without a token", code="NOT_AUTHENTICATED")
        headers = {"Authorization": f"Bearer {self._token}"}
        data = await self._request(method, path, headers=headers, **kwargs)
        return CartState.from_payload(data)

    async def get_cart(self) -> CartState:
        return await self._cart_request("GET", "/cart")

    async def add_item(
        self,
        product_id: int,
        quantity: int = 1,
        size: Optional[str] = None,
        color: Optional[str] = None,
    ) -> CartState:
        body = {"product_id": product_id, "quantity": quantity, "size": size, "color": color}
        return await self._cart_request("POST", "/cart", json=body)

    async def merge(self, items: List[Dict[str, Any]]) -> CartState:
        return await self._cart_request("POST", "/cart/merge", json={"items": items})

    async def update_item(self, item_id: Union[int, str], quantity: int) -> CartState:
        return await self._cart_request("PUT", f"/cart/{item_id}", json={"quantity": quantity})

    async def remove_item(self, item_id: Union[int, str]) -> CartState:
        return await self._cart_request("DELETE", f"/cart/{item_id}")

    async def clear(self) -> CartState:
        return await self._cart_request("DELETE", "/cart")
