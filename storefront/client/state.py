"""
Client-side cart state

Line items as the session holds them. Guest lines carry a temporary
`tmp-` id; lines adopted from the server carry the server's item id. Both
shapes serialize the same way so a guest cart can be merged losslessly.
"""
import json
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple, Union
from uuid import uuid4

from storefront.core.utils import blank_to_none
from storefront.schemas.product import ProductResponse
from storefront.services.pricing import cart_count, cart_total

TEMP_ID_PREFIX = "tmp-"

ItemId = Union[int, str]


def new_temp_id() -> str:
    return f"{TEMP_ID_PREFIX}{uuid4().hex}"


def _decimal(value) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(value))


@dataclass
class LineItem:
    id: ItemId
    product_id: int
    quantity: int
    size: Optional[str] = None
    color: Optional[str] = None
    price: Optional[Decimal] = None
    variant_id: Optional[int] = None
    product: Optional[ProductResponse] = None

    @property
    def is_local(self) -> bool:
        return isinstance(self.id, str) and self.id.startswith(TEMP_ID_PREFIX)

    def key(self) -> Tuple[int, Optional[str], Optional[str]]:
        return (self.product_id, blank_to_none(self.size), blank_to_none(self.color))

    def to_merge_entry(self) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "quantity": self.quantity,
            "size": blank_to_none(self.size),
            "color": blank_to_none(self.color),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "size": self.size,
            "color": self.color,
            "price": str(self.price) if self.price is not None else None,
            "variant_id": self.variant_id,
            "product": self.product.model_dump(mode="json") if self.product else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LineItem":
        product = data.get("product")
        product_id = data.get("product_id")
        if product_id is None and product:
            product_id = product.get("id")
        return cls(
            id=data["id"],
            product_id=int(product_id),
            quantity=int(data["quantity"]),
            size=data.get("size"),
            color=data.get("color"),
            price=_decimal(data.get("price")),
            variant_id=data.get("variant_id"),
            product=ProductResponse.model_validate(product) if product else None,
        )


@dataclass
class CartState:
    items: List[LineItem] = field(default_factory=list)
    version: int = 0

    def find(self, item_id: ItemId) -> Optional[LineItem]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def index_of(self, item_id: ItemId) -> int:
        for index, item in enumerate(self.items):
            if item.id == item_id:
                return index
        return -1

    def find_line(self, product_id: int, size: Optional[str], color: Optional[str]) -> Optional[LineItem]:
        key = (product_id, blank_to_none(size), blank_to_none(color))
        for item in self.items:
            if item.key() == key:
                return item
        return None

    def to_json(self) -> bytes:
        return json.dumps({"items": [item.to_dict() for item in self.items]}).encode("utf-8")

    @classmethod
    def from_json(cls, raw: bytes) -> "CartState":
        data = json.loads(raw.decode("utf-8"))
        return cls(items=[LineItem.from_dict(item) for item in data.get("items", [])])

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "CartState":
        """Build state from a server cart response."""
        return cls(
            items=[LineItem.from_dict(item) for item in payload.get("items") or []],
            version=payload.get("version") or 0,
        )


def get_total(state: CartState) -> Decimal:
    return cart_total(state.items)


def get_count(state: CartState) -> int:
    return cart_count(state.items)
