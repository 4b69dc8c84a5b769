"""
Storefront Exception Hierarchy

Structured exception classes for the catalog and cart. All exceptions carry
a code, message and details so handlers can log and serialize them uniformly.

Exception Hierarchy:
    StorefrontError
    ├── ValidationError
    ├── InsufficientStockError
    ├── DuplicateReviewError
    ├── NotFoundError
    ├── CartConflictError
    ├── TransientSyncError
    └── InvalidTransitionError
"""
import logging
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)


class StorefrontError(Exception):
    """
    Base exception for all storefront errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context for debugging
        status_code: HTTP status used when the error reaches an API handler
    """

    default_code: str = "STOREFRONT_ERROR"
    status_code: int = 500

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


class ValidationError(StorefrontError):
    """Malformed input to a product, variant, review or cart write."""
    default_code = "VALIDATION_ERROR"
    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        details["field"] = field
        self.field = field
        super().__init__(message, details=details, **kwargs)


class InsufficientStockError(StorefrontError):
    """Requested quantity exceeds resolved availability."""
    default_code = "INSUFFICIENT_STOCK"
    status_code = 400

    def __init__(
        self,
        message: str = "Insufficient stock",
        product_id: Optional[int] = None,
        requested_qty: Optional[int] = None,
        available_qty: Optional[int] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({
            "product_id": product_id,
            "requested_qty": requested_qty,
            "available_qty": available_qty,
        })
        self.requested_qty = requested_qty
        self.available_qty = available_qty
        super().__init__(message, details=details, **kwargs)


class DuplicateReviewError(StorefrontError):
    """Same user reviewing the same product twice."""
    default_code = "DUPLICATE_REVIEW"
    status_code = 400


class NotFoundError(StorefrontError):
    """Missing cart, cart item or product reference."""
    default_code = "NOT_FOUND"
    status_code = 404

    def __init__(self, message: str, resource: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        details["resource"] = resource
        self.resource = resource
        super().__init__(message, details=details, **kwargs)


class CartConflictError(StorefrontError):
    """Cart was written by another request since it was read."""
    default_code = "CART_CONFLICT"
    status_code = 409


class TransientSyncError(StorefrontError):
    """Network or persistence failure during an optimistic remote write."""
    default_code = "TRANSIENT_SYNC_ERROR"
    status_code = 503


class InvalidTransitionError(StorefrontError):
    """Cart session asked to make a transition its current state forbids."""
    default_code = "INVALID_TRANSITION"
    status_code = 409
