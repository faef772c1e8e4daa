"""
Domain exceptions.

Every error carries the HTTP status it maps to and a customer-facing (Mongolian)
message; the API layer renders them uniformly.
"""
from typing import Any, Dict, Optional


class ShopError(Exception):
    """Base exception for the storefront domain."""

    status_code = 400

    def __init__(self, message: str, extra: Optional[Dict[str, Any]] = None):
        self.message = message
        self.extra = extra or {}
        super().__init__(message)


class ValidationError(ShopError):
    """Rejected input: missing checkout fields, malformed phone, bad amounts."""

    status_code = 400


class AuthenticationError(ShopError):
    status_code = 401


class PermissionDeniedError(ShopError):
    status_code = 403


class NotFoundError(ShopError):
    status_code = 404

    def __init__(self, entity: str, entity_id: Any, message: Optional[str] = None):
        super().__init__(message or f"{entity} олдсонгүй: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id


class InvalidTransitionError(ShopError):
    """A status change that would break the monotone order/payment lifecycle."""

    status_code = 409


class OrderCreationError(ShopError):
    status_code = 500

    def __init__(self, message: str = "Захиалга үүсгэхэд алдаа гарлаа."):
        super().__init__(message)


class CouponCodeExhaustedError(ShopError):
    status_code = 500

    def __init__(self, attempts: int):
        super().__init__(f"Failed to generate unique coupon code after {attempts} attempts")
        self.attempts = attempts


class UpstreamError(ShopError):
    """QPay or the courier API failed during a synchronous call."""

    status_code = 502

    def __init__(self, service: str, message: str, extra: Optional[Dict[str, Any]] = None):
        super().__init__(message, extra)
        self.service = service
