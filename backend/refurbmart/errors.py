"""
Error Taxonomy
==============

Operation-level failures raised by the catalog, account and order code.
The API layer turns every one of them into

    {"success": false, "error": "<message>"}

with the status code carried by the exception class.
"""

from typing import Optional


class MarketplaceError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(MarketplaceError):
    status_code = 400
    default_message = "Invalid request"


class UnauthorizedError(MarketplaceError):
    status_code = 401
    default_message = "Not authorized"


class ForbiddenError(MarketplaceError):
    status_code = 403
    default_message = "Forbidden"


class ForbiddenTransitionError(ForbiddenError):
    default_message = "Order status transition not allowed"


class NotFoundError(MarketplaceError):
    status_code = 404
    default_message = "Not found"


class InvalidStateError(MarketplaceError):
    status_code = 400
    default_message = "Invalid state"


class InsufficientStockError(MarketplaceError):
    """Requested quantity exceeds what is in stock. Safe to retry."""

    status_code = 409

    def __init__(self, product_name: str, available: int):
        self.product_name = product_name
        self.available = available
        super().__init__(f"Not enough stock for {product_name}. Available: {available}")


class InternalError(MarketplaceError):
    status_code = 500
