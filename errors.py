"""
Storefront errors

Every domain failure is raised as a StorefrontError subclass. Each carries the
HTTP status the API answers with and a stable, user-facing message.
"""


class StorefrontError(Exception):
    status_code = 500
    default_message = "Server error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidArgument(StorefrontError):
    status_code = 400
    default_message = "Invalid request"


class InsufficientStock(StorefrontError):
    status_code = 400
    default_message = "Insufficient stock"


class EmptyCart(StorefrontError):
    status_code = 400
    default_message = "Cart is empty"


class Unauthenticated(StorefrontError):
    status_code = 401
    default_message = "Access denied. No token provided."


class Forbidden(StorefrontError):
    status_code = 403
    default_message = "Not authorized to access this route"


class NotFound(StorefrontError):
    status_code = 404
    default_message = "Resource not found"


class Conflict(StorefrontError):
    status_code = 409
    default_message = "Resource was modified concurrently, please retry"


class Internal(StorefrontError):
    """Unexpected store or infrastructure failure."""

    status_code = 500
    default_message = "Server error"


class ServiceUnavailable(StorefrontError):
    """Store timed out or is unreachable; the request may be retried."""

    status_code = 503
    default_message = "Database connection timeout. Please try again."
