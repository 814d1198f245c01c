class MarketplaceError(Exception):
    """Base for errors that map onto an HTTP response."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str = None, details=None):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.code, "message": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class Unauthenticated(MarketplaceError):
    status_code = 401
    code = "unauthenticated"


class Forbidden(MarketplaceError):
    status_code = 403
    code = "forbidden"


class ValidationError(MarketplaceError):
    status_code = 400
    code = "validation_error"


class EmptyCart(MarketplaceError):
    status_code = 400
    code = "empty_cart"

    def __init__(self, message: str = "Cart is empty"):
        super().__init__(message)


class Conflict(MarketplaceError):
    status_code = 400
    code = "conflict"

    def __init__(self, field: str, message: str):
        super().__init__(message, details=[{"field": field, "message": message}])
        self.field = field


class NotFound(MarketplaceError):
    status_code = 404
    code = "not_found"


class OutOfStock(MarketplaceError):
    status_code = 409
    code = "out_of_stock"

    def __init__(self, product_id: str, requested: int):
        super().__init__(
            f"Insufficient stock for product {product_id}",
            details=[{"productId": product_id, "requested": requested}],
        )
        self.product_id = product_id


class InvalidTransition(MarketplaceError):
    status_code = 409
    code = "invalid_transition"

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move order from '{current}' to '{target}'")
        self.current = current
        self.target = target


class PaymentProviderError(MarketplaceError):
    status_code = 502
    code = "payment_provider_error"


class DatabaseUnavailable(MarketplaceError):
    status_code = 500
    code = "database_unavailable"
