"""Domain exceptions translated to HTTP responses at the route boundary."""


class PriceWatchError(Exception):
    """Base class for Price Watch errors."""
    pass


class ProductNotFoundError(PriceWatchError, LookupError):
    """Raised when no product matches the given id."""

    def __init__(self, product_id: str):
        super().__init__(f"Product not found: {product_id}")
        self.product_id = product_id


class InvalidPayloadError(PriceWatchError, ValueError):
    """Raised when a request body is missing required fields."""
    pass
