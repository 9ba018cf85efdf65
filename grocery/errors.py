"""
Grocery Manager — error kinds

Business errors are raised to the caller as-is and never retried.
ConcurrencyConflict is the only transient kind; the retry policy
re-attempts it and surfaces the last one once attempts run out.
"""


class GroceryError(Exception):
    """Base class for every error the core raises on purpose."""


class ProductNotFound(GroceryError):
    def __init__(self, code: str):
        super().__init__(f"Product not found with code: {code}")
        self.code = code


class ProductAlreadyExists(GroceryError):
    def __init__(self, code: str):
        super().__init__(f"Product with code {code} already exists")
        self.code = code


class ProductDeletionConflict(GroceryError):
    def __init__(self, code: str):
        super().__init__(f"Cannot delete product {code} with active orders")
        self.code = code


class InsufficientStock(GroceryError):
    def __init__(self, code: str, available: int, requested: int):
        super().__init__(
            f"Insufficient stock for product {code}. "
            f"Available: {available}, Requested: {requested}"
        )
        self.code = code
        self.available = available
        self.requested = requested


class OrderNotFound(GroceryError):
    def __init__(self, code: str):
        super().__init__(f"Order not found with code: {code}")
        self.code = code


class InvalidOrderStatus(GroceryError):
    pass


class OrderExpired(GroceryError):
    pass


class ConcurrencyConflict(GroceryError):
    """Lock timeout, deadlock or lost compare-and-swap."""
