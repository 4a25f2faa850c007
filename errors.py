"""
Error taxonomy for the shop backend.

Every failure raised by the pricing, cart and order code is a ShopError.
The HTTP layer turns it into ``{"detail": message}`` with ``status_code``.
"""


class ShopError(Exception):
    status_code = 500
    default_message = "Internal Server Error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


# ----------------------------------------------------------------------------
# Families
# ----------------------------------------------------------------------------

class ValidationError(ShopError):
    status_code = 400
    default_message = "Invalid request"


class NotFoundError(ShopError):
    status_code = 404
    default_message = "Not found"


class StateConflictError(ShopError):
    status_code = 400
    default_message = "Request conflicts with current state"


class AuthorizationError(ShopError):
    status_code = 401
    default_message = "Not authorized"


class PersistenceError(ShopError):
    status_code = 500
    default_message = "Storage failure, please retry"


# ----------------------------------------------------------------------------
# Validation
# ----------------------------------------------------------------------------

class InvalidPrice(ValidationError):
    default_message = "Price must not be negative"


class InvalidDiscount(ValidationError):
    default_message = "Discount percentage must be between 0 and 100"


class InvalidQuantity(ValidationError):
    default_message = "Invalid quantity"


class VariantRequired(ValidationError):
    default_message = "A variant must be selected for this product"


class EmptyCart(ValidationError):
    default_message = "Your cart is empty"


# ----------------------------------------------------------------------------
# Not found
# ----------------------------------------------------------------------------

class ProductNotFound(NotFoundError):
    default_message = "Product not found"


class VariantNotFound(NotFoundError):
    default_message = "Variant not found"


class ItemNotFound(NotFoundError):
    default_message = "Item not found in cart"


class OrderNotFound(NotFoundError):
    default_message = "Order not found"


class CodeNotFound(NotFoundError):
    default_message = "Discount code not found"


class AdvertisementNotFound(NotFoundError):
    default_message = "Advertisement not found"


class CategoryNotFound(NotFoundError):
    default_message = "Category not found"


# ----------------------------------------------------------------------------
# State conflicts
# ----------------------------------------------------------------------------

class InsufficientStock(StateConflictError):
    default_message = "Insufficient stock"


class CodeExpired(StateConflictError):
    default_message = "Discount code is not valid at this time"


class MinOrderNotMet(StateConflictError):
    default_message = "Order amount is below the minimum for this discount code"


class UsageLimitReached(StateConflictError):
    default_message = "Discount code usage limit reached"


class AlreadyReviewed(StateConflictError):
    default_message = "Product already reviewed"
