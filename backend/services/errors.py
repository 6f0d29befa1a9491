# backend/services/errors.py
# Shop error taxonomy. Every error knows the HTTP status it maps to; the
# handler in main.py renders them, services never touch HTTP.


class ShopError(Exception):
    status_code = 400

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class InvalidQuantity(ShopError):
    status_code = 400


class OutOfStock(ShopError):
    status_code = 409

    def __init__(self, message: str = "", variant_id=None):
        super().__init__(message or "Insufficient stock")
        self.variant_id = variant_id


class ProductNotFound(ShopError):
    status_code = 404


class ItemNotFound(ShopError):
    status_code = 404


class EmptyCart(ShopError):
    status_code = 400


class OrderNotFound(ShopError):
    status_code = 404


class InvalidOrderState(ShopError):
    status_code = 409


class InvalidDiscount(ShopError):
    status_code = 400


class PaymentValidationFailed(ShopError):
    status_code = 400


class PaymentFailed(ShopError):
    status_code = 402


class PaymentIntentNotFound(PaymentFailed):
    status_code = 404


class RefundFailed(ShopError):
    status_code = 502

    def __init__(self, message: str = "", manual_action_required: bool = False):
        super().__init__(message or "Refund failed")
        self.manual_action_required = manual_action_required


class DiscountNotFound(ShopError):
    status_code = 404


class DuplicateDiscountCode(ShopError):
    status_code = 409


class NotificationNotFound(ShopError):
    status_code = 404
