"""
Typed errors raised by the order services.

Each class carries the HTTP status it maps to; ``purchasing.main`` renders
all of them as ``{"success": false, "message": ...}``.

    PurchasingError (500)
    +-- NotFound (404)
    |   +-- OrderNotFound
    +-- Forbidden (403)
    +-- PreconditionFailed (400)
    +-- InvalidTransition (400)
    |   +-- TransitionConflict (409)
    +-- StoreFailure (500)
"""

from typing import Optional


class PurchasingError(Exception):
    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFound(PurchasingError):
    status_code = 404


class OrderNotFound(NotFound):
    def __init__(self, order_id):
        self.order_id = order_id
        super().__init__("Order not found")


class Forbidden(PurchasingError):
    status_code = 403


class PreconditionFailed(PurchasingError):
    status_code = 400


class InvalidTransition(PurchasingError):
    status_code = 400

    def __init__(self, message: str, current: Optional[str] = None, requested: Optional[str] = None):
        self.current = current
        self.requested = requested
        super().__init__(message)


class TransitionConflict(InvalidTransition):
    """Another request changed the order between our read and our write."""

    status_code = 409


class StoreFailure(PurchasingError):
    status_code = 500


class DuplicateOrderNumber(PurchasingError):
    """Raised by an OrderStore when the generated order number is taken."""

    status_code = 409
