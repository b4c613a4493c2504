"""
Error taxonomy shared by the fulfillment services.

Every error carries a stable machine-readable ``code``, the HTTP status the
API layer answers with, and structured context for logging. Internal kinds
(``AlreadyMaterializedError``, ``AlreadyReducedError``) are raised inside a
transaction to abort it and are converted into success results by the
service that raised them.
"""

from typing import Any


class FulfillmentError(Exception):
    """Base exception for fulfillment workflow errors."""

    code = "FULFILLMENT_ERROR"
    status_code = 500
    retryable = False

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        return self.message


class ValidationError(FulfillmentError):
    """Raised when a required field is missing or malformed."""

    code = "VALIDATION_ERROR"
    status_code = 400

    def __init__(self, message: str, field: str | None = None, **context: Any):
        super().__init__(message, field=field, **context)
        self.field = field


class MalformedInputError(FulfillmentError):
    """Raised when an encoded order payload cannot be parsed."""

    code = "MALFORMED_INPUT"
    status_code = 400


class OrderNotFoundError(FulfillmentError):
    """Raised when a referenced order does not exist or is not visible."""

    code = "ORDER_NOT_FOUND"
    status_code = 404


class PaymentNotFoundError(FulfillmentError):
    """Raised when a referenced payment does not exist or is not visible."""

    code = "PAYMENT_NOT_FOUND"
    status_code = 404


class DeliveryItemNotFoundError(FulfillmentError):
    """Raised when a referenced delivery item does not exist."""

    code = "DELIVERY_ITEM_NOT_FOUND"
    status_code = 404


class AccessDeniedError(FulfillmentError):
    """Raised when the actor may not act on behalf of the resource owner."""

    code = "ACCESS_DENIED"
    status_code = 403


class DuplicatePaymentError(FulfillmentError):
    """Raised when a payment already exists for an existing order."""

    code = "DUPLICATE_PAYMENT"
    status_code = 400


class AddressResolutionError(FulfillmentError):
    """Raised when an inline delivery address could not be created."""

    code = "ADDRESS_RESOLUTION_FAILED"
    status_code = 400


class AlreadyMaterializedError(FulfillmentError):
    """Raised inside the creation transaction when delivery items already exist."""

    code = "ALREADY_MATERIALIZED"
    status_code = 200


class AlreadyReducedError(FulfillmentError):
    """Raised inside the reduction transaction when stock was already reduced."""

    code = "ALREADY_REDUCED"
    status_code = 200


class TransactionTimeoutError(FulfillmentError):
    """Raised when a database transaction exceeds its deadline."""

    code = "TRANSACTION_TIMEOUT"
    status_code = 503
    retryable = True


class PersistenceError(FulfillmentError):
    """Raised when the database rejects or fails a unit of work."""

    code = "PERSISTENCE_ERROR"
    status_code = 500
    retryable = True
