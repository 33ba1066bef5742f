# Overview: Domain error taxonomy shared by services and routes.

"""
Every failure the core can report is one of these classes.

Each error carries a human-readable message, a `details` dict naming the
product/batch/line involved where there is one, and the HTTP status the
routes answer with. Routes never leak raw exceptions; anything not listed
here is logged and reported as a 500.
"""

from __future__ import annotations


class PharmacyError(Exception):
    """Base class for expected, user-visible failures."""
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(PharmacyError, ValueError):
    """400-level input problem, rejected before any mutation."""


class EmptyBasketError(ValidationError):
    """Sale submitted with no line items."""


class ExpiredBatchRejectedError(PharmacyError):
    """Stock-in attempted with an expiry date that is not in the future."""


class NotFoundError(PharmacyError):
    status_code = 404


class ProductNotFoundError(NotFoundError):
    """A sale line or adjustment names a product that does not exist."""


class NoBatchFoundError(NotFoundError):
    """No sellable batch to apply an adjustment to."""


class InsufficientStockError(PharmacyError):
    """Requested quantity exceeds what is sellable across all eligible batches."""
    status_code = 409


class ConcurrentModificationError(InsufficientStockError):
    """
    Lost a compare-and-swap race on a batch.

    Subclasses InsufficientStockError: from the caller's point of view the
    line could not be filled.
    """


class InsufficientPaymentError(PharmacyError):
    status_code = 402


class PersistenceFailureError(PharmacyError):
    """The database was unavailable or the transaction was aborted."""
    status_code = 503
