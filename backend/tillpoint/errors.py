# Overview: Error taxonomy shared by the checkout, ledger, drawer and cancellation services.

from __future__ import annotations


class PosError(Exception):
    """
    Base class for business errors raised by the service layer.

    Routes translate these to {"error": str(e), "details": e.details}
    with status_code. Anything that is not a PosError is a 500.
    """
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class NotFound(PosError):
    """Missing product, sale, customer or drawer."""
    status_code = 404


class InvalidInput(PosError):
    """Bad cart shape, bad amounts, or a request the entity's state forbids."""
    status_code = 400


class InsufficientStock(PosError):
    """Requested quantity exceeds what is on hand."""
    status_code = 409


class DrawerNotOpen(PosError):
    """Cash sale attempted without an open drawer for the operator."""
    status_code = 409


class DrawerAlreadyOpen(PosError):
    status_code = 409


class NoOpenDrawer(PosError):
    status_code = 404


class CancellationWindowExpired(PosError):
    status_code = 409


class ConcurrencyConflict(PosError):
    """Lock or serialization failure that outlived the retry budget. Safe to retry."""
    status_code = 503
