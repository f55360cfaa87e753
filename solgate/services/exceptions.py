"""Domain-specific exceptions."""

from __future__ import annotations

from decimal import Decimal


class ServiceError(Exception):
    pass


class NotFound(ServiceError):
    pass


class TransactionNotFound(NotFound):
    """The signature is unknown to the RPC node or not confirmed yet; retryable."""


class Unauthorized(ServiceError):
    pass


class InvalidState(ServiceError):
    def __init__(self, message: str, *, status: str | None = None) -> None:
        super().__init__(message)
        self.status = status


class InvoiceExpired(ServiceError):
    pass


class InvalidPurchase(ServiceError):
    pass


class DuplicateTransaction(ServiceError):
    pass


class VerificationError(ServiceError):
    pass


class MemoMismatch(VerificationError):
    pass


class TransactionFailed(VerificationError):
    pass


class InsufficientAmount(VerificationError):
    def __init__(self, message: str, *, received: Decimal, shortfall: Decimal) -> None:
        super().__init__(message)
        self.received = received
        self.shortfall = shortfall


class RateLimitExceeded(ServiceError):
    pass


class TransportFailure(ServiceError):
    pass


class ChainClientError(ServiceError):
    pass


__all__ = [
    "ChainClientError",
    "DuplicateTransaction",
    "InsufficientAmount",
    "InvalidPurchase",
    "InvalidState",
    "InvoiceExpired",
    "MemoMismatch",
    "NotFound",
    "RateLimitExceeded",
    "ServiceError",
    "TransactionFailed",
    "TransactionNotFound",
    "TransportFailure",
    "Unauthorized",
    "VerificationError",
]
