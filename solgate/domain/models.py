"""Pydantic models and state enums shared across service/bot layers."""

from __future__ import annotations

import enum
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field


class Product(BaseModel):
    key: str
    name: str
    icon: str = "•"
    setup_fee: Decimal
    monthly_fee: Decimal


class Promotion(BaseModel):
    enabled: bool = True
    product: str = "paid_access"
    months: int = Field(default=5, ge=1)
    price: Decimal = Decimal("1.0")
    renewal_only: bool = True


class InvoiceStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return not INVOICE_TRANSITIONS[self]

    def can_transition(self, target: InvoiceStatus) -> bool:
        return target in INVOICE_TRANSITIONS[self]


INVOICE_TRANSITIONS: dict[InvoiceStatus, frozenset[InvoiceStatus]] = {
    InvoiceStatus.PENDING: frozenset(
        {InvoiceStatus.PAID, InvoiceStatus.CANCELLED, InvoiceStatus.EXPIRED}
    ),
    InvoiceStatus.PAID: frozenset(),
    InvoiceStatus.CANCELLED: frozenset(),
    InvoiceStatus.EXPIRED: frozenset(),
}


class ConversationState(str, enum.Enum):
    NONE = "none"
    AWAITING_TRANSACTION = "awaiting_tx"


class ParsedInstruction(BaseModel):
    """One top-level instruction from a ``jsonParsed`` transaction."""

    program_id: str
    program: str | None = None
    parsed: Any = None

    @property
    def parsed_type(self) -> str | None:
        if isinstance(self.parsed, dict):
            return self.parsed.get("type")
        return None

    @property
    def info(self) -> Any:
        if isinstance(self.parsed, dict):
            return self.parsed.get("info")
        return None


class ParsedTransaction(BaseModel):
    signature: str
    slot: int | None = None
    error: Any = None
    instructions: list[ParsedInstruction] = Field(default_factory=list)
    log_messages: list[str] = Field(default_factory=list)


class VerificationResult(BaseModel):
    signature: str
    expected_lamports: int
    received_lamports: int


__all__ = [
    "ConversationState",
    "INVOICE_TRANSITIONS",
    "InvoiceStatus",
    "ParsedInstruction",
    "ParsedTransaction",
    "Product",
    "Promotion",
    "VerificationResult",
]
