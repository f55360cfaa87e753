"""On-chain payment verification and the confirm-and-credit unit of work."""

from __future__ import annotations

import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_FLOOR, Decimal
from typing import Iterable, Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from solgate.config import SolGateSettings, get_settings
from solgate.db.models.core import Invoice, Payment
from solgate.domain.models import InvoiceStatus, ParsedTransaction, VerificationResult
from solgate.logging import logger
from solgate.services.conversations import ConversationService
from solgate.services.exceptions import (
    DuplicateTransaction,
    InsufficientAmount,
    InvoiceExpired,
    MemoMismatch,
    TransactionFailed,
    TransactionNotFound,
)
from solgate.services.invoices import InvoiceService, transition
from solgate.services.solana import LAMPORTS_PER_SOL
from solgate.services.subscriptions import SubscriptionLedger
from solgate.utils.datetime import utc_now
from solgate.utils.locks import KeyedLock

SIGNATURE_PATTERN = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{40,120}$")
SYSTEM_PROGRAM = "system"


def looks_like_signature(text: str) -> bool:
    """Cheap base58/length screen applied before touching the RPC node."""

    return bool(SIGNATURE_PATTERN.fullmatch(text.strip()))


def sol_to_lamports(amount: Decimal) -> int:
    return int((Decimal(amount) * LAMPORTS_PER_SOL).to_integral_value(rounding=ROUND_FLOOR))


def lamports_to_sol(lamports: int) -> Decimal:
    return Decimal(lamports) / LAMPORTS_PER_SOL


class TransactionSource(Protocol):
    async def fetch_transaction(self, signature: str) -> ParsedTransaction | None: ...


@dataclass(slots=True)
class Confirmation:
    invoice_id: int
    product: str
    months: int
    expires_at: datetime
    received_lamports: int


class PaymentVerifier:
    def __init__(
        self,
        chain: TransactionSource,
        *,
        treasury_address: str,
        memo_program_ids: Iterable[str],
    ) -> None:
        self.chain = chain
        self.treasury_address = treasury_address
        self.memo_program_ids = frozenset(memo_program_ids)

    async def verify(self, invoice: Invoice, signature: str) -> VerificationResult:
        """Prove that ``signature`` paid this invoice: right memo, right treasury, enough lamports."""

        tx = await self.chain.fetch_transaction(signature)
        if tx is None:
            raise TransactionNotFound("Transaction not found or not confirmed yet.")
        if tx.error is not None:
            raise TransactionFailed("Transaction failed on-chain.")

        if not self.memo_matches(tx, invoice.memo):
            raise MemoMismatch("Memo/Reference does not match the invoice.")

        expected = sol_to_lamports(invoice.amount_due)
        received = self.received_lamports(tx)
        if received < expected:
            received_sol = lamports_to_sol(received)
            shortfall = lamports_to_sol(expected - received)
            raise InsufficientAmount(
                f"Insufficient payment received ({received_sol:.4f} SOL, "
                f"short by {shortfall:.6f} SOL).",
                received=received_sol,
                shortfall=shortfall,
            )
        return VerificationResult(
            signature=signature,
            expected_lamports=expected,
            received_lamports=received,
        )

    def memo_matches(self, tx: ParsedTransaction, memo: str) -> bool:
        for ix in tx.instructions:
            if ix.program_id not in self.memo_program_ids:
                continue
            # jsonParsed renders memos as a bare string; some clients wrap it.
            text = ix.parsed if isinstance(ix.parsed, str) else None
            if text is None and ix.parsed_type == "memo" and isinstance(ix.info, str):
                text = ix.info
            if text == memo:
                return True
        return memo in "\n".join(tx.log_messages)

    def received_lamports(self, tx: ParsedTransaction) -> int:
        total = 0
        for ix in tx.instructions:
            if ix.program != SYSTEM_PROGRAM or ix.parsed_type != "transfer":
                continue
            info = ix.info
            if not isinstance(info, dict):
                continue
            if str(info.get("destination")) == self.treasury_address:
                total += int(info.get("lamports") or 0)
        return total


class PaymentService:
    """Confirm a user's claimed transaction against one of their invoices.

    Everything for one user runs under that user's lock, so two confirmations
    cannot both pass the duplicate check before either records the payment.
    """

    def __init__(
        self,
        session: AsyncSession,
        verifier: PaymentVerifier,
        locks: KeyedLock,
        settings: SolGateSettings | None = None,
    ) -> None:
        self.session = session
        self.verifier = verifier
        self.locks = locks
        self.settings = settings or get_settings()
        self.invoices = InvoiceService(session, self.settings)

    async def is_recorded(self, signature: str) -> bool:
        stmt = select(Payment.id).where(Payment.tx_signature == signature)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def confirm(
        self,
        user_id: int,
        invoice_id: int,
        signature: str,
        *,
        on_verifying: Callable[[], Awaitable[object]] | None = None,
        now: datetime | None = None,
    ) -> Confirmation:
        async with self.locks.hold(user_id):
            try:
                invoice = await self.invoices.get_owned_pending(invoice_id, user_id, now=now)
            except InvoiceExpired:
                await self.session.commit()
                raise

            if await self.is_recorded(signature):
                raise DuplicateTransaction("This transaction signature has already been used.")

            # Nothing may stay pending across the RPC call; all writes happen in _commit.
            await self.session.commit()
            if on_verifying is not None:
                await on_verifying()
            result = await self.verifier.verify(invoice, signature)
            return await self._commit(invoice, result, now=now or utc_now())

    async def _commit(
        self, invoice: Invoice, result: VerificationResult, *, now: datetime
    ) -> Confirmation:
        """Record the payment, mark the invoice paid and extend access as one transaction."""

        try:
            locked = await self.invoices.get(invoice.id, for_update=True)
            transition(locked, InvoiceStatus.PAID)

            self.session.add(
                Payment(tx_signature=result.signature, invoice_id=locked.id, recorded_at=now)
            )
            try:
                await self.session.flush()
            except IntegrityError as exc:
                raise DuplicateTransaction(
                    "This transaction signature has already been used."
                ) from exc

            locked.paid_at = now
            locked.tx_signature = result.signature
            expires_at = await SubscriptionLedger(self.session, self.settings).extend(
                locked.user_id, locked.product, locked.months, now=now
            )
            await ConversationService(self.session).reset(locked.user_id, now=now)
            confirmation = Confirmation(
                invoice_id=locked.id,
                product=locked.product,
                months=locked.months,
                expires_at=expires_at,
                received_lamports=result.received_lamports,
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            "payment_confirmed",
            invoice_id=confirmation.invoice_id,
            user_id=invoice.user_id,
            signature=result.signature,
            received_lamports=result.received_lamports,
            expected_lamports=result.expected_lamports,
        )
        return confirmation


__all__ = [
    "Confirmation",
    "PaymentService",
    "PaymentVerifier",
    "TransactionSource",
    "lamports_to_sol",
    "looks_like_signature",
    "sol_to_lamports",
]
