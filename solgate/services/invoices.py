"""Invoice creation, pricing and the pending → terminal lifecycle."""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from solgate.config import SolGateSettings, get_settings
from solgate.db.models.core import Invoice
from solgate.domain.models import InvoiceStatus, Product, Promotion
from solgate.logging import logger
from solgate.services.conversations import ConversationService
from solgate.services.exceptions import (
    InvalidPurchase,
    InvalidState,
    InvoiceExpired,
    NotFound,
    Unauthorized,
)
from solgate.services.subscriptions import SubscriptionLedger
from solgate.utils.datetime import as_utc, utc_now

AMOUNT_QUANTUM = Decimal("0.000001")


def price_for(
    product: Product,
    months: int,
    setup_already_paid: bool,
    promotion: Promotion | None = None,
) -> Decimal:
    """Setup fee (unless already paid) plus ``months`` of the monthly fee.

    A promotion replaces the monthly part for its exact product/duration. A
    renewal-only promotion does not apply before the setup fee has been paid,
    so a first purchase of that duration is charged the list price.
    """

    setup = Decimal(0) if setup_already_paid else product.setup_fee
    amount = setup + product.monthly_fee * months
    if (
        promotion is not None
        and promotion.enabled
        and promotion.product == product.key
        and promotion.months == months
        and (setup_already_paid or not promotion.renewal_only)
    ):
        amount = setup + promotion.price
    return amount.quantize(AMOUNT_QUANTUM, rounding=ROUND_HALF_UP)


def generate_memo(prefix: str, user_id: int, product: str, now: datetime) -> str:
    return f"{prefix}-{user_id}-{product}-{int(now.timestamp())}-{secrets.token_hex(6)}"


def transition(invoice: Invoice, target: InvoiceStatus) -> None:
    current = InvoiceStatus(invoice.status)
    if not current.can_transition(target):
        raise InvalidState(
            f"Invoice #{invoice.id} is already {current.value}.", status=current.value
        )
    invoice.status = target


class InvoiceService:
    def __init__(self, session: AsyncSession, settings: SolGateSettings | None = None) -> None:
        self.session = session
        self.settings = settings or get_settings()

    @property
    def ttl(self) -> timedelta:
        return timedelta(minutes=self.settings.billing.invoice_ttl_minutes)

    def product(self, key: str) -> Product:
        product = self.settings.billing.products.get(key)
        if product is None:
            raise InvalidPurchase(f"Unknown product: {key}")
        return product

    async def quote(self, user_id: int, product_key: str, months: int) -> Decimal:
        product = self.product(product_key)
        setup_paid = await SubscriptionLedger(self.session, self.settings).setup_paid(
            user_id, product_key
        )
        return price_for(product, months, setup_paid, self.settings.billing.promotion)

    async def create(
        self,
        user_id: int,
        product_key: str,
        months: int,
        *,
        now: datetime | None = None,
    ) -> Invoice:
        max_months = self.settings.billing.max_months_per_purchase
        if months <= 0 or months > max_months:
            raise InvalidPurchase(f"Duration must be between 1 and {max_months} months.")
        product = self.product(product_key)
        now = now or utc_now()

        amount = await self.quote(user_id, product.key, months)
        invoice = Invoice(
            user_id=user_id,
            product=product.key,
            months=months,
            amount_due=amount,
            memo=generate_memo(self.settings.billing.memo_prefix, user_id, product.key, now),
            status=InvoiceStatus.PENDING,
            created_at=now,
        )
        self.session.add(invoice)
        await self.session.flush()
        logger.info(
            "invoice_created",
            invoice_id=invoice.id,
            user_id=user_id,
            product=product.key,
            months=months,
            amount=str(amount),
        )
        return invoice

    async def get(self, invoice_id: int, *, for_update: bool = False) -> Invoice | None:
        stmt = select(Invoice).where(Invoice.id == invoice_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    def is_expired(self, invoice: Invoice, *, now: datetime | None = None) -> bool:
        now = now or utc_now()
        return now - as_utc(invoice.created_at) > self.ttl

    async def expire(self, invoice: Invoice) -> bool:
        """Move a pending invoice to expired; no-op for any other status."""

        result = await self.session.execute(
            update(Invoice)
            .where(Invoice.id == invoice.id, Invoice.status == InvoiceStatus.PENDING)
            .values(status=InvoiceStatus.EXPIRED)
        )
        expired = bool(result.rowcount)
        if expired:
            logger.info("invoice_expired", invoice_id=invoice.id, user_id=invoice.user_id)
        return expired

    async def expire_stale(self, *, now: datetime | None = None) -> int:
        cutoff = (now or utc_now()) - self.ttl
        result = await self.session.execute(
            update(Invoice)
            .where(Invoice.status == InvoiceStatus.PENDING, Invoice.created_at < cutoff)
            .values(status=InvoiceStatus.EXPIRED)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def cancel(
        self, invoice_id: int, requester: int, *, now: datetime | None = None
    ) -> Invoice:
        invoice = await self.get(invoice_id, for_update=True)
        if invoice is None or invoice.user_id != requester:
            raise NotFound(f"Invoice #{invoice_id} not found.")
        if invoice.status != InvoiceStatus.PENDING:
            return invoice

        transition(invoice, InvoiceStatus.CANCELLED)
        await ConversationService(self.session).reset(requester, now=now)
        await self.session.flush()
        logger.info("invoice_cancelled", invoice_id=invoice.id, user_id=requester)
        return invoice

    async def get_owned_pending(
        self, invoice_id: int, user_id: int, *, now: datetime | None = None
    ) -> Invoice:
        """Load an invoice the user may still pay, expiring it on the spot if its TTL ran out."""

        invoice = await self.get(invoice_id)
        if invoice is None:
            raise NotFound(f"Invoice #{invoice_id} not found.")
        if invoice.user_id != user_id:
            raise Unauthorized(f"Invoice #{invoice_id} belongs to another user.")
        status = InvoiceStatus(invoice.status)
        if status != InvoiceStatus.PENDING:
            raise InvalidState(f"Invoice #{invoice_id} is already {status.value}.", status=status.value)
        if self.is_expired(invoice, now=now):
            await self.expire(invoice)
            await ConversationService(self.session).reset(user_id, now=now)
            raise InvoiceExpired(f"Invoice #{invoice_id} has expired.")
        return invoice


__all__ = [
    "AMOUNT_QUANTUM",
    "InvoiceService",
    "generate_memo",
    "price_for",
    "transition",
]
