"""Subscription ledger: per-user, per-product expiry bookkeeping."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from solgate.config import SolGateSettings, get_settings
from solgate.db.models.core import Subscription
from solgate.logging import logger
from solgate.utils.datetime import as_utc, ceil_days, utc_now


class SubscriptionLedger:
    """Authoritative record of who has access to what, and until when.

    ``extend`` is the only writer of ``expires_at``. It must run once per
    confirmed payment, inside the same transaction that records the payment.
    """

    def __init__(self, session: AsyncSession, settings: SolGateSettings | None = None) -> None:
        self.session = session
        self.settings = settings or get_settings()

    @property
    def month(self) -> timedelta:
        return timedelta(days=self.settings.billing.days_per_month)

    async def get(self, user_id: int, product: str, *, for_update: bool = False) -> Subscription | None:
        stmt = select(Subscription).where(
            Subscription.user_id == user_id,
            Subscription.product == product,
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_user(self, user_id: int, *, refresh: bool = False) -> Sequence[Subscription]:
        stmt = (
            select(Subscription)
            .where(Subscription.user_id == user_id)
            .order_by(Subscription.product)
        )
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return list(result.scalars())

    async def users_with_subscriptions(self) -> list[int]:
        stmt = select(Subscription.user_id).distinct().order_by(Subscription.user_id)
        result = await self.session.execute(stmt)
        return list(result.scalars())

    async def setup_paid(self, user_id: int, product: str) -> bool:
        subscription = await self.get(user_id, product)
        return bool(subscription and subscription.setup_paid)

    async def has_access(self, user_id: int, product: str, *, now: datetime | None = None) -> bool:
        now = now or utc_now()
        bundle = await self.get(user_id, self.settings.billing.bundle_product)
        if self.is_active(bundle, now):
            return True
        if product == self.settings.billing.bundle_product:
            return False
        return self.is_active(await self.get(user_id, product), now)

    async def has_any_active_access(self, user_id: int, *, now: datetime | None = None) -> bool:
        now = now or utc_now()
        subscriptions = await self.list_for_user(user_id, refresh=True)
        return any(self.is_active(sub, now) for sub in subscriptions)

    async def extend(
        self,
        user_id: int,
        product: str,
        months: int,
        *,
        now: datetime | None = None,
    ) -> datetime:
        """Add ``months`` to the product's expiry, counting from the later of expiry and now."""

        if months <= 0:
            raise ValueError("months must be positive")
        now = now or utc_now()
        subscription = await self.get(user_id, product, for_update=True)
        if subscription is None:
            base = now
            subscription = Subscription(user_id=user_id, product=product, expires_at=now)
            self.session.add(subscription)
        else:
            base = max(as_utc(subscription.expires_at), now)

        new_expiry = base + self.month * months
        subscription.setup_paid = True
        subscription.expires_at = new_expiry
        subscription.updated_at = now
        await self.session.flush()
        logger.info(
            "subscription_extended",
            user_id=user_id,
            product=product,
            months=months,
            expires_at=new_expiry.isoformat(),
        )
        return new_expiry

    async def mark_reminded(self, subscription: Subscription, now: datetime) -> None:
        subscription.last_reminder_at = now
        await self.session.flush()

    async def mark_expired_notice(self, user_id: int, now: datetime) -> None:
        await self.session.execute(
            update(Subscription)
            .where(Subscription.user_id == user_id)
            .values(last_expired_notice_at=now)
        )

    async def mark_revoked(self, user_id: int, now: datetime) -> None:
        await self.session.execute(
            update(Subscription).where(Subscription.user_id == user_id).values(revoked_at=now)
        )

    @staticmethod
    def is_active(subscription: Subscription | None, now: datetime) -> bool:
        return subscription is not None and as_utc(subscription.expires_at) > now

    @staticmethod
    def days_left(expires_at: datetime, now: datetime | None = None) -> int:
        now = now or utc_now()
        return max(0, ceil_days(as_utc(expires_at) - now))


__all__ = ["SubscriptionLedger"]
