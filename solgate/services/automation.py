"""Periodic background jobs: invoice expiry, reminders, expiry notices, revocation."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from solgate.config import SolGateSettings, get_settings
from solgate.db.session import Database
from solgate.i18n import I18nService
from solgate.logging import logger
from solgate.services.exceptions import TransportFailure
from solgate.services.group_binding import GroupBinding
from solgate.services.invoices import InvoiceService
from solgate.services.membership import ChatTransport, MembershipService
from solgate.services.subscriptions import SubscriptionLedger
from solgate.utils.datetime import as_utc, ceil_days, utc_now


@dataclass(slots=True)
class SweepReport:
    users: int = 0
    reminders: int = 0
    notices: int = 0
    revocations: int = 0
    failures: int = 0


class AutomationScheduler:
    """Run the sweeps on their own timers.

    Every run is idempotent: the stamps on subscription rows guard against
    repeated notifications, and invoice expiry is a conditional update.
    """

    def __init__(
        self,
        database: Database,
        transport: ChatTransport,
        settings: SolGateSettings | None = None,
        i18n: I18nService | None = None,
    ) -> None:
        self.database = database
        self.transport = transport
        self.settings = settings or get_settings()
        self.i18n = i18n or I18nService()
        self._tasks: list[asyncio.Task] = []

    def start(self) -> None:
        cfg = self.settings.automation
        self._tasks = [
            asyncio.create_task(
                self._run_periodic("invoice_sweep", cfg.invoice_sweep_minutes * 60, self.sweep_invoices),
                name="invoice_sweep",
            ),
            asyncio.create_task(
                self._run_periodic(
                    "subscription_sweep",
                    cfg.subscription_sweep_minutes * 60,
                    self.sweep_subscriptions,
                ),
                name="subscription_sweep",
            ),
        ]
        logger.info(
            "automation_started",
            invoice_sweep_minutes=cfg.invoice_sweep_minutes,
            subscription_sweep_minutes=cfg.subscription_sweep_minutes,
        )

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("automation_stopped")

    async def _run_periodic(
        self, name: str, interval_seconds: float, job: Callable[[], Awaitable[object]]
    ) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await job()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("automation_job_failed", job=name)

    async def sweep_invoices(self, *, now: datetime | None = None) -> int:
        async with self.database.session() as session:
            expired = await InvoiceService(session, self.settings).expire_stale(now=now)
            await session.commit()
        if expired:
            logger.info("invoices_swept", expired=expired)
        return expired

    async def sweep_subscriptions(self, *, now: datetime | None = None) -> SweepReport:
        now = now or utc_now()
        report = SweepReport()
        async with self.database.session() as session:
            user_ids = await SubscriptionLedger(session, self.settings).users_with_subscriptions()

        for user_id in user_ids:
            report.users += 1
            try:
                await self._process_user(user_id, now, report)
            except Exception:
                report.failures += 1
                logger.exception("subscription_sweep_user_failed", user_id=user_id)

        logger.info(
            "subscriptions_swept",
            users=report.users,
            reminders=report.reminders,
            notices=report.notices,
            revocations=report.revocations,
            failures=report.failures,
        )
        return report

    async def _process_user(self, user_id: int, now: datetime, report: SweepReport) -> None:
        cfg = self.settings.automation
        async with self.database.session() as session:
            ledger = SubscriptionLedger(session, self.settings)
            subscriptions = await ledger.list_for_user(user_id, refresh=True)
            if not subscriptions:
                return

            # Each stamp is committed on its own so no write is pending during the next transport call.
            reminder_guard = timedelta(hours=cfg.reminder_guard_hours)
            for sub in subscriptions:
                expires_at = as_utc(sub.expires_at)
                if expires_at <= now:
                    continue
                if ceil_days(expires_at - now) != cfg.reminder_days_before:
                    continue
                last = as_utc(sub.last_reminder_at)
                if last is not None and now - last < reminder_guard:
                    continue
                if await self._notify(user_id, self._reminder_text(sub.product)):
                    await ledger.mark_reminded(sub, now)
                    await session.commit()
                    report.reminders += 1

            if not any(ledger.is_active(sub, now) for sub in subscriptions):
                latest_expiry = max(as_utc(sub.expires_at) for sub in subscriptions)
                notices = [as_utc(sub.last_expired_notice_at) for sub in subscriptions]
                last_notice = max((stamp for stamp in notices if stamp is not None), default=None)
                notice_guard = timedelta(hours=cfg.expired_notice_guard_hours)
                if last_notice is None or now - last_notice > notice_guard:
                    if await self._notify(user_id, self.i18n.gettext("notice.expired")):
                        await ledger.mark_expired_notice(user_id, now)
                        await session.commit()
                        report.notices += 1

                revoked = [as_utc(sub.revoked_at) for sub in subscriptions if sub.revoked_at]
                already_revoked = bool(revoked) and max(revoked) >= latest_expiry
                if now - latest_expiry >= timedelta(hours=cfg.kick_grace_hours) and not already_revoked:
                    membership = MembershipService(
                        self.transport, ledger, GroupBinding(session), self.settings
                    )
                    if await membership.revoke_if_inactive(user_id, now=now):
                        report.revocations += 1

            await session.commit()

    async def _notify(self, user_id: int, text: str) -> bool:
        try:
            await self.transport.notify(user_id, text)
        except TransportFailure as exc:
            logger.warning("notify_failed", user_id=user_id, error=str(exc))
            return False
        return True

    def _reminder_text(self, product_key: str) -> str:
        product = self.settings.billing.products.get(product_key)
        return self.i18n.gettext(
            "reminder.expiring",
            icon=product.icon if product else "•",
            name=product.name if product else product_key,
            days=self.settings.automation.reminder_days_before,
        )


__all__ = ["AutomationScheduler", "SweepReport"]
