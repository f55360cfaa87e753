"""Text builders for menu screens, invoices and confirmations."""

from __future__ import annotations

from datetime import datetime
from typing import Sequence

from solgate.config import SolGateSettings
from solgate.db.models.core import Invoice, Subscription
from solgate.i18n import I18nService
from solgate.services.subscriptions import SubscriptionLedger
from solgate.utils.datetime import utc_now


def welcome_text(i18n: I18nService, settings: SolGateSettings) -> str:
    return i18n.gettext(
        "start.welcome",
        days_per_month=settings.billing.days_per_month,
        reminder_days=settings.automation.reminder_days_before,
    )


def pricing_text(i18n: I18nService, settings: SolGateSettings) -> str:
    billing = settings.billing
    parts = [i18n.gettext("pricing.header")]
    for product in billing.products.values():
        parts.append(
            i18n.gettext(
                "pricing.product",
                icon=product.icon,
                name=product.name,
                key=product.key,
                setup=product.setup_fee,
                monthly=product.monthly_fee,
                days_per_month=billing.days_per_month,
            )
        )
    promotion = billing.promotion
    promoted = billing.products.get(promotion.product)
    if promotion.enabled and promoted is not None:
        parts.append(
            i18n.gettext(
                "pricing.special",
                name=promoted.name,
                price=promotion.price,
                months=promotion.months,
                renewal=i18n.gettext("pricing.special_renewal") if promotion.renewal_only else "",
            )
        )
    parts.append(
        i18n.gettext(
            "pricing.footer",
            reminder_days=settings.automation.reminder_days_before,
            grace_hours=settings.automation.kick_grace_hours,
        )
    )
    return "\n".join(parts)


def status_text(
    i18n: I18nService,
    settings: SolGateSettings,
    subscriptions: Sequence[Subscription],
    *,
    now: datetime | None = None,
) -> str:
    if not subscriptions:
        return i18n.gettext("status.empty")
    now = now or utc_now()
    products = settings.billing.products
    lines = [i18n.gettext("status.header")]
    for sub in subscriptions:
        product = products.get(sub.product)
        lines.append(
            i18n.gettext(
                "status.line",
                icon=product.icon if product else "•",
                name=product.name if product else sub.product,
                days=SubscriptionLedger.days_left(sub.expires_at, now),
            )
        )
    bundle_active = any(
        sub.product == settings.billing.bundle_product and SubscriptionLedger.is_active(sub, now)
        for sub in subscriptions
    )
    any_active = any(SubscriptionLedger.is_active(sub, now) for sub in subscriptions)
    lines.append(
        i18n.gettext(
            "status.footer",
            bundle="✅" if bundle_active else "❌",
            active="✅" if any_active else "❌",
        )
    )
    return "\n".join(lines)


def invoice_text(i18n: I18nService, settings: SolGateSettings, invoice: Invoice) -> str:
    product = settings.billing.products[invoice.product]
    return i18n.gettext(
        "invoice.card",
        invoice_id=invoice.id,
        icon=product.icon,
        name=product.name,
        months=invoice.months,
        days=invoice.months * settings.billing.days_per_month,
        amount=format_sol(invoice.amount_due),
        treasury=settings.solana.treasury_address,
        memo=invoice.memo,
        ttl_minutes=settings.billing.invoice_ttl_minutes,
    )


def format_sol(amount) -> str:
    text = f"{amount:f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


__all__ = ["format_sol", "invoice_text", "pricing_text", "status_text", "welcome_text"]
