"""Purchase flow: product and duration pickers, invoices, payment confirmation."""

from __future__ import annotations

from aiogram import F, Router
from aiogram.filters import Command
from aiogram.types import CallbackQuery, Message
from sqlalchemy.ext.asyncio import AsyncSession

from solgate.bot.keyboards import (
    DurationCallback,
    InvoiceCallback,
    ProductCallback,
    duration_keyboard,
    home_keyboard,
    invoice_keyboard,
)
from solgate.bot.utils.telegram import answer_with_retry, edit_or_answer
from solgate.bot.views import invoice_text
from solgate.config import SolGateSettings
from solgate.domain.models import InvoiceStatus
from solgate.i18n import I18nService
from solgate.logging import logger
from solgate.services.conversations import ConversationService
from solgate.services.exceptions import (
    DuplicateTransaction,
    InvalidPurchase,
    InvalidState,
    InvoiceExpired,
    NotFound,
    ServiceError,
    TransactionNotFound,
    Unauthorized,
    VerificationError,
)
from solgate.services.group_binding import GroupBinding
from solgate.services.invoices import InvoiceService
from solgate.services.membership import ChatTransport, MembershipService
from solgate.services.payments import PaymentService, PaymentVerifier, looks_like_signature
from solgate.services.subscriptions import SubscriptionLedger
from solgate.utils.locks import KeyedLock

router = Router(name="billing")


@router.callback_query(ProductCallback.filter())
async def choose_product(
    callback: CallbackQuery,
    callback_data: ProductCallback,
    settings: SolGateSettings,
    i18n: I18nService,
) -> None:
    await callback.answer()
    product = settings.billing.products.get(callback_data.product)
    if product is None:
        return
    perks_key = (
        "menu.perks_bundle" if product.key == settings.billing.bundle_product else "menu.perks_default"
    )
    await edit_or_answer(
        callback.message,
        i18n.gettext("menu.product", icon=product.icon, name=product.name, perks=i18n.gettext(perks_key)),
        reply_markup=duration_keyboard(i18n, product.key, settings.billing.duration_options),
    )


@router.callback_query(DurationCallback.filter())
async def create_invoice(
    callback: CallbackQuery,
    callback_data: DurationCallback,
    session: AsyncSession,
    settings: SolGateSettings,
    i18n: I18nService,
) -> None:
    await callback.answer()
    if callback_data.product not in settings.billing.products:
        return
    service = InvoiceService(session, settings)
    try:
        invoice = await service.create(
            callback.from_user.id, callback_data.product, callback_data.months
        )
    except InvalidPurchase:
        await edit_or_answer(
            callback.message,
            i18n.gettext("invoice.invalid_duration"),
            reply_markup=home_keyboard(i18n),
        )
        return
    await session.commit()
    await edit_or_answer(
        callback.message,
        invoice_text(i18n, settings, invoice),
        reply_markup=invoice_keyboard(i18n, invoice.id),
    )


@router.callback_query(InvoiceCallback.filter(F.action == "cancel"))
async def cancel_invoice(
    callback: CallbackQuery,
    callback_data: InvoiceCallback,
    session: AsyncSession,
    settings: SolGateSettings,
    i18n: I18nService,
    locks: KeyedLock,
) -> None:
    await callback.answer()
    user_id = callback.from_user.id
    async with locks.hold(user_id):
        try:
            invoice = await InvoiceService(session, settings).cancel(callback_data.invoice_id, user_id)
        except NotFound:
            text = i18n.gettext("invoice.not_found")
        else:
            status = InvoiceStatus(invoice.status)
            if status == InvoiceStatus.CANCELLED:
                text = i18n.gettext("invoice.cancelled")
            else:
                text = i18n.gettext("invoice.already", status=status.value)
        await session.commit()
    await edit_or_answer(callback.message, text, reply_markup=home_keyboard(i18n))


@router.callback_query(InvoiceCallback.filter(F.action == "paid"))
async def start_confirmation(
    callback: CallbackQuery,
    callback_data: InvoiceCallback,
    session: AsyncSession,
    settings: SolGateSettings,
    i18n: I18nService,
) -> None:
    await callback.answer()
    user_id = callback.from_user.id
    invoice_id = callback_data.invoice_id
    try:
        await InvoiceService(session, settings).get_owned_pending(invoice_id, user_id)
    except (NotFound, Unauthorized):
        text = i18n.gettext("invoice.not_found")
    except InvalidState as exc:
        text = i18n.gettext("invoice.already", status=exc.status)
    except InvoiceExpired:
        text = i18n.gettext("invoice.expired")
        await session.commit()
    else:
        await ConversationService(session).await_transaction(user_id, invoice_id)
        await session.commit()
        await answer_with_retry(callback.message, i18n.gettext("confirm.prompt", invoice_id=invoice_id))
        return
    await edit_or_answer(callback.message, text, reply_markup=home_keyboard(i18n))


@router.message(Command("confirm"))
async def handle_confirm_command(
    message: Message,
    session: AsyncSession,
    settings: SolGateSettings,
    i18n: I18nService,
    verifier: PaymentVerifier,
    locks: KeyedLock,
    transport: ChatTransport,
) -> None:
    parts = (message.text or "").split()
    if len(parts) < 3:
        await answer_with_retry(message, i18n.gettext("confirm.usage"))
        return
    try:
        invoice_id = int(parts[1])
    except ValueError:
        await answer_with_retry(message, i18n.gettext("confirm.invalid_id"))
        return
    signature = parts[2]
    if not looks_like_signature(signature):
        await answer_with_retry(message, i18n.gettext("confirm.bad_signature"))
        return
    await confirm_payment(
        message,
        session,
        settings=settings,
        i18n=i18n,
        verifier=verifier,
        locks=locks,
        transport=transport,
        invoice_id=invoice_id,
        signature=signature,
    )


@router.message(F.text, ~F.text.startswith("/"))
async def handle_signature_text(
    message: Message,
    session: AsyncSession,
    settings: SolGateSettings,
    i18n: I18nService,
    verifier: PaymentVerifier,
    locks: KeyedLock,
    transport: ChatTransport,
) -> None:
    invoice_id = await ConversationService(session).awaiting_invoice_id(message.from_user.id)
    if invoice_id is None:
        return
    signature = message.text.strip()
    if not looks_like_signature(signature):
        await answer_with_retry(message, i18n.gettext("confirm.bad_signature"))
        return
    await confirm_payment(
        message,
        session,
        settings=settings,
        i18n=i18n,
        verifier=verifier,
        locks=locks,
        transport=transport,
        invoice_id=invoice_id,
        signature=signature,
    )


async def confirm_payment(
    message: Message,
    session: AsyncSession,
    *,
    settings: SolGateSettings,
    i18n: I18nService,
    verifier: PaymentVerifier,
    locks: KeyedLock,
    transport: ChatTransport,
    invoice_id: int,
    signature: str,
) -> None:
    user_id = message.from_user.id
    service = PaymentService(session, verifier, locks, settings)

    async def _announce():
        await answer_with_retry(message, i18n.gettext("confirm.verifying"))

    try:
        confirmation = await service.confirm(user_id, invoice_id, signature, on_verifying=_announce)
    except TransactionNotFound as exc:
        text = i18n.gettext("confirm.failed", reason=str(exc))
    except NotFound:
        text = i18n.gettext("invoice.not_found")
    except Unauthorized:
        text = i18n.gettext("invoice.not_yours")
    except InvalidState as exc:
        text = i18n.gettext("invoice.already", status=exc.status)
    except InvoiceExpired:
        text = i18n.gettext("invoice.expired")
    except DuplicateTransaction:
        text = i18n.gettext("confirm.duplicate")
    except VerificationError as exc:
        text = i18n.gettext("confirm.failed", reason=str(exc))
    except ServiceError as exc:
        logger.warning("confirm_service_error", user_id=user_id, invoice_id=invoice_id, error=str(exc))
        text = i18n.gettext("confirm.error")
    except Exception:
        logger.exception("confirm_unexpected_error", user_id=user_id, invoice_id=invoice_id)
        text = i18n.gettext("confirm.error")
    else:
        product = settings.billing.products[confirmation.product]
        await answer_with_retry(
            message,
            i18n.gettext(
                "confirm.success",
                icon=product.icon,
                name=product.name,
                days=SubscriptionLedger.days_left(confirmation.expires_at),
                reminder_days=settings.automation.reminder_days_before,
            ),
        )
        ledger = SubscriptionLedger(session, settings)
        if await ledger.has_any_active_access(user_id):
            membership = MembershipService(transport, ledger, GroupBinding(session), settings)
            await membership.send_invite(user_id, i18n.gettext("invite.granted"))
        return

    await answer_with_retry(message, text)


__all__ = [
    "cancel_invoice",
    "choose_product",
    "confirm_payment",
    "create_invoice",
    "handle_confirm_command",
    "handle_signature_text",
    "router",
    "start_confirmation",
]
