"""Start/help commands and the main inline menu."""

from __future__ import annotations

from aiogram import F, Router
from aiogram.filters import Command, CommandStart
from aiogram.types import CallbackQuery, Message
from sqlalchemy.ext.asyncio import AsyncSession

from solgate.bot.keyboards import MenuCallback, home_keyboard, products_keyboard
from solgate.bot.utils.telegram import answer_with_retry, edit_or_answer
from solgate.bot.views import pricing_text, status_text, welcome_text
from solgate.config import SolGateSettings
from solgate.i18n import I18nService
from solgate.services.group_binding import GroupBinding
from solgate.services.membership import ChatTransport, MembershipService
from solgate.services.subscriptions import SubscriptionLedger
from solgate.utils.datetime import utc_now

router = Router(name="menu")


@router.message(CommandStart())
async def handle_start(message: Message, settings: SolGateSettings, i18n: I18nService) -> None:
    await answer_with_retry(
        message, welcome_text(i18n, settings), reply_markup=home_keyboard(i18n)
    )


@router.message(Command("help"))
async def handle_help(message: Message, i18n: I18nService) -> None:
    await answer_with_retry(message, i18n.gettext("help.text"))


@router.message(F.text.regexp(r"(?i)^ping$"))
async def handle_ping(message: Message, i18n: I18nService) -> None:
    await answer_with_retry(message, i18n.gettext("ping.pong"))


@router.callback_query(MenuCallback.filter(F.section == "home"))
async def show_home(callback: CallbackQuery, i18n: I18nService) -> None:
    await callback.answer()
    await edit_or_answer(callback.message, i18n.gettext("menu.home"), reply_markup=home_keyboard(i18n))


@router.callback_query(MenuCallback.filter(F.section == "buy"))
async def show_products(callback: CallbackQuery, settings: SolGateSettings, i18n: I18nService) -> None:
    await callback.answer()
    await edit_or_answer(
        callback.message,
        i18n.gettext("menu.choose_product"),
        reply_markup=products_keyboard(i18n, settings.billing.products.values()),
    )


@router.callback_query(MenuCallback.filter(F.section == "pricing"))
async def show_pricing(callback: CallbackQuery, settings: SolGateSettings, i18n: I18nService) -> None:
    await callback.answer()
    await edit_or_answer(callback.message, pricing_text(i18n, settings), reply_markup=home_keyboard(i18n))


@router.callback_query(MenuCallback.filter(F.section == "support"))
async def show_support(callback: CallbackQuery, i18n: I18nService) -> None:
    await callback.answer()
    await edit_or_answer(callback.message, i18n.gettext("support.text"), reply_markup=home_keyboard(i18n))


@router.callback_query(MenuCallback.filter(F.section == "status"))
async def show_status(
    callback: CallbackQuery,
    session: AsyncSession,
    settings: SolGateSettings,
    i18n: I18nService,
    transport: ChatTransport,
) -> None:
    await callback.answer()
    user_id = callback.from_user.id
    now = utc_now()
    ledger = SubscriptionLedger(session, settings)
    subscriptions = await ledger.list_for_user(user_id)
    await edit_or_answer(
        callback.message,
        status_text(i18n, settings, subscriptions, now=now),
        reply_markup=home_keyboard(i18n),
    )

    if any(ledger.is_active(sub, now) for sub in subscriptions):
        membership = MembershipService(transport, ledger, GroupBinding(session), settings)
        await membership.send_invite(user_id, i18n.gettext("invite.granted"), now=now)


__all__ = [
    "handle_help",
    "handle_ping",
    "handle_start",
    "router",
    "show_home",
    "show_pricing",
    "show_products",
    "show_status",
    "show_support",
]
