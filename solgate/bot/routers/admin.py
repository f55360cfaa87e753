"""Owner-only commands for wiring the bot to its paid group."""

from __future__ import annotations

from aiogram import Router
from aiogram.enums import ChatType
from aiogram.filters import Command
from aiogram.types import Message
from sqlalchemy.ext.asyncio import AsyncSession

from solgate.bot.utils.telegram import answer_with_retry
from solgate.config import SolGateSettings
from solgate.i18n import I18nService
from solgate.logging import logger
from solgate.services.group_binding import GroupBinding

router = Router(name="admin")

GROUP_CHAT_TYPES = (ChatType.GROUP, ChatType.SUPERGROUP)


def is_owner(message: Message, settings: SolGateSettings) -> bool:
    if settings.owner_telegram_id is None or message.from_user is None:
        return False
    return message.from_user.id == settings.owner_telegram_id


@router.message(Command("setgroup"))
async def handle_setgroup(
    message: Message,
    session: AsyncSession,
    settings: SolGateSettings,
    i18n: I18nService,
) -> None:
    """Bind the paid group to the chat the owner runs this in."""

    if not is_owner(message, settings):
        logger.info(
            "setgroup_ignored",
            user_id=message.from_user.id if message.from_user else None,
            chat_id=message.chat.id,
        )
        return
    if message.chat.type not in GROUP_CHAT_TYPES:
        await answer_with_retry(message, i18n.gettext("admin.setgroup_private"), parse_mode=None)
        return

    await GroupBinding(session).bind(message.chat.id)
    await session.commit()
    await answer_with_retry(
        message,
        i18n.gettext("admin.setgroup_done", chat_id=message.chat.id),
        parse_mode=None,
    )


__all__ = ["handle_setgroup", "is_owner", "router"]
