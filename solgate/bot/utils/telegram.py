"""Telegram sending helpers and the chat transport used by background jobs."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any

from aiogram import Bot
from aiogram.exceptions import TelegramAPIError, TelegramBadRequest
from aiogram.types import Message

from solgate.logging import logger
from solgate.services.exceptions import TransportFailure
from solgate.utils.retry import retry_async

TELEGRAM_SEND_MAX_ATTEMPTS = 3
TELEGRAM_SEND_BASE_DELAY = 0.3


async def answer_with_retry(message: Message, text: str, **kwargs: Any) -> Any:
    """Send a reply with retry/backoff."""

    async def _send():
        return await message.answer(text, **kwargs)

    return await retry_async(
        _send,
        max_attempts=TELEGRAM_SEND_MAX_ATTEMPTS,
        base_delay=TELEGRAM_SEND_BASE_DELAY,
        logger=logger,
        operation_name="telegram_answer",
    )


async def bot_send_with_retry(bot: Bot, *, chat_id: int, text: str, **kwargs: Any) -> Any:
    """Send a message via Bot with retry/backoff."""

    async def _send():
        return await bot.send_message(chat_id=chat_id, text=text, **kwargs)

    return await retry_async(
        _send,
        max_attempts=TELEGRAM_SEND_MAX_ATTEMPTS,
        base_delay=TELEGRAM_SEND_BASE_DELAY,
        logger=logger,
        operation_name="telegram_send_message",
    )


async def edit_or_answer(message: Message, text: str, **kwargs: Any) -> Any:
    """Replace a menu message in place, falling back to a fresh reply."""

    try:
        return await message.edit_text(text, **kwargs)
    except TelegramBadRequest as exc:
        logger.info("telegram_edit_fallback", error=str(exc))
        return await answer_with_retry(message, text, **kwargs)


class TelegramTransport:
    """Single-shot Telegram calls; any API or network failure becomes ``TransportFailure``."""

    def __init__(self, bot: Bot) -> None:
        self.bot = bot

    async def notify(self, user_id: int, text: str) -> None:
        try:
            await self.bot.send_message(chat_id=user_id, text=text, parse_mode=None)
        except (TelegramAPIError, asyncio.TimeoutError) as exc:
            raise TransportFailure(f"send_message to {user_id} failed: {exc}") from exc

    async def create_single_use_invite(self, group_id: int, *, expires_at: datetime) -> str:
        try:
            invite = await self.bot.create_chat_invite_link(
                chat_id=group_id,
                member_limit=1,
                expire_date=expires_at,
            )
        except (TelegramAPIError, asyncio.TimeoutError) as exc:
            raise TransportFailure(f"create_chat_invite_link in {group_id} failed: {exc}") from exc
        return invite.invite_link

    async def revoke_membership(self, group_id: int, user_id: int) -> None:
        # Ban then unban removes the member without blocking a future rejoin.
        try:
            await self.bot.ban_chat_member(chat_id=group_id, user_id=user_id)
            await self.bot.unban_chat_member(chat_id=group_id, user_id=user_id, only_if_banned=True)
        except (TelegramAPIError, asyncio.TimeoutError) as exc:
            raise TransportFailure(f"revoke of {user_id} in {group_id} failed: {exc}") from exc


__all__ = ["TelegramTransport", "answer_with_retry", "bot_send_with_retry", "edit_or_answer"]
