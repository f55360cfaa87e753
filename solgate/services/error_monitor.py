"""Forward unhandled handler errors to the bot owner."""

from __future__ import annotations

import traceback

from aiogram import Bot
from aiogram.dispatcher.event.bases import UNHANDLED
from aiogram.types import ErrorEvent, Update

from solgate.bot.utils.telegram import bot_send_with_retry
from solgate.config import SolGateSettings
from solgate.logging import logger

TELEGRAM_MESSAGE_LIMIT = 3900
TRACEBACK_CHAR_LIMIT = 2000

ACTOR_FIELDS = ("message", "edited_message", "callback_query", "my_chat_member", "chat_member")


class ErrorMonitor:
    def __init__(self, settings: SolGateSettings) -> None:
        self._settings = settings

    async def handle_error(self, event: ErrorEvent, bot: Bot):
        update_id = getattr(event.update, "update_id", None)
        logger.error(
            "bot_error_captured",
            exception_type=type(event.exception).__name__,
            exception=str(event.exception),
            update_id=update_id,
        )
        owner_id = self._settings.owner_telegram_id
        if owner_id is None:
            return UNHANDLED
        try:
            await bot_send_with_retry(
                bot, chat_id=owner_id, text=self.build_report(event), parse_mode=None
            )
        except Exception:
            logger.exception("error_monitor_notification_failed", update_id=update_id)
        return UNHANDLED

    def build_report(self, event: ErrorEvent) -> str:
        exception = event.exception
        update_type, user_id, chat_id = self._describe(event.update)
        trace = "".join(
            traceback.format_exception(type(exception), exception, exception.__traceback__)
        ).strip()
        if len(trace) > TRACEBACK_CHAR_LIMIT:
            trace = "...\n" + trace[-TRACEBACK_CHAR_LIMIT:]

        lines = [
            "SolGate error",
            f"Environment: {self._settings.environment}",
            f"Exception: {type(exception).__name__}: {exception}",
            f"Update: {getattr(event.update, 'update_id', 'unknown')} ({update_type})",
            f"User: {user_id}",
            f"Chat: {chat_id}",
        ]
        if trace:
            lines.extend(["", trace])
        return "\n".join(lines)[:TELEGRAM_MESSAGE_LIMIT]

    @staticmethod
    def _describe(update: Update | None) -> tuple[str, str, str]:
        if update is None:
            return "unknown", "unknown", "unknown"
        for field in ACTOR_FIELDS:
            source = getattr(update, field, None)
            if source is None:
                continue
            user = getattr(source, "from_user", None)
            chat = getattr(source, "chat", None)
            if chat is None and getattr(source, "message", None) is not None:
                chat = source.message.chat
            return (
                field,
                str(user.id) if user else "unknown",
                str(chat.id) if chat else "unknown",
            )
        return "unknown", "unknown", "unknown"


__all__ = ["ErrorMonitor"]
