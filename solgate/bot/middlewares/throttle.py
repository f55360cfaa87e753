"""Per-user action throttle in front of every message and button press."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict

from aiogram import BaseMiddleware
from aiogram.types import CallbackQuery, TelegramObject

from solgate.config import SolGateSettings, get_settings
from solgate.i18n import I18nService
from solgate.logging import logger
from solgate.services.rate_limit import RateLimiter


class ThrottleMiddleware(BaseMiddleware):
    def __init__(
        self,
        settings: SolGateSettings | None = None,
        limiter: RateLimiter | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        cfg = self.settings.request_limit
        self.limiter = limiter or RateLimiter(
            max_actions=cfg.max_actions,
            window_seconds=cfg.window_seconds,
            eviction_interval_seconds=cfg.eviction_interval_seconds,
        )
        self.i18n = I18nService()

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        from_user = getattr(event, "from_user", None)
        if from_user is None:
            return await handler(event, data)

        if await self.limiter.allow(from_user.id):
            return await handler(event, data)

        logger.info("action_throttled", user_id=from_user.id)
        if isinstance(event, CallbackQuery):
            await event.answer(self.i18n.gettext("limit.slow_down"))
        # Plain messages over the limit are dropped without a reply.
        return None


__all__ = ["ThrottleMiddleware"]
