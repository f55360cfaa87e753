"""Ensure Telegram users are persisted and expose them to handlers."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict

from aiogram import BaseMiddleware
from aiogram.types import TelegramObject
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from solgate.db.models.core import User
from solgate.utils.datetime import utc_now


class UserContextMiddleware(BaseMiddleware):
    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        from_user = getattr(event, "from_user", None)
        if from_user is None:
            return await handler(event, data)

        session: AsyncSession = data["session"]
        stmt = select(User).where(User.telegram_id == from_user.id)
        result = await session.execute(stmt)
        user = result.scalar_one_or_none()
        now = utc_now()
        if user is None:
            user = User(
                telegram_id=from_user.id,
                username=from_user.username,
                first_name=from_user.first_name,
                language_code=from_user.language_code,
                created_at=now,
            )
            session.add(user)
        else:
            user.username = from_user.username
            user.first_name = from_user.first_name
        user.last_seen_at = now
        # Committed up front so the handler starts without a pending write; on
        # SQLite that write would hold the database lock across network calls.
        await session.commit()

        data["db_user"] = user
        return await handler(event, data)
