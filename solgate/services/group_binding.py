"""The single group the bot grants and revokes membership for."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from solgate.db.models.core import Setting
from solgate.logging import logger
from solgate.utils.datetime import utc_now

GROUP_ID_KEY = "group_id"


class GroupBinding:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_group_id(self) -> int | None:
        stmt = select(Setting.value).where(Setting.key == GROUP_ID_KEY)
        result = await self.session.execute(stmt)
        value = result.scalar_one_or_none()
        return int(value) if value is not None else None

    async def bind(self, chat_id: int) -> None:
        stmt = select(Setting).where(Setting.key == GROUP_ID_KEY).with_for_update()
        result = await self.session.execute(stmt)
        setting = result.scalar_one_or_none()
        if setting is None:
            self.session.add(Setting(key=GROUP_ID_KEY, value=str(chat_id)))
        else:
            setting.value = str(chat_id)
            setting.updated_at = utc_now()
        await self.session.flush()
        logger.info("group_bound", chat_id=chat_id)


__all__ = ["GROUP_ID_KEY", "GroupBinding"]
