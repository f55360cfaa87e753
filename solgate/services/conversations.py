"""Per-user conversation state: whether free text should be read as a signature."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from solgate.db.models.core import UserState
from solgate.domain.models import ConversationState
from solgate.utils.datetime import utc_now


class ConversationService:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, user_id: int) -> UserState | None:
        stmt = select(UserState).where(UserState.user_id == user_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def awaiting_invoice_id(self, user_id: int) -> int | None:
        """Return the invoice a signature is expected for, if any."""

        record = await self.get(user_id)
        if record is None or record.state != ConversationState.AWAITING_TRANSACTION:
            return None
        return record.invoice_id

    async def await_transaction(
        self, user_id: int, invoice_id: int, *, now: datetime | None = None
    ) -> UserState:
        return await self._set(user_id, ConversationState.AWAITING_TRANSACTION, invoice_id, now)

    async def reset(self, user_id: int, *, now: datetime | None = None) -> UserState:
        return await self._set(user_id, ConversationState.NONE, None, now)

    async def _set(
        self,
        user_id: int,
        state: ConversationState,
        invoice_id: int | None,
        now: datetime | None,
    ) -> UserState:
        now = now or utc_now()
        record = await self.get(user_id)
        if record is None:
            record = UserState(user_id=user_id)
            self.session.add(record)
        record.state = state
        record.invoice_id = invoice_id
        record.updated_at = now
        await self.session.flush()
        return record


__all__ = ["ConversationService"]
