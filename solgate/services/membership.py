"""Group membership side effects: invites after payment, revocation after expiry."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Protocol

from solgate.config import SolGateSettings, get_settings
from solgate.logging import logger
from solgate.services.exceptions import TransportFailure
from solgate.services.group_binding import GroupBinding
from solgate.services.subscriptions import SubscriptionLedger
from solgate.utils.datetime import utc_now


class ChatTransport(Protocol):
    async def notify(self, user_id: int, text: str) -> None: ...

    async def create_single_use_invite(self, group_id: int, *, expires_at: datetime) -> str: ...

    async def revoke_membership(self, group_id: int, user_id: int) -> None: ...


class MembershipService:
    def __init__(
        self,
        transport: ChatTransport,
        ledger: SubscriptionLedger,
        binding: GroupBinding,
        settings: SolGateSettings | None = None,
    ) -> None:
        self.transport = transport
        self.ledger = ledger
        self.binding = binding
        self.settings = settings or get_settings()

    async def send_invite(self, user_id: int, text: str, *, now: datetime | None = None) -> bool:
        """DM a fresh single-use invite link; ``text`` must contain an ``{link}`` placeholder."""

        group_id = await self.binding.get_group_id()
        if group_id is None:
            return False
        now = now or utc_now()
        expires_at = now + timedelta(seconds=self.settings.invites.ttl_seconds)
        try:
            link = await self.transport.create_single_use_invite(group_id, expires_at=expires_at)
            await self.transport.notify(user_id, text.format(link=link))
        except TransportFailure as exc:
            logger.warning("invite_failed", user_id=user_id, group_id=group_id, error=str(exc))
            return False
        logger.info("invite_sent", user_id=user_id, group_id=group_id)
        return True

    async def revoke_if_inactive(self, user_id: int, *, now: datetime | None = None) -> bool:
        group_id = await self.binding.get_group_id()
        if group_id is None:
            return False
        now = now or utc_now()
        # The user may have renewed since the sweep read their subscriptions.
        if await self.ledger.has_any_active_access(user_id, now=now):
            logger.info("revoke_skipped_active", user_id=user_id)
            return False
        try:
            await self.transport.revoke_membership(group_id, user_id)
        except TransportFailure as exc:
            logger.warning("revoke_failed", user_id=user_id, group_id=group_id, error=str(exc))
            return False
        await self.ledger.mark_revoked(user_id, now)
        logger.info("membership_revoked", user_id=user_id, group_id=group_id)
        return True


__all__ = ["ChatTransport", "MembershipService"]
