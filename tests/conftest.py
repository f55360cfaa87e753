"""Shared pytest fixtures for database-backed service tests."""

from __future__ import annotations

from contextlib import asynccontextmanager
from types import SimpleNamespace

import pytest
import pytest_asyncio
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from solgate.config import SolGateSettings
from solgate.db.base import Base
from solgate.db.models import core  # noqa: F401
from solgate.domain.models import ParsedInstruction, ParsedTransaction
from solgate.services.exceptions import TransportFailure

TREASURY = "EyTtALk3AJubxGgkEvkkU4cJQcQuke8ovGV3AucuGs3J"
MEMO_PROGRAM = "MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr"
SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"


class _AsyncSessionWrapper:
    def __init__(self, sync_session) -> None:
        self._sync = sync_session

    async def execute(self, *args, **kwargs):
        return self._sync.execute(*args, **kwargs)

    async def get(self, *args, **kwargs):
        return self._sync.get(*args, **kwargs)

    def add(self, obj) -> None:
        self._sync.add(obj)

    def add_all(self, objs) -> None:
        self._sync.add_all(objs)

    async def flush(self) -> None:
        self._sync.flush()

    async def commit(self) -> None:
        self._sync.commit()

    async def rollback(self) -> None:
        self._sync.rollback()

    async def refresh(self, obj) -> None:
        self._sync.refresh(obj)

    async def close(self) -> None:
        self._sync.close()


class FakeDatabase:
    """Stands in for ``Database``; every ``session()`` yields the shared test session."""

    def __init__(self, session) -> None:
        self._session = session

    @asynccontextmanager
    async def session(self):
        yield self._session


class FakeTransport:
    def __init__(self) -> None:
        self.notifications: list[tuple[int, str]] = []
        self.invites: list[tuple[int, object]] = []
        self.revocations: list[tuple[int, int]] = []
        self.fail = False

    async def notify(self, user_id: int, text: str) -> None:
        if self.fail:
            raise TransportFailure("blocked by user")
        self.notifications.append((user_id, text))

    async def create_single_use_invite(self, group_id: int, *, expires_at) -> str:
        if self.fail:
            raise TransportFailure("bot is not an admin")
        self.invites.append((group_id, expires_at))
        return f"https://t.me/+invite{len(self.invites)}"

    async def revoke_membership(self, group_id: int, user_id: int) -> None:
        if self.fail:
            raise TransportFailure("not enough rights")
        self.revocations.append((group_id, user_id))


class FakeChain:
    def __init__(self, transactions=None) -> None:
        self.transactions: dict[str, ParsedTransaction] = dict(transactions or {})
        self.calls: list[str] = []

    async def fetch_transaction(self, signature: str) -> ParsedTransaction | None:
        self.calls.append(signature)
        return self.transactions.get(signature)


class DummyFromUser:
    def __init__(self, user_id: int = 1, username: str | None = None) -> None:
        self.id = user_id
        self.username = username or f"user{user_id}"
        self.first_name = "Test"
        self.language_code = "en"


class DummyMessage:
    def __init__(
        self,
        text: str = "",
        from_user: DummyFromUser | None = None,
        *,
        chat_type: str = "private",
        chat_id: int | None = None,
    ) -> None:
        self.text = text
        self.from_user = from_user or DummyFromUser()
        self.chat = SimpleNamespace(id=chat_id if chat_id is not None else self.from_user.id, type=chat_type)
        self.answers: list[str] = []
        self.edits: list[str] = []
        self.markups: list[object] = []

    @property
    def replies(self) -> list[str]:
        return self.edits + self.answers

    async def answer(self, text: str, **kwargs):
        self.answers.append(text)
        self.markups.append(kwargs.get("reply_markup"))
        return text

    async def edit_text(self, text: str, **kwargs):
        self.edits.append(text)
        self.markups.append(kwargs.get("reply_markup"))
        return text


class DummyCallback:
    def __init__(self, user_id: int = 1) -> None:
        self.from_user = DummyFromUser(user_id)
        self.message = DummyMessage(from_user=self.from_user)
        self.answered: list[str | None] = []

    async def answer(self, text: str | None = None, **kwargs):
        self.answered.append(text)


def make_transfer_tx(
    signature: str,
    memo: str | None,
    lamports: int,
    *,
    destination: str = TREASURY,
    memo_program: str = MEMO_PROGRAM,
    error=None,
    log_messages=(),
) -> ParsedTransaction:
    instructions = []
    if memo is not None:
        instructions.append(
            ParsedInstruction(program_id=memo_program, program="spl-memo", parsed=memo)
        )
    instructions.append(
        ParsedInstruction(
            program_id=SYSTEM_PROGRAM_ID,
            program="system",
            parsed={
                "type": "transfer",
                "info": {"source": "payer", "destination": destination, "lamports": lamports},
            },
        )
    )
    return ParsedTransaction(
        signature=signature,
        slot=1,
        error=error,
        instructions=instructions,
        log_messages=list(log_messages),
    )


@pytest_asyncio.fixture
async def session():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)
    sync_session = SessionLocal()
    try:
        yield _AsyncSessionWrapper(sync_session)
    finally:
        sync_session.close()
        engine.dispose()


@pytest.fixture
def settings() -> SolGateSettings:
    return SolGateSettings(_env_file=None, telegram_token="123456:TEST", owner_telegram_id=42)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()
