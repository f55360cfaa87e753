"""Purchase flow handlers driven with dummy Telegram objects."""

from __future__ import annotations

import pytest

from conftest import (
    DummyCallback,
    DummyFromUser,
    DummyMessage,
    FakeChain,
    TREASURY,
    make_transfer_tx,
)
from solgate.bot.keyboards import DurationCallback, InvoiceCallback, ProductCallback
from solgate.bot.routers.billing import (
    cancel_invoice,
    choose_product,
    create_invoice,
    handle_confirm_command,
    handle_signature_text,
    start_confirmation,
)
from solgate.config import MEMO_PROGRAM_ID
from solgate.db.models.core import Invoice
from solgate.domain.models import InvoiceStatus
from solgate.i18n import I18nService
from solgate.services.conversations import ConversationService
from solgate.services.exceptions import ChainClientError
from solgate.services.group_binding import GroupBinding
from solgate.services.invoices import InvoiceService
from solgate.services.payments import PaymentVerifier
from solgate.services.subscriptions import SubscriptionLedger
from solgate.utils.locks import KeyedLock

USER_ID = 500
SIGNATURE = "3" * 88


@pytest.fixture
def i18n() -> I18nService:
    return I18nService()


def _verifier(chain) -> PaymentVerifier:
    return PaymentVerifier(chain, treasury_address=TREASURY, memo_program_ids=[MEMO_PROGRAM_ID])


async def _pending_invoice(session, settings, product="alerts", months=1) -> Invoice:
    invoice = await InvoiceService(session, settings).create(USER_ID, product, months)
    await session.commit()
    return invoice


def _deps(settings, i18n, transport, chain) -> dict:
    return {
        "settings": settings,
        "i18n": i18n,
        "verifier": _verifier(chain),
        "locks": KeyedLock(),
        "transport": transport,
    }


@pytest.mark.asyncio
async def test_choose_product_shows_durations(settings, i18n):
    callback = DummyCallback(USER_ID)

    await choose_product(callback, ProductCallback(product="bundle"), settings, i18n)

    assert callback.answered == [None]
    assert "All-in-One Bundle" in callback.message.edits[0]
    assert "Includes every other product." in callback.message.edits[0]


@pytest.mark.asyncio
async def test_create_invoice_renders_payment_details(session, settings, i18n):
    callback = DummyCallback(USER_ID)

    await create_invoice(callback, DurationCallback(product="alerts", months=3), session, settings, i18n)

    invoice = (await InvoiceService(session, settings).get(1))
    assert invoice.user_id == USER_ID
    text = callback.message.edits[0]
    assert f"Invoice #{invoice.id}" in text
    assert invoice.memo in text
    assert TREASURY in text
    # 0.3 setup + 3 * 0.2
    assert "Amount: 0.9 SOL" in text


@pytest.mark.asyncio
async def test_create_invoice_rejects_bad_duration(session, settings, i18n):
    callback = DummyCallback(USER_ID)

    await create_invoice(callback, DurationCallback(product="alerts", months=99), session, settings, i18n)

    assert callback.message.edits == [i18n.gettext("invoice.invalid_duration")]
    assert await InvoiceService(session, settings).get(1) is None


@pytest.mark.asyncio
async def test_i_paid_sets_awaiting_state(session, settings, i18n):
    invoice = await _pending_invoice(session, settings)
    callback = DummyCallback(USER_ID)

    await start_confirmation(
        callback, InvoiceCallback(action="paid", invoice_id=invoice.id), session, settings, i18n
    )

    assert await ConversationService(session).awaiting_invoice_id(USER_ID) == invoice.id
    assert f"/confirm {invoice.id}" in callback.message.answers[0]


@pytest.mark.asyncio
async def test_i_paid_on_foreign_invoice_is_not_found(session, settings, i18n):
    invoice = await _pending_invoice(session, settings)
    callback = DummyCallback(USER_ID + 1)

    await start_confirmation(
        callback, InvoiceCallback(action="paid", invoice_id=invoice.id), session, settings, i18n
    )

    assert callback.message.edits == [i18n.gettext("invoice.not_found")]
    assert await ConversationService(session).awaiting_invoice_id(USER_ID + 1) is None


@pytest.mark.asyncio
async def test_cancel_then_cancel_again(session, settings, i18n):
    invoice = await _pending_invoice(session, settings)
    locks = KeyedLock()
    data = InvoiceCallback(action="cancel", invoice_id=invoice.id)

    first = DummyCallback(USER_ID)
    await cancel_invoice(first, data, session, settings, i18n, locks)
    second = DummyCallback(USER_ID)
    await cancel_invoice(second, data, session, settings, i18n, locks)

    assert first.message.edits == [i18n.gettext("invoice.cancelled")]
    assert second.message.edits == [i18n.gettext("invoice.already", status="cancelled")]


@pytest.mark.asyncio
async def test_text_is_ignored_when_not_awaiting(session, settings, i18n, transport):
    message = DummyMessage(SIGNATURE, DummyFromUser(USER_ID))
    chain = FakeChain()

    await handle_signature_text(message, session, **_deps(settings, i18n, transport, chain))

    assert message.answers == []
    assert chain.calls == []


@pytest.mark.asyncio
async def test_bad_signature_text_keeps_waiting(session, settings, i18n, transport):
    invoice = await _pending_invoice(session, settings)
    await ConversationService(session).await_transaction(USER_ID, invoice.id)
    message = DummyMessage("not a signature", DummyFromUser(USER_ID))

    await handle_signature_text(message, session, **_deps(settings, i18n, transport, FakeChain()))

    assert message.answers == [i18n.gettext("confirm.bad_signature")]
    assert await ConversationService(session).awaiting_invoice_id(USER_ID) == invoice.id


@pytest.mark.asyncio
async def test_pasted_signature_confirms_and_invites(session, settings, i18n, transport):
    await GroupBinding(session).bind(-1001)
    invoice = await _pending_invoice(session, settings)
    await ConversationService(session).await_transaction(USER_ID, invoice.id)
    await session.commit()
    chain = FakeChain({SIGNATURE: make_transfer_tx(SIGNATURE, invoice.memo, 500_000_000)})
    message = DummyMessage(f"  {SIGNATURE}\n", DummyFromUser(USER_ID))

    await handle_signature_text(message, session, **_deps(settings, i18n, transport, chain))

    assert message.answers[0] == i18n.gettext("confirm.verifying")
    assert message.answers[1].startswith("✅ Payment confirmed!")
    assert "Time left: 30 days" in message.answers[1]
    assert transport.invites and transport.invites[0][0] == -1001
    assert transport.notifications[0][0] == USER_ID
    assert "https://t.me/+invite1" in transport.notifications[0][1]
    stored = await InvoiceService(session, settings).get(invoice.id, for_update=True)
    assert stored.status == InvoiceStatus.PAID
    assert await SubscriptionLedger(session, settings).has_access(USER_ID, "alerts")


@pytest.mark.asyncio
async def test_confirm_command_usage_and_bad_id(session, settings, i18n, transport):
    deps = _deps(settings, i18n, transport, FakeChain())
    short = DummyMessage("/confirm 1", DummyFromUser(USER_ID))
    bad_id = DummyMessage(f"/confirm abc {SIGNATURE}", DummyFromUser(USER_ID))

    await handle_confirm_command(short, session, **deps)
    await handle_confirm_command(bad_id, session, **deps)

    assert short.answers == [i18n.gettext("confirm.usage")]
    assert bad_id.answers == [i18n.gettext("confirm.invalid_id")]


@pytest.mark.asyncio
async def test_confirm_command_screens_signature_before_rpc(session, settings, i18n, transport):
    invoice = await _pending_invoice(session, settings)
    chain = FakeChain()
    message = DummyMessage(f"/confirm {invoice.id} not-a-real-signature", DummyFromUser(USER_ID))

    await handle_confirm_command(message, session, **_deps(settings, i18n, transport, chain))

    assert message.answers == [i18n.gettext("confirm.bad_signature")]
    assert chain.calls == []
    stored = await InvoiceService(session, settings).get(invoice.id)
    assert stored.status == InvoiceStatus.PENDING


@pytest.mark.asyncio
async def test_confirm_command_reports_verification_failure(session, settings, i18n, transport):
    invoice = await _pending_invoice(session, settings)
    chain = FakeChain({SIGNATURE: make_transfer_tx(SIGNATURE, invoice.memo, 1_000)})
    message = DummyMessage(f"/confirm {invoice.id} {SIGNATURE}", DummyFromUser(USER_ID))

    await handle_confirm_command(message, session, **_deps(settings, i18n, transport, chain))

    assert message.answers[-1].startswith("❌ Verification failed: Insufficient payment received")
    assert transport.invites == []


@pytest.mark.asyncio
async def test_confirm_command_not_yet_confirmed(session, settings, i18n, transport):
    invoice = await _pending_invoice(session, settings)
    message = DummyMessage(f"/confirm {invoice.id} {SIGNATURE}", DummyFromUser(USER_ID))

    await handle_confirm_command(message, session, **_deps(settings, i18n, transport, FakeChain()))

    assert "Transaction not found" in message.answers[-1]


@pytest.mark.asyncio
async def test_confirm_command_rejects_reused_signature(session, settings, i18n, transport):
    first = await _pending_invoice(session, settings)
    second = await _pending_invoice(session, settings)
    chain = FakeChain({SIGNATURE: make_transfer_tx(SIGNATURE, first.memo, 500_000_000)})
    deps = _deps(settings, i18n, transport, chain)

    await handle_confirm_command(
        DummyMessage(f"/confirm {first.id} {SIGNATURE}", DummyFromUser(USER_ID)), session, **deps
    )
    reuse = DummyMessage(f"/confirm {second.id} {SIGNATURE}", DummyFromUser(USER_ID))
    await handle_confirm_command(reuse, session, **deps)

    assert reuse.answers == [i18n.gettext("confirm.duplicate")]


@pytest.mark.asyncio
async def test_confirm_command_on_someone_elses_invoice(session, settings, i18n, transport):
    invoice = await _pending_invoice(session, settings)
    message = DummyMessage(f"/confirm {invoice.id} {SIGNATURE}", DummyFromUser(USER_ID + 7))

    await handle_confirm_command(message, session, **_deps(settings, i18n, transport, FakeChain()))

    assert message.answers == [i18n.gettext("invoice.not_yours")]


@pytest.mark.asyncio
async def test_chain_errors_become_generic_error(session, settings, i18n, transport):
    invoice = await _pending_invoice(session, settings)

    class BrokenChain:
        async def fetch_transaction(self, signature):
            raise ChainClientError("Solana RPC getTransaction failed (503).")

    message = DummyMessage(f"/confirm {invoice.id} {SIGNATURE}", DummyFromUser(USER_ID))

    await handle_confirm_command(message, session, **_deps(settings, i18n, transport, BrokenChain()))

    assert message.answers[-1] == i18n.gettext("confirm.error")
    stored = await InvoiceService(session, settings).get(invoice.id)
    assert stored.status == InvoiceStatus.PENDING
