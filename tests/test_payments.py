"""On-chain verification and the confirm-and-credit flow."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from conftest import FakeChain, TREASURY, make_transfer_tx
from solgate.config import LEGACY_MEMO_PROGRAM_ID, MEMO_PROGRAM_ID
from solgate.db.models.core import Invoice, Payment
from solgate.domain.models import InvoiceStatus, ParsedInstruction
from solgate.services.conversations import ConversationService
from solgate.services.exceptions import (
    DuplicateTransaction,
    InsufficientAmount,
    InvalidState,
    InvoiceExpired,
    MemoMismatch,
    TransactionFailed,
    TransactionNotFound,
)
from solgate.services.invoices import InvoiceService
from solgate.services.payments import (
    PaymentService,
    PaymentVerifier,
    looks_like_signature,
    sol_to_lamports,
)
from solgate.services.subscriptions import SubscriptionLedger
from solgate.utils.datetime import utc_now
from solgate.utils.locks import KeyedLock

SIG_A = "5" * 88
SIG_B = "4" * 88


def _verifier(chain: FakeChain) -> PaymentVerifier:
    return PaymentVerifier(
        chain,
        treasury_address=TREASURY,
        memo_program_ids=[MEMO_PROGRAM_ID, LEGACY_MEMO_PROGRAM_ID],
    )


async def _committed_invoice(session, settings, user_id=100, product="paid_access", months=1):
    invoice = await InvoiceService(session, settings).create(user_id, product, months)
    await session.commit()
    return invoice


def test_sol_to_lamports_floors():
    assert sol_to_lamports(Decimal("0.9")) == 900_000_000
    assert sol_to_lamports(Decimal("0.0000000019")) == 1


def test_signature_screen():
    assert looks_like_signature("5" * 88)
    assert not looks_like_signature("hello")
    assert not looks_like_signature("0" * 88)
    assert not looks_like_signature("l" * 88)


@pytest.mark.asyncio
async def test_verify_accepts_exact_payment(session, settings):
    invoice = await _committed_invoice(session, settings)
    chain = FakeChain({SIG_A: make_transfer_tx(SIG_A, invoice.memo, 900_000_000)})

    result = await _verifier(chain).verify(invoice, SIG_A)

    assert result.expected_lamports == 900_000_000
    assert result.received_lamports == 900_000_000


@pytest.mark.asyncio
async def test_verify_sums_multiple_transfers_to_treasury(session, settings):
    invoice = await _committed_invoice(session, settings)
    tx = make_transfer_tx(SIG_A, invoice.memo, 500_000_000)
    tx.instructions.append(tx.instructions[-1].model_copy())
    tx.instructions.append(
        ParsedInstruction(
            program_id="11111111111111111111111111111111",
            program="system",
            parsed={"type": "transfer", "info": {"destination": "elsewhere", "lamports": 10**9}},
        )
    )

    result = await _verifier(FakeChain({SIG_A: tx})).verify(invoice, SIG_A)

    assert result.received_lamports == 1_000_000_000


@pytest.mark.asyncio
async def test_verify_accepts_legacy_memo_program(session, settings):
    invoice = await _committed_invoice(session, settings)
    tx = make_transfer_tx(SIG_A, invoice.memo, 900_000_000, memo_program=LEGACY_MEMO_PROGRAM_ID)

    await _verifier(FakeChain({SIG_A: tx})).verify(invoice, SIG_A)


@pytest.mark.asyncio
async def test_verify_falls_back_to_log_messages(session, settings):
    invoice = await _committed_invoice(session, settings)
    tx = make_transfer_tx(
        SIG_A,
        None,
        900_000_000,
        log_messages=[f'Program log: Memo (len 40): "{invoice.memo}"'],
    )

    await _verifier(FakeChain({SIG_A: tx})).verify(invoice, SIG_A)


@pytest.mark.asyncio
async def test_verify_rejects_other_invoice_memo(session, settings):
    invoice = await _committed_invoice(session, settings)
    other = await _committed_invoice(session, settings)
    chain = FakeChain({SIG_A: make_transfer_tx(SIG_A, other.memo, 900_000_000)})

    with pytest.raises(MemoMismatch):
        await _verifier(chain).verify(invoice, SIG_A)


@pytest.mark.asyncio
async def test_verify_reports_shortfall(session, settings):
    invoice = await _committed_invoice(session, settings)
    chain = FakeChain({SIG_A: make_transfer_tx(SIG_A, invoice.memo, 899_999_999)})

    with pytest.raises(InsufficientAmount) as excinfo:
        await _verifier(chain).verify(invoice, SIG_A)

    assert excinfo.value.shortfall == Decimal("0.000000001")
    assert "short by" in str(excinfo.value)


@pytest.mark.asyncio
async def test_verify_ignores_transfers_to_other_accounts(session, settings):
    invoice = await _committed_invoice(session, settings)
    tx = make_transfer_tx(SIG_A, invoice.memo, 900_000_000, destination="SomeoneElse111")

    with pytest.raises(InsufficientAmount):
        await _verifier(FakeChain({SIG_A: tx})).verify(invoice, SIG_A)


@pytest.mark.asyncio
async def test_verify_missing_and_failed_transactions(session, settings):
    invoice = await _committed_invoice(session, settings)
    failed = make_transfer_tx(SIG_B, invoice.memo, 900_000_000, error={"InstructionError": [0, "x"]})
    verifier = _verifier(FakeChain({SIG_B: failed}))

    with pytest.raises(TransactionNotFound):
        await verifier.verify(invoice, SIG_A)
    with pytest.raises(TransactionFailed):
        await verifier.verify(invoice, SIG_B)


@pytest.mark.asyncio
async def test_confirm_pays_invoice_and_extends_access(session, settings):
    invoice = await _committed_invoice(session, settings)
    await ConversationService(session).await_transaction(100, invoice.id)
    await session.commit()
    chain = FakeChain({SIG_A: make_transfer_tx(SIG_A, invoice.memo, 900_000_000)})
    service = PaymentService(session, _verifier(chain), KeyedLock(), settings)
    announced = []

    async def on_verifying():
        announced.append(True)

    now = utc_now()
    confirmation = await service.confirm(100, invoice.id, SIG_A, on_verifying=on_verifying, now=now)

    assert announced == [True]
    assert confirmation.product == "paid_access"
    assert confirmation.expires_at == now + timedelta(days=30)
    stored = await InvoiceService(session, settings).get(invoice.id, for_update=True)
    assert stored.status == InvoiceStatus.PAID
    assert stored.tx_signature == SIG_A
    assert await service.is_recorded(SIG_A)
    assert await ConversationService(session).awaiting_invoice_id(100) is None
    assert await SubscriptionLedger(session, settings).has_access(100, "paid_access")


@pytest.mark.asyncio
async def test_confirm_rejects_reused_signature(session, settings):
    first = await _committed_invoice(session, settings)
    second = await _committed_invoice(session, settings)
    chain = FakeChain({SIG_A: make_transfer_tx(SIG_A, first.memo, 900_000_000)})
    service = PaymentService(session, _verifier(chain), KeyedLock(), settings)
    await service.confirm(100, first.id, SIG_A)

    with pytest.raises(DuplicateTransaction):
        await service.confirm(100, second.id, SIG_A)

    assert chain.calls == [SIG_A]


@pytest.mark.asyncio
async def test_concurrent_confirms_credit_once(session, settings):
    invoice = await _committed_invoice(session, settings)
    chain = FakeChain({SIG_A: make_transfer_tx(SIG_A, invoice.memo, 900_000_000)})
    service = PaymentService(session, _verifier(chain), KeyedLock(), settings)

    async def on_verifying():
        await asyncio.sleep(0)

    results = await asyncio.gather(
        service.confirm(100, invoice.id, SIG_A, on_verifying=on_verifying),
        service.confirm(100, invoice.id, SIG_A, on_verifying=on_verifying),
        return_exceptions=True,
    )

    successes = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(successes) == 1
    assert isinstance(failures[0], (DuplicateTransaction, InvalidState))
    count = (await session.execute(select(func.count(Payment.id)))).scalar_one()
    assert count == 1


@pytest.mark.asyncio
async def test_commit_rolls_back_when_signature_lands_twice(session, settings, monkeypatch):
    first = await _committed_invoice(session, settings)
    second = await _committed_invoice(session, settings)
    tx = make_transfer_tx(SIG_A, first.memo, 900_000_000)
    tx.instructions.append(
        ParsedInstruction(program_id=MEMO_PROGRAM_ID, program="spl-memo", parsed=second.memo)
    )
    service = PaymentService(session, _verifier(FakeChain({SIG_A: tx})), KeyedLock(), settings)
    await service.confirm(100, first.id, SIG_A)

    async def never_recorded(signature):
        return False

    monkeypatch.setattr(service, "is_recorded", never_recorded)

    with pytest.raises(DuplicateTransaction):
        await service.confirm(100, second.id, SIG_A)

    status = (
        await session.execute(select(Invoice.status).where(Invoice.id == second.id))
    ).scalar_one()
    assert status == InvoiceStatus.PENDING


@pytest.mark.asyncio
async def test_failed_verification_leaves_invoice_pending(session, settings):
    invoice = await _committed_invoice(session, settings)
    chain = FakeChain({SIG_A: make_transfer_tx(SIG_A, "ACC-wrong", 900_000_000)})
    service = PaymentService(session, _verifier(chain), KeyedLock(), settings)

    with pytest.raises(MemoMismatch):
        await service.confirm(100, invoice.id, SIG_A)

    assert not await service.is_recorded(SIG_A)
    assert not await SubscriptionLedger(session, settings).has_any_active_access(100)


@pytest.mark.asyncio
async def test_confirm_on_expired_invoice_persists_expiry(session, settings):
    created = utc_now() - timedelta(hours=1)
    invoice = await InvoiceService(session, settings).create(100, "alerts", 1, now=created)
    await session.commit()
    chain = FakeChain({SIG_A: make_transfer_tx(SIG_A, invoice.memo, 10**9)})
    service = PaymentService(session, _verifier(chain), KeyedLock(), settings)

    with pytest.raises(InvoiceExpired):
        await service.confirm(100, invoice.id, SIG_A)

    await session.rollback()
    status = (
        await session.execute(select(Invoice.status).where(Invoice.id == invoice.id))
    ).scalar_one()
    assert status == InvoiceStatus.EXPIRED
    assert chain.calls == []
