from datetime import timedelta
from decimal import Decimal

import pytest

from domain.intent.entity import Intent
from domain.payment.entity import Payment, PaymentStatus
from domain.payment.exceptions import LedgerInvariantError
from domain.payment.service import assert_intent_balanced, plan_refunds, select_fifo_payment


def _payment(pid, *, created_minute, matches=5, used=0, refunded=0, status=PaymentStatus.SUCCEEDED, charge="ch_x"):
    from datetime import datetime, timezone
    return Payment(
        id=pid,
        user_id=1,
        intent_id=1,
        plan_type="PACK_STANDARD",
        matches_initial=matches,
        amount_base=Decimal("25.00"),
        amount_fees=Decimal("0.00"),
        amount_total=Decimal("25.00"),
        price_per_match=Decimal("5.00"),
        status=status,
        matches_used=used,
        matches_refunded=refunded,
        stripe_charge_id=charge,
        created_at=datetime(2025, 1, 1, 10, created_minute, tzinfo=timezone.utc),
    )


def test_fifo_selects_oldest_payment_with_remaining_credit():
    older_exhausted = _payment(1, created_minute=0, used=5)
    middle = _payment(2, created_minute=5, used=1)
    newest = _payment(3, created_minute=9)
    assert select_fifo_payment([newest, middle, older_exhausted]).id == 2


def test_fifo_skips_pending_and_failed_payments():
    pending = _payment(1, created_minute=0, status=PaymentStatus.PENDING)
    failed = _payment(2, created_minute=1, status=PaymentStatus.FAILED)
    assert select_fifo_payment([pending, failed]) is None


def test_plan_refunds_skips_payments_without_charge_id():
    lines = plan_refunds([_payment(1, created_minute=0, used=2), _payment(2, created_minute=1, charge=None)])
    assert [(l.payment.id, l.unused_matches, l.refund_amount) for l in lines] == [(1, 3, Decimal("15.00"))]


def test_consume_one_refuses_exhausted_payment():
    p = _payment(1, created_minute=0, used=3, refunded=2)
    with pytest.raises(LedgerInvariantError):
        p.consume_one()


def test_apply_refund_rejects_overdraw_without_mutating():
    p = _payment(1, created_minute=0, used=3)
    with pytest.raises(LedgerInvariantError):
        p.apply_refund(3, refund_id="re_1")
    assert p.matches_refunded == 0
    assert p.status == PaymentStatus.SUCCEEDED
    assert p.stripe_refund_id is None


def test_intent_balance_check_detects_drift():
    intent = Intent(id=1, user_id=1, total_matches_purchased=5, total_matches_used=2, total_matches_remaining=3)
    assert_intent_balanced(intent, 0)
    with pytest.raises(LedgerInvariantError) as exc:
        assert_intent_balanced(intent, 1)
    assert exc.value.context["remaining"] == 3


@pytest.mark.asyncio
async def test_purchase_then_consume_updates_intent_and_payment(make_user, buy_pack, ledger, uow_factory):
    user_id = await make_user()
    session_id = await buy_pack(user_id, "PACK_STANDARD")

    async with uow_factory(readonly=True) as uow:
        intent = await uow.intent_repository.get_by_user_id(user_id)
    assert (intent.total_matches_purchased, intent.total_matches_remaining) == (5, 5)
    assert intent.is_in_flow is True

    assert await ledger.consume_one_credit(intent.id) is True
    assert await ledger.consume_one_credit(intent.id) is True

    async with uow_factory(readonly=True) as uow:
        intent = await uow.intent_repository.get_by_user_id(user_id)
        payment = await uow.payment_repository.get_by_checkout_session_id(session_id)
    assert (intent.total_matches_used, intent.total_matches_remaining) == (2, 3)
    assert payment.matches_used == 2
    assert payment.matches_remaining == 3


@pytest.mark.asyncio
async def test_consumption_drains_oldest_pack_first(make_user, buy_pack, ledger, uow_factory):
    user_id = await make_user()
    first = await buy_pack(user_id, "PACK_DISCOVERY")
    second = await buy_pack(user_id, "PACK_STANDARD")

    async with uow_factory(readonly=True) as uow:
        intent = await uow.intent_repository.get_by_user_id(user_id)
    for _ in range(3):
        assert await ledger.consume_one_credit(intent.id) is True

    async with uow_factory(readonly=True) as uow:
        p1 = await uow.payment_repository.get_by_checkout_session_id(first)
        p2 = await uow.payment_repository.get_by_checkout_session_id(second)
        intent = await uow.intent_repository.get_by_id(intent.id)
    assert (p1.matches_used, p2.matches_used) == (2, 1)
    assert intent.total_matches_remaining == 4


@pytest.mark.asyncio
async def test_consume_without_credit_changes_nothing(make_user, buy_pack, ledger, uow_factory):
    user_id = await make_user()
    await buy_pack(user_id, "PACK_DISCOVERY")
    async with uow_factory(readonly=True) as uow:
        intent = await uow.intent_repository.get_by_user_id(user_id)

    assert await ledger.consume_one_credit(intent.id) is True
    assert await ledger.consume_one_credit(intent.id) is True
    assert await ledger.consume_one_credit(intent.id) is False

    async with uow_factory(readonly=True) as uow:
        intent = await uow.intent_repository.get_by_id(intent.id)
    assert (intent.total_matches_used, intent.total_matches_remaining) == (2, 0)
    assert intent.is_in_flow is False


@pytest.mark.asyncio
async def test_consume_unknown_intent_returns_false(ledger):
    assert await ledger.consume_one_credit(9999) is False


@pytest.mark.asyncio
async def test_summary_for_user_without_intent(make_user, ledger):
    user_id = await make_user()
    summary = await ledger.get_matching_summary(user_id)
    assert summary.total_matches_remaining == 0
    assert summary.payments == []
    assert summary.can_request_refund is False
    assert summary.can_buy_new_pack is True
    assert summary.blocking_reason is None


@pytest.mark.asyncio
async def test_summary_reports_refund_potential_per_payment_price(make_user, buy_pack, ledger, uow_factory):
    user_id = await make_user()
    await buy_pack(user_id, "PACK_DISCOVERY")  # 2 x 6.00
    await buy_pack(user_id, "PACK_PRO")        # 15 x 4.00
    async with uow_factory(readonly=True) as uow:
        intent = await uow.intent_repository.get_by_user_id(user_id)
    await ledger.consume_one_credit(intent.id)

    summary = await ledger.get_matching_summary(user_id)
    assert summary.total_matches_purchased == 17
    assert summary.unused_matches == 16
    assert summary.potential_refund_amount == 66.0
    assert summary.can_request_refund is True
    assert [p.plan_type for p in summary.payments] == ["PACK_PRO", "PACK_DISCOVERY"]

    data = summary.model_dump(by_alias=True, mode="json")
    assert data["potentialRefundAmount"] == 66.0
    assert data["canBuyNewPack"] is True


@pytest.mark.asyncio
async def test_summary_exposes_processing_lock(make_user, buy_pack, ledger, set_processing_lock, clock):
    user_id = await make_user()
    await buy_pack(user_id)
    await set_processing_lock(user_id, clock.now + timedelta(minutes=5))

    summary = await ledger.get_matching_summary(user_id)
    assert summary.is_refund_blocked_by_matching is True
    assert summary.can_request_refund is False
    assert summary.blocking_reason == "MATCHING_IN_PROGRESS"

    clock.advance(minutes=6)
    summary = await ledger.get_matching_summary(user_id)
    assert summary.is_refund_blocked_by_matching is False
    assert summary.blocking_reason is None
