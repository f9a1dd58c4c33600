from datetime import timedelta
from decimal import Decimal

import pytest

from domain.payment.entity import PaymentStatus, TransactionType
from domain.payment.events import RefundRequested
from domain.payment.exceptions import MatchingInProgressException, NothingToRefundException


async def _intent_id(uow_factory, user_id):
    async with uow_factory(readonly=True) as uow:
        return (await uow.intent_repository.get_by_user_id(user_id)).id


@pytest.mark.asyncio
async def test_refund_after_partial_use_returns_unused_credit(
    make_user, buy_pack, ledger, refunds, gateway, notifier, uow_factory, clock
):
    user_id = await make_user()
    session_id = await buy_pack(user_id, "PACK_STANDARD")
    intent_id = await _intent_id(uow_factory, user_id)
    await ledger.consume_one_credit(intent_id)
    await ledger.consume_one_credit(intent_id)

    result = await refunds.request_refund(user_id)

    assert result.success is True
    assert result.matches_refunded == 3
    assert result.refunded_amount == 15.0
    assert result.successful_refunds == 1
    assert result.refund_cooldown_until == clock.now + timedelta(days=14)

    req = gateway.refund_requests[0]
    assert req.charge_id == f"ch_{session_id}"
    assert req.amount_minor == 1500

    async with uow_factory(readonly=True) as uow:
        payment = await uow.payment_repository.get_by_checkout_session_id(session_id)
        intent = await uow.intent_repository.get_by_id(intent_id)
        txs = await uow.transaction_repository.list_by_payment(payment.id)
    # 2 used + 3 refunded == 5 initial: nothing left on this payment
    assert payment.status == PaymentStatus.REFUNDED
    assert (payment.matches_used, payment.matches_refunded) == (2, 3)
    assert payment.stripe_refund_id == "re_test_1"
    assert intent.total_matches_remaining == 0
    assert intent.is_in_flow is False
    refund_tx = txs[-1]
    assert refund_tx.type == TransactionType.REFUND_REQUESTED
    assert refund_tx.amount_total == Decimal("15.00")
    assert refund_tx.metadata["unusedMatches"] == 3

    events = notifier.of_type(RefundRequested)
    assert len(events) == 1
    assert events[0].refunded_amount == Decimal("15.00")
    assert events[0].matches_refunded == 3


@pytest.mark.asyncio
async def test_refund_spans_payments_in_fifo_order(make_user, buy_pack, refunds, gateway):
    user_id = await make_user()
    first = await buy_pack(user_id, "PACK_DISCOVERY")
    second = await buy_pack(user_id, "PACK_PRO")

    result = await refunds.request_refund(user_id)

    assert [r.charge_id for r in gateway.refund_requests] == [f"ch_{first}", f"ch_{second}"]
    assert result.matches_refunded == 17
    assert result.refunded_amount == 72.0
    assert result.successful_refunds == 2


@pytest.mark.asyncio
async def test_refund_with_nothing_eligible_has_no_side_effects(
    make_user, buy_pack, ledger, refunds, gateway, notifier, uow_factory
):
    user_id = await make_user()
    await buy_pack(user_id, "PACK_DISCOVERY")
    intent_id = await _intent_id(uow_factory, user_id)
    await ledger.consume_one_credit(intent_id)
    await ledger.consume_one_credit(intent_id)

    with pytest.raises(NothingToRefundException):
        await refunds.request_refund(user_id)

    assert gateway.refund_requests == []
    assert notifier.of_type(RefundRequested) == []
    async with uow_factory(readonly=True) as uow:
        intent = await uow.intent_repository.get_by_id(intent_id)
    assert intent.refund_cooldown_until is None


@pytest.mark.asyncio
async def test_refund_without_intent_is_nothing_to_refund(make_user, refunds, gateway):
    user_id = await make_user()
    with pytest.raises(NothingToRefundException):
        await refunds.request_refund(user_id)
    assert gateway.refund_requests == []


@pytest.mark.asyncio
async def test_payment_without_charge_id_is_not_refundable(make_user, checkout, webhooks, refunds, gateway):
    user_id = await make_user()
    session = await checkout.create_checkout_session(user_id, "PACK_STANDARD")
    await webhooks.apply_payment_success(
        session_id=session.session_id,
        payment_intent_id="pi_1",
        charge_id=None,
        event_id="evt_no_charge",
    )

    with pytest.raises(NothingToRefundException):
        await refunds.request_refund(user_id)
    assert gateway.refund_requests == []


@pytest.mark.asyncio
async def test_refund_rejected_while_matching_in_progress(
    make_user, buy_pack, refunds, gateway, set_processing_lock, uow_factory, clock
):
    user_id = await make_user()
    await buy_pack(user_id)
    until = clock.now + timedelta(minutes=3)
    await set_processing_lock(user_id, until)

    with pytest.raises(MatchingInProgressException) as exc:
        await refunds.request_refund(user_id)
    assert exc.value.retry_after == until
    assert exc.value.details["code"] == "MATCHING_IN_PROGRESS"
    assert gateway.refund_requests == []

    async with uow_factory(readonly=True) as uow:
        intent = await uow.intent_repository.get_by_user_id(user_id)
    assert intent.total_matches_remaining == 5
    assert intent.refund_cooldown_until is None


@pytest.mark.asyncio
async def test_expired_processing_lock_does_not_block(make_user, buy_pack, refunds, set_processing_lock, clock):
    user_id = await make_user()
    await buy_pack(user_id)
    await set_processing_lock(user_id, clock.now - timedelta(seconds=1))

    result = await refunds.request_refund(user_id)
    assert result.success is True


@pytest.mark.asyncio
async def test_one_failing_provider_call_does_not_stop_the_rest(make_user, buy_pack, refunds, gateway, uow_factory):
    user_id = await make_user()
    first = await buy_pack(user_id, "PACK_DISCOVERY")
    second = await buy_pack(user_id, "PACK_STANDARD")
    gateway.failing_charges.add(f"ch_{first}")

    result = await refunds.request_refund(user_id)

    assert result.success is True
    assert result.successful_refunds == 1
    assert result.matches_refunded == 5
    assert result.refunded_amount == 25.0

    async with uow_factory(readonly=True) as uow:
        p1 = await uow.payment_repository.get_by_checkout_session_id(first)
        p2 = await uow.payment_repository.get_by_checkout_session_id(second)
        intent = await uow.intent_repository.get_by_user_id(user_id)
    assert p1.status == PaymentStatus.SUCCEEDED
    assert p1.matches_refunded == 0
    assert p2.status == PaymentStatus.REFUNDED
    assert intent.total_matches_remaining == 2
    assert intent.refund_cooldown_until is not None


@pytest.mark.asyncio
async def test_unexpected_gateway_error_keeps_earlier_refunds(
    make_user, buy_pack, refunds, gateway, notifier, uow_factory, clock
):
    user_id = await make_user()
    first = await buy_pack(user_id, "PACK_STANDARD")
    second = await buy_pack(user_id, "PACK_DISCOVERY")
    gateway.charge_errors[f"ch_{second}"] = ConnectionResetError("connection reset by peer")

    result = await refunds.request_refund(user_id)

    assert [r.charge_id for r in gateway.refund_requests] == [f"ch_{first}", f"ch_{second}"]
    assert result.success is True
    assert result.successful_refunds == 1
    assert result.matches_refunded == 5
    assert result.refund_cooldown_until == clock.now + timedelta(days=14)

    async with uow_factory(readonly=True) as uow:
        p1 = await uow.payment_repository.get_by_checkout_session_id(first)
        p2 = await uow.payment_repository.get_by_checkout_session_id(second)
        intent = await uow.intent_repository.get_by_user_id(user_id)
        txs = await uow.transaction_repository.list_by_payment(p1.id)
    assert p1.status == PaymentStatus.REFUNDED
    assert p1.matches_refunded == 5
    assert txs[-1].type == TransactionType.REFUND_REQUESTED
    assert p2.status == PaymentStatus.SUCCEEDED
    assert p2.matches_refunded == 0
    assert intent.total_matches_remaining == 2
    assert intent.refund_cooldown_until == clock.now + timedelta(days=14)
    assert len(notifier.of_type(RefundRequested)) == 1


@pytest.mark.asyncio
async def test_all_provider_calls_failing_sets_no_cooldown(
    make_user, buy_pack, refunds, gateway, notifier, uow_factory
):
    user_id = await make_user()
    first = await buy_pack(user_id, "PACK_DISCOVERY")
    second = await buy_pack(user_id, "PACK_STANDARD")
    gateway.failing_charges.add(f"ch_{first}")
    gateway.silent_charges.add(f"ch_{second}")

    result = await refunds.request_refund(user_id)

    assert result.success is False
    assert result.matches_refunded == 0
    assert result.refunded_amount == 0.0
    assert result.refund_cooldown_until is None
    assert notifier.of_type(RefundRequested) == []
    async with uow_factory(readonly=True) as uow:
        intent = await uow.intent_repository.get_by_user_id(user_id)
    assert intent.total_matches_remaining == 7
    assert intent.refund_cooldown_until is None


@pytest.mark.asyncio
async def test_refund_idempotency_key_tracks_prior_refunds(make_user, buy_pack, refunds, gateway):
    user_id = await make_user()
    await buy_pack(user_id, "PACK_STANDARD")
    result = await refunds.request_refund(user_id)
    assert result.success is True
    key = gateway.refund_requests[0].idempotency_key
    payment_id = gateway.refund_requests[0].metadata["paymentId"]
    assert key == f"refund:{payment_id}:0:5"
