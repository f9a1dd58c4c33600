from datetime import timedelta

import pytest

from application.dtos.payments import CheckoutSessionDetails
from application.services.reconciliation_service import PendingPaymentReconciler
from domain.payment.entity import PaymentStatus, TransactionType
from domain.payment.events import PaymentSucceeded


@pytest.fixture
def reconciler(uow_factory, gateway, webhooks, clock):
    return PendingPaymentReconciler(
        uow_factory, gateway, webhooks, clock=clock, grace=timedelta(minutes=30), batch_size=50
    )


def _paid(session_id):
    return CheckoutSessionDetails(
        id=session_id, status="complete", payment_status="paid",
        payment_intent_id="pi_recon", charge_id="ch_recon",
    )


async def _payment(uow_factory, session_id):
    async with uow_factory(readonly=True) as uow:
        return await uow.payment_repository.get_by_checkout_session_id(session_id)


@pytest.mark.asyncio
async def test_recent_pending_payment_is_left_alone(make_user, checkout, reconciler, gateway, clock):
    user_id = await make_user()
    session = await checkout.create_checkout_session(user_id, "PACK_STANDARD")
    gateway.sessions[session.session_id] = _paid(session.session_id)
    clock.advance(minutes=10)

    report = await reconciler.reconcile_pending()

    assert report.scanned == 0
    assert gateway.retrieve_calls == []


@pytest.mark.asyncio
async def test_paid_session_is_credited_once(make_user, checkout, reconciler, gateway, notifier, uow_factory, clock):
    user_id = await make_user()
    session = await checkout.create_checkout_session(user_id, "PACK_STANDARD")
    gateway.sessions[session.session_id] = _paid(session.session_id)
    clock.advance(minutes=31)

    report = await reconciler.reconcile_pending()
    again = await reconciler.reconcile_pending()

    assert report.as_dict() == {"scanned": 1, "succeeded": 1, "failed": 0, "unchanged": 0, "errors": 0}
    assert again.scanned == 0
    payment = await _payment(uow_factory, session.session_id)
    assert payment.status == PaymentStatus.SUCCEEDED
    assert payment.stripe_charge_id == "ch_recon"
    async with uow_factory(readonly=True) as uow:
        intent = await uow.intent_repository.get_by_id(payment.intent_id)
        tx = await uow.transaction_repository.get_latest_for_payment(payment.id, TransactionType.PAYMENT_SUCCEEDED)
    assert intent.total_matches_remaining == 5
    assert tx.stripe_event_id == f"reconcile:{session.session_id}"
    assert len(notifier.of_type(PaymentSucceeded)) == 1


@pytest.mark.asyncio
async def test_late_webhook_after_reconciliation_is_skipped(make_user, checkout, reconciler, webhooks, gateway, clock):
    from application.services.webhook_service import WebhookOutcome

    user_id = await make_user()
    session = await checkout.create_checkout_session(user_id, "PACK_STANDARD")
    gateway.sessions[session.session_id] = _paid(session.session_id)
    clock.advance(minutes=31)
    await reconciler.reconcile_pending()

    outcome = await webhooks.apply_payment_success(
        session_id=session.session_id, payment_intent_id="pi_recon", charge_id="ch_recon", event_id="evt_late"
    )

    assert outcome == WebhookOutcome.SKIPPED


@pytest.mark.asyncio
async def test_expired_session_marks_payment_failed(make_user, checkout, reconciler, gateway, uow_factory, clock):
    user_id = await make_user()
    session = await checkout.create_checkout_session(user_id, "PACK_STANDARD")
    gateway.sessions[session.session_id] = CheckoutSessionDetails(
        id=session.session_id, status="expired", payment_status="unpaid"
    )
    clock.advance(hours=2)

    report = await reconciler.reconcile_pending()

    assert (report.failed, report.succeeded) == (1, 0)
    payment = await _payment(uow_factory, session.session_id)
    assert payment.status == PaymentStatus.FAILED


@pytest.mark.asyncio
async def test_open_or_unknown_sessions_stay_pending(make_user, checkout, reconciler, gateway, uow_factory, clock):
    user_id = await make_user()
    open_session = await checkout.create_checkout_session(user_id, "PACK_STANDARD")
    unknown = await checkout.create_checkout_session(user_id, "PACK_DISCOVERY")
    gateway.sessions[open_session.session_id] = CheckoutSessionDetails(
        id=open_session.session_id, status="open", payment_status="unpaid"
    )
    clock.advance(minutes=45)

    report = await reconciler.reconcile_pending()

    assert report.scanned == 2
    assert report.unchanged == 2
    assert (await _payment(uow_factory, open_session.session_id)).status == PaymentStatus.PENDING
    assert (await _payment(uow_factory, unknown.session_id)).status == PaymentStatus.PENDING


@pytest.mark.asyncio
async def test_payment_without_provider_session_is_not_looked_up(
    make_user, checkout, reconciler, gateway, uow_factory, clock
):
    from decimal import Decimal
    from domain.payment.entity import Payment

    user_id = await make_user()
    session = await checkout.create_checkout_session(user_id, "PACK_DISCOVERY")
    existing = await _payment(uow_factory, session.session_id)
    # a crash between the insert and the provider call leaves the placeholder
    async with uow_factory() as uow:
        await uow.payment_repository.create(
            Payment(
                id=None,
                user_id=user_id,
                intent_id=existing.intent_id,
                plan_type="PACK_STANDARD",
                matches_initial=5,
                amount_base=Decimal("25.00"),
                amount_fees=Decimal("0.00"),
                amount_total=Decimal("25.00"),
                price_per_match=Decimal("5.00"),
                stripe_checkout_session_id="pending_0f6c2a",
                created_at=clock.now,
            )
        )
    clock.advance(minutes=31)

    report = await reconciler.reconcile_pending()

    assert report.scanned == 2
    assert report.unchanged == 2
    assert gateway.retrieve_calls == [session.session_id]


@pytest.mark.asyncio
async def test_lookup_error_is_counted_and_sweep_continues(
    make_user, checkout, reconciler, gateway, uow_factory, clock, monkeypatch
):
    user_id = await make_user()
    first = await checkout.create_checkout_session(user_id, "PACK_DISCOVERY")
    clock.advance(seconds=1)
    second = await checkout.create_checkout_session(user_id, "PACK_STANDARD")
    gateway.sessions[second.session_id] = _paid(second.session_id)
    clock.advance(minutes=31)

    original = gateway.retrieve_checkout_session

    async def _flaky(session_id):
        if session_id == first.session_id:
            raise RuntimeError("connection reset")
        return await original(session_id)

    monkeypatch.setattr(gateway, "retrieve_checkout_session", _flaky)

    report = await reconciler.reconcile_pending()

    assert (report.errors, report.succeeded) == (1, 1)
    assert (await _payment(uow_factory, first.session_id)).status == PaymentStatus.PENDING
    assert (await _payment(uow_factory, second.session_id)).status == PaymentStatus.SUCCEEDED
