import hashlib
import hmac
import json
import time

import pytest
import stripe

from application.dtos.payments import CheckoutLineItem, CreateCheckoutSession, CreateRefund
from core.settings import payment_settings
from infrastructure.external.payments import get_payment_gateway
from infrastructure.external.payments.exceptions import PaymentProviderError
from infrastructure.external.payments.mock_client import MockPaymentClient


SECRET = "whsec_test_checkout"


def _sign(payload: str, secret: str = SECRET, timestamp: int | None = None) -> str:
    ts = int(time.time()) if timestamp is None else timestamp
    digest = hmac.new(secret.encode(), f"{ts}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


def _event_body(**extra) -> str:
    body = {"id": "evt_sig", "type": "checkout.session.completed", "data": {"object": {"id": "cs_1"}}}
    body.update(extra)
    return json.dumps(body)


@pytest.fixture
def mock_gateway():
    return MockPaymentClient(frontend_url="http://localhost:4200/", webhook_tolerance=300)


@pytest.fixture
def stripe_keys(monkeypatch):
    monkeypatch.setattr(payment_settings.stripe, "secret_key", "sk_test_123")
    monkeypatch.setattr(payment_settings.stripe, "publishable_key", "pk_test_123")
    monkeypatch.setattr(payment_settings.retry, "base_backoff", 0.01)


def _checkout_request(**kw):
    data = dict(
        line_items=[CheckoutLineItem(name="Pack Standard", amount_minor=2500, currency="EUR")],
        success_url="http://localhost:4200/dashboard?payment=success",
        cancel_url="http://localhost:4200/dashboard?payment=cancel",
        metadata={"paymentId": "42", "planType": "PACK_STANDARD"},
        customer_email="alex@example.com",
        idempotency_key="checkout:42",
    )
    data.update(kw)
    return CreateCheckoutSession(**data)


def test_valid_signature_returns_event(mock_gateway):
    payload = _event_body()
    event = mock_gateway.verify_webhook_signature(payload.encode(), _sign(payload), SECRET)
    assert event["id"] == "evt_sig"
    assert event["type"] == "checkout.session.completed"


def test_signature_from_other_secret_is_rejected(mock_gateway):
    payload = _event_body()
    header = _sign(payload, secret="whsec_test_refund")
    assert mock_gateway.verify_webhook_signature(payload.encode(), header, SECRET) is None


def test_tampered_body_is_rejected(mock_gateway):
    payload = _event_body()
    header = _sign(payload)
    tampered = payload.replace("cs_1", "cs_2")
    assert mock_gateway.verify_webhook_signature(tampered.encode(), header, SECRET) is None


def test_stale_timestamp_is_rejected(mock_gateway):
    payload = _event_body()
    header = _sign(payload, timestamp=int(time.time()) - 3600)
    assert mock_gateway.verify_webhook_signature(payload.encode(), header, SECRET) is None


@pytest.mark.parametrize("secret", [None, ""])
def test_missing_secret_rejects_everything(mock_gateway, secret):
    payload = _event_body()
    assert mock_gateway.verify_webhook_signature(payload.encode(), _sign(payload), secret) is None


def test_missing_header_or_body_is_rejected(mock_gateway):
    payload = _event_body()
    assert mock_gateway.verify_webhook_signature(payload.encode(), None, SECRET) is None
    assert mock_gateway.verify_webhook_signature(b"", _sign(payload), SECRET) is None


def test_signed_but_malformed_payload_is_rejected(mock_gateway):
    payload = '{"id": "evt_1", "type":'
    assert mock_gateway.verify_webhook_signature(payload.encode(), _sign(payload), SECRET) is None
    no_type = json.dumps({"id": "evt_1"})
    assert mock_gateway.verify_webhook_signature(no_type.encode(), _sign(no_type), SECRET) is None


@pytest.mark.asyncio
async def test_mock_checkout_session_is_derived_from_payment_id(mock_gateway):
    session = await mock_gateway.create_checkout_session(_checkout_request())
    assert session.id == "cs_mock_42"
    assert session.url == "http://localhost:4200/dashboard?payment=success&mock=true&session_id=cs_mock_42"
    assert await mock_gateway.retrieve_checkout_session(session.id) is None


@pytest.mark.asyncio
async def test_mock_refund_id_is_stable_per_idempotency_key(mock_gateway):
    req = CreateRefund(charge_id="ch_1", amount_minor=1500, idempotency_key="refund:1:0:3")
    first = await mock_gateway.create_refund(req)
    second = await mock_gateway.create_refund(req)
    other = await mock_gateway.create_refund(req.model_copy(update={"idempotency_key": "refund:1:3:2"}))
    assert first.id == second.id
    assert first.id.startswith("re_mock_")
    assert other.id != first.id
    assert first.status == "succeeded"


def test_factory_falls_back_to_mock_without_keys():
    get_payment_gateway.cache_clear()
    try:
        gateway = get_payment_gateway()
        assert gateway.provider == "mock"
        assert gateway.is_configured() is False
    finally:
        get_payment_gateway.cache_clear()


def test_factory_uses_stripe_with_wellformed_keys(stripe_keys):
    get_payment_gateway.cache_clear()
    try:
        assert get_payment_gateway().provider == "stripe"
    finally:
        get_payment_gateway.cache_clear()


@pytest.mark.parametrize("secret_key,publishable_key", [("rk_live_1", "pk_live_1"), ("sk_live_1", None)])
def test_malformed_keys_are_not_configured(monkeypatch, secret_key, publishable_key):
    monkeypatch.setattr(payment_settings.stripe, "secret_key", secret_key)
    monkeypatch.setattr(payment_settings.stripe, "publishable_key", publishable_key)
    assert payment_settings.stripe.is_configured is False


@pytest.mark.asyncio
async def test_stripe_checkout_passes_amounts_and_idempotency_key(stripe_keys, monkeypatch):
    from infrastructure.external.payments.stripe_client import StripeClient

    calls = []

    def fake_create(**params):
        calls.append(params)
        return {"id": "cs_live_1", "url": "https://checkout.stripe.com/c/pay/cs_live_1"}

    monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)

    session = await StripeClient().create_checkout_session(_checkout_request())

    assert session.id == "cs_live_1"
    params = calls[0]
    assert params["mode"] == "payment"
    assert params["idempotency_key"] == "checkout:42"
    assert params["customer_email"] == "alex@example.com"
    item = params["line_items"][0]
    assert item["price_data"]["unit_amount"] == 2500
    assert item["price_data"]["currency"] == "eur"
    assert params["metadata"]["planType"] == "PACK_STANDARD"


@pytest.mark.asyncio
async def test_stripe_retries_connection_errors(stripe_keys, monkeypatch):
    from infrastructure.external.payments.stripe_client import StripeClient

    attempts = {"n": 0}

    def flaky_create(**params):
        attempts["n"] += 1
        if attempts["n"] == 1:
            raise stripe.APIConnectionError("connection reset")
        return {"id": "cs_live_2", "url": None}

    monkeypatch.setattr(stripe.checkout.Session, "create", flaky_create)

    session = await StripeClient().create_checkout_session(_checkout_request())
    assert session.id == "cs_live_2"
    assert attempts["n"] == 2


@pytest.mark.asyncio
async def test_stripe_error_becomes_provider_error(stripe_keys, monkeypatch):
    from infrastructure.external.payments.stripe_client import StripeClient

    def declined(**params):
        raise stripe.InvalidRequestError("No such charge: ch_missing", "charge", code="resource_missing")

    monkeypatch.setattr(stripe.Refund, "create", declined)

    with pytest.raises(PaymentProviderError) as exc:
        await StripeClient().create_refund(CreateRefund(charge_id="ch_missing", amount_minor=500))
    assert exc.value.details["provider"] == "stripe"
    assert exc.value.details["provider_code"] == "resource_missing"
    assert exc.value.details["charge_id"] == "ch_missing"


@pytest.mark.asyncio
async def test_stripe_refund_maps_result(stripe_keys, monkeypatch):
    from infrastructure.external.payments.stripe_client import StripeClient

    captured = {}

    def fake_refund(**params):
        captured.update(params)
        return {"id": "re_live_1", "status": "pending", "charge": "ch_1", "amount": 1500, "currency": "eur"}

    monkeypatch.setattr(stripe.Refund, "create", fake_refund)

    result = await StripeClient().create_refund(
        CreateRefund(charge_id="ch_1", amount_minor=1500, metadata={"paymentId": "7"}, idempotency_key="refund:7:0:3")
    )

    assert captured == {
        "charge": "ch_1",
        "amount": 1500,
        "metadata": {"paymentId": "7"},
        "idempotency_key": "refund:7:0:3",
    }
    assert (result.id, result.status, result.amount_minor) == ("re_live_1", "pending", 1500)


@pytest.mark.asyncio
async def test_stripe_retrieve_reads_expanded_charge(stripe_keys, monkeypatch):
    from infrastructure.external.payments.stripe_client import StripeClient

    def fake_retrieve(session_id, expand=None):
        assert "payment_intent.latest_charge" in expand
        return {
            "id": session_id,
            "status": "complete",
            "payment_status": "paid",
            "payment_intent": {"id": "pi_9", "latest_charge": {"id": "ch_9"}},
            "amount_total": 2500,
            "currency": "eur",
            "metadata": {"paymentId": "9"},
        }

    monkeypatch.setattr(stripe.checkout.Session, "retrieve", fake_retrieve)

    details = await StripeClient().retrieve_checkout_session("cs_live_9")
    assert (details.payment_intent_id, details.charge_id) == ("pi_9", "ch_9")
    assert details.payment_status == "paid"


@pytest.mark.asyncio
async def test_stripe_retrieve_failure_is_unknown(stripe_keys, monkeypatch):
    from infrastructure.external.payments.stripe_client import StripeClient

    def broken(session_id, expand=None):
        raise stripe.InvalidRequestError("No such checkout.session", "id")

    monkeypatch.setattr(stripe.checkout.Session, "retrieve", broken)

    assert await StripeClient().retrieve_checkout_session("cs_missing") is None


def test_status_mapping_passes_unknown_values_through(mock_gateway):
    assert mock_gateway._map_status("requires_action") == "pending"
    assert mock_gateway._map_status("canceled") == "failed"
    assert mock_gateway._map_status("something_new") == "something_new"
    assert mock_gateway._map_status(None) is None
