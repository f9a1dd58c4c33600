"""Pytest bootstrap configuration.

Ensure mandatory environment variables are set before test collection
and module imports that depend on application settings.
"""
import itertools
import os

# Mandatory secret key for settings validation
os.environ.setdefault("SECRET_KEY", "test-secret-key")
# Module-level engine must not need a Postgres driver
os.environ["DATABASE__URL"] = "sqlite+aiosqlite:///:memory:"
# Celery tasks run in-process
os.environ["ENVIRONMENT"] = "test"
# Offline gateway; signatures are still verified with these secrets
os.environ.pop("STRIPE__SECRET_KEY", None)
os.environ.pop("STRIPE__PUBLISHABLE_KEY", None)
os.environ["STRIPE__WEBHOOK_SECRET_CHECKOUT"] = "whsec_test_checkout"
os.environ["STRIPE__WEBHOOK_SECRET_REFUND"] = "whsec_test_refund"

from datetime import datetime, timedelta, timezone  # noqa: E402
from typing import Optional  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from application.dtos.payments import CheckoutSession, CheckoutSessionDetails, RefundResult  # noqa: E402
from application.services.checkout_service import CheckoutService  # noqa: E402
from application.services.credit_ledger_service import CreditLedgerService  # noqa: E402
from application.services.refund_service import RefundService  # noqa: E402
from application.services.webhook_service import WebhookService  # noqa: E402
from infrastructure.external.payments.base import BasePaymentClient  # noqa: E402
from infrastructure.external.payments.exceptions import PaymentProviderError  # noqa: E402
from infrastructure.models import Base, HomeModel, SearchModel, UserModel  # noqa: E402
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork  # noqa: E402


_emails = itertools.count(1)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingGateway(BasePaymentClient):
    """In-memory provider: records requests, failures are switched on per charge."""

    provider = "recording"

    def __init__(self):
        super().__init__(webhook_tolerance=300)
        self.checkout_requests = []
        self.refund_requests = []
        self.retrieve_calls = []
        self.sessions: dict[str, CheckoutSessionDetails] = {}
        self.checkout_error: Optional[Exception] = None
        self.failing_charges: set[str] = set()
        self.silent_charges: set[str] = set()
        self.charge_errors: dict[str, Exception] = {}
        self._refund_seq = 0

    def is_configured(self) -> bool:
        return True

    async def create_checkout_session(self, req):
        self.checkout_requests.append(req)
        if self.checkout_error is not None:
            raise self.checkout_error
        session_id = f"cs_test_{req.metadata['paymentId']}"
        return CheckoutSession(id=session_id, url=f"https://checkout.test/{session_id}")

    async def retrieve_checkout_session(self, session_id):
        self.retrieve_calls.append(session_id)
        return self.sessions.get(session_id)

    async def create_refund(self, req):
        self.refund_requests.append(req)
        if req.charge_id in self.charge_errors:
            raise self.charge_errors[req.charge_id]
        if req.charge_id in self.failing_charges:
            raise PaymentProviderError("Your card was declined", provider=self.provider, provider_code="card_declined")
        if req.charge_id in self.silent_charges:
            return None
        self._refund_seq += 1
        return RefundResult(
            id=f"re_test_{self._refund_seq}",
            status="pending",
            charge_id=req.charge_id,
            amount_minor=req.amount_minor,
            currency="eur",
        )


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def publish(self, event) -> None:
        self.events.append(event)

    def of_type(self, cls):
        return [e for e in self.events if isinstance(e, cls)]


@pytest_asyncio.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def uow_factory(session_factory):
    def _factory(*, readonly: bool = False) -> SQLAlchemyUnitOfWork:
        return SQLAlchemyUnitOfWork(session_factory=session_factory, readonly=readonly)
    return _factory


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def gateway():
    return RecordingGateway()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def ledger(uow_factory, clock):
    return CreditLedgerService(uow_factory, clock=clock)


@pytest.fixture
def checkout(uow_factory, gateway, clock):
    return CheckoutService(uow_factory, gateway, clock=clock)


@pytest.fixture
def refunds(uow_factory, gateway, notifier, clock):
    return RefundService(uow_factory, gateway, notifier, clock=clock)


@pytest.fixture
def webhooks(uow_factory, gateway, notifier, clock):
    return WebhookService(uow_factory, gateway, notifier, clock=clock)


@pytest.fixture
def make_user(session_factory):
    """Insert a user row (the account system owns this table in production)."""
    async def _make(
        *,
        email: Optional[str] = None,
        is_banned: bool = False,
        is_kyc_verified: bool = True,
        with_listing: bool = True,
    ) -> int:
        async with session_factory() as session:
            user = UserModel(
                email=email or f"user{next(_emails)}@example.com",
                first_name="Camille",
                is_banned=is_banned,
                is_kyc_verified=is_kyc_verified,
            )
            session.add(user)
            await session.flush()
            if with_listing:
                session.add(HomeModel(user_id=user.id))
                session.add(SearchModel(user_id=user.id))
            await session.commit()
            return user.id
    return _make


@pytest.fixture
def buy_pack(checkout, webhooks, clock):
    """Checkout + confirmed payment; returns the payment's session id."""
    counter = {"n": 0}

    async def _buy(user_id: int, plan_type: str = "PACK_STANDARD") -> str:
        counter["n"] += 1
        session = await checkout.create_checkout_session(user_id, plan_type)
        await webhooks.apply_payment_success(
            session_id=session.session_id,
            payment_intent_id=f"pi_{counter['n']}",
            charge_id=f"ch_{session.session_id}",
            event_id=f"evt_paid_{session.session_id}",
        )
        clock.advance(minutes=1)
        return session.session_id
    return _buy


@pytest.fixture
def set_processing_lock(session_factory):
    """Simulate the matching engine holding its processing lock."""
    from sqlalchemy import update
    from infrastructure.models import IntentModel

    async def _set(user_id: int, until: Optional[datetime], holder: str = "matcher-1") -> None:
        async with session_factory() as session:
            await session.execute(
                update(IntentModel)
                .where(IntentModel.user_id == user_id)
                .values(matching_processing_until=until, matching_processing_by=holder)
            )
            await session.commit()
    return _set
