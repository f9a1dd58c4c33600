"""
Webhook reconciliation service.

Drives ledger transitions from verified provider events. Every handler is
idempotent twice over: the event id is looked up first and is also a unique
column, so a concurrent duplicate insert rolls the whole unit of work back.
Domain events are published only after the unit of work has committed.
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

from application.dtos.provider_events import (
    ChargeRefunded,
    ChargeRefundUpdated,
    CheckoutSessionCompleted,
    CheckoutSessionExpired,
    InvoicePaymentFailed,
    ProviderEvent,
    parse_provider_event,
)
from application.ports.notifier import Notifier
from application.ports.payment_gateway import PaymentGateway
from application.services.credit_ledger_service import check_intent_balance
from core.logging_config import get_logger
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import (
    PaymentStatus,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from domain.payment.events import PaymentEvent, PaymentFailed, PaymentSucceeded
from domain.payment.exceptions import DuplicateEventException
from domain.payment.packs import from_minor_units


logger = get_logger(__name__)


class WebhookOutcome(str, Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    SKIPPED = "skipped"      # state already reflects the event
    IGNORED = "ignored"      # nothing to act on (unknown payment, unhandled type)


CHECKOUT_EVENTS = (CheckoutSessionCompleted, CheckoutSessionExpired, InvoicePaymentFailed)
REFUND_EVENTS = (ChargeRefundUpdated, ChargeRefunded)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WebhookService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway: PaymentGateway,
        notifier: Notifier,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._uow_factory = uow_factory
        self._gateway = gateway
        self._notifier = notifier
        self._clock = clock

    async def handle_checkout_event(self, raw_event: dict[str, Any]) -> WebhookOutcome:
        """Checkout endpoint: session completed / expired, invoice payment failed."""
        return await self._handle(parse_provider_event(raw_event), CHECKOUT_EVENTS)

    async def handle_refund_event(self, raw_event: dict[str, Any]) -> WebhookOutcome:
        """Refund endpoint: refund status updates, charge refunded."""
        return await self._handle(parse_provider_event(raw_event), REFUND_EVENTS)

    async def _handle(self, event: ProviderEvent, accepted: tuple[type, ...]) -> WebhookOutcome:
        logger.info("webhook_event_received", event_id=event.event_id, event_type=event.type)
        if not isinstance(event, accepted):
            logger.info("webhook_event_unhandled", event_id=event.event_id, event_type=event.type)
            return WebhookOutcome.IGNORED

        if isinstance(event, CheckoutSessionCompleted):
            return await self._on_checkout_completed(event)
        if isinstance(event, CheckoutSessionExpired):
            return await self.apply_payment_failure(
                session_id=event.session_id, event_id=event.event_id, reason="Session expired"
            )
        if isinstance(event, InvoicePaymentFailed):
            # One-time payments rely on checkout.session.* events
            logger.info("webhook_invoice_payment_failed", event_id=event.event_id, invoice_id=event.invoice_id)
            return WebhookOutcome.IGNORED
        if isinstance(event, ChargeRefundUpdated):
            return await self._on_refund_updated(event)
        logger.info(
            "webhook_charge_refunded",
            event_id=event.event_id,
            charge_id=event.charge_id,
            amount_refunded=str(from_minor_units(event.amount_refunded_minor)),
        )
        return WebhookOutcome.IGNORED

    async def _already_recorded(self, event_id: str) -> bool:
        async with self._uow_factory(readonly=True) as uow:
            return await uow.transaction_repository.exists_event(event_id)

    async def _on_checkout_completed(self, event: CheckoutSessionCompleted) -> WebhookOutcome:
        if await self._already_recorded(event.event_id):
            logger.info("webhook_duplicate_event", event_id=event.event_id)
            return WebhookOutcome.DUPLICATE

        # Re-read the session outside any row lock to find the charge id
        charge_id = None
        payment_intent_id = event.payment_intent_id
        if payment_intent_id:
            details = await self._gateway.retrieve_checkout_session(event.session_id)
            if details is not None:
                charge_id = details.charge_id
                payment_intent_id = details.payment_intent_id or payment_intent_id
            else:
                logger.warning("checkout_session_lookup_unavailable", session_id=event.session_id)

        return await self.apply_payment_success(
            session_id=event.session_id,
            payment_intent_id=payment_intent_id,
            charge_id=charge_id,
            event_id=event.event_id,
        )

    async def apply_payment_success(
        self,
        *,
        session_id: str,
        payment_intent_id: Optional[str],
        charge_id: Optional[str],
        event_id: str,
    ) -> WebhookOutcome:
        """Mark the payment SUCCEEDED and credit its units to the intent (once)."""
        now = self._clock()
        try:
            async with self._uow_factory() as uow:
                if await uow.transaction_repository.exists_event(event_id):
                    logger.info("webhook_duplicate_event", event_id=event_id)
                    return WebhookOutcome.DUPLICATE

                found = await uow.payment_repository.get_by_checkout_session_id(session_id)
                if found is None:
                    logger.warning("webhook_payment_not_found", session_id=session_id, event_id=event_id)
                    return WebhookOutcome.IGNORED

                # Lock order: intent, then payment
                intent = await uow.intent_repository.get_by_id(found.intent_id, for_update=True)
                payment = await uow.payment_repository.get_by_id(found.id, for_update=True)
                if payment.status not in (PaymentStatus.PENDING, PaymentStatus.FAILED):
                    logger.info(
                        "payment_already_processed",
                        payment_id=payment.id,
                        status=payment.status.value,
                        event_id=event_id,
                    )
                    return WebhookOutcome.SKIPPED

                payment.mark_succeeded(payment_intent_id=payment_intent_id, charge_id=charge_id, now=now)
                if not intent.has_links:
                    home_id, search_id = await uow.intent_repository.find_user_links(intent.user_id)
                    intent.link(home_id=home_id, search_id=search_id)
                    if not intent.has_links:
                        logger.warning(
                            "intent_links_unresolved",
                            intent_id=intent.id,
                            home_id=intent.home_id,
                            search_id=intent.search_id,
                        )
                intent.credit_purchase(payment.matches_initial)
                intent.recompute_in_flow()

                await uow.payment_repository.update(payment)
                await uow.intent_repository.update(intent)
                await uow.transaction_repository.add(
                    Transaction(
                        id=None,
                        type=TransactionType.PAYMENT_SUCCEEDED,
                        status=TransactionStatus.SUCCEEDED,
                        user_id=payment.user_id,
                        payment_id=payment.id,
                        amount_base=payment.amount_base,
                        amount_fees=payment.amount_fees,
                        amount_total=payment.amount_total,
                        currency=payment.currency,
                        stripe_event_id=event_id,
                        stripe_object_id=session_id,
                        metadata={"paymentIntentId": payment_intent_id, "chargeId": charge_id},
                    )
                )
                await check_intent_balance(uow, intent)
                user = await uow.user_repository.get_by_id(payment.user_id)
        except DuplicateEventException:
            logger.info("webhook_duplicate_event_concurrent", event_id=event_id)
            return WebhookOutcome.DUPLICATE

        logger.info(
            "payment_succeeded",
            payment_id=payment.id,
            intent_id=intent.id,
            matches=payment.matches_initial,
            charge_id=charge_id,
            event_id=event_id,
        )
        if user is not None:
            self._publish(
                PaymentSucceeded(
                    user_id=user.id,
                    email=user.email,
                    first_name=user.display_name,
                    payment_id=payment.id,
                    plan_type=payment.plan_type,
                    matches=payment.matches_initial,
                    amount=payment.amount_total,
                    currency=payment.currency,
                    total_matches_remaining=intent.total_matches_remaining,
                )
            )
        return WebhookOutcome.PROCESSED

    async def apply_payment_failure(self, *, session_id: str, event_id: str, reason: str) -> WebhookOutcome:
        """Mark a still-PENDING payment FAILED; later states are left untouched."""
        try:
            async with self._uow_factory() as uow:
                if await uow.transaction_repository.exists_event(event_id):
                    logger.info("webhook_duplicate_event", event_id=event_id)
                    return WebhookOutcome.DUPLICATE

                payment = await uow.payment_repository.get_by_checkout_session_id(session_id, for_update=True)
                if payment is None:
                    logger.warning("webhook_payment_not_found", session_id=session_id, event_id=event_id)
                    return WebhookOutcome.IGNORED
                if payment.status != PaymentStatus.PENDING:
                    logger.info(
                        "payment_failure_ignored",
                        payment_id=payment.id,
                        status=payment.status.value,
                        event_id=event_id,
                    )
                    return WebhookOutcome.SKIPPED

                payment.mark_failed()
                await uow.payment_repository.update(payment)
                await uow.transaction_repository.add(
                    Transaction(
                        id=None,
                        type=TransactionType.PAYMENT_FAILED,
                        status=TransactionStatus.FAILED,
                        user_id=payment.user_id,
                        payment_id=payment.id,
                        amount_base=payment.amount_base,
                        amount_fees=payment.amount_fees,
                        amount_total=payment.amount_total,
                        currency=payment.currency,
                        stripe_event_id=event_id,
                        stripe_object_id=session_id,
                        metadata={"reason": reason},
                    )
                )
                user = await uow.user_repository.get_by_id(payment.user_id)
        except DuplicateEventException:
            logger.info("webhook_duplicate_event_concurrent", event_id=event_id)
            return WebhookOutcome.DUPLICATE

        logger.info("payment_failed", payment_id=payment.id, reason=reason, event_id=event_id)
        if user is not None:
            self._publish(
                PaymentFailed(
                    user_id=user.id,
                    email=user.email,
                    first_name=user.display_name,
                    payment_id=payment.id,
                    plan_type=payment.plan_type,
                    reason=reason,
                )
            )
        return WebhookOutcome.PROCESSED

    async def _on_refund_updated(self, event: ChargeRefundUpdated) -> WebhookOutcome:
        if not event.charge_id:
            logger.error("webhook_refund_without_charge", event_id=event.event_id, refund_id=event.refund_id)
            return WebhookOutcome.IGNORED
        logger.info(
            "webhook_refund_status",
            refund_id=event.refund_id,
            charge_id=event.charge_id,
            status=event.status,
        )
        if event.status == "succeeded":
            return await self._apply_refund_succeeded(event)
        if event.status == "failed":
            return await self._apply_refund_failed(event)
        return WebhookOutcome.IGNORED

    async def _apply_refund_succeeded(self, event: ChargeRefundUpdated) -> WebhookOutcome:
        amount = from_minor_units(event.amount_minor)
        try:
            async with self._uow_factory() as uow:
                if await uow.transaction_repository.exists_event(event.event_id):
                    logger.info("webhook_duplicate_event", event_id=event.event_id)
                    return WebhookOutcome.DUPLICATE
                payment = await uow.payment_repository.get_by_charge_id(event.charge_id)
                if payment is None:
                    logger.warning("webhook_payment_not_found", charge_id=event.charge_id, event_id=event.event_id)
                    return WebhookOutcome.IGNORED
                await uow.transaction_repository.add(
                    Transaction(
                        id=None,
                        type=TransactionType.REFUND_SUCCEEDED,
                        status=TransactionStatus.SUCCEEDED,
                        user_id=payment.user_id,
                        payment_id=payment.id,
                        amount_base=amount,
                        amount_total=amount,
                        currency=event.currency or payment.currency,
                        stripe_event_id=event.event_id,
                        stripe_object_id=event.refund_id,
                        metadata={"chargeId": event.charge_id},
                    )
                )
        except DuplicateEventException:
            logger.info("webhook_duplicate_event_concurrent", event_id=event.event_id)
            return WebhookOutcome.DUPLICATE

        logger.info("refund_succeeded", payment_id=payment.id, refund_id=event.refund_id, amount=str(amount))
        return WebhookOutcome.PROCESSED

    async def _apply_refund_failed(self, event: ChargeRefundUpdated) -> WebhookOutcome:
        """Compensate the optimistic refund: units go back to payment and intent.

        The rebuy cooldown set at refund time stays in place.
        """
        amount = from_minor_units(event.amount_minor)
        reverted_units = 0
        try:
            async with self._uow_factory() as uow:
                if await uow.transaction_repository.exists_event(event.event_id):
                    logger.info("webhook_duplicate_event", event_id=event.event_id)
                    return WebhookOutcome.DUPLICATE
                found = await uow.payment_repository.get_by_charge_id(event.charge_id)
                if found is None:
                    logger.warning("webhook_payment_not_found", charge_id=event.charge_id, event_id=event.event_id)
                    return WebhookOutcome.IGNORED

                intent = await uow.intent_repository.get_by_id(found.intent_id, for_update=True)
                payment = await uow.payment_repository.get_by_id(found.id, for_update=True)

                refunded_states = (PaymentStatus.REFUNDED, PaymentStatus.PARTIALLY_REFUNDED)
                if payment.status in refunded_states and payment.stripe_refund_id == event.refund_id:
                    requested = await uow.transaction_repository.get_latest_for_payment(
                        payment.id, TransactionType.REFUND_REQUESTED, stripe_object_id=event.refund_id
                    )
                    units = int((requested.metadata or {}).get("unusedMatches", 0)) if requested else 0
                    if units > 0:
                        payment.revert_refund(units)
                        intent.revert_refund(units)
                        await uow.payment_repository.update(payment)
                        await uow.intent_repository.update(intent)
                        reverted_units = units
                    else:
                        logger.warning(
                            "refund_revert_units_unknown",
                            payment_id=payment.id,
                            refund_id=event.refund_id,
                        )
                else:
                    logger.info(
                        "refund_revert_not_applicable",
                        payment_id=payment.id,
                        status=payment.status.value,
                        recorded_refund_id=payment.stripe_refund_id,
                        refund_id=event.refund_id,
                    )

                await uow.transaction_repository.add(
                    Transaction(
                        id=None,
                        type=TransactionType.REFUND_FAILED,
                        status=TransactionStatus.FAILED,
                        user_id=payment.user_id,
                        payment_id=payment.id,
                        amount_base=amount,
                        amount_total=amount,
                        currency=event.currency or payment.currency,
                        stripe_event_id=event.event_id,
                        stripe_object_id=event.refund_id,
                        metadata={
                            "chargeId": event.charge_id,
                            "reason": event.failure_reason or "Unknown reason",
                            "revertedMatches": reverted_units,
                        },
                    )
                )
                if reverted_units:
                    await check_intent_balance(uow, intent)
        except DuplicateEventException:
            logger.info("webhook_duplicate_event_concurrent", event_id=event.event_id)
            return WebhookOutcome.DUPLICATE

        logger.warning(
            "refund_failed",
            payment_id=payment.id,
            refund_id=event.refund_id,
            reason=event.failure_reason,
            reverted_matches=reverted_units,
        )
        return WebhookOutcome.PROCESSED

    def _publish(self, event: PaymentEvent) -> None:
        self._notifier.publish(event)
