"""
额度账本应用服务 - 额度包目录、FIFO 消费与额度汇总投影
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

from application.dto import MatchingSummaryDTO, PackDTO, PaymentSummaryDTO
from core.logging_config import get_logger
from core.settings import payment_settings
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment import packs
from domain.payment.entity import Payment
from domain.payment.exceptions import LedgerInvariantError
from domain.payment.service import assert_intent_balanced, potential_refund, select_fifo_payment
from shared.codes.payment_codes import MatchingErrorCode


logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _payment_summary(p: Payment) -> PaymentSummaryDTO:
    return PaymentSummaryDTO(
        id=p.id,
        plan_type=p.plan_type,
        matches_initial=p.matches_initial,
        matches_used=p.matches_used,
        matches_refunded=p.matches_refunded,
        matches_remaining=p.matches_remaining,
        amount_base=float(p.amount_base),
        amount_total=float(p.amount_total),
        price_per_match=float(p.price_per_match),
        status=p.status.value,
        created_at=p.created_at,
        succeeded_at=p.succeeded_at,
        refunded_at=p.refunded_at,
    )


class CreditLedgerService:
    """
    额度账本服务

    consume_one_credit 是唯一消费额度的入口：先锁意向行，再锁候选支付，
    同一意向的并发消费在意向行锁上串行化。
    """

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        *,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._uow_factory = uow_factory
        self._clock = clock

    def list_packs(self) -> list[PackDTO]:
        """全部额度包（按定义顺序，含手续费/总价/单价）"""
        return [
            PackDTO(
                plan_type=q.pack.plan_type.value,
                label=q.pack.label,
                label_fr=q.pack.label_fr,
                matches=q.pack.matches,
                base_amount=float(q.pack.base_amount),
                fees=float(q.fees),
                total_amount=float(q.total_amount),
                price_per_match=float(q.price_per_match),
                description=q.pack.description,
                is_recommended=q.pack.is_recommended,
            )
            for q in packs.list_available(
                fee_percentage=payment_settings.fee_percentage,
                fee_fixed=payment_settings.fee_fixed,
            )
        ]

    async def consume_one_credit(self, intent_id: int) -> bool:
        """按 FIFO 消费一次额度；无可用额度时返回 False 且不产生任何修改"""
        async with self._uow_factory() as uow:
            intent = await uow.intent_repository.get_by_id(intent_id, for_update=True)
            if intent is None:
                logger.info("credit_consume_intent_missing", intent_id=intent_id)
                return False

            payments = await uow.payment_repository.list_consumable_by_intent(intent_id, for_update=True)
            payment = select_fifo_payment(payments)
            if payment is None:
                logger.info("credit_consume_nothing_left", intent_id=intent_id)
                return False

            payment.consume_one()
            intent.debit_consumption()
            await uow.payment_repository.update(payment)
            await uow.intent_repository.update(intent)

            logger.info(
                "credit_consumed",
                intent_id=intent_id,
                payment_id=payment.id,
                payment_remaining=payment.matches_remaining,
                intent_remaining=intent.total_matches_remaining,
            )
            return True

    async def get_matching_summary(self, user_id: int) -> MatchingSummaryDTO:
        """意向 + 全部支付的只读投影"""
        now = self._clock()
        async with self._uow_factory(readonly=True) as uow:
            intent = await uow.intent_repository.get_by_user_id(user_id)
            payments = await uow.payment_repository.list_by_user(user_id)
            if intent is not None:
                await check_intent_balance(uow, intent)

        unused, refund_amount = potential_refund(payments)
        summary = MatchingSummaryDTO(
            payments=[_payment_summary(p) for p in payments],
            unused_matches=unused,
            potential_refund_amount=float(refund_amount),
        )
        if intent is None:
            summary.can_request_refund = unused > 0
            return summary

        cooldown_active = intent.is_cooldown_active(now)
        matching_in_progress = intent.is_matching_in_progress(now)

        summary.total_matches_purchased = intent.total_matches_purchased
        summary.total_matches_used = intent.total_matches_used
        summary.total_matches_remaining = intent.total_matches_remaining
        summary.is_in_flow = intent.is_in_flow
        summary.can_request_refund = unused > 0 and not matching_in_progress
        summary.refund_cooldown_until = intent.refund_cooldown_until
        summary.refund_cooldown_remaining_ms = (
            int((intent.refund_cooldown_until - now).total_seconds() * 1000) if cooldown_active else None
        )
        summary.can_buy_new_pack = not cooldown_active
        summary.matching_processing_until = intent.matching_processing_until
        summary.is_refund_blocked_by_matching = matching_in_progress
        summary.blocking_reason = _blocking_reason(cooldown_active, matching_in_progress)
        return summary


def _blocking_reason(cooldown_active: bool, matching_in_progress: bool) -> Optional[str]:
    if cooldown_active:
        return MatchingErrorCode.REFUND_COOLDOWN_ACTIVE.value
    if matching_in_progress:
        return MatchingErrorCode.MATCHING_IN_PROGRESS.value
    return None


async def check_intent_balance(uow: AbstractUnitOfWork, intent) -> bool:
    """校验意向计数守恒；失衡只记录错误日志，不中断调用方"""
    refunded = await uow.payment_repository.sum_refunded_by_intent(intent.id)
    try:
        assert_intent_balanced(intent, refunded)
    except LedgerInvariantError as exc:
        logger.error("intent_ledger_unbalanced", error=str(exc), **exc.context)
        return False
    return True
