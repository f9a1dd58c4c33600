"""
退款与冷却策略应用服务

整个退款（锁检查、资格计算、渠道调用、账本写入、冷却期）在同一个工作单元内
执行并持有意向行锁，同一意向的并发额度消费会在该锁上等待。
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable

from application.dto import RefundResponseDTO
from application.dtos.payments import CreateRefund
from application.ports.notifier import Notifier
from application.ports.payment_gateway import PaymentGateway
from application.services.credit_ledger_service import check_intent_balance
from core.config import settings
from core.i18n import t
from core.logging_config import get_logger
from domain.common.exceptions import BusinessException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import Transaction, TransactionStatus, TransactionType
from domain.payment.events import RefundRequested
from domain.payment.exceptions import (
    LedgerInvariantError,
    MatchingInProgressException,
    NothingToRefundException,
)
from domain.payment.packs import round_money, to_minor_units
from domain.payment.service import plan_refunds


logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RefundService:
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

    async def request_refund(self, user_id: int) -> RefundResponseDTO:
        """
        按 FIFO 退还全部未使用额度

        - 匹配引擎处理锁未过期：直接拒绝（不读取/修改账本）
        - 单笔渠道失败只记录日志并继续下一笔
        - 单笔不变量校验失败：放弃该笔的账本更新并记录错误
        - 至少一笔成功时扣减意向剩余额度并开启复购冷却
        """
        now = self._clock()
        cooldown = timedelta(days=settings.matching.refund_cooldown_days)

        successful_refunds = 0
        refunded_matches = 0
        refunded_amount = Decimal("0")
        currency = "eur"
        cooldown_until = None
        user = None

        async with self._uow_factory() as uow:
            intent = await uow.intent_repository.get_by_user_id(user_id, for_update=True)
            if intent is None:
                raise NothingToRefundException()
            if intent.is_matching_in_progress(now):
                logger.info(
                    "refund_rejected_matching_in_progress",
                    user_id=user_id,
                    intent_id=intent.id,
                    locked_by=intent.matching_processing_by,
                )
                raise MatchingInProgressException(intent.matching_processing_until)

            payments = await uow.payment_repository.list_consumable_by_intent(intent.id, for_update=True)
            lines = plan_refunds(payments)
            if not lines:
                raise NothingToRefundException()

            for line in lines:
                payment = line.payment
                charge_id = payment.stripe_charge_id
                try:
                    refund = await self._gateway.create_refund(
                        CreateRefund(
                            charge_id=charge_id,
                            amount_minor=to_minor_units(line.refund_amount),
                            metadata={
                                "paymentId": str(payment.id),
                                "userId": str(user_id),
                                "unusedMatches": str(line.unused_matches),
                            },
                            # 已退次数参与键值：同一笔的后续退款不会被渠道去重
                            idempotency_key=f"refund:{payment.id}:{payment.matches_refunded}:{line.unused_matches}",
                        )
                    )
                except Exception as exc:
                    # 单笔失败只跳过该笔，前序已退款的账本更新随事务提交
                    logger.error(
                        "refund_provider_failed",
                        payment_id=payment.id,
                        charge_id=charge_id,
                        error=exc.message if isinstance(exc, BusinessException) else str(exc),
                        error_type=type(exc).__name__,
                        exc_info=not isinstance(exc, BusinessException),
                    )
                    continue
                if refund is None:
                    logger.error("refund_provider_no_result", payment_id=payment.id, charge_id=charge_id)
                    continue

                try:
                    payment.apply_refund(line.unused_matches, refund_id=refund.id, now=now)
                except LedgerInvariantError as exc:
                    logger.error(
                        "refund_invariant_violation",
                        payment_id=payment.id,
                        refund_id=refund.id,
                        error=str(exc),
                        **exc.context,
                    )
                    continue

                await uow.payment_repository.update(payment)
                await uow.transaction_repository.add(
                    Transaction(
                        id=None,
                        type=TransactionType.REFUND_REQUESTED,
                        status=TransactionStatus.PENDING,
                        user_id=user_id,
                        payment_id=payment.id,
                        amount_base=line.refund_amount,
                        amount_total=line.refund_amount,
                        currency=payment.currency,
                        stripe_object_id=refund.id,
                        metadata={"unusedMatches": line.unused_matches, "chargeId": charge_id},
                    )
                )
                successful_refunds += 1
                refunded_matches += line.unused_matches
                refunded_amount += line.refund_amount
                currency = payment.currency
                logger.info(
                    "refund_created",
                    payment_id=payment.id,
                    refund_id=refund.id,
                    amount=str(line.refund_amount),
                    matches=line.unused_matches,
                )

            if refunded_matches > 0:
                intent.debit_refund(refunded_matches, now=now, cooldown=cooldown)
                await uow.intent_repository.update(intent)
                await check_intent_balance(uow, intent)
                cooldown_until = intent.refund_cooldown_until
                user = await uow.user_repository.get_by_id(user_id)
                logger.info(
                    "refund_cooldown_set",
                    user_id=user_id,
                    intent_id=intent.id,
                    cooldown_until=cooldown_until.isoformat(),
                    cooldown_days=settings.matching.refund_cooldown_days,
                )

        refunded_amount = round_money(refunded_amount)
        if successful_refunds > 0 and user is not None:
            self._notifier.publish(
                RefundRequested(
                    user_id=user_id,
                    email=user.email,
                    first_name=user.display_name,
                    refunded_amount=refunded_amount,
                    matches_refunded=refunded_matches,
                    currency=currency,
                    cooldown_until=cooldown_until,
                )
            )

        if successful_refunds > 0:
            message = t(
                "matching.refund.requested",
                default="Refund request recorded. {matches} matches will be refunded.",
                matches=refunded_matches,
            )
        else:
            logger.warning("refund_none_processed", user_id=user_id, attempted=len(lines))
            message = t("matching.refund.none_processed", default="No refund could be processed.")

        return RefundResponseDTO(
            success=successful_refunds > 0,
            message=message,
            refunded_amount=float(refunded_amount),
            matches_refunded=refunded_matches,
            successful_refunds=successful_refunds,
            refund_cooldown_until=cooldown_until,
        )
