"""
结账应用服务 - 购买前的安全/策略校验与结账会话创建

依赖 PaymentGateway 端口（由组合根注入），不直接依赖具体渠道实现。
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Callable

from application.dto import CheckoutSessionResponseDTO
from application.dtos.payments import CheckoutLineItem, CreateCheckoutSession
from application.ports.payment_gateway import PaymentGateway
from core.config import settings
from core.logging_config import get_logger
from core.settings import payment_settings
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment import packs
from domain.payment.entity import (
    PLACEHOLDER_SESSION_PREFIX,
    Payment,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from domain.payment.exceptions import (
    AccountBannedException,
    AccountNotValidatedException,
    InvalidPlanTypeException,
    PurchaseUserNotFoundException,
    RefundCooldownActiveException,
)


logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CheckoutService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway: PaymentGateway,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._uow_factory = uow_factory
        self._gateway = gateway
        self._clock = clock

    async def create_checkout_session(self, user_id: int, plan_type: str) -> CheckoutSessionResponseDTO:
        """
        创建结账会话

        流程：
        1. 重新读取用户的封禁/身份认证状态（不信任客户端或令牌中的状态）
        2. 校验额度包类型与退款冷却期
        3. 按需创建意向，写入 PENDING 支付与 PAYMENT_CREATED 流水（提交）
        4. 调用渠道创建会话，回填真实会话ID；渠道失败则将支付标记为 FAILED
        """
        now = self._clock()
        async with self._uow_factory() as uow:
            user = await uow.user_repository.get_by_id(user_id)
            if user is None:
                raise PurchaseUserNotFoundException(user_id)
            if user.is_banned:
                logger.warning("checkout_rejected_banned", user_id=user_id)
                raise AccountBannedException()
            if not user.is_kyc_verified:
                raise AccountNotValidatedException()

            pack = packs.get_pack(plan_type)
            if pack is None:
                raise InvalidPlanTypeException(plan_type)

            intent = await uow.intent_repository.get_by_user_id(user_id, for_update=True)
            if intent is None:
                # 首次购买：并发请求共享同一意向行
                intent = await uow.intent_repository.ensure_for_user(user_id)
            if intent.is_cooldown_active(now):
                logger.info(
                    "checkout_rejected_cooldown",
                    user_id=user_id,
                    cooldown_until=intent.refund_cooldown_until.isoformat(),
                )
                raise RefundCooldownActiveException(intent.refund_cooldown_until)

            if not intent.has_links:
                home_id, search_id = await uow.intent_repository.find_user_links(user_id)
                intent.link(home_id=home_id, search_id=search_id)
                intent.recompute_in_flow()
                await uow.intent_repository.update(intent)

            q = packs.quote(
                pack,
                fee_percentage=payment_settings.fee_percentage,
                fee_fixed=payment_settings.fee_fixed,
            )
            payment = await uow.payment_repository.create(
                Payment(
                    id=None,
                    user_id=user_id,
                    intent_id=intent.id,
                    plan_type=pack.plan_type.value,
                    matches_initial=pack.matches,
                    amount_base=pack.base_amount,
                    amount_fees=q.fees,
                    amount_total=q.total_amount,
                    price_per_match=q.price_per_match,
                    currency=payment_settings.currency,
                    stripe_checkout_session_id=f"{PLACEHOLDER_SESSION_PREFIX}{uuid.uuid4().hex}",
                    created_at=now,
                )
            )
            await uow.transaction_repository.add(
                Transaction(
                    id=None,
                    type=TransactionType.PAYMENT_CREATED,
                    status=TransactionStatus.PENDING,
                    user_id=user_id,
                    payment_id=payment.id,
                    amount_base=payment.amount_base,
                    amount_fees=payment.amount_fees,
                    amount_total=payment.amount_total,
                    currency=payment.currency,
                    metadata={"planType": payment.plan_type, "matchesInitial": payment.matches_initial},
                )
            )
            customer_email = user.email

        req = CreateCheckoutSession(
            line_items=[
                CheckoutLineItem(
                    name=f"Pack {pack.label}",
                    description=pack.description,
                    amount_minor=packs.to_minor_units(payment.amount_total),
                    currency=payment.currency,
                )
            ],
            success_url=f"{settings.FRONTEND_URL}/dashboard?payment=success&session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{settings.FRONTEND_URL}/dashboard?payment=cancel",
            metadata={
                "userId": str(user_id),
                "intentId": str(intent.id),
                "paymentId": str(payment.id),
                "planType": payment.plan_type,
                "matchesInitial": str(payment.matches_initial),
                "amountBase": str(payment.amount_base),
            },
            customer_email=customer_email,
            idempotency_key=f"checkout:{payment.id}",
        )

        try:
            session = await self._gateway.create_checkout_session(req)
        except Exception as exc:
            logger.error("checkout_session_provider_failed", payment_id=payment.id, error=str(exc))
            await self._mark_creation_failed(payment.id, reason=str(exc))
            raise

        async with self._uow_factory() as uow:
            stored = await uow.payment_repository.get_by_id(payment.id, for_update=True)
            stored.attach_checkout_session(session.id)
            await uow.payment_repository.update(stored)
            created_tx = await uow.transaction_repository.get_latest_for_payment(
                payment.id, TransactionType.PAYMENT_CREATED
            )
            if created_tx is not None:
                created_tx.backfill_object_id(session.id)
                await uow.transaction_repository.update_object_id(created_tx)

        logger.info(
            "checkout_session_created",
            user_id=user_id,
            payment_id=payment.id,
            plan_type=payment.plan_type,
            session_id=session.id,
            provider=self._gateway.provider,
        )
        return CheckoutSessionResponseDTO(url=session.url or "", session_id=session.id)

    async def _mark_creation_failed(self, payment_id: int, *, reason: str) -> None:
        async with self._uow_factory() as uow:
            payment = await uow.payment_repository.get_by_id(payment_id, for_update=True)
            if payment is None:
                return
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
                    metadata={"reason": reason[:500], "stage": "checkout_session_create"},
                )
            )
