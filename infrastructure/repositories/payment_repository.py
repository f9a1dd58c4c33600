"""
支付仓储实现 - 使用SQLAlchemy实现数据访问
"""
from datetime import datetime
from typing import Optional, List
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError

from domain.payment.entity import (
    Payment,
    PaymentStatus,
    Transaction,
    TransactionType,
    CONSUMABLE_STATUSES,
)
from domain.payment.exceptions import DuplicateEventException
from domain.payment.repository import PaymentRepository, TransactionRepository
from infrastructure.models.payment import MatchPaymentModel, PaymentTransactionModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyPaymentRepository(PaymentRepository):
    """支付仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: MatchPaymentModel) -> Payment:
        """将数据库模型转换为领域实体"""
        return Payment(
            id=model.id,
            user_id=model.user_id,
            intent_id=model.intent_id,
            plan_type=model.plan_type,
            matches_initial=model.matches_initial,
            matches_used=model.matches_used,
            matches_refunded=model.matches_refunded,
            amount_base=Decimal(str(model.amount_base)),
            amount_fees=Decimal(str(model.amount_fees)),
            amount_total=Decimal(str(model.amount_total)),
            price_per_match=Decimal(str(model.price_per_match)),
            currency=model.currency,
            status=PaymentStatus(model.status),
            stripe_checkout_session_id=model.stripe_checkout_session_id,
            stripe_payment_intent_id=model.stripe_payment_intent_id,
            stripe_charge_id=model.stripe_charge_id,
            stripe_refund_id=model.stripe_refund_id,
            created_at=model.created_at,
            updated_at=model.updated_at,
            succeeded_at=model.succeeded_at,
            refunded_at=model.refunded_at,
        )

    def _to_model(self, entity: Payment) -> MatchPaymentModel:
        """将领域实体转换为数据库模型"""
        model = MatchPaymentModel(
            user_id=entity.user_id,
            intent_id=entity.intent_id,
            plan_type=entity.plan_type,
            matches_initial=entity.matches_initial,
            matches_used=entity.matches_used,
            matches_refunded=entity.matches_refunded,
            amount_base=entity.amount_base,
            amount_fees=entity.amount_fees,
            amount_total=entity.amount_total,
            price_per_match=entity.price_per_match,
            currency=entity.currency,
            status=entity.status.value,
            stripe_checkout_session_id=entity.stripe_checkout_session_id,
            stripe_payment_intent_id=entity.stripe_payment_intent_id,
            stripe_charge_id=entity.stripe_charge_id,
            stripe_refund_id=entity.stripe_refund_id,
            succeeded_at=entity.succeeded_at,
            refunded_at=entity.refunded_at,
        )
        # 未指定时交给列默认值
        if entity.id is not None:
            model.id = entity.id
        if entity.created_at is not None:
            model.created_at = entity.created_at
        return model

    def _select(self, for_update: bool):
        stmt = select(MatchPaymentModel)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return stmt

    async def create(self, payment: Payment) -> Payment:
        """创建支付记录"""
        db_payment = self._to_model(payment)
        self.session.add(db_payment)
        await self.session.flush()
        await self.session.refresh(db_payment)
        logger.info(
            "match_payment_created",
            payment_id=db_payment.id,
            intent_id=db_payment.intent_id,
            plan_type=db_payment.plan_type,
        )
        return self._to_entity(db_payment)

    async def get_by_id(self, payment_id: int, *, for_update: bool = False) -> Optional[Payment]:
        """根据ID获取支付"""
        result = await self.session.execute(
            self._select(for_update).where(MatchPaymentModel.id == payment_id)
        )
        db_payment = result.scalar_one_or_none()
        return self._to_entity(db_payment) if db_payment else None

    async def get_by_checkout_session_id(self, session_id: str, *, for_update: bool = False) -> Optional[Payment]:
        """根据结账会话ID获取支付"""
        result = await self.session.execute(
            self._select(for_update).where(MatchPaymentModel.stripe_checkout_session_id == session_id)
        )
        db_payment = result.scalar_one_or_none()
        return self._to_entity(db_payment) if db_payment else None

    async def get_by_charge_id(self, charge_id: str, *, for_update: bool = False) -> Optional[Payment]:
        """根据渠道 charge ID 获取支付"""
        result = await self.session.execute(
            self._select(for_update)
            .where(MatchPaymentModel.stripe_charge_id == charge_id)
            .order_by(MatchPaymentModel.id.desc())
            .limit(1)
        )
        db_payment = result.scalar_one_or_none()
        return self._to_entity(db_payment) if db_payment else None

    async def list_consumable_by_intent(self, intent_id: int, *, for_update: bool = False) -> List[Payment]:
        """按 FIFO 顺序获取意向下可消费的支付"""
        result = await self.session.execute(
            self._select(for_update)
            .where(
                MatchPaymentModel.intent_id == intent_id,
                MatchPaymentModel.status.in_([s.value for s in CONSUMABLE_STATUSES]),
            )
            .order_by(MatchPaymentModel.created_at.asc(), MatchPaymentModel.id.asc())
        )
        return [self._to_entity(p) for p in result.scalars().all()]

    async def list_by_user(self, user_id: int) -> List[Payment]:
        """获取用户的支付列表（最新在前）"""
        result = await self.session.execute(
            select(MatchPaymentModel)
            .where(MatchPaymentModel.user_id == user_id)
            .order_by(MatchPaymentModel.created_at.desc(), MatchPaymentModel.id.desc())
        )
        return [self._to_entity(p) for p in result.scalars().all()]

    async def sum_refunded_by_intent(self, intent_id: int) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.sum(MatchPaymentModel.matches_refunded), 0)).where(
                MatchPaymentModel.intent_id == intent_id
            )
        )
        return int(result.scalar_one())

    async def list_stale_pending(self, created_before: datetime, limit: int = 100) -> List[Payment]:
        result = await self.session.execute(
            select(MatchPaymentModel)
            .where(
                MatchPaymentModel.status == PaymentStatus.PENDING.value,
                MatchPaymentModel.created_at < created_before,
            )
            .order_by(MatchPaymentModel.created_at.asc())
            .limit(limit)
        )
        return [self._to_entity(p) for p in result.scalars().all()]

    async def update(self, payment: Payment) -> Payment:
        """更新支付记录"""
        result = await self.session.execute(
            select(MatchPaymentModel).where(MatchPaymentModel.id == payment.id)
        )
        db_payment = result.scalar_one_or_none()

        if not db_payment:
            raise ValueError(f"Payment with id {payment.id} not found")

        # 更新字段
        db_payment.matches_used = payment.matches_used
        db_payment.matches_refunded = payment.matches_refunded
        db_payment.status = payment.status.value
        db_payment.stripe_checkout_session_id = payment.stripe_checkout_session_id
        db_payment.stripe_payment_intent_id = payment.stripe_payment_intent_id
        db_payment.stripe_charge_id = payment.stripe_charge_id
        db_payment.stripe_refund_id = payment.stripe_refund_id
        db_payment.succeeded_at = payment.succeeded_at
        db_payment.refunded_at = payment.refunded_at

        await self.session.flush()

        logger.info(
            "match_payment_updated",
            payment_id=db_payment.id,
            status=db_payment.status,
            matches_used=db_payment.matches_used,
            matches_refunded=db_payment.matches_refunded,
        )

        return self._to_entity(db_payment)


class SQLAlchemyTransactionRepository(TransactionRepository):
    """审计流水仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentTransactionModel) -> Transaction:
        return Transaction(
            id=model.id,
            type=TransactionType(model.type),
            status=model.status,
            user_id=model.user_id,
            payment_id=model.payment_id,
            amount_base=Decimal(str(model.amount_base)),
            amount_fees=Decimal(str(model.amount_fees)),
            amount_total=Decimal(str(model.amount_total)),
            currency=model.currency,
            stripe_event_id=model.stripe_event_id,
            stripe_object_id=model.stripe_object_id,
            metadata=model.extra_metadata or {},
            created_at=model.created_at,
        )

    async def add(self, transaction: Transaction) -> Transaction:
        """追加流水；事件ID唯一约束冲突转换为 DuplicateEventException"""
        db_tx = PaymentTransactionModel(
            type=transaction.type.value,
            status=transaction.status.value,
            user_id=transaction.user_id,
            payment_id=transaction.payment_id,
            amount_base=transaction.amount_base,
            amount_fees=transaction.amount_fees,
            amount_total=transaction.amount_total,
            currency=transaction.currency,
            stripe_event_id=transaction.stripe_event_id,
            stripe_object_id=transaction.stripe_object_id,
            extra_metadata=transaction.metadata or None,
        )
        self.session.add(db_tx)
        try:
            await self.session.flush()
        except IntegrityError as e:
            if transaction.stripe_event_id and "stripe_event_id" in str(e).lower():
                logger.warning("payment_transaction_duplicate_event", stripe_event_id=transaction.stripe_event_id)
                raise DuplicateEventException(transaction.stripe_event_id) from e
            raise
        await self.session.refresh(db_tx)
        logger.info(
            "payment_transaction_recorded",
            transaction_id=db_tx.id,
            type=db_tx.type,
            payment_id=db_tx.payment_id,
            stripe_event_id=db_tx.stripe_event_id,
        )
        return self._to_entity(db_tx)

    async def exists_event(self, stripe_event_id: str) -> bool:
        result = await self.session.execute(
            select(func.count(PaymentTransactionModel.id)).where(
                PaymentTransactionModel.stripe_event_id == stripe_event_id
            )
        )
        return result.scalar_one() > 0

    async def get_latest_for_payment(
        self,
        payment_id: int,
        tx_type: TransactionType,
        *,
        stripe_object_id: Optional[str] = None,
    ) -> Optional[Transaction]:
        stmt = select(PaymentTransactionModel).where(
            PaymentTransactionModel.payment_id == payment_id,
            PaymentTransactionModel.type == tx_type.value,
        )
        if stripe_object_id is not None:
            stmt = stmt.where(PaymentTransactionModel.stripe_object_id == stripe_object_id)
        result = await self.session.execute(
            stmt.order_by(PaymentTransactionModel.id.desc()).limit(1)
        )
        db_tx = result.scalar_one_or_none()
        return self._to_entity(db_tx) if db_tx else None

    async def list_by_payment(self, payment_id: int) -> List[Transaction]:
        result = await self.session.execute(
            select(PaymentTransactionModel)
            .where(PaymentTransactionModel.payment_id == payment_id)
            .order_by(PaymentTransactionModel.id.asc())
        )
        return [self._to_entity(t) for t in result.scalars().all()]

    async def update_object_id(self, transaction: Transaction) -> Transaction:
        result = await self.session.execute(
            select(PaymentTransactionModel).where(PaymentTransactionModel.id == transaction.id)
        )
        db_tx = result.scalar_one_or_none()
        if not db_tx:
            raise ValueError(f"Transaction with id {transaction.id} not found")
        db_tx.stripe_object_id = transaction.stripe_object_id
        await self.session.flush()
        return self._to_entity(db_tx)
