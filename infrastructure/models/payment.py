"""
支付数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, JSON,
    Index, ForeignKey, CheckConstraint
)
from sqlalchemy.orm import relationship

from .base import Base, utcnow


class MatchPaymentModel(Base):
    """
    额度包支付数据库模型

    这是数据库表的映射，不包含业务逻辑
    所有业务规则都在 domain.payment.entity.Payment 中
    """
    __tablename__ = "match_payments"

    # 主键
    id = Column(Integer, primary_key=True, index=True)

    # 归属
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True, comment="用户ID")
    intent_id = Column(Integer, ForeignKey("intents.id", ondelete="CASCADE"), nullable=False, comment="意向ID")
    plan_type = Column(String(50), nullable=False, comment="额度包类型")

    # 额度
    matches_initial = Column(Integer, nullable=False, comment="购买获得的匹配次数")
    matches_used = Column(Integer, nullable=False, default=0, comment="已使用次数")
    matches_refunded = Column(Integer, nullable=False, default=0, comment="已退款次数")

    # 金额信息（使用 Numeric 存储精确金额）
    amount_base = Column(Numeric(precision=10, scale=2), nullable=False, comment="基础金额")
    amount_fees = Column(Numeric(precision=10, scale=2), nullable=False, default=0, comment="渠道手续费")
    amount_total = Column(Numeric(precision=10, scale=2), nullable=False, comment="支付总额")
    price_per_match = Column(Numeric(precision=10, scale=2), nullable=False, comment="单次价格")
    currency = Column(String(3), nullable=False, default="eur", comment="货币代码 ISO-4217")

    # 状态
    status = Column(
        String(32),
        nullable=False,
        default="PENDING",
        index=True,
        comment="支付状态: PENDING/SUCCEEDED/FAILED/REFUNDED/PARTIALLY_REFUNDED"
    )

    # 渠道标识
    stripe_checkout_session_id = Column(String(255), unique=True, nullable=True, comment="结账会话ID")
    stripe_payment_intent_id = Column(String(255), nullable=True, comment="PaymentIntent ID")
    stripe_charge_id = Column(String(255), nullable=True, index=True, comment="Charge ID（退款依据）")
    stripe_refund_id = Column(String(255), nullable=True, comment="最近一次退款ID")

    # 时间戳
    created_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        comment="创建时间"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
        comment="更新时间"
    )
    succeeded_at = Column(DateTime(timezone=True), nullable=True, comment="支付成功时间")
    refunded_at = Column(DateTime(timezone=True), nullable=True, comment="退款时间")

    # 关系
    transactions = relationship("PaymentTransactionModel", back_populates="payment", lazy="select")

    # 索引
    __table_args__ = (
        CheckConstraint(
            "matches_used + matches_refunded <= matches_initial",
            name="ck_match_payments_counters",
        ),
        Index("ix_match_payments_intent_status_created", "intent_id", "status", "created_at"),
        Index("ix_match_payments_status_created", "status", "created_at"),
    )

    def __repr__(self):
        return (
            f"<MatchPaymentModel(id={self.id}, plan_type='{self.plan_type}', "
            f"status='{self.status}', used={self.matches_used}, refunded={self.matches_refunded})>"
        )


class PaymentTransactionModel(Base):
    """
    支付审计流水数据库模型

    stripe_event_id 的唯一约束是 webhook 幂等的最终保障
    """
    __tablename__ = "payment_transactions"

    # 主键
    id = Column(Integer, primary_key=True, index=True)

    type = Column(String(32), nullable=False, index=True, comment="流水类型")
    status = Column(String(16), nullable=False, comment="流水状态: PENDING/SUCCEEDED/FAILED")

    # 幂等键（可为空：非 webhook 来源的流水）
    stripe_event_id = Column(String(255), unique=True, nullable=True, comment="渠道事件ID")
    stripe_object_id = Column(String(255), nullable=True, index=True, comment="渠道对象ID（会话/退款等）")

    # 金额信息
    amount_base = Column(Numeric(precision=10, scale=2), nullable=False, default=0, comment="基础金额")
    amount_fees = Column(Numeric(precision=10, scale=2), nullable=False, default=0, comment="手续费")
    amount_total = Column(Numeric(precision=10, scale=2), nullable=False, default=0, comment="总额")
    currency = Column(String(3), nullable=False, default="eur", comment="货币代码")

    # 元数据（JSON格式，使用 extra_metadata 避免与 SQLAlchemy 的 metadata 冲突）
    extra_metadata = Column("metadata", JSON, nullable=True, comment="扩展元数据")

    payment_id = Column(
        Integer,
        ForeignKey("match_payments.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
        comment="关联的支付ID"
    )
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True, comment="用户ID")

    created_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        comment="创建时间"
    )

    payment = relationship("MatchPaymentModel", back_populates="transactions")

    __table_args__ = (
        Index("ix_payment_transactions_payment_type", "payment_id", "type"),
    )

    def __repr__(self):
        return (
            f"<PaymentTransactionModel(id={self.id}, type='{self.type}', "
            f"event_id='{self.stripe_event_id}', payment_id={self.payment_id})>"
        )
