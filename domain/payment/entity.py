"""
支付领域实体 - 额度包支付聚合根与审计流水
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from domain.common.exceptions import DomainValidationException
from domain.payment.exceptions import LedgerInvariantError


class PaymentStatus(str, Enum):
    """支付状态枚举"""
    PENDING = "PENDING"                        # 已创建结账会话，待渠道确认
    SUCCEEDED = "SUCCEEDED"                    # 支付成功，额度已入账
    FAILED = "FAILED"                          # 会话过期/支付失败（终态）
    REFUNDED = "REFUNDED"                      # 已无剩余额度，全部退款/使用
    PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"  # 部分退款，仍有剩余额度


class TransactionType(str, Enum):
    """审计流水类型"""
    PAYMENT_CREATED = "PAYMENT_CREATED"
    PAYMENT_SUCCEEDED = "PAYMENT_SUCCEEDED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    REFUND_REQUESTED = "REFUND_REQUESTED"
    REFUND_SUCCEEDED = "REFUND_SUCCEEDED"
    REFUND_FAILED = "REFUND_FAILED"


class TransactionStatus(str, Enum):
    PENDING = "PENDING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


# 可被消费/退款的支付状态
CONSUMABLE_STATUSES = frozenset({PaymentStatus.SUCCEEDED, PaymentStatus.PARTIALLY_REFUNDED})

# 渠道返回真实会话ID之前使用的占位前缀
PLACEHOLDER_SESSION_PREFIX = "pending_"


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Payment:
    """
    额度包支付聚合根

    业务规则：
    1. matches_used 与 matches_refunded 只增不减（退款失败补偿除外）
    2. matches_used + matches_refunded <= matches_initial
    3. 仅 SUCCEEDED / PARTIALLY_REFUNDED 状态可消费或退款
    4. 状态只能经由下列方法变更，校验失败时不修改任何字段
    """

    id: Optional[int]
    user_id: int
    intent_id: int
    plan_type: str
    matches_initial: int
    amount_base: Decimal
    amount_fees: Decimal
    amount_total: Decimal
    price_per_match: Decimal
    currency: str = "eur"
    status: PaymentStatus = PaymentStatus.PENDING
    matches_used: int = 0
    matches_refunded: int = 0

    # 渠道标识（渠道确认前可为空）
    stripe_checkout_session_id: Optional[str] = None
    stripe_payment_intent_id: Optional[str] = None
    stripe_charge_id: Optional[str] = None
    stripe_refund_id: Optional[str] = None

    # 时间戳
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    succeeded_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.matches_initial <= 0:
            raise DomainValidationException(
                "matches_initial must be positive",
                field="matches_initial",
                details={"matches_initial": self.matches_initial},
            )
        if self.matches_used < 0 or self.matches_refunded < 0:
            raise DomainValidationException("match counters must be non-negative", field="matches_used")
        if self.matches_used + self.matches_refunded > self.matches_initial:
            raise LedgerInvariantError(
                "payment counters exceed matches_initial",
                payment_id=self.id,
                matches_used=self.matches_used,
                matches_refunded=self.matches_refunded,
                matches_initial=self.matches_initial,
            )
        if not isinstance(self.status, PaymentStatus):
            self.status = PaymentStatus(self.status)
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
        self.succeeded_at = _ensure_utc(self.succeeded_at)
        self.refunded_at = _ensure_utc(self.refunded_at)

    @property
    def matches_remaining(self) -> int:
        return self.matches_initial - self.matches_used - self.matches_refunded

    @property
    def has_provider_session(self) -> bool:
        sid = self.stripe_checkout_session_id
        return bool(sid) and not sid.startswith(PLACEHOLDER_SESSION_PREFIX)

    @property
    def is_consumable(self) -> bool:
        return self.status in CONSUMABLE_STATUSES

    @property
    def is_refundable(self) -> bool:
        """可通过渠道退款：状态可消费、有剩余额度、且已记录 charge id"""
        return self.is_consumable and self.matches_remaining > 0 and bool(self.stripe_charge_id)

    def attach_checkout_session(self, session_id: str) -> None:
        if not session_id:
            raise DomainValidationException("session id is required", field="stripe_checkout_session_id")
        self.stripe_checkout_session_id = session_id
        self.updated_at = _now()

    def mark_succeeded(
        self,
        *,
        payment_intent_id: Optional[str] = None,
        charge_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> None:
        """渠道确认支付成功（会话过期后迟到的成功通知同样接受）"""
        if self.status not in (PaymentStatus.PENDING, PaymentStatus.FAILED):
            raise DomainValidationException(
                f"cannot mark payment as succeeded from {self.status.value}",
                field="status",
                details={"payment_id": self.id, "status": self.status.value},
            )
        self.status = PaymentStatus.SUCCEEDED
        self.stripe_payment_intent_id = payment_intent_id or self.stripe_payment_intent_id
        self.stripe_charge_id = charge_id or self.stripe_charge_id
        self.succeeded_at = _ensure_utc(now) or _now()
        self.updated_at = self.succeeded_at

    def mark_failed(self) -> None:
        if self.status != PaymentStatus.PENDING:
            raise DomainValidationException(
                f"cannot mark payment as failed from {self.status.value}",
                field="status",
                details={"payment_id": self.id, "status": self.status.value},
            )
        self.status = PaymentStatus.FAILED
        self.updated_at = _now()

    def consume_one(self) -> None:
        """消费一次匹配额度"""
        if not self.is_consumable or self.matches_remaining <= 0:
            raise LedgerInvariantError(
                "payment has no consumable match left",
                payment_id=self.id,
                status=self.status.value,
                matches_remaining=self.matches_remaining,
            )
        self.matches_used += 1
        self.updated_at = _now()

    def apply_refund(self, units: int, *, refund_id: str, now: Optional[datetime] = None) -> None:
        """记录已向渠道发起的退款；先校验不变量，失败时不修改任何字段"""
        if units <= 0:
            raise LedgerInvariantError("refund units must be positive", payment_id=self.id, units=units)
        if not self.is_consumable:
            raise LedgerInvariantError(
                "payment is not refundable in its current status",
                payment_id=self.id,
                status=self.status.value,
            )
        if self.matches_used + self.matches_refunded + units > self.matches_initial:
            raise LedgerInvariantError(
                "refund would exceed matches_initial",
                payment_id=self.id,
                matches_used=self.matches_used,
                matches_refunded=self.matches_refunded,
                units=units,
                matches_initial=self.matches_initial,
            )
        self.matches_refunded += units
        self.status = (
            PaymentStatus.REFUNDED if self.matches_remaining == 0 else PaymentStatus.PARTIALLY_REFUNDED
        )
        self.stripe_refund_id = refund_id
        self.refunded_at = _ensure_utc(now) or _now()
        self.updated_at = self.refunded_at

    def revert_refund(self, units: int) -> None:
        """渠道报告退款失败后的补偿：归还额度并清除退款标识"""
        if units < 0 or units > self.matches_refunded:
            raise LedgerInvariantError(
                "cannot revert more units than refunded",
                payment_id=self.id,
                matches_refunded=self.matches_refunded,
                units=units,
            )
        self.matches_refunded -= units
        self.status = PaymentStatus.PARTIALLY_REFUNDED if self.matches_refunded > 0 else PaymentStatus.SUCCEEDED
        self.stripe_refund_id = None
        self.refunded_at = None
        self.updated_at = _now()


@dataclass
class Transaction:
    """支付审计流水（只追加；仅允许一次性回填渠道对象ID）"""

    id: Optional[int]
    type: TransactionType
    status: TransactionStatus
    user_id: int
    payment_id: Optional[int]
    amount_base: Decimal = field(default_factory=lambda: Decimal("0"))
    amount_fees: Decimal = field(default_factory=lambda: Decimal("0"))
    amount_total: Decimal = field(default_factory=lambda: Decimal("0"))
    currency: str = "eur"
    stripe_event_id: Optional[str] = None  # 幂等键（数据库唯一约束）
    stripe_object_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if not isinstance(self.type, TransactionType):
            self.type = TransactionType(self.type)
        if not isinstance(self.status, TransactionStatus):
            self.status = TransactionStatus(self.status)
        self.created_at = _ensure_utc(self.created_at)

    def backfill_object_id(self, object_id: str) -> None:
        if self.stripe_object_id and self.stripe_object_id != object_id:
            raise DomainValidationException(
                "transaction object id is already set",
                field="stripe_object_id",
                details={"transaction_id": self.id},
            )
        self.stripe_object_id = object_id
