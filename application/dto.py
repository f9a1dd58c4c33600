"""
数据传输对象（DTO）- 应用层与表现层之间的数据传输

对外 JSON 字段使用 camelCase（alias），内部使用 snake_case。
"""
from pydantic import BaseModel, Field, model_serializer, ConfigDict
from pydantic.alias_generators import to_camel
from typing import Optional
from datetime import datetime, timezone


class DTOBase(BaseModel):
    """Base DTO: unify datetime serialization to UTC-Z for all subclasses."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @model_serializer(mode="wrap")
    def _serialize_model(self, handler):  # type: ignore[override]
        data = handler(self)

        def convert(value):
            if isinstance(value, datetime):
                ts = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
                s = ts.astimezone(timezone.utc).isoformat()
                return s.replace("+00:00", "Z")
            if isinstance(value, list):
                return [convert(v) for v in value]
            if isinstance(value, tuple):
                return tuple(convert(v) for v in value)
            if isinstance(value, dict):
                return {k: convert(v) for k, v in value.items()}
            return value

        return convert(data)


class PackDTO(DTOBase):
    """额度包展示DTO"""
    plan_type: str
    label: str
    label_fr: str
    matches: int
    base_amount: float
    fees: float
    total_amount: float
    price_per_match: float
    description: str
    is_recommended: bool


class CheckoutSessionCreateDTO(DTOBase):
    """创建结账会话请求；类型合法性由服务层校验（返回 400 而非 422）"""
    plan_type: str = Field(..., min_length=1, description="额度包类型")


class CheckoutSessionResponseDTO(DTOBase):
    url: str
    session_id: str


class PaymentSummaryDTO(DTOBase):
    """单笔支付摘要"""
    id: int
    plan_type: str
    matches_initial: int
    matches_used: int
    matches_refunded: int
    matches_remaining: int
    amount_base: float
    amount_total: float
    price_per_match: float
    status: str
    created_at: Optional[datetime]
    succeeded_at: Optional[datetime]
    refunded_at: Optional[datetime]


class MatchingSummaryDTO(DTOBase):
    """额度汇总：计数、支付历史、退款资格与两把时间锁的状态"""
    total_matches_purchased: int = 0
    total_matches_used: int = 0
    total_matches_remaining: int = 0
    is_in_flow: bool = False

    payments: list[PaymentSummaryDTO] = Field(default_factory=list)

    unused_matches: int = 0
    potential_refund_amount: float = 0.0
    can_request_refund: bool = False

    refund_cooldown_until: Optional[datetime] = None
    refund_cooldown_remaining_ms: Optional[int] = None
    can_buy_new_pack: bool = True

    matching_processing_until: Optional[datetime] = None
    is_refund_blocked_by_matching: bool = False

    # None / REFUND_COOLDOWN_ACTIVE / MATCHING_IN_PROGRESS
    blocking_reason: Optional[str] = None


class RefundResponseDTO(DTOBase):
    success: bool
    message: str
    refunded_amount: float
    matches_refunded: int
    successful_refunds: int = 0
    refund_cooldown_until: Optional[datetime] = None
