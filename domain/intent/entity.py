"""
匹配意向聚合根 - 用户额度计数与两把时间锁

计数器只能通过本实体的方法修改（购买入账 / 消费 / 退款 / 退款补偿），
调用方需在持有该行锁的事务内执行。
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from domain.payment.entity import _ensure_utc
from domain.payment.exceptions import LedgerInvariantError


@dataclass
class Intent:
    """用户匹配意向（每个用户一条，按需创建）"""

    id: Optional[int]
    user_id: int
    home_id: Optional[int] = None
    search_id: Optional[int] = None
    total_matches_purchased: int = 0
    total_matches_used: int = 0
    total_matches_remaining: int = 0
    is_in_flow: bool = False

    # 退款后的复购冷却
    refund_cooldown_until: Optional[datetime] = None
    last_refund_at: Optional[datetime] = None

    # 匹配引擎持有的处理锁（本服务只读）
    matching_processing_until: Optional[datetime] = None
    matching_processing_by: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if min(self.total_matches_purchased, self.total_matches_used, self.total_matches_remaining) < 0:
            raise LedgerInvariantError(
                "intent counters must be non-negative",
                intent_id=self.id,
                purchased=self.total_matches_purchased,
                used=self.total_matches_used,
                remaining=self.total_matches_remaining,
            )
        self.refund_cooldown_until = _ensure_utc(self.refund_cooldown_until)
        self.last_refund_at = _ensure_utc(self.last_refund_at)
        self.matching_processing_until = _ensure_utc(self.matching_processing_until)
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)

    @property
    def has_links(self) -> bool:
        return self.home_id is not None and self.search_id is not None

    def is_cooldown_active(self, now: datetime) -> bool:
        return self.refund_cooldown_until is not None and self.refund_cooldown_until > now

    def is_matching_in_progress(self, now: datetime) -> bool:
        return self.matching_processing_until is not None and self.matching_processing_until > now

    def link(self, *, home_id: Optional[int], search_id: Optional[int]) -> None:
        """仅回填缺失的关联，不覆盖已有值"""
        if self.home_id is None and home_id is not None:
            self.home_id = home_id
        if self.search_id is None and search_id is not None:
            self.search_id = search_id

    def recompute_in_flow(self) -> None:
        self.is_in_flow = self.total_matches_remaining > 0 and self.has_links

    def credit_purchase(self, units: int) -> None:
        """支付成功入账"""
        if units <= 0:
            raise LedgerInvariantError("purchase units must be positive", intent_id=self.id, units=units)
        self.total_matches_purchased += units
        self.total_matches_remaining += units
        if self.has_links:
            self.is_in_flow = True
        self._touch()

    def debit_consumption(self) -> None:
        """消费一次额度；剩余为 0 时退出匹配流程"""
        if self.total_matches_remaining <= 0:
            raise LedgerInvariantError(
                "intent has no remaining match",
                intent_id=self.id,
                remaining=self.total_matches_remaining,
            )
        self.total_matches_used += 1
        self.total_matches_remaining -= 1
        if self.total_matches_remaining <= 0:
            self.is_in_flow = False
        self._touch()

    def debit_refund(self, units: int, *, now: datetime, cooldown: timedelta) -> None:
        """扣减退款额度并开启复购冷却"""
        self.total_matches_remaining = max(0, self.total_matches_remaining - units)
        self.refund_cooldown_until = now + cooldown
        self.last_refund_at = now
        self.recompute_in_flow()
        self._touch()

    def revert_refund(self, units: int) -> None:
        """退款失败补偿：归还额度（冷却不解除）"""
        if units < 0:
            raise LedgerInvariantError("revert units must be non-negative", intent_id=self.id, units=units)
        self.total_matches_remaining += units
        self.recompute_in_flow()
        self._touch()

    def _touch(self) -> None:
        self.updated_at = datetime.now(timezone.utc)
