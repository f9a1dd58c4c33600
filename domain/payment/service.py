"""
额度账本领域服务 - FIFO 选择、退款计划与不变量校验（纯函数，无 IO）
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

from .entity import Payment
from .exceptions import LedgerInvariantError
from .packs import calculate_refund_amount, round_money
from domain.intent.entity import Intent


@dataclass(frozen=True)
class RefundLine:
    """单笔支付的退款计划"""
    payment: Payment
    unused_matches: int
    refund_amount: Decimal


def _fifo(payments: Iterable[Payment]) -> list[Payment]:
    # created_at 相同按 id 兜底，保证顺序稳定
    return sorted(payments, key=lambda p: (p.created_at is None, p.created_at, p.id or 0))


def select_fifo_payment(payments: Iterable[Payment]) -> Optional[Payment]:
    """最早创建且仍有剩余额度的可消费支付；不存在时返回 None"""
    for payment in _fifo(payments):
        if payment.is_consumable and payment.matches_remaining > 0:
            return payment
    return None


def plan_refunds(payments: Iterable[Payment]) -> list[RefundLine]:
    """按 FIFO 生成退款计划，只包含有剩余额度且有 charge id 的支付"""
    lines: list[RefundLine] = []
    for payment in _fifo(payments):
        if not payment.is_refundable:
            continue
        unused = payment.matches_remaining
        lines.append(
            RefundLine(
                payment=payment,
                unused_matches=unused,
                refund_amount=calculate_refund_amount(payment.price_per_match, unused),
            )
        )
    return lines


def potential_refund(payments: Iterable[Payment]) -> tuple[int, Decimal]:
    """可退次数与金额（逐笔按各自单价计算，不使用全局均价）"""
    unused_total = 0
    amount_total = Decimal("0")
    for payment in payments:
        if not payment.is_consumable:
            continue
        unused = payment.matches_remaining
        if unused <= 0:
            continue
        unused_total += unused
        amount_total += calculate_refund_amount(payment.price_per_match, unused)
    return unused_total, round_money(amount_total)


def assert_intent_balanced(intent: Intent, refunded_across_payments: int) -> None:
    """remaining == purchased - used - Σrefunded 且 remaining >= 0"""
    expected = intent.total_matches_purchased - intent.total_matches_used - refunded_across_payments
    if intent.total_matches_remaining < 0 or intent.total_matches_remaining != expected:
        raise LedgerInvariantError(
            "intent counters are out of balance",
            intent_id=intent.id,
            purchased=intent.total_matches_purchased,
            used=intent.total_matches_used,
            refunded=refunded_across_payments,
            remaining=intent.total_matches_remaining,
        )
