"""
匹配额度购买/退款相关的业务异常
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from domain.common.exceptions import PolicyViolation, iso_utc
from shared.codes.payment_codes import MatchingCode, MatchingErrorCode


class LedgerInvariantError(Exception):
    """账本不变量被破坏（内部错误，不直接暴露给客户端）"""

    def __init__(self, message: str, **context) -> None:
        self.context = context
        super().__init__(message)


class DuplicateEventException(Exception):
    """同一渠道事件ID已被记录（并发重复投递时由唯一约束触发）"""

    def __init__(self, stripe_event_id: str) -> None:
        self.stripe_event_id = stripe_event_id
        super().__init__(f"event {stripe_event_id} already recorded")


class PurchaseUserNotFoundException(PolicyViolation):
    def __init__(self, user_id: Optional[int] = None):
        super().__init__(
            MatchingCode.USER_NOT_FOUND,
            MatchingErrorCode.USER_NOT_FOUND,
            "User not found",
            message_key="matching.user.not_found",
            user_id=user_id,
        )


class AccountBannedException(PolicyViolation):
    def __init__(self):
        super().__init__(
            MatchingCode.ACCOUNT_BANNED,
            MatchingErrorCode.ACCOUNT_BANNED,
            "Account banned: pack purchase is not allowed",
            message_key="matching.account.banned",
        )


class AccountNotValidatedException(PolicyViolation):
    def __init__(self):
        super().__init__(
            MatchingCode.ACCOUNT_NOT_VALIDATED,
            MatchingErrorCode.ACCOUNT_NOT_VALIDATED,
            "Please verify your identity before continuing",
            message_key="matching.account.not_validated",
        )


class InvalidPlanTypeException(PolicyViolation):
    def __init__(self, plan_type: str):
        super().__init__(
            MatchingCode.INVALID_PLAN_TYPE,
            MatchingErrorCode.INVALID_PLAN_TYPE,
            f"Invalid pack type: {plan_type}",
            message_key="matching.plan_type.invalid",
            field="planType",
            format_params={"plan_type": plan_type},
            plan_type=plan_type,
        )


class RefundCooldownActiveException(PolicyViolation):
    def __init__(self, cooldown_until: datetime):
        super().__init__(
            MatchingCode.REFUND_COOLDOWN_ACTIVE,
            MatchingErrorCode.REFUND_COOLDOWN_ACTIVE,
            f"You can buy a new pack from {cooldown_until:%Y-%m-%d}",
            message_key="matching.refund.cooldown_active",
            format_params={"date": f"{cooldown_until:%Y-%m-%d}"},
            cooldownUntil=iso_utc(cooldown_until),
        )
        self.cooldown_until = cooldown_until


class MatchingInProgressException(PolicyViolation):
    def __init__(self, retry_after: datetime):
        super().__init__(
            MatchingCode.MATCHING_IN_PROGRESS,
            MatchingErrorCode.MATCHING_IN_PROGRESS,
            "A matching run is in progress on your profile, retry in a few minutes",
            message_key="matching.refund.matching_in_progress",
            retryAfter=iso_utc(retry_after),
        )
        self.retry_after = retry_after


class NothingToRefundException(PolicyViolation):
    def __init__(self):
        super().__init__(
            MatchingCode.NOTHING_TO_REFUND,
            MatchingErrorCode.NOTHING_TO_REFUND,
            "No unused match to refund, or payments are not eligible",
            message_key="matching.refund.nothing_to_refund",
        )
