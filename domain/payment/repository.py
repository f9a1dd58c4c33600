"""
支付仓储接口 - 定义支付与审计流水数据访问的抽象接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, List

from .entity import Payment, Transaction, TransactionType


class PaymentRepository(ABC):
    """支付仓储抽象接口 - 只定义能做什么，不管怎么做"""

    @abstractmethod
    async def create(self, payment: Payment) -> Payment:
        """创建支付记录"""
        pass

    @abstractmethod
    async def get_by_id(self, payment_id: int, *, for_update: bool = False) -> Optional[Payment]:
        """根据ID获取支付"""
        pass

    @abstractmethod
    async def get_by_checkout_session_id(self, session_id: str, *, for_update: bool = False) -> Optional[Payment]:
        """根据结账会话ID获取支付"""
        pass

    @abstractmethod
    async def get_by_charge_id(self, charge_id: str, *, for_update: bool = False) -> Optional[Payment]:
        """根据渠道 charge ID 获取支付"""
        pass

    @abstractmethod
    async def list_consumable_by_intent(self, intent_id: int, *, for_update: bool = False) -> List[Payment]:
        """意向下可消费的支付（SUCCEEDED/PARTIALLY_REFUNDED），按创建时间升序（FIFO）"""
        pass

    @abstractmethod
    async def list_by_user(self, user_id: int) -> List[Payment]:
        """用户全部支付，按创建时间倒序"""
        pass

    @abstractmethod
    async def sum_refunded_by_intent(self, intent_id: int) -> int:
        """意向下所有支付的 matches_refunded 之和"""
        pass

    @abstractmethod
    async def list_stale_pending(self, created_before: datetime, limit: int = 100) -> List[Payment]:
        """早于给定时间且仍为 PENDING 的支付（对账用）"""
        pass

    @abstractmethod
    async def update(self, payment: Payment) -> Payment:
        """更新支付记录"""
        pass


class TransactionRepository(ABC):
    """审计流水仓储抽象接口"""

    @abstractmethod
    async def add(self, transaction: Transaction) -> Transaction:
        """追加流水；事件ID重复时抛出 DuplicateEventException"""
        pass

    @abstractmethod
    async def exists_event(self, stripe_event_id: str) -> bool:
        """幂等检查：事件ID是否已处理"""
        pass

    @abstractmethod
    async def get_latest_for_payment(
        self,
        payment_id: int,
        tx_type: TransactionType,
        *,
        stripe_object_id: Optional[str] = None,
    ) -> Optional[Transaction]:
        """获取支付下最新的指定类型流水"""
        pass

    @abstractmethod
    async def list_by_payment(self, payment_id: int) -> List[Transaction]:
        """支付的全部流水，按时间升序"""
        pass

    @abstractmethod
    async def update_object_id(self, transaction: Transaction) -> Transaction:
        """回填渠道对象ID（流水唯一允许的更新）"""
        pass
