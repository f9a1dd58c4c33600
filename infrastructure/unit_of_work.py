"""SQLAlchemy Unit of Work 实现

一个 UoW 对应一个数据库事务；行锁（``for_update``）在提交或回滚时释放。
"""
from __future__ import annotations

from typing import Optional, Callable

from sqlalchemy.ext.asyncio import AsyncSession, AsyncSessionTransaction

from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.database import AsyncSessionLocal
from infrastructure.repositories.user_repository import SQLAlchemyUserRepository
from infrastructure.repositories.intent_repository import SQLAlchemyIntentRepository
from infrastructure.repositories.payment_repository import (
    SQLAlchemyPaymentRepository,
    SQLAlchemyTransactionRepository,
)


class SQLAlchemyUnitOfWork(AbstractUnitOfWork):
    """基于SQLAlchemy的Unit of Work"""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        session: Optional[AsyncSession] = None,
        *,
        readonly: bool = False,
    ) -> None:
        super().__init__(readonly=readonly)
        self._session_factory = session_factory
        self._external_session = session
        self._transaction: Optional[AsyncSessionTransaction] = None
        self.session: Optional[AsyncSession] = session

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        if self.session is None:
            self.session = self._session_factory()
        self.user_repository = SQLAlchemyUserRepository(self.session)
        self.intent_repository = SQLAlchemyIntentRepository(self.session)
        self.payment_repository = SQLAlchemyPaymentRepository(self.session)
        self.transaction_repository = SQLAlchemyTransactionRepository(self.session)
        # 只读模式依赖 autobegin，关闭会话即结束事务
        if not self._readonly:
            self._transaction = await self.session.begin()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await super().__aexit__(exc_type, exc, tb)
        finally:
            if self._transaction is not None and self._transaction.is_active:
                await self._transaction.rollback()
            self._transaction = None
            if self._external_session is None and self.session is not None:
                await self.session.close()
                self.session = None
            self.user_repository = None
            self.intent_repository = None
            self.payment_repository = None
            self.transaction_repository = None

    async def commit(self) -> None:
        if not self._readonly and self.session and self.session.in_transaction():
            await self.session.commit()
        self._committed = True

    async def rollback(self) -> None:
        if self.session and self.session.in_transaction():
            await self.session.rollback()
        self._committed = False
