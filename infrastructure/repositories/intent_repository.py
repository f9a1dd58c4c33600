"""
匹配意向仓储实现 - 使用SQLAlchemy实现数据访问
"""
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from domain.intent.entity import Intent
from domain.intent.repository import IntentRepository
from infrastructure.models.intent import IntentModel
from infrastructure.models.listing import HomeModel, SearchModel
from core.logging_config import get_logger


logger = get_logger(__name__)

# 两种方言都支持 ON CONFLICT DO NOTHING
_INSERTS = {"postgresql": pg_insert, "sqlite": sqlite_insert}


class SQLAlchemyIntentRepository(IntentRepository):
    """意向仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: IntentModel) -> Intent:
        """将数据库模型转换为领域实体"""
        return Intent(
            id=model.id,
            user_id=model.user_id,
            home_id=model.home_id,
            search_id=model.search_id,
            total_matches_purchased=model.total_matches_purchased,
            total_matches_used=model.total_matches_used,
            total_matches_remaining=model.total_matches_remaining,
            is_in_flow=bool(model.is_in_flow),
            refund_cooldown_until=model.refund_cooldown_until,
            last_refund_at=model.last_refund_at,
            matching_processing_until=model.matching_processing_until,
            matching_processing_by=model.matching_processing_by,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _select(self, for_update: bool):
        stmt = select(IntentModel)
        if for_update:
            # 行锁 + 刷新身份映射中的旧值
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return stmt

    async def get_by_id(self, intent_id: int, *, for_update: bool = False) -> Optional[Intent]:
        result = await self.session.execute(self._select(for_update).where(IntentModel.id == intent_id))
        db_intent = result.scalar_one_or_none()
        return self._to_entity(db_intent) if db_intent else None

    async def get_by_user_id(self, user_id: int, *, for_update: bool = False) -> Optional[Intent]:
        result = await self.session.execute(self._select(for_update).where(IntentModel.user_id == user_id))
        db_intent = result.scalar_one_or_none()
        return self._to_entity(db_intent) if db_intent else None

    async def ensure_for_user(self, user_id: int) -> Intent:
        """插入即忽略冲突，再以行锁读取；唯一约束 intents.user_id 决定胜者"""
        dialect = self.session.get_bind().dialect.name
        insert = _INSERTS.get(dialect)
        if insert is None:
            raise ValueError(f"不支持的数据库方言: {dialect}")
        stmt = insert(IntentModel).values(user_id=user_id).on_conflict_do_nothing(
            index_elements=[IntentModel.user_id]
        )
        result = await self.session.execute(stmt)
        if result.rowcount:
            logger.info("intent_created", user_id=user_id)
        else:
            logger.info("intent_create_conflict", user_id=user_id)

        intent = await self.get_by_user_id(user_id, for_update=True)
        if intent is None:
            raise ValueError(f"Intent for user {user_id} not found after insert")
        return intent

    async def update(self, intent: Intent) -> Intent:
        result = await self.session.execute(select(IntentModel).where(IntentModel.id == intent.id))
        db_intent = result.scalar_one_or_none()
        if not db_intent:
            raise ValueError(f"Intent with id {intent.id} not found")

        db_intent.home_id = intent.home_id
        db_intent.search_id = intent.search_id
        db_intent.total_matches_purchased = intent.total_matches_purchased
        db_intent.total_matches_used = intent.total_matches_used
        db_intent.total_matches_remaining = intent.total_matches_remaining
        db_intent.is_in_flow = intent.is_in_flow
        db_intent.refund_cooldown_until = intent.refund_cooldown_until
        db_intent.last_refund_at = intent.last_refund_at

        await self.session.flush()
        logger.debug(
            "intent_updated",
            intent_id=db_intent.id,
            purchased=db_intent.total_matches_purchased,
            used=db_intent.total_matches_used,
            remaining=db_intent.total_matches_remaining,
            in_flow=db_intent.is_in_flow,
        )
        return self._to_entity(db_intent)

    async def find_user_links(self, user_id: int) -> tuple[Optional[int], Optional[int]]:
        home_id = (
            await self.session.execute(
                select(HomeModel.id).where(HomeModel.user_id == user_id).order_by(HomeModel.id.desc()).limit(1)
            )
        ).scalar_one_or_none()
        search_id = (
            await self.session.execute(
                select(SearchModel.id).where(SearchModel.user_id == user_id).order_by(SearchModel.id.desc()).limit(1)
            )
        ).scalar_one_or_none()
        return home_id, search_id
