"""
用户仓储实现 - 使用SQLAlchemy实现数据访问
"""
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from domain.user.entity import User
from domain.user.repository import UserRepository
from infrastructure.models.user import UserModel


class SQLAlchemyUserRepository(UserRepository):
    """用户仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: UserModel) -> User:
        """将数据库模型转换为领域实体"""
        return User(
            id=model.id,
            email=model.email,
            first_name=model.first_name,
            last_name=model.last_name,
            is_banned=bool(model.is_banned),
            is_kyc_verified=bool(model.is_kyc_verified),
        )

    async def get_by_id(self, user_id: int) -> Optional[User]:
        """根据ID获取用户（populate_existing 保证读取最新的封禁/认证状态）"""
        result = await self.session.execute(
            select(UserModel)
            .where(UserModel.id == user_id)
            .execution_options(populate_existing=True)
        )
        db_user = result.scalar_one_or_none()
        return self._to_entity(db_user) if db_user else None
