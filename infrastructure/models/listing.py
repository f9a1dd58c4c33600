"""
房源/搜索数据库模型（由房源模块维护，本服务仅用于回填意向关联）
"""
from sqlalchemy import Column, Integer, DateTime, ForeignKey

from .base import Base, utcnow


class HomeModel(Base):
    """用户的出租房源"""
    __tablename__ = "homes"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True, comment="所属用户ID")
    created_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        comment="创建时间"
    )


class SearchModel(Base):
    """用户的目标搜索条件"""
    __tablename__ = "searches"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True, comment="所属用户ID")
    created_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        comment="创建时间"
    )
