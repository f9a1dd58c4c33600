"""
用户数据库模型 - SQLAlchemy ORM模型
注意：用户表由账户系统维护，本服务只读取封禁/认证状态
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime

from .base import Base, utcnow


class UserModel(Base):
    """用户数据库模型"""
    __tablename__ = "users"

    # 主键
    id = Column(Integer, primary_key=True, index=True)

    # 用户基本信息
    email = Column(String(255), unique=True, index=True, nullable=False, comment="邮箱")
    first_name = Column(String(100), nullable=True, comment="名")
    last_name = Column(String(100), nullable=True, comment="姓")

    # 状态信息
    is_banned = Column(Boolean, default=False, nullable=False, comment="是否被封禁")
    is_kyc_verified = Column(Boolean, default=False, nullable=False, comment="是否完成身份认证")

    # 时间信息
    created_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        comment="创建时间"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
        comment="更新时间"
    )

    def __repr__(self):
        return f"<UserModel(id={self.id}, email='{self.email}', banned={self.is_banned})>"
