"""
匹配意向数据库模型
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Index, CheckConstraint

from .base import Base, utcnow


class IntentModel(Base):
    """
    匹配意向数据库模型

    计数器一致性规则在 domain.intent.entity.Intent 中维护
    """
    __tablename__ = "intents"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
        comment="用户ID（一对一）"
    )
    home_id = Column(Integer, ForeignKey("homes.id", ondelete="SET NULL"), nullable=True, comment="出租房源ID")
    search_id = Column(Integer, ForeignKey("searches.id", ondelete="SET NULL"), nullable=True, comment="搜索ID")

    # 额度计数
    total_matches_purchased = Column(Integer, nullable=False, default=0, comment="累计购买次数")
    total_matches_used = Column(Integer, nullable=False, default=0, comment="累计使用次数")
    total_matches_remaining = Column(Integer, nullable=False, default=0, comment="剩余次数")
    is_in_flow = Column(Boolean, nullable=False, default=False, index=True, comment="是否参与匹配")

    # 退款冷却
    refund_cooldown_until = Column(DateTime(timezone=True), nullable=True, comment="复购冷却截止时间")
    last_refund_at = Column(DateTime(timezone=True), nullable=True, comment="最近一次退款时间")

    # 匹配引擎处理锁（外部写入）
    matching_processing_until = Column(DateTime(timezone=True), nullable=True, comment="匹配处理锁截止时间")
    matching_processing_by = Column(String(100), nullable=True, comment="匹配处理锁持有者")

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

    __table_args__ = (
        CheckConstraint("total_matches_remaining >= 0", name="ck_intents_remaining_non_negative"),
        Index("ix_intents_in_flow_remaining", "is_in_flow", "total_matches_remaining"),
    )

    def __repr__(self):
        return (
            f"<IntentModel(id={self.id}, user_id={self.user_id}, "
            f"purchased={self.total_matches_purchased}, remaining={self.total_matches_remaining})>"
        )
