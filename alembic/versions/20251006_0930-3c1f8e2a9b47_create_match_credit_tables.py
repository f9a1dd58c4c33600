"""create_match_credit_tables

Revision ID: 3c1f8e2a9b47
Revises:
Create Date: 2025-10-06 09:30:12.418305

users / homes / searches are owned by the account and listing schemas and
must exist before this revision runs.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3c1f8e2a9b47'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'intents',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False, comment='主键ID'),
        sa.Column('user_id', sa.Integer(), nullable=False, comment='用户ID（一对一）'),
        sa.Column('home_id', sa.Integer(), nullable=True, comment='出租房源ID'),
        sa.Column('search_id', sa.Integer(), nullable=True, comment='搜索ID'),
        sa.Column('total_matches_purchased', sa.Integer(), nullable=False, server_default='0', comment='累计购买次数'),
        sa.Column('total_matches_used', sa.Integer(), nullable=False, server_default='0', comment='累计使用次数'),
        sa.Column('total_matches_remaining', sa.Integer(), nullable=False, server_default='0', comment='剩余次数'),
        sa.Column('is_in_flow', sa.Boolean(), nullable=False, server_default='false', comment='是否参与匹配'),
        sa.Column('refund_cooldown_until', sa.DateTime(timezone=True), nullable=True, comment='复购冷却截止时间'),
        sa.Column('last_refund_at', sa.DateTime(timezone=True), nullable=True, comment='最近一次退款时间'),
        sa.Column('matching_processing_until', sa.DateTime(timezone=True), nullable=True, comment='匹配处理锁截止时间'),
        sa.Column('matching_processing_by', sa.String(length=100), nullable=True, comment='匹配处理锁持有者'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='更新时间'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['home_id'], ['homes.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['search_id'], ['searches.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', name='uq_intents_user_id'),
        sa.CheckConstraint('total_matches_remaining >= 0', name='ck_intents_remaining_non_negative'),
        comment='匹配意向：每个用户一条，持有额度计数与两把时间锁'
    )
    op.create_index('ix_intents_is_in_flow', 'intents', ['is_in_flow'], unique=False)
    op.create_index('ix_intents_in_flow_remaining', 'intents', ['is_in_flow', 'total_matches_remaining'], unique=False)

    op.create_table(
        'match_payments',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False, comment='主键ID'),
        sa.Column('user_id', sa.Integer(), nullable=False, comment='用户ID'),
        sa.Column('intent_id', sa.Integer(), nullable=False, comment='意向ID'),
        sa.Column('plan_type', sa.String(length=50), nullable=False, comment='额度包类型'),
        sa.Column('matches_initial', sa.Integer(), nullable=False, comment='购买获得的匹配次数'),
        sa.Column('matches_used', sa.Integer(), nullable=False, server_default='0', comment='已使用次数'),
        sa.Column('matches_refunded', sa.Integer(), nullable=False, server_default='0', comment='已退款次数'),
        sa.Column('amount_base', sa.Numeric(precision=10, scale=2), nullable=False, comment='基础金额'),
        sa.Column('amount_fees', sa.Numeric(precision=10, scale=2), nullable=False, server_default='0', comment='渠道手续费'),
        sa.Column('amount_total', sa.Numeric(precision=10, scale=2), nullable=False, comment='支付总额'),
        sa.Column('price_per_match', sa.Numeric(precision=10, scale=2), nullable=False, comment='单次价格'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='eur', comment='货币代码 ISO-4217'),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='PENDING', comment='支付状态'),
        sa.Column('stripe_checkout_session_id', sa.String(length=255), nullable=True, comment='结账会话ID'),
        sa.Column('stripe_payment_intent_id', sa.String(length=255), nullable=True, comment='PaymentIntent ID'),
        sa.Column('stripe_charge_id', sa.String(length=255), nullable=True, comment='Charge ID（退款依据）'),
        sa.Column('stripe_refund_id', sa.String(length=255), nullable=True, comment='最近一次退款ID'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='更新时间'),
        sa.Column('succeeded_at', sa.DateTime(timezone=True), nullable=True, comment='支付成功时间'),
        sa.Column('refunded_at', sa.DateTime(timezone=True), nullable=True, comment='退款时间'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['intent_id'], ['intents.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('stripe_checkout_session_id', name='uq_match_payments_checkout_session'),
        sa.CheckConstraint('matches_used + matches_refunded <= matches_initial', name='ck_match_payments_counters'),
        comment='额度包支付：FIFO 消费与退款的额度来源'
    )
    op.create_index('ix_match_payments_user_id', 'match_payments', ['user_id'], unique=False)
    op.create_index('ix_match_payments_status', 'match_payments', ['status'], unique=False)
    op.create_index('ix_match_payments_stripe_charge_id', 'match_payments', ['stripe_charge_id'], unique=False)
    op.create_index('ix_match_payments_intent_status_created', 'match_payments', ['intent_id', 'status', 'created_at'], unique=False)
    op.create_index('ix_match_payments_status_created', 'match_payments', ['status', 'created_at'], unique=False)

    op.create_table(
        'payment_transactions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False, comment='主键ID'),
        sa.Column('type', sa.String(length=32), nullable=False, comment='流水类型'),
        sa.Column('status', sa.String(length=16), nullable=False, comment='流水状态: PENDING/SUCCEEDED/FAILED'),
        sa.Column('stripe_event_id', sa.String(length=255), nullable=True, comment='渠道事件ID（幂等键）'),
        sa.Column('stripe_object_id', sa.String(length=255), nullable=True, comment='渠道对象ID（会话/退款等）'),
        sa.Column('amount_base', sa.Numeric(precision=10, scale=2), nullable=False, server_default='0', comment='基础金额'),
        sa.Column('amount_fees', sa.Numeric(precision=10, scale=2), nullable=False, server_default='0', comment='手续费'),
        sa.Column('amount_total', sa.Numeric(precision=10, scale=2), nullable=False, server_default='0', comment='总额'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='eur', comment='货币代码'),
        sa.Column('metadata', sa.JSON(), nullable=True, comment='扩展元数据'),
        sa.Column('payment_id', sa.Integer(), nullable=True, comment='关联的支付ID'),
        sa.Column('user_id', sa.Integer(), nullable=False, comment='用户ID'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='创建时间'),
        sa.ForeignKeyConstraint(['payment_id'], ['match_payments.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('stripe_event_id', name='uq_payment_transactions_stripe_event_id'),
        comment='支付审计流水（只追加），stripe_event_id 唯一约束保证 webhook 幂等'
    )
    op.create_index('ix_payment_transactions_type', 'payment_transactions', ['type'], unique=False)
    op.create_index('ix_payment_transactions_stripe_object_id', 'payment_transactions', ['stripe_object_id'], unique=False)
    op.create_index('ix_payment_transactions_payment_id', 'payment_transactions', ['payment_id'], unique=False)
    op.create_index('ix_payment_transactions_user_id', 'payment_transactions', ['user_id'], unique=False)
    op.create_index('ix_payment_transactions_payment_type', 'payment_transactions', ['payment_id', 'type'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_payment_transactions_payment_type', table_name='payment_transactions')
    op.drop_index('ix_payment_transactions_user_id', table_name='payment_transactions')
    op.drop_index('ix_payment_transactions_payment_id', table_name='payment_transactions')
    op.drop_index('ix_payment_transactions_stripe_object_id', table_name='payment_transactions')
    op.drop_index('ix_payment_transactions_type', table_name='payment_transactions')
    op.drop_table('payment_transactions')

    op.drop_index('ix_match_payments_status_created', table_name='match_payments')
    op.drop_index('ix_match_payments_intent_status_created', table_name='match_payments')
    op.drop_index('ix_match_payments_stripe_charge_id', table_name='match_payments')
    op.drop_index('ix_match_payments_status', table_name='match_payments')
    op.drop_index('ix_match_payments_user_id', table_name='match_payments')
    op.drop_table('match_payments')

    op.drop_index('ix_intents_in_flow_remaining', table_name='intents')
    op.drop_index('ix_intents_is_in_flow', table_name='intents')
    op.drop_table('intents')
