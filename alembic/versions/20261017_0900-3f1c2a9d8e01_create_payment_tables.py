"""create_payment_tables

Revision ID: 3f1c2a9d8e01
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3f1c2a9d8e01'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # payments
    op.create_table(
        'payments',
        sa.Column('id', sa.String(length=64), nullable=False, comment='支付ID'),
        sa.Column('user_id', sa.String(length=64), nullable=False, comment='用户ID'),
        sa.Column('provider', sa.String(length=32), nullable=False, comment='支付提供商: stripe/paystack'),
        sa.Column('provider_payment_id', sa.String(length=200), nullable=True, comment='渠道支付ID'),
        sa.Column('client_secret', sa.String(length=500), nullable=True, comment='客户端密钥（用于前端确认）'),
        sa.Column('region', sa.String(length=2), nullable=True, comment='地区 ISO-3166'),
        sa.Column('subscription_id', sa.String(length=64), nullable=True, comment='订阅ID'),
        sa.Column('amount', sa.Numeric(precision=18, scale=4), nullable=False, comment='支付金额'),
        sa.Column('currency', sa.String(length=3), nullable=False, comment='货币代码 ISO-4217'),
        sa.Column('status', sa.String(length=32), nullable=False, comment='支付状态'),
        sa.Column('error_code', sa.String(length=100), nullable=True, comment='失败代码'),
        sa.Column('error_message', sa.Text(), nullable=True, comment='失败原因'),
        sa.Column('refunded_amount', sa.Numeric(precision=18, scale=4), nullable=False, comment='已退款金额'),
        sa.Column('refunds', sa.JSON(), nullable=False, comment='退款记录'),
        sa.Column('version', sa.Integer(), nullable=False, comment='版本号'),
        sa.Column('metadata', sa.JSON(), nullable=True, comment='扩展元数据'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, comment='更新时间'),
        sa.Column('succeeded_at', sa.DateTime(timezone=True), nullable=True, comment='支付成功时间'),
        sa.Column('failed_at', sa.DateTime(timezone=True), nullable=True, comment='支付失败时间'),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True, comment='取消时间'),
        sa.Column('refunded_at', sa.DateTime(timezone=True), nullable=True, comment='最近一次退款成功时间'),
        sa.PrimaryKeyConstraint('id', name='pk_payments'),
        sa.UniqueConstraint('provider', 'provider_payment_id', name='uq_payments_provider_payment_id'),
    )
    op.create_index('ix_payments_user_id', 'payments', ['user_id'])
    op.create_index('ix_payments_provider', 'payments', ['provider'])
    op.create_index('ix_payments_subscription_id', 'payments', ['subscription_id'])
    op.create_index('ix_payments_status', 'payments', ['status'])
    op.create_index('ix_payments_status_updated', 'payments', ['status', 'updated_at'])
    op.create_index('ix_payments_created_at', 'payments', ['created_at'])

    # subscriptions
    op.create_table(
        'subscriptions',
        sa.Column('id', sa.String(length=64), nullable=False, comment='订阅ID'),
        sa.Column('user_id', sa.String(length=64), nullable=False, comment='用户ID'),
        sa.Column('plan_id', sa.String(length=64), nullable=False, comment='套餐ID'),
        sa.Column('provider', sa.String(length=32), nullable=False, comment='支付提供商'),
        sa.Column('provider_subscription_id', sa.String(length=200), nullable=True, comment='渠道订阅ID'),
        sa.Column('status', sa.String(length=32), nullable=False, comment='订阅状态'),
        sa.Column('amount', sa.Numeric(precision=18, scale=4), nullable=False, comment='每期金额'),
        sa.Column('currency', sa.String(length=3), nullable=False, comment='货币代码'),
        sa.Column('interval', sa.String(length=16), nullable=False, comment='计费周期: day/week/month/year'),
        sa.Column('interval_count', sa.Integer(), nullable=False, comment='周期数'),
        sa.Column('current_period_start', sa.DateTime(timezone=True), nullable=False, comment='当前周期开始'),
        sa.Column('current_period_end', sa.DateTime(timezone=True), nullable=False, comment='当前周期结束'),
        sa.Column('trial_start', sa.DateTime(timezone=True), nullable=True, comment='试用开始'),
        sa.Column('trial_end', sa.DateTime(timezone=True), nullable=True, comment='试用结束'),
        sa.Column('cancel_at_period_end', sa.Boolean(), nullable=False, comment='是否期末取消'),
        sa.Column('cancel_reason', sa.Text(), nullable=True, comment='取消原因'),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True, comment='取消时间'),
        sa.Column('ended_at', sa.DateTime(timezone=True), nullable=True, comment='结束时间'),
        sa.Column('failed_renewals', sa.Integer(), nullable=False, comment='连续续费失败次数'),
        sa.Column('version', sa.Integer(), nullable=False, comment='版本号'),
        sa.Column('metadata', sa.JSON(), nullable=True, comment='扩展元数据'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, comment='更新时间'),
        sa.PrimaryKeyConstraint('id', name='pk_subscriptions'),
        sa.UniqueConstraint(
            'provider', 'provider_subscription_id', name='uq_subscriptions_provider_subscription_id'
        ),
    )
    op.create_index('ix_subscriptions_user_id', 'subscriptions', ['user_id'])
    op.create_index('ix_subscriptions_status', 'subscriptions', ['status'])
    op.create_index('ix_subscriptions_current_period_end', 'subscriptions', ['current_period_end'])
    op.create_index('ix_subscriptions_status_created', 'subscriptions', ['status', 'created_at'])

    # transactions（只追加，归属支付或订阅之一）
    op.create_table(
        'transactions',
        sa.Column('id', sa.String(length=64), nullable=False, comment='流水ID'),
        sa.Column('kind', sa.String(length=32), nullable=False, comment='类型'),
        sa.Column('amount', sa.Numeric(precision=18, scale=4), nullable=False, comment='金额'),
        sa.Column('currency', sa.String(length=3), nullable=False, comment='货币代码'),
        sa.Column('payment_id', sa.String(length=64), nullable=True, comment='关联支付'),
        sa.Column('subscription_id', sa.String(length=64), nullable=True, comment='关联订阅'),
        sa.Column('provider', sa.String(length=32), nullable=True, comment='支付提供商'),
        sa.Column('provider_reference', sa.String(length=200), nullable=True, comment='渠道引用'),
        sa.Column('description', sa.Text(), nullable=True, comment='描述'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, comment='创建时间'),
        sa.CheckConstraint(
            '(payment_id IS NULL) <> (subscription_id IS NULL)', name=op.f('ck_transactions_single_owner')
        ),
        sa.PrimaryKeyConstraint('id', name='pk_transactions'),
    )
    op.create_index('ix_transactions_payment_id', 'transactions', ['payment_id'])
    op.create_index('ix_transactions_subscription_id', 'transactions', ['subscription_id'])

    # webhook_events
    op.create_table(
        'webhook_events',
        sa.Column('id', sa.String(length=64), nullable=False, comment='事件ID'),
        sa.Column('provider', sa.String(length=32), nullable=False, comment='支付提供商'),
        sa.Column('provider_event_id', sa.String(length=200), nullable=False, comment='渠道事件ID'),
        sa.Column('event_type', sa.String(length=100), nullable=False, comment='渠道事件类型'),
        sa.Column('payload', sa.Text(), nullable=False, comment='原始请求体'),
        sa.Column('signature', sa.String(length=500), nullable=True, comment='签名头'),
        sa.Column('notification', sa.JSON(), nullable=False, comment='标准化后的通知'),
        sa.Column('status', sa.String(length=16), nullable=False, comment='处理状态'),
        sa.Column('retry_count', sa.Integer(), nullable=False, comment='失败次数'),
        sa.Column('processing_error', sa.Text(), nullable=True, comment='最近一次处理错误'),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=False, comment='接收时间'),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True, comment='处理完成时间'),
        sa.PrimaryKeyConstraint('id', name='pk_webhook_events'),
        sa.UniqueConstraint('provider', 'provider_event_id', name='uq_webhook_events_provider_event'),
    )
    op.create_index('ix_webhook_events_status_received', 'webhook_events', ['status', 'received_at'])

    # idempotency_records：主键即抢占依据
    op.create_table(
        'idempotency_records',
        sa.Column('key', sa.String(length=255), nullable=False, comment='幂等键'),
        sa.Column('method', sa.String(length=10), nullable=False, comment='HTTP 方法'),
        sa.Column('path', sa.String(length=500), nullable=False, comment='请求路径'),
        sa.Column('fingerprint', sa.String(length=64), nullable=False, comment='请求指纹 sha256'),
        sa.Column('user_id', sa.String(length=64), nullable=True, comment='用户ID'),
        sa.Column('response_status', sa.Integer(), nullable=True, comment='响应状态码'),
        sa.Column('response_body', sa.JSON(), nullable=True, comment='响应体'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, comment='创建时间'),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True, comment='完成时间'),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False, comment='过期时间'),
        sa.PrimaryKeyConstraint('key', name='pk_idempotency_records'),
    )
    op.create_index('ix_idempotency_records_expires_at', 'idempotency_records', ['expires_at'])

    # outbox：自增 id 决定投递顺序
    op.create_table(
        'outbox',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('event_id', sa.String(length=64), nullable=False, comment='事件ID'),
        sa.Column('event_type', sa.String(length=100), nullable=False, comment='事件类型'),
        sa.Column('aggregate_type', sa.String(length=32), nullable=False, comment='聚合类型'),
        sa.Column('aggregate_id', sa.String(length=64), nullable=False, comment='聚合ID'),
        sa.Column('payload', sa.JSON(), nullable=False, comment='事件内容'),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False, comment='发生时间'),
        sa.Column('published_at', sa.DateTime(timezone=True), nullable=True, comment='投递确认时间'),
        sa.Column('attempts', sa.Integer(), nullable=False, comment='失败次数'),
        sa.Column('last_error', sa.Text(), nullable=True, comment='最近一次投递错误'),
        sa.Column('claimed_by', sa.String(length=64), nullable=True, comment='租约持有者'),
        sa.Column('claimed_until', sa.DateTime(timezone=True), nullable=True, comment='租约到期时间'),
        sa.PrimaryKeyConstraint('id', name='pk_outbox'),
        sa.UniqueConstraint('event_id', name='uq_outbox_event_id'),
    )
    op.create_index('ix_outbox_unpublished', 'outbox', ['published_at', 'id'])
    op.create_index('ix_outbox_aggregate', 'outbox', ['aggregate_type', 'aggregate_id'])


def downgrade() -> None:
    op.drop_index('ix_outbox_aggregate', table_name='outbox')
    op.drop_index('ix_outbox_unpublished', table_name='outbox')
    op.drop_table('outbox')

    op.drop_index('ix_idempotency_records_expires_at', table_name='idempotency_records')
    op.drop_table('idempotency_records')

    op.drop_index('ix_webhook_events_status_received', table_name='webhook_events')
    op.drop_table('webhook_events')

    op.drop_index('ix_transactions_subscription_id', table_name='transactions')
    op.drop_index('ix_transactions_payment_id', table_name='transactions')
    op.drop_table('transactions')

    op.drop_index('ix_subscriptions_status_created', table_name='subscriptions')
    op.drop_index('ix_subscriptions_current_period_end', table_name='subscriptions')
    op.drop_index('ix_subscriptions_status', table_name='subscriptions')
    op.drop_index('ix_subscriptions_user_id', table_name='subscriptions')
    op.drop_table('subscriptions')

    op.drop_index('ix_payments_created_at', table_name='payments')
    op.drop_index('ix_payments_status_updated', table_name='payments')
    op.drop_index('ix_payments_status', table_name='payments')
    op.drop_index('ix_payments_subscription_id', table_name='payments')
    op.drop_index('ix_payments_provider', table_name='payments')
    op.drop_index('ix_payments_user_id', table_name='payments')
    op.drop_table('payments')
