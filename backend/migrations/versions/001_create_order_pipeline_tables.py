"""Create order pipeline tables

Revision ID: 001
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Tables may already exist when created by Base.metadata.create_all
    conn = op.get_bind()
    inspector = inspect(conn)
    existing_tables = inspector.get_table_names()

    if 'users' not in existing_tables:
        op.create_table(
            'users',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('email', sa.String(length=255), nullable=False),
            sa.Column('full_name', sa.String(length=255), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_users_id', 'users', ['id'])
        op.create_index('ix_users_email', 'users', ['email'], unique=True)

    if 'sellers' not in existing_tables:
        op.create_table(
            'sellers',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
            sa.Column('shop_name', sa.String(length=255), nullable=False),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_sellers_id', 'sellers', ['id'])
        op.create_index('ix_sellers_user_id', 'sellers', ['user_id'])

    if 'orders' not in existing_tables:
        op.create_table(
            'orders',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('external_transaction_id', sa.String(length=255), nullable=False),
            sa.Column('payment_intent_id', sa.String(length=255), nullable=True),
            sa.Column('buyer_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
            sa.Column('total_amount', sa.Numeric(10, 2), nullable=False),
            sa.Column('shipping_amount', sa.Numeric(10, 2), nullable=False),
            sa.Column('currency', sa.String(length=3), nullable=False),
            sa.Column('status', sa.String(length=20), nullable=False),
            sa.Column('payment_status', sa.String(length=20), nullable=False),
            sa.Column('shipping_address', sa.JSON(), nullable=True),
            sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('notified_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('external_transaction_id', name='uq_orders_external_transaction_id')
        )
        op.create_index('ix_orders_id', 'orders', ['id'])
        op.create_index('ix_orders_external_transaction_id', 'orders', ['external_transaction_id'])
        op.create_index('ix_orders_payment_intent_id', 'orders', ['payment_intent_id'])
        op.create_index('ix_orders_buyer_id', 'orders', ['buyer_id'])
        op.create_index('ix_orders_status', 'orders', ['status'])
        op.create_index('ix_orders_notified_at', 'orders', ['notified_at'])
    else:
        # Older deployments created orders without the constraint the materializer relies on
        existing_constraints = [con['name'] for con in inspector.get_unique_constraints('orders')]
        if 'uq_orders_external_transaction_id' not in existing_constraints:
            op.create_unique_constraint('uq_orders_external_transaction_id', 'orders', ['external_transaction_id'])

    if 'order_line_items' not in existing_tables:
        op.create_table(
            'order_line_items',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
            sa.Column('product_id', sa.String(length=64), nullable=False),
            sa.Column('seller_id', sa.Integer(), nullable=False),
            sa.Column('quantity', sa.Integer(), nullable=False),
            sa.Column('unit_price', sa.Numeric(10, 2), nullable=False),
            sa.Column('seller_payout_amount', sa.Numeric(10, 2), nullable=False),
            sa.Column('platform_commission', sa.Numeric(10, 2), nullable=False),
            sa.Column('commission_rate', sa.Numeric(5, 2), nullable=False),
            sa.Column('payout_status', sa.String(length=20), nullable=False, server_default='pending'),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_order_line_items_id', 'order_line_items', ['id'])
        op.create_index('ix_order_line_items_order_id', 'order_line_items', ['order_id'])
        op.create_index('ix_order_line_items_product_id', 'order_line_items', ['product_id'])
        op.create_index('ix_order_line_items_seller_id', 'order_line_items', ['seller_id'])

    if 'seller_notifications' not in existing_tables:
        op.create_table(
            'seller_notifications',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('recipient_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
            sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
            sa.Column('seller_id', sa.Integer(), nullable=False),
            sa.Column('type', sa.String(length=50), nullable=False),
            sa.Column('title', sa.String(length=255), nullable=False),
            sa.Column('message', sa.Text(), nullable=False),
            sa.Column('metadata', sa.JSON(), nullable=False),
            sa.Column('is_read', sa.Boolean(), nullable=False, server_default='false'),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('order_id', 'seller_id', name='uq_seller_notifications_order_seller')
        )
        op.create_index('ix_seller_notifications_id', 'seller_notifications', ['id'])
        op.create_index('ix_seller_notifications_recipient_id', 'seller_notifications', ['recipient_id'])
        op.create_index('ix_seller_notifications_order_id', 'seller_notifications', ['order_id'])
        op.create_index('ix_seller_notifications_seller_id', 'seller_notifications', ['seller_id'])

    if 'failed_events' not in existing_tables:
        op.create_table(
            'failed_events',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('external_transaction_id', sa.String(length=255), nullable=True),
            sa.Column('event_id', sa.String(length=255), nullable=True),
            sa.Column('event_type', sa.String(length=100), nullable=True),
            sa.Column('error_kind', sa.String(length=50), nullable=False),
            sa.Column('error_message', sa.Text(), nullable=False),
            sa.Column('raw_payload', sa.JSON(), nullable=True),
            sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('last_seen_at', sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_failed_events_id', 'failed_events', ['id'])
        op.create_index('ix_failed_events_external_transaction_id', 'failed_events', ['external_transaction_id'])
        op.create_index('ix_failed_events_event_id', 'failed_events', ['event_id'])
        op.create_index('ix_failed_events_event_type', 'failed_events', ['event_type'])
        op.create_index('ix_failed_events_error_kind', 'failed_events', ['error_kind'])
        op.create_index('ix_failed_events_status', 'failed_events', ['status'])

    # One pending row per transaction, or per event when the transaction is unknown
    existing_indexes = [idx['name'] for idx in inspect(conn).get_indexes('failed_events')]
    if 'uq_failed_events_pending_transaction' not in existing_indexes:
        where = sa.text("status = 'pending' AND external_transaction_id IS NOT NULL")
        op.create_index(
            'uq_failed_events_pending_transaction', 'failed_events', ['external_transaction_id'],
            unique=True, postgresql_where=where, sqlite_where=where
        )
    if 'uq_failed_events_pending_event' not in existing_indexes:
        where = sa.text("status = 'pending' AND external_transaction_id IS NULL AND event_id IS NOT NULL")
        op.create_index(
            'uq_failed_events_pending_event', 'failed_events', ['event_id'],
            unique=True, postgresql_where=where, sqlite_where=where
        )


def downgrade() -> None:
    conn = op.get_bind()
    inspector = inspect(conn)
    existing_tables = inspector.get_table_names()

    # Children first
    for table in ('failed_events', 'seller_notifications', 'order_line_items', 'orders', 'sellers', 'users'):
        if table in existing_tables:
            op.drop_table(table)
