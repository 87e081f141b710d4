"""create_lockerdrop_tables

Revision ID: 3f2a9c1d7b40
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3f2a9c1d7b40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ORDER_STATUSES = (
    'pending_dropoff', 'dropped_off', 'ready_for_pickup',
    'completed', 'cancelled', 'expired',
)
SIZE_CLASSES = ('small', 'medium', 'large', 'x_large')
EVENT_TYPES = (
    'dropoff_completed', 'pickup_ready', 'pickup_completed',
    'cancelled', 'expired', 'unknown',
)
EVENT_SOURCES = ('provider', 'merchant', 'system')
EVENT_OUTCOMES = (
    'applied', 'already_applied', 'terminal', 'duplicate', 'ignored', 'unmatched',
)

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def upgrade() -> None:
    """Upgrade schema - Add stores, locker preferences, orders, locker events."""

    op.create_table(
        'lockerdrop_stores',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('shop', sa.String(length=255), nullable=False),
        sa.Column('access_token', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.Column('installed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('uninstalled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_lockerdrop_stores_shop', 'lockerdrop_stores', ['shop'], unique=True)

    op.create_table(
        'lockerdrop_locker_preferences',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('shop', sa.String(length=255), nullable=False),
        sa.Column('location_id', sa.String(length=64), nullable=False),
        sa.Column('location_name', sa.String(length=255), nullable=True),
        sa.Column('is_enabled', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('shop', 'location_id', name='uq_locker_pref_shop_location'),
    )
    op.create_index(
        'ix_lockerdrop_locker_preferences_shop', 'lockerdrop_locker_preferences', ['shop']
    )

    op.create_table(
        'lockerdrop_orders',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('shop', sa.String(length=255), nullable=False),
        sa.Column('external_order_id', sa.String(length=255), nullable=False),
        sa.Column('order_number', sa.String(length=64), nullable=True),
        sa.Column('customer_name', sa.String(length=255), nullable=True),
        sa.Column('customer_email', sa.String(length=255), nullable=True),
        sa.Column('customer_phone', sa.String(length=50), nullable=True),
        sa.Column('requested_location_id', sa.String(length=64), nullable=True),
        sa.Column(
            'required_size',
            sa.Enum(*SIZE_CLASSES, name='lockerdrop_size_class_enum'),
            server_default='small',
            nullable=True,
        ),
        sa.Column('location_id', sa.String(length=64), nullable=True),
        sa.Column('location_name', sa.String(length=255), nullable=True),
        sa.Column('locker_id', sa.String(length=64), nullable=True),
        sa.Column('tower_id', sa.String(length=255), nullable=True),
        sa.Column('dropoff_request_id', sa.String(length=64), nullable=True),
        sa.Column('dropoff_link', sa.Text(), nullable=True),
        sa.Column('pickup_request_id', sa.String(length=64), nullable=True),
        sa.Column('pickup_link', sa.Text(), nullable=True),
        sa.Column('allocation_attempts', sa.Integer(), server_default='0', nullable=False),
        sa.Column('allocation_error', sa.Text(), nullable=True),
        sa.Column('next_allocation_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            'status',
            sa.Enum(*ORDER_STATUSES, name='lockerdrop_order_status_enum'),
            server_default='pending_dropoff',
            nullable=False,
        ),
        sa.Column('ready_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expired_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_lockerdrop_orders_shop_status', 'lockerdrop_orders', ['shop', 'status'])
    op.create_index('ix_lockerdrop_orders_locker_tower', 'lockerdrop_orders', ['locker_id', 'tower_id'])
    op.create_index(
        'ix_lockerdrop_orders_dropoff_request_id', 'lockerdrop_orders', ['dropoff_request_id']
    )
    op.create_index(
        'ix_lockerdrop_orders_pickup_request_id', 'lockerdrop_orders', ['pickup_request_id']
    )
    # At most one live order per commerce order
    op.create_index(
        'uq_lockerdrop_orders_live_external_id',
        'lockerdrop_orders',
        ['external_order_id'],
        unique=True,
        postgresql_where=sa.text("status <> 'cancelled'"),
        sqlite_where=sa.text("status <> 'cancelled'"),
    )

    op.create_table(
        'lockerdrop_locker_events',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('order_id', sa.Uuid(), nullable=True),
        sa.Column(
            'event_type',
            sa.Enum(*EVENT_TYPES, name='lockerdrop_event_type_enum'),
            nullable=False,
        ),
        sa.Column('raw_event_type', sa.String(length=100), nullable=True),
        sa.Column(
            'source',
            sa.Enum(*EVENT_SOURCES, name='lockerdrop_event_source_enum'),
            server_default='provider',
            nullable=True,
        ),
        sa.Column('locker_id', sa.String(length=64), nullable=True),
        sa.Column('tower_id', sa.String(length=255), nullable=True),
        sa.Column('provider_timestamp', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payload', JSON_TYPE, nullable=True),
        sa.Column(
            'outcome',
            sa.Enum(*EVENT_OUTCOMES, name='lockerdrop_event_outcome_enum'),
            nullable=False,
        ),
        sa.Column('from_status', sa.String(length=32), nullable=True),
        sa.Column('to_status', sa.String(length=32), nullable=True),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['lockerdrop_orders.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_lockerdrop_events_dedup',
        'lockerdrop_locker_events',
        ['order_id', 'event_type', 'provider_timestamp'],
    )


def downgrade() -> None:
    """Downgrade schema - Drop LockerDrop tables."""
    op.drop_index('ix_lockerdrop_events_dedup', table_name='lockerdrop_locker_events')
    op.drop_table('lockerdrop_locker_events')
    op.drop_index('uq_lockerdrop_orders_live_external_id', table_name='lockerdrop_orders')
    op.drop_index('ix_lockerdrop_orders_pickup_request_id', table_name='lockerdrop_orders')
    op.drop_index('ix_lockerdrop_orders_dropoff_request_id', table_name='lockerdrop_orders')
    op.drop_index('ix_lockerdrop_orders_locker_tower', table_name='lockerdrop_orders')
    op.drop_index('ix_lockerdrop_orders_shop_status', table_name='lockerdrop_orders')
    op.drop_table('lockerdrop_orders')
    op.drop_index(
        'ix_lockerdrop_locker_preferences_shop', table_name='lockerdrop_locker_preferences'
    )
    op.drop_table('lockerdrop_locker_preferences')
    op.drop_index('ix_lockerdrop_stores_shop', table_name='lockerdrop_stores')
    op.drop_table('lockerdrop_stores')

    bind = op.get_bind()
    for name in (
        'lockerdrop_event_outcome_enum',
        'lockerdrop_event_source_enum',
        'lockerdrop_event_type_enum',
        'lockerdrop_order_status_enum',
        'lockerdrop_size_class_enum',
    ):
        sa.Enum(name=name).drop(bind, checkfirst=True)
