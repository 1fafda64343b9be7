"""Initial schema - units, rules, reservations, channel sync, conflicts

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'units',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('org_id', sa.String(36), nullable=False, index=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('base_price', sa.Numeric(10, 2), nullable=True),
        sa.Column('cleaning_fee', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('tourist_tax', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('min_guests', sa.Integer, nullable=False, server_default='1'),
        sa.Column('max_guests', sa.Integer, nullable=True),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime),
        sa.Column('updated_at', sa.DateTime),
    )

    op.create_table(
        'availability_rules',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('unit_id', sa.String(36), sa.ForeignKey('units.id', ondelete='CASCADE'), nullable=False),
        sa.Column('kind', sa.String(20), nullable=False),
        sa.Column('start_date', sa.Date, nullable=False),
        sa.Column('end_date', sa.Date, nullable=False),
        sa.Column('reason', sa.Text, nullable=True),
        sa.Column('min_nights', sa.Integer, nullable=True),
        sa.Column('price_per_night', sa.Numeric(10, 2), nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime),
        sa.CheckConstraint('start_date <= end_date', name='ck_rule_date_order'),
    )
    op.create_index('ix_rule_unit_kind_dates', 'availability_rules', ['unit_id', 'kind', 'start_date', 'end_date'])

    op.create_table(
        'channel_connections',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('unit_id', sa.String(36), sa.ForeignKey('units.id', ondelete='CASCADE'), nullable=False),
        sa.Column('org_id', sa.String(36), nullable=False, index=True),
        sa.Column('platform', sa.String(30), nullable=False),
        sa.Column('import_url', sa.Text, nullable=False),
        sa.Column('sync_frequency_minutes', sa.Integer, nullable=False, server_default='30'),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('last_sync_at', sa.DateTime, nullable=True),
        sa.Column('next_sync_at', sa.DateTime, nullable=True),
        sa.Column('sync_started_at', sa.DateTime, nullable=True),
        sa.Column('error_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime),
        sa.Column('updated_at', sa.DateTime),
        sa.UniqueConstraint('unit_id', 'platform', name='uq_connection_unit_platform'),
    )
    op.create_index('ix_connection_due', 'channel_connections', ['status', 'next_sync_at'])

    op.create_table(
        'reservations',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('unit_id', sa.String(36), sa.ForeignKey('units.id', ondelete='CASCADE'), nullable=False),
        sa.Column('check_in', sa.Date, nullable=False),
        sa.Column('check_out', sa.Date, nullable=False),
        sa.Column('guests_count', sa.Integer, nullable=False, server_default='1'),
        sa.Column('guest_name', sa.String(200), nullable=True),
        sa.Column('guest_email', sa.String(255), nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='confirmed'),
        sa.Column('payment_status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('source', sa.String(20), nullable=False, server_default='direct'),
        sa.Column('total_price', sa.Numeric(10, 2), nullable=True),
        sa.Column('connection_id', sa.String(36),
                  sa.ForeignKey('channel_connections.id', ondelete='CASCADE'), nullable=True),
        sa.Column('external_id', sa.String(255), nullable=True),
        sa.Column('channel_metadata', sa.JSON, nullable=True),
        sa.Column('last_synced_at', sa.DateTime, nullable=True),
        sa.Column('created_at', sa.DateTime),
        sa.Column('updated_at', sa.DateTime),
        sa.UniqueConstraint('connection_id', 'external_id', name='uq_reservation_connection_external'),
        sa.CheckConstraint('check_in < check_out', name='ck_reservation_date_order'),
    )
    op.create_index('ix_reservation_unit_dates', 'reservations', ['unit_id', 'check_in', 'check_out'])
    op.create_index('ix_reservation_status', 'reservations', ['status'])

    op.create_table(
        'external_event_snapshots',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('connection_id', sa.String(36),
                  sa.ForeignKey('channel_connections.id', ondelete='CASCADE'), nullable=False),
        sa.Column('external_id', sa.String(255), nullable=False),
        sa.Column('start_date', sa.Date, nullable=False),
        sa.Column('end_date', sa.Date, nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('summary', sa.Text, nullable=True),
        sa.Column('price', sa.Numeric(10, 2), nullable=True),
        sa.Column('last_seen_at', sa.DateTime, nullable=False),
        sa.UniqueConstraint('connection_id', 'external_id', name='uq_snapshot_connection_external'),
    )

    op.create_table(
        'sync_logs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('connection_id', sa.String(36),
                  sa.ForeignKey('channel_connections.id', ondelete='CASCADE'), nullable=False),
        sa.Column('sync_type', sa.String(20), nullable=False),
        sa.Column('triggered_by', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), nullable=True),
        sa.Column('items_processed', sa.Integer, server_default='0'),
        sa.Column('items_created', sa.Integer, server_default='0'),
        sa.Column('items_updated', sa.Integer, server_default='0'),
        sa.Column('items_cancelled', sa.Integer, server_default='0'),
        sa.Column('conflicts_detected', sa.Integer, server_default='0'),
        sa.Column('error_message', sa.Text, nullable=True),
        sa.Column('started_at', sa.DateTime, nullable=False),
        sa.Column('completed_at', sa.DateTime, nullable=True),
        sa.Column('duration_ms', sa.Integer, nullable=True),
    )
    op.create_index('ix_sync_log_connection_started', 'sync_logs', ['connection_id', 'started_at'])

    op.create_table(
        'booking_conflicts',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('unit_id', sa.String(36), sa.ForeignKey('units.id', ondelete='CASCADE'), nullable=False),
        sa.Column('org_id', sa.String(36), nullable=False, index=True),
        sa.Column('connection_id', sa.String(36),
                  sa.ForeignKey('channel_connections.id', ondelete='CASCADE'), nullable=False),
        sa.Column('conflict_type', sa.String(30), nullable=False),
        sa.Column('severity', sa.String(20), nullable=False, server_default='medium'),
        sa.Column('status', sa.String(20), nullable=False, server_default='unresolved'),
        sa.Column('local_reservation_id', sa.String(36),
                  sa.ForeignKey('reservations.id', ondelete='SET NULL'), nullable=True),
        sa.Column('local_reservation_ids', sa.JSON, nullable=True),
        sa.Column('remote_reservation_id', sa.String(36),
                  sa.ForeignKey('reservations.id', ondelete='SET NULL'), nullable=True),
        sa.Column('remote_external_id', sa.String(255), nullable=False),
        sa.Column('remote_check_in', sa.Date, nullable=False),
        sa.Column('remote_check_out', sa.Date, nullable=False),
        sa.Column('conflict_data', sa.JSON, nullable=True),
        sa.Column('resolution_action', sa.String(30), nullable=True),
        sa.Column('resolution_notes', sa.Text, nullable=True),
        sa.Column('resolved_by', sa.String(100), nullable=True),
        sa.Column('detected_at', sa.DateTime, nullable=False),
        sa.Column('resolved_at', sa.DateTime, nullable=True),
    )
    op.create_index('ix_conflict_unit_status', 'booking_conflicts', ['unit_id', 'status'])
    op.create_index('ix_conflict_remote', 'booking_conflicts', ['connection_id', 'remote_external_id'])


def downgrade() -> None:
    op.drop_table('booking_conflicts')
    op.drop_table('sync_logs')
    op.drop_table('external_event_snapshots')
    op.drop_table('reservations')
    op.drop_table('channel_connections')
    op.drop_table('availability_rules')
    op.drop_table('units')
