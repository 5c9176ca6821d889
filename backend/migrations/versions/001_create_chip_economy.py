"""Create chip economy tables

Revision ID: 001
Revises:
Create Date: 2026-10-19 10:00:00.000000

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
    # Tables may already exist if Base.metadata.create_all ran first
    conn = op.get_bind()
    existing_tables = inspect(conn).get_table_names()

    if 'accounts' not in existing_tables:
        op.create_table(
            'accounts',
            sa.Column('id', sa.String(length=36), nullable=False),
            sa.Column('external_id', sa.String(length=255), nullable=True),
            sa.Column('email', sa.String(length=255), nullable=True),
            sa.Column('chip_balance', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint('id'),
            sa.CheckConstraint('chip_balance >= 0', name='ck_accounts_chip_balance_non_negative'),
        )
        op.create_index('ix_accounts_external_id', 'accounts', ['external_id'], unique=True)

    if 'chip_packages' not in existing_tables:
        op.create_table(
            'chip_packages',
            sa.Column('id', sa.String(length=36), nullable=False),
            sa.Column('name', sa.String(length=255), nullable=False),
            sa.Column('description', sa.Text(), nullable=True),
            sa.Column('chip_amount', sa.Integer(), nullable=False),
            sa.Column('price_cents', sa.Integer(), nullable=False),
            sa.Column('stripe_price_id', sa.String(length=255), nullable=False),
            sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint('id'),
        )
        op.create_index('ix_chip_packages_stripe_price_id', 'chip_packages', ['stripe_price_id'], unique=True)

    if 'videos' not in existing_tables:
        op.create_table(
            'videos',
            sa.Column('id', sa.String(length=36), nullable=False),
            sa.Column('youtube_id', sa.String(length=32), nullable=False),
            sa.Column('title', sa.Text(), nullable=False),
            sa.Column('description', sa.Text(), nullable=True),
            sa.Column('channel_id', sa.String(length=64), nullable=True),
            sa.Column('channel_title', sa.String(length=255), nullable=True),
            sa.Column('published_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('duration', sa.String(length=32), nullable=False),
            sa.Column('duration_seconds', sa.Integer(), nullable=False),
            sa.Column('chip_cost', sa.Integer(), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint('id'),
        )
        op.create_index('ix_videos_youtube_id', 'videos', ['youtube_id'], unique=True)

    if 'analyses' not in existing_tables:
        op.create_table(
            'analyses',
            sa.Column('id', sa.String(length=36), nullable=False),
            sa.Column('account_id', sa.String(length=36), sa.ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False),
            sa.Column('video_id', sa.String(length=36), sa.ForeignKey('videos.id', ondelete='CASCADE'), nullable=False),
            sa.Column('summary', sa.Text(), nullable=False),
            sa.Column('short_summary', sa.Text(), nullable=False),
            sa.Column('timestamps', sa.JSON(), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('account_id', 'video_id', name='uq_analyses_account_video'),
        )
        op.create_index('ix_analyses_account_id', 'analyses', ['account_id'])

    if 'analysis_requests' not in existing_tables:
        op.create_table(
            'analysis_requests',
            sa.Column('id', sa.String(length=36), nullable=False),
            sa.Column('account_id', sa.String(length=36), sa.ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False),
            sa.Column('video_id', sa.String(length=36), sa.ForeignKey('videos.id', ondelete='CASCADE'), nullable=False),
            sa.Column('user_prompt', sa.Text(), nullable=True),
            sa.Column('chip_cost', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
            sa.Column('error', sa.Text(), nullable=True),
            sa.Column('analysis_id', sa.String(length=36), sa.ForeignKey('analyses.id', ondelete='SET NULL'), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint('id'),
        )
        op.create_index('ix_analysis_requests_account_id', 'analysis_requests', ['account_id'])
        op.create_index('ix_analysis_requests_status_created', 'analysis_requests', ['status', 'created_at'])

    if 'ledger_entries' not in existing_tables:
        op.create_table(
            'ledger_entries',
            sa.Column('id', sa.String(length=36), nullable=False),
            sa.Column('account_id', sa.String(length=36), sa.ForeignKey('accounts.id', ondelete='RESTRICT'), nullable=False),
            sa.Column('delta', sa.Integer(), nullable=False),
            sa.Column('category', sa.String(length=50), nullable=False),
            sa.Column('description', sa.Text(), nullable=False),
            sa.Column('external_ref', sa.String(length=255), nullable=True),
            sa.Column('resource_ref', sa.String(length=255), nullable=True),
            sa.Column('package_id', sa.String(length=36), sa.ForeignKey('chip_packages.id', ondelete='SET NULL'), nullable=True),
            sa.Column('request_id', sa.String(length=36), sa.ForeignKey('analysis_requests.id', ondelete='SET NULL'), nullable=True),
            sa.Column('balance_after', sa.Integer(), nullable=False),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('external_ref', name='uq_ledger_entries_external_ref'),
        )
        op.create_index('ix_ledger_entries_account_id', 'ledger_entries', ['account_id'])
        op.create_index('ix_ledger_entries_request_id', 'ledger_entries', ['request_id'])
        op.create_index('ix_ledger_entries_account_created', 'ledger_entries', ['account_id', 'created_at'])

    if 'stripe_events' not in existing_tables:
        op.create_table(
            'stripe_events',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('stripe_event_id', sa.String(length=255), nullable=False),
            sa.Column('event_type', sa.String(length=100), nullable=False),
            sa.Column('status', sa.String(length=50), nullable=False, server_default='received'),
            sa.Column('payload', sa.JSON(), nullable=False),
            sa.Column('error_message', sa.Text(), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint('id'),
        )
        op.create_index('ix_stripe_events_id', 'stripe_events', ['id'])
        op.create_index('ix_stripe_events_stripe_event_id', 'stripe_events', ['stripe_event_id'], unique=True)
        op.create_index('ix_stripe_events_event_type', 'stripe_events', ['event_type'])


def downgrade() -> None:
    op.drop_table('ledger_entries')
    op.drop_table('stripe_events')
    op.drop_table('analysis_requests')
    op.drop_table('analyses')
    op.drop_table('videos')
    op.drop_table('chip_packages')
    op.drop_table('accounts')
