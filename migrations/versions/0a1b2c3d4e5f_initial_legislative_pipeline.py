"""initial legislative pipeline tables

Revision ID: 0a1b2c3d4e5f
Revises:
Create Date: 2025-11-03

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '0a1b2c3d4e5f'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ENUMS = {
    'source_run_status': ('running', 'success', 'partial', 'failed'),
    'legislation_item_type': ('bill', 'regulation', 'case', 'notice', 'cfr_change'),
    'jurisdiction_level': ('federal', 'state', 'tribal', 'local'),
    'severity_level': ('low', 'medium', 'high', 'critical'),
    'review_status': ('pending', 'in_review', 'approved', 'rejected', 'published'),
    'release_batch_type': ('monthly', 'manual'),
    'release_batch_status': ('running', 'no_changes', 'pending_review', 'published', 'failed'),
}


def _enum(name: str) -> postgresql.ENUM:
    # Types are created up front; jurisdiction_level is shared by two tables
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        'legislation_sources',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('enabled', sa.Boolean(), nullable=False),
        sa.Column('state_filter', sa.JSON(), nullable=True),
        sa.Column('topic_filter', sa.JSON(), nullable=True),
        sa.Column('last_cursor', sa.Text(), nullable=True),
        sa.Column('last_seen_date', sa.DateTime(), nullable=True),
        sa.Column('last_run_at', sa.DateTime(), nullable=True),
        sa.Column('last_run_status', sa.String(length=16), nullable=True),
        sa.Column('last_run_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'source_runs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('source_key', sa.String(length=64), nullable=False),
        sa.Column('status', _enum('source_run_status'), nullable=False),
        sa.Column('cursor_before', sa.Text(), nullable=True),
        sa.Column('cursor_after', sa.Text(), nullable=True),
        sa.Column('items_fetched', sa.Integer(), nullable=False),
        sa.Column('new_items_count', sa.Integer(), nullable=False),
        sa.Column('duplicates_skipped', sa.Integer(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('finished_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_source_runs_source_key', 'source_runs', ['source_key'], unique=False)
    op.create_index('ix_source_runs_started_at', 'source_runs', ['started_at'], unique=False)

    op.create_table(
        'raw_legislation_items',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('source_id', sa.String(length=64), nullable=False),
        sa.Column('external_id', sa.Text(), nullable=False),
        sa.Column('url', sa.Text(), nullable=True),
        sa.Column('published_at', sa.DateTime(), nullable=True),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('body', sa.Text(), nullable=True),
        sa.Column('raw_data', sa.JSON(), nullable=False),
        sa.Column('content_hash', sa.String(length=32), nullable=True),
        sa.Column('fetched_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['source_id'], ['legislation_sources.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_raw_items_source_id', 'raw_legislation_items', ['source_id'], unique=False)
    op.create_index('ix_raw_items_external_id', 'raw_legislation_items', ['external_id'], unique=False)
    op.create_index('ix_raw_items_published_at', 'raw_legislation_items', ['published_at'], unique=False)

    op.create_table(
        'normalized_updates',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('source_id', sa.String(length=64), nullable=False),
        sa.Column('raw_item_id', sa.Uuid(), nullable=True),
        sa.Column('source_key', sa.Text(), nullable=False),
        sa.Column('cross_ref_key', sa.Text(), nullable=True),
        sa.Column('item_type', _enum('legislation_item_type'), nullable=False),
        sa.Column('jurisdiction_level', _enum('jurisdiction_level'), nullable=False),
        sa.Column('jurisdiction_state', sa.String(length=2), nullable=True),
        sa.Column('jurisdiction_tribe', sa.Text(), nullable=True),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('summary', sa.Text(), nullable=True),
        sa.Column('status', sa.Text(), nullable=True),
        sa.Column('introduced_date', sa.DateTime(), nullable=True),
        sa.Column('effective_date', sa.DateTime(), nullable=True),
        sa.Column('published_at', sa.DateTime(), nullable=True),
        sa.Column('url', sa.Text(), nullable=True),
        sa.Column('pdf_url', sa.Text(), nullable=True),
        sa.Column('topics', sa.JSON(), nullable=False),
        sa.Column('severity', _enum('severity_level'), nullable=True),
        sa.Column('cfr_references', sa.JSON(), nullable=True),
        sa.Column('is_duplicate', sa.Boolean(), nullable=False),
        sa.Column('duplicate_of_id', sa.Uuid(), nullable=True),
        sa.Column('is_processed', sa.Boolean(), nullable=False),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.Column('is_queued', sa.Boolean(), nullable=False),
        sa.Column('queued_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['source_id'], ['legislation_sources.id'], ),
        sa.ForeignKeyConstraint(['raw_item_id'], ['raw_legislation_items.id'], ),
        sa.ForeignKeyConstraint(['duplicate_of_id'], ['normalized_updates.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_normalized_updates_source_id', 'normalized_updates', ['source_id'], unique=False)
    op.create_index('ix_normalized_updates_cross_ref_key', 'normalized_updates', ['cross_ref_key'], unique=False)
    op.create_index(
        'ix_normalized_updates_jurisdiction',
        'normalized_updates',
        ['jurisdiction_level', 'jurisdiction_state'],
        unique=False,
    )
    op.create_index('ix_normalized_updates_is_processed', 'normalized_updates', ['is_processed'], unique=False)
    op.create_index(
        'uq_normalized_updates_cross_ref_original',
        'normalized_updates',
        ['cross_ref_key'],
        unique=True,
        postgresql_where=sa.text('is_duplicate = false'),
    )

    op.create_table(
        'templates',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('category', sa.String(length=64), nullable=True),
        sa.Column('state_code', sa.String(length=2), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'template_topic_routing',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('template_id', sa.Uuid(), nullable=False),
        sa.Column('topic', sa.String(length=64), nullable=False),
        sa.Column('jurisdiction_level', _enum('jurisdiction_level'), nullable=True),
        sa.Column('jurisdiction_state', sa.String(length=2), nullable=True),
        sa.Column('jurisdiction_tribe', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['template_id'], ['templates.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_routing_template_id', 'template_topic_routing', ['template_id'], unique=False)
    op.create_index('ix_routing_topic', 'template_topic_routing', ['topic'], unique=False)

    op.create_table(
        'release_batches',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('batch_type', _enum('release_batch_type'), nullable=False),
        sa.Column('period', sa.String(length=7), nullable=False),
        sa.Column('status', _enum('release_batch_status'), nullable=False),
        sa.Column('updates_processed', sa.Integer(), nullable=False),
        sa.Column('templates_queued', sa.Integer(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('published_at', sa.DateTime(), nullable=True),
        sa.Column('summary_report', sa.Text(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_release_batches_period', 'release_batches', ['period'], unique=False)
    op.create_index('ix_release_batches_status', 'release_batches', ['status'], unique=False)
    op.create_index(
        'uq_release_batches_running_period',
        'release_batches',
        ['period', 'batch_type'],
        unique=True,
        postgresql_where=sa.text("status = 'running'"),
    )

    op.create_table(
        'template_review_queue',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('template_id', sa.Uuid(), nullable=False),
        sa.Column('normalized_update_id', sa.Uuid(), nullable=False),
        sa.Column('release_batch_id', sa.Uuid(), nullable=True),
        sa.Column('jurisdiction', sa.String(length=2), nullable=True),
        sa.Column('status', _enum('review_status'), nullable=False),
        sa.Column('priority', sa.Integer(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('assigned_to', sa.String(), nullable=True),
        sa.Column('review_started_at', sa.DateTime(), nullable=True),
        sa.Column('review_completed_at', sa.DateTime(), nullable=True),
        sa.Column('approval_notes', sa.Text(), nullable=True),
        sa.Column('approved_changes', sa.JSON(), nullable=True),
        sa.Column('queued_at', sa.DateTime(), nullable=False),
        sa.Column('published_at', sa.DateTime(), nullable=True),
        sa.Column('published_by', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['template_id'], ['templates.id'], ),
        sa.ForeignKeyConstraint(['normalized_update_id'], ['normalized_updates.id'], ),
        sa.ForeignKeyConstraint(['release_batch_id'], ['release_batches.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('template_id', 'normalized_update_id', name='uq_review_template_update'),
    )
    op.create_index('ix_review_queue_status', 'template_review_queue', ['status'], unique=False)
    op.create_index(
        'ix_review_queue_release_batch_id', 'template_review_queue', ['release_batch_id'], unique=False
    )


def downgrade() -> None:
    op.drop_index('ix_review_queue_release_batch_id', table_name='template_review_queue')
    op.drop_index('ix_review_queue_status', table_name='template_review_queue')
    op.drop_table('template_review_queue')
    op.drop_index('uq_release_batches_running_period', table_name='release_batches')
    op.drop_index('ix_release_batches_status', table_name='release_batches')
    op.drop_index('ix_release_batches_period', table_name='release_batches')
    op.drop_table('release_batches')
    op.drop_index('ix_routing_topic', table_name='template_topic_routing')
    op.drop_index('ix_routing_template_id', table_name='template_topic_routing')
    op.drop_table('template_topic_routing')
    op.drop_table('templates')
    op.drop_index('uq_normalized_updates_cross_ref_original', table_name='normalized_updates')
    op.drop_index('ix_normalized_updates_is_processed', table_name='normalized_updates')
    op.drop_index('ix_normalized_updates_jurisdiction', table_name='normalized_updates')
    op.drop_index('ix_normalized_updates_cross_ref_key', table_name='normalized_updates')
    op.drop_index('ix_normalized_updates_source_id', table_name='normalized_updates')
    op.drop_table('normalized_updates')
    op.drop_index('ix_raw_items_published_at', table_name='raw_legislation_items')
    op.drop_index('ix_raw_items_external_id', table_name='raw_legislation_items')
    op.drop_index('ix_raw_items_source_id', table_name='raw_legislation_items')
    op.drop_table('raw_legislation_items')
    op.drop_index('ix_source_runs_started_at', table_name='source_runs')
    op.drop_index('ix_source_runs_source_key', table_name='source_runs')
    op.drop_table('source_runs')
    op.drop_table('legislation_sources')

    bind = op.get_bind()
    for name in reversed(list(ENUMS)):
        postgresql.ENUM(name=name).drop(bind, checkfirst=True)
