"""Initial schema: task mirror, webhook ledger, matter state and reference tables.

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19

Creates:
- tasks (with the per-stage slot index, live rows only)
- webhook_events
- matters, matter_history, matters_meetings_booked, matter_stage_tracking
- error_logs, clio_tokens
- task_templates, calendar_event_mappings
- assigned_user_reference, location_keywords, attempt_sequences, stage_status_mappings
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0001_initial'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), 'postgresql')
TIMESTAMP = sa.DateTime(timezone=True)


def upgrade() -> None:
    # ==========================================================================
    # tasks
    # ==========================================================================
    op.create_table(
        'tasks',
        sa.Column('task_id', sa.BigInteger(), autoincrement=False, nullable=False),
        sa.Column('task_name', sa.String(500), nullable=False),
        sa.Column('task_desc', sa.Text(), nullable=True),
        sa.Column('matter_id', sa.BigInteger(), nullable=False),
        sa.Column('assigned_user_id', sa.BigInteger(), nullable=True),
        sa.Column('assigned_user', sa.String(255), nullable=True),
        sa.Column('due_date', sa.Date(), nullable=True),
        sa.Column('stage_id', sa.BigInteger(), nullable=True),
        sa.Column('stage_name', sa.String(255), nullable=True),
        sa.Column('task_number', sa.Integer(), nullable=True),
        sa.Column('completed', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('status', sa.String(20), server_default='pending', nullable=False),
        sa.Column('calendar_entry_id', sa.BigInteger(), nullable=True),
        sa.Column('task_date_generated', TIMESTAMP, nullable=False),
        sa.Column('due_date_generated', TIMESTAMP, nullable=True),
        sa.Column('last_updated', TIMESTAMP, nullable=True),
        sa.Column('verification_attempted', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('verification_attempted_at', TIMESTAMP, nullable=True),
        sa.PrimaryKeyConstraint('task_id'),
    )
    # Soft-deleted rows free their slot
    op.create_index(
        'uq_task_per_stage',
        'tasks',
        ['matter_id', 'stage_id', 'task_number'],
        unique=True,
        postgresql_where=sa.text("status <> 'deleted'"),
        sqlite_where=sa.text("status <> 'deleted'"),
    )
    op.create_index('idx_tasks_matter_stage', 'tasks', ['matter_id', 'stage_id'])
    op.create_index('idx_tasks_calendar_entry', 'tasks', ['calendar_entry_id'])

    # ==========================================================================
    # webhook_events (idempotency ledger, never purged)
    # ==========================================================================
    op.create_table(
        'webhook_events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('idempotency_key', sa.String(255), nullable=False),
        sa.Column('webhook_id', sa.String(255), nullable=True),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('resource_type', sa.String(50), nullable=False),
        sa.Column('resource_id', sa.BigInteger(), nullable=True),
        sa.Column('outcome', sa.String(20), server_default='in_progress', nullable=False),
        sa.Column('action', sa.String(100), server_default='processing', nullable=False),
        sa.Column('webhook_payload', JSON, nullable=True),
        sa.Column('processing_duration_ms', sa.Integer(), nullable=True),
        sa.Column('tasks_created', sa.Integer(), server_default='0', nullable=False),
        sa.Column('tasks_updated', sa.Integer(), server_default='0', nullable=False),
        sa.Column('failure_details', JSON, nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', TIMESTAMP, nullable=False),
        sa.Column('processed_at', TIMESTAMP, nullable=True),
        sa.Column('updated_at', TIMESTAMP, nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('idempotency_key'),
    )

    # ==========================================================================
    # matter state
    # ==========================================================================
    op.create_table(
        'matters',
        sa.Column('matter_id', sa.BigInteger(), autoincrement=False, nullable=False),
        sa.Column('display_number', sa.String(100), nullable=True),
        sa.Column('status', sa.String(50), nullable=True),
        sa.Column('stage_id', sa.BigInteger(), nullable=True),
        sa.Column('stage_name', sa.String(255), nullable=True),
        sa.Column('practice_area_id', sa.BigInteger(), nullable=True),
        sa.Column('location', sa.String(255), nullable=True),
        sa.Column('responsible_attorney_id', sa.BigInteger(), nullable=True),
        sa.Column('originating_attorney_id', sa.BigInteger(), nullable=True),
        sa.Column('updated_at', TIMESTAMP, nullable=False),
        sa.PrimaryKeyConstraint('matter_id'),
    )

    op.create_table(
        'matter_history',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('matter_id', sa.BigInteger(), nullable=False),
        sa.Column('stage_id', sa.BigInteger(), nullable=True),
        sa.Column('stage_name', sa.String(255), nullable=True),
        sa.Column('date', TIMESTAMP, nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_matter_history_matter_date', 'matter_history', ['matter_id', 'date'])

    op.create_table(
        'matters_meetings_booked',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('matter_id', sa.BigInteger(), nullable=False),
        sa.Column('calendar_event_id', sa.BigInteger(), nullable=False),
        sa.Column('calendar_entry_id', sa.BigInteger(), nullable=True),
        sa.Column('stage_id', sa.BigInteger(), nullable=True),
        sa.Column('stage_name', sa.String(255), nullable=True),
        sa.Column('date', TIMESTAMP, nullable=True),
        sa.Column('location', sa.String(500), nullable=True),
        sa.Column('booked', sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column('updated_at', TIMESTAMP, nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('matter_id', 'calendar_event_id', name='uq_meeting_booking'),
    )

    op.create_table(
        'matter_stage_tracking',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('matter_id', sa.BigInteger(), nullable=False),
        sa.Column('stage_name', sa.String(255), nullable=False),
        sa.Column('stage_entered_at', TIMESTAMP, nullable=False),
        sa.Column('initial_notification_sent', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('initial_notification_sent_at', TIMESTAMP, nullable=True),
        sa.Column('last_recurring_notification_at', TIMESTAMP, nullable=True),
        sa.Column('recurring_notification_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('created_at', TIMESTAMP, nullable=False),
        sa.Column('updated_at', TIMESTAMP, nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('matter_id', 'stage_name', name='uq_matter_stage_tracking'),
    )
    op.create_index('ix_matter_stage_tracking_matter_id', 'matter_stage_tracking', ['matter_id'])

    # ==========================================================================
    # error log and tokens
    # ==========================================================================
    op.create_table(
        'error_logs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('error_code', sa.String(100), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=False),
        sa.Column('matter_id', sa.BigInteger(), nullable=True),
        sa.Column('task_id', sa.BigInteger(), nullable=True),
        sa.Column('calendar_entry_id', sa.BigInteger(), nullable=True),
        sa.Column('context', JSON, nullable=True),
        sa.Column('created_at', TIMESTAMP, nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_error_logs_error_code', 'error_logs', ['error_code'])
    op.create_index('ix_error_logs_created_at', 'error_logs', ['created_at'])

    op.create_table(
        'clio_tokens',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('access_token', sa.Text(), nullable=False),
        sa.Column('refresh_token', sa.Text(), nullable=True),
        sa.Column('token_type', sa.String(20), server_default='Bearer', nullable=False),
        sa.Column('expires_at', TIMESTAMP, nullable=True),
        sa.Column('updated_at', TIMESTAMP, nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    # ==========================================================================
    # templates and reference data
    # ==========================================================================
    op.create_table(
        'task_templates',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('task_list', sa.String(20), nullable=False),
        sa.Column('stage_id', sa.BigInteger(), nullable=True),
        sa.Column('stage_name', sa.String(255), nullable=True),
        sa.Column('calendar_event_id', sa.BigInteger(), nullable=True),
        sa.Column('task_number', sa.Integer(), nullable=True),
        sa.Column('task_title', sa.String(500), nullable=True),
        sa.Column('task_description', sa.Text(), nullable=True),
        sa.Column('assignee', sa.String(100), nullable=True),
        sa.Column('assignee_id', sa.String(100), nullable=True),
        sa.Column('due_date_value', sa.String(20), nullable=True),
        sa.Column('due_date_time_relation', sa.String(50), nullable=True),
        sa.Column('due_date_relation', sa.String(100), nullable=True),
        sa.Column('created_at', TIMESTAMP, nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_task_templates_stage', 'task_templates', ['task_list', 'stage_id'])
    op.create_index('idx_task_templates_event', 'task_templates', ['task_list', 'calendar_event_id'])

    op.create_table(
        'calendar_event_mappings',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('calendar_event_id', sa.BigInteger(), nullable=False),
        sa.Column('calendar_event_name', sa.String(255), nullable=True),
        sa.Column('stage_id', sa.BigInteger(), nullable=True),
        sa.Column('stage_name', sa.String(255), nullable=True),
        sa.Column('uses_meeting_location', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('active', sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_calendar_event_mappings_calendar_event_id',
        'calendar_event_mappings',
        ['calendar_event_id'],
    )

    op.create_table(
        'assigned_user_reference',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.BigInteger(), nullable=False),
        sa.Column('user_name', sa.String(255), nullable=False),
        sa.Column('location', JSON, nullable=False),
        sa.Column('attorney_id', JSON, nullable=False),
        sa.Column('fund_table', JSON, nullable=False),
        sa.Column('active', sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'location_keywords',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('keyword', sa.String(100), nullable=False),
        sa.Column('active', sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('keyword'),
    )

    op.create_table(
        'attempt_sequences',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('current_attempt', sa.String(100), nullable=False),
        sa.Column('next_attempt', sa.String(100), nullable=False),
        sa.Column('sequence_order', sa.Integer(), server_default='0', nullable=False),
        sa.Column('active', sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'stage_status_mappings',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('stage_name', sa.String(255), nullable=False),
        sa.Column('matter_status', sa.String(50), nullable=False),
        sa.Column('active', sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('stage_name'),
    )


def downgrade() -> None:
    for table in (
        'stage_status_mappings',
        'attempt_sequences',
        'location_keywords',
        'assigned_user_reference',
        'calendar_event_mappings',
        'task_templates',
        'clio_tokens',
        'error_logs',
        'matter_stage_tracking',
        'matters_meetings_booked',
        'matter_history',
        'matters',
        'webhook_events',
        'tasks',
    ):
        op.drop_table(table)
