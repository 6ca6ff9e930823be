"""Initial schema: saved webhooks, schedules, executions, audit logs

Revision ID: 001
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

json_type = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), 'postgresql')


def upgrade() -> None:
    op.create_table('saved_webhooks',
    sa.Column('id', sa.String(36), nullable=False),
    sa.Column('owner_id', sa.String(64), nullable=False),
    sa.Column('name', sa.String(100), nullable=False),
    sa.Column('builder_state', json_type, nullable=True),
    sa.Column('message_data', json_type, nullable=True),
    sa.Column('files', json_type, nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_saved_webhooks_owner_id'), 'saved_webhooks', ['owner_id'], unique=False)

    op.create_table('schedules',
    sa.Column('id', sa.String(36), nullable=False),
    sa.Column('owner_id', sa.String(64), nullable=False),
    sa.Column('name', sa.String(100), nullable=False),
    sa.Column('target_url', sa.Text(), nullable=False),
    sa.Column('saved_webhook_id', sa.String(36), nullable=True),
    sa.Column('builder_state', json_type, nullable=True),
    sa.Column('message_data', json_type, nullable=True),
    sa.Column('files', json_type, nullable=True),
    sa.Column('scheduled_at', sa.DateTime(timezone=True), nullable=False),
    sa.Column('is_recurring', sa.Boolean(), nullable=False, server_default=sa.false()),
    sa.Column('recurrence_pattern', sa.String(20), nullable=False, server_default='once'),
    sa.Column('recurrence_config', json_type, nullable=True),
    sa.Column('max_executions', sa.Integer(), nullable=True),
    sa.Column('execution_count', sa.Integer(), nullable=False, server_default='0'),
    sa.Column('next_execution_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('last_executed_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
    sa.Column('claim_token', sa.String(36), nullable=True),
    sa.Column('claimed_until', sa.DateTime(timezone=True), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    sa.ForeignKeyConstraint(['saved_webhook_id'], ['saved_webhooks.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_schedules_owner_id'), 'schedules', ['owner_id'], unique=False)
    op.create_index(op.f('ix_schedules_saved_webhook_id'), 'schedules', ['saved_webhook_id'], unique=False)
    op.create_index('idx_schedules_due', 'schedules', ['is_active', 'next_execution_at'], unique=False)

    op.create_table('schedule_executions',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('schedule_id', sa.String(36), nullable=False),
    sa.Column('execution_number', sa.Integer(), nullable=False),
    sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
    sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('success', sa.Boolean(), nullable=False, server_default=sa.false()),
    sa.Column('status_code', sa.Integer(), nullable=True),
    sa.Column('error_message', sa.Text(), nullable=True),
    sa.Column('outcome', sa.String(30), nullable=False),
    sa.Column('next_execution_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    sa.ForeignKeyConstraint(['schedule_id'], ['schedules.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_schedule_executions_id'), 'schedule_executions', ['id'], unique=False)
    op.create_index(op.f('ix_schedule_executions_schedule_id'), 'schedule_executions', ['schedule_id'], unique=False)
    op.create_index('idx_schedule_executions_created_at', 'schedule_executions', ['created_at'], unique=False)

    op.create_table('audit_logs',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('action', sa.String(100), nullable=False),
    sa.Column('entity_type', sa.String(50), nullable=True),
    sa.Column('entity_id', sa.String(36), nullable=True),
    sa.Column('owner_id', sa.String(64), nullable=True),
    sa.Column('details', json_type, nullable=True),
    sa.Column('ip_address', sa.String(45), nullable=True),
    sa.Column('user_agent', sa.String(), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_audit_logs_id'), 'audit_logs', ['id'], unique=False)
    op.create_index(op.f('ix_audit_logs_owner_id'), 'audit_logs', ['owner_id'], unique=False)
    op.create_index(op.f('ix_audit_logs_created_at'), 'audit_logs', ['created_at'], unique=False)
    op.create_index('idx_audit_logs_action', 'audit_logs', ['action'], unique=False)


def downgrade() -> None:
    op.drop_index('idx_audit_logs_action', table_name='audit_logs')
    op.drop_index(op.f('ix_audit_logs_created_at'), table_name='audit_logs')
    op.drop_index(op.f('ix_audit_logs_owner_id'), table_name='audit_logs')
    op.drop_index(op.f('ix_audit_logs_id'), table_name='audit_logs')
    op.drop_table('audit_logs')

    op.drop_index('idx_schedule_executions_created_at', table_name='schedule_executions')
    op.drop_index(op.f('ix_schedule_executions_schedule_id'), table_name='schedule_executions')
    op.drop_index(op.f('ix_schedule_executions_id'), table_name='schedule_executions')
    op.drop_table('schedule_executions')

    op.drop_index('idx_schedules_due', table_name='schedules')
    op.drop_index(op.f('ix_schedules_saved_webhook_id'), table_name='schedules')
    op.drop_index(op.f('ix_schedules_owner_id'), table_name='schedules')
    op.drop_table('schedules')

    op.drop_index(op.f('ix_saved_webhooks_owner_id'), table_name='saved_webhooks')
    op.drop_table('saved_webhooks')
