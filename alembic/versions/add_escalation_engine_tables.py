"""Add escalation engine tables

Creates schools (tenants), staff users, escalations with their append-only
round log, authority focus pointers and the escalation audit trail.

Revision ID: add_escalation_engine_tables
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = 'add_escalation_engine_tables'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'tenants',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('subdomain', sa.String(100), nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_tenants_id', 'tenants', ['id'])
    op.create_index('ix_tenants_subdomain', 'tenants', ['subdomain'], unique=True)

    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('display_name', sa.String(255), nullable=True),
        sa.Column('phone_number', sa.String(50), nullable=True),
        sa.Column('role', sa.String(50), server_default='teacher', nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_id', 'users', ['id'])
    op.create_index('ix_users_tenant_id', 'users', ['tenant_id'])
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_phone_number', 'users', ['phone_number'])

    op.create_table(
        'escalations',
        sa.Column('id', sa.String(64), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('origin_agent', sa.String(10), nullable=False),
        sa.Column('escalation_type', sa.String(100), nullable=False),
        sa.Column('priority', sa.String(20), server_default='MEDIUM', nullable=False),
        sa.Column('from_address', sa.String(255), nullable=False),
        sa.Column('session_id', sa.String(255), nullable=False),
        sa.Column('pause_message_id', sa.String(255), nullable=False),
        sa.Column('user_name', sa.String(255), nullable=True),
        sa.Column('user_role', sa.String(50), nullable=True),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('what_agent_needed', sa.Text(), nullable=False),
        sa.Column('context', sa.JSON(), nullable=False),
        sa.Column('conversation_summary', sa.Text(), nullable=True),
        sa.Column('class_level', sa.String(50), nullable=True),
        sa.Column('subject', sa.String(100), nullable=True),
        sa.Column('term_id', sa.String(50), nullable=True),
        sa.Column('state', sa.String(30), server_default='PAUSED', nullable=False),
        sa.Column('round_number', sa.Integer(), server_default='0', nullable=False),
        sa.Column('decision', sa.String(50), nullable=True),
        sa.Column('instruction', sa.Text(), nullable=True),
        sa.Column('resolved_by', sa.String(255), nullable=True),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.Column('resumed_at', sa.DateTime(), nullable=True),
        sa.Column('resume_marker', sa.String(255), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('execution_status', sa.String(20), server_default='NOT_EXECUTED', nullable=False),
        sa.Column('executed_action', sa.String(100), nullable=True),
        sa.Column('execution_summary', sa.Text(), nullable=True),
        sa.Column('executed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_escalations_tenant_id', 'escalations', ['tenant_id'])
    op.create_index('ix_escalations_state', 'escalations', ['state'])
    op.create_index('ix_escalations_created_at', 'escalations', ['created_at'])
    op.create_index('ix_escalations_escalation_type', 'escalations', ['escalation_type'])
    op.create_index('ix_escalations_priority', 'escalations', ['priority'])
    op.create_index('ix_escalations_session_id', 'escalations', ['session_id'])

    op.create_table(
        'escalation_rounds',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('escalation_id', sa.String(64), nullable=False),
        sa.Column('round_number', sa.Integer(), nullable=False),
        sa.Column('round_type', sa.String(30), nullable=False),
        sa.Column('authority_request', sa.Text(), nullable=True),
        sa.Column('authority_response', sa.Text(), nullable=True),
        sa.Column('decision', sa.String(50), nullable=True),
        sa.Column('instruction', sa.Text(), nullable=True),
        sa.Column('responder_address', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['escalation_id'], ['escalations.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('escalation_id', 'round_number', name='uq_escalation_round_number'),
    )
    op.create_index('ix_escalation_rounds_id', 'escalation_rounds', ['id'])
    op.create_index('ix_escalation_rounds_escalation_id', 'escalation_rounds', ['escalation_id'])

    op.create_table(
        'authority_focus',
        sa.Column('authority_address', sa.String(255), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('locked_escalation_id', sa.String(64), nullable=True),
        sa.Column('last_interaction_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.ForeignKeyConstraint(['locked_escalation_id'], ['escalations.id']),
        sa.PrimaryKeyConstraint('authority_address'),
    )
    op.create_index('ix_authority_focus_tenant_id', 'authority_focus', ['tenant_id'])
    op.create_index('ix_authority_focus_locked_escalation_id', 'authority_focus', ['locked_escalation_id'])

    # No foreign keys: audit history outlives escalation cleanup
    op.create_table(
        'escalation_audit_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('escalation_id', sa.String(64), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(50), nullable=False),
        sa.Column('actor_address', sa.String(255), nullable=True),
        sa.Column('origin_agent', sa.String(10), nullable=True),
        sa.Column('decision_summary', sa.Text(), nullable=True),
        sa.Column('context_data', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_escalation_audit_logs_id', 'escalation_audit_logs', ['id'])
    op.create_index('ix_escalation_audit_logs_escalation_id', 'escalation_audit_logs', ['escalation_id'])
    op.create_index('ix_escalation_audit_logs_tenant_id', 'escalation_audit_logs', ['tenant_id'])
    op.create_index('ix_escalation_audit_logs_event_type', 'escalation_audit_logs', ['event_type'])
    op.create_index('ix_escalation_audit_logs_actor_address', 'escalation_audit_logs', ['actor_address'])
    op.create_index('ix_escalation_audit_logs_created_at', 'escalation_audit_logs', ['created_at'])


def downgrade() -> None:
    op.drop_table('escalation_audit_logs')
    op.drop_table('authority_focus')
    op.drop_table('escalation_rounds')
    op.drop_table('escalations')
    op.drop_table('users')
    op.drop_table('tenants')
