"""initial case desk schema

Revision ID: 0001_initial_casedesk
Revises: 
Create Date: 2026-10-17
"""
from __future__ import annotations
from alembic import op
import sqlalchemy as sa

revision = '0001_initial_casedesk'
down_revision = None
branch_labels = None
depends_on = None

SERVICE_TYPES = (
    'serial_number', 'stolen_phone_check', 'call_history', 'unblock_call', 'unblock_momo',
    'money_refund', 'momo_transaction', 'backoffice_appointment', 'other',
)
REQUEST_STATUSES = ('new', 'in_progress', 'pending_investigation', 'unable_to_handle', 'sent_back', 'completed')
HISTORY_ACTIONS = ('created', 'status_change', 'comment_added', 'edited')


def _enum(values, name):
    return sa.Enum(*values, name=name, native_enum=False, length=32, create_constraint=False)


def upgrade():
    op.create_table('permissions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=64), nullable=False, unique=True),
        sa.Column('service', sa.String(length=32), nullable=False),
        sa.Column('action', sa.String(length=32), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True)
    )
    op.create_index('ix_permissions_code', 'permissions', ['code'])
    op.create_index('ix_permissions_service', 'permissions', ['service'])

    op.create_table('roles',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=64), nullable=False, unique=True),
        sa.Column('is_system', sa.Boolean(), nullable=True, server_default=sa.text('0'))
    )

    op.create_table('users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('username', sa.String(length=64), nullable=False, unique=True),
        sa.Column('full_name', sa.String(length=128), nullable=False),
        sa.Column('email', sa.String(length=128), unique=True),
        sa.Column('department', sa.String(length=64)),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now())
    )
    op.create_index('ix_users_username', 'users', ['username'])

    op.create_table('role_permissions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('role_id', sa.Integer(), sa.ForeignKey('roles.id', ondelete='CASCADE'), nullable=False),
        sa.Column('permission_id', sa.Integer(), sa.ForeignKey('permissions.id', ondelete='CASCADE'), nullable=False),
        sa.UniqueConstraint('role_id', 'permission_id', name='uq_role_permission')
    )

    op.create_table('user_roles',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('role_id', sa.Integer(), sa.ForeignKey('roles.id', ondelete='CASCADE'), nullable=False),
        sa.UniqueConstraint('user_id', 'role_id', name='uq_user_role')
    )

    op.create_table('service_requests',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('reference_number', sa.String(length=32), nullable=False, unique=True),
        sa.Column('service_type', _enum(SERVICE_TYPES, 'service_type'), nullable=False),
        sa.Column('status', _enum(REQUEST_STATUSES, 'request_status'), nullable=False, server_default='new'),
        sa.Column('priority', sa.String(length=16)),
        sa.Column('full_names', sa.String(length=255), nullable=False),
        sa.Column('id_passport', sa.String(length=64)),
        sa.Column('primary_contact', sa.String(length=64), nullable=False),
        sa.Column('secondary_contact', sa.String(length=64)),
        sa.Column('details', sa.Text()),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('assigned_to', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False)
    )
    op.create_index('ix_service_requests_reference_number', 'service_requests', ['reference_number'])
    op.create_index('ix_service_requests_service_type', 'service_requests', ['service_type'])
    op.create_index('ix_service_requests_status', 'service_requests', ['status'])
    op.create_index('ix_service_requests_created_by', 'service_requests', ['created_by'])
    op.create_index('ix_service_requests_assigned_to', 'service_requests', ['assigned_to'])
    op.create_index('ix_service_requests_updated_at', 'service_requests', ['updated_at'])

    op.create_table('request_history',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('request_id', sa.Integer(), sa.ForeignKey('service_requests.id', ondelete='CASCADE'), nullable=False),
        sa.Column('performed_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('action', _enum(HISTORY_ACTIONS, 'history_action'), nullable=False),
        sa.Column('details', sa.Text()),
        sa.Column('created_at', sa.DateTime(), nullable=False)
    )
    op.create_index('ix_request_history_request_id', 'request_history', ['request_id'])
    op.create_index('ix_request_history_action', 'request_history', ['action'])
    op.create_index('ix_request_history_created_at', 'request_history', ['created_at'])

    op.create_table('request_comments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('request_id', sa.Integer(), sa.ForeignKey('service_requests.id', ondelete='CASCADE'), nullable=False),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('comment', sa.Text(), nullable=False),
        sa.Column('is_send_back_reason', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('is_system', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('created_at', sa.DateTime(), nullable=False)
    )
    op.create_index('ix_request_comments_request_id', 'request_comments', ['request_id'])

    op.create_table('routing_rules',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('service_type', _enum(SERVICE_TYPES, 'routing_service_type'), nullable=False, unique=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        sa.Column('auto_assign', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now())
    )

    op.create_table('routing_rule_users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('service_type', _enum(SERVICE_TYPES, 'routing_user_service_type'),
                  sa.ForeignKey('routing_rules.service_type', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('service_type', 'user_id', name='uq_routing_rule_user')
    )
    op.create_index('ix_routing_rule_users_service_type', 'routing_rule_users', ['service_type'])
    op.create_index('ix_routing_rule_users_user_id', 'routing_rule_users', ['user_id'])

    op.create_table('audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('actor_user_id', sa.Integer(), nullable=True),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('entity', sa.String(length=64), nullable=True),
        sa.Column('entity_id', sa.String(length=64), nullable=True),
        sa.Column('meta', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True)
    )
    op.create_index('ix_audit_logs_actor_user_id', 'audit_logs', ['actor_user_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'])


def downgrade():
    for table in ('audit_logs', 'routing_rule_users', 'routing_rules', 'request_comments', 'request_history',
                  'service_requests', 'user_roles', 'role_permissions', 'users', 'roles', 'permissions'):
        op.drop_table(table)
