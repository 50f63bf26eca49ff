"""comment reactions

Revision ID: 0002_comment_reactions
Revises: 0001_initial_casedesk
Create Date: 2026-10-17
"""
from __future__ import annotations
from alembic import op
import sqlalchemy as sa

revision = '0002_comment_reactions'
down_revision = '0001_initial_casedesk'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('comment_reactions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('comment_id', sa.Integer(), sa.ForeignKey('request_comments.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('reaction_type', sa.String(length=32), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('comment_id', 'user_id', name='uq_comment_reaction_user')
    )
    op.create_index('ix_comment_reactions_comment_id', 'comment_reactions', ['comment_id'])


def downgrade():
    op.drop_index('ix_comment_reactions_comment_id', table_name='comment_reactions')
    op.drop_table('comment_reactions')
