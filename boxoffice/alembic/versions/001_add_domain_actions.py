"""Add domain_actions table

Revision ID: 001_add_domain_actions
Revises:
Create Date: 2026-10-05 09:30:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_add_domain_actions'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the leasable action queue."""
    op.create_table(
        'domain_actions',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('domain_event_id', sa.String(length=36), nullable=True),
        sa.Column('action_type', sa.String(length=64), nullable=False),
        sa.Column('communication_channel_type', sa.String(length=20), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('main_table', sa.String(length=64), nullable=True),
        sa.Column('main_table_id', sa.String(length=36), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='Pending'),
        sa.Column('scheduled_at', sa.DateTime(), nullable=False),
        sa.Column('busy_until', sa.DateTime(), nullable=True),
        sa.Column('attempt_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_attempt_count', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('last_attempted_at', sa.DateTime(), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_domain_actions_domain_event_id', 'domain_actions', ['domain_event_id'], unique=False)
    # Serves find_pending
    op.create_index('ix_domain_actions_due', 'domain_actions', ['status', 'scheduled_at'], unique=False)
    op.create_index(
        'ix_domain_actions_resource',
        'domain_actions',
        ['main_table', 'main_table_id', 'action_type', 'status'],
        unique=False,
    )


def downgrade() -> None:
    """Drop the action queue."""
    op.drop_index('ix_domain_actions_resource', table_name='domain_actions')
    op.drop_index('ix_domain_actions_due', table_name='domain_actions')
    op.drop_index('ix_domain_actions_domain_event_id', table_name='domain_actions')
    op.drop_table('domain_actions')
