"""Add domain event log, publishers and publication state

Revision ID: 002_add_domain_events
Revises: 001_add_domain_actions
Create Date: 2026-10-07 14:05:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '002_add_domain_events'
down_revision: Union[str, Sequence[str], None] = '001_add_domain_actions'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'domain_events',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('display_text', sa.Text(), nullable=False),
        sa.Column('event_data', sa.JSON(), nullable=True),
        sa.Column('main_table', sa.String(length=64), nullable=False),
        sa.Column('main_table_id', sa.String(length=36), nullable=True),
        sa.Column('user_id', sa.String(length=36), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_domain_events_event_type', 'domain_events', ['event_type'], unique=False)
    op.create_index('ix_domain_events_created_at', 'domain_events', ['created_at'], unique=False)
    op.create_index('ix_domain_events_resource', 'domain_events', ['main_table', 'main_table_id'], unique=False)

    op.create_table(
        'domain_event_publishers',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('organization_id', sa.String(length=36), nullable=True),
        sa.Column('event_types', sa.JSON(), nullable=False),
        sa.Column('webhook_url', sa.String(length=2048), nullable=True),
        sa.Column('domain_action_type', sa.String(length=64), nullable=True),
        sa.Column('import_historic_events', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_domain_event_publishers_organization_id', 'domain_event_publishers', ['organization_id'], unique=False
    )

    op.create_table(
        'domain_event_published',
        sa.Column('domain_event_publisher_id', sa.String(length=36), nullable=False),
        sa.Column('domain_event_id', sa.String(length=36), nullable=False),
        sa.Column('published_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('domain_event_publisher_id', 'domain_event_id'),
    )
    op.create_index(
        'ix_domain_event_published_domain_event_id', 'domain_event_published', ['domain_event_id'], unique=False
    )


def downgrade() -> None:
    op.drop_index('ix_domain_event_published_domain_event_id', table_name='domain_event_published')
    op.drop_table('domain_event_published')
    op.drop_index('ix_domain_event_publishers_organization_id', table_name='domain_event_publishers')
    op.drop_table('domain_event_publishers')
    op.drop_index('ix_domain_events_resource', table_name='domain_events')
    op.drop_index('ix_domain_events_created_at', table_name='domain_events')
    op.drop_index('ix_domain_events_event_type', table_name='domain_events')
    op.drop_table('domain_events')
