"""lock table for stores without GET_LOCK

Revision ID: 0002_add_application_locks
Revises: 0001_initial
Create Date: 2025-11-10 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0002_add_application_locks'
down_revision = '0001_initial'
branch_labels = None
depends_on = None


def upgrade() -> None:
    # lock_name matches MySQL's 64 character named-lock limit
    op.create_table(
        'application_locks',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('lock_name', sa.String(64), nullable=False),
        sa.Column('owner_token', sa.String(64), nullable=False),
        sa.Column('process_id', sa.Integer, nullable=False),
        sa.Column('hostname', sa.String(255), nullable=False),
        sa.Column('acquired_at', sa.DateTime, server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('expires_at', sa.DateTime, nullable=True),
    )
    op.create_index('ix_application_locks_lock_name', 'application_locks', ['lock_name'], unique=True)
    op.create_index('ix_application_locks_expires_at', 'application_locks', ['expires_at'])


def downgrade() -> None:
    op.drop_index('ix_application_locks_expires_at', 'application_locks')
    op.drop_index('ix_application_locks_lock_name', 'application_locks')
    op.drop_table('application_locks')
