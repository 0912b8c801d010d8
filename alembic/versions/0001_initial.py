"""initial tracking tables

Revision ID: 0001_initial
Revises: 
Create Date: 2025-11-03 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'standardized_tables_track',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('revision_version', sa.String(255), nullable=False),
        sa.Column('revision_date', sa.Date, nullable=False),
        sa.Column('file_checksum', sa.String(32), nullable=False),
        sa.Column('imported_date', sa.DateTime, server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
    )
    op.create_index('ix_standardized_tables_track_name', 'standardized_tables_track', ['name'])
    op.create_index(
        'ix_tables_track_release',
        'standardized_tables_track',
        ['name', 'revision_date', 'revision_version', 'file_checksum'],
    )

    op.create_table(
        'supported_external_dataloads',
        sa.Column('load_id', sa.Integer, primary_key=True),
        sa.Column('load_type', sa.String(24), nullable=False),
        sa.Column('load_source', sa.String(24), nullable=False, server_default='CMS'),
        sa.Column('load_release_date', sa.Date, nullable=False),
        sa.Column('load_filename', sa.String(256), nullable=False),
        sa.Column('load_checksum', sa.String(32), nullable=False),
    )
    op.create_index('ix_supported_external_dataloads_load_type', 'supported_external_dataloads', ['load_type'])


def downgrade() -> None:
    op.drop_index('ix_supported_external_dataloads_load_type', 'supported_external_dataloads')
    op.drop_table('supported_external_dataloads')
    op.drop_index('ix_tables_track_release', 'standardized_tables_track')
    op.drop_index('ix_standardized_tables_track_name', 'standardized_tables_track')
    op.drop_table('standardized_tables_track')
