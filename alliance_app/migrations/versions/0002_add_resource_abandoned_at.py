"""add abandoned_at column to provisioned_resources

Revision ID: 0002_add_resource_abandoned_at
Revises: 0001_alliance_schema
Create Date: 2025-11-27 00:00:00.000000
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0002_add_resource_abandoned_at'
down_revision = '0001_alliance_schema'
branch_labels = None
depends_on = None


def upgrade():
    op.add_column('provisioned_resources', sa.Column('abandoned_at', sa.DateTime(), nullable=True))


def downgrade():
    op.drop_column('provisioned_resources', 'abandoned_at')
