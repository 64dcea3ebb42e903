"""alliance schema

Revision ID: 0001_alliance_schema
Revises: 
Create Date: 2025-11-20 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0001_alliance_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'users',
        sa.Column('discord_id', sa.BigInteger(), primary_key=True, autoincrement=False),
        sa.Column('name', sa.String(length=100), nullable=False, server_default=''),
        sa.Column('gamertag', sa.String(length=100), nullable=True),
        sa.Column('is_banned', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('ban_reason', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('last_alliance_at', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'bot_settings',
        sa.Column('guild_id', sa.BigInteger(), primary_key=True, autoincrement=False),
        sa.Column('command_channel_id', sa.BigInteger(), nullable=True),
        sa.Column('ping_channel_id', sa.BigInteger(), nullable=True),
        sa.Column('alliance_forum_channel_id', sa.BigInteger(), nullable=True),
        sa.Column('log_channel_id', sa.BigInteger(), nullable=True),
        sa.Column('organizer_role_id', sa.BigInteger(), nullable=True),
        sa.Column('notify_role_id', sa.BigInteger(), nullable=True),
        sa.Column('default_max_ships', sa.Integer(), nullable=False, server_default='6'),
        sa.Column('allow_public_join', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('timezone', sa.String(length=64), nullable=False, server_default='Europe/Paris'),
        sa.Column('language', sa.String(length=8), nullable=False, server_default='fr'),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )

    op.create_table(
        'alliances',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('guild_id', sa.BigInteger(), nullable=False),
        sa.Column('organizer_id', sa.BigInteger(), nullable=False),
        sa.Column('right_hand', sa.String(length=64), nullable=False, server_default=''),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('scheduled_at', sa.DateTime(), nullable=False),
        sa.Column('sale_at', sa.DateTime(), nullable=False),
        sa.Column('status', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_ships', sa.Integer(), nullable=False, server_default='6'),
        sa.Column('ships_reuse_planned', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('thread_channel_id', sa.BigInteger(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_alliances_guild_id', 'alliances', ['guild_id'], unique=False)
    op.create_index('ix_alliances_status', 'alliances', ['status'], unique=False)
    op.create_index('ix_alliances_thread_channel_id', 'alliances', ['thread_channel_id'], unique=False)

    op.create_table(
        'ships',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('alliance_id', sa.Integer(), nullable=False),
        sa.Column('slot', sa.Integer(), nullable=False),
        sa.Column('hull_type', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('crew_role', sa.String(length=50), nullable=False, server_default=''),
        sa.ForeignKeyConstraint(['alliance_id'], ['alliances.id'], ),
        sa.UniqueConstraint('alliance_id', 'slot', name='uq_ship_alliance_slot'),
    )
    op.create_index('ix_ships_alliance_id', 'ships', ['alliance_id'], unique=False)

    op.create_table(
        'alliance_participants',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('alliance_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.BigInteger(), nullable=False),
        sa.Column('ship_id', sa.Integer(), nullable=False),
        sa.Column('joined_at', sa.DateTime(), nullable=False),
        sa.Column('left_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['alliance_id'], ['alliances.id'], ),
        sa.ForeignKeyConstraint(['ship_id'], ['ships.id'], ),
    )
    op.create_index('ix_alliance_participants_alliance_id', 'alliance_participants', ['alliance_id'], unique=False)
    op.create_index('ix_alliance_participants_user_id', 'alliance_participants', ['user_id'], unique=False)
    op.create_index('ix_alliance_participants_ship_id', 'alliance_participants', ['ship_id'], unique=False)

    op.create_table(
        'provisioned_resources',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('alliance_id', sa.Integer(), nullable=False),
        sa.Column('kind', sa.Integer(), nullable=False),
        sa.Column('external_id', sa.BigInteger(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False, server_default=''),
        sa.Column('auto_delete', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['alliance_id'], ['alliances.id'], ),
    )
    op.create_index('ix_provisioned_resources_alliance_id', 'provisioned_resources', ['alliance_id'], unique=False)


def downgrade():
    op.drop_index('ix_provisioned_resources_alliance_id', table_name='provisioned_resources')
    op.drop_table('provisioned_resources')
    op.drop_index('ix_alliance_participants_ship_id', table_name='alliance_participants')
    op.drop_index('ix_alliance_participants_user_id', table_name='alliance_participants')
    op.drop_index('ix_alliance_participants_alliance_id', table_name='alliance_participants')
    op.drop_table('alliance_participants')
    op.drop_index('ix_ships_alliance_id', table_name='ships')
    op.drop_table('ships')
    op.drop_index('ix_alliances_thread_channel_id', table_name='alliances')
    op.drop_index('ix_alliances_status', table_name='alliances')
    op.drop_index('ix_alliances_guild_id', table_name='alliances')
    op.drop_table('alliances')
    op.drop_table('bot_settings')
    op.drop_table('users')
