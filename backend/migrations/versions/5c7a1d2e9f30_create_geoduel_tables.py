"""create rooms, players, rounds, guesses and leaderboard

Revision ID: 5c7a1d2e9f30
Revises:
Create Date: 2026-10-18 00:00:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5c7a1d2e9f30'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'rooms',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=6), nullable=False),
        sa.Column('host_id', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='waiting'),
        sa.Column('current_round', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_rounds', sa.Integer(), nullable=False),
        sa.Column('time_limit', sa.Integer(), nullable=False),
    )
    op.create_index('ix_rooms_code', 'rooms', ['code'], unique=True)

    op.create_table(
        'players',
        sa.Column('id', sa.String(length=64), primary_key=True),
        sa.Column('room_id', sa.Integer(), sa.ForeignKey('rooms.id'), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('score', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_host', sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index('ix_players_room_id', 'players', ['room_id'])

    op.create_table(
        'rounds',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('room_id', sa.Integer(), sa.ForeignKey('rooms.id'), nullable=False),
        sa.Column('round_number', sa.Integer(), nullable=False),
        sa.Column('lat', sa.Float(), nullable=False),
        sa.Column('lng', sa.Float(), nullable=False),
        sa.UniqueConstraint('room_id', 'round_number', name='uq_rounds_room_round'),
    )
    op.create_index('ix_rounds_room_id', 'rounds', ['room_id'])

    op.create_table(
        'guesses',
        sa.Column('round_id', sa.Integer(), sa.ForeignKey('rounds.id'), primary_key=True),
        sa.Column('player_id', sa.String(length=64), sa.ForeignKey('players.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('guess_lat', sa.Float(), nullable=True),
        sa.Column('guess_lng', sa.Float(), nullable=True),
        sa.Column('distance', sa.Float(), nullable=False),
        sa.Column('score', sa.Integer(), nullable=False),
    )

    op.create_table(
        'leaderboard',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('player_name', sa.String(length=64), nullable=False),
        sa.Column('score', sa.Integer(), nullable=False),
        sa.Column('rounds', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )


def downgrade():
    op.drop_table('leaderboard')
    op.drop_table('guesses')
    op.drop_index('ix_rounds_room_id', table_name='rounds')
    op.drop_table('rounds')
    op.drop_index('ix_players_room_id', table_name='players')
    op.drop_table('players')
    op.drop_index('ix_rooms_code', table_name='rooms')
    op.drop_table('rooms')
