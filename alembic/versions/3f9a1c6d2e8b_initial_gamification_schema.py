"""Initial gamification schema: scores, achievements, leaderboards, bonus zones, driver bonuses

Revision ID: 3f9a1c6d2e8b
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f9a1c6d2e8b'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('driver_scores',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('driver_id', sa.Text(), nullable=False),
        sa.Column('assignment_id', sa.Text(), nullable=True),
        sa.Column('load_id', sa.Text(), nullable=True),
        sa.Column('total_score', sa.Float(), nullable=False),
        sa.Column('empty_miles_score', sa.Float(), nullable=False),
        sa.Column('network_contribution_score', sa.Float(), nullable=False),
        sa.Column('on_time_score', sa.Float(), nullable=False),
        sa.Column('hub_utilization_score', sa.Float(), nullable=False),
        sa.Column('fuel_efficiency_score', sa.Float(), nullable=False),
        sa.Column('score_factors', sa.JSON(), nullable=True),
        sa.Column('calculated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_driver_scores_driver_calculated', 'driver_scores', ['driver_id', 'calculated_at'])

    op.create_table('achievements',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category', sa.Text(), nullable=False),
        sa.Column('level', sa.Text(), nullable=False),
        sa.Column('points', sa.Integer(), nullable=False),
        sa.Column('criteria', sa.JSON(), nullable=False),
        sa.Column('badge_image_url', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
    )

    op.create_table('driver_achievements',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('driver_id', sa.Text(), nullable=False),
        sa.Column('achievement_id', sa.Integer(), nullable=False),
        sa.Column('earned_at', sa.DateTime(), nullable=False),
        sa.Column('achievement_data', sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(['achievement_id'], ['achievements.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('driver_id', 'achievement_id', name='uq_driver_achievement'),
    )
    op.create_index('ix_driver_achievements_driver_id', 'driver_achievements', ['driver_id'])

    op.create_table('leaderboards',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('leaderboard_type', sa.Text(), nullable=False),
        sa.Column('timeframe', sa.Text(), nullable=False),
        sa.Column('region', sa.Text(), nullable=True),
        sa.Column('start_period', sa.Date(), nullable=False),
        sa.Column('end_period', sa.Date(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('bonus_structure', sa.JSON(), nullable=False),
        sa.Column('last_updated', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_leaderboards_chain', 'leaderboards', ['leaderboard_type', 'timeframe', 'region'])

    op.create_table('leaderboard_entries',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('leaderboard_id', sa.Integer(), nullable=False),
        sa.Column('driver_id', sa.Text(), nullable=False),
        sa.Column('driver_name', sa.Text(), nullable=True),
        sa.Column('score', sa.Float(), nullable=False),
        sa.Column('rank', sa.Integer(), nullable=False),
        sa.Column('previous_rank', sa.Integer(), nullable=True),
        sa.Column('rank_change', sa.Integer(), nullable=False),
        sa.Column('bonus_amount', sa.Float(), nullable=False),
        sa.Column('bonus_paid', sa.Boolean(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['leaderboard_id'], ['leaderboards.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('leaderboard_id', 'driver_id', name='uq_leaderboard_driver'),
    )
    op.create_index('ix_leaderboard_entries_driver_id', 'leaderboard_entries', ['driver_id'])

    op.create_table('bonus_zones',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('boundary', sa.JSON(), nullable=False),
        sa.Column('multiplier', sa.Float(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('center_lat', sa.Float(), nullable=True),
        sa.Column('center_lng', sa.Float(), nullable=True),
        sa.Column('radius_km', sa.Float(), nullable=True),
        sa.Column('start_time', sa.DateTime(), nullable=False),
        sa.Column('end_time', sa.DateTime(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table('driver_bonuses',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('driver_id', sa.Text(), nullable=False),
        sa.Column('source_type', sa.Text(), nullable=False),
        sa.Column('source_id', sa.Integer(), nullable=False),
        sa.Column('assignment_id', sa.Text(), nullable=True),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('paid', sa.Boolean(), nullable=False),
        sa.Column('payout_reference', sa.Text(), nullable=True),
        sa.Column('earned_at', sa.DateTime(), nullable=False),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('event_key', sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('event_key'),
    )
    op.create_index('ix_driver_bonuses_driver_earned', 'driver_bonuses', ['driver_id', 'earned_at'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_driver_bonuses_driver_earned', 'driver_bonuses')
    op.drop_table('driver_bonuses')
    op.drop_table('bonus_zones')
    op.drop_index('ix_leaderboard_entries_driver_id', 'leaderboard_entries')
    op.drop_table('leaderboard_entries')
    op.drop_index('ix_leaderboards_chain', 'leaderboards')
    op.drop_table('leaderboards')
    op.drop_index('ix_driver_achievements_driver_id', 'driver_achievements')
    op.drop_table('driver_achievements')
    op.drop_table('achievements')
    op.drop_index('ix_driver_scores_driver_calculated', 'driver_scores')
    op.drop_table('driver_scores')
