"""Add events_published to driver_scores

Revision ID: 8b27e4c0d519
Revises: 3f9a1c6d2e8b
Create Date: 2026-10-20 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8b27e4c0d519'
down_revision: Union[str, None] = '3f9a1c6d2e8b'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Rows written before this column existed already had their events sent
    op.add_column('driver_scores', sa.Column('events_published', sa.Boolean(),
                                             nullable=False, server_default=sa.true()))


def downgrade() -> None:
    op.drop_column('driver_scores', 'events_published')
