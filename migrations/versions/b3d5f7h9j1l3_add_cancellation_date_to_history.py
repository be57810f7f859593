"""add cancellation_date to subscription_history

Revision ID: b3d5f7h9j1l3
Revises: a1c2e3g4i5k6
Create Date: 2024-06-01

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'b3d5f7h9j1l3'
down_revision: Union[str, Sequence[str], None] = 'a1c2e3g4i5k6'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    # Effective (possibly backdated) date of a CANCELLED transition
    op.add_column('subscription_history',
                  sa.Column('cancellation_date', sa.Date(), nullable=True))


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_column('subscription_history', 'cancellation_date')
