"""Add a payload fingerprint to transition intents.

Revision ID: 0002_intent_fingerprint
Revises: 0001_rars_baseline
Create Date: 2026-10-18
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0002_intent_fingerprint"
down_revision: Union[str, None] = "0001_rars_baseline"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column(
        "transition_intents", sa.Column("fingerprint", sa.Text(), nullable=True)
    )


def downgrade() -> None:
    op.drop_column("transition_intents", "fingerprint")
