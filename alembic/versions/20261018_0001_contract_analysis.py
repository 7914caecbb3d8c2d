"""Add narrative analysis text to classified contracts.

Revision ID: 002_contract_analysis
Revises: 001_initial
Create Date: 2026-10-18 00:01:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "002_contract_analysis"
down_revision: Union[str, None] = "001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column("contracts", sa.Column("classification_analysis", sa.Text(), nullable=True))


def downgrade() -> None:
    op.drop_column("contracts", "classification_analysis")
