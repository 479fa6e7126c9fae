"""create urban planning tables

Revision ID: 3c91d0a4b6f2
Revises: 
Create Date: 2026-10-18 09:12:41.508317

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from urbanplan.database import Base


# revision identifiers, used by Alembic.
revision: str = '3c91d0a4b6f2'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create users, zones, points of interest, demographics, projects and the coverage summary."""
    bind = op.get_bind()
    Base.metadata.create_all(bind)


def downgrade() -> None:
    """Drop every table created by this revision."""
    bind = op.get_bind()
    Base.metadata.drop_all(bind)
