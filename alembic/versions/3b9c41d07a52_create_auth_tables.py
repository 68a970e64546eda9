"""create users, clients, revoked tokens and visit log tables

- clients: monitored organisations, unique by slug
- users: credential records with a user_role enum and an optional client link
- revoked_tokens: session denylist keyed by jti, purged after expiry
- visit_logs: page visits recorded at login and by the portal

Revision ID: 3b9c41d07a52
Revises: 
Create Date: 2026-10-19 09:12:03.418211

"""
from typing import Sequence, Union

from alembic import op
from ovaview.database import Base
from ovaview.models import user  # noqa: F401


# revision identifiers, used by Alembic.
revision: str = '3b9c41d07a52'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema by creating all tables."""
    bind = op.get_bind()
    Base.metadata.create_all(bind)


def downgrade() -> None:
    """Downgrade schema by dropping all tables."""
    bind = op.get_bind()
    Base.metadata.drop_all(bind)
