"""006: add listings.sweep_retry_at

Set when the expiry sweep fails on a listing; the sweep skips the listing
until then so one broken row cannot hold the head of every batch.

Revision ID: 006
Revises: 005
Create Date: 2026-10-17
"""
from typing import Sequence, Union

from alembic import op

revision: str = "006"
down_revision: Union[str, None] = "005"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("ALTER TABLE listings ADD COLUMN sweep_retry_at TIMESTAMPTZ;")


def downgrade() -> None:
    op.execute("ALTER TABLE listings DROP COLUMN IF EXISTS sweep_retry_at;")
