"""create_pending_payments

Revision ID: 3f8c2a91d7e4
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f8c2a91d7e4'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "pending_payments",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("booking_id", sa.String(length=64), nullable=False),
        sa.Column("amount_minor_units", sa.Integer(), nullable=False),
        sa.Column("payment_method", sa.String(length=50), nullable=False),
        sa.Column("provider_reference", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_pending_payments_booking_id", "pending_payments", ["booking_id"], unique=True)
    # Purging stale records scans by age
    op.create_index("ix_pending_payments_created_at", "pending_payments", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_pending_payments_created_at", table_name="pending_payments")
    op.drop_index("ix_pending_payments_booking_id", table_name="pending_payments")
    op.drop_table("pending_payments")
