"""Claim transfers and remaining-balance collection.

Revision ID: 20261019_02
Revises: 20261019_01
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "20261019_02"
down_revision: Union[str, None] = "20261019_01"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column(
        "redemptions",
        sa.Column("collection_completed", sa.Boolean(), server_default=sa.text("false"), nullable=False),
    )
    op.add_column("redemptions", sa.Column("collection_completed_at", sa.DateTime(timezone=True), nullable=True))
    op.add_column("redemptions", sa.Column("amount_collected", sa.Numeric(10, 2), nullable=True))

    op.create_table(
        "claim_transfers",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("claim_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "from_customer_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "to_customer_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("recipient_email", sa.String(), nullable=False),
        sa.Column("transferred_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_claim_transfers_claim_id", "claim_transfers", ["claim_id"])


def downgrade() -> None:
    op.drop_index("ix_claim_transfers_claim_id", table_name="claim_transfers")
    op.drop_table("claim_transfers")
    op.drop_column("redemptions", "amount_collected")
    op.drop_column("redemptions", "collection_completed_at")
    op.drop_column("redemptions", "collection_completed")
