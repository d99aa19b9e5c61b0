"""Create the deals table.

Revision ID: 001_deals
Revises:
Create Date: 2026-10-18

The contacts, companies and users tables are created by their owning
subsystems and must exist before this revision runs. References to them
are cleared (SET NULL) when the referenced row is deleted.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

# revision identifiers, used by Alembic.
revision: str = "001_deals"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "deals",
        sa.Column(
            "id",
            UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "status",
            sa.String(30),
            server_default=sa.text("'prospect'"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(14, 2), server_default=sa.text("0"), nullable=False),
        sa.Column("probability", sa.Numeric(5, 2), server_default=sa.text("10"), nullable=False),
        sa.Column(
            "weighted_amount", sa.Numeric(14, 2), server_default=sa.text("0"), nullable=False
        ),
        sa.Column(
            "contact_id",
            UUID(as_uuid=True),
            sa.ForeignKey("contacts.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "company_id",
            UUID(as_uuid=True),
            sa.ForeignKey("companies.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "assigned_to",
            UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("expected_close_date", sa.Date(), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.CheckConstraint(
            "status IN ('prospect', 'qualification', 'proposition', "
            "'negociation', 'gagne', 'perdu')",
            name="ck_deals_status",
        ),
    )

    op.create_index("ix_deals_status", "deals", ["status"])
    op.create_index("ix_deals_assigned_to", "deals", ["assigned_to"])
    op.create_index("ix_deals_created_at", "deals", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_deals_created_at", table_name="deals")
    op.drop_index("ix_deals_assigned_to", table_name="deals")
    op.drop_index("ix_deals_status", table_name="deals")
    op.drop_table("deals")
