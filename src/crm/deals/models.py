"""Deal persistence model.

Relations to contacts, companies and users are nullable foreign keys that
are cleared when the referenced row is deleted. Monetary columns are
Numeric(14, 2); weighted_amount is written by the repository alongside
amount and probability and never by callers.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.crm.core.database import Base
from src.crm.deals.stages import DealStatus
from src.crm.models import directory  # noqa: F401 -- registers FK target tables


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DealModel(Base):
    """One sales opportunity moving through the pipeline."""

    __tablename__ = "deals"
    __table_args__ = (
        Index("ix_deals_status", "status"),
        Index("ix_deals_assigned_to", "assigned_to"),
        Index("ix_deals_created_at", "created_at"),
        CheckConstraint(
            "status IN (" + ", ".join(f"'{s.value}'" for s in DealStatus) + ")",
            name="ck_deals_status",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default="prospect", server_default=text("'prospect'")
    )
    amount: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=Decimal("0"), server_default=text("0")
    )
    probability: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), nullable=False, default=Decimal("10"), server_default=text("10")
    )
    weighted_amount: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=Decimal("0"), server_default=text("0")
    )
    contact_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("contacts.id", ondelete="SET NULL"), nullable=True
    )
    company_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("companies.id", ondelete="SET NULL"), nullable=True
    )
    assigned_to: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    expected_close_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )
