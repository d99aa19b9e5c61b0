"""Pydantic schemas for the deal store and pipeline statistics.

Write payloads (DealCreate, DealUpdate) keep ``title`` and
``status`` loosely typed: emptiness and enumeration membership are checked by
the repository so they surface as DealValidationError / InvalidStatusError
rather than as request parsing failures.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator


def _blank_to_none(v: Any) -> Any:
    if isinstance(v, str) and not v.strip():
        return None
    return v


# ── Write Schemas ───────────────────────────────────────────────────────────


class DealCreate(BaseModel):
    """Payload for creating a deal."""

    title: str | None = None
    description: str | None = None
    status: str | None = None
    amount: float | None = None
    probability: float | None = None
    contact_id: uuid.UUID | None = None
    company_id: uuid.UUID | None = None
    assigned_to: uuid.UUID | None = None
    expected_close_date: date | None = None

    @field_validator(
        "contact_id", "company_id", "assigned_to", "expected_close_date", "amount", "probability",
        mode="before",
    )
    @classmethod
    def parse_optional(cls, v: Any) -> Any:
        return _blank_to_none(v)


class DealUpdate(DealCreate):
    """Payload for a full replace of a deal.

    Same fields as DealCreate. Fields left out are written as NULL (or their
    creation default), never kept from the stored row.
    """


class DealFilter(BaseModel):
    """Optional list filters. ``status`` is applied only when it is a known stage."""

    status: str | None = None
    assigned_to: uuid.UUID | None = None
    q: str | None = None

    @field_validator("assigned_to", "q", mode="before")
    @classmethod
    def parse_optional(cls, v: Any) -> Any:
        return _blank_to_none(v)


# ── Read Schemas ────────────────────────────────────────────────────────────


class DealRead(BaseModel):
    """A persisted deal, optionally enriched with display fields of its relations."""

    id: str
    title: str
    description: str | None = None
    status: str = "prospect"
    amount: float = 0.0
    probability: float = 0.0
    weighted_amount: float = 0.0
    contact_id: str | None = None
    company_id: str | None = None
    assigned_to: str | None = None
    expected_close_date: date | None = None
    closed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    # Denormalized from contacts / companies / users (null when absent)
    first_name: str | None = None
    last_name: str | None = None
    contact_email: str | None = None
    company_name: str | None = None
    assigned_first_name: str | None = None
    assigned_last_name: str | None = None


# ── Stats Schemas ───────────────────────────────────────────────────────────


class PipelineSummary(BaseModel):
    """Totals over the whole deal set. Sums are 0 (never null) when empty."""

    total_deals: int = 0
    total_value: float = 0.0
    weighted_value: float = 0.0
    won_value: float = 0.0
    active_deals: int = 0


class StageBreakdown(BaseModel):
    """Count and summed amount for one stage."""

    status: str
    count: int = 0
    total: float = 0.0


class StageConversion(BaseModel):
    """Share of deals in ``from_status`` matched by deals in the next stage."""

    from_status: str
    to_status: str
    rate: int = 0


class ConversionRates(BaseModel):
    """Stage-to-stage conversion percentages in funnel order."""

    steps: list[StageConversion] = Field(default_factory=list)
    global_rate: int = 0


class PipelineStats(BaseModel):
    """Summary plus per-stage breakdown ordered by the funnel."""

    summary: PipelineSummary = Field(default_factory=PipelineSummary)
    by_status: list[StageBreakdown] = Field(default_factory=list)


class MonthlySales(BaseModel):
    """Won deals closed in one calendar month (``YYYY-MM``)."""

    month: str
    count: int = 0
    total: float = 0.0


class AssigneeRead(BaseModel):
    """Contact details of the user a deal is assigned to."""

    email: str
    first_name: str | None = None
