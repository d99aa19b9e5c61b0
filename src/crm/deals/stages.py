"""Pipeline stages and the guard applied on every status-affecting write.

The six stages form a closed set. Validation rejects anything outside it,
and the derived fields are computed here so the repository applies them in
the same statement as the status change:

- closed_at is "now" for gagne/perdu and NULL otherwise, overwritten on
  every write (the same value is derived each time, never conditionally kept)
- probability falls back to a per-stage default when none is supplied
- weighted_amount is amount * probability / 100
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from src.crm.deals.errors import InvalidStatusError


class DealStatus(str, Enum):
    """Sales pipeline stage of a deal."""

    PROSPECT = "prospect"
    QUALIFICATION = "qualification"
    PROPOSITION = "proposition"
    NEGOCIATION = "negociation"
    GAGNE = "gagne"
    PERDU = "perdu"


# ── Stage Tables ────────────────────────────────────────────────────────────

# Canonical funnel order, used for stats ordering and conversion rates.
FUNNEL_ORDER: tuple[DealStatus, ...] = (
    DealStatus.PROSPECT,
    DealStatus.QUALIFICATION,
    DealStatus.PROPOSITION,
    DealStatus.NEGOCIATION,
    DealStatus.GAGNE,
    DealStatus.PERDU,
)

CLOSED_STATUSES: frozenset[DealStatus] = frozenset({DealStatus.GAGNE, DealStatus.PERDU})

DEFAULT_STATUS = DealStatus.PROSPECT

STAGE_PROBABILITIES: dict[DealStatus, int] = {
    DealStatus.PROSPECT: 10,
    DealStatus.QUALIFICATION: 30,
    DealStatus.PROPOSITION: 55,
    DealStatus.NEGOCIATION: 75,
    DealStatus.GAGNE: 100,
    DealStatus.PERDU: 0,
}

_FUNNEL_INDEX: dict[str, int] = {s.value: i for i, s in enumerate(FUNNEL_ORDER)}


# ── Guard ───────────────────────────────────────────────────────────────────


def parse_status(value: object) -> DealStatus:
    """Return the DealStatus for ``value`` or raise InvalidStatusError.

    Empty strings and None are rejected like any other unknown value; callers
    that want the creation default must apply it before calling.
    """
    if isinstance(value, DealStatus):
        return value
    try:
        return DealStatus(value)
    except ValueError:
        raise InvalidStatusError(value, (s.value for s in FUNNEL_ORDER)) from None


def is_valid_status(value: object) -> bool:
    """Membership test that never raises (used by lenient list filters)."""
    return isinstance(value, str) and value in _FUNNEL_INDEX


def closed_at_for(status: DealStatus, now: datetime | None = None) -> datetime | None:
    """Derive closed_at for a write that sets ``status``."""
    if status in CLOSED_STATUSES:
        return now or datetime.now(timezone.utc)
    return None


def probability_for(status: DealStatus) -> int:
    """Default win probability (0-100) for a stage."""
    return STAGE_PROBABILITIES[status]


def weighted_amount(amount: Decimal | float | int, probability: Decimal | float | int) -> Decimal:
    """amount * probability / 100, rounded to cents."""
    value = Decimal(str(amount)) * Decimal(str(probability)) / Decimal(100)
    return value.quantize(Decimal("0.01"))


def funnel_index(status: DealStatus | str) -> int:
    """Position of ``status`` in FUNNEL_ORDER (unknown values sort last)."""
    key = status.value if isinstance(status, DealStatus) else status
    return _FUNNEL_INDEX.get(key, len(FUNNEL_ORDER))
