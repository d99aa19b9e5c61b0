"""Pure aggregation helpers for pipeline statistics.

The repository runs the SQL aggregates; these functions shape the results.
Stage rows are always returned in funnel order (prospect -> perdu), never in
alphabetical or database order, because conversion rates are computed
between neighbouring funnel stages.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from decimal import Decimal

from src.crm.deals.schemas import (
    ConversionRates,
    MonthlySales,
    StageBreakdown,
    StageConversion,
)
from src.crm.deals.stages import FUNNEL_ORDER, DealStatus, funnel_index


def order_by_funnel(rows: Iterable[StageBreakdown]) -> list[StageBreakdown]:
    """Sort per-stage rows by canonical funnel position."""
    return sorted(rows, key=lambda r: funnel_index(r.status))


def conversion_rate(from_count: int, to_count: int) -> int:
    """Percentage of ``to_count`` over ``from_count``; 0 when nothing to convert."""
    if from_count == 0:
        return 0
    return round(to_count / from_count * 100)


def conversion_rates(by_status: Iterable[StageBreakdown]) -> ConversionRates:
    """Rates between consecutive funnel stages plus prospect -> gagne.

    Stages absent from ``by_status`` count as zero deals.
    """
    counts = {row.status: row.count for row in by_status}
    steps = [
        StageConversion(
            from_status=current.value,
            to_status=nxt.value,
            rate=conversion_rate(counts.get(current.value, 0), counts.get(nxt.value, 0)),
        )
        for current, nxt in zip(FUNNEL_ORDER, FUNNEL_ORDER[1:])
    ]
    global_rate = conversion_rate(
        counts.get(DealStatus.PROSPECT.value, 0),
        counts.get(DealStatus.GAGNE.value, 0),
    )
    return ConversionRates(steps=steps, global_rate=global_rate)


def group_by_month(
    closed: Iterable[tuple[datetime, Decimal | float | int | None]],
) -> list[MonthlySales]:
    """Group (closed_at, amount) pairs into chronological ``YYYY-MM`` buckets."""
    buckets: dict[str, tuple[int, Decimal]] = {}
    for closed_at, amount in closed:
        month = closed_at.strftime("%Y-%m")
        count, total = buckets.get(month, (0, Decimal(0)))
        buckets[month] = (count + 1, total + Decimal(str(amount or 0)))
    return [
        MonthlySales(month=month, count=count, total=float(total))
        for month, (count, total) in sorted(buckets.items())
    ]
