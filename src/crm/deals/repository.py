"""Deal store -- async CRUD, status transitions and pipeline aggregates.

Provides DealRepository with the session_factory callable pattern. Every
write that sets a status derives closed_at through the stage guard inside
the same UPDATE/INSERT statement, so status and closed_at can never be
observed out of step.

Two write paths:
- update_deal: full replace. Optional fields that are not supplied become
  NULL (amount becomes 0, status becomes prospect).
- transition_status: narrow write of status and closed_at only.

Concurrent writes on the same deal are last-write-wins; there is no row
versioning.
"""

from __future__ import annotations

import math
import uuid
from calendar import monthrange
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import structlog
from sqlalchemy import Select, case, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.crm.core.monitoring import deal_status_transitions_total
from src.crm.deals import stats
from src.crm.deals.errors import DealNotFoundError, DealValidationError
from src.crm.deals.models import DealModel
from src.crm.deals.schemas import (
    AssigneeRead,
    DealCreate,
    DealFilter,
    DealRead,
    DealUpdate,
    MonthlySales,
    PipelineStats,
    PipelineSummary,
    StageBreakdown,
)
from src.crm.deals.stages import (
    CLOSED_STATUSES,
    DEFAULT_STATUS,
    DealStatus,
    closed_at_for,
    is_valid_status,
    parse_status,
    probability_for,
    weighted_amount,
)
from src.crm.models.directory import CompanyModel, ContactModel, UserModel

logger = structlog.get_logger(__name__)

_CLOSED_VALUES = [s.value for s in CLOSED_STATUSES]
_CENTS = Decimal("0.01")


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_deal(model: DealModel, extra: dict[str, Any] | None = None) -> DealRead:
    """Convert DealModel (plus optional joined display columns) to DealRead."""
    return DealRead(
        id=str(model.id),
        title=model.title,
        description=model.description,
        status=model.status,
        amount=float(model.amount or 0),
        probability=float(model.probability or 0),
        weighted_amount=float(model.weighted_amount or 0),
        contact_id=str(model.contact_id) if model.contact_id else None,
        company_id=str(model.company_id) if model.company_id else None,
        assigned_to=str(model.assigned_to) if model.assigned_to else None,
        expected_close_date=model.expected_close_date,
        closed_at=model.closed_at,
        created_at=model.created_at,
        updated_at=model.updated_at,
        **(extra or {}),
    )


def _parse_id(deal_id: str | uuid.UUID) -> uuid.UUID:
    """Parse a deal id; malformed ids cannot exist, so they are NotFound."""
    if isinstance(deal_id, uuid.UUID):
        return deal_id
    try:
        return uuid.UUID(str(deal_id))
    except ValueError:
        raise DealNotFoundError(deal_id) from None


def _require_title(title: str | None) -> str:
    if title is None or not title.strip():
        raise DealValidationError("title", "Deal title is required")
    return title.strip()


def _clean_text(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


def _resolve_status(value: str | None) -> DealStatus:
    """Status for a create/full-update payload (absent or empty -> prospect)."""
    if value is None or value == "":
        return DEFAULT_STATUS
    return parse_status(value)


def _to_cents(value: float) -> Decimal:
    """Round to the two decimals the amount and probability columns store."""
    return Decimal(str(value)).quantize(_CENTS, rounding=ROUND_HALF_UP)


def _resolve_amount(value: float | None) -> Decimal:
    if value is None:
        return Decimal(0)
    if not math.isfinite(value):
        raise DealValidationError("amount", "Amount must be a finite number")
    return _to_cents(value)


def _resolve_probability(value: float | None, status: DealStatus) -> Decimal:
    if value is None:
        return Decimal(probability_for(status))
    if not math.isfinite(value) or not 0 <= value <= 100:
        raise DealValidationError("probability", "Probability must be between 0 and 100")
    return _to_cents(value)


def _write_values(data: DealCreate) -> dict[str, Any]:
    """Validate a create/update payload and compute every column it writes."""
    title = _require_title(data.title)
    status = _resolve_status(data.status)
    amount = _resolve_amount(data.amount)
    probability = _resolve_probability(data.probability, status)
    return {
        "title": title,
        "description": _clean_text(data.description),
        "status": status.value,
        "amount": amount,
        "probability": probability,
        "weighted_amount": weighted_amount(amount, probability),
        "contact_id": data.contact_id,
        "company_id": data.company_id,
        "assigned_to": data.assigned_to,
        "expected_close_date": data.expected_close_date,
        "closed_at": closed_at_for(status),
    }


def _months_ago(now: datetime, months: int) -> datetime:
    """``now`` shifted back by calendar months, day clamped to the target month's length."""
    month_index = now.year * 12 + (now.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    return now.replace(year=year, month=month, day=min(now.day, monthrange(year, month)[1]))


# ── Repository ──────────────────────────────────────────────────────────────


class DealRepository:
    """Async CRUD and aggregate queries over the deals table.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    @staticmethod
    def _enriched_select() -> Select:
        """SELECT deals with contact, company and assignee display columns.

        Outer joins only: a dangling or null reference yields NULL columns.
        """
        return (
            select(
                DealModel,
                ContactModel.first_name.label("first_name"),
                ContactModel.last_name.label("last_name"),
                ContactModel.email.label("contact_email"),
                CompanyModel.name.label("company_name"),
                UserModel.first_name.label("assigned_first_name"),
                UserModel.last_name.label("assigned_last_name"),
            )
            .outerjoin(ContactModel, ContactModel.id == DealModel.contact_id)
            .outerjoin(CompanyModel, CompanyModel.id == DealModel.company_id)
            .outerjoin(UserModel, UserModel.id == DealModel.assigned_to)
        )

    @staticmethod
    def _row_to_deal(row: Any) -> DealRead:
        return _model_to_deal(
            row[0],
            {
                "first_name": row.first_name,
                "last_name": row.last_name,
                "contact_email": row.contact_email,
                "company_name": row.company_name,
                "assigned_first_name": row.assigned_first_name,
                "assigned_last_name": row.assigned_last_name,
            },
        )

    # ── Writes ──────────────────────────────────────────────────────────────

    async def create_deal(self, data: DealCreate) -> DealRead:
        """Create a deal.

        Args:
            data: DealCreate payload. Missing status defaults to prospect,
                missing amount to 0, missing probability to the stage default.

        Returns:
            DealRead with all persisted fields.

        Raises:
            DealValidationError: Title empty or whitespace-only, amount not
                finite, or probability outside 0..100.
            InvalidStatusError: Status supplied but not a pipeline stage.
        """
        values = _write_values(data)
        async for session in self._session_factory():
            model = DealModel(**values)
            session.add(model)
            await session.commit()
            await session.refresh(model)

            deal_status_transitions_total.labels(status=model.status).inc()
            logger.info("deals.created", deal_id=str(model.id), status=model.status)
            return _model_to_deal(model)

    async def update_deal(self, deal_id: str | uuid.UUID, data: DealUpdate) -> DealRead:
        """Replace every writable field of a deal.

        Raises:
            DealValidationError: Title empty or whitespace-only, amount not
                finite, or probability outside 0..100.
            InvalidStatusError: Status supplied but not a pipeline stage.
            DealNotFoundError: No deal with this id.
        """
        values = _write_values(data)
        pk = _parse_id(deal_id)
        async for session in self._session_factory():
            stmt = (
                update(DealModel)
                .where(DealModel.id == pk)
                .values(**values, updated_at=datetime.now(timezone.utc))
                .returning(DealModel)
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                await session.rollback()
                raise DealNotFoundError(deal_id)
            await session.commit()

            deal_status_transitions_total.labels(status=model.status).inc()
            logger.info("deals.updated", deal_id=str(pk), status=model.status)
            return _model_to_deal(model)

    async def transition_status(self, deal_id: str | uuid.UUID, status: str) -> DealRead:
        """Move a deal to ``status``, writing only status and closed_at.

        The status is validated before storage is touched, so a rejected
        transition leaves the record as it was.

        Raises:
            InvalidStatusError: Status not a pipeline stage.
            DealNotFoundError: No deal with this id.
        """
        new_status = parse_status(status)
        pk = _parse_id(deal_id)
        async for session in self._session_factory():
            stmt = (
                update(DealModel)
                .where(DealModel.id == pk)
                .values(
                    status=new_status.value,
                    closed_at=closed_at_for(new_status),
                    updated_at=datetime.now(timezone.utc),
                )
                .returning(DealModel)
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                await session.rollback()
                raise DealNotFoundError(deal_id)
            await session.commit()

            deal_status_transitions_total.labels(status=new_status.value).inc()
            logger.info(
                "deals.status_changed",
                deal_id=str(pk),
                status=new_status.value,
                closed=model.closed_at is not None,
            )
            return _model_to_deal(model)

    async def delete_deal(self, deal_id: str | uuid.UUID) -> None:
        """Permanently delete a deal.

        Raises:
            DealNotFoundError: No deal with this id.
        """
        pk = _parse_id(deal_id)
        async for session in self._session_factory():
            result = await session.execute(
                delete(DealModel).where(DealModel.id == pk).returning(DealModel.id)
            )
            if result.scalar_one_or_none() is None:
                await session.rollback()
                raise DealNotFoundError(deal_id)
            await session.commit()
            logger.info("deals.deleted", deal_id=str(pk))

    # ── Reads ───────────────────────────────────────────────────────────────

    async def get_deal(self, deal_id: str | uuid.UUID) -> DealRead:
        """Get one deal with contact, company and assignee display fields.

        Raises:
            DealNotFoundError: No deal with this id.
        """
        pk = _parse_id(deal_id)
        async for session in self._session_factory():
            result = await session.execute(
                self._enriched_select().where(DealModel.id == pk)
            )
            row = result.first()
            if row is None:
                raise DealNotFoundError(deal_id)
            return self._row_to_deal(row)

    async def list_deals(self, filters: DealFilter | None = None) -> list[DealRead]:
        """List deals, newest first.

        An unknown ``status`` filter is ignored rather than rejected; ``q``
        matches the title case-insensitively; ``assigned_to`` is exact.
        """
        stmt = self._enriched_select()
        if filters is not None:
            if is_valid_status(filters.status):
                stmt = stmt.where(DealModel.status == filters.status)
            if filters.assigned_to is not None:
                stmt = stmt.where(DealModel.assigned_to == filters.assigned_to)
            if filters.q:
                stmt = stmt.where(
                    DealModel.title.icontains(filters.q, autoescape=True)
                )
        stmt = stmt.order_by(DealModel.created_at.desc())

        async for session in self._session_factory():
            result = await session.execute(stmt)
            return [self._row_to_deal(row) for row in result.all()]

    async def get_assignee(self, user_id: str | uuid.UUID) -> AssigneeRead | None:
        """Load the user a deal is assigned to (None if the user is gone)."""
        try:
            pk = user_id if isinstance(user_id, uuid.UUID) else uuid.UUID(str(user_id))
        except ValueError:
            return None
        async for session in self._session_factory():
            result = await session.execute(
                select(UserModel.email, UserModel.first_name).where(UserModel.id == pk)
            )
            row = result.first()
            if row is None:
                return None
            return AssigneeRead(email=row.email, first_name=row.first_name)

    # ── Aggregates ──────────────────────────────────────────────────────────

    async def get_stats(self) -> PipelineStats:
        """Summary totals and per-stage breakdown over all deals."""
        summary_stmt = select(
            func.count(DealModel.id).label("total_deals"),
            func.coalesce(func.sum(DealModel.amount), 0).label("total_value"),
            func.coalesce(func.sum(DealModel.weighted_amount), 0).label("weighted_value"),
            func.coalesce(
                func.sum(
                    case((DealModel.status == DealStatus.GAGNE.value, DealModel.amount))
                ),
                0,
            ).label("won_value"),
            func.count(
                case((DealModel.status.notin_(_CLOSED_VALUES), 1))
            ).label("active_deals"),
        )
        by_status_stmt = select(
            DealModel.status,
            func.count(DealModel.id).label("deal_count"),
            func.coalesce(func.sum(DealModel.amount), 0).label("total"),
        ).group_by(DealModel.status)

        async for session in self._session_factory():
            row = (await session.execute(summary_stmt)).one()
            summary = PipelineSummary(
                total_deals=row.total_deals or 0,
                total_value=float(row.total_value or 0),
                weighted_value=float(row.weighted_value or 0),
                won_value=float(row.won_value or 0),
                active_deals=row.active_deals or 0,
            )
            grouped = (await session.execute(by_status_stmt)).all()
            by_status = stats.order_by_funnel(
                StageBreakdown(status=r.status, count=r.deal_count, total=float(r.total or 0))
                for r in grouped
            )
            return PipelineStats(summary=summary, by_status=by_status)

    async def get_monthly_won(
        self, months: int = 12, now: datetime | None = None
    ) -> list[MonthlySales]:
        """Won deals grouped by closing month over the trailing ``months``."""
        cutoff = _months_ago(now or datetime.now(timezone.utc), months)
        stmt = (
            select(DealModel.closed_at, DealModel.amount)
            .where(
                DealModel.status == DealStatus.GAGNE.value,
                DealModel.closed_at.is_not(None),
                DealModel.closed_at >= cutoff,
            )
            .order_by(DealModel.closed_at)
        )
        async for session in self._session_factory():
            result = await session.execute(stmt)
            return stats.group_by_month((r.closed_at, r.amount) for r in result.all())
