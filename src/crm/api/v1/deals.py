"""REST API endpoints for the deals pipeline.

Provides CRUD, the narrow status transition, pipeline stats and monthly won
sales. All endpoints require a Bearer token. Deal failures raised by the
repository are rendered by the handlers in src/crm/api/errors.py.

A write that moves a deal into gagne schedules the deal-won email as a
background task, so it runs after the response is sent.
"""

from __future__ import annotations

import uuid
from typing import Any

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    HTTPException,
    Query,
    Request,
    status,
)
from pydantic import BaseModel, Field

from src.crm.api.deps import get_current_user
from src.crm.deals import stats
from src.crm.deals.errors import DealNotFoundError
from src.crm.deals.notifications import should_notify_won
from src.crm.deals.schemas import (
    ConversionRates,
    DealCreate,
    DealFilter,
    DealRead,
    DealUpdate,
    MonthlySales,
    PipelineSummary,
    StageBreakdown,
)
from src.crm.deals.stages import DealStatus
from src.crm.schemas.auth import CurrentUser

router = APIRouter(prefix="/deals", tags=["deals"])


# ── Response Schemas ─────────────────────────────────────────────────────────


class DealResponse(BaseModel):
    """Response for deal data, serializes dates to ISO strings."""

    id: str
    title: str
    description: str | None = None
    status: str = DealStatus.PROSPECT.value
    amount: float = 0.0
    probability: float = 0.0
    weighted_amount: float = 0.0
    contact_id: str | None = None
    company_id: str | None = None
    assigned_to: str | None = None
    expected_close_date: str | None = None
    closed_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    contact_email: str | None = None
    company_name: str | None = None
    assigned_first_name: str | None = None
    assigned_last_name: str | None = None


class StatsResponse(BaseModel):
    """Pipeline dashboard: totals, per-stage rows in funnel order, conversion."""

    summary: PipelineSummary
    by_status: list[StageBreakdown] = Field(default_factory=list)
    conversion: ConversionRates


class DeleteResponse(BaseModel):
    ok: bool = True


# ── Request Schemas ──────────────────────────────────────────────────────────


class StatusChangeRequest(BaseModel):
    """Request body for PATCH /deals/{id}/status."""

    status: str | None = None


# ── Dependency Injection Helper ──────────────────────────────────────────────


def _get_deal_repository(request: Request) -> Any:
    """Retrieve DealRepository from app.state, 503 if not available."""
    repo = getattr(request.app.state, "deal_repository", None)
    if repo is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Deal management not initialized",
        )
    return repo


def _schedule_won_notification(
    request: Request,
    background_tasks: BackgroundTasks,
    previous_status: str | None,
    deal: DealRead,
) -> None:
    """Queue the deal-won email when ``deal`` just entered gagne."""
    notifier = getattr(request.app.state, "deal_won_notifier", None)
    if notifier is not None and should_notify_won(previous_status, deal):
        background_tasks.add_task(notifier.notify, deal)


async def _previous_status(repo: Any, deal_id: str, new_status: str | None) -> str | None:
    """Status before a write, read only when the write targets gagne.

    A missing deal yields None; the write itself reports the failure.
    """
    if new_status != DealStatus.GAGNE.value:
        return None
    try:
        previous = await repo.get_deal(deal_id)
    except DealNotFoundError:
        return None
    return previous.status


# ── Conversion Helpers ───────────────────────────────────────────────────────


def _deal_to_response(deal: DealRead) -> DealResponse:
    """Convert DealRead to DealResponse."""
    return DealResponse(
        **deal.model_dump(
            exclude={"expected_close_date", "closed_at", "created_at", "updated_at"}
        ),
        expected_close_date=(
            deal.expected_close_date.isoformat() if deal.expected_close_date else None
        ),
        closed_at=deal.closed_at.isoformat() if deal.closed_at else None,
        created_at=deal.created_at.isoformat() if deal.created_at else None,
        updated_at=deal.updated_at.isoformat() if deal.updated_at else None,
    )


# ── Read Endpoints ───────────────────────────────────────────────────────────


@router.get("", response_model=list[DealResponse])
async def list_deals(
    request: Request,
    status_filter: str | None = Query(
        default=None, alias="status", description="Filter by stage (unknown values ignored)"
    ),
    assigned_to: uuid.UUID | None = Query(default=None, description="Filter by assignee"),
    q: str | None = Query(default=None, description="Case-insensitive title search"),
    user: CurrentUser = Depends(get_current_user),
) -> list[DealResponse]:
    """List deals, newest first."""
    repo = _get_deal_repository(request)
    filters = DealFilter(status=status_filter, assigned_to=assigned_to, q=q)
    deals = await repo.list_deals(filters)
    return [_deal_to_response(d) for d in deals]


@router.get("/stats", response_model=StatsResponse)
async def get_stats(
    request: Request,
    user: CurrentUser = Depends(get_current_user),
) -> StatsResponse:
    """Pipeline summary, per-stage breakdown and stage conversion rates."""
    repo = _get_deal_repository(request)
    pipeline = await repo.get_stats()
    return StatsResponse(
        summary=pipeline.summary,
        by_status=pipeline.by_status,
        conversion=stats.conversion_rates(pipeline.by_status),
    )


@router.get("/stats/monthly", response_model=list[MonthlySales])
async def get_monthly_won(
    request: Request,
    months: int = Query(default=12, ge=1, le=60, description="Trailing window in months"),
    user: CurrentUser = Depends(get_current_user),
) -> list[MonthlySales]:
    """Won deals grouped by closing month."""
    repo = _get_deal_repository(request)
    return await repo.get_monthly_won(months=months)


@router.get("/{deal_id}", response_model=DealResponse)
async def get_deal(
    deal_id: str,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
) -> DealResponse:
    """Get a single deal with contact, company and assignee names."""
    repo = _get_deal_repository(request)
    deal = await repo.get_deal(deal_id)
    return _deal_to_response(deal)


# ── Write Endpoints ──────────────────────────────────────────────────────────


@router.post("", response_model=DealResponse, status_code=201)
async def create_deal(
    body: DealCreate,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
) -> DealResponse:
    """Create a deal (status defaults to prospect)."""
    repo = _get_deal_repository(request)
    deal = await repo.create_deal(body)
    return _deal_to_response(deal)


@router.put("/{deal_id}", response_model=DealResponse)
async def update_deal(
    deal_id: str,
    body: DealUpdate,
    request: Request,
    background_tasks: BackgroundTasks,
    user: CurrentUser = Depends(get_current_user),
) -> DealResponse:
    """Replace every writable field of a deal."""
    repo = _get_deal_repository(request)
    previous = await _previous_status(repo, deal_id, body.status)
    deal = await repo.update_deal(deal_id, body)
    _schedule_won_notification(request, background_tasks, previous, deal)
    return _deal_to_response(deal)


@router.patch("/{deal_id}/status", response_model=DealResponse)
async def change_status(
    deal_id: str,
    body: StatusChangeRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    user: CurrentUser = Depends(get_current_user),
) -> DealResponse:
    """Move a deal to another stage; only status and closed_at change."""
    repo = _get_deal_repository(request)
    previous = await _previous_status(repo, deal_id, body.status)
    deal = await repo.transition_status(deal_id, body.status)
    _schedule_won_notification(request, background_tasks, previous, deal)
    return _deal_to_response(deal)


@router.delete("/{deal_id}", response_model=DeleteResponse)
async def delete_deal(
    deal_id: str,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
) -> DeleteResponse:
    """Permanently delete a deal."""
    repo = _get_deal_repository(request)
    await repo.delete_deal(deal_id)
    return DeleteResponse()
