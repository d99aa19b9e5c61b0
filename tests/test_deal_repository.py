"""Integration tests for DealRepository against a SQLite database.

Tests cover:
- create/update validation (title, status, probability) and defaults
- closed_at derivation on every status-affecting write
- weighted_amount consistency
- narrow status transition vs full replace
- delete, get and list (filters, ordering, enrichment)
- pipeline stats and monthly won sales
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from src.crm.deals.errors import (
    DealNotFoundError,
    DealValidationError,
    InvalidStatusError,
)
from src.crm.deals.models import DealModel
from src.crm.deals.schemas import DealCreate, DealFilter, DealUpdate
from src.crm.deals.stages import DealStatus


# ── Create ──────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_create_defaults(repo):
    deal = await repo.create_deal(DealCreate(title="  Formation SEO  "))

    assert uuid.UUID(deal.id)
    assert deal.title == "Formation SEO"
    assert deal.status == "prospect"
    assert deal.amount == 0.0
    assert deal.probability == 10.0
    assert deal.weighted_amount == 0.0
    assert deal.closed_at is None
    assert deal.created_at is not None


@pytest.mark.asyncio
async def test_create_empty_status_falls_back_to_prospect(repo):
    deal = await repo.create_deal(DealCreate(title="Audit", status=""))
    assert deal.status == "prospect"


@pytest.mark.asyncio
@pytest.mark.parametrize("title", [None, "", "   ", "\t\n"])
async def test_create_rejects_missing_title(repo, title):
    with pytest.raises(DealValidationError) as exc_info:
        await repo.create_deal(DealCreate(title=title))
    assert exc_info.value.field == "title"
    assert await repo.list_deals() == []


@pytest.mark.asyncio
async def test_create_rejects_unknown_status(repo):
    with pytest.raises(InvalidStatusError):
        await repo.create_deal(DealCreate(title="Audit", status="won"))
    assert await repo.list_deals() == []


@pytest.mark.asyncio
@pytest.mark.parametrize("probability", [-1, 100.5])
async def test_create_rejects_probability_out_of_range(repo, probability):
    with pytest.raises(DealValidationError) as exc_info:
        await repo.create_deal(DealCreate(title="Audit", probability=probability))
    assert exc_info.value.field == "probability"


@pytest.mark.asyncio
async def test_create_in_closing_stage_sets_closed_at(repo):
    deal = await repo.create_deal(DealCreate(title="Signed", status="gagne", amount=300))
    assert deal.closed_at is not None
    assert deal.probability == 100.0
    assert deal.weighted_amount == 300.0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "amount,probability",
    [(1000, 50), (1234.56, 75), (99.99, 0), (0, 100), (250, None)],
)
async def test_weighted_amount_matches_amount_and_probability(repo, amount, probability):
    deal = await repo.create_deal(
        DealCreate(title="Deal", amount=amount, probability=probability)
    )
    expected = (Decimal(str(amount)) * Decimal(str(deal.probability)) / 100).quantize(
        Decimal("0.01")
    )
    assert Decimal(str(deal.weighted_amount)) == expected


@pytest.mark.asyncio
async def test_amount_and_probability_stored_at_cent_precision(repo):
    deal = await repo.create_deal(
        DealCreate(title="Deal", amount=1000000, probability=33.333)
    )
    fetched = await repo.get_deal(deal.id)

    assert fetched.probability == 33.33
    assert fetched.weighted_amount == 333300.0

    small = await repo.get_deal(
        (await repo.create_deal(DealCreate(title="Deal", amount=0.125, probability=33.333))).id
    )
    assert small.amount == 0.13
    expected = (Decimal(str(small.amount)) * Decimal(str(small.probability)) / 100).quantize(
        Decimal("0.01")
    )
    assert Decimal(str(small.weighted_amount)) == expected


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", ["Infinity", "-Infinity", "NaN"])
async def test_create_rejects_non_finite_amount(repo, amount):
    with pytest.raises(DealValidationError) as exc_info:
        await repo.create_deal(DealCreate(title="Deal", amount=amount))
    assert exc_info.value.field == "amount"
    assert await repo.list_deals() == []


@pytest.mark.asyncio
async def test_create_rejects_nan_probability(repo):
    with pytest.raises(DealValidationError) as exc_info:
        await repo.create_deal(DealCreate(title="Deal", probability="NaN"))
    assert exc_info.value.field == "probability"


# ── Status transitions ──────────────────────────────────────────────────────


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [s.value for s in DealStatus])
async def test_transition_sets_closed_at_iff_closing(repo, status):
    deal = await repo.create_deal(DealCreate(title="Deal"))

    moved = await repo.transition_status(deal.id, status)

    assert moved.status == status
    if status in ("gagne", "perdu"):
        assert moved.closed_at is not None
    else:
        assert moved.closed_at is None


@pytest.mark.asyncio
async def test_reopening_clears_closed_at(repo):
    deal = await repo.create_deal(DealCreate(title="Deal"))
    await repo.transition_status(deal.id, "perdu")

    reopened = await repo.transition_status(deal.id, "negociation")

    assert reopened.closed_at is None


@pytest.mark.asyncio
async def test_transition_touches_only_status_and_closed_at(repo, directory):
    deal = await repo.create_deal(
        DealCreate(
            title="Site vitrine",
            description="Refonte",
            amount=1500,
            probability=40,
            contact_id=directory.contact_id,
            assigned_to=directory.user_id,
        )
    )

    moved = await repo.transition_status(deal.id, "proposition")

    assert moved.status == "proposition"
    assert moved.title == deal.title
    assert moved.description == "Refonte"
    assert moved.amount == 1500.0
    assert moved.probability == 40.0
    assert moved.weighted_amount == 600.0
    assert moved.contact_id == deal.contact_id
    assert moved.assigned_to == deal.assigned_to


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["won", "", None])
async def test_invalid_transition_leaves_record_unchanged(repo, status):
    deal = await repo.create_deal(DealCreate(title="Deal", status="qualification"))

    with pytest.raises(InvalidStatusError):
        await repo.transition_status(deal.id, status)

    stored = await repo.get_deal(deal.id)
    assert stored.status == "qualification"
    assert stored.closed_at is None
    assert stored.updated_at == deal.updated_at


@pytest.mark.asyncio
async def test_transition_missing_deal(repo):
    with pytest.raises(DealNotFoundError):
        await repo.transition_status(str(uuid.uuid4()), "gagne")


# ── Full update ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_update_is_a_full_replace(repo, directory):
    deal = await repo.create_deal(
        DealCreate(
            title="Deal",
            description="Notes",
            status="negociation",
            amount=800,
            contact_id=directory.contact_id,
            company_id=directory.company_id,
            assigned_to=directory.user_id,
        )
    )

    updated = await repo.update_deal(deal.id, DealUpdate(title="Renamed"))

    assert updated.title == "Renamed"
    assert updated.description is None
    assert updated.status == "prospect"
    assert updated.amount == 0.0
    assert updated.probability == 10.0
    assert updated.contact_id is None
    assert updated.company_id is None
    assert updated.assigned_to is None
    assert updated.closed_at is None


@pytest.mark.asyncio
async def test_update_recomputes_derived_fields(repo):
    deal = await repo.create_deal(DealCreate(title="Deal", amount=100))

    updated = await repo.update_deal(
        deal.id, DealUpdate(title="Deal", status="perdu", amount=400, probability=25)
    )

    assert updated.closed_at is not None
    assert updated.weighted_amount == 100.0


@pytest.mark.asyncio
async def test_update_validation_errors(repo):
    deal = await repo.create_deal(DealCreate(title="Deal"))

    with pytest.raises(DealValidationError):
        await repo.update_deal(deal.id, DealUpdate(title="  "))
    with pytest.raises(InvalidStatusError):
        await repo.update_deal(deal.id, DealUpdate(title="Deal", status="closed"))

    stored = await repo.get_deal(deal.id)
    assert stored.title == "Deal"
    assert stored.status == "prospect"


@pytest.mark.asyncio
async def test_update_missing_deal(repo):
    with pytest.raises(DealNotFoundError):
        await repo.update_deal(str(uuid.uuid4()), DealUpdate(title="Ghost"))


# ── Delete / get ────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_delete(repo):
    deal = await repo.create_deal(DealCreate(title="Deal"))

    await repo.delete_deal(deal.id)

    with pytest.raises(DealNotFoundError):
        await repo.get_deal(deal.id)
    with pytest.raises(DealNotFoundError):
        await repo.delete_deal(deal.id)


@pytest.mark.asyncio
@pytest.mark.parametrize("deal_id", [str(uuid.uuid4()), "not-a-uuid", ""])
async def test_unknown_ids_are_not_found(repo, deal_id):
    with pytest.raises(DealNotFoundError):
        await repo.get_deal(deal_id)
    with pytest.raises(DealNotFoundError):
        await repo.delete_deal(deal_id)


@pytest.mark.asyncio
async def test_get_enriches_with_relations(repo, directory):
    deal = await repo.create_deal(
        DealCreate(
            title="Deal",
            contact_id=directory.contact_id,
            company_id=directory.company_id,
            assigned_to=directory.user_id,
        )
    )

    fetched = await repo.get_deal(deal.id)

    assert fetched.first_name == "Jean"
    assert fetched.last_name == "Dupont"
    assert fetched.contact_email == "jean.dupont@acme.fr"
    assert fetched.company_name == "Acme SARL"
    assert fetched.assigned_first_name == "Alice"
    assert fetched.assigned_last_name == "Martin"


@pytest.mark.asyncio
async def test_get_without_relations_has_null_display_fields(repo):
    deal = await repo.create_deal(DealCreate(title="Deal"))

    fetched = await repo.get_deal(deal.id)

    assert fetched.first_name is None
    assert fetched.company_name is None
    assert fetched.assigned_first_name is None


# ── List ────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_list_newest_first(repo):
    first = await repo.create_deal(DealCreate(title="First"))
    second = await repo.create_deal(DealCreate(title="Second"))

    deals = await repo.list_deals()

    assert [d.id for d in deals] == [second.id, first.id]


@pytest.mark.asyncio
async def test_list_filters(repo, directory):
    await repo.create_deal(DealCreate(title="Formation Google Ads", status="proposition"))
    await repo.create_deal(
        DealCreate(title="Audit SEO", status="proposition", assigned_to=directory.user_id)
    )
    await repo.create_deal(DealCreate(title="Community management"))

    by_status = await repo.list_deals(DealFilter(status="proposition"))
    assert {d.title for d in by_status} == {"Formation Google Ads", "Audit SEO"}

    by_assignee = await repo.list_deals(DealFilter(assigned_to=directory.user_id))
    assert [d.title for d in by_assignee] == ["Audit SEO"]

    by_title = await repo.list_deals(DealFilter(q="google"))
    assert [d.title for d in by_title] == ["Formation Google Ads"]

    combined = await repo.list_deals(DealFilter(status="prospect", q="audit"))
    assert combined == []


@pytest.mark.asyncio
async def test_list_ignores_unknown_status_filter(repo):
    await repo.create_deal(DealCreate(title="A"))
    await repo.create_deal(DealCreate(title="B", status="gagne"))

    unfiltered = await repo.list_deals()
    bogus = await repo.list_deals(DealFilter(status="bogus"))

    assert [d.id for d in bogus] == [d.id for d in unfiltered]
    assert len(bogus) == 2


@pytest.mark.asyncio
async def test_list_search_escapes_wildcards(repo):
    await repo.create_deal(DealCreate(title="Remise 100%"))
    await repo.create_deal(DealCreate(title="Remise 1000"))

    deals = await repo.list_deals(DealFilter(q="100%"))

    assert [d.title for d in deals] == ["Remise 100%"]


# ── Assignee lookup ─────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_get_assignee(repo, directory):
    assignee = await repo.get_assignee(str(directory.user_id))
    assert assignee.email == "alice@example.com"
    assert assignee.first_name == "Alice"

    assert await repo.get_assignee(uuid.uuid4()) is None
    assert await repo.get_assignee("nope") is None


# ── Stats ───────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_stats_empty(repo):
    stats = await repo.get_stats()

    assert stats.summary.total_deals == 0
    assert stats.summary.total_value == 0.0
    assert stats.summary.weighted_value == 0.0
    assert stats.summary.won_value == 0.0
    assert stats.summary.active_deals == 0
    assert stats.by_status == []


@pytest.mark.asyncio
async def test_stats_by_status_in_funnel_order(repo):
    await repo.create_deal(DealCreate(title="Lost", status="perdu", amount=50))
    await repo.create_deal(DealCreate(title="Won", status="gagne", amount=200))
    await repo.create_deal(DealCreate(title="New", amount=10))

    stats = await repo.get_stats()

    assert [r.status for r in stats.by_status] == ["prospect", "gagne", "perdu"]
    assert [r.count for r in stats.by_status] == [1, 1, 1]
    assert [r.total for r in stats.by_status] == [10.0, 200.0, 50.0]


@pytest.mark.asyncio
async def test_won_deal_scenario(repo):
    deal = await repo.create_deal(DealCreate(title="Pack SEO", amount=1000, probability=50))

    stats = await repo.get_stats()
    assert stats.summary.total_deals == 1
    assert stats.summary.total_value == 1000.0
    assert stats.summary.weighted_value == 500.0
    assert stats.summary.won_value == 0.0
    assert stats.summary.active_deals == 1

    won = await repo.transition_status(deal.id, "gagne")
    assert won.closed_at is not None

    stats = await repo.get_stats()
    assert stats.summary.won_value == 1000.0
    assert stats.summary.active_deals == 0
    assert [(r.status, r.count) for r in stats.by_status] == [("gagne", 1)]


# ── Monthly won ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_monthly_won(repo, db_engine):
    def _deal(status: str, amount: int, closed_at: datetime | None) -> DealModel:
        return DealModel(
            title=f"{status} {amount}",
            status=status,
            amount=Decimal(amount),
            closed_at=closed_at,
        )

    async with AsyncSession(db_engine) as session:
        session.add_all([
            _deal("gagne", 100, datetime(2026, 9, 2, tzinfo=timezone.utc)),
            _deal("gagne", 300, datetime(2026, 9, 25, tzinfo=timezone.utc)),
            _deal("gagne", 50, datetime(2026, 4, 10, tzinfo=timezone.utc)),
            # Outside the 12-month window
            _deal("gagne", 999, datetime(2025, 8, 1, tzinfo=timezone.utc)),
            # Lost deals are never sales
            _deal("perdu", 700, datetime(2026, 9, 3, tzinfo=timezone.utc)),
            _deal("gagne", 10, None),
        ])
        await session.commit()

    months = await repo.get_monthly_won(
        months=12, now=datetime(2026, 10, 18, tzinfo=timezone.utc)
    )

    assert [(m.month, m.count, m.total) for m in months] == [
        ("2026-04", 1, 50.0),
        ("2026-09", 2, 400.0),
    ]
