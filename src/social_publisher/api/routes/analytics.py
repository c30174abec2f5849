"""Analytics rollup endpoints."""

from datetime import date, datetime, timedelta, timezone
from typing import Any
from uuid import UUID

from fastapi import APIRouter

from social_publisher.api.deps import OwnerIdDep, SessionDep
from social_publisher.api.schemas import ApiModel
from social_publisher.domain.errors import PostValidationError
from social_publisher.services import analytics

router = APIRouter(prefix="/analytics", tags=["Analytics"])

DEFAULT_RANGE_DAYS = 30


class RollupResponse(ApiModel):
    """Sums and averages over a date range."""

    start_date: date
    end_date: date
    totals: dict[str, Any]
    per_platform: dict[str, dict[str, Any]]
    per_day: list[dict[str, Any]]
    account: dict[str, Any] | None = None


class PostAnalyticsResponse(ApiModel):
    post: dict[str, Any]
    latest: dict[str, Any]
    history: list[dict[str, Any]]
    account_average: dict[str, Any]
    comparison: dict[str, float | None]


def _date_range(start_date: date | None, end_date: date | None) -> tuple[date, date]:
    """Default to the last 30 days."""
    end = end_date or datetime.now(timezone.utc).date()
    start = start_date or end - timedelta(days=DEFAULT_RANGE_DAYS)
    if start > end:
        raise PostValidationError("start_date must not be after end_date")
    return start, end


@router.get(
    "",
    response_model=RollupResponse,
    summary="Analytics overview",
    description="Totals, per-platform and per-day rollups across all of the caller's accounts.",
)
def overview(
    owner_id: OwnerIdDep,
    session: SessionDep,
    start_date: date | None = None,
    end_date: date | None = None,
) -> RollupResponse:
    start, end = _date_range(start_date, end_date)
    return RollupResponse(**analytics.owner_rollup(session, owner_id, start, end))


@router.get("/accounts/{account_id}", response_model=RollupResponse, summary="Account analytics")
def account_analytics(
    account_id: UUID,
    owner_id: OwnerIdDep,
    session: SessionDep,
    start_date: date | None = None,
    end_date: date | None = None,
) -> RollupResponse:
    start, end = _date_range(start_date, end_date)
    return RollupResponse(**analytics.account_rollup(session, owner_id, account_id, start, end))


@router.get("/posts/{post_id}", response_model=PostAnalyticsResponse, summary="Post analytics")
def post_analytics(post_id: UUID, owner_id: OwnerIdDep, session: SessionDep) -> PostAnalyticsResponse:
    return PostAnalyticsResponse(**analytics.post_analytics(session, owner_id, post_id))
