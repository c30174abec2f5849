"""Calendar feed of scheduled posts."""

from datetime import datetime
from typing import Any

from fastapi import APIRouter

from social_publisher.api.deps import OwnerIdDep, SessionDep
from social_publisher.services import posts

router = APIRouter(tags=["Calendar"])


@router.get(
    "/calendar-events",
    response_model=list[dict[str, Any]],
    summary="Calendar events",
    description="Posts with a scheduled time inside the window, coloured by platform.",
)
def calendar_events(
    owner_id: OwnerIdDep,
    session: SessionDep,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[dict[str, Any]]:
    return posts.list_calendar_events(session, owner_id, start, end)
