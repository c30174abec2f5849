"""FastAPI dependencies."""

from typing import Annotated

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from social_publisher.db.session import get_session

# Database session dependency
SessionDep = Annotated[Session, Depends(get_session)]


def get_owner_id(
    x_owner_id: Annotated[str, Header(min_length=1, max_length=64, description="Caller identity")],
) -> str:
    """Identity of the caller, set by the authenticating gateway in front of the API."""
    return x_owner_id.strip()


OwnerIdDep = Annotated[str, Depends(get_owner_id)]
