"""Connected account management endpoints."""

from uuid import UUID

from fastapi import APIRouter
from pydantic import Field

from social_publisher.api.deps import OwnerIdDep, SessionDep
from social_publisher.api.schemas import AccountResponse, ApiModel, SuccessResponse
from social_publisher.services import accounts

router = APIRouter(prefix="/accounts", tags=["Accounts"])


class AccountListResponse(ApiModel):
    """Response with list of accounts."""

    accounts: list[AccountResponse]
    total: int


class NicknameRequest(ApiModel):
    """Request to relabel an account."""

    nickname: str | None = Field(default=None, max_length=100)


@router.get(
    "",
    response_model=AccountListResponse,
    summary="List accounts",
    description="List the caller's connected accounts.",
)
def list_connected_accounts(
    owner_id: OwnerIdDep,
    session: SessionDep,
    platform: str | None = None,
) -> AccountListResponse:
    """List connected platform accounts."""
    rows = accounts.list_accounts(session, owner_id, platform)
    return AccountListResponse(
        accounts=[AccountResponse.from_model(a) for a in rows],
        total=len(rows),
    )


@router.get("/{account_id}", response_model=AccountResponse, summary="Get account")
def get_connected_account(account_id: UUID, owner_id: OwnerIdDep, session: SessionDep) -> AccountResponse:
    return AccountResponse.from_model(accounts.get_account(session, owner_id, account_id))


@router.post(
    "/{account_id}/default",
    response_model=AccountResponse,
    summary="Set default account",
    description="Make the account the default for its platform.",
)
def make_default(account_id: UUID, owner_id: OwnerIdDep, session: SessionDep) -> AccountResponse:
    return AccountResponse.from_model(accounts.set_default(session, owner_id, account_id))


@router.post("/{account_id}/nickname", response_model=AccountResponse, summary="Set nickname")
def update_nickname(
    account_id: UUID,
    request: NicknameRequest,
    owner_id: OwnerIdDep,
    session: SessionDep,
) -> AccountResponse:
    account = accounts.set_nickname(session, owner_id, account_id, request.nickname)
    return AccountResponse.from_model(account)


@router.post(
    "/{account_id}/refresh-token",
    response_model=AccountResponse,
    summary="Refresh token",
    description="Refresh the account's access token now.",
)
def refresh_token(account_id: UUID, owner_id: OwnerIdDep, session: SessionDep) -> AccountResponse:
    """Refresh credentials; a rejected refresh flags the account and returns an error."""
    return AccountResponse.from_model(accounts.refresh(session, owner_id, account_id))


@router.delete(
    "/{account_id}",
    response_model=SuccessResponse,
    summary="Disconnect account",
    description="Disconnect the account. Its posts and metrics are kept.",
)
def disconnect_account(account_id: UUID, owner_id: OwnerIdDep, session: SessionDep) -> SuccessResponse:
    accounts.disconnect(session, owner_id, account_id)
    return SuccessResponse(message="Account disconnected")
