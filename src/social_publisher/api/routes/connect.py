"""OAuth connection endpoints.

The browser is sent to the platform's consent screen and comes back to the
callback, which always answers with a redirect to the frontend carrying either
``connected=<platform>`` or ``error=<message>``.
"""

from typing import Annotated

import httpx
from fastapi import APIRouter, Cookie, Query
from fastapi.responses import RedirectResponse

from social_publisher.api.deps import OwnerIdDep, SessionDep
from social_publisher.config import settings
from social_publisher.domain.errors import InvalidStateError, SocialPublisherError
from social_publisher.logging import get_logger
from social_publisher.services import accounts

router = APIRouter(prefix="/connect", tags=["Connect"])
logger = get_logger(__name__)

STATE_COOKIE = "oauth_state"


def frontend_redirect(**params: str) -> RedirectResponse:
    """Redirect to the frontend account page with result query parameters."""
    url = httpx.URL(settings.frontend_redirect_url).copy_merge_params(params)
    response = RedirectResponse(str(url), status_code=302)
    response.delete_cookie(STATE_COOKIE)
    return response


@router.get(
    "/{platform}",
    status_code=302,
    summary="Start connection",
    description="Redirect to the platform's authorization page.",
)
def start_connection(platform: str, owner_id: OwnerIdDep, session: SessionDep) -> RedirectResponse:
    """Issue a one-shot state token and redirect to the consent screen."""
    url, state = accounts.begin_connection(session, owner_id, platform)

    response = RedirectResponse(url, status_code=302)
    response.set_cookie(
        STATE_COOKIE,
        state,
        max_age=settings.oauth_state_ttl_seconds,
        httponly=True,
        samesite="lax",
        secure=settings.app_base_url.startswith("https"),
    )
    return response


@router.get(
    "/{platform}/callback",
    status_code=302,
    summary="OAuth callback",
    description="Validate the state, exchange the code and store the account.",
)
def connection_callback(
    platform: str,
    owner_id: OwnerIdDep,
    session: SessionDep,
    code: Annotated[str | None, Query()] = None,
    state: Annotated[str | None, Query()] = None,
    error: Annotated[str | None, Query()] = None,
    error_description: Annotated[str | None, Query()] = None,
    oauth_state: Annotated[str | None, Cookie()] = None,
) -> RedirectResponse:
    """Finish the authorization-code flow."""
    if error:
        logger.warning("oauth_denied", platform=platform, owner_id=owner_id, error=error)
        return frontend_redirect(error=error_description or error)
    if not code:
        return frontend_redirect(error="Authorization code missing")

    try:
        if oauth_state is not None and oauth_state != state:
            raise InvalidStateError("OAuth state does not match this browser session")
        account = accounts.complete_connection(session, owner_id, platform, state, code)
    except SocialPublisherError as e:
        logger.warning("oauth_callback_failed", platform=platform, owner_id=owner_id, error=str(e))
        return frontend_redirect(error=str(e))
    except httpx.HTTPError as e:
        logger.error("oauth_callback_transport_error", platform=platform, error=str(e))
        return frontend_redirect(error=f"Could not reach {platform}. Please try again.")

    return frontend_redirect(connected=account.platform)
