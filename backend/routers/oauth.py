"""OAuth router - connects Instagram Business/Creator accounts.

The frontend asks for an authorization URL with the user's bearer token,
sends the browser there, and Instagram redirects back to /auth/callback.
The state token carries the user id across the redirect.
"""

import logging
from typing import Annotated, Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import RedirectResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from config import get_settings
from database import get_db
from middleware.auth import get_current_user_id
from middleware.rate_limit import OAUTH_RATE_LIMIT, limiter
from services.account_service import connect_account
from services.instagram_service import InstagramAPIError, build_authorize_url
from services.oauth_state import consume_state, issue_state

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["oauth"])
settings = get_settings()


class AuthUrlResponse(BaseModel):
    auth_url: str


def _redirect_with_error(message: str) -> RedirectResponse:
    return RedirectResponse(url=f"/?error={quote(message)}", status_code=status.HTTP_302_FOUND)


@router.get("/login", response_model=AuthUrlResponse)
@limiter.limit(OAUTH_RATE_LIMIT)
async def instagram_login(
    request: Request,
    user_id: Annotated[str, Depends(get_current_user_id)],
):
    """Start Instagram Business Login. Returns the authorization URL."""
    if not settings.instagram_app_id or not settings.instagram_app_secret:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Instagram OAuth not configured. Set INSTAGRAM_APP_ID and INSTAGRAM_APP_SECRET.",
        )

    auth_url = build_authorize_url(issue_state(user_id))
    logger.info(f"Issued Instagram authorization URL for user {user_id}")
    return AuthUrlResponse(auth_url=auth_url)


@router.get("/callback")
@limiter.limit(OAUTH_RATE_LIMIT)
async def instagram_callback(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    error_reason: Optional[str] = None,
    error_description: Optional[str] = None,
) -> RedirectResponse:
    """Instagram OAuth callback.

    Exchanges the code for a long-lived token and stores the account, then
    redirects back to the dashboard.
    """
    if error:
        logger.error(f"OAuth error: {error} {error_description} {error_reason}")
        return _redirect_with_error(error_description or error)

    if not code:
        return _redirect_with_error("No authorization code received")

    user_id = consume_state(state) if state else None
    if user_id is None:
        return _redirect_with_error("The OAuth state token is invalid or expired. Please try again.")

    try:
        account = await connect_account(db, user_id, code)
        connected = account.username or account.ig_user_id
    except InstagramAPIError as e:
        logger.error(f"OAuth token exchange error: {e.message}")
        return _redirect_with_error(e.message)
    except Exception as e:
        logger.exception(f"Instagram OAuth callback error: {e}")
        return _redirect_with_error(str(e))

    return RedirectResponse(
        url=f"/?connected={quote(connected)}",
        status_code=status.HTTP_302_FOUND,
    )
