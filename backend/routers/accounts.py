"""Accounts router - connected Instagram accounts and their analytics.

Every endpoint is scoped to the calling user. Unknown account ids return
404 before any Instagram API call is made.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Annotated, Any, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel
from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from config import get_settings
from database import get_db
from middleware.auth import get_current_user_id
from middleware.rate_limit import DETAILED_MEDIA_RATE_LIMIT, limiter
from models.account_snapshot import AccountSnapshot
from models.instagram_account import InstagramAccount
from services.account_service import refresh_profile, refresh_token
from services.credentials import AccountCredential, get_owned_account, load_credential
from services.detailed_media import clamp_limit, get_detailed_media
from services.instagram_service import (
    DEFAULT_ACCOUNT_METRICS,
    SINGLE_MEDIA_METRICS,
    fetch_account_insights,
    fetch_demographics,
    fetch_media_insights,
)
from services.media_resolver import resolve_media

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/accounts", tags=["accounts"])
settings = get_settings()


# Response schemas
class AccountResponse(BaseModel):
    id: str
    ig_user_id: str
    username: str | None
    name: str | None
    account_type: str | None
    profile_picture_url: str | None
    followers_count: int
    follows_count: int
    media_count: int
    token_expires_at: datetime | None
    token_valid: bool
    connected_at: datetime


class DetailedMediaResponse(BaseModel):
    items: list[dict[str, Any]]
    followers_count: int
    fetched_count: int
    source_endpoint: str | None = None


class TokenRefreshResponse(BaseModel):
    ok: bool
    expires_in: int


class SnapshotResponse(BaseModel):
    snapshot_date: date
    followers_count: int
    follows_count: int
    media_count: int
    avg_engagement_rate: float
    avg_reach: float
    total_likes: int
    total_comments: int


async def _require_account(
    db: AsyncSession, account_id: str, user_id: str
) -> InstagramAccount:
    account = await get_owned_account(db, account_id, user_id)
    if account is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Account not found",
        )
    return account


async def _require_credential(
    db: AsyncSession, account_id: str, user_id: str
) -> AccountCredential:
    credential = await load_credential(db, account_id, user_id)
    if credential is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Account not found",
        )
    return credential


@router.get("", response_model=list[AccountResponse])
async def list_accounts(
    user_id: Annotated[str, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """List connected accounts. Tokens are never returned."""
    result = await db.execute(
        select(InstagramAccount)
        .where(InstagramAccount.owner_user_id == user_id)
        .order_by(InstagramAccount.connected_at)
    )
    return [
        AccountResponse(
            id=a.id,
            ig_user_id=a.ig_user_id,
            username=a.username,
            name=a.name,
            account_type=a.account_type,
            profile_picture_url=a.profile_picture_url,
            followers_count=a.followers_count or 0,
            follows_count=a.follows_count or 0,
            media_count=a.media_count or 0,
            token_expires_at=a.token_expires_at,
            token_valid=a.is_token_valid(),
            connected_at=a.connected_at,
        )
        for a in result.scalars()
    ]


@router.delete("/{account_id}")
async def delete_account(
    account_id: str,
    user_id: Annotated[str, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Disconnect an account. Its snapshots go with it."""
    account = await _require_account(db, account_id, user_id)
    await db.delete(account)
    await db.commit()
    return {"ok": True}


@router.get("/{account_id}/profile")
async def get_profile(
    account_id: str,
    user_id: Annotated[str, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Refresh and return the account profile."""
    account = await _require_account(db, account_id, user_id)
    return await refresh_profile(db, account)


@router.get("/{account_id}/insights")
async def get_account_insights(
    account_id: str,
    user_id: Annotated[str, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db)],
    period: str = "day",
    since: Optional[str] = None,
    until: Optional[str] = None,
    metric: Optional[str] = None,
):
    """Account-level insights. Defaults to metrics Creator accounts support."""
    credential = await _require_credential(db, account_id, user_id)
    return await fetch_account_insights(
        credential.access_token,
        metrics=metric or DEFAULT_ACCOUNT_METRICS,
        period=period,
        since=since,
        until=until,
    )


@router.get("/{account_id}/media")
async def get_media(
    account_id: str,
    user_id: Annotated[str, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db)],
    limit: int = Query(default=25),
):
    """Recent media in the Graph envelope. Empty when every listing attempt fails."""
    credential = await _require_credential(db, account_id, user_id)
    resolution = await resolve_media(credential, clamp_limit(limit))
    body: dict[str, Any] = {"data": resolution.items}
    if resolution.paging:
        body["paging"] = resolution.paging
    return body


@router.get("/{account_id}/media/detailed", response_model=DetailedMediaResponse)
@limiter.limit(DETAILED_MEDIA_RATE_LIMIT)
async def get_media_detailed(
    request: Request,
    account_id: str,
    background_tasks: BackgroundTasks,
    user_id: Annotated[str, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db)],
    limit: int = Query(default=25),
):
    """Recent media with per-post insights; records today's snapshot."""
    credential = await _require_credential(db, account_id, user_id)
    result = await get_detailed_media(credential, limit, background_tasks)
    return DetailedMediaResponse(**result)


@router.get("/{account_id}/media/{media_id}/insights")
async def get_single_media_insights(
    account_id: str,
    media_id: str,
    user_id: Annotated[str, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Insights for one media item."""
    credential = await _require_credential(db, account_id, user_id)
    data = await fetch_media_insights(media_id, SINGLE_MEDIA_METRICS, credential.access_token)
    return {"data": data}


@router.get("/{account_id}/demographics")
async def get_demographics(
    account_id: str,
    user_id: Annotated[str, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Audience demographics for the last 30 days."""
    credential = await _require_credential(db, account_id, user_id)
    return await fetch_demographics(credential.access_token)


@router.post("/{account_id}/refresh-token", response_model=TokenRefreshResponse)
async def post_refresh_token(
    account_id: str,
    user_id: Annotated[str, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Refresh the account's long-lived token."""
    account = await _require_account(db, account_id, user_id)
    expires_in = await refresh_token(db, account)
    return TokenRefreshResponse(ok=True, expires_in=expires_in)


@router.get("/{account_id}/snapshots", response_model=list[SnapshotResponse])
async def list_snapshots(
    account_id: str,
    user_id: Annotated[str, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db)],
    days: int = Query(default=30, ge=1, le=365),
):
    """Daily snapshot history, newest first."""
    account = await _require_account(db, account_id, user_id)
    since = datetime.now(timezone.utc).date() - timedelta(days=days)
    result = await db.execute(
        select(AccountSnapshot)
        .where(
            AccountSnapshot.account_id == account.id,
            AccountSnapshot.snapshot_date > since,
        )
        .order_by(desc(AccountSnapshot.snapshot_date))
    )
    return [
        SnapshotResponse(
            snapshot_date=s.snapshot_date,
            followers_count=s.followers_count or 0,
            follows_count=s.follows_count or 0,
            media_count=s.media_count or 0,
            avg_engagement_rate=s.avg_engagement_rate or 0.0,
            avg_reach=s.avg_reach or 0.0,
            total_likes=s.total_likes or 0,
            total_comments=s.total_comments or 0,
        )
        for s in result.scalars()
    ]
