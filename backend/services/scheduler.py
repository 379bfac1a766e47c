"""Background scheduler for periodic tasks.

Uses APScheduler to keep long-lived tokens fresh and to record daily
profile snapshots for every connected account.
"""

import logging
from datetime import datetime, timedelta, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import or_, select

from config import get_settings
from database import async_session
from models.instagram_account import InstagramAccount
from services.account_service import refresh_profile, refresh_token

logger = logging.getLogger(__name__)
settings = get_settings()

# Global scheduler instance
scheduler = AsyncIOScheduler()


async def _account_ids(session_factory, *criteria) -> list[str]:
    async with session_factory() as db:
        result = await db.execute(select(InstagramAccount.id).where(*criteria))
        return list(result.scalars().all())


async def refresh_expiring_tokens(session_factory=async_session) -> int:
    """Refresh tokens that expire within the refresh window.

    Already-expired tokens cannot be refreshed and are skipped.
    """
    now = datetime.now(timezone.utc)
    cutoff = now + timedelta(days=settings.token_refresh_window_days)
    refreshed = 0

    account_ids = await _account_ids(
        session_factory,
        InstagramAccount.token_expires_at.is_not(None),
        InstagramAccount.token_expires_at <= cutoff,
    )

    for account_id in account_ids:
        async with session_factory() as db:
            account = await db.get(InstagramAccount, account_id)
            if account is None:
                continue
            if not account.is_token_valid():
                logger.warning(f"Token for @{account.username} already expired, skipping refresh")
                continue
            try:
                await refresh_token(db, account)
                refreshed += 1
            except Exception as e:
                logger.error(f"Failed to refresh token for account {account_id}: {e}")

    logger.info(f"Token refresh sweep complete: {refreshed} refreshed")
    return refreshed


async def snapshot_all_profiles(session_factory=async_session) -> int:
    """Refresh every account's profile, which also records today's snapshot."""
    now = datetime.now(timezone.utc)
    synced = 0

    account_ids = await _account_ids(
        session_factory,
        or_(
            InstagramAccount.token_expires_at.is_(None),
            InstagramAccount.token_expires_at > now,
        ),
    )

    for account_id in account_ids:
        async with session_factory() as db:
            account = await db.get(InstagramAccount, account_id)
            if account is None:
                continue
            try:
                await refresh_profile(db, account)
                synced += 1
            except Exception as e:
                logger.error(f"Failed to snapshot profile for account {account_id}: {e}")

    logger.info(f"Profile snapshot sweep complete: {synced} accounts")
    return synced


def start_scheduler():
    """Start the background scheduler with all jobs."""
    if scheduler.running:
        print("✓ Scheduler already running")
        return

    scheduler.add_job(
        refresh_expiring_tokens,
        trigger=IntervalTrigger(hours=12),
        id="instagram_token_refresh",
        name="Refresh expiring Instagram tokens",
        replace_existing=True,
    )

    scheduler.add_job(
        snapshot_all_profiles,
        trigger=IntervalTrigger(hours=24),
        id="instagram_profile_snapshots",
        name="Record daily Instagram profile snapshots",
        replace_existing=True,
    )

    scheduler.start()
    print("✓ Background scheduler started (token refresh every 12h, snapshots every 24h)")


def stop_scheduler():
    """Stop the background scheduler."""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Background scheduler stopped")
