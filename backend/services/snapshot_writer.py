"""Daily account snapshots.

Snapshots are upserted per (account, UTC day): the latest write of the day
wins. Writes recompute their values from scratch and never increment, so
overlapping runs for the same account are safe.

Snapshot persistence is best-effort. The public writers here log failures
and never raise into the request or job that triggered them.
"""

import logging
from collections.abc import Callable
from datetime import date, datetime, timezone
from typing import Any, Optional

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from database import async_session
from models.account_snapshot import AccountSnapshot
from models.instagram_account import InstagramAccount
from services.credentials import AccountCredential

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AsyncSession]

_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def today_utc() -> date:
    return datetime.now(timezone.utc).date()


def compute_media_aggregates(items: list[dict], followers_count: int) -> dict[str, Any]:
    """Derive snapshot aggregates from enriched media items.

    avg_engagement_rate is (likes + comments) per item as a percentage of
    followers; zero when the account has no followers.
    """
    item_count = max(len(items), 1)
    total_likes = sum(item.get("like_count") or 0 for item in items)
    total_comments = sum(item.get("comments_count") or 0 for item in items)
    total_reach = sum((item.get("insights") or {}).get("reach") or 0 for item in items)

    if followers_count:
        avg_engagement_rate = (total_likes + total_comments) / item_count / followers_count * 100
    else:
        avg_engagement_rate = 0.0

    return {
        "total_likes": total_likes,
        "total_comments": total_comments,
        "avg_engagement_rate": avg_engagement_rate,
        "avg_reach": total_reach / item_count,
    }


async def upsert_snapshot(
    session: AsyncSession,
    account_id: str,
    snapshot_date: date,
    values: dict[str, Any],
) -> None:
    """Insert or overwrite the snapshot of `account_id` for `snapshot_date`.

    Only the columns in `values` are overwritten on conflict. Does not commit.
    """
    dialect = session.get_bind().dialect.name
    insert = _INSERTS.get(dialect)
    if insert is None:
        raise NotImplementedError(f"Snapshot upsert not supported on {dialect}")

    stmt = insert(AccountSnapshot).values(
        account_id=account_id,
        snapshot_date=snapshot_date,
        **values,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["account_id", "snapshot_date"],
        set_={**values, "updated_at": datetime.now(timezone.utc)},
    )
    await session.execute(stmt)


def profile_counts(account: InstagramAccount) -> dict[str, int]:
    return {
        "followers_count": account.followers_count or 0,
        "follows_count": account.follows_count or 0,
        "media_count": account.media_count or 0,
    }


async def record_profile_snapshot(
    session: AsyncSession,
    account: InstagramAccount,
    snapshot_date: Optional[date] = None,
) -> bool:
    """Upsert today's profile counts for an account and commit.

    Returns False (after logging) if the write failed.
    """
    try:
        await upsert_snapshot(
            session, account.id, snapshot_date or today_utc(), profile_counts(account)
        )
        await session.commit()
        return True
    except Exception as e:
        logger.error(f"Failed to record profile snapshot for account {account.id}: {e}")
        await session.rollback()
        return False


async def write_media_snapshot(
    credential: AccountCredential,
    items: list[dict],
    snapshot_date: Optional[date] = None,
    session_factory: Optional[SessionFactory] = None,
) -> bool:
    """Aggregate enriched media into today's snapshot.

    Opens its own session so it can run after the request has finished.
    Never raises; returns whether the snapshot was written.
    """
    factory = session_factory or async_session
    snapshot_date = snapshot_date or today_utc()

    try:
        async with factory() as session:
            account = await session.get(InstagramAccount, credential.account_id)
            if account is None:
                logger.info(f"Account {credential.account_id} is gone, skipping snapshot")
                return False

            values = {
                **profile_counts(account),
                "followers_count": credential.followers_count,
                **compute_media_aggregates(items, credential.followers_count),
            }
            await upsert_snapshot(session, account.id, snapshot_date, values)
            await session.commit()

        logger.info(
            f"Snapshot saved for account {credential.account_id} on {snapshot_date}: "
            f"engagement={values['avg_engagement_rate']:.2f}% reach={values['avg_reach']:.0f}"
        )
        return True
    except Exception as e:
        logger.error(f"Failed to save snapshot for account {credential.account_id}: {e}")
        return False
