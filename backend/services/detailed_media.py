"""Detailed media orchestration: list media, enrich with insights, snapshot.

get_detailed_media always returns a well-formed result. Upstream failures
turn into an empty item list or empty insight mappings, and the snapshot is
written after the response has been produced.
"""

import asyncio
import logging
from typing import Any, Optional

from fastapi import BackgroundTasks

from config import get_settings
from services.credentials import AccountCredential
from services.insight_enricher import enrich_media
from services.media_resolver import resolve_media
from services.snapshot_writer import write_media_snapshot

logger = logging.getLogger(__name__)
settings = get_settings()

# Strong references to fire-and-forget snapshot tasks
_pending_snapshots: set[asyncio.Task] = set()


def clamp_limit(limit: Optional[int]) -> int:
    """Clamp a requested media limit to media_limit_max, defaulting when unset."""
    if not limit or limit < 1:
        return settings.media_limit_default
    return min(limit, settings.media_limit_max)


def _schedule_snapshot(
    credential: AccountCredential,
    items: list[dict],
    background_tasks: Optional[BackgroundTasks],
) -> None:
    if background_tasks is not None:
        background_tasks.add_task(write_media_snapshot, credential, items)
        return

    task = asyncio.create_task(write_media_snapshot(credential, items))
    _pending_snapshots.add(task)
    task.add_done_callback(_pending_snapshots.discard)


async def get_detailed_media(
    credential: AccountCredential,
    limit: Optional[int] = None,
    background_tasks: Optional[BackgroundTasks] = None,
) -> dict[str, Any]:
    """Fetch recent media with per-post insights for one account.

    Returns {items, followers_count, fetched_count, source_endpoint}.
    """
    limit = clamp_limit(limit)
    empty = {
        "items": [],
        "followers_count": credential.followers_count,
        "fetched_count": 0,
        "source_endpoint": None,
    }

    try:
        resolution = await resolve_media(credential, limit)
        if not resolution.items:
            return empty

        items = await enrich_media(
            resolution.items, credential, batch_size=settings.insight_batch_size
        )
    except Exception:
        logger.exception(f"Detailed media failed for account {credential.account_id}")
        return empty

    _schedule_snapshot(credential, items, background_tasks)

    return {
        "items": items,
        "followers_count": credential.followers_count,
        "fetched_count": len(items),
        "source_endpoint": resolution.endpoint,
    }
