"""Per-media insight enrichment.

Media items are enriched in fixed-size batches: items inside a batch are
fetched concurrently, batches run one after another. This keeps the number
of in-flight insight calls at `batch_size` or below.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from services.credentials import AccountCredential
from services.instagram_service import (
    InstagramAPIError,
    extract_metric_value,
    fetch_media_insights,
)

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 5

COMMON_MEDIA_METRICS = ("reach", "saved", "likes", "comments", "shares", "total_interactions")
# Reels also report plays as views
REELS_MEDIA_METRICS = COMMON_MEDIA_METRICS + ("views",)
# Supported by every media type and token kind
MINIMAL_MEDIA_METRICS = ("reach", "likes", "comments", "total_interactions")

InsightFetcher = Callable[[str, str, str], Awaitable[list[dict]]]


def is_reel(item: dict) -> bool:
    """Short-form video is tagged by media_product_type."""
    return (item.get("media_product_type") or "").upper() == "REELS"


def metrics_for(item: dict) -> tuple[str, ...]:
    """Pick the metric set for a media item."""
    return REELS_MEDIA_METRICS if is_reel(item) else COMMON_MEDIA_METRICS


def parse_insights(points: list[dict]) -> dict[str, int | float]:
    """Map insights data points to {metric_name: value}."""
    insights: dict[str, int | float] = {}
    for point in points:
        name = point.get("name")
        if name:
            insights[name] = extract_metric_value(point)
    return insights


async def enrich_item(
    item: dict,
    credential: AccountCredential,
    fetch: InsightFetcher = fetch_media_insights,
) -> dict:
    """Return a copy of `item` with an `insights` mapping.

    Falls back to the minimal metric set once; if that fails too the item
    keeps an empty mapping.
    """
    media_id = item.get("id", "")
    enriched = {**item, "insights": {}}

    try:
        points = await fetch(media_id, ",".join(metrics_for(item)), credential.access_token)
        enriched["insights"] = parse_insights(points)
        return enriched
    except InstagramAPIError as e:
        logger.warning(f"Insights failed for media {media_id}, retrying minimal set: {e.message}")

    try:
        points = await fetch(media_id, ",".join(MINIMAL_MEDIA_METRICS), credential.access_token)
        enriched["insights"] = parse_insights(points)
    except InstagramAPIError as e:
        logger.warning(f"Minimal insights failed for media {media_id}: {e.message}")

    return enriched


async def enrich_media(
    items: list[dict],
    credential: AccountCredential,
    batch_size: int = DEFAULT_BATCH_SIZE,
    fetch: InsightFetcher = fetch_media_insights,
) -> list[dict]:
    """Enrich every item with per-media insights.

    Every input item appears in the output; callers must not rely on its
    order.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")

    enriched: list[dict] = []

    for start in range(0, len(items), batch_size):
        batch = items[start:start + batch_size]
        results = await asyncio.gather(
            *(enrich_item(item, credential, fetch) for item in batch),
            return_exceptions=True,
        )

        for item, result in zip(batch, results):
            if isinstance(result, BaseException):
                logger.error(f"Unexpected error enriching media {item.get('id')}: {result}")
                enriched.append({**item, "insights": {}})
            else:
                enriched.append(result)

    logger.info(f"Enriched {len(enriched)} media items in batches of {batch_size}")
    return enriched
