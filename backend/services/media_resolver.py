"""Media listing with endpoint and field-set fallback.

Some Business Login tokens don't resolve `me/media` correctly, and
`media_url` is intermittently unavailable for some media types. The resolver
walks (endpoint, fields) combinations in priority order, one at a time, and
returns the first listing that succeeds.
"""

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Optional

from services.credentials import AccountCredential
from services.instagram_service import InstagramAPIError, fetch_media_page

logger = logging.getLogger(__name__)

FULL_MEDIA_FIELDS = (
    "id,caption,media_type,media_product_type,media_url,thumbnail_url,"
    "permalink,timestamp,like_count,comments_count"
)
# media_url dropped: it fails on some media types
SAFE_MEDIA_FIELDS = (
    "id,caption,media_type,media_product_type,thumbnail_url,"
    "permalink,timestamp,like_count,comments_count"
)
MEDIA_FIELD_SETS: tuple[str, ...] = (FULL_MEDIA_FIELDS, SAFE_MEDIA_FIELDS)

MediaFetcher = Callable[[str, str, int, str], Awaitable[dict]]


@dataclass
class MediaResolution:
    """Outcome of a media listing cascade."""

    items: list[dict] = field(default_factory=list)
    endpoint: Optional[str] = None
    fields: Optional[str] = None
    errors: list[dict] = field(default_factory=list)
    # Graph paging cursors of the successful listing
    paging: Optional[dict] = None

    @property
    def ok(self) -> bool:
        return self.endpoint is not None


def media_endpoints(credential: AccountCredential) -> list[str]:
    """Candidate media endpoints, the account's own id first."""
    return [f"{credential.ig_user_id}/media", "me/media"]


async def resolve_media(
    credential: AccountCredential,
    limit: int,
    field_sets: Sequence[str] = MEDIA_FIELD_SETS,
    fetch: MediaFetcher = fetch_media_page,
) -> MediaResolution:
    """Return the first successful media listing for the account.

    Never raises for upstream failures: if every combination fails the
    result has no items and carries one error entry per attempt.
    """
    errors: list[dict] = []

    for endpoint in media_endpoints(credential):
        for fields in field_sets:
            try:
                page = await fetch(endpoint, fields, limit, credential.access_token)
            except InstagramAPIError as e:
                logger.warning(
                    f"Media attempt failed ({endpoint}, fields={fields[:30]}...): {e.message}"
                )
                errors.append({
                    "endpoint": endpoint,
                    "fields": fields,
                    "message": e.message,
                    "code": e.code,
                })
                continue

            items = page.get("data") or []
            logger.info(f"Media OK via {endpoint} ({len(items)} items)")
            return MediaResolution(
                items=items,
                endpoint=endpoint,
                fields=fields,
                errors=errors,
                paging=page.get("paging"),
            )

    logger.error(
        f"All media fetch attempts failed for account {credential.account_id} "
        f"({len(errors)} attempts)"
    )
    return MediaResolution(errors=errors)
