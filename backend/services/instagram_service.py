"""Instagram Graph API service.

Thin async wrappers around the Instagram API with Instagram Login
(graph.instagram.com). Every wrapper raises InstagramAPIError on a failed
call so callers can decide whether a failure is fatal or just one more
fallback attempt.
"""

import logging
from typing import Any, Optional
from urllib.parse import urlencode

import httpx

from config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

IG_AUTHORIZE_URL = "https://www.instagram.com/oauth/authorize"
# The code exchange endpoint has no version prefix
IG_TOKEN_URL = "https://api.instagram.com/oauth/access_token"

PROFILE_FIELDS = (
    "user_id,username,name,account_type,profile_picture_url,"
    "followers_count,follows_count,media_count"
)
PROFILE_FIELDS_WITH_BIO = f"{PROFILE_FIELDS},biography"

# Creator accounts reject follows_and_unfollows and profile_views
DEFAULT_ACCOUNT_METRICS = "reach,views,accounts_engaged"

DEMOGRAPHIC_METRICS = (
    "engaged_audience_demographics,reached_audience_demographics,follower_demographics"
)

SINGLE_MEDIA_METRICS = "reach,views,saved,shares,likes,comments,total_interactions"


class InstagramAPIError(Exception):
    """A failed call to the Instagram API."""

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        error_type: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.error_type = error_type
        self.status_code = status_code

    def to_dict(self) -> dict:
        return {"error": self.message, "type": self.error_type, "code": self.code}


def _error_from_response(response: httpx.Response) -> InstagramAPIError:
    """Build an InstagramAPIError from a Graph error envelope."""
    try:
        body = response.json()
    except ValueError:
        body = {}

    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return InstagramAPIError(
            error.get("message") or response.text,
            code=error.get("code"),
            error_type=error.get("type"),
            status_code=response.status_code,
        )
    # The OAuth endpoints use a flat envelope
    if isinstance(body, dict) and body.get("error_message"):
        return InstagramAPIError(
            body["error_message"],
            code=body.get("code"),
            error_type=body.get("error_type"),
            status_code=response.status_code,
        )
    return InstagramAPIError(
        f"Instagram API returned {response.status_code}",
        status_code=response.status_code,
    )


async def _request(
    method: str,
    url: str,
    *,
    params: Optional[dict] = None,
    data: Optional[dict] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> dict:
    """Issue one request and return the decoded JSON body.

    Reuses `client` when given, otherwise opens a short-lived client.
    """
    if client is None:
        async with httpx.AsyncClient(timeout=settings.graph_timeout_seconds) as own_client:
            return await _request(method, url, params=params, data=data, client=own_client)

    try:
        response = await client.request(method, url, params=params, data=data)
    except httpx.HTTPError as e:
        raise InstagramAPIError(f"{type(e).__name__}: {e}") from e

    if not response.is_success:
        raise _error_from_response(response)

    try:
        body = response.json()
    except ValueError as e:
        raise InstagramAPIError(
            "Invalid JSON in Instagram API response",
            status_code=response.status_code,
        ) from e

    if not isinstance(body, dict):
        raise InstagramAPIError(
            "Unexpected Instagram API response shape",
            status_code=response.status_code,
        )
    return body


def _data_list(body: dict) -> list[dict]:
    """Return the `data` array of a Graph list response.

    A missing or null `data` is an empty list; any other non-list is an error.
    """
    data = body.get("data")
    if data is None:
        return []
    if not isinstance(data, list):
        raise InstagramAPIError(
            f"Expected a data list, got {type(data).__name__}"
        )
    return data


# ============== OAuth ==============

def build_authorize_url(state: str) -> str:
    """Build the Instagram Business Login authorization URL."""
    if not settings.instagram_app_id:
        raise ValueError("INSTAGRAM_APP_ID not configured")

    params = {
        "enable_fb_login": "0",
        "force_authentication": "1",
        "client_id": settings.instagram_app_id,
        "redirect_uri": settings.oauth_redirect_uri,
        "scope": settings.instagram_scopes,
        "response_type": "code",
        "state": state,
    }
    return f"{IG_AUTHORIZE_URL}?{urlencode(params)}"


async def exchange_code_for_token(code: str) -> dict:
    """Exchange an authorization code for a short-lived token.

    Returns {access_token, user_id}.
    """
    return await _request(
        "POST",
        IG_TOKEN_URL,
        data={
            "client_id": settings.instagram_app_id,
            "client_secret": settings.instagram_app_secret,
            "grant_type": "authorization_code",
            "redirect_uri": settings.oauth_redirect_uri,
            "code": code,
        },
    )


async def exchange_long_lived_token(short_lived_token: str) -> dict:
    """Exchange a short-lived token for a 60-day token.

    Returns {access_token, token_type, expires_in}.
    """
    return await _request(
        "GET",
        f"{settings.graph_base_url}/access_token",
        params={
            "grant_type": "ig_exchange_token",
            "client_secret": settings.instagram_app_secret,
            "access_token": short_lived_token,
        },
    )


async def refresh_long_lived_token(access_token: str) -> dict:
    """Refresh a long-lived token. Returns {access_token, token_type, expires_in}."""
    return await _request(
        "GET",
        f"{settings.graph_base_url}/refresh_access_token",
        params={
            "grant_type": "ig_refresh_token",
            "access_token": access_token,
        },
    )


# ============== Account ==============

async def fetch_profile(access_token: str, fields: str = PROFILE_FIELDS) -> dict:
    """Fetch the profile of the account that owns the token."""
    profile = await _request(
        "GET",
        f"{settings.graph_base_url}/me",
        params={"fields": fields, "access_token": access_token},
    )
    logger.info(
        f"Instagram profile fetched for @{profile.get('username')}: "
        f"{profile.get('followers_count', 0)} followers"
    )
    return profile


async def fetch_account_insights(
    access_token: str,
    metrics: str = DEFAULT_ACCOUNT_METRICS,
    period: str = "day",
    since: Optional[str] = None,
    until: Optional[str] = None,
) -> dict:
    """Fetch account-level insights.

    One unsupported metric fails the whole bulk call, so on failure each
    metric is requested on its own and the successes are merged. If none
    succeed, the original error is raised.
    """
    url = f"{settings.graph_base_url}/me/insights"
    params: dict[str, Any] = {
        "metric": metrics,
        "period": period,
        "access_token": access_token,
    }
    if since:
        params["since"] = since
    if until:
        params["until"] = until

    try:
        return await _request("GET", url, params=params)
    except InstagramAPIError as bulk_error:
        logger.warning(f"Bulk insights failed ({bulk_error.message}), trying individual metrics")

        data: list[dict] = []
        async with httpx.AsyncClient(timeout=settings.graph_timeout_seconds) as client:
            for metric in (m.strip() for m in metrics.split(",")):
                if not metric:
                    continue
                try:
                    body = await _request(
                        "GET", url, params={**params, "metric": metric}, client=client
                    )
                    data.extend(_data_list(body))
                except InstagramAPIError as e:
                    logger.warning(f"  metric {metric!r} failed: {e.message}")

        if data:
            return {"data": data}
        raise bulk_error


async def fetch_demographics(access_token: str) -> dict:
    """Fetch engaged, reached and follower demographics for the last 30 days."""
    return await _request(
        "GET",
        f"{settings.graph_base_url}/me/insights",
        params={
            "metric": DEMOGRAPHIC_METRICS,
            "period": "lifetime",
            "metric_type": "total_value",
            "timeframe": "last_30_days",
            "access_token": access_token,
        },
    )


# ============== Media ==============

async def fetch_media_page(
    endpoint: str,
    fields: str,
    limit: int,
    access_token: str,
    client: Optional[httpx.AsyncClient] = None,
) -> dict:
    """Fetch one page of media from `endpoint` (e.g. "me/media").

    Returns the Graph envelope with `data` normalized to a list, so paging
    cursors pass through. Fields missing from individual items are not an
    error; a failed call or a malformed `data` raises.
    """
    body = await _request(
        "GET",
        f"{settings.graph_base_url}/{endpoint}",
        params={"fields": fields, "limit": limit, "access_token": access_token},
        client=client,
    )
    return {**body, "data": _data_list(body)}


async def fetch_media_insights(
    media_id: str,
    metrics: str,
    access_token: str,
    client: Optional[httpx.AsyncClient] = None,
) -> list[dict]:
    """Fetch insight metric points for one media item."""
    body = await _request(
        "GET",
        f"{settings.graph_base_url}/{media_id}/insights",
        params={"metric": metrics, "access_token": access_token},
        client=client,
    )
    return _data_list(body)


def extract_metric_value(point: dict) -> int | float:
    """Read a metric value from an insights data point.

    Period metrics carry `values[0].value`, lifetime totals carry
    `total_value.value`. Anything else counts as zero.
    """
    values = point.get("values") or []
    if values and isinstance(values[0], dict) and values[0].get("value") is not None:
        return values[0]["value"]

    total = point.get("total_value")
    if isinstance(total, dict) and total.get("value") is not None:
        return total["value"]

    return 0
