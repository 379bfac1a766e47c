"""OAuth state tokens for CSRF protection on the Instagram login flow.

States live in process memory, expire after ten minutes and are single use.
Expired entries are evicted whenever a new state is issued.
"""

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

STATE_TTL = timedelta(minutes=10)


@dataclass
class PendingLogin:
    user_id: str
    expires_at: datetime


_oauth_states: dict[str, PendingLogin] = {}


def _evict_expired(now: datetime) -> None:
    expired = [k for k, v in _oauth_states.items() if v.expires_at <= now]
    for k in expired:
        _oauth_states.pop(k, None)


def issue_state(user_id: str) -> str:
    """Generate a state token bound to the user starting the login."""
    now = datetime.now(timezone.utc)
    _evict_expired(now)
    state = secrets.token_urlsafe(24)
    _oauth_states[state] = PendingLogin(user_id=user_id, expires_at=now + STATE_TTL)
    return state


def consume_state(state: str) -> Optional[str]:
    """Return the user id for a valid state and forget it, else None."""
    pending = _oauth_states.pop(state, None)
    if pending is None:
        return None
    if datetime.now(timezone.utc) >= pending.expires_at:
        return None
    return pending.user_id


def clear_states() -> None:
    _oauth_states.clear()
