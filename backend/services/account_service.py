"""Connected account lifecycle: connect, profile refresh, token refresh."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models.instagram_account import InstagramAccount
from services.instagram_service import (
    PROFILE_FIELDS,
    PROFILE_FIELDS_WITH_BIO,
    exchange_code_for_token,
    exchange_long_lived_token,
    fetch_profile,
    refresh_long_lived_token,
)
from services.snapshot_writer import record_profile_snapshot
from services.token_crypto import decrypt_token, encrypt_token

logger = logging.getLogger(__name__)

PROFILE_ATTRS = (
    "username",
    "name",
    "account_type",
    "profile_picture_url",
    "biography",
    "followers_count",
    "follows_count",
    "media_count",
)


def _expires_at(expires_in: Optional[int]) -> Optional[datetime]:
    if not expires_in:
        return None
    return datetime.now(timezone.utc) + timedelta(seconds=int(expires_in))


def apply_profile(account: InstagramAccount, profile: dict) -> None:
    """Copy profile fields onto an account. Missing fields are left as is."""
    for attr in PROFILE_ATTRS:
        if attr in profile:
            setattr(account, attr, profile[attr])
    if not account.name:
        account.name = account.username


async def connect_account(db: AsyncSession, owner_user_id: str, code: str) -> InstagramAccount:
    """Complete Instagram Business Login for an authorization code.

    Exchanges the code for a long-lived token, fetches the profile and
    upserts the account by (owner, Instagram user id).
    """
    short = await exchange_code_for_token(code)
    logger.info("Short-lived Instagram token obtained")

    long_lived = await exchange_long_lived_token(short["access_token"])
    access_token = long_lived["access_token"]

    profile = await fetch_profile(access_token, PROFILE_FIELDS)
    ig_user_id = str(profile.get("user_id") or short.get("user_id"))
    logger.info(f"Connecting @{profile.get('username')} (type: {profile.get('account_type')})")

    result = await db.execute(
        select(InstagramAccount).where(
            InstagramAccount.owner_user_id == owner_user_id,
            InstagramAccount.ig_user_id == ig_user_id,
        )
    )
    account = result.scalar_one_or_none()

    if account is None:
        account = InstagramAccount(
            owner_user_id=owner_user_id,
            ig_user_id=ig_user_id,
            access_token=encrypt_token(access_token),
        )
        db.add(account)
    else:
        account.access_token = encrypt_token(access_token)
        account.connected_at = datetime.now(timezone.utc)

    account.token_expires_at = _expires_at(long_lived.get("expires_in"))
    apply_profile(account, profile)
    await db.commit()
    await db.refresh(account)

    if not await record_profile_snapshot(db, account):
        # The failed snapshot rolled back the session and expired the account
        await db.refresh(account)
    return account


async def refresh_profile(db: AsyncSession, account: InstagramAccount) -> dict:
    """Refresh an account's profile from the API, persist it and snapshot the counts."""
    profile = await fetch_profile(decrypt_token(account.access_token), PROFILE_FIELDS_WITH_BIO)
    apply_profile(account, profile)
    account.updated_at = datetime.now(timezone.utc)
    await db.commit()

    await record_profile_snapshot(db, account)
    return profile


async def refresh_token(db: AsyncSession, account: InstagramAccount) -> int:
    """Refresh an account's long-lived token. Returns the new expires_in."""
    refreshed = await refresh_long_lived_token(decrypt_token(account.access_token))
    expires_in = int(refreshed.get("expires_in") or 0)

    account.access_token = encrypt_token(refreshed["access_token"])
    account.token_expires_at = _expires_at(expires_in)
    account.updated_at = datetime.now(timezone.utc)
    await db.commit()

    logger.info(f"Token refreshed for @{account.username}, expires in {expires_in}s")
    return expires_in
