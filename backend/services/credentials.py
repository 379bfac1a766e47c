"""Per-account credential lookup for the analytics services."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models.instagram_account import InstagramAccount
from services.token_crypto import InvalidToken, decrypt_token

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccountCredential:
    """Everything the analytics services need to call the API for one account.

    The access token is plaintext and lives only in memory.
    """

    account_id: str
    ig_user_id: str
    access_token: str
    token_expires_at: Optional[datetime] = None
    followers_count: int = 0
    account_type: Optional[str] = None

    def __repr__(self) -> str:
        return f"<AccountCredential {self.account_id} ({self.ig_user_id})>"


async def get_owned_account(
    db: AsyncSession, account_id: str, owner_user_id: str
) -> Optional[InstagramAccount]:
    """Look up an account by id, scoped to its owner."""
    result = await db.execute(
        select(InstagramAccount).where(
            InstagramAccount.id == account_id,
            InstagramAccount.owner_user_id == owner_user_id,
        )
    )
    return result.scalar_one_or_none()


def credential_for(account: InstagramAccount) -> AccountCredential:
    """Decrypt the stored token of an account into an AccountCredential."""
    return AccountCredential(
        account_id=account.id,
        ig_user_id=account.ig_user_id,
        access_token=decrypt_token(account.access_token),
        token_expires_at=account.token_expires_at,
        followers_count=account.followers_count or 0,
        account_type=account.account_type,
    )


async def load_credential(
    db: AsyncSession, account_id: str, owner_user_id: str
) -> Optional[AccountCredential]:
    """Return the credential for an owned account, or None if it doesn't exist."""
    account = await get_owned_account(db, account_id, owner_user_id)
    if account is None:
        return None
    try:
        return credential_for(account)
    except InvalidToken:
        logger.error(f"Stored token for account {account_id} cannot be decrypted")
        raise
