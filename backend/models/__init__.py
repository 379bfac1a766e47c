"""Database models."""

from database import Base

from models.instagram_account import InstagramAccount
from models.account_snapshot import AccountSnapshot

__all__ = [
    "Base",
    "InstagramAccount",
    "AccountSnapshot",
]
