"""Routers package."""

from .accounts import router as accounts_router
from .oauth import router as oauth_router

__all__ = [
    "accounts_router",
    "oauth_router",
]
