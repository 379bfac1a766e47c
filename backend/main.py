"""InstaMetrics - FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from slowapi.errors import RateLimitExceeded

from config import get_settings
from database import engine
from middleware.rate_limit import limiter, rate_limit_exceeded_handler
from models import Base
from routers import accounts_router, oauth_router
from services.instagram_service import InstagramAPIError
from services.scheduler import start_scheduler, stop_scheduler
from services.token_crypto import InvalidToken

logger = logging.getLogger(__name__)
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - create tables on startup, cleanup on shutdown."""
    # Startup: create database tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    print(f"✓ InstaMetrics running at {settings.base_url}")
    print(f"  OAuth callback: {settings.oauth_redirect_uri}")
    print(f"  Graph API base: {settings.graph_base_url}")

    if not settings.instagram_app_id or not settings.instagram_app_secret:
        print("⚠ Missing INSTAGRAM_APP_ID or INSTAGRAM_APP_SECRET")
        print("  The app will run but OAuth login won't work.")

    # Security check: Warn if using default secrets in production
    if not settings.debug and settings.jwt_secret == "dev-secret-change-in-production":
        print("⚠ SECURITY WARNING: Using default JWT secret in production!")
        print("  Set JWT_SECRET environment variable to a secure random value.")
    if not settings.debug and settings.token_encryption_key == "dev-token-key-change-in-production":
        print("⚠ SECURITY WARNING: Using default token encryption key in production!")
        print("  Set TOKEN_ENCRYPTION_KEY environment variable to a Fernet key.")

    # Start background scheduler for periodic tasks
    start_scheduler()

    yield

    # Shutdown: stop scheduler and dispose of the connection pool
    stop_scheduler()
    await engine.dispose()


app = FastAPI(
    title="InstaMetrics API",
    description="Instagram Business/Creator analytics backend",
    version="0.1.0",
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)


@app.exception_handler(InstagramAPIError)
async def instagram_api_error_handler(request: Request, exc: InstagramAPIError):
    """Render Instagram API failures with the upstream status."""
    logger.error(f"Instagram API error on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code or 500, content=exc.to_dict())


@app.exception_handler(InvalidToken)
async def invalid_token_handler(request: Request, exc: InvalidToken):
    """A stored token can't be decrypted with the current key."""
    return JSONResponse(
        status_code=409,
        content={"error": "Stored access token is unreadable. Reconnect the account."},
    )


# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(accounts_router)
app.include_router(oauth_router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "instametrics"}


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "InstaMetrics API",
        "version": "0.1.0",
        "docs": "/docs",
    }


PRIVACY_POLICY_HTML = """<!DOCTYPE html>
<html lang="en">
<head><meta charset="UTF-8"><title>Privacy Policy - InstaMetrics</title>
<style>body{font-family:sans-serif;max-width:700px;margin:40px auto;padding:20px;color:#333;line-height:1.6;}</style></head>
<body>
  <h1>Privacy Policy</h1>
  <p>InstaMetrics is a personal analytics tool for Instagram accounts.</p>
  <h2>Data we collect</h2>
  <p>We only access data from Instagram accounts you choose to connect: metrics, posts and audience data provided by the Instagram API.</p>
  <h2>How we use it</h2>
  <p>Data is used only to show your metrics in the dashboard. We do not share, sell or transfer it to third parties.</p>
  <h2>Storage</h2>
  <p>Access tokens are stored encrypted on the server. You can disconnect an account at any time.</p>
  <h2>Contact</h2>
  <p>For privacy questions, contact the administrator of this instance.</p>
</body></html>
"""


@app.get("/privacy", response_class=HTMLResponse)
async def privacy_policy():
    """Privacy policy page (required for Meta app review)."""
    return PRIVACY_POLICY_HTML
