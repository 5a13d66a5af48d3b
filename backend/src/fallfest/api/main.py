"""Main FastAPI application for the Fall Fest referral API."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.middleware.base import BaseHTTPMiddleware

from fallfest import __version__
from fallfest.api.errors import referral_error_handler
from fallfest.api.rate_limit import limiter
from fallfest.api.v1.referral import router as referral_router
from fallfest.api.v1.registration import router as registration_router
from fallfest.logging_config import clear_request_context, configure_logging, get_logger
from fallfest.referral.errors import ReferralError
from fallfest.referral.leaderboard import Leaderboard, LeaderboardFeed
from fallfest.referral.pending import REFERRAL_STORAGE_KEY, PendingReferral
from fallfest.referral.service import ReferralService
from fallfest.referral.store import ParticipantStore
from fallfest.settings import settings
from fallfest.storage import build_store

logger = get_logger(__name__)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


class ReferralCaptureMiddleware(BaseHTTPMiddleware):
    """Remember the ``ref`` query parameter on any route.

    The code is stored in a cookie so it survives navigation to the
    registration page.
    """

    async def dispatch(self, request: Request, call_next):
        clear_request_context()
        storage: dict[str, str] = {}
        code = PendingReferral(storage).capture(request.query_params)
        response = await call_next(request)
        already_set = any(
            REFERRAL_STORAGE_KEY in cookie for cookie in response.headers.getlist("set-cookie")
        )
        if code and not already_set:
            response.set_cookie(
                REFERRAL_STORAGE_KEY,
                code,
                max_age=settings.pending_referral_max_age,
                samesite="lax",
                secure=settings.env == "production",
            )
            logger.debug("pending_referral_captured", code=code, path=request.url.path)
        return response


def create_app(store: ParticipantStore | None = None) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        store: Participant store to use; built from settings when omitted

    Returns:
        Configured FastAPI app
    """
    is_production = settings.env == "production"

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("app_starting", env=settings.env, store=settings.store_backend)

        participant_store = store or build_store()
        leaderboard = Leaderboard(participant_store)
        service = ReferralService(participant_store)

        feed = None
        if settings.leaderboard_refresh_seconds > 0:
            feed = LeaderboardFeed(leaderboard)
            service.add_listener(feed.notify_change)
            feed.start()

        app.state.referral_service = service
        app.state.leaderboard = leaderboard
        app.state.leaderboard_feed = feed

        yield

        logger.info("app_shutting_down")
        if feed is not None:
            await feed.stop()
        if store is None:
            await participant_store.close()

    app = FastAPI(
        title="Qiskit Fall Fest API",
        description="Registration and referral program",
        version=__version__,
        docs_url=None if is_production else "/api/docs",
        redoc_url=None if is_production else "/api/redoc",
        openapi_url=None if is_production else "/api/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(ReferralCaptureMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)

    allowed_origins = [
        origin.strip()
        for origin in settings.allowed_origins.split(",")
        if origin.strip()
    ]
    if is_production and "*" in allowed_origins:
        logger.error("cors_wildcard_blocked", message="Wildcard CORS not allowed in production")
        allowed_origins = []

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept"],
        max_age=3600,
    )

    app.state.limiter = limiter

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        return JSONResponse(
            status_code=429,
            content={"detail": "Too many requests. Please try again later."},
        )

    app.add_exception_handler(ReferralError, referral_error_handler)

    app.include_router(registration_router, prefix="/api/v1")
    app.include_router(referral_router, prefix="/api/v1")

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": __version__,
            "env": settings.env,
        }

    return app


configure_logging()

# Create app instance
app = create_app()
