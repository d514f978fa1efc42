"""
ScrapeGuard — Application Entry Point.

Starts the FastAPI application with the anti-scraping interceptor,
challenge API and the catch-all reverse proxy.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from scrapeguard.api.routes import VERSION, admin_router, challenge_router, router as api_router
from scrapeguard.config import settings
from scrapeguard.proxy.handler import close_http_client, router as proxy_router
from scrapeguard.proxy.interceptor import AntiScrapingMiddleware
from scrapeguard.storage.database import event_recorder
from scrapeguard.storage.redis_client import redis_manager

logger = logging.getLogger("scrapeguard")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup / shutdown lifecycle."""
    # ── Startup ──────────────────────────────────────────
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper()),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        force=True,
    )
    logger.info("ScrapeGuard v%s starting…", VERSION)

    # Connect Redis (graceful: without it every client gets a fresh profile)
    try:
        await redis_manager.connect()
    except Exception as exc:
        logger.warning(
            "Redis unavailable (%s); profiles and challenges disabled. "
            "Set SCRAPEGUARD_REDIS_URL for full protection.",
            exc,
        )

    try:
        await event_recorder.init()
    except Exception as exc:
        logger.warning("Security event log unavailable (%s)", exc)

    logger.info(
        "Protecting %s | suspicious >= %.2f | ban >= %.2f",
        settings.target_url,
        settings.suspicious_threshold,
        settings.ban_threshold,
    )

    yield

    # ── Shutdown ─────────────────────────────────────────
    await close_http_client()
    await redis_manager.disconnect()
    await event_recorder.dispose()
    logger.info("ScrapeGuard stopped.")


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies are a 400, not FastAPI's default 422."""
    return JSONResponse(
        status_code=400,
        content={"success": False, "message": "Invalid request parameters"},
    )


def create_app() -> FastAPI:
    """Factory for the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        version=VERSION,
        description="Behavioral anti-scraping gateway",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(AntiScrapingMiddleware)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    # ── Routers ──────────────────────────────────────────
    app.include_router(api_router, prefix="/api")
    app.include_router(challenge_router, prefix="/api")
    app.include_router(admin_router, prefix="/api")

    # Catch-all reverse proxy, must be last
    app.include_router(proxy_router)

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "scrapeguard.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level,
    )
