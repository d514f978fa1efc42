"""
ScrapeGuard — REST API Routes.

Challenge issue / verify, client activity reporting, health and
admin inspection endpoints.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Union

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from scrapeguard.mitigation.challenge import ChallengeKind, challenge_manager
from scrapeguard.mitigation.pending import pending_challenges
from scrapeguard.proxy.fingerprint import get_client_ip
from scrapeguard.proxy.handler import traffic
from scrapeguard.storage.database import event_recorder
from scrapeguard.storage.profiles import profile_store
from scrapeguard.storage.redis_client import redis_manager

logger = logging.getLogger("scrapeguard.api")

VERSION = "0.1.0"

challenge_router = APIRouter(prefix="/challenge", tags=["Challenges"])
admin_router = APIRouter(prefix="/admin", tags=["Admin"])
router = APIRouter(tags=["Service"])


# ── Schemas ──────────────────────────────────────────────


class ChallengeResponse(BaseModel):
    type: ChallengeKind
    id: str
    challenge: str


class VerifyRequest(BaseModel):
    id: str = Field(min_length=1)
    type: ChallengeKind
    # Required, but may be null or empty (an untouched honeypot)
    response: Optional[Union[int, float, str]]


class ActivityReport(BaseModel):
    movements: int = Field(gt=0)


# ── Challenges ───────────────────────────────────────────


@challenge_router.get("/{kind}", response_model=ChallengeResponse)
async def issue_challenge(kind: ChallengeKind):
    """Issue a challenge; the expected answer stays server-side."""
    try:
        challenge = await challenge_manager.issue(kind)
    except Exception as exc:
        logger.error("Failed to issue %s challenge: %s", kind.value, exc)
        raise HTTPException(status_code=503, detail="Challenge service unavailable")
    return challenge.to_dict()


@challenge_router.post("/verify")
async def verify_challenge(req: VerifyRequest, request: Request):
    """Verify a response. Each challenge id can be used once."""
    client_ip = get_client_ip(request)
    try:
        success = await challenge_manager.verify_for(client_ip, req.type, req.id, req.response)
    except Exception as exc:
        logger.error("Challenge verification error: %s", exc)
        return JSONResponse(
            status_code=500,
            content={"success": False, "message": "Error verifying challenge"},
        )

    asyncio.create_task(event_recorder.record(
        client_ip,
        "challenge_passed" if success else "challenge_failed",
        path=request.url.path,
        user_agent=request.headers.get("user-agent", ""),
        detail=req.type.value,
    ))

    if success:
        return {"success": True, "message": "Challenge passed successfully"}
    return JSONResponse(
        status_code=403,
        content={"success": False, "message": "Challenge failed"},
    )


@challenge_router.post("/activity")
async def report_activity(report: ActivityReport, request: Request):
    """Count client-side interaction events. Best-effort."""
    client_ip = get_client_ip(request)
    try:
        await profile_store.add_interaction(client_ip, report.movements)
    except Exception:
        logger.debug("Failed to record activity for %s", client_ip, exc_info=True)
    return {"success": True}


# ── Service ──────────────────────────────────────────────


@router.get("/health")
async def health_check():
    """Simple health check."""
    return {
        "status": "healthy",
        "version": VERSION,
        "redis": await redis_manager.health_check(),
    }


# ── Admin ────────────────────────────────────────────────


@admin_router.get("/stats")
async def get_stats():
    """In-process request counters."""
    return traffic.to_dict()


@admin_router.get("/profiles/{identity}")
async def get_profile(identity: str):
    """Inspect a stored client profile."""
    try:
        profile = await profile_store.fetch(identity)
    except Exception as exc:
        logger.error("Failed to read profile for %s: %s", identity, exc)
        raise HTTPException(status_code=503, detail="Profile store unavailable")
    if profile is None:
        raise HTTPException(status_code=404, detail="Profile not found")
    return {
        "profile": profile.to_dict(),
        "pending_challenge": await pending_challenges.get(identity),
    }


@admin_router.get("/events")
async def get_recent_events(limit: int = Query(default=50, ge=1, le=500)):
    """Return recent security events, newest first."""
    try:
        events = await event_recorder.recent(limit)
    except Exception as exc:
        logger.error("Failed to read security events: %s", exc)
        raise HTTPException(status_code=503, detail="Event log unavailable")
    return {"events": events, "count": len(events)}
