"""
ScrapeGuard — Request Interceptor.

ASGI middleware that runs every request through the detection engine
before it reaches a route, and attaches the decision to
``request.state.scrape_decision``.

Banned clients get a 429 with a ``retryAfter`` hint. Challenged clients
are let through with an ``X-Challenge-Required`` response header.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from scrapeguard.config import settings
from scrapeguard.detection.engine import Action, Decision, DetectionEngine, detection_engine
from scrapeguard.mitigation.pending import PendingChallenges, pending_challenges
from scrapeguard.proxy.fingerprint import extract_request_info, get_client_ip
from scrapeguard.proxy.handler import traffic
from scrapeguard.storage.database import event_recorder

logger = logging.getLogger("scrapeguard.proxy.interceptor")

CHALLENGE_HEADER = "X-Challenge-Required"


class AntiScrapingMiddleware(BaseHTTPMiddleware):
    """Allow / challenge / ban gate in front of every route."""

    def __init__(
        self,
        app: ASGIApp,
        engine: Optional[DetectionEngine] = None,
        pending: Optional[PendingChallenges] = None,
    ) -> None:
        super().__init__(app)
        self.engine = engine or detection_engine
        self.pending = pending or pending_challenges

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        client_ip = get_client_ip(request)
        path = request.url.path
        traffic.record_request()

        try:
            info = extract_request_info(request, client_ip)
            decision = await self.engine.inspect(info)
        except Exception:
            logger.exception("Anti-scraping middleware error for %s", client_ip)
            decision = Decision(action=Action.ALLOW)

        request.state.scrape_decision = decision
        ua = request.headers.get("user-agent", "")

        if not decision.allow:
            now = self.engine.clock()
            if decision.action == Action.BAN:
                traffic.banned_requests += 1
                asyncio.create_task(event_recorder.record(
                    client_ip, "banned", decision.score, path, ua,
                    detail=f"banned_until={decision.banned_until}",
                ))
            else:
                traffic.rejected_requests += 1
            return JSONResponse(
                status_code=429,
                content={
                    "error": "Too many requests detected. Access temporarily restricted.",
                    "code": "RATE_LIMITED",
                    "retryAfter": decision.retry_after(now),
                },
                headers={"Retry-After": str(decision.retry_after(now))},
            )

        if decision.challenge_type is not None:
            traffic.challenged_requests += 1
            await self.pending.flag(client_ip, decision.challenge_type.value)
            asyncio.create_task(event_recorder.record(
                client_ip, "challenged", decision.score, path, ua,
                detail=decision.challenge_type.value,
            ))
            if is_high_value(path):
                # Progressive disclosure: slow down flagged clients on valuable content
                await asyncio.sleep(settings.disclosure_delay_ms / 1000)
        else:
            traffic.allowed_requests += 1

        response = await call_next(request)
        if decision.challenge_type is not None:
            response.headers[CHALLENGE_HEADER] = decision.challenge_type.value
        return response


def is_high_value(path: str) -> bool:
    return any(path.startswith(prefix) for prefix in settings.high_value_paths)
