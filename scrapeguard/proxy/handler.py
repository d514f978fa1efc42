"""
ScrapeGuard — Async Reverse Proxy Handler.

Catches every request the interceptor let through and forwards it to the
protected website, tagged with the client's suspicion score.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import APIRouter, Request, Response

from scrapeguard.config import settings
from scrapeguard.proxy.fingerprint import get_client_ip

logger = logging.getLogger("scrapeguard.proxy")

router = APIRouter()

# Persistent async HTTP client (connection-pooled)
_http_client: Optional[httpx.AsyncClient] = None

# Paths served by this service itself, never forwarded
INTERNAL_PREFIXES = ("/api/challenge", "/api/admin", "/api/docs", "/api/redoc", "/openapi.json")

HOP_BY_HOP = {"transfer-encoding", "connection", "keep-alive", "content-encoding", "content-length"}


# ── Real-time traffic counters ──────────────────────────────


@dataclass
class TrafficCounters:
    """In-memory counters for the admin stats endpoint."""
    total_requests: int = 0
    allowed_requests: int = 0
    challenged_requests: int = 0
    banned_requests: int = 0
    rejected_requests: int = 0
    forwarded_requests: int = 0

    def record_request(self) -> None:
        self.total_requests += 1

    def to_dict(self) -> dict:
        return {
            "total_requests": self.total_requests,
            "allowed_requests": self.allowed_requests,
            "challenged_requests": self.challenged_requests,
            "banned_requests": self.banned_requests,
            "rejected_requests": self.rejected_requests,
            "forwarded_requests": self.forwarded_requests,
        }


traffic = TrafficCounters()


async def get_http_client() -> httpx.AsyncClient:
    """Lazily initialise the shared httpx async client."""
    global _http_client
    if _http_client is None or _http_client.is_closed:
        _http_client = httpx.AsyncClient(
            base_url=settings.target_url,
            timeout=httpx.Timeout(settings.proxy_timeout),
            follow_redirects=False,
            limits=httpx.Limits(
                max_connections=200,
                max_keepalive_connections=50,
            ),
        )
    return _http_client


async def close_http_client() -> None:
    global _http_client
    if _http_client is not None:
        await _http_client.aclose()
        _http_client = None


@router.api_route(
    "/{path:path}",
    methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS", "HEAD"],
    include_in_schema=False,
)
async def reverse_proxy(request: Request, path: str = "") -> Response:
    """Forward an allowed request to the protected website."""
    if request.url.path.startswith(INTERNAL_PREFIXES):
        return Response(status_code=404)

    start = time.monotonic()
    client_ip = get_client_ip(request)
    url_path = f"/{path}" if path else "/"
    decision = getattr(request.state, "scrape_decision", None)
    score = decision.score if decision is not None else 0.0

    body = await request.body()
    headers = dict(request.headers)
    headers.pop("host", None)
    headers["x-forwarded-for"] = client_ip
    headers["x-scrapeguard-score"] = str(round(score, 4))

    client = await get_http_client()
    try:
        upstream_resp = await client.request(
            method=request.method,
            url=url_path,
            headers=headers,
            content=body,
            params=dict(request.query_params),
        )
    except httpx.RequestError as exc:
        logger.error("Upstream error: %s", exc)
        return Response(status_code=502, content="Bad Gateway")

    traffic.forwarded_requests += 1
    elapsed = time.monotonic() - start
    logger.debug(
        "%s %s → %d (%.1fms, score=%.2f)",
        request.method, url_path, upstream_resp.status_code,
        elapsed * 1000, score,
    )

    resp_headers = {
        k: v for k, v in upstream_resp.headers.items()
        if k.lower() not in HOP_BY_HOP
    }
    return Response(
        content=upstream_resp.content,
        status_code=upstream_resp.status_code,
        headers=resp_headers,
    )
