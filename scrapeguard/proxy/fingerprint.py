"""
ScrapeGuard — Request Fingerprinting.

Reduces an incoming request to the fields the detection engine reads:
client identity, User-Agent, path, referer, cookies and custom headers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from fastapi import Request

from scrapeguard.config import settings

logger = logging.getLogger("scrapeguard.proxy.fingerprint")

JS_ENABLED_HEADER = "x-js-enabled"


@dataclass
class RequestInfo:
    """What the interceptor knows about a single request."""

    identity: str
    user_agent: str = ""
    path: str = "/"
    referer: Optional[str] = None
    cookies: dict = field(default_factory=dict)
    headers: dict = field(default_factory=dict)

    @property
    def cookies_present(self) -> bool:
        return len(self.cookies) > 0

    @property
    def scripting_enabled(self) -> bool:
        """The client-side script announces itself with ``X-JS-Enabled: true``."""
        return self.headers.get(JS_ENABLED_HEADER, "").lower() == "true"


def get_client_ip(request: Request, trusted_proxies: Optional[Sequence[str]] = None) -> str:
    """
    Extract the real client IP.

    X-Forwarded-For is honoured only when the socket peer is a trusted
    proxy. The header is then read right to left, skipping trusted hops,
    so entries a client prepended itself are never used.
    """
    trusted = settings.trusted_proxies if trusted_proxies is None else trusted_proxies
    peer = request.client.host if request.client else "0.0.0.0"
    if peer not in trusted:
        return peer

    forwarded = request.headers.get("x-forwarded-for")
    if not forwarded:
        return peer
    hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
    for hop in reversed(hops):
        if hop not in trusted:
            return hop
    return hops[0] if hops else peer


def extract_request_info(request: Request, client_ip: Optional[str] = None) -> RequestInfo:
    """Build a RequestInfo from a FastAPI / Starlette Request."""
    headers = {k.lower(): v for k, v in request.headers.items()}
    return RequestInfo(
        identity=client_ip or get_client_ip(request),
        user_agent=headers.get("user-agent", ""),
        path=request.url.path or "/",
        referer=headers.get("referer") or None,
        cookies=dict(request.cookies),
        headers=headers,
    )
