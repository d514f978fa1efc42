"""
ScrapeGuard — Pending Challenge Flags.

Remembers which clients were asked to solve a challenge, using Redis
keys with the challenge TTL. Cleared when the client passes.
"""

from __future__ import annotations

import logging
from typing import Optional

from scrapeguard.config import settings
from scrapeguard.storage.redis_client import RedisManager, redis_manager

logger = logging.getLogger("scrapeguard.mitigation.pending")

PENDING_KEY_PREFIX = "scrapeguard:pending:"


class PendingChallenges:
    """Out-of-band "challenge required" flag per identity."""

    def __init__(self, manager: RedisManager = redis_manager, ttl: Optional[int] = None) -> None:
        self._manager = manager
        self.ttl = ttl or settings.challenge_ttl

    @staticmethod
    def key(identity: str) -> str:
        return f"{PENDING_KEY_PREFIX}{identity}"

    async def flag(self, identity: str, challenge_type: str) -> None:
        redis = self._manager.client
        if redis is None:
            return
        try:
            await redis.set(self.key(identity), challenge_type, ex=self.ttl)
        except Exception:
            logger.debug("Failed to flag pending challenge for %s", identity, exc_info=True)

    async def get(self, identity: str) -> Optional[str]:
        redis = self._manager.client
        if redis is None:
            return None
        try:
            return await redis.get(self.key(identity))
        except Exception:
            logger.debug("Failed to read pending challenge for %s", identity, exc_info=True)
            return None

    async def clear(self, identity: str) -> None:
        redis = self._manager.client
        if redis is None:
            return
        try:
            await redis.delete(self.key(identity))
            logger.info("Cleared pending challenge for %s", identity)
        except Exception:
            logger.debug("Failed to clear pending challenge for %s", identity, exc_info=True)


pending_challenges = PendingChallenges()
