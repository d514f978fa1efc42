"""
ScrapeGuard — Client Profile Store.

Persists one behavioral profile per client identity in Redis as JSON,
with bounded sliding-window history and a TTL refreshed on every save.

There is no in-process profile cache: every load goes to the store.
Updates are read-modify-write without locking, so two requests from the
same identity landing together may lose one update.
"""

from __future__ import annotations

import json
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Optional

from scrapeguard.config import settings
from scrapeguard.storage.redis_client import RedisManager, redis_manager

logger = logging.getLogger("scrapeguard.storage.profiles")

KEY_PREFIX = "scrapeguard:client:"


@dataclass
class ClientProfile:
    """Accumulated behavior signals for a single client identity."""
    identity: str
    user_agent: str = ""
    window_size: int = 100

    # Sliding windows (oldest evicted first)
    request_timestamps: Deque[float] = field(default_factory=deque)
    paths_visited: Deque[str] = field(default_factory=deque)

    # Client-side indicators
    interaction_signal: int = 0
    cookies_present: bool = False
    scripting_enabled: bool = False

    # Challenge history
    challenge_successes: int = 0
    challenge_failures: int = 0

    last_seen_at: Optional[float] = None
    total_requests: int = 0
    suspicion_score: float = 0.0
    banned_until: Optional[float] = None

    def __post_init__(self) -> None:
        self.request_timestamps = deque(self.request_timestamps, maxlen=self.window_size)
        self.paths_visited = deque(self.paths_visited, maxlen=self.window_size)
        self.suspicion_score = min(1.0, max(0.0, float(self.suspicion_score)))

    def record_request(
        self,
        now: float,
        path: str,
        user_agent: str,
        cookies_present: bool,
        scripting_enabled: bool,
    ) -> None:
        """Fold one inbound request into the profile."""
        if self.last_seen_at is not None:
            delta = now - self.last_seen_at
            if delta > 0:
                self.request_timestamps.append(delta)
        self.last_seen_at = now
        self.total_requests += 1
        self.paths_visited.append(path)
        self.user_agent = user_agent
        self.cookies_present = cookies_present
        self.scripting_enabled = scripting_enabled

    def record_challenge_outcome(self, success: bool) -> None:
        if success:
            self.challenge_successes += 1
            self.suspicion_score = max(0.0, self.suspicion_score - 0.2)
        else:
            self.challenge_failures += 1
            self.suspicion_score = min(1.0, self.suspicion_score + 0.2)

    def is_banned(self, now: float) -> bool:
        return self.banned_until is not None and now < self.banned_until

    def to_dict(self) -> dict:
        return {
            "identity": self.identity,
            "user_agent": self.user_agent,
            "request_timestamps": list(self.request_timestamps)[-self.window_size:],
            "paths_visited": list(self.paths_visited)[-self.window_size:],
            "interaction_signal": self.interaction_signal,
            "cookies_present": self.cookies_present,
            "scripting_enabled": self.scripting_enabled,
            "challenge_successes": self.challenge_successes,
            "challenge_failures": self.challenge_failures,
            "last_seen_at": self.last_seen_at,
            "total_requests": self.total_requests,
            "suspicion_score": self.suspicion_score,
            "banned_until": self.banned_until,
        }

    @classmethod
    def from_dict(cls, data: dict, window_size: int = 100) -> "ClientProfile":
        """Rebuild a profile from its stored form. Raises on malformed data."""
        if not isinstance(data, dict):
            raise TypeError(f"profile record must be an object, got {type(data).__name__}")
        return cls(
            identity=str(data["identity"]),
            user_agent=data.get("user_agent") or "",
            window_size=window_size,
            request_timestamps=deque(float(t) for t in data.get("request_timestamps", [])),
            paths_visited=deque(str(p) for p in data.get("paths_visited", [])),
            interaction_signal=int(data.get("interaction_signal", 0)),
            cookies_present=bool(data.get("cookies_present", False)),
            scripting_enabled=bool(data.get("scripting_enabled", False)),
            challenge_successes=int(data.get("challenge_successes", 0)),
            challenge_failures=int(data.get("challenge_failures", 0)),
            last_seen_at=_optional_float(data.get("last_seen_at")),
            total_requests=int(data.get("total_requests", 0)),
            suspicion_score=float(data.get("suspicion_score", 0.0)),
            banned_until=_optional_float(data.get("banned_until")),
        )


def _optional_float(value) -> Optional[float]:
    return None if value is None else float(value)


class ProfileStore:
    """Redis-backed key-value store for client profiles."""

    def __init__(
        self,
        manager: RedisManager = redis_manager,
        window_size: Optional[int] = None,
        ttl: Optional[int] = None,
    ) -> None:
        self._manager = manager
        self.window_size = window_size or settings.sliding_window_size
        self.ttl = ttl or settings.profile_ttl

    @staticmethod
    def key(identity: str) -> str:
        return f"{KEY_PREFIX}{identity}"

    def new_profile(self, identity: str, user_agent: str = "") -> ClientProfile:
        return ClientProfile(
            identity=identity, user_agent=user_agent, window_size=self.window_size,
        )

    async def load(self, identity: str, user_agent: str = "") -> ClientProfile:
        """Return the stored profile or a fresh one. Never raises."""
        try:
            profile = await self.fetch(identity)
        except Exception as exc:
            logger.error("Error loading client profile for %s: %s", identity, exc)
            profile = None
        if profile is None:
            profile = self.new_profile(identity, user_agent)
        return profile

    async def fetch(self, identity: str) -> Optional[ClientProfile]:
        """Return the stored profile, or None if there is none.

        Store and decoding errors propagate; use ``load`` for the
        fail-safe variant.
        """
        redis = self._manager.client
        if redis is None:
            return None
        raw = await redis.get(self.key(identity))
        if raw is None:
            return None
        return ClientProfile.from_dict(json.loads(raw), window_size=self.window_size)

    async def save(self, profile: ClientProfile) -> bool:
        """Persist the profile and refresh its TTL. Failures are logged only."""
        redis = self._manager.client
        if redis is None:
            return False
        try:
            payload = json.dumps(profile.to_dict())
            await redis.set(self.key(profile.identity), payload, ex=self.ttl)
            return True
        except Exception as exc:
            logger.error("Error saving client profile for %s: %s", profile.identity, exc)
            return False

    async def record_challenge_result(self, identity: str, success: bool) -> bool:
        """Apply a verification outcome to an existing profile."""
        try:
            profile = await self.fetch(identity)
        except Exception as exc:
            logger.error("Error recording challenge result for %s: %s", identity, exc)
            return False
        if profile is None:
            logger.debug("No profile for %s, challenge result not recorded", identity)
            return False
        profile.record_challenge_outcome(success)
        return await self.save(profile)

    async def add_interaction(self, identity: str, count: int) -> bool:
        """Add client-reported activity events to an existing profile."""
        try:
            profile = await self.fetch(identity)
        except Exception as exc:
            logger.error("Error updating activity for %s: %s", identity, exc)
            return False
        if profile is None:
            return False
        profile.interaction_signal += count
        return await self.save(profile)


profile_store = ProfileStore()
