"""
ScrapeGuard — Detection Engine.

Loads the client profile, runs every signal extractor, aggregates the
composite score and maps it to allow / challenge / ban.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Sequence

from scrapeguard.config import settings
from scrapeguard.detection.scorer import ScoreAggregator
from scrapeguard.detection.signals import EXTRACTORS, Extractor, SignalTuning
from scrapeguard.mitigation.challenge import ChallengeKind
from scrapeguard.proxy.fingerprint import RequestInfo
from scrapeguard.storage.profiles import ClientProfile, ProfileStore, profile_store

logger = logging.getLogger("scrapeguard.detection")

# (request volume above which the multiplier applies, multiplier)
BAN_TIERS: tuple[tuple[int, int], ...] = (
    (1000, 24),
    (500, 6),
    (100, 3),
)

# (score above which the challenge applies, challenge), hardest first
CHALLENGE_TIERS: tuple[tuple[float, ChallengeKind], ...] = (
    (0.85, ChallengeKind.CAPTCHA),
    (0.8, ChallengeKind.HONEYPOT),
)


class Action(str, Enum):
    ALLOW = "allow"
    CHALLENGE = "challenge"
    BAN = "ban"          # banned by this request
    BANNED = "banned"    # ban already in force


@dataclass
class Decision:
    """Outcome of inspecting one request."""
    action: Action
    score: float = 0.0
    challenge_type: Optional[ChallengeKind] = None
    banned_until: Optional[float] = None

    @property
    def allow(self) -> bool:
        return self.action in (Action.ALLOW, Action.CHALLENGE)

    @property
    def score_pct(self) -> int:
        return round(self.score * 100)

    def retry_after(self, now: float) -> int:
        """Whole seconds until the ban lapses (0 when not banned)."""
        if self.banned_until is None:
            return 0
        remaining = self.banned_until - now
        return max(0, math.ceil(remaining))

    def to_dict(self) -> dict:
        return {
            "allow": self.allow,
            "challengeType": self.challenge_type.value if self.challenge_type else None,
            "score": self.score_pct,
            "bannedUntil": self.banned_until,
        }


class DetectionEngine:
    """Per-request anti-scraping pipeline."""

    def __init__(
        self,
        store: ProfileStore = profile_store,
        aggregator: Optional[ScoreAggregator] = None,
        tuning: Optional[SignalTuning] = None,
        extractors: Sequence[Extractor] = EXTRACTORS,
        clock: Callable[[], float] = time.time,
        suspicious_threshold: Optional[float] = None,
        ban_threshold: Optional[float] = None,
        ban_base_seconds: Optional[int] = None,
        challenge_levels: Optional[int] = None,
        excluded_paths: Optional[Sequence[str]] = None,
        whitelisted_ips: Optional[Sequence[str]] = None,
    ) -> None:
        self.store = store
        self.aggregator = aggregator or ScoreAggregator()
        self.tuning = tuning or SignalTuning(entropy_threshold=settings.entropy_threshold)
        self.extractors = tuple(extractors)
        self.clock = clock
        self.suspicious_threshold = (
            settings.suspicious_threshold if suspicious_threshold is None else suspicious_threshold
        )
        self.ban_threshold = settings.ban_threshold if ban_threshold is None else ban_threshold
        self.ban_base_seconds = ban_base_seconds or settings.ban_base_seconds
        self.challenge_levels = challenge_levels or settings.challenge_levels
        self.excluded_paths = tuple(
            settings.excluded_paths if excluded_paths is None else excluded_paths
        )
        self.whitelisted_ips = frozenset(
            settings.whitelisted_ips if whitelisted_ips is None else whitelisted_ips
        )

    # ── Scope ────────────────────────────────────────────

    def is_excluded(self, path: str) -> bool:
        return any(fragment in path for fragment in self.excluded_paths)

    def is_whitelisted(self, identity: str) -> bool:
        return identity in self.whitelisted_ips

    # ── Pipeline ─────────────────────────────────────────

    async def inspect(self, request: RequestInfo) -> Decision:
        """
        Decide what to do with a request.

        Excluded paths and whitelisted identities are let through before
        the store is touched. Any internal failure fails open.
        """
        if self.is_excluded(request.path) or self.is_whitelisted(request.identity):
            return Decision(action=Action.ALLOW)
        try:
            return await self.analyze(request)
        except Exception:
            logger.exception("Anti-scraping analysis failed for %s, allowing", request.identity)
            return Decision(action=Action.ALLOW)

    async def analyze(self, request: RequestInfo) -> Decision:
        now = self.clock()
        profile = await self.store.load(request.identity, request.user_agent)

        if profile.is_banned(now):
            return Decision(
                action=Action.BANNED, score=1.0, banned_until=profile.banned_until,
            )

        profile.record_request(
            now=now,
            path=request.path,
            user_agent=request.user_agent,
            cookies_present=request.cookies_present,
            scripting_enabled=request.scripting_enabled,
        )
        score = self.score_profile(profile, request)
        profile.suspicion_score = score

        decision = self.decide(profile, score, now)
        await self.store.save(profile)
        return decision

    def collect_signals(self, profile: ClientProfile, request: RequestInfo) -> list[float]:
        """Run every extractor; one failing extractor does not stop the others."""
        scores: list[float] = []
        for extractor in self.extractors:
            try:
                scores.extend(extractor(profile, request, self.tuning))
            except Exception:
                logger.exception(
                    "Signal extractor %s failed", getattr(extractor, "__name__", extractor),
                )
        return scores

    def score_profile(self, profile: ClientProfile, request: RequestInfo) -> float:
        scores = self.collect_signals(profile, request)
        return self.aggregator.aggregate(
            scores,
            challenge_successes=profile.challenge_successes,
            challenge_failures=profile.challenge_failures,
        )

    def decide(self, profile: ClientProfile, score: float, now: float) -> Decision:
        """Map a composite score to an action, updating the ban on the profile."""
        if score >= self.ban_threshold:
            duration = self.ban_duration(profile.total_requests)
            profile.banned_until = now + duration
            logger.warning(
                "IP %s banned for scraping. Score: %.2f, Duration: %ds",
                profile.identity, score, duration,
            )
            return Decision(
                action=Action.BAN, score=score, banned_until=profile.banned_until,
            )

        if score >= self.suspicious_threshold:
            challenge = self.select_challenge(score)
            logger.info(
                "Challenge %s applied to IP %s. Score: %.2f",
                challenge.value, profile.identity, score,
            )
            return Decision(action=Action.CHALLENGE, score=score, challenge_type=challenge)

        return Decision(action=Action.ALLOW, score=score)

    def ban_duration(self, total_requests: int) -> int:
        """Ban length in seconds, longer for persistent clients."""
        for volume, multiplier in BAN_TIERS:
            if total_requests > volume:
                return self.ban_base_seconds * multiplier
        return self.ban_base_seconds

    def select_challenge(self, score: float) -> ChallengeKind:
        """Harder challenges for higher scores, limited to the enabled tiers."""
        for limit, kind in CHALLENGE_TIERS:
            if score > limit and kind.level <= self.challenge_levels:
                return kind
        return ChallengeKind.ARITHMETIC


# Module-level singleton
detection_engine = DetectionEngine()
