"""
ScrapeGuard — Challenge Issue / Verify.

Three challenge kinds share one contract: ``issue()`` produces an id, a
public payload for the client and a secret kept in Redis; ``check()``
compares the client's response with that secret. Secrets are single-use
and expire after ``challenge_ttl`` seconds.

The captcha text is returned in plaintext; rendering it as an image is
left to the client UI.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

from scrapeguard.config import settings
from scrapeguard.mitigation.pending import PendingChallenges, pending_challenges
from scrapeguard.storage.profiles import ProfileStore, profile_store
from scrapeguard.storage.redis_client import RedisManager, redis_manager

logger = logging.getLogger("scrapeguard.mitigation.challenge")

CHALLENGE_KEY_PREFIX = "scrapeguard:challenge:"
CHALLENGE_ID_LENGTH = 16
CAPTCHA_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"  # no I, O, 0, 1
CAPTCHA_LENGTH = 6


class ChallengeKind(str, Enum):
    """Challenge types, in increasing difficulty."""
    ARITHMETIC = "arithmetic"
    HONEYPOT = "honeypot"
    CAPTCHA = "captcha"

    @property
    def level(self) -> int:
        return _LEVELS[self]


_LEVELS = {
    ChallengeKind.ARITHMETIC: 1,
    ChallengeKind.HONEYPOT: 2,
    ChallengeKind.CAPTCHA: 3,
}


@dataclass
class IssuedChallenge:
    kind: ChallengeKind
    id: str
    public: str
    secret: str

    def to_dict(self) -> dict:
        """Client-facing view. Never includes the secret."""
        return {"type": self.kind.value, "id": self.id, "challenge": self.public}


def make_challenge_id(content: str) -> str:
    """Opaque id from the challenge content and issuance time."""
    digest = hashlib.sha256(f"{content}{time.time_ns()}".encode()).hexdigest()
    return digest[:CHALLENGE_ID_LENGTH]


def _is_blank(response: Any) -> bool:
    return response is None or (isinstance(response, str) and response == "")


# ── Challenge kinds ──────────────────────────────────────


class ArithmeticChallenge:
    """Small sum / difference / product computed by client-side script."""

    kind = ChallengeKind.ARITHMETIC
    OPERATORS = ("+", "-", "*")

    def __init__(self, rng: Optional[secrets.SystemRandom] = None) -> None:
        self._rng = rng or secrets.SystemRandom()

    def issue(self) -> IssuedChallenge:
        a = self._rng.randint(1, 100)
        b = self._rng.randint(1, 100)
        op = self._rng.choice(self.OPERATORS)
        result = self.evaluate(a, op, b)
        return IssuedChallenge(
            kind=self.kind,
            id=make_challenge_id(f"{a}{op}{b}{result}"),
            public=f"{a} {op} {b}",
            secret=str(result),
        )

    @staticmethod
    def evaluate(a: int, op: str, b: int) -> int:
        if op == "+":
            return a + b
        if op == "-":
            return a - b
        if op == "*":
            return a * b
        raise ValueError(f"unsupported operator: {op}")

    def check(self, secret: str, response: Any) -> bool:
        """Exact integer match."""
        if _is_blank(response) or isinstance(response, bool):
            return False
        if isinstance(response, float):
            return response.is_integer() and int(response) == int(secret)
        try:
            return int(str(response).strip()) == int(secret)
        except ValueError:
            return False


class HoneypotChallenge:
    """Hidden decoy form field; humans leave it empty."""

    kind = ChallengeKind.HONEYPOT

    def __init__(
        self,
        field_names: Optional[list[str]] = None,
        rng: Optional[secrets.SystemRandom] = None,
    ) -> None:
        self.field_names = list(field_names or settings.honeypot_field_names)
        self._rng = rng or secrets.SystemRandom()

    def issue(self) -> IssuedChallenge:
        field_name = self._rng.choice(self.field_names)
        return IssuedChallenge(
            kind=self.kind,
            id=make_challenge_id(field_name),
            public=field_name,
            secret=field_name,
        )

    def check(self, secret: str, response: Any) -> bool:
        return _is_blank(response)


class CaptchaChallenge:
    """Six unambiguous characters, compared case-insensitively."""

    kind = ChallengeKind.CAPTCHA

    def __init__(self, rng: Optional[secrets.SystemRandom] = None) -> None:
        self._rng = rng or secrets.SystemRandom()

    def issue(self) -> IssuedChallenge:
        text = "".join(self._rng.choice(CAPTCHA_ALPHABET) for _ in range(CAPTCHA_LENGTH))
        return IssuedChallenge(
            kind=self.kind,
            id=make_challenge_id(text),
            public=text,
            secret=text,
        )

    def check(self, secret: str, response: Any) -> bool:
        if not isinstance(response, str):
            return False
        return response.upper() == secret.upper()


ChallengeVariant = Union[ArithmeticChallenge, HoneypotChallenge, CaptchaChallenge]


# ── Manager ──────────────────────────────────────────────


class ChallengeNotFound(Exception):
    """No stored secret for this id: never issued, expired or already used."""


class ChallengeManager:
    """Issues challenges and verifies responses against Redis-held secrets."""

    def __init__(
        self,
        manager: RedisManager = redis_manager,
        ttl: Optional[int] = None,
        variants: Optional[dict[ChallengeKind, ChallengeVariant]] = None,
        profiles: ProfileStore = profile_store,
        pending: PendingChallenges = pending_challenges,
    ) -> None:
        self._manager = manager
        self.ttl = ttl or settings.challenge_ttl
        self.profiles = profiles
        self.pending = pending
        self.variants: dict[ChallengeKind, ChallengeVariant] = variants or {
            ChallengeKind.ARITHMETIC: ArithmeticChallenge(),
            ChallengeKind.HONEYPOT: HoneypotChallenge(),
            ChallengeKind.CAPTCHA: CaptchaChallenge(),
        }

    @staticmethod
    def key(challenge_id: str) -> str:
        return f"{CHALLENGE_KEY_PREFIX}{challenge_id}"

    async def issue(self, kind: ChallengeKind) -> IssuedChallenge:
        """Create a challenge and store ``<kind>:<secret>``. Raises if Redis is down."""
        redis = self._manager.client
        if redis is None:
            raise ConnectionError("challenge store unavailable")
        challenge = self.variants[kind].issue()
        await redis.set(self.key(challenge.id), f"{kind.value}:{challenge.secret}", ex=self.ttl)
        logger.debug("Issued %s challenge %s", kind.value, challenge.id)
        return challenge

    async def consume(self, challenge_id: str) -> tuple[str, str]:
        """Fetch and delete the stored entry, returning ``(kind, secret)``.

        Only the caller whose ``delete`` removes the key owns the entry;
        any concurrent verification of the same id gets ChallengeNotFound.
        """
        redis = self._manager.client
        if redis is None:
            raise ChallengeNotFound(challenge_id)
        key = self.key(challenge_id)
        stored = await redis.get(key)
        if stored is None:
            raise ChallengeNotFound(challenge_id)
        if not await redis.delete(key):
            raise ChallengeNotFound(challenge_id)
        kind, _, secret = stored.partition(":")
        return kind, secret

    async def verify(self, kind: ChallengeKind, challenge_id: str, response: Any) -> bool:
        """Check a response. Unknown, expired or mistyped ids fail verification."""
        try:
            stored_kind, secret = await self.consume(challenge_id)
        except ChallengeNotFound:
            logger.info("Challenge %s (%s) not found or expired", challenge_id, kind.value)
            return False
        if stored_kind != kind.value:
            logger.info(
                "Challenge %s submitted as %s but issued as %s",
                challenge_id, kind.value, stored_kind,
            )
            return False
        return self.variants[kind].check(secret, response)

    async def verify_for(
        self,
        identity: str,
        kind: ChallengeKind,
        challenge_id: str,
        response: Any,
    ) -> bool:
        """Verify, then record the outcome on the client's profile."""
        success = await self.verify(kind, challenge_id, response)
        await self.profiles.record_challenge_result(identity, success)
        if success:
            await self.pending.clear(identity)
        logger.info(
            "Challenge %s (%s) from %s: %s",
            challenge_id, kind.value, identity, "passed" if success else "failed",
        )
        return success


challenge_manager = ChallengeManager()
