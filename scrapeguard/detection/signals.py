"""
ScrapeGuard — Behavioral Signal Extractors.

Each extractor looks at one behavioral dimension of a client and returns
a list of suspicion sub-scores in [0, 1] (higher = more bot-like).
An empty list means the extractor abstains: its preconditions are not
met, which is "no opinion" rather than a score of zero.

Extractors are pure functions of ``(profile, request, tuning)`` and run
after the current request has been folded into the profile.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable
from urllib.parse import urlsplit

import numpy as np
from user_agents import parse as parse_ua

from scrapeguard.proxy.fingerprint import RequestInfo
from scrapeguard.storage.profiles import ClientProfile

logger = logging.getLogger("scrapeguard.detection.signals")

BOT_UA_KEYWORDS = (
    "bot", "crawler", "spider", "scrape", "http", "java", "python",
    "go-http", "headless", "phantomjs", "selenium", "puppeteer",
    "wget", "curl", "requests", "axios",
)

_NUMBER_RE = re.compile(r"\d+")


@dataclass(frozen=True)
class SignalTuning:
    """Empirical thresholds used by the extractors."""

    min_intervals: int = 5
    timing_sample: int = 20
    mean_interval_tiers: tuple[tuple[float, float], ...] = (
        (0.2, 0.9),
        (1.0, 0.7),
        (3.0, 0.5),
    )
    mean_interval_default: float = 0.1
    regular_std: float = 0.1
    regular_std_score: float = 0.95
    low_std: float = 0.5
    low_std_score: float = 0.7
    std_default: float = 0.1

    min_paths: int = 5
    entropy_sample: int = 30
    entropy_threshold: float = 3.2
    entropy_default: float = 0.1

    ua_bot_score: float = 0.95
    ua_outdated_score: float = 0.8
    ua_ie_score: float = 0.85
    ua_generic_device_score: float = 0.7
    ua_parse_error_score: float = 0.5
    ua_default: float = 0.1
    min_chrome_major: int = 50
    min_firefox_major: int = 45

    no_cookies_score: float = 0.8
    no_scripting_score: float = 0.8

    interaction_min_requests: int = 5
    interaction_ratio: float = 0.1
    interaction_score: float = 0.9

    sequence_sample: int = 10
    sequence_high_ratio: float = 0.5
    sequence_high_score: float = 0.85
    sequence_low_ratio: float = 0.3
    sequence_low_score: float = 0.6

    referer_min_paths: int = 2
    referer_recent: int = 5
    referer_mismatch_score: float = 0.7
    referer_invalid_score: float = 0.5


Extractor = Callable[[ClientProfile, RequestInfo, SignalTuning], list[float]]


# ── Timing ───────────────────────────────────────────────


def timing_signals(profile: ClientProfile, request: RequestInfo, tuning: SignalTuning) -> list[float]:
    """Mean and spread of inter-request intervals.

    Fast clients score high on the mean; near-constant intervals score
    high on the standard deviation. Both are emitted separately.
    """
    if len(profile.request_timestamps) < tuning.min_intervals:
        return []

    intervals = np.array(list(profile.request_timestamps)[-tuning.timing_sample:], dtype=float)
    mean = float(np.mean(intervals))
    std = float(np.std(intervals))

    mean_score = tuning.mean_interval_default
    for limit, score in tuning.mean_interval_tiers:
        if mean < limit:
            mean_score = score
            break

    if len(intervals) > tuning.min_intervals and std < tuning.regular_std:
        std_score = tuning.regular_std_score
    elif std < tuning.low_std:
        std_score = tuning.low_std_score
    else:
        std_score = tuning.std_default

    return [mean_score, std_score]


# ── Navigation ───────────────────────────────────────────


def path_entropy(paths: list[str]) -> float:
    """Shannon entropy (bits) of the path-visit distribution."""
    if not paths:
        return 0.0
    _, counts = np.unique(paths, return_counts=True)
    probs = counts / counts.sum()
    return float(-np.sum(probs * np.log2(probs)))


def navigation_signals(profile: ClientProfile, request: RequestInfo, tuning: SignalTuning) -> list[float]:
    """Low entropy over recent paths means repetitive, mechanical browsing."""
    if len(profile.paths_visited) < tuning.min_paths:
        return []
    entropy = path_entropy(list(profile.paths_visited)[-tuning.entropy_sample:])
    if entropy < tuning.entropy_threshold:
        return [1.0 - entropy / tuning.entropy_threshold]
    return [tuning.entropy_default]


# ── User-Agent ───────────────────────────────────────────


def score_user_agent(user_agent: str, tuning: SignalTuning = SignalTuning()) -> float:
    """Heuristic bot-likelihood of a User-Agent string."""
    if not user_agent:
        return tuning.ua_bot_score

    ua_lower = user_agent.lower()
    if any(keyword in ua_lower for keyword in BOT_UA_KEYWORDS):
        return tuning.ua_bot_score

    try:
        parsed = parse_ua(user_agent)
        if parsed.is_bot:
            return tuning.ua_bot_score

        family = (parsed.browser.family or "").lower()
        version = parsed.browser.version
        if family and version:
            major = int(version[0])
            if family == "chrome" and major < tuning.min_chrome_major:
                return tuning.ua_outdated_score
            if family == "firefox" and major < tuning.min_firefox_major:
                return tuning.ua_outdated_score
        if family in ("ie", "internet explorer"):
            return tuning.ua_ie_score

        model = (parsed.device.model or "").lower()
        if "generic" in model or "unknown" in model:
            return tuning.ua_generic_device_score
    except Exception as exc:
        logger.error("Error parsing user agent %r: %s", user_agent, exc)
        return tuning.ua_parse_error_score

    return tuning.ua_default


def user_agent_signals(profile: ClientProfile, request: RequestInfo, tuning: SignalTuning) -> list[float]:
    return [score_user_agent(profile.user_agent, tuning)]


# ── Browser capability ───────────────────────────────────


def capability_signals(profile: ClientProfile, request: RequestInfo, tuning: SignalTuning) -> list[float]:
    """Missing cookies and missing JS each count on their own."""
    scores = []
    if not profile.cookies_present:
        scores.append(tuning.no_cookies_score)
    if not profile.scripting_enabled:
        scores.append(tuning.no_scripting_score)
    return scores


# ── Interaction ──────────────────────────────────────────


def interaction_signals(profile: ClientProfile, request: RequestInfo, tuning: SignalTuning) -> list[float]:
    if (
        profile.total_requests > tuning.interaction_min_requests
        and profile.interaction_signal < profile.total_requests * tuning.interaction_ratio
    ):
        return [tuning.interaction_score]
    return []


# ── Path sequencing ──────────────────────────────────────


def _is_increment(prev_path: str, current_path: str) -> bool:
    prev_numbers = _NUMBER_RE.findall(prev_path)
    current_numbers = _NUMBER_RE.findall(current_path)
    if not prev_numbers or len(prev_numbers) != len(current_numbers):
        return False
    return any(
        int(cur) == int(prev) + 1
        for prev, cur in zip(prev_numbers, current_numbers)
    )


def sequence_signals(profile: ClientProfile, request: RequestInfo, tuning: SignalTuning) -> list[float]:
    """Flags enumeration such as /products/1, /products/2, /products/3."""
    if len(profile.paths_visited) < tuning.min_paths:
        return []
    recent = list(profile.paths_visited)[-tuning.sequence_sample:]
    pairs = len(recent) - 1
    sequential = sum(
        1 for prev, cur in zip(recent, recent[1:]) if _is_increment(prev, cur)
    )
    ratio = sequential / pairs
    if ratio > tuning.sequence_high_ratio:
        return [tuning.sequence_high_score]
    if ratio > tuning.sequence_low_ratio:
        return [tuning.sequence_low_score]
    return []


# ── Referer ──────────────────────────────────────────────


def referer_signals(profile: ClientProfile, request: RequestInfo, tuning: SignalTuning) -> list[float]:
    """The referer should be a page this client recently visited."""
    if not request.referer or len(profile.paths_visited) < tuning.referer_min_paths:
        return []
    try:
        parts = urlsplit(request.referer)
    except ValueError:
        return [tuning.referer_invalid_score]
    if not parts.scheme or not parts.netloc:
        return [tuning.referer_invalid_score]

    referer_path = parts.path or "/"
    recent = list(profile.paths_visited)[-tuning.referer_recent:]
    if referer_path not in recent:
        return [tuning.referer_mismatch_score]
    return []


EXTRACTORS: tuple[Extractor, ...] = (
    timing_signals,
    navigation_signals,
    user_agent_signals,
    capability_signals,
    interaction_signals,
    sequence_signals,
    referer_signals,
)
