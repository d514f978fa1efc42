"""
Tests for the behavioral signal extractors.
"""

import math

import pytest

from scrapeguard.detection.signals import (
    SignalTuning,
    capability_signals,
    interaction_signals,
    navigation_signals,
    path_entropy,
    referer_signals,
    score_user_agent,
    sequence_signals,
    timing_signals,
    user_agent_signals,
)
from scrapeguard.proxy.fingerprint import RequestInfo
from scrapeguard.storage.profiles import ClientProfile

CHROME_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
OLD_CHROME_UA = (
    "Mozilla/5.0 (Windows NT 6.1) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/41.0.2228.0 Safari/537.36"
)
IE_UA = "Mozilla/5.0 (Windows NT 6.1; WOW64; Trident/7.0; rv:11.0) like Gecko"


@pytest.fixture
def tuning():
    return SignalTuning()


def make_profile(intervals=(), paths=(), **kwargs) -> ClientProfile:
    profile = ClientProfile(identity="1.2.3.4", **kwargs)
    profile.request_timestamps.extend(intervals)
    profile.paths_visited.extend(paths)
    return profile


def make_request(**kwargs) -> RequestInfo:
    return RequestInfo(identity="1.2.3.4", **kwargs)


# ── Timing ───────────────────────────────────────────────


def test_timing_abstains_below_five_intervals(tuning):
    profile = make_profile(intervals=[0.1] * 4)
    assert timing_signals(profile, make_request(), tuning) == []


def test_timing_five_fast_constant_intervals(tuning):
    profile = make_profile(intervals=[0.1] * 5)
    mean_score, std_score = timing_signals(profile, make_request(), tuning)
    assert mean_score == 0.9
    # Exactly five samples is not enough for the "too regular" verdict
    assert std_score == 0.7


def test_timing_six_constant_intervals_are_too_regular(tuning):
    profile = make_profile(intervals=[0.1] * 6)
    assert timing_signals(profile, make_request(), tuning) == [0.9, 0.95]


def test_timing_slow_irregular_human(tuning):
    profile = make_profile(intervals=[2.0, 9.0, 4.0, 15.0, 6.5, 12.0])
    assert timing_signals(profile, make_request(), tuning) == [0.1, 0.1]


def test_timing_mean_tiers(tuning):
    assert timing_signals(make_profile(intervals=[0.5] * 5), make_request(), tuning)[0] == 0.7
    assert timing_signals(make_profile(intervals=[2.0] * 5), make_request(), tuning)[0] == 0.5


# ── Navigation ───────────────────────────────────────────


def test_path_entropy_values():
    assert path_entropy([]) == 0.0
    assert path_entropy(["/a"] * 10) == 0.0
    assert path_entropy(["/a", "/b"]) == pytest.approx(1.0)
    assert path_entropy(["/a", "/b", "/c", "/d"]) == pytest.approx(2.0)


def test_navigation_repetitive_paths(tuning):
    profile = make_profile(paths=["/products"] * 6)
    assert navigation_signals(profile, make_request(), tuning) == [pytest.approx(1.0)]


def test_navigation_partial_entropy(tuning):
    profile = make_profile(paths=["/a", "/b", "/a", "/b", "/a", "/b"])
    (score,) = navigation_signals(profile, make_request(), tuning)
    assert score == pytest.approx(1.0 - 1.0 / 3.2)


def test_navigation_varied_paths(tuning):
    paths = [f"/page-{name}" for name in "abcdefghijkl"]
    profile = make_profile(paths=paths)
    assert math.log2(len(paths)) > tuning.entropy_threshold
    assert navigation_signals(profile, make_request(), tuning) == [0.1]


def test_navigation_abstains_with_few_paths(tuning):
    profile = make_profile(paths=["/a"] * 4)
    assert navigation_signals(profile, make_request(), tuning) == []


# ── User-Agent ───────────────────────────────────────────


@pytest.mark.parametrize("ua", [
    "python-requests/2.31.0",
    "curl/8.4.0",
    "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)",
    "Mozilla/5.0 HeadlessChrome/120.0.0.0",
    "",
])
def test_user_agent_bot_like(ua):
    assert score_user_agent(ua) == 0.95


def test_user_agent_modern_browser():
    assert score_user_agent(CHROME_UA) == 0.1


def test_user_agent_outdated_chrome():
    assert score_user_agent(OLD_CHROME_UA) == 0.8


def test_user_agent_internet_explorer():
    assert score_user_agent(IE_UA) == 0.85


def test_user_agent_signal_reads_profile(tuning):
    profile = make_profile(user_agent="Scrapy/2.11")
    assert user_agent_signals(profile, make_request(), tuning) == [0.95]


# ── Capability ───────────────────────────────────────────


def test_capability_both_missing(tuning):
    profile = make_profile()
    assert capability_signals(profile, make_request(), tuning) == [0.8, 0.8]


def test_capability_all_present(tuning):
    profile = make_profile(cookies_present=True, scripting_enabled=True)
    assert capability_signals(profile, make_request(), tuning) == []


def test_request_info_capability_flags():
    info = make_request(cookies={"sid": "1"}, headers={"x-js-enabled": "TRUE"})
    assert info.cookies_present is True
    assert info.scripting_enabled is True
    assert make_request(headers={"x-js-enabled": "yes"}).scripting_enabled is False


# ── Interaction ──────────────────────────────────────────


def test_interaction_no_activity(tuning):
    profile = make_profile(total_requests=10, interaction_signal=0)
    assert interaction_signals(profile, make_request(), tuning) == [0.9]


def test_interaction_enough_activity(tuning):
    profile = make_profile(total_requests=10, interaction_signal=1)
    assert interaction_signals(profile, make_request(), tuning) == []


def test_interaction_few_requests(tuning):
    profile = make_profile(total_requests=5, interaction_signal=0)
    assert interaction_signals(profile, make_request(), tuning) == []


# ── Sequencing ───────────────────────────────────────────


def test_sequence_enumeration(tuning):
    paths = [f"/products/{i}" for i in range(1, 7)]
    assert sequence_signals(make_profile(paths=paths), make_request(), tuning) == [0.85]


def test_sequence_moderate(tuning):
    paths = ["/item/1", "/item/2", "/about", "/item/9", "/item/10", "/contact"]
    # 2 of 5 pairs sequential
    assert sequence_signals(make_profile(paths=paths), make_request(), tuning) == [0.6]


def test_sequence_none(tuning):
    paths = ["/", "/about", "/contact", "/blog", "/pricing"]
    assert sequence_signals(make_profile(paths=paths), make_request(), tuning) == []


# ── Referer ──────────────────────────────────────────────


def test_referer_matches_recent_path(tuning):
    profile = make_profile(paths=["/", "/products", "/products/7"])
    request = make_request(referer="https://shop.example/products")
    assert referer_signals(profile, request, tuning) == []


def test_referer_unknown_path(tuning):
    profile = make_profile(paths=["/", "/products"])
    request = make_request(referer="https://shop.example/never-visited")
    assert referer_signals(profile, request, tuning) == [0.7]


def test_referer_unparseable(tuning):
    profile = make_profile(paths=["/", "/products"])
    request = make_request(referer="not a url")
    assert referer_signals(profile, request, tuning) == [0.5]


def test_referer_abstains_without_history(tuning):
    profile = make_profile(paths=["/"])
    request = make_request(referer="https://shop.example/elsewhere")
    assert referer_signals(profile, request, tuning) == []
    assert referer_signals(make_profile(paths=["/", "/a"]), make_request(), tuning) == []
