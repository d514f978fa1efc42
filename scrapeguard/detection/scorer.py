"""
ScrapeGuard — Score Aggregator.

Combines extractor sub-scores into one composite suspicion score in
[0, 1] using rank weighting, then adjusts for challenge history.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

logger = logging.getLogger("scrapeguard.detection.scorer")


@dataclass(frozen=True)
class AggregationWeights:
    """Rank weights and history adjustment constants."""
    top3: tuple[float, float, float] = (0.5, 0.3, 0.2)
    top2: tuple[float, float] = (0.6, 0.4)
    no_signal_score: float = 0.1
    failure_weight: float = 0.3


class ScoreAggregator:
    """
    Rank-weighted combination of sub-scores.

    The two strongest signals carry fixed weights; the remaining ones
    contribute through their mean.
    """

    def __init__(self, weights: AggregationWeights = AggregationWeights()) -> None:
        self.weights = weights

    def combine(self, scores: Sequence[float]) -> float:
        """Weighted rank combination, without history adjustment."""
        ranked = sorted((float(s) for s in scores), reverse=True)
        if len(ranked) >= 3:
            w0, w1, w_rest = self.weights.top3
            rest = ranked[2:]
            combined = w0 * ranked[0] + w1 * ranked[1] + w_rest * (sum(rest) / len(rest))
        elif len(ranked) == 2:
            w0, w1 = self.weights.top2
            combined = w0 * ranked[0] + w1 * ranked[1]
        elif len(ranked) == 1:
            combined = ranked[0]
        else:
            # New client, no history yet
            combined = self.weights.no_signal_score
        return min(1.0, max(0.0, combined))

    def history_adjustment(self, challenge_successes: int, challenge_failures: int) -> float:
        """Extra suspicion from failed challenges, independent of current signals."""
        if challenge_failures <= 0:
            return 0.0
        factor = min(challenge_failures / (challenge_successes + 1), 1.0)
        return factor * self.weights.failure_weight

    def aggregate(
        self,
        scores: Sequence[float],
        challenge_successes: int = 0,
        challenge_failures: int = 0,
    ) -> float:
        """Return the composite score for one request."""
        combined = self.combine(scores)
        combined += self.history_adjustment(challenge_successes, challenge_failures)
        return min(1.0, max(0.0, combined))
