"""
Match Statistics
Score and Elo estimates with 95% confidence intervals from win/draw/loss counts
"""

import math
from dataclasses import dataclass
from typing import List, Tuple

# 97.5th percentile of the standard normal distribution
NORM_PPF_0_975 = 1.959963984540054


@dataclass
class TrinomialResult:
    """Wins, draws and losses from one side's perspective"""
    wins: int = 0
    draws: int = 0
    losses: int = 0

    @property
    def count(self) -> int:
        return self.wins + self.draws + self.losses

    def _distribution(self) -> List[float]:
        counts = [self.losses, self.draws, self.wins]
        zeros = sum(1 for c in counts if c == 0)
        regularisation = 0.001 / zeros if zeros else 0.0
        total = self.count + regularisation * len(counts)
        return [(c + regularisation) / total for c in counts]

    def score(self) -> float:
        return sum(p * s for p, s in zip(self._distribution(), (0.0, 0.5, 1.0)))

    def variance(self) -> float:
        mean = self.score()
        return sum(p * (s - mean) ** 2 for p, s in zip(self._distribution(), (0.0, 0.5, 1.0)))

    def score_interval(self) -> Tuple[float, float, float]:
        """(lower, score, upper) at 95% confidence"""
        score = self.score()
        if self.count == 0:
            return score, score, score
        margin = NORM_PPF_0_975 * math.sqrt(self.variance() / self.count)
        return score - margin, score, score + margin

    def elo_interval(self) -> Tuple[float, float, float]:
        """(lower, elo, upper) logistic Elo at 95% confidence"""
        if self.count == 0:
            return math.nan, math.nan, math.nan
        lower, score, upper = self.score_interval()
        return logistic_elo(lower), logistic_elo(score), logistic_elo(upper)

    def __str__(self) -> str:
        return f"+{self.wins}-{self.losses}={self.draws}"


def logistic_elo(score: float) -> float:
    score = min(max(score, 1e-6), 1.0 - 1e-6)
    return -400.0 * math.log10(1.0 / score - 1.0)


def elo_to_string(elo: float) -> str:
    if math.isnan(elo):
        return "N/A"
    if math.isinf(elo):
        return "+INF" if elo > 0 else "-INF"
    return f"{elo:+.2f}"
