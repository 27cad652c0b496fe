from __future__ import annotations

import math
from dataclasses import dataclass

# Variance never drops below this, so a perfectly flat signal still has
# a finite standard deviation of 0.01.
MIN_VARIANCE = 1e-4


@dataclass
class AdaptiveMetric:
    """
    Stores a rolling baseline for one per second signal.

    We use EWMA and EWM variance because it is:
      - fast
      - robust enough for streaming
      - simple to explain and tune

    Scoring happens against the baseline as it was BEFORE the new value,
    so a spike is never absorbed into the mean it is compared with.
    """

    alpha: float = 0.2
    mean: float = 0.0
    var: float = MIN_VARIANCE
    n: int = 0

    def update_and_score(self, x: float, warmup: int) -> float:
        """
        Return the z-score of x, then fold x into the baseline.

        The first value only seeds the baseline and scores 0.
        Scores stay 0 until more than warmup values have been seen.
        """
        x = float(x)
        if self.n == 0:
            self.mean = x
            self.var = MIN_VARIANCE
            self.n = 1
            return 0.0

        std = self.std()
        score = (x - self.mean) / std if std > 0.0 else 0.0

        # EWMA mean update
        delta = x - self.mean
        self.mean += self.alpha * delta

        # EWM variance update using the pre update residual
        self.var = (1.0 - self.alpha) * (self.var + self.alpha * delta * delta)

        self.n += 1
        if self.n <= warmup:
            return 0.0
        return score

    def std(self) -> float:
        return math.sqrt(max(self.var, MIN_VARIANCE))

    def reset(self) -> None:
        self.mean = 0.0
        self.var = MIN_VARIANCE
        self.n = 0
