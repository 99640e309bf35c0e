from __future__ import annotations

import math
from dataclasses import dataclass


@dataclass
class StatsSummary:
    count: int
    mean: float
    min: float
    max: float
    sum: float


class RunStatistics:
    """Running count/sum/min/max of per-frame localization time (ms)."""

    def __init__(self):
        self.count = 0
        self.sum = 0.0
        self.min = math.inf
        self.max = -math.inf

    def record(self, sample: float) -> None:
        sample = float(sample)
        self.count += 1
        self.sum += sample
        if sample < self.min:
            self.min = sample
        if sample > self.max:
            self.max = sample

    def summary(self) -> StatsSummary | None:
        # mean is undefined without samples
        if self.count == 0:
            return None
        return StatsSummary(
            count=self.count,
            mean=self.sum / self.count,
            min=self.min,
            max=self.max,
            sum=self.sum,
        )
