"""Autocorrelation detector with a bounded coarse-to-fine lag search."""

from __future__ import annotations

import math
from typing import Callable

import numpy as np

from tempometer.analysis.detectors.base import BpmDetector
from tempometer.analysis.harmonics import PERIOD_DIVISORS
from tempometer.analysis.models import BpmReading
from tempometer.analysis.pipeline import PreprocessedSignal
from tempometer.analysis.primitives import (
    autocorrelation,
    centered_moving_average,
    normalize_peak,
    parabolic_offset,
    remove_mean,
)


class AutocorrelationDetector(BpmDetector):
    """Strongest self-similarity lag of a rhythmic envelope.

    When the winning lag is a whole multiple of the beat (two tempos whose
    clicks only coincide every second or third beat), a shorter lag that
    divides it and still reaches ``division_share`` of its score is
    preferred.

    Parameters
    ----------
    source:
        ``"samples"`` rectifies and smooths the ~8 kHz signal;
        ``"envelope"`` uses the shared 100 Hz onset envelope.
    max_analysis_seconds:
        Only the most recent part of the window is correlated.
    min_seconds:
        Shorter inputs yield no reading.
    max_coarse_steps, max_evaluations:
        The coarse pass visits at most ``max_coarse_steps + 1`` lags and the
        whole search at most ``max_evaluations`` lags.
    """

    id = "autocorrelation"
    name = "Autocorrelation"
    preferred_window = 6.0

    def __init__(
        self,
        source: str = "samples",
        max_analysis_seconds: float = 6.0,
        min_seconds: float = 1.0,
        max_coarse_steps: int = 100,
        max_evaluations: int = 400,
        smoothing_ms: float = 10.0,
        min_confidence: float = 0.1,
        division_share: float = 0.6,
        division_search: float = 0.02,
    ) -> None:
        if source not in ("samples", "envelope"):
            raise ValueError(f"Unknown autocorrelation source: {source!r}")
        self.source = source
        self.max_analysis_seconds = max_analysis_seconds
        self.min_seconds = min_seconds
        self.max_coarse_steps = max_coarse_steps
        self.max_evaluations = max_evaluations
        self.smoothing_ms = smoothing_ms
        self.min_confidence = min_confidence
        self.division_share = division_share
        self.division_search = division_search

    def _input(self, signal: PreprocessedSignal) -> tuple[np.ndarray, float]:
        if self.source == "envelope":
            return np.asarray(signal.onset_envelope), signal.onset_rate
        rate = signal.rate_8khz
        window = max(1, int(round(rate * self.smoothing_ms / 1000)))
        return centered_moving_average(np.abs(signal.samples_8khz), window), rate

    def _divided_lag(
        self,
        score: Callable[[int], float],
        best_lag: int,
        best_score: float,
        min_lag: int,
        budget: int,
    ) -> tuple[int, float]:
        """Shortest lag near ``best_lag / divisor`` that correlates almost as well."""
        if best_score <= 0:
            return best_lag, 1.0
        per_divisor = budget // len(PERIOD_DIVISORS)
        for divisor in PERIOD_DIVISORS:
            target = best_lag / divisor
            radius = max(2, int(round(target * self.division_search)))
            lo = max(min_lag, int(math.floor(target)) - radius)
            hi = int(math.ceil(target)) + radius
            if hi < min_lag or per_divisor < 3:
                continue
            step = max(1, math.ceil((hi - lo + 1) / (per_divisor // 2)))
            candidate = max(range(lo, hi + 1, step), key=score)
            if step > 1:
                fine_lo = max(min_lag, candidate - step + 1)
                candidate = max(range(fine_lo, candidate + step), key=score)
            if score(candidate) >= self.division_share * best_score:
                return candidate, divisor
        return best_lag, 1.0

    def analyze(self, signal: PreprocessedSignal) -> BpmReading | None:
        envelope, rate = self._input(signal)
        if len(envelope) == 0 or rate <= 0:
            return None
        limit = int(self.max_analysis_seconds * rate)
        if limit > 0:
            envelope = envelope[-limit:]
        if len(envelope) < rate * self.min_seconds:
            return None
        x = normalize_peak(remove_mean(envelope))
        energy = autocorrelation(x, 0)
        if energy <= 1e-12:
            return None

        context = signal.context
        min_lag = max(1, int(math.floor(rate * 60.0 / context.max_bpm)))
        # Lags beyond half the buffer correlate too few samples to trust.
        max_lag = min(len(x) // 2, int(math.ceil(rate * 60.0 / context.min_bpm)))
        if max_lag - min_lag < 3:
            return None

        scores: dict[int, float] = {}

        def score(lag: int) -> float:
            if lag not in scores:
                scores[lag] = autocorrelation(x, lag)
            return scores[lag]

        stride = max(1, math.ceil((max_lag - min_lag) / self.max_coarse_steps))
        coarse_best = max(range(min_lag, max_lag + 1, stride), key=score)

        lo = max(min_lag, coarse_best - 2 * stride)
        hi = min(max_lag, coarse_best + 2 * stride)
        budget = max(1, self.max_evaluations - len(scores) - 2)
        step = max(1, math.ceil((hi - lo + 1) / budget))
        for lag in range(lo, hi + 1, step):
            score(lag)
        period_lag = max(scores, key=lambda lag: (scores[lag], -lag))
        period_score = scores[period_lag]

        best_lag, divisor = self._divided_lag(
            score, period_lag, period_score, min_lag,
            self.max_evaluations - len(scores) - 2,
        )
        best_score = score(best_lag)

        refined = float(best_lag)
        if min_lag < best_lag < max_lag:
            refined += parabolic_offset(score(best_lag - 1), best_score, score(best_lag + 1))

        correlation = best_score / energy
        if correlation < self.min_confidence:
            return None
        return self._reading(
            signal,
            60.0 * rate / refined,
            correlation,
            {
                "lag": best_lag,
                "lag_seconds": refined / rate,
                "correlation": correlation,
                "period_lag": period_lag,
                "period_divisor": divisor,
                "evaluations": len(scores),
                "coarse_stride": stride,
                "effective_rate": rate,
                "analysis_seconds": len(x) / rate,
                "source": self.source,
            },
        )
