"""Dynamic-programming beat tracker over the onset envelope."""

from __future__ import annotations

import math

import numpy as np

from tempometer.analysis.detectors.base import BpmDetector
from tempometer.analysis.models import BpmReading
from tempometer.analysis.pipeline import PreprocessedSignal
from tempometer.analysis.primitives import zscore


def tempo_periods(
    feature_rate: float,
    min_period: int,
    max_period: int,
    step_bpm: float,
) -> np.ndarray:
    """Beat periods (frames) for tempos spaced *step_bpm* apart, deduplicated."""
    slowest = feature_rate * 60.0 / max_period
    fastest = feature_rate * 60.0 / min_period
    periods: list[int] = []
    for bpm in np.arange(slowest, fastest + 1e-9, step_bpm):
        period = int(round(feature_rate * 60.0 / bpm))
        if min_period <= period <= max_period and (not periods or periods[-1] != period):
            periods.append(period)
    return np.asarray(periods, dtype=int)


def _trimmed_mean(values: np.ndarray, proportion: float = 0.1) -> float:
    ordered = np.sort(np.asarray(values, dtype=np.float64))
    trim = int(len(ordered) * proportion)
    window = ordered[trim: max(trim + 1, len(ordered) - trim)]
    return float(window.mean())


class DynamicProgrammingBeatTracker(BpmDetector):
    """Beat sequence maximizing onset strength under a tempo-smoothness penalty.

    ``score[t][k] = e[t] + max(0, max_j(score[t - p_k][j] - λ·|p_k - p_j|))``
    where ``e`` is the z-scored onset envelope and ``p_k`` the beat period
    of tempo bin ``k``. The best-scoring state is backtracked into beat
    times; the BPM is the trimmed mean of the recovered intervals.
    """

    id = "dp_beat_tracker"
    name = "Dynamic Programming Beat Tracker"
    preferred_window = 12.0

    def __init__(self, penalty: float = 0.6, max_frames: int = 2400, tempo_step: float = 2.0) -> None:
        self.penalty = penalty
        self.max_frames = max_frames
        self.tempo_step = tempo_step

    def analyze(self, signal: PreprocessedSignal) -> BpmReading | None:
        raw = np.asarray(signal.onset_envelope, dtype=np.float64)
        if len(raw) == 0 or signal.onset_rate <= 0:
            return None
        feature_rate = min(max(signal.onset_rate, 1.0), 200.0)
        context = signal.context

        min_period = min(max(int(math.floor(feature_rate * 60.0 / context.max_bpm)), 1), 400)
        max_period = min(max(int(math.ceil(feature_rate * 60.0 / context.min_bpm)), min_period), 800)
        if max_period - min_period < 2:
            return None

        start = max(0, len(raw) - self.max_frames)
        raw = raw[start:]
        if len(raw) <= min_period or np.max(raw) <= 0:
            return None
        energy = zscore(raw)

        periods = tempo_periods(feature_rate, min_period, max_period, self.tempo_step)
        if len(periods) == 0:
            return None
        path = self._track(energy, periods)
        if len(path) < 3:
            return None

        intervals = np.diff(path)
        period = _trimmed_mean(intervals)
        bpm = context.clamp(feature_rate * 60.0 / period)

        beat_mean = float(raw[path].mean())
        contrast = (beat_mean - float(raw.mean())) / (beat_mean + 1e-9)
        energy_ratio = min(max(contrast, 0.0), 1.0)
        smoothness = 0.0
        if len(intervals) >= 2:
            smoothness = min(float(intervals.std() / (intervals.mean() + 1e-6)), 1.0)
        confidence = 0.25 + 0.5 * energy_ratio + 0.25 * (1.0 - smoothness)

        offset = start / feature_rate
        return self._reading(
            signal,
            bpm,
            confidence,
            {
                "feature_rate": feature_rate,
                "mean_period_frames": period,
                "energy_ratio": energy_ratio,
                "smoothness": smoothness,
                "tempo_bin_count": len(periods),
                "penalty": self.penalty,
                "beat_count": len(path),
                "beat_times": [offset + f / feature_rate for f in path.tolist()],
                "beat_intervals_frames": intervals.tolist(),
            },
        )

    def _track(self, energy: np.ndarray, periods: np.ndarray) -> np.ndarray:
        """Forward pass plus backtracking; returns beat frames in ascending order."""
        n_frames, n_tempi = len(energy), len(periods)
        transition = self.penalty * np.abs(periods[:, None] - periods[None, :]).astype(np.float64)
        score = np.full((n_frames, n_tempi), -np.inf)
        back = np.full((n_frames, n_tempi), -1, dtype=int)

        for t in range(n_frames):
            previous = t - periods
            valid = previous >= 0
            chained = np.zeros(n_tempi)
            links = np.full(n_tempi, -1, dtype=int)
            if valid.any():
                candidates = score[previous[valid]] - transition[valid]
                best = candidates.argmax(axis=1)
                best_scores = candidates[np.arange(len(best)), best]
                extend = best_scores > 0
                chained[valid] = np.where(extend, best_scores, 0.0)
                links[valid] = np.where(extend, best, -1)
            score[t] = energy[t] + chained
            back[t] = links

        t, k = np.unravel_index(int(np.argmax(score)), score.shape)
        path = [int(t)]
        while back[t, k] >= 0:
            t, k = t - periods[k], back[t, k]
            path.append(int(t))
        return np.asarray(path[::-1], dtype=int)
