"""Interval histograms and harmonic clustering of tempo candidates."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable, Sequence

import numpy as np

from tempometer.analysis.harmonics import (
    EXPANSION_FACTORS,
    coerce_to_range,
    is_valid_bpm,
    match_ratio,
)
from tempometer.analysis.models import HistogramSelection, TempoCandidate, TempoRefinementResult

_MAX_FOLDS = 6


@dataclass
class _Bucket:
    interval: float  # bucket key in seconds
    score: float = 0.0
    weight: float = 0.0
    supporters: int = 0
    sources: set[str] = field(default_factory=set)
    multiplier_sum: float = 0.0
    suppressed: bool = False


class IntervalHistogram:
    """Weighted histogram of beat intervals folded into a BPM range.

    Parameters
    ----------
    min_bpm, max_bpm:
        Range that every interval is folded into by doubling or halving.
    bin_size:
        Bucket width in seconds. Defaults to 20 ms.
    """

    def __init__(self, min_bpm: float, max_bpm: float, bin_size: float = 0.02) -> None:
        if bin_size <= 0:
            raise ValueError(f"bin_size must be positive, got {bin_size}")
        self.min_interval = 60.0 / max_bpm
        self.max_interval = 60.0 / min_bpm
        self.bin_size = bin_size
        self._buckets: dict[float, _Bucket] = {}
        self._entries: list[tuple[float, float]] = []  # (normalized interval, weight)
        self._longest = 0.0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._buckets)

    def normalize(self, interval: float) -> float | None:
        """Fold *interval* into range; ``None`` if it cannot be folded."""
        if not math.isfinite(interval) or interval <= 0:
            return None
        folded = interval
        for _ in range(_MAX_FOLDS):
            if folded < self.min_interval:
                folded *= 2
            elif folded > self.max_interval:
                folded /= 2
            else:
                return folded
        if self.min_interval <= folded <= self.max_interval:
            return folded
        return None

    def accumulate(
        self,
        interval: float,
        weight: float = 1.0,
        supporters: int = 1,
        source: str = "interval",
    ) -> None:
        """Add weighted evidence for *interval* (seconds)."""
        if weight <= 0 or not math.isfinite(weight):
            return
        folded = self.normalize(interval)
        if folded is None:
            return
        key = round(math.floor(folded / self.bin_size + 0.5) * self.bin_size, 6)
        if key <= 0:
            return
        bucket = self._buckets.setdefault(key, _Bucket(interval=key))
        bucket.score += weight
        bucket.weight += weight
        bucket.supporters += supporters
        bucket.sources.add(source)
        bucket.multiplier_sum += weight * (folded / interval)
        self._entries.append((folded, weight))
        self._longest = max(self._longest, key)

    def apply_length_boost(self, exponent: float = 3.0, floor: float = 0.3) -> None:
        """Scale scores by ``clamp(interval / longest, floor, 1) ** exponent``."""
        if self._longest <= 0:
            return
        for bucket in self._buckets.values():
            ratio = min(max(bucket.interval / self._longest, floor), 1.0)
            bucket.score *= ratio ** exponent

    def suppress_shorter_harmonics(
        self,
        min_share: float = 0.2,
        factor: float = 0.12,
        tolerance: float = 0.04,
    ) -> None:
        """Damp buckets that are 1/1.5, 1/2 or 1/3 of a well-supported longer bucket."""
        total = self.total_score
        if total <= 0:
            return
        strong = [b for b in self._buckets.values() if b.score / total >= min_share]
        for bucket in self._buckets.values():
            for longer in strong:
                if longer is bucket or longer.interval <= bucket.interval:
                    continue
                if match_ratio(longer.interval, bucket.interval, tolerance=tolerance):
                    bucket.score *= factor
                    bucket.suppressed = True
                    break

    @property
    def total_score(self) -> float:
        return sum(b.score for b in self._buckets.values())

    def select(
        self,
        prefer_longer: bool = True,
        longer_ratio: float = 1.45,
        longer_share: float = 0.55,
        refine_tolerance: float = 0.08,
    ) -> HistogramSelection | None:
        """Choose the winning interval.

        The best non-suppressed bucket wins, unless *prefer_longer* and a
        bucket at least ``longer_ratio`` times longer scores at least
        ``longer_share`` of it. The reported interval is the weighted mean
        of folded intervals within ``refine_tolerance`` of the bucket.
        """
        if not self._buckets:
            return None
        ranked = sorted(self._buckets.values(), key=lambda b: (-b.score, b.interval))
        active = [b for b in ranked if not b.suppressed] or ranked
        chosen = active[0]
        if prefer_longer:
            longer = [
                b for b in active
                if b.interval >= chosen.interval * longer_ratio
                and b.score >= chosen.score * longer_share
            ]
            if longer:
                chosen = longer[0]

        interval = self._refined_interval(chosen.interval, refine_tolerance)
        multiplier = chosen.multiplier_sum / chosen.weight if chosen.weight > 0 else 1.0
        return HistogramSelection(
            interval=interval,
            bucket_interval=chosen.interval,
            score=chosen.score,
            total_score=self.total_score,
            supporters=chosen.supporters,
            multiplier=multiplier,
            sources=sorted(chosen.sources),
            score_map={round(60.0 / b.interval, 2): b.score for b in ranked},
            suppressed_bpms=sorted(round(60.0 / b.interval, 2) for b in ranked if b.suppressed),
        )

    def to_tempo_candidates(self) -> list[TempoCandidate]:
        """Non-suppressed buckets as tempo candidates weighted by score."""
        return [
            TempoCandidate(
                bpm=60.0 / b.interval,
                weight=b.score,
                label="+".join(sorted(b.sources)),
            )
            for b in sorted(self._buckets.values(), key=lambda b: -b.score)
            if not b.suppressed and b.score > 0
        ]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _refined_interval(self, key: float, tolerance: float) -> float:
        entries = [(i, w) for i, w in self._entries if abs(i - key) <= tolerance * key]
        if not entries:
            return key
        values, weights = zip(*entries)
        return float(np.average(values, weights=weights))


@dataclass
class _Cluster:
    weighted_sum: float = 0.0
    weighted_sq_sum: float = 0.0
    weight: float = 0.0
    max_multiplier_deviation: float = 0.0
    clamped_count: int = 0
    multiplier_sum: float = 0.0
    count: int = 0
    sources: set[str] = field(default_factory=set)

    @property
    def mean(self) -> float:
        return self.weighted_sum / self.weight if self.weight > 0 else 0.0

    @property
    def std(self) -> float:
        if self.weight <= 0:
            return 0.0
        variance = self.weighted_sq_sum / self.weight - self.mean ** 2
        return math.sqrt(max(0.0, variance))

    @property
    def consistency(self) -> float:
        spread = min(max(1 / (1 + self.std / 3), 0.25), 1.0)
        harmonic = min(max(1 - min(0.5, self.max_multiplier_deviation * 0.35), 0.35), 1.0)
        clamp = 1.0 if self.clamped_count == 0 else max(0.55, 1 - 0.08 * self.clamped_count)
        return min(max(spread * harmonic * clamp, 0.2), 1.0)

    def add(self, bpm: float, weight: float, multiplier: float, clamped: bool, source: str) -> None:
        self.weighted_sum += bpm * weight
        self.weighted_sq_sum += bpm * bpm * weight
        self.weight += weight
        self.max_multiplier_deviation = max(self.max_multiplier_deviation, abs(multiplier - 1))
        self.clamped_count += int(clamped)
        self.multiplier_sum += multiplier
        self.count += 1
        if source:
            self.sources.add(source)


def refine_from_candidates(
    candidates: Iterable[TempoCandidate],
    min_bpm: float,
    max_bpm: float,
    cluster_tolerance: float = 1.5,
) -> TempoRefinementResult | None:
    """Expand candidates harmonically, fold into range and pick the best cluster.

    Each candidate contributes itself and, when it allows harmonics, its
    ×0.5, ×2, ×1.5, ×2/3 and ×3 variants. Weights shrink with the distance
    of the range multiplier from 1 and for clamped values. Clusters are
    ranked by ``total weight × consistency``.
    """
    clusters: list[_Cluster] = []
    total_weight = 0.0
    for candidate in candidates:
        if not is_valid_bpm(candidate.bpm) or candidate.weight <= 0:
            continue
        factors = EXPANSION_FACTORS if candidate.allow_harmonics else (1.0,)
        for factor in factors:
            folded = coerce_to_range(candidate.bpm * factor, min_bpm, max_bpm)
            if folded is None:
                continue
            multiplier = factor * folded.multiplier
            weight = candidate.weight * (1 - min(0.5, 0.4 * abs(multiplier - 1)))
            if folded.clamped:
                weight *= 0.6
            if weight <= 0:
                continue
            total_weight += weight
            target = next(
                (c for c in clusters if abs(c.mean - folded.bpm) <= cluster_tolerance),
                None,
            )
            if target is None:
                target = _Cluster()
                clusters.append(target)
            target.add(folded.bpm, weight, multiplier, folded.clamped, candidate.label)

    if not clusters:
        return None
    best = max(clusters, key=lambda c: (c.weight * c.consistency, c.weight))
    final = coerce_to_range(best.mean, min_bpm, max_bpm)
    if final is None:
        return None
    return TempoRefinementResult(
        bpm=final.bpm,
        cluster_weight=best.weight,
        total_weight=total_weight,
        consistency=best.consistency,
        metadata={
            "cluster_weight": best.weight,
            "cluster_std": best.std,
            "cluster_count": best.count,
            "cluster_consistency": best.consistency,
            "max_multiplier_deviation": best.max_multiplier_deviation,
            "clamped_contributors": best.clamped_count,
            "range_multiplier": final.multiplier,
            "range_clamped": final.clamped,
            "average_multiplier": best.multiplier_sum / best.count,
            "sources": sorted(best.sources),
            "raw_cluster_bpm": best.mean,
        },
    )


def refine_from_intervals(
    intervals: Sequence[float],
    min_bpm: float,
    max_bpm: float,
    cluster_tolerance: float = 1.5,
) -> TempoRefinementResult | None:
    """Cluster per-interval tempos plus robust aggregates of *intervals* (seconds).

    Intervals close to both the representative (median of the 25-85%
    slice) and the overall median weigh most.
    """
    values = np.sort(np.asarray([i for i in intervals if math.isfinite(i) and i > 0], dtype=np.float64))
    if len(values) == 0:
        return None
    n = len(values)
    core = values[int(n * 0.25): max(int(n * 0.25) + 1, int(math.ceil(n * 0.85)))]
    representative = float(np.median(core))
    median = float(np.median(values))
    spread = max(1e-6, 0.4 * representative)

    candidates = [
        TempoCandidate(
            bpm=60.0 / value,
            weight=1 / (1 + abs(value - representative) / spread
                        + abs(value - median) / (0.6 * representative + 1e-6)),
            label="interval",
        )
        for value in values
    ]
    for label, value, weight in (
        ("representative", representative, 1.2),
        ("mean", float(values.mean()), 0.9),
        ("median", median, 1.0),
        ("max", float(values[-1]), 0.6),
        ("min", float(values[0]), 0.6),
    ):
        candidates.append(TempoCandidate(bpm=60.0 / value, weight=weight, label=label))
    return refine_from_candidates(candidates, min_bpm, max_bpm, cluster_tolerance)
