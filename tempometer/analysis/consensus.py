"""Consensus engine - fuses per-detector readings into one tempo.

Steps per cycle:
1. Pull every reading onto the harmonic closest to a reference tempo
   (current consensus, else the median of the incoming readings).
2. Drop readings that jump away from their own algorithm's recent median.
3. Greedily cluster the survivors, strongest first, within a BPM tolerance.
4. Take the heaviest cluster (near-ties go to the one nearest the current
   consensus) and average it by trust weight.
5. Smooth towards the raw value and score the result.

When nothing survives the last smoothed value is re-emitted with reduced
confidence. The engine is stateful and must be driven by one caller.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass, field, replace

import numpy as np

from tempometer.analysis.harmonics import is_valid_bpm, normalize_to_reference
from tempometer.analysis.models import BpmReading, ConsensusResult

logger = logging.getLogger(__name__)

# Confidence component weights (sum to 1).
CONFIDENCE_WEIGHTS = {
    "majority": 0.30,
    "spread": 0.15,
    "consistency": 0.15,
    "harmonic": 0.10,
    "stability": 0.15,
    "drift": 0.15,
}


def _clamp01(x: float) -> float:
    return min(max(x, 0.0), 1.0)


def consistency_factor(reading: BpmReading) -> float:
    """Trust from the detector's own cluster consistency (1 when not reported)."""
    value = reading.metadata.get("cluster_consistency")
    if value is None:
        return 1.0
    return 0.5 + 0.5 * _clamp01(float(value))


def harmonic_factor(reading: BpmReading) -> float:
    """Trust lost by folding the raw estimate into range."""
    multiplier = float(reading.metadata.get("range_multiplier", 1.0) or 1.0)
    factor = 1.0
    if multiplier > 0 and multiplier != 1.0:
        factor = max(0.3, 1.0 - 0.3 * abs(math.log2(multiplier)))
    if reading.metadata.get("range_clamped"):
        factor *= 0.6
    return factor


def octave_factor(reading: BpmReading) -> float:
    """Trust lost by an octave or triplet correction made during this cycle."""
    ratio = float(reading.metadata.get("octave_ratio", 1.0))
    if ratio <= 0 or ratio == 1.0:
        return 1.0
    return max(0.3, 1.0 - 0.35 * abs(math.log2(ratio)))


def trust_weight(reading: BpmReading) -> float:
    return (
        _clamp01(reading.confidence)
        * consistency_factor(reading)
        * harmonic_factor(reading)
        * octave_factor(reading)
    )


@dataclass
class _Cluster:
    members: list[tuple[BpmReading, float]] = field(default_factory=list)

    @property
    def weight(self) -> float:
        return sum(w for _, w in self.members)

    @property
    def bpms(self) -> np.ndarray:
        return np.array([r.bpm for r, _ in self.members])

    def mean(self) -> float:
        weights = np.array([w for _, w in self.members])
        if weights.sum() <= 0:
            return float(self.bpms.mean())
        return float(np.average(self.bpms, weights=weights))


@dataclass
class _AlgorithmHistory:
    values: deque
    rejections: int = 0


class ConsensusEngine:
    """Stateful fusion of detector readings into a smoothed tempo."""

    def __init__(
        self,
        min_bpm: float = 40.0,
        max_bpm: float = 240.0,
        history_size: int = 10,
        min_readings_for_outlier: int = 3,
        outlier_threshold: float = 8.0,
        max_consecutive_rejections: int = 3,
        cluster_tolerance: float = 3.0,
        min_cluster_size: int = 2,
        smoothing_factor: float = 0.25,
        stable_smoothing_scale: float = 0.5,
        stability_threshold: float = 2.0,
        stable_cycles: int = 5,
        tie_ratio: float = 0.9,
        consensus_history_size: int = 15,
        min_confidence: float = 0.05,
    ) -> None:
        if not 0 < smoothing_factor <= 1:
            raise ValueError(f"smoothing_factor must be in (0, 1], got {smoothing_factor}")
        if min_bpm >= max_bpm:
            raise ValueError(f"min_bpm must be below max_bpm, got {min_bpm}-{max_bpm}")
        self.min_bpm = min_bpm
        self.max_bpm = max_bpm
        self.history_size = history_size
        self.min_readings_for_outlier = min_readings_for_outlier
        self.outlier_threshold = outlier_threshold
        self.max_consecutive_rejections = max_consecutive_rejections
        self.cluster_tolerance = cluster_tolerance
        self.min_cluster_size = min_cluster_size
        self.smoothing_factor = smoothing_factor
        self.stable_smoothing_scale = stable_smoothing_scale
        self.stability_threshold = stability_threshold
        self.stable_cycles = stable_cycles
        self.tie_ratio = tie_ratio
        self.consensus_history_size = consensus_history_size
        self.min_confidence = min_confidence

        self._histories: dict[str, _AlgorithmHistory] = {}
        self._consensus_history: deque = deque(maxlen=consensus_history_size)
        self._current: float | None = None
        self._stable_count = 0

    @property
    def current(self) -> float | None:
        """Last smoothed consensus BPM, ``None`` before the first one."""
        return self._current

    @property
    def stable_count(self) -> int:
        return self._stable_count

    def reset(self) -> None:
        """Forget every history and the current consensus."""
        self._histories.clear()
        self._consensus_history.clear()
        self._current = None
        self._stable_count = 0

    # ---- Public API ----

    def combine(self, readings: list[BpmReading]) -> ConsensusResult | None:
        eligible = [
            r for r in readings
            if is_valid_bpm(r.bpm) and r.confidence >= self.min_confidence
        ]
        if not eligible:
            return self._fallback("no eligible readings")

        normalized = self._normalize(eligible)
        survivors = [r for r in normalized if self._accept(r)]
        if not survivors:
            return self._fallback("all readings rejected as outliers")

        weighted = [(r, trust_weight(r)) for r in survivors]
        clusters = self._find_clusters(weighted)
        if not clusters:
            return self._fallback("no agreeing cluster")

        winner = self._select(clusters)
        raw = winner.mean()
        previous = self._current
        smoothed = self._smooth(raw)

        total_weight = sum(w for _, w in weighted)
        confidence = self._confidence(winner, total_weight, raw, smoothed)
        cluster_weight = winner.weight
        weights = {
            r.algorithm_id: (w / cluster_weight if cluster_weight > 0 else 1.0 / len(winner.members))
            for r, w in winner.members
        }
        logger.debug(
            f"consensus: raw {raw:.2f} -> {smoothed:.2f} BPM from "
            f"{len(winner.members)}/{len(survivors)} readings (previous {previous})"
        )
        return ConsensusResult(bpm=smoothed, confidence=confidence, weights=weights)

    # ---- Steps ----

    def _normalize(self, readings: list[BpmReading]) -> list[BpmReading]:
        reference = self._current
        if reference is None:
            reference = float(np.median([r.bpm for r in readings]))
        result = []
        for reading in readings:
            bpm, ratio = normalize_to_reference(reading.bpm, reference, self.min_bpm, self.max_bpm)
            if ratio == 1.0 and bpm == reading.bpm:
                result.append(reading)
                continue
            metadata = dict(reading.metadata)
            metadata.update({
                "octave_corrected": ratio != 1.0,
                "octave_ratio": ratio,
                "original_bpm": reading.bpm,
            })
            result.append(replace(reading, bpm=bpm, metadata=metadata))
        return result

    def _accept(self, reading: BpmReading) -> bool:
        """Per-algorithm outlier check; updates that algorithm's history."""
        history = self._histories.setdefault(
            reading.algorithm_id, _AlgorithmHistory(deque(maxlen=self.history_size))
        )
        if len(history.values) >= self.min_readings_for_outlier:
            median = float(np.median(history.values))
            if abs(reading.bpm - median) > self.outlier_threshold:
                if history.rejections < self.max_consecutive_rejections:
                    history.rejections += 1
                    logger.debug(
                        f"consensus: rejected {reading.algorithm_id} {reading.bpm:.1f} "
                        f"(own median {median:.1f})"
                    )
                    return False
                # Persistent change: restart this algorithm's history.
                history.values.clear()
        history.rejections = 0
        history.values.append(reading.bpm)
        return True

    def _find_clusters(self, weighted: list[tuple[BpmReading, float]]) -> list[_Cluster]:
        ordered = sorted(weighted, key=lambda item: item[1], reverse=True)
        used = [False] * len(ordered)
        clusters = []
        for i, (anchor, weight) in enumerate(ordered):
            if used[i]:
                continue
            used[i] = True
            cluster = _Cluster([(anchor, weight)])
            for j in range(i + 1, len(ordered)):
                if not used[j] and abs(ordered[j][0].bpm - anchor.bpm) <= self.cluster_tolerance:
                    used[j] = True
                    cluster.members.append(ordered[j])
            if len(cluster.members) >= self.min_cluster_size:
                clusters.append(cluster)
        return clusters

    def _select(self, clusters: list[_Cluster]) -> _Cluster:
        best = max(clusters, key=lambda c: c.weight)
        if self._current is None or len(clusters) == 1:
            return best
        contenders = [c for c in clusters if c.weight >= self.tie_ratio * best.weight]
        return min(contenders, key=lambda c: abs(c.mean() - self._current))

    def _smooth(self, raw: float) -> float:
        if self._current is None:
            smoothed = raw
        else:
            factor = self.smoothing_factor
            if self._stable_count >= self.stable_cycles:
                factor *= self.stable_smoothing_scale
            smoothed = self._current + factor * (raw - self._current)
            if abs(raw - self._current) < self.stability_threshold:
                self._stable_count += 1
            else:
                self._stable_count = 0
        self._current = smoothed
        self._consensus_history.append(smoothed)
        return smoothed

    def _stability(self) -> float:
        if len(self._consensus_history) < 2:
            return 0.5
        return 1.0 / (1.0 + float(np.var(self._consensus_history)) / 4.0)

    def _confidence(self, winner: _Cluster, total_weight: float, raw: float, smoothed: float) -> float:
        members = [r for r, _ in winner.members]
        components = {
            "majority": winner.weight / total_weight if total_weight > 0 else 0.0,
            "spread": 1.0 / (1.0 + float(winner.bpms.std())),
            "consistency": float(np.mean([
                r.metadata.get("cluster_consistency", r.confidence) for r in members
            ])),
            "harmonic": float(np.mean([harmonic_factor(r) * octave_factor(r) for r in members])),
            "stability": self._stability(),
            "drift": 1.0 / (1.0 + abs(raw - smoothed) / self.cluster_tolerance),
        }
        return _clamp01(sum(CONFIDENCE_WEIGHTS[k] * _clamp01(v) for k, v in components.items()))

    def _fallback(self, reason: str) -> ConsensusResult | None:
        if self._current is None:
            logger.debug(f"consensus: {reason}, nothing established yet")
            return None
        logger.debug(f"consensus: {reason}, holding {self._current:.2f} BPM")
        confidence = min(max(0.5 * self._stability(), 0.05), 0.5)
        return ConsensusResult(bpm=self._current, confidence=confidence, weights={})
