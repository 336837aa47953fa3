"""Energy-onset detector: inter-onset intervals voted into a histogram."""

from __future__ import annotations

import logging

import numpy as np

from tempometer.analysis.detectors.base import BpmDetector
from tempometer.analysis.histogram import IntervalHistogram
from tempometer.analysis.models import BpmReading
from tempometer.analysis.onset import frame_energy, frame_parameters, inter_onset_intervals, pick_peaks
from tempometer.analysis.pipeline import PreprocessedSignal
from tempometer.analysis.primitives import centered_moving_average, normalize_max

logger = logging.getLogger(__name__)


class EnergyOnsetDetector(BpmDetector):
    """Peaks of short-time energy, their gaps, and a duration-weighted vote.

    Gaps are weighted by ``duration²`` times the mean strength of the two
    peaks, boosted towards longer intervals, and shorter harmonics of a
    strong bucket are damped before the winner is chosen.
    """

    id = "energy_onset"
    name = "Onset Energy"
    preferred_window = 6.0

    def __init__(
        self,
        frame_ms: float = 30.0,
        hop_ms: float = 10.0,
        smoothing_ms: float = 100.0,
        threshold: float = 0.25,
        bin_size: float = 0.02,
        min_intervals: int = 2,
    ) -> None:
        self.frame_ms = frame_ms
        self.hop_ms = hop_ms
        self.smoothing_ms = smoothing_ms
        self.threshold = threshold
        self.bin_size = bin_size
        self.min_intervals = min_intervals

    def analyze(self, signal: PreprocessedSignal) -> BpmReading | None:
        audio = signal.filtered_samples
        if len(audio) == 0:
            return None
        sr = signal.sample_rate
        context = signal.context

        energy = frame_energy(audio, sr, self.frame_ms, self.hop_ms)
        if len(energy) < 3:
            return None
        _, hop = frame_parameters(sr, self.frame_ms, self.hop_ms)
        frame_rate = sr / hop
        smoothing = max(1, int(round(self.smoothing_ms / self.hop_ms)))
        envelope = normalize_max(centered_moving_average(energy, smoothing))

        min_distance = int(frame_rate * 60.0 / context.max_bpm * 0.85)
        peaks = pick_peaks(envelope, self.threshold, neighborhood=3, min_distance=min_distance)
        intervals = inter_onset_intervals(peaks, frame_rate)
        if len(intervals) < self.min_intervals:
            return None

        histogram = IntervalHistogram(context.min_bpm, context.max_bpm, self.bin_size)
        strengths = envelope[peaks]
        for i, interval in enumerate(intervals):
            strength = 0.5 * (strengths[i] + strengths[i + 1])
            histogram.accumulate(interval, weight=interval ** 2 * strength, source="interval")
        histogram.apply_length_boost()
        histogram.suppress_shorter_harmonics()
        selection = histogram.select(prefer_longer=True)
        if selection is None or selection.interval <= 0:
            return None

        folded = np.array([f for f in map(histogram.normalize, intervals) if f is not None])
        variance_ms = float(np.var(folded * 1000)) if len(folded) else 0.0
        tightness = 1 / (1 + variance_ms / 500)
        confidence = 0.5 * tightness + 0.5 * selection.dominance

        logger.debug(
            f"{self.id}: {len(peaks)} peaks, bucket {selection.bucket_interval * 1000:.0f} ms, "
            f"dominance {selection.dominance:.2f}"
        )
        return self._reading(
            signal,
            selection.bpm,
            confidence,
            {
                "peaks": len(peaks),
                "interval_ms": selection.interval * 1000,
                "interval_variance_ms": variance_ms,
                "histogram_dominance": selection.dominance,
                "supporters": selection.supporters,
                "suppressed_bpms": selection.suppressed_bpms,
                "interval_multiplier": selection.multiplier,
            },
        )
