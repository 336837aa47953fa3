"""Haar-wavelet band-energy periodicity detector."""

from __future__ import annotations

import logging
import math

import numpy as np

from tempometer.analysis.detectors.base import BpmDetector
from tempometer.analysis.histogram import refine_from_candidates
from tempometer.analysis.models import BpmReading, DetectionContext, TempoCandidate
from tempometer.analysis.pipeline import PreprocessedSignal
from tempometer.analysis.primitives import (
    autocorrelation,
    dominant_lag,
    moving_average,
    normalize_peak,
    parabolic_offset,
    previous_power_of_two,
    remove_mean,
)

logger = logging.getLogger(__name__)

_SQRT2 = math.sqrt(2.0)


def haar_decompose(samples: np.ndarray, levels: int) -> tuple[list[np.ndarray], np.ndarray]:
    """Haar transform with ``(a ± b) / √2``; returns detail bands and final approximation."""
    current = np.asarray(samples, dtype=np.float64)
    details = []
    for _ in range(levels):
        if len(current) < 2:
            break
        even = current[0:len(current) - 1:2]
        odd = current[1::2][: len(even)]
        details.append((even - odd) / _SQRT2)
        current = (even + odd) / _SQRT2
    return details, current


def band_envelope(band: np.ndarray, window: int) -> np.ndarray:
    """Rectified, smoothed, zero-mean, peak-normalized envelope of a band."""
    return normalize_peak(remove_mean(moving_average(np.abs(band), window)))


def _correlation(envelope: np.ndarray, lag: int) -> float:
    energy = autocorrelation(envelope, 0)
    if energy <= 1e-12:
        return 0.0
    return autocorrelation(envelope, lag) / energy


class WaveletEnergyDetector(BpmDetector):
    """Periodicity of energy in Haar sub-bands of the ~400 Hz signal.

    Each detail band and the final approximation band is rectified,
    smoothed and autocorrelated within lag bounds scaled to its sample
    rate. The best band (detail scores are damped by ``1/√scale``) is
    refined against the full-resolution lag grid. Band tempos are taken
    literally, without harmonic expansion, and clustered for the result.
    """

    id = "wavelet_energy"
    name = "Wavelet Energy"
    preferred_window = 10.0

    def __init__(self, levels: int = 2, min_seconds: float = 0.5) -> None:
        self.levels = levels
        self.min_seconds = min_seconds

    def analyze(self, signal: PreprocessedSignal) -> BpmReading | None:
        samples = signal.samples_400hz
        rate = signal.rate_400hz
        if len(samples) == 0 or rate <= 0:
            samples, rate = signal.filtered_samples, float(signal.sample_rate)
        if len(samples) < math.ceil(rate * self.min_seconds):
            return None
        n = previous_power_of_two(len(samples))
        if n < 32:
            return None
        trimmed = np.asarray(samples[-n:], dtype=np.float64)
        details, approximation = haar_decompose(trimmed, self.levels)

        bands = [(f"detail_{level}", band, 2 ** (level + 1), 1 / math.sqrt(2 ** (level + 1)))
                 for level, band in enumerate(details)]
        bands.append(("approximation", approximation, 2 ** len(details), 1.0))

        context = signal.context
        diagnostics = []
        best = None
        for label, band, scale, damping in bands:
            if len(band) < 8:
                continue
            envelope = band_envelope(band, max(2, len(band) // 128))
            min_lag = max(1, int(rate * 60.0 / context.max_bpm / scale))
            max_lag = min(len(envelope) - 1, int(rate * 60.0 / context.min_bpm / scale))
            if min_lag >= max_lag:
                continue
            found = dominant_lag(envelope, min_lag, max_lag)
            if found is None:
                continue
            lag, _ = found
            correlation = _correlation(envelope, lag)
            if correlation <= 0:
                continue
            weighted = correlation * damping
            diagnostics.append({
                "band": label,
                "scale": scale,
                "lag_samples": lag * scale,
                "correlation": correlation,
                "weighted_score": weighted,
            })
            if best is None or weighted > best[0]:
                best = (weighted, label, band, scale, lag, correlation)

        if best is None:
            return None
        _, label, band, scale, lag, band_correlation = best

        lag_samples, final_correlation = self._refine(band, scale, lag, n, rate, context)
        resolved_bpm = 60.0 * rate / lag_samples

        candidates = [TempoCandidate(resolved_bpm, 1.0, "resolved", allow_harmonics=False)]
        candidates += [
            TempoCandidate(
                60.0 * rate / entry["lag_samples"],
                min(max(entry["weighted_score"], 0.1), 1.0),
                entry["band"],
                allow_harmonics=False,
            )
            for entry in diagnostics
        ]
        refinement = refine_from_candidates(candidates, context.min_bpm, context.max_bpm)
        if refinement is None:
            return None

        strength = min(max(max(final_correlation, 0.8 * band_correlation), 0.0), 1.0)
        confidence = 0.55 * strength + 0.45 * refinement.consistency
        logger.debug(f"{self.id}: best band {label}, lag {lag_samples:.1f} samples")

        metadata = dict(refinement.metadata)
        metadata.update({
            "band": label,
            "scale": scale,
            "lag_samples": lag_samples,
            "final_correlation": final_correlation,
            "raw_resolved_bpm": resolved_bpm,
            "effective_rate": rate,
            "bands": diagnostics,
        })
        return self._reading(signal, refinement.bpm, confidence, metadata)

    @staticmethod
    def _refine(
        band: np.ndarray,
        scale: int,
        lag: int,
        length: int,
        rate: float,
        context: DetectionContext,
    ) -> tuple[float, float]:
        """Search the full-resolution lag grid around ``lag × scale``."""
        smoothed = moving_average(np.abs(band), max(2, len(band) // 64))
        envelope = normalize_peak(remove_mean(np.repeat(smoothed, scale)[:length]))
        full_min = max(1, int(rate * 60.0 / context.max_bpm))
        full_max = min(len(envelope) - 2, int(math.ceil(rate * 60.0 / context.min_bpm)))
        lo = max(full_min, lag * scale - scale)
        hi = min(full_max, lag * scale + scale)
        if lo > hi:
            return float(lag * scale), _correlation(envelope, lag * scale)
        lags = np.arange(lo, hi + 1)
        scores = np.array([autocorrelation(envelope, int(k)) for k in lags])
        idx = int(np.argmax(scores))
        refined = float(lags[idx])
        if 0 < idx < len(scores) - 1:
            refined += parabolic_offset(scores[idx - 1], scores[idx], scores[idx + 1])
        return refined, _correlation(envelope, int(lags[idx]))
