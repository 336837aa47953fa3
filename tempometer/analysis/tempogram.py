"""Fourier tempogram over a novelty curve."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from tempometer.analysis.primitives import hann_window, magnitude_spectrum, next_power_of_two


@dataclass(frozen=True)
class TempogramConfig:
    window_seconds: float = 8.0
    hop_seconds: float = 1.0
    min_bpm: float = 50.0
    max_bpm: float = 250.0
    tempo_bins: int = 120


@dataclass
class TempogramResult:
    matrix: np.ndarray  # (n_windows, tempo_bins), each row max-normalized
    tempo_axis: np.ndarray
    times: np.ndarray  # window centres in seconds
    dominant_tempo: np.ndarray
    dominant_strength: np.ndarray

    @property
    def is_empty(self) -> bool:
        return len(self.times) == 0


def empty_tempogram() -> TempogramResult:
    return TempogramResult(
        matrix=np.zeros((0, 0)),
        tempo_axis=np.zeros(0),
        times=np.zeros(0),
        dominant_tempo=np.zeros(0),
        dominant_strength=np.zeros(0),
    )


def _runner_up_peak(row: np.ndarray, best: int) -> float:
    """Largest local maximum of *row* other than the one at *best*."""
    padded = np.concatenate([[-np.inf], row, [-np.inf]])
    is_peak = (padded[1:-1] >= padded[:-2]) & (padded[1:-1] >= padded[2:])
    is_peak[best] = False
    if not is_peak.any():
        return 0.0
    return float(row[is_peak].max())


def compute_tempogram(
    novelty: np.ndarray,
    feature_rate: float,
    min_bpm: float | None = None,
    max_bpm: float | None = None,
    config: TempogramConfig = TempogramConfig(),
) -> TempogramResult:
    """Slide a window over *novelty* and read its spectrum on a BPM axis.

    Parameters
    ----------
    novelty:
        Novelty curve.
    feature_rate:
        Novelty frames per second.
    min_bpm, max_bpm:
        Tempo axis bounds; default to the config's 50-250 BPM.
    config:
        Window/hop lengths (clamped to at least 1.5 s / 0.2 s) and bin count.

    Returns
    -------
    TempogramResult
        Empty when the curve is empty or the window is 8 frames or shorter.
        Windows shorter than half the nominal length are skipped, except
        the first one.
    """
    novelty = np.asarray(novelty, dtype=np.float64)
    if len(novelty) == 0 or feature_rate <= 0:
        return empty_tempogram()

    window_seconds = max(1.5, config.window_seconds)
    hop_seconds = max(0.2, min(window_seconds, config.hop_seconds))
    window_length = int(round(window_seconds * feature_rate))
    hop_length = max(1, int(round(hop_seconds * feature_rate)))
    if window_length <= 8:
        return empty_tempogram()

    lo = config.min_bpm if min_bpm is None else min_bpm
    hi = config.max_bpm if max_bpm is None else max_bpm
    tempo_axis = np.linspace(lo, hi, config.tempo_bins)
    target_freqs = tempo_axis / 60.0

    rows, times, dominant, strength = [], [], [], []
    for start in range(0, len(novelty), hop_length):
        segment = novelty[start:start + window_length]
        if len(segment) == 0:
            break
        if start > 0 and len(segment) < window_length / 2:
            break
        size = next_power_of_two(max(len(segment), 64))
        padded = np.zeros(size)
        padded[: len(segment)] = segment * hann_window(len(segment))
        magnitudes = magnitude_spectrum(padded)
        resolution = feature_rate / size
        bins = np.arange(len(magnitudes))
        row = np.interp(target_freqs / resolution, bins, magnitudes)

        best = int(np.argmax(row))
        primary = float(row[best])
        if primary > 0:
            secondary = _runner_up_peak(row, best)
            contrast = min(max(primary - secondary, 0.0), primary)
            strength.append(contrast / primary)
            row = np.clip(row / primary, 0.0, 1.0)
        else:
            strength.append(0.0)
        rows.append(row)
        dominant.append(float(tempo_axis[best]))
        times.append((start + len(segment) / 2) / feature_rate)

    if not rows:
        return empty_tempogram()
    return TempogramResult(
        matrix=np.vstack(rows),
        tempo_axis=tempo_axis,
        times=np.asarray(times),
        dominant_tempo=np.asarray(dominant),
        dominant_strength=np.asarray(strength),
    )
