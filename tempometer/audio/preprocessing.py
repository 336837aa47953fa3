"""Audio preprocessing utilities: loudness normalization and RC filters."""

from __future__ import annotations

import math

import numpy as np
from scipy.signal import lfilter

from tempometer.analysis.primitives import frame_signal

_EPSILON = 1e-10
_NOISE_FRAME = 2048


def rms(audio: np.ndarray) -> float:
    """Root-mean-square level of *audio* (0.0 for empty input)."""
    audio = np.asarray(audio, dtype=np.float64)
    if len(audio) == 0:
        return 0.0
    return float(np.sqrt(np.mean(audio ** 2)))


def normalize_rms(audio: np.ndarray, target_db: float = -18.0) -> np.ndarray:
    """Scale *audio* so its RMS level sits at *target_db* dBFS.

    The scaled signal is clipped to [-1, 1], so sparse material such as a
    click track lands below the target. Silent input (RMS below 1e-10) is
    returned unchanged.
    """
    audio = np.asarray(audio, dtype=np.float64)
    level = rms(audio)
    if level < _EPSILON:
        return audio.copy()
    target = 10 ** (target_db / 20)
    return np.clip(audio * (target / level), -1.0, 1.0)


def estimate_noise_floor(audio: np.ndarray, quiet_fraction: float = 0.1) -> float:
    """Estimate the noise floor as the RMS of the quietest frames.

    Frames are 2048 samples at 50% overlap. The floor is the RMS taken over
    the quietest *quiet_fraction* of frames (at least one). Signals shorter
    than one frame fall back to their overall RMS.
    """
    audio = np.asarray(audio, dtype=np.float64)
    if len(audio) == 0:
        return 0.0
    frames = frame_signal(audio, _NOISE_FRAME, _NOISE_FRAME // 2)
    if len(frames) == 0:
        return rms(audio)
    frame_rms = np.sort(np.sqrt(np.mean(frames ** 2, axis=1)))
    count = max(1, int(len(frame_rms) * quiet_fraction))
    return float(np.sqrt(np.mean(frame_rms[:count] ** 2)))


def _rc_constant(cutoff_hz: float) -> float:
    return 1.0 / (2 * math.pi * cutoff_hz)


def high_pass_filter(audio: np.ndarray, sr: int, cutoff: float = 20.0) -> np.ndarray:
    """First-order RC high-pass filter.

    Implements ``y[i] = a·(y[i-1] + x[i] - x[i-1])`` with
    ``a = RC / (RC + dt)`` and ``y[0] = x[0]``.
    """
    audio = np.asarray(audio, dtype=np.float64)
    if len(audio) == 0 or cutoff <= 0:
        return audio.copy()
    rc = _rc_constant(cutoff)
    dt = 1.0 / sr
    alpha = rc / (rc + dt)
    zi = [(1 - alpha) * audio[0]]
    y, _ = lfilter([alpha, -alpha], [1.0, -alpha], audio, zi=zi)
    return y


def low_pass_filter(audio: np.ndarray, sr: int, cutoff: float = 1500.0) -> np.ndarray:
    """First-order RC low-pass filter.

    Implements ``y[i] = y[i-1] + a·(x[i] - y[i-1])`` with
    ``a = dt / (RC + dt)`` and ``y[0] = x[0]``.
    """
    audio = np.asarray(audio, dtype=np.float64)
    if len(audio) == 0 or cutoff <= 0:
        return audio.copy()
    rc = _rc_constant(cutoff)
    dt = 1.0 / sr
    return exponential_smooth(audio, dt / (rc + dt))


def band_pass_filter(
    audio: np.ndarray,
    sr: int,
    low_cutoff: float = 20.0,
    high_cutoff: float = 1500.0,
) -> np.ndarray:
    """High-pass at *low_cutoff* followed by low-pass at *high_cutoff*.

    Parameters
    ----------
    audio:
        Input audio signal.
    sr:
        Sample rate in Hz.
    low_cutoff:
        High-pass corner in Hz. Defaults to 20 Hz.
    high_cutoff:
        Low-pass corner in Hz. Defaults to 1500 Hz.
    """
    return low_pass_filter(high_pass_filter(audio, sr, low_cutoff), sr, high_cutoff)


def exponential_smooth(values: np.ndarray, alpha: float) -> np.ndarray:
    """Exponential moving average seeded with the first value."""
    if not 0 < alpha <= 1:
        raise ValueError(f"alpha must be in (0, 1], got {alpha}")
    values = np.asarray(values, dtype=np.float64)
    if len(values) == 0:
        return values.copy()
    zi = [(1 - alpha) * values[0]]
    y, _ = lfilter([alpha], [1.0, -(1 - alpha)], values, zi=zi)
    return y
