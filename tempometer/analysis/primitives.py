"""Signal primitives shared by the preprocessing stages and detectors."""

from __future__ import annotations

import math

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view


def next_power_of_two(n: int) -> int:
    """Smallest power of two >= *n* (1 for n <= 1)."""
    if n <= 1:
        return 1
    return 1 << (int(n) - 1).bit_length()


def previous_power_of_two(n: int) -> int:
    """Largest power of two <= *n* (0 for n < 1)."""
    if n < 1:
        return 0
    return 1 << (int(n).bit_length() - 1)


def remove_mean(x: np.ndarray) -> np.ndarray:
    x = np.asarray(x, dtype=np.float64)
    if len(x) == 0:
        return x.copy()
    return x - x.mean()


def normalize_peak(x: np.ndarray) -> np.ndarray:
    """Scale so that max |x| is 1. Silent input is returned unchanged."""
    x = np.asarray(x, dtype=np.float64)
    if len(x) == 0:
        return x.copy()
    peak = np.max(np.abs(x))
    if peak <= 0 or not np.isfinite(peak):
        return x.copy()
    return x / peak


def normalize_max(x: np.ndarray) -> np.ndarray:
    """Divide by the maximum value (for non-negative envelopes)."""
    x = np.asarray(x, dtype=np.float64)
    if len(x) == 0:
        return x.copy()
    peak = np.max(x)
    if peak <= 0 or not np.isfinite(peak):
        return np.zeros_like(x)
    return x / peak


def zscore(x: np.ndarray) -> np.ndarray:
    """Zero-mean, unit-variance copy of *x* (zero-mean only when flat)."""
    x = remove_mean(x)
    if len(x) == 0:
        return x
    std = x.std()
    if std <= 1e-12:
        return x
    return x / std


def hann_window(n: int) -> np.ndarray:
    """Periodic Hann window of length *n*."""
    if n <= 0:
        return np.zeros(0)
    if n == 1:
        return np.ones(1)
    return 0.5 - 0.5 * np.cos(2 * np.pi * np.arange(n) / n)


def downsample(x: np.ndarray, factor: int) -> np.ndarray:
    """Keep every *factor*-th sample (no anti-alias filtering)."""
    x = np.asarray(x, dtype=np.float64)
    if factor <= 1:
        return x.copy()
    return x[::factor].copy()


def moving_average(x: np.ndarray, window: int) -> np.ndarray:
    """Trailing moving average; the first samples average what is available."""
    x = np.asarray(x, dtype=np.float64)
    if window <= 1 or len(x) == 0:
        return x.copy()
    csum = np.cumsum(np.concatenate([[0.0], x]))
    idx = np.arange(1, len(x) + 1)
    start = np.maximum(0, idx - window)
    return (csum[idx] - csum[start]) / (idx - start)


def centered_moving_average(x: np.ndarray, window: int) -> np.ndarray:
    """Moving average centred on each sample, shrinking at the edges."""
    x = np.asarray(x, dtype=np.float64)
    if window <= 1 or len(x) == 0:
        return x.copy()
    half = window // 2
    csum = np.cumsum(np.concatenate([[0.0], x]))
    idx = np.arange(len(x))
    start = np.maximum(0, idx - half)
    end = np.minimum(len(x), idx + window - half)
    return (csum[end] - csum[start]) / (end - start)


def frame_signal(x: np.ndarray, frame_size: int, hop: int) -> np.ndarray:
    """Split *x* into overlapping frames, shape ``(n_frames, frame_size)``.

    Returns an empty ``(0, frame_size)`` array when *x* is shorter than one
    frame.
    """
    x = np.asarray(x, dtype=np.float64)
    if frame_size <= 0 or hop <= 0:
        raise ValueError(f"frame_size and hop must be positive, got {frame_size}/{hop}")
    if len(x) < frame_size:
        return np.zeros((0, frame_size))
    return sliding_window_view(x, frame_size)[::hop]


def autocorrelation(x: np.ndarray, lag: int) -> float:
    """Unbiased autocorrelation of *x* at *lag*: sum(x[i]·x[i+lag]) / (n - lag)."""
    n = len(x)
    if lag < 0 or lag >= n:
        return 0.0
    return float(np.dot(x[: n - lag], x[lag:]) / (n - lag))


def dominant_lag(x: np.ndarray, min_lag: int, max_lag: int) -> tuple[int, float] | None:
    """Lag in ``[min_lag, max_lag]`` with the highest autocorrelation.

    Returns ``(lag, score)`` or ``None`` when the signal is shorter than
    *max_lag* or no lag correlates positively.
    """
    x = np.asarray(x, dtype=np.float64)
    min_lag = max(1, int(min_lag))
    max_lag = int(max_lag)
    if max_lag < min_lag or len(x) <= max_lag:
        return None
    scores = np.array([autocorrelation(x, lag) for lag in range(min_lag, max_lag + 1)])
    best = int(np.argmax(scores))
    if scores[best] <= 0:
        return None
    return min_lag + best, float(scores[best])


def parabolic_offset(left: float, center: float, right: float) -> float:
    """Sub-sample offset of a peak from three neighbouring values, in [-0.5, 0.5]."""
    denom = left - 2 * center + right
    if denom >= 0 or not math.isfinite(denom):
        return 0.0
    offset = 0.5 * (left - right) / denom
    return float(min(max(offset, -0.5), 0.5))


def _bit_reverse_indices(n: int) -> np.ndarray:
    levels = n.bit_length() - 1
    idx = np.arange(n)
    rev = np.zeros(n, dtype=np.intp)
    for bit in range(levels):
        rev |= ((idx >> bit) & 1) << (levels - 1 - bit)
    return rev


def fft_radix2(x: np.ndarray) -> np.ndarray:
    """Iterative radix-2 Cooley-Tukey FFT over the last axis.

    The length of the last axis must be a power of two; 2-D input is
    transformed row by row.
    """
    a = np.asarray(x, dtype=np.complex128)
    n = a.shape[-1]
    if n == 0 or n & (n - 1):
        raise ValueError(f"FFT length must be a power of two, got {n}")
    a = a[..., _bit_reverse_indices(n)]
    batch = a.shape[:-1]
    size = 2
    while size <= n:
        half = size // 2
        twiddle = np.exp(-2j * np.pi * np.arange(half) / size)
        blocks = a.reshape(batch + (n // size, size))
        even = blocks[..., :half]
        odd = blocks[..., half:] * twiddle
        a = np.concatenate([even + odd, even - odd], axis=-1).reshape(batch + (n,))
        size *= 2
    return a


def magnitude_spectrum(x: np.ndarray) -> np.ndarray:
    """Magnitudes of bins ``0 .. n/2 - 1`` of the radix-2 FFT."""
    spectrum = fft_radix2(x)
    n = spectrum.shape[-1]
    return np.abs(spectrum[..., : max(1, n // 2)])
