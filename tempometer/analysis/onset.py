"""Energy-based onset envelopes and peak picking."""

from __future__ import annotations

import numpy as np
from scipy.ndimage import maximum_filter1d

from tempometer.analysis.primitives import frame_signal
from tempometer.audio.preprocessing import exponential_smooth


def frame_parameters(sr: int, frame_ms: float = 30.0, hop_ms: float = 10.0) -> tuple[int, int]:
    """Frame and hop sizes in samples for the given durations."""
    frame = max(1, int(round(sr * frame_ms / 1000)))
    hop = max(1, int(round(sr * hop_ms / 1000)))
    return frame, hop


def frame_energy(
    audio: np.ndarray,
    sr: int,
    frame_ms: float = 30.0,
    hop_ms: float = 10.0,
) -> np.ndarray:
    """Mean-square energy per frame."""
    frame, hop = frame_parameters(sr, frame_ms, hop_ms)
    frames = frame_signal(audio, frame, hop)
    if len(frames) == 0:
        return np.zeros(0)
    return np.mean(frames ** 2, axis=1)


def onset_envelope(
    audio: np.ndarray,
    sr: int,
    frame_ms: float = 30.0,
    hop_ms: float = 10.0,
    smoothing: float = 0.3,
) -> np.ndarray:
    """RMS per frame, smoothed with an exponential moving average.

    Parameters
    ----------
    audio:
        Filtered audio signal.
    sr:
        Sample rate in Hz.
    frame_ms, hop_ms:
        Frame length and hop in milliseconds (30 ms / 10 ms by default, so
        the envelope runs at 100 Hz).
    smoothing:
        EMA coefficient applied to the RMS values.
    """
    energy = frame_energy(audio, sr, frame_ms, hop_ms)
    if len(energy) == 0:
        return energy
    return exponential_smooth(np.sqrt(energy), smoothing)


def pick_peaks(
    envelope: np.ndarray,
    threshold: float = 0.25,
    neighborhood: int = 3,
    min_distance: int = 0,
) -> np.ndarray:
    """Indices of local maxima above ``threshold × max(envelope)``.

    A frame is a local maximum when it equals the maximum of the
    ``±neighborhood`` frames around it. Peaks closer than *min_distance*
    frames are resolved in favour of the stronger one.
    """
    envelope = np.asarray(envelope, dtype=np.float64)
    if len(envelope) < 3:
        return np.zeros(0, dtype=int)
    peak = envelope.max()
    if peak <= 0:
        return np.zeros(0, dtype=int)

    local_max = maximum_filter1d(envelope, size=2 * neighborhood + 1, mode="nearest")
    is_peak = (envelope >= local_max) & (envelope > threshold * peak)
    # Keep only the first frame of flat plateaus.
    is_peak[1:] &= envelope[1:] != envelope[:-1]
    candidates = np.flatnonzero(is_peak)
    if min_distance <= 1 or len(candidates) == 0:
        return candidates

    kept: list[int] = []
    for idx in candidates:
        if kept and idx - kept[-1] < min_distance:
            if envelope[idx] > envelope[kept[-1]]:
                kept[-1] = int(idx)
            continue
        kept.append(int(idx))
    return np.asarray(kept, dtype=int)


def inter_onset_intervals(peaks: np.ndarray, frame_rate: float) -> np.ndarray:
    """Consecutive peak gaps in seconds."""
    peaks = np.asarray(peaks)
    if len(peaks) < 2 or frame_rate <= 0:
        return np.zeros(0)
    return np.diff(peaks).astype(np.float64) / frame_rate
