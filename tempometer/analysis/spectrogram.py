"""Short-time spectra and mel filterbanks."""

from __future__ import annotations

from dataclasses import dataclass

import librosa
import numpy as np

from tempometer.analysis.primitives import frame_signal, hann_window, magnitude_spectrum


def stft_magnitudes(
    audio: np.ndarray,
    window_size: int = 1024,
    hop_size: int = 512,
) -> np.ndarray:
    """Hann-windowed magnitude spectra, shape ``(n_frames, window_size // 2)``.

    ``window_size`` must be a power of two. Audio shorter than one window
    yields zero frames.
    """
    if window_size <= 0 or window_size & (window_size - 1):
        raise ValueError(f"window_size must be a power of two, got {window_size}")
    if hop_size <= 0:
        raise ValueError(f"hop_size must be positive, got {hop_size}")
    frames = frame_signal(audio, window_size, hop_size)
    if len(frames) == 0:
        return np.zeros((0, window_size // 2))
    return magnitude_spectrum(frames * hann_window(window_size))


def mel_filterbank(
    sr: int,
    n_fft: int,
    n_bands: int,
    fmin: float,
    fmax: float,
) -> np.ndarray:
    """Triangular mel filters over the first ``n_fft // 2`` bins.

    Each non-empty filter is normalized to sum to one. Shape is
    ``(n_bands, n_fft // 2)``.
    """
    fmax = min(fmax, sr / 2)
    fmin = min(fmin, fmax)
    filters = librosa.filters.mel(
        sr=sr, n_fft=n_fft, n_mels=n_bands, fmin=fmin, fmax=fmax, htk=True, norm=None,
    )[:, : n_fft // 2]
    sums = filters.sum(axis=1, keepdims=True)
    return np.divide(filters, sums, out=np.zeros_like(filters), where=sums > 0)


@dataclass
class MelSpectrogram:
    """Log mel energies per frame plus per-band means normalized to max 1."""
    frames: np.ndarray  # (n_frames, n_bands)
    band_means: np.ndarray


def mel_spectrogram(
    audio: np.ndarray,
    sr: int,
    n_bands: int = 40,
    n_fft: int = 1024,
    hop_size: int = 512,
    fmin: float = 20.0,
    fmax: float = 5000.0,
) -> MelSpectrogram:
    """Compute a ``log(1 + energy)`` mel-spectrogram.

    Frames are uncentered Hann windows of ``n_fft`` samples, and each mel
    filter sums to one. Audio shorter than one window yields zero frames.
    """
    audio = np.asarray(audio, dtype=np.float32)
    if len(audio) < n_fft:
        return MelSpectrogram(frames=np.zeros((0, n_bands)), band_means=np.zeros(0))
    fmax = min(fmax, sr / 2)
    fmin = min(fmin, fmax)
    power = librosa.feature.melspectrogram(
        y=audio, sr=sr, n_fft=n_fft, hop_length=hop_size, window="hann",
        center=False, power=2.0, n_mels=n_bands, fmin=fmin, fmax=fmax,
        htk=True, norm=1,
    )
    energies = np.log1p(power.T.astype(np.float64))
    means = energies.mean(axis=0)
    peak = means.max()
    if peak > 0:
        means = means / peak
    return MelSpectrogram(frames=energies, band_means=means)
