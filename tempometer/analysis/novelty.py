"""Spectral-flux novelty curve."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from tempometer.analysis.primitives import moving_average
from tempometer.analysis.spectrogram import mel_filterbank, stft_magnitudes


@dataclass(frozen=True)
class NoveltyConfig:
    window_size: int = 1024
    hop_size: int = 512
    log_compression: float = 1000.0  # C in log(1 + C·x)
    use_log_compression: bool = True
    use_mel_filter: bool = True
    mel_bands: int = 6
    min_frequency: float = 40.0
    max_frequency: float = 8000.0
    smoothing_seconds: float = 1.0


@dataclass
class NoveltyResult:
    curve: np.ndarray
    feature_rate: float  # frames per second


def compute_novelty(
    audio: np.ndarray,
    sr: int,
    config: NoveltyConfig = NoveltyConfig(),
) -> NoveltyResult:
    """Half-wave rectified spectral flux with a moving-average baseline removed.

    Spectra are mel-filtered and log-compressed (``log(1 + C·x) / log(1 + C)``)
    before the flux is taken. The first frame is compared against silence.
    Returns an empty curve (feature rate 0) for audio shorter than one window.
    """
    spectra = stft_magnitudes(audio, config.window_size, config.hop_size)
    if len(spectra) == 0:
        return NoveltyResult(curve=np.zeros(0), feature_rate=0.0)

    if config.use_mel_filter and config.mel_bands > 0:
        filters = mel_filterbank(
            sr, config.window_size, config.mel_bands,
            config.min_frequency, config.max_frequency,
        )
        spectra = spectra @ filters.T

    if config.use_log_compression:
        c = config.log_compression
        spectra = np.log1p(spectra * c) / np.log1p(c)

    previous = np.vstack([np.zeros((1, spectra.shape[1])), spectra[:-1]])
    flux = np.maximum(spectra - previous, 0.0).sum(axis=1)

    feature_rate = sr / config.hop_size
    window = max(1, int(round(config.smoothing_seconds * feature_rate)))
    baseline = moving_average(flux, window)
    curve = np.maximum(flux - baseline, 0.0)
    return NoveltyResult(curve=curve, feature_rate=feature_rate)
