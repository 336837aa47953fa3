"""FFT spectral-peak detector over a low-rate amplitude envelope."""

from __future__ import annotations

import math

import numpy as np

from tempometer.analysis.detectors.base import BpmDetector
from tempometer.analysis.models import BpmReading
from tempometer.analysis.pipeline import PreprocessedSignal
from tempometer.analysis.primitives import (
    centered_moving_average,
    hann_window,
    magnitude_spectrum,
    next_power_of_two,
    parabolic_offset,
    remove_mean,
)

_EPS = 1e-12


class FftSpectrumDetector(BpmDetector):
    """Strongest in-range frequency of the ~400 Hz amplitude envelope.

    The envelope is Hann-windowed, zero-padded to a power of two between
    ``min_fft_size`` and ``max_fft_size`` and transformed with the radix-2
    FFT. The peak bin is refined by parabolic interpolation of the log
    magnitudes.
    """

    id = "fft_spectrum"
    name = "FFT Spectrum"
    preferred_window = 10.0

    def __init__(
        self,
        min_fft_size: int = 2048,
        max_fft_size: int = 8192,
        smoothing_ms: float = 25.0,
        min_peak_ratio: float = 1.5,
    ) -> None:
        self.min_fft_size = min_fft_size
        self.max_fft_size = max_fft_size
        self.smoothing_ms = smoothing_ms
        self.min_peak_ratio = min_peak_ratio

    def analyze(self, signal: PreprocessedSignal) -> BpmReading | None:
        samples = signal.samples_400hz
        rate = signal.rate_400hz
        if len(samples) < 16 or rate <= 0:
            return None
        context = signal.context
        # Need at least two periods of the slowest tempo.
        if len(samples) < 2 * rate * 60.0 / context.min_bpm:
            return None

        window = max(1, int(round(rate * self.smoothing_ms / 1000)))
        envelope = centered_moving_average(np.abs(samples), window)[-self.max_fft_size:]
        envelope = remove_mean(envelope)
        if np.max(np.abs(envelope)) <= _EPS:
            return None

        n = len(envelope)
        size = min(max(next_power_of_two(n), self.min_fft_size), self.max_fft_size)
        padded = np.zeros(size)
        padded[:n] = envelope * hann_window(n)
        magnitudes = magnitude_spectrum(padded)

        bin_bpm = rate / size * 60.0
        lo = max(1, int(math.ceil(context.min_bpm / bin_bpm)))
        hi = min(len(magnitudes) - 1, int(math.floor(context.max_bpm / bin_bpm)))
        if hi - lo < 1:
            return None
        band = magnitudes[lo:hi + 1]
        best = lo + int(np.argmax(band))
        peak = float(magnitudes[best])
        mean = float(band.mean())
        if peak <= _EPS or mean <= _EPS:
            return None
        ratio = peak / mean
        if ratio < self.min_peak_ratio:
            return None

        offset = 0.0
        if 0 < best < len(magnitudes) - 1:
            offset = parabolic_offset(
                math.log(magnitudes[best - 1] + _EPS),
                math.log(peak + _EPS),
                math.log(magnitudes[best + 1] + _EPS),
            )
        bpm = (best + offset) * bin_bpm
        return self._reading(
            signal,
            bpm,
            1 - 1 / ratio,
            {
                "fft_size": size,
                "effective_rate": rate,
                "peak_bin": best,
                "bin_offset": offset,
                "peak_ratio": ratio,
                "bin_resolution_bpm": bin_bpm,
            },
        )
