"""Shared preprocessing: one pass per analysis cycle, read by every detector."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Sequence

import numpy as np

from tempometer.analysis.models import AudioFrame, DetectionContext, TempogramSnapshot
from tempometer.analysis.novelty import NoveltyConfig, compute_novelty
from tempometer.analysis.onset import frame_parameters, onset_envelope
from tempometer.analysis.primitives import downsample
from tempometer.analysis.spectrogram import mel_spectrogram
from tempometer.analysis.tempogram import TempogramConfig, compute_tempogram
from tempometer.audio.preprocessing import band_pass_filter, estimate_noise_floor, normalize_rms

logger = logging.getLogger(__name__)

_EMPTY = np.zeros(0)


def _freeze(arr: np.ndarray) -> np.ndarray:
    arr = np.array(arr, dtype=np.float64)
    arr.flags.writeable = False
    return arr


@dataclass(frozen=True)
class PreprocessedSignal:
    """Every derived representation of one analysis window.

    Arrays are read-only so detectors running in parallel can share them.
    """
    raw_samples: np.ndarray
    normalized_samples: np.ndarray  # RMS-normalized to -18 dBFS, clipped to [-1, 1]
    filtered_samples: np.ndarray  # 20-1500 Hz band-pass
    onset_envelope: np.ndarray
    onset_rate: float  # envelope frames per second (100 Hz)
    samples_8khz: np.ndarray
    rate_8khz: float  # actual rate after integer decimation
    samples_400hz: np.ndarray
    rate_400hz: float
    mel_spectrogram: np.ndarray  # (frames, bands)
    mel_band_means: np.ndarray
    novelty_curve: np.ndarray
    novelty_rate: float
    tempogram: np.ndarray  # (windows, tempo bins)
    tempo_axis: np.ndarray
    tempogram_times: np.ndarray
    dominant_tempo: np.ndarray
    dominant_strength: np.ndarray
    sample_rate: int
    duration: float  # seconds
    context: DetectionContext
    noise_floor: float
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_empty(self) -> bool:
        return len(self.raw_samples) == 0

    @property
    def onset_time_scale(self) -> float:
        """Seconds per onset-envelope frame."""
        return 1.0 / self.onset_rate if self.onset_rate > 0 else 0.0

    def tempogram_snapshot(self) -> TempogramSnapshot | None:
        if len(self.tempogram_times) == 0:
            return None
        return TempogramSnapshot(
            matrix=self.tempogram,
            tempo_axis=self.tempo_axis,
            times=self.tempogram_times,
            dominant_tempo=self.dominant_tempo,
            dominant_strength=self.dominant_strength,
        )


def _decimate(samples: np.ndarray, sr: int, target: int) -> tuple[np.ndarray, float]:
    """Integer decimation towards *target* Hz; returns samples and actual rate."""
    if sr <= target:
        return samples, float(sr)
    factor = int(round(sr / target))
    return downsample(samples, factor), sr / factor


class PreprocessingPipeline:
    """Turns a window of frames into a :class:`PreprocessedSignal`."""

    def __init__(
        self,
        target_db: float = -18.0,
        low_cutoff: float = 20.0,
        high_cutoff: float = 1500.0,
        mel_bands: int = 40,
        novelty_config: NoveltyConfig = NoveltyConfig(),
        tempogram_config: TempogramConfig = TempogramConfig(),
    ) -> None:
        self.target_db = target_db
        self.low_cutoff = low_cutoff
        self.high_cutoff = high_cutoff
        self.mel_bands = mel_bands
        self.novelty_config = novelty_config
        self.tempogram_config = tempogram_config

    def process(
        self,
        window: Sequence[AudioFrame],
        context: DetectionContext,
        timestamp: datetime | None = None,
    ) -> PreprocessedSignal:
        """Run every preprocessing stage over the concatenated *window*.

        The pipeline is deterministic: identical frames, context and
        timestamp give identical output. An empty window yields an empty
        signal rather than an error.
        """
        timestamp = timestamp or datetime.now(timezone.utc)
        chunks = [frame.mono() for frame in window]
        raw = np.concatenate(chunks).astype(np.float64) if chunks else _EMPTY
        if len(raw) == 0:
            return self.empty(context, timestamp)

        sr = window[0].sample_rate
        if sr != context.sample_rate:
            logger.warning(
                f"Frame sample rate {sr} Hz differs from context {context.sample_rate} Hz; "
                "using the frame rate"
            )

        noise_floor = estimate_noise_floor(raw)
        normalized = normalize_rms(raw, self.target_db)
        filtered = band_pass_filter(normalized, sr, self.low_cutoff, self.high_cutoff)

        envelope = onset_envelope(filtered, sr, frame_ms=30.0, hop_ms=10.0)
        _, hop = frame_parameters(sr, 30.0, 10.0)

        samples_8k, rate_8k = _decimate(filtered, sr, 8000)
        samples_400, rate_400 = _decimate(filtered, sr, 400)

        mel = mel_spectrogram(
            filtered, sr, n_bands=self.mel_bands, n_fft=1024, hop_size=512,
            fmin=20.0, fmax=min(5000.0, sr / 2),
        )

        novelty = compute_novelty(normalized, sr, self.novelty_config)
        tempogram = compute_tempogram(
            novelty.curve, novelty.feature_rate,
            min_bpm=context.min_bpm, max_bpm=context.max_bpm,
            config=self.tempogram_config,
        )

        return PreprocessedSignal(
            raw_samples=_freeze(raw),
            normalized_samples=_freeze(normalized),
            filtered_samples=_freeze(filtered),
            onset_envelope=_freeze(envelope),
            onset_rate=sr / hop,
            samples_8khz=_freeze(samples_8k),
            rate_8khz=rate_8k,
            samples_400hz=_freeze(samples_400),
            rate_400hz=rate_400,
            mel_spectrogram=_freeze(mel.frames),
            mel_band_means=_freeze(mel.band_means),
            novelty_curve=_freeze(novelty.curve),
            novelty_rate=novelty.feature_rate,
            tempogram=_freeze(tempogram.matrix),
            tempo_axis=_freeze(tempogram.tempo_axis),
            tempogram_times=_freeze(tempogram.times),
            dominant_tempo=_freeze(tempogram.dominant_tempo),
            dominant_strength=_freeze(tempogram.dominant_strength),
            sample_rate=sr,
            duration=len(raw) / sr,
            context=context,
            noise_floor=noise_floor,
            timestamp=timestamp,
        )

    @staticmethod
    def empty(context: DetectionContext, timestamp: datetime | None = None) -> PreprocessedSignal:
        """Signal with every array empty, used when there is nothing to analyse."""
        empty = _freeze(_EMPTY)
        return PreprocessedSignal(
            raw_samples=empty,
            normalized_samples=empty,
            filtered_samples=empty,
            onset_envelope=empty,
            onset_rate=100.0,
            samples_8khz=empty,
            rate_8khz=0.0,
            samples_400hz=empty,
            rate_400hz=0.0,
            mel_spectrogram=_freeze(np.zeros((0, 0))),
            mel_band_means=empty,
            novelty_curve=empty,
            novelty_rate=0.0,
            tempogram=_freeze(np.zeros((0, 0))),
            tempo_axis=empty,
            tempogram_times=empty,
            dominant_tempo=empty,
            dominant_strength=empty,
            sample_rate=context.sample_rate,
            duration=0.0,
            context=context,
            noise_floor=0.0,
            timestamp=timestamp or datetime.now(timezone.utc),
        )
