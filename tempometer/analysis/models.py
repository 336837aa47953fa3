"""Core data models for tempo detection."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

import numpy as np


def _readonly(values, dtype=np.float64) -> np.ndarray:
    """Return a read-only array copy of *values*."""
    arr = np.array(values, dtype=dtype)
    arr.flags.writeable = False
    return arr


@dataclass(frozen=True)
class AudioFrame:
    """A block of PCM samples produced by the capture layer.

    ``samples`` are floats in [-1, 1], interleaved when ``channels > 1``.
    ``sequence`` increases monotonically within one session.
    """
    samples: np.ndarray
    sample_rate: int
    channels: int = 1
    sequence: int = 0

    def __post_init__(self):
        object.__setattr__(self, "samples", _readonly(np.ravel(self.samples), np.float32))
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")
        if self.channels <= 0:
            raise ValueError(f"channels must be positive, got {self.channels}")

    @classmethod
    def from_pcm16(
        cls,
        data: bytes,
        sample_rate: int,
        channels: int = 1,
        sequence: int = 0,
    ) -> AudioFrame:
        """Build a mono frame from little-endian 16-bit PCM bytes."""
        from tempometer.audio.loader import pcm16_to_float

        return cls(
            samples=pcm16_to_float(data, channels),
            sample_rate=sample_rate,
            channels=1,
            sequence=sequence,
        )

    @property
    def n_samples(self) -> int:
        """Number of samples per channel."""
        return len(self.samples) // self.channels

    @property
    def duration(self) -> float:
        """Frame duration in seconds."""
        return self.n_samples / self.sample_rate

    def mono(self) -> np.ndarray:
        """Samples downmixed to mono by averaging channels."""
        if self.channels == 1:
            return self.samples
        usable = self.n_samples * self.channels
        return self.samples[:usable].reshape(-1, self.channels).mean(axis=1)


@dataclass(frozen=True)
class DetectionContext:
    """Analysis parameters shared by every detector in a session."""
    sample_rate: int
    min_bpm: float
    max_bpm: float
    window_duration: float = 10.0  # seconds

    def __post_init__(self):
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")
        if self.min_bpm <= 0 or self.max_bpm <= 0:
            raise ValueError(
                f"BPM bounds must be positive, got {self.min_bpm}-{self.max_bpm}"
            )
        if self.min_bpm >= self.max_bpm:
            raise ValueError(
                f"min_bpm must be below max_bpm, got {self.min_bpm}-{self.max_bpm}"
            )
        if self.window_duration <= 0:
            raise ValueError(
                f"window_duration must be positive, got {self.window_duration}"
            )

    @property
    def mid_bpm(self) -> float:
        return (self.min_bpm + self.max_bpm) / 2

    def clamp(self, bpm: float) -> float:
        """Clamp *bpm* into the configured range."""
        return min(max(bpm, self.min_bpm), self.max_bpm)


@dataclass(frozen=True)
class BpmReading:
    """One detector's tempo estimate for one analysis cycle."""
    algorithm_id: str
    algorithm_name: str
    bpm: float
    confidence: float  # 0.0-1.0
    timestamp: datetime
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ConsensusResult:
    """Fused tempo with per-algorithm weights (empty for fallbacks)."""
    bpm: float
    confidence: float
    weights: dict[str, float] = field(default_factory=dict)

    @property
    def is_fallback(self) -> bool:
        return not self.weights


@dataclass
class TempoCandidate:
    """A weighted BPM hypothesis fed into harmonic clustering."""
    bpm: float
    weight: float
    label: str = ""
    allow_harmonics: bool = True


@dataclass
class BpmRangeResult:
    """Result of folding a BPM into range via a harmonic multiplier."""
    bpm: float
    multiplier: float
    clamped: bool = False


@dataclass
class TempoRefinementResult:
    """Winning cluster of harmonically expanded tempo candidates."""
    bpm: float
    cluster_weight: float
    total_weight: float
    consistency: float
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def dominance(self) -> float:
        if self.total_weight <= 0:
            return 0.0
        return self.cluster_weight / self.total_weight


@dataclass
class HistogramSelection:
    """Interval chosen from an interval histogram."""
    interval: float  # seconds, mean of the contributing raw intervals
    bucket_interval: float  # seconds, bucket key
    score: float
    total_score: float
    supporters: int
    multiplier: float = 1.0  # bucket_interval / interval
    sources: list[str] = field(default_factory=list)
    score_map: dict[float, float] = field(default_factory=dict)
    suppressed_bpms: list[float] = field(default_factory=list)

    @property
    def bpm(self) -> float:
        if self.interval <= 0 or not math.isfinite(self.interval):
            return 0.0
        return 60.0 / self.interval

    @property
    def dominance(self) -> float:
        if self.total_score <= 0:
            return 0.0
        return self.score / self.total_score


@dataclass(frozen=True)
class TempogramSnapshot:
    """Latest tempogram matrix and its dominant tempo track."""
    matrix: np.ndarray  # (time, tempo)
    tempo_axis: np.ndarray
    times: np.ndarray
    dominant_tempo: np.ndarray
    dominant_strength: np.ndarray


class DetectionStatus(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    BUFFERING = "buffering"
    ANALYZING = "analyzing"
    STREAMING_RESULTS = "streaming_results"
    ERROR = "error"


@dataclass
class BpmSummary:
    """Snapshot emitted to the UI after each buffer update or cycle."""
    status: DetectionStatus
    readings: list[BpmReading] = field(default_factory=list)
    consensus: ConsensusResult | None = None
    message: str | None = None
    buffered_seconds: float = 0.0
    plp_bpm: float | None = None
    plp_strength: float | None = None
    tempogram: TempogramSnapshot | None = None
