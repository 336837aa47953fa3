"""Common detector interface."""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from typing import Any

from tempometer.analysis.harmonics import coerce_to_range
from tempometer.analysis.models import BpmReading
from tempometer.analysis.pipeline import PreprocessedSignal


class BpmDetector(ABC):
    """A tempo estimator over a :class:`PreprocessedSignal`.

    Implementations never raise for short or malformed input; they return
    ``None`` when there is not enough evidence. Every reading they return
    lies inside the context's BPM range with confidence in [0, 1].
    """

    id: str = ""
    name: str = ""
    preferred_window: float = 8.0  # seconds of audio the detector wants

    @abstractmethod
    def analyze(self, signal: PreprocessedSignal) -> BpmReading | None:
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r})"

    def _reading(
        self,
        signal: PreprocessedSignal,
        bpm: float,
        confidence: float,
        metadata: dict[str, Any] | None = None,
    ) -> BpmReading | None:
        """Build a reading, folding *bpm* into range and clamping confidence."""
        if not math.isfinite(confidence):
            return None
        context = signal.context
        folded = coerce_to_range(bpm, context.min_bpm, context.max_bpm)
        if folded is None:
            return None
        metadata = dict(metadata or {})
        if folded.multiplier != 1.0 or folded.clamped:
            metadata.setdefault("range_multiplier", folded.multiplier)
            metadata.setdefault("range_clamped", folded.clamped)
            confidence *= range_penalty(folded.multiplier, folded.clamped)
        return BpmReading(
            algorithm_id=self.id,
            algorithm_name=self.name,
            bpm=context.clamp(folded.bpm),
            confidence=min(max(confidence, 0.0), 1.0),
            timestamp=signal.timestamp,
            metadata=metadata,
        )


def range_penalty(multiplier: float, clamped: bool) -> float:
    """Confidence factor for a reading that needed range folding."""
    penalty = 1 - min(0.5, 0.25 * abs(math.log2(multiplier))) if multiplier > 0 else 0.5
    if clamped:
        penalty *= 0.6
    return penalty
