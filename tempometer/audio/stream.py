"""Sliding frame buffer for live audio streaming."""

from __future__ import annotations

import logging
from collections import deque

import numpy as np

from tempometer.analysis.models import AudioFrame

logger = logging.getLogger(__name__)

_DEFAULT_WINDOW_SECONDS = 10.0


class FrameBuffer:
    """FIFO of :class:`AudioFrame` bounded by total duration.

    The buffer becomes *ready* the first time it holds ``window_seconds``
    of audio; from then on the oldest frames are evicted so the window
    slides. Frames must arrive in ``sequence`` order: a frame whose
    sequence is not greater than the last accepted one is dropped.

    Parameters
    ----------
    window_seconds:
        Length of the sliding window. Defaults to 10 seconds.
    """

    def __init__(self, window_seconds: float = _DEFAULT_WINDOW_SECONDS) -> None:
        if window_seconds <= 0:
            raise ValueError(f"window_seconds must be positive, got {window_seconds}")
        self.window_seconds = window_seconds
        self._frames: deque[AudioFrame] = deque()
        self._duration = 0.0
        self._last_sequence: int | None = None
        self._ready = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def append(self, frame: AudioFrame) -> bool:
        """Add *frame*; returns ``False`` when it was dropped as out of order."""
        if self._last_sequence is not None and frame.sequence <= self._last_sequence:
            logger.warning(
                f"Dropping out-of-order frame {frame.sequence} "
                f"(last accepted {self._last_sequence})"
            )
            return False
        self._last_sequence = frame.sequence
        self._frames.append(frame)
        self._duration += frame.duration

        if not self._ready and self._duration >= self.window_seconds:
            self._ready = True
            logger.info(f"Buffer ready: {self._duration:.1f}s in {len(self._frames)} frames")
        if self._ready:
            while len(self._frames) > 1 and self._duration - self._frames[0].duration >= self.window_seconds:
                self._duration -= self._frames.popleft().duration
        return True

    def snapshot(self) -> list[AudioFrame]:
        """Frames currently in the window, oldest first."""
        return list(self._frames)

    def samples(self) -> np.ndarray:
        """Concatenated mono samples of the window."""
        if not self._frames:
            return np.zeros(0, dtype=np.float32)
        return np.concatenate([frame.mono() for frame in self._frames])

    @property
    def duration(self) -> float:
        """Buffered audio in seconds."""
        return self._duration

    @property
    def ready(self) -> bool:
        return self._ready

    def __len__(self) -> int:
        return len(self._frames)

    def clear(self) -> None:
        """Reset the buffer, including sequence tracking."""
        self._frames.clear()
        self._duration = 0.0
        self._last_sequence = None
        self._ready = False
