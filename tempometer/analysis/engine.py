"""Detection orchestrator - buffers frames, runs detectors, fuses readings."""

import logging
from concurrent.futures import ThreadPoolExecutor, wait
from datetime import datetime, timezone
from typing import Callable, Iterable, Sequence

import numpy as np

from tempometer.analysis.consensus import ConsensusEngine
from tempometer.analysis.detectors import BpmDetector, create_detectors
from tempometer.analysis.models import (
    AudioFrame,
    BpmReading,
    BpmSummary,
    ConsensusResult,
    DetectionContext,
    DetectionStatus,
)
from tempometer.analysis.pipeline import PreprocessedSignal, PreprocessingPipeline
from tempometer.audio.loader import frames_from_samples
from tempometer.audio.stream import FrameBuffer
from tempometer.config import settings

logger = logging.getLogger(__name__)

PLP_ALGORITHM_ID = "plp_tempogram"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def run_detectors(
    detectors: Sequence[BpmDetector],
    signal: PreprocessedSignal,
    executor: ThreadPoolExecutor | None = None,
    timeout: float | None = None,
) -> list[BpmReading]:
    """Run *detectors* over one shared signal and return readings in detector order.

    With an *executor* the detectors run in parallel and the batch is
    bounded by *timeout*; detectors still running are abandoned for this
    cycle. A detector that raises is logged and skipped.
    """
    if executor is None:
        readings = []
        for detector in detectors:
            try:
                reading = detector.analyze(signal)
            except Exception as e:
                logger.warning(f"  {detector.name} failed: {e}")
                continue
            if reading is not None:
                readings.append(reading)
        return readings

    futures = [(detector, executor.submit(detector.analyze, signal)) for detector in detectors]
    done, not_done = wait([f for _, f in futures], timeout=timeout)
    if not_done:
        logger.warning(
            f"Detector timeout after {timeout}s; using {len(done)}/{len(futures)} results"
        )
        for future in not_done:
            future.cancel()

    readings = []
    for detector, future in futures:
        if future not in done:
            continue
        try:
            reading = future.result()
        except Exception as e:
            logger.warning(f"  {detector.name} failed: {e}")
            continue
        if reading is not None:
            readings.append(reading)
    return readings


def plp_reading(signal: PreprocessedSignal) -> BpmReading | None:
    """Auxiliary vote from the tempogram's latest dominant tempo."""
    if len(signal.dominant_tempo) == 0:
        return None
    bpm = float(signal.dominant_tempo[-1])
    if not np.isfinite(bpm) or bpm <= 0:
        return None
    strength = float(np.clip(signal.dominant_strength[-1], 0.0, 1.0))
    return BpmReading(
        algorithm_id=PLP_ALGORITHM_ID,
        algorithm_name="Tempogram PLP",
        bpm=signal.context.clamp(bpm),
        confidence=float(np.clip(0.4 + 0.45 * strength, 0.0, 0.85)),
        timestamp=signal.timestamp,
        metadata={"source": "tempogram", "strength": strength},
    )


class BpmDetectorCoordinator:
    """Runs one detection session over a stream of audio frames.

    Frames go into a sliding buffer; once it is full, every
    ``analysis_interval`` seconds of new audio trigger one cycle:
    preprocessing, the detector batch (in a thread pool, with a timeout),
    and the consensus update. Cycles are strictly sequential.
    """

    def __init__(
        self,
        context: DetectionContext | None = None,
        detectors: Sequence[BpmDetector] | None = None,
        consensus: ConsensusEngine | None = None,
        pipeline: PreprocessingPipeline | None = None,
        analysis_interval: float | None = None,
        timeout: float | None = None,
        max_workers: int | None = None,
        include_plp: bool | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.context = context or settings.context()
        self.detectors = list(detectors) if detectors is not None else create_detectors(settings.enabled_detectors)
        self.consensus = consensus or ConsensusEngine(
            min_bpm=self.context.min_bpm,
            max_bpm=self.context.max_bpm,
            history_size=settings.history_size,
            outlier_threshold=settings.outlier_threshold,
            cluster_tolerance=settings.cluster_tolerance,
            smoothing_factor=settings.smoothing_factor,
        )
        self.pipeline = pipeline or PreprocessingPipeline()
        self.analysis_interval = (
            analysis_interval if analysis_interval is not None else settings.analysis_interval_seconds
        )
        self.timeout = timeout if timeout is not None else settings.detector_timeout_seconds
        self.include_plp = include_plp if include_plp is not None else settings.include_plp
        self.clock = clock
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or settings.max_workers,
            thread_name_prefix="detector",
        )
        self.buffer = FrameBuffer(self.context.window_duration)
        self._since_analysis = 0.0
        self._reading_cache: dict[str, BpmReading] = {}
        self._latest_consensus: ConsensusResult | None = None
        self._latest_summary: BpmSummary | None = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    @property
    def latest(self) -> BpmSummary | None:
        return self._latest_summary

    def reset(self) -> None:
        """Start a fresh session: empty buffer, no readings, no consensus."""
        self.buffer.clear()
        self.consensus.reset()
        self._since_analysis = 0.0
        self._reading_cache.clear()
        self._latest_consensus = None
        self._latest_summary = None
        logger.info("Coordinator state reset")

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    # ---- Streaming ----

    def push(self, frame: AudioFrame) -> list[BpmSummary]:
        """Feed one frame; returns the summaries it produced (possibly none)."""
        if not self.buffer.append(frame):
            return []
        self._since_analysis += frame.duration

        if not self.buffer.ready:
            summary = self._summary(
                DetectionStatus.BUFFERING,
                message=f"Buffering: {self.buffer.duration:.1f}s / {self.context.window_duration:.1f}s",
            )
            return [summary]

        if self._since_analysis < self.analysis_interval:
            return []
        self._since_analysis = 0.0
        return [self.run_cycle(self.buffer.snapshot())]

    def run_cycle(self, frames: Sequence[AudioFrame]) -> BpmSummary:
        """Analyse one window of frames and update the consensus."""
        total = sum(len(f.samples) for f in frames)
        logger.info(f"Analyzing {len(frames)} frames, {total} samples")

        signal = self.pipeline.process(frames, self.context, timestamp=self.clock())
        if signal.is_empty:
            logger.info("  Empty window, no detectors run")
            readings: list[BpmReading] = []
        else:
            readings = run_detectors(self.detectors, signal, self._executor, self.timeout)

        if not readings:
            logger.warning("  No readings returned from detectors")
        for reading in readings:
            logger.info(
                f"  {reading.algorithm_name} -> {reading.bpm:.1f} BPM "
                f"(confidence: {reading.confidence:.2f})"
            )
            self._reading_cache[reading.algorithm_id] = reading

        inputs = list(readings)
        plp = plp_reading(signal) if self.include_plp else None
        if plp is not None:
            inputs.append(plp)

        self._latest_consensus = self.consensus.combine(inputs)
        if self._latest_consensus is not None:
            logger.info(
                f"  Consensus: {self._latest_consensus.bpm:.1f} BPM "
                f"(confidence: {self._latest_consensus.confidence:.2f})"
            )
        else:
            logger.warning(f"  No consensus yet ({len(inputs)} readings)")

        return self._summary(
            DetectionStatus.STREAMING_RESULTS,
            plp=plp,
            signal=signal,
        )

    # ---- Offline ----

    def analyze_frames(self, frames: Iterable[AudioFrame]) -> BpmSummary:
        """Stream *frames* through a fresh session and return the final summary.

        Recordings shorter than the buffer window are analysed once at the end.
        """
        self.reset()
        last: BpmSummary | None = None
        for frame in frames:
            for summary in self.push(frame):
                if summary.status == DetectionStatus.STREAMING_RESULTS:
                    last = summary
        if last is None:
            last = self.run_cycle(self.buffer.snapshot())
        return last

    def analyze_audio(self, samples: np.ndarray, sample_rate: int, frame_size: int | None = None) -> BpmSummary:
        """Analyze pre-loaded mono audio."""
        duration = len(samples) / sample_rate if sample_rate else 0.0
        logger.info(f"Analyzing {duration:.1f}s of audio at {sample_rate}Hz")
        frames = frames_from_samples(samples, sample_rate, frame_size or settings.frame_size)
        return self.analyze_frames(frames)

    def _summary(
        self,
        status: DetectionStatus,
        message: str | None = None,
        plp: BpmReading | None = None,
        signal: PreprocessedSignal | None = None,
    ) -> BpmSummary:
        ordered = [
            self._reading_cache[d.id] for d in self.detectors if d.id in self._reading_cache
        ]
        summary = BpmSummary(
            status=status,
            readings=ordered,
            consensus=self._latest_consensus,
            message=message,
            buffered_seconds=self.buffer.duration,
            plp_bpm=plp.bpm if plp is not None else None,
            plp_strength=plp.metadata["strength"] if plp is not None else None,
            tempogram=signal.tempogram_snapshot() if signal is not None else None,
        )
        self._latest_summary = summary
        return summary
