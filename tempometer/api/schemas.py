"""Pydantic response models for API."""

import math
from typing import Any

import numpy as np
from pydantic import BaseModel

from tempometer.analysis.models import BpmReading, BpmSummary, ConsensusResult, TempogramSnapshot


def to_jsonable(value: Any) -> Any:
    """Convert numpy scalars/arrays inside reading metadata into plain JSON values."""
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, np.ndarray):
        return to_jsonable(value.tolist())
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


class ReadingResponse(BaseModel):
    algorithm_id: str
    algorithm_name: str
    bpm: float
    confidence: float
    timestamp: str
    metadata: dict[str, Any] = {}


class ConsensusResponse(BaseModel):
    bpm: float
    confidence: float
    weights: dict[str, float] = {}
    is_fallback: bool = False


class TempogramResponse(BaseModel):
    tempo_axis: list[float]
    times: list[float]
    dominant_tempo: list[float]
    dominant_strength: list[float]
    matrix: list[list[float]] = []


class SummaryResponse(BaseModel):
    status: str
    readings: list[ReadingResponse] = []
    consensus: ConsensusResponse | None = None
    message: str | None = None
    buffered_seconds: float = 0.0
    plp_bpm: float | None = None
    plp_strength: float | None = None
    tempogram: TempogramResponse | None = None


# WebSocket message types

class BufferingMessage(BaseModel):
    type: str = "buffering"
    seconds: float
    total: float


class SummaryMessage(BaseModel):
    type: str = "summary"
    data: SummaryResponse


def reading_to_response(reading: BpmReading) -> ReadingResponse:
    return ReadingResponse(
        algorithm_id=reading.algorithm_id,
        algorithm_name=reading.algorithm_name,
        bpm=reading.bpm,
        confidence=reading.confidence,
        timestamp=reading.timestamp.isoformat(),
        metadata=to_jsonable(reading.metadata),
    )


def consensus_to_response(result: ConsensusResult) -> ConsensusResponse:
    return ConsensusResponse(
        bpm=result.bpm,
        confidence=result.confidence,
        weights=result.weights,
        is_fallback=result.is_fallback,
    )


def tempogram_to_response(snapshot: TempogramSnapshot, include_matrix: bool = False) -> TempogramResponse:
    return TempogramResponse(
        tempo_axis=snapshot.tempo_axis.tolist(),
        times=snapshot.times.tolist(),
        dominant_tempo=snapshot.dominant_tempo.tolist(),
        dominant_strength=snapshot.dominant_strength.tolist(),
        matrix=snapshot.matrix.tolist() if include_matrix else [],
    )


def summary_to_response(summary: BpmSummary, include_matrix: bool = False) -> SummaryResponse:
    """Convert a BpmSummary into its API model."""
    return SummaryResponse(
        status=summary.status.value,
        readings=[reading_to_response(r) for r in summary.readings],
        consensus=consensus_to_response(summary.consensus) if summary.consensus else None,
        message=summary.message,
        buffered_seconds=round(summary.buffered_seconds, 3),
        plp_bpm=summary.plp_bpm,
        plp_strength=summary.plp_strength,
        tempogram=(
            tempogram_to_response(summary.tempogram, include_matrix)
            if summary.tempogram is not None else None
        ),
    )
