"""Tests for the consensus engine."""

from datetime import datetime, timezone

import pytest

from tempometer.analysis.consensus import (
    ConsensusEngine,
    consistency_factor,
    harmonic_factor,
    octave_factor,
    trust_weight,
)
from tempometer.analysis.models import BpmReading

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


def reading(algorithm_id, bpm, confidence=0.8, **metadata):
    return BpmReading(
        algorithm_id=algorithm_id,
        algorithm_name=algorithm_id.title(),
        bpm=bpm,
        confidence=confidence,
        timestamp=NOW,
        metadata=metadata,
    )


def batch(bpm, ids=("a", "b", "c"), confidence=0.8):
    return [reading(i, bpm, confidence) for i in ids]


def test_majority_beats_subharmonic():
    """Three readings at 155 and one at a third of that tempo."""
    engine = ConsensusEngine()
    result = engine.combine([
        reading("energy_onset", 155.0),
        reading("autocorrelation", 155.0),
        reading("fft_spectrum", 155.0),
        reading("wavelet_energy", 50.0),
    ])
    assert result is not None
    assert result.bpm == pytest.approx(155.0, abs=1.0)
    assert 0.0 <= result.confidence <= 1.0
    assert "wavelet_energy" not in result.weights
    assert sum(result.weights.values()) == pytest.approx(1.0)


def test_no_readings_before_consensus():
    engine = ConsensusEngine()
    assert engine.combine([]) is None
    # A lone reading forms no agreeing cluster.
    assert engine.combine([reading("a", 120.0)]) is None
    assert engine.current is None


def test_fallback_holds_last_value():
    engine = ConsensusEngine()
    first = engine.combine(batch(128.0))
    held = engine.combine([])
    assert held.bpm == first.bpm
    assert held.is_fallback
    assert 0.05 <= held.confidence <= 0.5
    assert not first.is_fallback


def test_ineligible_readings_are_ignored():
    engine = ConsensusEngine()
    result = engine.combine(
        batch(100.0, ids=("a", "b"))
        + [reading("c", float("nan")), reading("d", 160.0, confidence=0.01)]
    )
    assert result.bpm == pytest.approx(100.0)
    assert set(result.weights) == {"a", "b"}


def test_step_change_is_smoothed():
    """A tempo jump is held off by outlier rejection, then approached gradually."""
    engine = ConsensusEngine(smoothing_factor=0.25)
    for _ in range(6):
        engine.combine(batch(100.0))
    assert engine.current == pytest.approx(100.0)

    values = [engine.current]
    for _ in range(25):
        result = engine.combine(batch(120.0))
        values.append(result.bpm)

    steps = [b - a for a, b in zip(values, values[1:])]
    assert all(0.0 <= step <= 0.25 * 20.0 + 1e-9 for step in steps)
    # The first cycles after the jump re-emit the held value.
    assert values[1] == pytest.approx(100.0)
    assert values[-1] > 118.0


def test_near_tie_prefers_current_tempo():
    engine = ConsensusEngine()
    for _ in range(3):
        engine.combine(batch(100.0, ids=("a", "b")))
    result = engine.combine(
        batch(100.0, ids=("a", "b"), confidence=0.8)
        + batch(108.0, ids=("c", "d"), confidence=0.85)
    )
    assert result.bpm == pytest.approx(100.0)
    assert set(result.weights) == {"a", "b"}


def test_octave_reading_is_normalized_into_cluster():
    engine = ConsensusEngine()
    engine.combine(batch(120.0))
    result = engine.combine(batch(120.0, ids=("a", "b")) + [reading("c", 60.0)])
    assert set(result.weights) == {"a", "b", "c"}
    assert result.weights["c"] < result.weights["a"]
    assert result.bpm == pytest.approx(120.0)


def test_reset_forgets_state():
    engine = ConsensusEngine()
    engine.combine(batch(90.0))
    engine.reset()
    assert engine.current is None
    assert engine.stable_count == 0
    assert engine.combine([]) is None


def test_invalid_configuration():
    with pytest.raises(ValueError):
        ConsensusEngine(smoothing_factor=0.0)
    with pytest.raises(ValueError):
        ConsensusEngine(min_bpm=200, max_bpm=100)


def test_trust_factors():
    assert consistency_factor(reading("a", 100.0)) == 1.0
    assert consistency_factor(reading("a", 100.0, cluster_consistency=0.5)) == pytest.approx(0.75)
    assert harmonic_factor(reading("a", 100.0, range_multiplier=2.0)) == pytest.approx(0.7)
    assert harmonic_factor(
        reading("a", 100.0, range_multiplier=2.0, range_clamped=True)
    ) == pytest.approx(0.42)
    assert octave_factor(reading("a", 100.0, octave_ratio=2.0)) == pytest.approx(0.65)
    assert trust_weight(reading("a", 100.0, confidence=0.5)) == pytest.approx(0.5)
