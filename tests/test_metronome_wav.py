"""End-to-end checks against a metronome WAV fixture (98 BPM)."""

import pytest

from tempometer.analysis.consensus import ConsensusEngine
from tempometer.analysis.detectors import (
    AutocorrelationDetector,
    DynamicProgrammingBeatTracker,
    EnergyOnsetDetector,
    FftSpectrumDetector,
    WaveletEnergyDetector,
)
from tempometer.analysis.engine import BpmDetectorCoordinator, run_detectors
from tempometer.analysis.models import DetectionContext
from tempometer.analysis.pipeline import PreprocessingPipeline
from tempometer.audio.loader import bpm_from_filename, frames_from_samples, load_pcm16_wav


@pytest.fixture(scope="module")
def wav(metronome_wav):
    return load_pcm16_wav(metronome_wav)


@pytest.fixture(scope="module")
def expected_bpm(metronome_wav):
    return bpm_from_filename(metronome_wav)


@pytest.fixture(scope="module")
def signal(wav):
    context = DetectionContext(
        sample_rate=wav.sample_rate,
        min_bpm=70,
        max_bpm=150,
        window_duration=wav.duration,
    )
    frames = frames_from_samples(wav.samples, wav.sample_rate)
    return PreprocessingPipeline().process(frames, context)


@pytest.mark.parametrize("detector, tolerance, min_confidence", [
    (EnergyOnsetDetector(), 2.5, 0.2),
    (AutocorrelationDetector(), 2.5, 0.15),
    (FftSpectrumDetector(), 2.5, 0.15),
    (WaveletEnergyDetector(levels=2), 3.0, 0.1),
])
def test_detector_matches_metronome(signal, expected_bpm, detector, tolerance, min_confidence):
    reading = detector.analyze(signal)
    assert reading is not None, f"{detector.name} produced no reading"
    assert abs(reading.bpm - expected_bpm) < tolerance, reading.metadata
    assert reading.confidence > min_confidence


def test_beat_tracker_follows_metronome(signal, expected_bpm):
    reading = DynamicProgrammingBeatTracker().analyze(signal)
    assert reading is not None
    assert reading.bpm == pytest.approx(expected_bpm, rel=0.05)


def test_consensus_matches_metronome(signal, expected_bpm):
    detectors = [
        EnergyOnsetDetector(),
        AutocorrelationDetector(),
        FftSpectrumDetector(),
        WaveletEnergyDetector(levels=2),
    ]
    readings = run_detectors(detectors, signal)
    assert readings, "No detector produced a reading"

    result = ConsensusEngine(min_bpm=70, max_bpm=150).combine(readings)
    assert result is not None
    assert abs(result.bpm - expected_bpm) < 2.5
    assert result.confidence > 0.25


def test_streaming_session_converges(wav, expected_bpm):
    context = DetectionContext(
        sample_rate=wav.sample_rate, min_bpm=70, max_bpm=150, window_duration=8.0,
    )
    with BpmDetectorCoordinator(context=context, analysis_interval=1.0) as coordinator:
        summary = coordinator.analyze_audio(wav.samples, wav.sample_rate)
    assert summary.consensus is not None
    assert abs(summary.consensus.bpm - expected_bpm) < 3.0
