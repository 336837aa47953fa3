"""Tests for the individual tempo detectors."""

import numpy as np
import pytest

from tempometer.analysis.detectors import (
    DETECTORS,
    AutocorrelationDetector,
    DynamicProgrammingBeatTracker,
    EnergyOnsetDetector,
    FftSpectrumDetector,
    WaveletEnergyDetector,
    create_detectors,
    default_detectors,
)
from tempometer.analysis.detectors.wavelet_energy import haar_decompose
from tempometer.analysis.pipeline import PreprocessingPipeline
from tests.conftest import (
    generate_beat_signal,
    generate_click_track,
    generate_noise,
    generate_silence,
    generate_synthetic_music,
    preprocess,
)


def test_energy_onset_detects_beat_signal():
    """120 BPM beat signal with light noise."""
    signal = preprocess(generate_beat_signal(120, 5.0, noise=0.05), 60, 180)
    reading = EnergyOnsetDetector().analyze(signal)
    assert reading is not None
    assert abs(reading.bpm - 120) < 3, reading.metadata
    assert reading.confidence > 0.25


def test_fft_detects_click_track():
    """180 BPM click track with sharp 5 ms pulses."""
    signal = preprocess(generate_click_track(180, 5.0, noise=0.01), 60, 200)
    reading = FftSpectrumDetector().analyze(signal)
    assert reading is not None
    assert abs(reading.bpm - 180) < 4, reading.metadata


def test_wavelet_detects_noisy_beat_signal():
    signal = preprocess(generate_beat_signal(96, 5.0, noise=0.1), 60, 180)
    reading = WaveletEnergyDetector(levels=2).analyze(signal)
    assert reading is not None
    assert abs(reading.bpm - 96) < 4, reading.metadata
    assert reading.confidence > 0


def test_autocorrelation_detects_click_track():
    signal = preprocess(generate_click_track(110, 6.0), 60, 180)
    reading = AutocorrelationDetector().analyze(signal)
    assert reading is not None
    assert abs(reading.bpm - 110) < 3, reading.metadata
    assert reading.metadata["evaluations"] <= 400


def test_autocorrelation_envelope_source():
    # Lag range 70-180 BPM holds a single multiple of the beat period.
    signal = preprocess(generate_click_track(120, 6.0), 70, 180)
    reading = AutocorrelationDetector(source="envelope").analyze(signal)
    assert reading is not None
    assert reading.bpm == pytest.approx(120, rel=0.05)


def test_autocorrelation_rejects_unknown_source():
    with pytest.raises(ValueError):
        AutocorrelationDetector(source="waveform")


def test_dp_beat_tracker_recovers_beats():
    signal = preprocess(generate_click_track(120, 8.0), 60, 180)
    reading = DynamicProgrammingBeatTracker().analyze(signal)
    assert reading is not None
    assert reading.bpm == pytest.approx(120, rel=0.05)
    beat_times = reading.metadata["beat_times"]
    assert len(beat_times) >= 8
    assert np.median(np.diff(beat_times)) == pytest.approx(0.5, abs=0.03)


@pytest.mark.parametrize("detector_cls", [EnergyOnsetDetector, AutocorrelationDetector])
@pytest.mark.parametrize("bpm", [100, 120])
@pytest.mark.parametrize("ratio", [2.0, 1.5, 0.5])
def test_harmonic_resistance(detector_cls, bpm, ratio):
    """Half-amplitude clicks at a related tempo must not pull the estimate off the beat."""
    audio = generate_click_track(bpm, 8.0) + generate_click_track(bpm * ratio, 8.0, amplitude=0.5)
    signal = preprocess(audio, 60, 180)
    reading = detector_cls().analyze(signal)
    assert reading is not None
    assert abs(reading.bpm - bpm) <= 0.08 * bpm, reading.metadata


def test_autocorrelation_prefers_beat_over_common_period():
    """120 and 180 BPM clicks coincide once a second; the beat is the half period."""
    audio = generate_click_track(120, 8.0) + generate_click_track(180, 8.0, amplitude=0.5)
    reading = AutocorrelationDetector().analyze(preprocess(audio, 60, 180))
    assert reading is not None
    assert reading.metadata["period_divisor"] == 2.0
    assert reading.metadata["period_lag"] == pytest.approx(2 * reading.metadata["lag"], rel=0.05)
    assert reading.metadata["evaluations"] <= 400


@pytest.mark.parametrize("duration", [0.55, 0.7, 0.9])
def test_autocorrelation_needs_a_full_second(duration):
    signal = preprocess(generate_noise(duration), 60, 180)
    assert AutocorrelationDetector().analyze(signal) is None
    assert AutocorrelationDetector(source="envelope").analyze(signal) is None


def test_detectors_return_none_on_empty_signal(context):
    signal = PreprocessingPipeline().process([], context)
    for detector in default_detectors():
        assert detector.analyze(signal) is None, detector.id


def test_detectors_return_none_on_short_buffer():
    signal = preprocess(generate_click_track(120, 0.3), 60, 180)
    for detector in default_detectors():
        assert detector.analyze(signal) is None, detector.id


def test_detectors_return_none_on_silence():
    signal = preprocess(generate_silence(4.0), 60, 180)
    for detector in default_detectors():
        assert detector.analyze(signal) is None, detector.id


@pytest.mark.parametrize("audio", [
    generate_noise(4.0),
    generate_click_track(100, 5.0),
    generate_beat_signal(150, 5.0),
    generate_click_track(45, 6.0),
    generate_synthetic_music(128, 6.0),
])
def test_readings_respect_range_and_confidence(audio):
    """Every reading lies in the context range with confidence in [0, 1]."""
    signal = preprocess(audio, 70, 140)
    for detector in default_detectors():
        reading = detector.analyze(signal)
        if reading is None:
            continue
        assert 70 <= reading.bpm <= 140, detector.id
        assert 0.0 <= reading.confidence <= 1.0, detector.id
        assert reading.algorithm_id == detector.id
        assert reading.timestamp == signal.timestamp


def test_detectors_do_not_mutate_signal():
    signal = preprocess(generate_click_track(120, 5.0), 60, 180)
    before = signal.onset_envelope.copy()
    for detector in default_detectors():
        detector.analyze(signal)
    np.testing.assert_array_equal(signal.onset_envelope, before)


def test_registry():
    assert list(DETECTORS) == [
        "energy_onset", "autocorrelation", "fft_spectrum", "wavelet_energy", "dp_beat_tracker",
    ]
    ids = [d.id for d in create_detectors(["wavelet_energy", "energy_onset"])]
    assert ids == ["energy_onset", "wavelet_energy"]
    with pytest.raises(ValueError):
        create_detectors(["neural_net"])


def test_haar_decompose_halves_bands():
    details, approximation = haar_decompose(np.arange(16.0), 2)
    assert [len(d) for d in details] == [8, 4]
    assert len(approximation) == 4
    # Energy is preserved by the orthonormal transform.
    energy = sum(float(np.sum(d ** 2)) for d in details) + float(np.sum(approximation ** 2))
    assert energy == pytest.approx(float(np.sum(np.arange(16.0) ** 2)))
