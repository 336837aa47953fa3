"""Tests for signal primitives."""

import numpy as np
import pytest

from tempometer.analysis.primitives import (
    autocorrelation,
    centered_moving_average,
    dominant_lag,
    fft_radix2,
    frame_signal,
    hann_window,
    magnitude_spectrum,
    moving_average,
    next_power_of_two,
    normalize_peak,
    parabolic_offset,
    previous_power_of_two,
    zscore,
)


def test_power_of_two_helpers():
    assert next_power_of_two(1) == 1
    assert next_power_of_two(1000) == 1024
    assert next_power_of_two(1024) == 1024
    assert previous_power_of_two(1000) == 512
    assert previous_power_of_two(0) == 0


def test_fft_matches_numpy():
    """Radix-2 FFT should agree with numpy's FFT."""
    rng = np.random.default_rng(0)
    x = rng.normal(size=256)
    np.testing.assert_allclose(fft_radix2(x), np.fft.fft(x), atol=1e-9)


def test_fft_transforms_rows():
    rng = np.random.default_rng(1)
    x = rng.normal(size=(3, 64))
    np.testing.assert_allclose(fft_radix2(x), np.fft.fft(x, axis=-1), atol=1e-9)


def test_fft_rejects_non_power_of_two():
    with pytest.raises(ValueError):
        fft_radix2(np.zeros(100))


def test_magnitude_spectrum_peak_at_tone_bin():
    n = 512
    x = np.sin(2 * np.pi * 32 * np.arange(n) / n)
    mags = magnitude_spectrum(x)
    assert len(mags) == n // 2
    assert int(np.argmax(mags)) == 32


def test_hann_window_is_periodic():
    w = hann_window(8)
    assert w[0] == pytest.approx(0.0)
    assert w[4] == pytest.approx(1.0)
    assert len(hann_window(0)) == 0


def test_autocorrelation_finds_period():
    """Dominant lag of a periodic pulse train is its period."""
    x = np.zeros(1000)
    x[::50] = 1.0
    lag, score = dominant_lag(x - x.mean(), 20, 80)
    assert lag == 50
    assert score > 0
    assert autocorrelation(x, 2000) == 0.0


def test_dominant_lag_needs_enough_samples():
    assert dominant_lag(np.ones(10), 2, 20) is None


def test_parabolic_offset():
    assert parabolic_offset(1.0, 2.0, 1.0) == pytest.approx(0.0)
    assert parabolic_offset(1.0, 2.0, 1.5) > 0
    # Not a peak: no offset
    assert parabolic_offset(2.0, 1.0, 2.0) == 0.0


def test_moving_averages():
    x = np.array([0.0, 0.0, 3.0, 0.0, 0.0])
    np.testing.assert_allclose(moving_average(x, 3), [0, 0, 1, 1, 1])
    np.testing.assert_allclose(centered_moving_average(x, 3), [0, 1, 1, 1, 0])


def test_frame_signal_shapes():
    frames = frame_signal(np.arange(10.0), 4, 2)
    assert frames.shape == (4, 4)
    assert frame_signal(np.arange(3.0), 4, 2).shape == (0, 4)
    with pytest.raises(ValueError):
        frame_signal(np.arange(10.0), 0, 2)


def test_normalizers_handle_silence():
    silent = np.zeros(16)
    np.testing.assert_array_equal(normalize_peak(silent), silent)
    np.testing.assert_array_equal(zscore(silent), silent)
    z = zscore(np.array([1.0, 2.0, 3.0]))
    assert z.mean() == pytest.approx(0.0)
    assert z.std() == pytest.approx(1.0)
