"""Shared test fixtures and synthetic signal generators for tempo tests."""

import numpy as np
import pytest
import soundfile as sf
from fastapi.testclient import TestClient

from tempometer.analysis.models import AudioFrame, DetectionContext
from tempometer.analysis.pipeline import PreprocessedSignal, PreprocessingPipeline
from tempometer.audio.loader import frames_from_samples

SR = 44100


@pytest.fixture
def client():
    """FastAPI test client."""
    from tempometer.main import app

    return TestClient(app)


def generate_beat_signal(
    bpm: float,
    duration_seconds: float = 5.0,
    sr: int = SR,
    noise: float = 0.05,
    seed: int = 42,
) -> np.ndarray:
    """Fundamental at the beat rate plus two harmonics, modulated by |sin|."""
    t = np.arange(int(round(duration_seconds * sr))) / sr
    f = bpm / 60.0
    pulse = (
        np.sin(2 * np.pi * f * t)
        + 0.5 * np.sin(4 * np.pi * f * t)
        + 0.25 * np.sin(6 * np.pi * f * t)
    )
    envelope = np.abs(np.sin(np.pi * f * t))
    rng = np.random.default_rng(seed)
    return pulse * envelope + rng.uniform(-noise, noise, len(t))


def generate_click_track(
    bpm: float,
    duration_seconds: float = 5.0,
    sr: int = SR,
    noise: float = 0.0,
    click_width: float = 0.005,
    amplitude: float = 1.0,
    offset: float = 0.0,
    seed: int = 42,
) -> np.ndarray:
    """Sharp triangular pulses (±``click_width`` seconds) at every beat."""
    n = int(round(duration_seconds * sr))
    audio = np.zeros(n)
    half = int(round(click_width * sr))
    shape = 1.0 - np.abs(np.arange(-half, half + 1)) / (half + 1)
    beat = offset
    while beat < duration_seconds:
        centre = int(round(beat * sr))
        lo, hi = max(0, centre - half), min(n, centre + half + 1)
        audio[lo:hi] += amplitude * shape[lo - (centre - half):hi - (centre - half)]
        beat += 60.0 / bpm
    if noise > 0:
        rng = np.random.default_rng(seed)
        audio += rng.uniform(-noise, noise, n)
    return audio


def generate_metronome(
    bpm: float,
    duration_seconds: float = 12.0,
    sr: int = SR,
    tone_hz: float = 1000.0,
) -> np.ndarray:
    """Decaying sine bursts, like a metronome tick."""
    n = int(round(duration_seconds * sr))
    audio = np.zeros(n)
    click_len = int(0.03 * sr)
    t = np.arange(click_len) / sr
    click = np.sin(2 * np.pi * tone_hz * t) * np.exp(-t * 150)
    beat = 0.0
    while beat < duration_seconds:
        start = int(round(beat * sr))
        end = min(n, start + click_len)
        audio[start:end] += click[: end - start]
        beat += 60.0 / bpm
    return 0.8 * audio / np.max(np.abs(audio))


def generate_synthetic_music(
    bpm: float,
    duration_seconds: float = 5.0,
    sr: int = SR,
    noise: float = 0.1,
    seed: int = 42,
) -> np.ndarray:
    """Beat fundamental with bass, harmonics and a quieter 1.5x component."""
    t = np.arange(int(round(duration_seconds * sr))) / sr
    f = bpm / 60.0
    value = (
        np.sin(2 * np.pi * f * t)
        + 0.6 * np.sin(np.pi * f * t)
        + 0.3 * np.sin(4 * np.pi * f * t)
        + 0.15 * np.sin(6 * np.pi * f * t)
    )
    value *= np.sqrt(np.abs(np.sin(np.pi * f * t)))
    value += 0.1 * np.sin(3 * np.pi * f * t)
    rng = np.random.default_rng(seed)
    value += rng.uniform(-noise, noise, len(t))
    return 0.5 * value


def generate_noise(duration_seconds: float = 5.0, sr: int = SR, amplitude: float = 0.5, seed: int = 42) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return rng.uniform(-amplitude, amplitude, int(round(duration_seconds * sr)))


def generate_silence(duration_seconds: float = 5.0, sr: int = SR) -> np.ndarray:
    return np.zeros(int(round(duration_seconds * sr)))


def make_frames(samples: np.ndarray, sr: int = SR, frame_size: int = 2048) -> list[AudioFrame]:
    return frames_from_samples(samples, sr, frame_size)


def preprocess(
    samples: np.ndarray,
    min_bpm: float = 60.0,
    max_bpm: float = 180.0,
    sr: int = SR,
) -> PreprocessedSignal:
    """Run the shared pipeline over *samples* with a matching context."""
    context = DetectionContext(
        sample_rate=sr,
        min_bpm=min_bpm,
        max_bpm=max_bpm,
        window_duration=max(len(samples) / sr, 1.0),
    )
    return PreprocessingPipeline().process(make_frames(samples, sr), context)


@pytest.fixture
def context():
    return DetectionContext(sample_rate=SR, min_bpm=60.0, max_bpm=180.0, window_duration=5.0)


@pytest.fixture(scope="session")
def metronome_wav(tmp_path_factory):
    """A 12 s, 98 BPM metronome written as a PCM16 WAV fixture."""
    path = tmp_path_factory.mktemp("fixtures") / "metronome_98.wav"
    sf.write(str(path), generate_metronome(98.0), SR, subtype="PCM_16")
    return path
