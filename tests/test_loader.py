"""Tests for WAV loading, PCM conversion and frame slicing."""

import numpy as np
import pytest
import soundfile as sf

from tempometer.analysis.models import AudioFrame
from tempometer.audio.loader import (
    bpm_from_filename,
    frames_from_samples,
    load_audio,
    load_pcm16_wav,
    pcm16_to_float,
)
from tests.conftest import SR, generate_click_track


def test_pcm16_to_float():
    data = np.array([0, 16384, -32768, 32767], dtype="<i2").tobytes()
    np.testing.assert_allclose(pcm16_to_float(data), [0.0, 0.5, -1.0, 32767 / 32768])


def test_pcm16_to_float_downmixes_and_ignores_partial_frame():
    data = np.array([1000, 3000, -2000, 2000], dtype="<i2").tobytes() + b"\x01"
    np.testing.assert_allclose(pcm16_to_float(data, channels=2), [2000 / 32768, 0.0])
    with pytest.raises(ValueError):
        pcm16_to_float(data, channels=0)


def test_audio_frame_from_pcm16():
    data = np.array([16384, 16384, -16384, -16384], dtype="<i2").tobytes()
    frame = AudioFrame.from_pcm16(data, sample_rate=8000, channels=2, sequence=5)
    assert frame.channels == 1
    assert frame.sequence == 5
    np.testing.assert_allclose(frame.samples, [0.5, -0.5])


def test_load_stereo_wav(tmp_path):
    path = tmp_path / "stereo_120.wav"
    stereo = np.stack([np.full(800, 0.5), np.zeros(800)], axis=1)
    sf.write(str(path), stereo, 8000, subtype="PCM_16")
    wav = load_pcm16_wav(path)
    assert wav.channels == 2
    assert wav.sample_rate == 8000
    assert len(wav.samples) == 800
    assert wav.duration == pytest.approx(0.1)
    np.testing.assert_allclose(wav.samples, 0.25, atol=1e-3)


def test_load_mono_wav_keeps_sample_values(tmp_path):
    path = tmp_path / "mono.wav"
    pcm = np.array([100, -100, 200, 32767, -32768], dtype=np.int16)
    sf.write(str(path), pcm, 8000, subtype="PCM_16")
    wav = load_pcm16_wav(path)
    assert wav.channels == 1
    assert wav.sample_rate == 8000
    np.testing.assert_allclose(wav.samples, pcm / 32768)


def test_rejects_non_wav(tmp_path):
    path = tmp_path / "notes.wav"
    path.write_bytes(b"this is not audio")
    with pytest.raises(ValueError):
        load_pcm16_wav(path)


@pytest.mark.parametrize("subtype", ["FLOAT", "PCM_24", "PCM_U8"])
def test_rejects_non_pcm16_wav(tmp_path, subtype):
    path = tmp_path / f"{subtype.lower()}.wav"
    sf.write(str(path), np.zeros(100), 8000, subtype=subtype)
    with pytest.raises(ValueError):
        load_pcm16_wav(path)


def test_rejects_pcm16_in_other_containers(tmp_path):
    path = tmp_path / "clip.flac"
    sf.write(str(path), np.zeros(100), 8000, subtype="PCM_16")
    with pytest.raises(ValueError):
        load_pcm16_wav(path)


def test_rejects_truncated_header(tmp_path):
    source = tmp_path / "full.wav"
    sf.write(str(source), np.zeros(100), 8000, subtype="PCM_16")
    path = tmp_path / "truncated.wav"
    path.write_bytes(source.read_bytes()[:12])
    with pytest.raises(ValueError):
        load_pcm16_wav(path)


@pytest.mark.parametrize("name, expected", [
    ("metronome_98.wav", 98.0),
    ("click_120.5bpm.wav", 120.5),
    ("fixtures/drums_fast_174BPM.flac", 174.0),
    ("song.wav", None),
])
def test_bpm_from_filename(name, expected):
    assert bpm_from_filename(name) == expected


def test_frames_from_samples():
    frames = frames_from_samples(np.zeros(5000), SR, frame_size=2048, start_sequence=3)
    assert [len(f.samples) for f in frames] == [2048, 2048, 904]
    assert [f.sequence for f in frames] == [3, 4, 5]
    with pytest.raises(ValueError):
        frames_from_samples(np.zeros(10), SR, frame_size=0)


def test_load_audio_resamples_to_mono(tmp_path):
    path = tmp_path / "click.wav"
    sf.write(str(path), generate_click_track(120, 1.0, sr=22050), 22050, subtype="PCM_16")
    audio, sr = load_audio(path, sr=SR)
    assert sr == SR
    assert audio.ndim == 1
    assert len(audio) == pytest.approx(SR, abs=10)
