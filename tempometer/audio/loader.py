"""Audio file loading utilities."""

from __future__ import annotations

import re
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Union

import librosa
import numpy as np
import soundfile as sf

from tempometer.analysis.models import AudioFrame

_BPM_IN_NAME = re.compile(r"(\d+(?:\.\d+)?)\s*(?:bpm)?$", re.IGNORECASE)
_WAV_FORMATS = ("WAV", "WAVEX")


def load_audio(
    file_path_or_buffer: Union[str, Path, BytesIO],
    sr: int = 44100,
) -> tuple[np.ndarray, int]:
    """Load an audio file or buffer and convert to mono.

    Parameters
    ----------
    file_path_or_buffer:
        Path to an audio file or a BytesIO buffer containing audio data.
    sr:
        Target sample rate. Defaults to 44100 Hz.

    Returns
    -------
    tuple[np.ndarray, int]
        A tuple of (audio_array, sample_rate).
    """
    audio, sample_rate = librosa.load(file_path_or_buffer, sr=sr, mono=True)
    return audio, sample_rate


def pcm16_to_float(data: bytes, channels: int = 1) -> np.ndarray:
    """Little-endian interleaved PCM16 bytes to mono floats in [-1, 1).

    Channels are averaged; a trailing partial sample frame is ignored.
    """
    if channels <= 0:
        raise ValueError(f"channels must be positive, got {channels}")
    frame_bytes = 2 * channels
    usable = (len(data) // frame_bytes) * frame_bytes
    pcm = np.frombuffer(data[:usable], dtype="<i2").astype(np.float32) / 32768.0
    if channels == 1:
        return pcm
    return pcm.reshape(-1, channels).mean(axis=1)


@dataclass
class WavData:
    """Decoded PCM16 WAV file, downmixed to mono."""
    samples: np.ndarray
    sample_rate: int
    channels: int  # channel count in the file

    @property
    def duration(self) -> float:
        return len(self.samples) / self.sample_rate if self.sample_rate else 0.0


def load_pcm16_wav(path: Union[str, Path]) -> WavData:
    """Read a WAV file holding 16-bit PCM through libsndfile.

    Raises
    ------
    ValueError
        If the file cannot be decoded, is not a WAV container, or does not
        hold PCM16 samples.
    """
    try:
        info = sf.info(str(path))
    except sf.LibsndfileError as exc:
        raise ValueError(f"Not a readable audio file: {path} ({exc})") from exc
    if info.format not in _WAV_FORMATS:
        raise ValueError(f"Not a WAV file: {path} (format={info.format})")
    if info.subtype != "PCM_16":
        raise ValueError(f"Only PCM16 WAV files are supported (subtype={info.subtype})")
    data, sample_rate = sf.read(str(path), dtype="int16", always_2d=True)
    samples = data.astype(np.float32).mean(axis=1) / 32768.0
    return WavData(samples=samples, sample_rate=sample_rate, channels=info.channels)


def bpm_from_filename(path: Union[str, Path]) -> float | None:
    """Ground-truth BPM encoded at the end of a file stem, e.g. ``metronome_98.wav``."""
    stem = Path(path).stem
    match = _BPM_IN_NAME.search(stem.split("_")[-1])
    if match is None:
        return None
    return float(match.group(1))


def frames_from_samples(
    samples: np.ndarray,
    sample_rate: int,
    frame_size: int = 2048,
    start_sequence: int = 0,
) -> list[AudioFrame]:
    """Slice mono *samples* into consecutive frames with increasing sequence numbers."""
    if frame_size <= 0:
        raise ValueError(f"frame_size must be positive, got {frame_size}")
    samples = np.asarray(samples, dtype=np.float32).ravel()
    return [
        AudioFrame(
            samples=samples[start:start + frame_size],
            sample_rate=sample_rate,
            sequence=start_sequence + i,
        )
        for i, start in enumerate(range(0, len(samples), frame_size))
    ]
