"""Application configuration."""

from pydantic_settings import BaseSettings

from tempometer.analysis.models import DetectionContext


class Settings(BaseSettings):
    """App settings with env var overrides."""

    # Audio
    sample_rate: int = 44100
    frame_size: int = 2048  # samples per AudioFrame when slicing streams/files

    # Detection
    min_bpm: float = 50.0
    max_bpm: float = 200.0
    buffer_window_seconds: float = 10.0
    analysis_interval_seconds: float = 1.0
    detector_timeout_seconds: float = 5.0
    max_workers: int = 4
    enabled_detectors: list[str] = [
        "energy_onset",
        "autocorrelation",
        "fft_spectrum",
        "wavelet_energy",
        "dp_beat_tracker",
    ]
    include_plp: bool = True

    # Consensus
    smoothing_factor: float = 0.25
    cluster_tolerance: float = 3.0
    outlier_threshold: float = 8.0
    history_size: int = 10

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    max_upload_mb: int = 50

    model_config = {"env_prefix": "TEMPOMETER_"}

    def context(self) -> DetectionContext:
        """Detection context built from the configured audio and BPM bounds."""
        return DetectionContext(
            sample_rate=self.sample_rate,
            min_bpm=self.min_bpm,
            max_bpm=self.max_bpm,
            window_duration=self.buffer_window_seconds,
        )


settings = Settings()
