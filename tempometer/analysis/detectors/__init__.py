"""BPM detector subpackage: each detector in its own module."""

from tempometer.analysis.detectors.base import BpmDetector, range_penalty
from tempometer.analysis.detectors.energy_onset import EnergyOnsetDetector
from tempometer.analysis.detectors.autocorrelation import AutocorrelationDetector
from tempometer.analysis.detectors.fft_spectrum import FftSpectrumDetector
from tempometer.analysis.detectors.wavelet_energy import WaveletEnergyDetector
from tempometer.analysis.detectors.dp_beat_tracker import DynamicProgrammingBeatTracker

# Registry order is the order readings are reported in.
DETECTORS: dict[str, type[BpmDetector]] = {
    cls.id: cls
    for cls in (
        EnergyOnsetDetector,
        AutocorrelationDetector,
        FftSpectrumDetector,
        WaveletEnergyDetector,
        DynamicProgrammingBeatTracker,
    )
}


def create_detectors(ids=None) -> list[BpmDetector]:
    """Instantiate detectors by id, in registry order. ``None`` means all."""
    if ids is None:
        return [cls() for cls in DETECTORS.values()]
    wanted = list(ids)
    unknown = [i for i in wanted if i not in DETECTORS]
    if unknown:
        raise ValueError(f"Unknown detector id(s): {', '.join(unknown)}")
    return [cls() for key, cls in DETECTORS.items() if key in wanted]


def default_detectors() -> list[BpmDetector]:
    return create_detectors(None)


__all__ = [
    "BpmDetector",
    "range_penalty",
    "EnergyOnsetDetector",
    "AutocorrelationDetector",
    "FftSpectrumDetector",
    "WaveletEnergyDetector",
    "DynamicProgrammingBeatTracker",
    "DETECTORS",
    "create_detectors",
    "default_detectors",
]
