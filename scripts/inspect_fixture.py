#!/usr/bin/env python3
"""Per-detector and consensus report for a PCM16 WAV fixture.

The expected tempo is read from the filename (``metronome_98.wav`` is
98 BPM) when present.

Usage:
    python scripts/inspect_fixture.py data/metronome_98.wav
    python scripts/inspect_fixture.py data/metronome_98.wav --min-bpm 70 --max-bpm 150
    python scripts/inspect_fixture.py data/metronome_98.wav --stream -v
"""

import argparse
import logging
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from tempometer.analysis.consensus import ConsensusEngine
from tempometer.analysis.detectors import default_detectors
from tempometer.analysis.engine import BpmDetectorCoordinator, plp_reading, run_detectors
from tempometer.analysis.models import DetectionContext
from tempometer.analysis.pipeline import PreprocessingPipeline
from tempometer.audio.loader import bpm_from_filename, frames_from_samples, load_pcm16_wav


def main():
    parser = argparse.ArgumentParser(description="Inspect detector readings for a WAV fixture")
    parser.add_argument("path", type=Path, help="PCM16 WAV file")
    parser.add_argument("--min-bpm", type=float, default=50.0)
    parser.add_argument("--max-bpm", type=float, default=250.0)
    parser.add_argument("--window", type=float, default=6.0, help="Window duration (seconds)")
    parser.add_argument("--stream", action="store_true",
                        help="Stream the file through the coordinator instead of one window")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING,
                        format="%(levelname)s %(name)s: %(message)s")

    if not args.path.exists():
        print(f"Fixture not found at {args.path}")
        sys.exit(1)

    wav = load_pcm16_wav(args.path)
    context = DetectionContext(
        sample_rate=wav.sample_rate,
        min_bpm=args.min_bpm,
        max_bpm=args.max_bpm,
        window_duration=args.window,
    )
    expected = bpm_from_filename(args.path)
    print(f"Analyzing {args.path.name}: {wav.duration:.1f}s, {wav.sample_rate} Hz, "
          f"{wav.channels} channel(s), expected {expected if expected else 'unknown'} BPM")

    if args.stream:
        with BpmDetectorCoordinator(context=context) as coordinator:
            summary = coordinator.analyze_audio(wav.samples, wav.sample_rate)
        readings, consensus = summary.readings, summary.consensus
    else:
        frames = frames_from_samples(wav.samples, wav.sample_rate)
        signal = PreprocessingPipeline().process(frames, context)
        readings = run_detectors(default_detectors(), signal)
        plp = plp_reading(signal)
        engine = ConsensusEngine(min_bpm=context.min_bpm, max_bpm=context.max_bpm)
        consensus = engine.combine(readings + ([plp] if plp else []))
        if plp is not None:
            print(f"Tempogram PLP: {plp.bpm:.2f} BPM (strength {plp.metadata['strength']:.2f})")

    for reading in readings:
        error = f", error {reading.bpm - expected:+.2f}" if expected else ""
        print(f"{reading.algorithm_name:<34} {reading.bpm:7.2f} BPM  conf={reading.confidence:.3f}{error}")
        if args.verbose:
            print(f"  metadata: {reading.metadata}")

    if consensus is None:
        print("Consensus => none")
    else:
        print(f"Consensus => {consensus.bpm:.2f} BPM (conf={consensus.confidence:.3f})")
        print(f"  weights: {consensus.weights}")


if __name__ == "__main__":
    main()
