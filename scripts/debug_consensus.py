#!/usr/bin/env python3
"""Run canned harmonic-conflict scenarios through the consensus engine.

Each scenario mixes readings at a fundamental tempo with readings at a
subharmonic and prints the fused tempo, its confidence and the weights.

Usage:
    python scripts/debug_consensus.py
    python scripts/debug_consensus.py --confidence 0.8 --tolerance 4
"""

import argparse
import sys
from datetime import datetime, timezone
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from tempometer.analysis.consensus import ConsensusEngine
from tempometer.analysis.models import BpmReading

SCENARIOS = [
    ("3 fundamentals vs 1 subharmonic", [
        ("energy_onset", 155), ("autocorrelation", 155), ("fft_spectrum", 155), ("wavelet_energy", 50),
    ]),
    ("2 fundamentals vs 2 subharmonics", [
        ("energy_onset", 155), ("fft_spectrum", 155), ("autocorrelation", 51.6), ("wavelet_energy", 48.9),
    ]),
    ("1 fundamental vs 3 subharmonics", [
        ("energy_onset", 155), ("fft_spectrum", 51.4), ("autocorrelation", 49.3), ("wavelet_energy", 52.1),
    ]),
]


def _reading(algorithm_id: str, bpm: float, confidence: float) -> BpmReading:
    return BpmReading(
        algorithm_id=algorithm_id,
        algorithm_name=algorithm_id,
        bpm=float(bpm),
        confidence=confidence,
        timestamp=datetime.now(timezone.utc),
    )


def main():
    parser = argparse.ArgumentParser(description="Consensus engine harmonic-conflict scenarios")
    parser.add_argument("--confidence", type=float, default=0.6, help="Confidence of every reading")
    parser.add_argument("--tolerance", type=float, default=3.0, help="Cluster tolerance (BPM)")
    args = parser.parse_args()

    for title, entries in SCENARIOS:
        engine = ConsensusEngine(cluster_tolerance=args.tolerance)
        engine.reset()
        result = engine.combine([_reading(i, bpm, args.confidence) for i, bpm in entries])
        print(f"--- {title} ---")
        if result is None:
            print("Consensus: none")
            continue
        print(f"Consensus BPM: {result.bpm:.2f}, confidence: {result.confidence:.3f}")
        for algorithm_id, weight in result.weights.items():
            print(f"  {algorithm_id}: {weight:.3f}")


if __name__ == "__main__":
    main()
