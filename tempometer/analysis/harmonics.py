"""Harmonic ratio tables and range folding shared by detectors and consensus.

Every place that reasons about octave or triplet relationships draws its
ratios from the tables below through :func:`harmonic_candidates`.
"""

from __future__ import annotations

import math
from typing import Iterator, Sequence

from tempometer.analysis.models import BpmRangeResult

# Multipliers tried when folding a raw estimate into the BPM range,
# in preference order.
RANGE_MULTIPLIERS: tuple[float, ...] = (1.0, 0.5, 2.0, 1 / 3, 3.0, 0.25, 4.0, 2 / 3, 1.5, 0.2, 5.0)

# Ratios tried when pulling a reading towards a reference tempo.
REFERENCE_RATIOS: tuple[float, ...] = (0.25, 1 / 3, 0.5, 2 / 3, 1.0, 1.5, 2.0, 3.0, 4.0)

# Alternative interpretations added for each candidate during clustering.
EXPANSION_FACTORS: tuple[float, ...] = (1.0, 0.5, 2.0, 1.5, 2 / 3, 3.0)

# Interval ratios treated as a shorter harmonic of a longer interval.
SUPPRESSION_RATIOS: tuple[float, ...] = (1.5, 2.0, 3.0)

# Divisions of a correlation period checked for a faster underlying pulse,
# shortest resulting period first.
PERIOD_DIVISORS: tuple[float, ...] = (3.0, 2.0)


def is_valid_bpm(bpm: float) -> bool:
    return bpm is not None and math.isfinite(bpm) and bpm > 0


def harmonic_candidates(
    bpm: float,
    ratios: Sequence[float],
    min_bpm: float,
    max_bpm: float,
) -> Iterator[tuple[float, float]]:
    """Yield ``(bpm × ratio, ratio)`` for every ratio landing inside the range."""
    for ratio in ratios:
        candidate = bpm * ratio
        if min_bpm <= candidate <= max_bpm:
            yield candidate, ratio


def coerce_to_range(bpm: float, min_bpm: float, max_bpm: float) -> BpmRangeResult | None:
    """Fold *bpm* into ``[min_bpm, max_bpm]`` with the least disruptive multiplier.

    Candidates are scored by distance from the raw value, a small pull to
    the middle of the range, and a penalty for multipliers far from 1. When
    no multiplier lands in range the value is clamped and flagged. Returns
    ``None`` for non-positive or non-finite input.
    """
    if not is_valid_bpm(bpm):
        return None
    mid = (min_bpm + max_bpm) / 2
    best: tuple[float, float, float] | None = None
    for candidate, factor in harmonic_candidates(bpm, RANGE_MULTIPLIERS, min_bpm, max_bpm):
        score = abs(candidate - bpm) + 0.1 * abs(candidate - mid) + 0.05 * abs(factor - 1)
        if best is None or score < best[0]:
            best = (score, candidate, factor)
    if best is not None:
        return BpmRangeResult(bpm=best[1], multiplier=best[2], clamped=False)
    clamped = min(max(bpm, min_bpm), max_bpm)
    return BpmRangeResult(bpm=clamped, multiplier=clamped / bpm, clamped=True)


def normalize_to_reference(
    bpm: float,
    reference: float,
    min_bpm: float,
    max_bpm: float,
) -> tuple[float, float]:
    """Pick the harmonic of *bpm* closest to *reference*.

    Ratios other than 1 pay ``2 × max(0, |ratio - 1| - 0.1)`` so that an
    exact octave only wins over the literal value when it is clearly
    closer. Returns ``(bpm, ratio)``; out-of-range input with no in-range
    harmonic is clamped with ratio 1.
    """
    if not is_valid_bpm(bpm) or not is_valid_bpm(reference):
        return bpm, 1.0
    best: tuple[float, float, float] | None = None
    for candidate, ratio in harmonic_candidates(bpm, REFERENCE_RATIOS, min_bpm, max_bpm):
        score = abs(candidate - reference) + 2 * max(0.0, abs(ratio - 1) - 0.1)
        if best is None or score < best[0]:
            best = (score, candidate, ratio)
    if best is None:
        return min(max(bpm, min_bpm), max_bpm), 1.0
    return best[1], best[2]


def match_ratio(
    longer: float,
    shorter: float,
    ratios: Sequence[float] = SUPPRESSION_RATIOS,
    tolerance: float = 0.04,
) -> float | None:
    """Return the ratio in *ratios* that ``longer / shorter`` matches, if any."""
    if shorter <= 0:
        return None
    actual = longer / shorter
    for ratio in ratios:
        if abs(actual - ratio) <= tolerance * ratio:
            return ratio
    return None
