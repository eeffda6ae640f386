"""
Background scaling between a ChIP sample and its control (NCIS).

NCIS estimates how many ChIP reads a control read stands for in
background (signal-free) regions. Genome bins are ranked by their total
ChIP + control depth; the ratio ``sum(chip) / sum(control)`` over the bins
at or below a depth threshold is tracked as the threshold grows, and the
estimate is the ratio where it stops decreasing. The bin size is increased
until two successive estimates agree.

Functions
---------
bin_read_counts
    Count read positions in fixed-size genome bins.
background_ratio
    Background ratio for one bin size.
estimate_noise_ratio
    Full NCIS estimate over increasing bin sizes.
merge_positions
    Pool the read positions of several sources.
"""
from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional, Sequence, Tuple

import numpy as np

from .constants import NCIS_BIN_SIZES, NCIS_MIN_FRACTION, NCIS_TOLERANCE
from .errors import InsufficientDataError

logger = logging.getLogger(__name__)

Positions = Dict[str, np.ndarray]


def merge_positions(positions: Iterable[Positions]) -> Positions:
    """Pool per-sequence read positions of several sources, sorted."""
    pooled: Dict[str, list] = {}
    for source_positions in positions:
        for sequence_name, values in source_positions.items():
            pooled.setdefault(sequence_name, []).append(np.asarray(values, dtype=np.int64))
    return {s: np.sort(np.concatenate(parts)) for s, parts in pooled.items()}


def bin_read_counts(
    chip: Positions,
    control: Positions,
    bin_size: int,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Count ChIP and control reads in ``bin_size`` bp bins.

    Returns
    -------
    (chip_counts, control_counts) : tuple of np.ndarray
        Paired counts of every bin holding at least one read.
    """
    chip_parts, control_parts = [], []
    for sequence_name in sorted(set(chip) | set(control)):
        chip_bins = np.asarray(chip.get(sequence_name, []), dtype=np.int64) // bin_size
        control_bins = np.asarray(control.get(sequence_name, []), dtype=np.int64) // bin_size
        n_bins = int(max(chip_bins.max(initial=-1), control_bins.max(initial=-1))) + 1
        if n_bins == 0:
            continue
        chip_counts = np.bincount(chip_bins, minlength=n_bins)
        control_counts = np.bincount(control_bins, minlength=n_bins)
        occupied = (chip_counts + control_counts) > 0
        chip_parts.append(chip_counts[occupied])
        control_parts.append(control_counts[occupied])

    if not chip_parts:
        return np.empty(0, dtype=np.int64), np.empty(0, dtype=np.int64)
    return np.concatenate(chip_parts), np.concatenate(control_parts)


def background_ratio(
    chip_counts: np.ndarray,
    control_counts: np.ndarray,
    min_fraction: float = NCIS_MIN_FRACTION,
) -> Optional[float]:
    """
    ChIP/control ratio in background bins for one binning.

    Parameters
    ----------
    chip_counts, control_counts : np.ndarray
        Paired per-bin read counts.
    min_fraction : float, default 0.75
        Minimum fraction of bins the background must span before the
        search for the ratio minimum starts.

    Returns
    -------
    float or None
        Ratio at the first depth threshold where the cumulative ratio stops
        decreasing, or None when no bin holds control reads.
    """
    chip_counts = np.asarray(chip_counts, dtype=np.float64)
    control_counts = np.asarray(control_counts, dtype=np.float64)
    total = chip_counts + control_counts
    if total.size == 0:
        return None

    order = np.argsort(total, kind="stable")
    total_sorted = total[order]
    cum_chip = np.cumsum(chip_counts[order])
    cum_control = np.cumsum(control_counts[order])

    thresholds = np.unique(total_sorted)
    last = np.searchsorted(total_sorted, thresholds, side="right") - 1
    with np.errstate(divide="ignore", invalid="ignore"):
        ratios = cum_chip[last] / cum_control[last]
    fractions = (last + 1) / total.size

    candidates = np.flatnonzero((fractions >= min_fraction) & np.isfinite(ratios) & (cum_control[last] > 0))
    if candidates.size == 0:
        return None

    k = candidates[0]
    while k + 1 < ratios.size and np.isfinite(ratios[k + 1]) and ratios[k + 1] < ratios[k]:
        k += 1
    return float(ratios[k])


def estimate_noise_ratio(
    chip: Positions,
    control: Positions,
    bin_sizes: Sequence[int] = NCIS_BIN_SIZES,
    min_fraction: float = NCIS_MIN_FRACTION,
    tolerance: float = NCIS_TOLERANCE,
) -> float:
    """
    NCIS scaling coefficient of a control relative to a ChIP sample.

    Parameters
    ----------
    chip, control : dict of str to np.ndarray
        Read 5' positions per sequence.
    bin_sizes : sequence of int
        Bin sizes tried in increasing order.
    min_fraction : float, default 0.75
        See :func:`background_ratio`.
    tolerance : float, default 0.01
        Relative change between successive bin sizes under which the
        estimate is considered stable.

    Returns
    -------
    float
        Estimated ``chip / control`` background ratio.

    Raises
    ------
    InsufficientDataError
        If no bin size yields a background estimate.

    Examples
    --------
    >>> ratio = estimate_noise_ratio(chip_positions, input_positions)
    >>> denoised = chip_track.subtract(input_track, ratio)
    """
    previous = None
    estimate = None
    for bin_size in bin_sizes:
        ratio = background_ratio(*bin_read_counts(chip, control, bin_size), min_fraction=min_fraction)
        if ratio is None:
            continue
        logger.debug(f"NCIS: bin size {bin_size} bp -> ratio {ratio:.4f}")
        estimate = ratio
        if previous is not None and abs(ratio - previous) <= tolerance * previous:
            break
        previous = ratio

    if estimate is None:
        raise InsufficientDataError("No background bins with control reads; cannot estimate NCIS ratio")
    logger.info(f"NCIS background ratio: {estimate:.4f}")
    return estimate
