"""
Run-length encoded coverage tracks.

Coverage over large genomic intervals is stored as runs of constant value
rather than per-base arrays. Every operation (accumulation, addition,
scaling, subtraction) is expressed as a sweep over run breakpoints, so the
cost depends on the number of runs and not on the number of bases covered.
"""
from __future__ import annotations

from typing import Dict, Iterable, Iterator, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

Runs = Tuple[np.ndarray, np.ndarray, np.ndarray]

# threshold, relative to the runs open at a position, under which a level is zero
_ZERO_TOLERANCE = 1e-9


def _empty_runs() -> Runs:
    return (
        np.empty(0, dtype=np.int64),
        np.empty(0, dtype=np.int64),
        np.empty(0, dtype=np.float64),
    )


def _merge_adjacent(starts: np.ndarray, ends: np.ndarray, values: np.ndarray) -> Runs:
    if starts.size < 2:
        return starts, ends, values
    new_run = np.ones(starts.size, dtype=bool)
    new_run[1:] = (starts[1:] != ends[:-1]) | (values[1:] != values[:-1])
    first = np.flatnonzero(new_run)
    last = np.r_[first[1:] - 1, starts.size - 1]
    return starts[first], ends[last], values[first]


def _runs_from_steps(positions: np.ndarray, deltas: np.ndarray, openings: np.ndarray) -> Runs:
    """
    Build positive runs from the step changes of a piecewise-constant signal.

    ``openings`` is +1 where a contributing run starts and -1 where it ends.
    Levels at or below zero are dropped, which clips the signal at zero.
    A level is also dropped where no run is open, or where it is within
    float cancellation of zero relative to the runs open at that position.
    """
    if positions.size == 0:
        return _empty_runs()

    breaks, inverse = np.unique(positions, return_inverse=True)
    steps = np.zeros(breaks.size, dtype=np.float64)
    np.add.at(steps, inverse, deltas)
    magnitude_steps = np.zeros(breaks.size, dtype=np.float64)
    np.add.at(magnitude_steps, inverse, np.abs(deltas) * openings)
    open_steps = np.zeros(breaks.size, dtype=np.int64)
    np.add.at(open_steps, inverse, openings)

    levels = np.cumsum(steps)[:-1]
    magnitudes = np.cumsum(magnitude_steps)[:-1]
    n_open = np.cumsum(open_steps)[:-1]

    keep = (n_open > 0) & (levels > _ZERO_TOLERANCE * magnitudes)
    return _merge_adjacent(
        breaks[:-1][keep].astype(np.int64),
        breaks[1:][keep].astype(np.int64),
        levels[keep],
    )


def _steps(runs: Runs, factor: float = 1.0) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    starts, ends, values = runs
    openings = np.concatenate([np.ones(starts.size, dtype=np.int64), -np.ones(ends.size, dtype=np.int64)])
    return np.concatenate([starts, ends]), np.concatenate([values * factor, -values * factor]), openings


class CoverageTrack:
    """
    Sparse coverage over genomic coordinates.

    Holds, per sequence, sorted and non-overlapping runs ``[start, end)``
    with a strictly positive value. Positions outside every run have
    coverage 0.

    Parameters
    ----------
    runs : mapping of str to (starts, ends, values), optional
        Runs per sequence name. Arrays are normalized (sorted, merged,
        zero runs dropped).

    Examples
    --------
    >>> a = CoverageTrack.from_intervals({"chr1": ([0, 5], [10, 15])})
    >>> a.value_at("chr1", 7)
    2.0
    >>> a.scale(0.5).total()
    10.0
    """

    def __init__(self, runs: Optional[Mapping[str, Runs]] = None):
        self._runs: Dict[str, Runs] = {}
        for sequence_name, (starts, ends, values) in (runs or {}).items():
            starts = np.asarray(starts, dtype=np.int64)
            ends = np.asarray(ends, dtype=np.int64)
            values = np.asarray(values, dtype=np.float64)
            if not (starts.size == ends.size == values.size):
                raise ValueError(f"Run arrays for {sequence_name} have different lengths")
            self._set(sequence_name, _runs_from_steps(*_steps((starts, ends, values))))

    def _set(self, sequence_name: str, runs: Runs) -> None:
        if runs[0].size:
            self._runs[sequence_name] = runs

    @classmethod
    def from_intervals(
        cls,
        intervals: Mapping[str, Tuple[Sequence[int], Sequence[int]]],
        value: float = 1.0,
    ) -> "CoverageTrack":
        """
        Accumulate coverage from interval footprints.

        Parameters
        ----------
        intervals : mapping of str to (starts, ends)
            Half-open footprints per sequence name. Overlapping footprints
            are summed.
        value : float, default 1.0
            Contribution of every footprint.
        """
        track = cls()
        for sequence_name, (starts, ends) in intervals.items():
            starts = np.asarray(starts, dtype=np.int64)
            ends = np.asarray(ends, dtype=np.int64)
            if starts.size == 0:
                continue
            runs = (starts, ends, np.full(starts.size, value, dtype=np.float64))
            track._set(sequence_name, _runs_from_steps(*_steps(runs)))
        return track

    @classmethod
    def sum(cls, tracks: Iterable["CoverageTrack"]) -> "CoverageTrack":
        """Pointwise sum of any number of tracks."""
        tracks = [t for t in tracks if t is not None]
        result = cls()
        sequence_names = dict.fromkeys(s for t in tracks for s in t.sequence_names)
        for sequence_name in sequence_names:
            parts = [_steps(t._runs[sequence_name]) for t in tracks if sequence_name in t._runs]
            result._set(sequence_name, _runs_from_steps(*(np.concatenate(columns) for columns in zip(*parts))))
        return result

    def add(self, other: "CoverageTrack") -> "CoverageTrack":
        """Pointwise sum, over the union of both tracks' breakpoints."""
        return CoverageTrack.sum([self, other])

    __add__ = add

    def subtract(self, other: "CoverageTrack", coefficient: float = 1.0) -> "CoverageTrack":
        """Return ``max(0, self - coefficient * other)`` pointwise."""
        result = CoverageTrack()
        for sequence_name in dict.fromkeys(self.sequence_names + other.sequence_names):
            parts = []
            if sequence_name in self._runs:
                parts.append(_steps(self._runs[sequence_name]))
            if sequence_name in other._runs:
                parts.append(_steps(other._runs[sequence_name], -coefficient))
            result._set(sequence_name, _runs_from_steps(*(np.concatenate(columns) for columns in zip(*parts))))
        return result

    def scale(self, weight: float) -> "CoverageTrack":
        """Return the track with every run value multiplied by ``weight``."""
        if weight < 0:
            raise ValueError(f"weight must be non-negative, got {weight}")
        result = CoverageTrack()
        if weight == 0:
            return result
        for sequence_name, (starts, ends, values) in self._runs.items():
            result._runs[sequence_name] = (starts.copy(), ends.copy(), values * weight)
        return result

    def __mul__(self, weight: float) -> "CoverageTrack":
        return self.scale(weight)

    __rmul__ = __mul__

    @property
    def sequence_names(self) -> list:
        return list(self._runs)

    def __contains__(self, sequence_name: str) -> bool:
        return sequence_name in self._runs

    def __len__(self) -> int:
        """Number of runs."""
        return sum(runs[0].size for runs in self._runs.values())

    def __iter__(self) -> Iterator[Tuple[str, int, int, float]]:
        for sequence_name, (starts, ends, values) in self._runs.items():
            for start, end, value in zip(starts, ends, values):
                yield sequence_name, int(start), int(end), float(value)

    def __repr__(self) -> str:
        return f"CoverageTrack(n_sequences={len(self._runs)}, n_runs={len(self)})"

    def is_empty(self) -> bool:
        return not self._runs

    def runs(self, sequence_name: str) -> Runs:
        """Raw ``(starts, ends, values)`` arrays of one sequence."""
        return self._runs.get(sequence_name, _empty_runs())

    def total(self, sequence_name: Optional[str] = None) -> float:
        """Area under the track (base pairs x value)."""
        names = self.sequence_names if sequence_name is None else [sequence_name]
        total = 0.0
        for name in names:
            starts, ends, values = self.runs(name)
            total += float(np.sum((ends - starts) * values))
        return total

    def value_at(self, sequence_name: str, position: int) -> float:
        starts, ends, values = self.runs(sequence_name)
        i = np.searchsorted(starts, position, side="right") - 1
        if i >= 0 and position < ends[i]:
            return float(values[i])
        return 0.0

    def integral(self, sequence_name: str, edges: Sequence[int]) -> np.ndarray:
        """
        Cumulative area at each position of ``edges``.

        The value at each edge is the area from the first edge up to it,
        so ``np.diff`` of the result gives the area between edges.

        Parameters
        ----------
        sequence_name : str
            Sequence to query.
        edges : sequence of int
            Non-decreasing positions.

        Returns
        -------
        np.ndarray
            Float array of the same length as ``edges``, starting at 0.
        """
        edges = np.asarray(edges, dtype=np.int64)
        starts, ends, values = self.runs(sequence_name)
        if starts.size == 0 or edges.size == 0:
            return np.zeros(edges.size, dtype=np.float64)

        lo = np.searchsorted(ends, edges[0], side="right")
        hi = np.searchsorted(starts, edges[-1], side="left")
        starts, ends, values = starts[lo:hi], ends[lo:hi], values[lo:hi]
        if starts.size == 0:
            return np.zeros(edges.size, dtype=np.float64)

        cumulative = np.concatenate([[0.0], np.cumsum((ends - starts) * values)])
        xp = np.empty(2 * starts.size, dtype=np.int64)
        fp = np.empty(2 * starts.size, dtype=np.float64)
        xp[0::2], xp[1::2] = starts, ends
        fp[0::2], fp[1::2] = cumulative[:-1], cumulative[1:]
        area = np.interp(edges, xp, fp)
        return area - area[0]

    def mean_over(self, sequence_name: str, start: int, end: int) -> float:
        """Coverage-weighted mean over ``[start, end)``."""
        if end <= start:
            raise ValueError(f"Empty interval {sequence_name}:{start}-{end}")
        area = self.integral(sequence_name, [start, end])
        return float(area[-1]) / (end - start)

    def to_frame(self) -> pd.DataFrame:
        """Export runs as a DataFrame with sequence_name, start, end, value."""
        return pd.DataFrame(list(self), columns=["sequence_name", "start", "end", "value"])

    def equals(self, other: "CoverageTrack", rtol: float = 1e-9) -> bool:
        """True when both tracks describe the same signal."""
        if set(self._runs) != set(other._runs):
            return False
        for sequence_name, (starts, ends, values) in self._runs.items():
            o_starts, o_ends, o_values = other._runs[sequence_name]
            if not (np.array_equal(starts, o_starts) and np.array_equal(ends, o_ends)):
                return False
            if not np.allclose(values, o_values, rtol=rtol, atol=0.0):
                return False
        return True
