"""
Fixed-count binning of region coverage.

Each region is split into ``bin_count`` contiguous bins of equal width (the
remainder bp go to the first bins) and each bin is summarized by its
coverage-weighted mean. Bins follow the biological orientation of the
region: for minus-strand regions bin 0 sits at the high-coordinate end.

Functions
---------
bin_widths
    Widths of the bins of a region, in biological order.
bin_track
    Binned profile of one region.

Classes
-------
BinnedMatrix
    Region x bin matrices per (region group, design group).
Binner
    Builds BinnedMatrix objects from grouped or per-source coverage.
"""
from __future__ import annotations

import logging
from typing import Callable, Dict, Iterator, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

from .constants import MINUS_STRAND, UNSTRANDED
from .coverage import CoverageTrack
from .errors import EmptyRegionSetError, RegionTooSmallError, ValidationError
from .regions import Region, RegionSet

logger = logging.getLogger(__name__)

CellKey = Tuple[str, str]


def bin_widths(width: int, bin_count: int) -> np.ndarray:
    """Widths of ``bin_count`` bins covering ``width`` bp, wider bins first."""
    base, extra = divmod(width, bin_count)
    widths = np.full(bin_count, base, dtype=np.int64)
    widths[:extra] += 1
    return widths


def bin_track(track: Optional[CoverageTrack], region: Region, bin_count: int) -> np.ndarray:
    """
    Binned coverage profile of one region.

    Parameters
    ----------
    track : CoverageTrack or None
        Coverage to summarize. None is treated as zero coverage.
    region : Region
        Region to bin.
    bin_count : int
        Number of bins.

    Returns
    -------
    np.ndarray
        ``bin_count`` coverage-weighted means, upstream to downstream.

    Raises
    ------
    RegionTooSmallError
        If the region is narrower than ``bin_count`` bp.

    Examples
    --------
    >>> track = CoverageTrack.from_intervals({"chr1": ([0], [50])})
    >>> bin_track(track, Region("chr1", 0, 100, "+"), 2)
    array([1., 0.])
    >>> bin_track(track, Region("chr1", 0, 100, "-"), 2)
    array([0., 1.])
    """
    if bin_count < 1:
        raise ValidationError(f"bin_count must be a positive integer, got {bin_count}")
    if region.width < bin_count:
        raise RegionTooSmallError(
            f"Region {region.label} of group '{region.group}' is {region.width} bp wide, "
            f"smaller than bin_count={bin_count}"
        )

    widths = bin_widths(region.width, bin_count)
    minus = region.strand == MINUS_STRAND
    if minus:
        widths = widths[::-1]
    edges = region.start + np.concatenate([[0], np.cumsum(widths)])

    if track is None:
        values = np.zeros(bin_count, dtype=np.float64)
    else:
        values = np.diff(track.integral(region.sequence_name, edges)) / widths

    return values[::-1] if minus else values


class BinnedMatrix:
    """
    Binned values per (region group, design group).

    Each cell is a DataFrame whose rows are units (regions, or replicates
    for the ``by_replicate`` strategy) and whose columns are bin indexes.

    Parameters
    ----------
    bin_count : int
        Number of bins of every cell.
    unit : {'region', 'replicate'}, default 'region'
        What the rows of each cell are.
    """

    def __init__(self, bin_count: int, unit: str = "region"):
        self._bin_count = bin_count
        self._unit = unit
        self._cells: Dict[CellKey, pd.DataFrame] = {}

    def __repr__(self) -> str:
        return f"BinnedMatrix(bin_count={self._bin_count}, unit={self._unit!r}, n_cells={len(self._cells)})"

    def __len__(self) -> int:
        return len(self._cells)

    def __iter__(self) -> Iterator[CellKey]:
        return iter(self._cells)

    def __getitem__(self, key: CellKey) -> pd.DataFrame:
        return self._cells[key]

    def __contains__(self, key: CellKey) -> bool:
        return key in self._cells

    @property
    def bin_count(self) -> int:
        return self._bin_count

    @property
    def unit(self) -> str:
        return self._unit

    def add(self, region_group: str, design_group: str, values: pd.DataFrame) -> None:
        if values.shape[1] != self._bin_count:
            raise ValidationError(
                f"Cell ({region_group}, {design_group}) has {values.shape[1]} bins, expected {self._bin_count}"
            )
        self._cells[(region_group, design_group)] = values

    def items(self):
        return self._cells.items()

    def to_long(self) -> pd.DataFrame:
        """Tidy frame with region_group, design_group, <unit>, bin_index, value."""
        frames = []
        for (region_group, design_group), values in self._cells.items():
            long = (
                values.rename_axis(index=self._unit, columns=None)
                .reset_index()
                .melt(id_vars=self._unit, var_name="bin_index", value_name="value")
            )
            long["bin_index"] = long["bin_index"].astype(int)
            long.insert(0, "design_group", design_group)
            long.insert(0, "region_group", region_group)
            frames.append(long)
        if not frames:
            return pd.DataFrame(columns=["region_group", "design_group", self._unit, "bin_index", "value"])
        return pd.concat(frames, ignore_index=True)


class Binner:
    """
    Bins coverage over region groups.

    Parameters
    ----------
    bin_count : int, default 100
        Number of bins per region.
    region_filter : callable, optional
        ``region_filter(region) -> bool``; regions for which it returns
        False are left out of the matrix.
    """

    def __init__(self, bin_count: int = 100, region_filter: Optional[Callable[[Region], bool]] = None):
        if isinstance(bin_count, bool) or not isinstance(bin_count, (int, np.integer)) or bin_count < 1:
            raise ValidationError(f"bin_count must be a positive integer, got {bin_count!r}")
        self.bin_count = int(bin_count)
        self.region_filter = region_filter

    def _filtered(self, region_set: RegionSet) -> RegionSet:
        if self.region_filter is None:
            return region_set
        kept = region_set.filter(self.region_filter)
        if len(kept) == 0:
            raise EmptyRegionSetError(f"Region filter removed every region of '{region_set.name}'")
        logger.debug(f"{region_set.name}: region filter kept {len(kept)}/{len(region_set)} regions")
        return kept

    @staticmethod
    def _track_for(
        buckets: Mapping[str, CoverageTrack],
        region: Region,
        strand_specific: bool,
    ) -> Optional[CoverageTrack]:
        return buckets.get(region.strand if strand_specific else UNSTRANDED)

    def bin_region_set(
        self,
        buckets: Mapping[str, CoverageTrack],
        region_set: RegionSet,
        strand_specific: bool = False,
    ) -> pd.DataFrame:
        """Region x bin matrix of one region set over one set of tracks."""
        rows = [
            bin_track(self._track_for(buckets, region, strand_specific), region, self.bin_count)
            for region in region_set
        ]
        return pd.DataFrame(
            np.vstack(rows),
            index=pd.Index(region_set.labels, name="region"),
            columns=pd.RangeIndex(self.bin_count, name="bin_index"),
        )

    def bin(
        self,
        grouped_coverages: Mapping[str, Mapping[str, CoverageTrack]],
        region_sets: Mapping[str, RegionSet],
        strand_specific: bool = False,
    ) -> BinnedMatrix:
        """
        Region x bin matrices for every (region group, design group).

        Parameters
        ----------
        grouped_coverages : mapping of str to mapping of str to CoverageTrack
            Strand-bucketed coverage per design group.
        region_sets : mapping of str to RegionSet
            Region groups (already split by metadata if requested).
        strand_specific : bool, default False
            Read each region from the bucket of its strand.

        Returns
        -------
        BinnedMatrix
        """
        matrix = BinnedMatrix(self.bin_count, unit="region")
        for region_group, region_set in region_sets.items():
            region_set = self._filtered(region_set)
            for design_group, buckets in grouped_coverages.items():
                matrix.add(region_group, design_group, self.bin_region_set(buckets, region_set, strand_specific))
        logger.info(f"Binned {len(matrix)} (region group, design group) cells into {self.bin_count} bins")
        return matrix

    def bin_replicates(
        self,
        replicate_coverages: Mapping[str, Mapping[str, Mapping[str, CoverageTrack]]],
        region_sets: Mapping[str, RegionSet],
        strand_specific: bool = False,
    ) -> BinnedMatrix:
        """
        Replicate x bin matrices for every (region group, design group).

        Parameters
        ----------
        replicate_coverages : mapping of str to mapping of str to mapping of str to CoverageTrack
            Strand-bucketed coverage per design group and input source, as
            built by :meth:`~metagene.design.DesignAggregator.aggregate_replicates`.
        region_sets : mapping of str to RegionSet
            Region groups.
        strand_specific : bool, default False
            Read each region from the bucket of its strand.

        Returns
        -------
        BinnedMatrix
            Each row is the mean profile, over the regions of the group, of
            one input source of the design group.
        """
        matrix = BinnedMatrix(self.bin_count, unit="replicate")
        for region_group, region_set in region_sets.items():
            region_set = self._filtered(region_set)
            for name, sources in replicate_coverages.items():
                profiles = {
                    source: self.bin_region_set(buckets, region_set, strand_specific).mean(axis=0)
                    for source, buckets in sources.items()
                }
                values = pd.DataFrame(profiles).T
                values.index.name = "replicate"
                values.columns = pd.RangeIndex(self.bin_count, name="bin_index")
                matrix.add(region_group, name, values)
        logger.info(f"Binned {len(matrix)} replicate cells into {self.bin_count} bins")
        return matrix
