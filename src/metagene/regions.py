"""
Genomic region model.

Regions use 0-based, half-open coordinates (``[start, end)``), the same
convention as pysam. Region sets are immutable once built; padding is the
only transformation applied at load time.

Classes
-------
Region
    One genomic interval with strand, name and group label.
RegionSet
    Ordered collection of regions sharing a group label, with optional
    per-region metadata used for sub-grouping.

Functions
---------
resolve_regions
    Turn any supported region input into a RegionSet.
resolve_region_sets
    Turn a single input or a mapping of inputs into named RegionSets.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from os import PathLike
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

import pandas as pd

from .constants import STRANDS, UNSTRANDED
from .errors import EmptyRegionSetError, ValidationError

logger = logging.getLogger(__name__)

Interval = Tuple[str, int, int]

REQUIRED_REGION_COLUMNS = ["sequence_name", "start", "end"]
OPTIONAL_REGION_COLUMNS = ["strand", "name"]


@dataclass(frozen=True)
class Region:
    """A genomic interval ``[start, end)`` on one sequence."""

    sequence_name: str
    start: int
    end: int
    strand: str = UNSTRANDED
    name: Optional[str] = None
    group: Optional[str] = None

    def __post_init__(self):
        if self.strand not in STRANDS:
            raise ValidationError(f"Invalid strand '{self.strand}' for region {self.label}")
        if self.start < 0 or self.end < self.start:
            raise ValidationError(
                f"Invalid coordinates for region {self.sequence_name}:{self.start}-{self.end}"
            )

    @property
    def width(self) -> int:
        return self.end - self.start

    @property
    def label(self) -> str:
        if self.name is not None:
            return self.name
        return f"{self.sequence_name}:{self.start}-{self.end}"

    def padded(self, size: int) -> "Region":
        """Return a copy widened by ``size`` bp on both sides (start clamped at 0)."""
        if size == 0:
            return self
        return replace(self, start=max(0, self.start - size), end=self.end + size)


class RegionSet:
    """
    Ordered, immutable collection of regions sharing a group label.

    Parameters
    ----------
    regions : iterable of Region
        Regions of the set. Their ``group`` is set to ``name``.
    name : str, default "regions"
        Group label of the set.
    metadata : pd.DataFrame, optional
        One row per region (same order), arbitrary categorical columns.
        Used by :meth:`split_by` to form sub-groups.

    Examples
    --------
    >>> rs = RegionSet([Region("chr1", 100, 200, "+", "geneA")], name="promoters")
    >>> rs.reduced()
    [('chr1', 100, 200)]
    """

    def __init__(
        self,
        regions: Iterable[Region],
        name: str = "regions",
        metadata: Optional[pd.DataFrame] = None,
    ):
        self._name = str(name)
        self._regions: Tuple[Region, ...] = tuple(
            r if r.group == self._name else replace(r, group=self._name) for r in regions
        )
        if metadata is not None:
            if len(metadata) != len(self._regions):
                raise ValidationError(
                    f"Region metadata for '{self._name}' has {len(metadata)} rows, "
                    f"expected {len(self._regions)}"
                )
            metadata = metadata.reset_index(drop=True).copy()
        self._metadata = metadata

    def __len__(self) -> int:
        return len(self._regions)

    def __iter__(self) -> Iterator[Region]:
        return iter(self._regions)

    def __getitem__(self, i: int) -> Region:
        return self._regions[i]

    def __repr__(self) -> str:
        return f"RegionSet(name={self._name!r}, n_regions={len(self._regions)})"

    def __eq__(self, other) -> bool:
        if not isinstance(other, RegionSet):
            return NotImplemented
        return self._name == other._name and self._regions == other._regions

    @property
    def name(self) -> str:
        return self._name

    @property
    def regions(self) -> Tuple[Region, ...]:
        return self._regions

    @property
    def metadata(self) -> Optional[pd.DataFrame]:
        return self._metadata

    @property
    def labels(self) -> List[str]:
        return [r.label for r in self._regions]

    @classmethod
    def union(cls, region_sets: Iterable["RegionSet"], name: str = "all") -> "RegionSet":
        """Concatenate several sets into one (metadata is not carried)."""
        return cls([r for rs in region_sets for r in rs], name=name)

    def sequence_names(self) -> List[str]:
        """Sequence names used by the set, in order of first appearance."""
        return list(dict.fromkeys(r.sequence_name for r in self._regions))

    def renamed(self, name: str) -> "RegionSet":
        return RegionSet(self._regions, name=name, metadata=self._metadata)

    def select(self, mask: Sequence[bool]) -> "RegionSet":
        """Return the sub-set of regions where ``mask`` is True."""
        mask = list(mask)
        regions = [r for r, keep in zip(self._regions, mask) if keep]
        metadata = None
        if self._metadata is not None:
            metadata = self._metadata.loc[mask]
        return RegionSet(regions, name=self._name, metadata=metadata)

    def filter(self, predicate: Callable[[Region], bool]) -> "RegionSet":
        return self.select([bool(predicate(r)) for r in self._regions])

    def with_strand(self, strand: str) -> "RegionSet":
        return self.filter(lambda r: r.strand == strand)

    def padded(self, size: int) -> "RegionSet":
        if size < 0:
            raise ValidationError(f"padding size must be non-negative, got {size}")
        if size == 0:
            return self
        return RegionSet([r.padded(size) for r in self._regions], name=self._name, metadata=self._metadata)

    def reduced(self, extend: int = 0) -> List[Interval]:
        """
        Merge overlapping or touching intervals, ignoring strand.

        Parameters
        ----------
        extend : int, default 0
            Widen every region by this many bp on both sides before merging.

        Returns
        -------
        list of (sequence_name, start, end)
            Sorted, non-overlapping intervals.
        """
        by_sequence: Dict[str, List[Tuple[int, int]]] = {}
        for r in self._regions:
            by_sequence.setdefault(r.sequence_name, []).append(
                (max(0, r.start - extend), r.end + extend)
            )

        merged: List[Interval] = []
        for sequence_name in sorted(by_sequence):
            intervals = sorted(by_sequence[sequence_name])
            cur_start, cur_end = intervals[0]
            for start, end in intervals[1:]:
                if start <= cur_end:
                    cur_end = max(cur_end, end)
                else:
                    merged.append((sequence_name, cur_start, cur_end))
                    cur_start, cur_end = start, end
            merged.append((sequence_name, cur_start, cur_end))
        return merged

    def split_by(self, columns: Sequence[str]) -> Dict[str, "RegionSet"]:
        """
        Split the set into named sub-groups from metadata columns.

        Sub-group names are ``"<name>_<value1>_<value2>..."``. With no
        columns the set itself is returned under its own name.
        """
        columns = list(columns)
        if not columns:
            return {self._name: self}
        if self._metadata is None:
            raise ValidationError(f"Region set '{self._name}' has no metadata to group by")
        missing = [c for c in columns if c not in self._metadata.columns]
        if missing:
            raise ValidationError(f"Region metadata for '{self._name}' missing columns: {missing}")

        groups: Dict[str, RegionSet] = {}
        keys = self._metadata[columns].astype(str).agg("_".join, axis=1)
        for key in dict.fromkeys(keys):
            sub = self.select(list(keys == key)).renamed(f"{self._name}_{key}")
            groups[sub.name] = sub
        return groups


RegionInput = Union[RegionSet, pd.DataFrame, Sequence[Region], Sequence[Sequence], str, PathLike]


def _regions_from_frame(df: pd.DataFrame, name: str) -> RegionSet:
    missing = [c for c in REQUIRED_REGION_COLUMNS if c not in df.columns]
    if missing:
        raise ValidationError(f"Region table '{name}' missing required columns: {missing}")

    df = df.reset_index(drop=True)
    strands = df["strand"].astype(str) if "strand" in df.columns else pd.Series([UNSTRANDED] * len(df))
    names = df["name"] if "name" in df.columns else pd.Series([None] * len(df))

    regions = [
        Region(
            sequence_name=str(seq),
            start=int(start),
            end=int(end),
            strand=strand if strand in STRANDS else UNSTRANDED,
            name=None if pd.isna(region_name) else str(region_name),
        )
        for seq, start, end, strand, region_name in zip(
            df["sequence_name"], df["start"], df["end"], strands, names
        )
    ]
    extra = [c for c in df.columns if c not in REQUIRED_REGION_COLUMNS + OPTIONAL_REGION_COLUMNS]
    metadata = df[extra] if extra else None
    return RegionSet(regions, name=name, metadata=metadata)


def _region_from_record(record: Sequence) -> Region:
    if not 3 <= len(record) <= 5:
        raise ValidationError(
            "Region records must be (sequence_name, start, end[, strand[, name]]), "
            f"got {tuple(record)!r}"
        )
    seq, start, end, *rest = record
    strand = rest[0] if rest else UNSTRANDED
    region_name = rest[1] if len(rest) > 1 else None
    return Region(str(seq), int(start), int(end), strand, region_name)


def resolve_regions(
    value: RegionInput,
    name: Optional[str] = None,
    loader: Optional[Callable[[Path], object]] = None,
    metadata: Optional[pd.DataFrame] = None,
) -> RegionSet:
    """
    Resolve one region input into a RegionSet.

    Parameters
    ----------
    value : RegionSet, DataFrame, sequence of Region or records, or path
        Region input. DataFrames need ``sequence_name``, ``start`` and
        ``end`` columns (``strand`` and ``name`` optional; any other column
        becomes metadata). Records are ``(sequence_name, start, end[,
        strand[, name]])``. Paths are handed to ``loader``.
    name : str, optional
        Group label. Defaults to the RegionSet name, the file stem or
        ``"regions"``.
    loader : callable, optional
        Region-file parser; called once with the path, must return one of
        the in-memory variants.
    metadata : pd.DataFrame, optional
        Per-region metadata, overrides metadata carried by ``value``.

    Returns
    -------
    RegionSet
    """
    if isinstance(value, (str, PathLike)):
        path = Path(value)
        if loader is None:
            raise ValidationError(
                f"Region file {path} given without a region loader; parse it first"
            )
        loaded = loader(path)
        if isinstance(loaded, (str, PathLike)):
            raise ValidationError(f"Region loader returned a path for {path}")
        return resolve_regions(loaded, name=name or path.stem, metadata=metadata)

    if isinstance(value, RegionSet):
        region_set = value if name is None else value.renamed(name)
    elif isinstance(value, pd.DataFrame):
        region_set = _regions_from_frame(value, name or "regions")
    elif isinstance(value, Sequence):
        regions = [r if isinstance(r, Region) else _region_from_record(r) for r in value]
        region_set = RegionSet(regions, name=name or "regions")
    else:
        raise ValidationError(f"Unsupported region input of type {type(value).__name__}")

    if metadata is not None:
        region_set = RegionSet(region_set.regions, name=region_set.name, metadata=metadata)
    if len(region_set) == 0:
        raise EmptyRegionSetError(f"Region set '{region_set.name}' is empty")
    return region_set


def resolve_region_sets(
    value: Union[RegionInput, Mapping[str, RegionInput]],
    loader: Optional[Callable[[Path], object]] = None,
    metadata: Optional[Union[pd.DataFrame, Mapping[str, pd.DataFrame]]] = None,
) -> Dict[str, RegionSet]:
    """
    Resolve a single region input, or a mapping of named inputs.

    Returns
    -------
    dict of str to RegionSet
        Region sets keyed by group label, in input order.
    """
    if isinstance(value, Mapping):
        items = list(value.items())
    elif isinstance(value, (list, tuple)) and value and all(isinstance(v, RegionSet) for v in value):
        items = [(v.name, v) for v in value]
    else:
        items = [(None, value)]

    if isinstance(metadata, pd.DataFrame):
        if len(items) != 1:
            raise ValidationError("A single metadata table needs a single region set")
        metadata = {items[0][0]: metadata}
    metadata = metadata or {}

    region_sets: Dict[str, RegionSet] = {}
    for key, item in items:
        region_set = resolve_regions(item, name=key, loader=loader, metadata=metadata.get(key))
        if region_set.name in region_sets:
            raise ValidationError(f"Duplicate region set name '{region_set.name}'")
        region_sets[region_set.name] = region_set
    logger.info(f"Loaded {len(region_sets)} region set(s): {list(region_sets)}")
    return region_sets
