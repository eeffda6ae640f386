"""
Experimental design and per-group coverage aggregation.

A design matrix maps alignment sources (rows) to design groups (columns);
cells are 0 (not used), 1 (input) or 2 (control). Group coverage is the
sum of its input tracks, optionally denoised by subtracting the scaled sum
of its control tracks.

Classes
-------
DesignGroup
    Input and control members of one group.
Design
    Validated design matrix.
DesignAggregator
    Sums per-source coverage into per-group coverage.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .constants import DESIGN_CONTROL, DESIGN_EXCLUDED, DESIGN_INPUT, NOISE_REMOVALS, NORMALIZATIONS
from .coverage import CoverageTrack
from .errors import InvalidDesignError, ValidationError

logger = logging.getLogger(__name__)

CoverageBuckets = Mapping[str, CoverageTrack]


@dataclass(frozen=True)
class DesignGroup:
    """Members of one design group."""

    #: Group name (design matrix column).
    name: str
    #: Identifiers of the input (signal) sources.
    inputs: Tuple[str, ...]
    #: Identifiers of the control sources.
    controls: Tuple[str, ...] = ()


class Design:
    """
    Validated design matrix.

    Parameters
    ----------
    matrix : pd.DataFrame
        Index = source identifiers, columns = group names, values in
        {0, 1, 2}.
    sources : sequence of str, optional
        Known source identifiers. Rows naming other sources are rejected.

    Raises
    ------
    InvalidDesignError
        On invalid cell values, unknown sources or a group without input.

    Examples
    --------
    >>> matrix = pd.DataFrame({"ctcf": [1, 1, 2]}, index=["rep1", "rep2", "input"])
    >>> Design(matrix).groups["ctcf"]
    DesignGroup(name='ctcf', inputs=('rep1', 'rep2'), controls=('input',))
    """

    def __init__(self, matrix: pd.DataFrame, sources: Optional[Sequence[str]] = None):
        if matrix.empty or len(matrix.columns) == 0:
            raise InvalidDesignError("Design matrix has no group")

        matrix = matrix.copy()
        matrix.index = matrix.index.astype(str)
        matrix.columns = [str(c) for c in matrix.columns]

        if matrix.index.duplicated().any():
            dup = matrix.index[matrix.index.duplicated()].tolist()
            raise InvalidDesignError(f"Duplicate sources in design matrix: {dup}")

        try:
            values = matrix.apply(pd.to_numeric, errors="raise")
        except (ValueError, TypeError) as e:
            raise InvalidDesignError(f"Design matrix must be numeric: {e}") from e
        allowed = {DESIGN_EXCLUDED, DESIGN_INPUT, DESIGN_CONTROL}
        if not np.isin(values.to_numpy(), list(allowed)).all():
            raise InvalidDesignError(f"Design matrix values must be in {sorted(allowed)}")
        matrix = values.astype(int)

        if sources is not None:
            unknown = [s for s in matrix.index if s not in set(sources)]
            if unknown:
                raise InvalidDesignError(f"Design matrix names unknown sources: {unknown}")

        self._matrix = matrix
        self._groups: Dict[str, DesignGroup] = {}
        for name in matrix.columns:
            column = matrix[name]
            group = DesignGroup(
                name=name,
                inputs=tuple(column.index[column == DESIGN_INPUT]),
                controls=tuple(column.index[column == DESIGN_CONTROL]),
            )
            if not group.inputs:
                raise InvalidDesignError(f"Design group '{name}' has no input source")
            self._groups[name] = group

    @classmethod
    def default(cls, sources: Sequence[str]) -> "Design":
        """One group per source, the source being its only input."""
        sources = list(sources)
        matrix = pd.DataFrame(np.eye(len(sources), dtype=int), index=sources, columns=sources)
        return cls(matrix, sources=sources)

    def __repr__(self) -> str:
        return f"Design(groups={list(self._groups)})"

    def __eq__(self, other) -> bool:
        if not isinstance(other, Design):
            return NotImplemented
        return self._matrix.equals(other._matrix)

    @property
    def matrix(self) -> pd.DataFrame:
        return self._matrix.copy()

    @property
    def groups(self) -> Dict[str, DesignGroup]:
        return dict(self._groups)

    @property
    def group_names(self) -> list:
        return list(self._groups)

    def members(self) -> list:
        """Every source used as input or control by some group."""
        used = self._matrix.index[(self._matrix != DESIGN_EXCLUDED).any(axis=1)]
        return list(used)


class DesignAggregator:
    """
    Sums per-source coverage into per-group coverage.

    Parameters
    ----------
    normalization : {'RPM'}, optional
        Declares that the per-source tracks handed to :meth:`aggregate`
        are RPM weighted. Only affects the noise coefficient units.
    noise_removal : {'NCIS'}, optional
        Subtract the scaled control coverage from the input coverage of
        groups with controls.
    noise_ratio : callable, optional
        ``noise_ratio(group) -> float`` returning the raw-count
        ChIP/control background ratio. Required with ``noise_removal``.
    aligned_counts : mapping of str to int, optional
        Aligned reads per source. Required with both RPM and NCIS, to
        convert the raw-count ratio into normalized units.
    """

    def __init__(
        self,
        normalization: Optional[str] = None,
        noise_removal: Optional[str] = None,
        noise_ratio: Optional[Callable[[DesignGroup], float]] = None,
        aligned_counts: Optional[Mapping[str, int]] = None,
    ):
        if normalization is not None and normalization not in NORMALIZATIONS:
            raise ValidationError(f"Unknown normalization '{normalization}'. Use one of {NORMALIZATIONS}.")
        if noise_removal is not None and noise_removal not in NOISE_REMOVALS:
            raise ValidationError(f"Unknown noise_removal '{noise_removal}'. Use one of {NOISE_REMOVALS}.")
        if noise_removal is not None and noise_ratio is None:
            raise ValidationError("noise_removal requires a noise_ratio estimator")
        if noise_removal is not None and normalization is not None and aligned_counts is None:
            raise ValidationError("Normalized noise removal requires aligned read counts")

        self._normalization = normalization
        self._noise_removal = noise_removal
        self._noise_ratio = noise_ratio
        self._aligned_counts = dict(aligned_counts or {})

    def noise_coefficient(self, group: DesignGroup) -> float:
        """Scale applied to the group's control coverage before subtraction."""
        ratio = float(self._noise_ratio(group))
        if self._normalization == "RPM":
            input_count = sum(self._aligned_counts[s] for s in group.inputs)
            control_count = sum(self._aligned_counts[s] for s in group.controls)
            ratio *= control_count / input_count
        return ratio

    def aggregate(
        self,
        coverages_by_source: Mapping[str, CoverageBuckets],
        design: Design,
    ) -> Dict[str, Dict[str, CoverageTrack]]:
        """
        Per-group coverage.

        Parameters
        ----------
        coverages_by_source : mapping of str to mapping of str to CoverageTrack
            Strand-bucketed tracks of every source.
        design : Design
            Groups to build.

        Returns
        -------
        dict of str to dict of str to CoverageTrack
            Strand-bucketed tracks per group. Buckets left empty are absent.

        Raises
        ------
        InvalidDesignError
            If a group has no input member or a member has no coverage.
        """
        grouped: Dict[str, Dict[str, CoverageTrack]] = {}
        for group in design.groups.values():
            self._check_members(group, coverages_by_source)
            inputs = self._sum_members(coverages_by_source, group.inputs)
            grouped[group.name] = self._denoise(inputs, group, coverages_by_source)
        return grouped

    def aggregate_replicates(
        self,
        coverages_by_source: Mapping[str, CoverageBuckets],
        design: Design,
    ) -> Dict[str, Dict[str, Dict[str, CoverageTrack]]]:
        """
        Per-replicate coverage of every group.

        Each input source is kept apart. With noise removal, the pooled
        controls of its group are scaled by the coefficient of that source
        alone and subtracted from it.

        Returns
        -------
        dict of str to dict of str to dict of str to CoverageTrack
            Strand-bucketed tracks per group and input source.
        """
        replicates: Dict[str, Dict[str, Dict[str, CoverageTrack]]] = {}
        for group in design.groups.values():
            self._check_members(group, coverages_by_source)
            replicates[group.name] = {
                source: self._denoise(
                    dict(coverages_by_source[source]),
                    DesignGroup(name=f"{group.name}/{source}", inputs=(source,), controls=group.controls),
                    coverages_by_source,
                )
                for source in group.inputs
            }
        return replicates

    def _denoise(
        self,
        inputs: Dict[str, CoverageTrack],
        group: DesignGroup,
        coverages_by_source: Mapping[str, CoverageBuckets],
    ) -> Dict[str, CoverageTrack]:
        if self._noise_removal is not None and group.controls:
            coefficient = self.noise_coefficient(group)
            controls = self._sum_members(coverages_by_source, group.controls)
            logger.info(f"{group.name}: removing control noise with coefficient {coefficient:.4f}")
            inputs = {
                bucket: track.subtract(controls[bucket], coefficient) if bucket in controls else track
                for bucket, track in inputs.items()
            }
        return {b: t for b, t in inputs.items() if not t.is_empty()}

    @staticmethod
    def _check_members(group: DesignGroup, coverages_by_source: Mapping[str, CoverageBuckets]) -> None:
        if not group.inputs:
            raise InvalidDesignError(f"Design group '{group.name}' has no input source")
        missing = [s for s in group.inputs + group.controls if s not in coverages_by_source]
        if missing:
            raise InvalidDesignError(f"Design group '{group.name}' uses sources without coverage: {missing}")

    @staticmethod
    def _sum_members(
        coverages_by_source: Mapping[str, CoverageBuckets],
        members: Sequence[str],
    ) -> Dict[str, CoverageTrack]:
        buckets = dict.fromkeys(b for s in members for b in coverages_by_source[s])
        return {
            bucket: CoverageTrack.sum(coverages_by_source[s].get(bucket) for s in members)
            for bucket in buckets
        }
