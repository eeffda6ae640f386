"""
Registry of alignment sources.

BamHandler owns the AlignmentSource of every input file and dispatches
per-file work (coverage, read positions) to a ParallelExecutor. Each
pipeline builds its own handler; nothing is shared between handlers.
"""
import logging
from collections import Counter
from os import PathLike
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Union

import numpy as np
import pysam

from .alignment import AlignmentSource, find_index
from .errors import DuplicateIdentifierError, MissingFileError, ValidationError
from .extractor import CoverageOptions, extract_coverage, rpm_weight
from .ncis import estimate_noise_ratio, merge_positions
from .parallel import ParallelExecutor
from .regions import RegionSet

logger = logging.getLogger(__name__)

BamFiles = Union[Sequence[Union[PathLike, str]], Mapping[str, Union[PathLike, str]]]


def _source_unit(path: Path, identifier: str, paired_end: bool) -> AlignmentSource:
    return AlignmentSource(path, identifier=identifier, paired_end=paired_end)


def _coverage_unit(source: AlignmentSource, regions: RegionSet, options: CoverageOptions):
    return extract_coverage(source, regions, options)


def _positions_unit(source: AlignmentSource) -> Dict[str, np.ndarray]:
    return source.read_positions()


def index_alignment_file(path: Union[PathLike, str], sort: bool = False) -> Path:
    """
    Index an alignment file that has no index yet.

    Parameters
    ----------
    path : PathLike or str
        BAM file.
    sort : bool, default False
        Coordinate-sort into ``<stem>.sorted.bam`` first, and index that.

    Returns
    -------
    Path
        The indexed file (``path`` itself unless sorted).
    """
    path = Path(path)
    if not path.exists():
        raise MissingFileError(f"Alignment file not found: {path}")
    if find_index(path) is not None:
        return path
    if sort:
        sorted_path = path.with_name(f"{path.stem}.sorted.bam")
        pysam.sort("-o", str(sorted_path), str(path))
        path = sorted_path
    pysam.index(str(path))
    logger.info(f"Indexed {path}")
    return path


class BamHandler:
    """
    Alignment files of one pipeline, keyed by identifier.

    Parameters
    ----------
    bam_files : sequence of path, or mapping of str to path
        Alignment files. With a sequence, identifiers are the file names
        without extension.
    core_count : int, default 1
        Worker processes for per-file work.
    paired_end : bool, default False
        Default fragment mode of the sources.
    index_missing : bool, default False
        Index files that have no index instead of failing.

    Raises
    ------
    MissingFileError
        If a file or its index does not exist.
    DuplicateIdentifierError
        If two files share an identifier.
    ValidationError
        If ``core_count`` is not a positive integer.
    ParallelExecutionError
        If some indexes cannot be read; every failing file is listed.

    Examples
    --------
    >>> handler = BamHandler(["chip_rep1.bam", "chip_rep2.bam", "input.bam"], core_count=2)
    >>> handler.identifiers
    ['chip_rep1', 'chip_rep2', 'input']
    >>> coverages = handler.get_coverages(regions, CoverageOptions(), normalized=True)
    """

    def __init__(
        self,
        bam_files: BamFiles,
        core_count: int = 1,
        paired_end: bool = False,
        index_missing: bool = False,
    ):
        self._executor = ParallelExecutor(core_count)

        if isinstance(bam_files, (str, PathLike)):
            raise ValidationError("bam_files must be a sequence or mapping of paths, not a single path")
        if isinstance(bam_files, Mapping):
            named = [(str(k), Path(v)) for k, v in bam_files.items()]
        else:
            named = [(Path(p).stem, Path(p)) for p in bam_files]
        if not named:
            raise ValidationError("At least one alignment file is required")

        counts = Counter(identifier for identifier, _ in named)
        duplicated = sorted(k for k, n in counts.items() if n > 1)
        if duplicated:
            raise DuplicateIdentifierError(f"Alignment file identifiers must be unique: {duplicated}")

        missing = [str(p) for _, p in named if not p.exists()]
        if missing:
            raise MissingFileError(f"Alignment files not found: {missing}")

        if index_missing:
            named = [(identifier, index_alignment_file(path)) for identifier, path in named]
        unindexed = [str(p) for _, p in named if find_index(p) is None]
        if unindexed:
            raise MissingFileError(f"No index found for alignment files: {unindexed}")

        # index statistics are read in the pool; bad indexes are reported together
        self._sources: Dict[str, AlignmentSource] = self._executor.map(
            _source_unit,
            {identifier: (path, identifier, paired_end) for identifier, path in named},
            stage="alignment counting",
        )
        self._positions: Dict[str, Dict[str, np.ndarray]] = {}
        self._check_sequence_names()

    def _check_sequence_names(self) -> None:
        per_source = [set(s.references) for s in self._sources.values()]
        shared = set.intersection(*per_source)
        partial = sorted(set.union(*per_source) - shared)
        if partial:
            logger.warning(
                f"Sequence names differ between alignment files ({partial[:5]} are missing from some). "
                "Chromosomes may be present in only a subset of the files, or the naming styles "
                "may differ (e.g. 'chr1' versus '1')."
            )

    def __repr__(self) -> str:
        return f"BamHandler(identifiers={self.identifiers}, core_count={self.core_count})"

    def __len__(self) -> int:
        return len(self._sources)

    def __contains__(self, identifier: str) -> bool:
        return identifier in self._sources

    @property
    def identifiers(self) -> List[str]:
        return list(self._sources)

    @property
    def core_count(self) -> int:
        return self._executor.core_count

    @property
    def sources(self) -> Dict[str, AlignmentSource]:
        return dict(self._sources)

    def set_core_count(self, core_count: int) -> None:
        self._executor = ParallelExecutor(core_count)

    def resolve(self, name: Union[PathLike, str]) -> str:
        """
        Identifier of a registered file.

        ``name`` may be an identifier, the path of a registered file, or
        its file name with or without extension.
        """
        name = str(name)
        if name in self._sources:
            return name
        for identifier, source in self._sources.items():
            if name in (str(source.path), source.path.name, source.path.stem):
                return identifier
        raise ValidationError(f"Unknown alignment file '{name}'. Registered: {self.identifiers}")

    def source(self, name: Union[PathLike, str]) -> AlignmentSource:
        return self._sources[self.resolve(name)]

    def get_aligned_count(self, name: Union[PathLike, str]) -> int:
        return self.source(name).aligned_count()

    def get_aligned_counts(self) -> Dict[str, int]:
        return {identifier: s.aligned_count() for identifier, s in self._sources.items()}

    def get_rpm_coefficient(self, name: Union[PathLike, str]) -> float:
        """Aligned reads of a file, in millions."""
        return self.source(name).rpm_coefficient()

    def _selected(self, identifiers: Optional[Sequence[str]]) -> List[str]:
        if identifiers is None:
            return self.identifiers
        return [self.resolve(i) for i in identifiers]

    def get_coverage(
        self,
        name: Union[PathLike, str],
        regions: RegionSet,
        options: CoverageOptions = CoverageOptions(),
    ):
        """Raw coverage of one file, as strand-bucketed tracks."""
        return extract_coverage(self.source(name), regions, options)

    def get_normalized_coverage(
        self,
        name: Union[PathLike, str],
        regions: RegionSet,
        options: CoverageOptions = CoverageOptions(),
    ):
        """RPM-weighted coverage of one file, as strand-bucketed tracks."""
        source = self.source(name)
        return extract_coverage(source, regions, self._rpm_options(source, options))

    @staticmethod
    def _rpm_options(source: AlignmentSource, options: CoverageOptions) -> CoverageOptions:
        return CoverageOptions(
            strand_specific=options.strand_specific,
            paired_end=options.paired_end,
            paired_end_strand_mode=options.paired_end_strand_mode,
            extend=options.extend,
            weight=options.weight * rpm_weight(source),
            lenient=options.lenient,
        )

    def get_coverages(
        self,
        regions: RegionSet,
        options: CoverageOptions = CoverageOptions(),
        identifiers: Optional[Sequence[str]] = None,
        normalized: bool = False,
    ):
        """
        Coverage of several files, computed in parallel.

        Parameters
        ----------
        regions : RegionSet
            Regions to cover.
        options : CoverageOptions
            Extraction options shared by every file.
        identifiers : sequence of str, optional
            Files to read. Defaults to every registered file.
        normalized : bool, default False
            Weight each file by 1e6 / aligned reads.

        Returns
        -------
        dict of str to dict of str to CoverageTrack
            Strand-bucketed tracks per identifier.

        Raises
        ------
        ParallelExecutionError
            If the extraction failed for any file.
        """
        units = {}
        for identifier in self._selected(identifiers):
            source = self._sources[identifier]
            unit_options = self._rpm_options(source, options) if normalized else options
            units[identifier] = (source, regions, unit_options)
        stage = "normalized coverage" if normalized else "coverage"
        return self._executor.map(_coverage_unit, units, stage=stage)

    def get_read_positions(self, identifiers: Optional[Sequence[str]] = None) -> Dict[str, Dict[str, np.ndarray]]:
        """Read 5' positions per file; read once per file and kept."""
        selected = self._selected(identifiers)
        pending = {i: (self._sources[i],) for i in selected if i not in self._positions}
        self._positions.update(self._executor.map(_positions_unit, pending, stage="read positions"))
        return {i: self._positions[i] for i in selected}

    def get_noise_ratio(self, chip_names: Sequence[str], control_names: Sequence[str]) -> float:
        """
        NCIS background ratio between pooled ChIP files and pooled controls.

        Returns
        -------
        float
            Raw-count ``chip / control`` ratio in background regions.
        """
        chip_ids = self._selected(chip_names)
        control_ids = self._selected(control_names)
        positions = self.get_read_positions(chip_ids + control_ids)
        chip = merge_positions(positions[i] for i in chip_ids)
        control = merge_positions(positions[i] for i in control_ids)
        logger.info(f"Estimating noise ratio of {chip_ids} against {control_ids}")
        return estimate_noise_ratio(chip, control)
