"""
Indexed alignment files.

Provides AlignmentSource, a read-only wrapper around one indexed BAM file
that answers aligned-read counts from the index and yields alignment
fragments over a region set. Every call opens its own pysam handle, so a
source can be shipped to worker processes.
"""
import logging
from os import PathLike
from pathlib import Path
from typing import Dict, Iterator, List, NamedTuple, Optional, Tuple, Union

import numpy as np
import pysam

from .constants import INDEX_SUFFIXES, MINUS_STRAND, PLUS_STRAND, RPM_SCALE, UNSTRANDED
from .errors import (
    EmptyRegionSetError,
    MalformedIndexError,
    MissingFileError,
    RegionOutOfBoundsError,
    SequenceMismatchError,
    ValidationError,
)
from .regions import Interval, RegionSet

logger = logging.getLogger(__name__)


class Fragment(NamedTuple):
    """
    One alignment (single-end) or one reconstructed template (paired-end).

    ``blocks`` are the aligned ``[start, end)`` pieces: CIGAR blocks for
    single-end reads, the outer envelope of both mates for pairs.
    """

    sequence_name: str
    start: int
    end: int
    strand: str
    blocks: Tuple[Tuple[int, int], ...]

    def footprint(self, extend: int = 0) -> Tuple[Tuple[int, int], ...]:
        """
        Covered intervals of the fragment.

        With ``extend > 0`` the fragment is replaced by a window of
        ``extend`` bp anchored at its 5' end (start for ``+`` and ``*``,
        end for ``-``).
        """
        if extend <= 0:
            return self.blocks
        if self.strand == MINUS_STRAND:
            return ((max(0, self.end - extend), self.end),)
        return ((self.start, self.start + extend),)


def find_index(path: Union[PathLike, str]) -> Optional[Path]:
    """
    Locate the index of an alignment file.

    Looks for ``<file>.<ext>.bai`` then ``<file>.bai`` (and the same with
    ``.csi``). Returns None when no index exists.
    """
    path = Path(path)
    for suffix in INDEX_SUFFIXES:
        for candidate in (path.with_name(path.name + suffix), path.with_suffix(suffix)):
            if candidate.exists():
                return candidate
    return None


def _pair_strand(read: pysam.AlignedSegment, strand_mode: int) -> str:
    first_mate_reverse = read.is_reverse if read.is_read1 else read.mate_is_reverse
    if strand_mode == 0:
        return UNSTRANDED
    if strand_mode == 1:
        return MINUS_STRAND if first_mate_reverse else PLUS_STRAND
    return PLUS_STRAND if first_mate_reverse else MINUS_STRAND


class AlignmentSource:
    """
    One indexed alignment file.

    The total aligned-read count is computed once at construction from the
    index statistics, without reading the alignments.

    Parameters
    ----------
    path : PathLike or str
        Path to the BAM file.
    identifier : str, optional
        Unique name of the source. Defaults to the file name without
        extension.
    index_path : PathLike or str, optional
        Path to the index. Located with :func:`find_index` when omitted.
    paired_end : bool, default False
        Default fragment reconstruction mode for :meth:`fetch`.

    Raises
    ------
    MissingFileError
        If the file or its index does not exist.
    MalformedIndexError
        If pysam cannot load the index.

    Examples
    --------
    >>> source = AlignmentSource("data/chip_rep1.bam")
    >>> source.aligned_count()
    1520034
    >>> fragments = list(source.fetch(region_set, strand_filter="+"))
    """

    def __init__(
        self,
        path: Union[PathLike, str],
        identifier: Optional[str] = None,
        index_path: Optional[Union[PathLike, str]] = None,
        paired_end: bool = False,
    ):
        self._path = Path(path)
        if not self._path.exists():
            raise MissingFileError(f"Alignment file not found: {self._path}")

        if index_path is None:
            self._index_path = find_index(self._path)
            if self._index_path is None:
                raise MissingFileError(f"No index found for alignment file: {self._path}")
        else:
            self._index_path = Path(index_path)
            if not self._index_path.exists():
                raise MissingFileError(f"Index file not found: {self._index_path}")

        self._identifier = identifier if identifier is not None else self._path.stem
        self._paired_end = bool(paired_end)

        with self._open() as bam:
            self._references: Dict[str, int] = dict(zip(bam.references, bam.lengths))
            try:
                self._aligned_count = int(sum(s.mapped for s in bam.get_index_statistics()))
            except (OSError, ValueError) as e:
                raise MalformedIndexError(f"Cannot read index statistics of {self._index_path}: {e}") from e

        logger.info(f"{self._identifier}: {self._aligned_count:,} aligned reads")

    def _open(self) -> pysam.AlignmentFile:
        try:
            return pysam.AlignmentFile(str(self._path), "rb", index_filename=str(self._index_path))
        except (OSError, ValueError) as e:
            raise MalformedIndexError(
                f"Cannot open {self._path} with index {self._index_path}: {e}"
            ) from e

    def __repr__(self) -> str:
        return f"AlignmentSource(identifier={self._identifier!r}, path='{self._path}')"

    @property
    def identifier(self) -> str:
        return self._identifier

    @property
    def path(self) -> Path:
        return self._path

    @property
    def index_path(self) -> Path:
        return self._index_path

    @property
    def paired_end(self) -> bool:
        return self._paired_end

    @property
    def references(self) -> Dict[str, int]:
        """Reference sequence lengths, keyed by name."""
        return dict(self._references)

    def aligned_count(self) -> int:
        return self._aligned_count

    def rpm_coefficient(self) -> float:
        """Aligned reads, in millions."""
        return self._aligned_count / RPM_SCALE

    def prepare_regions(self, regions: RegionSet, lenient: bool = False) -> RegionSet:
        """
        Check regions against the reference sequences of the file.

        Parameters
        ----------
        regions : RegionSet
            Regions to check.
        lenient : bool, default False
            Drop regions on unknown sequences or past a sequence end
            (with a warning) instead of raising.

        Returns
        -------
        RegionSet
            The regions, possibly pruned.

        Raises
        ------
        SequenceMismatchError
            Some region sequences are not in the file (strict mode).
        RegionOutOfBoundsError
            Some region extends past its sequence end (strict mode).
        EmptyRegionSetError
            No region is left.
        """
        if len(regions) == 0:
            raise EmptyRegionSetError(f"Region set '{regions.name}' is empty")

        absent = [s for s in regions.sequence_names() if s not in self._references]
        if absent:
            if not lenient:
                raise SequenceMismatchError(
                    f"Sequences of region set '{regions.name}' absent from {self._identifier}: {absent}"
                )
            logger.warning(
                f"{self._identifier}: dropping regions on sequences absent from the file: {absent}"
            )
            regions = regions.filter(lambda r: r.sequence_name in self._references)
            if len(regions) == 0:
                raise EmptyRegionSetError(
                    f"No sequence of region set '{regions.name}' matches {self._identifier}"
                )

        too_long = [r.label for r in regions if r.end > self._references[r.sequence_name]]
        if too_long:
            if not lenient:
                raise RegionOutOfBoundsError(
                    f"Regions outside the sequence length of {self._identifier}: {too_long[:5]}"
                )
            logger.warning(f"{self._identifier}: dropping {len(too_long)} regions past sequence ends")
            regions = regions.filter(lambda r: r.end <= self._references[r.sequence_name])
            if len(regions) == 0:
                raise EmptyRegionSetError(f"No region of '{regions.name}' fits {self._identifier}")

        return regions

    def fetch(
        self,
        regions: RegionSet,
        strand_filter: Optional[str] = None,
        paired_end: Optional[bool] = None,
        strand_mode: int = 2,
        extend: int = 0,
        lenient: bool = False,
    ) -> Iterator[Fragment]:
        """
        Fragments overlapping the merged region set.

        Regions are checked eagerly; alignments are read lazily while the
        returned iterator is consumed.

        Parameters
        ----------
        regions : RegionSet
            Regions to read. Overlapping regions are merged first.
        strand_filter : {'+', '-', '*'}, optional
            Keep only fragments on this strand. ``'*'`` or None keeps all.
        paired_end : bool, optional
            Reconstruct templates from proper pairs. Defaults to the
            source's ``paired_end`` flag.
        strand_mode : {0, 1, 2}, default 2
            Strand of paired-end fragments: unstranded, strand of the first
            mate, or strand of the second mate.
        extend : int, default 0
            Widen the read window by this many bp on each side.
        lenient : bool, default False
            See :meth:`prepare_regions`.

        Returns
        -------
        iterator of Fragment
        """
        if strand_filter not in (None, PLUS_STRAND, MINUS_STRAND, UNSTRANDED):
            raise ValidationError(f"Invalid strand filter: {strand_filter!r}")
        if strand_mode not in (0, 1, 2):
            raise ValidationError(f"paired_end_strand_mode must be 0, 1 or 2, got {strand_mode}")

        regions = self.prepare_regions(regions, lenient=lenient)
        intervals = [
            (seq, start, min(end, self._references[seq]))
            for seq, start, end in regions.reduced(extend)
            if start < min(end, self._references[seq])
        ]
        paired_end = self._paired_end if paired_end is None else paired_end
        wanted = strand_filter if strand_filter in (PLUS_STRAND, MINUS_STRAND) else None
        return self._iter_fragments(intervals, wanted, paired_end, strand_mode)

    def _iter_fragments(
        self,
        intervals: List[Interval],
        strand_filter: Optional[str],
        paired_end: bool,
        strand_mode: int,
    ) -> Iterator[Fragment]:
        with self._open() as bam:
            current_sequence = None
            previous_end = -1
            # paired-end templates already emitted, with their envelope end
            emitted: Dict[str, int] = {}

            for sequence_name, start, end in intervals:
                if sequence_name != current_sequence:
                    current_sequence = sequence_name
                    previous_end = -1
                    emitted = {}
                elif emitted:
                    emitted = {name: e for name, e in emitted.items() if e > start}

                for read in bam.fetch(sequence_name, start, end):
                    if read.is_unmapped or read.is_secondary or read.is_supplementary:
                        continue

                    if paired_end:
                        fragment = self._pair_fragment(read, sequence_name, strand_mode)
                        if fragment is None or read.query_name in emitted:
                            continue
                        emitted[read.query_name] = fragment.end
                    else:
                        # already yielded while reading the previous interval
                        if read.reference_start < previous_end:
                            continue
                        fragment = Fragment(
                            sequence_name,
                            read.reference_start,
                            read.reference_end,
                            MINUS_STRAND if read.is_reverse else PLUS_STRAND,
                            tuple(read.get_blocks()),
                        )

                    if strand_filter is not None and fragment.strand != strand_filter:
                        continue
                    yield fragment

                previous_end = end

    @staticmethod
    def _pair_fragment(
        read: pysam.AlignedSegment,
        sequence_name: str,
        strand_mode: int,
    ) -> Optional[Fragment]:
        if not read.is_paired or not read.is_proper_pair or read.mate_is_unmapped:
            return None
        if read.next_reference_id != read.reference_id or read.template_length == 0:
            return None
        start = min(read.reference_start, read.next_reference_start)
        end = start + abs(read.template_length)
        return Fragment(sequence_name, start, end, _pair_strand(read, strand_mode), ((start, end),))

    def read_positions(self) -> Dict[str, np.ndarray]:
        """
        Sorted 5' positions of every usable read, per sequence.

        Used to estimate background ratios between samples.
        """
        positions: Dict[str, np.ndarray] = {}
        with self._open() as bam:
            for sequence_name in bam.references:
                found = [
                    read.reference_end - 1 if read.is_reverse else read.reference_start
                    for read in bam.fetch(sequence_name)
                    if not (read.is_unmapped or read.is_secondary or read.is_supplementary)
                ]
                if found:
                    positions[sequence_name] = np.sort(np.asarray(found, dtype=np.int64))
        return positions
