"""
Coverage extraction from alignment fragments.

Converts the fragments of one alignment source into run-length coverage
tracks, one per strand bucket. Raw and RPM-normalized coverage share the
same accumulation code: the weight is applied once, after accumulation.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from .alignment import AlignmentSource, Fragment
from .constants import MINUS_STRAND, PAIRED_END_STRAND_MODES, PLUS_STRAND, RPM_SCALE, UNSTRANDED
from .coverage import CoverageTrack
from .errors import InsufficientDataError, ValidationError
from .regions import RegionSet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CoverageOptions:
    """Options of one coverage extraction."""

    #: Split coverage into '+', '-' and '*' buckets.
    strand_specific: bool = False
    #: Reconstruct fragments from proper pairs.
    paired_end: bool = False
    #: Strand of paired-end fragments (0 unstranded, 1 first mate, 2 second mate).
    paired_end_strand_mode: int = 2
    #: Resize each fragment to this width from its 5' end (0 keeps the footprint).
    extend: int = 0
    #: Scale applied to every track after accumulation.
    weight: float = 1.0
    #: Drop regions that do not match the file instead of raising.
    lenient: bool = False

    def __post_init__(self):
        if self.extend < 0:
            raise ValidationError(f"extend must be non-negative, got {self.extend}")
        if not self.weight > 0:
            raise ValidationError(f"weight must be positive, got {self.weight}")
        if self.paired_end_strand_mode not in PAIRED_END_STRAND_MODES:
            raise ValidationError(
                f"paired_end_strand_mode must be one of {PAIRED_END_STRAND_MODES}, "
                f"got {self.paired_end_strand_mode}"
            )


def rpm_weight(source: AlignmentSource) -> float:
    """Weight turning raw coverage of ``source`` into reads per million."""
    count = source.aligned_count()
    if count <= 0:
        raise InsufficientDataError(f"{source.identifier} has no aligned reads; cannot compute RPM")
    return RPM_SCALE / count


def coverage_from_fragments(fragments: Iterable[Fragment], extend: int = 0) -> Optional[CoverageTrack]:
    """
    Accumulate fragment footprints into a coverage track.

    Returns None when there is no fragment.
    """
    starts: Dict[str, List[int]] = {}
    ends: Dict[str, List[int]] = {}
    n_fragments = 0
    for fragment in fragments:
        n_fragments += 1
        seq_starts = starts.setdefault(fragment.sequence_name, [])
        seq_ends = ends.setdefault(fragment.sequence_name, [])
        for start, end in fragment.footprint(extend):
            seq_starts.append(start)
            seq_ends.append(end)

    if n_fragments == 0:
        return None
    return CoverageTrack.from_intervals({s: (starts[s], ends[s]) for s in starts})


def extract_coverage(
    source: AlignmentSource,
    regions: RegionSet,
    options: CoverageOptions = CoverageOptions(),
) -> Dict[str, CoverageTrack]:
    """
    Coverage of one alignment source over a region set.

    Parameters
    ----------
    source : AlignmentSource
        Alignment file to read.
    regions : RegionSet
        Regions to cover; overlapping regions are merged before reading.
    options : CoverageOptions
        Strand, paired-end, extension and weighting options.

    Returns
    -------
    dict of str to CoverageTrack
        Tracks keyed by strand bucket. Without ``strand_specific`` there is
        a single ``'*'`` bucket over every region and fragment. With it, the
        ``'+'`` and ``'-'`` buckets hold fragments of that strand over
        regions of that strand and ``'*'`` holds every fragment over
        unstranded regions. Buckets without fragments are absent.
    """
    regions = source.prepare_regions(regions, lenient=options.lenient)

    if options.strand_specific:
        buckets = {
            PLUS_STRAND: regions.with_strand(PLUS_STRAND),
            MINUS_STRAND: regions.with_strand(MINUS_STRAND),
            UNSTRANDED: regions.with_strand(UNSTRANDED),
        }
    else:
        buckets = {UNSTRANDED: regions}

    coverages: Dict[str, CoverageTrack] = {}
    for bucket, subset in buckets.items():
        if len(subset) == 0:
            continue
        fragments = source.fetch(
            subset,
            strand_filter=bucket,
            paired_end=options.paired_end,
            strand_mode=options.paired_end_strand_mode,
            extend=options.extend,
            lenient=options.lenient,
        )
        track = coverage_from_fragments(fragments, extend=options.extend)
        if track is None:
            logger.debug(f"{source.identifier}: no fragment in strand bucket '{bucket}'")
            continue
        coverages[bucket] = track.scale(options.weight) if options.weight != 1.0 else track

    logger.info(f"{source.identifier}: coverage extracted for buckets {sorted(coverages)}")
    return coverages
