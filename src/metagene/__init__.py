"""
metagene-profiles: Metagene profiles of sequencing coverage over region sets.

This package aggregates read coverage from indexed BAM files over groups of
genomic regions and summarizes it as binned profiles with bootstrap
confidence intervals.

Modules
-------
regions
    Region and RegionSet model, region input resolution.
coverage
    Run-length encoded coverage tracks.
alignment
    Indexed alignment files (pysam) and fragment reconstruction.
extractor
    Coverage extraction from alignment fragments.
handler
    Registry of alignment files with parallel per-file work.
ncis
    Background ratio between ChIP and control samples.
design
    Design matrices and per-group coverage aggregation.
binning
    Fixed-count binning of region coverage.
confidence
    Percentile-bootstrap confidence intervals.
config
    Layered parameter store and stage invalidation.
pipeline
    Metagene orchestrator.
io
    Design matrix and region table loading, result writing.

Example
-------
>>> import metagene as mg
>>> regions = {"promoters": mg.load_region_table("data/promoters.tsv")}
>>> design = mg.load_design_matrix("data/design.csv")
>>> m = mg.Metagene(regions, ["data/chip1.bam", "data/chip2.bam", "data/input.bam"],
...                 design=design, normalization="RPM", noise_removal="NCIS")
>>> table = m.produce_table()
"""

__version__ = "0.1.0"
__author__ = "Stefan Cordes"
__email__ = "stefan@alumni.Princeton.edu"

# alignment
from .alignment import AlignmentSource, Fragment, find_index

# binning
from .binning import BinnedMatrix, Binner, bin_track, bin_widths

# confidence
from .confidence import ConfidenceEstimator, estimate

# config
from .config import MetageneConfig, ParameterStore, downstream_stages

# coverage
from .coverage import CoverageTrack

# design
from .design import Design, DesignAggregator, DesignGroup

# errors
from .errors import (
    ComputationError,
    DataConsistencyError,
    DuplicateIdentifierError,
    EmptyRegionSetError,
    InsufficientDataError,
    InvalidDesignError,
    MalformedIndexError,
    MetageneError,
    MissingFileError,
    ParallelExecutionError,
    RegionOutOfBoundsError,
    RegionTooSmallError,
    SequenceMismatchError,
    ValidationError,
)

# extractor
from .extractor import CoverageOptions, extract_coverage, rpm_weight

# handler
from .handler import BamHandler, index_alignment_file

# io
from .io import (
    load_design_matrix,
    load_region_metadata,
    load_region_table,
    write_results,
)

# ncis
from .ncis import estimate_noise_ratio

# parallel
from .parallel import ParallelExecutor

# pipeline
from .pipeline import Metagene

# regions
from .regions import Region, RegionSet, resolve_region_sets, resolve_regions

__all__ = [
    # Pipeline
    "Metagene",
    "MetageneConfig",
    "ParameterStore",
    "downstream_stages",
    # Regions
    "Region",
    "RegionSet",
    "resolve_regions",
    "resolve_region_sets",
    # Alignment files and coverage
    "AlignmentSource",
    "Fragment",
    "find_index",
    "BamHandler",
    "index_alignment_file",
    "CoverageTrack",
    "CoverageOptions",
    "extract_coverage",
    "rpm_weight",
    "ParallelExecutor",
    # Aggregation and statistics
    "Design",
    "DesignGroup",
    "DesignAggregator",
    "estimate_noise_ratio",
    "Binner",
    "BinnedMatrix",
    "bin_track",
    "bin_widths",
    "ConfidenceEstimator",
    "estimate",
    # io
    "load_design_matrix",
    "load_region_table",
    "load_region_metadata",
    "write_results",
    # Errors
    "MetageneError",
    "ValidationError",
    "MissingFileError",
    "MalformedIndexError",
    "DuplicateIdentifierError",
    "DataConsistencyError",
    "SequenceMismatchError",
    "EmptyRegionSetError",
    "RegionOutOfBoundsError",
    "ComputationError",
    "InsufficientDataError",
    "RegionTooSmallError",
    "InvalidDesignError",
    "ParallelExecutionError",
]
