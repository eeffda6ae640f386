"""
Constants for coverage extraction and metagene aggregation.

Contains strand labels, index file suffixes, normalization scales and the
default values of every pipeline parameter.
"""

# Strand labels
# '*' is the unstranded bucket, as in SAM/GRanges notation
PLUS_STRAND = "+"
MINUS_STRAND = "-"
UNSTRANDED = "*"
STRANDS = (PLUS_STRAND, MINUS_STRAND, UNSTRANDED)

# Index lookup for alignment files
# Tried in order: appended (file.bam.bai), replaced (file.bai), CSI
INDEX_SUFFIXES = (".bai", ".csi")

# Reads-per-million scale
RPM_SCALE = 1_000_000

# Design matrix cell values
DESIGN_EXCLUDED = 0
DESIGN_INPUT = 1
DESIGN_CONTROL = 2

# Recognized option values
NORMALIZATIONS = ("RPM",)
NOISE_REMOVALS = ("NCIS",)
RESAMPLING_STRATEGIES = ("by_region", "by_replicate")
PAIRED_END_STRAND_MODES = (0, 1, 2)

# NCIS background estimation
NCIS_BIN_SIZES = (100, 200, 500, 1000, 2000, 5000, 10000, 20000)
NCIS_MIN_FRACTION = 0.75
NCIS_TOLERANCE = 0.01

# Upper bound on values held in memory by one bootstrap batch
BOOTSTRAP_BATCH_VALUES = 10_000_000

# Output table columns
RESULT_COLUMNS = [
    "region_group",
    "design_group",
    "bin_index",
    "position_label",
    "mean",
    "ci_lower",
    "ci_upper",
]
