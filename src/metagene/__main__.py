"""
Command-line interface.

Usage::

    python -m metagene --regions promoters.tsv enhancers.tsv \\
        --bam_files chip1.bam chip2.bam input.bam --design design.csv \\
        --normalization RPM --results_path results/
"""

import argparse
import logging
from pathlib import Path

from .constants import NOISE_REMOVALS, NORMALIZATIONS, PAIRED_END_STRAND_MODES, RESAMPLING_STRATEGIES
from .io import load_region_metadata, load_region_table
from .pipeline import Metagene


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Compute metagene profiles of BAM files over region sets'
    )

    parser.add_argument(
        '-r', '--regions',
        nargs='+',
        required=True,
        help='Region tables (csv/tsv/xlsx with sequence_name, start, end[, strand, name])',
    )
    parser.add_argument(
        '-b', '--bam_files',
        nargs='+',
        required=True,
        help='Indexed BAM files',
    )
    parser.add_argument(
        '--design',
        default=None,
        help='Design matrix file (optional; one group per BAM file otherwise)',
    )
    parser.add_argument(
        '--region_metadata',
        default=None,
        help='Region metadata table, one row per region (single region table only)',
    )
    parser.add_argument(
        '--results_path',
        required=True,
        help='Path to output directory',
    )
    parser.add_argument(
        '--format',
        choices=['excel', 'csv'],
        default='excel',
        help='Output format',
    )
    parser.add_argument(
        '--bin_count',
        type=int,
        default=100,
        help='Number of bins per region',
    )
    parser.add_argument(
        '--alpha',
        type=float,
        default=0.05,
        help='Error rate of the confidence intervals',
    )
    parser.add_argument(
        '--sample_count',
        type=int,
        default=1000,
        help='Number of bootstrap resamples',
    )
    parser.add_argument(
        '--resampling_strategy',
        choices=list(RESAMPLING_STRATEGIES),
        default='by_region',
        help='Bootstrap unit',
    )
    parser.add_argument(
        '--seed',
        type=int,
        default=None,
        help='Random seed of the bootstrap',
    )
    parser.add_argument(
        '--extend',
        type=int,
        default=0,
        help="Resize reads to this length from their 5' end",
    )
    parser.add_argument(
        '--padding_size',
        type=int,
        default=0,
        help='Widen every region by this many bp on both sides',
    )
    parser.add_argument(
        '--strand_specific',
        action='store_true',
        help='Keep strands apart',
    )
    parser.add_argument(
        '--paired_end',
        action='store_true',
        help='Reconstruct fragments from proper pairs',
    )
    parser.add_argument(
        '--paired_end_strand_mode',
        type=int,
        choices=list(PAIRED_END_STRAND_MODES),
        default=2,
        help='Strand of paired-end fragments (0 unstranded, 1 first mate, 2 second mate)',
    )
    parser.add_argument(
        '--normalization',
        choices=list(NORMALIZATIONS),
        default=None,
        help='Coverage normalization',
    )
    parser.add_argument(
        '--noise_removal',
        choices=list(NOISE_REMOVALS),
        default=None,
        help='Control noise removal',
    )
    parser.add_argument(
        '--region_grouping',
        nargs='*',
        default=[],
        help='Region metadata columns splitting region sets into sub-groups',
    )
    parser.add_argument(
        '--force_seqlevels',
        action='store_true',
        help='Drop regions that do not fit the BAM files instead of failing',
    )
    parser.add_argument(
        '--num_cores',
        type=int,
        default=1,
        help='Number of CPU cores',
    )
    parser.add_argument(
        '-d', '--debug',
        action='store_true',
        help='Enable debug mode',
    )
    return parser


def main(argv=None):
    """Command-line interface for Metagene."""
    args = build_parser().parse_args(argv)

    # Configure logging
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    regions = {Path(p).stem: p for p in args.regions}
    region_metadata = None
    if args.region_metadata is not None:
        region_metadata = load_region_metadata(args.region_metadata)

    metagene = Metagene(
        regions,
        args.bam_files,
        design=args.design,
        region_metadata=region_metadata,
        region_loader=load_region_table,
        bin_count=args.bin_count,
        alpha=args.alpha,
        sample_count=args.sample_count,
        resampling_strategy=args.resampling_strategy,
        seed=args.seed,
        extend=args.extend,
        padding_size=args.padding_size,
        strand_specific=args.strand_specific,
        paired_end=args.paired_end,
        paired_end_strand_mode=args.paired_end_strand_mode,
        normalization=args.normalization,
        noise_removal=args.noise_removal,
        region_grouping=args.region_grouping,
        force_seqlevels=args.force_seqlevels,
        core_count=args.num_cores,
    )

    metagene.print_summary()
    metagene.serialize(args.results_path, format=args.format)


if __name__ == '__main__':
    main()
