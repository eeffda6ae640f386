"""
Metagene pipeline.

Wires region loading, coverage extraction, design aggregation, binning
and bootstrap estimation. Every stage is computed on first read and cached;
changing a parameter or the design drops the caches of the affected stage
and of every stage downstream of it.
"""
from __future__ import annotations

import copy
import logging
from os import PathLike
from pathlib import Path
from typing import Any, Callable, Dict, Literal, Mapping, Optional, Set, Union

import numpy as np
import pandas as pd

from .binning import BinnedMatrix, Binner
from .confidence import ConfidenceEstimator
from .config import STAGES, ParameterStore, downstream_stages
from .constants import RESULT_COLUMNS
from .coverage import CoverageTrack
from .design import Design, DesignAggregator, DesignGroup
from .extractor import CoverageOptions, rpm_weight
from .handler import BamFiles, BamHandler
from .io import load_design_matrix, write_results
from .regions import RegionSet, resolve_region_sets

logger = logging.getLogger(__name__)

Coverages = Dict[str, Dict[str, CoverageTrack]]


class Metagene:
    """
    Metagene profiles of alignment files over region sets.

    Parameters
    ----------
    regions : RegionSet, DataFrame, sequence of records, path or mapping
        Region sets. A mapping ``{name: regions}`` gives several groups.
        Paths need ``region_loader``.
    bam_files : sequence of path, or mapping of str to path
        Indexed alignment files. Identifiers default to the file stems.
    design : DataFrame, Design or path, optional
        Design matrix (rows = identifiers, columns = groups, values 0, 1
        or 2). Without a design every file is its own group.
    region_metadata : DataFrame or mapping of str to DataFrame, optional
        Per-region metadata, used by ``region_grouping``.
    region_loader : callable, optional
        Parser turning a region file path into a DataFrame or records.
    **params
        Pipeline parameters, see :class:`~metagene.config.MetageneConfig`.

    Raises
    ------
    ValidationError
        On invalid parameters, missing files or indexes, or duplicate
        identifiers. Raised before any coverage is read.

    Examples
    --------
    >>> mg = Metagene({"promoters": promoters_df}, ["chip.bam", "input.bam"],
    ...               design=design_df, normalization="RPM", bin_count=50)
    >>> table = mg.produce_table()
    >>> mg.set_params(alpha=0.01)
    {'confidence'}
    >>> table_99 = mg.produce_table()  # only the bootstrap is rerun
    """

    def __init__(
        self,
        regions,
        bam_files: BamFiles,
        design: Optional[Union[pd.DataFrame, Design, PathLike, str]] = None,
        region_metadata: Optional[Union[pd.DataFrame, Mapping[str, pd.DataFrame]]] = None,
        region_loader: Optional[Callable] = None,
        **params,
    ):
        self._store = ParameterStore(**params)
        config = self._store.config
        self._region_sets = resolve_region_sets(regions, loader=region_loader, metadata=region_metadata)
        self._handler = BamHandler(bam_files, core_count=config.core_count, paired_end=config.paired_end)
        self._design = self._resolve_design(design)
        self._cache: Dict[str, Dict[str, Any]] = {stage: {} for stage in STAGES}
        logger.info(
            f"Metagene with {len(self._region_sets)} region set(s), {len(self._handler)} alignment file(s) "
            f"and design groups {self._design.group_names}"
        )

    def __repr__(self) -> str:
        return (
            f"Metagene(region_sets={list(self._region_sets)}, bam_files={self._handler.identifiers}, "
            f"design_groups={self._design.group_names})"
        )

    def _resolve_design(self, design) -> Design:
        identifiers = self._handler.identifiers
        if design is None:
            return Design.default(identifiers)
        if isinstance(design, (str, PathLike)):
            design = load_design_matrix(design)
        if isinstance(design, Design):
            design = design.matrix
        return Design(design, sources=identifiers)

    def _cached(self, stage: str, artifact: str, build: Callable[[], Any]) -> Any:
        cache = self._cache[stage]
        if artifact not in cache:
            logger.debug(f"Computing {artifact} ({stage} stage)")
            cache[artifact] = build()
        return cache[artifact]

    def _invalidate(self, stages: Set[str]) -> None:
        for stage in stages:
            if self._cache[stage]:
                logger.info(f"Dropping cached {stage} results")
            self._cache[stage] = {}

    # Parameters and design

    def get_params(self) -> Dict[str, Any]:
        return self._store.to_dict()

    def set_params(self, **kwargs) -> Set[str]:
        """
        Update parameters.

        Only the named parameters change; the others keep their values.

        Returns
        -------
        set of str
            Stages whose cached results were dropped.
        """
        dirty = self._store.update(**kwargs)
        if "core_count" in kwargs:
            self._handler.set_core_count(self._store.get("core_count"))
        self._invalidate(dirty)
        return dirty

    def get_design(self) -> Design:
        return self._design

    def set_design(self, design: Optional[Union[pd.DataFrame, Design, PathLike, str]]) -> Set[str]:
        """Replace the design; coverage of the files is kept."""
        design = self._resolve_design(design)
        if design == self._design:
            return set()
        self._design = design
        dirty = downstream_stages("grouped_coverage")
        self._invalidate(dirty)
        return dirty

    @property
    def handler(self) -> BamHandler:
        return self._handler

    @property
    def params(self) -> ParameterStore:
        return self._store

    # Stages

    def _coverage_options(self) -> CoverageOptions:
        config = self._store.config
        return CoverageOptions(
            strand_specific=config.strand_specific,
            paired_end=config.paired_end,
            paired_end_strand_mode=config.paired_end_strand_mode,
            extend=config.extend,
            lenient=config.force_seqlevels,
        )

    def get_regions(self) -> Dict[str, RegionSet]:
        """Padded region sets, checked against every alignment file."""
        return self._cached("regions", "regions", self._build_regions)

    def _build_regions(self) -> Dict[str, RegionSet]:
        config = self._store.config
        prepared = {}
        for name, region_set in self._region_sets.items():
            region_set = region_set.padded(config.padding_size)
            for source in self._handler.sources.values():
                region_set = source.prepare_regions(region_set, lenient=config.force_seqlevels)
            prepared[name] = region_set
        return prepared

    def get_region_groups(self) -> Dict[str, RegionSet]:
        """Region sets split into sub-groups by the ``region_grouping`` columns."""
        grouping = self._store.get("region_grouping")
        groups: Dict[str, RegionSet] = {}
        for region_set in self.get_regions().values():
            groups.update(region_set.split_by(grouping))
        return groups

    def get_raw_coverages(self) -> Coverages:
        """Strand-bucketed coverage of every file, in reads."""
        def build():
            regions = RegionSet.union(self.get_regions().values())
            return self._handler.get_coverages(regions, self._coverage_options())
        return self._cached("coverage", "raw", build)

    def get_normalized_coverages(self) -> Coverages:
        """Strand-bucketed coverage of every file, in reads per million."""
        def build():
            sources = self._handler.sources
            return {
                identifier: {bucket: track.scale(rpm_weight(sources[identifier])) for bucket, track in buckets.items()}
                for identifier, buckets in self.get_raw_coverages().items()
            }
        return self._cached("coverage", "normalized", build)

    def _source_coverages(self) -> Coverages:
        if self._store.get("normalization") == "RPM":
            return self.get_normalized_coverages()
        return self.get_raw_coverages()

    def _noise_ratio(self, group: DesignGroup) -> float:
        return self._handler.get_noise_ratio(group.inputs, group.controls)

    def _aggregator(self) -> DesignAggregator:
        config = self._store.config
        return DesignAggregator(
            normalization=config.normalization,
            noise_removal=config.noise_removal,
            noise_ratio=self._noise_ratio,
            aligned_counts=self._handler.get_aligned_counts(),
        )

    def get_grouped_coverages(self) -> Coverages:
        """Strand-bucketed coverage of every design group."""
        def build():
            return self._aggregator().aggregate(self._source_coverages(), self._design)
        return self._cached("grouped_coverage", "grouped", build)

    def get_replicate_coverages(self) -> Dict[str, Coverages]:
        """Strand-bucketed coverage of every input source, per design group."""
        def build():
            return self._aggregator().aggregate_replicates(self._source_coverages(), self._design)
        return self._cached("grouped_coverage", "replicates", build)

    def get_binned_matrix(self) -> BinnedMatrix:
        """Binned profiles per (region group, design group)."""
        def build():
            config = self._store.config
            binner = Binner(bin_count=config.bin_count, region_filter=config.region_filter)
            if config.resampling_strategy == "by_replicate":
                return binner.bin_replicates(
                    self.get_replicate_coverages(), self.get_region_groups(), config.strand_specific
                )
            return binner.bin(self.get_grouped_coverages(), self.get_region_groups(), config.strand_specific)
        return self._cached("binned", "matrix", build)

    def get_confidence(self) -> pd.DataFrame:
        """Bin means with bootstrap confidence bounds."""
        def build():
            config = self._store.config
            estimator = ConfidenceEstimator(
                alpha=config.alpha,
                sample_count=config.sample_count,
                resampling_strategy=config.resampling_strategy,
                seed=config.seed,
            )
            return estimator.estimate(self.get_binned_matrix())
        return self._cached("confidence", "table", build).copy()

    def produce_table(self) -> pd.DataFrame:
        """
        Final metagene table.

        Returns
        -------
        pd.DataFrame
            Columns region_group, design_group, bin_index, position_label
            (bin center as a fraction of the region, 0 to 1), mean, ci_lower
            and ci_upper.
        """
        table = self.get_confidence()
        bin_count = self._store.get("bin_count")
        table["position_label"] = np.round((table["bin_index"].astype(float) + 0.5) / bin_count, 4)
        return table[RESULT_COLUMNS].reset_index(drop=True)

    # Copies and output

    def clone(self) -> "Metagene":
        """Independent copy: parameters, design, alignment registry and caches."""
        return copy.deepcopy(self)

    def serialize(
        self,
        results_path: Union[PathLike, str],
        format: Literal['excel', 'csv'] = 'excel',
    ) -> None:
        """
        Save results to disk.

        Parameters
        ----------
        results_path : PathLike or str
            Directory to save results.
        format : {'excel', 'csv'}, default 'excel'
            Output format.
        """
        results_path = Path(results_path)
        results_path.mkdir(parents=True, exist_ok=True)

        write_results(self.produce_table(), results_path / 'metagene_profiles', format=format)
        write_results(self._design.matrix, results_path / 'design_matrix', format=format, index=True)
        params = {k: v for k, v in self.get_params().items() if k != 'region_filter'}
        params['region_filter'] = None if self._store.get('region_filter') is None else 'custom'
        params['region_grouping'] = ','.join(params['region_grouping'])
        write_results(
            pd.DataFrame({'parameter': list(params), 'value': [str(v) for v in params.values()]}),
            results_path / 'parameters',
            format=format,
        )
        logger.info(f"Results saved to {results_path}")

    def print_summary(self) -> None:
        """Print a summary of the inputs."""
        print(f"Region sets: {', '.join(f'{k} ({len(v)})' for k, v in self._region_sets.items())}")
        print(f"Alignment files: {len(self._handler)}")
        for identifier, count in self._handler.get_aligned_counts().items():
            print(f"  {identifier}: {count:,} aligned reads")
        print(f"Design groups: {', '.join(self._design.group_names)}")
