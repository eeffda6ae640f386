"""
Pipeline parameters and stage invalidation.

Parameters live in two layers: an immutable layer of defaults and a layer
of explicitly set values. Each update only overrides the keys it names;
every other key keeps its last explicitly set value, or its default.

Each key feeds one pipeline stage. Stages form a chain

    regions -> coverage -> grouped_coverage -> binned -> confidence

and changing a key makes its stage, and every stage downstream of it,
dirty.

Classes
-------
MetageneConfig
    Validated snapshot of every parameter.
ParameterStore
    Layered, versioned parameter store.

Functions
---------
downstream_stages
    A stage and every stage that depends on it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, fields, replace
from numbers import Integral
from typing import Any, Callable, Dict, FrozenSet, Optional, Set, Tuple

from .constants import NOISE_REMOVALS, NORMALIZATIONS, PAIRED_END_STRAND_MODES, RESAMPLING_STRATEGIES
from .errors import ValidationError

logger = logging.getLogger(__name__)

STAGES = ("regions", "coverage", "grouped_coverage", "binned", "confidence")

# stage -> stages it reads from
STAGE_DEPENDENCIES: Dict[str, Tuple[str, ...]] = {
    "regions": (),
    "coverage": ("regions",),
    "grouped_coverage": ("coverage",),
    "binned": ("grouped_coverage",),
    "confidence": ("binned",),
}

# parameter -> first stage it affects (None: no cached stage)
PARAMETER_STAGES: Dict[str, Optional[str]] = {
    "padding_size": "regions",
    "force_seqlevels": "regions",
    "extend": "coverage",
    "strand_specific": "coverage",
    "paired_end": "coverage",
    "paired_end_strand_mode": "coverage",
    "normalization": "coverage",
    "noise_removal": "grouped_coverage",
    "bin_count": "binned",
    "region_filter": "binned",
    "region_grouping": "binned",
    "resampling_strategy": "binned",
    "alpha": "confidence",
    "sample_count": "confidence",
    "seed": "confidence",
    "core_count": None,
}


def downstream_stages(stage: str) -> Set[str]:
    """Return ``stage`` and every stage that transitively depends on it."""
    if stage not in STAGE_DEPENDENCIES:
        raise ValidationError(f"Unknown stage '{stage}'. Use one of {STAGES}.")
    dirty = {stage}
    changed = True
    while changed:
        changed = False
        for name, parents in STAGE_DEPENDENCIES.items():
            if name not in dirty and dirty.intersection(parents):
                dirty.add(name)
                changed = True
    return dirty


def _is_int(value: Any) -> bool:
    return isinstance(value, Integral) and not isinstance(value, bool)


@dataclass(frozen=True)
class MetageneConfig:
    """
    Every pipeline parameter, validated.

    Examples
    --------
    >>> MetageneConfig(bin_count=50).bin_count
    50
    >>> MetageneConfig(alpha=2)
    Traceback (most recent call last):
    ...
    metagene.errors.ValidationError: alpha must be in (0, 1), got 2
    """

    #: Number of bins per region.
    bin_count: int = 100
    #: Two-sided error rate of the confidence intervals.
    alpha: float = 0.05
    #: Number of bootstrap resamples.
    sample_count: int = 1000
    #: Bootstrap unit: 'by_region' or 'by_replicate'.
    resampling_strategy: str = "by_region"
    #: Resize reads to this length from their 5' end (0 keeps the alignment).
    extend: int = 0
    #: Keep strands apart.
    strand_specific: bool = False
    #: Reconstruct fragments from proper pairs.
    paired_end: bool = False
    #: Strand of paired-end fragments (0 unstranded, 1 first mate, 2 second mate).
    paired_end_strand_mode: int = 2
    #: Coverage normalization, None or 'RPM'.
    normalization: Optional[str] = None
    #: Control noise removal, None or 'NCIS'.
    noise_removal: Optional[str] = None
    #: Worker processes for per-file work.
    core_count: int = 1
    #: ``region_filter(region) -> bool``, False drops the region before binning.
    region_filter: Optional[Callable] = None
    #: Widen every region by this many bp on both sides at load time.
    padding_size: int = 0
    #: Drop regions that do not fit the alignment files instead of failing.
    force_seqlevels: bool = False
    #: Region metadata columns that split region sets into sub-groups.
    region_grouping: Tuple[str, ...] = ()
    #: Random seed of the bootstrap.
    seed: Optional[int] = None

    def __post_init__(self):
        positive_ints = ("bin_count", "sample_count", "core_count")
        for name in positive_ints:
            value = getattr(self, name)
            if not _is_int(value) or value < 1:
                raise ValidationError(f"{name} must be a positive integer, got {value!r}")
        for name in ("extend", "padding_size"):
            value = getattr(self, name)
            if not _is_int(value) or value < 0:
                raise ValidationError(f"{name} must be a non-negative integer, got {value!r}")
        for name in ("strand_specific", "paired_end", "force_seqlevels"):
            value = getattr(self, name)
            if not isinstance(value, bool):
                raise ValidationError(f"{name} must be a boolean, got {value!r}")

        if isinstance(self.alpha, bool) or not isinstance(self.alpha, (int, float)) or not 0 < self.alpha < 1:
            raise ValidationError(f"alpha must be in (0, 1), got {self.alpha}")
        if self.resampling_strategy not in RESAMPLING_STRATEGIES:
            raise ValidationError(
                f"Unknown resampling_strategy '{self.resampling_strategy}'. Use one of {RESAMPLING_STRATEGIES}."
            )
        if self.paired_end_strand_mode not in PAIRED_END_STRAND_MODES:
            raise ValidationError(
                f"paired_end_strand_mode must be one of {PAIRED_END_STRAND_MODES}, "
                f"got {self.paired_end_strand_mode!r}"
            )
        if self.normalization is not None and self.normalization not in NORMALIZATIONS:
            raise ValidationError(f"Unknown normalization '{self.normalization}'. Use one of {NORMALIZATIONS}.")
        if self.noise_removal is not None and self.noise_removal not in NOISE_REMOVALS:
            raise ValidationError(f"Unknown noise_removal '{self.noise_removal}'. Use one of {NOISE_REMOVALS}.")
        if self.region_filter is not None and not callable(self.region_filter):
            raise ValidationError("region_filter must be callable or None")
        if not isinstance(self.region_grouping, tuple) or not all(
            isinstance(c, str) for c in self.region_grouping
        ):
            raise ValidationError(f"region_grouping must be a tuple of column names, got {self.region_grouping!r}")
        if self.seed is not None and not _is_int(self.seed):
            raise ValidationError(f"seed must be an integer or None, got {self.seed!r}")

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


PARAMETER_NAMES: FrozenSet[str] = frozenset(f.name for f in fields(MetageneConfig))


def _coerce(key: str, value: Any) -> Any:
    if key == "region_grouping":
        if value is None:
            return ()
        if isinstance(value, str):
            return (value,)
        return tuple(value)
    return value


class ParameterStore:
    """
    Layered, versioned parameter store.

    Parameters
    ----------
    defaults : MetageneConfig, optional
        Default layer. Never modified.
    **overrides
        Initial explicit values.

    Examples
    --------
    >>> store = ParameterStore(bin_count=50)
    >>> sorted(store.update(bin_count=20))
    ['binned', 'confidence']
    >>> store.update(alpha=0.1)
    {'confidence'}
    >>> store.get("bin_count"), store.version("bin_count")
    (20, 2)
    """

    def __init__(self, defaults: Optional[MetageneConfig] = None, **overrides):
        self._defaults = defaults if defaults is not None else MetageneConfig()
        self._explicit: Dict[str, Any] = {}
        self._versions: Dict[str, int] = {name: 0 for name in PARAMETER_NAMES}
        self._config = self._defaults
        if overrides:
            self.update(**overrides)

    def __repr__(self) -> str:
        return f"ParameterStore(explicit={self._explicit!r})"

    @property
    def config(self) -> MetageneConfig:
        """Current parameter values."""
        return self._config

    @property
    def defaults(self) -> MetageneConfig:
        return self._defaults

    def get(self, key: str) -> Any:
        self._check_keys([key])
        return getattr(self._config, key)

    def version(self, key: str) -> int:
        """Number of times ``key`` changed value."""
        self._check_keys([key])
        return self._versions[key]

    def versions(self) -> Dict[str, int]:
        return dict(self._versions)

    def explicit(self) -> Dict[str, Any]:
        """Values set explicitly, without the defaults."""
        return dict(self._explicit)

    def to_dict(self) -> Dict[str, Any]:
        return self._config.to_dict()

    @staticmethod
    def _check_keys(keys) -> None:
        unknown = sorted(k for k in keys if k not in PARAMETER_NAMES)
        if unknown:
            raise ValidationError(f"Unknown parameter(s): {unknown}. Known: {sorted(PARAMETER_NAMES)}")

    def update(self, **kwargs) -> Set[str]:
        """
        Set explicit values.

        Keys not named keep their current value. The update is atomic: if
        any value is invalid, nothing changes.

        Returns
        -------
        set of str
            Stages whose cached results are no longer valid.

        Raises
        ------
        ValidationError
            On unknown keys or invalid values.
        """
        self._check_keys(kwargs)
        updates = {key: _coerce(key, value) for key, value in kwargs.items()}
        explicit = {**self._explicit, **updates}
        config = replace(self._defaults, **explicit)

        changed = [key for key in updates if getattr(config, key) != getattr(self._config, key)]
        self._explicit = explicit
        self._config = config

        dirty: Set[str] = set()
        for key in changed:
            self._versions[key] += 1
            stage = PARAMETER_STAGES[key]
            if stage is not None:
                dirty |= downstream_stages(stage)
        if changed:
            logger.debug(f"Parameters changed: {changed}; dirty stages: {sorted(dirty)}")
        return dirty

    def copy(self) -> "ParameterStore":
        clone = ParameterStore(self._defaults)
        clone._explicit = dict(self._explicit)
        clone._versions = dict(self._versions)
        clone._config = self._config
        return clone
