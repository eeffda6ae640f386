"""
Exception hierarchy for the metagene pipeline.

Errors fall into four families:

ValidationError
    Bad constructor arguments. Raised before any work is dispatched.
DataConsistencyError
    Regions and alignment files disagree (sequence names, lengths) or a
    region set ends up empty. Downgraded to a warning in lenient mode.
ComputationError
    A stage cannot produce a value for a given region, group or bin.
ParallelExecutionError
    Aggregate of every unit that failed in one parallel dispatch.
"""
from __future__ import annotations

from typing import Dict, Mapping


class MetageneError(Exception):
    """Base class for all metagene errors."""
    pass


class ValidationError(MetageneError, ValueError):
    """Raised when constructor arguments or parameters are invalid."""
    pass


class MissingFileError(ValidationError, FileNotFoundError):
    """Raised when an alignment file or its index does not exist."""
    pass


class MalformedIndexError(ValidationError):
    """Raised when an alignment index exists but cannot be loaded."""
    pass


class DuplicateIdentifierError(ValidationError):
    """Raised when two alignment sources share an identifier."""
    pass


class DataConsistencyError(MetageneError):
    """Raised when regions and alignment files are inconsistent."""
    pass


class SequenceMismatchError(DataConsistencyError):
    """Raised when region sequence names are absent from an alignment file."""
    pass


class EmptyRegionSetError(DataConsistencyError):
    """Raised when no region is left to work on."""
    pass


class RegionOutOfBoundsError(DataConsistencyError):
    """Raised when a region extends past the end of its reference sequence."""
    pass


class ComputationError(MetageneError):
    """Raised when a stage cannot compute a value for its inputs."""
    pass


class InsufficientDataError(ComputationError):
    """Raised when too few values are available for an estimate."""
    pass


class RegionTooSmallError(ComputationError):
    """Raised when a region is narrower than the requested bin count."""
    pass


class InvalidDesignError(ComputationError):
    """Raised when a design group is malformed (e.g. has no input member)."""
    pass


class ParallelExecutionError(MetageneError):
    """
    Aggregate of the failures of one parallel dispatch.

    Parameters
    ----------
    failures : mapping of str to Exception
        Underlying exception for every failing unit, keyed by unit
        identifier (usually the alignment source identifier).
    stage : str, optional
        Name of the dispatched stage, used in the message.
    """

    def __init__(self, failures: Mapping[str, BaseException], stage: str = "parallel"):
        self.failures: Dict[str, BaseException] = dict(failures)
        self.stage = stage
        details = "; ".join(
            f"{key}: {type(exc).__name__}: {exc}" for key, exc in self.failures.items()
        )
        super().__init__(f"{len(self.failures)} unit(s) failed during {stage}: {details}")

    def __reduce__(self):
        return (type(self), (self.failures, self.stage))
