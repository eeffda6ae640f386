"""
Parallel dispatch of independent per-source work.

Units of work (one per alignment source) run in a bounded
multiprocessing pool. A failing unit does not stop its siblings: every
failure is collected and reported together once all units are done.
"""
import logging
from multiprocessing import Pool
from numbers import Integral
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple

from .errors import ParallelExecutionError, ValidationError

logger = logging.getLogger(__name__)

Outcome = Tuple[str, Any, Optional[BaseException]]


def _run_unit(func: Callable, key: str, args: Sequence) -> Outcome:
    """
    Run one unit and capture its outcome.

    This is a module-level function so that it can be pickled for the pool.
    """
    try:
        return key, func(*args), None
    except Exception as e:
        return key, None, e


class ParallelExecutor:
    """
    Bounded worker pool for embarrassingly parallel per-source work.

    Parameters
    ----------
    core_count : int, default 1
        Number of worker processes. With 1, units run serially in the
        calling process.

    Raises
    ------
    ValidationError
        If ``core_count`` is not a positive integer.

    Examples
    --------
    >>> executor = ParallelExecutor(core_count=4)
    >>> counts = executor.map(count_reads, {"rep1": ("rep1.bam",), "rep2": ("rep2.bam",)})
    """

    def __init__(self, core_count: int = 1):
        if isinstance(core_count, bool) or not isinstance(core_count, Integral) or core_count < 1:
            raise ValidationError(f"core_count must be a positive integer, got {core_count!r}")
        self._core_count = int(core_count)

    @property
    def core_count(self) -> int:
        return self._core_count

    def map(
        self,
        func: Callable,
        units: Mapping[str, Sequence],
        stage: str = "parallel",
    ) -> Dict[str, Any]:
        """
        Run ``func(*args)`` for every unit.

        Parameters
        ----------
        func : callable
            Picklable, module-level callable.
        units : mapping of str to sequence
            Positional arguments of each unit, keyed by unit identifier.
        stage : str, default "parallel"
            Stage name used in logs and errors.

        Returns
        -------
        dict
            Result of every unit, keyed by identifier, in input order.

        Raises
        ------
        ParallelExecutionError
            After all units completed, if any unit failed.
        """
        if not units:
            return {}

        n_workers = min(self._core_count, len(units))
        logger.info(f"{stage}: dispatching {len(units)} unit(s) on {n_workers} worker(s)")

        if n_workers == 1:
            outcomes = [_run_unit(func, key, args) for key, args in units.items()]
        else:
            outcomes = []
            with Pool(processes=n_workers) as pool:
                pending = {
                    key: pool.apply_async(_run_unit, (func, key, tuple(args)))
                    for key, args in units.items()
                }
                for key, async_result in pending.items():
                    try:
                        outcomes.append(async_result.get())
                    except Exception as e:
                        # the outcome itself could not be sent back
                        outcomes.append((key, None, e))

        results: Dict[str, Any] = {}
        failures: Dict[str, BaseException] = {}
        for key, result, error in outcomes:
            if error is None:
                results[key] = result
            else:
                logger.error(f"{stage}: unit {key} failed: {type(error).__name__}: {error}")
                failures[key] = error

        if failures:
            raise ParallelExecutionError(failures, stage=stage)
        return results
