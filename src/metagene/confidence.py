"""
Bootstrap confidence intervals of binned profiles.

For every (region group, design group) cell the units of the cell
(regions or replicates) are resampled with replacement; the mean of each
resample builds the bootstrap distribution of the bin mean, and its
``alpha/2`` and ``1 - alpha/2`` quantiles are the confidence bounds
(percentile bootstrap).

Functions
---------
estimate
    Convenience wrapper around :class:`ConfidenceEstimator`.
"""
from __future__ import annotations

import logging
from numbers import Integral
from typing import Optional, Tuple

import numpy as np
import pandas as pd
from scipy import stats

from .binning import BinnedMatrix
from .constants import BOOTSTRAP_BATCH_VALUES, RESAMPLING_STRATEGIES
from .errors import InsufficientDataError, ValidationError

logger = logging.getLogger(__name__)

CONFIDENCE_COLUMNS = ["region_group", "design_group", "bin_index", "mean", "ci_lower", "ci_upper", "sample_count"]

_STRATEGY_UNITS = {"by_region": "region", "by_replicate": "replicate"}


class ConfidenceEstimator:
    """
    Percentile-bootstrap estimator of per-bin means.

    Parameters
    ----------
    alpha : float, default 0.05
        Two-sided error rate; the interval covers ``1 - alpha``.
    sample_count : int, default 1000
        Number of bootstrap resamples.
    resampling_strategy : {'by_region', 'by_replicate'}, default 'by_region'
        Resample the regions of a group, or the input replicates of a
        design group. Must match the unit of the binned matrix.
    seed : int, optional
        Seed of the random generator. Bounds are only reproducible with a
        fixed seed.

    Examples
    --------
    >>> estimator = ConfidenceEstimator(alpha=0.05, sample_count=1000, seed=1)
    >>> result = estimator.estimate(binned_matrix)
    >>> result.columns.tolist()
    ['region_group', 'design_group', 'bin_index', 'mean', 'ci_lower', 'ci_upper', 'sample_count']
    """

    def __init__(
        self,
        alpha: float = 0.05,
        sample_count: int = 1000,
        resampling_strategy: str = "by_region",
        seed: Optional[int] = None,
    ):
        if not 0 < alpha < 1:
            raise ValidationError(f"alpha must be in (0, 1), got {alpha}")
        if isinstance(sample_count, bool) or not isinstance(sample_count, Integral) or sample_count < 1:
            raise ValidationError(f"sample_count must be a positive integer, got {sample_count!r}")
        if resampling_strategy not in RESAMPLING_STRATEGIES:
            raise ValidationError(
                f"Unknown resampling_strategy '{resampling_strategy}'. Use one of {RESAMPLING_STRATEGIES}."
            )
        self.alpha = float(alpha)
        self.sample_count = int(sample_count)
        self.resampling_strategy = resampling_strategy
        self.seed = seed

    def estimate_cell(
        self,
        values: np.ndarray,
        rng: np.random.Generator,
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Mean and bootstrap bounds of every bin of one cell.

        Parameters
        ----------
        values : np.ndarray
            ``(n_units, n_bins)`` array; units are resampled as whole rows.
        rng : np.random.Generator
            Random generator.

        Returns
        -------
        (mean, ci_lower, ci_upper) : tuple of np.ndarray
            One value per bin.
        """
        values = np.asarray(values, dtype=np.float64)
        batch = max(1, BOOTSTRAP_BATCH_VALUES // max(1, values.size))
        result = stats.bootstrap(
            (values,),
            np.mean,
            n_resamples=self.sample_count,
            batch=batch,
            vectorized=True,
            axis=0,
            confidence_level=1 - self.alpha,
            method="percentile",
            rng=rng,
        )
        interval = result.confidence_interval
        return values.mean(axis=0), np.asarray(interval.low), np.asarray(interval.high)

    def estimate(self, binned_matrix: BinnedMatrix) -> pd.DataFrame:
        """
        Confidence intervals for every cell of a binned matrix.

        Parameters
        ----------
        binned_matrix : BinnedMatrix
            Matrix whose unit matches the resampling strategy.

        Returns
        -------
        pd.DataFrame
            Columns region_group, design_group, bin_index, mean, ci_lower,
            ci_upper and sample_count (number of resampled units).

        Raises
        ------
        InsufficientDataError
            If a cell has fewer than 2 units.
        """
        expected_unit = _STRATEGY_UNITS[self.resampling_strategy]
        if binned_matrix.unit != expected_unit:
            raise ValidationError(
                f"resampling_strategy '{self.resampling_strategy}' needs a matrix of "
                f"{expected_unit}s, got {binned_matrix.unit}s"
            )

        rng = np.random.default_rng(self.seed)
        frames = []
        for (region_group, design_group), cell in binned_matrix.items():
            n_units = cell.shape[0]
            if n_units < 2:
                raise InsufficientDataError(
                    f"Region group '{region_group}', design group '{design_group}': "
                    f"{n_units} {expected_unit}(s) per bin, at least 2 are needed"
                )
            mean, lower, upper = self.estimate_cell(cell.to_numpy(), rng)
            frames.append(pd.DataFrame({
                "region_group": region_group,
                "design_group": design_group,
                "bin_index": np.arange(cell.shape[1]),
                "mean": mean,
                "ci_lower": lower,
                "ci_upper": upper,
                "sample_count": n_units,
            }))

        logger.info(
            f"Bootstrap ({self.resampling_strategy}, {self.sample_count} resamples, "
            f"alpha={self.alpha}) on {len(frames)} cell(s)"
        )
        if not frames:
            return pd.DataFrame(columns=CONFIDENCE_COLUMNS)
        return pd.concat(frames, ignore_index=True)[CONFIDENCE_COLUMNS]


def estimate(
    binned_matrix: BinnedMatrix,
    alpha: float = 0.05,
    sample_count: int = 1000,
    resampling_strategy: str = "by_region",
    seed: Optional[int] = None,
) -> pd.DataFrame:
    """Bootstrap mean and confidence bounds per bin; see :class:`ConfidenceEstimator`."""
    estimator = ConfidenceEstimator(
        alpha=alpha,
        sample_count=sample_count,
        resampling_strategy=resampling_strategy,
        seed=seed,
    )
    return estimator.estimate(binned_matrix)
