"""Tests for bootstrap confidence intervals."""
import numpy as np
import pandas as pd
import pytest

from metagene.binning import BinnedMatrix
from metagene.confidence import CONFIDENCE_COLUMNS, ConfidenceEstimator, estimate
from metagene.errors import InsufficientDataError, ValidationError


def _matrix(values, unit="region", region_group="peaks", design_group="chip"):
    values = np.asarray(values, dtype=float)
    matrix = BinnedMatrix(bin_count=values.shape[1], unit=unit)
    matrix.add(region_group, design_group, pd.DataFrame(values, index=[f"u{i}" for i in range(len(values))]))
    return matrix


@pytest.mark.parametrize("seed", [None, 0, 42])
def test_constant_input_gives_degenerate_interval(seed):
    result = estimate(_matrix(np.full((20, 3), 5.0)), alpha=0.05, sample_count=1000, seed=seed)

    assert list(result.columns) == CONFIDENCE_COLUMNS
    assert (result["mean"] == 5.0).all()
    assert (result["ci_lower"] == 5.0).all()
    assert (result["ci_upper"] == 5.0).all()
    assert (result["sample_count"] == 20).all()


def test_interval_brackets_mean():
    rng = np.random.default_rng(7)
    values = rng.gamma(2.0, 3.0, size=(50, 10))

    result = estimate(_matrix(values), sample_count=500, seed=1)

    np.testing.assert_allclose(result["mean"], values.mean(axis=0))
    assert (result["ci_lower"] <= result["mean"]).all()
    assert (result["mean"] <= result["ci_upper"]).all()
    assert (result["ci_upper"] - result["ci_lower"] > 0).all()
    assert result["bin_index"].tolist() == list(range(10))


def test_seed_makes_bounds_reproducible():
    values = np.random.default_rng(8).normal(10, 2, size=(30, 4))
    matrix = _matrix(values)

    first = estimate(matrix, sample_count=300, seed=11)
    second = estimate(matrix, sample_count=300, seed=11)

    pd.testing.assert_frame_equal(first, second)


def test_smaller_alpha_gives_wider_interval():
    values = np.random.default_rng(9).normal(10, 2, size=(40, 2))
    matrix = _matrix(values)

    narrow = estimate(matrix, alpha=0.2, sample_count=2000, seed=3)
    wide = estimate(matrix, alpha=0.01, sample_count=2000, seed=3)

    assert ((wide["ci_upper"] - wide["ci_lower"]) > (narrow["ci_upper"] - narrow["ci_lower"])).all()


def test_single_unit_is_insufficient():
    with pytest.raises(InsufficientDataError, match="'peaks'.*'chip'"):
        estimate(_matrix([[1.0, 2.0]]))


def test_every_cell_is_estimated():
    matrix = _matrix(np.ones((5, 2)))
    matrix.add("peaks", "input", pd.DataFrame(np.full((5, 2), 2.0)))
    matrix.add("tss", "chip", pd.DataFrame(np.full((3, 2), 3.0)))

    result = estimate(matrix, sample_count=100, seed=0)

    assert len(result) == 6
    means = result.groupby(["region_group", "design_group"])["mean"].first()
    assert means[("peaks", "input")] == 2.0
    assert means[("tss", "chip")] == 3.0


def test_by_replicate_needs_replicate_matrix():
    with pytest.raises(ValidationError):
        estimate(_matrix(np.ones((3, 2))), resampling_strategy="by_replicate")

    result = estimate(_matrix(np.ones((3, 2)), unit="replicate"), resampling_strategy="by_replicate", sample_count=50)
    assert (result["sample_count"] == 3).all()


@pytest.mark.parametrize(
    "kwargs",
    [
        {"alpha": 0},
        {"alpha": 1.0},
        {"sample_count": 0},
        {"sample_count": 2.5},
        {"resampling_strategy": "by_bin"},
    ],
)
def test_invalid_arguments(kwargs):
    with pytest.raises(ValidationError):
        ConfidenceEstimator(**kwargs)


def test_empty_matrix():
    result = ConfidenceEstimator().estimate(BinnedMatrix(bin_count=4))

    assert result.empty
    assert list(result.columns) == CONFIDENCE_COLUMNS
