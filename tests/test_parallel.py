"""Tests for the parallel executor and its aggregate errors."""
import pickle

import pytest

from metagene.errors import ParallelExecutionError, ValidationError
from metagene.parallel import ParallelExecutor


@pytest.mark.parametrize("core_count", [1, 2])
def test_map_returns_results_in_input_order(core_count):
    units = {"a": (7, 2), "b": (9, 4), "c": (1, 1)}

    results = ParallelExecutor(core_count).map(divmod, units)

    assert list(results) == ["a", "b", "c"]
    assert results == {"a": (3, 1), "b": (2, 1), "c": (1, 0)}


@pytest.mark.parametrize("core_count", [1, 2])
def test_failures_are_collected(core_count):
    units = {"ok": (4, 2), "bad1": (1, 0), "bad2": (5, 0)}

    with pytest.raises(ParallelExecutionError) as excinfo:
        ParallelExecutor(core_count).map(divmod, units, stage="coverage")

    error = excinfo.value
    assert set(error.failures) == {"bad1", "bad2"}
    assert all(isinstance(e, ZeroDivisionError) for e in error.failures.values())
    assert error.stage == "coverage"
    assert "bad1" in str(error) and "bad2" in str(error)


def test_empty_units():
    assert ParallelExecutor(4).map(divmod, {}) == {}


@pytest.mark.parametrize("core_count", [0, -2, 1.5, True, "2"])
def test_invalid_core_count(core_count):
    with pytest.raises(ValidationError):
        ParallelExecutor(core_count)


def test_aggregate_error_pickles():
    error = ParallelExecutionError({"rep1": ValueError("broken index")}, stage="coverage")

    restored = pickle.loads(pickle.dumps(error))

    assert restored.stage == "coverage"
    assert str(restored) == str(error)
    assert isinstance(restored.failures["rep1"], ValueError)
