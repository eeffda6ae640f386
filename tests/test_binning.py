"""Tests for fixed-count binning of region coverage."""
import numpy as np
import pandas as pd
import pytest

from metagene.binning import BinnedMatrix, Binner, bin_track, bin_widths
from metagene.coverage import CoverageTrack
from metagene.design import Design, DesignAggregator
from metagene.errors import EmptyRegionSetError, RegionTooSmallError, ValidationError
from metagene.regions import Region, RegionSet


def test_bin_widths_give_remainder_to_first_bins():
    np.testing.assert_array_equal(bin_widths(10, 3), [4, 3, 3])
    np.testing.assert_array_equal(bin_widths(9, 3), [3, 3, 3])
    assert bin_widths(1003, 100).sum() == 1003


def test_single_bin_is_region_mean():
    track = CoverageTrack.from_intervals({"chr1": ([0, 30], [50, 80])})
    region = Region("chr1", 10, 110)

    values = bin_track(track, region, 1)

    assert values.shape == (1,)
    assert values[0] == pytest.approx(track.mean_over("chr1", 10, 110))


def test_bin_values_are_coverage_weighted_means():
    track = CoverageTrack.from_intervals({"chr1": ([0], [15])}, value=2.0)

    values = bin_track(track, Region("chr1", 0, 40, "+"), 4)

    np.testing.assert_allclose(values, [2.0, 1.0, 0.0, 0.0])


def test_minus_strand_is_mirror_of_plus_strand():
    rng = np.random.default_rng(3)
    starts = rng.integers(1000, 1900, size=40)
    ends = starts + rng.integers(5, 100, size=40)
    track = CoverageTrack.from_intervals({"chr1": (starts, ends)})
    # reflection of the track around the region center
    lo, hi = 1000, 2003
    mirrored = CoverageTrack.from_intervals({"chr1": (lo + hi - ends, lo + hi - starts)})

    plus = bin_track(track, Region("chr1", lo, hi, "+"), 100)
    minus = bin_track(mirrored, Region("chr1", lo, hi, "-"), 100)

    np.testing.assert_allclose(minus, plus)
    np.testing.assert_allclose(
        bin_track(track, Region("chr1", lo, hi, "-"), 100),
        bin_track(mirrored, Region("chr1", lo, hi, "+"), 100),
    )


@pytest.mark.parametrize("hi, reversed_equal", [(2000, True), (2003, False)])
def test_minus_strand_reverses_plus_profile_when_bins_are_equal(hi, reversed_equal):
    track = CoverageTrack.from_intervals({"chr1": ([1000], [1500])})

    plus = bin_track(track, Region("chr1", 1000, hi, "+"), 100)
    minus = bin_track(track, Region("chr1", 1000, hi, "-"), 100)

    # with a remainder the wider bins sit at the 5' end of either strand
    assert np.allclose(minus, plus[::-1]) is reversed_equal


def test_binning_is_linear_in_weight():
    track = CoverageTrack.from_intervals({"chr1": ([0, 25, 60], [40, 90, 70])})
    region = Region("chr1", 0, 100, "-")

    np.testing.assert_allclose(bin_track(track.scale(3.5), region, 7), 3.5 * bin_track(track, region, 7))


def test_region_too_small():
    track = CoverageTrack.from_intervals({"chr1": ([0], [10])})

    with pytest.raises(RegionTooSmallError, match="smaller than bin_count=20"):
        bin_track(track, Region("chr1", 0, 10, group="tiny"), 20)


def test_missing_track_is_zero():
    np.testing.assert_array_equal(bin_track(None, Region("chr1", 0, 10), 5), np.zeros(5))


def _region_set(name="peaks"):
    return RegionSet(
        [Region("chr1", 0, 100, "+", "p1"), Region("chr1", 200, 300, "-", "p2"), Region("chr1", 400, 500, "+", "p3")],
        name=name,
    )


def test_binner_builds_one_cell_per_group_pair():
    track = CoverageTrack.from_intervals({"chr1": ([0, 200], [50, 250])})
    grouped = {"chip": {"*": track}, "input": {"*": track.scale(0.5)}}

    matrix = Binner(bin_count=4).bin(grouped, {"peaks": _region_set()})

    assert set(matrix) == {("peaks", "chip"), ("peaks", "input")}
    cell = matrix[("peaks", "chip")]
    assert list(cell.index) == ["p1", "p2", "p3"]
    np.testing.assert_allclose(cell.loc["p1"], [1, 1, 0, 0])
    # minus strand: bin 0 is the high-coordinate end
    np.testing.assert_allclose(cell.loc["p2"], [0, 0, 1, 1])
    np.testing.assert_allclose(cell.loc["p3"], [0, 0, 0, 0])
    np.testing.assert_allclose(matrix[("peaks", "input")].to_numpy(), 0.5 * cell.to_numpy())


def test_binner_strand_specific_reads_strand_buckets():
    plus = CoverageTrack.from_intervals({"chr1": ([0], [100])})
    minus = CoverageTrack.from_intervals({"chr1": ([200], [300])}, value=3.0)

    matrix = Binner(bin_count=2).bin({"chip": {"+": plus, "-": minus}}, {"peaks": _region_set()}, strand_specific=True)

    cell = matrix[("peaks", "chip")]
    np.testing.assert_allclose(cell.loc["p1"], [1, 1])
    np.testing.assert_allclose(cell.loc["p2"], [3, 3])


def test_binner_region_filter():
    track = CoverageTrack.from_intervals({"chr1": ([0], [500])})
    binner = Binner(bin_count=2, region_filter=lambda r: r.strand == "+")

    matrix = binner.bin({"chip": {"*": track}}, {"peaks": _region_set()})
    assert list(matrix[("peaks", "chip")].index) == ["p1", "p3"]

    with pytest.raises(EmptyRegionSetError):
        Binner(bin_count=2, region_filter=lambda r: False).bin({"chip": {"*": track}}, {"peaks": _region_set()})


def test_binner_validates_bin_count():
    with pytest.raises(ValidationError):
        Binner(bin_count=0)
    with pytest.raises(ValidationError):
        Binner(bin_count=True)


def test_bin_replicates_one_row_per_input():
    regions = _region_set()
    coverages = {
        "rep1": {"*": CoverageTrack.from_intervals({"chr1": ([0], [500])})},
        "rep2": {"*": CoverageTrack.from_intervals({"chr1": ([0], [500])}, value=3.0)},
        "ctrl": {"*": CoverageTrack.from_intervals({"chr1": ([0], [500])}, value=9.0)},
    }
    design = Design(pd.DataFrame({"chip": [1, 1, 2]}, index=["rep1", "rep2", "ctrl"]))

    replicates = DesignAggregator().aggregate_replicates(coverages, design)
    matrix = Binner(bin_count=5).bin_replicates(replicates, {"peaks": regions})

    assert matrix.unit == "replicate"
    cell = matrix[("peaks", "chip")]
    assert list(cell.index) == ["rep1", "rep2"]
    np.testing.assert_allclose(cell.loc["rep1"], np.ones(5))
    np.testing.assert_allclose(cell.loc["rep2"], np.full(5, 3.0))


def test_binned_matrix_to_long():
    matrix = BinnedMatrix(bin_count=2)
    matrix.add("peaks", "chip", pd.DataFrame([[1.0, 2.0], [3.0, 4.0]], index=pd.Index(["a", "b"], name="region")))

    long = matrix.to_long()

    assert list(long.columns) == ["region_group", "design_group", "region", "bin_index", "value"]
    assert len(long) == 4
    assert long.loc[(long["region"] == "b") & (long["bin_index"] == 1), "value"].item() == 4.0

    with pytest.raises(ValidationError):
        matrix.add("peaks", "input", pd.DataFrame([[1.0, 2.0, 3.0]]))
    assert BinnedMatrix(bin_count=2).to_long().empty
