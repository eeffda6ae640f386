"""Tests for coverage extraction from alignment files."""
import pytest

from metagene.alignment import AlignmentSource
from metagene.errors import InsufficientDataError, ValidationError
from metagene.extractor import CoverageOptions, coverage_from_fragments, extract_coverage, rpm_weight
from metagene.regions import Region, RegionSet


def _regions(*records):
    return RegionSet([Region(*r) for r in records], name="test")


def test_unstranded_coverage(simple_bam):
    source = AlignmentSource(simple_bam)

    coverage = extract_coverage(source, _regions(("chr1", 0, 2000, "+"), ("chr2", 0, 1000, "-")))

    assert list(coverage) == ["*"]
    track = coverage["*"]
    assert track.value_at("chr1", 110) == 1.0
    assert track.value_at("chr1", 130) == 2.0
    assert track.value_at("chr1", 320) == 1.0
    assert track.value_at("chr2", 220) == 1.0
    assert track.total() == 50 + 50 + 50 + 100 + 50


def test_strand_specific_buckets(simple_bam):
    source = AlignmentSource(simple_bam)
    regions = _regions(("chr1", 0, 200, "+"), ("chr1", 250, 400, "-"), ("chr1", 900, 1200, "*"))

    coverage = extract_coverage(source, regions, CoverageOptions(strand_specific=True))

    assert set(coverage) == {"+", "-", "*"}
    assert coverage["+"].total() == 100
    assert coverage["-"].total() == 50
    assert coverage["-"].value_at("chr1", 320) == 1.0
    assert coverage["*"].total() == 100
    assert coverage["*"].value_at("chr1", 1050) == 1.0


def test_strand_bucket_without_fragments_is_absent(simple_bam):
    source = AlignmentSource(simple_bam)

    # '-' regions over '+' reads only
    coverage = extract_coverage(source, _regions(("chr1", 0, 200, "-"), ("chr1", 900, 1200, "-")),
                                CoverageOptions(strand_specific=True))
    assert coverage == {}

    assert extract_coverage(source, _regions(("chr1", 5000, 6000))) == {}


def test_extension_is_anchored_at_five_prime_end(simple_bam):
    source = AlignmentSource(simple_bam)

    coverage = extract_coverage(source, _regions(("chr1", 0, 2000)), CoverageOptions(extend=20))["*"]

    # r1 [100, 150) + -> [100, 120); r2 [120, 170) + -> [120, 140)
    assert coverage.value_at("chr1", 110) == 1.0
    assert coverage.value_at("chr1", 125) == 1.0
    assert coverage.value_at("chr1", 145) == 0.0
    # r3 [300, 350) - -> [330, 350)
    assert coverage.value_at("chr1", 310) == 0.0
    assert coverage.value_at("chr1", 340) == 1.0
    assert coverage.total() == 4 * 20


def test_extension_widens_the_read_window(make_bam):
    path = make_bam("window", [("r1", "chr1", 180, 10, "-")])

    # the read ends 10 bp after the region start; its 50 bp extension covers the region
    coverage = extract_coverage(AlignmentSource(path), _regions(("chr1", 200, 300)), CoverageOptions(extend=50))

    assert coverage["*"].value_at("chr1", 150) == 1.0
    assert coverage["*"].value_at("chr1", 185) == 1.0


def test_weight_is_applied_after_accumulation(simple_bam):
    source = AlignmentSource(simple_bam)
    regions = _regions(("chr1", 0, 2000))

    raw = extract_coverage(source, regions)["*"]
    weighted = extract_coverage(source, regions, CoverageOptions(weight=rpm_weight(source)))["*"]

    assert rpm_weight(source) == pytest.approx(200000.0)
    assert weighted.equals(raw.scale(200000.0))
    assert weighted.value_at("chr1", 130) == pytest.approx(400000.0)


def test_paired_end_envelope_coverage(make_bam):
    path = make_bam("pairs", pairs=[("p1", "chr1", 100, 250, 50, "+")])
    source = AlignmentSource(path)

    coverage = extract_coverage(source, _regions(("chr1", 0, 1000)), CoverageOptions(paired_end=True))["*"]

    # the gap between the mates is covered
    assert coverage.value_at("chr1", 200) == 1.0
    assert coverage.total() == 200

    single = extract_coverage(source, _regions(("chr1", 0, 1000)))["*"]
    assert single.value_at("chr1", 200) == 0.0
    assert single.total() == 100


def test_rpm_weight_without_reads(make_bam):
    path = make_bam("empty", [])

    with pytest.raises(InsufficientDataError):
        rpm_weight(AlignmentSource(path))


def test_coverage_from_no_fragment():
    assert coverage_from_fragments(iter([])) is None


@pytest.mark.parametrize(
    "kwargs",
    [{"extend": -1}, {"weight": 0}, {"weight": -2.0}, {"paired_end_strand_mode": 4}],
)
def test_invalid_options(kwargs):
    with pytest.raises(ValidationError):
        CoverageOptions(**kwargs)
