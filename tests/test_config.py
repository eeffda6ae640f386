"""Tests for the layered parameter store and stage invalidation."""
import pytest

from metagene.config import MetageneConfig, ParameterStore, downstream_stages
from metagene.errors import ValidationError


def test_defaults():
    config = MetageneConfig()

    assert config.bin_count == 100
    assert config.alpha == 0.05
    assert config.sample_count == 1000
    assert config.resampling_strategy == "by_region"
    assert config.extend == 0
    assert config.strand_specific is False
    assert config.paired_end is False
    assert config.paired_end_strand_mode == 2
    assert config.normalization is None
    assert config.noise_removal is None
    assert config.core_count == 1
    assert config.region_filter is None


@pytest.mark.parametrize(
    "kwargs",
    [
        {"bin_count": 0},
        {"bin_count": 10.5},
        {"alpha": 0.0},
        {"sample_count": -1},
        {"resampling_strategy": "by_bin"},
        {"extend": -5},
        {"strand_specific": "yes"},
        {"paired_end_strand_mode": 3},
        {"normalization": "TPM"},
        {"noise_removal": "SES"},
        {"core_count": 0},
        {"core_count": True},
        {"region_filter": "not callable"},
        {"padding_size": -1},
        {"region_grouping": ["cell"]},
        {"seed": 1.5},
    ],
)
def test_invalid_config(kwargs):
    with pytest.raises(ValidationError):
        MetageneConfig(**kwargs)


def test_downstream_stages():
    assert downstream_stages("regions") == {"regions", "coverage", "grouped_coverage", "binned", "confidence"}
    assert downstream_stages("binned") == {"binned", "confidence"}
    assert downstream_stages("confidence") == {"confidence"}
    with pytest.raises(ValidationError):
        downstream_stages("plots")


def test_update_only_overrides_named_keys():
    store = ParameterStore(bin_count=50, alpha=0.1)

    store.update(bin_count=20)

    assert store.get("bin_count") == 20
    assert store.get("alpha") == 0.1
    assert store.get("sample_count") == 1000
    assert store.explicit() == {"bin_count": 20, "alpha": 0.1}


def test_bin_count_invalidates_binning_and_confidence_only():
    store = ParameterStore()

    dirty = store.update(bin_count=10)

    assert dirty == {"binned", "confidence"}
    assert "coverage" not in dirty
    assert "grouped_coverage" not in dirty


@pytest.mark.parametrize(
    "key, value, expected",
    [
        ("extend", 200, {"coverage", "grouped_coverage", "binned", "confidence"}),
        ("normalization", "RPM", {"coverage", "grouped_coverage", "binned", "confidence"}),
        ("noise_removal", "NCIS", {"grouped_coverage", "binned", "confidence"}),
        ("padding_size", 100, {"regions", "coverage", "grouped_coverage", "binned", "confidence"}),
        ("alpha", 0.01, {"confidence"}),
        ("seed", 3, {"confidence"}),
        ("core_count", 4, set()),
    ],
)
def test_dirty_stages(key, value, expected):
    assert ParameterStore().update(**{key: value}) == expected


def test_versions_bump_only_on_change():
    store = ParameterStore()

    assert store.version("bin_count") == 0
    store.update(bin_count=10)
    assert store.version("bin_count") == 1
    assert store.update(bin_count=10) == set()
    assert store.version("bin_count") == 1
    store.update(bin_count=100)
    assert store.version("bin_count") == 2
    assert store.version("alpha") == 0


def test_unknown_key():
    store = ParameterStore()

    with pytest.raises(ValidationError, match="bins"):
        store.update(bins=10)
    with pytest.raises(ValidationError):
        store.get("bins")


def test_invalid_update_is_atomic():
    store = ParameterStore(bin_count=50)

    with pytest.raises(ValidationError):
        store.update(bin_count=20, alpha=5)

    assert store.get("bin_count") == 50
    assert store.get("alpha") == 0.05
    assert store.version("bin_count") == 1


def test_region_grouping_is_coerced_to_tuple():
    store = ParameterStore(region_grouping=["cell", "mark"])

    assert store.get("region_grouping") == ("cell", "mark")
    assert store.update(region_grouping=("cell", "mark")) == set()
    assert store.update(region_grouping="cell") == {"binned", "confidence"}


def test_copy_is_independent():
    store = ParameterStore(bin_count=50)
    clone = store.copy()

    clone.update(bin_count=10)

    assert store.get("bin_count") == 50
    assert store.version("bin_count") == 1
    assert clone.version("bin_count") == 2
