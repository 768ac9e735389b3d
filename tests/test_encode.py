import math

import pytest

from co2map.aggregate import Aggregate
from co2map.encode import (
    EncodingRange,
    color_bucket,
    compute_ranges,
    encode,
    marker_radius,
)


def aggs(*values, metric="emissions"):
    return {
        f"k{i}": Aggregate(key=f"k{i}", metrics={metric: v}, count=1, coordinates=(40.0, -3.0))
        for i, v in enumerate(values)
    }


def test_ranges_ignore_non_finite_values():
    ranges = compute_ranges(aggs(3.0, math.inf, 10.0, math.nan, 1.0).values(), ["emissions"])
    assert ranges["emissions"] == EncodingRange("emissions", 1.0, 10.0)


def test_missing_metric_has_empty_range():
    rng = compute_ranges(aggs(1.0).values(), ["population"])["population"]
    assert rng.min is None and rng.max is None and rng.degenerate


def test_every_finite_value_within_range():
    values = [5.0, 0.5, 12.0, 7.25]
    rng = compute_ranges(aggs(*values).values(), ["emissions"])["emissions"]
    assert all(rng.min <= v <= rng.max for v in values)


@pytest.mark.parametrize(
    "value, bucket",
    [(10.0, "high"), (7.0, "high"), (6.9, "medium"), (5.0, "medium"), (4.0, "low"), (0.0, "low")],
)
def test_color_buckets(value, bucket):
    assert color_bucket(value, EncodingRange("emissions", 0.0, 10.0)) == bucket


def test_degenerate_range_is_neutral_with_min_radius():
    rng = EncodingRange("emissions", 5.0, 5.0)
    assert color_bucket(5.0, rng) == "neutral"
    assert marker_radius(5.0, rng) == 8.0
    assert color_bucket(math.nan, EncodingRange("emissions", 0.0, 1.0)) == "neutral"


def test_radius_interpolates_and_scales_with_zoom():
    rng = EncodingRange("emissions", 0.0, 10.0)
    assert marker_radius(0.0, rng) == 8.0
    assert marker_radius(10.0, rng) == 50.0
    assert marker_radius(5.0, rng) == 29.0
    assert marker_radius(10.0, rng, zoom=12) == 100.0


def test_encode_is_order_independent():
    forward = aggs(1.0, 5.0, 10.0)
    backward = dict(reversed(list(forward.items())))
    assert encode(forward, ["emissions"]) == encode(backward, ["emissions"])

    markers = encode(forward, ["emissions"])
    assert [m.bucket for m in markers] == ["low", "medium", "high"]
    assert markers[2].color == "#ef4444"


def test_encode_requires_a_metric():
    with pytest.raises(ValueError):
        encode(aggs(1.0), [])
