import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
sys.path.append(str(ROOT))

from analytics.stats import (
    bucket_durations,
    calculate_average,
    calculate_median,
    calculate_percentile,
    calculate_std_dev,
    clamp_rate,
    describe,
    rate,
)


def test_empty_input_is_zero():
    assert calculate_average([]) == 0
    assert calculate_median([]) == 0
    assert calculate_percentile([], 90) == 0


def test_average_and_median():
    assert calculate_average([10, 20, 60]) == 30
    assert calculate_median([7, 1, 3]) == 3
    assert calculate_median([4, 1, 3, 2]) == 2.5


@pytest.mark.parametrize(
    "values",
    [[5], [3, 1], [9, 2, 7], [10, 40, 20, 30], [1.5, 8.25, 3.0, 3.0, 100.0, 42.0]],
)
def test_percentile_50_matches_median(values):
    assert calculate_percentile(values, 50) == pytest.approx(calculate_median(values))


def test_percentile_interpolates_between_neighbours():
    values = [40, 10, 30, 20]
    # index = 0.25 * 3 = 0.75 -> 10 * 0.25 + 20 * 0.75
    assert calculate_percentile(values, 25) == pytest.approx(17.5)
    assert calculate_percentile(values, 0) == 10
    assert calculate_percentile(values, 100) == 40


def test_percentile_out_of_range_is_clamped():
    assert calculate_percentile([1, 2, 3], 150) == 3
    assert calculate_percentile([1, 2, 3], -5) == 1


def test_bucket_boundaries():
    counts = bucket_durations([1, 59, 60, 179, 180, 299, 300, 599, 600, 3599])
    assert counts == {
        "under1min": 2,
        "1to3min": 2,
        "3to5min": 2,
        "5to10min": 2,
        "over10min": 2,
    }


def test_rate_and_clamp():
    assert rate(1, 0) == 0
    assert rate(2, 3) == pytest.approx(66.666, rel=1e-3)
    assert rate(-1, 3) == 0
    assert rate(5, 3) == 100
    assert clamp_rate(-12.5) == 0
    assert clamp_rate(140) == 100


def test_std_dev_is_population():
    assert calculate_std_dev([]) == 0
    assert calculate_std_dev([5, 5, 5]) == 0
    assert calculate_std_dev([2, 4, 4, 4, 5, 5, 7, 9]) == pytest.approx(2.0)


def test_describe_summarises_values():
    assert describe([]) == {}

    summary = describe([40, 10, 30, 20])
    assert summary["count"] == 4
    assert summary["mean"] == 25
    assert summary["median"] == 25
    assert summary["min"] == 10
    assert summary["max"] == 40
    assert summary["p25"] == pytest.approx(17.5)
    assert summary["p75"] == pytest.approx(32.5)
    assert summary["stdDev"] == pytest.approx(11.1803, rel=1e-4)
