"""Tests for the statistics kernel."""

import sys
from pathlib import Path

import pytest

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from marginscan.errors import EmptyInputError
from marginscan.stats import mean, median, percentile, stddev, summarize


def test_percentile_empty_raises_empty_input_error():
    """Verify percentile calculation refuses an empty sample."""
    with pytest.raises(EmptyInputError):
        percentile([], 0.5)


def test_percentile_out_of_range_raises_value_error():
    """Verify percentile rejects fractions outside [0, 1]."""
    with pytest.raises(ValueError):
        percentile([1.0, 2.0], 1.5)
    with pytest.raises(ValueError):
        percentile([1.0, 2.0], -0.1)


def test_percentile_single_value_returns_same_for_common_percentiles():
    """Verify all percentiles of a single-item sample return that item."""
    values = [42.0]
    assert percentile(values, 0.25) == 42.0
    assert percentile(values, 0.5) == 42.0
    assert percentile(values, 0.75) == 42.0


def test_percentile_interpolates_between_neighbouring_ranks():
    """Verify linear interpolation at rank p * (n - 1)."""
    values = [10.0, 20.0, 30.0, 40.0]
    assert percentile(values, 0.0) == pytest.approx(10.0)
    assert percentile(values, 0.25) == pytest.approx(17.5)
    assert percentile(values, 0.5) == pytest.approx(25.0)
    assert percentile(values, 0.75) == pytest.approx(32.5)
    assert percentile(values, 1.0) == pytest.approx(40.0)


@pytest.mark.parametrize(
    "samples",
    [
        [5.0],
        [3.0, 1.0],
        [50.0, 10.0, 40.0, 20.0, 30.0],
        [12.5, 12.5, 12.5, 7.0],
    ],
)
def test_median_matches_fiftieth_percentile(samples):
    """Verify median equals the 0.5 percentile of the sorted sample."""
    assert median(samples) == percentile(sorted(samples), 0.5)


def test_median_is_independent_of_input_order():
    """Verify median sorts internally."""
    assert median([50.0, 10.0, 30.0, 20.0, 40.0]) == 30.0
    assert median([40.0, 10.0, 30.0, 20.0]) == 25.0


def test_mean_and_empty_mean():
    """Verify arithmetic mean and its empty-input guard."""
    assert mean([10.0, 20.0, 60.0]) == pytest.approx(30.0)
    with pytest.raises(EmptyInputError):
        mean([])


def test_stddev_is_population_standard_deviation():
    """Verify standard deviation divides by n, not n - 1."""
    assert stddev([2.0, 4.0, 4.0, 4.0, 5.0, 5.0, 7.0, 9.0]) == pytest.approx(2.0)


def test_stddev_single_sample_is_zero_and_empty_raises():
    """Verify a lone sample has no spread and an empty sample is rejected."""
    assert stddev([17.0]) == 0.0
    with pytest.raises(EmptyInputError):
        stddev([])


def test_summarize_sorts_once_and_reports_quartiles():
    """Verify summary statistics over an unsorted margin sample."""
    summary = summarize([30.0, 50.0, 10.0, 40.0, 20.0])

    assert summary.count == 5
    assert summary.p25 == pytest.approx(20.0)
    assert summary.median == pytest.approx(30.0)
    assert summary.p75 == pytest.approx(40.0)
    assert summary.mean == pytest.approx(30.0)


def test_summarize_empty_raises():
    """Verify summarizing no samples is treated as a caller bug."""
    with pytest.raises(EmptyInputError):
        summarize([])
