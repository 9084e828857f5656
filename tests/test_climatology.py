import numpy as np
import pytest

from era5_precip.climatology import ClimatologyWindow, annual_climatology, monthly_climatology
from era5_precip.errors import EmptyGroupError, SkipReason
from era5_precip.timecodec import CalendarKey


def test_seven_constant_years_average_to_same_value(constant_grid):
    years = list(range(1942, 1949))
    result = annual_climatology([constant_grid(100.0) for _ in years], years, 1942, 1948)
    np.testing.assert_allclose(result.grid.values, 100.0)
    assert result.year_range == (1942, 1948)
    assert result.weighting == "none"


def test_annual_climatology_mean(constant_grid):
    grids = [constant_grid(v) for v in (90.0, 100.0, 110.0)]
    result = annual_climatology(grids, [1942, 1943, 1944], 1942, 1948)
    np.testing.assert_allclose(result.grid.values, 100.0)


def test_annual_climatology_ignores_years_outside_window(constant_grid):
    grids = [constant_grid(v) for v in (10.0, 100.0, 1000.0)]
    result = annual_climatology(grids, [1941, 1942, 1949], 1942, 1948)
    np.testing.assert_allclose(result.grid.values, 100.0)
    assert result.keys == (1942,)


def test_monthly_climatology_scales_once_by_days(constant_grid):
    keys = [CalendarKey(1940, 1), CalendarKey(1941, 1), CalendarKey(1940, 2), CalendarKey(1939, 2)]
    grids = [constant_grid(v) for v in (1.0, 3.0, 2.0, 50.0)]
    result = monthly_climatology(grids, keys, 1940, 1941)
    assert sorted(result) == [1, 2]
    np.testing.assert_allclose(result[1].grid.values, 62.0)
    np.testing.assert_allclose(result[2].grid.values, 56.0)
    assert result[2].weighting == "days_in_month"
    assert result[1].year_range == (1940, 1941)


def test_empty_windows_have_distinct_reasons(constant_grid):
    with pytest.raises(EmptyGroupError) as info:
        monthly_climatology([], [], 1940, 1941)
    assert info.value.reason is SkipReason.NO_CANDIDATES

    with pytest.raises(EmptyGroupError) as info:
        monthly_climatology([constant_grid(1.0)], [CalendarKey(1940, 1)], 1950, 1960)
    assert info.value.reason is SkipReason.EMPTY_FOR_RANGE

    with pytest.raises(EmptyGroupError) as info:
        annual_climatology([constant_grid(1.0)], [1942], 1950, 1960)
    assert info.value.reason is SkipReason.EMPTY_FOR_RANGE


def test_climatology_window():
    window = ClimatologyWindow(1942, 1948)
    assert window.label == "1942_1948"
    assert str(window) == "1942-1948"
    with pytest.raises(ValueError):
        ClimatologyWindow(1960, 1950)
