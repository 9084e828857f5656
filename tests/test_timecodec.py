import pytest

from era5_precip.errors import ParseError
from era5_precip.timecodec import (
    DAYS_IN_MONTH,
    MONTH_LABELS,
    CalendarKey,
    TokenPattern,
    band_label,
    days_in_month,
    key_from_band_timestamp,
    key_from_name,
    month_label,
    year_from_name,
)


def test_days_in_month_fixed_table():
    expected = [31, 28, 31, 30, 31, 30, 31, 31, 30, 31, 30, 31]
    assert [days_in_month(m) for m in range(1, 13)] == expected
    assert sum(DAYS_IN_MONTH.values()) == 365


@pytest.mark.parametrize("month", [0, 13, -1])
def test_days_in_month_rejects_out_of_range(month):
    with pytest.raises(ValueError):
        days_in_month(month)


def test_month_labels():
    assert month_label(1) == "Jan"
    assert month_label(12) == "Dec"
    assert len(MONTH_LABELS) == 12
    assert CalendarKey(1940, 9).label == "Sep"


def test_key_from_name_default_pattern():
    assert key_from_name("ERA5.TotalPrecipitation.1942.04.tif") == CalendarKey(1942, 4)
    assert key_from_name("/data/Input/ERA5.TotalPrecipitation.1940.12.tif") == CalendarKey(1940, 12)


def test_key_from_name_custom_pattern():
    pattern = TokenPattern(separator="_", year_index=1, month_index=2)
    assert key_from_name("precip_1999_07.tif", pattern) == CalendarKey(1999, 7)


@pytest.mark.parametrize(
    "name",
    [
        "ERA5.TotalPrecipitation.19x2.04.tif",
        "ERA5.TotalPrecipitation.1942.13.tif",
        "ERA5.TotalPrecipitation.1942.00.tif",
        "ERA5.tif",
    ],
)
def test_key_from_name_rejects_malformed(name):
    with pytest.raises(ParseError):
        key_from_name(name)


def test_year_from_annual_name():
    pattern = TokenPattern(year_index=2, month_index=None)
    assert year_from_name("Falcon.AnnualPrecipitation.1942.tif", pattern) == 1942
    with pytest.raises(ParseError):
        key_from_name("Falcon.AnnualPrecipitation.1942.tif", pattern)


def test_key_from_band_timestamp_before_epoch():
    # 1940-01-01T00:00:00Z
    assert key_from_band_timestamp("tp_valid_time=-946771200") == CalendarKey(1940, 1, 1)


def test_key_from_band_timestamp_truncates_to_month():
    # 1970-03-15T12:00:00Z
    assert key_from_band_timestamp("tp_valid_time=6350400") == CalendarKey(1970, 3, 1)


@pytest.mark.parametrize("label", ["tp_valid_time", "tp_valid_time=abc", "tp_valid_time=", "tp=nan"])
def test_key_from_band_timestamp_rejects_malformed(label):
    with pytest.raises(ParseError):
        key_from_band_timestamp(label)


def test_band_label_is_parseable():
    label = band_label("tp", "valid_time", -946771200)
    assert label == "tp_valid_time=-946771200"
    assert key_from_band_timestamp(label) == CalendarKey(1940, 1)


def test_calendar_keys_sort_chronologically():
    keys = [CalendarKey(1941, 1), CalendarKey(1940, 12), CalendarKey(1940, 2)]
    assert sorted(keys) == [CalendarKey(1940, 2), CalendarKey(1940, 12), CalendarKey(1941, 1)]
    assert str(CalendarKey(1940, 2)) == "1940-02"


def test_calendar_key_rejects_bad_month():
    with pytest.raises(ParseError):
        CalendarKey(1940, 13)


def test_custom_separator_ignores_extension():
    pattern = TokenPattern(separator="_", year_index=1, month_index=2)
    assert key_from_name("precip_1999_07.tif", pattern) == CalendarKey(1999, 7)
    assert year_from_name("annual_2001.tif", TokenPattern(separator="_", year_index=1, month_index=None)) == 2001


@pytest.mark.parametrize("name", ["ERA5.TotalPrecipitation.1942.0².tif", "ERA5.TotalPrecipitation.١٩٤٢.01.tif"])
def test_key_from_name_rejects_non_ascii_digits(name):
    with pytest.raises(ParseError):
        key_from_name(name)
