from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Sequence

import xarray as xr

from .aggregation import AggregatedGrid, Reduction, group_by_key, filter_years, reduce_group, window_mean
from .errors import EmptyGroupError, SkipReason
from .timecodec import CalendarKey, days_in_month


@dataclass(frozen=True)
class ClimatologyWindow:
    start_year: int
    end_year: int

    def __post_init__(self) -> None:
        if self.start_year > self.end_year:
            raise ValueError(f"Window start {self.start_year} is after its end {self.end_year}")

    @property
    def label(self) -> str:
        return f"{self.start_year}_{self.end_year}"

    def __str__(self) -> str:
        return f"{self.start_year}-{self.end_year}"


def annual_climatology(
    annual_grids: Sequence[xr.DataArray],
    years: Sequence[int],
    start_year: int,
    end_year: int,
) -> AggregatedGrid:
    """
    Long-term mean of annual-total grids whose year is in ``[start_year, end_year]``.

    Inputs are already totals, so no day-count weighting is applied.
    """
    result = window_mean(annual_grids, list(years), start_year, end_year)
    result.grid.attrs["long_term_window"] = f"{start_year}-{end_year}"
    return result


def monthly_climatology(
    monthly_grids: Sequence[xr.DataArray],
    keys: Sequence[CalendarKey],
    start_year: int,
    end_year: int,
) -> Dict[int, AggregatedGrid]:
    """
    Compute a representative monthly total for each calendar month.

    Parameters
    ----------
    monthly_grids:
        Daily-average grids (mm/day), one per ``keys`` entry.
    keys:
        Calendar key of every grid.
    start_year, end_year:
        Inclusive year window.

    Returns
    -------
    dict
        Month number to the window mean of that month scaled once by
        ``days_in_month``.
    """
    if not monthly_grids:
        raise EmptyGroupError(SkipReason.NO_CANDIDATES, "No monthly grids at all.")
    selected = filter_years(keys, start_year, end_year)
    if not selected:
        raise EmptyGroupError(
            SkipReason.EMPTY_FOR_RANGE,
            f"No monthly grids for the range {start_year}-{end_year}.",
        )

    window_keys = [keys[i] for i in selected]
    by_month = group_by_key(window_keys, lambda key: key.month)

    climatology: Dict[int, AggregatedGrid] = {}
    for month, positions in by_month.items():
        members = [monthly_grids[selected[p]] for p in positions]
        member_keys = [window_keys[p] for p in positions]
        mean = reduce_group(members, member_keys, Reduction.MEAN)
        total = mean.grid * days_in_month(month)
        total.attrs.update(mean.grid.attrs)
        total.attrs["long_term_window"] = f"{start_year}-{end_year}"
        climatology[month] = AggregatedGrid(
            grid=total,
            operator=Reduction.MEAN,
            keys=mean.keys,
            weighting="days_in_month",
            year_range=(start_year, end_year),
        )
    return climatology
