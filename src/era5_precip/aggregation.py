from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Hashable, Iterable, List, Optional, Sequence, Tuple, TypeVar

import numpy as np
import xarray as xr
import rioxarray  # noqa: F401

from .errors import EmptyGroupError, GridMismatch, SkipReason
from .timecodec import CalendarKey, days_for_key

logger = logging.getLogger(__name__)

T = TypeVar("T")
K = TypeVar("K", bound=Hashable)

MEMBER_DIM = "member"
_DROPPED_ATTRS = ("_FillValue", "long_name", "scale_factor", "add_offset")


class Reduction(str, Enum):
    MEAN = "mean"
    WEIGHTED_SUM = "weighted_sum"


@dataclass(frozen=True)
class AggregatedGrid:
    grid: xr.DataArray
    operator: Reduction
    keys: Tuple[CalendarKey | int, ...]
    weighting: str = "none"
    year_range: Optional[Tuple[int, int]] = None


@dataclass(frozen=True)
class GroupOutcome:
    """Result of one calendar group or climatology window."""

    label: str
    outputs: Tuple[Path, ...] = ()
    skip_reason: Optional[SkipReason] = None
    detail: str = ""

    @property
    def skipped(self) -> bool:
        return self.skip_reason is not None

    @classmethod
    def produced(cls, label: str, outputs: Iterable[Path], detail: str = "") -> "GroupOutcome":
        return cls(label=label, outputs=tuple(outputs), detail=detail)

    @classmethod
    def skip(cls, label: str, error: EmptyGroupError) -> "GroupOutcome":
        return cls(label=label, skip_reason=error.reason, detail=str(error))


@dataclass
class RunSummary:
    stage: str
    outcomes: List[GroupOutcome] = field(default_factory=list)

    def extend(self, outcomes: Iterable[GroupOutcome]) -> None:
        self.outcomes.extend(outcomes)

    @property
    def produced(self) -> List[GroupOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.skipped]

    @property
    def skipped(self) -> List[GroupOutcome]:
        return [outcome for outcome in self.outcomes if outcome.skipped]

    @property
    def outputs(self) -> List[Path]:
        return [path for outcome in self.produced for path in outcome.outputs]

    def log_report(self, log: logging.Logger = logger) -> None:
        log.info(
            "%s: %d group(s) produced, %d skipped, %d file(s) written",
            self.stage,
            len(self.produced),
            len(self.skipped),
            len(self.outputs),
        )
        for outcome in self.skipped:
            log.warning("%s: skipped %s [%s] %s", self.stage, outcome.label, outcome.skip_reason.value, outcome.detail)

    def lines(self) -> List[str]:
        lines = [f"{self.stage}: {len(self.produced)} produced, {len(self.skipped)} skipped"]
        lines.extend(f"  skipped {o.label} ({o.skip_reason.value}): {o.detail}" for o in self.skipped)
        return lines


def group_by_key(items: Sequence[T], key_fn: Optional[Callable[[T], K]] = None) -> Dict[K, List[int]]:
    """
    Map each distinct key to the positions of the items that carry it.

    Groups are returned in sorted key order; order within a group follows the
    input positions.
    """
    groups: Dict[K, List[int]] = {}
    for position, item in enumerate(items):
        key = key_fn(item) if key_fn is not None else item
        groups.setdefault(key, []).append(position)
    return {key: groups[key] for key in sorted(groups)}


def filter_years(keys: Sequence[CalendarKey | int], start_year: int, end_year: int) -> List[int]:
    """Positions whose year lies in the inclusive ``[start_year, end_year]`` range."""
    if start_year > end_year:
        raise ValueError(f"start_year {start_year} is after end_year {end_year}")
    selected = []
    for position, key in enumerate(keys):
        year = key.year if isinstance(key, CalendarKey) else int(key)
        if start_year <= year <= end_year:
            selected.append(position)
    return selected


def stack_grids(grids: Sequence[xr.DataArray]) -> xr.DataArray:
    """Concatenate same-geometry grids along a new ``member`` dimension."""
    if not grids:
        raise EmptyGroupError(SkipReason.NO_CANDIDATES, "No grids to stack.")
    reference_crs = grids[0].rio.crs
    for grid in grids[1:]:
        if grid.rio.crs != reference_crs:
            raise GridMismatch(f"Grids have different CRS: {reference_crs} vs {grid.rio.crs}")
        if grid.shape != grids[0].shape:
            raise GridMismatch(f"Grids have different shapes: {grids[0].shape} vs {grid.shape}")
    try:
        stacked = xr.concat(list(grids), dim=MEMBER_DIM, join="exact", coords="minimal", compat="override")
    except ValueError as exc:
        raise GridMismatch(f"Grids do not share geometry: {exc}") from exc
    return stacked


def _finish(result: xr.DataArray, template: xr.DataArray, units: Optional[str]) -> xr.DataArray:
    result.attrs = {k: v for k, v in template.attrs.items() if k not in _DROPPED_ATTRS}
    if units:
        result.attrs["units"] = units
    if template.rio.crs is not None:
        result = result.rio.write_crs(template.rio.crs)
    return result.rio.write_nodata(np.nan, encoded=False)


def reduce_group(
    grids: Sequence[xr.DataArray],
    keys: Sequence[CalendarKey | int],
    op: Reduction = Reduction.MEAN,
    weight_fn: Callable[[CalendarKey], float] = days_for_key,
) -> AggregatedGrid:
    """
    Reduce a group of same-geometry grids cell by cell.

    ``Reduction.MEAN`` averages the valid inputs of every cell.
    ``Reduction.WEIGHTED_SUM`` scales each grid by ``weight_fn(key)`` (days in
    the month by default) before summing, turning daily averages into totals.
    In both cases a cell is NaN only when every input is NaN there.
    """
    if len(grids) != len(keys):
        raise ValueError(f"Got {len(grids)} grids but {len(keys)} calendar keys")
    if not grids:
        raise EmptyGroupError(SkipReason.NO_CANDIDATES, "No grids in group.")

    op = Reduction(op)
    stacked = stack_grids(grids)
    units = grids[0].attrs.get("units")

    if op is Reduction.MEAN:
        reduced = stacked.mean(dim=MEMBER_DIM, skipna=True)
        weighting = "none"
    else:
        weights = xr.DataArray(
            np.array([weight_fn(key) for key in keys], dtype="float64"), dims=MEMBER_DIM
        )
        reduced = (stacked * weights).sum(dim=MEMBER_DIM, skipna=True, min_count=1)
        weighting = getattr(weight_fn, "__name__", "custom")

    reduced = _finish(reduced, grids[0], units)
    years = [key.year if isinstance(key, CalendarKey) else int(key) for key in keys]
    return AggregatedGrid(
        grid=reduced,
        operator=op,
        keys=tuple(keys),
        weighting=weighting,
        year_range=(min(years), max(years)),
    )


def window_mean(
    grids: Sequence[xr.DataArray],
    keys: Sequence[CalendarKey | int],
    start_year: int,
    end_year: int,
) -> AggregatedGrid:
    """Unweighted mean of the grids whose year is in ``[start_year, end_year]``."""
    if not grids:
        raise EmptyGroupError(SkipReason.NO_CANDIDATES, "No candidate grids at all.")
    selected = filter_years(keys, start_year, end_year)
    if not selected:
        raise EmptyGroupError(
            SkipReason.EMPTY_FOR_RANGE,
            f"No grids for the range {start_year}-{end_year}.",
        )
    result = reduce_group([grids[i] for i in selected], [keys[i] for i in selected], Reduction.MEAN)
    return AggregatedGrid(
        grid=result.grid,
        operator=Reduction.MEAN,
        keys=result.keys,
        weighting="none",
        year_range=(start_year, end_year),
    )


def area_mean(grid: xr.DataArray) -> float:
    """Spatial mean of the valid cells; NaN when the grid has none."""
    values = np.asarray(grid.values, dtype="float64")
    valid = values[np.isfinite(values)]
    if valid.size == 0:
        return float("nan")
    return float(valid.mean())
