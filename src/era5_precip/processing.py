from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import dask
import pandas as pd
import xarray as xr

from .aggregation import (
    MEMBER_DIM,
    GroupOutcome,
    Reduction,
    RunSummary,
    area_mean,
    filter_years,
    group_by_key,
    reduce_group,
    stack_grids,
)
from .climatology import ClimatologyWindow, annual_climatology, monthly_climatology
from .config import PipelineConfig
from .errors import EmptyGroupError, ParseError, RunCancelled, SkipReason
from .extraction import ExtractionRecord, Site, reports_by_site, sample, sites_from_frame, to_monthly_totals
from .io import (
    BAND_LABELS,
    clear_directory,
    discover_files,
    ensure_directory,
    load_band_stack,
    load_grid,
    read_band_labels,
    read_site_table,
    require_files,
    stage_outputs,
    write_grid,
    write_table,
)
from .masking import crop_and_mask, load_aoi
from .timecodec import CalendarKey, days_in_month, key_from_band_timestamp, key_from_name, year_from_name
from .units import mask_nodata, to_millimeters

logger = logging.getLogger(__name__)

StopCheck = Optional[Callable[[], bool]]
GroupTask = Tuple[str, Callable[[], GroupOutcome]]

MONTHLY_GLOB = "*.tif"


def _check_stop(should_stop: StopCheck, stage: str) -> None:
    if should_stop is not None and should_stop():
        raise RunCancelled(f"{stage} cancelled before completion")


def _run_groups(tasks: Sequence[GroupTask], workers: int, should_stop: StopCheck, stage: str) -> List[GroupOutcome]:
    """
    Run independent group tasks and return their outcomes in task order.

    An empty group becomes a skipped outcome; any other error propagates.
    With ``workers > 1`` the tasks are computed on dask's threaded scheduler.
    """

    def guarded(label: str, task: Callable[[], GroupOutcome]) -> GroupOutcome:
        _check_stop(should_stop, stage)
        try:
            return task()
        except EmptyGroupError as exc:
            logger.warning("%s: skipping %s [%s] %s", stage, label, exc.reason.value, exc)
            return GroupOutcome.skip(label, exc)

    if workers <= 1 or len(tasks) <= 1:
        return [guarded(label, task) for label, task in tasks]

    logger.info("%s: computing %d group(s) on %d worker threads", stage, len(tasks), workers)
    delayed_results = [dask.delayed(guarded, pure=False)(label, task) for label, task in tasks]
    return list(dask.compute(*delayed_results, scheduler="threads", num_workers=workers))


def _require_unique(keys: Sequence[CalendarKey], source: str) -> None:
    seen = set()
    for key in keys:
        if key in seen:
            raise ParseError(f"Calendar key {key} appears more than once in {source}")
        seen.add(key)


def _prepare_output(folder: Path, clean: bool) -> Path:
    if clean:
        clear_directory(folder)
    return ensure_directory(folder)


def _write(grid: xr.DataArray, path: Path, written: List[Path]) -> Path:
    write_grid(grid, path)
    written.append(path)
    logger.debug("Wrote %s", path)
    return path


def _monthly_inputs(config: PipelineConfig) -> Tuple[List[Path], List[CalendarKey]]:
    files = require_files(config.layout.monthly, MONTHLY_GLOB, "monthly grids")
    keys = [key_from_name(path.name, config.monthly_pattern) for path in files]
    _require_unique(keys, str(config.layout.monthly))
    order = sorted(range(len(files)), key=lambda i: keys[i])
    return [files[i] for i in order], [keys[i] for i in order]


def _load_masked(path: Path, config: PipelineConfig) -> xr.DataArray:
    return mask_nodata(load_grid(path), config.nodata_value, config.nodata_epsilon)


def monthly_file_name(config: PipelineConfig, key: CalendarKey) -> str:
    return f"{config.source_prefix}.{config.variable_name}.{key.year:04d}.{key.month:02d}.tif"


def _source_keys(raw_files: Sequence[Path], variable: Optional[str]) -> Dict[Path, List[CalendarKey]]:
    """Decode every source's band keys and reject a month claimed by two sources."""
    keys_by_source: Dict[Path, List[CalendarKey]] = {}
    owners: Dict[CalendarKey, Path] = {}
    for path in raw_files:
        keys = [key_from_band_timestamp(label) for label in read_band_labels(path, variable=variable)]
        _require_unique(keys, path.name)
        for key in keys:
            if key in owners:
                raise ParseError(f"Calendar key {key} appears in both {owners[key].name} and {path.name}")
            owners[key] = path
        keys_by_source[path] = keys
    return keys_by_source


def export_monthly_grids(config: PipelineConfig, *, should_stop: StopCheck = None) -> RunSummary:
    """
    Split raw multi-band sources into one AOI-masked mm/day GeoTIFF per month.

    Every raw file is one group. Band timestamps give the calendar keys and
    each month may come from one source only; sentinel cells become NaN and
    values are scaled from metres to millimetres.
    """
    stage = "export"
    config.validate()
    layout = config.layout
    aoi = load_aoi(layout.aoi, config.aoi_pattern)
    raw_files = require_files(layout.raw, config.raw_pattern, "raw precipitation files")
    keys_by_source = _source_keys(raw_files, config.raw_variable)
    output_dir = _prepare_output(layout.monthly, config.clean_outputs)

    summary = RunSummary(stage)
    with stage_outputs(stage) as written:

        def export_source(path: Path) -> GroupOutcome:
            stack, _ = load_band_stack(path, variable=config.raw_variable, crs_epsg=config.crs_epsg)
            keys = keys_by_source[path]

            stack = crop_and_mask(stack, aoi)
            stack = mask_nodata(stack, config.nodata_value, config.nodata_epsilon)
            stack = to_millimeters(stack, config.conversion_factor)
            stack.attrs.pop("long_name", None)

            outputs = []
            for position, key in enumerate(keys):
                grid = stack.isel(band=position).drop_vars(["band", BAND_LABELS], errors="ignore")
                outputs.append(_write(grid, output_dir / monthly_file_name(config, key), written))
            logger.info("Exported %d monthly grid(s) from %s", len(outputs), path.name)
            return GroupOutcome.produced(path.name, outputs, detail=f"{keys[0]}..{keys[-1]}")

        tasks = [(path.name, (lambda p=path: export_source(p))) for path in raw_files]
        summary.extend(_run_groups(tasks, config.workers, should_stop, stage))

    summary.log_report(logger)
    return summary


def summarize_precipitation(config: PipelineConfig, *, should_stop: StopCheck = None) -> RunSummary:
    """
    Build the area-averaged monthly series and one annual-total grid per year.

    Parameters
    ----------
    config:
        Pipeline configuration; monthly grids are read from ``Input``.
    should_stop:
        Optional callable checked before every year group.

    Returns
    -------
    RunSummary
        One outcome per year plus one for the area series table.
    """
    stage = "summary"
    config.validate()
    layout = config.layout
    aoi = load_aoi(layout.aoi, config.aoi_pattern)
    files, keys = _monthly_inputs(config)
    table_dir = _prepare_output(layout.area_outcome, config.clean_outputs)
    raster_dir = _prepare_output(layout.raster_outcome, config.clean_outputs)
    region = config.region_label

    rows_by_year: Dict[int, List[dict]] = {}
    summary = RunSummary(stage)
    with stage_outputs(stage) as written:

        def summarize_year(year: int, positions: List[int]) -> GroupOutcome:
            grids, year_keys, rows = [], [], []
            for position in positions:
                key = keys[position]
                grid = crop_and_mask(_load_masked(files[position], config), aoi)
                rows.append(
                    {
                        "State": region.upper(),
                        "Year": key.year,
                        "Month": key.month,
                        "Precipitation_mm": area_mean(grid) * days_in_month(key.month),
                    }
                )
                grids.append(grid)
                year_keys.append(key)
            rows_by_year[year] = rows

            if len(grids) < 12:
                logger.warning("Year %d has only %d monthly grid(s); annual total is partial", year, len(grids))
            annual = reduce_group(grids, year_keys, Reduction.WEIGHTED_SUM)
            path = _write(annual.grid, raster_dir / f"{region}.AnnualPrecipitation.{year}.tif", written)
            return GroupOutcome.produced(str(year), [path], detail=f"{len(grids)} month(s)")

        by_year = group_by_key(keys, lambda key: key.year)
        tasks = [
            (str(year), (lambda y=year, p=positions: summarize_year(y, p)))
            for year, positions in by_year.items()
        ]
        summary.extend(_run_groups(tasks, config.workers, should_stop, stage))

        rows = [row for year in sorted(rows_by_year) for row in rows_by_year[year]]
        series = pd.DataFrame(rows, columns=["State", "Year", "Month", "Precipitation_mm"])
        series = series.sort_values(["Year", "Month"]).reset_index(drop=True)
        series["Precipitation_mm"] = series["Precipitation_mm"].round(3)
        table_path = write_table(series, table_dir / f"{region}_Precipitation.csv")
        written.append(table_path)
        logger.info("Monthly time series saved to: %s", table_path)
        summary.extend([GroupOutcome.produced("area series", [table_path], detail=f"{len(series)} month(s)")])

    summary.log_report(logger)
    return summary


def _sample_by_year(
    config: PipelineConfig,
    files: Sequence[Path],
    keys: Sequence[CalendarKey],
    sites: Sequence[Site],
    should_stop: StopCheck,
    stage: str,
) -> List[ExtractionRecord]:
    """Sample the monthly grids one calendar year at a time, so only one year is held in memory."""
    records: List[ExtractionRecord] = []
    for year, positions in group_by_key(keys, lambda key: key.year).items():
        _check_stop(should_stop, stage)
        stack = stack_grids([_load_masked(files[i], config) for i in positions])
        year_records = sample(stack, [keys[i] for i in positions], sites, config.site_crs, band_dim=MEMBER_DIM)
        records.extend(to_monthly_totals(year_records))
        logger.debug("Sampled %d site(s) for %d", len(sites), year)
    return records


def report_sites(config: PipelineConfig, *, should_stop: StopCheck = None) -> RunSummary:
    """Write one monthly-total report per site and the site table with its assigned ids."""
    stage = "sites"
    config.validate()
    layout = config.layout
    table = read_site_table(config.site_table_path)
    table, sites = sites_from_frame(table, config.longitude_column, config.latitude_column)
    logger.info("Loaded %d site(s) from %s", len(sites), config.site_table_path.name)

    files, keys = _monthly_inputs(config)
    records = _sample_by_year(config, files, keys, sites, should_stop, stage)
    reports = reports_by_site(records)
    output_dir = _prepare_output(layout.site_outcome, config.clean_outputs)

    summary = RunSummary(stage)
    with stage_outputs(stage) as written:

        def write_report(site: str) -> GroupOutcome:
            path = write_table(reports[site], output_dir / f"{site}.csv")
            written.append(path)
            return GroupOutcome.produced(site, [path], detail=f"{len(reports[site])} year(s)")

        tasks = [(site, (lambda s=site: write_report(s))) for site in reports]
        summary.extend(_run_groups(tasks, config.workers, should_stop, stage))

        ids_path = write_table(table, output_dir / "Sites_ID.csv", bom=True)
        written.append(ids_path)
        summary.extend([GroupOutcome.produced("site ids", [ids_path])])

    summary.log_report(logger)
    return summary


def _annual_window_task(
    config: PipelineConfig,
    window: ClimatologyWindow,
    files: Sequence[Path],
    output_dir: Path,
    written: List[Path],
) -> GroupOutcome:
    if not files:
        raise EmptyGroupError(SkipReason.NO_CANDIDATES, f"No annual grids in {config.layout.raster_outcome}.")
    years = [year_from_name(path.name, config.annual_pattern) for path in files]
    selected = filter_years(years, window.start_year, window.end_year)
    if not selected:
        raise EmptyGroupError(SkipReason.EMPTY_FOR_RANGE, f"No annual grids for the range {window}.")

    grids = [_load_masked(files[i], config) for i in selected]
    result = annual_climatology(grids, [years[i] for i in selected], window.start_year, window.end_year)
    name = f"{config.region_label}_Annual_Average_Precipitation_{window.label}.tif"
    path = _write(result.grid, output_dir / name, written)
    logger.info("Long-term annual average saved to: %s", path)
    return GroupOutcome.produced(f"annual {window}", [path], detail=f"{len(grids)} year(s)")


def _monthly_window_task(
    config: PipelineConfig,
    window: ClimatologyWindow,
    files: Sequence[Path],
    keys: Sequence[CalendarKey],
    output_dir: Path,
    written: List[Path],
) -> GroupOutcome:
    if not files:
        raise EmptyGroupError(SkipReason.NO_CANDIDATES, f"No monthly grids in {config.layout.monthly}.")
    selected = filter_years(keys, window.start_year, window.end_year)
    if not selected:
        raise EmptyGroupError(SkipReason.EMPTY_FOR_RANGE, f"No monthly grids for the range {window}.")

    grids = [_load_masked(files[i], config) for i in selected]
    climatology = monthly_climatology(grids, [keys[i] for i in selected], window.start_year, window.end_year)
    outputs = []
    for month, result in climatology.items():
        name = f"{config.region_label}_Average_Precipitation_Month_{month:02d}_{window.label}.tif"
        outputs.append(_write(result.grid, output_dir / name, written))
    logger.info("Saved %d monthly average(s) for %s", len(outputs), window)
    return GroupOutcome.produced(f"monthly {window}", outputs, detail=f"{len(grids)} grid(s)")


def aggregate_climatologies(config: PipelineConfig, *, should_stop: StopCheck = None) -> RunSummary:
    """
    Average annual totals and monthly grids over the configured year windows.

    A window without any matching file is skipped with a warning that tells
    an empty range apart from a missing input class.
    """
    stage = "aggregate"
    config.validate()
    layout = config.layout
    region = config.region_label

    annual_files = discover_files(layout.raster_outcome, f"{region}.AnnualPrecipitation.*.tif")
    monthly_files = discover_files(layout.monthly, MONTHLY_GLOB)
    monthly_keys = [key_from_name(path.name, config.monthly_pattern) for path in monthly_files]
    _require_unique(monthly_keys, str(layout.monthly))
    if not annual_files:
        logger.warning("No annual raster files found in: %s", layout.raster_outcome)
    if not monthly_files:
        logger.warning("No monthly raster files found in: %s", layout.monthly)
    output_dir = _prepare_output(layout.aggregated_outcome, config.clean_outputs)

    summary = RunSummary(stage)
    with stage_outputs(stage) as written:
        tasks: List[GroupTask] = []
        for window in config.annual_windows:
            tasks.append(
                (
                    f"annual {window}",
                    lambda w=window: _annual_window_task(config, w, annual_files, output_dir, written),
                )
            )
        for window in config.monthly_windows:
            tasks.append(
                (
                    f"monthly {window}",
                    lambda w=window: _monthly_window_task(
                        config, w, monthly_files, monthly_keys, output_dir, written
                    ),
                )
            )
        summary.extend(_run_groups(tasks, config.workers, should_stop, stage))

    summary.log_report(logger)
    return summary


STAGES: Dict[str, Callable[..., RunSummary]] = {
    "export": export_monthly_grids,
    "summary": summarize_precipitation,
    "sites": report_sites,
    "aggregate": aggregate_climatologies,
}


def run_all(config: PipelineConfig, *, should_stop: StopCheck = None) -> List[RunSummary]:
    """Run the four stages in order; each stage consumes the previous one's outputs."""
    return [run(config, should_stop=should_stop) for run in STAGES.values()]
