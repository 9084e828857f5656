"""
Post-processing of ERA5 precipitation grids: monthly exports, area series,
site reports and long-term climatologies.
"""

from .aggregation import AggregatedGrid, GroupOutcome, Reduction, RunSummary, reduce_group, window_mean
from .climatology import ClimatologyWindow, annual_climatology, monthly_climatology
from .config import PipelineConfig, load_config, parse_config_file
from .extraction import Site, sample, site_report
from .masking import crop_and_mask, load_aoi
from .processing import (
    aggregate_climatologies,
    export_monthly_grids,
    report_sites,
    run_all,
    summarize_precipitation,
)
from .timecodec import CalendarKey, days_in_month, key_from_band_timestamp, key_from_name
from .units import mask_nodata, to_millimeters

__all__ = [
    "AggregatedGrid",
    "GroupOutcome",
    "Reduction",
    "RunSummary",
    "reduce_group",
    "window_mean",
    "ClimatologyWindow",
    "annual_climatology",
    "monthly_climatology",
    "PipelineConfig",
    "load_config",
    "parse_config_file",
    "Site",
    "sample",
    "site_report",
    "crop_and_mask",
    "load_aoi",
    "aggregate_climatologies",
    "export_monthly_grids",
    "report_sites",
    "run_all",
    "summarize_precipitation",
    "CalendarKey",
    "days_in_month",
    "key_from_band_timestamp",
    "key_from_name",
    "mask_nodata",
    "to_millimeters",
]
