from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Sequence, Tuple

import geopandas as gpd
import numpy as np
import pandas as pd
import xarray as xr
import rioxarray  # noqa: F401
from pyproj.exceptions import CRSError

from .errors import ConfigurationError, CRSMismatch
from .timecodec import MONTH_LABELS, CalendarKey, days_in_month

logger = logging.getLogger(__name__)

SITE_ID_COLUMN = "SiteID"
VALUE_COLUMN = "Precipitation"


@dataclass(frozen=True)
class Site:
    site_id: str
    longitude: float
    latitude: float
    attributes: Dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class ExtractionRecord:
    site_id: str
    key: CalendarKey
    value: float


def site_id(position: int) -> str:
    return f"ID{position:02d}"


def sites_from_frame(
    frame: pd.DataFrame,
    lon_column: str = "Longitud",
    lat_column: str = "Latitud",
) -> Tuple[pd.DataFrame, List[Site]]:
    """
    Attach sequential ``SiteID`` values (``ID01``, ``ID02``, ...) to a site table.

    Returns the table with the new column and the matching ``Site`` objects.
    """
    missing = [column for column in (lon_column, lat_column) if column not in frame.columns]
    if missing:
        raise ConfigurationError(
            f"Site table is missing coordinate column(s) {missing}. Available: {list(frame.columns)}"
        )

    table = frame.copy()
    table[SITE_ID_COLUMN] = [site_id(i) for i in range(1, len(table) + 1)]

    longitudes = pd.to_numeric(table[lon_column], errors="coerce")
    latitudes = pd.to_numeric(table[lat_column], errors="coerce")
    sites = []
    for (_, row), lon, lat in zip(table.iterrows(), longitudes, latitudes):
        attributes = {k: v for k, v in row.items() if k not in (SITE_ID_COLUMN, lon_column, lat_column)}
        sites.append(Site(row[SITE_ID_COLUMN], float(lon), float(lat), attributes))
    return table, sites


def _project_sites(sites: Sequence[Site], sites_crs: str, target_crs) -> List[Tuple[float, float]]:
    if target_crs is None:
        raise CRSMismatch("Grid stack has no CRS; cannot place sites on it.")
    points = gpd.GeoSeries(
        gpd.points_from_xy([s.longitude for s in sites], [s.latitude for s in sites]),
        crs=sites_crs,
    )
    try:
        projected = points.to_crs(target_crs) if points.crs != target_crs else points
    except (CRSError, ValueError) as exc:
        raise CRSMismatch(f"Cannot reproject sites from {sites_crs} to {target_crs}: {exc}") from exc
    return [(geom.x, geom.y) for geom in projected]


def sample(
    stack: xr.DataArray,
    keys: Sequence[CalendarKey],
    sites: Sequence[Site],
    sites_crs: str = "EPSG:4326",
    band_dim: str = "band",
) -> List[ExtractionRecord]:
    """
    Read the value of the cell containing each site, for every band of a stack.

    Parameters
    ----------
    stack:
        ``(band, y, x)`` DataArray with a CRS.
    keys:
        Calendar key of every band, in band order.
    sites:
        Sites in geographic (or ``sites_crs``) coordinates.

    Returns
    -------
    list of ExtractionRecord
        Site-major, band order within a site. Sites outside the grid get NaN.
    """
    if stack.ndim == 2:
        stack = stack.expand_dims(band_dim)
    if stack.sizes[band_dim] != len(keys):
        raise ValueError(f"Stack has {stack.sizes[band_dim]} band(s) but {len(keys)} calendar keys")
    if not sites:
        return []

    x_dim, y_dim = stack.rio.x_dim, stack.rio.y_dim
    res_x, res_y = stack.rio.resolution()
    tolerance_x, tolerance_y = abs(res_x) / 2.0, abs(res_y) / 2.0
    missing = np.full(len(keys), np.nan)

    records: List[ExtractionRecord] = []
    for site, (x, y) in zip(sites, _project_sites(sites, sites_crs, stack.rio.crs)):
        values = missing
        if np.isfinite(x) and np.isfinite(y):
            try:
                cell = stack.sel({x_dim: x}, method="nearest", tolerance=tolerance_x)
                cell = cell.sel({y_dim: y}, method="nearest", tolerance=tolerance_y)
                values = np.asarray(cell.transpose(band_dim).values, dtype="float64")
            except KeyError:
                logger.warning("Site %s (%.4f, %.4f) lies outside the grid coverage", site.site_id, site.longitude, site.latitude)
        records.extend(
            ExtractionRecord(site.site_id, key, float(value)) for key, value in zip(keys, values)
        )
    return records


def to_monthly_totals(records: Sequence[ExtractionRecord]) -> List[ExtractionRecord]:
    """Turn daily-average values into monthly totals (value x days in month)."""
    return [replace(record, value=record.value * days_in_month(record.key.month)) for record in records]


def records_to_frame(records: Sequence[ExtractionRecord]) -> pd.DataFrame:
    return pd.DataFrame(
        {
            SITE_ID_COLUMN: [r.site_id for r in records],
            "Year": [r.key.year for r in records],
            "Month": [r.key.month for r in records],
            VALUE_COLUMN: [r.value for r in records],
        }
    )


def site_report(records: Sequence[ExtractionRecord]) -> pd.DataFrame:
    """
    Pivot one site's records into a ``Year x Jan..Dec`` table.

    Every year between the first and last record gets a row and every month
    gets a column; periods without a record stay NaN.
    """
    long = records_to_frame(records)
    columns = ["Year", *MONTH_LABELS]
    if long.empty:
        return pd.DataFrame(columns=columns)

    long = long.sort_values(["Year", "Month"])
    wide = long.pivot_table(index="Year", columns="Month", values=VALUE_COLUMN, aggfunc="first", dropna=False)
    years = range(int(long["Year"].min()), int(long["Year"].max()) + 1)
    wide = wide.reindex(index=years, columns=range(1, 13))
    wide.columns = list(MONTH_LABELS)
    wide.index.name = "Year"
    return wide.reset_index()[columns]


def reports_by_site(records: Sequence[ExtractionRecord]) -> Dict[str, pd.DataFrame]:
    grouped: Dict[str, List[ExtractionRecord]] = {}
    for record in records:
        grouped.setdefault(record.site_id, []).append(record)
    return {site: site_report(site_records) for site, site_records in grouped.items()}
