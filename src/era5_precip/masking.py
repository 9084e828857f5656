from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import geopandas as gpd
import numpy as np
import xarray as xr
import rioxarray  # noqa: F401
from pyproj.exceptions import CRSError
from rasterio.errors import WindowError
from rioxarray.exceptions import NoDataInBounds, OneDimensionalRaster

from .errors import AOIOutsideGrid, ConfigurationError, CRSMismatch

logger = logging.getLogger(__name__)

VECTOR_SUFFIXES = (".shp", ".gpkg", ".geojson", ".json")
POLYGON_TYPES = {"Polygon", "MultiPolygon"}


def load_aoi(directory: str | Path, pattern: Optional[str] = None) -> gpd.GeoDataFrame:
    """
    Load the single area-of-interest vector file found in ``directory``.

    Parameters
    ----------
    directory:
        Folder holding the AOI vector file (shapefile sidecars are ignored).
    pattern:
        Optional substring the file name must contain (e.g. ``'Falcon'``).

    Returns
    -------
    geopandas.GeoDataFrame
        Polygonal features with their CRS.
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise ConfigurationError(f"AOI directory does not exist: {directory}")

    candidates = sorted(
        path
        for path in directory.iterdir()
        if path.suffix.lower() in VECTOR_SUFFIXES and (pattern is None or pattern in path.name)
    )
    if not candidates:
        raise ConfigurationError(
            f"No AOI file found in {directory}" + (f" matching '{pattern}'" if pattern else "")
        )
    if len(candidates) > 1:
        names = ", ".join(path.name for path in candidates)
        raise ConfigurationError(f"Expected exactly one AOI file in {directory}, found: {names}")

    aoi_path = candidates[0]
    aoi = gpd.read_file(aoi_path)
    if aoi.empty:
        raise ConfigurationError(f"AOI file '{aoi_path}' contains no geometries.")
    if aoi.crs is None:
        raise ConfigurationError(f"AOI file '{aoi_path}' lacks CRS information.")
    geom_types = set(aoi.geometry.geom_type.dropna())
    if not geom_types or not geom_types.issubset(POLYGON_TYPES):
        raise ConfigurationError(
            f"AOI file '{aoi_path}' must contain polygons only, found {sorted(geom_types)}"
        )
    logger.info("Loaded AOI %s (%d feature(s), %s)", aoi_path.name, len(aoi), aoi.crs)
    return aoi


def align_aoi(aoi: gpd.GeoDataFrame, grid: xr.DataArray) -> gpd.GeoDataFrame:
    grid_crs = grid.rio.crs
    if grid_crs is None:
        raise CRSMismatch("Grid has no CRS; cannot align the AOI to it.")
    if aoi.crs is None:
        raise CRSMismatch("AOI has no CRS; cannot align it to the grid.")
    if aoi.crs == grid_crs:
        return aoi
    try:
        return aoi.to_crs(grid_crs)
    except (CRSError, ValueError) as exc:
        raise CRSMismatch(f"Cannot reproject AOI from {aoi.crs} to {grid_crs}: {exc}") from exc


def crop_and_mask(grid: xr.DataArray, aoi: gpd.GeoDataFrame) -> xr.DataArray:
    """
    Restrict a grid or ``(band, y, x)`` stack to the AOI.

    The grid is first cropped to the AOI's bounding box, then every cell whose
    centre falls outside the polygons is set to NaN. Band count and order are
    preserved.
    """
    aoi = align_aoi(aoi, grid)
    if not np.issubdtype(grid.dtype, np.floating):
        grid = grid.astype("float64")
    if grid.rio.nodata is None or not np.isnan(grid.rio.nodata):
        grid = grid.rio.write_nodata(np.nan, encoded=False)

    minx, miny, maxx, maxy = aoi.total_bounds
    try:
        cropped = grid.rio.clip_box(minx, miny, maxx, maxy)
        masked = cropped.rio.clip(aoi.geometry.values, crs=aoi.crs, drop=False, all_touched=False)
    except (NoDataInBounds, OneDimensionalRaster, WindowError) as exc:
        raise AOIOutsideGrid(f"AOI bounds {aoi.total_bounds.tolist()} do not overlap the grid: {exc}") from exc
    masked.attrs.update({k: v for k, v in grid.attrs.items() if k not in masked.attrs})
    return masked
