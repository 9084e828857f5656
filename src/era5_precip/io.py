from __future__ import annotations

import logging
import os
import shutil
from contextlib import contextmanager
from glob import glob
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

import numpy as np
import pandas as pd
import xarray as xr
import rioxarray  # noqa: F401

from .errors import ConfigurationError, DiscoveryError, GridMismatch, ParseError
from .timecodec import band_label

logger = logging.getLogger(__name__)

TIME_DIM_CANDIDATES = ("valid_time", "time")
BAND_LABELS = "band_label"


def discover_files(directory: str | Path, pattern: str = "*.tif") -> List[Path]:
    return [Path(path) for path in sorted(glob(os.path.join(str(directory), pattern)))]


def require_files(directory: str | Path, pattern: str, what: str) -> List[Path]:
    """Like ``discover_files`` but raise ``DiscoveryError`` when nothing matches."""
    files = discover_files(directory, pattern)
    if not files:
        raise DiscoveryError(f"No {what} matched pattern {pattern} in {directory}")
    logger.info("Found %d %s in %s", len(files), what, directory)
    return files


def load_grid(path: str | Path) -> xr.DataArray:
    """Open a single-band raster as a ``(y, x)`` grid with nodata as NaN."""
    data = rioxarray.open_rasterio(path, masked=True)
    if "band" in data.dims:
        if data.sizes["band"] != 1:
            raise GridMismatch(f"Expected a single-band raster, {path} has {data.sizes['band']} bands")
        data = data.squeeze("band", drop=True)
    data = data.load()
    data.name = Path(path).stem
    return data


def _normalise_spatial_dims(data_array: xr.DataArray) -> xr.DataArray:
    dim_renames = {}
    if "lat" in data_array.dims and "lon" in data_array.dims:
        dim_renames.update({"lat": "y", "lon": "x"})
    elif "latitude" in data_array.dims and "longitude" in data_array.dims:
        dim_renames.update({"latitude": "y", "longitude": "x"})
    if dim_renames:
        data_array = data_array.rename(dim_renames)
    return data_array.transpose(..., "y", "x")


def _infer_epsg(data_array: xr.DataArray, explicit_epsg: Optional[int]) -> int:
    if explicit_epsg:
        return explicit_epsg
    x_vals = data_array.coords["x"].values
    y_vals = data_array.coords["y"].values
    if (
        np.nanmin(x_vals) >= -180
        and np.nanmax(x_vals) <= 360
        and np.nanmin(y_vals) >= -90
        and np.nanmax(y_vals) <= 90
    ):
        return 4326
    raise ParseError("Cannot infer the CRS of a projected NetCDF grid; set crs_epsg explicitly.")


def _select_variable(ds: xr.Dataset, variable: Optional[str], path: Path) -> str:
    if variable is None:
        candidates = [name for name in ds.data_vars if ds[name].ndim == 3]
        if len(candidates) != 1:
            raise DiscoveryError(f"Cannot pick a precipitation variable in {path}: {list(ds.data_vars)}")
        return candidates[0]
    if variable not in ds:
        raise ConfigurationError(
            f"Variable '{variable}' not present in {path}. Available: {list(ds.data_vars)}"
        )
    return variable


def _time_labels(data_array: xr.DataArray, variable: str, path: Path) -> Tuple[str, List[str]]:
    time_dim = next((dim for dim in TIME_DIM_CANDIDATES if dim in data_array.dims), None)
    if time_dim is None:
        raise ParseError(f"No time dimension in {path}; expected one of {TIME_DIM_CANDIDATES}")
    times = pd.DatetimeIndex(data_array[time_dim].values)
    seconds = (times - pd.Timestamp("1970-01-01")) // pd.Timedelta(seconds=1)
    return time_dim, [band_label(variable, time_dim, s) for s in seconds]


def _band_descriptions(data_array: xr.DataArray, path: Path) -> List[str]:
    descriptions = data_array.attrs.pop("long_name", None)
    if isinstance(descriptions, str):
        descriptions = (descriptions,)
    if not descriptions or len(descriptions) != data_array.sizes["band"]:
        raise ParseError(f"Bands of {path} carry no timestamp descriptions")
    return [str(description) for description in descriptions]


def _load_netcdf_bands(path: Path, variable: Optional[str], crs_epsg: Optional[int]) -> xr.DataArray:
    with xr.open_dataset(path, engine="netcdf4", decode_times=True) as ds:
        variable = _select_variable(ds, variable, path)
        data_array = ds[variable].load()

    time_dim, labels = _time_labels(data_array, variable, path)
    for extra in [dim for dim in data_array.dims if dim != time_dim and data_array.sizes[dim] == 1]:
        data_array = data_array.squeeze(extra, drop=True)

    data_array = _normalise_spatial_dims(data_array)
    data_array = data_array.rename({time_dim: "band"}).drop_vars("band", errors="ignore")
    data_array = data_array.assign_coords(band=np.arange(1, data_array.sizes["band"] + 1))
    data_array = data_array.assign_coords({BAND_LABELS: ("band", labels)})
    data_array = data_array.sortby("y", ascending=False)

    data_array.rio.write_crs(f"EPSG:{_infer_epsg(data_array, crs_epsg)}", inplace=True)
    data_array.rio.set_spatial_dims(x_dim="x", y_dim="y", inplace=True)
    data_array.rio.write_nodata(np.nan, encoded=False, inplace=True)
    return data_array


def _load_raster_bands(path: Path) -> xr.DataArray:
    data_array = rioxarray.open_rasterio(path, masked=True).load()
    descriptions = _band_descriptions(data_array, path)
    return data_array.assign_coords({BAND_LABELS: ("band", descriptions)})


def _is_netcdf(path: Path) -> bool:
    return path.suffix.lower() in (".nc", ".nc4", ".netcdf")


def read_band_labels(path: str | Path, *, variable: Optional[str] = None) -> List[str]:
    """Read only the per-band timestamp labels of a multi-band source, without its grid values."""
    path = Path(path)
    if _is_netcdf(path):
        with xr.open_dataset(path, engine="netcdf4", decode_times=True) as ds:
            variable = _select_variable(ds, variable, path)
            return _time_labels(ds[variable], variable, path)[1]
    with rioxarray.open_rasterio(path) as data_array:
        return _band_descriptions(data_array, path)


def load_band_stack(
    path: str | Path,
    *,
    variable: Optional[str] = None,
    crs_epsg: Optional[int] = None,
) -> Tuple[xr.DataArray, List[str]]:
    """
    Load a multi-band precipitation source and its per-band timestamp labels.

    Parameters
    ----------
    path:
        NetCDF file with a ``valid_time``/``time`` dimension, or a multi-band
        GeoTIFF whose band descriptions carry ``name=<seconds>`` labels.
    variable:
        NetCDF variable name (e.g. ``'tp'``); picked automatically when the
        file holds a single 3D variable.
    crs_epsg:
        EPSG code for NetCDF grids. Geographic coordinates default to 4326.

    Returns
    -------
    tuple
        ``(band, y, x)`` DataArray with CRS metadata, and the band labels.
    """
    path = Path(path)
    if _is_netcdf(path):
        stack = _load_netcdf_bands(path, variable, crs_epsg)
    else:
        stack = _load_raster_bands(path)
    labels = [str(label) for label in stack[BAND_LABELS].values]
    logger.info("Loaded %s: %d band(s), grid %s", path.name, len(labels), stack.shape[1:])
    return stack, labels


def write_grid(grid: xr.DataArray, path: str | Path) -> Path:
    """Write a grid as GeoTIFF through a temporary file renamed into place."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.partial")
    try:
        grid.rio.to_raster(tmp_path, driver="GTiff")
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()
    return path


def write_table(frame: pd.DataFrame, path: str | Path, *, bom: bool = False) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    frame.to_csv(path, index=False, na_rep="NA", encoding="utf-8-sig" if bom else "utf-8")
    return path


def read_site_table(path: str | Path) -> pd.DataFrame:
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"Site table not found at: {path}")
    if path.suffix.lower() in (".xlsx", ".xls"):
        return pd.read_excel(path, sheet_name=0, na_values=["NA"])
    return pd.read_csv(path, na_values=["NA"])


def clear_directory(folder: str | Path) -> None:
    """Delete everything inside ``folder``; a missing folder is only reported."""
    folder = Path(folder)
    if not folder.exists():
        logger.warning("Folder does not exist, nothing to delete: %s", folder)
        return
    for item in folder.iterdir():
        if item.is_dir():
            shutil.rmtree(item)
        else:
            item.unlink()


def ensure_directory(folder: str | Path) -> Path:
    folder = Path(folder)
    folder.mkdir(parents=True, exist_ok=True)
    return folder


@contextmanager
def stage_outputs(stage: str) -> Iterator[List[Path]]:
    """
    Track the files a stage writes and remove them if the stage fails.

    The caller appends every written path to the yielded list.
    """
    written: List[Path] = []
    try:
        yield written
    except BaseException:
        removed = 0
        for path in written:
            if path.exists():
                path.unlink()
                removed += 1
        logger.error("%s aborted; removed %d partial output(s)", stage, removed)
        raise

