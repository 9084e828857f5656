from __future__ import annotations

import numpy as np
import xarray as xr
import rioxarray  # noqa: F401

# Upper bound of 32-bit float; ERA5 exports use it as the nodata sentinel.
NODATA_SENTINEL = 3.4028234663852886e38
# Relative tolerance used to recognise the sentinel after float round-trips.
NODATA_EPSILON = 1e-6
METERS_TO_MILLIMETERS = 1000.0


def mask_nodata(
    grid: xr.DataArray,
    sentinel: float = NODATA_SENTINEL,
    epsilon: float = NODATA_EPSILON,
) -> xr.DataArray:
    """
    Replace sentinel cells with NaN.

    A cell is treated as nodata when ``|value - sentinel| <= epsilon * |sentinel|``
    or when it is infinite (a float32 sentinel can overflow to ``inf`` once
    scaled). Integer grids are promoted to float so NaN can be stored.
    """
    if not np.issubdtype(grid.dtype, np.floating):
        grid = grid.astype("float64")
    with np.errstate(over="ignore", invalid="ignore"):
        is_sentinel = np.abs(grid - sentinel) <= epsilon * abs(sentinel)
    is_sentinel = is_sentinel | np.isinf(grid)
    masked = grid.where(~is_sentinel)
    masked.attrs.update(grid.attrs)
    return masked.rio.write_nodata(np.nan, encoded=False)


def to_millimeters(grid: xr.DataArray, factor: float = METERS_TO_MILLIMETERS) -> xr.DataArray:
    scaled = grid * factor
    scaled.attrs.update(grid.attrs)
    scaled.attrs["units"] = "mm"
    return scaled


def from_millimeters(grid: xr.DataArray, factor: float = METERS_TO_MILLIMETERS) -> xr.DataArray:
    scaled = grid / factor
    scaled.attrs.update(grid.attrs)
    scaled.attrs["units"] = "m"
    return scaled
