import geopandas as gpd
import numpy as np
import pytest
import xarray as xr
import rioxarray  # noqa: F401
from shapely.geometry import box

# 8 x 8 cells of 0.25 degrees with the upper-left corner at (-70, 12).
X0, Y0, RES = -70.0, 12.0, 0.25
# Cell-edge aligned 4 x 4 block in the middle of the grid.
AOI_BOUNDS = (-69.5, 10.5, -68.5, 11.5)


def _make_grid(values, x0=X0, y0=Y0, res=RES, crs="EPSG:4326", name=None):
    values = np.asarray(values, dtype="float64")
    ny, nx = values.shape[-2:]
    coords = {
        "y": y0 - res * (np.arange(ny) + 0.5),
        "x": x0 + res * (np.arange(nx) + 0.5),
    }
    if values.ndim == 3:
        dims = ("band", "y", "x")
        coords["band"] = np.arange(1, values.shape[0] + 1)
    else:
        dims = ("y", "x")
    grid = xr.DataArray(values, dims=dims, coords=coords, name=name)
    grid = grid.rio.write_crs(crs)
    return grid.rio.write_nodata(np.nan, encoded=False)


def _make_aoi(bounds=AOI_BOUNDS, crs="EPSG:4326"):
    return gpd.GeoDataFrame({"name": ["Falcon"]}, geometry=[box(*bounds)], crs=crs)


@pytest.fixture
def make_grid():
    return _make_grid


@pytest.fixture
def make_aoi():
    return _make_aoi


@pytest.fixture
def constant_grid():
    def factory(value, shape=(8, 8)):
        return _make_grid(np.full(shape, value, dtype="float64"))

    return factory
