import numpy as np
import pandas as pd
import pytest
import xarray as xr

from era5_precip import cli
from era5_precip.config import ROOT_ENV_VAR
from era5_precip.io import write_grid


@pytest.fixture(autouse=True)
def keep_pytest_logging(monkeypatch):
    monkeypatch.setattr(cli, "setup_logging", lambda *args, **kwargs: None)


def test_parser_stages():
    parser = cli.build_arg_parser()
    args = parser.parse_args(["--workers", "2", "aggregate"])
    assert args.stage == "aggregate"
    assert args.workers == 2
    assert parser.parse_args(["all"]).stage == "all"


def test_missing_root_exits_with_error(tmp_path, monkeypatch):
    monkeypatch.delenv(ROOT_ENV_VAR, raising=False)
    assert cli.main(["--root", str(tmp_path / "missing"), "summary"]) == 1


def test_aggregate_prints_summary(tmp_path, monkeypatch, capsys):
    monkeypatch.setenv(ROOT_ENV_VAR, str(tmp_path))
    assert cli.main(["aggregate"]) == 0
    out = capsys.readouterr().out
    assert "aggregate: 0 produced, 2 skipped" in out
    assert "no-candidates" in out


def _project(root, make_aoi):
    (root / "AOI").mkdir(parents=True)
    make_aoi().to_file(root / "AOI" / "Falcon.geojson", driver="GeoJSON")
    return root


def test_unknown_raw_variable_exits_with_error(tmp_path, make_aoi, monkeypatch):
    monkeypatch.delenv(ROOT_ENV_VAR, raising=False)
    root = _project(tmp_path / "root", make_aoi)
    (root / "Raw").mkdir()
    xr.Dataset(
        {"tp": (("valid_time", "latitude", "longitude"), np.ones((1, 2, 2)))},
        coords={"valid_time": pd.to_datetime(["1942-01-01"]), "latitude": [11.0, 11.25], "longitude": [-69.0, -68.75]},
    ).to_netcdf(root / "Raw" / "ERA5_TotalPrecipitation.nc", engine="netcdf4")
    config = tmp_path / "era5.conf"
    config.write_text("raw_variable = precip\n")

    assert cli.main(["--config", str(config), "--root", str(root), "export"]) == 1


def test_multiband_monthly_input_exits_with_error(tmp_path, make_aoi, make_grid, monkeypatch):
    monkeypatch.delenv(ROOT_ENV_VAR, raising=False)
    root = _project(tmp_path, make_aoi)
    write_grid(make_grid(np.ones((2, 8, 8))), root / "Input" / "ERA5.TotalPrecipitation.1942.01.tif")

    assert cli.main(["--root", str(root), "summary"]) == 1
