from pathlib import Path

import pytest

from era5_precip.climatology import ClimatologyWindow
from era5_precip.config import (
    ROOT_ENV_VAR,
    DirectoryLayout,
    PipelineConfig,
    load_config,
    parse_config_file,
    parse_windows,
)
from era5_precip.errors import ConfigurationError


def _write_config(path: Path, text: str) -> Path:
    path.write_text(text)
    return path


def test_parse_config_file(tmp_path):
    config_path = _write_config(
        tmp_path / "era5.conf",
        "\n".join(
            [
                "# ERA5 post-processing",
                f"ROOT = {tmp_path}",
                "region_label = Lara",
                "annual_windows = 1942-1948, 1950-1960",
                "monthly_windows = 1940-1941",
                "workers = 4",
                "clean_outputs = no",
                "nodata_epsilon = 1e-5",
                "",
            ]
        ),
    )
    config = parse_config_file(config_path, environ={})
    assert config.root == tmp_path
    assert config.region_label == "Lara"
    assert config.annual_windows == [ClimatologyWindow(1942, 1948), ClimatologyWindow(1950, 1960)]
    assert config.monthly_windows == [ClimatologyWindow(1940, 1941)]
    assert config.workers == 4
    assert config.clean_outputs is False
    assert config.nodata_epsilon == pytest.approx(1e-5)
    assert config.variable_name == "TotalPrecipitation"


def test_environment_overrides_root(tmp_path):
    config_path = _write_config(tmp_path / "era5.conf", "root = /somewhere/else\n")
    config = parse_config_file(config_path, environ={ROOT_ENV_VAR: str(tmp_path)})
    assert config.root == tmp_path
    assert load_config(environ={ROOT_ENV_VAR: str(tmp_path)}).root == tmp_path


def test_defaults():
    config = load_config(environ={ROOT_ENV_VAR: "/data/era5"})
    assert config.annual_windows == [ClimatologyWindow(1942, 1948)]
    assert config.monthly_windows == [ClimatologyWindow(1940, 1941)]
    assert config.conversion_factor == 1000.0
    assert config.monthly_pattern.year_index == 2
    assert config.monthly_pattern.month_index == 3
    assert config.annual_pattern.month_index is None


def test_layout_roles(tmp_path):
    layout = DirectoryLayout(tmp_path)
    assert layout.aoi == tmp_path / "AOI"
    assert layout.raw == tmp_path / "Raw"
    assert layout.monthly == tmp_path / "Input"
    assert layout.sites == tmp_path / "Input_sites"
    assert layout.area_outcome == tmp_path / "Outcome"
    assert layout.raster_outcome == tmp_path / "Raster_outcome"
    assert layout.site_outcome == tmp_path / "Sites_outcome"
    assert layout.aggregated_outcome == tmp_path / "Aggregated_outcome"


def test_validate_missing_root(tmp_path):
    with pytest.raises(ConfigurationError):
        PipelineConfig(root=tmp_path / "missing").validate()
    with pytest.raises(ConfigurationError):
        PipelineConfig(root=tmp_path, workers=0).validate()
    assert PipelineConfig(root=tmp_path).validate().root == tmp_path


@pytest.mark.parametrize(
    "text",
    ["unknown_key = 1\n", "workers = many\n", "annual_windows = 1948-1942\n", "monthly_windows = 1940\n"],
)
def test_malformed_config(tmp_path, text):
    config_path = _write_config(tmp_path / "era5.conf", text)
    with pytest.raises(ConfigurationError):
        parse_config_file(config_path, environ={})


def test_missing_config_file(tmp_path):
    with pytest.raises(ConfigurationError):
        parse_config_file(tmp_path / "absent.conf", environ={})


def test_parse_windows_skips_blanks():
    assert parse_windows("1942-1948,, 1950-1960 ") == [ClimatologyWindow(1942, 1948), ClimatologyWindow(1950, 1960)]
