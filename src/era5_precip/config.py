from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from .climatology import ClimatologyWindow
from .errors import ConfigurationError
from .timecodec import TokenPattern
from .units import METERS_TO_MILLIMETERS, NODATA_EPSILON, NODATA_SENTINEL

ROOT_ENV_VAR = "ERA5_PRECIP_MAIN"
DEFAULT_ROOT = Path.home() / "ERA5_postprocessing"


@dataclass(frozen=True)
class DirectoryLayout:
    """Fixed sub-directory roles below the project root."""

    root: Path

    @property
    def aoi(self) -> Path:
        return self.root / "AOI"

    @property
    def raw(self) -> Path:
        return self.root / "Raw"

    @property
    def monthly(self) -> Path:
        return self.root / "Input"

    @property
    def sites(self) -> Path:
        return self.root / "Input_sites"

    @property
    def area_outcome(self) -> Path:
        return self.root / "Outcome"

    @property
    def raster_outcome(self) -> Path:
        return self.root / "Raster_outcome"

    @property
    def site_outcome(self) -> Path:
        return self.root / "Sites_outcome"

    @property
    def aggregated_outcome(self) -> Path:
        return self.root / "Aggregated_outcome"


@dataclass
class PipelineConfig:
    root: Path
    variable_name: str = "TotalPrecipitation"
    source_prefix: str = "ERA5"
    region_label: str = "Falcon"
    aoi_pattern: Optional[str] = None
    raw_pattern: str = "*TotalPrecipitation.nc"
    raw_variable: Optional[str] = None
    crs_epsg: Optional[int] = None
    site_table: str = "Sites.xlsx"
    longitude_column: str = "Longitud"
    latitude_column: str = "Latitud"
    site_crs: str = "EPSG:4326"
    conversion_factor: float = METERS_TO_MILLIMETERS
    nodata_value: float = NODATA_SENTINEL
    nodata_epsilon: float = NODATA_EPSILON
    token_separator: str = "."
    year_token: int = 2
    month_token: int = 3
    annual_year_token: int = 2
    annual_windows: List[ClimatologyWindow] = field(
        default_factory=lambda: [ClimatologyWindow(1942, 1948)]
    )
    monthly_windows: List[ClimatologyWindow] = field(
        default_factory=lambda: [ClimatologyWindow(1940, 1941)]
    )
    workers: int = 1
    clean_outputs: bool = True
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    @property
    def layout(self) -> DirectoryLayout:
        return DirectoryLayout(Path(self.root))

    @property
    def monthly_pattern(self) -> TokenPattern:
        return TokenPattern(self.token_separator, self.year_token, self.month_token)

    @property
    def annual_pattern(self) -> TokenPattern:
        return TokenPattern(self.token_separator, self.annual_year_token, None)

    @property
    def site_table_path(self) -> Path:
        return self.layout.sites / self.site_table

    def validate(self) -> "PipelineConfig":
        if not Path(self.root).is_dir():
            raise ConfigurationError(f"Main directory does not exist: {self.root}")
        if self.workers < 1:
            raise ConfigurationError(f"workers must be at least 1, got {self.workers}")
        if self.conversion_factor == 0:
            raise ConfigurationError("conversion_factor must be non-zero")
        return self


def parse_windows(raw: str) -> List[ClimatologyWindow]:
    """Parse ``'1942-1948, 1950-1960'`` into climatology windows."""
    windows = []
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        try:
            start, end = (int(part) for part in chunk.split("-", 1))
            windows.append(ClimatologyWindow(start, end))
        except ValueError as exc:
            raise ConfigurationError(f"Invalid year window '{chunk}': expected START-END") from exc
    return windows


def _as_bool(raw: str) -> bool:
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ConfigurationError(f"Invalid boolean value '{raw}'")


def _resolve_root(values: Mapping[str, str], environ: Mapping[str, str]) -> Path:
    override = environ.get(ROOT_ENV_VAR)
    if override:
        return Path(override).expanduser()
    if values.get("root"):
        return Path(values["root"]).expanduser()
    return DEFAULT_ROOT


def config_from_values(
    values: Mapping[str, str],
    environ: Optional[Mapping[str, str]] = None,
) -> PipelineConfig:
    """Build a ``PipelineConfig`` from string values (file or CLI overrides)."""
    environ = os.environ if environ is None else environ
    known = {f.name: f for f in fields(PipelineConfig)}
    unknown = sorted(set(values) - set(known))
    if unknown:
        raise ConfigurationError(f"Unknown config keys: {unknown}")

    kwargs: Dict[str, object] = {"root": _resolve_root(values, environ)}
    converters = {
        "conversion_factor": float,
        "nodata_value": float,
        "nodata_epsilon": float,
        "year_token": int,
        "month_token": int,
        "annual_year_token": int,
        "workers": int,
        "crs_epsg": int,
        "clean_outputs": _as_bool,
        "annual_windows": parse_windows,
        "monthly_windows": parse_windows,
        "log_file": Path,
    }
    for key, raw in values.items():
        if key == "root" or raw == "":
            continue
        convert = converters.get(key, str)
        try:
            kwargs[key] = convert(raw)
        except ValueError as exc:
            raise ConfigurationError(f"Invalid value for '{key}': {raw!r}") from exc
    return PipelineConfig(**kwargs)


def parse_config_file(
    path: str | Path,
    environ: Optional[Mapping[str, str]] = None,
) -> PipelineConfig:
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {path}")

    values: Dict[str, str] = {}
    for line in path.read_text().splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        values[key.strip().lower()] = value.strip()

    return config_from_values(values, environ)


def load_config(
    path: str | Path | None = None,
    environ: Optional[Mapping[str, str]] = None,
) -> PipelineConfig:
    """Read ``path`` when given, otherwise use defaults; the root env var always wins."""
    if path is not None:
        return parse_config_file(path, environ)
    return config_from_values({}, environ)
