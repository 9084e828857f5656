from __future__ import annotations

import math
import os
from dataclasses import dataclass
from typing import Optional

import pandas as pd

from .errors import ParseError

# Non-leap table: February is always 28 days.
DAYS_IN_MONTH = {
    1: 31,
    2: 28,
    3: 31,
    4: 30,
    5: 31,
    6: 30,
    7: 31,
    8: 31,
    9: 30,
    10: 31,
    11: 30,
    12: 31,
}

MONTH_LABELS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


@dataclass(frozen=True, order=True)
class CalendarKey:
    year: int
    month: int
    day: int = 1

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ParseError(f"Month out of range in calendar key: {self.month}")

    @property
    def label(self) -> str:
        return month_label(self.month)

    @property
    def days(self) -> int:
        return days_in_month(self.month)

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


@dataclass(frozen=True)
class TokenPattern:
    """
    Positions of the year/month tokens in a separator-delimited file name.

    The default matches ``ERA5.TotalPrecipitation.<year>.<month>.tif``.
    ``month_index`` may be ``None`` for annual products.
    """

    separator: str = "."
    year_index: int = 2
    month_index: Optional[int] = 3


def days_in_month(month: int) -> int:
    """Return the fixed day count for ``month`` (1-12); leap years are ignored."""
    try:
        return DAYS_IN_MONTH[int(month)]
    except KeyError:
        raise ValueError(f"Month must be in 1..12, got {month!r}") from None


def days_for_key(key: CalendarKey) -> int:
    return days_in_month(key.month)


def month_label(month: int) -> str:
    if not 1 <= int(month) <= 12:
        raise ValueError(f"Month must be in 1..12, got {month!r}")
    return MONTH_LABELS[int(month) - 1]


def _tokens(basename: str, pattern: TokenPattern) -> list[str]:
    # With "." the extension is a trailing token of its own.
    if pattern.separator == ".":
        return basename.split(pattern.separator)
    return os.path.splitext(basename)[0].split(pattern.separator)


def _read_token(tokens: list[str], index: int, what: str, name: str) -> int:
    try:
        token = tokens[index]
    except IndexError:
        raise ParseError(f"No {what} token at position {index} in '{name}'") from None
    if not (token.isascii() and token.isdigit()):
        raise ParseError(f"Non-numeric {what} token '{token}' in '{name}'")
    return int(token)


def year_from_name(name: str | os.PathLike, pattern: TokenPattern = TokenPattern()) -> int:
    basename = os.path.basename(os.fspath(name))
    tokens = _tokens(basename, pattern)
    return _read_token(tokens, pattern.year_index, "year", basename)


def key_from_name(name: str | os.PathLike, pattern: TokenPattern = TokenPattern()) -> CalendarKey:
    """
    Derive the calendar key encoded in a file name.

    Parameters
    ----------
    name:
        File name or path; only the base name is inspected.
    pattern:
        Separator and token positions of the year and month.

    Raises
    ------
    ParseError
        If a token is missing, non-numeric or the month is outside 1..12.
    """
    if pattern.month_index is None:
        raise ParseError("Token pattern has no month position; use year_from_name instead.")
    basename = os.path.basename(os.fspath(name))
    tokens = _tokens(basename, pattern)
    year = _read_token(tokens, pattern.year_index, "year", basename)
    month = _read_token(tokens, pattern.month_index, "month", basename)
    if not 1 <= month <= 12:
        raise ParseError(f"Month token {month} out of range in '{basename}'")
    return CalendarKey(year, month)


def key_from_band_timestamp(label: str) -> CalendarKey:
    """
    Derive the calendar key from a band label such as ``tp_valid_time=-946771200``.

    The value after the last ``=`` is read as seconds since 1970-01-01 UTC and
    truncated to the first day of its month.
    """
    if label is None or "=" not in str(label):
        raise ParseError(f"Band label carries no timestamp: {label!r}")
    raw = str(label).rsplit("=", 1)[1].strip()
    try:
        seconds = float(raw)
    except ValueError:
        raise ParseError(f"Non-numeric timestamp '{raw}' in band label {label!r}") from None
    if not math.isfinite(seconds):
        raise ParseError(f"Invalid timestamp '{raw}' in band label {label!r}")
    try:
        stamp = pd.Timestamp(seconds, unit="s", tz="UTC")
    except (OverflowError, ValueError) as exc:
        raise ParseError(f"Timestamp out of range in band label {label!r}") from exc
    return CalendarKey(stamp.year, stamp.month, 1)


def band_label(variable: str, time_dim: str, seconds: int) -> str:
    return f"{variable}_{time_dim}={int(seconds)}"
