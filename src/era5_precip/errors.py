from __future__ import annotations

from enum import Enum
from typing import Optional


class Era5PrecipError(Exception):
    """Base class for every error raised by the post-processing pipelines."""


class ConfigurationError(Era5PrecipError):
    """Root directory or a required singular input is missing or malformed."""


class DiscoveryError(Era5PrecipError):
    """No file matched a required input class."""


class SkipReason(str, Enum):
    NO_CANDIDATES = "no-candidates"
    EMPTY_FOR_RANGE = "empty-for-range"


class EmptyGroupError(DiscoveryError):
    """
    A single group or window had nothing to reduce.

    This is the only condition the pipelines downgrade to a warning: the group
    is skipped and the remaining groups still run.
    """

    def __init__(self, reason: SkipReason, message: str, label: Optional[str] = None):
        super().__init__(message)
        self.reason = SkipReason(reason)
        self.label = label


class CRSMismatch(Era5PrecipError):
    """Reference systems differ and cannot be aligned."""


class AOIOutsideGrid(Era5PrecipError):
    """The area of interest does not overlap the grid."""


class GridMismatch(Era5PrecipError):
    """Grids participating in one reduction do not share geometry."""


class ParseError(Era5PrecipError):
    """A calendar key could not be derived from a file name or band label."""


class RunCancelled(Era5PrecipError):
    """A cooperative cancellation request stopped the stage between groups."""
