"""Error taxonomy for the metrics pipeline.

Errors carry a kind rather than a transport status code. The code is only
derived at the outer boundary (CLI exit handling) via ``status_code_for``.
"""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Kinds of failure surfaced by the pipeline."""
    INVALID_DATE = "InvalidDate"
    UPSTREAM_DATA = "UpstreamData"
    CACHE = "Cache"


class TreasuryMetricsError(Exception):
    """Base class for pipeline errors."""

    kind: ErrorKind = ErrorKind.UPSTREAM_DATA
    default_message: str = "Treasury metrics error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self):
        return {"kind": self.kind.value, "message": self.message}


class InvalidDateError(TreasuryMetricsError):
    """The supplied start date could not be parsed."""
    kind = ErrorKind.INVALID_DATE
    default_message = "startDate should be in the YYYY-MM-DD format."


class UpstreamDataError(TreasuryMetricsError):
    """The upstream returned no data, or data that fails validation."""
    kind = ErrorKind.UPSTREAM_DATA
    default_message = "Upstream subgraph returned an invalid response"


class CacheError(TreasuryMetricsError):
    """A cache read or write failed. Never propagated to callers."""
    kind = ErrorKind.CACHE
    default_message = "Cache operation failed"


_STATUS_CODES = {
    ErrorKind.INVALID_DATE: 400,
    ErrorKind.UPSTREAM_DATA: 502,
    ErrorKind.CACHE: 500,
}


def status_code_for(error: TreasuryMetricsError) -> int:
    """Translate an error kind into an HTTP-style status code."""
    return _STATUS_CODES[error.kind]
