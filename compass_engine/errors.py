from dataclasses import dataclass, field
from typing import Any, Dict, Optional


class SourceUnavailableError(OSError):
    """Raised when a tabular source cannot be fetched (missing file, HTTP failure)."""
    pass


class CatalogParseError(ValueError):
    """Raised when the question catalog source is unreadable, empty or structurally invalid."""
    pass


class ReferenceDataError(ValueError):
    """Raised when a vector, grid or axis table cannot be loaded at all."""
    pass


class VariantConfigError(ValueError):
    """Custom exception for questionnaire configuration errors not covered by Pydantic."""
    pass


class InvalidAnswerError(ValueError):
    """Raised when an answer value is out of range or targets an unscheduled question."""
    pass


class SessionStateError(RuntimeError):
    """Raised when an operation is not allowed in the session's current state."""
    pass


class SkipLimitExceeded(ValueError):
    """
    Raised when a skip would push an axis over its skip cap.

    The session is left untouched, so callers can surface the message and
    keep going.
    """

    def __init__(self, axis: str, skipped: int, scheduled: int, limit: float):
        self.axis = axis
        self.skipped = skipped
        self.scheduled = scheduled
        self.limit = limit
        self.ratio = skipped / scheduled if scheduled else 0.0
        super().__init__(
            f"Cannot skip another '{axis}' question: {skipped} of {scheduled} already skipped "
            f"(limit {limit:.0%})"
        )


class MissingVectorData(LookupError):
    """Raised when no reference vectors exist for a macro cell."""

    def __init__(self, macro_code: str):
        self.macro_code = macro_code
        super().__init__(f"No category vectors available for macro cell '{macro_code}'")


@dataclass(frozen=True)
class RowSkipped:
    """Record of a malformed source row that was dropped during loading."""
    source: str
    row_number: int
    reason: str
    row: Dict[str, Any] = field(default_factory=dict)
    identifier: Optional[str] = None
