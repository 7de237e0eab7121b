"""Error hierarchy for the wilayah pipeline and query layer.

Every error carries a stable ``error_code`` and the HTTP status the API
maps it to. Source-unit and batch errors are recovered and tallied by the
component that raises them; StoreUnavailable is fatal for the operation.
"""

from typing import Any


class WilayahError(Exception):
    """Base exception for all wilayah errors."""

    error_code = "INTERNAL_ERROR"
    http_status = 500

    def __init__(self, message: str, *, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        result: dict[str, Any] = {
            "success": False,
            "error": self.error_code,
            "message": self.message,
        }
        if self.context:
            result["context"] = self.context
        return result


# --- Source side (recovered per unit) ---


class SourceUnavailable(WilayahError):
    """A source unit (or a whole level directory) cannot be opened."""

    error_code = "SOURCE_UNAVAILABLE"


class MalformedSourceUnit(WilayahError):
    """A source unit's scope key or content cannot be parsed."""

    error_code = "MALFORMED_SOURCE_UNIT"


class CompositionError(WilayahError):
    """Internal inconsistency while composing codes (e.g. empty local code)."""

    error_code = "COMPOSITION_ERROR"


# --- Query side ---


class InvalidArgument(WilayahError):
    error_code = "INVALID_ARGUMENT"
    http_status = 400


class InvalidCodeFormat(InvalidArgument):
    """A full code matches no hierarchy level's shape."""

    error_code = "INVALID_CODE_FORMAT"


class NotFound(WilayahError):
    error_code = "NOT_FOUND"
    http_status = 404


class OperationCancelled(WilayahError):
    error_code = "CANCELLED"
    http_status = 499


# --- Store side ---


class BatchWriteFailure(WilayahError):
    """One bulk insert batch was rejected; recorded, the load continues."""

    error_code = "BATCH_WRITE_FAILURE"


class StoreUnavailable(WilayahError):
    """The store cannot be reached. Fatal for the current operation.

    When raised by a load, ``report`` holds the partial load report.
    """

    error_code = "STORE_UNAVAILABLE"

    def __init__(
        self,
        message: str,
        *,
        context: dict[str, Any] | None = None,
        report: Any = None,
    ) -> None:
        super().__init__(message, context=context)
        self.report = report


class LoadAborted(WilayahError):
    """The region stream failed mid-load (unreadable record, composition error).

    ``report`` holds the partial load report; batches written before the
    failure stay in the store.
    """

    error_code = "LOAD_ABORTED"

    def __init__(
        self,
        message: str,
        *,
        context: dict[str, Any] | None = None,
        report: Any = None,
    ) -> None:
        super().__init__(message, context=context)
        self.report = report
