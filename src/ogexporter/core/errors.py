"""
Unified error handling for og-exporter.

Errors fall in three groups:
- Fatal to the process: configuration or database unavailable at start-up.
- Fatal to one query definition: it fails its check, its statements all fail.
- Non-fatal to a row: one column or label could not be converted. These are
  collected, logged and never abort a scrape.

Exit Codes:
- 0: Success
- 10: Configuration error
- 11: Database error
- 12: Query definition error
- 127: Unknown/internal error
- 130: Interrupted
"""

from __future__ import annotations

import functools
from enum import IntEnum
from typing import Any, Callable, TypeVar

import structlog

logger = structlog.get_logger()


class ExitCode(IntEnum):
    """Standardized exit codes for the CLI."""

    SUCCESS = 0
    CONFIG_ERROR = 10
    DATABASE_ERROR = 11
    DEFINITION_ERROR = 12
    UNKNOWN_ERROR = 127
    INTERRUPTED = 130


class ExporterError(Exception):
    """Base exception for og-exporter errors with exit code support."""

    exit_code: ExitCode = ExitCode.UNKNOWN_ERROR

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(ExporterError):
    """Raised when settings or query definition files cannot be used."""

    exit_code = ExitCode.CONFIG_ERROR


class DatabaseError(ExporterError):
    """Raised when the target database cannot be reached."""

    exit_code = ExitCode.DATABASE_ERROR


class QueryDefinitionError(ExporterError):
    """Raised when a query definition fails its check."""

    exit_code = ExitCode.DEFINITION_ERROR


class UnexpectedValueError(ExporterError):
    """A column value could not be converted to a sample value."""

    def __init__(self, metric: str, column: str, value: Any):
        super().__init__(
            f"unexpected value parsing column {column!r} of {metric!r}: {value!r}",
            details={"metric": metric, "column": column},
        )
        self.metric = metric
        self.column = column
        self.value = value


class SampleConstructionError(ExporterError):
    """A sample could not be built from a resolved column."""


F = TypeVar("F", bound=Callable[..., int])


def main_with_error_handling(func: F) -> F:
    """
    Turn what escapes a CLI entry point into its exit code.

    ExporterError subclasses map to their ``exit_code``, Ctrl-C to
    ``INTERRUPTED`` and anything else to ``UNKNOWN_ERROR`` with the traceback
    logged.
    """

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> int:
        try:
            return func(*args, **kwargs)
        except ExporterError as e:
            logger.error("exporter_exit", error_type=type(e).__name__, message=e.message, **e.details)
            return e.exit_code
        except KeyboardInterrupt:
            logger.info("exporter_interrupted")
            return ExitCode.INTERRUPTED
        except Exception:
            logger.exception("exporter_crashed")
            return ExitCode.UNKNOWN_ERROR

    return wrapper  # type: ignore[return-value]
