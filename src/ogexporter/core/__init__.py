"""Core exporter primitives."""

from ogexporter.core.errors import (
    ConfigurationError,
    DatabaseError,
    ExitCode,
    ExporterError,
    QueryDefinitionError,
    SampleConstructionError,
    UnexpectedValueError,
    main_with_error_handling,
)

__all__ = [
    "ConfigurationError",
    "DatabaseError",
    "ExitCode",
    "ExporterError",
    "QueryDefinitionError",
    "SampleConstructionError",
    "UnexpectedValueError",
    "main_with_error_handling",
]
