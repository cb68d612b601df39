"""
Query-to-metric mapping engine.

Turns declarative query definitions and their result rows into typed,
labeled Prometheus samples.
"""

from ogexporter.metrics.coercion import to_number, to_text
from ogexporter.metrics.columns import ColumnRole, classify, resolve_column
from ogexporter.metrics.encoding import decode_bytes, map_charset, validate_and_fix
from ogexporter.metrics.executor import execute, fetch_rows
from ogexporter.metrics.models import (
    ColumnDescriptor,
    MetricSample,
    QueryDefinition,
    SampleDescriptor,
    Statement,
    Usage,
    ValueType,
)
from ogexporter.metrics.rows import RowOptions, process_row
from ogexporter.metrics.table import QueryTable, QueryTableHolder

__all__ = [
    # Models
    "ColumnDescriptor",
    "MetricSample",
    "QueryDefinition",
    "SampleDescriptor",
    "Statement",
    "Usage",
    "ValueType",
    "QueryTable",
    "QueryTableHolder",
    # Engine
    "ColumnRole",
    "RowOptions",
    "classify",
    "decode_bytes",
    "execute",
    "fetch_rows",
    "map_charset",
    "process_row",
    "resolve_column",
    "to_number",
    "to_text",
    "validate_and_fix",
]
