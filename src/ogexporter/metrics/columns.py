"""Column role resolution for result columns."""

from __future__ import annotations

from enum import Enum
from typing import Mapping

from ogexporter.metrics.models import ColumnDescriptor, QueryDefinition, Usage


class ColumnRole(Enum):
    """What the row processor does with a column."""

    NUMERIC = "numeric"  # emits one sample
    LABEL = "label"  # feeds label values only
    DISCARD = "discard"  # ignored, includes histogram and mapped metric usages
    UNDECLARED = "undeclared"  # no descriptor; skipped


_ROLE_BY_USAGE = {
    Usage.LABEL: ColumnRole.LABEL,
    Usage.DISCARD: ColumnRole.DISCARD,
    Usage.HISTOGRAM: ColumnRole.DISCARD,
    Usage.MAPPEDMETRIC: ColumnRole.DISCARD,
    Usage.COUNTER: ColumnRole.NUMERIC,
    Usage.GAUGE: ColumnRole.NUMERIC,
    Usage.UNTYPED: ColumnRole.NUMERIC,
}


def resolve_column(
    definition: QueryDefinition,
    column_name: str,
    server_labels: Mapping[str, str] | None = None,
) -> ColumnDescriptor | None:
    """
    Look up the declared descriptor of ``column_name``.

    The server identity labels are merged into the returned descriptor's
    constant labels; the stored descriptor is left untouched.
    """
    column = definition.columns.get(column_name)
    if column is None:
        return None
    return column.with_const_labels(server_labels or {})


def classify(column: ColumnDescriptor | None) -> ColumnRole:
    if column is None:
        return ColumnRole.UNDECLARED
    return _ROLE_BY_USAGE[column.usage]
