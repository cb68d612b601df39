"""
Row processing: one result row in, metric samples and non-fatal errors out.

A bad column or label never aborts the row. Label values are resolved first
because the database-name label is needed to repair malformed text.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

import structlog

from ogexporter.core.errors import SampleConstructionError, UnexpectedValueError
from ogexporter.metrics.coercion import to_number, to_text
from ogexporter.metrics.columns import ColumnRole, classify, resolve_column
from ogexporter.metrics.encoding import GBK, validate_and_fix
from ogexporter.metrics.models import ColumnDescriptor, MetricSample, QueryDefinition

logger = structlog.get_logger()


@dataclass(frozen=True)
class RowOptions:
    """Per-target settings that shape how rows become samples."""

    server_labels: Mapping[str, str] = field(default_factory=dict)
    time_as_string: bool = False
    fallback_charset: str = GBK


def _cell(row: Sequence[Any], column_index: Mapping[str, int], column: str) -> tuple[Any, bool]:
    idx = column_index.get(column)
    if idx is None or idx >= len(row):
        return None, False
    return row[idx], True


def _label_values(
    definition: QueryDefinition,
    column_index: Mapping[str, int],
    row: Sequence[Any],
    options: RowOptions,
    errors: list[Exception],
) -> tuple[str, ...]:
    db_name = ""
    if definition.db_name_label:
        value, found = _cell(row, column_index, definition.db_name_label)
        if found:
            try:
                db_name, _ = to_text(value, True)
            except (ArithmeticError, TypeError, ValueError):
                db_name = ""

    labels: list[str] = []
    for label in definition.label_names:
        value, found = _cell(row, column_index, label)
        if not found:
            logger.error("label_column_missing", query=definition.name, label=label)
            errors.append(UnexpectedValueError(definition.name, label, None))
            labels.append("")
            continue

        try:
            text, ok = to_text(value, options.time_as_string)
        except (ArithmeticError, TypeError, ValueError) as e:
            logger.error("label_decode_failed", query=definition.name, label=label, error=str(e))
            errors.append(
                SampleConstructionError(
                    f"{definition.name}: cannot convert label {label!r}: {e}",
                    details={"query": definition.name, "column": label},
                )
            )
            labels.append("")
            continue
        if not ok:
            logger.error("label_decode_failed", query=definition.name, label=label, kind=type(value).__name__)
            errors.append(UnexpectedValueError(definition.name, label, value))
            labels.append("")
            continue

        column = definition.columns.get(label)
        check_required = column.check_utf8 if column is not None else False
        labels.append(validate_and_fix(text, check_required, db_name, options.fallback_charset))
    return tuple(labels)


def _build_sample(
    column: ColumnDescriptor,
    value: Any,
    label_values: tuple[str, ...],
) -> tuple[MetricSample | None, Exception | None]:
    try:
        number, ok = to_number(value)
    except (ArithmeticError, TypeError, ValueError) as e:
        return None, SampleConstructionError(
            f"{column.metric_name}: cannot convert column {column.name!r}: {e}",
            details={"metric": column.metric_name, "column": column.name},
        )
    if not ok:
        return None, UnexpectedValueError(column.metric_name, column.name, value)

    descriptor = column.sample
    if len(label_values) != len(descriptor.label_names):
        return None, SampleConstructionError(
            f"{descriptor.name}: expected {len(descriptor.label_names)} label values, got {len(label_values)}",
            details={"metric": descriptor.name, "column": column.name},
        )
    return MetricSample(descriptor, number, column.value_type, label_values), None


def process_row(
    definition: QueryDefinition,
    column_names: Sequence[str],
    column_index: Mapping[str, int],
    row: Sequence[Any],
    options: RowOptions | None = None,
) -> tuple[list[MetricSample], list[Exception]]:
    """
    Turn one result row into metric samples.

    Args:
        definition: Query definition the row belongs to
        column_names: Column names of the statement, in row order
        column_index: Column name to row position
        row: Column values
        options: Server labels, time rendering and fallback charset

    Returns:
        Samples built from declared numeric columns, and the non-fatal errors
        met along the way. Undeclared columns are skipped.
    """
    options = options or RowOptions()
    errors: list[Exception] = []
    samples: list[MetricSample] = []

    label_values = _label_values(definition, column_index, row, options, errors)

    for idx, column_name in enumerate(column_names):
        if idx >= len(row):
            break
        column = resolve_column(definition, column_name, options.server_labels)
        if classify(column) is not ColumnRole.NUMERIC:
            continue

        sample, error = _build_sample(column, row[idx], label_values)
        if error is not None:
            logger.error("sample_build_failed", query=definition.name, column=column_name, error=str(error))
            errors.append(error)
            continue
        samples.append(sample)

    return samples, errors
