"""
Core data models for the query-to-metric mapping engine.

Query definitions and column descriptors are built once when the YAML
configuration is loaded and are read-only afterwards. Metric samples are
created per row during a scrape and never mutated.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from enum import StrEnum
from types import MappingProxyType
from typing import Any, Iterator, Mapping

from ogexporter.core.errors import QueryDefinitionError


class Usage(StrEnum):
    """How a result column is treated."""

    LABEL = "LABEL"
    DISCARD = "DISCARD"
    COUNTER = "COUNTER"
    GAUGE = "GAUGE"
    UNTYPED = "UNTYPED"
    HISTOGRAM = "HISTOGRAM"
    MAPPEDMETRIC = "MAPPEDMETRIC"

    @classmethod
    def parse(cls, raw: str | None) -> Usage:
        if not raw:
            return cls.UNTYPED
        try:
            return cls(raw.strip().upper())
        except ValueError as e:
            raise QueryDefinitionError(f"unknown column usage: {raw!r}") from e


class ValueType(StrEnum):
    """Prometheus value type of an emitted sample."""

    COUNTER = "counter"
    GAUGE = "gauge"
    UNTYPED = "untyped"

    @classmethod
    def for_usage(cls, usage: Usage) -> ValueType:
        if usage is Usage.COUNTER:
            return cls.COUNTER
        if usage is Usage.GAUGE:
            return cls.GAUGE
        return cls.UNTYPED


STATUS_ENABLE = "enable"
STATUS_DISABLE = "disable"


def _enabled(raw: Any) -> bool:
    if raw is None:
        return True
    if isinstance(raw, bool):
        return raw
    return str(raw).strip().lower() != STATUS_DISABLE


@dataclass(frozen=True)
class SampleDescriptor:
    """Metric name, help and label layout shared by every sample of a column."""

    name: str
    help: str
    label_names: tuple[str, ...] = ()
    const_labels: Mapping[str, str] = field(default_factory=dict)

    def with_const_labels(self, extra: Mapping[str, str]) -> SampleDescriptor:
        if not extra:
            return self
        merged = {**self.const_labels, **extra}
        return replace(self, const_labels=MappingProxyType(merged))


@dataclass(frozen=True)
class ColumnDescriptor:
    """Declared treatment of one named result column."""

    name: str
    usage: Usage
    sample: SampleDescriptor
    description: str = ""
    rename: str | None = None
    check_utf8: bool = False
    mapping: Mapping[str, float] | None = None
    buckets: tuple[float, ...] | None = None

    @property
    def value_type(self) -> ValueType:
        return ValueType.for_usage(self.usage)

    @property
    def metric_name(self) -> str:
        return self.sample.name

    def with_const_labels(self, extra: Mapping[str, str]) -> ColumnDescriptor:
        if not extra:
            return self
        return replace(self, sample=self.sample.with_const_labels(extra))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"usage": self.usage.value}
        if self.description:
            data["description"] = self.description
        if self.rename:
            data["rename"] = self.rename
        if self.check_utf8:
            data["check_utf8"] = True
        if self.mapping is not None:
            data["mapping"] = dict(self.mapping)
        if self.buckets is not None:
            data["buckets"] = list(self.buckets)
        return {self.name: data}


@dataclass(frozen=True)
class Statement:
    """One SQL variant of a query definition."""

    name: str
    sql: str
    enabled: bool = True
    timeout: float | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], default_name: str) -> Statement:
        timeout = data.get("timeout")
        return cls(
            name=str(data.get("name") or default_name),
            sql=str(data.get("sql") or "").strip(),
            enabled=_enabled(data.get("status")),
            timeout=float(timeout) if timeout else None,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "sql": self.sql,
            "status": STATUS_ENABLE if self.enabled else STATUS_DISABLE,
        }
        if self.timeout:
            data["timeout"] = self.timeout
        return data


@dataclass(frozen=True)
class QueryDefinition:
    """
    A named unit bundling SQL statements and column metadata.

    Attributes:
        name: Unique key, also the metric name prefix
        statements: SQL variants, each enable/disable-able
        label_names: LABEL columns in declaration order (sample label order)
        columns: Column name to descriptor mapping, built at load time
        db_name_label: Column holding the database name, used when a label
            needs transcoding
        priority: Merge order; 0 means assigned by the loader
    """

    name: str
    statements: tuple[Statement, ...]
    columns: Mapping[str, ColumnDescriptor]
    label_names: tuple[str, ...] = ()
    description: str = ""
    db_name_label: str | None = None
    enabled: bool = True
    priority: int = 0
    path: str = ""

    @classmethod
    def from_dict(cls, name: str, data: Mapping[str, Any], path: str = "") -> QueryDefinition:
        name = str(data.get("name") or name)
        description = str(data.get("desc") or data.get("description") or "")

        raw_queries = data.get("query") or data.get("queries") or []
        if isinstance(raw_queries, (str, Mapping)):
            raw_queries = [raw_queries]
        statements = tuple(
            Statement(name=name, sql=raw.strip())
            if isinstance(raw, str)
            else Statement.from_dict(raw, default_name=name)
            for raw in raw_queries
        )

        column_specs = list(_iter_column_specs(name, data.get("metrics") or []))
        label_names = tuple(
            col_name for col_name, spec in column_specs if Usage.parse(spec.get("usage")) is Usage.LABEL
        )
        columns: dict[str, ColumnDescriptor] = {}
        for col_name, spec in column_specs:
            columns[col_name] = _build_column(name, description, col_name, spec, label_names)

        try:
            priority = int(data.get("priority") or 0)
        except (TypeError, ValueError) as e:
            raise QueryDefinitionError(f"{name}: priority must be an integer") from e

        return cls(
            name=name,
            statements=statements,
            columns=MappingProxyType(columns),
            label_names=label_names,
            description=description,
            db_name_label=data.get("db_name_label") or None,
            enabled=_enabled(data.get("status")),
            priority=priority,
            path=path,
        )

    def check(self) -> None:
        """Raise QueryDefinitionError unless the definition can be scraped."""
        if not self.name:
            raise QueryDefinitionError("query definition without a name", details={"path": self.path})
        if not self.statements:
            raise QueryDefinitionError(f"{self.name}: no query statements", details={"path": self.path})
        for statement in self.statements:
            if not statement.sql:
                raise QueryDefinitionError(
                    f"{self.name}: statement {statement.name!r} has empty sql",
                    details={"path": self.path},
                )
        for label in self.label_names:
            column = self.columns.get(label)
            if column is None or column.usage is not Usage.LABEL:
                raise QueryDefinitionError(f"{self.name}: label {label!r} is not a LABEL column")
        if not 0 <= self.priority <= 999:
            raise QueryDefinitionError(f"{self.name}: priority {self.priority} outside 0-999")

    def enabled_statements(self) -> Iterator[Statement]:
        return (s for s in self.statements if s.enabled)

    def with_priority(self, priority: int) -> QueryDefinition:
        return replace(self, priority=priority)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name}
        if self.description:
            data["desc"] = self.description
        if self.db_name_label:
            data["db_name_label"] = self.db_name_label
        data["status"] = STATUS_ENABLE if self.enabled else STATUS_DISABLE
        data["priority"] = self.priority
        data["query"] = [s.to_dict() for s in self.statements]
        data["metrics"] = [c.to_dict() for c in self.columns.values()]
        return data


@dataclass(frozen=True)
class MetricSample:
    """One (name, labels, value, type) data point."""

    descriptor: SampleDescriptor
    value: float
    value_type: ValueType
    label_values: tuple[str, ...]

    @property
    def name(self) -> str:
        return self.descriptor.name

    def labels(self) -> dict[str, str]:
        """Variable and constant labels as one mapping."""
        labels = dict(zip(self.descriptor.label_names, self.label_values))
        labels.update(self.descriptor.const_labels)
        return labels

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MetricSample):
            return NotImplemented
        same_value = self.value == other.value or (math.isnan(self.value) and math.isnan(other.value))
        return (
            same_value
            and self.descriptor == other.descriptor
            and self.value_type == other.value_type
            and self.label_values == other.label_values
        )


def _iter_column_specs(query_name: str, raw_metrics: Any) -> Iterator[tuple[str, Mapping[str, Any]]]:
    if isinstance(raw_metrics, Mapping):
        raw_metrics = [{k: v} for k, v in raw_metrics.items()]
    for entry in raw_metrics:
        if not isinstance(entry, Mapping):
            raise QueryDefinitionError(f"{query_name}: malformed metrics entry {entry!r}")
        if "name" in entry:
            yield str(entry["name"]), entry
        elif len(entry) == 1:
            col_name, spec = next(iter(entry.items()))
            yield str(col_name), spec or {}
        else:
            raise QueryDefinitionError(f"{query_name}: metrics entry needs a single column name")


def _build_column(
    query_name: str,
    query_desc: str,
    column_name: str,
    spec: Mapping[str, Any],
    label_names: tuple[str, ...],
) -> ColumnDescriptor:
    usage = Usage.parse(spec.get("usage"))
    rename = spec.get("rename") or None
    description = str(spec.get("description") or "")
    metric_name = f"{query_name}_{rename or column_name}"

    mapping = spec.get("mapping")
    buckets = spec.get("buckets")
    try:
        mapping = MappingProxyType({str(k): float(v) for k, v in mapping.items()}) if mapping else None
        buckets = tuple(float(b) for b in buckets) if buckets else None
    except (AttributeError, TypeError, ValueError) as e:
        raise QueryDefinitionError(f"{query_name}: malformed mapping/buckets on {column_name!r}") from e

    return ColumnDescriptor(
        name=column_name,
        usage=usage,
        sample=SampleDescriptor(
            name=metric_name,
            help=description or query_desc or metric_name,
            label_names=label_names,
            const_labels=MappingProxyType({}),
        ),
        description=description,
        rename=rename,
        check_utf8=bool(spec.get("check_utf8", False)),
        mapping=mapping,
        buckets=buckets,
    )
