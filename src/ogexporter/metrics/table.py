"""
Published table of query definitions.

A scrape takes one reference to the current table and uses it throughout.
Reloads build a new table and swap the reference; a published table is
never edited.
"""

from __future__ import annotations

import threading
from types import MappingProxyType
from typing import Iterable, Iterator, Mapping

from ogexporter.metrics.models import QueryDefinition


class QueryTable(Mapping[str, QueryDefinition]):
    """Read-only name to definition mapping, iterated in priority order."""

    def __init__(self, definitions: Mapping[str, QueryDefinition] | Iterable[QueryDefinition] = ()):
        if isinstance(definitions, Mapping):
            items = dict(definitions)
        else:
            items = {d.name: d for d in definitions}
        ordered = sorted(items.items(), key=lambda kv: (kv[1].priority, kv[0]))
        self._definitions = MappingProxyType(dict(ordered))

    def __getitem__(self, name: str) -> QueryDefinition:
        return self._definitions[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._definitions)

    def __len__(self) -> int:
        return len(self._definitions)

    def __repr__(self) -> str:
        return f"QueryTable({list(self._definitions)!r})"


class QueryTableHolder:
    """Holds the active QueryTable; swaps are serialized, reads are lock-free."""

    def __init__(self, table: QueryTable | None = None):
        self._table = table or QueryTable()
        self._lock = threading.Lock()
        self._generation = 0

    @property
    def current(self) -> QueryTable:
        return self._table

    @property
    def generation(self) -> int:
        return self._generation

    def publish(self, table: QueryTable) -> QueryTable:
        """Make ``table`` active and return the table it replaced."""
        with self._lock:
            previous = self._table
            self._table = table
            self._generation += 1
        return previous
