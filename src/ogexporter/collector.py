"""
Scrape orchestration.

Runs every enabled query definition against the target on each scrape,
bounded by the configured parallelism and scrape deadline, and renders the
samples in the Prometheus text exposition format.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Sequence

import structlog
from prometheus_client import (
    PLATFORM_COLLECTOR,
    PROCESS_COLLECTOR,
    CollectorRegistry,
    Counter,
    generate_latest,
)
from prometheus_client.core import (
    CounterMetricFamily,
    GaugeMetricFamily,
    Metric,
    UnknownMetricFamily,
)
from prometheus_client.registry import Collector
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from ogexporter.config import Settings, load_query_table
from ogexporter.core.errors import ConfigurationError, DatabaseError, QueryDefinitionError
from ogexporter.db.session import BaseInfo, query_base_info
from ogexporter.logging import bind_scrape_context
from ogexporter.metrics.executor import execute
from ogexporter.metrics.models import MetricSample, QueryDefinition, ValueType
from ogexporter.metrics.rows import RowOptions
from ogexporter.metrics.table import QueryTable, QueryTableHolder

logger = structlog.get_logger()

_FAMILY_BY_TYPE = {
    ValueType.COUNTER: CounterMetricFamily,
    ValueType.GAUGE: GaugeMetricFamily,
    ValueType.UNTYPED: UnknownMetricFamily,
}


@dataclass
class DefinitionResult:
    """Outcome of one query definition within a scrape."""

    name: str
    samples: list[MetricSample] = field(default_factory=list)
    duration: float = 0.0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ScrapeResult:
    """All definition outcomes of one scrape."""

    results: list[DefinitionResult]
    base_info: BaseInfo
    duration: float = 0.0

    def samples(self) -> Iterator[MetricSample]:
        for result in self.results:
            yield from result.samples

    @property
    def failed(self) -> list[str]:
        return [r.name for r in self.results if not r.ok]


def _safe_label(value: str) -> str:
    # Labels that skipped the UTF-8 check may still carry escaped raw bytes.
    return value.encode("utf-8", errors="surrogateescape").decode("utf-8", errors="replace")


def build_families(samples: Iterable[MetricSample]) -> list[Metric]:
    """
    Group samples into one metric family per metric name.

    Repeated label sets within a family are dropped; Prometheus rejects
    duplicate series in a single exposition.
    """
    families: dict[str, Metric] = {}
    layouts: dict[str, tuple[str, ...]] = {}
    seen: dict[str, set[tuple[str, ...]]] = {}

    for sample in samples:
        descriptor = sample.descriptor
        const_names = tuple(sorted(descriptor.const_labels))
        label_names = descriptor.label_names + const_names
        label_values = tuple(_safe_label(v) for v in sample.label_values) + tuple(
            descriptor.const_labels[name] for name in const_names
        )

        family = families.get(descriptor.name)
        if family is None:
            family_type = _FAMILY_BY_TYPE[sample.value_type]
            family = family_type(descriptor.name, descriptor.help, labels=list(label_names))
            families[descriptor.name] = family
            layouts[descriptor.name] = label_names
            seen[descriptor.name] = set()
        elif layouts[descriptor.name] != label_names:
            logger.warning("inconsistent_label_names", metric=descriptor.name, labels=list(label_names))
            continue

        if label_values in seen[descriptor.name]:
            logger.warning("duplicate_series_dropped", metric=descriptor.name, labels=list(label_values))
            continue
        seen[descriptor.name].add(label_values)
        family.add_metric(list(label_values), sample.value)

    return list(families.values())


class SnapshotCollector(Collector):
    """Serves metric families computed ahead of the registry collect call."""

    def __init__(self, families: Sequence[Metric]):
        self._families = families

    def collect(self) -> Iterable[Metric]:
        return iter(self._families)


class Exporter:
    """
    Owns everything one target needs: settings, engine, query table and the
    exporter's own metrics.
    """

    def __init__(
        self,
        settings: Settings,
        engine: AsyncEngine,
        holder: QueryTableHolder,
        registry: CollectorRegistry | None = None,
    ) -> None:
        self.settings = settings
        self.engine = engine
        self.holder = holder
        self.base_info: BaseInfo | None = None
        self.server_labels = settings.server_labels()

        self.registry = registry or CollectorRegistry(auto_describe=True)
        namespace = settings.namespace
        self.scrapes_total = Counter(
            f"{namespace}_exporter_scrapes",
            "Total number of scrapes served",
            registry=self.registry,
        )
        self.query_errors_total = Counter(
            f"{namespace}_exporter_query_errors",
            "Total number of query definitions that produced no samples because of an error",
            ["query"],
            registry=self.registry,
        )
        if not settings.disable_exporter_metrics:
            self.registry.register(PROCESS_COLLECTOR)
            self.registry.register(PLATFORM_COLLECTOR)

    def row_options(self) -> RowOptions:
        return RowOptions(
            server_labels=self.server_labels,
            time_as_string=self.settings.time_to_string,
            fallback_charset=self.settings.fallback_charset,
        )

    def reload(self) -> QueryTable:
        """Load the YAML config again and publish it; in-flight scrapes keep the old table."""
        table = load_query_table(self.settings.config_path)
        self.holder.publish(table)
        logger.info("config_reloaded", queries=len(table), generation=self.holder.generation)
        return table

    def select(self, table: QueryTable, filters: Sequence[str] | None = None) -> list[QueryDefinition]:
        """Definitions a scrape runs, restricted to ``filters`` when given."""
        if not filters:
            return list(table.values())
        unknown = [name for name in filters if name not in table]
        if unknown:
            raise ConfigurationError("unknown query definitions requested", details={"queries": unknown})
        return [table[name] for name in dict.fromkeys(filters)]

    async def refresh_base_info(self) -> BaseInfo:
        try:
            self.base_info = await query_base_info(self.engine)
        except (SQLAlchemyError, OSError) as e:
            raise DatabaseError(f"cannot reach database: {e}", details={"server": self.server_labels["server"]}) from e
        return self.base_info

    async def _scrape_definition(
        self,
        definition: QueryDefinition,
        options: RowOptions,
        semaphore: asyncio.Semaphore,
    ) -> DefinitionResult:
        result = DefinitionResult(name=definition.name)
        async with semaphore:
            start = time.perf_counter()
            try:
                async with self.engine.connect() as conn:
                    result.samples = await execute(definition, conn, options)
            except QueryDefinitionError as e:
                result.error = e.message
            except (SQLAlchemyError, OSError) as e:
                result.error = str(e)
            except Exception as e:
                logger.exception("query_definition_crashed", query=definition.name)
                result.error = f"{type(e).__name__}: {e}"
            finally:
                result.duration = time.perf_counter() - start

        if result.error is not None:
            logger.error("query_definition_failed", query=definition.name, error=result.error)
            self.query_errors_total.labels(query=definition.name).inc()
        else:
            logger.debug("query_definition_scraped", query=definition.name, samples=len(result.samples))
        return result

    async def scrape(self, filters: Sequence[str] | None = None) -> ScrapeResult:
        """
        Run the selected definitions concurrently.

        Definitions still running when ``scrape_timeout`` expires are cancelled
        and reported as failed; the rest of the scrape is still returned.

        Raises:
            ConfigurationError: If ``filters`` names unknown definitions
            DatabaseError: If the target does not answer at all
            asyncio.CancelledError: If the caller cancels; running definitions
                are cancelled and awaited first
        """
        start = time.perf_counter()
        table = self.holder.current
        definitions = self.select(table, filters)
        bind_scrape_context(server=self.server_labels["server"], generation=self.holder.generation)

        base_info = await self.refresh_base_info()
        self.scrapes_total.inc()

        options = self.row_options()
        semaphore = asyncio.Semaphore(self.settings.parallel)
        tasks = {
            asyncio.create_task(self._scrape_definition(d, options, semaphore)): d.name
            for d in definitions
        }

        results: list[DefinitionResult] = []
        if tasks:
            try:
                done, pending = await asyncio.wait(tasks, timeout=self.settings.scrape_timeout)
            except asyncio.CancelledError:
                logger.warning("scrape_cancelled", queries=len(tasks))
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise

            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

            for task, name in tasks.items():
                if task in done:
                    results.append(task.result())
                    continue
                logger.error("query_definition_timeout", query=name, timeout=self.settings.scrape_timeout)
                self.query_errors_total.labels(query=name).inc()
                results.append(DefinitionResult(name=name, error="scrape timeout"))

        scrape = ScrapeResult(results=results, base_info=base_info, duration=time.perf_counter() - start)
        logger.info(
            "scrape_finished",
            queries=len(results),
            failed=len(scrape.failed),
            duration=round(scrape.duration, 4),
        )
        return scrape

    def status_families(self, scrape: ScrapeResult) -> list[Metric]:
        """``up``, ``version`` and per-query duration families for one scrape."""
        namespace = self.settings.namespace
        const_names = sorted(self.server_labels)
        const_values = [self.server_labels[n] for n in const_names]

        up = GaugeMetricFamily(
            f"{namespace}_up", "always 1 when the target could be queried", labels=const_names
        )
        up.add_metric(const_values, 1)

        version = GaugeMetricFamily(
            f"{namespace}_version", "get version information", labels=const_names + ["short_version"]
        )
        version.add_metric(const_values + [scrape.base_info.short_version], 1)

        duration = GaugeMetricFamily(
            f"{namespace}_exporter_query_duration_seconds",
            "Time spent running one query definition during the last scrape",
            labels=const_names + ["query"],
        )
        for result in scrape.results:
            duration.add_metric(const_values + [result.name], result.duration)

        return [up, version, duration]

    def render(self, scrape: ScrapeResult) -> bytes:
        """Exposition bytes: exporter metrics followed by this scrape's samples."""
        snapshot = CollectorRegistry(auto_describe=False)
        snapshot.register(SnapshotCollector(self.status_families(scrape) + build_families(scrape.samples())))
        return generate_latest(self.registry) + generate_latest(snapshot)
