"""Tests for collector.py."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from prometheus_client import CollectorRegistry, generate_latest
from sqlalchemy.exc import OperationalError

from ogexporter.collector import Exporter, SnapshotCollector, build_families
from ogexporter.config.settings import Settings
from ogexporter.core.errors import ConfigurationError, DatabaseError
from ogexporter.db.session import BaseInfo
from ogexporter.metrics.models import MetricSample, QueryDefinition, SampleDescriptor, ValueType
from ogexporter.metrics.table import QueryTable, QueryTableHolder

BASE_INFO = BaseInfo(
    version_string="(openGauss 3.0.0 build 02c14696) compiled at 2022-04-01",
    short_version="3.0.0",
    client_encoding="UTF8",
    in_recovery=False,
    current_database="postgres",
)

PG_LOCK = {
    "query": "SELECT mode, count FROM pg_locks",
    "metrics": [{"mode": {"usage": "LABEL"}}, {"count": {"usage": "COUNTER"}}],
}


def _result(columns, rows):
    result = MagicMock()
    result.keys.return_value = columns
    result.fetchall.return_value = rows
    return result


def _render(families):
    registry = CollectorRegistry(auto_describe=False)
    registry.register(SnapshotCollector(families))
    return generate_latest(registry).decode()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        url="postgresql://127.0.0.1:5432/postgres",
        config_path=str(tmp_path / "queries.yaml"),
        disable_exporter_metrics=True,
        scrape_timeout=1.0,
    )


@pytest.fixture
def conn():
    connection = AsyncMock()

    async def execute(statement):
        if "pg_locks" in str(statement):
            return _result(["mode", "count"], [("AccessShareLock", 4)])
        return _result(["datname", "numbackends"], [("postgres", 3)])

    connection.execute.side_effect = execute
    return connection


@pytest.fixture
def engine(conn):
    mock_engine = MagicMock()
    mock_engine.connect.return_value.__aenter__.return_value = conn
    return mock_engine


@pytest.fixture
def exporter(settings, engine, pg_database):
    table = QueryTable(
        [
            pg_database,
            QueryDefinition.from_dict("pg_lock", PG_LOCK),
        ]
    )
    return Exporter(settings, engine, QueryTableHolder(table))


@pytest.fixture
def base_info():
    with patch("ogexporter.collector.query_base_info", AsyncMock(return_value=BASE_INFO)) as mock:
        yield mock


class TestBuildFamilies:
    """Tests for build_families."""

    def test_one_family_per_metric(self):
        descriptor = SampleDescriptor("pg_lock_count", "Locks", ("mode",), {"server": "db:5432"})
        samples = [
            MetricSample(descriptor, 4.0, ValueType.GAUGE, ("AccessShareLock",)),
            MetricSample(descriptor, 1.0, ValueType.GAUGE, ("ExclusiveLock",)),
        ]

        families = build_families(samples)

        assert len(families) == 1
        assert families[0].type == "gauge"
        assert [s.labels for s in families[0].samples] == [
            {"mode": "AccessShareLock", "server": "db:5432"},
            {"mode": "ExclusiveLock", "server": "db:5432"},
        ]

    def test_duplicate_series_dropped(self):
        descriptor = SampleDescriptor("pg_lock_count", "Locks", ("mode",))
        samples = [
            MetricSample(descriptor, 4.0, ValueType.GAUGE, ("AccessShareLock",)),
            MetricSample(descriptor, 9.0, ValueType.GAUGE, ("AccessShareLock",)),
        ]

        families = build_families(samples)

        assert [s.value for s in families[0].samples] == [4.0]

    def test_value_types(self):
        samples = [
            MetricSample(SampleDescriptor("a", "a"), 1.0, ValueType.COUNTER, ()),
            MetricSample(SampleDescriptor("b", "b"), 1.0, ValueType.UNTYPED, ()),
        ]

        text = _render(build_families(samples))

        assert "# TYPE a_total counter" in text or "# TYPE a counter" in text
        assert "a_total 1.0" in text
        assert "# TYPE b unknown" in text or "# TYPE b untyped" in text

    def test_malformed_label_bytes_are_replaced(self):
        descriptor = SampleDescriptor("m", "help", ("l",))
        raw = b"\xff".decode("utf-8", errors="surrogateescape")

        text = _render(build_families([MetricSample(descriptor, 1.0, ValueType.GAUGE, (raw,))]))

        assert 'm{l="�"} 1.0' in text

    def test_snapshot_collector(self):
        families = build_families([MetricSample(SampleDescriptor("m", "h"), 2.0, ValueType.GAUGE, ())])
        assert list(SnapshotCollector(families).collect()) == families


class TestExporterScrape:
    """Tests for Exporter.scrape."""

    @pytest.mark.asyncio
    async def test_scrape_all_definitions(self, exporter, base_info):
        scrape = await exporter.scrape()

        assert scrape.failed == []
        assert scrape.base_info is BASE_INFO
        assert sorted(s.name for s in scrape.samples()) == ["pg_database_numbackends", "pg_lock_count"]
        assert all(s.labels()["server"] == "127.0.0.1:5432" for s in scrape.samples())

    @pytest.mark.asyncio
    async def test_filters(self, exporter, base_info, conn):
        scrape = await exporter.scrape(["pg_lock"])

        assert [r.name for r in scrape.results] == ["pg_lock"]
        assert conn.execute.await_count == 1

    @pytest.mark.asyncio
    async def test_unknown_filter(self, exporter, base_info):
        with pytest.raises(ConfigurationError) as exc_info:
            await exporter.scrape(["pg_nothing"])
        assert exc_info.value.details == {"queries": ["pg_nothing"]}

    @pytest.mark.asyncio
    async def test_database_unreachable(self, exporter):
        error = OperationalError("SELECT version()", {}, Exception("connection refused"))
        with patch("ogexporter.collector.query_base_info", AsyncMock(side_effect=error)):
            with pytest.raises(DatabaseError):
                await exporter.scrape()

    @pytest.mark.asyncio
    async def test_failing_definition_does_not_abort_scrape(self, exporter, base_info):
        broken = QueryDefinition.from_dict("pg_broken", {"query": [{"name": "pg_broken", "sql": ""}]})
        exporter.holder.publish(QueryTable([*exporter.holder.current.values(), broken]))

        scrape = await exporter.scrape()

        assert scrape.failed == ["pg_broken"]
        assert len(list(scrape.samples())) == 2
        assert exporter.registry.get_sample_value(
            "pg_exporter_query_errors_total", {"query": "pg_broken"}
        ) == 1.0

    @pytest.mark.asyncio
    async def test_scrape_timeout(self, exporter, base_info):
        exporter.settings.scrape_timeout = 0.05

        async def slow(definition, conn, options=None):
            if definition.name == "pg_lock":
                await asyncio.sleep(5)
            return []

        with patch("ogexporter.collector.execute", side_effect=slow):
            scrape = await exporter.scrape()

        assert scrape.failed == ["pg_lock"]
        result = next(r for r in scrape.results if r.name == "pg_lock")
        assert result.error == "scrape timeout"


class TestExporterRender:
    @pytest.mark.asyncio
    async def test_render(self, exporter, base_info):
        scrape = await exporter.scrape()

        text = exporter.render(scrape).decode()

        assert "# HELP pg_database_numbackends Backends connected" in text
        assert "# TYPE pg_database_numbackends gauge" in text
        assert 'pg_database_numbackends{datname="postgres",server="127.0.0.1:5432"} 3.0' in text
        assert 'pg_lock_count_total{mode="AccessShareLock",server="127.0.0.1:5432"} 4.0' in text
        assert 'pg_up{server="127.0.0.1:5432"} 1.0' in text
        assert 'pg_version{server="127.0.0.1:5432",short_version="3.0.0"} 1.0' in text
        assert "pg_exporter_scrapes_total 1.0" in text
        assert "process_cpu_seconds_total" not in text


class TestExporterReload:
    def test_reload_publishes_new_table(self, exporter, settings):
        with open(settings.config_path, "w", encoding="utf-8") as f:
            f.write("pg_lock:\n  query: SELECT 1\n  metrics: []\n")

        table = exporter.reload()

        assert list(table) == ["pg_lock"]
        assert exporter.holder.current is table
        assert exporter.holder.generation == 1

    def test_reload_failure_keeps_table(self, exporter):
        before = exporter.holder.current

        with pytest.raises(ConfigurationError):
            exporter.reload()

        assert exporter.holder.current is before


class TestExporterCancellation:
    """Cancelling a scrape also cancels the definitions it started."""

    @pytest.mark.asyncio
    async def test_cancelled_scrape_cancels_running_definitions(self, exporter, base_info):
        outcomes = []
        entered = []
        started = asyncio.Event()

        async def blocking(definition, conn, options=None):
            entered.append(definition.name)
            if len(entered) == 2:
                started.set()
            try:
                await asyncio.sleep(5)
            except asyncio.CancelledError:
                outcomes.append((definition.name, "cancelled"))
                raise
            outcomes.append((definition.name, "completed"))
            return []

        with patch("ogexporter.collector.execute", side_effect=blocking):
            task = asyncio.create_task(exporter.scrape())
            await started.wait()
            task.cancel()

            with pytest.raises(asyncio.CancelledError):
                await task

        assert sorted(outcomes) == [("pg_database", "cancelled"), ("pg_lock", "cancelled")]


class TestUnexpectedDefinitionErrors:
    @pytest.mark.asyncio
    async def test_unexpected_exception_fails_only_its_definition(self, exporter, base_info):
        async def crashing(definition, conn, options=None):
            if definition.name == "pg_lock":
                raise ValueError("cannot convert signaling NaN to float")
            return []

        with patch("ogexporter.collector.execute", side_effect=crashing):
            scrape = await exporter.scrape()

        assert scrape.failed == ["pg_lock"]
        result = next(r for r in scrape.results if r.name == "pg_lock")
        assert result.error == "ValueError: cannot convert signaling NaN to float"
        assert exporter.registry.get_sample_value(
            "pg_exporter_query_errors_total", {"query": "pg_lock"}
        ) == 1.0
