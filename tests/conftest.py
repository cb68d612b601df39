"""Root test configuration."""

import logging
from types import MappingProxyType

import pytest
import structlog

from ogexporter.metrics.models import QueryDefinition


def pytest_configure(config):
    """Configure structlog for tests to suppress debug/info output."""
    logging.basicConfig(level=logging.WARNING, force=True)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


PG_DATABASE = {
    "desc": "database statistics",
    "query": [
        {
            "name": "pg_database",
            "sql": "SELECT datname, numbackends FROM pg_stat_database",
            "status": "enable",
        }
    ],
    "metrics": [
        {"datname": {"usage": "LABEL", "description": "Name of this database", "check_utf8": True}},
        {"numbackends": {"usage": "GAUGE", "description": "Backends connected"}},
    ],
}


@pytest.fixture
def pg_database() -> QueryDefinition:
    """The pg_database definition: label datname, gauge numbackends."""
    return QueryDefinition.from_dict("pg_database", PG_DATABASE)


@pytest.fixture
def server_labels():
    return MappingProxyType({"server": "127.0.0.1:5432"})
