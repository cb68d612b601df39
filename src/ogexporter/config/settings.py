"""
Application settings using Pydantic.

Provides environment-based configuration loading with OG_EXPORTER_ prefix.
"""

from __future__ import annotations

import logging
from functools import lru_cache

import structlog
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import ArgumentError

from ogexporter.core.errors import ConfigurationError

logger = structlog.get_logger()


class Settings(BaseSettings):
    """Exporter settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="OG_EXPORTER_",
        extra="ignore",
    )

    # Target database
    url: str = "postgresql://localhost:5432/postgres"
    db_pool_size: int = 5
    db_max_overflow: int = 5
    db_pool_timeout: int = 30
    db_pool_recycle: int = 1800
    fail_fast: bool = False
    connect_retries: int = 3

    # Query definitions
    config_path: str = "./queries.yaml"
    constant_labels: str = ""
    namespace: str = "pg"
    time_to_string: bool = False
    fallback_charset: str = "GBK"

    # Scrape
    parallel: int = 5
    scrape_timeout: float = 10.0
    max_requests: int = 40
    disable_exporter_metrics: bool = False

    # Web
    listen_address: str = ":9153"
    telemetry_path: str = "/metrics"

    # Debug
    debug: bool = False
    log_level: str = "INFO"

    @field_validator("parallel")
    @classmethod
    def _parallel_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("parallel must be at least 1")
        return value

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level: {value}")
        return level

    @field_validator("telemetry_path")
    @classmethod
    def _absolute_path(cls, value: str) -> str:
        return value if value.startswith("/") else f"/{value}"

    def database_url(self) -> URL:
        """Parsed target URL."""
        try:
            return make_url(self.url)
        except ArgumentError as e:
            raise ConfigurationError(f"invalid database url: {e}") from e

    def async_database_url(self) -> URL:
        """Target URL rewritten for the async psycopg driver."""
        url = self.database_url()
        if url.get_backend_name() not in ("postgresql", "postgres", "opengauss"):
            raise ConfigurationError(
                "unsupported database url scheme",
                details={"scheme": url.drivername},
            )
        return url.set(drivername="postgresql+psycopg")

    def server_label(self) -> str:
        """host:port identity attached to every sample as the ``server`` label."""
        url = self.database_url()
        return f"{url.host or 'localhost'}:{url.port or 5432}"

    def server_labels(self) -> dict[str, str]:
        labels = parse_const_labels(self.constant_labels)
        labels["server"] = self.server_label()
        return labels


def parse_const_labels(raw: str) -> dict[str, str]:
    """
    Turn ``key=value,key=value`` into a label mapping.

    Malformed pairs are logged and skipped; empty keys or values are ignored.
    """
    labels: dict[str, str] = {}
    raw = raw.strip()
    if not raw:
        return labels

    for part in raw.split(","):
        key_value = part.strip().split("=")
        if len(key_value) != 2:
            logger.error("malformed_constant_label", pair=part, expected="key=value")
            continue
        key, value = key_value[0].strip(), key_value[1].strip()
        if not key or not value:
            continue
        labels[key] = value
    return labels


def parse_listen_address(address: str) -> tuple[str, int]:
    """Split ``host:port`` (host optional) into a bindable pair."""
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ConfigurationError(f"listen address must be host:port, got {address!r}")
    try:
        port_number = int(port)
    except ValueError as e:
        raise ConfigurationError(f"invalid listen port in {address!r}") from e
    return host.strip("[]") or "0.0.0.0", port_number


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
