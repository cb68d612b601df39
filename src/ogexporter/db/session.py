from __future__ import annotations

from dataclasses import dataclass

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ogexporter.config import Settings, get_settings
from ogexporter.core.errors import DatabaseError
from ogexporter.db.version import UNKNOWN_VERSION, parse_version

logger = structlog.get_logger()

BASE_INFO_SQL = (
    "SELECT version(), current_setting('client_encoding'), pg_is_in_recovery(), current_database()"
)

_engine: AsyncEngine | None = None


@dataclass(frozen=True)
class BaseInfo:
    """What the exporter learns about the target when it connects."""

    version_string: str
    short_version: str
    client_encoding: str
    in_recovery: bool
    current_database: str

    @property
    def primary(self) -> bool:
        return not self.in_recovery


def init_engine(settings: Settings | None = None) -> AsyncEngine:
    """Initialise the SQLAlchemy engine lazily with connection pooling."""

    global _engine

    cfg = settings or get_settings()
    if _engine is not None:
        return _engine

    _engine = create_async_engine(
        cfg.async_database_url(),
        echo=cfg.debug,
        pool_size=cfg.db_pool_size,
        max_overflow=cfg.db_max_overflow,
        pool_timeout=cfg.db_pool_timeout,
        pool_recycle=cfg.db_pool_recycle,
        pool_pre_ping=True,
    )
    return _engine


async def dispose_engine() -> None:
    global _engine

    if _engine is not None:
        await _engine.dispose()
        _engine = None


async def query_base_info(engine: AsyncEngine) -> BaseInfo:
    async with engine.connect() as conn:
        result = await conn.execute(text(BASE_INFO_SQL))
        version_string, client_encoding, in_recovery, current_database = result.one()

    short_version = parse_version(version_string or "")
    if not short_version:
        logger.warning("unparsed_server_version", version=version_string)
        short_version = UNKNOWN_VERSION

    return BaseInfo(
        version_string=version_string or "",
        short_version=short_version,
        client_encoding=client_encoding or "",
        in_recovery=bool(in_recovery),
        current_database=current_database or "",
    )


async def fetch_base_info(engine: AsyncEngine, settings: Settings | None = None) -> BaseInfo:
    """
    Read version, client encoding, recovery state and database name.

    Retries with exponential backoff unless ``fail_fast`` is set.

    Raises:
        DatabaseError: If the server cannot be reached
    """
    cfg = settings or get_settings()
    attempts = 1 if cfg.fail_fast else max(cfg.connect_retries, 1)

    try:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(SQLAlchemyError),
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            reraise=True,
        ):
            with attempt:
                info = await query_base_info(engine)
    except (SQLAlchemyError, RetryError, OSError) as e:
        raise DatabaseError(
            f"cannot reach database: {e}",
            details={"server": cfg.server_label(), "attempts": attempts},
        ) from e

    logger.info(
        "connected_to_database",
        server=cfg.server_label(),
        version=info.short_version,
        database=info.current_database,
        encoding=info.client_encoding,
        primary=info.primary,
    )
    return info
