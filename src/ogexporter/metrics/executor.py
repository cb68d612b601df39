"""
Query execution for one definition.

Runs the enabled statements of a definition on a single connection,
concatenates their rows and maps every row onto samples.
"""

from __future__ import annotations

import asyncio
from typing import Any, Sequence

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection

from ogexporter.metrics.models import MetricSample, QueryDefinition, Statement
from ogexporter.metrics.rows import RowOptions, process_row

logger = structlog.get_logger()


async def _run_statement(conn: AsyncConnection, statement: Statement) -> tuple[list[str], list[tuple[Any, ...]]]:
    result = await asyncio.wait_for(conn.execute(text(statement.sql)), timeout=statement.timeout)
    columns = list(result.keys())
    rows = [tuple(row) for row in result.fetchall()]
    return columns, rows


async def _rollback(conn: AsyncConnection, definition: QueryDefinition) -> None:
    try:
        await conn.rollback()
    except SQLAlchemyError as e:
        logger.warning("rollback_failed", query=definition.name, error=str(e))


async def fetch_rows(
    definition: QueryDefinition,
    conn: AsyncConnection,
) -> tuple[list[str], list[Sequence[Any]]]:
    """
    Run every enabled statement and concatenate the rows.

    The column list of the last statement that ran is returned as the
    canonical column order. A failing statement is logged and skipped.
    """
    column_names: list[str] = []
    rows: list[Sequence[Any]] = []

    for statement in definition.enabled_statements():
        try:
            columns, statement_rows = await _run_statement(conn, statement)
        except (SQLAlchemyError, asyncio.TimeoutError) as e:
            logger.error(
                "statement_failed",
                query=definition.name,
                statement=statement.name,
                error_type=type(e).__name__,
                error=str(e),
            )
            await _rollback(conn, definition)
            continue

        column_names = columns
        rows.extend(statement_rows)
        logger.debug("statement_executed", query=definition.name, statement=statement.name, rows=len(statement_rows))

    return column_names, rows


async def execute(
    definition: QueryDefinition,
    conn: AsyncConnection,
    options: RowOptions | None = None,
) -> list[MetricSample]:
    """
    Produce all samples of one query definition.

    Args:
        definition: Query definition to run
        conn: Connection the statements run on, one after another
        options: Row processing options for the scraped target

    Returns:
        Flat list of samples from every row

    Raises:
        QueryDefinitionError: If the definition fails its check
        asyncio.CancelledError: If the scrape is cancelled; remaining
            statements are not run
    """
    definition.check()
    if not definition.enabled:
        logger.debug("query_disabled", query=definition.name)
        return []

    column_names, rows = await fetch_rows(definition, conn)
    column_index = {name: idx for idx, name in enumerate(column_names)}

    samples: list[MetricSample] = []
    error_count = 0
    for row in rows:
        row_samples, errors = process_row(definition, column_names, column_index, row, options)
        samples.extend(row_samples)
        error_count += len(errors)

    if error_count:
        logger.warning("query_partial_failure", query=definition.name, errors=error_count, samples=len(samples))
    return samples
