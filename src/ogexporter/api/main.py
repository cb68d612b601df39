from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, Query, Request, status
from fastapi.responses import HTMLResponse, PlainTextResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST

from ogexporter import __version__
from ogexporter.collector import Exporter
from ogexporter.config import Settings, get_settings, load_query_table
from ogexporter.core.errors import ConfigurationError, DatabaseError
from ogexporter.db.session import dispose_engine, fetch_base_info, init_engine
from ogexporter.logging import configure_logging
from ogexporter.metrics.table import QueryTableHolder

logger = structlog.get_logger()

LANDING_PAGE = (
    "<html><head><title>openGauss Exporter</title></head><body>"
    "<h1>openGauss Exporter</h1><p><a href='{path}'>Metrics</a></p>"
    "</body></html>"
)


def build_exporter(settings: Settings) -> Exporter:
    """Load the query table and create the engine for the configured target."""
    holder = QueryTableHolder(load_query_table(settings.config_path))
    engine = init_engine(settings)
    return Exporter(settings, engine, holder)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings: Settings = app.state.settings
    configure_logging(settings.log_level)
    exporter = build_exporter(settings)
    exporter.base_info = await fetch_base_info(exporter.engine, settings)
    app.state.exporter = exporter
    logger.info("exporter_started", queries=len(exporter.holder.current), server=exporter.server_labels["server"])
    yield
    await dispose_engine()


async def landing_page(request: Request) -> HTMLResponse:
    return HTMLResponse(LANDING_PAGE.format(path=request.app.state.settings.telemetry_path))


async def version_info() -> PlainTextResponse:
    return PlainTextResponse(f"version {__version__}")


async def metrics(
    request: Request,
    collect: list[str] | None = Query(default=None, alias="collect[]"),  # noqa: B008
) -> Response:
    """Run one scrape; optional ``collect[]`` params restrict the query definitions."""
    exporter: Exporter = request.app.state.exporter
    limiter: asyncio.Semaphore | None = request.app.state.limiter

    if limiter is not None and limiter.locked():
        return PlainTextResponse(
            "too many concurrent scrapes", status_code=status.HTTP_503_SERVICE_UNAVAILABLE
        )

    try:
        if limiter is None:
            scrape = await exporter.scrape(collect)
        else:
            async with limiter:
                scrape = await exporter.scrape(collect)
    except ConfigurationError as e:
        logger.warning("bad_collect_filter", error=e.message, **e.details)
        return PlainTextResponse(
            f"Couldn't create filtered metrics handler: {e.message}: {', '.join(e.details.get('queries', []))}",
            status_code=status.HTTP_400_BAD_REQUEST,
        )
    except DatabaseError as e:
        logger.error("scrape_failed", error=e.message)
        return PlainTextResponse(e.message, status_code=status.HTTP_503_SERVICE_UNAVAILABLE)

    return Response(content=exporter.render(scrape), media_type=CONTENT_TYPE_LATEST)


async def reload_config(request: Request) -> PlainTextResponse:
    exporter: Exporter = request.app.state.exporter
    try:
        table = exporter.reload()
    except ConfigurationError as e:
        logger.error("config_reload_failed", error=e.message, **e.details)
        return PlainTextResponse(
            f"fail to reload: {e.message}", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR
        )
    return PlainTextResponse(f"server reloaded: {len(table)} queries")


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(
        title="openGauss Exporter",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.limiter = asyncio.Semaphore(settings.max_requests) if settings.max_requests > 0 else None

    app.add_api_route("/", landing_page, methods=["GET"], include_in_schema=False)
    app.add_api_route(settings.telemetry_path, metrics, methods=["GET"])
    app.add_api_route("/version", version_info, methods=["GET"])
    app.add_api_route("/reload", reload_config, methods=["GET", "POST"])
    return app
