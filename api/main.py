"""FastAPI service: job triggers and read access to the stored series."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any, Iterator, Mapping

import duckdb
from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from api.auth import bearer_token_matches, is_authorized, is_scheduler_signal
from jobs.config import JOB_GROUPS, resolve_jobs
from jobs.settings import Settings, load_settings
from jobs.sync import group_response, run_job_group, run_sync_job
from pipelines.dates import format_instant, parse_calendar_date
from pipelines.model import SeriesDefinition
from pipelines.series import (
    CER,
    DOLLAR,
    EMAE,
    EMAE_BY_ACTIVITY,
    EMBI,
    IPC,
    LABOR_MARKET,
    POVERTY,
    UVA,
)
from storage.db import connect, fetch_execution_logs
from storage.exports import csv_filename, render_csv
from storage.queries import (
    QUERY_TYPES,
    SeriesQuery,
    calculate_stats,
    fetch_latest,
    fetch_metadata,
    fetch_on_date,
    fetch_page,
    fetch_range,
    partition_columns,
    result_columns,
)

DEFAULT_LIMIT = 100
MAX_LIMIT = 1000
ALLOWED_FORMATS = {"json", "csv"}
CACHE_HEADERS = {"Cache-Control": "public, max-age=300, stale-while-revalidate=600"}
UNAUTHORIZED_BODY = {"error": "No autorizado"}

# URL slug -> stored series
SERIES_ROUTES: Mapping[str, SeriesDefinition] = {
    "cer": CER,
    "uva": UVA,
    "dollar": DOLLAR,
    "riesgo-pais": EMBI,
    "labor-market": LABOR_MARKET,
    "poverty": POVERTY,
    "emae": EMAE,
    "emae-by-activity": EMAE_BY_ACTIVITY,
    "emae/sectors": EMAE_BY_ACTIVITY,
    "ipc": IPC,
}

# Query parameters accepted as column filters, per series
SERIES_FILTERS: Mapping[str, tuple[str, ...]] = {
    "dollar": ("dollar_type",),
    "labor-market": ("region", "gender", "age_group", "demographic_segment", "data_type"),
    "poverty": ("region", "data_type"),
    "emae-by-activity": ("economy_sector_code",),
    "emae/sectors": ("economy_sector_code",),
    "ipc": ("component_code", "region", "component_type"),
}

# Code-like filters are matched upper-cased
UPPERCASE_FILTERS = {"dollar_type", "economy_sector_code", "component_code", "component_type"}

load_dotenv()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = load_settings(require_cron_secret=True)
    conn = connect(settings.db_path)
    app.state.settings = settings
    app.state.conn = conn
    logger.info("Serving data from %s.", settings.db_path)
    try:
        yield
    finally:
        conn.close()


app = FastAPI(title="Argentina Datos API", version="0.1.0", lifespan=lifespan)


def _configure_cors() -> None:
    raw_origins = os.getenv("API_CORS_ORIGINS", "*")
    origins = [origin.strip() for origin in raw_origins.split(",") if origin.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )


_configure_cors()


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_cursor(request: Request) -> Iterator[duckdb.DuckDBPyConnection]:
    """Per-request cursor over the process-wide connection."""

    cursor = request.app.state.conn.cursor()
    try:
        yield cursor
    finally:
        cursor.close()


def _error(status_code: int, error: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error, **extra})


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api/cron/{job_key}")
async def trigger_job(
    job_key: str,
    request: Request,
    settings: Settings = Depends(get_settings),
    conn: duckdb.DuckDBPyConnection = Depends(get_cursor),
):
    has_token = bearer_token_matches(request.headers.get("authorization"), settings.cron_secret)
    from_scheduler = is_scheduler_signal(request.headers.get(settings.scheduler_header))
    if not is_authorized(has_token, from_scheduler):
        logger.warning("Rejected unauthorized trigger for %s.", job_key)
        return JSONResponse(status_code=401, content=UNAUTHORIZED_BODY)

    jobs = resolve_jobs(job_key)
    if not jobs:
        return _error(404, f"Tarea desconocida: {job_key}")

    if job_key in JOB_GROUPS:
        outcomes = await run_job_group(conn, jobs, settings)
        status_code, body = group_response(job_key, outcomes)
        return JSONResponse(status_code=status_code, content=body)

    outcome = await run_sync_job(conn, jobs[0], settings)
    return JSONResponse(status_code=outcome.http_status, content=outcome.to_response())


@app.get("/api/admin/cron-executions")
def list_cron_executions(
    request: Request,
    limit: int = Query(50, ge=1, le=MAX_LIMIT, description="Maximum audit rows returned"),
    settings: Settings = Depends(get_settings),
    conn: duckdb.DuckDBPyConnection = Depends(get_cursor),
):
    if not bearer_token_matches(request.headers.get("authorization"), settings.cron_secret):
        return JSONResponse(status_code=401, content=UNAUTHORIZED_BODY)
    logs = fetch_execution_logs(conn, limit=limit)
    return {"success": True, "count": len(logs), "data": logs}


def _build_filters(slug: str, params: Mapping[str, str]) -> dict[str, str]:
    filters: dict[str, str] = {}
    for name in SERIES_FILTERS.get(slug, ()):
        value = params.get(name)
        if value:
            filters[name] = value.upper() if name in UPPERCASE_FILTERS else value
    return filters


def _pagination(page: int, limit: int, total: int) -> dict[str, Any]:
    total_pages = (total + limit - 1) // limit
    return {
        "current_page": page,
        "per_page": limit,
        "total_pages": total_pages,
        "total_records": total,
        "has_more": page < total_pages,
        "has_previous": page > 1,
    }


@app.get("/api/{series_slug:path}")
def query_series(
    series_slug: str,
    request: Request,
    type: str = Query("historical", description="latest, historical, range, specific-date or metadata"),
    start_date: str | None = Query(None, description="Inclusive lower bound (YYYY-MM-DD)"),
    end_date: str | None = Query(None, description="Inclusive upper bound (YYYY-MM-DD)"),
    date: str | None = Query(None, description="Day for specific-date queries (YYYY-MM-DD)"),
    limit: int = Query(DEFAULT_LIMIT, ge=1, description="Page size, capped at 1000"),
    page: int = Query(1, ge=1),
    order: str = Query("desc", description="asc or desc"),
    include_variations: bool = Query(True),
    format: str = Query("json", description="Response format: json or csv"),
    conn: duckdb.DuckDBPyConnection = Depends(get_cursor),
):
    definition = SERIES_ROUTES.get(series_slug)
    if definition is None:
        return _error(404, f"Serie desconocida: {series_slug}")

    query_type = type.lower()
    if query_type not in QUERY_TYPES:
        return _error(400, "Tipo inválido", validTypes=list(QUERY_TYPES))
    fmt = format.lower()
    if fmt not in ALLOWED_FORMATS:
        return _error(400, f"Formato no soportado: {format}")
    order = order.lower()
    if order not in {"asc", "desc"}:
        return _error(400, f"Orden inválido: {order}")

    parsed: dict[str, Any] = {}
    for name, raw in (("start_date", start_date), ("end_date", end_date), ("date", date)):
        if raw is None:
            continue
        parsed[name] = parse_calendar_date(raw)
        if parsed[name] is None:
            return _error(400, f"Fecha inválida en '{name}': {raw}")

    query = SeriesQuery(
        filters=_build_filters(series_slug, request.query_params),
        start_date=parsed.get("start_date"),
        end_date=parsed.get("end_date"),
        order=order,
        include_variations=include_variations,
        limit=min(limit, MAX_LIMIT),
        page=page,
    )
    meta = {
        "type": query_type,
        "timestamp": format_instant(datetime.now(UTC)),
        "source": definition.source,
        "description": definition.description,
    }

    try:
        if query_type == "metadata":
            return JSONResponse(
                content={"success": True, "type": query_type, "data": fetch_metadata(conn, definition), "meta": meta},
                headers=CACHE_HEADERS,
            )

        body: dict[str, Any] = {"success": True, "type": query_type, "meta": meta}
        if query_type == "latest":
            rows = fetch_latest(conn, definition, query)
        elif query_type == "specific-date":
            if "date" not in parsed:
                return _error(400, 'Se requiere el parámetro "date" para consultas específicas')
            rows = fetch_on_date(conn, definition, query, parsed["date"])
            if not rows:
                return _error(404, f"No se encontraron datos para la fecha {date}")
        elif query_type == "range":
            if query.start_date is None or query.end_date is None:
                return _error(
                    400,
                    'Se requieren los parámetros "start_date" y "end_date" para consultas por rango',
                )
            rows = fetch_range(conn, definition, query)
        else:
            rows, total = fetch_page(conn, definition, query)
            body["pagination"] = _pagination(query.page, query.limit, total)
    except duckdb.Error as exc:
        logger.exception("Query on %s failed", definition.table)
        return _error(500, "Error interno del servidor", details=str(exc))

    if query_type in {"range", "historical"} and _single_series(definition, query):
        stats = calculate_stats(definition, rows)
        if stats is not None:
            body["stats"] = stats

    if fmt == "csv":
        if not rows:
            return _error(404, "No hay datos para exportar")
        content = render_csv(rows, result_columns(definition, query.include_variations))
        filename = csv_filename(series_slug, query_type)
        return Response(
            content=content,
            media_type="text/csv; charset=utf-8",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    body["data"] = rows
    return JSONResponse(content=body, headers=CACHE_HEADERS)


def _single_series(definition: SeriesDefinition, query: SeriesQuery) -> bool:
    return all(name in query.filters for name in partition_columns(definition))
