"""Static configuration for the synchronization jobs."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Awaitable, Callable, Iterable, Mapping, Sequence

from jobs.settings import Settings
from pipelines.mapping import (
    Mapper,
    map_cer_point,
    map_dollar_quote,
    map_emae_activity_row,
    map_emae_row,
    map_embi_row,
    map_ipc_row,
    map_labor_row,
    map_poverty_row,
    map_uva_point,
)
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
from pipelines.sources.bcra import BCRA_VARIABLES, fetch_bcra_history, fetch_bcra_variable
from pipelines.sources.dolarapi import fetch_dollar_quotes
from pipelines.sources.embi_sheet import fetch_embi_rows
from pipelines.sources.indec_activity import fetch_emae_activity_rows, fetch_emae_rows
from pipelines.sources.indec_labor import fetch_labor_market_rows
from pipelines.sources.indec_poverty import fetch_poverty_rows
from pipelines.sources.indec_prices import fetch_ipc_rows

RawRows = Sequence[Mapping[str, Any]]
Fetcher = Callable[[Settings], Awaitable[RawRows]]


@dataclass(frozen=True)
class JobConfig:
    """One source-to-table synchronization job."""

    key: str
    series: SeriesDefinition
    data_source: str
    fetch: Fetcher
    mapper: Mapper
    description: str = ""


def _bcra_fetcher(series_key: str) -> Fetcher:
    variable_id = BCRA_VARIABLES[series_key]

    async def fetch(settings: Settings) -> RawRows:
        if settings.bcra_fetch_limit <= 0:
            return await fetch_bcra_history(variable_id, verify=settings.bcra_verify_ssl)
        return await fetch_bcra_variable(
            variable_id, limit=settings.bcra_fetch_limit, verify=settings.bcra_verify_ssl
        )

    return fetch


async def _fetch_dollar(settings: Settings) -> RawRows:
    return await fetch_dollar_quotes()


async def _fetch_embi(settings: Settings) -> RawRows:
    return await fetch_embi_rows(settings.embi_spreadsheet_id, sheet_name=settings.embi_sheet_name)


async def _fetch_labor_market(settings: Settings) -> RawRows:
    return await fetch_labor_market_rows(date.today())


async def _fetch_poverty(settings: Settings) -> RawRows:
    return await fetch_poverty_rows(date.today())


async def _fetch_emae(settings: Settings) -> RawRows:
    return await fetch_emae_rows()


async def _fetch_emae_activity(settings: Settings) -> RawRows:
    return await fetch_emae_activity_rows()


async def _fetch_ipc(settings: Settings) -> RawRows:
    return await fetch_ipc_rows(date.today())


TARGET_JOBS: tuple[JobConfig, ...] = (
    JobConfig(
        key="update-dollar",
        series=DOLLAR,
        data_source="dolarapi.com",
        fetch=_fetch_dollar,
        mapper=map_dollar_quote,
        description="Current quotes for every dollar type",
    ),
    JobConfig(
        key="update-embi",
        series=EMBI,
        data_source="Google Sheets - EMBI Argentina",
        fetch=_fetch_embi,
        mapper=map_embi_row,
        description="EMBI country risk rows from the shared spreadsheet",
    ),
    JobConfig(
        key="update-cer",
        series=CER,
        data_source="BCRA API - CER",
        fetch=_bcra_fetcher("cer"),
        mapper=map_cer_point,
        description="CER daily coefficient",
    ),
    JobConfig(
        key="update-uva",
        series=UVA,
        data_source="BCRA API - UVA",
        fetch=_bcra_fetcher("uva"),
        mapper=map_uva_point,
        description="UVA daily value",
    ),
    JobConfig(
        key="update-labor-market",
        series=LABOR_MARKET,
        data_source="INDEC - EPH",
        fetch=_fetch_labor_market,
        mapper=map_labor_row,
        description="EPH activity, employment and unemployment by region and group",
    ),
    JobConfig(
        key="update-poverty",
        series=POVERTY,
        data_source="INDEC - Pobreza e Indigencia",
        fetch=_fetch_poverty,
        mapper=map_poverty_row,
        description="Poverty and indigence by region and semester",
    ),
    JobConfig(
        key="update-emae",
        series=EMAE,
        data_source="INDEC - EMAE",
        fetch=_fetch_emae,
        mapper=map_emae_row,
        description="EMAE general index: original, seasonally adjusted and trend-cycle",
    ),
    JobConfig(
        key="update-emae-by-activity",
        series=EMAE_BY_ACTIVITY,
        data_source="INDEC - EMAE por actividad",
        fetch=_fetch_emae_activity,
        mapper=map_emae_activity_row,
        description="EMAE original series per economic sector",
    ),
    JobConfig(
        key="update-ipc",
        series=IPC,
        data_source="INDEC - IPC",
        fetch=_fetch_ipc,
        mapper=map_ipc_row,
        description="Consumer price index by component and region",
    ),
)

# Several jobs triggered and audited as one execution.
JOB_GROUPS: Mapping[str, tuple[str, ...]] = {
    "update-bcra-indices": ("update-cer", "update-uva"),
    "update-indec-data": ("update-emae", "update-emae-by-activity"),
}


def get_job_by_key(key: str) -> JobConfig | None:
    for job in TARGET_JOBS:
        if job.key == key:
            return job
    return None


def iter_jobs(keys: Iterable[str] | None = None) -> tuple[JobConfig, ...]:
    if keys is None:
        return TARGET_JOBS
    selected = []
    for key in keys:
        job = get_job_by_key(key)
        if job:
            selected.append(job)
    return tuple(selected)


def resolve_jobs(key: str) -> tuple[JobConfig, ...]:
    """Jobs behind a trigger key: a single job, a group, or nothing."""

    if key in JOB_GROUPS:
        return iter_jobs(JOB_GROUPS[key])
    job = get_job_by_key(key)
    return (job,) if job else ()


__all__ = [
    "JOB_GROUPS",
    "JobConfig",
    "TARGET_JOBS",
    "get_job_by_key",
    "iter_jobs",
    "resolve_jobs",
]
