"""Run one synchronization job: fetch, map, reconcile, persist, then audit.

Every run walks ``FETCHING -> MAPPING -> RECONCILING -> PERSISTING -> LOGGING``
and ends in ``DONE`` or ``ERROR``. Per-record and per-batch problems are
absorbed into counts; only a failed write (or an unexpected exception) turns
the run into an error. The audit row is attempted for every run and its own
failure never changes the outcome.

DuckDB calls block, so lookups, writes and the audit insert run in worker
threads and the event loop keeps serving other requests meanwhile.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Callable, Iterable, Sequence

import duckdb
import httpx

from jobs.config import Fetcher, JobConfig
from jobs.settings import Settings
from pipelines.common import SourceUnavailableError
from pipelines.dates import format_instant
from pipelines.mapping import Mapper, RawRecord
from pipelines.model import SeriesRecord, key_value
from pipelines.reconcile import check_existing_keys, deduplicate, partition_new
from pipelines.result import FailureKind, Result
from storage.db import fetch_all_keys, find_existing_keys, insert_execution_log, write_series_records

logger = logging.getLogger(__name__)

AuditWriter = Callable[..., Result[None]]

MAX_REJECTION_SAMPLES = 20


class JobState(str, Enum):
    FETCHING = "fetching"
    MAPPING = "mapping"
    RECONCILING = "reconciling"
    PERSISTING = "persisting"
    LOGGING = "logging"
    DONE = "done"
    ERROR = "error"


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass
class JobOutcome:
    """Counts and state trail of one job run."""

    job_key: str
    data_source: str
    started_at: datetime = field(default_factory=_now)
    finished_at: datetime | None = None
    states: list[JobState] = field(default_factory=list)
    processed: int = 0
    rejected: int = 0
    mapped: int = 0
    in_batch_duplicates: int = 0
    already_stored: int = 0
    new_records: int = 0
    updated_records: int = 0
    write_conflicts: int = 0
    error: str | None = None
    error_details: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def state(self) -> JobState | None:
        return self.states[-1] if self.states else None

    @property
    def written(self) -> int:
        return self.new_records + self.updated_records

    @property
    def duplicates_skipped(self) -> int:
        return self.in_batch_duplicates + self.already_stored + self.write_conflicts

    @property
    def status(self) -> str:
        return "success" if self.success else "error"

    @property
    def http_status(self) -> int:
        return 200 if self.success else 500

    def enter(self, state: JobState) -> None:
        logger.debug("%s -> %s", self.job_key, state.value)
        self.states.append(state)

    def fail(self, error: str, details: str) -> None:
        """Switch to a failed outcome; failed runs report zero counts."""

        self.error = error
        self.error_details = details
        self.processed = self.rejected = self.mapped = 0
        self.in_batch_duplicates = self.already_stored = 0
        self.new_records = self.updated_records = self.write_conflicts = 0

    def summary(self) -> str:
        if not self.success:
            return f"Error: {self.error_details or self.error}"
        text = (
            f"Se procesaron {self.processed} registros, {self.new_records} nuevos guardados, "
            f"{self.updated_records} actualizados, {self.duplicates_skipped} duplicados omitidos"
        )
        if self.rejected:
            text += f", {self.rejected} rechazados"
        date_range = self.details.get("date_range")
        if date_range:
            text += f". Rango: {date_range}"
        return text + "."

    def duration_ms(self) -> int:
        end = self.finished_at or _now()
        return int((end - self.started_at).total_seconds() * 1000)

    def to_response(self) -> dict[str, Any]:
        """Body returned to the trigger caller."""

        executed = format_instant(self.finished_at or _now())
        if not self.success:
            return {
                "success": False,
                "execution_time": executed,
                "error": self.error,
                "details": self.error_details or "",
            }
        return {
            "success": True,
            "execution_time": executed,
            "data_source": self.data_source,
            "records_processed": self.processed,
            "new_records": self.new_records,
            "updated_records": self.updated_records,
            "duplicates_skipped": self.duplicates_skipped,
            "summary": self.summary(),
            "details": {
                **self.details,
                "written": self.written,
                "rejected": self.rejected,
                "in_batch_duplicates": self.in_batch_duplicates,
                "already_stored": self.already_stored,
                "write_conflicts": self.write_conflicts,
                "execution_duration": f"{self.duration_ms()}ms",
            },
        }

    def to_audit_result(self) -> dict[str, Any]:
        return {
            "taskId": self.job_key,
            "dataSource": self.data_source,
            "startTime": format_instant(self.started_at),
            "endTime": format_instant(self.finished_at or _now()),
            "recordsProcessed": self.processed,
            "status": self.status,
            "details": self.summary(),
        }


def map_records(
    raw_records: Iterable[RawRecord], mapper: Mapper
) -> tuple[list[SeriesRecord], list[str]]:
    """Apply ``mapper`` to every raw record, collecting rejection reasons."""

    mapped: list[SeriesRecord] = []
    rejections: list[str] = []
    for index, raw in enumerate(raw_records):
        try:
            result = mapper(raw)
        except (TypeError, ValueError) as exc:
            result = Result.failure(FailureKind.INVALID_VALUE, str(exc))
        if result.ok:
            mapped.append(result.unwrap())
            continue
        reason = f"{result.kind.value}: {result.message}"
        logger.warning("Record %s rejected (%s)", index, reason)
        rejections.append(reason)
    return mapped, rejections


def _date_range(records: Sequence[SeriesRecord]) -> tuple[str, str] | None:
    if not records:
        return None
    values = sorted(key_value(record.observed_at) for record in records)
    return values[0], values[-1]


async def execute_job(
    conn: duckdb.DuckDBPyConnection,
    job: JobConfig,
    settings: Settings,
    *,
    fetch: Fetcher | None = None,
) -> JobOutcome:
    """Run every step up to, not including, the audit write."""

    outcome = JobOutcome(job_key=job.key, data_source=job.data_source)
    series = job.series
    try:
        outcome.enter(JobState.FETCHING)
        try:
            raw_records = list(await (fetch or job.fetch)(settings) or [])
        except (SourceUnavailableError, httpx.HTTPError) as exc:
            reason = str(exc) or type(exc).__name__
            logger.warning("%s: source unavailable (%s); nothing to sync.", job.key, reason)
            outcome.details["source_error"] = reason
            raw_records = []

        outcome.processed = len(raw_records)
        if not raw_records:
            logger.info("%s: no records fetched.", job.key)
            return outcome

        outcome.enter(JobState.MAPPING)
        mapped, rejections = map_records(raw_records, job.mapper)
        outcome.mapped = len(mapped)
        outcome.rejected = len(rejections)
        if rejections:
            outcome.details["rejections"] = rejections[:MAX_REJECTION_SAMPLES]

        outcome.enter(JobState.RECONCILING)
        deduped = deduplicate(mapped, series)
        outcome.in_batch_duplicates = deduped.duplicates
        candidates = deduped.records
        if series.keyed_by_external_id and candidates:
            check = await check_existing_keys(
                [record.natural_key(series) for record in candidates],
                lambda batch: find_existing_keys(conn, series, batch),
                lambda: fetch_all_keys(conn, series),
                batch_size=settings.existence_batch_size,
                delay=settings.existence_batch_delay,
            )
            candidates, already = partition_new(candidates, series, check.existing)
            outcome.already_stored = len(already)
            outcome.details["existence_check"] = check.mode.value
            if check.failures:
                outcome.details["existence_check_failures"] = list(check.failures)

        span = _date_range(candidates)
        if span:
            outcome.details["first_record"], outcome.details["last_record"] = span
            outcome.details["date_range"] = f"{span[0]} - {span[1]}"

        outcome.enter(JobState.PERSISTING)
        written = await asyncio.to_thread(write_series_records, conn, series, candidates)
        if not written.ok:
            logger.error("%s: write failed: %s", job.key, written.message)
            outcome.fail(f"Error al actualizar {job.data_source}", written.message or "")
            return outcome
        report = written.unwrap()
        outcome.new_records = report.inserted
        outcome.updated_records = report.updated
        outcome.write_conflicts = report.ignored
        if report.ignored:
            logger.info(
                "%s: %s rows already stored were skipped at write time.", job.key, report.ignored
            )
    except Exception as exc:
        logger.exception("%s failed during %s", job.key, outcome.state)
        outcome.fail("Error interno del servidor", str(exc) or type(exc).__name__)
    return outcome


async def record_outcomes(
    conn: duckdb.DuckDBPyConnection,
    outcomes: Sequence[JobOutcome],
    *,
    audit_log: AuditWriter = insert_execution_log,
) -> Result[None]:
    """Write one audit row covering ``outcomes`` and close each of them."""

    for outcome in outcomes:
        outcome.enter(JobState.LOGGING)
        outcome.finished_at = _now()

    status = "success" if all(outcome.success for outcome in outcomes) else "error"
    try:
        logged = await asyncio.to_thread(
            audit_log,
            conn,
            status=status,
            results=[outcome.to_audit_result() for outcome in outcomes],
        )
    except Exception as exc:
        logged = Result.failure(FailureKind.AUDIT_LOG_FAILED, str(exc))

    if not logged.ok:
        logger.warning("Could not record job execution: %s", logged.message)
        for outcome in outcomes:
            outcome.details["audit_log"] = f"failed: {logged.message}"

    for outcome in outcomes:
        outcome.enter(JobState.DONE if outcome.success else JobState.ERROR)
    return logged


async def run_sync_job(
    conn: duckdb.DuckDBPyConnection,
    job: JobConfig,
    settings: Settings,
    *,
    fetch: Fetcher | None = None,
    audit_log: AuditWriter = insert_execution_log,
) -> JobOutcome:
    outcome = await execute_job(conn, job, settings, fetch=fetch)
    await record_outcomes(conn, [outcome], audit_log=audit_log)
    if outcome.success:
        logger.info("%s finished: %s", job.key, outcome.summary())
    return outcome


async def run_job_group(
    conn: duckdb.DuckDBPyConnection,
    jobs: Sequence[JobConfig],
    settings: Settings,
    *,
    fetchers: dict[str, Fetcher] | None = None,
    audit_log: AuditWriter = insert_execution_log,
) -> list[JobOutcome]:
    """Run ``jobs`` one after another and audit them as a single execution."""

    outcomes = []
    for job in jobs:
        fetch = (fetchers or {}).get(job.key)
        outcomes.append(await execute_job(conn, job, settings, fetch=fetch))
    await record_outcomes(conn, outcomes, audit_log=audit_log)
    return outcomes


def group_response(group_key: str, outcomes: Sequence[JobOutcome]) -> tuple[int, dict[str, Any]]:
    """HTTP status and body for a group trigger."""

    executed = format_instant(_now())
    failed = [outcome for outcome in outcomes if not outcome.success]
    if failed:
        return 500, {
            "success": False,
            "execution_time": executed,
            "error": f"Error al ejecutar {group_key}",
            "details": "; ".join(
                f"{outcome.job_key}: {outcome.error_details or outcome.error}" for outcome in failed
            ),
            "results": [outcome.to_audit_result() for outcome in outcomes],
        }
    return 200, {
        "success": True,
        "execution_time": executed,
        "data_source": ", ".join(outcome.data_source for outcome in outcomes),
        "new_records": sum(outcome.new_records for outcome in outcomes),
        "updated_records": sum(outcome.updated_records for outcome in outcomes),
        "duplicates_skipped": sum(outcome.duplicates_skipped for outcome in outcomes),
        "summary": " | ".join(f"{outcome.job_key}: {outcome.summary()}" for outcome in outcomes),
        "details": {outcome.job_key: outcome.to_response()["details"] for outcome in outcomes},
    }


__all__ = [
    "JobOutcome",
    "JobState",
    "execute_job",
    "group_response",
    "map_records",
    "record_outcomes",
    "run_job_group",
    "run_sync_job",
]
