"""DuckDB persistence gateway for ingested series and job audit logs."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Any, Iterable, Sequence

import duckdb
import pandas as pd

from pipelines.model import SeriesDefinition, SeriesRecord, WriteMode, key_value, to_storage_value
from pipelines.result import FailureKind, Result
from pipelines.series import ALL_SERIES

DB_ENV_VAR = "ARGDATA_DB_PATH"
DEFAULT_DB_PATH = Path("data/argentina_datos.duckdb")

CRON_EXECUTIONS_TABLE = "cron_executions"

logger = logging.getLogger(__name__)

Key = tuple[str, ...]


@dataclass(frozen=True)
class WriteReport:
    """What the destination actually did with a submitted batch."""

    submitted: int
    inserted: int
    updated: int = 0
    ignored: int = 0


def _ensure_parent_dir(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def get_database_path(override: str | os.PathLike[str] | None = None) -> Path:
    """Resolve the DuckDB file path from an explicit override or environment variable."""

    if override is not None:
        return Path(override)
    env_value = os.getenv(DB_ENV_VAR)
    if env_value:
        return Path(env_value)
    return DEFAULT_DB_PATH


def connect(
    path: str | os.PathLike[str] | None = None,
    *,
    read_only: bool = False,
    ensure: bool = True,
) -> duckdb.DuckDBPyConnection:
    """Create a DuckDB connection, optionally ensuring schema availability."""

    db_path = get_database_path(path)
    if not read_only:
        _ensure_parent_dir(db_path)
    conn = duckdb.connect(str(db_path), read_only=read_only)
    if ensure and not read_only:
        ensure_schema(conn)
    return conn


def ensure_series_table(conn: duckdb.DuckDBPyConnection, definition: SeriesDefinition) -> None:
    """Create a series table whose primary key is the series' natural key."""

    required = {definition.date_column, *definition.dimensions}
    columns = [
        f"{quote(name)} {sql_type}" + (" NOT NULL" if name in required else "")
        for name, sql_type in definition.column_types.items()
    ]
    primary_key = ", ".join(quote(name) for name in definition.key_fields)
    conn.execute(
        f"""
        CREATE TABLE IF NOT EXISTS {quote(definition.table)} (
            {", ".join(columns)},
            PRIMARY KEY ({primary_key})
        )
        """
    )
    # Tables created before an attribute existed gain it as a nullable column
    for name, sql_type in definition.attributes:
        conn.execute(
            f"ALTER TABLE {quote(definition.table)} ADD COLUMN IF NOT EXISTS {quote(name)} {sql_type}"
        )


def ensure_schema(conn: duckdb.DuckDBPyConnection) -> None:
    for definition in ALL_SERIES:
        ensure_series_table(conn, definition)
    conn.execute(f"CREATE SEQUENCE IF NOT EXISTS {CRON_EXECUTIONS_TABLE}_id_seq")
    conn.execute(
        f"""
        CREATE TABLE IF NOT EXISTS {CRON_EXECUTIONS_TABLE} (
            id BIGINT PRIMARY KEY DEFAULT nextval('{CRON_EXECUTIONS_TABLE}_id_seq'),
            execution_time TIMESTAMP NOT NULL,
            status TEXT NOT NULL,
            results JSON
        )
        """
    )


def _serialize_record(definition: SeriesDefinition, record: SeriesRecord) -> tuple:
    return (
        record.storage_date(),
        *(record.dimensions.get(name) for name in definition.dimensions),
        *(record.attributes.get(name) for name in definition.attribute_names),
        *(record.payload.get(name) for name in definition.payload_fields),
        record.source_file,
        record.data_type,
    )


def records_frame(definition: SeriesDefinition, records: Iterable[SeriesRecord]) -> pd.DataFrame:
    """Column-typed frame of ``records``, one row per natural key."""

    rows = [_serialize_record(definition, record) for record in records]
    frame = pd.DataFrame(rows, columns=list(definition.columns), dtype=object)
    for name, sql_type in definition.column_types.items():
        if sql_type in ("DATE", "TIMESTAMP"):
            frame[name] = pd.to_datetime(frame[name])
        elif sql_type == "DOUBLE":
            frame[name] = frame[name].astype("float64")
        elif sql_type == "INTEGER":
            frame[name] = frame[name].astype("Int64")
    keep = "last" if definition.write_mode is WriteMode.UPSERT else "first"
    return frame.drop_duplicates(subset=list(definition.key_fields), keep=keep)


def _count(conn: duckdb.DuckDBPyConnection, table: str) -> int:
    return conn.execute(f"SELECT COUNT(*) FROM {quote(table)}").fetchone()[0]


def write_series_records(
    conn: duckdb.DuckDBPyConnection,
    definition: SeriesDefinition,
    records: Iterable[SeriesRecord],
) -> Result[WriteReport]:
    """Upsert a reconciled batch in one transaction.

    ``upsert`` series replace the stored row for a key; ``ignore`` series keep
    it and drop the incoming row. Either way at most one row per key exists.
    The batch is scanned from a registered DataFrame in a single statement.
    """

    records = list(records)
    if not records:
        return Result.success(WriteReport(submitted=0, inserted=0))

    frame = records_frame(definition, records)
    view = f"incoming_{definition.table}"
    verb = "INSERT OR REPLACE" if definition.write_mode is WriteMode.UPSERT else "INSERT OR IGNORE"
    types = definition.column_types
    column_list = ", ".join(quote(name) for name in definition.columns)
    select_list = ", ".join(
        f"CAST({quote(name)} AS {types[name]})" for name in definition.columns
    )
    sql = (
        f"{verb} INTO {quote(definition.table)} ({column_list}) "
        f"SELECT {select_list} FROM {quote(view)}"
    )

    conn.register(view, frame)
    try:
        conn.execute("BEGIN TRANSACTION")
        before = _count(conn, definition.table)
        conn.execute(sql)
        after = _count(conn, definition.table)
        conn.execute("COMMIT")
    except duckdb.Error as exc:
        try:
            conn.execute("ROLLBACK")
        except duckdb.Error:
            logger.debug("Rollback after failed write to %s was not possible.", definition.table)
        logger.error("Write to %s failed: %s", definition.table, exc)
        return Result.failure(FailureKind.WRITE_FAILED, f"Write to {definition.table} failed: {exc}")
    finally:
        conn.unregister(view)

    inserted = after - before
    leftover = len(records) - inserted
    if definition.write_mode is WriteMode.UPSERT:
        report = WriteReport(submitted=len(records), inserted=inserted, updated=leftover)
    else:
        report = WriteReport(submitted=len(records), inserted=inserted, ignored=leftover)
    logger.info("Wrote %s to %s: %s", len(records), definition.table, report)
    return Result.success(report)


def _key_rows_to_set(rows: Iterable[Sequence[Any]]) -> set[Key]:
    return {tuple(key_value(value) for value in row) for row in rows}


def _key_params(definition: SeriesDefinition, key: Key) -> list[Any]:
    params: list[Any] = []
    for name, value in zip(definition.key_fields, key, strict=True):
        if name == definition.date_column:
            params.append(
                datetime.fromisoformat(value)
                if definition.date_type == "TIMESTAMP"
                else date.fromisoformat(value)
            )
        else:
            params.append(value)
    return params


def find_existing_keys(
    conn: duckdb.DuckDBPyConnection, definition: SeriesDefinition, keys: Sequence[Key]
) -> Result[set[Key]]:
    """Which of ``keys`` are already stored (one round trip)."""

    if not keys:
        return Result.success(set())
    key_columns = ", ".join(quote(name) for name in definition.key_fields)
    try:
        if len(definition.key_fields) == 1:
            placeholders = ", ".join("?" for _ in keys)
            sql = (
                f"SELECT {key_columns} FROM {quote(definition.table)} "
                f"WHERE {key_columns} IN ({placeholders})"
            )
            params = [_key_params(definition, key)[0] for key in keys]
        else:
            clause = " AND ".join(f"{quote(name)} = ?" for name in definition.key_fields)
            sql = (
                f"SELECT {key_columns} FROM {quote(definition.table)} WHERE "
                + " OR ".join(f"({clause})" for _ in keys)
            )
            params = [value for key in keys for value in _key_params(definition, key)]
        rows = conn.execute(sql, params).fetchall()
    except (duckdb.Error, ValueError) as exc:
        return Result.failure(FailureKind.LOOKUP_FAILED, str(exc))
    return Result.success(_key_rows_to_set(rows))


def fetch_all_keys(
    conn: duckdb.DuckDBPyConnection, definition: SeriesDefinition
) -> Result[set[Key]]:
    key_columns = ", ".join(quote(name) for name in definition.key_fields)
    try:
        rows = conn.execute(f"SELECT {key_columns} FROM {quote(definition.table)}").fetchall()
    except duckdb.Error as exc:
        return Result.failure(FailureKind.LOOKUP_FAILED, str(exc))
    return Result.success(_key_rows_to_set(rows))


def insert_execution_log(
    conn: duckdb.DuckDBPyConnection,
    *,
    status: str,
    results: Sequence[dict[str, Any]],
    execution_time: datetime | None = None,
) -> Result[None]:
    """Persist one audit row; failures are returned, never raised."""

    executed = execution_time or datetime.now(UTC)
    try:
        conn.execute(
            f"INSERT INTO {CRON_EXECUTIONS_TABLE} (execution_time, status, results) VALUES (?, ?, ?)",
            [to_storage_value(executed), status, json.dumps(list(results))],
        )
    except duckdb.Error as exc:
        return Result.failure(FailureKind.AUDIT_LOG_FAILED, str(exc))
    return Result.success(None)


def fetch_execution_logs(
    conn: duckdb.DuckDBPyConnection, *, limit: int = 50
) -> list[dict[str, Any]]:
    rows = conn.execute(
        f"""
        SELECT id, execution_time, status, results
        FROM {CRON_EXECUTIONS_TABLE}
        ORDER BY execution_time DESC, id DESC
        LIMIT ?
        """,
        [limit],
    ).fetchall()
    logs: list[dict[str, Any]] = []
    for row in rows:
        results = row[3]
        logs.append(
            {
                "id": row[0],
                "execution_time": row[1].replace(tzinfo=UTC).isoformat(),
                "status": row[2],
                "results": json.loads(results) if isinstance(results, str) else results,
            }
        )
    return logs


__all__ = [
    "CRON_EXECUTIONS_TABLE",
    "WriteReport",
    "connect",
    "ensure_schema",
    "ensure_series_table",
    "fetch_all_keys",
    "fetch_execution_logs",
    "find_existing_keys",
    "get_database_path",
    "insert_execution_log",
    "quote",
    "records_frame",
    "write_series_records",
]
