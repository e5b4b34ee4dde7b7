"""Read-side queries over the stored series, shared by the HTTP API and exports."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any, Mapping, Sequence

import duckdb

from pipelines.dates import format_instant
from pipelines.model import SeriesDefinition
from storage.db import quote

VARIATION_COLUMNS = ("previous_value", "absolute_change", "pct_change")
QUERY_TYPES = ("latest", "historical", "range", "specific-date", "metadata")


@dataclass(frozen=True)
class SeriesQuery:
    """Filters and paging options for one read against a series table."""

    filters: Mapping[str, str] = field(default_factory=dict)
    start_date: date | None = None
    end_date: date | None = None
    order: str = "desc"
    include_variations: bool = True
    limit: int = 100
    page: int = 1

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def partition_columns(definition: SeriesDefinition) -> tuple[str, ...]:
    """Columns that split a table into independent time series."""

    if definition.keyed_by_external_id:
        return ()
    return definition.dimensions


def result_columns(definition: SeriesDefinition, include_variations: bool) -> tuple[str, ...]:
    if include_variations and definition.variation_field:
        return (*definition.columns, *VARIATION_COLUMNS)
    return definition.columns


def _base_sql(definition: SeriesDefinition, include_variations: bool) -> str:
    columns = ", ".join(quote(name) for name in definition.columns)
    table = quote(definition.table)
    if not include_variations or definition.variation_field is None:
        return f"SELECT {columns} FROM {table}"

    value = quote(definition.variation_field)
    partition = ", ".join(quote(name) for name in partition_columns(definition))
    window = f"PARTITION BY {partition} " if partition else ""
    window += f"ORDER BY {quote(definition.date_column)}"
    previous = f"LAG({value}) OVER w"
    return f"""
        SELECT {columns},
            {previous} AS previous_value,
            ROUND({value} - {previous}, 6) AS absolute_change,
            CASE WHEN {previous} IS NULL OR {previous} = 0 THEN NULL
                 ELSE ROUND(({value} - {previous}) / {previous} * 100, 4)
            END AS pct_change
        FROM {table}
        WINDOW w AS ({window})
    """


def _where(
    definition: SeriesDefinition,
    query: SeriesQuery,
    *,
    on_date: date | None = None,
) -> tuple[str, list[Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    day_column = definition.local_date_column or definition.date_column
    day = f"CAST({quote(day_column)} AS DATE)"
    for column, value in query.filters.items():
        clauses.append(f"{quote(column)} = ?")
        params.append(value)
    if query.start_date is not None:
        clauses.append(f"{day} >= ?")
        params.append(query.start_date)
    if query.end_date is not None:
        clauses.append(f"{day} <= ?")
        params.append(query.end_date)
    if on_date is not None:
        clauses.append(f"{day} = ?")
        params.append(on_date)
    if not clauses:
        return "", params
    return "WHERE " + " AND ".join(clauses), params


def _order_by(definition: SeriesDefinition, order: str) -> str:
    direction = "ASC" if order == "asc" else "DESC"
    terms = [f"{quote(definition.date_column)} {direction}"]
    terms += [quote(name) for name in definition.dimensions]
    return "ORDER BY " + ", ".join(terms)


def _serialize_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return format_instant(value.replace(tzinfo=UTC) if value.tzinfo is None else value)
    if isinstance(value, date):
        return value.isoformat()
    return value


def _fetch_rows(
    conn: duckdb.DuckDBPyConnection, sql: str, params: Sequence[Any], columns: Sequence[str]
) -> list[dict[str, Any]]:
    rows = conn.execute(sql, list(params)).fetchall()
    return [
        {column: _serialize_value(value) for column, value in zip(columns, row)}
        for row in rows
    ]


def fetch_latest(
    conn: duckdb.DuckDBPyConnection, definition: SeriesDefinition, query: SeriesQuery
) -> list[dict[str, Any]]:
    """Most recent row of every independent series matching the filters."""

    where, params = _where(definition, query)
    partition = ", ".join(quote(name) for name in partition_columns(definition))
    over = f"PARTITION BY {partition} " if partition else ""
    over += f"ORDER BY {quote(definition.date_column)} DESC"
    sql = f"""
        WITH series AS ({_base_sql(definition, query.include_variations)})
        SELECT * FROM series
        {where}
        QUALIFY ROW_NUMBER() OVER ({over}) = 1
        {_order_by(definition, "desc")}
    """
    columns = result_columns(definition, query.include_variations)
    return _fetch_rows(conn, sql, params, columns)


def fetch_on_date(
    conn: duckdb.DuckDBPyConnection,
    definition: SeriesDefinition,
    query: SeriesQuery,
    on_date: date,
) -> list[dict[str, Any]]:
    where, params = _where(definition, query, on_date=on_date)
    sql = f"""
        WITH series AS ({_base_sql(definition, query.include_variations)})
        SELECT * FROM series {where} {_order_by(definition, query.order)}
    """
    columns = result_columns(definition, query.include_variations)
    return _fetch_rows(conn, sql, params, columns)


def fetch_range(
    conn: duckdb.DuckDBPyConnection, definition: SeriesDefinition, query: SeriesQuery
) -> list[dict[str, Any]]:
    """Every row between ``start_date`` and ``end_date`` inclusive, unpaginated."""

    where, params = _where(definition, query)
    sql = f"""
        WITH series AS ({_base_sql(definition, query.include_variations)})
        SELECT * FROM series {where} {_order_by(definition, query.order)}
    """
    columns = result_columns(definition, query.include_variations)
    return _fetch_rows(conn, sql, params, columns)


def fetch_page(
    conn: duckdb.DuckDBPyConnection, definition: SeriesDefinition, query: SeriesQuery
) -> tuple[list[dict[str, Any]], int]:
    """One page of matching rows plus the total number of matching rows."""

    where, params = _where(definition, query)
    base = _base_sql(definition, query.include_variations)
    total = conn.execute(
        f"WITH series AS ({base}) SELECT COUNT(*) FROM series {where}", params
    ).fetchone()[0]
    sql = f"""
        WITH series AS ({base})
        SELECT * FROM series {where}
        {_order_by(definition, query.order)}
        LIMIT ? OFFSET ?
    """
    columns = result_columns(definition, query.include_variations)
    rows = _fetch_rows(conn, sql, [*params, query.limit, query.offset], columns)
    return rows, total


def fetch_metadata(
    conn: duckdb.DuckDBPyConnection, definition: SeriesDefinition
) -> dict[str, Any]:
    table = quote(definition.table)
    date_column = quote(definition.date_column)
    count, first, last = conn.execute(
        f"SELECT COUNT(*), MIN({date_column}), MAX({date_column}) FROM {table}"
    ).fetchone()
    dimensions: dict[str, list[str]] = {}
    for name in partition_columns(definition):
        values = conn.execute(
            f"SELECT DISTINCT {quote(name)} FROM {table} ORDER BY 1"
        ).fetchall()
        dimensions[name] = [row[0] for row in values]
    return {
        "series": definition.key,
        "description": definition.description,
        "source": definition.source,
        "total_records": count,
        "first_date": _serialize_value(first),
        "last_date": _serialize_value(last),
        "columns": list(definition.columns),
        "dimensions": dimensions,
    }


def calculate_stats(
    definition: SeriesDefinition, rows: Sequence[Mapping[str, Any]]
) -> dict[str, Any] | None:
    """Summary of the variation field over ``rows``, or ``None`` when there is nothing to summarise."""

    field_name = definition.variation_field
    if field_name is None:
        return None
    dated = [row for row in rows if row.get(field_name) is not None]
    if not dated:
        return None
    dated.sort(key=lambda row: row[definition.date_column])
    values = [row[field_name] for row in dated]
    oldest, latest = dated[0], dated[-1]

    stats: dict[str, Any] = {
        "latest_value": latest[field_name],
        "latest_date": latest[definition.date_column],
        "min_value": min(values),
        "max_value": max(values),
        "avg_value": round(sum(values) / len(values), 4),
        "total_records": len(values),
    }
    if "pct_change" in latest:
        stats["latest_change"] = latest["pct_change"]
    if oldest[field_name] > 0:
        stats["period_change"] = {
            "absolute": round(latest[field_name] - oldest[field_name], 4),
            "percentage": round(
                (latest[field_name] - oldest[field_name]) / oldest[field_name] * 100, 4
            ),
        }
    return stats


__all__ = [
    "QUERY_TYPES",
    "SeriesQuery",
    "calculate_stats",
    "fetch_latest",
    "fetch_metadata",
    "fetch_on_date",
    "fetch_page",
    "fetch_range",
    "partition_columns",
    "result_columns",
]
