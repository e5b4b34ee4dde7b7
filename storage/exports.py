"""CSV rendering for query results."""

from __future__ import annotations

import csv
from io import StringIO
from typing import Any, Mapping, Sequence

import pandas as pd

CSV_ENCODING = "utf-8-sig"


def rows_to_dataframe(rows: Sequence[Mapping[str, Any]], columns: Sequence[str]) -> pd.DataFrame:
    return pd.DataFrame(list(rows), columns=list(columns), dtype=object)


def render_csv(rows: Sequence[Mapping[str, Any]], columns: Sequence[str]) -> bytes:
    """Render rows as UTF-8 CSV with a byte order mark.

    Fields holding a comma, quote or line break are quoted and inner quotes
    doubled; missing values become empty fields.
    """

    buffer = StringIO()
    frame = rows_to_dataframe(rows, columns)
    frame.to_csv(buffer, index=False, quoting=csv.QUOTE_MINIMAL, lineterminator="\r\n")
    return buffer.getvalue().encode(CSV_ENCODING)


def csv_filename(series_key: str, query_type: str) -> str:
    return f"{series_key.replace('-', '_').replace('/', '_')}_{query_type.replace('-', '_')}.csv"


__all__ = ["CSV_ENCODING", "csv_filename", "render_csv", "rows_to_dataframe"]
