"""EMBI (riesgo país) ingestor backed by a published Google Sheet.

The sheet holds three columns (``id``, ``fecha``, ``indice``) and is read via
its CSV export.
"""

from __future__ import annotations

import io
import logging
from typing import Any, Mapping

import pandas as pd

from pipelines.common import SourceUnavailableError, fetch_text

SHEETS_CSV_URL = "https://docs.google.com/spreadsheets/d/{spreadsheet_id}/gviz/tq"
DEFAULT_SHEET_NAME = "Indice EMBI"
EMBI_COLUMNS = ("id", "fecha", "indice")

logger = logging.getLogger(__name__)


def parse_embi_csv(text: str) -> list[Mapping[str, Any]]:
    """Turn the sheet's CSV export into raw rows, skipping the header and incomplete rows."""

    if not text.strip():
        logger.warning("EMBI sheet export is empty.")
        return []
    frame = pd.read_csv(io.StringIO(text), dtype=str, keep_default_na=False)
    if frame.empty or len(frame.columns) < len(EMBI_COLUMNS):
        logger.warning("EMBI sheet has no data rows.")
        return []

    parsed: list[Mapping[str, Any]] = []
    values = frame.iloc[:, : len(EMBI_COLUMNS)].fillna("")
    for number, row in enumerate(values.itertuples(index=False), start=2):
        cells = [str(value).strip() for value in row]
        if not all(cells):
            logger.warning("EMBI sheet row %s is incomplete; skipping.", number)
            continue
        parsed.append(dict(zip(EMBI_COLUMNS, cells, strict=True)))
    logger.info("Parsed %s EMBI rows out of %s.", len(parsed), len(frame))
    return parsed


async def fetch_embi_rows(
    spreadsheet_id: str | None,
    *,
    sheet_name: str = DEFAULT_SHEET_NAME,
) -> list[Mapping[str, Any]]:
    if not spreadsheet_id:
        raise SourceUnavailableError("EMBI_SPREADSHEET_ID is not configured")

    text = await fetch_text(
        SHEETS_CSV_URL.format(spreadsheet_id=spreadsheet_id),
        params={"tqx": "out:csv", "sheet": sheet_name},
    )
    return parse_embi_csv(text)


__all__ = ["DEFAULT_SHEET_NAME", "fetch_embi_rows", "parse_embi_csv"]
