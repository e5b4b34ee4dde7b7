"""INDEC EMAE (monthly economic activity estimator) ingestor.

Two workbooks are read:

* ``sh_emae_mensual_base2004``: the general index. The year sits in column A
  only on the first month of each year; column B holds the Spanish month
  name; the original, seasonally adjusted and trend-cycle series sit in
  columns C, E and G.
* ``sh_emae_actividad_base2004``: one column per economic sector, headed by
  the sector letter code, with the same year/month layout on the left.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Iterable, Mapping

from pipelines.common import fetch_first_available
from pipelines.dates import spanish_month
from pipelines.sources.workbook import Grid, cell, cell_text, read_workbook

EMAE_URL = "https://www.indec.gob.ar/ftp/cuadros/economia/sh_emae_mensual_base2004.xls"
EMAE_ACTIVITY_URL = "https://www.indec.gob.ar/ftp/cuadros/economia/sh_emae_actividad_base2004.xls"
EMAE_SOURCE_FILE = "sh_emae_mensual_base2004"
EMAE_ACTIVITY_SOURCE_FILE = "sh_emae_actividad_base2004"

YEAR_COLUMN = 0
MONTH_COLUMN = 1
ORIGINAL_COLUMN = 2
SEASONALLY_ADJUSTED_COLUMN = 4
CYCLE_TREND_COLUMN = 6

# ISIC letter code -> sector name, as published by INDEC
SECTORS: Mapping[str, str] = {
    "A": "Agricultura, ganadería, caza y silvicultura",
    "B": "Pesca",
    "C": "Explotación de minas y canteras",
    "D": "Industria manufacturera",
    "E": "Electricidad, gas y agua",
    "F": "Construcción",
    "G": "Comercio mayorista, minorista y reparaciones",
    "H": "Hoteles y restaurantes",
    "I": "Transporte y comunicaciones",
    "J": "Intermediación financiera",
    "K": "Actividades inmobiliarias, empresariales y de alquiler",
    "L": "Administración pública y defensa",
    "M": "Enseñanza",
    "N": "Servicios sociales y de salud",
    "O": "Otras actividades de servicios comunitarias, sociales y personales",
    "P": "Hogares privados con servicio doméstico",
}

MIN_SECTOR_COLUMNS = 5

_YEAR_RE = re.compile(r"^(\d{4})")

logger = logging.getLogger(__name__)


def _year(value: Any) -> int | None:
    """Year in column A; INDEC marks provisional years as ``2024 (*)``."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        year = int(value)
    else:
        match = _YEAR_RE.match(str(value).strip())
        if not match:
            return None
        year = int(match.group(1))
    return year if 1990 <= year <= 2100 else None


def _month_rows(grid: Grid, start: int = 0) -> Iterable[tuple[int, str]]:
    """Yield ``(row index, 'YYYY-MM')`` for every row carrying a month, tracking the year."""

    year: int | None = None
    for row_index in range(start, len(grid)):
        year = _year(cell(grid, row_index, YEAR_COLUMN)) or year
        month = spanish_month(cell_text(grid, row_index, MONTH_COLUMN))
        if month is None or year is None:
            continue
        yield row_index, f"{year}-{month:02d}"


def parse_emae_grid(grid: Grid, *, source_file: str = EMAE_SOURCE_FILE) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    for row_index, period in _month_rows(grid):
        rows.append(
            {
                "period": period,
                "original_value": cell(grid, row_index, ORIGINAL_COLUMN),
                "seasonally_adjusted_value": cell(grid, row_index, SEASONALLY_ADJUSTED_COLUMN),
                "cycle_trend_value": cell(grid, row_index, CYCLE_TREND_COLUMN),
                "source_file": source_file,
            }
        )
    logger.info("Parsed %s EMAE months.", len(rows))
    return rows


def find_sector_columns(grid: Grid, search_rows: int = 15) -> tuple[int, dict[int, str]]:
    """Locate the header row of sector letter codes; map column index -> code."""

    for row_index in range(min(search_rows, len(grid))):
        columns = {
            col_index: text.upper()
            for col_index in range(MONTH_COLUMN + 1, len(grid[row_index]))
            if (text := cell_text(grid, row_index, col_index)).upper() in SECTORS
        }
        if len(columns) >= MIN_SECTOR_COLUMNS:
            return row_index, columns
    return -1, {}


def parse_emae_activity_grid(
    grid: Grid, *, source_file: str = EMAE_ACTIVITY_SOURCE_FILE
) -> list[dict[str, Any]]:
    header_row, sectors = find_sector_columns(grid)
    if header_row < 0:
        logger.warning("No sector code header found in EMAE activity sheet.")
        return []

    rows: list[dict[str, Any]] = []
    for row_index, period in _month_rows(grid, start=header_row + 1):
        for col_index, code in sectors.items():
            value = cell(grid, row_index, col_index)
            if value is None:
                continue
            rows.append(
                {
                    "period": period,
                    "economy_sector_code": code,
                    "economy_sector": SECTORS[code],
                    "original_value": value,
                    "source_file": source_file,
                }
            )
    logger.info("Parsed %s EMAE sector rows across %s sectors.", len(rows), len(sectors))
    return rows


async def _download_first_sheet(url: str) -> Grid:
    url, content = await fetch_first_available([url], timeout=30.0)
    logger.info("Downloaded EMAE workbook from %s.", url)
    sheets = await asyncio.to_thread(read_workbook, content)
    return next(iter(sheets.values()), [])


async def fetch_emae_rows(url: str = EMAE_URL) -> list[dict[str, Any]]:
    return parse_emae_grid(await _download_first_sheet(url))


async def fetch_emae_activity_rows(url: str = EMAE_ACTIVITY_URL) -> list[dict[str, Any]]:
    return parse_emae_activity_grid(await _download_first_sheet(url))


__all__ = [
    "SECTORS",
    "fetch_emae_activity_rows",
    "fetch_emae_rows",
    "find_sector_columns",
    "parse_emae_activity_grid",
    "parse_emae_grid",
]
