"""INDEC consumer price index (IPC) ingestor.

The ``sh_ipc`` workbook's national-coverage index sheet lays months out as
columns. Rows are stacked per region: a region heading, then the general
level, the COICOP divisions, the seasonal/core/regulated categories and the
goods/services split. One raw row is emitted per component, region and month.
"""

from __future__ import annotations

import asyncio
import logging
import re
import unicodedata
from datetime import date
from typing import Any, Iterable, Mapping

from pipelines.common import fetch_first_available
from pipelines.dates import month_start, spanish_month
from pipelines.sources.workbook import Grid, cell, cell_text, read_workbook

IPC_URL_TEMPLATE = "https://www.indec.gob.ar/ftp/cuadros/economia/sh_ipc_{month:02d}_{yy}.xls"
SOURCE_FILE = "sh_ipc"
INDEX_SHEET_HINT = "indices"
MIN_MONTH_COLUMNS = 3

# Normalized row label -> (component code, component type)
COMPONENTS: Mapping[str, tuple[str, str]] = {
    "nivel general": ("GENERAL", "GENERAL"),
    "alimentos y bebidas no alcoholicas": ("ALIMENTOS_BEBIDAS", "RUBRO"),
    "bebidas alcoholicas y tabaco": ("BEBIDAS_ALCOHOLICAS_TABACO", "RUBRO"),
    "prendas de vestir y calzado": ("PRENDAS_VESTIR_CALZADO", "RUBRO"),
    "vivienda, agua, electricidad, gas y otros combustibles": ("VIVIENDA_SERVICIOS", "RUBRO"),
    "equipamiento y mantenimiento del hogar": ("EQUIPAMIENTO_HOGAR", "RUBRO"),
    "salud": ("SALUD", "RUBRO"),
    "transporte": ("TRANSPORTE", "RUBRO"),
    "comunicacion": ("COMUNICACION", "RUBRO"),
    "recreacion y cultura": ("RECREACION_CULTURA", "RUBRO"),
    "educacion": ("EDUCACION", "RUBRO"),
    "restaurantes y hoteles": ("RESTAURANTES_HOTELES", "RUBRO"),
    "bienes y servicios varios": ("BIENES_SERVICIOS_VARIOS", "RUBRO"),
    "estacional": ("ESTACIONAL", "CATEGORIA"),
    "nucleo": ("NUCLEO", "CATEGORIA"),
    "regulados": ("REGULADOS", "CATEGORIA"),
    "bienes": ("BIENES", "BYS"),
    "servicios": ("SERVICIOS", "BYS"),
}

# Checked in order against the normalized heading
REGIONS: tuple[tuple[str, str], ...] = (
    ("total nacional", "Nacional"),
    ("gba", "GBA"),
    ("pampeana", "Pampeana"),
    ("noreste", "Noreste"),
    ("noroeste", "Noroeste"),
    ("cuyo", "Cuyo"),
    ("patagonia", "Patagonia"),
)

_SHORT_MONTH_RE = re.compile(r"^([a-z]{3})[a-z]*[-/ ](\d{2}|\d{4})$")

logger = logging.getLogger(__name__)


def normalize_label(value: Any) -> str:
    """Lower-case, accent-free, single-spaced label without footnote marks."""

    text = unicodedata.normalize("NFKD", "" if value is None else str(value))
    text = "".join(char for char in text if not unicodedata.combining(char))
    text = re.sub(r"\(\d+\)|\*", "", text)
    return " ".join(text.lower().split())


def candidate_urls(today: date, months: int = 4) -> list[str]:
    """The current month's publication first, then the ones before it."""

    urls: list[str] = []
    year, month = today.year, today.month
    for _ in range(months):
        urls.append(IPC_URL_TEMPLATE.format(month=month, yy=str(year)[-2:]))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return urls


def _month_label(value: Any) -> str | None:
    if isinstance(value, date):
        start = month_start(value)
        return f"{start.year}-{start.month:02d}"
    text = normalize_label(value)
    match = _SHORT_MONTH_RE.match(text)
    if not match:
        return None
    month = spanish_month(match.group(1))
    if month is None:
        return None
    year = int(match.group(2))
    year = year + 2000 if year < 100 else year
    return f"{year}-{month:02d}"


def find_month_columns(grid: Grid, search_rows: int = 15) -> tuple[int, dict[int, str]]:
    """Locate the header row of months; map column index -> ``YYYY-MM``."""

    for row_index in range(min(search_rows, len(grid))):
        columns = {
            col_index: label
            for col_index in range(1, len(grid[row_index]))
            if (label := _month_label(grid[row_index][col_index]))
        }
        if len(columns) >= MIN_MONTH_COLUMNS:
            return row_index, columns
    return -1, {}


def _region(label: str) -> str | None:
    for needle, region in REGIONS:
        if needle in label:
            return region
    return None


def parse_ipc_grid(grid: Grid, *, source_file: str = SOURCE_FILE) -> list[dict[str, Any]]:
    header_row, months = find_month_columns(grid)
    if header_row < 0:
        logger.warning("No month header found in IPC sheet.")
        return []

    rows: list[dict[str, Any]] = []
    region: str | None = None
    for row_index in range(header_row + 1, len(grid)):
        raw_label = cell_text(grid, row_index, 0)
        label = normalize_label(raw_label)
        if not label:
            continue
        component = COMPONENTS.get(label)
        if component is None:
            region = _region(label) or region
            continue
        if region is None:
            continue
        code, component_type = component
        for col_index, period in months.items():
            value = cell(grid, row_index, col_index)
            if value is None:
                continue
            rows.append(
                {
                    "period": period,
                    "region": region,
                    "component": raw_label,
                    "component_code": code,
                    "component_type": component_type,
                    "index_value": value,
                    "source_file": source_file,
                }
            )
    logger.info("Parsed %s IPC rows across %s months.", len(rows), len(months))
    return rows


def _index_sheet(sheets: Mapping[str, Grid]) -> Grid:
    for name, grid in sheets.items():
        if INDEX_SHEET_HINT in normalize_label(name):
            return grid
    return next(iter(sheets.values()), [])


async def fetch_ipc_rows(today: date, urls: Iterable[str] | None = None) -> list[dict[str, Any]]:
    url, content = await fetch_first_available(urls or candidate_urls(today), timeout=30.0)
    logger.info("Downloaded IPC workbook from %s.", url)
    sheets = await asyncio.to_thread(read_workbook, content)
    return parse_ipc_grid(_index_sheet(sheets))


__all__ = [
    "COMPONENTS",
    "candidate_urls",
    "fetch_ipc_rows",
    "find_month_columns",
    "normalize_label",
    "parse_ipc_grid",
]
