"""INDEC poverty and indigence ingestor.

Reads the semiannual ``cuadros_informe_pobreza`` workbook:

* Cuadro 1: national poverty and indigence rates (households and persons).
* Cuadros 2.1 / 2.2: indigence and poverty gap and severity.
* Cuadros 4.3 / 4.4: poverty and indigence rates by region.

National rows from different cuadros share the same ``(date, region)`` key and
are merged later by the reconciler.
"""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import date
from typing import Any, Iterable, Mapping

from pipelines.common import fetch_first_available
from pipelines.sources.workbook import Grid, cell, cell_text, read_workbook

POVERTY_URL_TEMPLATE = (
    "https://www.indec.gob.ar/ftp/cuadros/sociedad/cuadros_informe_pobreza_{month:02d}_{yy}.xls"
)
SOURCE_FILE = "cuadros_informe_pobreza"
NATIONAL_REGION = "Total 31 aglomerados"
PERIOD_ROW = 2
LABEL_ROW = 3

REGION_NAMES: tuple[str, ...] = (
    "Gran Buenos Aires",
    "Cuyo",
    "Noreste",
    "Noroeste",
    "Pampeana",
    "Patagonia",
)

_SEMESTER_RE = re.compile(r"([12])\s*[°ºerdot]*\.?\s*semestre\s*(\d{4})", re.IGNORECASE)

logger = logging.getLogger(__name__)


def candidate_urls(today: date) -> list[str]:
    """Publications land in March (second semester) and September (first semester)."""

    publications: list[tuple[int, int]] = []
    for year in range(today.year, today.year - 4, -1):
        for month in (9, 3):
            if (year, month) <= (today.year, today.month):
                publications.append((month, year))
    return [
        POVERTY_URL_TEMPLATE.format(month=month, yy=str(year)[-2:]) for month, year in publications
    ]


def semester_columns(grid: Grid, row: int = PERIOD_ROW) -> dict[int, str]:
    """Map column index -> raw semester label such as ``1er. semestre 2024``."""

    columns: dict[int, str] = {}
    values = grid[row] if row < len(grid) else []
    for col_index in range(1, len(values)):
        text = cell_text(grid, row, col_index)
        if _SEMESTER_RE.search(text):
            columns[col_index] = text
    return columns


def _base_row(period: str, region: str, data_type: str, cuadro: str) -> dict[str, Any]:
    return {
        "period": period,
        "region": region,
        "data_type": data_type,
        "cuadro_source": cuadro,
        "source_file": SOURCE_FILE,
    }


def parse_rates_sheet(grid: Grid, cuadro: str = "Cuadro 1") -> list[dict[str, Any]]:
    """National rates: rows labelled Hogares/Personas under Pobreza/Indigencia headings."""

    periods = semester_columns(grid)
    if not periods:
        logger.warning("No semester periods found in %s.", cuadro)
        return []

    rows = {col: _base_row(period, NATIONAL_REGION, "national", cuadro) for col, period in periods.items()}
    heading: str | None = None
    for row_index in range(PERIOD_ROW + 1, len(grid)):
        label = cell_text(grid, row_index, 0).lower()
        if "indigencia" in label:
            heading = "indigence"
        elif "pobreza" in label:
            heading = "poverty"
        if heading is None:
            continue
        if "hogar" in label:
            field = f"{heading}_rate_households"
        elif "persona" in label:
            field = f"{heading}_rate_persons"
        else:
            continue
        for col_index, row in rows.items():
            row.setdefault(field, cell(grid, row_index, col_index))
    return list(rows.values())


def parse_gap_sheet(grid: Grid, cuadro: str, kind: str) -> list[dict[str, Any]]:
    """Gap and severity rows of Cuadros 2.1 (indigence) and 2.2 (poverty)."""

    periods = semester_columns(grid)
    parsed: list[dict[str, Any]] = []
    for row_index in range(PERIOD_ROW + 1, len(grid)):
        label = cell_text(grid, row_index, 0)
        lowered = label.lower()
        if lowered.startswith("brecha"):
            field = f"{kind}_gap"
        elif lowered.startswith("severidad"):
            field = f"{kind}_severity"
        else:
            continue
        for col_index, period in periods.items():
            value = cell(grid, row_index, col_index)
            row = _base_row(period, NATIONAL_REGION, "national", cuadro)
            row.update({field: value, "variable_name": label, "variable_value": value})
            parsed.append(row)
    return parsed


def _find_column(grid: Grid, start: int, needle: str, offsets: Iterable[int]) -> int | None:
    for offset in offsets:
        if needle in cell_text(grid, LABEL_ROW, start + offset).lower():
            return start + offset
    return None


def parse_regional_sheet(grid: Grid, cuadro: str, kind: str) -> list[dict[str, Any]]:
    """Regional rates of Cuadros 4.3 (poverty) and 4.4 (indigence)."""

    periods = semester_columns(grid)
    columns: list[tuple[str, int, int]] = []
    for col_index, period in periods.items():
        households = _find_column(grid, col_index, "hogar", range(-1, 4))
        persons = _find_column(grid, col_index, "persona", range(1, 5))
        columns.append(
            (
                period,
                col_index if households is None else households,
                col_index + 2 if persons is None else persons,
            )
        )

    parsed: list[dict[str, Any]] = []
    for row_index in range(LABEL_ROW + 1, len(grid)):
        label = cell_text(grid, row_index, 0)
        region = next((name for name in REGION_NAMES if label.lower() == name.lower()), None)
        if region is None:
            continue
        for period, households_col, persons_col in columns:
            households = cell(grid, row_index, households_col)
            persons = cell(grid, row_index, persons_col)
            if households is None and persons is None:
                continue
            row = _base_row(period, region, "regional", cuadro)
            row[f"{kind}_rate_households"] = households
            row[f"{kind}_rate_persons"] = persons
            parsed.append(row)
    return parsed


def parse_poverty_workbook(sheets: Mapping[str, Grid]) -> list[dict[str, Any]]:
    parsed: list[dict[str, Any]] = []
    parsers = (
        ("Cuadro 1", lambda grid: parse_rates_sheet(grid, "Cuadro 1")),
        ("Cuadro 2.1", lambda grid: parse_gap_sheet(grid, "Cuadro 2.1", "indigence")),
        ("Cuadro 2.2", lambda grid: parse_gap_sheet(grid, "Cuadro 2.2", "poverty")),
        ("Cuadro 4.3", lambda grid: parse_regional_sheet(grid, "Cuadro 4.3", "poverty")),
        ("Cuadro 4.4", lambda grid: parse_regional_sheet(grid, "Cuadro 4.4", "indigence")),
    )
    for sheet_name, parser in parsers:
        grid = sheets.get(sheet_name)
        if grid is None:
            logger.warning("Sheet %s not found in poverty workbook.", sheet_name)
            continue
        rows = parser(grid)
        logger.info("%s: %s rows parsed.", sheet_name, len(rows))
        parsed.extend(rows)
    return parsed


async def fetch_poverty_rows(
    today: date, urls: Iterable[str] | None = None
) -> list[dict[str, Any]]:
    url, content = await fetch_first_available(urls or candidate_urls(today), timeout=30.0)
    logger.info("Downloaded poverty workbook from %s.", url)
    sheets = await asyncio.to_thread(read_workbook, content)
    return parse_poverty_workbook(sheets)


__all__ = [
    "candidate_urls",
    "fetch_poverty_rows",
    "parse_gap_sheet",
    "parse_poverty_workbook",
    "parse_rates_sheet",
    "parse_regional_sheet",
    "semester_columns",
]
