"""INDEC labor market (EPH) ingestor.

The EPH rates workbook lays quarters out as columns and stacks sections per
region (optionally split by gender or age group) as rows. The parser walks the
main sheet and emits one raw row per section and quarter, keyed by the
internal indicator names.
"""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import date
from typing import Any, Iterable, Mapping

from pipelines.common import fetch_first_available
from pipelines.sources.workbook import Grid, cell_text, read_workbook

EPH_URL_TEMPLATES: tuple[str, ...] = (
    "https://www.indec.gob.ar/ftp/cuadros/menusuperior/eph/cuadros_tasas_indicadores_eph_{quarter:02d}_{yy}.xls",
    "https://www.indec.gob.ar/ftp/cuadros/menusuperior/eph/EPH_usu_{quarter}T{year}.xlsx",
    "https://www.indec.gob.ar/ftp/cuadros/sociedad/eph/cuadros_tasas_indicadores_eph_{quarter:02d}_{yy}.xls",
)
SOURCE_FILE = "cuadros_tasas_indicadores_eph"

# Ordered: more specific labels must be tested before their substrings.
INDICATOR_LABELS: tuple[tuple[str, str], ...] = (
    ("tasa de desocupaci", "unemployment_rate"),
    ("tasa de actividad", "activity_rate"),
    ("tasa de empleo", "employment_rate"),
    ("económicamente activa", "economically_active_population"),
    ("economicamente activa", "economically_active_population"),
    ("desocupados", "unemployed_population"),
    ("ocupados", "employed_population"),
    ("inactiv", "inactive_population"),
    ("población total", "total_population"),
    ("poblacion total", "total_population"),
)

REGION_LABELS: Mapping[str, str] = {
    "total 31 aglomerados": "Total 31 aglomerados",
    "total aglomerados": "Total 31 aglomerados",
    "gba": "GBA",
    "gran buenos aires": "GBA",
    "interior": "Interior",
    "pampeana": "Región Pampeana",
    "noa": "Región NOA",
    "noroeste": "Región NOA",
    "nea": "Región NEA",
    "noreste": "Región NEA",
    "cuyo": "Región Cuyo",
    "patag": "Región Patagónica",
}

GENDER_LABELS: Mapping[str, str] = {"varones": "Varones", "mujeres": "Mujeres"}

_PERIOD_RE = re.compile(r"(T[1-4])\s*(\d{4})", re.IGNORECASE)
_PERIOD_TEXT_RE = re.compile(r"([1-4])\s*(?:er|do|ro|to|°|º)?\.?\s*trim\w*\.?\s*(\d{4})", re.IGNORECASE)
_YEAR_RE = re.compile(r"^\d{4}$")
_AGE_RE = re.compile(r"(\d{2})\s*(?:a|-)\s*(\d{2})\s*años|(\d{2})\s*(?:y más|\+)", re.IGNORECASE)

logger = logging.getLogger(__name__)


def candidate_urls(today: date) -> list[str]:
    """Most recent publications first: the current quarter, then the three before it."""

    urls: list[str] = []
    quarter = (today.month - 1) // 3 + 1
    year = today.year
    for _ in range(4):
        for template in EPH_URL_TEMPLATES:
            urls.append(template.format(quarter=quarter, year=year, yy=str(year)[-2:]))
        quarter -= 1
        if quarter == 0:
            quarter, year = 4, year - 1
    return urls


def _period_label(raw: Any, previous: str | None) -> str | None:
    text = "" if raw is None else str(raw).strip()
    if not text:
        return None
    match = _PERIOD_RE.search(text)
    if match:
        return f"{match.group(1).upper()} {match.group(2)}"
    match = _PERIOD_TEXT_RE.search(text)
    if match:
        return f"T{match.group(1)} {match.group(2)}"
    if _YEAR_RE.match(text) and previous:
        last_quarter = int(previous[1])
        return f"T{last_quarter % 4 + 1} {text}"
    return None


def find_period_columns(grid: Grid, search_rows: int = 20) -> tuple[int, dict[int, str]]:
    """Locate the header row and map column index -> ``T<q> <year>`` label."""

    for row_index in range(min(search_rows, len(grid))):
        columns: dict[int, str] = {}
        previous: str | None = None
        for col_index in range(1, len(grid[row_index])):
            label = _period_label(grid[row_index][col_index], previous)
            if label:
                columns[col_index] = label
                previous = label
        if columns:
            return row_index, columns
    return -1, {}


def _match(label: str, table: Mapping[str, str]) -> str | None:
    lowered = label.lower()
    for needle, value in table.items():
        if needle in lowered:
            return value
    return None


def _indicator(label: str) -> str | None:
    lowered = label.lower()
    for needle, field in INDICATOR_LABELS:
        if needle in lowered:
            return field
    return None


def _age_group(label: str) -> str | None:
    match = _AGE_RE.search(label)
    if not match:
        return None
    if match.group(1):
        return f"{match.group(1)}-{match.group(2)} años"
    return f"{match.group(3)}+ años"


def parse_labor_grid(grid: Grid, *, source_file: str = SOURCE_FILE) -> list[dict[str, Any]]:
    """Extract raw labor market rows from the main EPH sheet."""

    header_row, periods = find_period_columns(grid)
    if header_row < 0:
        logger.warning("No quarterly period header found in EPH sheet.")
        return []

    rows: dict[tuple[str, str | None, str | None, str], dict[str, Any]] = {}
    region: str | None = None
    gender: str | None = None
    age_group: str | None = None

    for row_index in range(header_row + 1, len(grid)):
        label = cell_text(grid, row_index, 0)
        if not label:
            continue

        field = _indicator(label)
        if field is None:
            new_region = _match(label, REGION_LABELS)
            if new_region:
                region, gender, age_group = new_region, None, None
                continue
            new_gender = _match(label, GENDER_LABELS)
            new_age = _age_group(label)
            if new_gender or new_age:
                gender = new_gender or gender
                age_group = new_age or age_group
            continue

        if region is None:
            continue
        for col_index, period in periods.items():
            value = grid[row_index][col_index] if col_index < len(grid[row_index]) else None
            if value is None or str(value).strip() == "":
                continue
            key = (region, gender, age_group, period)
            row = rows.setdefault(
                key,
                {
                    "period": period,
                    "region": region,
                    "gender": gender,
                    "age_group": age_group,
                    "source_file": source_file,
                },
            )
            row.setdefault(field, value)

    logger.info("Parsed %s EPH rows across %s quarters.", len(rows), len(periods))
    return list(rows.values())


def _main_sheet(sheets: Mapping[str, Grid]) -> Grid:
    for name, grid in sheets.items():
        lowered = name.lower()
        if "tasas" in lowered or "indicadores" in lowered or "cuadro" in lowered:
            return grid
    return next(iter(sheets.values()), [])


async def fetch_labor_market_rows(
    today: date, urls: Iterable[str] | None = None
) -> list[dict[str, Any]]:
    url, content = await fetch_first_available(urls or candidate_urls(today), timeout=30.0)
    logger.info("Downloaded EPH workbook from %s.", url)
    sheets = await asyncio.to_thread(read_workbook, content)
    return parse_labor_grid(_main_sheet(sheets))


__all__ = [
    "candidate_urls",
    "fetch_labor_market_rows",
    "find_period_columns",
    "parse_labor_grid",
]
