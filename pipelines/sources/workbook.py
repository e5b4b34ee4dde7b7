"""Spreadsheet helpers shared by the INDEC ingestors."""

from __future__ import annotations

import io
from typing import Any

import pandas as pd

Grid = list[list[Any]]


def read_workbook(content: bytes) -> dict[str, Grid]:
    """Load every sheet of an ``.xls``/``.xlsx`` workbook as a grid of raw cell values."""

    frames = pd.read_excel(io.BytesIO(content), sheet_name=None, header=None)
    return {name: frame_to_grid(frame) for name, frame in frames.items()}


def frame_to_grid(frame: pd.DataFrame) -> Grid:
    cleaned = frame.astype(object).where(frame.notna(), None)
    return cleaned.values.tolist()


def cell(grid: Grid, row: int, col: int) -> Any:
    if row < 0 or row >= len(grid):
        return None
    values = grid[row]
    if col < 0 or col >= len(values):
        return None
    return values[col]


def cell_text(grid: Grid, row: int, col: int) -> str:
    value = cell(grid, row, col)
    return "" if value is None else str(value).strip()


__all__ = ["Grid", "cell", "cell_text", "frame_to_grid", "read_workbook"]
