"""Canonical data model for time series observations ingested from external sources."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

NATIONAL = "national"
UNKNOWN_SOURCE_FILE = "unknown"


class WriteMode(str, Enum):
    """How the destination treats a row whose natural key is already stored."""

    UPSERT = "upsert"
    IGNORE = "ignore"


@dataclass(frozen=True)
class SeriesDefinition:
    """Shape of one destination table and the natural key that identifies its rows."""

    key: str
    table: str
    date_column: str
    key_fields: tuple[str, ...]
    description: str
    source: str
    date_type: str = "DATE"
    dimensions: tuple[str, ...] = ()
    attributes: tuple[tuple[str, str], ...] = ()
    payload_fields: tuple[str, ...] = ("value",)
    write_mode: WriteMode = WriteMode.UPSERT
    keyed_by_external_id: bool = False
    variation_field: str | None = None
    local_date_column: str | None = None

    @property
    def attribute_names(self) -> tuple[str, ...]:
        return tuple(name for name, _ in self.attributes)

    @property
    def columns(self) -> tuple[str, ...]:
        return (
            self.date_column,
            *self.dimensions,
            *self.attribute_names,
            *self.payload_fields,
            "source_file",
            "data_type",
        )

    @property
    def column_types(self) -> dict[str, str]:
        """SQL type of every stored column, in ``columns`` order."""

        return {
            self.date_column: self.date_type,
            **{name: "TEXT" for name in self.dimensions},
            **dict(self.attributes),
            **{name: "DOUBLE" for name in self.payload_fields},
            "source_file": "TEXT",
            "data_type": "TEXT",
        }


class SeriesRecord(BaseModel):
    """Normalized representation of a single indicator observation."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    series: str = Field(..., description="Series key the record belongs to (e.g. 'cer', 'dollar').")
    observed_at: datetime | date = Field(
        ...,
        description="Calendar date, or timezone-aware instant, the observation refers to.",
    )
    dimensions: dict[str, str] = Field(
        default_factory=dict,
        description="Dimension values that, with the date, make up the natural key.",
    )
    attributes: dict[str, Any] = Field(
        default_factory=dict,
        description="Descriptive, non-key columns such as the period label.",
    )
    payload: dict[str, Optional[float]] = Field(
        default_factory=dict, description="Indicator values; each one may be missing."
    )
    source_file: Optional[str] = Field(
        default=None, description="Upstream extract that produced the record."
    )
    data_type: Optional[str] = Field(
        default=None, description="Coarse category: national, regional or demographic."
    )

    def natural_key(self, definition: SeriesDefinition) -> tuple[str, ...]:
        values = []
        for name in definition.key_fields:
            if name == definition.date_column:
                values.append(key_value(self.observed_at))
            else:
                values.append(key_value(self.dimensions.get(name)))
        return tuple(values)

    def storage_date(self) -> datetime | date:
        """Value written to the date column: dates as-is, instants as naive UTC."""

        return to_storage_value(self.observed_at)


def to_storage_value(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(UTC).replace(tzinfo=None)
        return value
    return value


def key_value(value: Any) -> str:
    """Canonical string form of one natural key component."""

    if value is None:
        return ""
    if isinstance(value, datetime):
        return to_storage_value(value).isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


__all__ = [
    "NATIONAL",
    "SeriesDefinition",
    "SeriesRecord",
    "UNKNOWN_SOURCE_FILE",
    "WriteMode",
    "key_value",
    "to_storage_value",
]
