"""Destination tables for each ingested indicator."""

from __future__ import annotations

from typing import Iterable

from pipelines.model import SeriesDefinition, WriteMode

CER = SeriesDefinition(
    key="cer",
    table="cer",
    date_column="date",
    key_fields=("date",),
    description="Coeficiente de Estabilización de Referencia (Base 2.2.2002=1)",
    source="BCRA",
    variation_field="value",
)

UVA = SeriesDefinition(
    key="uva",
    table="uva",
    date_column="date",
    key_fields=("date",),
    description="Unidad de Valor Adquisitivo",
    source="BCRA",
    variation_field="value",
)

DOLLAR = SeriesDefinition(
    key="dollar",
    table="dollar_rates",
    date_column="updated_at",
    date_type="TIMESTAMP",
    key_fields=("dollar_type", "updated_at"),
    dimensions=("dollar_type",),
    attributes=(("date", "DATE"),),
    payload_fields=("buy_price", "sell_price"),
    write_mode=WriteMode.IGNORE,
    description="Cotizaciones del dólar por tipo de cambio",
    source="dolarapi.com",
    variation_field="sell_price",
    local_date_column="date",
)

EMBI = SeriesDefinition(
    key="embi",
    table="embi_risk",
    date_column="date",
    date_type="TIMESTAMP",
    key_fields=("external_id",),
    dimensions=("external_id",),
    write_mode=WriteMode.IGNORE,
    keyed_by_external_id=True,
    description="Riesgo país (EMBI Argentina)",
    source="Google Sheets - EMBI Argentina",
    variation_field="value",
)

LABOR_MARKET = SeriesDefinition(
    key="labor_market",
    table="labor_market",
    date_column="date",
    key_fields=("date", "region", "gender", "age_group", "demographic_segment"),
    dimensions=("region", "gender", "age_group", "demographic_segment"),
    attributes=(("period", "TEXT"),),
    payload_fields=(
        "total_population",
        "economically_active_population",
        "employed_population",
        "unemployed_population",
        "inactive_population",
        "activity_rate",
        "employment_rate",
        "unemployment_rate",
    ),
    description="Mercado laboral (EPH): tasas y población por región y grupo",
    source="INDEC - EPH (Mercado Laboral)",
    variation_field="unemployment_rate",
)

POVERTY = SeriesDefinition(
    key="poverty",
    table="poverty_data",
    date_column="date",
    key_fields=("date", "region"),
    dimensions=("region",),
    attributes=(
        ("period", "TEXT"),
        ("semester", "INTEGER"),
        ("year", "INTEGER"),
        ("cuadro_source", "TEXT"),
        ("variable_name", "TEXT"),
    ),
    payload_fields=(
        "poverty_rate_persons",
        "poverty_rate_households",
        "indigence_rate_persons",
        "indigence_rate_households",
        "indigence_gap",
        "poverty_gap",
        "indigence_severity",
        "poverty_severity",
        "variable_value",
    ),
    description="Pobreza e indigencia por región",
    source="INDEC - Pobreza e Indigencia",
)

EMAE = SeriesDefinition(
    key="emae",
    table="emae",
    date_column="date",
    key_fields=("date",),
    payload_fields=("original_value", "seasonally_adjusted_value", "cycle_trend_value"),
    description="Estimador Mensual de Actividad Económica (base 2004=100)",
    source="INDEC - EMAE",
    variation_field="original_value",
)

EMAE_BY_ACTIVITY = SeriesDefinition(
    key="emae_by_activity",
    table="emae_by_activity",
    date_column="date",
    key_fields=("date", "economy_sector_code"),
    dimensions=("economy_sector_code",),
    attributes=(("economy_sector", "TEXT"),),
    payload_fields=("original_value",),
    description="EMAE por rama de actividad económica",
    source="INDEC - EMAE por actividad",
    variation_field="original_value",
)

IPC = SeriesDefinition(
    key="ipc",
    table="ipc",
    date_column="date",
    key_fields=("date", "component_code", "region"),
    dimensions=("component_code", "region"),
    attributes=(("component", "TEXT"), ("component_type", "TEXT")),
    payload_fields=("index_value",),
    description="Índice de Precios al Consumidor (base dic 2016=100)",
    source="INDEC - IPC",
    variation_field="index_value",
)

ALL_SERIES: tuple[SeriesDefinition, ...] = (
    CER,
    UVA,
    DOLLAR,
    EMBI,
    LABOR_MARKET,
    POVERTY,
    EMAE,
    EMAE_BY_ACTIVITY,
    IPC,
)


def get_series_by_key(key: str) -> SeriesDefinition | None:
    for series in ALL_SERIES:
        if series.key == key:
            return series
    return None


def iter_series(keys: Iterable[str] | None = None) -> tuple[SeriesDefinition, ...]:
    if keys is None:
        return ALL_SERIES
    return tuple(series for key in keys if (series := get_series_by_key(key)))


__all__ = [
    "ALL_SERIES",
    "CER",
    "DOLLAR",
    "EMAE",
    "EMAE_BY_ACTIVITY",
    "EMBI",
    "IPC",
    "LABOR_MARKET",
    "POVERTY",
    "UVA",
    "get_series_by_key",
    "iter_series",
]
