"""Project provider-specific raw rows onto ``SeriesRecord``.

Every mapper is a pure function of one raw mapping. Rows that cannot be
mapped come back as failed ``Result`` values carrying the rejection reason;
callers count them instead of aborting the batch.
"""

from __future__ import annotations

import math
from datetime import date
from typing import Any, Callable, Mapping

from pipelines.dates import (
    ARGENTINA_OFFSET,
    month_start,
    normalize_instant,
    parse_calendar_date,
    parse_iso_instant,
    quarter_end,
    quarter_label,
    semester_end,
    semester_label,
)
from pipelines.model import NATIONAL, SeriesRecord
from pipelines.result import FailureKind, Result
from pipelines.series import (
    CER,
    DOLLAR,
    EMAE,
    EMAE_BY_ACTIVITY,
    EMBI,
    IPC,
    LABOR_MARKET,
    POVERTY,
    UVA,
)

RawRecord = Mapping[str, Any]
Mapper = Callable[[RawRecord], Result[SeriesRecord]]

# dolarapi.com "casa" code -> internal dollar type
DOLLAR_TYPE_MAP: Mapping[str, str] = {
    "oficial": "OFICIAL",
    "blue": "BLUE",
    "bolsa": "MEP",
    "contadoconliqui": "CCL",
    "mayorista": "MAYORISTA",
    "cripto": "CRYPTO",
    "tarjeta": "TARJETA",
}

TOTAL = "Total"

_SENTINEL_STRINGS = {"", "-", "--", "///", "...", "s/d", "n/a", "na", "null"}


def coerce_number(value: Any) -> float | None:
    """Parse a provider number, accepting comma decimals; sentinels become ``None``."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        stripped = value.strip()
        if stripped.lower() in _SENTINEL_STRINGS:
            return None
        if "," in stripped:
            stripped = stripped.replace(".", "").replace(",", ".")
        try:
            numeric = float(stripped)
        except ValueError:
            return None
    else:
        return None

    if math.isnan(numeric) or math.isinf(numeric):
        return None
    return numeric


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def map_dollar_quote(raw: RawRecord) -> Result[SeriesRecord]:
    code = _text(raw.get("casa"))
    if code is None:
        return Result.failure(FailureKind.MISSING_FIELD, "dollar quote without 'casa'")
    dollar_type = DOLLAR_TYPE_MAP.get(code.lower())
    if dollar_type is None:
        return Result.failure(FailureKind.UNKNOWN_CODE, f"Unknown dollar type: {code}")

    raw_updated = raw.get("fechaActualizacion")
    updated_at = parse_iso_instant(raw_updated) or normalize_instant(raw_updated)
    if updated_at is None:
        return Result.failure(
            FailureKind.UNPARSEABLE_DATE, f"Unparseable update time for {code}: {raw_updated!r}"
        )

    buy_price = coerce_number(raw.get("compra"))
    sell_price = coerce_number(raw.get("venta"))
    if buy_price is None and sell_price is None:
        return Result.failure(FailureKind.INVALID_VALUE, f"No prices for {code}")

    return Result.success(
        SeriesRecord(
            series=DOLLAR.key,
            observed_at=updated_at,
            dimensions={"dollar_type": dollar_type},
            # Buenos Aires calendar day, for day filters
            attributes={"date": updated_at.astimezone(ARGENTINA_OFFSET).date()},
            payload={"buy_price": buy_price, "sell_price": sell_price},
            source_file=DOLLAR.source,
        )
    )


def map_embi_row(raw: RawRecord) -> Result[SeriesRecord]:
    external_id = _text(raw.get("id"))
    if external_id is None:
        return Result.failure(FailureKind.MISSING_FIELD, "EMBI row without id")

    observed_at = normalize_instant(raw.get("fecha"))
    if observed_at is None:
        return Result.failure(
            FailureKind.UNPARSEABLE_DATE, f"Unparseable EMBI date: {raw.get('fecha')!r}"
        )

    value = coerce_number(raw.get("indice"))
    if value is None:
        return Result.failure(
            FailureKind.INVALID_VALUE, f"EMBI index is not numeric: {raw.get('indice')!r}"
        )

    return Result.success(
        SeriesRecord(
            series=EMBI.key,
            observed_at=observed_at,
            dimensions={"external_id": external_id},
            payload={"value": value},
        )
    )


def _map_bcra_point(series_key: str, raw: RawRecord) -> Result[SeriesRecord]:
    observed_on = parse_calendar_date(raw.get("fecha"))
    if observed_on is None:
        return Result.failure(
            FailureKind.UNPARSEABLE_DATE, f"Unparseable BCRA date: {raw.get('fecha')!r}"
        )
    value = coerce_number(raw.get("valor"))
    if value is None:
        return Result.failure(
            FailureKind.INVALID_VALUE, f"BCRA value is not numeric: {raw.get('valor')!r}"
        )
    return Result.success(
        SeriesRecord(series=series_key, observed_at=observed_on, payload={"value": value})
    )


def map_cer_point(raw: RawRecord) -> Result[SeriesRecord]:
    return _map_bcra_point(CER.key, raw)


def map_uva_point(raw: RawRecord) -> Result[SeriesRecord]:
    return _map_bcra_point(UVA.key, raw)


def map_labor_row(raw: RawRecord) -> Result[SeriesRecord]:
    observed_on = quarter_end(raw.get("period"))
    if observed_on is None:
        return Result.failure(
            FailureKind.UNPARSEABLE_DATE, f"Unparseable EPH period: {raw.get('period')!r}"
        )
    region = _text(raw.get("region"))
    if region is None:
        return Result.failure(FailureKind.MISSING_FIELD, "EPH row without region")

    gender = _text(raw.get("gender")) or TOTAL
    age_group = _text(raw.get("age_group")) or TOTAL
    segment = _text(raw.get("demographic_segment")) or TOTAL
    is_breakdown = any(value != TOTAL for value in (gender, age_group, segment))

    return Result.success(
        SeriesRecord(
            series=LABOR_MARKET.key,
            observed_at=observed_on,
            dimensions={
                "region": region,
                "gender": gender,
                "age_group": age_group,
                "demographic_segment": segment,
            },
            attributes={"period": quarter_label(observed_on)},
            payload={field: coerce_number(raw.get(field)) for field in LABOR_MARKET.payload_fields},
            source_file=_text(raw.get("source_file")),
            data_type="demographic" if is_breakdown else _text(raw.get("data_type")) or NATIONAL,
        )
    )


def map_poverty_row(raw: RawRecord) -> Result[SeriesRecord]:
    observed_on = semester_end(raw.get("period"))
    if observed_on is None:
        return Result.failure(
            FailureKind.UNPARSEABLE_DATE, f"Unparseable poverty period: {raw.get('period')!r}"
        )
    region = _text(raw.get("region"))
    if region is None:
        return Result.failure(FailureKind.MISSING_FIELD, "Poverty row without region")

    semester = 1 if observed_on.month == 6 else 2
    return Result.success(
        SeriesRecord(
            series=POVERTY.key,
            observed_at=observed_on,
            dimensions={"region": region},
            attributes={
                "period": semester_label(observed_on),
                "semester": semester,
                "year": observed_on.year,
                "cuadro_source": _text(raw.get("cuadro_source")),
                "variable_name": _text(raw.get("variable_name")),
            },
            payload={field: coerce_number(raw.get(field)) for field in POVERTY.payload_fields},
            source_file=_text(raw.get("source_file")),
            data_type=_text(raw.get("data_type")) or NATIONAL,
        )
    )


def _monthly_date(raw: RawRecord, label: str) -> Result[date]:
    observed_on = month_start(raw.get("period"))
    if observed_on is None:
        return Result.failure(
            FailureKind.UNPARSEABLE_DATE, f"Unparseable {label} period: {raw.get('period')!r}"
        )
    return Result.success(observed_on)


def map_emae_row(raw: RawRecord) -> Result[SeriesRecord]:
    observed_on = _monthly_date(raw, "EMAE")
    if not observed_on.ok:
        return observed_on
    payload = {field: coerce_number(raw.get(field)) for field in EMAE.payload_fields}
    if payload["original_value"] is None:
        return Result.failure(
            FailureKind.INVALID_VALUE, f"EMAE value is not numeric: {raw.get('original_value')!r}"
        )
    return Result.success(
        SeriesRecord(
            series=EMAE.key,
            observed_at=observed_on.unwrap(),
            payload=payload,
            source_file=_text(raw.get("source_file")),
        )
    )


def map_emae_activity_row(raw: RawRecord) -> Result[SeriesRecord]:
    observed_on = _monthly_date(raw, "EMAE sector")
    if not observed_on.ok:
        return observed_on
    code = _text(raw.get("economy_sector_code"))
    if code is None:
        return Result.failure(FailureKind.MISSING_FIELD, "EMAE sector row without sector code")
    value = coerce_number(raw.get("original_value"))
    if value is None:
        return Result.failure(
            FailureKind.INVALID_VALUE, f"EMAE sector value is not numeric: {raw.get('original_value')!r}"
        )
    return Result.success(
        SeriesRecord(
            series=EMAE_BY_ACTIVITY.key,
            observed_at=observed_on.unwrap(),
            dimensions={"economy_sector_code": code.upper()},
            attributes={"economy_sector": _text(raw.get("economy_sector"))},
            payload={"original_value": value},
            source_file=_text(raw.get("source_file")),
        )
    )


def map_ipc_row(raw: RawRecord) -> Result[SeriesRecord]:
    observed_on = _monthly_date(raw, "IPC")
    if not observed_on.ok:
        return observed_on
    code = _text(raw.get("component_code"))
    region = _text(raw.get("region"))
    if code is None or region is None:
        return Result.failure(FailureKind.MISSING_FIELD, "IPC row without component code or region")
    value = coerce_number(raw.get("index_value"))
    if value is None:
        return Result.failure(
            FailureKind.INVALID_VALUE, f"IPC index is not numeric: {raw.get('index_value')!r}"
        )
    return Result.success(
        SeriesRecord(
            series=IPC.key,
            observed_at=observed_on.unwrap(),
            dimensions={"component_code": code.upper(), "region": region},
            attributes={
                "component": _text(raw.get("component")),
                "component_type": _text(raw.get("component_type")),
            },
            payload={"index_value": value},
            source_file=_text(raw.get("source_file")),
            data_type=NATIONAL if region == "Nacional" else "regional",
        )
    )


__all__ = [
    "DOLLAR_TYPE_MAP",
    "Mapper",
    "RawRecord",
    "coerce_number",
    "map_cer_point",
    "map_dollar_quote",
    "map_emae_activity_row",
    "map_emae_row",
    "map_embi_row",
    "map_ipc_row",
    "map_labor_row",
    "map_poverty_row",
    "map_uva_point",
]
