from datetime import UTC, date, datetime

import pytest

from pipelines.mapping import (
    coerce_number,
    map_cer_point,
    map_dollar_quote,
    map_emae_activity_row,
    map_emae_row,
    map_embi_row,
    map_ipc_row,
    map_labor_row,
    map_poverty_row,
)
from pipelines.result import FailureKind
from pipelines.series import DOLLAR, EMBI, IPC


def _quote(**overrides):
    quote = {
        "moneda": "USD",
        "casa": "blue",
        "nombre": "Blue",
        "compra": 1290,
        "venta": 1310,
        "fechaActualizacion": "2025-07-12T14:10:47.000Z",
    }
    quote.update(overrides)
    return quote


@pytest.mark.parametrize(
    ("casa", "dollar_type"),
    [
        ("oficial", "OFICIAL"),
        ("blue", "BLUE"),
        ("bolsa", "MEP"),
        ("contadoconliqui", "CCL"),
        ("mayorista", "MAYORISTA"),
        ("cripto", "CRYPTO"),
        ("tarjeta", "TARJETA"),
    ],
)
def test_dollar_codes_map_to_internal_types(casa, dollar_type):
    result = map_dollar_quote(_quote(casa=casa))

    assert result.ok
    record = result.unwrap()
    assert record.dimensions == {"dollar_type": dollar_type}
    assert record.payload == {"buy_price": 1290.0, "sell_price": 1310.0}
    assert record.observed_at == datetime(2025, 7, 12, 14, 10, 47, tzinfo=UTC)
    assert record.natural_key(DOLLAR) == (dollar_type, "2025-07-12T14:10:47")


def test_unknown_dollar_code_is_rejected():
    result = map_dollar_quote(_quote(casa="lujo"))

    assert not result.ok
    assert result.kind is FailureKind.UNKNOWN_CODE
    assert "lujo" in result.message


def test_dollar_quote_without_prices_is_rejected():
    result = map_dollar_quote(_quote(compra=None, venta=""))

    assert result.kind is FailureKind.INVALID_VALUE


def test_dollar_quote_with_bad_timestamp_is_rejected():
    result = map_dollar_quote(_quote(fechaActualizacion="ayer"))

    assert result.kind is FailureKind.UNPARSEABLE_DATE


def test_embi_row_uses_external_id_as_key():
    result = map_embi_row({"id": "4512", "fecha": "13/7/2025", "indice": "705"})

    record = result.unwrap()
    assert record.natural_key(EMBI) == ("4512",)
    assert record.observed_at == datetime(2025, 7, 13, 21, tzinfo=UTC)
    assert record.payload == {"value": 705.0}


def test_embi_row_with_unparseable_date_is_rejected():
    result = map_embi_row({"id": "1", "fecha": "not-a-date", "indice": "700"})

    assert result.kind is FailureKind.UNPARSEABLE_DATE


def test_bcra_point():
    record = map_cer_point({"idVariable": 30, "fecha": "2025-07-10", "valor": 571.2314}).unwrap()

    assert record.observed_at == date(2025, 7, 10)
    assert record.payload["value"] == pytest.approx(571.2314)


def test_labor_row_defaults_to_total_breakdowns():
    record = map_labor_row(
        {"period": "T1 2025", "region": "Total 31 aglomerados", "unemployment_rate": "7,9"}
    ).unwrap()

    assert record.observed_at == date(2025, 3, 31)
    assert record.dimensions == {
        "region": "Total 31 aglomerados",
        "gender": "Total",
        "age_group": "Total",
        "demographic_segment": "Total",
    }
    assert record.attributes["period"] == "T1 2025"
    assert record.payload["unemployment_rate"] == pytest.approx(7.9)
    assert record.payload["activity_rate"] is None
    assert record.data_type == "national"


def test_labor_row_with_breakdown_is_demographic():
    record = map_labor_row(
        {"period": "T1 2025", "region": "GBA", "gender": "Mujeres", "activity_rate": 49.1}
    ).unwrap()

    assert record.data_type == "demographic"


def test_poverty_row_carries_semester_attributes():
    record = map_poverty_row(
        {
            "period": "2do. semestre 2024",
            "region": "Cuyo",
            "data_type": "regional",
            "cuadro_source": "Cuadro 4.3",
            "source_file": "cuadros_informe_pobreza",
            "poverty_rate_persons": 38.7,
        }
    ).unwrap()

    assert record.observed_at == date(2024, 12, 31)
    assert record.attributes["semester"] == 2
    assert record.attributes["year"] == 2024
    assert record.attributes["period"] == "S2 2024"
    assert record.payload["poverty_rate_persons"] == pytest.approx(38.7)
    assert record.data_type == "regional"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("1.234,5", 1234.5), ("12.5", 12.5), (7, 7.0), ("-", None), ("s/d", None), (float("nan"), None), (True, None)],
)
def test_coerce_number(raw, expected):
    assert coerce_number(raw) == expected


@pytest.mark.parametrize(
    ("updated", "local_day"),
    [
        ("2025-07-12T14:10:47.000Z", date(2025, 7, 12)),
        ("2025-07-13T01:30:00Z", date(2025, 7, 12)),
        ("2025-07-13T03:00:00Z", date(2025, 7, 13)),
    ],
)
def test_dollar_quote_records_the_buenos_aires_day(updated, local_day):
    record = map_dollar_quote(_quote(fechaActualizacion=updated)).unwrap()

    assert record.attributes == {"date": local_day}


def test_emae_row_starts_on_the_first_of_the_month():
    record = map_emae_row(
        {"period": "2025-05", "original_value": "153,9", "seasonally_adjusted_value": None, "cycle_trend_value": 151.1}
    ).unwrap()

    assert record.observed_at == date(2025, 5, 1)
    assert record.payload == {
        "original_value": 153.9,
        "seasonally_adjusted_value": None,
        "cycle_trend_value": 151.1,
    }


@pytest.mark.parametrize(
    ("raw", "kind"),
    [
        ({"period": "mayo", "original_value": 1.0}, FailureKind.UNPARSEABLE_DATE),
        ({"period": "2025-13", "original_value": 1.0}, FailureKind.UNPARSEABLE_DATE),
        ({"period": "2025-05", "original_value": "-"}, FailureKind.INVALID_VALUE),
    ],
)
def test_bad_emae_rows_are_rejected(raw, kind):
    assert map_emae_row(raw).kind is kind


def test_emae_activity_row_needs_a_sector_code():
    result = map_emae_activity_row({"period": "2025-05", "original_value": 10.0})
    record = map_emae_activity_row(
        {"period": "2025-05", "economy_sector_code": " d ", "economy_sector": "Industria", "original_value": 10}
    ).unwrap()

    assert result.kind is FailureKind.MISSING_FIELD
    assert record.dimensions == {"economy_sector_code": "D"}
    assert record.attributes == {"economy_sector": "Industria"}


def test_ipc_row_natural_key():
    record = map_ipc_row(
        {
            "period": "2025-04",
            "region": "Nacional",
            "component": "Nivel general",
            "component_code": "general",
            "component_type": "GENERAL",
            "index_value": 7994.1,
        }
    ).unwrap()

    assert record.natural_key(IPC) == ("2025-04-01", "GENERAL", "Nacional")
    assert record.data_type == "national"


def test_ipc_row_without_region_is_rejected():
    result = map_ipc_row({"period": "2025-04", "component_code": "GENERAL", "index_value": 1.0})

    assert result.kind is FailureKind.MISSING_FIELD
