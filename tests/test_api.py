import csv
import io
from dataclasses import replace
from datetime import UTC, date, datetime

import pytest
from fastapi.testclient import TestClient

from api.main import app
from jobs import config as job_config
from jobs.settings import ConfigurationError
from pipelines.model import SeriesRecord
from pipelines.mapping import map_dollar_quote
from pipelines.series import CER, DOLLAR, EMAE, EMAE_BY_ACTIVITY, IPC, LABOR_MARKET
from storage.db import connect, write_series_records

SECRET = "s3cret"
AUTH = {"Authorization": f"Bearer {SECRET}"}


def _returning(rows):
    async def fetch(_settings):
        return rows

    return fetch


@pytest.fixture()
def populated_db(monkeypatch, tmp_path):
    db_path = tmp_path / "api.duckdb"
    monkeypatch.setenv("ARGDATA_DB_PATH", str(db_path))
    monkeypatch.setenv("CRON_SECRET_KEY", SECRET)

    conn = connect()
    try:
        write_series_records(
            conn,
            CER,
            [
                SeriesRecord(series="cer", observed_at=date(2025, 7, day), payload={"value": value})
                for day, value in ((1, 1.0), (2, 2.0), (3, 4.0))
            ],
        ).unwrap()
        write_series_records(
            conn,
            DOLLAR,
            [
                SeriesRecord(
                    series="dollar",
                    observed_at=datetime(2025, 7, 12, hour, tzinfo=UTC),
                    dimensions={"dollar_type": dollar_type},
                    attributes={"date": date(2025, 7, 12)},
                    payload={"buy_price": sell - 20, "sell_price": sell},
                )
                for dollar_type, hour, sell in (("BLUE", 14, 1300.0), ("BLUE", 15, 1310.0), ("MEP", 14, 1280.0))
            ],
        ).unwrap()
        write_series_records(
            conn,
            LABOR_MARKET,
            [
                SeriesRecord(
                    series="labor_market",
                    observed_at=date(2025, 3, 31),
                    dimensions={
                        "region": 'Región "Sur", Patagonia',
                        "gender": "Total",
                        "age_group": "Total",
                        "demographic_segment": "Total",
                    },
                    attributes={"period": "T1 2025"},
                    payload={"unemployment_rate": 5.1},
                    data_type="regional",
                )
            ],
        ).unwrap()
        write_series_records(
            conn,
            EMAE,
            [
                SeriesRecord(
                    series="emae",
                    observed_at=date(2025, month, 1),
                    payload={"original_value": value, "seasonally_adjusted_value": value + 1},
                )
                for month, value in ((4, 150.0), (5, 153.0))
            ],
        ).unwrap()
        write_series_records(
            conn,
            EMAE_BY_ACTIVITY,
            [
                SeriesRecord(
                    series="emae_by_activity",
                    observed_at=date(2025, 5, 1),
                    dimensions={"economy_sector_code": code},
                    attributes={"economy_sector": name},
                    payload={"original_value": value},
                )
                for code, name, value in (("A", "Pesca", 120.0), ("F", "Construcción", 180.0))
            ],
        ).unwrap()
        write_series_records(
            conn,
            IPC,
            [
                SeriesRecord(
                    series="ipc",
                    observed_at=date(2025, month, 1),
                    dimensions={"component_code": code, "region": region},
                    attributes={"component": code.title(), "component_type": kind},
                    payload={"index_value": value},
                )
                for month, code, kind, region, value in (
                    (4, "GENERAL", "GENERAL", "Nacional", 8000.0),
                    (5, "GENERAL", "GENERAL", "Nacional", 8200.0),
                    (5, "NUCLEO", "CATEGORIA", "Nacional", 8300.0),
                    (5, "GENERAL", "GENERAL", "GBA", 8100.0),
                )
            ],
        ).unwrap()
    finally:
        conn.close()

    yield db_path


@pytest.fixture()
def client(populated_db):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def offline_jobs(monkeypatch):
    fakes = {
        "update-dollar": _returning(
            [{"casa": "oficial", "compra": 1210, "venta": 1250, "fechaActualizacion": "2025-07-12T16:00:00Z"}]
        ),
        "update-cer": _returning([{"fecha": "2025-07-04", "valor": 5.0}]),
        "update-uva": _returning([{"fecha": "2025-07-04", "valor": 1500.0}]),
        "update-emae": _returning([{"period": "2025-06", "original_value": 155.0}]),
        "update-emae-by-activity": _returning(
            [{"period": "2025-06", "economy_sector_code": "f", "economy_sector": "Construcción", "original_value": 190.0}]
        ),
        "update-ipc": _returning(
            [
                {
                    "period": "2025-06",
                    "region": "Nacional",
                    "component": "Nivel general",
                    "component_code": "GENERAL",
                    "component_type": "GENERAL",
                    "index_value": 8400.0,
                }
            ]
        ),
    }
    jobs = tuple(
        replace(job, fetch=fakes[job.key]) if job.key in fakes else job
        for job in job_config.TARGET_JOBS
    )
    monkeypatch.setattr(job_config, "TARGET_JOBS", jobs)


def test_missing_cron_secret_stops_startup(monkeypatch, tmp_path):
    monkeypatch.setenv("ARGDATA_DB_PATH", str(tmp_path / "x.duckdb"))
    monkeypatch.delenv("CRON_SECRET_KEY", raising=False)

    with pytest.raises(ConfigurationError):
        with TestClient(app):
            pass


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


@pytest.mark.parametrize(
    "headers",
    [{}, {"Authorization": "Bearer wrong"}, {"Authorization": SECRET}, {"x-cron-scheduler": "false"}],
)
def test_trigger_requires_authorization(client, headers):
    response = client.get("/api/cron/update-dollar", headers=headers)

    assert response.status_code == 401
    assert response.json() == {"error": "No autorizado"}


def test_trigger_with_token(client, offline_jobs):
    response = client.get("/api/cron/update-dollar", headers=AUTH)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data_source"] == "dolarapi.com"
    assert body["new_records"] == 1
    assert body["updated_records"] == 0
    assert body["duplicates_skipped"] == 0
    assert body["execution_time"].endswith("Z")
    assert isinstance(body["summary"], str)
    assert isinstance(body["details"], dict)


def test_trigger_from_scheduler(client, offline_jobs):
    response = client.get("/api/cron/update-dollar", headers={"x-cron-scheduler": "true"})

    assert response.status_code == 200


def test_trigger_write_failure_returns_500(client, offline_jobs):
    client.app.state.conn.execute("DROP TABLE dollar_rates")

    response = client.get("/api/cron/update-dollar", headers=AUTH)

    assert response.status_code == 500
    body = response.json()
    assert set(body) == {"success", "execution_time", "error", "details"}
    assert body["success"] is False


def test_group_trigger(client, offline_jobs):
    response = client.get("/api/cron/update-bcra-indices", headers=AUTH)

    assert response.status_code == 200
    body = response.json()
    assert body["new_records"] == 2
    assert set(body["details"]) == {"update-cer", "update-uva"}

    logs = client.get("/api/admin/cron-executions", headers=AUTH).json()
    assert logs["count"] == 1
    assert len(logs["data"][0]["results"]) == 2


def test_unknown_job(client):
    response = client.get("/api/cron/update-nothing", headers=AUTH)

    assert response.status_code == 404


def test_admin_listing_requires_token(client):
    response = client.get("/api/admin/cron-executions", headers={"x-cron-scheduler": "true"})

    assert response.status_code == 401


def test_historical_with_variations_and_pagination(client):
    response = client.get("/api/cer", params={"limit": 2, "page": 1})

    assert response.status_code == 200
    payload = response.json()
    assert payload["type"] == "historical"
    assert [row["date"] for row in payload["data"]] == ["2025-07-03", "2025-07-02"]
    latest = payload["data"][0]
    assert latest["previous_value"] == 2.0
    assert latest["absolute_change"] == 2.0
    assert latest["pct_change"] == 100.0
    assert payload["pagination"]["total_records"] == 3
    assert payload["pagination"]["total_pages"] == 2
    assert payload["pagination"]["has_more"] is True
    assert payload["meta"]["source"] == "BCRA"


def test_second_page_in_ascending_order(client):
    payload = client.get("/api/cer", params={"limit": 2, "page": 2, "order": "asc"}).json()

    assert [row["date"] for row in payload["data"]] == ["2025-07-03"]
    assert payload["pagination"]["has_previous"] is True
    assert payload["pagination"]["has_more"] is False


def test_range_includes_stats(client):
    payload = client.get(
        "/api/cer", params={"type": "range", "start_date": "2025-07-01", "end_date": "2025-07-03"}
    ).json()

    stats = payload["stats"]
    assert stats["latest_value"] == 4.0
    assert stats["min_value"] == 1.0
    assert stats["max_value"] == 4.0
    assert stats["avg_value"] == pytest.approx(2.3333)
    assert stats["period_change"] == {"absolute": 3.0, "percentage": 300.0}


def test_range_requires_both_bounds(client):
    response = client.get("/api/cer", params={"type": "range", "start_date": "2025-07-01"})

    assert response.status_code == 400


def test_latest_dollar_per_type(client):
    payload = client.get("/api/dollar", params={"type": "latest"}).json()

    latest = {row["dollar_type"]: row for row in payload["data"]}
    assert set(latest) == {"BLUE", "MEP"}
    assert latest["BLUE"]["updated_at"] == "2025-07-12T15:00:00.000Z"
    assert latest["BLUE"]["previous_value"] == 1300.0


def test_dimension_filter(client):
    payload = client.get("/api/dollar", params={"dollar_type": "mep"}).json()

    assert [row["dollar_type"] for row in payload["data"]] == ["MEP"]


def test_specific_date(client):
    found = client.get("/api/cer", params={"type": "specific-date", "date": "2025-07-02"})
    missing = client.get("/api/cer", params={"type": "specific-date", "date": "2024-01-01"})

    assert found.json()["data"][0]["value"] == 2.0
    assert missing.status_code == 404


def test_metadata(client):
    payload = client.get("/api/dollar", params={"type": "metadata"}).json()

    assert payload["data"]["total_records"] == 3
    assert payload["data"]["dimensions"] == {"dollar_type": ["BLUE", "MEP"]}


@pytest.mark.parametrize(
    "params",
    [{"type": "weekly"}, {"format": "xml"}, {"order": "sideways"}, {"start_date": "01/07/2025"}],
)
def test_invalid_parameters(client, params):
    response = client.get("/api/cer", params=params)

    assert response.status_code == 400
    assert response.json()["success"] is False


def test_limit_is_capped(client):
    payload = client.get("/api/cer", params={"limit": 5000}).json()

    assert payload["pagination"]["per_page"] == 1000


def test_csv_has_bom_and_header(client):
    response = client.get("/api/cer", params={"format": "csv", "include_variations": "false"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert "attachment" in response.headers["content-disposition"]
    assert response.content.startswith(b"\xef\xbb\xbf")
    header = response.content.decode("utf-8-sig").splitlines()[0]
    assert header == "date,value,source_file,data_type"


def test_csv_quotes_fields_with_commas(client):
    response = client.get("/api/labor-market", params={"format": "csv"})

    rows = list(csv.DictReader(io.StringIO(response.content.decode("utf-8-sig"))))
    assert rows[0]["region"] == 'Región "Sur", Patagonia'
    assert rows[0]["unemployment_rate"] == "5.1"


def test_labor_market_stats_need_every_breakdown(client):
    region = 'Región "Sur", Patagonia'
    partial = client.get("/api/labor-market", params={"region": region}).json()
    complete = client.get(
        "/api/labor-market",
        params={"region": region, "gender": "Total", "age_group": "Total", "demographic_segment": "Total"},
    ).json()

    assert "stats" not in partial
    assert complete["stats"]["latest_value"] == 5.1
    assert complete["stats"]["total_records"] == 1


def test_dollar_day_follows_buenos_aires_calendar(client):
    late_quote = map_dollar_quote(
        {"casa": "contadoconliqui", "compra": 1290, "venta": 1330, "fechaActualizacion": "2025-07-13T01:30:00Z"}
    ).unwrap()
    write_series_records(client.app.state.conn, DOLLAR, [late_quote]).unwrap()

    same_evening = client.get(
        "/api/dollar", params={"type": "specific-date", "date": "2025-07-12", "dollar_type": "ccl"}
    )
    next_day = client.get(
        "/api/dollar", params={"type": "specific-date", "date": "2025-07-13", "dollar_type": "ccl"}
    )

    assert same_evening.status_code == 200
    row = same_evening.json()["data"][0]
    assert row["date"] == "2025-07-12"
    assert row["updated_at"] == "2025-07-13T01:30:00.000Z"
    assert next_day.status_code == 404


def test_emae_history_with_variations(client):
    payload = client.get("/api/emae").json()

    assert [row["date"] for row in payload["data"]] == ["2025-05-01", "2025-04-01"]
    assert payload["data"][0]["pct_change"] == 2.0
    assert payload["meta"]["source"] == "INDEC - EMAE"
    assert payload["stats"]["latest_value"] == 153.0


def test_emae_sectors_alias(client):
    sectors = client.get("/api/emae/sectors", params={"economy_sector_code": "f"}).json()
    by_activity = client.get("/api/emae-by-activity", params={"economy_sector_code": "F"}).json()

    assert sectors["data"] == by_activity["data"]
    assert [(row["economy_sector_code"], row["original_value"]) for row in sectors["data"]] == [("F", 180.0)]


def test_emae_sectors_csv_filename(client):
    response = client.get("/api/emae/sectors", params={"format": "csv"})

    assert response.status_code == 200
    assert 'filename="emae_sectors_historical.csv"' in response.headers["content-disposition"]


def test_ipc_filters_and_stats(client):
    payload = client.get(
        "/api/ipc",
        params={"type": "range", "start_date": "2025-04-01", "end_date": "2025-05-31",
                "component_code": "general", "region": "Nacional", "order": "asc"},
    ).json()

    assert [row["index_value"] for row in payload["data"]] == [8000.0, 8200.0]
    assert payload["data"][1]["pct_change"] == 2.5
    assert payload["stats"]["period_change"]["percentage"] == 2.5


def test_ipc_component_type_filter(client):
    payload = client.get("/api/ipc", params={"component_type": "categoria"}).json()

    assert [row["component_code"] for row in payload["data"]] == ["NUCLEO"]
    assert "stats" not in payload


def test_indec_triggers(client, offline_jobs):
    ipc = client.get("/api/cron/update-ipc", headers=AUTH)
    group = client.get("/api/cron/update-indec-data", headers=AUTH)

    assert ipc.status_code == 200
    assert ipc.json()["new_records"] == 1
    assert group.status_code == 200
    assert set(group.json()["details"]) == {"update-emae", "update-emae-by-activity"}
    assert group.json()["new_records"] == 2

    sectors = client.get("/api/emae/sectors", params={"type": "latest"}).json()
    assert {row["economy_sector_code"]: row["date"] for row in sectors["data"]}["F"] == "2025-06-01"
