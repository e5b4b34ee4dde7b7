import asyncio
from datetime import date

import pytest

from pipelines.model import SeriesRecord
from pipelines.reconcile import (
    ExistenceMode,
    check_existing_keys,
    deduplicate,
    merge_records,
    partition_new,
)
from pipelines.result import FailureKind, Result
from pipelines.series import CER, EMBI, LABOR_MARKET


def _labor(payload, **kwargs):
    return SeriesRecord(
        series="labor_market",
        observed_at=date(2025, 3, 31),
        dimensions={
            "region": "GBA",
            "gender": "Total",
            "age_group": "Total",
            "demographic_segment": "Total",
        },
        payload=payload,
        **kwargs,
    )


def _cer(day, value):
    return SeriesRecord(series="cer", observed_at=date(2025, 7, day), payload={"value": value})


def _embi(external_id):
    return SeriesRecord(
        series="embi",
        observed_at=date(2025, 7, 1),
        dimensions={"external_id": str(external_id)},
        payload={"value": 700.0},
    )


def test_merge_fills_gaps_without_losing_fields():
    first = _labor({"activity_rate": 5.2, "employment_rate": None})
    second = _labor({"activity_rate": None, "employment_rate": 41.3})

    result = deduplicate([first, second], LABOR_MARKET)

    assert result.duplicates == 1
    assert len(result.records) == 1
    assert result.records[0].payload == {"activity_rate": 5.2, "employment_rate": 41.3}


def test_first_non_null_value_wins():
    result = deduplicate([_cer(1, 10.0), _cer(1, 20.0)], CER)

    assert result.records[0].payload["value"] == 10.0


def test_source_file_and_data_type_follow_informative_duplicates():
    base = _labor({"activity_rate": 1.0}, source_file="eph_2025", data_type="national")
    unknown = _labor({}, source_file="unknown", data_type="national")
    regional = _labor({}, source_file="eph_regional", data_type="regional")

    assert merge_records(base, unknown).source_file == "eph_2025"
    merged = merge_records(base, regional)
    assert merged.source_file == "eph_regional"
    assert merged.data_type == "regional"
    assert merge_records(merged, base).data_type == "regional"


def test_deduplication_is_deterministic_and_keeps_order():
    records = [_cer(3, 3.0), _cer(1, 1.0), _cer(3, 30.0), _cer(2, 2.0)]

    first = deduplicate(records, CER)
    second = deduplicate(list(records), CER)

    assert [r.observed_at.day for r in first.records] == [3, 1, 2]
    assert first.records == second.records
    assert first.duplicates == 1


def _lookup_from(stored):
    calls = []

    def lookup(batch):
        calls.append(len(batch))
        return Result.success({key for key in batch if key in stored})

    return lookup, calls


def test_batched_existence_check_finds_stored_keys():
    records = [_embi(number) for number in range(1, 251)]
    keys = [record.natural_key(EMBI) for record in records]
    stored = {(str(number),) for number in range(1, 101)}
    lookup, calls = _lookup_from(stored)

    check = asyncio.run(
        check_existing_keys(keys, lookup, lambda: pytest.fail("full scan not expected"), delay=0)
    )
    new, already = partition_new(records, EMBI, check.existing)

    assert calls == [100, 100, 50]
    assert check.mode is ExistenceMode.BATCHED
    assert len(new) == 150
    assert len(already) == 100
    assert {r.dimensions["external_id"] for r in new} == {str(n) for n in range(101, 251)}


def test_failed_batch_is_skipped_and_reported():
    keys = [(str(number),) for number in range(1, 251)]
    stored = set(keys[:100])

    def flaky(batch):
        if batch[0] == ("101",):
            return Result.failure(FailureKind.LOOKUP_FAILED, "timeout")
        return Result.success({key for key in batch if key in stored})

    check = asyncio.run(check_existing_keys(keys, flaky, lambda: Result.success(set()), delay=0))

    assert check.mode is ExistenceMode.PARTIAL
    assert check.degraded
    assert len(check.existing) == 100
    assert check.failures == ("batch 2: timeout",)


def test_full_scan_fallback_when_every_batch_fails():
    keys = [(str(number),) for number in range(1, 11)]

    check = asyncio.run(
        check_existing_keys(
            keys,
            lambda batch: Result.failure(FailureKind.LOOKUP_FAILED, "down"),
            lambda: Result.success({("1",), ("2",), ("999",)}),
            batch_size=4,
            delay=0,
        )
    )

    assert check.mode is ExistenceMode.FULL_SCAN
    assert check.existing == frozenset({("1",), ("2",)})


def test_assume_new_when_full_scan_fails_too(caplog):
    keys = [("1",), ("2",)]

    with caplog.at_level("WARNING"):
        check = asyncio.run(
            check_existing_keys(
                keys,
                lambda batch: Result.failure(FailureKind.LOOKUP_FAILED, "down"),
                lambda: Result.failure(FailureKind.LOOKUP_FAILED, "still down"),
                delay=0,
            )
        )

    assert check.mode is ExistenceMode.ASSUME_NEW
    assert check.existing == frozenset()
    assert "assuming every record is new" in caplog.text


def test_existence_check_rejects_bad_batch_size():
    with pytest.raises(ValueError):
        asyncio.run(check_existing_keys([("1",)], lambda b: Result.success(set()), lambda: Result.success(set()), batch_size=0))
