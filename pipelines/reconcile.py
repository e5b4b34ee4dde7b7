"""In-batch deduplication and cross-batch existence filtering.

``deduplicate`` folds records sharing a natural key into one record, left to
right: payload values and attributes already populated win, later duplicates
only fill gaps. ``check_existing_keys`` asks the store which candidate keys are
already persisted, in bounded sequential batches, degrading step by step when
lookups fail.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, Sequence

from pipelines.model import NATIONAL, UNKNOWN_SOURCE_FILE, SeriesDefinition, SeriesRecord
from pipelines.result import Result

logger = logging.getLogger(__name__)

Key = tuple[str, ...]
BatchLookup = Callable[[Sequence[Key]], Result[set[Key]]]
FullLookup = Callable[[], Result[set[Key]]]

DEFAULT_BATCH_SIZE = 100
DEFAULT_BATCH_DELAY_SECONDS = 0.1


@dataclass(frozen=True)
class DedupResult:
    records: list[SeriesRecord]
    duplicates: int


class ExistenceMode(str, Enum):
    BATCHED = "batched"
    PARTIAL = "partial"
    FULL_SCAN = "full_scan"
    ASSUME_NEW = "assume_new"


@dataclass(frozen=True)
class ExistenceCheck:
    existing: frozenset[Key]
    mode: ExistenceMode
    failures: tuple[str, ...] = ()

    @property
    def degraded(self) -> bool:
        return self.mode is not ExistenceMode.BATCHED


def _fill_gaps(existing: dict[str, Any], incoming: dict[str, Any]) -> dict[str, Any]:
    merged = dict(existing)
    for name, value in incoming.items():
        if value is not None and merged.get(name) is None:
            merged[name] = value
    return merged


def merge_records(existing: SeriesRecord, incoming: SeriesRecord) -> SeriesRecord:
    """Merge a later duplicate into an earlier record with the same natural key."""

    update: dict[str, Any] = {
        "payload": _fill_gaps(existing.payload, incoming.payload),
        "attributes": _fill_gaps(existing.attributes, incoming.attributes),
    }
    if incoming.source_file and incoming.source_file != UNKNOWN_SOURCE_FILE:
        update["source_file"] = incoming.source_file
    if incoming.data_type and incoming.data_type != NATIONAL:
        update["data_type"] = incoming.data_type
    return existing.model_copy(update=update)


def deduplicate(records: Iterable[SeriesRecord], definition: SeriesDefinition) -> DedupResult:
    unique: dict[Key, SeriesRecord] = {}
    duplicates = 0
    for index, record in enumerate(records):
        key = record.natural_key(definition)
        current = unique.get(key)
        if current is None:
            unique[key] = record
            continue
        duplicates += 1
        logger.debug("Duplicate %s key at index %s: %s", definition.key, index, key)
        unique[key] = merge_records(current, record)

    if duplicates:
        logger.info(
            "Deduplicated %s records: %s duplicates merged into %s unique keys.",
            definition.key,
            duplicates,
            len(unique),
        )
    return DedupResult(records=list(unique.values()), duplicates=duplicates)


async def check_existing_keys(
    keys: Sequence[Key],
    lookup_batch: BatchLookup,
    lookup_all: FullLookup,
    *,
    batch_size: int = DEFAULT_BATCH_SIZE,
    delay: float = DEFAULT_BATCH_DELAY_SECONDS,
) -> ExistenceCheck:
    """Return which ``keys`` are already stored.

    A failed batch is skipped and its keys count as unknown. When every batch
    fails the check falls back to a single unpaginated key scan, and when that
    fails too every candidate is assumed new; the destination's uniqueness
    constraint then rejects true duplicates at write time.
    """

    if not keys:
        return ExistenceCheck(existing=frozenset(), mode=ExistenceMode.BATCHED)
    if batch_size < 1:
        raise ValueError("batch_size must be positive")

    candidates = set(keys)
    existing: set[Key] = set()
    failures: list[str] = []
    batches = [keys[start : start + batch_size] for start in range(0, len(keys), batch_size)]
    logger.info("Checking %s keys in %s batches of %s.", len(keys), len(batches), batch_size)

    for number, batch in enumerate(batches, start=1):
        result = await asyncio.to_thread(lookup_batch, batch)
        if result.ok:
            existing.update(result.value or ())
        else:
            logger.warning("Existence lookup for batch %s failed: %s", number, result.message)
            failures.append(f"batch {number}: {result.message}")
        if number < len(batches):
            await asyncio.sleep(delay)

    if len(failures) < len(batches):
        mode = ExistenceMode.PARTIAL if failures else ExistenceMode.BATCHED
        logger.info("Existence check finished: %s keys already stored.", len(existing))
        return ExistenceCheck(
            existing=frozenset(existing & candidates), mode=mode, failures=tuple(failures)
        )

    logger.warning("All existence lookups failed; falling back to a full key scan.")
    fallback = await asyncio.to_thread(lookup_all)
    if fallback.ok:
        found = set(fallback.value or ()) & candidates
        return ExistenceCheck(
            existing=frozenset(found), mode=ExistenceMode.FULL_SCAN, failures=tuple(failures)
        )

    logger.warning("Full key scan failed too (%s); assuming every record is new.", fallback.message)
    failures.append(f"full scan: {fallback.message}")
    return ExistenceCheck(
        existing=frozenset(), mode=ExistenceMode.ASSUME_NEW, failures=tuple(failures)
    )


def partition_new(
    records: Iterable[SeriesRecord], definition: SeriesDefinition, existing: Iterable[Key]
) -> tuple[list[SeriesRecord], list[SeriesRecord]]:
    stored = set(existing)
    new: list[SeriesRecord] = []
    already: list[SeriesRecord] = []
    for record in records:
        (already if record.natural_key(definition) in stored else new).append(record)
    return new, already


__all__ = [
    "DedupResult",
    "ExistenceCheck",
    "ExistenceMode",
    "check_existing_keys",
    "deduplicate",
    "merge_records",
    "partition_new",
]
