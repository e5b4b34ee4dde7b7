"""BCRA monetary statistics ingestor (CER, UVA and related indices)."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping

from pipelines.common import SourceUnavailableError, fetch_json

BCRA_API_BASE = "https://api.bcra.gob.ar/estadisticas/v3.0"

BCRA_VARIABLES: Mapping[str, int] = {
    "cer": 30,
    "uva": 31,
    "uvi": 32,
    "icl": 40,
}

logger = logging.getLogger(__name__)


def _results(payload: Any) -> list[Mapping[str, Any]]:
    if not isinstance(payload, Mapping):
        return []
    status = payload.get("status")
    if status is not None and status != 200:
        raise SourceUnavailableError(f"BCRA API returned status {status}")
    results = payload.get("results")
    if not isinstance(results, list):
        return []
    return [item for item in results if isinstance(item, Mapping)]


async def fetch_bcra_variable(
    variable_id: int,
    *,
    limit: int = 30,
    offset: int = 0,
    verify: bool = True,
) -> list[Mapping[str, Any]]:
    """Fetch one page of observations (most recent first) for a BCRA variable."""

    payload = await fetch_json(
        f"{BCRA_API_BASE}/Monetarias/{variable_id}",
        params={"limit": limit, "offset": offset},
        verify=verify,
    )
    rows = _results(payload)
    logger.info("Fetched %s observations for BCRA variable %s.", len(rows), variable_id)
    return rows


async def fetch_bcra_history(
    variable_id: int,
    *,
    page_size: int = 1000,
    verify: bool = True,
    delay: float = 0.1,
) -> list[Mapping[str, Any]]:
    """Walk every page of a BCRA variable, used for backfills."""

    collected: list[Mapping[str, Any]] = []
    offset = 0
    while True:
        page = await fetch_bcra_variable(
            variable_id, limit=page_size, offset=offset, verify=verify
        )
        collected.extend(page)
        if len(page) < page_size:
            break
        offset += page_size
        await asyncio.sleep(delay)
    return collected


__all__ = ["BCRA_API_BASE", "BCRA_VARIABLES", "fetch_bcra_history", "fetch_bcra_variable"]
