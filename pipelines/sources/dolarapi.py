"""dolarapi.com quotes ingestor.

Returns the raw quote rows; ``pipelines.mapping.map_dollar_quote`` turns them
into ``SeriesRecord`` instances.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from pipelines.common import fetch_json

DOLARAPI_URL = "https://dolarapi.com/v1/dolares"

logger = logging.getLogger(__name__)


async def fetch_dollar_quotes(url: str = DOLARAPI_URL) -> list[Mapping[str, Any]]:
    """Fetch the current quote for every dollar type published by dolarapi.com."""

    payload = await fetch_json(url, headers={"Accept": "application/json"})
    if not isinstance(payload, list):
        logger.warning("Unexpected dolarapi.com payload type: %s", type(payload).__name__)
        return []
    quotes = [item for item in payload if isinstance(item, Mapping)]
    logger.info("Fetched %s dollar quotes from %s.", len(quotes), url)
    return quotes


__all__ = ["DOLARAPI_URL", "fetch_dollar_quotes"]
