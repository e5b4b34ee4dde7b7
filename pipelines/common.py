"""Shared utilities for retrieving external API responses and files."""

from __future__ import annotations

from typing import Any, Iterable, Mapping, MutableMapping

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_USER_AGENT = "Argentina-Datos-API/1.0"
_DEFAULT_WAIT = wait_exponential(min=1, max=16)
_DEFAULT_STOP = stop_after_attempt(5)
_RETRYABLE = retry_if_exception_type(httpx.TransportError)


Headers = Mapping[str, str] | None
Params = Mapping[str, Any] | None
Data = MutableMapping[str, Any] | bytes | str | None
JsonData = Any


class SourceUnavailableError(RuntimeError):
    """The upstream source could not provide any data for this run."""


def _merge_headers(headers: Headers) -> dict[str, str]:
    merged = {"User-Agent": DEFAULT_USER_AGENT}
    if headers:
        merged.update(headers)
    return merged


async def _request(
    url: str,
    *,
    headers: Headers = None,
    params: Params = None,
    method: str = "GET",
    data: Data = None,
    json: JsonData = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    verify: bool = True,
) -> httpx.Response:
    async with httpx.AsyncClient(timeout=timeout, verify=verify, follow_redirects=True) as client:
        response = await client.request(
            method.upper(),
            url,
            headers=_merge_headers(headers),
            params=params,
            data=data,
            json=json,
        )
    response.raise_for_status()
    return response


@retry(wait=_DEFAULT_WAIT, stop=_DEFAULT_STOP, retry=_RETRYABLE, reraise=True)
async def fetch_json(
    url: str,
    *,
    headers: Headers = None,
    params: Params = None,
    method: str = "GET",
    data: Data = None,
    json: JsonData = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    verify: bool = True,
) -> Any:
    """Execute an HTTP request and return the decoded JSON payload.

    Retries with exponential backoff when transport failures occur. The helper keeps
    the interface close to ``httpx.AsyncClient.request`` so source fetchers can
    forward provider-specific requirements (headers, params, JSON body, etc.) without
    reimplementing networking concerns.
    """

    response = await _request(
        url,
        headers=headers,
        params=params,
        method=method,
        data=data,
        json=json,
        timeout=timeout,
        verify=verify,
    )
    return response.json()


@retry(wait=_DEFAULT_WAIT, stop=_DEFAULT_STOP, retry=_RETRYABLE, reraise=True)
async def fetch_text(
    url: str,
    *,
    headers: Headers = None,
    params: Params = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> str:
    """Download a text document (CSV exports and similar)."""

    response = await _request(url, headers=headers, params=params, timeout=timeout)
    return response.text


@retry(wait=_DEFAULT_WAIT, stop=_DEFAULT_STOP, retry=_RETRYABLE, reraise=True)
async def fetch_bytes(
    url: str,
    *,
    headers: Headers = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> bytes:
    """Download a binary document such as a spreadsheet workbook."""

    response = await _request(url, headers=headers, timeout=timeout)
    return response.content


async def fetch_first_available(urls: Iterable[str], **kwargs: Any) -> tuple[str, bytes]:
    """Try each candidate URL in order and return the first successful download."""

    attempted: list[str] = []
    for url in urls:
        attempted.append(url)
        try:
            return url, await fetch_bytes(url, **kwargs)
        except httpx.HTTPError:
            continue
    raise SourceUnavailableError(
        f"None of the {len(attempted)} candidate URLs could be downloaded"
    )


__all__ = [
    "DEFAULT_TIMEOUT_SECONDS",
    "SourceUnavailableError",
    "fetch_bytes",
    "fetch_first_available",
    "fetch_json",
    "fetch_text",
]
