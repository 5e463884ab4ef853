from __future__ import annotations

import asyncio
import time

import httpx
import structlog

from ..config import ProbeSettings
from ..errors import NetworkError
from ..report import (
    AvailabilityResult,
    AvailabilityStatus,
    KeywordResult,
    KeywordStatus,
    LatencyResult,
    SecurityHeaders,
    latency_bucket,
)
from .target import parse_target

logger = structlog.get_logger(__name__)


async def _get(client: httpx.AsyncClient, url: str, settings: ProbeSettings) -> httpx.Response:
    timeout = float(settings.http_timeout_seconds)
    try:
        return await asyncio.wait_for(
            client.get(
                url,
                headers={"User-Agent": settings.user_agent},
                follow_redirects=True,
                timeout=timeout,
            ),
            timeout=timeout,
        )
    except asyncio.TimeoutError as exc:
        raise NetworkError(f"Request timed out after {timeout:g}s") from exc
    except httpx.RequestError as exc:
        raise NetworkError(f"http_error: {type(exc).__name__}: {exc}") from exc


async def probe_availability(
    url: str, client: httpx.AsyncClient, settings: ProbeSettings
) -> tuple[AvailabilityResult, LatencyResult]:
    """Issue one GET and derive availability, security headers and latency from it."""
    target, err = parse_target(url)
    if target is None:
        return AvailabilityResult.from_error(err), LatencyResult.from_error(err)

    started = time.perf_counter()
    try:
        resp = await _get(client, target.url, settings)
    except NetworkError as exc:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0)
        logger.debug("Availability probe failed", url=target.url, error=str(exc))
        return (
            AvailabilityResult.from_error(exc),
            LatencyResult(
                value_ms=elapsed_ms,
                bucket=latency_bucket(None),
                error=str(exc),
                error_kind=exc.kind,
            ),
        )

    elapsed_ms = round((time.perf_counter() - started) * 1000.0)
    status = AvailabilityStatus.ONLINE if 200 <= resp.status_code < 400 else AvailabilityStatus.OFFLINE
    return (
        AvailabilityResult(
            status=status,
            status_code=resp.status_code,
            security_headers=SecurityHeaders.from_headers(resp.headers),
        ),
        LatencyResult(value_ms=elapsed_ms, bucket=latency_bucket(elapsed_ms)),
    )


def count_keyword(body: str, keyword: str) -> int:
    if not keyword:
        return 0
    return (body or "").lower().count(keyword.lower())


async def probe_keyword(
    url: str, keyword: str, client: httpx.AsyncClient, settings: ProbeSettings
) -> KeywordResult:
    """Count case-insensitive occurrences of ``keyword`` in the response body."""
    target, err = parse_target(url)
    if target is None:
        return KeywordResult.from_error(keyword, err)

    try:
        resp = await _get(client, target.url, settings)
    except NetworkError as exc:
        return KeywordResult.from_error(keyword, exc)

    if not resp.is_success:
        return KeywordResult.from_error(
            keyword, NetworkError(f"HTTP {resp.status_code}: {resp.reason_phrase}")
        )

    count = count_keyword(resp.text, keyword)
    status = KeywordStatus.FOUND if count > 0 else KeywordStatus.NOT_FOUND
    return KeywordResult(keyword=keyword, status=status, count=count)
