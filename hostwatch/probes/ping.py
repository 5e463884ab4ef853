from __future__ import annotations

import asyncio
import re

import structlog

from ..config import ProbeSettings
from ..errors import ExternalServiceError
from ..report import PingResult, PingStatus
from .target import parse_target

logger = structlog.get_logger(__name__)

_RTT_RE = re.compile(r"time[=<]\s*(\d+(?:\.\d+)?)\s*ms", re.IGNORECASE)


async def _run_ping(host: str, *, count: int, timeout_seconds: float) -> str | None:
    """Run the system ping tool and return its combined output.

    Returns None when the process has to be killed for exceeding the
    timeout.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            "ping",
            "-c",
            str(max(1, int(count))),
            host,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
    except FileNotFoundError as exc:
        raise ExternalServiceError("ping command not available") from exc
    except OSError as exc:
        raise ExternalServiceError(f"Could not start ping: {exc}") from exc

    try:
        out, _ = await asyncio.wait_for(proc.communicate(), timeout=float(timeout_seconds))
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        return None
    return out.decode("utf-8", errors="replace")


def parse_round_trip_ms(output: str) -> float | None:
    m = _RTT_RE.search(output or "")
    if not m:
        return None
    return float(m.group(1))


async def probe_ping(url: str, settings: ProbeSettings) -> PingResult:
    target, err = parse_target(url)
    if target is None:
        return PingResult.from_error(err)

    try:
        output = await _run_ping(
            target.host, count=settings.ping_count, timeout_seconds=settings.ping_timeout_seconds
        )
    except ExternalServiceError as exc:
        return PingResult.from_error(exc)

    rtt = parse_round_trip_ms(output or "")
    if rtt is None:
        logger.debug("No round-trip time in ping output", host=target.host)
        return PingResult(status=PingStatus.FAILED)
    return PingResult(status=PingStatus.SUCCESS, latency_ms=rtt)
