from __future__ import annotations

import asyncio
import time

from ..config import ProbeSettings
from ..errors import NetworkError
from ..report import PortResult, PortStatus
from .target import parse_target


async def check_port(host: str, port: int, timeout_seconds: float) -> PortResult:
    """Attempt one TCP connect and classify the outcome."""
    started = time.perf_counter()
    writer = None
    try:
        _reader, writer = await asyncio.wait_for(
            asyncio.open_connection(host=host, port=port),
            timeout=float(timeout_seconds),
        )
        latency_ms = round((time.perf_counter() - started) * 1000.0)
        return PortResult(port=port, status=PortStatus.OPEN, latency_ms=latency_ms)
    except asyncio.TimeoutError:
        return PortResult(port=port, status=PortStatus.TIMEOUT)
    except OSError:
        # Refused, unreachable and unresolvable hosts all read as closed.
        return PortResult(port=port, status=PortStatus.CLOSED)
    except Exception as exc:
        return PortResult.from_error(port, NetworkError(f"{type(exc).__name__}: {exc}"))
    finally:
        if writer is not None:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass


async def probe_ports(url: str, settings: ProbeSettings) -> dict[int, PortResult]:
    """Scan every configured port concurrently; one port never blocks another."""
    ports = list(dict.fromkeys(int(p) for p in settings.ports))
    target, err = parse_target(url)
    if target is None:
        return {port: PortResult.from_error(port, err) for port in ports}

    results = await asyncio.gather(
        *(check_port(target.host, port, settings.port_timeout_seconds) for port in ports)
    )
    return {r.port: r for r in results}
