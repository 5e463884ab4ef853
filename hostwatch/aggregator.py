"""Fuses all probes for one target into a single MonitoringReport."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, TypeVar

import httpx
import structlog

from .config import ProbeSettings
from .probes.dns import probe_dns
from .probes.domain_expiry import probe_domain_expiry
from .probes.http import probe_availability, probe_keyword
from .probes.ping import probe_ping
from .probes.ports import probe_ports
from .probes.tls import probe_tls
from .report import (
    AvailabilityResult,
    DnsResult,
    DomainExpiryResult,
    KeywordResult,
    LatencyResult,
    MonitoringReport,
    PingResult,
    PortResult,
    TlsResult,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")


async def _guard(category: str, coro: Awaitable[T], on_error: Callable[[Exception], T]) -> T:
    """Run one probe and turn any unexpected fault into its error result."""
    try:
        return await coro
    except Exception as exc:
        logger.warning("Probe raised unexpectedly", category=category, error=f"{type(exc).__name__}: {exc}")
        return on_error(exc)


class ProbeAggregator:
    """Runs every probe against a target and assembles the report.

    A shared ``httpx.AsyncClient`` may be supplied; otherwise one is created
    for the duration of each run.
    """

    def __init__(self, settings: Optional[ProbeSettings] = None, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings or ProbeSettings()
        self._client = client

    async def run(self, target: str, keyword: Optional[str] = None) -> MonitoringReport:
        if self._client is not None:
            return await self._run(self._client, target, keyword)
        async with httpx.AsyncClient() as client:
            return await self._run(client, target, keyword)

    async def _run(self, client: httpx.AsyncClient, target: str, keyword: Optional[str]) -> MonitoringReport:
        settings = self.settings
        observed_at = datetime.now(timezone.utc)

        http_task = _guard(
            "availability",
            probe_availability(target, client, settings),
            lambda exc: (AvailabilityResult.from_error(exc), LatencyResult.from_error(exc)),
        )
        dns_task = _guard("dns", probe_dns(target), DnsResult.from_error)
        tls_task = _guard("ssl", probe_tls(target, settings), TlsResult.from_error)
        domain_task = _guard(
            "domainExpiry", probe_domain_expiry(target, client, settings), DomainExpiryResult.from_error
        )
        ports_task = _guard(
            "ports",
            probe_ports(target, settings),
            lambda exc: {int(p): PortResult.from_error(int(p), exc) for p in settings.ports},
        )
        ping_task = _guard("ping", probe_ping(target, settings), PingResult.from_error)

        keyword_task = None
        if keyword:
            keyword_task = _guard(
                "keyword",
                probe_keyword(target, keyword, client, settings),
                lambda exc: KeywordResult.from_error(keyword, exc),
            )

        tasks = [http_task, dns_task, tls_task, domain_task, ports_task, ping_task]
        if keyword_task is not None:
            tasks.append(keyword_task)

        results = await asyncio.gather(*tasks)
        (availability, latency), dns, ssl, domain_expiry, ports, ping = results[:6]
        keyword_result = results[6] if keyword_task is not None else None

        report = MonitoringReport(
            target=target,
            observed_at=observed_at,
            availability=availability,
            latency=latency,
            dns=dns,
            ssl=ssl,
            domain_expiry=domain_expiry,
            ports=ports,
            ping=ping,
            keyword=keyword_result,
        )
        logger.info(
            "Monitoring run finished",
            target=target,
            availability=availability.status.value,
            latency_ms=latency.value_ms,
            ssl=ssl.status.value,
            domain_expiry=domain_expiry.status.value,
        )
        return report
