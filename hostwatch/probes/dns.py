from __future__ import annotations

import asyncio
from typing import Any

import structlog

from ..report import DnsResult, DnsStatus
from .target import parse_target

logger = structlog.get_logger(__name__)

RECORD_TYPES = ("A", "MX", "TXT", "NS")


def _rdata_to_text(record_type: str, rr: Any) -> str:
    if record_type == "MX":
        return str(rr.exchange).rstrip(".")
    if record_type == "NS":
        return str(rr.target).rstrip(".")
    if record_type == "TXT":
        return "".join(
            s.decode("utf-8", errors="replace") if isinstance(s, bytes) else str(s) for s in rr.strings
        )
    return str(rr).strip()


def _dns_query_sync(*, domain: str, record_type: str) -> list[str]:
    import dns.resolver  # type: ignore

    resolver = dns.resolver.Resolver(configure=True)
    try:
        ans = resolver.resolve(domain, record_type)
    except dns.resolver.NoAnswer:
        # A missing record type is a normal outcome; treat it as empty.
        return []
    out: list[str] = []
    for rr in ans:
        s = _rdata_to_text(record_type, rr)
        if s:
            out.append(s)
    return out


async def _query(domain: str, record_type: str) -> list[str]:
    try:
        return await asyncio.to_thread(_dns_query_sync, domain=domain, record_type=record_type)
    except Exception as exc:
        logger.debug("DNS lookup failed", domain=domain, record_type=record_type, error=f"{type(exc).__name__}: {exc}")
        return []


async def probe_dns(url: str) -> DnsResult:
    """Resolve A, MX, TXT and NS records for the target host.

    Lookups run concurrently and a failing record type only empties its own
    list.
    """
    target, err = parse_target(url)
    if target is None:
        return DnsResult.from_error(err)

    domain = target.host.lower()
    a, mx, txt, ns = await asyncio.gather(*(_query(domain, rt) for rt in RECORD_TYPES))
    return DnsResult(status=DnsStatus.RESOLVED, a=a, mx=mx, txt=txt, ns=ns)
