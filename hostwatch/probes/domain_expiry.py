"""Domain registration expiry lookup.

The expiry date is looked up in stages, each stage only consulted when the
previous one produced nothing:

1. RDAP (structured registry data), first event whose action mentions expiry
2. ``whois`` output, matched against labeled patterns in a fixed order
3. ``whois`` output, first line that mentions expiry at all

The candidate string is then handed to :func:`hostwatch.dates.normalize_date`.
"""

from __future__ import annotations

import asyncio
import functools
import re
from datetime import datetime, timezone
from typing import Any

import httpx
import structlog
import tldextract

from ..config import ProbeSettings
from ..dates import normalize_date
from ..errors import ExternalServiceError, ParseError
from ..report import DomainExpiryResult, classify_expiry, days_until
from .target import parse_target

logger = structlog.get_logger(__name__)

WHOIS_SAMPLE_CHARS = 800

_EXPIRY_ACTION_RE = re.compile(r"expir", re.IGNORECASE)

WHOIS_EXPIRY_PATTERNS = [
    re.compile(rf"{label}[ \t]*(\S.*)", re.IGNORECASE)
    for label in (
        r"Registry Expiry Date:",
        r"Registrar Registration Expiration Date:",
        r"Expiration Date:",
        r"Expiry Date:",
        r"paid-till:",
        r"paid_till:",
        r"Expires On:",
        r"expires:",
        r"Renewal Date:",
        r"domain_datebilled_until:",
        r"Registry Expiry:",
    )
]


@functools.lru_cache(maxsize=1)
def _suffix_extractor() -> tldextract.TLDExtract:
    # Bundled suffix snapshot only; no network fetch.
    return tldextract.TLDExtract(suffix_list_urls=(), cache_dir=None)


def _last_two_labels(host: str) -> str:
    labels = [p for p in host.split(".") if p]
    return ".".join(labels[-2:])


def registrable_domain(host: str) -> str:
    """Return the registrable domain of ``host`` (``a.b.co.uk`` -> ``b.co.uk``)."""
    cleaned = str(host or "").strip().lower().rstrip(".")
    try:
        ext = _suffix_extractor()(cleaned)
    except Exception as exc:
        logger.debug("Public suffix lookup failed", host=cleaned, error=f"{type(exc).__name__}: {exc}")
        return _last_two_labels(cleaned)
    if ext.domain and ext.suffix:
        return f"{ext.domain}.{ext.suffix}"
    return _last_two_labels(cleaned)


def find_rdap_expiry(payload: Any) -> str | None:
    if not isinstance(payload, dict):
        return None
    events = payload.get("events")
    if not isinstance(events, list):
        return None
    for event in events:
        if not isinstance(event, dict):
            continue
        action = str(event.get("eventAction") or "")
        date = event.get("eventDate")
        if _EXPIRY_ACTION_RE.search(action) and date:
            return str(date)
    return None


def find_whois_expiry(text: str) -> tuple[str | None, str | None]:
    """Extract an expiry candidate from free-text whois output.

    Returns ``(candidate, source)`` where ``source`` is ``"whois"`` for a
    labeled pattern match and ``"whois-scan"`` for the loose line scan.
    """
    for pattern in WHOIS_EXPIRY_PATTERNS:
        m = pattern.search(text)
        if m:
            return m.group(1).strip(), "whois"

    for line in text.splitlines():
        if "expir" not in line.lower():
            continue
        if ":" in line:
            return line.split(":", 1)[1].strip(), "whois-scan"
        return line.strip(), "whois-scan"

    return None, None


async def _fetch_rdap(domain: str, client: httpx.AsyncClient, settings: ProbeSettings) -> Any | None:
    url = f"{settings.rdap_base_url.rstrip('/')}/{domain}"
    try:
        resp = await client.get(
            url,
            headers={"Accept": "application/rdap+json, application/json", "User-Agent": settings.user_agent},
            follow_redirects=True,
            timeout=float(settings.rdap_timeout_seconds),
        )
    except httpx.RequestError as exc:
        logger.debug("RDAP lookup failed", domain=domain, error=f"{type(exc).__name__}: {exc}")
        return None
    if not resp.is_success:
        logger.debug("RDAP lookup returned non-success status", domain=domain, status_code=resp.status_code)
        return None
    try:
        return resp.json()
    except ValueError:
        logger.debug("RDAP response is not JSON", domain=domain)
        return None


async def _run_whois(domain: str, settings: ProbeSettings) -> str:
    try:
        proc = await asyncio.create_subprocess_exec(
            settings.whois_command,
            domain,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
    except OSError as exc:
        raise ExternalServiceError(f"whois command not available: {exc}") from exc

    try:
        out, _ = await asyncio.wait_for(proc.communicate(), timeout=float(settings.whois_timeout_seconds))
    except asyncio.TimeoutError as exc:
        proc.kill()
        await proc.wait()
        raise ExternalServiceError(f"whois timed out after {settings.whois_timeout_seconds:g}s") from exc
    # Non-zero exit codes are common even when the record was printed.
    return out.decode("utf-8", errors="replace")


async def resolve_domain_expiry(
    host: str,
    client: httpx.AsyncClient,
    settings: ProbeSettings,
    *,
    now: datetime | None = None,
) -> DomainExpiryResult:
    domain = registrable_domain(host)

    candidate: str | None = None
    source: str | None = None

    payload = await _fetch_rdap(domain, client, settings)
    candidate = find_rdap_expiry(payload)
    if candidate is not None:
        source = "rdap"
    else:
        try:
            whois_text = await _run_whois(domain, settings)
        except ExternalServiceError as exc:
            return DomainExpiryResult.from_error(exc, domain=domain)

        candidate, source = find_whois_expiry(whois_text)
        if candidate is None:
            sample = whois_text[:WHOIS_SAMPLE_CHARS]
            return DomainExpiryResult.from_error(
                ParseError(
                    f"Could not find expiry date in RDAP or WHOIS output; sample WHOIS start: {sample}",
                    raw=sample,
                ),
                domain=domain,
            )

    try:
        expiry = normalize_date(candidate)
    except ParseError:
        return DomainExpiryResult.from_error(
            ParseError(f'Found expiry string but could not parse it: "{candidate}"', raw=candidate),
            domain=domain,
        )

    days = days_until(expiry, now or datetime.now(timezone.utc))
    return DomainExpiryResult(
        status=classify_expiry(days),
        domain=domain,
        expiry=expiry,
        days_to_expiry=days,
        source=source,
    )


async def probe_domain_expiry(url: str, client: httpx.AsyncClient, settings: ProbeSettings) -> DomainExpiryResult:
    target, err = parse_target(url)
    if target is None:
        return DomainExpiryResult.from_error(err)
    return await resolve_domain_expiry(target.host, client, settings)
