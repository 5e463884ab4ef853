from __future__ import annotations

import asyncio
import ssl
from dataclasses import dataclass
from datetime import datetime, timezone

import structlog
from cryptography import x509
from cryptography.x509.oid import NameOID

from ..config import ProbeSettings
from ..errors import HostwatchError, NetworkError, ParseError
from ..report import TlsResult, classify_expiry, days_until
from .target import ParsedTarget, parse_target

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PeerCertificate:
    issuer: str
    valid_from: datetime
    valid_to: datetime


def _tls_host_port(target: ParsedTarget, default_port: int) -> tuple[str, int]:
    if target.scheme == "https" and target.port:
        return target.host, int(target.port)
    return target.host, int(default_port)


def _unverified_context() -> ssl.SSLContext:
    # Expired or otherwise invalid certificates still have to be readable.
    ctx = ssl.create_default_context()
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    return ctx


def decode_certificate(der: bytes) -> PeerCertificate:
    try:
        cert = x509.load_der_x509_certificate(der)
    except ValueError as exc:
        raise ParseError(f"Could not decode peer certificate: {exc}") from exc

    issuer = "Unknown"
    cn = cert.issuer.get_attributes_for_oid(NameOID.COMMON_NAME)
    if cn:
        issuer = str(cn[0].value)
    return PeerCertificate(
        issuer=issuer,
        valid_from=cert.not_valid_before_utc,
        valid_to=cert.not_valid_after_utc,
    )


async def fetch_peer_certificate(host: str, port: int, timeout_seconds: float) -> PeerCertificate:
    writer = None
    try:
        _reader, writer = await asyncio.wait_for(
            asyncio.open_connection(host=host, port=port, ssl=_unverified_context(), server_hostname=host),
            timeout=float(timeout_seconds),
        )
        sslobj = writer.get_extra_info("ssl_object")
        der = sslobj.getpeercert(binary_form=True) if sslobj else None
    except asyncio.TimeoutError as exc:
        raise NetworkError(f"TLS connection to {host}:{port} timed out after {timeout_seconds:g}s") from exc
    except (OSError, ssl.SSLError) as exc:
        raise NetworkError(f"TLS connection to {host}:{port} failed: {type(exc).__name__}: {exc}") from exc
    finally:
        if writer is not None:
            writer.close()
            try:
                await writer.wait_closed()
            except (OSError, ssl.SSLError):
                pass

    if not der:
        raise ParseError(f"No peer certificate presented by {host}:{port}")
    return decode_certificate(der)


async def probe_tls(url: str, settings: ProbeSettings) -> TlsResult:
    """Read the peer certificate and classify its remaining validity."""
    target, err = parse_target(url)
    if target is None:
        return TlsResult.from_error(err)

    host, port = _tls_host_port(target, settings.tls_default_port)
    try:
        cert = await fetch_peer_certificate(host, port, settings.tls_timeout_seconds)
    except HostwatchError as exc:
        logger.debug("TLS probe failed", host=host, port=port, error=str(exc))
        return TlsResult.from_error(exc)

    days = days_until(cert.valid_to, datetime.now(timezone.utc))
    return TlsResult(
        status=classify_expiry(days),
        issuer=cert.issuer,
        valid_from=cert.valid_from,
        valid_to=cert.valid_to,
        days_to_expiry=days,
    )
