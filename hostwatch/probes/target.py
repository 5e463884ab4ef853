from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlsplit

from ..errors import ParseError


@dataclass(frozen=True)
class ParsedTarget:
    url: str
    scheme: str
    host: str
    port: int | None


def parse_target(url: str) -> tuple[ParsedTarget | None, ParseError | None]:
    """Split a target URL into scheme, host and port.

    Returns ``(target, None)`` on success and ``(None, error)`` when the URL
    is unusable, so each probe can turn a bad target into its own error
    result.
    """
    raw = str(url or "").strip()
    if not raw:
        return None, ParseError("Target URL is empty", raw=raw)
    try:
        parts = urlsplit(raw)
        port = parts.port
    except ValueError as exc:
        return None, ParseError(f"Invalid target URL {raw!r}: {exc}", raw=raw)
    scheme = (parts.scheme or "").lower()
    if scheme not in ("http", "https"):
        return None, ParseError(f"Unsupported URL scheme in {raw!r}", raw=raw)
    host = (parts.hostname or "").strip().rstrip(".")
    if not host:
        return None, ParseError(f"Target URL has no host: {raw!r}", raw=raw)
    # Hosts reach ping and whois as command line arguments.
    if host.startswith("-"):
        return None, ParseError(f"Invalid host in target URL: {raw!r}", raw=raw)
    return ParsedTarget(url=raw, scheme=scheme, host=host, port=port), None
