"""Report model: per-category probe results and the fused monitoring report."""

from __future__ import annotations

import math
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

from .errors import error_kind

EXPIRING_SOON_DAYS = 30
LATENCY_GOOD_MS = 1000
LATENCY_WARNING_MS = 3000


class Outcome(str, Enum):
    OK = "ok"
    DEGRADED = "degraded"
    FAILED = "failed"


class AvailabilityStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    ERROR = "error"


class LatencyBucket(str, Enum):
    GOOD = "good"
    WARNING = "warning"
    CRITICAL = "critical"


class DnsStatus(str, Enum):
    RESOLVED = "resolved"
    ERROR = "error"


class ExpiryStatus(str, Enum):
    VALID = "valid"
    EXPIRING_SOON = "expiring_soon"
    EXPIRED = "expired"
    ERROR = "error"


class PortStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"
    TIMEOUT = "timeout"
    ERROR = "error"


class PingStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    ERROR = "error"


class KeywordStatus(str, Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    ERROR = "error"


_DEGRADED_STATUSES = {
    AvailabilityStatus.OFFLINE,
    LatencyBucket.WARNING,
    LatencyBucket.CRITICAL,
    ExpiryStatus.EXPIRING_SOON,
    ExpiryStatus.EXPIRED,
    PortStatus.TIMEOUT,
    PingStatus.FAILED,
    KeywordStatus.NOT_FOUND,
}


def _outcome(status: Enum, error: str | None) -> Outcome:
    if status.value == "error" or error is not None:
        return Outcome.FAILED
    if status in _DEGRADED_STATUSES:
        return Outcome.DEGRADED
    return Outcome.OK


def _error_fields(exc: BaseException | str) -> tuple[str, str]:
    if isinstance(exc, BaseException):
        return (str(exc).strip() or type(exc).__name__), error_kind(exc)
    return str(exc), "HostwatchError"


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if hasattr(value, "__dataclass_fields__"):
        return {_camel(f.name): _jsonable(getattr(value, f.name)) for f in fields(value)}
    return value


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(p.title() for p in rest)


def days_until(expiry: datetime, now: datetime | None = None) -> int:
    """Whole days left until ``expiry``, rounded up; negative once expired."""
    now = now or datetime.now(timezone.utc)
    return math.ceil((expiry - now).total_seconds() / 86400.0)


def classify_expiry(days: int) -> ExpiryStatus:
    if days <= 0:
        return ExpiryStatus.EXPIRED
    if days <= EXPIRING_SOON_DAYS:
        return ExpiryStatus.EXPIRING_SOON
    return ExpiryStatus.VALID


def latency_bucket(value_ms: float | None) -> LatencyBucket:
    if value_ms is None:
        return LatencyBucket.CRITICAL
    if value_ms < LATENCY_GOOD_MS:
        return LatencyBucket.GOOD
    if value_ms < LATENCY_WARNING_MS:
        return LatencyBucket.WARNING
    return LatencyBucket.CRITICAL


SECURITY_HEADER_NAMES = (
    "strict-transport-security",
    "content-security-policy",
    "x-frame-options",
    "x-content-type-options",
)


@dataclass(frozen=True)
class SecurityHeaders:
    """Security related response headers; ``None`` means the header was missing."""

    strict_transport_security: str | None = None
    content_security_policy: str | None = None
    x_frame_options: str | None = None
    x_content_type_options: str | None = None
    hsts: bool = False

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> SecurityHeaders:
        lowered = {str(k).lower(): v for k, v in headers.items()}
        values = {name.replace("-", "_"): lowered.get(name) for name in SECURITY_HEADER_NAMES}
        return cls(**values, hsts=bool(values["strict_transport_security"]))

    @property
    def missing(self) -> list[str]:
        return [name for name in SECURITY_HEADER_NAMES if getattr(self, name.replace("-", "_")) is None]


@dataclass(frozen=True)
class AvailabilityResult:
    status: AvailabilityStatus
    status_code: int | None = None
    security_headers: SecurityHeaders | None = None
    error: str | None = None
    error_kind: str | None = None

    @property
    def outcome(self) -> Outcome:
        return _outcome(self.status, self.error)

    @classmethod
    def from_error(cls, exc: BaseException | str) -> AvailabilityResult:
        message, kind = _error_fields(exc)
        return cls(status=AvailabilityStatus.ERROR, error=message, error_kind=kind)


@dataclass(frozen=True)
class LatencyResult:
    value_ms: int | None
    bucket: LatencyBucket
    error: str | None = None
    error_kind: str | None = None

    @property
    def outcome(self) -> Outcome:
        if self.error is not None:
            return Outcome.FAILED
        return _outcome(self.bucket, None)

    @classmethod
    def from_error(cls, exc: BaseException | str) -> LatencyResult:
        message, kind = _error_fields(exc)
        return cls(value_ms=None, bucket=LatencyBucket.CRITICAL, error=message, error_kind=kind)


@dataclass(frozen=True)
class DnsResult:
    status: DnsStatus
    a: list[str] = field(default_factory=list)
    mx: list[str] = field(default_factory=list)
    txt: list[str] = field(default_factory=list)
    ns: list[str] = field(default_factory=list)
    error: str | None = None
    error_kind: str | None = None

    @property
    def outcome(self) -> Outcome:
        return _outcome(self.status, self.error)

    @classmethod
    def from_error(cls, exc: BaseException | str) -> DnsResult:
        message, kind = _error_fields(exc)
        return cls(status=DnsStatus.ERROR, error=message, error_kind=kind)


@dataclass(frozen=True)
class TlsResult:
    status: ExpiryStatus
    issuer: str | None = None
    valid_from: datetime | None = None
    valid_to: datetime | None = None
    days_to_expiry: int | None = None
    error: str | None = None
    error_kind: str | None = None

    @property
    def outcome(self) -> Outcome:
        return _outcome(self.status, self.error)

    @classmethod
    def from_error(cls, exc: BaseException | str) -> TlsResult:
        message, kind = _error_fields(exc)
        return cls(status=ExpiryStatus.ERROR, error=message, error_kind=kind)


@dataclass(frozen=True)
class DomainExpiryResult:
    status: ExpiryStatus
    domain: str | None = None
    expiry: datetime | None = None
    days_to_expiry: int | None = None
    source: str | None = None
    error: str | None = None
    error_kind: str | None = None
    raw: str | None = None

    @property
    def outcome(self) -> Outcome:
        return _outcome(self.status, self.error)

    @classmethod
    def from_error(
        cls, exc: BaseException | str, *, domain: str | None = None, raw: str | None = None
    ) -> DomainExpiryResult:
        message, kind = _error_fields(exc)
        if raw is None:
            raw = getattr(exc, "raw", None)
        return cls(status=ExpiryStatus.ERROR, domain=domain, error=message, error_kind=kind, raw=raw)


@dataclass(frozen=True)
class PortResult:
    port: int
    status: PortStatus
    latency_ms: int | None = None
    error: str | None = None
    error_kind: str | None = None

    @property
    def outcome(self) -> Outcome:
        return _outcome(self.status, self.error)

    @classmethod
    def from_error(cls, port: int, exc: BaseException | str) -> PortResult:
        message, kind = _error_fields(exc)
        return cls(port=port, status=PortStatus.ERROR, error=message, error_kind=kind)


@dataclass(frozen=True)
class PingResult:
    status: PingStatus
    latency_ms: float | None = None
    error: str | None = None
    error_kind: str | None = None

    @property
    def outcome(self) -> Outcome:
        if self.status is PingStatus.FAILED:
            return Outcome.DEGRADED
        return _outcome(self.status, self.error)

    @classmethod
    def from_error(cls, exc: BaseException | str) -> PingResult:
        message, kind = _error_fields(exc)
        return cls(status=PingStatus.ERROR, error=message, error_kind=kind)


@dataclass(frozen=True)
class KeywordResult:
    keyword: str
    status: KeywordStatus
    count: int = 0
    error: str | None = None
    error_kind: str | None = None

    @property
    def outcome(self) -> Outcome:
        return _outcome(self.status, self.error)

    @classmethod
    def from_error(cls, keyword: str, exc: BaseException | str) -> KeywordResult:
        message, kind = _error_fields(exc)
        return cls(keyword=keyword, status=KeywordStatus.ERROR, error=message, error_kind=kind)


@dataclass(frozen=True)
class MonitoringReport:
    """Result of one aggregator run against a target.

    Every probe category is always populated; failed probes carry an
    ``error`` status entry instead of being left out. ``keyword`` is only
    set when a keyword was requested.
    """

    target: str
    observed_at: datetime
    availability: AvailabilityResult
    latency: LatencyResult
    dns: DnsResult
    ssl: TlsResult
    domain_expiry: DomainExpiryResult
    ports: dict[int, PortResult]
    ping: PingResult
    keyword: KeywordResult | None = None

    @property
    def categories(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "availability": self.availability,
            "latency": self.latency,
            "dns": self.dns,
            "ssl": self.ssl,
            "domainExpiry": self.domain_expiry,
            "ports": self.ports,
            "ping": self.ping,
        }
        if self.keyword is not None:
            out["keyword"] = self.keyword
        return out

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "target": self.target,
            "observedAt": self.observed_at.isoformat(),
        }
        for key, value in self.categories.items():
            data[key] = _jsonable(value)
        data["healthScore"] = health_score(self)
        return data


def health_score(report: MonitoringReport) -> int:
    """Single 0..100 score summarizing a report."""
    score = 100
    if report.availability.status is not AvailabilityStatus.ONLINE:
        score -= 30
    if report.latency.bucket is LatencyBucket.CRITICAL:
        score -= 20
    elif report.latency.bucket is LatencyBucket.WARNING:
        score -= 10
    if report.ssl.status is ExpiryStatus.EXPIRED:
        score -= 25
    elif report.ssl.status is ExpiryStatus.EXPIRING_SOON:
        score -= 10
    if report.domain_expiry.status is ExpiryStatus.EXPIRED:
        score -= 25
    elif report.domain_expiry.status is ExpiryStatus.EXPIRING_SOON:
        score -= 10
    if report.ping.status is PingStatus.FAILED:
        score -= 15
    return max(0, min(100, score))


def recommendations(report: MonitoringReport) -> list[str]:
    out: list[str] = []
    if report.availability.status is not AvailabilityStatus.ONLINE:
        out.append("Website is offline")
    if report.latency.bucket is LatencyBucket.CRITICAL:
        out.append("Response time is too slow")
    if report.ssl.status is ExpiryStatus.EXPIRED:
        out.append("SSL certificate has expired")
    elif report.ssl.status is ExpiryStatus.EXPIRING_SOON:
        out.append("SSL certificate expiring soon")
    if report.domain_expiry.status is ExpiryStatus.EXPIRED:
        out.append("Domain has expired")
    elif report.domain_expiry.status is ExpiryStatus.EXPIRING_SOON:
        out.append("Domain expiring soon")
    if report.ping.status is PingStatus.FAILED:
        out.append("Ping failed")
    if report.keyword is not None and report.keyword.status is not KeywordStatus.FOUND:
        out.append(f"Keyword {report.keyword.keyword!r} was not found")
    return out or ["All systems operational"]
