"""Error taxonomy shared by probes, the aggregator and the job scheduler."""

from __future__ import annotations

from typing import Any


class HostwatchError(Exception):
    """Base class for all hostwatch errors."""

    kind = "HostwatchError"


class NetworkError(HostwatchError):
    """Connect failures, timeouts and refusals."""

    kind = "NetworkError"


class ParseError(HostwatchError):
    """Unparseable dates or malformed registry payloads."""

    kind = "ParseError"

    def __init__(self, message: str, *, raw: str | None = None) -> None:
        super().__init__(message)
        self.raw = raw


class ConfigError(HostwatchError):
    """Invalid job definition or configuration file."""

    kind = "ConfigError"


class DuplicateJobError(ConfigError):
    kind = "DuplicateJobError"


class ExternalServiceError(HostwatchError):
    """A registry, command line tool or notification service could not be used."""

    kind = "ExternalServiceError"


class NotFoundError(HostwatchError):
    kind = "NotFoundError"


def error_kind(exc: BaseException) -> str:
    if isinstance(exc, HostwatchError):
        return exc.kind
    return type(exc).__name__


def error_payload(exc: BaseException) -> dict[str, Any]:
    """Render an exception as the structured ``{errorKind, message}`` payload."""
    message = str(exc).strip() or type(exc).__name__
    return {"errorKind": error_kind(exc), "message": message}


def not_found(job_id: str) -> dict[str, Any]:
    return error_payload(NotFoundError(f"Job not found: {job_id}"))
