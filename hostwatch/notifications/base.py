from __future__ import annotations

from typing import Protocol

import structlog

logger = structlog.get_logger(__name__)


class NotificationChannel(Protocol):
    """Delivers an alert. Implementations raise on delivery failure."""

    async def send(self, recipients: list[str], subject: str, body: str) -> None: ...


class LogChannel:
    """Writes alerts to the log instead of delivering them anywhere."""

    async def send(self, recipients: list[str], subject: str, body: str) -> None:
        logger.warning("Alert notification", recipients=recipients, subject=subject, body=body)
