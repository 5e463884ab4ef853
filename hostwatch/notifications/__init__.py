"""Notification channels used to deliver job alerts."""

from .base import LogChannel, NotificationChannel
from .telegram import TelegramChannel

__all__ = ["LogChannel", "NotificationChannel", "TelegramChannel"]
