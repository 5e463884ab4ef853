"""Configuration management for hostwatch."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigError

DEFAULT_PORTS = [21, 22, 23, 25, 53, 80, 110, 143, 443, 993, 995, 3306, 5432, 8080]


class ProbeSettings(BaseModel):
    """Timeouts and endpoints used by the individual probes."""
    user_agent: str = Field(default="hostwatch/1.0", description="User-Agent sent by HTTP probes")
    http_timeout_seconds: float = Field(default=10.0, description="Availability and keyword request timeout")
    tls_timeout_seconds: float = Field(default=5.0, description="TLS handshake timeout")
    tls_default_port: int = Field(default=443, description="Port used when the target has no explicit https port")
    port_timeout_seconds: float = Field(default=3.0, description="Per-port TCP connect timeout")
    ports: list[int] = Field(default_factory=lambda: list(DEFAULT_PORTS), description="Ports covered by the scan")
    ping_count: int = Field(default=1, description="Echo requests sent by the ping probe")
    ping_timeout_seconds: float = Field(default=15.0, description="Upper bound for the ping process")
    rdap_base_url: str = Field(default="https://rdap.org/domain/", description="Structured registry endpoint")
    rdap_timeout_seconds: float = Field(default=10.0, description="Structured registry request timeout")
    whois_command: str = Field(default="whois", description="Free-text registry lookup command")
    whois_timeout_seconds: float = Field(default=15.0, description="Upper bound for the whois process")


class AlertThresholds(BaseModel):
    """Optional per-job alert thresholds; an unset threshold disables its check."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    response_time_ms: Optional[float] = Field(default=None, alias="responseTime", description="Max acceptable latency")
    ssl_expiry_days: Optional[int] = Field(default=None, alias="sslExpiryDays", description="Min days to SSL expiry")
    domain_expiry_days: Optional[int] = Field(
        default=None, alias="domainExpiryDays", description="Min days to domain expiry"
    )


class NotificationSettings(BaseModel):
    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    enabled: bool = Field(default=True, description="Send notifications for this job")
    channel: str = Field(default="log", description="Notification channel name (telegram, log)")
    recipients: list[str] = Field(default_factory=list, description="Channel specific recipients")


class JobConfig(BaseModel):
    """Definition of one recurring monitoring job."""
    model_config = ConfigDict(frozen=True)

    url: str = Field(description="Target URL")
    keyword: Optional[str] = Field(default=None, description="Keyword to look for in the response body")
    schedule: str = Field(description="Cron expression: minute hour day month day_of_week")
    thresholds: Optional[AlertThresholds] = Field(default=None, description="Alert thresholds")
    notifications: Optional[NotificationSettings] = Field(default=None, description="Where alerts are sent")

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        cleaned = str(value or "").strip()
        if not cleaned:
            raise ValueError("url must not be empty")
        return cleaned

    @field_validator("schedule")
    @classmethod
    def _check_schedule(cls, value: str) -> str:
        cleaned = " ".join(str(value or "").split())
        if len(cleaned.split()) != 5:
            raise ValueError(f"Invalid cron expression: {value!r}")
        return cleaned

    @field_validator("keyword")
    @classmethod
    def _blank_keyword_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not str(value).strip():
            return None
        return str(value)


class JobDefinition(BaseModel):
    id: str = Field(description="Unique job id")
    config: JobConfig


class TelegramSettings(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    bot_token: Optional[str] = Field(default=None, description="Telegram bot token")
    chat_id: Optional[str] = Field(default=None, description="Default chat id when a job lists no recipients")


class HostwatchConfig(BaseModel):
    """Main configuration for hostwatch."""

    log_level: str = Field(default="INFO", description="Logging level")
    json_logs: bool = Field(default=False, description="Render log lines as JSON")
    timezone: str = Field(default="UTC", description="Timezone used to evaluate cron schedules")
    replace_duplicate_jobs: bool = Field(
        default=False, description="Replace a job registered under an existing id instead of rejecting it"
    )
    probes: ProbeSettings = Field(default_factory=ProbeSettings)
    telegram: TelegramSettings = Field(default_factory=TelegramSettings)
    jobs: list[JobDefinition] = Field(default_factory=list, description="Jobs registered at startup")


def parse_job_config(data: Any) -> JobConfig:
    """Validate a raw job definition, raising ConfigError when it is unusable."""
    if isinstance(data, JobConfig):
        return data
    if not isinstance(data, dict):
        raise ConfigError("Job config must be a mapping")
    try:
        return JobConfig(**data)
    except ValidationError as exc:
        raise ConfigError(_format_validation_error(exc)) from exc


def _format_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "config"
        parts.append(f"{loc}: {err.get('msg')}")
    return "; ".join(parts)


def load_config(config_path: Optional[str] = None) -> HostwatchConfig:
    """Load configuration from file and environment variables."""
    if config_path is None:
        config_path = os.getenv("HOSTWATCH_CONFIG", "config/hostwatch.yaml")

    config_data: Dict[str, Any] = {}

    path = Path(config_path)
    if path.exists():
        with open(path, "r") as f:
            loaded = yaml.safe_load(f)
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigError(f"Config must be a YAML mapping: {path}")
        config_data = loaded

    env_overrides = {
        "log_level": os.getenv("LOG_LEVEL"),
        "timezone": os.getenv("HOSTWATCH_TIMEZONE"),
        "json_logs": os.getenv("HOSTWATCH_JSON_LOGS"),
    }
    for key, value in env_overrides.items():
        if value is not None:
            if key == "json_logs":
                value = value.lower() in ("true", "1", "yes")
            config_data[key] = value

    http_timeout = os.getenv("HOSTWATCH_HTTP_TIMEOUT")
    if http_timeout is not None:
        probes = dict(config_data.get("probes") or {})
        try:
            probes["http_timeout_seconds"] = float(http_timeout)
        except ValueError as exc:
            raise ConfigError(f"HOSTWATCH_HTTP_TIMEOUT must be a number: {http_timeout!r}") from exc
        config_data["probes"] = probes

    telegram = dict(config_data.get("telegram") or {})
    if os.getenv("TELEGRAM_BOT_TOKEN"):
        telegram["bot_token"] = os.getenv("TELEGRAM_BOT_TOKEN")
    if os.getenv("TELEGRAM_CHAT_ID"):
        telegram["chat_id"] = os.getenv("TELEGRAM_CHAT_ID")
    config_data["telegram"] = telegram

    try:
        return HostwatchConfig(**config_data)
    except ValidationError as exc:
        raise ConfigError(_format_validation_error(exc)) from exc
