"""Threshold evaluation and alert message rendering."""

from __future__ import annotations

import json
from typing import Optional

from .config import AlertThresholds
from .report import AvailabilityStatus, ExpiryStatus, MonitoringReport


def evaluate_alerts(report: MonitoringReport, thresholds: Optional[AlertThresholds] = None) -> list[str]:
    """Compare a report against thresholds and return alert messages.

    Every rule is evaluated; the result is ordered and depends only on the
    report and thresholds. An unset threshold disables its rule, but
    unavailability and expired certificates or domains always alert.
    """
    alerts: list[str] = []
    t = thresholds or AlertThresholds()

    latency_ms = report.latency.value_ms
    if t.response_time_ms is not None and latency_ms is not None and latency_ms > t.response_time_ms:
        alerts.append(f"Response time {latency_ms}ms exceeds threshold of {t.response_time_ms:g}ms")

    ssl_days = report.ssl.days_to_expiry
    if t.ssl_expiry_days is not None and ssl_days is not None and ssl_days <= t.ssl_expiry_days:
        alerts.append(f"SSL certificate expires in {ssl_days} days")

    domain_days = report.domain_expiry.days_to_expiry
    if t.domain_expiry_days is not None and domain_days is not None and domain_days <= t.domain_expiry_days:
        alerts.append(f"Domain expires in {domain_days} days")

    if report.availability.status is not AvailabilityStatus.ONLINE:
        alerts.append(f"Website is {report.availability.status.value}")

    if report.ssl.status is ExpiryStatus.EXPIRED:
        alerts.append("SSL certificate has expired")

    if report.domain_expiry.status is ExpiryStatus.EXPIRED:
        alerts.append("Domain has expired")

    return alerts


def format_alert_subject(report: MonitoringReport) -> str:
    return f"Website Monitoring Alert - {report.target}"


def format_alert_body(report: MonitoringReport, alerts: list[str], *, job_id: Optional[str] = None) -> str:
    latency = "n/a" if report.latency.value_ms is None else f"{report.latency.value_ms}ms"
    lines = ["Website monitoring alert"]
    if job_id:
        lines.append(f"Job: {job_id}")
    lines.append(f"URL: {report.target}")
    lines.append(f"Time: {report.observed_at.isoformat()}")
    lines.append(f"Status: {report.availability.status.value}")
    lines.append(f"Response time: {latency}")
    lines.append("")
    lines.append("Alerts:")
    for alert in alerts:
        lines.append(f"- {alert}")
    lines.append("")
    lines.append("Full report:")
    lines.append(json.dumps(report.to_dict(), indent=2, ensure_ascii=False))
    return "\n".join(lines).strip()
