from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Callable

import pytest

from hostwatch.report import (
    AvailabilityResult,
    AvailabilityStatus,
    DnsResult,
    DnsStatus,
    DomainExpiryResult,
    ExpiryStatus,
    LatencyResult,
    MonitoringReport,
    PingResult,
    PingStatus,
    PortResult,
    PortStatus,
    TlsResult,
    latency_bucket,
)


class _Handler(BaseHTTPRequestHandler):
    def log_message(self, format: str, *args) -> None:  # noqa: A002
        return

    def do_GET(self) -> None:  # noqa: N802
        routes: dict[str, tuple[int, str]] = {
            "/ok": (
                200,
                "<!doctype html><html><head><title>OK Page</title></head>"
                "<body><h1>Everything is Fine</h1><p>really fine</p></body></html>",
            ),
            "/bad_gateway": (502, "Bad Gateway"),
        }

        if self.path == "/secure":
            body_bytes = b"<html><body>locked down</body></html>"
            self.send_response(200)
            self.send_header("Content-Type", "text/html; charset=utf-8")
            self.send_header("Content-Length", str(len(body_bytes)))
            self.send_header("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
            self.send_header("Content-Security-Policy", "default-src 'self'")
            self.send_header("X-Frame-Options", "DENY")
            self.send_header("X-Content-Type-Options", "nosniff")
            self.end_headers()
            self.wfile.write(body_bytes)
            return

        if self.path == "/redirect":
            self.send_response(302)
            self.send_header("Location", "/ok")
            self.end_headers()
            return

        status, body = routes.get(self.path, (404, "Not Found"))
        body_bytes = body.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(body_bytes)))
        self.end_headers()
        self.wfile.write(body_bytes)


@pytest.fixture(scope="module")
def local_server_base_url() -> str:
    httpd = HTTPServer(("127.0.0.1", 0), _Handler)
    host, port = httpd.server_address
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()

    try:
        yield f"http://{host}:{port}"
    finally:
        httpd.shutdown()
        thread.join(timeout=5)
        httpd.server_close()


def build_report(**overrides: Any) -> MonitoringReport:
    """A fully healthy report; keyword arguments replace single categories."""
    now = datetime.now(timezone.utc)
    fields: dict[str, Any] = {
        "target": "https://example.com",
        "observed_at": now,
        "availability": AvailabilityResult(status=AvailabilityStatus.ONLINE, status_code=200),
        "latency": LatencyResult(value_ms=150, bucket=latency_bucket(150)),
        "dns": DnsResult(status=DnsStatus.RESOLVED, a=["93.184.216.34"]),
        "ssl": TlsResult(
            status=ExpiryStatus.VALID,
            issuer="Test CA",
            valid_from=now - timedelta(days=30),
            valid_to=now + timedelta(days=200),
            days_to_expiry=200,
        ),
        "domain_expiry": DomainExpiryResult(
            status=ExpiryStatus.VALID,
            domain="example.com",
            expiry=now + timedelta(days=365),
            days_to_expiry=365,
            source="rdap",
        ),
        "ports": {
            80: PortResult(port=80, status=PortStatus.OPEN, latency_ms=5),
            443: PortResult(port=443, status=PortStatus.OPEN, latency_ms=5),
        },
        "ping": PingResult(status=PingStatus.SUCCESS, latency_ms=12.0),
        "keyword": None,
    }
    fields.update(overrides)
    return MonitoringReport(**fields)


@pytest.fixture
def make_report() -> Callable[..., MonitoringReport]:
    return build_report
