"""Host health monitoring: probes, report aggregation, alerting and scheduled jobs."""

__version__ = "0.1.0"
