"""Scheduler module for recurring monitoring jobs."""

from .job_scheduler import JobScheduler, MonitoringJob, build_cron_trigger

__all__ = ["JobScheduler", "MonitoringJob", "build_cron_trigger"]
