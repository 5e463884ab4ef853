"""Registry and cron scheduling of recurring monitoring jobs."""

from __future__ import annotations

import asyncio
import dataclasses
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from ..aggregator import ProbeAggregator
from ..alerts import evaluate_alerts, format_alert_body, format_alert_subject
from ..config import JobConfig, parse_job_config
from ..errors import ConfigError, DuplicateJobError
from ..notifications.base import NotificationChannel
from ..report import MonitoringReport

logger = structlog.get_logger(__name__)


@dataclass
class MonitoringJob:
    """A registered job. Callers only ever see copies made by ``snapshot``."""

    id: str
    config: JobConfig
    created_at: datetime
    is_active: bool = True
    last_run: Optional[datetime] = None
    last_report: Optional[MonitoringReport] = None
    last_alerts: List[str] = field(default_factory=list)

    def snapshot(self) -> MonitoringJob:
        return dataclasses.replace(self, last_alerts=list(self.last_alerts))


def build_cron_trigger(cron_expression: str, tz: str = "UTC") -> CronTrigger:
    """Build a trigger from a 5 field cron expression (minute hour day month day_of_week)."""
    cron_parts = str(cron_expression or "").split()
    if len(cron_parts) != 5:
        raise ConfigError(f"Invalid cron expression: {cron_expression!r}")
    try:
        return CronTrigger(
            minute=cron_parts[0],
            hour=cron_parts[1],
            day=cron_parts[2],
            month=cron_parts[3],
            day_of_week=cron_parts[4],
            timezone=tz,
        )
    except ValueError as exc:
        raise ConfigError(f"Invalid cron expression {cron_expression!r}: {exc}") from exc


class JobScheduler:
    """Holds monitoring jobs and runs them on their cron schedules.

    Each job owns one APScheduler cron trigger. At most one execution per
    registered job is in flight: a trigger that fires while the previous run
    is still going is skipped, and ``run_job_now`` joins the running execution
    instead of starting a second one.
    """

    def __init__(
        self,
        aggregator: ProbeAggregator,
        channels: Optional[Mapping[str, NotificationChannel]] = None,
        *,
        timezone_name: str = "UTC",
        replace_duplicates: bool = False,
    ):
        self.aggregator = aggregator
        self.channels: Dict[str, NotificationChannel] = dict(channels or {})
        self.timezone = timezone_name
        self.replace_duplicates = replace_duplicates
        self.scheduler = AsyncIOScheduler(timezone=timezone_name)
        self.running = False
        self._jobs: Dict[str, MonitoringJob] = {}
        # job id -> (registered job, its running execution)
        self._in_flight: Dict[str, Tuple[MonitoringJob, asyncio.Task]] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._lock = threading.RLock()

    async def start(self):
        """Start firing cron triggers."""
        if self.running:
            logger.warning("Scheduler already running")
            return

        self.scheduler.start()
        self.running = True
        logger.info("Job scheduler started", jobs=len(self._jobs))

    async def stop(self):
        """Stop the scheduler and wait for in-flight executions."""
        if not self.running:
            return

        self.scheduler.shutdown(wait=False)
        self.running = False
        pending = list(self._tasks)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info("Job scheduler stopped")

    def add_job(self, job_id: str, config: Any, *, replace: Optional[bool] = None) -> MonitoringJob:
        """Register a job and its cron trigger.

        Raises:
            ConfigError: if the config is invalid; nothing is registered.
            DuplicateJobError: if ``job_id`` is active and replacing is not enabled.
        """
        job_id = str(job_id or "").strip()
        if not job_id:
            raise ConfigError("Job id must not be empty")
        job_config = parse_job_config(config)
        trigger = build_cron_trigger(job_config.schedule, self.timezone)
        allow_replace = self.replace_duplicates if replace is None else replace

        with self._lock:
            existing = self._jobs.get(job_id)
            if existing is not None and existing.is_active:
                if not allow_replace:
                    raise DuplicateJobError(f"Job already exists: {job_id}")
                logger.warning("Job already exists, replacing", job_id=job_id)
            job = self._register(job_id, job_config, trigger, previous=existing)

        logger.info("Added cron job", job_id=job_id, cron=job_config.schedule, url=job_config.url)
        return job.snapshot()

    def remove_job(self, job_id: str) -> bool:
        """Deactivate a job and drop its trigger. Unknown ids are a no-op."""
        with self._lock:
            job = self._jobs.pop(job_id, None)
            if job is None:
                logger.debug("Job not found", job_id=job_id)
                return False
            job.is_active = False
            if self.scheduler.get_job(job_id) is not None:
                self.scheduler.remove_job(job_id)

        logger.info("Removed job", job_id=job_id)
        return True

    def update_job_config(self, job_id: str, config: Any) -> Optional[MonitoringJob]:
        """Swap in a new config and schedule; returns None for unknown ids.

        The old trigger is removed and the new one added under the registry
        lock, so the two schedules are never live together.
        """
        job_config = parse_job_config(config)
        trigger = build_cron_trigger(job_config.schedule, self.timezone)

        with self._lock:
            existing = self._jobs.get(job_id)
            if existing is None or not existing.is_active:
                logger.warning("Job not found", job_id=job_id)
                return None
            job = self._register(job_id, job_config, trigger, previous=existing)

        logger.info("Updated job", job_id=job_id, cron=job_config.schedule, url=job_config.url)
        return job.snapshot()

    def _register(
        self,
        job_id: str,
        job_config: JobConfig,
        trigger: CronTrigger,
        *,
        previous: Optional[MonitoringJob],
    ) -> MonitoringJob:
        job = MonitoringJob(id=job_id, config=job_config, created_at=datetime.now(timezone.utc))
        if previous is not None:
            previous.is_active = False
            if self.scheduler.get_job(job_id) is not None:
                self.scheduler.remove_job(job_id)
        self.scheduler.add_job(
            func=self._run_scheduled,
            trigger=trigger,
            id=job_id,
            args=(job_id,),
            name=job_config.url,
            max_instances=1,
            coalesce=True,
        )
        self._jobs[job_id] = job
        return job

    def get_job(self, job_id: str) -> Optional[MonitoringJob]:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.snapshot() if job is not None else None

    def list_jobs(self) -> List[MonitoringJob]:
        with self._lock:
            return [job.snapshot() for job in self._jobs.values()]

    def get_scheduler_status(self) -> Dict[str, Any]:
        with self._lock:
            job_ids = list(self._jobs)
        next_runs = {}
        for job_id in job_ids:
            aps_job = self.scheduler.get_job(job_id)
            next_run = getattr(aps_job, "next_run_time", None) if aps_job else None
            next_runs[job_id] = next_run.isoformat() if next_run else None
        return {
            "running": self.running,
            "timezone": self.timezone,
            "total_jobs": len(job_ids),
            "in_flight": sorted(self._in_flight),
            "next_run_times": next_runs,
        }

    async def run_job_now(self, job_id: str) -> Optional[MonitoringReport]:
        """Run a job's full cycle immediately.

        Returns the fresh report, or None if the id is unknown or inactive.
        If this job is already executing, that execution's report is returned.
        A run still going for a job that was since updated or replaced does
        not count: the current job gets its own execution.
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or not job.is_active:
                return None
            task = self._running_task(job)
            if task is None:
                task = self._start_execution(job)
            else:
                logger.info("Job already running, joining in-flight execution", job_id=job_id)
        return await asyncio.shield(task)

    async def _run_scheduled(self, job_id: str) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or not job.is_active:
                return
            if self._running_task(job) is not None:
                logger.info("Skipping trigger, previous execution still running", job_id=job_id)
                return
            task = self._start_execution(job)
        await asyncio.shield(task)

    def _running_task(self, job: MonitoringJob) -> Optional[asyncio.Task]:
        entry = self._in_flight.get(job.id)
        if entry is None:
            return None
        in_flight_job, task = entry
        return task if in_flight_job is job else None

    def _start_execution(self, job: MonitoringJob) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self._execute(job))
        self._in_flight[job.id] = (job, task)
        self._tasks.add(task)

        def _done(t: asyncio.Task, job_id: str = job.id) -> None:
            with self._lock:
                self._tasks.discard(t)
                entry = self._in_flight.get(job_id)
                if entry is not None and entry[1] is t:
                    del self._in_flight[job_id]

        task.add_done_callback(_done)
        return task

    async def _execute(self, job: MonitoringJob) -> Optional[MonitoringReport]:
        log = logger.bind(job_id=job.id, url=job.config.url)
        try:
            report = await self.aggregator.run(job.config.url, job.config.keyword)
        except Exception:
            log.exception("Job execution failed")
            return None

        alerts = evaluate_alerts(report, job.config.thresholds)
        with self._lock:
            job.last_run = report.observed_at
            job.last_report = report
            job.last_alerts = list(alerts)

        if alerts:
            log.warning("Alerts raised", alerts=alerts)
            await self._notify(job, report, alerts)
        else:
            log.info("Job run healthy")
        return report

    async def _notify(self, job: MonitoringJob, report: MonitoringReport, alerts: List[str]) -> None:
        settings = job.config.notifications
        if settings is None or not settings.enabled:
            return
        if not job.is_active:
            logger.info("Job removed during execution, not notifying", job_id=job.id)
            return
        channel = self.channels.get(settings.channel)
        if channel is None:
            logger.warning("Unknown notification channel", job_id=job.id, channel=settings.channel)
            return
        try:
            await channel.send(
                list(settings.recipients),
                format_alert_subject(report),
                format_alert_body(report, alerts, job_id=job.id),
            )
        except Exception as exc:
            logger.warning(
                "Alert notification failed",
                job_id=job.id,
                channel=settings.channel,
                error=f"{type(exc).__name__}: {exc}",
            )
