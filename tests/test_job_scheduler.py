from __future__ import annotations

import asyncio

import pytest

from hostwatch.errors import ConfigError, DuplicateJobError
from hostwatch.report import AvailabilityResult, AvailabilityStatus
from hostwatch.scheduler import JobScheduler, build_cron_trigger

JOB = {
    "url": "https://example.com",
    "schedule": "*/5 * * * *",
    "notifications": {"channel": "recording", "recipients": ["ops"]},
}


class FakeAggregator:
    def __init__(self, make_report, *, offline: bool = False, gate: asyncio.Event | None = None):
        self.make_report = make_report
        self.calls: list[tuple[str, str | None]] = []
        self.offline = offline
        self.gate = gate

    async def run(self, target: str, keyword: str | None = None):
        self.calls.append((target, keyword))
        if self.gate is not None:
            await self.gate.wait()
        if self.offline:
            return self.make_report(
                target=target,
                availability=AvailabilityResult(status=AvailabilityStatus.OFFLINE, status_code=503),
            )
        return self.make_report(target=target)


class RecordingChannel:
    def __init__(self, *, fail: bool = False):
        self.sent: list[tuple[list[str], str, str]] = []
        self.fail = fail

    async def send(self, recipients: list[str], subject: str, body: str) -> None:
        self.sent.append((recipients, subject, body))
        if self.fail:
            raise RuntimeError("smtp down")


def test_build_cron_trigger_validates_fields() -> None:
    assert "minute='*/5'" in str(build_cron_trigger("*/5 * * * *"))
    with pytest.raises(ConfigError):
        build_cron_trigger("* * *")
    with pytest.raises(ConfigError):
        build_cron_trigger("99 * * * *")


@pytest.mark.asyncio
async def test_add_get_list_jobs(make_report) -> None:
    scheduler = JobScheduler(FakeAggregator(make_report))
    job = scheduler.add_job("homepage", JOB)
    assert job.id == "homepage"
    assert job.is_active is True
    assert job.last_run is None
    assert job.config.url == "https://example.com"

    assert scheduler.get_job("homepage").config.schedule == "*/5 * * * *"
    assert [j.id for j in scheduler.list_jobs()] == ["homepage"]
    assert scheduler.scheduler.get_job("homepage") is not None
    assert scheduler.get_job("missing") is None


@pytest.mark.asyncio
async def test_duplicate_job_is_rejected_unless_replace_requested(make_report) -> None:
    scheduler = JobScheduler(FakeAggregator(make_report))
    scheduler.add_job("homepage", JOB)
    with pytest.raises(DuplicateJobError):
        scheduler.add_job("homepage", {**JOB, "url": "https://other.example"})
    assert scheduler.get_job("homepage").config.url == "https://example.com"

    replaced = scheduler.add_job("homepage", {**JOB, "url": "https://other.example"}, replace=True)
    assert replaced.config.url == "https://other.example"
    assert len(scheduler.list_jobs()) == 1


@pytest.mark.asyncio
async def test_replace_policy_from_constructor(make_report) -> None:
    scheduler = JobScheduler(FakeAggregator(make_report), replace_duplicates=True)
    scheduler.add_job("homepage", JOB)
    scheduler.add_job("homepage", {**JOB, "schedule": "0 * * * *"})
    assert scheduler.get_job("homepage").config.schedule == "0 * * * *"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "config",
    [
        {"url": "https://example.com"},
        {"schedule": "* * * * *"},
        {"url": "", "schedule": "* * * * *"},
        {"url": "https://example.com", "schedule": "* * *"},
        {"url": "https://example.com", "schedule": "61 * * * *"},
        "not a mapping",
    ],
)
async def test_invalid_job_is_never_created(config, make_report) -> None:
    scheduler = JobScheduler(FakeAggregator(make_report))
    with pytest.raises(ConfigError):
        scheduler.add_job("broken", config)
    assert scheduler.get_job("broken") is None
    assert scheduler.scheduler.get_job("broken") is None


@pytest.mark.asyncio
async def test_remove_job_is_idempotent(make_report) -> None:
    scheduler = JobScheduler(FakeAggregator(make_report))
    scheduler.add_job("homepage", JOB)
    assert scheduler.remove_job("homepage") is True
    assert scheduler.remove_job("homepage") is False
    assert scheduler.remove_job("never-added") is False
    assert scheduler.get_job("homepage") is None
    assert scheduler.scheduler.get_job("homepage") is None
    assert await scheduler.run_job_now("homepage") is None


@pytest.mark.asyncio
async def test_update_job_config_swaps_schedule(make_report) -> None:
    scheduler = JobScheduler(FakeAggregator(make_report))
    scheduler.add_job("homepage", JOB)

    updated = scheduler.update_job_config("homepage", {**JOB, "schedule": "30 6 * * 1"})
    assert updated.config.schedule == "30 6 * * 1"
    trigger = str(scheduler.scheduler.get_job("homepage").trigger)
    assert "minute='30'" in trigger
    assert "hour='6'" in trigger
    assert len(scheduler.list_jobs()) == 1

    assert scheduler.update_job_config("missing", JOB) is None


@pytest.mark.asyncio
async def test_invalid_update_keeps_existing_job(make_report) -> None:
    scheduler = JobScheduler(FakeAggregator(make_report))
    scheduler.add_job("homepage", JOB)
    with pytest.raises(ConfigError):
        scheduler.update_job_config("homepage", {**JOB, "schedule": "nonsense"})
    job = scheduler.get_job("homepage")
    assert job.is_active is True
    assert job.config.schedule == "*/5 * * * *"
    assert "minute='*/5'" in str(scheduler.scheduler.get_job("homepage").trigger)


@pytest.mark.asyncio
async def test_run_job_now_updates_job_and_notifies(make_report) -> None:
    channel = RecordingChannel()
    aggregator = FakeAggregator(make_report, offline=True)
    scheduler = JobScheduler(aggregator, {"recording": channel})
    scheduler.add_job("homepage", {**JOB, "keyword": "Welcome"})

    report = await scheduler.run_job_now("homepage")
    assert report is not None
    assert aggregator.calls == [("https://example.com", "Welcome")]

    job = scheduler.get_job("homepage")
    assert job.last_run == report.observed_at
    assert job.last_report is report
    assert job.last_alerts == ["Website is offline"]

    assert len(channel.sent) == 1
    recipients, subject, body = channel.sent[0]
    assert recipients == ["ops"]
    assert subject == "Website Monitoring Alert - https://example.com"
    assert "- Website is offline" in body


@pytest.mark.asyncio
async def test_no_notification_without_alerts_or_channel(make_report) -> None:
    channel = RecordingChannel()
    scheduler = JobScheduler(FakeAggregator(make_report), {"recording": channel})
    scheduler.add_job("healthy", JOB)
    scheduler.add_job("silent", {"url": "https://example.com", "schedule": "* * * * *"})
    await scheduler.run_job_now("healthy")
    await scheduler.run_job_now("silent")
    assert channel.sent == []


@pytest.mark.asyncio
async def test_notification_failure_does_not_fail_the_job(make_report) -> None:
    channel = RecordingChannel(fail=True)
    scheduler = JobScheduler(FakeAggregator(make_report, offline=True), {"recording": channel})
    scheduler.add_job("homepage", JOB)
    report = await scheduler.run_job_now("homepage")
    assert report is not None
    assert len(channel.sent) == 1
    assert scheduler.get_job("homepage").last_report is report


@pytest.mark.asyncio
async def test_aggregator_failure_stays_inside_the_execution() -> None:
    class BrokenAggregator:
        async def run(self, target, keyword=None):
            raise RuntimeError("boom")

    scheduler = JobScheduler(BrokenAggregator())
    scheduler.add_job("homepage", JOB)
    assert await scheduler.run_job_now("homepage") is None
    assert scheduler.get_job("homepage").last_run is None


@pytest.mark.asyncio
async def test_overlapping_executions_notify_once(make_report) -> None:
    gate = asyncio.Event()
    channel = RecordingChannel()
    aggregator = FakeAggregator(make_report, offline=True, gate=gate)
    scheduler = JobScheduler(aggregator, {"recording": channel})
    scheduler.add_job("homepage", JOB)

    scheduled = asyncio.create_task(scheduler._run_scheduled("homepage"))
    for _ in range(50):
        if aggregator.calls:
            break
        await asyncio.sleep(0.01)
    assert len(aggregator.calls) == 1

    manual = asyncio.create_task(scheduler.run_job_now("homepage"))
    skipped = asyncio.create_task(scheduler._run_scheduled("homepage"))
    await asyncio.sleep(0.05)
    assert skipped.done()
    assert len(aggregator.calls) == 1

    gate.set()
    await scheduled
    report = await manual

    assert report is not None
    assert len(aggregator.calls) == 1
    assert len(channel.sent) == 1
    assert scheduler.get_scheduler_status()["in_flight"] == []


@pytest.mark.asyncio
async def test_removed_job_does_not_notify_for_in_flight_run(make_report) -> None:
    gate = asyncio.Event()
    channel = RecordingChannel()
    aggregator = FakeAggregator(make_report, offline=True, gate=gate)
    scheduler = JobScheduler(aggregator, {"recording": channel})
    scheduler.add_job("homepage", JOB)

    running = asyncio.create_task(scheduler.run_job_now("homepage"))
    await asyncio.sleep(0.01)
    scheduler.remove_job("homepage")
    gate.set()
    await running
    assert channel.sent == []


@pytest.mark.asyncio
async def test_run_job_now_after_update_runs_the_new_config(make_report) -> None:
    gate = asyncio.Event()
    channel = RecordingChannel()
    aggregator = FakeAggregator(make_report, offline=True, gate=gate)
    scheduler = JobScheduler(aggregator, {"recording": channel})
    scheduler.add_job("homepage", {**JOB, "url": "https://old.example"})

    old_run = asyncio.create_task(scheduler.run_job_now("homepage"))
    await asyncio.sleep(0.01)
    assert [url for url, _ in aggregator.calls] == ["https://old.example"]

    scheduler.update_job_config("homepage", {**JOB, "url": "https://new.example"})
    new_run = asyncio.create_task(scheduler.run_job_now("homepage"))
    await asyncio.sleep(0.01)
    assert [url for url, _ in aggregator.calls] == ["https://old.example", "https://new.example"]

    gate.set()
    old_report = await old_run
    report = await new_run

    assert old_report.target == "https://old.example"
    assert report.target == "https://new.example"
    job = scheduler.get_job("homepage")
    assert job.last_report is report
    assert job.last_run == report.observed_at
    assert [subject for _, subject, _ in channel.sent] == ["Website Monitoring Alert - https://new.example"]
    assert scheduler.get_scheduler_status()["in_flight"] == []


@pytest.mark.asyncio
async def test_trigger_after_update_is_not_skipped_for_old_run(make_report) -> None:
    gate = asyncio.Event()
    aggregator = FakeAggregator(make_report, gate=gate)
    scheduler = JobScheduler(aggregator)
    scheduler.add_job("homepage", {**JOB, "url": "https://old.example"})

    old_run = asyncio.create_task(scheduler._run_scheduled("homepage"))
    await asyncio.sleep(0.01)
    scheduler.update_job_config("homepage", {**JOB, "url": "https://new.example"})
    new_run = asyncio.create_task(scheduler._run_scheduled("homepage"))
    await asyncio.sleep(0.01)
    assert [url for url, _ in aggregator.calls] == ["https://old.example", "https://new.example"]

    gate.set()
    await asyncio.gather(old_run, new_run)
    assert scheduler.get_job("homepage").last_report.target == "https://new.example"
