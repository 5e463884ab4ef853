"""Command line entry point: ad-hoc checks and the scheduled job service."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import signal
import sys
from typing import Any, Optional

import httpx
import structlog

from .aggregator import ProbeAggregator
from .config import HostwatchConfig, load_config
from .errors import HostwatchError, error_payload, not_found
from .log import configure_logging
from .notifications import LogChannel, NotificationChannel, TelegramChannel
from .report import recommendations
from .scheduler import JobScheduler

logger = structlog.get_logger(__name__)


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def build_channels(config: HostwatchConfig, client: httpx.AsyncClient) -> dict[str, NotificationChannel]:
    channels: dict[str, NotificationChannel] = {"log": LogChannel()}
    if config.telegram.bot_token:
        channels["telegram"] = TelegramChannel(
            config.telegram.bot_token,
            default_chat_id=config.telegram.chat_id,
            client=client,
        )
    return channels


async def run_check(config: HostwatchConfig, url: str, keyword: Optional[str]) -> dict[str, Any]:
    async with httpx.AsyncClient() as client:
        aggregator = ProbeAggregator(config.probes, client=client)
        report = await aggregator.run(url, keyword)
    data = report.to_dict()
    data["recommendations"] = recommendations(report)
    return data


async def run_service(config: HostwatchConfig, *, once: bool = False) -> int:
    async with httpx.AsyncClient() as client:
        scheduler = JobScheduler(
            ProbeAggregator(config.probes, client=client),
            build_channels(config, client),
            timezone_name=config.timezone,
            replace_duplicates=config.replace_duplicate_jobs,
        )
        for definition in config.jobs:
            scheduler.add_job(definition.id, definition.config)

        if not config.jobs:
            logger.warning("No jobs configured")

        if once:
            results = []
            for definition in config.jobs:
                report = await scheduler.run_job_now(definition.id)
                if report is None:
                    results.append({"id": definition.id, **not_found(definition.id)})
                    continue
                job = scheduler.get_job(definition.id)
                results.append(
                    {
                        "id": definition.id,
                        "healthScore": report.to_dict()["healthScore"],
                        "alerts": job.last_alerts if job else [],
                    }
                )
            _print_json(results)
            return 0

        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)

        await scheduler.start()
        logger.info("Service running", status=scheduler.get_scheduler_status())
        try:
            await stop_event.wait()
        finally:
            await scheduler.stop()
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="hostwatch", description="Host health monitoring")
    parser.add_argument("--config", default=None, help="Path to YAML config (default: $HOSTWATCH_CONFIG)")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (INFO, WARNING, ...); overrides the config file",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    check = sub.add_parser("check", help="Run all probes once against a URL and print the report")
    check.add_argument("url", help="Target URL")
    check.add_argument("--keyword", default=None, help="Keyword to count in the response body")

    serve = sub.add_parser("serve", help="Run configured jobs on their cron schedules")
    serve.add_argument("--once", action="store_true", help="Run every job one time and exit")

    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except HostwatchError as exc:
        _print_json(error_payload(exc))
        return 2

    configure_logging(args.log_level or os.getenv("LOG_LEVEL") or config.log_level, json_output=config.json_logs)

    try:
        if args.command == "check":
            _print_json(asyncio.run(run_check(config, args.url, args.keyword)))
            return 0
        return asyncio.run(run_service(config, once=bool(args.once)))
    except HostwatchError as exc:
        _print_json(error_payload(exc))
        return 2
    except KeyboardInterrupt:
        print("interrupted", file=sys.stderr)
        return 130
