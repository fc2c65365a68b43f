from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

import httpx

from portwatch.config import DEFAULT_CONFIG_PATH, ConfigError, Settings, load_settings, resolve_hostname
from portwatch.log_sink import RotatingLogSink, configure_logging
from portwatch.monitor import MonitorSettings, TargetMonitor, zoned_clock
from portwatch.notifier import WEBHOOK_TIMEOUT_SECONDS, WebhookNotifier
from portwatch.supervisor import Supervisor, build_targets


LOGGER = logging.getLogger("portwatch")


def _install_signal_handlers(supervisor: Supervisor) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, supervisor.stop)
        except (NotImplementedError, RuntimeError):
            # Windows event loops have no signal handler support.
            pass


async def run(settings: Settings) -> int:
    targets = build_targets(settings.targets)
    monitor_settings = MonitorSettings(
        interval_seconds=settings.interval_seconds,
        timeout_seconds=settings.timeout_seconds,
        trace_dir=settings.trace_dir,
    )
    clock = zoned_clock(settings.tz)

    LOGGER.info(
        "starting port monitor: targets=%d delay=%ds timeout=%ds timezone=%s",
        len(targets),
        settings.interval_seconds,
        settings.timeout_seconds,
        settings.timezone_name,
    )

    async with httpx.AsyncClient(timeout=WEBHOOK_TIMEOUT_SECONDS) as client:
        notifier = WebhookNotifier(client=client, webhook_url=settings.webhook, hostname=resolve_hostname(settings))
        supervisor = Supervisor(
            [TargetMonitor(t, monitor_settings, notifier=notifier, clock=clock) for t in targets]
        )
        _install_signal_handlers(supervisor)
        supervisor.start()
        await supervisor.wait()

    LOGGER.info("port monitor stopped")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="TCP port reachability monitor with webhook alerts")
    parser.add_argument(
        "config",
        nargs="?",
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to JSON or YAML config (default: {DEFAULT_CONFIG_PATH})",
    )
    args = parser.parse_args(argv)
    log_level = os.getenv("LOG_LEVEL", "INFO")

    try:
        settings = load_settings(Path(args.config))
    except ConfigError as err:
        print(f"cannot load config: {err}", file=sys.stderr)
        return 1

    try:
        sink = RotatingLogSink(settings.log_file)
    except OSError as err:
        print(f"cannot set up log file {settings.log_file}: {err}", file=sys.stderr)
        return 1

    with sink:
        formatter = configure_logging(sink, level=log_level)
        formatter.tz = settings.tz
        try:
            return asyncio.run(run(settings))
        except ConfigError as err:
            LOGGER.error("Startup failed: %s", err)
            return 1
        finally:
            root = logging.getLogger()
            for handler in list(root.handlers):
                if handler.formatter is formatter:
                    handler.flush()
                    root.removeHandler(handler)


if __name__ == "__main__":
    raise SystemExit(main())
