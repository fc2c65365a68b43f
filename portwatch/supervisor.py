from __future__ import annotations

import asyncio
import logging
from typing import Iterable

from portwatch.config import ConfigError, TargetConfig
from portwatch.models import Family, Target
from portwatch.monitor import TargetMonitor


LOGGER = logging.getLogger("portwatch.supervisor")

MAX_PORT = 65535


def build_targets(target_configs: Iterable[TargetConfig]) -> list[Target]:
    """
    Expand configured entries into monitored targets, one per populated address family.

    Entries without a usable port or without any address are skipped; ending up with
    no targets at all is a ``ConfigError``.
    """
    targets: list[Target] = []
    for tc in target_configs:
        if not 0 < tc.dport <= MAX_PORT:
            continue
        if tc.ipv4:
            targets.append(Target(name=tc.name, address=tc.ipv4, family=Family.V4, port=tc.dport))
        if tc.ipv6:
            targets.append(Target(name=tc.name, address=tc.ipv6, family=Family.V6, port=tc.dport))
    if not targets:
        raise ConfigError("no valid targets (missing IPs or ports)")
    return targets


class Supervisor:
    def __init__(self, monitors: list[TargetMonitor]) -> None:
        if not monitors:
            raise ConfigError("no valid targets (missing IPs or ports)")
        self.monitors = monitors
        self.stop_event = asyncio.Event()
        self._tasks: list[asyncio.Task] = []

    def start(self) -> list[asyncio.Task]:
        """Launch one independent loop per monitor; returns once all are scheduled."""
        for monitor in self.monitors:
            LOGGER.info("Monitoring %s", monitor.target.describe())
            task = asyncio.create_task(monitor.run(self.stop_event), name=f"monitor:{monitor.target.describe()}")
            self._tasks.append(task)
        return list(self._tasks)

    def stop(self) -> None:
        self.stop_event.set()

    async def wait(self) -> None:
        if self._tasks:
            await asyncio.gather(*self._tasks)
