"""
Per-target monitoring state machine.

Each ``TargetMonitor`` owns one ``TargetState`` and drives it from probe outcomes:

- UP + failed probe   -> DOWN: stamp ``down_since``, log, trace (timeout failures
  only), persist the trace, send a DOWN alert.
- DOWN + good probe   -> UP: compute downtime from ``down_since``, log, send an
  UP alert.
- UP + good probe / DOWN + failed probe: nothing beyond the probe itself.

Trace, persistence and notification failures are logged and never change state.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from pathlib import Path
from typing import Awaitable, Callable, Protocol

from portwatch.models import AlertEvent, Status, Target, TargetState
from portwatch.probe import ProbeOutcome, tcp_probe
from portwatch.trace import NO_TRACE_TEXT, TraceResult, capture_trace, persist_trace


LOGGER = logging.getLogger("portwatch.monitor")

Prober = Callable[[str, int, int, float], Awaitable[ProbeOutcome]]
Tracer = Callable[[str], Awaitable[TraceResult]]
Clock = Callable[[], datetime]


class Notifier(Protocol):
    async def notify(self, event: AlertEvent) -> str | None: ...


@dataclass(frozen=True)
class MonitorSettings:
    interval_seconds: int
    timeout_seconds: int
    trace_dir: Path


def zoned_clock(tz: tzinfo | None) -> Clock:
    zone = tz or timezone.utc

    def _now() -> datetime:
        return datetime.now(zone)

    return _now


class TargetMonitor:
    def __init__(
        self,
        target: Target,
        settings: MonitorSettings,
        *,
        notifier: Notifier,
        clock: Clock,
        prober: Prober = tcp_probe,
        tracer: Tracer = capture_trace,
    ) -> None:
        self.target = target
        self.settings = settings
        self.state = TargetState()
        self._notifier = notifier
        self._clock = clock
        self._prober = prober
        self._tracer = tracer

    async def check_once(self) -> Status | None:
        """Run one probe cycle; returns the new status on a transition, else None."""
        t = self.target
        outcome = await self._prober(t.address, t.port, t.family.socket_family, float(self.settings.timeout_seconds))
        LOGGER.debug("Probe %s ok=%s kind=%s", t.describe(), outcome.ok, outcome.kind)

        if outcome.ok:
            if self.state.is_down:
                await self._recover()
                return Status.UP
            return None

        if not self.state.is_down:
            await self._go_down(outcome)
            return Status.DOWN
        return None

    async def _go_down(self, outcome: ProbeOutcome) -> None:
        t = self.target
        now = self._clock()
        self.state.mark_down(now)
        LOGGER.warning(
            "Target DOWN family=%s name=%s address=%s port=%s kind=%s error=%s",
            t.family.label,
            t.display_name,
            t.address,
            t.port,
            outcome.kind,
            outcome.message,
        )

        if outcome.is_timeout:
            result = await self._tracer(t.address)
            if result.error:
                LOGGER.warning("Trace failed address=%s error=%s", t.address, result.error)
            trace_text = result.text
            if trace_text:
                path = persist_trace(trace_text, now, t, self.settings.trace_dir)
                if path is not None:
                    LOGGER.info("Trace saved path=%s", path)
        else:
            trace_text = NO_TRACE_TEXT

        await self._send(
            AlertEvent(
                direction=Status.DOWN,
                target=t,
                timestamp=now,
                interval_seconds=self.settings.interval_seconds,
                timeout_seconds=self.settings.timeout_seconds,
                error=outcome.message,
                trace=trace_text,
            )
        )

    async def _recover(self) -> None:
        t = self.target
        now = self._clock()
        down_since = self.state.down_since or now
        # Half-up to the whole second.
        downtime_seconds = int(max(0.0, (now - down_since).total_seconds()) + 0.5)
        self.state.mark_up()
        LOGGER.info(
            "Target UP family=%s name=%s address=%s port=%s downtime=%ss",
            t.family.label,
            t.display_name,
            t.address,
            t.port,
            downtime_seconds,
        )
        await self._send(
            AlertEvent(
                direction=Status.UP,
                target=t,
                timestamp=now,
                interval_seconds=self.settings.interval_seconds,
                timeout_seconds=self.settings.timeout_seconds,
                downtime_seconds=downtime_seconds,
            )
        )

    async def _send(self, event: AlertEvent) -> None:
        err = await self._notifier.notify(event)
        if err:
            LOGGER.warning(
                "Alert delivery failed direction=%s target=%s error=%s",
                event.direction.value,
                self.target.describe(),
                err,
            )

    async def run(self, stop: asyncio.Event) -> None:
        """Probe forever, one cycle per interval, until ``stop`` is set."""
        while not stop.is_set():
            try:
                await self.check_once()
            except asyncio.CancelledError:
                raise
            except Exception as err:
                LOGGER.exception("Check cycle crashed target=%s error=%s", self.target.describe(), err)

            try:
                await asyncio.wait_for(stop.wait(), timeout=self.settings.interval_seconds)
            except asyncio.TimeoutError:
                pass
