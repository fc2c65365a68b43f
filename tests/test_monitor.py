from __future__ import annotations

import asyncio
import socket
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from portwatch.models import AlertEvent, Family, Status, Target
from portwatch.monitor import MonitorSettings, TargetMonitor
from portwatch.probe import OTHER, TIMEOUT, ProbeOutcome
from portwatch.trace import NO_TRACE_TEXT, TraceResult


T0 = datetime(2024, 3, 1, 8, 0, 0, tzinfo=timezone.utc)
TIMED_OUT = ProbeOutcome.failure(TIMEOUT, "connect 192.0.2.1:443 timed out: no connection within 2s")
REFUSED = ProbeOutcome.failure(OTHER, "connect 192.0.2.1:443 failed: ConnectionRefusedError: refused")
OK = ProbeOutcome.success()


class FakeProber:
    def __init__(self, outcomes: list[ProbeOutcome]) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[tuple[str, int, int, float]] = []

    async def __call__(self, address: str, port: int, family: int, timeout: float) -> ProbeOutcome:
        self.calls.append((address, port, family, timeout))
        return self.outcomes.pop(0) if self.outcomes else OK


class FakeTracer:
    def __init__(self, result: TraceResult | None = None) -> None:
        self.result = result or TraceResult(text="HOST: hop1\n  1. 10.0.0.1\n")
        self.calls: list[str] = []

    async def __call__(self, address: str) -> TraceResult:
        self.calls.append(address)
        return self.result


class FakeNotifier:
    def __init__(self, error: str | None = None) -> None:
        self.events: list[AlertEvent] = []
        self.error = error

    async def notify(self, event: AlertEvent) -> str | None:
        self.events.append(event)
        return self.error


class FakeClock:
    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)

    def __call__(self) -> datetime:
        return self.now


def _make(
    tmp_path: Path,
    outcomes: list[ProbeOutcome],
    *,
    tracer: FakeTracer | None = None,
    notifier: FakeNotifier | None = None,
    target: Target | None = None,
    interval: int = 30,
) -> tuple[TargetMonitor, FakeProber, FakeTracer, FakeNotifier, FakeClock]:
    prober = FakeProber(outcomes)
    tracer = tracer or FakeTracer()
    notifier = notifier or FakeNotifier()
    clock = FakeClock()
    monitor = TargetMonitor(
        target or Target(name="web", address="192.0.2.1", family=Family.V4, port=443),
        MonitorSettings(interval_seconds=interval, timeout_seconds=2, trace_dir=tmp_path / "mtr"),
        notifier=notifier,
        clock=clock,
        prober=prober,
        tracer=tracer,
    )
    return monitor, prober, tracer, notifier, clock


@pytest.mark.asyncio
async def test_timeout_goes_down_with_trace_and_alert(tmp_path: Path) -> None:
    monitor, prober, tracer, notifier, _ = _make(tmp_path, [TIMED_OUT])

    assert await monitor.check_once() is Status.DOWN

    assert prober.calls == [("192.0.2.1", 443, socket.AF_INET, 2.0)]
    assert monitor.state.status is Status.DOWN
    assert monitor.state.down_since == T0
    assert tracer.calls == ["192.0.2.1"]
    assert len(notifier.events) == 1
    event = notifier.events[0]
    assert event.direction is Status.DOWN
    assert event.error == TIMED_OUT.message
    assert event.trace == "HOST: hop1\n  1. 10.0.0.1\n"
    assert event.interval_seconds == 30
    assert event.timeout_seconds == 2
    saved = list((tmp_path / "mtr").iterdir())
    assert [p.name for p in saved] == ["2024-03-01_08-00-00_web_IPv4_443.txt"]
    assert saved[0].read_text(encoding="utf-8") == "HOST: hop1\n  1. 10.0.0.1\n"


@pytest.mark.asyncio
async def test_recovery_reports_rounded_downtime_without_trace(tmp_path: Path) -> None:
    monitor, _, tracer, notifier, clock = _make(tmp_path, [TIMED_OUT, OK])

    await monitor.check_once()
    clock.advance(125.6)
    assert await monitor.check_once() is Status.UP

    assert monitor.state.status is Status.UP
    assert monitor.state.down_since is None
    assert tracer.calls == ["192.0.2.1"]
    up = notifier.events[-1]
    assert up.direction is Status.UP
    assert up.downtime_seconds == 126
    assert up.timestamp == T0 + timedelta(seconds=125.6)
    assert up.trace is None


@pytest.mark.asyncio
async def test_refusal_goes_down_without_trace(tmp_path: Path) -> None:
    monitor, _, tracer, notifier, _ = _make(tmp_path, [REFUSED])

    assert await monitor.check_once() is Status.DOWN

    assert tracer.calls == []
    assert notifier.events[0].trace == NO_TRACE_TEXT
    assert notifier.events[0].error == REFUSED.message
    assert not (tmp_path / "mtr").exists()


@pytest.mark.asyncio
async def test_self_transitions_produce_no_alerts(tmp_path: Path) -> None:
    monitor, _, tracer, notifier, clock = _make(tmp_path, [OK, OK, TIMED_OUT, TIMED_OUT, REFUSED, OK, OK])

    transitions = []
    for _ in range(7):
        transitions.append(await monitor.check_once())
        clock.advance(30)

    assert transitions == [None, None, Status.DOWN, None, None, Status.UP, None]
    assert [e.direction for e in notifier.events] == [Status.DOWN, Status.UP]
    assert len(tracer.calls) == 1
    # down_since set once at the edge (third probe) and used once at recovery.
    assert notifier.events[1].downtime_seconds == 90


@pytest.mark.asyncio
async def test_notification_failure_does_not_change_state(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    monitor, _, _, notifier, _ = _make(tmp_path, [REFUSED, REFUSED], notifier=FakeNotifier(error="webhook status 500"))

    with caplog.at_level("WARNING", logger="portwatch.monitor"):
        await monitor.check_once()
        await monitor.check_once()

    assert monitor.state.status is Status.DOWN
    assert len(notifier.events) == 1
    assert "Alert delivery failed" in caplog.text
    assert "webhook status 500" in caplog.text


@pytest.mark.asyncio
async def test_trace_failure_text_is_sent_and_logged(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    failed = TraceResult(text="mtr error: exit status 1\n\npartial", error="exit status 1")
    monitor, _, _, notifier, _ = _make(tmp_path, [TIMED_OUT], tracer=FakeTracer(failed))

    with caplog.at_level("WARNING", logger="portwatch.monitor"):
        await monitor.check_once()

    assert notifier.events[0].trace == "mtr error: exit status 1\n\npartial"
    assert "Trace failed" in caplog.text
    assert len(list((tmp_path / "mtr").iterdir())) == 1


@pytest.mark.asyncio
async def test_dual_stack_targets_have_independent_state(tmp_path: Path) -> None:
    notifier = FakeNotifier()
    v4, _, _, _, _ = _make(
        tmp_path,
        [REFUSED],
        notifier=notifier,
        target=Target(name="web", address="192.0.2.1", family=Family.V4, port=443),
    )
    v6, v6_prober, _, _, _ = _make(
        tmp_path,
        [OK],
        notifier=notifier,
        target=Target(name="web", address="2001:db8::1", family=Family.V6, port=443),
    )

    await v4.check_once()
    await v6.check_once()

    assert v4.state.status is Status.DOWN
    assert v6.state.status is Status.UP
    assert v6_prober.calls[0][2] == socket.AF_INET6
    assert [e.target.family for e in notifier.events] == [Family.V4]


@pytest.mark.asyncio
async def test_run_loop_survives_crashing_cycle_and_stops(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    calls = 0

    async def _flaky(address: str, port: int, family: int, timeout: float) -> ProbeOutcome:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise RuntimeError("boom")
        if calls >= 3:
            stop.set()
        return OK

    stop = asyncio.Event()
    monitor, _, _, _, _ = _make(tmp_path, [], interval=0)
    monitor._prober = _flaky

    with caplog.at_level("ERROR", logger="portwatch.monitor"):
        await asyncio.wait_for(monitor.run(stop), timeout=5.0)

    assert calls == 3
    assert "Check cycle crashed" in caplog.text


@pytest.mark.asyncio
async def test_unwritable_trace_dir_still_sends_down_alert(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    blocker = tmp_path / "mtr-file"
    blocker.write_text("not a directory", encoding="utf-8")
    notifier = FakeNotifier()
    monitor = TargetMonitor(
        Target(name="web", address="192.0.2.1", family=Family.V4, port=443),
        MonitorSettings(interval_seconds=30, timeout_seconds=2, trace_dir=blocker),
        notifier=notifier,
        clock=FakeClock(),
        prober=FakeProber([TIMED_OUT]),
        tracer=FakeTracer(),
    )

    with caplog.at_level("WARNING", logger="portwatch.trace"):
        assert await monitor.check_once() is Status.DOWN

    assert monitor.state.status is Status.DOWN
    assert [e.direction for e in notifier.events] == [Status.DOWN]
    assert notifier.events[0].trace == "HOST: hop1\n  1. 10.0.0.1\n"
    assert "Cannot create trace dir" in caplog.text
    assert blocker.read_text(encoding="utf-8") == "not a directory"
