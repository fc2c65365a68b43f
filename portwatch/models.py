from __future__ import annotations

import socket
from dataclasses import dataclass
from datetime import datetime
from enum import Enum


UNNAMED_TARGET = "-"


class Status(str, Enum):
    UP = "UP"
    DOWN = "DOWN"


class Family(str, Enum):
    V4 = "v4"
    V6 = "v6"

    @property
    def label(self) -> str:
        return "IPv4" if self is Family.V4 else "IPv6"

    @property
    def socket_family(self) -> int:
        return socket.AF_INET if self is Family.V4 else socket.AF_INET6


@dataclass(frozen=True)
class Target:
    """One (address, port, family) tuple under independent monitoring."""

    name: str
    address: str
    family: Family
    port: int

    @property
    def display_name(self) -> str:
        return self.name or UNNAMED_TARGET

    def describe(self) -> str:
        return f"{self.family.label} {self.display_name} {self.address}:{self.port}"


@dataclass
class TargetState:
    status: Status = Status.UP
    down_since: datetime | None = None

    @property
    def is_down(self) -> bool:
        return self.status is Status.DOWN

    def mark_down(self, now: datetime) -> None:
        self.status = Status.DOWN
        self.down_since = now

    def mark_up(self) -> None:
        self.status = Status.UP
        self.down_since = None


@dataclass(frozen=True)
class AlertEvent:
    """
    Transient record handed to the notifier for one transition.

    ``error`` and ``trace`` are only meaningful for DOWN events, ``downtime_seconds``
    only for UP events.
    """

    direction: Status
    target: Target
    timestamp: datetime
    interval_seconds: int
    timeout_seconds: int
    error: str | None = None
    trace: str | None = None
    downtime_seconds: int | None = None
