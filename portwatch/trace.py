from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Sequence

from portwatch.models import Target


LOGGER = logging.getLogger("portwatch.trace")

# mtr report mode: wide, both names and IPs, AS lookup, 10 cycles.
MTR_COMMAND: tuple[str, ...] = ("mtr", "-rwbzc", "10")
NO_TRACE_TEXT = "no mtr (non-timeout error)"
TRACE_FILE_TIME_FORMAT = "%Y-%m-%d_%H-%M-%S"
UNNAMED_TRACE_TARGET = "target"

_UNSAFE_NAME_RE = re.compile(r"[^\w.-]+")


@dataclass(frozen=True)
class TraceResult:
    text: str
    error: str | None = None


async def capture_trace(address: str, *, command: Sequence[str] = MTR_COMMAND) -> TraceResult:
    """
    Run the route tracer against ``address`` and return its combined stdout/stderr.

    Never raises. When the tool cannot be started or exits non-zero, ``error`` is set
    and ``text`` is an explanatory prefix followed by whatever output was produced.
    """
    argv = [*command, address]
    output = ""
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        try:
            raw, _ = await proc.communicate()
        except asyncio.CancelledError:
            if proc.returncode is None:
                proc.kill()
            raise
        output = (raw or b"").decode("utf-8", errors="replace")
        if proc.returncode != 0:
            error = f"exit status {proc.returncode}"
        else:
            return TraceResult(text=output)
    except FileNotFoundError:
        error = f"executable not found: {argv[0]}"
    except OSError as exc:
        error = f"{type(exc).__name__}: {exc}"

    return TraceResult(text=f"mtr error: {error}\n\n{output}", error=error)


def trace_filename(target: Target, ts: datetime) -> str:
    name = _UNSAFE_NAME_RE.sub("_", target.name.strip()) or UNNAMED_TRACE_TARGET
    return f"{ts.strftime(TRACE_FILE_TIME_FORMAT)}_{name}_{target.family.label}_{target.port}.txt"


def persist_trace(text: str, ts: datetime, target: Target, directory: Path) -> Path | None:
    """Write one incident trace below ``directory``; logs and returns None on failure."""
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        LOGGER.warning("Cannot create trace dir path=%s error=%s", directory, exc)
        return None

    path = directory / trace_filename(target, ts)
    try:
        path.write_text(text, encoding="utf-8")
    except OSError as exc:
        LOGGER.warning("Cannot write trace file path=%s error=%s", path, exc)
        return None
    return path
