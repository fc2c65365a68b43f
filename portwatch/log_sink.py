from __future__ import annotations

import logging
import os
import sys
import threading
from datetime import datetime, tzinfo
from pathlib import Path
from typing import IO


MAX_LOG_BYTES = 50 * 1024 * 1024
BACKUP_SUFFIX = ".1"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


class RotatingLogSink:
    """
    Append-only log file with single-generation, size-triggered rotation.

    A write that would push the active file past ``max_bytes`` first moves the
    active file to ``<path>.1`` (replacing any older backup) and starts a fresh
    file. Size check, rotation and append happen under one lock so concurrent
    writers never interleave inside a rotation.
    """

    def __init__(self, path: str | Path, max_bytes: int = MAX_LOG_BYTES) -> None:
        self.path = Path(path)
        self.backup_path = self.path.with_name(self.path.name + BACKUP_SUFFIX)
        self.max_bytes = int(max_bytes)
        self._lock = threading.Lock()
        self._file: IO[bytes] | None = None
        self._open()

    def _open(self) -> IO[bytes]:
        if self._file is not None:
            self._file.close()
        self._file = open(self.path, "ab")
        return self._file

    def _rotate(self) -> IO[bytes]:
        if self._file is not None:
            self._file.close()
            self._file = None
        try:
            os.replace(self.path, self.backup_path)
        except FileNotFoundError:
            pass
        self._file = open(self.path, "wb")
        return self._file

    def write(self, data: str | bytes) -> int:
        raw = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        with self._lock:
            f = self._file if self._file is not None else self._open()
            if os.fstat(f.fileno()).st_size + len(raw) > self.max_bytes:
                f = self._rotate()
            f.write(raw)
            f.flush()
        return len(data)

    def flush(self) -> None:
        with self._lock:
            if self._file is not None:
                self._file.flush()

    def close(self) -> None:
        with self._lock:
            if self._file is not None:
                self._file.close()
                self._file = None

    def __enter__(self) -> RotatingLogSink:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class ZonedFormatter(logging.Formatter):
    """Formatter rendering ``asctime`` in an explicit zone (host local zone when ``tz`` is None)."""

    default_time_format = "%Y-%m-%d %H:%M:%S"

    def __init__(self, fmt: str = LOG_FORMAT, *, tz: tzinfo | None = None) -> None:
        super().__init__(fmt)
        self.tz = tz

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:  # noqa: N802
        dt = datetime.fromtimestamp(record.created, self.tz)
        if self.tz is None:
            dt = dt.astimezone()
        return dt.strftime(datefmt or self.default_time_format)


def configure_logging(sink: RotatingLogSink, *, level: str = "INFO") -> ZonedFormatter:
    formatter = ZonedFormatter()
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout), logging.StreamHandler(sink)]
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        handlers=handlers,
        force=True,
    )

    # Webhook URLs embed their secret token; keep request lines out of the log.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    return formatter
