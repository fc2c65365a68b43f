from __future__ import annotations

import asyncio
from dataclasses import dataclass


TIMEOUT = "timeout"
OTHER = "other"


@dataclass(frozen=True)
class ProbeOutcome:
    ok: bool
    kind: str | None = None  # TIMEOUT | OTHER when ok is False
    message: str = ""

    @property
    def is_timeout(self) -> bool:
        return not self.ok and self.kind == TIMEOUT

    @classmethod
    def success(cls) -> ProbeOutcome:
        return cls(ok=True)

    @classmethod
    def failure(cls, kind: str, message: str) -> ProbeOutcome:
        return cls(ok=False, kind=kind, message=message)


async def tcp_probe(address: str, port: int, family: int, timeout_seconds: float) -> ProbeOutcome:
    """
    Open one TCP connection to ``address:port`` over the given socket family and
    close it again without exchanging data.

    Never raises: failures come back classified as ``timeout`` (the bound elapsed,
    or the kernel gave up with ETIMEDOUT) or ``other`` (refused, unreachable,
    resolution failure, ...).
    """
    writer = None
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(host=address, port=int(port), family=family),
            timeout=float(timeout_seconds),
        )
        return ProbeOutcome.success()
    except (asyncio.TimeoutError, TimeoutError) as exc:
        detail = str(exc).strip() or f"no connection within {float(timeout_seconds):g}s"
        return ProbeOutcome.failure(TIMEOUT, f"connect {_join_host_port(address, port)} timed out: {detail}")
    except (OSError, ValueError, OverflowError) as exc:
        return ProbeOutcome.failure(OTHER, f"connect {_join_host_port(address, port)} failed: {type(exc).__name__}: {exc}")
    finally:
        if writer is not None:
            try:
                writer.close()
                await writer.wait_closed()
            except Exception:
                pass


def _join_host_port(address: str, port: int) -> str:
    if ":" in address:
        return f"[{address}]:{port}"
    return f"{address}:{port}"
