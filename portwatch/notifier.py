from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx

from portwatch.models import AlertEvent, Status


WEBHOOK_TIMEOUT_SECONDS = 10.0
DOWN_COLOR = 0xFF0000
UP_COLOR = 0x00FF00
DOWN_TITLE = "Port monitor alert (DOWN)"
UP_TITLE = "Port monitor recovery (UP)"

# Discord embed limits.
EMBED_DESCRIPTION_MAX_LEN = 4096
EMBED_FIELD_VALUE_MAX_LEN = 1024

_TRACE_FENCE_OPEN = "```text\n"
_TRACE_FENCE_CLOSE = "\n```"
_TRUNCATED_MARK = "\n... (truncated)"


def format_duration(seconds: int) -> str:
    seconds = max(0, int(seconds))
    hours, rem = divmod(seconds, 3600)
    minutes, secs = divmod(rem, 60)
    if hours:
        return f"{hours}h {minutes:02}m {secs:02}s"
    if minutes:
        return f"{minutes}m {secs:02}s"
    return f"{secs}s"


def _clip(text: str, max_len: int) -> str:
    if len(text) <= max_len:
        return text
    keep = max(0, max_len - len(_TRUNCATED_MARK))
    return text[:keep].rstrip() + _TRUNCATED_MARK


def trace_excerpt(trace: str) -> str:
    budget = EMBED_DESCRIPTION_MAX_LEN - len(_TRACE_FENCE_OPEN) - len(_TRACE_FENCE_CLOSE)
    return _TRACE_FENCE_OPEN + _clip(trace, budget) + _TRACE_FENCE_CLOSE


def _field(name: str, value: Any, *, inline: bool = True) -> dict[str, Any]:
    text = str(value) if value not in (None, "") else "-"
    return {"name": name, "value": _clip(text, EMBED_FIELD_VALUE_MAX_LEN), "inline": inline}


def build_alert_payload(event: AlertEvent, *, hostname: str) -> dict[str, Any]:
    t = event.target
    fields = [
        _field("Target", t.display_name),
        _field("Hostname", hostname),
        _field("IP", t.address),
        _field("IP Version", t.family.label),
        _field("Port", t.port),
        _field("Delay (s)", event.interval_seconds),
        _field("Timeout (s)", event.timeout_seconds),
        _field("Status", event.direction.value),
    ]

    embed: dict[str, Any] = {"timestamp": event.timestamp.isoformat(timespec="seconds")}
    if event.direction is Status.DOWN:
        fields.append(_field("Error", event.error, inline=False))
        embed.update(title=DOWN_TITLE, color=DOWN_COLOR)
        if event.trace:
            embed["description"] = trace_excerpt(event.trace)
    else:
        fields.append(_field("Downtime", format_duration(event.downtime_seconds or 0), inline=False))
        embed.update(title=UP_TITLE, color=UP_COLOR)

    embed["fields"] = fields
    return {"embeds": [embed]}


async def send_webhook(client: httpx.AsyncClient, url: str, payload: dict[str, Any]) -> str | None:
    """POST ``payload`` as JSON; returns None on any 2xx response, else an error string."""
    try:
        resp = await client.post(url, json=payload, timeout=WEBHOOK_TIMEOUT_SECONDS)
    except httpx.HTTPError as exc:
        msg = f"{type(exc).__name__}: {exc}"
        # The webhook URL carries its token in the path.
        return msg.replace(url, "<webhook>") if url else msg
    if not 200 <= resp.status_code < 300:
        return f"webhook status {resp.status_code}"
    return None


@dataclass
class WebhookNotifier:
    client: httpx.AsyncClient
    webhook_url: str
    hostname: str

    async def notify(self, event: AlertEvent) -> str | None:
        payload = build_alert_payload(event, hostname=self.hostname)
        return await send_webhook(self.client, self.webhook_url, payload)
