from __future__ import annotations

import json
import socket
from dataclasses import dataclass, field
from datetime import tzinfo
from pathlib import Path
from typing import Any

import yaml
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


DEFAULT_CONFIG_PATH = "config.json"
DEFAULT_INTERVAL_SECONDS = 30
DEFAULT_TIMEOUT_SECONDS = 5
DEFAULT_TIMEZONE = "Europe/Berlin"
DEFAULT_LOG_FILE = "portwatch.log"
DEFAULT_TRACE_DIR = "mtr"
LEGACY_TARGET_NAME = "default"


class ConfigError(ValueError):
    """Configuration problem that prevents the monitor from starting."""


@dataclass(frozen=True)
class TargetConfig:
    name: str = ""
    ipv4: str = ""
    ipv6: str = ""
    dport: int = 0


@dataclass(frozen=True)
class Settings:
    webhook: str
    targets: list[TargetConfig]
    interval_seconds: int = DEFAULT_INTERVAL_SECONDS
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS
    timezone_name: str = DEFAULT_TIMEZONE
    tz: tzinfo = field(default_factory=lambda: ZoneInfo(DEFAULT_TIMEZONE))
    hostname: str = ""
    log_file: Path = Path(DEFAULT_LOG_FILE)
    trace_dir: Path = Path(DEFAULT_TRACE_DIR)


def load_config(path: Path) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            if path.suffix.lower() == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f) or {}
    except OSError as exc:
        raise ConfigError(f"cannot read config {path}: {exc}") from exc
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigError(f"cannot parse config {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError("Config must be a mapping")
    return data


def _coerce_positive_int(value: Any, *, default: int) -> int:
    # Zero, negative and non-numeric values all mean "not set".
    if isinstance(value, bool):
        return default
    try:
        n = int(value)
    except (TypeError, ValueError):
        return default
    return n if n > 0 else default


def _clean_str(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _parse_target(idx: int, raw: Any) -> TargetConfig:
    if not isinstance(raw, dict):
        raise ConfigError(f"targets[{idx}] must be a mapping, got {type(raw).__name__}")
    return TargetConfig(
        name=_clean_str(raw.get("name")),
        ipv4=_clean_str(raw.get("ipv4")),
        ipv6=_clean_str(raw.get("ipv6")),
        dport=_coerce_positive_int(raw.get("dport"), default=0),
    )


def _parse_targets(config: dict[str, Any]) -> list[TargetConfig]:
    raw_targets = config.get("targets") or []
    if not isinstance(raw_targets, list):
        raise ConfigError("'targets' must be a list")
    targets = [_parse_target(idx, raw) for idx, raw in enumerate(raw_targets)]
    if targets:
        return targets

    # Older configs describe a single target with top-level ipv4/ipv6/dport keys.
    legacy = TargetConfig(
        name=LEGACY_TARGET_NAME,
        ipv4=_clean_str(config.get("ipv4")),
        ipv6=_clean_str(config.get("ipv6")),
        dport=_coerce_positive_int(config.get("dport"), default=0),
    )
    if legacy.ipv4 or legacy.ipv6 or legacy.dport:
        return [legacy]
    return []


def load_timezone(name: str) -> tzinfo:
    cleaned = (name or "").strip() or DEFAULT_TIMEZONE
    try:
        return ZoneInfo(cleaned)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigError(f"cannot load timezone {cleaned!r}: {exc}") from exc


def parse_settings(config: dict[str, Any]) -> Settings:
    targets = _parse_targets(config)

    webhook = _clean_str(config.get("webhook"))
    if not webhook:
        raise ConfigError("webhook missing in config")

    timezone_name = _clean_str(config.get("timezone")) or DEFAULT_TIMEZONE
    tz = load_timezone(timezone_name)

    if not targets:
        raise ConfigError("no targets configured")

    return Settings(
        webhook=webhook,
        targets=targets,
        interval_seconds=_coerce_positive_int(config.get("delay"), default=DEFAULT_INTERVAL_SECONDS),
        timeout_seconds=_coerce_positive_int(config.get("timeout"), default=DEFAULT_TIMEOUT_SECONDS),
        timezone_name=timezone_name,
        tz=tz,
        hostname=_clean_str(config.get("hostname")),
        log_file=Path(_clean_str(config.get("log_file")) or DEFAULT_LOG_FILE),
        trace_dir=Path(_clean_str(config.get("trace_dir")) or DEFAULT_TRACE_DIR),
    )


def load_settings(path: Path) -> Settings:
    return parse_settings(load_config(path))


def resolve_hostname(settings: Settings) -> str:
    if settings.hostname:
        return settings.hostname
    try:
        return socket.gethostname() or "unknown"
    except OSError:
        return "unknown"
