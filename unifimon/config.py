"""Configuration loading for unifimon.

Loads settings from TOML config files with sensible defaults.
Search order: explicit --config path → ~/.config/unifimon/config.toml → defaults only.

Controller credentials are never read from the file: they come from the
command line or the ``UNIFI_URL`` / ``UNIFI_API_KEY`` environment variables.
"""

from __future__ import annotations

import sys
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any

DEFAULT_CONFIG: dict[str, Any] = {
    "frame_interval": 0.1,
    "miss_threshold": 2,
    "history_capacity": 300,
    "graph_window": 120,
    "request_timeout": 10.0,
    "page_size": 25,
    "intervals": {
        "sites": 60.0,
        "devices": 10.0,
        "clients": 10.0,
        "metrics": 5.0,
    },
    "backoff": {
        "multiplier": 2.0,
        "max_interval": 60.0,
    },
    "log": {
        "level": "INFO",
        "file": "",
    },
}

_DEFAULT_PATH = Path.home() / ".config" / "unifimon" / "config.toml"

ENV_URL = "UNIFI_URL"
ENV_API_KEY = "UNIFI_API_KEY"


def _fail(message: str) -> None:
    print(f"unifimon: {message}", file=sys.stderr)
    raise SystemExit(1)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Merge overlay into base. Nested dicts are merged at the first level only."""
    merged = dict(base)
    for key, value in overlay.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            # Merge one level: overlay sub-keys into base sub-keys
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value
    return merged


def validate_config(config: dict[str, Any]) -> dict[str, Any]:
    """Reject values the scheduler and buffers cannot work with."""
    for table in ("intervals", "backoff", "log"):
        if not isinstance(config.get(table, {}), dict):
            _fail(f"config: {table} must be a table, got {config[table]!r}")
    for key in ("miss_threshold", "history_capacity", "graph_window", "page_size"):
        value = config.get(key)
        if not isinstance(value, int) or isinstance(value, bool) or value < 1:
            _fail(f"config: {key} must be a positive integer, got {value!r}")
    for key in ("frame_interval", "request_timeout"):
        value = config.get(key)
        if not _is_number(value) or value <= 0:
            _fail(f"config: {key} must be a positive number, got {value!r}")
    for name, value in config.get("intervals", {}).items():
        if name not in DEFAULT_CONFIG["intervals"]:
            _fail(f"config: unknown poll class in [intervals]: {name!r}")
        if not _is_number(value) or value <= 0:
            _fail(f"config: intervals.{name} must be a positive number, got {value!r}")
    backoff = config.get("backoff", {})
    multiplier = backoff.get("multiplier", 2.0)
    if not _is_number(multiplier) or multiplier < 1:
        _fail(f"config: backoff.multiplier must be at least 1, got {multiplier!r}")
    cap = backoff.get("max_interval", 60.0)
    if not _is_number(cap) or cap <= 0:
        _fail(f"config: backoff.max_interval must be positive, got {cap!r}")
    for name, value in config.get("log", {}).items():
        if not isinstance(value, str):
            _fail(f"config: log.{name} must be a string, got {value!r}")
    return config


def load_config(path: Path | None = None) -> dict[str, Any]:
    """Load configuration, merging user TOML over defaults.

    Args:
        path: Explicit config file path (from --config). If None, tries the
              default location ~/.config/unifimon/config.toml.

    Returns:
        Merged configuration dict.

    Raises:
        SystemExit: If an explicit path doesn't exist or can't be parsed,
                    or if a value is out of range.
    """
    if path is not None:
        if not path.is_file():
            _fail(f"config file not found: {path}")
        try:
            user_config = tomllib.loads(path.read_text(encoding="utf-8"))
        except tomllib.TOMLDecodeError as e:
            print(f"unifimon: invalid TOML in {path}: {e}", file=sys.stderr)
            raise SystemExit(1) from e
        return validate_config(_deep_merge(DEFAULT_CONFIG, user_config))

    # Try default location silently
    if _DEFAULT_PATH.is_file():
        try:
            user_config = tomllib.loads(_DEFAULT_PATH.read_text(encoding="utf-8"))
            return validate_config(_deep_merge(DEFAULT_CONFIG, user_config))
        except tomllib.TOMLDecodeError:
            print(
                f"unifimon: warning: ignoring invalid TOML in {_DEFAULT_PATH}",
                file=sys.stderr,
            )

    return dict(DEFAULT_CONFIG)


def resolve_credentials(
    url: str | None, api_key: str | None, env: Mapping[str, str]
) -> tuple[str, str]:
    """Pick controller URL and API key: flag first, then environment.

    Raises:
        SystemExit: If either one is missing.
    """
    url = url or env.get(ENV_URL, "")
    api_key = api_key or env.get(ENV_API_KEY, "")
    if not url:
        _fail(f"no controller URL; pass --url or set {ENV_URL}")
    if not api_key:
        _fail(f"no API key; pass --api-key or set {ENV_API_KEY}")
    if not url.startswith(("http://", "https://")):
        url = "https://" + url
    return url.rstrip("/"), api_key


def dump_default_config() -> str:
    """Return the default configuration as a TOML string."""
    lines = [
        "# unifimon configuration",
        "# Place this file at ~/.config/unifimon/config.toml",
        "",
    ]
    for key in (
        "frame_interval",
        "miss_threshold",
        "history_capacity",
        "graph_window",
        "request_timeout",
        "page_size",
    ):
        lines.append(f"{key} = {DEFAULT_CONFIG[key]}")
    lines.append("")

    # Poll intervals (seconds)
    lines.append("[intervals]")
    for name, seconds in DEFAULT_CONFIG["intervals"].items():
        lines.append(f"{name} = {seconds}")
    lines.append("")

    lines.append("[backoff]")
    for name, value in DEFAULT_CONFIG["backoff"].items():
        lines.append(f"{name} = {value}")
    lines.append("")

    lines.append("[log]")
    lines.append(f'level = "{DEFAULT_CONFIG["log"]["level"]}"')
    lines.append('# Empty means ~/.local/share/unifimon/debug.log')
    lines.append(f'file = "{DEFAULT_CONFIG["log"]["file"]}"')

    return "\n".join(lines) + "\n"
