"""Load optional board configuration from `.kanban/config.yaml`."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml

from .constants import (
    CONFIG_FILE,
    DEFAULT_API_URL,
    DEFAULT_HOST,
    DEFAULT_LOG_LEVEL,
    DEFAULT_PORT,
    DEFAULT_TIMEOUT_SECONDS,
    ENV_API_URL,
    ENV_LOG_LEVEL,
    ENV_PORT,
    STATE_DIR_NAME,
)

VALID_LOG_LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}


def load_board_config(project_dir: Path) -> tuple[dict[str, Any], str | None]:
    """Load the optional config file.

    Args:
        project_dir: Directory whose `.kanban/` holds the board.

    Returns:
        A tuple of `(config, error_message)`. If the file is missing, returns `({}, None)`.
    """
    path = project_dir.resolve() / STATE_DIR_NAME / CONFIG_FILE
    if not path.exists():
        return {}, None
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as exc:
        return {}, f"{path.name}: {exc.__class__.__name__}: {exc}"
    except yaml.YAMLError as exc:
        return {}, f"{path.name}: YAMLError: {exc}"
    if data is None:
        return {}, None
    if not isinstance(data, dict):
        return {}, f"{path.name}: expected mapping, got {type(data).__name__}"
    return data, None


def _get_nested(config: dict[str, Any], *keys: str) -> Any:
    cur: Any = config
    for key in keys:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def get_server_config(config: dict[str, Any]) -> dict[str, Any]:
    """Resolve `host` and `port` for `kanban serve`.

    `KANBAN_PORT` overrides the configured port.
    """
    host = _get_nested(config, "server", "host")
    port: Any = os.environ.get(ENV_PORT) or _get_nested(config, "server", "port")
    try:
        port = int(port) if port is not None else DEFAULT_PORT
    except (TypeError, ValueError):
        port = DEFAULT_PORT
    return {
        "host": host if isinstance(host, str) and host else DEFAULT_HOST,
        "port": port,
    }


def get_client_config(config: dict[str, Any]) -> dict[str, Any]:
    """Resolve the API URL and request timeout for remote clients.

    `KANBAN_API_URL` overrides the configured URL.  `remote` is true only
    when a URL was given by the environment or the config file; otherwise
    the CLI works on the local store.
    """
    api_url = os.environ.get(ENV_API_URL) or _get_nested(config, "client", "api_url")
    remote = isinstance(api_url, str) and bool(api_url)
    timeout: Any = _get_nested(config, "client", "timeout")
    try:
        timeout = float(timeout) if timeout is not None else DEFAULT_TIMEOUT_SECONDS
    except (TypeError, ValueError):
        timeout = DEFAULT_TIMEOUT_SECONDS
    return {
        "api_url": api_url if remote else DEFAULT_API_URL,
        "remote": remote,
        "timeout": timeout,
    }


def get_log_level(config: dict[str, Any]) -> str:
    raw = os.environ.get(ENV_LOG_LEVEL) or _get_nested(config, "logging", "level")
    if isinstance(raw, str) and raw.upper() in VALID_LOG_LEVELS:
        return raw.upper()
    return DEFAULT_LOG_LEVEL
