"""Relay configuration loaded from the environment and optional `.env` files."""

from __future__ import annotations

import contextlib
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

from acp_relay.paths import config_dir, conversations_dir, log_dir

DEFAULT_AGENT_NAME = "claude-code"
DEFAULT_DESCRIPTION_LIMIT = 200
DEFAULT_LOG_FILE_NAME = "acp_relay.log"
_MIN_DESCRIPTION_LIMIT = 1


@dataclass(frozen=True)
class RelayConfig:
    default_agent: str = DEFAULT_AGENT_NAME
    history_dir: Path | None = None
    description_limit: int = DEFAULT_DESCRIPTION_LIMIT
    session_cwd: Path | None = None
    # Relay log output; with neither a file nor stderr, records only propagate to the host's handlers.
    log_level: int = logging.INFO
    log_file: Path | None = None
    log_stderr: bool = False
    log_json: bool = False
    log_chunks: bool = False


def parse_level(value: str | None, default: int) -> int:
    if not value:
        return default
    if value.isdigit():
        return int(value)
    return logging.getLevelNamesMapping().get(value.upper(), default)


def parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def parse_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    with contextlib.suppress(ValueError):
        return int(value)
    return default


def _log_file(value: str | None) -> Path | None:
    """`ACP_RELAY_LOG_FILE`: unset or empty disables the file, `default` picks the app log dir."""
    if not value:
        return None
    if value.strip().lower() == "default":
        return log_dir() / DEFAULT_LOG_FILE_NAME
    return Path(value).expanduser()


def load_config() -> RelayConfig:
    """Build a `RelayConfig` from `ACP_RELAY_*` variables.

    The app-level `.env` and one in the working directory are read first; values
    already present in the process environment win.
    """

    load_dotenv(config_dir() / ".env", override=False)
    load_dotenv(find_dotenv(usecwd=True), override=False)

    history_raw = os.getenv("ACP_RELAY_HISTORY_DIR")
    cwd_raw = os.getenv("ACP_RELAY_SESSION_CWD")
    limit = parse_int(os.getenv("ACP_RELAY_DESCRIPTION_LIMIT"), DEFAULT_DESCRIPTION_LIMIT)

    return RelayConfig(
        default_agent=os.getenv("ACP_RELAY_DEFAULT_AGENT") or DEFAULT_AGENT_NAME,
        history_dir=Path(history_raw) if history_raw else conversations_dir(),
        description_limit=max(limit, _MIN_DESCRIPTION_LIMIT),
        session_cwd=Path(cwd_raw) if cwd_raw else Path.cwd(),
        log_level=parse_level(os.getenv("ACP_RELAY_LOG_LEVEL"), logging.INFO),
        log_file=_log_file(os.getenv("ACP_RELAY_LOG_FILE")),
        log_stderr=parse_bool(os.getenv("ACP_RELAY_LOG_STDERR"), False),
        log_json=parse_bool(os.getenv("ACP_RELAY_LOG_JSON"), False),
        log_chunks=parse_bool(os.getenv("ACP_RELAY_LOG_CHUNKS"), False),
    )
