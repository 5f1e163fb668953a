from __future__ import annotations

import logging
from pathlib import Path

import pytest

from acp_relay import log_utils
from acp_relay.session_registry import SessionRegistry


@pytest.fixture(autouse=True)
def _isolate_home(tmp_path_factory, monkeypatch):
    """Force tests to use a temporary HOME/XDG dirs so app dirs never touch the real home."""
    base = tmp_path_factory.mktemp("home")
    monkeypatch.setenv("HOME", str(base))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(base / ".config"))
    monkeypatch.setenv("XDG_STATE_HOME", str(base / ".local" / "state"))
    monkeypatch.setenv("XDG_DATA_HOME", str(base / ".local" / "share"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(base / ".cache"))
    monkeypatch.setattr(Path, "home", lambda: base)
    for name in (
        "ACP_RELAY_DEFAULT_AGENT",
        "ACP_RELAY_HISTORY_DIR",
        "ACP_RELAY_DESCRIPTION_LIMIT",
        "ACP_RELAY_SESSION_CWD",
        "ACP_RELAY_LOG_LEVEL",
        "ACP_RELAY_LOG_FILE",
        "ACP_RELAY_LOG_STDERR",
        "ACP_RELAY_LOG_JSON",
        "ACP_RELAY_LOG_CHUNKS",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def _restore_relay_logger(monkeypatch):
    """Undo `configure_logging` side effects on the shared `acp_relay` logger."""
    relay_logger = logging.getLogger(log_utils.RELAY_LOGGER)
    handlers, level = relay_logger.handlers[:], relay_logger.level
    monkeypatch.setattr(log_utils, "_LOG_CHUNKS_ENABLED", False)
    yield
    for handler in relay_logger.handlers[:]:
        if handler not in handlers:
            relay_logger.removeHandler(handler)
            handler.close()
    relay_logger.setLevel(level)


@pytest.fixture
def registry() -> SessionRegistry:
    return SessionRegistry()
