"""Shared fixtures for the Exa Pool Gateway test suite."""

import json
import logging
from unittest.mock import AsyncMock

import pytest

from src.config.settings import get_settings
from src.state.persistence import StatePersistence
from src.upstream.transport import HTTPTransport
from tests.helpers import MemoryStateStore


@pytest.fixture
def memory_store() -> MemoryStateStore:
    return MemoryStateStore()


@pytest.fixture
def persistence(memory_store) -> StatePersistence:
    return StatePersistence(memory_store)


@pytest.fixture
def mock_transport():
    """HTTPTransport double; set ``send.side_effect`` / ``return_value`` per test."""
    transport = AsyncMock(spec=HTTPTransport)
    transport.send.return_value = {"results": []}
    return transport


@pytest.fixture
def state_json_file(tmp_path):
    """Create a temp state file with one unrelated record and return its path."""
    data = {"records": {"key_0000000000000000": {"version": 1, "failed_at": None,
                                                  "retry_count": 0, "dead": False}}}
    path = tmp_path / "state.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return str(path)


@pytest.fixture
def override_settings(monkeypatch):
    """Factory fixture: set env vars and clear settings cache.

    Usage:
        override_settings(EXA_API_KEYS="k1,k2", USER_TOKENS="a:alice")
    """
    def _override(**kwargs):
        for key, value in kwargs.items():
            monkeypatch.setenv(key.upper(), str(value))
        # Clear lru_cache so Settings re-reads env
        get_settings.cache_clear()

    yield _override

    # Always clear cache on teardown so other tests get fresh settings
    get_settings.cache_clear()


@pytest.fixture
def gateway_caplog(caplog):
    """caplog capturing the ``gateway`` logger tree, which normally does not propagate."""
    logger = logging.getLogger("gateway")
    previous = logger.propagate
    logger.propagate = True
    caplog.set_level(logging.DEBUG, logger="gateway")
    yield caplog
    logger.propagate = previous
