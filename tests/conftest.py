import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest

from autotown_core.config import get_config

_TEST_DATA_ROOT: str | None = None


@pytest.fixture(autouse=True)
def _default_env(monkeypatch: pytest.MonkeyPatch) -> None:
    def set_default(name: str, value: str) -> None:
        if not os.getenv(name):
            monkeypatch.setenv(name, value)

    set_default("ENV", "test")
    set_default("LOG_LEVEL", "INFO")
    set_default("AUTOTOWN_STORE", "json")
    set_default("LOCAL_DATA_ROOT", _ensure_test_data_root())
    set_default("QUEUE_BACKEND", "inline")
    set_default("CACHE_BACKEND", "local")
    get_config.cache_clear()
    yield
    get_config.cache_clear()


@pytest.fixture
def data_root(tmp_path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("LOCAL_DATA_ROOT", tmp_path.as_posix())
    get_config.cache_clear()
    return tmp_path


@pytest.fixture
def ts():
    def _factory(day: int, hour: int = 0) -> datetime:
        return datetime(2016, 3, day, hour, 0, 0, tzinfo=timezone.utc)

    return _factory


def _ensure_test_data_root() -> str:
    global _TEST_DATA_ROOT
    if _TEST_DATA_ROOT and Path(_TEST_DATA_ROOT).exists():
        return _TEST_DATA_ROOT

    _TEST_DATA_ROOT = tempfile.mkdtemp(prefix="autotown_test_data_")
    return _TEST_DATA_ROOT
