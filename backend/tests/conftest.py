"""Shared fixtures: a fresh SQLite review store per test and a fixed clock."""

import asyncio
from datetime import datetime, timezone
from pathlib import Path

import pytest

from linguaflow.config import settings
from linguaflow.db.sqlite import init_sqlite

T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture()
def sqlite_store(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setattr(settings, "data_dir", tmp_path)
    asyncio.run(init_sqlite(tmp_path))
    return tmp_path
