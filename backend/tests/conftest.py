from __future__ import annotations

import os
from pathlib import Path
from typing import Iterator, List

import pytest
from sqlalchemy.engine import Engine

os.environ.setdefault("STUDYLINE_DATABASE_URL", "sqlite://")

from studyline.config import get_settings  # noqa: E402
from studyline.db import models  # noqa: E402,F401
from studyline.db.base import Base  # noqa: E402
from studyline.db.session import dispose_engine, get_engine  # noqa: E402
from studyline.telemetry import TelemetryEvent, clear_listeners, register_listener  # noqa: E402


@pytest.fixture()
def database(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Engine]:
    monkeypatch.setenv("STUDYLINE_DATABASE_URL", f"sqlite:///{tmp_path / 'studyline.db'}")
    get_settings.cache_clear()
    dispose_engine()
    engine = get_engine()
    Base.metadata.create_all(engine)
    yield engine
    dispose_engine()
    get_settings.cache_clear()


@pytest.fixture()
def telemetry_events() -> Iterator[List[TelemetryEvent]]:
    events: List[TelemetryEvent] = []
    clear_listeners()
    register_listener(events.append)
    yield events
    clear_listeners()
