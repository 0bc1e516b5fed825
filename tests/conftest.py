"""Shared pytest fixtures."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterator

import pytest

from sidenote.assistant.client import CapabilityClient
from sidenote.ui.surface import HeadlessSurface
from sidenote.utils.logging import get_log_path, reset_logging

from tests.helpers import RecordingBridge


@pytest.fixture(autouse=True)
def _isolated_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    for name in list(os.environ):
        if name.startswith("SIDENOTE_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SIDENOTE_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("SIDENOTE_TELEMETRY_DIR", str(tmp_path / "telemetry"))
    root_level = logging.getLogger().level
    yield
    if get_log_path() is not None:
        reset_logging()
    logging.getLogger().setLevel(root_level)


@pytest.fixture
def surface() -> HeadlessSurface:
    return HeadlessSurface()


@pytest.fixture
def bridge() -> RecordingBridge:
    return RecordingBridge()


@pytest.fixture
def client(bridge: RecordingBridge) -> CapabilityClient:
    return CapabilityClient(bridge)
