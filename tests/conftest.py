"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from tests.utils.recording import RecordingLogger


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def logger() -> RecordingLogger:
    return RecordingLogger()
