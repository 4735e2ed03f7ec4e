"""Shared fixtures for the arbiter orchestrator suites."""

from __future__ import annotations

from typing import List

import pytest
from pydantic import SecretStr

from arbiter_orchestrator.config import NodeCredentials


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def credentials() -> NodeCredentials:
    return NodeCredentials(email="ops@example.com", password=SecretStr("hunter22"))


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()
