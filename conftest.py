"""Repository-wide pytest configuration.

Pins the repository root on ``sys.path`` so ``arbiter_orchestrator`` resolves
without an editable install, and clears the environment variables that feed
configuration so a developer's shell cannot leak into the suites.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent

if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

_CONFIG_ENV = [
    "ARBITER_REGISTRY_PATH",
    "BRIDGE_URL",
    "CHAINLINK_API_EMAIL",
    "CHAINLINK_API_PASSWORD",
    "CHAINLINK_CONTAINER_NAME",
    "CHAINLINK_URL",
    "DEPLOYMENT_NETWORK",
    "FUNDING_AMOUNT_ETH",
    "GAS_PRICE_WEI",
    "INFURA_API_KEY",
    "PRIVATE_KEY",
    "RPC_URL",
]


@pytest.fixture(autouse=True)
def _isolate_config_env(monkeypatch):
    for key in _CONFIG_ENV:
        monkeypatch.delenv(key, raising=False)
    yield
