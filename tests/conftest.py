import os
import pathlib
import sys

import pytest


# Ensure repo root is on PYTHONPATH for direct package imports (e.g. `import soulforge`).
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from soulforge.config import ForgeConfig, get_config_manager  # noqa: E402


_ENV_PREFIX = "SOULFORGE_"


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch):
    """Strip SOULFORGE_* overrides and reset the global config around each test."""
    for key in list(os.environ):
        if key.startswith(_ENV_PREFIX):
            monkeypatch.delenv(key, raising=False)
    get_config_manager().reset()
    yield
    get_config_manager().reset()


@pytest.fixture
def fast_config() -> ForgeConfig:
    """Config with short confirmation waits for the mock ledger."""
    config = ForgeConfig()
    config.ledger.cluster.set("devnet")
    config.coordinator.confirmation_timeout_seconds.set(0.5)
    config.coordinator.poll_interval_seconds.set(0.01)
    return config
