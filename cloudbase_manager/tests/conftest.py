"""
cloudbase_manager test configuration.

No test talks to the network: signed API calls go through an
``httpx.MockTransport`` backed by ``FakeCloud`` and object storage uses
``MemoryObjectStore``. Override by setting environment variables before
running pytest.
"""
from __future__ import annotations

import os

import pytest

# ── Pin test credentials ──────────────────────────────────────────────────
# These must be set before any cloudbase_manager modules read config.

os.environ.setdefault("TENCENTCLOUD_SECRETID", "AKIDtest")
os.environ.setdefault("TENCENTCLOUD_SECRETKEY", "test-secret-key")
os.environ.setdefault("CLOUDBASE_LOG_LEVEL", "WARNING")

from fakes import ENV_ID, FakeCloud  # noqa: E402


# ── Fixtures ───────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def reset_config_and_clock():
    """Fresh config and the real clock for every test."""
    from cloudbase_manager.tier0_core.config import _reset_config
    from cloudbase_manager.tier1_runtime.clock import Clock, set_clock

    _reset_config()
    yield
    _reset_config()
    set_clock(Clock())


@pytest.fixture
def no_retry_delay(monkeypatch):
    """Retries happen immediately."""
    import cloudbase_manager.tier1_runtime.retry as retry

    monkeypatch.setattr(retry, "RETRY_DELAY_SECONDS", 0)


@pytest.fixture
def no_sleep(monkeypatch):
    """Polling loops do not wait."""
    import cloudbase_manager.tier1_runtime.clock as clock

    async def _sleep(seconds: float) -> None:
        return None

    monkeypatch.setattr(clock, "sleep", _sleep)


@pytest.fixture
def cloud() -> FakeCloud:
    return FakeCloud()


@pytest.fixture
def store():
    from cloudbase_manager.tier2_services.object_store import MemoryObjectStore

    return MemoryObjectStore()


@pytest.fixture
def manager(cloud, store):
    """A CloudBase bound to ENV_ID whose calls all land in ``cloud`` and ``store``."""
    from cloudbase_manager.tier3_platform.manager import CloudBase

    return CloudBase(
        secret_id="AKIDtest",
        secret_key="test-secret-key",
        env_id=ENV_ID,
        transport=cloud.transport,
        object_store=store,
    )


@pytest.fixture
def environment(manager):
    return manager.current_environment()
