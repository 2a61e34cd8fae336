import sys
from pathlib import Path

import httpx
import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from cloudfusion.cache import MemoryCache  # noqa: E402
from cloudfusion.runtime import Runtime  # noqa: E402
from cloudfusion.utils.http import Transport  # noqa: E402

# 2011-03-13T07:06:40Z
FIXED_TIME = 1300000000
FIXED_NONCE = "0A1B2C3D-4E5F-4A6B-8C7D-8E9F0A1B2C3D"


def pytest_configure(config):
    # Register the asyncio marker so pytest doesn't warn when it's used.
    config.addinivalue_line(
        "markers", "asyncio: mark test to run in an asyncio event loop"
    )
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "cache: mark test as testing cache backends")


@pytest.fixture(autouse=True)
def mock_env_vars(monkeypatch):
    """Set the environment Settings reads, and clear anything that could leak in."""
    monkeypatch.setenv("AWS_KEY", "AKIDEXAMPLE")
    monkeypatch.setenv("AWS_SECRET_KEY", "wJalrXUtnFEMI/K7MDENG+bPxRfiCYEXAMPLEKEY")
    for name in (
        "AWS_ACCOUNT_ID",
        "AWS_ASSOC_ID",
        "AWS_CACHE_LOCATION",
        "AWS_PROXY",
        "AWS_HOSTNAME",
        "AWS_PORT",
        "AWS_MAX_RETRIES",
        "AWS_USE_SSL",
        "AWS_VERIFY_SSL",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture(autouse=True)
def clear_memory_cache():
    """Keep the process-wide memory cache empty between tests."""
    MemoryCache.clear()
    yield
    MemoryCache.clear()


def make_transport(handler) -> Transport:
    """Build a Transport whose client answers through ``handler``."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return Transport(client=client)


@pytest.fixture
def mock_transport():
    """Factory for a Transport backed by ``httpx.MockTransport``."""
    return make_transport


class SimpleDB(Runtime):
    """Minimal service client used across the runtime tests."""

    api_version = "2009-04-15"
    hostname = "sdb.amazonaws.com"

    operations = {**Runtime.operations, "list_domains": "list_domains"}

    async def list_domains(self, opt=None):
        return await self.authenticate("ListDomains", opt)


@pytest.fixture
def make_runtime():
    """Factory for a SimpleDB runtime with a fixed clock and nonce."""

    def factory(handler=None, **kwargs):
        transport = make_transport(handler) if handler else None
        return SimpleDB(
            key="AKIDEXAMPLE",
            secret_key="wJalrXUtnFEMI/K7MDENG+bPxRfiCYEXAMPLEKEY",
            transport=transport,
            clock=lambda: FIXED_TIME,
            nonce_factory=lambda: FIXED_NONCE,
            **kwargs,
        )

    return factory


@pytest.fixture
def service_class():
    """The SimpleDB client class, for tests that construct it directly."""
    return SimpleDB
