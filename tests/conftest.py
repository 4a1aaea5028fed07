import pytest
from prometheus_client import CollectorRegistry

from aiusage.config_store import InMemoryConfigStore
from aiusage.models import ProviderConfig


@pytest.fixture()
def registry() -> "CollectorRegistry":
    """
    fresh Prometheus registry to avoid cross-test state.
    """
    return CollectorRegistry()


@pytest.fixture()
def config_store() -> "InMemoryConfigStore":
    return InMemoryConfigStore()


@pytest.fixture()
def copilot_store() -> "InMemoryConfigStore":
    """
    store holding a github-copilot entry with a saved token.
    """
    return InMemoryConfigStore(
        [ProviderConfig(provider_id="github-copilot", api_key="tok123")]
    )
