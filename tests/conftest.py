import pytest

from fakes import FakeNetwork, ScriptedProvider
from remote_dnssd.discovery.browser import BrowseResolveMachine
from remote_dnssd.discovery.config import DiscoveryConfig


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """REMOTE_DNSSD_* の環境変数がテストに影響しないようにする"""
    for name in (
        "REMOTE_DNSSD_ENABLED",
        "REMOTE_DNSSD_IPVER",
        "REMOTE_DNSSD_ALL_FOR_NOW",
        "REMOTE_DNSSD_RESOLVE_TIMEOUT",
        "REMOTE_DNSSD_POLL_INTERVAL",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def network():
    return FakeNetwork()


@pytest.fixture
def provider():
    return ScriptedProvider(auto_resolve=False, all_for_now=False)


@pytest.fixture
def machine(provider):
    return BrowseResolveMachine(provider)


@pytest.fixture
def fast_config():
    return DiscoveryConfig({"poll_interval": 0.02})
