"""Shared fixtures for remote source tests."""

import pytest

from extensions.client import RegistryClient
from extensions.download import SourceDownloader
from extensions.installer import SourceInstaller
from plugins.loader import RuntimeLoader
from plugins.registry import PluginRegistry
from tests.helpers import FALLBACK_URL, REGISTRY_URL, FakeClock, FakeServer


@pytest.fixture
def server() -> FakeServer:
    return FakeServer()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def client(server: FakeServer, clock: FakeClock) -> RegistryClient:
    return RegistryClient(
        registry_url=REGISTRY_URL,
        fallback_url=FALLBACK_URL,
        cache_duration=60,
        timeout=5,
        transport=server.transport,
        clock=clock,
    )


@pytest.fixture
def registry() -> PluginRegistry:
    return PluginRegistry()


@pytest.fixture
def installer(
    client: RegistryClient,
    registry: PluginRegistry,
    server: FakeServer,
    clock: FakeClock,
) -> SourceInstaller:
    return SourceInstaller(
        client=client,
        registry=registry,
        loader=RuntimeLoader(runtime="standard", load_timeout=5),
        downloader=SourceDownloader(timeout=5, transport=server.transport),
        clock=clock,
    )
