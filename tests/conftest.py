"""
Pytest configuration and fixtures for spelltale tests.
"""

import sys
from pathlib import Path

import httpx
import pytest

# Add src directory to Python path to allow importing spelltale
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from spelltale.client import ContentClient
from spelltale.config import ClientConfig
from spelltale.identity import InMemoryStore, SessionIdentity
from spelltale.scheduler import VirtualScheduler

from helpers import BASE_URL, USER_ID, FakeConnector, StoryServiceStub


# Configure anyio to only use asyncio (not trio)
@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def service() -> StoryServiceStub:
    return StoryServiceStub()


@pytest.fixture
def scheduler() -> VirtualScheduler:
    return VirtualScheduler()


@pytest.fixture
def config() -> ClientConfig:
    return ClientConfig(base_url=BASE_URL)


@pytest.fixture
def identity() -> SessionIdentity:
    return SessionIdentity(InMemoryStore({"spelltale_user_id": USER_ID}))


@pytest.fixture
def client(service, scheduler, config, identity) -> ContentClient:
    return ContentClient(
        config=config,
        identity=identity,
        scheduler=scheduler,
        transport=httpx.MockTransport(service),
    )


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()
