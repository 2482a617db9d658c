import pytest
from fastapi.testclient import TestClient

from relay_reindexer.api import app, get_monitor
from relay_reindexer.chains import ChainDirectory
from relay_reindexer.monitor import TransactionMonitor
from relay_reindexer.resolver import IdentifierResolver

from fakes import FakeRelayClient, RecordingSleep


@pytest.fixture
def fake_client():
    return FakeRelayClient()


@pytest.fixture
def directory(fake_client):
    return ChainDirectory(fake_client)


@pytest.fixture
def resolver(directory):
    return IdentifierResolver(directory)


@pytest.fixture
def api_monitor(fake_client):
    return TransactionMonitor(fake_client, sleep=RecordingSleep())


@pytest.fixture
def client(api_monitor):
    app.dependency_overrides[get_monitor] = lambda: api_monitor
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
