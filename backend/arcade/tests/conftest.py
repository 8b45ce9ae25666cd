import pytest

from arcade.logic.catalog import GameCatalog
from arcade.logic.scoring import ScoringRegistry
from arcade.session.auth import AuthState, AuthUser
from arcade.session.gateway import PersistenceGateway
from arcade.tests.helpers.session import make_catalog
from arcade.tests.mocks import GameHost, InMemoryRemoteStore
from shared.storage import MemoryDraftStorage


@pytest.fixture
def packaged_catalog():
    return GameCatalog.from_yaml()


@pytest.fixture
def catalog():
    return make_catalog()


@pytest.fixture
def scoring(catalog):
    return ScoringRegistry.from_catalog(catalog)


@pytest.fixture
def store():
    return InMemoryRemoteStore()


@pytest.fixture
def drafts():
    return MemoryDraftStorage()


@pytest.fixture
def auth():
    return AuthState()


@pytest.fixture
def player():
    return AuthUser(user_id="user-1", email="player@example.com")


@pytest.fixture
def gateway(store, drafts, auth, catalog):
    gateway = PersistenceGateway(store, drafts, auth, catalog, playlist_count=3)
    gateway.init()
    yield gateway
    gateway.teardown()


@pytest.fixture
def host():
    return GameHost()
