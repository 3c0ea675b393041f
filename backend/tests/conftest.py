import httpx
import pytest

from querychat.schemas.api import ConnectionStatus
from querychat.services.auth_service import TokenStore
from querychat.services.chat_history_service import ChatHistoryStore
from querychat.services.query_api.client import QueryApiClient
from querychat.services.query_api.config import ApiConfig
from querychat.services.query_session import QuerySessionController
from querychat.services.storage import MemoryKeyValueStore
from tests.helpers import FakeQueryService

BASE_URL = "http://query.test"


@pytest.fixture
def kv():
    return MemoryKeyValueStore()


@pytest.fixture
def history(kv):
    return ChatHistoryStore(kv)


@pytest.fixture
def service():
    return FakeQueryService()


@pytest.fixture
def client(kv, service):
    return QueryApiClient(
        ApiConfig(base_url=BASE_URL, timeout=5.0, stream_timeout=5.0),
        token_store=TokenStore(kv),
        transport=httpx.MockTransport(service.handler),
    )


@pytest.fixture
def controller(history, client):
    c = QuerySessionController(history, client, user_id="7")
    c.connection = ConnectionStatus(success=True, message="Connected", table_count=2)
    c.new_chat()
    return c
