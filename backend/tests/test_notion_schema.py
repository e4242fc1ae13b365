"""
Tests for the Notion schema source.
Uses httpx.MockTransport, no network access.
"""
import httpx
import pytest

from config.settings import Settings
from engine.errors import SchemaUnavailableError
from engine.fields import TradeField
from integrations.notion_schema import NotionSchemaSource, make_schema_resolver
from services.history_aggregator import HistoryAggregator
from services.suggestion_cache import SuggestionCache

from conftest import FakeTradeStore


DATABASE_PAYLOAD = {
    "object": "database",
    "id": "db-1",
    "properties": {
        "Direction": {"type": "select", "select": {"options": [{"name": "Buy"}, {"name": "Sell"}]}},
        "Setup": {"type": "multi_select", "multi_select": {"options": [{"name": "Breakout"}, {"name": ""}]}},
        "PnL": {"type": "number", "number": {"format": "dollar"}},
        "session": {"type": "select", "select": {"options": [{"name": "LONDON"}]}},
    },
}


def make_client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


@pytest.fixture
def requests_seen():
    return []


@pytest.fixture
def notion(requests_seen):
    def handler(request):
        requests_seen.append(request)
        return httpx.Response(200, json=DATABASE_PAYLOAD)

    return NotionSchemaSource("db-1", " secret ", client=make_client(handler))


def test_identity_names_the_database(notion):
    """Test cache identity is derived from the database id."""
    assert notion.identity == "notion:db-1"


def test_fetch_collects_select_options(notion, requests_seen):
    """Test select and multi-select options are gathered per property."""
    properties = notion.fetch_properties()

    assert properties == {"Direction": ["Buy", "Sell"], "Setup": ["Breakout"], "session": ["LONDON"]}
    request = requests_seen[0]
    assert request.url.path == "/v1/databases/db-1"
    assert request.headers["Authorization"] == "Bearer secret"
    assert request.headers["Notion-Version"] == "2022-06-28"


def test_get_options_by_property_name(notion):
    """Test options are looked up exactly, then case-insensitively."""
    assert notion.get_options("Direction") == ["Buy", "Sell"]
    assert notion.get_options("Session") == ["LONDON"]
    assert notion.get_options("Account") == []


def test_http_error_raises_schema_unavailable():
    """Test non-2xx responses surface as SchemaUnavailableError."""
    source = NotionSchemaSource(
        "db-1", "t", client=make_client(lambda request: httpx.Response(401, text="unauthorized")),
    )

    with pytest.raises(SchemaUnavailableError) as exc_info:
        source.get_options("Direction")
    assert "401" in str(exc_info.value)


def test_transport_error_raises_schema_unavailable():
    """Test connection failures surface as SchemaUnavailableError."""
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    source = NotionSchemaSource("db-1", "t", client=make_client(handler))

    with pytest.raises(SchemaUnavailableError):
        source.fetch_properties()


def test_unexpected_payload_raises_schema_unavailable():
    """Test a response without properties is treated as unavailable."""
    source = NotionSchemaSource("db-1", "t", client=make_client(lambda request: httpx.Response(200, json=[])))

    with pytest.raises(SchemaUnavailableError):
        source.fetch_properties()


def test_database_id_required():
    """Test a blank database id is refused."""
    with pytest.raises(ValueError):
        NotionSchemaSource("  ", "t")


def test_notion_options_feed_suggestions(notion):
    """Test the schema source plugs into the suggestion cache."""
    cache = SuggestionCache(history=HistoryAggregator(FakeTradeStore()))

    options = cache.get_suggestions(1, TradeField.DIRECTION, schema=notion)

    assert [o.value for o in options] == ["Buy", "Sell"]
    assert all(o.in_schema for o in options)


# Resolver

def test_resolver_needs_a_token():
    """Test no schema source is built without credentials."""
    settings = Settings(JOURNAL_NOTION_API_TOKEN=None, JOURNAL_NOTION_DATABASE_ID="db-1")
    resolve = make_schema_resolver(lambda user_id: None, settings)

    assert resolve(1) is None


def test_resolver_prefers_user_database_and_reuses_sources():
    """Test the user's own database wins over the default and sources are reused."""
    settings = Settings(JOURNAL_NOTION_API_TOKEN="tok", JOURNAL_NOTION_DATABASE_ID="default-db")
    user_databases = {1: "user-db"}
    resolve = make_schema_resolver(user_databases.get, settings)

    first = resolve(1)
    assert first.identity == "notion:user-db"
    assert resolve(1) is first
    assert resolve(2).identity == "notion:default-db"
