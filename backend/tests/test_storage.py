"""
Tests for storage layer - CRUD operations.
Tests database models, repositories, and storage service.
"""
import pytest
from datetime import timedelta
from decimal import Decimal
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from engine.conversation import ConversationEngine
from engine.fields import TradeField
from engine.models import DraftEntry, InputAction, PendingEntry, TransitionStatus
from services.history_aggregator import HistoryAggregator
from services.suggestion_cache import SuggestionCache
from storage.database import Base
from storage.models import JournalTrade
from storage.repositories import JournalTradeRepository, UserSettingsRepository
from storage.service import StorageService

from conftest import NOW, RecordingPresenter, FakeClock, make_trade


# Test fixtures

@pytest.fixture
def db_session():
    """Create an in-memory SQLite database for testing."""
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine)
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def trade_repo(db_session):
    """Create a journal trade repository."""
    return JournalTradeRepository(db_session)


@pytest.fixture
def storage_service(db_session):
    """Create a storage service."""
    return StorageService(db_session)


# Journal trade repository tests

def test_create_trade(trade_repo):
    """Test persisting a validated record."""
    trade = trade_repo.create(make_trade(
        1, ticker="AAPL", direction="Long", pnl=Decimal("12.5"), setups=["Breakout"],
    ))

    assert trade.id is not None
    assert trade.ticker == "AAPL"
    assert trade.pnl == Decimal("12.5")
    assert trade.setups == ["Breakout"]
    assert trade.open_price is None
    assert trade.date.tzinfo is None


def test_get_trades_by_user_newest_first(trade_repo):
    """Test user trades come back newest first."""
    old = trade_repo.create(make_trade(1, days_ago=3))
    new = trade_repo.create(make_trade(1, days_ago=1))
    trade_repo.create(make_trade(2))

    trades = trade_repo.get_by_user(1)

    assert [t.id for t in trades] == [new.id, old.id]
    assert len(trade_repo.get_all()) == 3


def test_update_trade_rejects_identity_fields(trade_repo):
    """Test ids and ownership cannot be rewritten."""
    trade = trade_repo.create(make_trade(1))

    with pytest.raises(ValueError):
        trade_repo.update(trade, {"user_id": 2})
    with pytest.raises(ValueError):
        trade_repo.update(trade, {"leverage": 10})


# Storage service tests

def test_service_add_and_query(storage_service):
    """Test the TradeStore side of the service."""
    trade_id = storage_service.add(make_trade(1, ticker="ES", direction="Short"))
    storage_service.add(make_trade(2, ticker="NQ"))

    assert isinstance(trade_id, int)
    assert [t.ticker for t in storage_service.query(1)] == ["ES"]
    assert len(storage_service.query_all()) == 2


def test_service_update_and_delete(storage_service):
    """Test editing and deleting stored trades."""
    trade_id = storage_service.add(make_trade(1, comment="first"))

    updated = storage_service.update_trade(trade_id, {"comment": "edited", "pnl": Decimal("4")})
    assert updated.comment == "edited"
    assert updated.pnl == Decimal("4")
    assert storage_service.update_trade(999, {"comment": "x"}) is None

    assert storage_service.delete_trade(trade_id) is True
    assert storage_service.get_trade(trade_id) is None


def test_service_last_trade_and_range(storage_service):
    """Test last-trade lookup and date range queries."""
    storage_service.add(make_trade(1, ticker="OLD", days_ago=10))
    storage_service.add(make_trade(1, ticker="MID", days_ago=5))
    storage_service.add(make_trade(1, ticker="NEW", days_ago=1))

    assert storage_service.get_last_trade(1).ticker == "NEW"
    window = storage_service.get_trades_in_range(1, NOW - timedelta(days=6), NOW)
    assert [t.ticker for t in window] == ["MID", "NEW"]
    assert storage_service.get_last_trade(5) is None


def test_service_pending_round_trip(storage_service):
    """Test the PendingStore side of the service."""
    draft = DraftEntry(user_id=1, created_at=NOW)
    draft.set(TradeField.TICKER, "ES")
    draft.set(TradeField.PNL, Decimal("1.25"))
    storage_service.save(PendingEntry(draft.entry_id, 1, draft, presentation_handle=77, created_at=NOW))

    entry = storage_service.get(1, draft.entry_id)

    assert entry.draft.get(TradeField.PNL) == Decimal("1.25")
    assert entry.presentation_handle == "77"
    assert entry.created_at == NOW
    assert storage_service.get(2, draft.entry_id) is None


def test_service_pending_paging_and_cleanup(storage_service):
    """Test listing, counting and clearing parked drafts."""
    ids = []
    for i in range(6):
        draft = DraftEntry(user_id=1)
        ids.append(draft.entry_id)
        storage_service.save(PendingEntry(draft.entry_id, 1, draft, created_at=NOW - timedelta(hours=i)))

    page_one = storage_service.list_for_user(1, page=1, page_size=5)
    page_two = storage_service.list_for_user(1, page=2, page_size=5)

    assert [e.entry_id for e in page_one] == ids[:5]
    assert [e.entry_id for e in page_two] == ids[5:]
    assert storage_service.count_for_user(1) == 6
    assert storage_service.delete_older_than(NOW - timedelta(hours=3, minutes=30)) == 2
    assert storage_service.delete(1, ids[0]) is True
    assert storage_service.clear_for_user(1) == 3


def test_schema_database_setting(storage_service):
    """Test switching the user's schema database reports changes."""
    assert storage_service.get_schema_database(1) is None

    assert storage_service.set_schema_database(1, " db-123 ") is True
    assert storage_service.get_schema_database(1) == "db-123"
    assert storage_service.set_schema_database(1, "db-123") is False

    assert storage_service.set_schema_database(1, None) is True
    assert storage_service.get_schema_database(1) is None


def test_user_settings_repository_rejects_unknown_fields(db_session):
    """Test only known settings columns can be written."""
    repo = UserSettingsRepository(db_session)
    assert repo.upsert(1, language="de").language == "de"
    with pytest.raises(ValueError):
        repo.upsert(1, theme="dark")


# Engine over storage

def test_history_scores_read_stored_trades(storage_service):
    """Test the aggregator works directly over stored rows."""
    storage_service.add(make_trade(1, direction="Short", setups=["Breakout", "Retest"]))
    storage_service.add(make_trade(2, direction="Short"))

    aggregator = HistoryAggregator(storage_service)
    direction = aggregator.scores(1, TradeField.DIRECTION, now=NOW)
    setups = aggregator.scores(1, TradeField.SETUP, now=NOW)

    assert direction.personal_for("Short") == pytest.approx(1.0)
    assert direction.popularity_for("Short") == pytest.approx(0.4)
    assert set(setups.personal) == {"breakout", "retest"}


def test_conversation_commits_and_parks_into_database(storage_service):
    """Test a full conversation persists through the storage service."""
    presenter = RecordingPresenter()
    engine = ConversationEngine(
        trade_store=storage_service,
        suggestions=SuggestionCache(history=HistoryAggregator(storage_service)),
        presenter=presenter,
        pending_store=storage_service,
        clock=FakeClock(),
    )

    engine.start_trade(7)
    engine.handle(7, InputAction.value("nq"))
    assert engine.park(7).status == TransitionStatus.PARKED
    entries, total = engine.list_pending(7)
    assert total == 1

    engine.resume(7, entries[0].entry_id)
    engine.handle(7, InputAction.pick("Short"))
    engine.handle(7, InputAction.value("-40"))
    for _ in range(6):
        engine.handle(7, InputAction.skip())
    result = engine.handle(7, InputAction.confirm())

    assert result.status == TransitionStatus.COMMITTED
    stored = storage_service.get_trade(result.trade_id)
    assert isinstance(stored, JournalTrade)
    assert (stored.ticker, stored.direction, stored.pnl) == ("NQ", "Short", Decimal("-40"))
    assert storage_service.count_for_user(7) == 0


# Database setup

def test_init_db_uses_configured_database(tmp_path, monkeypatch):
    """Test the journal engine is built from the configured database URL."""
    from storage import database

    db_file = tmp_path / "configured.db"
    monkeypatch.setenv("JOURNAL_DATABASE_URL", f"sqlite:///{db_file}")
    monkeypatch.setenv("JOURNAL_APP_DATA_DIR", str(tmp_path))
    monkeypatch.setattr("config.settings._settings", None)
    database.dispose_engine()
    try:
        database.init_db()
        for db in database.get_db():
            trade_id = StorageService(db).add(make_trade(1, ticker="ES"))
        for db in database.get_db():
            assert StorageService(db).get_trade(trade_id).ticker == "ES"

        assert database.get_engine().url.database == str(db_file)
        assert db_file.exists()
    finally:
        database.dispose_engine()
