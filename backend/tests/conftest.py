"""
Shared fakes and fixtures for journal engine tests.
"""
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from engine.conversation import ConversationEngine
from engine.interfaces import Presenter, SchemaSource, TradeStore
from engine.models import TradeRecord
from engine.pending import InMemoryPendingStore
from services.history_aggregator import HistoryAggregator
from services.suggestion_cache import SuggestionCache


NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def make_trade(user_id=1, days_ago=0.0, now=NOW, **values):
    """Build a committed trade record dated ``days_ago`` before ``now``."""
    values.setdefault("ticker", "EURUSD")
    values.setdefault("pnl", Decimal("0"))
    return TradeRecord(
        entry_id=uuid.uuid4().hex,
        user_id=user_id,
        date=now - timedelta(days=days_ago),
        **values,
    )


class FakeTradeStore(TradeStore):
    """In-memory trade store that counts reads and can be told to fail."""

    def __init__(self, entries=None):
        self.entries = list(entries or [])
        self.fail_add = False
        self.fail_reads = False
        self.query_calls = 0
        self.query_all_calls = 0

    def add(self, record):
        if self.fail_add:
            raise RuntimeError("store unavailable")
        self.entries.append(record)
        return len(self.entries)

    def query(self, user_id):
        self.query_calls += 1
        if self.fail_reads:
            raise RuntimeError("store unavailable")
        return [e for e in self.entries if e.user_id == user_id]

    def query_all(self):
        self.query_all_calls += 1
        if self.fail_reads:
            raise RuntimeError("store unavailable")
        return list(self.entries)


class FakeSchema(SchemaSource):
    """Schema source serving fixed option lists per property."""

    def __init__(self, options=None, identity="fake:journal"):
        self.options = dict(options or {})
        self._identity = identity
        self.fail = False
        self.calls = 0

    @property
    def identity(self):
        return self._identity

    def get_options(self, field_name):
        self.calls += 1
        if self.fail:
            raise ConnectionError("schema unavailable")
        return list(self.options.get(field_name, []))


class RecordingPresenter(Presenter):
    """Presenter that records everything shown and can run hooks while rendering a step."""

    def __init__(self):
        self.steps = []
        self.confirmations = []
        self.errors = []
        self.committed = []
        self.pending_pages = []
        self.step_hooks = []
        self.handles_seen = []

    def show_step(self, state, options):
        self.steps.append((state.current_field, [o.value for o in options]))
        self.handles_seen.append(state.presentation_handle)
        if self.step_hooks:
            hook = self.step_hooks.pop(0)
            hook(state)
        return f"msg-{len(self.steps)}"

    def show_confirmation(self, draft):
        self.confirmations.append(dict(draft.values))
        return f"preview-{len(self.confirmations)}"

    def show_error(self, user_id, message):
        self.errors.append((user_id, message))

    def show_committed(self, draft, trade_id):
        self.committed.append((draft.entry_id, trade_id))

    def show_pending(self, user_id, entries, page, total):
        self.pending_pages.append((user_id, [e.entry_id for e in entries], page, total))

    @property
    def last_field(self):
        return self.steps[-1][0] if self.steps else None

    @property
    def last_options(self):
        return self.steps[-1][1] if self.steps else []


class FakeClock:
    """Settable wall clock returning aware UTC datetimes."""

    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class FakeMonotonic:
    """Settable monotonic clock for cache TTL tests."""

    def __init__(self, start=1000.0):
        self.value = start

    def __call__(self):
        return self.value

    def advance(self, seconds):
        self.value += seconds


@pytest.fixture
def trade_store():
    return FakeTradeStore()


@pytest.fixture
def presenter():
    return RecordingPresenter()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def monotonic():
    return FakeMonotonic()


@pytest.fixture
def suggestion_cache(trade_store, monotonic):
    return SuggestionCache(history=HistoryAggregator(trade_store), clock=monotonic)


@pytest.fixture
def make_engine(trade_store, presenter, clock, suggestion_cache):
    """Factory building a ConversationEngine wired to the fakes."""
    def _make(**kwargs):
        kwargs.setdefault("suggestions", suggestion_cache)
        kwargs.setdefault("pending_store", InMemoryPendingStore())
        kwargs.setdefault("clock", clock)
        return ConversationEngine(trade_store=trade_store, presenter=presenter, **kwargs)
    return _make
