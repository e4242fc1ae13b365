"""
Tests for history aggregation used in option ranking.
"""
import pytest

from engine.fields import TradeField
from services.history_aggregator import HistoryAggregator, RankingWeights

from conftest import NOW, FakeTradeStore, make_trade


def test_personal_score_blends_frequency_and_freshness():
    """Test each occurrence adds 0.7 plus 0.3 scaled by 1/age in days."""
    store = FakeTradeStore([
        make_trade(1, days_ago=10, direction="Long"),
        make_trade(1, days_ago=0, direction="Short"),
    ])

    scores = HistoryAggregator(store).scores(1, TradeField.DIRECTION, now=NOW)

    assert scores.personal_for("Long") == pytest.approx(0.73)
    assert scores.personal_for("Short") == pytest.approx(1.0)


def test_frequency_dominates_recency():
    """Test three old uses outrank one fresh use."""
    store = FakeTradeStore(
        [make_trade(1, days_ago=60, account="Swing") for _ in range(3)]
        + [make_trade(1, days_ago=0, account="Scalp")]
    )

    scores = HistoryAggregator(store).scores(1, TradeField.ACCOUNT, now=NOW)

    assert scores.personal_for("Swing") > scores.personal_for("Scalp")


def test_multi_fields_count_each_element():
    """Test list fields score every selected value."""
    store = FakeTradeStore([
        make_trade(1, days_ago=1, setups=["Breakout", "Retest"]),
        make_trade(1, days_ago=1, setups=["Breakout"]),
    ])

    scores = HistoryAggregator(store).scores(1, TradeField.SETUP, now=NOW)

    assert scores.personal_for("Breakout") == pytest.approx(2.0)
    assert scores.personal_for("Retest") == pytest.approx(1.0)


def test_global_popularity_counts_all_users():
    """Test popularity adds 0.2 per occurrence across every user."""
    store = FakeTradeStore([
        make_trade(1, direction="Long"),
        make_trade(2, direction="Long"),
        make_trade(3, direction="Short"),
    ])

    scores = HistoryAggregator(store).scores(1, TradeField.DIRECTION, now=NOW)

    assert scores.popularity_for("Long") == pytest.approx(0.4)
    assert scores.popularity_for("Short") == pytest.approx(0.2)
    assert scores.personal_for("Short") == 0.0


def test_values_merge_case_insensitively():
    """Test differently cased spellings share one score and keep the first label."""
    store = FakeTradeStore([
        make_trade(1, days_ago=1, account="Main"),
        make_trade(1, days_ago=1, account="MAIN"),
    ])

    scores = HistoryAggregator(store).scores(1, TradeField.ACCOUNT, now=NOW)

    assert scores.personal == {"main": pytest.approx(2.0)}
    assert scores.labels["main"] == "Main"


def test_empty_values_are_ignored():
    """Test blank values never become candidates."""
    store = FakeTradeStore([make_trade(1, account="  "), make_trade(1, comment="")])

    scores = HistoryAggregator(store).scores(1, TradeField.ACCOUNT, now=NOW)

    assert scores.is_empty()


def test_custom_weights():
    """Test weights come from configuration."""
    store = FakeTradeStore([make_trade(1, direction="Long")])
    weights = RankingWeights(frequency=1.0, freshness=0.0, popularity=0.5)

    scores = HistoryAggregator(store, weights).scores(1, TradeField.DIRECTION, now=NOW)

    assert scores.personal_for("Long") == pytest.approx(1.0)
    assert scores.popularity_for("Long") == pytest.approx(0.5)


def test_store_failure_yields_empty_scores():
    """Test a failing history read degrades to empty signals."""
    store = FakeTradeStore([make_trade(1, direction="Long")])
    store.fail_reads = True

    scores = HistoryAggregator(store).scores(1, TradeField.DIRECTION, now=NOW)

    assert scores.is_empty()


def test_dict_entries_are_supported():
    """Test plain mappings work as history entries."""
    store = FakeTradeStore()
    store.query = lambda user_id: [{"date": NOW, "session": "LONDON"}]
    store.query_all = lambda: []

    scores = HistoryAggregator(store).scores(1, TradeField.SESSION, now=NOW)

    assert scores.personal_for("london") == pytest.approx(1.0)
