"""
Tests for trade fields, flows, input parsing and record validation.
"""
import pytest
from datetime import timedelta
from decimal import Decimal

from pydantic import ValidationError

from engine.errors import FieldValidationError
from engine.fields import DEFAULT_FLOW, EXTENDED_FLOW, TradeField, step_of, validate_flow
from engine.models import DraftEntry, TradeRecord, utc_now
from engine.validation import parse_decimal, parse_field_input, split_multi


# Fields and flows

def test_default_flow_has_nine_steps():
    """Test the default entry flow order."""
    assert [f.key for f in DEFAULT_FLOW] == [
        "ticker", "direction", "pnl", "open", "close", "sl", "tp", "volume", "comment",
    ]
    assert EXTENDED_FLOW[:9] == DEFAULT_FLOW
    assert len(EXTENDED_FLOW) == 16


def test_field_lookup_by_key():
    """Test short keys resolve to fields."""
    assert TradeField.from_key("SL") == TradeField.SL
    with pytest.raises(KeyError):
        TradeField.from_key("leverage")


def test_field_reads_objects_and_mappings():
    """Test one accessor serves records and plain dicts."""
    record = TradeRecord(entry_id="e1", user_id=1, ticker="ES", setups=["A", " ", "B"])

    assert TradeField.TICKER.read(record) == "ES"
    assert TradeField.SL.read({"stop_loss": Decimal("1")}) == Decimal("1")
    assert TradeField.SETUP.values_of(record) == ["A", "B"]
    assert TradeField.ACCOUNT.values_of(None) == []


def test_validate_flow_rejects_duplicates_and_empty():
    """Test flows must be non-empty and distinct."""
    with pytest.raises(ValueError):
        validate_flow([])
    with pytest.raises(ValueError):
        validate_flow([TradeField.TICKER, TradeField.TICKER])


def test_step_of():
    """Test 1-based step lookup."""
    assert step_of(DEFAULT_FLOW, TradeField.PNL) == 3
    assert step_of(DEFAULT_FLOW, TradeField.SETUP) is None


# Input parsing

@pytest.mark.parametrize("text,expected", [
    ("12.5", Decimal("12.5")),
    ("12,5", Decimal("12.5")),
    ("+3", Decimal("3")),
    ("-1 000", Decimal("-1000")),
    ("2%", Decimal("2")),
])
def test_parse_decimal(text, expected):
    """Test numbers accept either separator and stray formatting."""
    assert parse_decimal(text) == expected


def test_parse_decimal_rejects_text():
    """Test non-numbers are refused."""
    with pytest.raises(ValueError):
        parse_decimal("abc")
    with pytest.raises(ValueError):
        parse_decimal("NaN")


def test_ticker_is_normalized():
    """Test tickers are trimmed and upper-cased."""
    assert parse_field_input(TradeField.TICKER, "  eur/usd ") == "EUR/USD"


@pytest.mark.parametrize("text", ["", "   ", "BTC-USD", "A" * 21])
def test_bad_tickers(text):
    """Test empty, malformed and over-long tickers fail."""
    with pytest.raises(FieldValidationError) as exc_info:
        parse_field_input(TradeField.TICKER, text)
    assert exc_info.value.field == TradeField.TICKER


def test_pnl_range():
    """Test PnL is limited to one million either way."""
    assert parse_field_input(TradeField.PNL, "-1000000") == Decimal("-1000000")
    with pytest.raises(FieldValidationError):
        parse_field_input(TradeField.PNL, "1000000.01")


def test_volume_cannot_be_negative():
    """Test negative volume fails."""
    with pytest.raises(FieldValidationError):
        parse_field_input(TradeField.VOLUME, "-1")


def test_comment_length_limit():
    """Test over-long comments fail."""
    assert parse_field_input(TradeField.COMMENT, "ok") == "ok"
    with pytest.raises(FieldValidationError):
        parse_field_input(TradeField.COMMENT, "x" * 1001)


def test_multi_input_split_and_deduplicated():
    """Test multi-select text splits on separators and drops repeats."""
    assert split_multi("Breakout, retest;BREAKOUT\nTrend") == ["Breakout", "retest", "Trend"]
    assert parse_field_input(TradeField.SETUP, "A, B") == ["A", "B"]


def test_multi_input_item_limits():
    """Test item count and item length limits."""
    with pytest.raises(FieldValidationError):
        parse_field_input(TradeField.SETUP, ",".join(f"s{i}" for i in range(11)))
    with pytest.raises(FieldValidationError):
        parse_field_input(TradeField.EMOTIONS, "x" * 51)


# Draft and record

def test_draft_set_empty_removes_value():
    """Test setting an empty value clears the field."""
    draft = DraftEntry(user_id=1)
    draft.set(TradeField.SETUP, ["A"])
    draft.set(TradeField.SETUP, [])
    draft.set(TradeField.TICKER, "ES")

    assert draft.touched_fields() == [TradeField.TICKER]
    assert draft.missing_required() == [TradeField.DIRECTION, TradeField.PNL]


def test_draft_serialization_keeps_decimals():
    """Test parked drafts restore typed values."""
    draft = DraftEntry(user_id=3)
    draft.set(TradeField.PNL, Decimal("-2.75"))
    draft.set(TradeField.CONTEXT, ["News"])

    restored = DraftEntry.from_dict(draft.to_dict())

    assert restored.entry_id == draft.entry_id
    assert restored.get(TradeField.PNL) == Decimal("-2.75")
    assert restored.get(TradeField.CONTEXT) == ["News"]


def test_record_rejects_future_date():
    """Test trade dates more than a day ahead are refused."""
    with pytest.raises(ValidationError):
        TradeRecord(entry_id="e", user_id=1, date=utc_now() + timedelta(days=2))


def test_record_rejects_out_of_range_pnl():
    """Test the record guards PnL bounds too."""
    with pytest.raises(ValidationError):
        TradeRecord(entry_id="e", user_id=1, pnl=Decimal("2000000"))
