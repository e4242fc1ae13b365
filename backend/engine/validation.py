"""
Local format validation for conversational field input.

Turns raw text typed (or picked) by the user into the typed value stored
on a draft. Raises FieldValidationError when the text cannot be used.
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Any, List

from engine.errors import FieldValidationError
from engine.fields import FieldKind, TradeField

TICKER_PATTERN = re.compile(r"^[A-Z0-9/]+$")
MAX_TICKER_LENGTH = 20
MAX_PNL_ABS = Decimal("1000000")
MAX_MULTI_ITEMS = 10

MAX_TEXT_LENGTH = {
    TradeField.COMMENT: 1000,
    TradeField.DIRECTION: 50,
    TradeField.ACCOUNT: 100,
    TradeField.SESSION: 100,
    TradeField.POSITION: 100,
    TradeField.RESULT: 100,
}
MAX_ITEM_LENGTH = {
    TradeField.SETUP: 100,
    TradeField.CONTEXT: 100,
    TradeField.EMOTIONS: 50,
}


def parse_decimal(text: str) -> Decimal:
    """Parse a decimal accepting either ',' or '.' as separator and an optional '%'."""
    cleaned = str(text).strip().replace(" ", "").replace(",", ".").rstrip("%")
    if cleaned.startswith("+"):
        cleaned = cleaned[1:]
    try:
        value = Decimal(cleaned)
    except (InvalidOperation, ValueError):
        raise ValueError(f"'{text}' is not a number")
    if not value.is_finite():
        raise ValueError(f"'{text}' is not a number")
    return value


def normalize_ticker(text: str) -> str:
    ticker = str(text).strip().upper()
    if not ticker:
        raise ValueError("Ticker is required")
    if len(ticker) > MAX_TICKER_LENGTH:
        raise ValueError(f"Ticker cannot be longer than {MAX_TICKER_LENGTH} characters")
    if not TICKER_PATTERN.match(ticker):
        raise ValueError("Ticker may only contain letters, digits and '/'")
    return ticker


def split_multi(text: str) -> List[str]:
    """Split comma/semicolon/newline separated text into distinct items, keeping order."""
    items: List[str] = []
    seen = set()
    for part in re.split(r"[,;\n]", str(text)):
        item = part.strip()
        if item and item.casefold() not in seen:
            seen.add(item.casefold())
            items.append(item)
    return items


def parse_field_input(field: TradeField, text: str) -> Any:
    """
    Convert raw input into the stored value for ``field``.

    Raises:
        FieldValidationError: when the input is empty or malformed
    """
    raw = "" if text is None else str(text).strip()
    if not raw:
        raise FieldValidationError(field, f"A value for {field.key} is required")

    try:
        if field.kind == FieldKind.TICKER:
            return normalize_ticker(raw)
        if field.kind == FieldKind.DECIMAL:
            value = parse_decimal(raw)
            if field == TradeField.PNL and abs(value) > MAX_PNL_ABS:
                raise ValueError("PnL must be between -1,000,000 and 1,000,000")
            if field == TradeField.VOLUME and value < 0:
                raise ValueError("Volume cannot be negative")
            return value
        if field.kind == FieldKind.MULTI_CHOICE:
            items = split_multi(raw)
            validate_multi(field, items)
            return items
        limit = MAX_TEXT_LENGTH.get(field)
        if limit is not None and len(raw) > limit:
            raise ValueError(f"{field.key} cannot be longer than {limit} characters")
        return raw
    except ValueError as exc:
        raise FieldValidationError(field, str(exc)) from exc


def validate_multi(field: TradeField, items: List[str]) -> None:
    if len(items) > MAX_MULTI_ITEMS:
        raise ValueError(f"At most {MAX_MULTI_ITEMS} values allowed for {field.key}")
    limit = MAX_ITEM_LENGTH.get(field, 100)
    for item in items:
        if len(item) > limit:
            raise ValueError(f"Each {field.key} value cannot be longer than {limit} characters")
