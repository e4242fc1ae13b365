"""
Trade journal fields and entry flows.

Every field the conversation can collect is a member of ``TradeField``.
Each member carries its own accessor and metadata so callers never
switch on field-name strings.
"""

from enum import Enum
from typing import Any, Iterable, List, Optional, Tuple


class FieldKind(str, Enum):
    """How a field's raw input is parsed and stored."""
    TEXT = "text"
    TICKER = "ticker"
    DECIMAL = "decimal"
    CHOICE = "choice"
    MULTI_CHOICE = "multi_choice"


class TradeField(Enum):
    """
    Supported trade fields.

    Value tuple: (key, attribute, kind, schema property, suggestable,
    open vocabulary, default options).
    """

    TICKER = ("ticker", "ticker", FieldKind.TICKER, "Ticker", True, True, ())
    DIRECTION = ("direction", "direction", FieldKind.CHOICE, "Direction", True, False, ("Long", "Short"))
    PNL = ("pnl", "pnl", FieldKind.DECIMAL, None, False, False, ())
    OPEN = ("open", "open_price", FieldKind.DECIMAL, None, False, False, ())
    CLOSE = ("close", "close_price", FieldKind.DECIMAL, None, False, False, ())
    SL = ("sl", "stop_loss", FieldKind.DECIMAL, None, False, False, ())
    TP = ("tp", "take_profit", FieldKind.DECIMAL, None, False, False, ())
    VOLUME = ("volume", "volume", FieldKind.DECIMAL, None, False, False, ())
    COMMENT = ("comment", "comment", FieldKind.TEXT, None, True, True, ())
    ACCOUNT = ("account", "account", FieldKind.CHOICE, "Account", True, True, ())
    SESSION = ("session", "session", FieldKind.CHOICE, "Session", True, False,
               ("ASIA", "FRANKFURT", "LONDON", "NEW YORK"))
    POSITION = ("position", "position", FieldKind.CHOICE, "Position", True, False, ("Long", "Short"))
    SETUP = ("setup", "setups", FieldKind.MULTI_CHOICE, "Setup", True, True, ())
    CONTEXT = ("context", "contexts", FieldKind.MULTI_CHOICE, "Context", True, True, ())
    EMOTIONS = ("emotions", "emotions", FieldKind.MULTI_CHOICE, "Emotions", True, True, ())
    RESULT = ("result", "result", FieldKind.CHOICE, "Result", True, False, ("Win", "Loss", "Breakeven"))

    def __init__(self, key, attribute, kind, schema_property, suggestable, open_vocabulary, defaults):
        self.key = key
        self.attribute = attribute
        self.kind = kind
        self.schema_property = schema_property
        self.suggestable = suggestable
        self.open_vocabulary = open_vocabulary
        self.defaults = tuple(defaults)

    @property
    def is_multi(self) -> bool:
        return self.kind == FieldKind.MULTI_CHOICE

    @property
    def is_choice(self) -> bool:
        return self.kind in (FieldKind.CHOICE, FieldKind.MULTI_CHOICE, FieldKind.TICKER)

    @property
    def schema_name(self) -> str:
        """Property name used when asking the external schema source."""
        return self.schema_property or self.key.capitalize()

    def read(self, entry: Any) -> Any:
        """Pull this field's value off a trade-like object or mapping."""
        if entry is None:
            return None
        if isinstance(entry, dict):
            return entry.get(self.attribute)
        return getattr(entry, self.attribute, None)

    def values_of(self, entry: Any) -> List[str]:
        """
        Non-empty string values this entry contributes for the field.

        List fields contribute one value per element; scalar fields at most one.
        """
        raw = self.read(entry)
        if raw is None:
            return []
        items: Iterable[Any] = raw if isinstance(raw, (list, tuple, set)) else (raw,)
        result = []
        for item in items:
            text = str(item).strip()
            if text:
                result.append(text)
        return result

    @classmethod
    def from_key(cls, key: str) -> "TradeField":
        """Look up a field by its short key (e.g. ``"sl"``)."""
        normalized = str(key or "").strip().lower()
        for member in cls:
            if member.key == normalized:
                return member
        raise KeyError(f"Unknown trade field: {key}")


Flow = Tuple[TradeField, ...]

DEFAULT_FLOW: Flow = (
    TradeField.TICKER,
    TradeField.DIRECTION,
    TradeField.PNL,
    TradeField.OPEN,
    TradeField.CLOSE,
    TradeField.SL,
    TradeField.TP,
    TradeField.VOLUME,
    TradeField.COMMENT,
)

EXTENDED_FLOW: Flow = DEFAULT_FLOW + (
    TradeField.ACCOUNT,
    TradeField.SESSION,
    TradeField.POSITION,
    TradeField.SETUP,
    TradeField.CONTEXT,
    TradeField.EMOTIONS,
    TradeField.RESULT,
)

# Fields a draft needs before it can be confirmed directly.
REQUIRED_FIELDS: Flow = (TradeField.TICKER, TradeField.DIRECTION, TradeField.PNL)


def validate_flow(flow: Iterable[TradeField]) -> Flow:
    """Check a flow is a non-empty sequence of distinct fields."""
    steps = tuple(flow)
    if not steps:
        raise ValueError("An entry flow needs at least one step")
    if len(set(steps)) != len(steps):
        raise ValueError("An entry flow cannot repeat a field")
    return steps


def step_of(flow: Flow, field: TradeField) -> Optional[int]:
    """1-based step number owning the field, or None if the flow lacks it."""
    try:
        return flow.index(field) + 1
    except ValueError:
        return None
