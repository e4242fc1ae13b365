"""
Data models for the trade entry conversation.

Runtime state (drafts, conversation state, pending entries, ranked
options) uses dataclasses; the committed trade record is a pydantic
model so every entry handed to the store passes the journal rules.
"""

import re
import uuid
from dataclasses import dataclass, field as dc_field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from engine.fields import REQUIRED_FIELDS, FieldKind, TradeField


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (as stored by SQLite) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class TradeRecord(BaseModel):
    """Trade handed to the TradeStore on commit."""
    entry_id: str = Field(..., description="Draft identifier")
    user_id: int = Field(..., description="Owning user")
    date: datetime = Field(default_factory=utc_now, description="Trade date")
    ticker: str = Field(default="", max_length=20)
    direction: str = Field(default="", max_length=50)
    pnl: Decimal = Field(default=Decimal("0"), ge=Decimal("-1000000"), le=Decimal("1000000"))
    open_price: Optional[Decimal] = None
    close_price: Optional[Decimal] = None
    stop_loss: Optional[Decimal] = None
    take_profit: Optional[Decimal] = None
    volume: Optional[Decimal] = Field(default=None, ge=Decimal("0"))
    comment: str = Field(default="", max_length=1000)
    account: str = Field(default="", max_length=100)
    session: str = Field(default="", max_length=100)
    position: str = Field(default="", max_length=100)
    result: str = Field(default="", max_length=100)
    setups: List[str] = Field(default_factory=list, max_length=10)
    contexts: List[str] = Field(default_factory=list, max_length=10)
    emotions: List[str] = Field(default_factory=list, max_length=10)

    @field_validator("ticker")
    @classmethod
    def validate_ticker(cls, value: str) -> str:
        ticker = value.strip().upper()
        if ticker and not re.match(r"^[A-Z0-9/]+$", ticker):
            raise ValueError("Ticker may only contain letters, digits and '/'")
        return ticker

    @field_validator("date")
    @classmethod
    def validate_date(cls, value: datetime) -> datetime:
        if as_utc(value) > utc_now() + timedelta(days=1):
            raise ValueError("Trade date cannot be in the future")
        return value

    @field_validator("setups", "contexts", "emotions")
    @classmethod
    def validate_items(cls, value: List[str]) -> List[str]:
        for item in value:
            if len(item) > 100:
                raise ValueError("List values cannot be longer than 100 characters")
        return value


@dataclass
class DraftEntry:
    """In-progress trade being composed by the conversation."""
    user_id: int
    entry_id: str = dc_field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = dc_field(default_factory=utc_now)
    values: Dict[TradeField, Any] = dc_field(default_factory=dict)

    def get(self, trade_field: TradeField) -> Any:
        return self.values.get(trade_field)

    def set(self, trade_field: TradeField, value: Any) -> None:
        if value is None or value == "" or value == []:
            self.values.pop(trade_field, None)
        else:
            self.values[trade_field] = list(value) if trade_field.is_multi else value

    def has(self, trade_field: TradeField) -> bool:
        return trade_field in self.values

    def touched_fields(self) -> List[TradeField]:
        return [f for f in TradeField if f in self.values]

    def missing_required(self) -> List[TradeField]:
        return [f for f in REQUIRED_FIELDS if f not in self.values]

    def to_record(self) -> TradeRecord:
        """Build the validated record handed to the TradeStore."""
        payload: Dict[str, Any] = {
            "entry_id": self.entry_id,
            "user_id": self.user_id,
            "date": self.created_at,
        }
        for trade_field, value in self.values.items():
            payload[trade_field.attribute] = value
        return TradeRecord(**payload)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly form used when parking a draft in durable storage."""
        values: Dict[str, Any] = {}
        for trade_field, value in self.values.items():
            values[trade_field.key] = str(value) if isinstance(value, Decimal) else value
        return {
            "entry_id": self.entry_id,
            "user_id": self.user_id,
            "created_at": self.created_at.isoformat(),
            "values": values,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DraftEntry":
        draft = cls(
            user_id=int(data["user_id"]),
            entry_id=str(data["entry_id"]),
            created_at=as_utc(datetime.fromisoformat(data["created_at"])),
        )
        for key, value in (data.get("values") or {}).items():
            trade_field = TradeField.from_key(key)
            if trade_field.kind == FieldKind.DECIMAL and value is not None:
                value = Decimal(str(value))
            draft.set(trade_field, value)
        return draft


class Phase(str, Enum):
    """Non-terminal conversation phases."""
    STEP = "step"
    CONFIRMING = "confirming"
    EDITING = "editing"


@dataclass
class ConversationState:
    """Per-user state of an active entry conversation."""
    user_id: int
    draft: DraftEntry
    flow: tuple
    step: int = 1
    phase: Phase = Phase.STEP
    editing_field: Optional[TradeField] = None
    nav_stack: List[int] = dc_field(default_factory=list)
    busy: bool = False
    cancel_requested: bool = False
    error_count: int = 0
    last_input_at: datetime = dc_field(default_factory=utc_now)
    presentation_handle: Optional[Any] = None
    option_offset: int = 0

    @property
    def total_steps(self) -> int:
        return len(self.flow)

    @property
    def current_field(self) -> Optional[TradeField]:
        """Field the user is currently answering, if any."""
        if self.phase == Phase.EDITING:
            return self.editing_field
        if self.phase == Phase.STEP:
            return self.flow[self.step - 1]
        return None

    def snapshot(self) -> Dict[str, Any]:
        current = self.current_field
        return {
            "user_id": self.user_id,
            "entry_id": self.draft.entry_id,
            "phase": self.phase.value,
            "step": self.step,
            "total_steps": self.total_steps,
            "field": current.key if current else None,
            "error_count": self.error_count,
            "busy": self.busy,
            "values": {f.key: v for f, v in self.draft.values.items()},
        }


@dataclass
class PendingEntry:
    """A draft parked for later resumption."""
    entry_id: str
    user_id: int
    draft: DraftEntry
    presentation_handle: Optional[Any] = None
    created_at: datetime = dc_field(default_factory=utc_now)


@dataclass(frozen=True)
class FieldOption:
    """A ranked candidate value for a field and the signals behind its rank."""
    value: str
    personal_score: float = 0.0
    global_score: float = 0.0
    in_schema: bool = False
    boosted: bool = False

    @property
    def score(self) -> float:
        return self.personal_score + self.global_score


class InputKind(str, Enum):
    """Kinds of user action delivered by the transport."""
    VALUE = "value"
    PICK = "pick"
    SKIP = "skip"
    BACK = "back"
    DONE = "done"
    MORE = "more"
    CANCEL = "cancel"
    CONFIRM = "confirm"
    EDIT = "edit"
    PARK = "park"


@dataclass(frozen=True)
class InputAction:
    """One inbound user action."""
    kind: InputKind
    text: Optional[str] = None
    field: Optional[TradeField] = None

    @classmethod
    def value(cls, text: str) -> "InputAction":
        return cls(InputKind.VALUE, text=text)

    @classmethod
    def pick(cls, option: str) -> "InputAction":
        return cls(InputKind.PICK, text=option)

    @classmethod
    def skip(cls) -> "InputAction":
        return cls(InputKind.SKIP)

    @classmethod
    def back(cls) -> "InputAction":
        return cls(InputKind.BACK)

    @classmethod
    def done(cls) -> "InputAction":
        return cls(InputKind.DONE)

    @classmethod
    def more(cls) -> "InputAction":
        return cls(InputKind.MORE)

    @classmethod
    def cancel(cls) -> "InputAction":
        return cls(InputKind.CANCEL)

    @classmethod
    def confirm(cls) -> "InputAction":
        return cls(InputKind.CONFIRM)

    @classmethod
    def edit(cls, trade_field: TradeField) -> "InputAction":
        return cls(InputKind.EDIT, field=trade_field)

    @classmethod
    def park(cls) -> "InputAction":
        return cls(InputKind.PARK)


class TransitionStatus(str, Enum):
    """Outcome of handling one action."""
    STEP = "step"
    CONFIRMING = "confirming"
    COMMITTED = "committed"
    CANCELLED = "cancelled"
    CANCEL_SCHEDULED = "cancel_scheduled"
    EXPIRED = "expired"
    PARKED = "parked"
    INVALID_INPUT = "invalid_input"
    BUSY = "busy"
    REJECTED = "rejected"
    COMMIT_FAILED = "commit_failed"
    NO_SESSION = "no_session"


@dataclass
class TransitionResult:
    status: TransitionStatus
    state: Optional[Dict[str, Any]] = None
    message: str = ""
    trade_id: Optional[Any] = None
