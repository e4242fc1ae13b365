"""
Trade entry engine module.

Core components:
- Trade fields and flows
- Draft, conversation and pending entry models
- Collaborator interfaces (trade store, schema source, presenter)
- Conversation engine (import from engine.conversation)
"""

from engine.errors import FieldValidationError, InvalidTransitionError, JournalError, SchemaUnavailableError
from engine.fields import DEFAULT_FLOW, EXTENDED_FLOW, REQUIRED_FIELDS, FieldKind, TradeField
from engine.interfaces import PendingStore, Presenter, SchemaSource, TradeStore
from engine.models import (
    ConversationState,
    DraftEntry,
    FieldOption,
    InputAction,
    InputKind,
    PendingEntry,
    Phase,
    TradeRecord,
    TransitionResult,
    TransitionStatus,
)

__all__ = [
    "JournalError",
    "FieldValidationError",
    "InvalidTransitionError",
    "SchemaUnavailableError",
    "FieldKind",
    "TradeField",
    "DEFAULT_FLOW",
    "EXTENDED_FLOW",
    "REQUIRED_FIELDS",
    "TradeStore",
    "SchemaSource",
    "Presenter",
    "PendingStore",
    "ConversationState",
    "DraftEntry",
    "FieldOption",
    "InputAction",
    "InputKind",
    "PendingEntry",
    "Phase",
    "TradeRecord",
    "TransitionResult",
    "TransitionStatus",
]
