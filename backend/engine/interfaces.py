"""
Collaborator interfaces for the journal entry engine.

The engine owns no transport, persistence schema or schema source. It
talks to them through these abstract classes, implemented by the
storage layer, integrations and whatever transport drives the bot.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, List, Optional

from engine.models import ConversationState, DraftEntry, FieldOption, PendingEntry, TradeRecord


class TradeStore(ABC):
    """Durable trade storage."""

    @abstractmethod
    def add(self, record: TradeRecord) -> Any:
        """
        Persist a committed trade.

        Returns:
            Identifier assigned by the store

        Errors propagate to the caller so the user can be told the save failed.
        """
        pass

    @abstractmethod
    def query(self, user_id: int) -> List[Any]:
        """All trades for one user."""
        pass

    @abstractmethod
    def query_all(self) -> List[Any]:
        """All trades across users (used for global popularity)."""
        pass


class SchemaSource(ABC):
    """External source defining legal values for select / multi-select fields."""

    @property
    @abstractmethod
    def identity(self) -> str:
        """Stable identifier of the schema (e.g. the external database id)."""
        pass

    @abstractmethod
    def get_options(self, field_name: str) -> List[str]:
        """
        Legal options for a field.

        May raise on collaborator failure; callers fall back to cached data.
        """
        pass


class Presenter(ABC):
    """
    Outbound presentation hooks.

    The engine hands over structured data only; formatting is left to the
    transport implementing this interface.
    """

    @abstractmethod
    def show_step(self, state: ConversationState, options: List[FieldOption]) -> Optional[Any]:
        """Render the current step; may return a presentation handle."""
        pass

    @abstractmethod
    def show_confirmation(self, draft: DraftEntry) -> Optional[Any]:
        """Render the full preview of the draft."""
        pass

    @abstractmethod
    def show_error(self, user_id: int, message: str) -> None:
        pass

    def show_committed(self, draft: DraftEntry, trade_id: Any) -> None:
        """Tell the user the trade was saved."""
        pass

    def show_pending(self, user_id: int, entries: List[PendingEntry], page: int, total: int) -> None:
        """Render a page of parked drafts."""
        pass


class PendingStore(ABC):
    """Storage for parked drafts."""

    @abstractmethod
    def save(self, entry: PendingEntry) -> None:
        pass

    @abstractmethod
    def get(self, user_id: int, entry_id: str) -> Optional[PendingEntry]:
        pass

    @abstractmethod
    def delete(self, user_id: int, entry_id: str) -> bool:
        pass

    @abstractmethod
    def list_for_user(self, user_id: int, page: int = 1, page_size: int = 5) -> List[PendingEntry]:
        """Newest first, 1-based pages."""
        pass

    @abstractmethod
    def count_for_user(self, user_id: int) -> int:
        pass

    @abstractmethod
    def clear_for_user(self, user_id: int) -> int:
        pass

    @abstractmethod
    def delete_older_than(self, cutoff: datetime) -> int:
        pass
