"""
Storage service - High-level interface for storage operations.
Provides the TradeStore and PendingStore used by the conversation engine
on top of the repositories.
"""
import logging
import threading
from typing import List, Optional, Dict, Any
from datetime import datetime
from sqlalchemy.orm import Session

from engine.interfaces import PendingStore, TradeStore
from engine.models import DraftEntry, PendingEntry, TradeRecord, as_utc
from storage.repositories import (
    JournalTradeRepository, PendingTradeRepository, UserSettingsRepository
)
from storage.models import JournalTrade, PendingTrade, UserSettingsRecord
from storage.database import Base

logger = logging.getLogger(__name__)


class StorageService(TradeStore, PendingStore):
    """
    Main storage service coordinating all repository operations.
    This is the primary interface for the engine to interact with storage.
    """

    def __init__(self, db: Session):
        """Initialize storage service with database session."""
        self.db = db
        # Ensure schema exists for the active DB bind.
        Base.metadata.create_all(bind=self.db.get_bind())
        self.trades = JournalTradeRepository(db)
        self.pending = PendingTradeRepository(db)
        self.user_settings = UserSettingsRepository(db)
        # One session is shared by every handler thread.
        self._lock = threading.RLock()

    # TradeStore

    def add(self, record: TradeRecord) -> int:
        """Persist a committed trade and return its row id."""
        with self._lock:
            try:
                trade = self.trades.create(record)
            except Exception:
                self.db.rollback()
                raise
        logger.info("Stored trade %s (%s) for user %s", trade.id, trade.ticker, trade.user_id)
        return trade.id

    def query(self, user_id: int) -> List[JournalTrade]:
        with self._lock:
            return self.trades.get_by_user(user_id)

    def query_all(self) -> List[JournalTrade]:
        with self._lock:
            return self.trades.get_all()

    # Trade operations

    def get_trade(self, trade_id: int) -> Optional[JournalTrade]:
        with self._lock:
            return self.trades.get_by_id(trade_id)

    def update_trade(self, trade_id: int, changes: Dict[str, Any]) -> Optional[JournalTrade]:
        """Apply changes to a stored trade; returns None if it does not exist."""
        with self._lock:
            trade = self.trades.get_by_id(trade_id)
            if trade is None:
                return None
            try:
                return self.trades.update(trade, changes)
            except Exception:
                self.db.rollback()
                raise

    def delete_trade(self, trade_id: int) -> bool:
        with self._lock:
            return self.trades.delete(trade_id)

    def get_last_trade(self, user_id: int) -> Optional[JournalTrade]:
        """Get the user's most recently committed trade."""
        with self._lock:
            return self.trades.get_last(user_id)

    def get_trades_in_range(self, user_id: int, start: datetime, end: datetime) -> List[JournalTrade]:
        """Get the user's trades dated within a window, oldest first."""
        with self._lock:
            return self.trades.get_in_range(user_id, start, end)

    # PendingStore

    def save(self, entry: PendingEntry) -> None:
        handle = entry.presentation_handle
        with self._lock:
            self.pending.upsert(
                user_id=entry.user_id,
                entry_id=entry.entry_id,
                draft=entry.draft.to_dict(),
                presentation_handle=str(handle) if handle is not None else None,
                created_at=entry.created_at,
            )

    def get(self, user_id: int, entry_id: str) -> Optional[PendingEntry]:
        with self._lock:
            row = self.pending.get(user_id, entry_id)
            return self._to_pending_entry(row) if row else None

    def delete(self, user_id: int, entry_id: str) -> bool:
        with self._lock:
            return self.pending.delete(user_id, entry_id)

    def list_for_user(self, user_id: int, page: int = 1, page_size: int = 5) -> List[PendingEntry]:
        page = max(1, int(page))
        with self._lock:
            rows = self.pending.list_for_user(user_id, limit=page_size, offset=(page - 1) * page_size)
            return [self._to_pending_entry(row) for row in rows]

    def count_for_user(self, user_id: int) -> int:
        with self._lock:
            return self.pending.count_for_user(user_id)

    def clear_for_user(self, user_id: int) -> int:
        with self._lock:
            return self.pending.delete_for_user(user_id)

    def delete_older_than(self, cutoff: datetime) -> int:
        with self._lock:
            return self.pending.delete_older_than(cutoff)

    @staticmethod
    def _to_pending_entry(row: PendingTrade) -> PendingEntry:
        return PendingEntry(
            entry_id=row.entry_id,
            user_id=row.user_id,
            draft=DraftEntry.from_dict(row.draft),
            presentation_handle=row.presentation_handle,
            created_at=as_utc(row.created_at),
        )

    # User settings operations

    def get_user_settings(self, user_id: int) -> Optional[UserSettingsRecord]:
        with self._lock:
            return self.user_settings.get_by_user(user_id)

    def get_schema_database(self, user_id: int) -> Optional[str]:
        """The user's external schema database id, when enabled."""
        record = self.get_user_settings(user_id)
        if record is None or not record.schema_enabled:
            return None
        return record.schema_database_id or None

    def set_schema_database(self, user_id: int, database_id: Optional[str]) -> bool:
        """
        Point the user at a different external schema database.

        Returns True when the value changed; callers then invalidate the
        schema cache for the old identity.
        """
        database_id = (database_id or "").strip() or None
        with self._lock:
            record = self.user_settings.get_by_user(user_id)
            previous = record.schema_database_id if record else None
            self.user_settings.upsert(
                user_id,
                schema_database_id=database_id,
                schema_enabled=database_id is not None,
            )
        changed = previous != database_id
        if changed:
            logger.info("User %s schema database changed", user_id)
        return changed

    def set_language(self, user_id: int, language: str) -> UserSettingsRecord:
        with self._lock:
            return self.user_settings.upsert(user_id, language=language)
