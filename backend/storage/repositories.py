"""
Repository classes for database CRUD operations.
Provides abstraction layer between services and database models.
"""
from typing import List, Optional, Dict, Any
from datetime import datetime, timezone
from sqlalchemy.orm import Session
from sqlalchemy import and_

from engine.models import TradeRecord
from storage.models import JournalTrade, PendingTrade, UserSettingsRecord


def _to_db_datetime(value: datetime) -> datetime:
    """Normalize datetime for DB comparisons/storage (naive UTC)."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class JournalTradeRepository:
    """Repository for JournalTrade CRUD operations."""

    def __init__(self, db: Session):
        self.db = db

    def create(self, record: TradeRecord) -> JournalTrade:
        """Persist a validated trade record."""
        payload = record.model_dump()
        payload["date"] = _to_db_datetime(payload["date"])
        trade = JournalTrade(**payload)
        self.db.add(trade)
        self.db.commit()
        self.db.refresh(trade)
        return trade

    def get_by_id(self, trade_id: int) -> Optional[JournalTrade]:
        """Get trade by ID."""
        return self.db.query(JournalTrade).filter(JournalTrade.id == trade_id).first()

    def get_by_entry_id(self, entry_id: str) -> Optional[JournalTrade]:
        """Get trade by the draft id it was committed from."""
        return self.db.query(JournalTrade).filter(JournalTrade.entry_id == entry_id).first()

    def get_by_user(self, user_id: int, limit: Optional[int] = None) -> List[JournalTrade]:
        """Get a user's trades, newest first."""
        query = self.db.query(JournalTrade).filter(JournalTrade.user_id == user_id)
        query = query.order_by(JournalTrade.date.desc(), JournalTrade.id.desc())
        if limit:
            query = query.limit(limit)
        return query.all()

    def get_all(self, limit: Optional[int] = None) -> List[JournalTrade]:
        """Get every user's trades, newest first."""
        query = self.db.query(JournalTrade).order_by(JournalTrade.date.desc(), JournalTrade.id.desc())
        if limit:
            query = query.limit(limit)
        return query.all()

    def get_last(self, user_id: int) -> Optional[JournalTrade]:
        """Get the user's most recently committed trade."""
        return self.db.query(JournalTrade).filter(
            JournalTrade.user_id == user_id
        ).order_by(JournalTrade.created_at.desc(), JournalTrade.id.desc()).first()

    def get_in_range(self, user_id: int, start: datetime, end: datetime) -> List[JournalTrade]:
        """Get a user's trades dated within [start, end], oldest first."""
        return self.db.query(JournalTrade).filter(
            and_(
                JournalTrade.user_id == user_id,
                JournalTrade.date >= _to_db_datetime(start),
                JournalTrade.date <= _to_db_datetime(end),
            )
        ).order_by(JournalTrade.date.asc()).all()

    def update(self, trade: JournalTrade, changes: Dict[str, Any]) -> JournalTrade:
        """Apply attribute changes to an existing trade."""
        for name, value in changes.items():
            if name in ("id", "entry_id", "user_id", "created_at"):
                raise ValueError(f"Field '{name}' cannot be changed")
            if not hasattr(JournalTrade, name):
                raise ValueError(f"Unknown trade field '{name}'")
            if name == "date" and isinstance(value, datetime):
                value = _to_db_datetime(value)
            setattr(trade, name, value)
        self.db.commit()
        self.db.refresh(trade)
        return trade

    def delete(self, trade_id: int) -> bool:
        """Delete a trade."""
        trade = self.get_by_id(trade_id)
        if trade:
            self.db.delete(trade)
            self.db.commit()
            return True
        return False


class PendingTradeRepository:
    """Repository for parked draft rows."""

    def __init__(self, db: Session):
        self.db = db

    def upsert(self, user_id: int, entry_id: str, draft: Dict[str, Any],
               presentation_handle: Optional[str], created_at: datetime) -> PendingTrade:
        """Insert or replace a parked draft."""
        row = self.get(user_id, entry_id)
        if row is None:
            row = PendingTrade(user_id=user_id, entry_id=entry_id)
            self.db.add(row)
        row.draft = draft
        row.presentation_handle = presentation_handle
        row.created_at = _to_db_datetime(created_at)
        self.db.commit()
        self.db.refresh(row)
        return row

    def get(self, user_id: int, entry_id: str) -> Optional[PendingTrade]:
        return self.db.query(PendingTrade).filter(
            and_(PendingTrade.user_id == user_id, PendingTrade.entry_id == entry_id)
        ).first()

    def delete(self, user_id: int, entry_id: str) -> bool:
        deleted = self.db.query(PendingTrade).filter(
            and_(PendingTrade.user_id == user_id, PendingTrade.entry_id == entry_id)
        ).delete()
        self.db.commit()
        return deleted > 0

    def list_for_user(self, user_id: int, limit: int, offset: int = 0) -> List[PendingTrade]:
        """Get a user's parked drafts, newest first."""
        return self.db.query(PendingTrade).filter(
            PendingTrade.user_id == user_id
        ).order_by(PendingTrade.created_at.desc(), PendingTrade.id.desc()).offset(offset).limit(limit).all()

    def count_for_user(self, user_id: int) -> int:
        return self.db.query(PendingTrade).filter(PendingTrade.user_id == user_id).count()

    def delete_for_user(self, user_id: int) -> int:
        deleted = self.db.query(PendingTrade).filter(PendingTrade.user_id == user_id).delete()
        self.db.commit()
        return deleted

    def delete_older_than(self, cutoff: datetime) -> int:
        """Delete parked drafts created before the cutoff."""
        deleted = self.db.query(PendingTrade).filter(
            PendingTrade.created_at < _to_db_datetime(cutoff)
        ).delete()
        self.db.commit()
        return deleted


class UserSettingsRepository:
    """Repository for per-user settings."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_user(self, user_id: int) -> Optional[UserSettingsRecord]:
        return self.db.query(UserSettingsRecord).filter(UserSettingsRecord.user_id == user_id).first()

    def upsert(self, user_id: int, **fields: Any) -> UserSettingsRecord:
        """Create the user's settings row if needed and apply the given fields."""
        record = self.get_by_user(user_id)
        if record is None:
            record = UserSettingsRecord(user_id=user_id)
            self.db.add(record)
        for name, value in fields.items():
            if not hasattr(UserSettingsRecord, name) or name in ("id", "user_id"):
                raise ValueError(f"Unknown settings field '{name}'")
            setattr(record, name, value)
        self.db.commit()
        self.db.refresh(record)
        return record
