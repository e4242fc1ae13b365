"""
Database models for the trade journal.
Defines the schema for committed trades, parked drafts and per-user settings.
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Boolean, Text, JSON, UniqueConstraint
)
from sqlalchemy.sql import func

from storage.database import Base


class JournalTrade(Base):
    """
    JournalTrade model - one committed journal entry.
    Attribute names match TradeRecord so history readers can use either.
    """
    __tablename__ = "journal_trades"

    id = Column(Integer, primary_key=True, index=True)
    entry_id = Column(String(32), nullable=False, unique=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    date = Column(DateTime, nullable=False, index=True)

    ticker = Column(String(20), nullable=False, default="")
    direction = Column(String(50), nullable=False, default="")
    pnl = Column(Numeric(18, 6), nullable=False, default=0)

    # Prices and size
    open_price = Column(Numeric(18, 6), nullable=True)
    close_price = Column(Numeric(18, 6), nullable=True)
    stop_loss = Column(Numeric(18, 6), nullable=True)
    take_profit = Column(Numeric(18, 6), nullable=True)
    volume = Column(Numeric(18, 6), nullable=True)

    comment = Column(Text, nullable=False, default="")
    account = Column(String(100), nullable=False, default="")
    session = Column(String(100), nullable=False, default="")
    position = Column(String(100), nullable=False, default="")
    result = Column(String(100), nullable=False, default="")

    # Multi-select tags (JSON lists)
    setups = Column(JSON, nullable=False, default=list)
    contexts = Column(JSON, nullable=False, default=list)
    emotions = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime, default=func.now(), nullable=False)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)


class PendingTrade(Base):
    """
    PendingTrade model - a draft parked for later resumption.
    """
    __tablename__ = "pending_trades"
    __table_args__ = (UniqueConstraint("user_id", "entry_id", name="uq_pending_user_entry"),)

    id = Column(Integer, primary_key=True, index=True)
    entry_id = Column(String(32), nullable=False, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    draft = Column(JSON, nullable=False)  # DraftEntry.to_dict()
    presentation_handle = Column(String(100), nullable=True)  # e.g. chat message id

    created_at = Column(DateTime, nullable=False, index=True)


class UserSettingsRecord(Base):
    """
    UserSettingsRecord model - per-user journal preferences.
    """
    __tablename__ = "user_settings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, unique=True, index=True)
    schema_database_id = Column(String(100), nullable=True)  # External schema (Notion database) id
    schema_enabled = Column(Boolean, default=False, nullable=False)
    language = Column(String(10), default="en", nullable=False)

    created_at = Column(DateTime, default=func.now(), nullable=False)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)
