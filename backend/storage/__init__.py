"""
Storage module - Database persistence layer.
Provides models, repositories, and services for journal storage.
"""
from storage.database import Base, SessionLocal, dispose_engine, get_db, get_engine, init_db
from storage.models import JournalTrade, PendingTrade, UserSettingsRecord
from storage.repositories import (
    JournalTradeRepository, PendingTradeRepository, UserSettingsRepository
)
from storage.service import StorageService

__all__ = [
    # Database
    "Base",
    "get_db",
    "init_db",
    "SessionLocal",
    "get_engine",
    "dispose_engine",
    # Models
    "JournalTrade",
    "PendingTrade",
    "UserSettingsRecord",
    # Repositories
    "JournalTradeRepository",
    "PendingTradeRepository",
    "UserSettingsRepository",
    # Service
    "StorageService",
]
