"""
History aggregation for option ranking.

Scores every value a user has entered for a field by frequency and
recency, and separately counts how often each value appears across all
users' trades.
"""

import logging
from dataclasses import dataclass, field as dc_field
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from engine.fields import TradeField
from engine.interfaces import TradeStore
from engine.models import as_utc, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RankingWeights:
    """Frequency dominates, recency breaks ties, popularity is a small uniform nudge."""
    frequency: float = 0.7
    freshness: float = 0.3
    popularity: float = 0.2


@dataclass
class FieldScores:
    """Score maps keyed by case-folded value, plus the first-seen spelling of each."""
    personal: Dict[str, float] = dc_field(default_factory=dict)
    popularity: Dict[str, float] = dc_field(default_factory=dict)
    labels: Dict[str, str] = dc_field(default_factory=dict)

    def personal_for(self, value: str) -> float:
        return self.personal.get(value.casefold(), 0.0)

    def popularity_for(self, value: str) -> float:
        return self.popularity.get(value.casefold(), 0.0)

    def combined(self, value: str) -> float:
        return self.personal_for(value) + self.popularity_for(value)

    def is_empty(self) -> bool:
        return not self.personal and not self.popularity


def _entry_date(entry: Any) -> Optional[datetime]:
    value = getattr(entry, "date", None)
    if value is None and isinstance(entry, dict):
        value = entry.get("date")
    return as_utc(value) if isinstance(value, datetime) else None


class HistoryAggregator:
    """
    Computes personal and global scores for a field.

    Store read failures are absorbed: the affected signal comes back empty
    and ranking falls back to schema order.
    """

    def __init__(self, trade_store: TradeStore, weights: Optional[RankingWeights] = None):
        self.trade_store = trade_store
        self.weights = weights or RankingWeights()

    def scores(self, user_id: int, trade_field: TradeField, now: Optional[datetime] = None) -> FieldScores:
        """Personal and global scores for ``trade_field`` as seen by ``user_id``."""
        now = as_utc(now) if now else utc_now()
        result = FieldScores()
        self._add_personal(result, self._read_user(user_id), trade_field, now)
        self._add_popularity(result, self._read_all(), trade_field)
        return result

    def personal_scores(self, user_id: int, trade_field: TradeField,
                        now: Optional[datetime] = None) -> Dict[str, float]:
        result = FieldScores()
        self._add_personal(result, self._read_user(user_id), trade_field, as_utc(now) if now else utc_now())
        return result.personal

    def global_scores(self, trade_field: TradeField) -> Dict[str, float]:
        result = FieldScores()
        self._add_popularity(result, self._read_all(), trade_field)
        return result.popularity

    def _read_user(self, user_id: int) -> list:
        try:
            return list(self.trade_store.query(user_id))
        except Exception:
            logger.warning("History read failed for user %s; ranking without personal history", user_id,
                           exc_info=True)
            return []

    def _read_all(self) -> list:
        try:
            return list(self.trade_store.query_all())
        except Exception:
            logger.warning("Global history read failed; ranking without popularity", exc_info=True)
            return []

    def _add_personal(self, result: FieldScores, entries: Iterable[Any], trade_field: TradeField,
                      now: datetime) -> None:
        for entry in entries:
            values = trade_field.values_of(entry)
            if not values:
                continue
            entry_date = _entry_date(entry)
            age_days = (now - entry_date).total_seconds() / 86400.0 if entry_date else 1.0
            freshness = 1.0 / max(1.0, age_days)
            weight = self.weights.frequency + freshness * self.weights.freshness
            for value in values:
                key = value.casefold()
                result.labels.setdefault(key, value)
                result.personal[key] = result.personal.get(key, 0.0) + weight

    def _add_popularity(self, result: FieldScores, entries: Iterable[Any], trade_field: TradeField) -> None:
        for entry in entries:
            for value in trade_field.values_of(entry):
                key = value.casefold()
                result.labels.setdefault(key, value)
                result.popularity[key] = result.popularity.get(key, 0.0) + self.weights.popularity
