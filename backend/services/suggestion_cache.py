"""
Suggestion and schema caching.

Memoizes schema option lists (long TTL, stale fallback on fetch failure)
and base rankings per user and field (short TTL, invalidated when the
user commits a trade). The draft-context boost is applied after the
cached base ranking, so drafts never need their own cache entries.
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Iterator, List, NamedTuple, Optional

from engine.errors import SchemaUnavailableError
from engine.fields import TradeField
from engine.interfaces import SchemaSource
from engine.models import FieldOption
from services.history_aggregator import HistoryAggregator
from services.option_source import OptionSource
from services.ranking import RankingEngine

logger = logging.getLogger(__name__)


class CacheKind(str, Enum):
    SCHEMA = "schema"
    SUGGESTION = "suggestion"


@dataclass(frozen=True)
class CacheKey:
    user_id: Optional[int]
    field: str
    schema_identity: str
    kind: CacheKind


@dataclass
class CacheEntry:
    key: CacheKey
    value: Any
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class SchemaOptions(NamedTuple):
    """Options for a field and where they came from: fresh, cached, stale or empty."""
    options: List[str]
    source: str


class SuggestionCache:
    """
    Thread-safe cache shared by every user's handlers.

    Concurrent misses on the same key are collapsed: one caller computes,
    the others wait for its result. A computation overtaken by an
    invalidation still answers its caller but is not stored.
    """

    def __init__(
        self,
        history: HistoryAggregator,
        ranking: Optional[RankingEngine] = None,
        option_source: Optional[OptionSource] = None,
        schema_ttl_seconds: float = 1200.0,
        suggestion_ttl_seconds: float = 45.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.history = history
        self.ranking = ranking or RankingEngine()
        self.option_source = option_source or OptionSource()
        self.ttl = {
            CacheKind.SCHEMA: float(schema_ttl_seconds),
            CacheKind.SUGGESTION: float(suggestion_ttl_seconds),
        }
        self._clock = clock
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._key_locks: Dict[CacheKey, threading.Lock] = {}
        # In-flight computations; True once an invalidation has overtaken one.
        self._inflight: Dict[CacheKey, bool] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    # Low-level map access

    def _key_lock(self, key: CacheKey) -> threading.Lock:
        with self._lock:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._key_locks[key] = lock
            return lock

    @contextmanager
    def _single_flight(self, key: CacheKey) -> Iterator[None]:
        """Hold the per-key lock while a miss is computed."""
        while True:
            lock = self._key_lock(key)
            lock.acquire()
            with self._lock:
                if self._key_locks.get(key) is lock:
                    self._inflight[key] = False
                    break
            # Pruned while we waited; take the live lock instead.
            lock.release()
        try:
            yield
        finally:
            with self._lock:
                self._inflight.pop(key, None)
            lock.release()

    def _forget(self, keys: Iterable[CacheKey]) -> None:
        """Mark in-flight computations stale and drop idle key locks. Caller holds ``_lock``."""
        for key in keys:
            if key in self._inflight:
                self._inflight[key] = True
            lock = self._key_locks.get(key)
            if lock is not None and not lock.locked():
                del self._key_locks[key]

    def _lookup(self, key: CacheKey) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(key)

    def _fresh(self, key: CacheKey) -> Optional[CacheEntry]:
        entry = self._lookup(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            return None
        return entry

    def _store(self, key: CacheKey, value: Any) -> bool:
        """Cache a computed value unless it was invalidated while being computed."""
        entry = CacheEntry(key=key, value=value, expires_at=self._clock() + self.ttl[key.kind])
        with self._lock:
            if self._inflight.get(key):
                return False
            self._entries[key] = entry
            return True

    def _count(self, hit: bool) -> None:
        with self._lock:
            if hit:
                self.hits += 1
            else:
                self.misses += 1

    # Schema options

    def get_schema_options(
        self,
        trade_field: TradeField,
        schema: Optional[SchemaSource],
        user_id: Optional[int] = None,
    ) -> SchemaOptions:
        """
        Options for ``trade_field`` from the schema source, cached per schema identity.

        A failed fetch returns the last cached value even if it has expired,
        or an empty list when nothing was ever cached.
        """
        if schema is None:
            return SchemaOptions([], "empty")
        key = CacheKey(user_id, trade_field.key, schema.identity, CacheKind.SCHEMA)

        entry = self._fresh(key)
        if entry is not None:
            self._count(hit=True)
            return SchemaOptions(list(entry.value), "cached")

        with self._single_flight(key):
            entry = self._fresh(key)
            if entry is not None:
                self._count(hit=True)
                return SchemaOptions(list(entry.value), "cached")
            self._count(hit=False)
            try:
                options = self.option_source.load(schema, trade_field)
            except SchemaUnavailableError as exc:
                stale = self._lookup(key)
                if stale is not None:
                    logger.warning("Schema fetch failed, serving stale options for %s: %s",
                                   trade_field.key, exc)
                    return SchemaOptions(list(stale.value), "stale")
                logger.warning("Schema fetch failed and nothing cached for %s: %s", trade_field.key, exc)
                return SchemaOptions([], "empty")
            self._store(key, list(options))
            return SchemaOptions(list(options), "fresh")

    # Suggestions

    def get_suggestions(
        self,
        user_id: int,
        trade_field: TradeField,
        draft: Any = None,
        schema: Optional[SchemaSource] = None,
        top_n: Optional[int] = 12,
        offset: int = 0,
        now: Optional[datetime] = None,
    ) -> List[FieldOption]:
        """
        Ranked options for a user's field.

        The base ranking is cached per (user, field, schema identity); the
        draft's own values are boosted on every call.
        """
        if not trade_field.suggestable:
            return []
        base = self._base_ranking(user_id, trade_field, schema, now)
        boosted = self.ranking.boost(base, trade_field, draft)
        return self.ranking.paginate(boosted, top_n, offset)

    def _base_ranking(
        self,
        user_id: int,
        trade_field: TradeField,
        schema: Optional[SchemaSource],
        now: Optional[datetime],
    ) -> List[FieldOption]:
        identity = schema.identity if schema is not None else ""
        key = CacheKey(user_id, trade_field.key, identity, CacheKind.SUGGESTION)

        entry = self._fresh(key)
        if entry is not None:
            self._count(hit=True)
            return entry.value

        with self._single_flight(key):
            entry = self._fresh(key)
            if entry is not None:
                self._count(hit=True)
                return entry.value
            self._count(hit=False)
            options = self.get_schema_options(trade_field, schema, user_id=user_id).options
            scores = self.history.scores(user_id, trade_field, now=now)
            ranked = self.ranking.rank_base(trade_field, options, scores)
            if not self._store(key, ranked):
                logger.debug("Ranking for user %s field %s invalidated while computing; not cached",
                             user_id, trade_field.key)
            logger.debug("Ranked %d options for user %s field %s", len(ranked), user_id, trade_field.key)
            return ranked

    # Invalidation

    def _invalidate(self, matches: Callable[[CacheKey], bool]) -> int:
        """Drop matching entries; matching computations in flight are not stored."""
        with self._lock:
            keys = [key for key in self._entries if matches(key)]
            for key in keys:
                del self._entries[key]
            self._forget(set(keys) | {key for key in self._inflight if matches(key)})
        return len(keys)

    def invalidate_suggestions(self, user_id: int, fields: Optional[Iterable[TradeField]] = None) -> int:
        """Drop a user's cached rankings, for the given fields or all of them."""
        wanted = None if fields is None else {f.key for f in fields}
        removed = self._invalidate(
            lambda key: key.kind == CacheKind.SUGGESTION
            and key.user_id == user_id
            and (wanted is None or key.field in wanted)
        )
        if removed:
            logger.debug("Invalidated %d suggestion entries for user %s", removed, user_id)
        return removed

    def invalidate_schema(self, schema_identity: Optional[str] = None) -> int:
        """
        Drop cached schema options, and rankings built on them.

        Used when a user switches or edits their external schema source.
        """
        removed = self._invalidate(
            lambda key: schema_identity is None or key.schema_identity == schema_identity
        )
        logger.info("Invalidated %d cache entries for schema %s", removed, schema_identity or "*")
        return removed

    def purge_expired(self) -> int:
        """Evict expired rankings; expired schema entries stay as stale fallback."""
        now = self._clock()
        with self._lock:
            keys = [
                key for key, entry in self._entries.items()
                if key.kind == CacheKind.SUGGESTION and entry.is_expired(now)
            ]
            for key in keys:
                del self._entries[key]
            idle = [key for key, lock in self._key_locks.items()
                    if key not in self._entries and not lock.locked()]
            for key in idle:
                del self._key_locks[key]
        return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._forget(set(self._inflight) | set(self._key_locks))

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            by_kind = {kind.value: 0 for kind in CacheKind}
            for key in self._entries:
                by_kind[key.kind.value] += 1
            return {
                "entries": len(self._entries),
                "by_kind": by_kind,
                "hits": self.hits,
                "misses": self.misses,
                "schema_ttl_seconds": self.ttl[CacheKind.SCHEMA],
                "suggestion_ttl_seconds": self.ttl[CacheKind.SUGGESTION],
            }
