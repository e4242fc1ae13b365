"""
Option ranking.

Blends schema options, history scores and the draft's own values into a
single deterministic ordering per field.
"""

from dataclasses import replace
from typing import Any, Iterable, List, Optional

from engine.fields import TradeField
from engine.models import DraftEntry, FieldOption
from services.history_aggregator import FieldScores
from services.option_source import OptionSource


def current_values(trade_field: TradeField, current: Any) -> List[str]:
    """Values already chosen for the field on a draft (or any trade-like object)."""
    if current is None:
        return []
    if isinstance(current, DraftEntry):
        raw = current.get(trade_field)
        return trade_field.values_of({trade_field.attribute: raw})
    return trade_field.values_of(current)


def _order_key(option: FieldOption):
    # Personally used values first, then combined score, then lexicographic.
    return (option.personal_score <= 0.0, -option.score, option.value.casefold(), option.value)


class RankingEngine:
    """Stateless ranker; the same inputs always give the same order."""

    def rank(
        self,
        trade_field: TradeField,
        options: Optional[Iterable[str]],
        scores: Optional[FieldScores] = None,
        current: Any = None,
    ) -> List[FieldOption]:
        """Full ranking for ``trade_field``; callers slice it for display."""
        base = self.rank_base(trade_field, options, scores)
        return self.boost(base, trade_field, current)

    def rank_base(
        self,
        trade_field: TradeField,
        options: Optional[Iterable[str]],
        scores: Optional[FieldScores] = None,
    ) -> List[FieldOption]:
        """Score-ordered ranking without the draft context."""
        scores = scores or FieldScores()
        allowed = OptionSource.normalize(options)
        in_schema = bool(allowed)
        if not allowed:
            allowed = OptionSource.defaults(trade_field)

        candidates = list(allowed)
        if trade_field.open_vocabulary:
            known = {value.casefold() for value in candidates}
            for key in list(scores.personal) + list(scores.popularity):
                if key not in known:
                    known.add(key)
                    candidates.append(scores.labels.get(key, key))

        schema_keys = {value.casefold() for value in allowed} if in_schema else set()
        ranked = [
            FieldOption(
                value=value,
                personal_score=scores.personal_for(value),
                global_score=scores.popularity_for(value),
                in_schema=value.casefold() in schema_keys,
            )
            for value in candidates
        ]
        ranked.sort(key=_order_key)
        return ranked

    def boost(self, ranked: List[FieldOption], trade_field: TradeField, current: Any) -> List[FieldOption]:
        """
        Move values already chosen on the draft to the front.

        Chosen values missing from the ranking are added so the user always
        sees what they picked.
        """
        selected = current_values(trade_field, current)
        if not selected:
            return list(ranked)
        selected_keys = {value.casefold() for value in selected}
        front: List[FieldOption] = []
        rest: List[FieldOption] = []
        for option in ranked:
            if option.value.casefold() in selected_keys:
                front.append(replace(option, boosted=True))
            else:
                rest.append(option)
        present = {option.value.casefold() for option in front}
        extras = [
            FieldOption(value=value, boosted=True)
            for value in selected
            if value.casefold() not in present
        ]
        return front + extras + rest

    @staticmethod
    def paginate(ranked: List[FieldOption], top_n: Optional[int], offset: int = 0) -> List[FieldOption]:
        """Presentation-boundary slice of a full ranking."""
        start = max(0, offset)
        if top_n is None:
            return list(ranked[start:])
        return list(ranked[start:start + max(0, top_n)])
