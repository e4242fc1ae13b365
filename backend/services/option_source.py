"""
Option source for select / multi-select fields.

Normalizes the raw option lists returned by the external schema source
and supplies built-in defaults when the schema has nothing to offer.
"""

import logging
from typing import Iterable, List, Optional

from engine.errors import SchemaUnavailableError
from engine.fields import TradeField
from engine.interfaces import SchemaSource

logger = logging.getLogger(__name__)


class OptionSource:
    """Fetches and cleans allowed values for a field."""

    @staticmethod
    def normalize(raw: Optional[Iterable[object]]) -> List[str]:
        """
        Trim, drop empties and deduplicate case-insensitively.

        The first spelling seen wins and the original order is preserved.
        """
        if not raw:
            return []
        result: List[str] = []
        seen = set()
        for item in raw:
            if item is None:
                continue
            text = " ".join(str(item).split())
            if not text:
                continue
            key = text.casefold()
            if key in seen:
                continue
            seen.add(key)
            result.append(text)
        return result

    @staticmethod
    def defaults(trade_field: TradeField) -> List[str]:
        """Built-in options so the flow is never a dead end."""
        return list(trade_field.defaults)

    def load(self, schema: SchemaSource, trade_field: TradeField) -> List[str]:
        """
        Read and normalize options for ``trade_field`` from the schema source.

        Raises:
            SchemaUnavailableError: if the schema source fails
        """
        try:
            raw = schema.get_options(trade_field.schema_name)
        except SchemaUnavailableError:
            raise
        except Exception as exc:
            raise SchemaUnavailableError(
                f"Schema {schema.identity} failed for {trade_field.schema_name}: {exc}"
            ) from exc
        options = self.normalize(raw)
        logger.debug(
            "Loaded %d options for %s from schema %s",
            len(options), trade_field.key, schema.identity,
        )
        return options
