"""
Notion Schema Integration.

Implements the SchemaSource interface on top of a Notion database: the
select and multi-select options configured on the database's properties
become the allowed values for the matching trade fields.
"""

from typing import Callable, Dict, List, Optional
import logging
import threading

import httpx

from engine.errors import SchemaUnavailableError
from engine.interfaces import SchemaSource

logger = logging.getLogger(__name__)

NOTION_API_URL = "https://api.notion.com"
OPTION_PROPERTY_TYPES = ("select", "multi_select")


class NotionSchemaSource(SchemaSource):
    """
    Schema source backed by a Notion database.

    Configuration:
        - database_id: Notion database holding the journal
        - token: Notion integration token
        - api_version: Notion-Version header value
    """

    def __init__(
        self,
        database_id: str,
        token: str,
        api_version: str = "2022-06-28",
        timeout: float = 15.0,
        client: Optional[httpx.Client] = None,
        base_url: str = NOTION_API_URL,
    ):
        database_id = (database_id or "").strip()
        if not database_id:
            raise ValueError("A Notion database id is required")
        self.database_id = database_id
        self.token = (token or "").strip()
        self.api_version = api_version
        self.timeout = timeout
        self.base_url = base_url.rstrip("/")
        self._client = client

    @classmethod
    def from_settings(cls, settings, database_id: Optional[str] = None,
                      client: Optional[httpx.Client] = None) -> "NotionSchemaSource":
        return cls(
            database_id=database_id or settings.notion_database_id,
            token=settings.notion_api_token,
            api_version=settings.notion_api_version,
            timeout=settings.notion_timeout_seconds,
            client=client,
        )

    @property
    def identity(self) -> str:
        return f"notion:{self.database_id}"

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Notion-Version": self.api_version,
            "Accept": "application/json",
        }

    def fetch_properties(self) -> Dict[str, List[str]]:
        """
        Read the database and collect option names per select property.

        Raises:
            SchemaUnavailableError: on transport errors, non-2xx responses
                or an unexpected payload
        """
        url = f"{self.base_url}/v1/databases/{self.database_id}"
        try:
            if self._client is not None:
                response = self._client.get(url, headers=self._headers(), timeout=self.timeout)
            else:
                response = httpx.get(url, headers=self._headers(), timeout=self.timeout)
        except httpx.HTTPError as exc:
            raise SchemaUnavailableError(f"Notion request failed: {exc}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            detail = response.text.strip()
            if len(detail) > 280:
                detail = detail[:280]
            raise SchemaUnavailableError(f"Notion schema fetch failed ({response.status_code}): {detail}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise SchemaUnavailableError("Notion returned a non-JSON response") from exc

        properties = payload.get("properties") if isinstance(payload, dict) else None
        if not isinstance(properties, dict):
            raise SchemaUnavailableError("Notion response has no properties")

        result: Dict[str, List[str]] = {}
        for name, prop in properties.items():
            if not isinstance(prop, dict):
                continue
            prop_type = prop.get("type")
            if prop_type not in OPTION_PROPERTY_TYPES:
                continue
            options = (prop.get(prop_type) or {}).get("options") or []
            result[name] = [
                str(option["name"]) for option in options
                if isinstance(option, dict) and option.get("name")
            ]
        logger.debug("Fetched %d option properties from Notion database %s", len(result), self.database_id)
        return result

    def get_options(self, field_name: str) -> List[str]:
        properties = self.fetch_properties()
        if field_name in properties:
            return properties[field_name]
        wanted = field_name.casefold()
        for name, options in properties.items():
            if name.casefold() == wanted:
                return options
        return []


def make_schema_resolver(
    database_lookup: Callable[[int], Optional[str]],
    settings,
    client: Optional[httpx.Client] = None,
) -> Callable[[int], Optional[SchemaSource]]:
    """
    Build a ``user_id -> SchemaSource`` resolver for the conversation engine.

    ``database_lookup`` returns the user's Notion database id (or None);
    the configured default database is used when the user has none.
    Sources are reused per database id.
    """
    sources: Dict[str, NotionSchemaSource] = {}
    lock = threading.Lock()

    def resolve(user_id: int) -> Optional[SchemaSource]:
        if not settings.notion_api_token:
            return None
        database_id = database_lookup(user_id) or settings.notion_database_id
        if not database_id:
            return None
        with lock:
            source = sources.get(database_id)
            if source is None:
                source = NotionSchemaSource.from_settings(settings, database_id=database_id, client=client)
                sources[database_id] = source
            return source

    return resolve
