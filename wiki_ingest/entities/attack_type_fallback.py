"""
Attack type lookup in the wiki's exported entry list (list.json)
"""

import json
from pathlib import Path
from typing import Any, Dict, Optional

import structlog

from wiki_ingest.core.config import settings
from wiki_ingest.standardization.field_mapper import AttackType

logger = structlog.get_logger(__name__)

ENGLISH_ATTACK_TYPES: Dict[str, AttackType] = {
    "Slash": AttackType.SLASH,
    "Pierce": AttackType.PIERCE,
    "Strike": AttackType.STRIKE,
}


class AttackTypeFallbackService:
    """
    Answers "which attack type does page X have" from a local list.json

    The file is ``{"data": {"list": [{"entry_page_id", "name", "filter_values"}]}}``.
    It is read once, lazily; a missing or malformed file leaves the service
    unavailable and every lookup returns None.
    """

    def __init__(self, list_path: Optional[str] = None):
        self.list_path = Path(list_path or settings.ATTACK_TYPE_LIST_PATH)
        self._entries: Optional[Dict[str, Dict[str, Any]]] = None
        self._initialized = False

    def initialize(self):
        if self._initialized:
            return
        self._initialized = True

        if not self.list_path.exists():
            logger.warning("Attack type list not found", path=str(self.list_path))
            return

        try:
            with open(self.list_path, "r", encoding="utf-8") as f:
                document = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Failed to load attack type list",
                         path=str(self.list_path),
                         error=str(e))
            return

        items = document.get("data", {}).get("list") if isinstance(document, dict) else None
        if not isinstance(items, list):
            logger.error("Attack type list has no data.list array", path=str(self.list_path))
            return

        self._entries = {
            str(item.get("entry_page_id")): item
            for item in items
            if isinstance(item, dict) and item.get("entry_page_id") is not None
        }
        logger.info("Attack type list loaded", entries=len(self._entries))

    @property
    def available(self) -> bool:
        self.initialize()
        return self._entries is not None

    def get_attack_type(self, page_id: Any) -> Optional[AttackType]:
        """Attack type of the first listed value, or None if the page is unknown"""
        if not self.available:
            return None

        item = self._entries.get(str(page_id))
        if item is None:
            logger.debug("Page not in attack type list", page_id=page_id)
            return None

        values = (item.get("filter_values") or {}).get("agent_attack_type", {}).get("values") or []
        if not values:
            logger.debug("No attack type listed", page_id=page_id, name=item.get("name"))
            return None

        english = str(values[0])
        if english not in ENGLISH_ATTACK_TYPES:
            logger.warning("Unknown attack type in list, using strike",
                           page_id=page_id,
                           value=english)
            return AttackType.STRIKE
        return ENGLISH_ATTACK_TYPES[english]
