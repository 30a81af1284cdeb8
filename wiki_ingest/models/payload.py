"""
Typed access to raw wiki entry payloads

The content API returns ``{"retcode": 0, "data": {"page": {...}}}`` where no
branch below ``page`` is guaranteed. Every accessor here returns ``None`` for a
missing branch instead of raising, so "field missing" is an explicit outcome.
"""

import json
from typing import Any, Dict, Iterator, List, Optional, Tuple

import structlog

logger = structlog.get_logger(__name__)


class RawPayload:
    """Read-only view over one fetched entry page"""

    def __init__(self, document: Optional[Dict[str, Any]], locale: Optional[str] = None):
        self.document: Dict[str, Any] = document if isinstance(document, dict) else {}
        self.locale = locale
        self._component_cache: Dict[str, Any] = {}

    def lookup(self, *path: Any) -> Optional[Any]:
        """Walk ``path`` through dicts (by key) and lists (by index)"""
        current: Any = self.document
        for step in path:
            if isinstance(current, dict):
                if step not in current:
                    return None
                current = current[step]
            elif isinstance(current, list) and isinstance(step, int):
                if step >= len(current) or step < -len(current):
                    return None
                current = current[step]
            else:
                return None
        return current

    @property
    def retcode(self) -> Optional[int]:
        return self.document.get("retcode")

    @property
    def page(self) -> Optional[Dict[str, Any]]:
        page = self.lookup("data", "page")
        return page if isinstance(page, dict) else None

    @property
    def page_id(self) -> Optional[str]:
        value = self.lookup("data", "page", "id")
        if value is None or value == "":
            return None
        return str(value)

    @property
    def name(self) -> Optional[str]:
        value = self.lookup("data", "page", "name")
        return value if isinstance(value, str) and value.strip() else None

    @property
    def filter_values(self) -> Optional[Dict[str, Any]]:
        value = self.lookup("data", "page", "filter_values")
        return value if isinstance(value, dict) else None

    def filter_value(self, key: str) -> Optional[str]:
        """First value of ``filter_values[key].values``"""
        values = self.filter_value_list(key)
        return values[0] if values else None

    def filter_value_list(self, key: str) -> List[str]:
        values = self.lookup("data", "page", "filter_values", key, "values")
        if not isinstance(values, list):
            return []
        return [str(v) for v in values if v is not None and str(v) != ""]

    def filter_value_field(self, key: str, field: str) -> Optional[Any]:
        """A field beside ``values`` (e.g. ``value_types``)"""
        return self.lookup("data", "page", "filter_values", key, field)

    @property
    def modules(self) -> Optional[List[Dict[str, Any]]]:
        value = self.lookup("data", "page", "modules")
        if not isinstance(value, list) or not value:
            return None
        return [m for m in value if isinstance(m, dict)]

    def iter_components(self) -> Iterator[Tuple[str, Any]]:
        """Yield ``(component_id, raw data)`` for every module component"""
        for module in self.modules or []:
            for component in module.get("components") or []:
                if isinstance(component, dict) and component.get("component_id"):
                    yield component["component_id"], component.get("data")

    def component_raw(self, component_id: str) -> Optional[Any]:
        for cid, data in self.iter_components():
            if cid == component_id:
                return data
        return None

    def component(self, component_id: str) -> Optional[Any]:
        """
        Parsed ``data`` of the first component with ``component_id``

        Component data is a JSON string on the wire; it is decoded once and
        cached. Undecodable data is treated as missing.
        """
        if component_id in self._component_cache:
            return self._component_cache[component_id]

        raw = self.component_raw(component_id)
        parsed: Optional[Any] = None
        if isinstance(raw, (dict, list)):
            parsed = raw
        elif isinstance(raw, str) and raw.strip():
            try:
                parsed = json.loads(raw)
            except json.JSONDecodeError as e:
                logger.warning("Component data is not valid JSON",
                               component_id=component_id,
                               page_id=self.page_id,
                               error=str(e))
                parsed = None

        self._component_cache[component_id] = parsed
        return parsed

    def component_list_value(self, component_id: str, key: str) -> Optional[str]:
        """
        ``values[0]`` of the entry whose ``key`` matches in a ``{list: [...]}`` component

        baseInfo-style components store ``{"list": [{"key": ..., "values": [...]}]}``.
        """
        data = self.component(component_id)
        if not isinstance(data, dict):
            return None
        for item in data.get("list") or []:
            if isinstance(item, dict) and item.get("key") == key:
                values = item.get("values")
                if isinstance(values, list) and values:
                    return str(values[0])
        return None

    def __repr__(self) -> str:
        return f"RawPayload(page_id={self.page_id!r}, locale={self.locale!r})"
