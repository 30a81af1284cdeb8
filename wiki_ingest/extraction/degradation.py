"""
Graceful Degradation - Tiered, non-network fallback chains for single values

A coordinator walks its tiers in order and stops at the first one that
resolves. Tiers only look at the payload that was already fetched; none of
them issue requests.
"""

import re
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import structlog
from pydantic import BaseModel

from wiki_ingest.models.payload import RawPayload

logger = structlog.get_logger(__name__)


class Confidence(str, Enum):
    """How much a recovered value can be trusted"""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    NONE = "none"


class TierValue(BaseModel):
    """What a tier returns when it resolves"""
    value: Any
    confidence: Confidence = Confidence.HIGH
    source: Optional[str] = None


class DegradationResult(BaseModel):
    """Resolved value and the tier that produced it"""
    field_name: str
    value: Any = None
    tier: str
    tier_index: int
    confidence: Confidence = Confidence.NONE
    source: Optional[str] = None
    degraded: bool = False

    @property
    def resolved(self) -> bool:
        return self.tier_index >= 0


TierResolver = Callable[[str, Optional[RawPayload]], Optional[TierValue]]


class DegradationTier:
    """One named fallback strategy"""

    def __init__(self, name: str, resolver: TierResolver, degraded: bool = True):
        self.name = name
        self.resolver = resolver
        # Whether a value from this tier marks the record as degraded
        self.degraded = degraded

    def __repr__(self) -> str:
        return f"DegradationTier({self.name!r})"


class DegradationCoordinator:
    """Ordered fallback chain ending in a documented default"""

    DEFAULT_TIER = "default"

    def __init__(
        self,
        field_name: str,
        tiers: Sequence[DegradationTier],
        default_value: Any = None,
        use_default: bool = True
    ):
        self.field_name = field_name
        self.tiers = list(tiers)
        self.default_value = default_value
        self.use_default = use_default

    def recover(
        self,
        entity_id: str,
        error: Optional[BaseException] = None,
        payload: Optional[RawPayload] = None
    ) -> Optional[DegradationResult]:
        """
        Resolve the field through the tiers

        Args:
            entity_id: Entity being processed
            error: The failure that led here, if any (logged only)
            payload: Already-fetched payload, may be None

        Returns:
            The first tier's result, the default sentinel, or None when the
            chain has no default and nothing resolved
        """
        for index, tier in enumerate(self.tiers):
            try:
                found = tier.resolver(entity_id, payload)
            except (AttributeError, KeyError, IndexError, TypeError, ValueError) as e:
                logger.warning("Degradation tier failed",
                               field=self.field_name,
                               entity_id=entity_id,
                               tier=tier.name,
                               error=str(e))
                continue

            if found is None:
                continue

            result = DegradationResult(
                field_name=self.field_name,
                value=found.value,
                tier=tier.name,
                tier_index=index,
                confidence=found.confidence,
                source=found.source,
                degraded=tier.degraded
            )
            self._log_resolution(entity_id, result, error)
            return result

        if not self.use_default:
            logger.warning("Degradation chain exhausted",
                           field=self.field_name,
                           entity_id=entity_id,
                           original_error=str(error) if error else None)
            return None

        result = DegradationResult(
            field_name=self.field_name,
            value=self.default_value,
            tier=self.DEFAULT_TIER,
            tier_index=len(self.tiers),
            confidence=Confidence.NONE,
            degraded=True
        )
        self._log_resolution(entity_id, result, error)
        return result

    def _log_resolution(
        self,
        entity_id: str,
        result: DegradationResult,
        error: Optional[BaseException]
    ):
        log_data = {
            "field": self.field_name,
            "entity_id": entity_id,
            "tier": result.tier,
            "tier_index": result.tier_index,
            "confidence": result.confidence.value,
            "source": result.source,
            "original_error": str(error) if error else None,
        }
        if result.degraded:
            logger.info("Value recovered by degradation", **log_data)
        else:
            logger.debug("Value resolved", **log_data)


# Release version chain

VERSION_KEYS: List[str] = [
    "実装バージョン",
    "リリースバージョン",
    "バージョン",
    "version",
    "release_version",
    "implementation_version",
]

ALTERNATE_COMPONENTS: List[str] = ["baseInfo", "characterInfo", "basicInfo", "profile"]

METADATA_CONTAINERS: List[str] = ["meta", "properties", "attributes", "filter_values"]

VERSION_PATTERNS: List[re.Pattern] = [
    re.compile(r"Ver\.(\d+\.\d+)"),
    re.compile(r"version\s*(\d+\.\d+)", re.IGNORECASE),
    re.compile(r"v(\d+\.\d+)", re.IGNORECASE),
    re.compile(r"(\d+\.\d+)"),
]

# Launch roster and early patch characters
KNOWN_RELEASE_VERSIONS: Dict[str, Tuple[float, Confidence]] = {
    "anby": (1.0, Confidence.HIGH),
    "billy": (1.0, Confidence.HIGH),
    "nicole": (1.0, Confidence.HIGH),
    "nekomiya": (1.0, Confidence.HIGH),
    "corin": (1.0, Confidence.HIGH),
    "anton": (1.0, Confidence.HIGH),
    "ben": (1.0, Confidence.HIGH),
    "lycaon": (1.0, Confidence.HIGH),
    "koleda": (1.0, Confidence.HIGH),
    "soldier11": (1.0, Confidence.HIGH),
    "ellen": (1.0, Confidence.HIGH),
    "zhu_yuan": (1.1, Confidence.MEDIUM),
    "qingyi": (1.1, Confidence.MEDIUM),
    "jane": (1.2, Confidence.MEDIUM),
    "seth": (1.2, Confidence.MEDIUM),
}

VERSION_ID_PATTERNS: List[Tuple[str, float]] = [
    ("1.0", 1.0),
    ("v10", 1.0),
    ("1.1", 1.1),
    ("v11", 1.1),
]

DEFAULT_RELEASE_VERSION = 0

_TAG_RE = re.compile(r"<[^>]+>")


def parse_version_string(text: Any) -> Optional[float]:
    """'Ver.1.2' / 'version 1.2' / 'v1.2' / '1.2' -> 1.2"""
    if text is None:
        return None
    if isinstance(text, (int, float)) and not isinstance(text, bool):
        return float(text) if text > 0 else None

    cleaned = _TAG_RE.sub("", str(text)).strip()
    if not cleaned:
        return None

    for pattern in VERSION_PATTERNS:
        match = pattern.search(cleaned)
        if match:
            version = float(match.group(1))
            if version > 0:
                return version
    return None


def _search_version_keys(node: Any, depth: int = 0) -> Optional[float]:
    """Recursively look for keys containing 'version' and parse their value"""
    if depth > 5:
        return None
    if isinstance(node, dict):
        for key, value in node.items():
            if "version" in str(key).lower():
                # filter_values style: {"values": ["Ver.1.2"]}
                candidate = value.get("values") if isinstance(value, dict) else value
                if isinstance(candidate, list):
                    candidate = candidate[0] if candidate else None
                version = parse_version_string(candidate)
                if version is not None:
                    return version
        for value in node.values():
            if isinstance(value, (dict, list)):
                version = _search_version_keys(value, depth + 1)
                if version is not None:
                    return version
    elif isinstance(node, list):
        for item in node:
            version = _search_version_keys(item, depth + 1)
            if version is not None:
                return version
    return None


def search_alternate_components(entity_id: str, payload: Optional[RawPayload]) -> Optional[TierValue]:
    """Tier 1: version keys in baseInfo-like components"""
    if payload is None:
        return None
    for component_id in ALTERNATE_COMPONENTS:
        for key in VERSION_KEYS:
            version = parse_version_string(payload.component_list_value(component_id, key))
            if version is not None:
                return TierValue(value=version, confidence=Confidence.HIGH,
                                 source=f"{component_id}.{key}")
            data = payload.component(component_id)
            if isinstance(data, dict) and key in data:
                version = parse_version_string(data[key])
                if version is not None:
                    return TierValue(value=version, confidence=Confidence.HIGH,
                                     source=f"{component_id}.{key}")
    return None


def derive_from_text(entity_id: str, payload: Optional[RawPayload]) -> Optional[TierValue]:
    """Tier 2: version mentioned in title/name, then in metadata containers"""
    if payload is None or payload.page is None:
        return None

    page = payload.page
    for key in ("title", "name"):
        value = page.get(key)
        if isinstance(value, str) and re.search(r"ver|version|v\d", value, re.IGNORECASE):
            version = parse_version_string(value)
            if version is not None:
                return TierValue(value=version, confidence=Confidence.MEDIUM, source=f"page.{key}")

    for container in METADATA_CONTAINERS:
        version = _search_version_keys(page.get(container))
        if version is not None:
            return TierValue(value=version, confidence=Confidence.MEDIUM, source=f"page.{container}")
    return None


def lookup_id_table(entity_id: str, payload: Optional[RawPayload]) -> Optional[TierValue]:
    """Tier 3: known ids, then version-like fragments of the id"""
    key = (entity_id or "").lower()
    if key in KNOWN_RELEASE_VERSIONS:
        version, confidence = KNOWN_RELEASE_VERSIONS[key]
        return TierValue(value=version, confidence=confidence, source="id_table")

    for known_id, (version, confidence) in KNOWN_RELEASE_VERSIONS.items():
        if len(known_id) >= 4 and known_id in key:
            return TierValue(value=version, confidence=Confidence.LOW, source=f"id_table:{known_id}")

    for fragment, version in VERSION_ID_PATTERNS:
        if fragment in key:
            return TierValue(value=version, confidence=Confidence.LOW, source=f"id_pattern:{fragment}")
    return None


def build_release_version_coordinator() -> DegradationCoordinator:
    """Release version: components → text → id table → 0"""
    return DegradationCoordinator(
        field_name="release_version",
        tiers=[
            DegradationTier("alternate_components", search_alternate_components, degraded=False),
            DegradationTier("text_heuristic", derive_from_text),
            DegradationTier("id_table", lookup_id_table),
        ],
        default_value=DEFAULT_RELEASE_VERSION,
    )
