"""
Entity plug-in base - per-kind field declarations, record assembly and rules
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

import structlog
from pydantic import BaseModel, ConfigDict

from wiki_ingest.core.config import settings
from wiki_ingest.models.payload import RawPayload
from wiki_ingest.models.record import EntityEntry, Record
from wiki_ingest.standardization.attribute_extractor import AttributeExtractor
from wiki_ingest.standardization.field_mapper import FieldMapper
from wiki_ingest.standardization.stats_processor import AscensionProcessor
from .degradation import DegradationCoordinator, build_release_version_coordinator
from .validation_engine import ValidationRule

logger = structlog.get_logger(__name__)


class FieldSpec(BaseModel):
    """How one field is read from a payload and defaulted when missing"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    key: str
    extractor: Callable[[RawPayload], Any]
    required: bool = True
    critical: bool = False
    default_value: Any = None
    # Only inspected when this other field is present
    depends_on: Optional[str] = None

    def read(self, payload: RawPayload) -> Any:
        return self.extractor(payload)


def is_present(value: Any) -> bool:
    """None, blank strings and empty containers count as missing"""
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, dict, tuple, set)):
        return len(value) > 0
    return True


class EntityPlugin(ABC):
    """Strategy object describing one entity kind to the generic pipeline"""

    kind: str = "entity"

    def __init__(
        self,
        field_mapper: Optional[FieldMapper] = None,
        attribute_extractor: Optional[AttributeExtractor] = None,
        release_version_coordinator: Optional[DegradationCoordinator] = None
    ):
        self.field_mapper = field_mapper or FieldMapper()
        self.attribute_extractor = attribute_extractor or AttributeExtractor()
        self.ascension_processor = AscensionProcessor(self.field_mapper)
        self.release_version_coordinator = release_version_coordinator or build_release_version_coordinator()

        self.primary_locale = settings.PRIMARY_LOCALE
        self.secondary_locale: Optional[str] = settings.SECONDARY_LOCALE

    @abstractmethod
    def field_specs(self) -> List[FieldSpec]:
        """Declared fields, critical ones first"""
        pass

    @abstractmethod
    def assemble(
        self,
        entry: EntityEntry,
        payloads: Dict[str, RawPayload],
        values: Dict[str, Any],
        strict: bool
    ) -> Record:
        """
        Turn field values into a Record

        Args:
            entry: Entity list entry
            payloads: Fetched payloads by locale (primary always present)
            values: Field key → raw value (defaults already substituted when not strict)
            strict: Raise on unusable data instead of substituting neutral values
        """
        pass

    @abstractmethod
    def validation_rules(self) -> List[ValidationRule]:
        pass

    def critical_fields(self) -> List[str]:
        return [spec.key for spec in self.field_specs() if spec.critical]

    def basic_fields(self) -> List[str]:
        return [spec.key for spec in self.field_specs() if not spec.critical]

    def read_values(self, payload: RawPayload) -> Dict[str, Any]:
        return {spec.key: spec.read(payload) for spec in self.field_specs()}

    def build_record(self, entry: EntityEntry, payloads: Dict[str, RawPayload]) -> Record:
        """
        Full-path record construction

        Raises:
            IngestionException: If the payload cannot produce a complete record
        """
        primary = payloads[self.primary_locale]
        return self.assemble(entry, payloads, self.read_values(primary), strict=True)

    def degradation_tiers(self, entry: EntityEntry) -> Dict[str, DegradationCoordinator]:
        """Field name → fallback chain used when that field cannot be read directly"""
        return {"release_version": self.release_version_coordinator}

    def description_texts(self, payloads: Dict[str, RawPayload]) -> Dict[str, str]:
        """Language → free text to run attribute extraction on"""
        return {}

    def localized_names(self, entry: EntityEntry, payloads: Dict[str, RawPayload]) -> Dict[str, str]:
        """ja/en display names; a missing locale falls back to the other one"""
        names: Dict[str, str] = {}
        primary = payloads.get(self.primary_locale)
        secondary = payloads.get(self.secondary_locale) if self.secondary_locale else None
        if primary is not None and primary.name:
            names[self._language(self.primary_locale)] = primary.name.strip()
        if secondary is not None and secondary.name:
            names[self._language(self.secondary_locale)] = secondary.name.strip()

        for language in ("ja", "en"):
            if language not in names and names:
                names[language] = next(iter(names.values()))
        return names

    def resolve_release_version(
        self,
        entry: EntityEntry,
        payload: Optional[RawPayload],
        record: Record,
        error: Optional[BaseException] = None
    ) -> None:
        result = self.degradation_tiers(entry)["release_version"].recover(entry.id, error, payload)
        if result is None:
            return
        record.release_version = result.value
        record.resolution_tiers["release_version"] = result.tier
        if result.degraded:
            record.degraded = True

    @staticmethod
    def _language(locale: Optional[str]) -> str:
        return (locale or "").split("-")[0].lower()
