"""
Partial data handling - completeness scoring and best-effort record building
"""

import copy
from typing import Any, Dict, List, Optional

import structlog

from wiki_ingest.core.exceptions import IngestionException
from wiki_ingest.models.payload import RawPayload
from wiki_ingest.models.record import (
    CompletenessReport,
    EntityEntry,
    Record,
    ViabilityTier,
)
from .base_extractor import EntityPlugin, is_present

logger = structlog.get_logger(__name__)

# Missing basic fields tolerated for the "partial" tier
PARTIAL_TIER_MAX_MISSING = 2


class PartialRecordBuilder:
    """Scores what a payload carries and fills the rest with declared defaults"""

    def __init__(self, plugin: EntityPlugin):
        self.plugin = plugin

    def all_fields(self) -> List[str]:
        return [spec.key for spec in self.plugin.field_specs()]

    def detect_missing(self, payload: Optional[RawPayload]) -> CompletenessReport:
        """
        Check every declared field of the payload

        Never raises: if inspection itself fails, every field is reported
        missing and the payload is not viable.
        """
        try:
            return self._inspect(payload)
        except Exception as e:
            entity_id = payload.page_id if isinstance(payload, RawPayload) else None
            logger.error("Payload inspection failed, treating all fields as missing",
                         entity_id=entity_id,
                         error=str(e),
                         error_type=type(e).__name__)
            return CompletenessReport(
                available_fields=[],
                missing_fields=self.all_fields(),
                completeness_percent=0,
                viability_tier=ViabilityTier.IMPOSSIBLE
            )

    def _inspect(self, payload: Optional[RawPayload]) -> CompletenessReport:
        specs = self.plugin.field_specs()
        available: List[str] = []
        missing: List[str] = []

        if payload is None:
            payload = RawPayload(None)

        for spec in specs:
            if spec.depends_on and spec.depends_on not in available:
                # Nested fields are not inspected under an absent parent
                continue
            if is_present(spec.read(payload)):
                available.append(spec.key)
            else:
                missing.append(spec.key)

        checked = len(available) + len(missing)
        percent = round(len(available) / checked * 100) if checked else 0

        critical = {spec.key for spec in specs if spec.critical}
        missing_basic = [key for key in missing if key not in critical]

        if any(key in critical for key in missing):
            tier = ViabilityTier.IMPOSSIBLE
        elif not missing_basic:
            tier = ViabilityTier.FULL
        elif len(missing_basic) <= PARTIAL_TIER_MAX_MISSING:
            tier = ViabilityTier.PARTIAL
        else:
            tier = ViabilityTier.MINIMAL

        report = CompletenessReport(
            available_fields=available,
            missing_fields=missing,
            completeness_percent=percent,
            viability_tier=tier
        )
        logger.debug("Payload completeness assessed",
                     entity_id=payload.page_id,
                     missing_fields=missing,
                     completeness=percent,
                     viability=tier.value)
        return report

    def build(
        self,
        entry: EntityEntry,
        payloads: Dict[str, RawPayload],
        report: CompletenessReport
    ) -> Optional[Record]:
        """
        Build a best-effort record

        Args:
            entry: Entity list entry
            payloads: Fetched payloads by locale; the primary may be absent
            report: Result of ``detect_missing`` for the primary payload

        Returns:
            None when a critical field is missing, otherwise a record whose
            missing fields carry their declared defaults
        """
        if report.viability_tier == ViabilityTier.IMPOSSIBLE:
            logger.warning("Partial record not possible, critical data missing",
                           entity_id=entry.id,
                           missing_fields=report.missing_fields)
            return None

        primary = payloads.get(self.plugin.primary_locale) or RawPayload(None)
        values: Dict[str, Any] = {}
        defaulted: List[str] = []

        for spec in self.plugin.field_specs():
            if spec.key in report.available_fields:
                values[spec.key] = spec.read(primary)
            else:
                values[spec.key] = copy.deepcopy(spec.default_value)
                defaulted.append(spec.key)

        try:
            record = self.plugin.assemble(entry, payloads, values, strict=False)
        except IngestionException as e:
            logger.error("Partial record assembly failed",
                         entity_id=entry.id,
                         error=e.message,
                         error_code=e.error_code)
            return None

        record.completeness = report
        record.degraded = True
        for key in defaulted:
            if key not in record.defaulted_fields:
                record.defaulted_fields.append(key)

        logger.info("Partial record built",
                    entity_id=entry.id,
                    viability=report.viability_tier.value,
                    completeness=report.completeness_percent,
                    defaulted_fields=record.defaulted_fields)
        return record

    @staticmethod
    def validate_partial(record: Optional[Record]) -> bool:
        """A partial record needs at least an id and a name"""
        return bool(record and record.id and any(v.strip() for v in record.name.values()))
