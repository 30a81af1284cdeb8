"""
Drive Disc entries
"""

from typing import Any, Dict, List, Optional, Tuple

import structlog

from wiki_ingest.core.exceptions import ParsingError
from wiki_ingest.extraction.base_extractor import EntityPlugin, FieldSpec, is_present
from wiki_ingest.extraction.degradation import (
    Confidence,
    DegradationCoordinator,
    DegradationTier,
    TierValue,
)
from wiki_ingest.extraction.validation_engine import ValidationRule, ValidationType
from wiki_ingest.models.payload import RawPayload
from wiki_ingest.models.record import EntityEntry, Record
from wiki_ingest.standardization.field_mapper import Specialty, clean_label

logger = structlog.get_logger(__name__)

# Looked up in this order; display_field may also sit on the page itself
SET_EFFECT_COMPONENTS = ("reliquary_set_effect", "display_field")

SET_EFFECT_UNAVAILABLE = "セット効果情報が取得できませんでした"

SPECIALTY_KEYWORDS: List[Tuple[str, Specialty]] = [
    ("撃破", Specialty.STUN),
    ("強攻", Specialty.ATTACK),
    ("異常", Specialty.ANOMALY),
    ("支援", Specialty.SUPPORT),
    ("防護", Specialty.DEFENSE),
    ("命破", Specialty.RUPTURE),
    ("stun", Specialty.STUN),
    ("attack", Specialty.ATTACK),
    ("anomaly", Specialty.ANOMALY),
    ("support", Specialty.SUPPORT),
    ("defense", Specialty.DEFENSE),
    ("rupture", Specialty.RUPTURE),
]

# Disc names use everyday words rather than the specialty labels
NAME_KEYWORDS: List[Tuple[str, Specialty]] = [
    ("攻撃", Specialty.ATTACK),
    ("防御", Specialty.DEFENSE),
    ("支援", Specialty.SUPPORT),
    ("異常", Specialty.ANOMALY),
    ("撃破", Specialty.STUN),
    ("命破", Specialty.RUPTURE),
]

DEFAULT_SPECIALTY = Specialty.ATTACK


def _effects_from(data: Any) -> Optional[Dict[str, str]]:
    if not isinstance(data, dict):
        return None
    effects = {
        "four": clean_label(str(data.get("four_set_effect") or "")),
        "two": clean_label(str(data.get("two_set_effect") or "")),
    }
    return effects if effects["four"] or effects["two"] else None


def set_effects(payload: RawPayload) -> Optional[Dict[str, str]]:
    """``{"four": ..., "two": ...}`` from the page or its components"""
    effects = _effects_from(payload.lookup("data", "page", "display_field"))
    if effects:
        return effects
    for component_id in SET_EFFECT_COMPONENTS:
        effects = _effects_from(payload.component(component_id))
        if effects:
            return effects
    return None


def match_specialties(text: Optional[str], keywords: List[Tuple[str, Specialty]]) -> List[Specialty]:
    """Every specialty whose keyword occurs in ``text``, in table order"""
    if not text:
        return []
    lowered = text.lower()
    found: List[Specialty] = []
    for keyword, specialty in keywords:
        if keyword in lowered and specialty not in found:
            found.append(specialty)
    return found


class DriverDiscPlugin(EntityPlugin):
    """Drive Discs: 4-piece/2-piece set effects and the specialties they favour"""

    kind = "disc"

    def field_specs(self) -> List[FieldSpec]:
        return [
            FieldSpec(key="page", extractor=lambda p: p.page, critical=True),
            FieldSpec(key="modules", extractor=lambda p: p.modules),
            FieldSpec(key="set_effect", extractor=set_effects),
        ]

    def assemble(
        self,
        entry: EntityEntry,
        payloads: Dict[str, RawPayload],
        values: Dict[str, Any],
        strict: bool
    ) -> Record:
        primary = payloads.get(self.primary_locale) or RawPayload(None)

        if not is_present(values.get("set_effect")):
            if strict:
                raise ParsingError(
                    "Drive Disc set effect is missing",
                    error_code="FIELD_MISSING",
                    details={"entity_id": entry.id, "field": "set_effect"}
                )
            logger.warning("Drive Disc set effect missing, using placeholder text", entity_id=entry.id)

        names = self.localized_names(entry, payloads)
        if strict and not names:
            raise ParsingError("Drive Disc name is missing", error_code="FIELD_MISSING",
                               details={"entity_id": entry.id, "field": "name"})

        four_set, two_set = self._localized_effects(payloads, values.get("set_effect"))
        specialty = self.degradation_tiers(entry)["specialty"].recover(entry.id, payload=primary)

        record = Record(
            id=entry.id,
            kind=self.kind,
            page_id=entry.page_id,
            name=names,
            basic_fields={
                "fourSetEffect": four_set,
                "twoSetEffect": two_set,
                "specialty": [s.value for s in specialty.value],
            },
        )
        record.resolution_tiers["specialty"] = specialty.tier
        if specialty.degraded:
            record.degraded = True

        self.resolve_release_version(entry, primary, record)
        return record

    def _localized_effects(
        self,
        payloads: Dict[str, RawPayload],
        primary_effects: Optional[Dict[str, str]]
    ) -> Tuple[Dict[str, str], Dict[str, str]]:
        """ja/en texts per piece count; a missing language falls back to the other one"""
        four_set: Dict[str, str] = {}
        two_set: Dict[str, str] = {}
        for locale, payload in payloads.items():
            effects = primary_effects if locale == self.primary_locale else set_effects(payload)
            if not effects:
                continue
            language = self._language(locale)
            if effects.get("four"):
                four_set[language] = effects["four"]
            if effects.get("two"):
                two_set[language] = effects["two"]

        for texts in (four_set, two_set):
            for language in ("ja", "en"):
                if language not in texts:
                    texts[language] = next(iter(texts.values()), SET_EFFECT_UNAVAILABLE)
        return four_set, two_set

    def degradation_tiers(self, entry: EntityEntry) -> Dict[str, DegradationCoordinator]:
        tiers = super().degradation_tiers(entry)
        tiers["specialty"] = self.specialty_coordinator(entry)
        return tiers

    def specialty_coordinator(self, entry: EntityEntry) -> DegradationCoordinator:
        """4-piece text → 2-piece text → disc name → attack"""

        def from_effect(piece: str):
            def resolve(entity_id: str, payload: Optional[RawPayload]) -> Optional[TierValue]:
                effects = set_effects(payload) if payload is not None else None
                found = match_specialties((effects or {}).get(piece), SPECIALTY_KEYWORDS)
                if not found:
                    return None
                confidence = Confidence.HIGH if piece == "four" else Confidence.MEDIUM
                return TierValue(value=found, confidence=confidence, source=f"{piece}_set_effect")
            return resolve

        def from_name(entity_id: str, payload: Optional[RawPayload]) -> Optional[TierValue]:
            name = payload.name if payload is not None else None
            found = match_specialties(name or entry.id, NAME_KEYWORDS)
            return TierValue(value=found, confidence=Confidence.LOW, source="name") if found else None

        return DegradationCoordinator(
            field_name="specialty",
            tiers=[
                DegradationTier("four_set_effect", from_effect("four"), degraded=False),
                DegradationTier("two_set_effect", from_effect("two"), degraded=False),
                DegradationTier("name", from_name),
            ],
            default_value=[DEFAULT_SPECIALTY],
        )

    def description_texts(self, payloads: Dict[str, RawPayload]) -> Dict[str, str]:
        texts: Dict[str, str] = {}
        for locale, payload in payloads.items():
            effects = set_effects(payload)
            if effects:
                texts[self._language(locale)] = " ".join(t for t in (effects["four"], effects["two"]) if t)
        return texts

    def validation_rules(self) -> List[ValidationRule]:
        return [
            ValidationRule(name="id_required", field_name="id",
                           rule_type=ValidationType.REQUIRED),
            ValidationRule(name="name_ja_required", field_name="name.ja",
                           rule_type=ValidationType.REQUIRED),
            ValidationRule(name="name_en_required", field_name="name.en",
                           rule_type=ValidationType.REQUIRED),
            ValidationRule(name="four_set_effect_required", field_name="basic_fields.fourSetEffect.ja",
                           rule_type=ValidationType.REQUIRED),
            ValidationRule(name="two_set_effect_required", field_name="basic_fields.twoSetEffect.ja",
                           rule_type=ValidationType.REQUIRED),
            ValidationRule(name="specialty_required", field_name="basic_fields.specialty",
                           rule_type=ValidationType.REQUIRED),
            ValidationRule(name="specialty_enum", field_name="basic_fields.specialty",
                           rule_type=ValidationType.ENUM,
                           allowed_values=[s.value for s in Specialty]),
        ]
