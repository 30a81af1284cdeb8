"""
Agent (character) entries
"""

from typing import Any, Dict, List, Optional, Tuple

import structlog

from wiki_ingest.core.exceptions import ParsingError, UnmappedValueError
from wiki_ingest.extraction.base_extractor import EntityPlugin, FieldSpec, is_present
from wiki_ingest.extraction.degradation import (
    DegradationCoordinator,
    DegradationTier,
    TierValue,
)
from wiki_ingest.extraction.validation_engine import ValidationRule, ValidationType
from wiki_ingest.models.payload import RawPayload
from wiki_ingest.models.record import STAGE_COUNT, EntityEntry, Record, ValidationSeverity
from wiki_ingest.standardization.field_mapper import (
    AttackType,
    Element,
    MappingCategory,
    Specialty,
    clean_label,
)
from wiki_ingest.standardization.stats_processor import AGENT_LEVELS
from .attack_type_fallback import AttackTypeFallbackService

logger = structlog.get_logger(__name__)

UNKNOWN_FACTION_ID = 0
UNKNOWN_FACTION_NAME = "不明"

# id → (ja, en)
FACTIONS: Dict[int, Tuple[str, str]] = {
    1: ("邪兎屋", "Cunning Hares"),
    2: ("ヴィクトリア家政", "Victoria Housekeeping Co."),
    3: ("白祇重工", "Belobog Heavy Industries"),
    4: ("治安局", "Criminal Investigation Special Response Team"),
    5: ("対ホロウ特別行動部第六課", "Hollow Special Operations Section 6"),
    6: ("カリュドーンの子", "Sons of Calydon"),
    7: ("防衛軍・オボルス小隊", "Obol Squad"),
    8: ("スターズ・オブ・リラ", "Stars of Lyra"),
}


def faction_id_for(name: Optional[str]) -> int:
    """Faction id by Japanese or English name; 0 when unknown"""
    if not name:
        return UNKNOWN_FACTION_ID
    label = clean_label(name)
    for faction_id, names in FACTIONS.items():
        if label in names:
            return faction_id
    logger.warning("Unknown faction", faction=label)
    return UNKNOWN_FACTION_ID


class CharacterPlugin(EntityPlugin):
    """Agents: mapped filter values, ascension stats, faction and attack type"""

    kind = "character"

    def __init__(self, *args, attack_type_fallback: Optional[AttackTypeFallbackService] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.attack_type_fallback = attack_type_fallback or AttackTypeFallbackService()

    def field_specs(self) -> List[FieldSpec]:
        return [
            FieldSpec(key="page", extractor=lambda p: p.page, critical=True),
            FieldSpec(key="filter_values", extractor=lambda p: p.filter_values, critical=True),
            FieldSpec(key="specialty", extractor=lambda p: p.filter_value("agent_specialties")),
            FieldSpec(key="stats", extractor=lambda p: p.filter_value("agent_stats")),
            FieldSpec(key="rarity", extractor=lambda p: p.filter_value("agent_rarity")),
            FieldSpec(key="faction", extractor=lambda p: p.filter_value("agent_faction")),
            FieldSpec(key="modules", extractor=lambda p: p.modules),
            FieldSpec(key="ascension", extractor=lambda p: p.component("ascension"),
                      default_value={"list": []}, depends_on="modules"),
            FieldSpec(key="baseInfo", extractor=lambda p: p.component("baseInfo"),
                      depends_on="modules"),
        ]

    def assemble(
        self,
        entry: EntityEntry,
        payloads: Dict[str, RawPayload],
        values: Dict[str, Any],
        strict: bool
    ) -> Record:
        primary = payloads.get(self.primary_locale) or RawPayload(None)

        if strict:
            for key in ("specialty", "stats", "rarity", "faction", "ascension"):
                if not is_present(values.get(key)):
                    raise ParsingError(
                        f"Character field {key} is missing",
                        error_code="FIELD_MISSING",
                        details={"entity_id": entry.id, "field": key}
                    )

        specialty = self.field_mapper.map_or_default(values.get("specialty"), MappingCategory.SPECIALTY)
        rarity = self.field_mapper.map_or_default(values.get("rarity"), MappingCategory.RARITY)
        stats = self._element_tags(values.get("stats"))
        faction_id = faction_id_for(values.get("faction"))

        attack_types = self.degradation_tiers(entry)["attackType"].recover(entry.id, payload=primary)

        ascension = values.get("ascension")
        attributes = self.ascension_processor.process(ascension, levels=AGENT_LEVELS, strict=strict)

        names = self.localized_names(entry, payloads)
        if strict and not names:
            raise ParsingError("Character name is missing", error_code="FIELD_MISSING",
                               details={"entity_id": entry.id, "field": "name"})

        record = Record(
            id=entry.id,
            kind=self.kind,
            page_id=entry.page_id,
            name=names,
            basic_fields={
                "specialty": specialty.value if specialty else None,
                "stats": [tag.value for tag in stats],
                "rarity": rarity.value if rarity else None,
                "attackType": [t.value for t in attack_types.value],
                "faction": faction_id,
                "factionName": FACTIONS[faction_id][0] if faction_id in FACTIONS else UNKNOWN_FACTION_NAME,
            },
            attributes=attributes,
        )
        if not self.ascension_processor.is_well_formed(ascension):
            record.defaulted_fields.append("ascension")
        record.resolution_tiers["attackType"] = attack_types.tier
        if attack_types.degraded:
            record.degraded = True

        self.resolve_release_version(entry, primary, record)
        return record

    def _element_tags(self, raw: Optional[str]) -> List[Element]:
        if not raw:
            return []
        try:
            return self.field_mapper.map_element_tags(raw)
        except UnmappedValueError as e:
            logger.warning("Unmapped element", raw_label=raw, suggestion=e.suggestion)
            return []

    def degradation_tiers(self, entry: EntityEntry) -> Dict[str, DegradationCoordinator]:
        tiers = super().degradation_tiers(entry)
        tiers["attackType"] = self.attack_type_coordinator(entry)
        return tiers

    def attack_type_coordinator(self, entry: EntityEntry) -> DegradationCoordinator:
        """filter_values → list.json → strike"""

        def from_filter_values(entity_id: str, payload: Optional[RawPayload]) -> Optional[TierValue]:
            if payload is None:
                return None
            mapped: List[AttackType] = []
            for raw in payload.filter_value_list("agent_attack_type"):
                attack_type = self.field_mapper.map_or_default(raw, MappingCategory.ATTACK_TYPE)
                if attack_type is not None and attack_type not in mapped:
                    mapped.append(attack_type)
            return TierValue(value=mapped, source="filter_values") if mapped else None

        def from_list_file(entity_id: str, payload: Optional[RawPayload]) -> Optional[TierValue]:
            attack_type = self.attack_type_fallback.get_attack_type(entry.page_id)
            return TierValue(value=[attack_type], source="list.json") if attack_type else None

        return DegradationCoordinator(
            field_name="attackType",
            tiers=[
                DegradationTier("filter_values", from_filter_values, degraded=False),
                DegradationTier("list_fallback", from_list_file, degraded=False),
            ],
            default_value=[AttackType.STRIKE],
        )

    def validation_rules(self) -> List[ValidationRule]:
        rules = [
            ValidationRule(name="id_required", field_name="id",
                           rule_type=ValidationType.REQUIRED),
            ValidationRule(name="name_ja_required", field_name="name.ja",
                           rule_type=ValidationType.REQUIRED),
            ValidationRule(name="name_en_required", field_name="name.en",
                           rule_type=ValidationType.REQUIRED),
            ValidationRule(name="specialty_enum", field_name="basic_fields.specialty",
                           rule_type=ValidationType.ENUM,
                           allowed_values=[s.value for s in Specialty]),
            ValidationRule(name="stats_required", field_name="basic_fields.stats",
                           rule_type=ValidationType.REQUIRED),
            ValidationRule(name="stats_enum", field_name="basic_fields.stats",
                           rule_type=ValidationType.ENUM,
                           allowed_values=[e.value for e in Element]),
            ValidationRule(name="rarity_enum", field_name="basic_fields.rarity",
                           rule_type=ValidationType.ENUM,
                           allowed_values=["S", "A"]),
            ValidationRule(name="attack_type_required", field_name="basic_fields.attackType",
                           rule_type=ValidationType.REQUIRED),
            ValidationRule(name="attack_type_enum", field_name="basic_fields.attackType",
                           rule_type=ValidationType.ENUM,
                           allowed_values=[a.value for a in AttackType]),
            ValidationRule(name="faction_range", field_name="basic_fields.faction",
                           rule_type=ValidationType.RANGE, min_value=0),
            ValidationRule(name="crit_rate_range", field_name="attributes.critRate",
                           rule_type=ValidationType.RANGE, min_value=0, max_value=100),
            ValidationRule(name="crit_dmg_range", field_name="attributes.critDmg",
                           rule_type=ValidationType.RANGE, min_value=0),
            ValidationRule(name="pen_ratio_range", field_name="attributes.penRatio",
                           rule_type=ValidationType.RANGE, min_value=0, max_value=100),
        ]
        for stat in ("hp", "atk", "def"):
            rules.append(ValidationRule(
                name=f"{stat}_length", field_name=f"attributes.{stat}",
                rule_type=ValidationType.ARRAY_LENGTH, expected_lengths=[STAGE_COUNT]
            ))
            # Zero-filled progressions stay valid
            rules.append(ValidationRule(
                name=f"{stat}_positive", field_name=f"attributes.{stat}",
                rule_type=ValidationType.RANGE, min_value=1,
                severity=ValidationSeverity.WARNING
            ))
        return rules
