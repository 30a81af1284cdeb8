"""
W-Engine (weapon) entries
"""

from typing import Any, Dict, List, Optional

import structlog

from wiki_ingest.core.exceptions import ParsingError, UnmappedValueError
from wiki_ingest.extraction.base_extractor import EntityPlugin, FieldSpec, is_present
from wiki_ingest.extraction.validation_engine import ValidationRule, ValidationType
from wiki_ingest.models.payload import RawPayload
from wiki_ingest.models.record import STAGE_COUNT, EntityEntry, Record, ValidationSeverity
from wiki_ingest.standardization.field_mapper import MappingCategory, Rarity, Specialty, Stat, clean_label
from wiki_ingest.standardization.stats_processor import W_ENGINE_LEVELS

logger = structlog.get_logger(__name__)

BASE_STAT_KEY = "基礎ステータス"
ADVANCED_STAT_KEY = "上級ステータス"
AGENT_KEY = "該当エージェント"


def _skill(payload: RawPayload) -> Optional[Dict[str, Any]]:
    data = payload.component("equipment_skill")
    return data if isinstance(data, dict) else None


class WeaponPlugin(EntityPlugin):
    """W-Engines: rarity, specialty, base/advanced stat, ATK progression and skill text"""

    kind = "weapon"

    def field_specs(self) -> List[FieldSpec]:
        return [
            FieldSpec(key="page", extractor=lambda p: p.page, critical=True),
            FieldSpec(key="filter_values", extractor=lambda p: p.filter_values, critical=True),
            FieldSpec(key="rarity", extractor=lambda p: p.filter_value("w_engine_rarity")),
            FieldSpec(key="specialty", extractor=lambda p: p.filter_value("filter_key_13")),
            FieldSpec(key="modules", extractor=lambda p: p.modules),
            FieldSpec(key="ascension", extractor=lambda p: p.component("ascension"),
                      default_value={"list": []}, depends_on="modules"),
            FieldSpec(key="baseInfo", extractor=lambda p: p.component("baseInfo"),
                      depends_on="modules"),
            FieldSpec(key="equipment_skill", extractor=_skill, depends_on="modules"),
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
            for key in ("rarity", "ascension"):
                if not is_present(values.get(key)):
                    raise ParsingError(
                        f"W-Engine field {key} is missing",
                        error_code="FIELD_MISSING",
                        details={"entity_id": entry.id, "field": key}
                    )

        rarity = self.field_mapper.map_or_default(values.get("rarity"), MappingCategory.RARITY)
        specialty = self.field_mapper.map_or_default(values.get("specialty"), MappingCategory.SPECIALTY)

        ascension = values.get("ascension")
        well_formed = self.ascension_processor.is_well_formed(ascension)
        if strict and not well_formed:
            raise ParsingError(
                "W-Engine ascension data has no list array",
                error_code="ASCENSION_STRUCTURE",
                details={"entity_id": entry.id}
            )

        # Weapons never carry every level/stat; missing ones become zero
        attributes = self.ascension_processor.process(
            ascension,
            levels=W_ENGINE_LEVELS,
            required_stats=(Stat.ATK,),
            strict=False
        )

        names = self.localized_names(entry, payloads)
        if strict and not names:
            raise ParsingError("W-Engine name is missing", error_code="FIELD_MISSING",
                               details={"entity_id": entry.id, "field": "name"})

        skill_names: Dict[str, str] = {}
        skill_descs: Dict[str, str] = {}
        for locale, payload in payloads.items():
            skill = _skill(payload)
            if not skill:
                continue
            language = self._language(locale)
            skill_names[language] = clean_label(str(skill.get("skill_name") or ""))
            skill_descs[language] = clean_label(str(skill.get("skill_desc") or ""))

        record = Record(
            id=entry.id,
            kind=self.kind,
            page_id=entry.page_id,
            name=names,
            basic_fields={
                "rarity": rarity.value if rarity else None,
                "specialty": specialty.value if specialty else None,
                "baseStat": self._stat(primary, BASE_STAT_KEY),
                "advancedStat": self._stat(primary, ADVANCED_STAT_KEY),
                "agent": clean_label(primary.component_list_value("baseInfo", AGENT_KEY) or "") or None,
                "equipmentSkillName": skill_names,
                "equipmentSkillDesc": skill_descs,
            },
            attributes=attributes,
        )
        if not well_formed:
            record.defaulted_fields.append("ascension")
        self.resolve_release_version(entry, primary, record)
        return record

    def _stat(self, payload: RawPayload, key: str) -> Optional[str]:
        raw = payload.component_list_value("baseInfo", key)
        if not raw:
            return None
        try:
            return self.field_mapper.map_stat_label(raw).value
        except UnmappedValueError as e:
            logger.warning("Unmapped W-Engine stat", key=key, raw_label=raw, suggestion=e.suggestion)
            return None

    def description_texts(self, payloads: Dict[str, RawPayload]) -> Dict[str, str]:
        texts: Dict[str, str] = {}
        for locale, payload in payloads.items():
            skill = _skill(payload)
            if skill and skill.get("skill_desc"):
                texts[self._language(locale)] = str(skill["skill_desc"])
        return texts

    def validation_rules(self) -> List[ValidationRule]:
        return [
            ValidationRule(name="id_required", field_name="id",
                           rule_type=ValidationType.REQUIRED),
            ValidationRule(name="name_ja_required", field_name="name.ja",
                           rule_type=ValidationType.REQUIRED),
            ValidationRule(name="name_en_required", field_name="name.en",
                           rule_type=ValidationType.REQUIRED),
            ValidationRule(name="rarity_enum", field_name="basic_fields.rarity",
                           rule_type=ValidationType.ENUM,
                           allowed_values=[r.value for r in Rarity]),
            ValidationRule(name="specialty_enum", field_name="basic_fields.specialty",
                           rule_type=ValidationType.ENUM,
                           allowed_values=[s.value for s in Specialty],
                           allow_null=True, severity=ValidationSeverity.WARNING),
            ValidationRule(name="atk_length", field_name="attributes.atk",
                           rule_type=ValidationType.ARRAY_LENGTH, expected_lengths=[STAGE_COUNT]),
            ValidationRule(name="atk_positive", field_name="attributes.atk",
                           rule_type=ValidationType.RANGE, min_value=1,
                           severity=ValidationSeverity.WARNING),
        ]
