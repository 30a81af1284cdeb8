"""
Record models produced by the ingestion pipeline
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Ascension stages per entity: 1/10/20/30/40/50/60 (agents), 0/10/.../60 (W-Engines)
STAGE_COUNT = 7

Number = Union[int, float]


class EntityEntry(BaseModel):
    """One line of the entity list"""
    id: str = Field(..., description="Slug used as the record id, e.g. 'lycaon'")
    page_id: int = Field(..., description="Entry page id on the content API")
    wiki_url: str = ""


class ViabilityTier(str, Enum):
    """How usable a fetched payload is"""
    FULL = "full"
    PARTIAL = "partial"
    MINIMAL = "minimal"
    IMPOSSIBLE = "impossible"


class CompletenessReport(BaseModel):
    """Which declared fields a payload carries"""
    available_fields: List[str] = Field(default_factory=list)
    missing_fields: List[str] = Field(default_factory=list)
    completeness_percent: int = 0
    viability_tier: ViabilityTier = ViabilityTier.IMPOSSIBLE

    @property
    def is_viable(self) -> bool:
        return self.viability_tier != ViabilityTier.IMPOSSIBLE


class MatchedPattern(BaseModel):
    """Occurrences of one surface pattern in the normalized text"""
    pattern: str
    category: str
    occurrence_count: int = 0
    positions: List[int] = Field(default_factory=list)


class ExtractedAttributes(BaseModel):
    """Category tags found in free text"""
    attributes: List[str] = Field(default_factory=list)
    confidence: float = 0.0
    matched_patterns: List[MatchedPattern] = Field(default_factory=list)
    language: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)

    @field_validator("attributes")
    @classmethod
    def _unique_tags(cls, value: List[str]) -> List[str]:
        if len(value) != len(set(value)):
            raise ValueError("attribute tags must be unique")
        return value

    @field_validator("confidence")
    @classmethod
    def _bounded_confidence(cls, value: float) -> float:
        if not 0.0 <= value <= 1.0:
            raise ValueError("confidence must be within [0, 1]")
        return value


class Attributes(BaseModel):
    """Ascension progression arrays and fixed combat stats"""
    model_config = ConfigDict(populate_by_name=True)

    hp: List[Number] = Field(default_factory=list)
    atk: List[Number] = Field(default_factory=list)
    def_: List[Number] = Field(default_factory=list, alias="def")
    impact: Number = 0
    critRate: Number = 0
    critDmg: Number = 0
    anomalyMastery: Number = 0
    anomalyProficiency: Number = 0
    penRatio: Number = 0
    energy: Number = 0

    @field_validator("hp", "atk", "def_")
    @classmethod
    def _full_or_empty(cls, value: List[Number]) -> List[Number]:
        if len(value) not in (0, STAGE_COUNT):
            raise ValueError(
                f"progression arrays must hold exactly {STAGE_COUNT} values or none, got {len(value)}"
            )
        return value


class ValidationSeverity(str, Enum):
    """Validation severity levels"""
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class ValidationResult(BaseModel):
    """Result of a validation check"""
    rule_name: str
    field_name: str
    is_valid: bool
    severity: ValidationSeverity
    message: str
    value: Any = None
    suggestion: Optional[str] = None


class ValidationReport(BaseModel):
    """Validation outcome for one record"""
    record_id: str
    total_checks: int = 0
    passed_checks: int = 0
    failed_checks: int = 0
    warnings: int = 0
    errors: int = 0
    results: List[ValidationResult] = Field(default_factory=list)
    completeness_score: float = 0.0
    is_valid: bool = False

    @property
    def error_messages(self) -> List[str]:
        return [
            r.message for r in self.results
            if not r.is_valid and r.severity == ValidationSeverity.ERROR
        ]


class Record(BaseModel):
    """Finished typed entity"""
    id: str
    kind: str
    page_id: Optional[int] = None
    name: Dict[str, str] = Field(default_factory=dict)
    basic_fields: Dict[str, Any] = Field(default_factory=dict)
    attributes: Attributes = Field(default_factory=Attributes)
    extracted_attributes: ExtractedAttributes = Field(default_factory=ExtractedAttributes)
    release_version: float = 0

    completeness: Optional[CompletenessReport] = None
    validation: Optional[ValidationReport] = None
    degraded: bool = False
    defaulted_fields: List[str] = Field(default_factory=list)
    resolution_tiers: Dict[str, str] = Field(default_factory=dict)

    @property
    def is_valid(self) -> bool:
        return self.validation is not None and self.validation.is_valid

    def to_output(self) -> Dict[str, Any]:
        """Serializable form written by the CLI"""
        return self.model_dump(mode="json", by_alias=True)


class FailedEntity(BaseModel):
    """An entity that could not be turned into an acceptable record"""
    entity_id: str
    error: str
    error_type: str = "unknown"
    stage: str = "api_fetch"
    partial_data: Optional[Record] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)
