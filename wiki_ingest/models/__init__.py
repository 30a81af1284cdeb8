from .payload import RawPayload
from .record import (
    STAGE_COUNT,
    Attributes,
    CompletenessReport,
    EntityEntry,
    ExtractedAttributes,
    FailedEntity,
    MatchedPattern,
    Record,
    ValidationReport,
    ValidationResult,
    ValidationSeverity,
    ViabilityTier,
)

__all__ = [
    "RawPayload",
    "STAGE_COUNT",
    "Attributes",
    "CompletenessReport",
    "EntityEntry",
    "ExtractedAttributes",
    "FailedEntity",
    "MatchedPattern",
    "Record",
    "ValidationReport",
    "ValidationResult",
    "ValidationSeverity",
    "ViabilityTier",
]
