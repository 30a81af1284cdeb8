"""
Validation Engine - Rule-based checks over finished records
"""

import re
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

import structlog
from pydantic import BaseModel, ConfigDict

from wiki_ingest.models.record import (
    Record,
    ValidationReport,
    ValidationResult,
    ValidationSeverity,
)

logger = structlog.get_logger(__name__)

_MISSING = object()


class ValidationType(str, Enum):
    """Types of validation rules"""
    REQUIRED = "required"
    ENUM = "enum"
    RANGE = "range"
    ARRAY_LENGTH = "array_length"
    PATTERN = "pattern"
    CUSTOM = "custom"


class ValidationRule(BaseModel):
    """Validation rule definition"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    # Dotted path into the serialized record, e.g. "basic_fields.rarity"
    field_name: str
    rule_type: ValidationType
    severity: ValidationSeverity = ValidationSeverity.ERROR

    # Enum validation
    allowed_values: Optional[List[Any]] = None

    # Range validation, applied to a number or to every item of a list
    min_value: Optional[Union[int, float]] = None
    max_value: Optional[Union[int, float]] = None

    # Array length validation; None allows any length
    expected_lengths: Optional[List[int]] = None

    # Pattern validation
    pattern: Optional[str] = None

    # Custom validation: value -> True when valid
    custom_function: Optional[Callable[[Any], bool]] = None

    # Skip the rule when the value is None
    allow_null: bool = False

    error_message: Optional[str] = None
    suggestion: Optional[str] = None


def resolve_path(data: Any, path: str) -> Any:
    """Walk a dotted path through dicts; returns a sentinel when absent"""
    current = data
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


class ValidationEngine:
    """Applies a rule set to one record and reports the outcome"""

    def __init__(self, rules: Optional[List[ValidationRule]] = None):
        self.rules: Dict[str, List[ValidationRule]] = {}
        for rule in rules or []:
            self.add_rule(rule)

    def add_rule(self, rule: ValidationRule):
        """Add a rule applied to every record"""
        self.rules.setdefault(rule.field_name, []).append(rule)
        logger.debug("Validation rule added",
                     rule_name=rule.name,
                     field_name=rule.field_name,
                     rule_type=rule.rule_type.value)

    def validate_record(
        self,
        record: Record,
        rules: Optional[List[ValidationRule]] = None
    ) -> ValidationReport:
        """
        Validate a single record

        Args:
            record: Record to check
            rules: Rules in addition to the engine's own

        Returns:
            Report whose ``is_valid`` is False when any ERROR rule failed
        """
        data = record.model_dump(by_alias=True)
        report = ValidationReport(record_id=record.id)

        rules_to_apply: List[ValidationRule] = [r for field_rules in self.rules.values() for r in field_rules]
        rules_to_apply.extend(rules or [])

        for rule in rules_to_apply:
            result = self._apply_rule(rule, data)
            if result is None:
                continue
            report.results.append(result)
            report.total_checks += 1
            if result.is_valid:
                report.passed_checks += 1
                continue
            report.failed_checks += 1
            if result.severity == ValidationSeverity.ERROR:
                report.errors += 1
            elif result.severity == ValidationSeverity.WARNING:
                report.warnings += 1

        report.completeness_score = self._completeness_score(rules_to_apply, data)
        report.is_valid = report.errors == 0

        logger.debug("Record validation completed",
                     record_id=record.id,
                     is_valid=report.is_valid,
                     errors=report.errors,
                     warnings=report.warnings,
                     completeness=report.completeness_score)
        return report

    def _apply_rule(self, rule: ValidationRule, data: Dict[str, Any]) -> Optional[ValidationResult]:
        value = resolve_path(data, rule.field_name)

        if rule.rule_type == ValidationType.REQUIRED:
            return self._validate_required(rule, value)

        if value is _MISSING or (value is None and rule.allow_null):
            if value is _MISSING and not rule.allow_null:
                return self._result(rule, False, f"Field {rule.field_name} is missing", None)
            return None

        if rule.rule_type == ValidationType.ENUM:
            return self._validate_enum(rule, value)
        if rule.rule_type == ValidationType.RANGE:
            return self._validate_range(rule, value)
        if rule.rule_type == ValidationType.ARRAY_LENGTH:
            return self._validate_array_length(rule, value)
        if rule.rule_type == ValidationType.PATTERN:
            return self._validate_pattern(rule, value)
        if rule.rule_type == ValidationType.CUSTOM:
            return self._validate_custom(rule, value)
        return None

    def _result(self, rule: ValidationRule, is_valid: bool, message: str, value: Any) -> ValidationResult:
        if not is_valid and rule.error_message:
            message = rule.error_message
        return ValidationResult(
            rule_name=rule.name,
            field_name=rule.field_name,
            is_valid=is_valid,
            severity=rule.severity,
            message=message,
            value=value,
            suggestion=None if is_valid else rule.suggestion
        )

    def _validate_required(self, rule: ValidationRule, value: Any) -> ValidationResult:
        present = value is not _MISSING and value is not None
        if isinstance(value, str):
            present = bool(value.strip())
        elif isinstance(value, (list, dict)):
            present = len(value) > 0
        if present:
            return self._result(rule, True, "Required field present", value)
        return self._result(rule, False, f"Field {rule.field_name} is required",
                            None if value is _MISSING else value)

    def _validate_enum(self, rule: ValidationRule, value: Any) -> ValidationResult:
        allowed = rule.allowed_values or []
        items = value if isinstance(value, list) else [value]
        invalid = [item for item in items if item not in allowed]
        if not invalid:
            return self._result(rule, True, "Enum validation passed", value)
        return self._result(rule, False,
                            f"{rule.field_name} has unexpected value(s) {invalid}", value)

    def _validate_range(self, rule: ValidationRule, value: Any) -> ValidationResult:
        items = value if isinstance(value, list) else [value]
        for item in items:
            if isinstance(item, bool) or not isinstance(item, (int, float)):
                return self._result(rule, False,
                                    f"Cannot validate range for non-numeric value: {item}", value)
            if rule.min_value is not None and item < rule.min_value:
                return self._result(rule, False,
                                    f"Value {item} is below minimum {rule.min_value}", value)
            if rule.max_value is not None and item > rule.max_value:
                return self._result(rule, False,
                                    f"Value {item} is above maximum {rule.max_value}", value)
        return self._result(rule, True, "Range validation passed", value)

    def _validate_array_length(self, rule: ValidationRule, value: Any) -> ValidationResult:
        if not isinstance(value, list):
            return self._result(rule, False, f"{rule.field_name} is not an array", value)
        if rule.expected_lengths is None or len(value) in rule.expected_lengths:
            return self._result(rule, True, "Array length validation passed", value)
        return self._result(rule, False,
                            f"{rule.field_name} has {len(value)} items, expected {rule.expected_lengths}",
                            value)

    def _validate_pattern(self, rule: ValidationRule, value: Any) -> ValidationResult:
        if rule.pattern and not re.match(rule.pattern, str(value)):
            return self._result(rule, False,
                                f"Value '{value}' does not match pattern {rule.pattern}", value)
        return self._result(rule, True, "Pattern validation passed", value)

    def _validate_custom(self, rule: ValidationRule, value: Any) -> ValidationResult:
        if rule.custom_function is None:
            return self._result(rule, True, "No custom validator", value)
        try:
            is_valid = bool(rule.custom_function(value))
        except (TypeError, ValueError, AttributeError, KeyError, IndexError) as e:
            logger.warning("Custom validator raised",
                           rule_name=rule.name,
                           field_name=rule.field_name,
                           error=str(e))
            return self._result(rule, False, f"Custom validation failed: {e}", value)
        message = "Custom validation passed" if is_valid else f"Custom validation failed for {rule.field_name}"
        return self._result(rule, is_valid, message, value)

    @staticmethod
    def _completeness_score(rules: List[ValidationRule], data: Dict[str, Any]) -> float:
        """Share of rule-covered fields that hold a non-empty value"""
        fields = {rule.field_name for rule in rules}
        if not fields:
            return 1.0
        filled = 0
        for field in fields:
            value = resolve_path(data, field)
            if value is _MISSING or value is None:
                continue
            if isinstance(value, (str, list, dict)) and len(value) == 0:
                continue
            filled += 1
        return round(filled / len(fields), 4)
