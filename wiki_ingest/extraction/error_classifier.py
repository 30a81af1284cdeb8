"""
Error Classifier - Keyword-based failure categorization with recovery strategy
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import structlog
from pydantic import BaseModel, Field

logger = structlog.get_logger(__name__)


class ErrorCategory(str, Enum):
    """Categories for error classification"""
    NETWORK = "network"
    NOT_FOUND = "not_found"
    DATA_STRUCTURE = "data_structure"
    VALIDATION = "validation"
    SYSTEM = "system"
    UNKNOWN = "unknown"


class ErrorSeverity(str, Enum):
    """Error severity levels"""
    CRITICAL = "critical"  # Run cannot continue
    MODERATE = "moderate"  # Entity failed, may recover
    LOW = "low"            # Expected miss


class RecoveryStrategy(str, Enum):
    """Possible recovery actions"""
    RETRY_WITH_BACKOFF = "retry_with_backoff"
    SKIP = "skip"
    PARTIAL_DATA_PROCESSING = "partial_data_processing"
    GRACEFUL_DEGRADATION = "graceful_degradation"
    ABORT_PROCESSING = "abort_processing"
    RETRY_ONCE_THEN_SKIP = "retry_once_then_skip"


class ClassificationRule(BaseModel):
    """One ordered keyword rule"""
    category: ErrorCategory
    keywords: List[str]
    severity: ErrorSeverity
    recovery_strategy: RecoveryStrategy
    should_retry: bool
    should_continue: bool = True


class ErrorClassification(BaseModel):
    """Outcome of classifying one failure"""
    error_type: ErrorCategory
    severity: ErrorSeverity
    recovery_strategy: RecoveryStrategy
    should_retry: bool
    should_continue: bool
    exception_type: str
    message: str
    context: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class ErrorStats(BaseModel):
    """Error statistics"""
    total_errors: int = 0
    errors_by_category: Dict[ErrorCategory, int] = Field(default_factory=dict)
    errors_by_severity: Dict[ErrorSeverity, int] = Field(default_factory=dict)
    last_updated: datetime = Field(default_factory=datetime.utcnow)


DEFAULT_RULES: List[ClassificationRule] = [
    ClassificationRule(
        category=ErrorCategory.NETWORK,
        keywords=["network", "timeout", "timed out", "connection", "connect",
                  "econnreset", "enotfound", "rate limit", "too many requests"],
        severity=ErrorSeverity.MODERATE,
        recovery_strategy=RecoveryStrategy.RETRY_WITH_BACKOFF,
        should_retry=True,
    ),
    ClassificationRule(
        category=ErrorCategory.NOT_FOUND,
        keywords=["404", "not found", "notfound"],
        severity=ErrorSeverity.LOW,
        recovery_strategy=RecoveryStrategy.SKIP,
        should_retry=False,
    ),
    ClassificationRule(
        category=ErrorCategory.DATA_STRUCTURE,
        keywords=["parse", "parsing", "json", "decode", "null", "undefined",
                  "nonetype", "keyerror"],
        severity=ErrorSeverity.MODERATE,
        recovery_strategy=RecoveryStrategy.PARTIAL_DATA_PROCESSING,
        should_retry=False,
    ),
    ClassificationRule(
        category=ErrorCategory.VALIDATION,
        keywords=["validation", "invalid"],
        severity=ErrorSeverity.LOW,
        recovery_strategy=RecoveryStrategy.GRACEFUL_DEGRADATION,
        should_retry=False,
    ),
    ClassificationRule(
        category=ErrorCategory.SYSTEM,
        keywords=["memory", "system", "fatal"],
        severity=ErrorSeverity.CRITICAL,
        recovery_strategy=RecoveryStrategy.ABORT_PROCESSING,
        should_retry=False,
        should_continue=False,
    ),
]

FALLBACK_RULE = ClassificationRule(
    category=ErrorCategory.UNKNOWN,
    keywords=[],
    severity=ErrorSeverity.MODERATE,
    recovery_strategy=RecoveryStrategy.RETRY_ONCE_THEN_SKIP,
    should_retry=True,
)


def describe_error(error: BaseException) -> Tuple[str, str]:
    """Exception type name and message"""
    message = str(error) or repr(error)
    return type(error).__name__, message


class ErrorClassifier:
    """Ordered, deterministic keyword classifier; the first matching rule wins"""

    def __init__(self, rules: Optional[List[ClassificationRule]] = None):
        self.rules = list(rules) if rules is not None else list(DEFAULT_RULES)
        self.stats = ErrorStats()

    def match_rule(self, error: BaseException) -> ClassificationRule:
        exception_type, message = describe_error(error)
        haystack = f"{exception_type}: {message}".lower()
        for rule in self.rules:
            if any(keyword in haystack for keyword in rule.keywords):
                return rule
        return FALLBACK_RULE

    def classify(
        self,
        error: BaseException,
        context: Optional[Dict[str, Any]] = None
    ) -> ErrorClassification:
        """
        Classify a failure into category, severity and recovery strategy

        Args:
            error: The exception raised by the failing operation
            context: Free-form context (entity id, stage, attempt...) carried on the result

        Returns:
            Classification; also counted in ``stats`` and logged by severity
        """
        rule = self.match_rule(error)
        exception_type, message = describe_error(error)

        classification = ErrorClassification(
            error_type=rule.category,
            severity=rule.severity,
            recovery_strategy=rule.recovery_strategy,
            should_retry=rule.should_retry,
            should_continue=rule.should_continue,
            exception_type=exception_type,
            message=message,
            context=dict(context or {})
        )

        self._update_stats(classification)
        self._log_classification(classification)
        return classification

    def _update_stats(self, classification: ErrorClassification):
        """Update error statistics"""
        self.stats.total_errors += 1

        category = classification.error_type
        self.stats.errors_by_category[category] = self.stats.errors_by_category.get(category, 0) + 1

        severity = classification.severity
        self.stats.errors_by_severity[severity] = self.stats.errors_by_severity.get(severity, 0) + 1

        self.stats.last_updated = datetime.utcnow()

    def _log_classification(self, classification: ErrorClassification):
        """Log to structured logging system"""
        log_data = {
            "category": classification.error_type.value,
            "severity": classification.severity.value,
            "recovery_strategy": classification.recovery_strategy.value,
            "exception_type": classification.exception_type,
            "message": classification.message,
            **{k: v for k, v in classification.context.items() if k != "message"}
        }

        if classification.severity == ErrorSeverity.CRITICAL:
            logger.critical("Critical error classified", **log_data)
        elif classification.severity == ErrorSeverity.MODERATE:
            logger.warning("Error classified", **log_data)
        else:
            logger.info("Minor error classified", **log_data)

    def get_error_stats(self) -> ErrorStats:
        return self.stats
