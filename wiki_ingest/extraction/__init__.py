"""
Resilient Extraction Package

Retry with backoff, error classification, graceful degradation, partial
record recovery, validation and the batch pipeline that wires them together.
"""

from .base_extractor import EntityPlugin, FieldSpec
from .batch_processor import (
    BatchPipeline,
    BatchProcessorConfig,
    BatchResult,
    ProcessingStage,
    ProgressInfo,
)
from .degradation import DegradationCoordinator, DegradationTier, build_release_version_coordinator
from .error_classifier import ErrorCategory, ErrorClassifier, ErrorSeverity, RecoveryStrategy
from .partial_data import PartialRecordBuilder
from .retry_handler import RetryConfig, RetryHandler, RetryResult
from .statistics import ProcessingStatistics, StatisticsCollector
from .validation_engine import ValidationEngine, ValidationRule, ValidationType

__all__ = [
    "EntityPlugin",
    "FieldSpec",
    "BatchPipeline",
    "BatchProcessorConfig",
    "BatchResult",
    "ProcessingStage",
    "ProgressInfo",
    "DegradationCoordinator",
    "DegradationTier",
    "build_release_version_coordinator",
    "ErrorCategory",
    "ErrorClassifier",
    "ErrorSeverity",
    "RecoveryStrategy",
    "PartialRecordBuilder",
    "RetryConfig",
    "RetryHandler",
    "RetryResult",
    "ProcessingStatistics",
    "StatisticsCollector",
    "ValidationEngine",
    "ValidationRule",
    "ValidationType",
]
