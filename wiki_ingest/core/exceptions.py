from typing import Any, Dict, List, Optional


class IngestionException(Exception):
    """Base exception for the ingestion pipeline."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class ApiError(IngestionException):
    """Exception for content API errors."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.status_code = status_code
        super().__init__(message, error_code=error_code or "API_ERROR", details=details)


class NetworkError(ApiError):
    """Exception for transport-level failures (connection, timeout)."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code="NETWORK_ERROR", details=details)


class NotFoundError(ApiError):
    """Exception for entries the content API does not know."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=404, error_code="NOT_FOUND", details=details)


class RateLimitError(ApiError):
    """Exception for rate limiting errors."""

    def __init__(
        self,
        message: str,
        retry_after: Optional[float] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.retry_after = retry_after
        super().__init__(message, status_code=429, error_code="RATE_LIMITED", details=details)


class ParsingError(IngestionException):
    """Exception for payload components that cannot be parsed."""
    pass


class MappingError(IngestionException):
    """Exception for values that cannot be mapped to internal types."""
    pass


class UnmappedValueError(MappingError):
    """A raw label has no entry in its category's lookup table."""

    def __init__(self, category: str, raw_label: str, suggestion: Optional[str] = None):
        self.category = category
        self.raw_label = raw_label
        self.suggestion = suggestion
        message = f"Unmapped {category} value: {raw_label!r}"
        if suggestion:
            message += f" (did you mean {suggestion!r}?)"
        super().__init__(
            message,
            error_code="UNMAPPED_VALUE",
            details={"category": category, "raw_label": raw_label, "suggestion": suggestion}
        )


class PayloadValidationError(IngestionException):
    """Exception for records or payloads that fail validation."""
    pass


class ConfigurationError(IngestionException):
    """Exception for configuration-related errors."""
    pass


class EntityListError(IngestionException):
    """The entity list cannot be read or contains no entries."""
    pass


class BatchProcessingError(IngestionException):
    """A batch run did not meet its success requirements."""

    def __init__(
        self,
        message: str,
        failed_ids: List[str],
        total: int,
        details: Optional[Dict[str, Any]] = None
    ):
        self.failed_ids = list(failed_ids)
        self.total = total
        super().__init__(
            message,
            error_code="BATCH_PROCESSING_FAILED",
            details={"failed_ids": self.failed_ids, "total": total, **(details or {})}
        )


class BatchAbortedError(BatchProcessingError):
    """The run was stopped because failures became systemic."""

    def __init__(
        self,
        reason: str,
        failed_ids: List[str],
        processed: int,
        total: int,
        failure_rate: float,
        result: Any = None
    ):
        self.reason = reason
        self.processed = processed
        self.failure_rate = failure_rate
        self.result = result
        super().__init__(
            f"Batch aborted: {reason}",
            failed_ids=failed_ids,
            total=total,
            details={"reason": reason, "processed": processed, "failure_rate": failure_rate}
        )
