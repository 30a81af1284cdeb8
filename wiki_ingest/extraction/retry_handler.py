"""
Retry Handler - Bounded retry with exponential backoff
"""

import asyncio
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar, Union

import structlog
from pydantic import BaseModel, Field

from wiki_ingest.core.config import settings
from .error_classifier import ErrorCategory, ErrorClassifier

logger = structlog.get_logger(__name__)

T = TypeVar('T')

# Backoff scale per error category: network waits longer than validation
DEFAULT_CATEGORY_DELAY_FACTORS: Dict[ErrorCategory, float] = {
    ErrorCategory.NETWORK: 1.0,
    ErrorCategory.SYSTEM: 1.0,
    ErrorCategory.UNKNOWN: 1.0,
    ErrorCategory.DATA_STRUCTURE: 0.5,
    ErrorCategory.VALIDATION: 0.25,
    ErrorCategory.NOT_FOUND: 0.25,
}


class RetryConfig(BaseModel):
    """Configuration for retry logic"""
    max_attempts: int = settings.MAX_RETRIES + 1
    base_delay_seconds: float = settings.RETRY_DELAY
    max_delay_seconds: float = settings.MAX_RETRY_DELAY
    backoff_multiplier: float = 2.0
    category_delay_factors: Dict[ErrorCategory, float] = Field(
        default_factory=lambda: dict(DEFAULT_CATEGORY_DELAY_FACTORS)
    )
    stop_on_categories: List[ErrorCategory] = Field(
        default_factory=lambda: [ErrorCategory.NOT_FOUND]
    )


class RetryState(BaseModel):
    """Progress of one retried call"""
    attempt: int = 0
    max_attempts: int
    last_error: Optional[str] = None
    last_error_type: Optional[str] = None
    next_delay: Optional[float] = None


class RetryAttempt(BaseModel):
    """Information about a failed attempt"""
    attempt_number: int
    delay_seconds: float
    error_message: str
    error_type: str
    category: ErrorCategory
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class RetryResult(BaseModel):
    """Result of retry operation"""
    success: bool
    result: Optional[Any] = None
    total_attempts: int = 0
    total_time_seconds: float = 0.0
    attempts: List[RetryAttempt] = Field(default_factory=list)
    final_error: Optional[str] = None
    final_error_type: Optional[str] = None
    final_category: Optional[ErrorCategory] = None
    last_exception: Optional[Any] = Field(default=None, exclude=True)

    @property
    def retries(self) -> int:
        """Attempts beyond the first"""
        return max(self.total_attempts - 1, 0)


Operation = Callable[[], Union[Awaitable[T], T]]


class RetryHandler:
    """
    Runs one fallible operation with bounded retries

    Exhaustion is not an error for the caller: ``execute`` returns ``None``
    and ``execute_with_result`` returns an unsuccessful ``RetryResult``.
    """

    def __init__(
        self,
        default_config: Optional[RetryConfig] = None,
        classifier: Optional[ErrorClassifier] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.default_config = default_config or RetryConfig()
        self.classifier = classifier or ErrorClassifier()
        self._sleep = sleep

    async def execute(
        self,
        operation: Operation,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        request_id: Optional[str] = None
    ) -> Optional[T]:
        """
        Execute operation with retry logic

        Args:
            operation: Zero-argument callable, sync or async
            max_attempts: Total attempts including the first
            base_delay: Delay before the first retry, in seconds

        Returns:
            The operation's result, or None once attempts are exhausted
        """
        result = await self.execute_with_result(operation, max_attempts, base_delay, request_id)
        return result.result if result.success else None

    async def execute_with_result(
        self,
        operation: Operation,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        request_id: Optional[str] = None
    ) -> RetryResult:
        """Like ``execute`` but reports every attempt"""
        config = self.default_config
        attempts_allowed = max(1, max_attempts if max_attempts is not None else config.max_attempts)
        delay_base = config.base_delay_seconds if base_delay is None else base_delay

        state = RetryState(max_attempts=attempts_allowed)
        attempts: List[RetryAttempt] = []
        start_time = datetime.utcnow()
        last_exception: Optional[BaseException] = None
        last_category: Optional[ErrorCategory] = None

        while state.attempt < attempts_allowed:
            state.attempt += 1
            try:
                value = operation()
                if asyncio.iscoroutine(value) or isinstance(value, asyncio.Future):
                    value = await value

                total_time = (datetime.utcnow() - start_time).total_seconds()
                if state.attempt > 1:
                    logger.info("Operation succeeded after retry",
                                request_id=request_id,
                                attempt=state.attempt,
                                total_time=total_time)
                return RetryResult(
                    success=True,
                    result=value,
                    total_attempts=state.attempt,
                    total_time_seconds=total_time,
                    attempts=attempts
                )

            except Exception as e:
                classification = self.classifier.classify(
                    e, {"request_id": request_id, "attempt": state.attempt}
                )
                last_exception = e
                last_category = classification.error_type
                state.last_error = classification.message
                state.last_error_type = classification.exception_type

                attempt = RetryAttempt(
                    attempt_number=state.attempt,
                    delay_seconds=0.0,
                    error_message=classification.message,
                    error_type=classification.exception_type,
                    category=classification.error_type
                )
                attempts.append(attempt)

                if classification.error_type in config.stop_on_categories:
                    logger.info("Not retrying due to error category",
                                request_id=request_id,
                                category=classification.error_type.value,
                                attempt=state.attempt)
                    break

                if state.attempt >= attempts_allowed:
                    break

                state.next_delay = self.calculate_delay(
                    state.attempt, delay_base, classification.error_type,
                    retry_after=getattr(e, "retry_after", None)
                )
                attempt.delay_seconds = state.next_delay

                logger.info("Retrying after delay",
                            request_id=request_id,
                            next_attempt=state.attempt + 1,
                            max_attempts=attempts_allowed,
                            delay_seconds=state.next_delay)

                if state.next_delay > 0:
                    await self._sleep(state.next_delay)

        total_time = (datetime.utcnow() - start_time).total_seconds()
        logger.warning("All retry attempts failed",
                       request_id=request_id,
                       total_attempts=len(attempts),
                       total_time=total_time,
                       final_error=state.last_error)

        return RetryResult(
            success=False,
            total_attempts=len(attempts),
            total_time_seconds=total_time,
            attempts=attempts,
            final_error=state.last_error,
            final_error_type=state.last_error_type,
            final_category=last_category,
            last_exception=last_exception
        )

    def calculate_delay(
        self,
        attempt_number: int,
        base_delay: float,
        category: Optional[ErrorCategory] = None,
        retry_after: Optional[float] = None
    ) -> float:
        """
        ``base_delay × multiplier^(attempt−1)``, scaled by category and capped

        A server-sent ``retry_after`` (seconds) is a floor on the delay; the
        cap still applies to it.
        """
        config = self.default_config
        delay = base_delay * (config.backoff_multiplier ** (attempt_number - 1))
        if category is not None:
            delay *= config.category_delay_factors.get(category, 1.0)
        if isinstance(retry_after, (int, float)) and retry_after > 0:
            delay = max(delay, retry_after)
        return min(delay, config.max_delay_seconds)
