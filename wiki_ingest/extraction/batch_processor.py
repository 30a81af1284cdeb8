"""
Batch Pipeline - Sequential, resilient processing of an entity list

Every entity goes through: fetch (with retry) → plug-in record assembly →
attribute extraction → validation. When any of that fails the pipeline falls
back to partial record building. A single entity never stops the run; a
failure rate above the abort threshold does.
"""

import asyncio
import time
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import structlog
from pydantic import BaseModel, ConfigDict, Field

from wiki_ingest.core.config import ProcessingConfig, settings
from wiki_ingest.core.exceptions import (
    ApiError,
    BatchAbortedError,
    BatchProcessingError,
    IngestionException,
    PayloadValidationError,
)
from wiki_ingest.models.payload import RawPayload
from wiki_ingest.models.record import EntityEntry, FailedEntity, Record
from .base_extractor import EntityPlugin
from .error_classifier import ErrorCategory, ErrorClassifier
from .partial_data import PartialRecordBuilder
from .retry_handler import RetryConfig, RetryHandler
from .statistics import ProcessingStatistics, StatisticsCollector, merge_retry_statistics
from .validation_engine import ValidationEngine

logger = structlog.get_logger(__name__)


class ProcessingStage(str, Enum):
    """Where an entity was when something happened"""
    API_FETCH = "api_fetch"
    DATA_PROCESSING = "data_processing"
    VALIDATION = "validation"
    BATCH_PROCESSING = "batch_processing"


class ProgressInfo(BaseModel):
    """Progress notification sent after each entity"""
    current: int
    total: int
    percentage: float
    current_entity_id: Optional[str] = None
    stage: ProcessingStage
    elapsed_time: float
    estimated_time_remaining: Optional[float] = None


class BatchProcessorConfig(BaseModel):
    """Configuration for the batch pipeline"""
    batch_size: int = settings.BATCH_SIZE
    inter_item_delay_seconds: float = settings.INTER_ITEM_DELAY_MS / 1000.0
    max_retries: int = settings.MAX_RETRIES
    retry_delay_seconds: float = settings.RETRY_DELAY
    abort_failure_rate: float = settings.ABORT_FAILURE_RATE
    failure_check_min_items: int = settings.FAILURE_CHECK_MIN_ITEMS
    allow_degraded_output: bool = False
    fetch_secondary_locale: bool = True

    @classmethod
    def from_processing_config(cls, config: ProcessingConfig) -> "BatchProcessorConfig":
        return cls(
            batch_size=config.batch_size,
            inter_item_delay_seconds=config.inter_item_delay_seconds,
            max_retries=config.max_retries,
            retry_delay_seconds=config.retry_delay_seconds,
            abort_failure_rate=config.abort_failure_rate,
            failure_check_min_items=config.failure_check_min_items,
            allow_degraded_output=config.allow_degraded_output,
        )


class BatchResult(BaseModel):
    """Everything one run produced"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    successful: List[Record] = Field(default_factory=list)
    failed: List[FailedEntity] = Field(default_factory=list)
    statistics: ProcessingStatistics = Field(default_factory=ProcessingStatistics)
    aborted: bool = False
    abort_reason: Optional[str] = None

    @property
    def failed_ids(self) -> List[str]:
        return [f.entity_id for f in self.failed]


class EntityOutcome(BaseModel):
    """Result of processing one entity"""
    record: Optional[Record] = None
    failure: Optional[FailedEntity] = None
    partial: bool = False
    stop_run: bool = False


ProgressCallback = Callable[[ProgressInfo], Any]


class BatchPipeline:
    """
    Drives an entity list through one entity plug-in

    ``fetcher`` is anything with ``async fetch(page_id, locale) -> RawPayload``.
    """

    def __init__(
        self,
        plugin: EntityPlugin,
        fetcher: Any,
        config: Optional[BatchProcessorConfig] = None,
        classifier: Optional[ErrorClassifier] = None,
        retry_handler: Optional[RetryHandler] = None,
        validation_engine: Optional[ValidationEngine] = None,
        progress_callback: Optional[ProgressCallback] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.plugin = plugin
        self.fetcher = fetcher
        self.config = config or BatchProcessorConfig()
        self.classifier = classifier or ErrorClassifier()
        self._sleep = sleep
        self.retry_handler = retry_handler or RetryHandler(
            RetryConfig(
                max_attempts=self.config.max_retries + 1,
                base_delay_seconds=self.config.retry_delay_seconds,
            ),
            classifier=self.classifier,
            sleep=sleep,
        )
        self.validation_engine = validation_engine or ValidationEngine()
        self.partial_builder = PartialRecordBuilder(plugin)
        self.progress_callback = progress_callback

    async def run(
        self,
        entities: Sequence[EntityEntry],
        batch_size: Optional[int] = None,
        inter_item_delay: Optional[float] = None,
        max_retries: Optional[int] = None,
        check_failure_rate: bool = True
    ) -> BatchResult:
        """
        Process every entity in order

        Args:
            entities: Entity list entries; repeated ids are skipped
            batch_size: Entities per batch (grouping only)
            inter_item_delay: Seconds to wait between entities
            max_retries: Retries per fetch beyond the first attempt
            check_failure_rate: Abort once the failure rate crosses the threshold;
                critical errors abort regardless

        Returns:
            Successful records, failed entities and the run statistics

        Raises:
            BatchAbortedError: If failures become systemic; carries the partial result
        """
        batch_size = batch_size or self.config.batch_size
        if batch_size <= 0:
            raise ValueError("batch_size must be greater than 0")
        delay = self.config.inter_item_delay_seconds if inter_item_delay is None else inter_item_delay
        retries = self.config.max_retries if max_retries is None else max_retries
        max_attempts = retries + 1

        stats = StatisticsCollector()
        result = BatchResult()

        unique: List[EntityEntry] = []
        seen = set()
        for entry in entities:
            if entry.id in seen:
                stats.record_skip(entry.id)
                logger.warning("Duplicate entity skipped", entity_id=entry.id)
                continue
            seen.add(entry.id)
            unique.append(entry)

        total = len(unique)
        stats.start(total)
        batches = [unique[i:i + batch_size] for i in range(0, total, batch_size)]
        started = time.monotonic()

        logger.info("Batch processing started",
                    kind=self.plugin.kind,
                    total=total,
                    batches=len(batches),
                    batch_size=batch_size,
                    max_attempts=max_attempts)

        processed = 0
        for batch_index, batch in enumerate(batches, start=1):
            logger.info("Processing batch",
                        batch=batch_index,
                        batches=len(batches),
                        entity_ids=[e.id for e in batch])

            for entry in batch:
                outcome = await self.process_entity(entry, stats, max_attempts)
                processed += 1

                if outcome.record is not None:
                    result.successful.append(outcome.record)
                if outcome.failure is not None:
                    result.failed.append(outcome.failure)

                await self._notify_progress(entry, processed, total, started)

                reason = self._abort_reason(outcome, len(result.failed), processed, total,
                                            check_failure_rate)
                if reason:
                    stats.finish()
                    result.statistics = stats.snapshot()
                    result.aborted = True
                    result.abort_reason = reason
                    failure_rate = len(result.failed) / processed
                    logger.error("Batch processing aborted",
                                 reason=reason,
                                 processed=processed,
                                 total=total,
                                 failed_ids=result.failed_ids,
                                 failure_rate=round(failure_rate, 4))
                    raise BatchAbortedError(
                        reason=reason,
                        failed_ids=result.failed_ids,
                        processed=processed,
                        total=total,
                        failure_rate=failure_rate,
                        result=result
                    )

                if processed < total and delay > 0:
                    await self._sleep(delay)

        stats.finish()
        result.statistics = stats.snapshot()
        logger.info("Batch processing completed",
                    total=total,
                    succeeded=result.statistics.succeeded,
                    partial=result.statistics.partial_succeeded,
                    failed=result.statistics.failed,
                    skipped=result.statistics.skipped,
                    success_rate=round(result.statistics.success_rate, 4))
        return result

    def _abort_reason(
        self,
        outcome: EntityOutcome,
        failed: int,
        processed: int,
        total: int,
        check_failure_rate: bool = True
    ) -> Optional[str]:
        if outcome.stop_run:
            return "critical error, processing cannot continue"
        if not check_failure_rate:
            return None
        if processed < min(self.config.failure_check_min_items, total):
            return None
        failure_rate = failed / processed
        if failure_rate > self.config.abort_failure_rate:
            return (f"failure rate {failure_rate:.0%} exceeds "
                    f"{self.config.abort_failure_rate:.0%} after {processed} entities")
        return None

    async def _notify_progress(self, entry: EntityEntry, current: int, total: int, started: float):
        if self.progress_callback is None:
            return
        elapsed = time.monotonic() - started
        remaining = (elapsed / current) * (total - current) if current else None
        info = ProgressInfo(
            current=current,
            total=total,
            percentage=round(current / total * 100, 1) if total else 100.0,
            current_entity_id=entry.id,
            stage=ProcessingStage.BATCH_PROCESSING,
            elapsed_time=elapsed,
            estimated_time_remaining=remaining,
        )
        maybe = self.progress_callback(info)
        if asyncio.iscoroutine(maybe):
            await maybe

    async def process_entity(
        self,
        entry: EntityEntry,
        stats: StatisticsCollector,
        max_attempts: Optional[int] = None
    ) -> EntityOutcome:
        """Fetch, build and validate one entity, degrading as needed"""
        started = time.monotonic()
        primary_locale = self.plugin.primary_locale
        payloads: Dict[str, RawPayload] = {}
        stage = ProcessingStage.API_FETCH
        error: Optional[BaseException] = None

        fetch_started = time.monotonic()
        fetch = await self.retry_handler.execute_with_result(
            lambda: self.fetcher.fetch(entry.page_id, primary_locale),
            max_attempts=max_attempts,
            request_id=entry.id
        )
        stats.record_api_request(self._ms_since(fetch_started))
        stats.record_retry(fetch.total_attempts, fetch.success)

        if fetch.success:
            payloads[primary_locale] = fetch.result
            await self._fetch_secondary(entry, payloads, stats)
            try:
                stage = ProcessingStage.DATA_PROCESSING
                record = self.plugin.build_record(entry, payloads)
                self._extract_attributes(record, payloads)

                stage = ProcessingStage.VALIDATION
                record.validation = self._validate(record)
                if record.validation.is_valid:
                    self._record_resolutions(record, stats)
                    stats.record_success(entry.id, self._ms_since(started))
                    logger.info("Entity processed",
                                entity_id=entry.id,
                                degraded=record.degraded)
                    return EntityOutcome(record=record)
                error = PayloadValidationError(
                    f"Record validation failed: {'; '.join(record.validation.error_messages)}",
                    details={"entity_id": entry.id}
                )
            except (IngestionException, ValueError, KeyError, TypeError) as e:
                # pydantic ValidationError is a ValueError
                error = e
        else:
            error = fetch.last_exception

        return self._recover(entry, payloads, error, stage, stats, started)

    def _recover(
        self,
        entry: EntityEntry,
        payloads: Dict[str, RawPayload],
        error: Optional[BaseException],
        stage: ProcessingStage,
        stats: StatisticsCollector,
        started: float
    ) -> EntityOutcome:
        if error is None:
            error = IngestionException("Fetch produced no payload")
        classification = self.classifier.classify(error, {"entity_id": entry.id, "stage": stage.value})
        error_type = self._error_type(error, classification.error_type)

        primary = payloads.get(self.plugin.primary_locale)
        report = self.partial_builder.detect_missing(primary)
        record = self.partial_builder.build(entry, payloads, report)

        if record is not None:
            self._extract_attributes(record, payloads)
            record.validation = self._validate(record)
            self._record_resolutions(record, stats)
            stats.record_defaults(record.defaulted_fields)

            usable = record.is_valid and self.partial_builder.validate_partial(record)
            if usable or self.config.allow_degraded_output:
                stats.record_success(entry.id, self._ms_since(started), partial=True)
                logger.warning("Entity recovered with partial data",
                               entity_id=entry.id,
                               viability=report.viability_tier.value,
                               valid=record.is_valid,
                               defaulted_fields=record.defaulted_fields)
                return EntityOutcome(record=record, partial=True,
                                     stop_run=not classification.should_continue)

        stats.record_failure(entry.id, error_type, self._ms_since(started))
        failure = FailedEntity(
            entity_id=entry.id,
            error=classification.message,
            error_type=error_type,
            stage=stage.value,
            partial_data=record
        )
        logger.error("Entity failed",
                     entity_id=entry.id,
                     stage=stage.value,
                     error_type=error_type,
                     error=classification.message)
        return EntityOutcome(failure=failure, stop_run=not classification.should_continue)

    async def _fetch_secondary(
        self,
        entry: EntityEntry,
        payloads: Dict[str, RawPayload],
        stats: StatisticsCollector
    ):
        """Secondary locale is best effort; its failure only costs the localized name"""
        locale = self.plugin.secondary_locale
        if not self.config.fetch_secondary_locale or not locale or locale in payloads:
            return
        fetch_started = time.monotonic()
        try:
            payloads[locale] = await self.fetcher.fetch(entry.page_id, locale)
        except IngestionException as e:
            logger.warning("Secondary locale fetch failed, falling back to primary name",
                           entity_id=entry.id,
                           locale=locale,
                           error=e.message)
        finally:
            stats.record_api_request(self._ms_since(fetch_started))

    def _extract_attributes(self, record: Record, payloads: Dict[str, RawPayload]):
        texts = self.plugin.description_texts(payloads)
        if texts:
            record.extracted_attributes = self.plugin.attribute_extractor.extract_from_multi_lang(texts)

    def _validate(self, record: Record):
        return self.validation_engine.validate_record(record, self.plugin.validation_rules())

    @staticmethod
    def _record_resolutions(record: Record, stats: StatisticsCollector):
        for field_name, tier in record.resolution_tiers.items():
            stats.record_degradation(field_name, tier)

    @staticmethod
    def _error_type(error: BaseException, category: ErrorCategory) -> str:
        if category == ErrorCategory.UNKNOWN and isinstance(error, ApiError):
            return "api"
        return category.value

    @staticmethod
    def _ms_since(started: float) -> float:
        return (time.monotonic() - started) * 1000.0

    async def retry_failed(
        self,
        result: BatchResult,
        entities: Sequence[EntityEntry]
    ) -> BatchResult:
        """
        Reprocess only the entities that failed in ``result``

        The failure-rate threshold is not applied to the retried subset; a
        critical error still stops the pass, and entities it never reached
        keep their original failure. Recovered records move to
        ``successful`` and the statistics cover both passes.
        """
        failed_ids = set(result.failed_ids)
        retry_entries = [e for e in entities if e.id in failed_ids]
        if not retry_entries:
            return result

        logger.info("Retrying failed entities", count=len(retry_entries))
        try:
            retried = await self.run(retry_entries, check_failure_rate=False)
        except BatchAbortedError as e:
            retried = e.result if isinstance(e.result, BatchResult) else BatchResult(aborted=True)
            retried.abort_reason = retried.abort_reason or e.reason
            logger.error("Retry of failed entities aborted",
                         reason=e.reason,
                         processed=e.processed,
                         total=e.total)

        recovered_ids = {record.id for record in retried.successful}
        retried_failures = {failure.entity_id: failure for failure in retried.failed}
        failed = [
            retried_failures.get(failure.entity_id, failure)
            for failure in result.failed
            if failure.entity_id not in recovered_ids
        ]

        merged = BatchResult(
            successful=result.successful + retried.successful,
            failed=failed,
            statistics=merge_retry_statistics(
                result.statistics,
                retried.statistics,
                [failure.error_type for failure in failed]
            ),
            aborted=retried.aborted,
            abort_reason=retried.abort_reason,
        )
        logger.info("Retry of failed entities completed",
                    recovered=len(recovered_ids),
                    still_failed=len(merged.failed))
        return merged

    def validate_processing_result(self, result: BatchResult, min_success_rate: float):
        """
        Raise if the run fell below ``min_success_rate``

        Raises:
            BatchProcessingError: With the failed ids and total
        """
        total = len(result.successful) + len(result.failed)
        if total == 0:
            return
        success_rate = len(result.successful) / total
        if success_rate < min_success_rate:
            raise BatchProcessingError(
                f"Success rate {success_rate:.1%} is below the required {min_success_rate:.1%}",
                failed_ids=result.failed_ids,
                total=total,
                details={"success_rate": success_rate, "min_success_rate": min_success_rate}
            )

    def generate_processing_report(self, result: BatchResult) -> str:
        """Markdown report of a finished or aborted run"""
        stats = result.statistics
        lines = [
            f"# Processing report: {self.plugin.kind}",
            "",
            f"Generated: {datetime.utcnow().isoformat()}",
            "",
            "## Summary",
            "",
            "| Metric | Value |",
            "| --- | --- |",
            f"| Total | {stats.total} |",
            f"| Succeeded | {stats.succeeded} |",
            f"| Partial | {stats.partial_succeeded} |",
            f"| Failed | {stats.failed} |",
            f"| Skipped | {stats.skipped} |",
            f"| Success rate | {stats.success_rate * 100:.1f}% |",
            f"| Retries | {stats.retries} |",
            f"| Elapsed | {stats.elapsed_seconds:.2f}s |",
        ]

        if result.aborted:
            lines.extend(["", "## Aborted", "", f"Reason: {result.abort_reason}"])

        degraded = [r for r in result.successful if r.degraded]
        if degraded:
            lines.extend(["", "## Degraded records", ""])
            for record in degraded:
                defaults = ", ".join(record.defaulted_fields) or "-"
                lines.append(f"- `{record.id}`: defaulted {defaults}")

        if result.failed:
            lines.extend(["", "## Failed entities", "",
                          "| Entity | Stage | Error type | Error |",
                          "| --- | --- | --- | --- |"])
            for failure in result.failed:
                message = failure.error.replace("|", "\\|")
                lines.append(f"| {failure.entity_id} | {failure.stage} | {failure.error_type} | {message} |")

        collector = StatisticsCollector()
        collector.stats = stats.model_copy(deep=True)
        lines.extend(["", "## Recommendations", ""])
        lines.extend(f"- {item}" for item in collector.get_recommendations())
        return "\n".join(lines) + "\n"
