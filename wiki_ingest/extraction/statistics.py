"""
Run statistics - counters, timings, recommendations and the text report
"""

import time
from datetime import datetime
from typing import Callable, Dict, List, Optional

import structlog
from pydantic import BaseModel, Field

logger = structlog.get_logger(__name__)

# Recommendation thresholds
HIGH_FAILURE_RATE = 0.2
SLOW_AVERAGE_MS = 5000.0
DOMINANT_ERROR_SHARE = 0.3
LOW_RETRY_SUCCESS_RATE = 0.5


class ProcessingStatistics(BaseModel):
    """Snapshot of one run's counters and derived rates"""
    total: int = 0
    processed: int = 0
    succeeded: int = 0
    partial_succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    retries: int = 0
    retried_entities: int = 0
    retry_successes: int = 0
    api_requests: int = 0
    total_api_time_ms: float = 0.0
    total_processing_time_ms: float = 0.0
    elapsed_seconds: float = 0.0
    timings: Dict[str, float] = Field(default_factory=dict)
    error_type_counts: Dict[str, int] = Field(default_factory=dict)
    degradation_counts: Dict[str, int] = Field(default_factory=dict)
    defaulted_field_counts: Dict[str, int] = Field(default_factory=dict)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def success_rate(self) -> float:
        """Full and partial successes over processed entities"""
        if self.processed == 0:
            return 0.0
        return (self.succeeded + self.partial_succeeded) / self.processed

    @property
    def failure_rate(self) -> float:
        if self.processed == 0:
            return 0.0
        return self.failed / self.processed

    @property
    def retry_success_rate(self) -> float:
        if self.retried_entities == 0:
            return 0.0
        return self.retry_successes / self.retried_entities

    @property
    def average_processing_time_ms(self) -> float:
        if not self.timings:
            return 0.0
        return self.total_processing_time_ms / len(self.timings)

    @property
    def average_api_time_ms(self) -> float:
        if self.api_requests == 0:
            return 0.0
        return self.total_api_time_ms / self.api_requests

    @property
    def throughput_per_second(self) -> float:
        if self.elapsed_seconds <= 0:
            return 0.0
        return self.processed / self.elapsed_seconds


class StatisticsCollector:
    """Accumulates counters for a single run; create one per run"""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._started: Optional[float] = None
        self._finished: Optional[float] = None
        self.stats = ProcessingStatistics()

    def start(self, total: int):
        self.stats.total = total
        self.stats.started_at = datetime.utcnow()
        self._started = self._clock()
        logger.info("Statistics collection started", total=total)

    def finish(self):
        self._finished = self._clock()
        self.stats.finished_at = datetime.utcnow()

    def record_success(self, entity_id: str, duration_ms: float, partial: bool = False):
        if partial:
            self.stats.partial_succeeded += 1
        else:
            self.stats.succeeded += 1
        self._record_processed(entity_id, duration_ms)

    def record_failure(self, entity_id: str, error_type: str, duration_ms: float):
        self.stats.failed += 1
        counts = self.stats.error_type_counts
        counts[error_type] = counts.get(error_type, 0) + 1
        self._record_processed(entity_id, duration_ms)

    def record_skip(self, entity_id: str):
        self.stats.skipped += 1
        logger.debug("Entity skipped", entity_id=entity_id)

    def record_retry(self, attempts: int, succeeded: bool):
        """One fetch that needed more than one attempt"""
        if attempts <= 1:
            return
        self.stats.retries += attempts - 1
        self.stats.retried_entities += 1
        if succeeded:
            self.stats.retry_successes += 1

    def record_api_request(self, duration_ms: float):
        self.stats.api_requests += 1
        self.stats.total_api_time_ms += duration_ms

    def record_degradation(self, field_name: str, tier: str):
        key = f"{field_name}:{tier}"
        counts = self.stats.degradation_counts
        counts[key] = counts.get(key, 0) + 1

    def record_defaults(self, fields: List[str]):
        counts = self.stats.defaulted_field_counts
        for field in fields:
            counts[field] = counts.get(field, 0) + 1

    def _record_processed(self, entity_id: str, duration_ms: float):
        self.stats.processed += 1
        self.stats.timings[entity_id] = duration_ms
        self.stats.total_processing_time_ms += duration_ms

    def snapshot(self) -> ProcessingStatistics:
        """Copy of the current counters with elapsed time filled in"""
        snapshot = self.stats.model_copy(deep=True)
        if self._started is not None:
            end = self._finished if self._finished is not None else self._clock()
            snapshot.elapsed_seconds = max(end - self._started, 0.0)
        return snapshot

    def get_progress_summary(self) -> Dict[str, object]:
        stats = self.snapshot()
        return {
            "total": stats.total,
            "processed": stats.processed,
            "succeeded": stats.succeeded,
            "partial_succeeded": stats.partial_succeeded,
            "failed": stats.failed,
            "skipped": stats.skipped,
            "success_rate": round(stats.success_rate, 4),
        }

    def get_performance_summary(self) -> Dict[str, float]:
        stats = self.snapshot()
        return {
            "elapsed_seconds": round(stats.elapsed_seconds, 3),
            "average_processing_time_ms": round(stats.average_processing_time_ms, 2),
            "throughput_per_second": round(stats.throughput_per_second, 3),
            "api_requests": stats.api_requests,
            "average_api_time_ms": round(stats.average_api_time_ms, 2),
            "retry_success_rate": round(stats.retry_success_rate, 4),
        }

    def get_recommendations(self) -> List[str]:
        stats = self.snapshot()
        recommendations: List[str] = []

        if stats.processed and stats.failure_rate > HIGH_FAILURE_RATE:
            recommendations.append(
                "High failure rate: check network connectivity and API availability"
            )

        if stats.average_processing_time_ms > SLOW_AVERAGE_MS:
            recommendations.append(
                "Slow processing: consider a smaller batch size or a longer inter-item delay"
            )

        total_errors = sum(stats.error_type_counts.values())
        if total_errors:
            def share(error_type: str) -> float:
                return stats.error_type_counts.get(error_type, 0) / total_errors

            if share("network") > DOMINANT_ERROR_SHARE:
                recommendations.append("Network errors dominate: the connection looks unstable")
            if share("api") > DOMINANT_ERROR_SHARE:
                recommendations.append("API errors dominate: the API looks unstable")
            if share("data_structure") > DOMINANT_ERROR_SHARE:
                recommendations.append(
                    "Data structure errors dominate: the API response format may have changed"
                )

        if stats.retried_entities and stats.retry_success_rate < LOW_RETRY_SUCCESS_RATE:
            recommendations.append("Low retry success rate: consider adjusting the retry interval")

        if not recommendations:
            recommendations.append("No issues detected")
        return recommendations

    def generate_report(self) -> str:
        """Plain text report of the run"""
        stats = self.snapshot()
        performance = self.get_performance_summary()

        lines = [
            "=== Processing Statistics ===",
            f"Total: {stats.total}",
            f"Succeeded: {stats.succeeded}",
            f"Partial: {stats.partial_succeeded}",
            f"Failed: {stats.failed}",
            f"Skipped: {stats.skipped}",
            f"Success rate: {stats.success_rate * 100:.1f}%",
            f"Retries: {stats.retries} (retry success rate {stats.retry_success_rate * 100:.1f}%)",
            "",
            "=== Performance ===",
            f"Elapsed: {performance['elapsed_seconds']}s",
            f"Average processing time: {performance['average_processing_time_ms']}ms",
            f"Throughput: {performance['throughput_per_second']} items/s",
            f"API requests: {stats.api_requests} (average {performance['average_api_time_ms']}ms)",
        ]

        if stats.error_type_counts:
            lines.extend(["", "=== Errors by type ==="])
            for error_type, count in sorted(stats.error_type_counts.items(), key=lambda kv: -kv[1]):
                lines.append(f"{error_type}: {count}")

        if stats.degradation_counts:
            lines.extend(["", "=== Degradation ==="])
            for key, count in sorted(stats.degradation_counts.items()):
                lines.append(f"{key}: {count}")

        if stats.defaulted_field_counts:
            lines.extend(["", "=== Defaulted fields ==="])
            for field, count in sorted(stats.defaulted_field_counts.items()):
                lines.append(f"{field}: {count}")

        lines.extend(["", "=== Recommendations ==="])
        lines.extend(f"- {item}" for item in self.get_recommendations())
        return "\n".join(lines)


def _sum_counts(first: Dict[str, int], second: Dict[str, int]) -> Dict[str, int]:
    counts = dict(first)
    for key, count in second.items():
        counts[key] = counts.get(key, 0) + count
    return counts


def merge_retry_statistics(
    first: ProcessingStatistics,
    retried: ProcessingStatistics,
    remaining_error_types: List[str]
) -> ProcessingStatistics:
    """
    Statistics of a run followed by a retry pass over its failures

    Entities recovered by the retry move from ``failed`` to the success
    counters; ``total`` and ``processed`` stay those of the first run.

    Args:
        first: Statistics of the original run
        retried: Statistics of the retry pass
        remaining_error_types: Error type of every entity still failed after the retry
    """
    timings = dict(first.timings)
    for entity_id, duration_ms in retried.timings.items():
        timings[entity_id] = timings.get(entity_id, 0.0) + duration_ms

    error_type_counts: Dict[str, int] = {}
    for error_type in remaining_error_types:
        error_type_counts[error_type] = error_type_counts.get(error_type, 0) + 1

    return ProcessingStatistics(
        total=first.total,
        processed=first.processed,
        succeeded=first.succeeded + retried.succeeded,
        partial_succeeded=first.partial_succeeded + retried.partial_succeeded,
        failed=len(remaining_error_types),
        skipped=first.skipped,
        retries=first.retries + retried.retries,
        retried_entities=first.retried_entities + retried.retried_entities,
        retry_successes=first.retry_successes + retried.retry_successes,
        api_requests=first.api_requests + retried.api_requests,
        total_api_time_ms=first.total_api_time_ms + retried.total_api_time_ms,
        total_processing_time_ms=first.total_processing_time_ms + retried.total_processing_time_ms,
        elapsed_seconds=first.elapsed_seconds + retried.elapsed_seconds,
        timings=timings,
        error_type_counts=error_type_counts,
        degradation_counts=_sum_counts(first.degradation_counts, retried.degradation_counts),
        defaulted_field_counts=_sum_counts(first.defaulted_field_counts, retried.defaulted_field_counts),
        started_at=first.started_at,
        finished_at=retried.finished_at or first.finished_at,
    )
