"""
Command line entry point
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from wiki_ingest.clients.hoyowiki import HoyoWikiClient
from wiki_ingest.core.config import ProcessingConfig, load_processing_config
from wiki_ingest.core.exceptions import (
    BatchAbortedError,
    BatchProcessingError,
    ConfigurationError,
    EntityListError,
)
from wiki_ingest.core.logging import setup_logging
from wiki_ingest.entities import PLUGINS, get_plugin
from wiki_ingest.extraction.batch_processor import (
    BatchPipeline,
    BatchProcessorConfig,
    BatchResult,
    ProgressInfo,
)
from wiki_ingest.standardization.attribute_extractor import AttributeExtractor
from wiki_ingest.standardization.entry_parser import apply_filter, load_entries

logger = structlog.get_logger(__name__)

EXIT_OK = 0
EXIT_BELOW_SUCCESS_RATE = 1
EXIT_ABORTED = 2
EXIT_CONFIG_ERROR = 3


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="wiki-ingest",
        description="Ingest agent, W-Engine or Drive Disc entries from the HoYoWiki content API"
    )
    parser.add_argument(
        "--config",
        help="YAML run configuration (values are merged over the defaults)"
    )
    parser.add_argument(
        "--kind",
        choices=sorted(PLUGINS),
        help="Entity kind to ingest (default: character)"
    )
    parser.add_argument(
        "--list",
        dest="entity_list_path",
        help="Markdown entity list with '- [id](url) - pageId: N' lines"
    )
    parser.add_argument(
        "--output",
        dest="output_path",
        help="JSON file for the produced records"
    )
    parser.add_argument(
        "--report",
        dest="report_path",
        help="Markdown processing report (default: next to the output file)"
    )
    parser.add_argument("--batch-size", type=int, help="Entities per batch")
    parser.add_argument("--delay-ms", dest="inter_item_delay_ms", type=int,
                        help="Delay between entities in milliseconds")
    parser.add_argument("--max-retries", type=int, help="Retries per fetch")
    parser.add_argument("--min-success-rate", type=float,
                        help="Fail the run below this success rate (0-1)")
    parser.add_argument("--abort-failure-rate", type=float,
                        help="Abort once the failure rate exceeds this value (0-1)")
    parser.add_argument(
        "--allow-degraded",
        dest="allow_degraded_output",
        action="store_true",
        default=None,
        help="Write partial records even when they fail validation"
    )
    parser.add_argument("--include", nargs="+", default=None, help="Only these entity ids")
    parser.add_argument("--exclude", nargs="+", default=None, help="Skip these entity ids")
    parser.add_argument("--max-entities", type=int, help="Process at most this many entities")
    parser.add_argument("--retry-failed", action="store_true",
                        help="Reprocess failed entities once after the run")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")
    return parser


def overrides_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {
        "entity_kind": args.kind,
        "entity_list_path": args.entity_list_path,
        "output_path": args.output_path,
        "report_path": args.report_path,
        "batch_size": args.batch_size,
        "inter_item_delay_ms": args.inter_item_delay_ms,
        "max_retries": args.max_retries,
        "min_success_rate": args.min_success_rate,
        "abort_failure_rate": args.abort_failure_rate,
        "allow_degraded_output": args.allow_degraded_output,
        "log_level": args.log_level,
        "retry_failed": args.retry_failed or None,
    }
    entity_filter: Dict[str, Any] = {}
    if args.include:
        entity_filter["include_ids"] = args.include
    if args.exclude:
        entity_filter["exclude_ids"] = args.exclude
    if args.max_entities is not None:
        entity_filter["max_entities"] = args.max_entities
    if entity_filter:
        overrides["entity_filter"] = entity_filter
    return overrides


def write_output(config: ProcessingConfig, result: BatchResult, report: str) -> Dict[str, str]:
    """Write records, failures and the markdown report; returns the paths"""
    output_path = Path(config.output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    failed_path = output_path.with_name(f"{output_path.stem}.failed.json")
    report_path = Path(config.report_path) if config.report_path else output_path.with_suffix(".report.md")
    report_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, "w", encoding="utf-8") as f:
        json.dump([r.to_output() for r in result.successful], f, ensure_ascii=False, indent=2)
    with open(failed_path, "w", encoding="utf-8") as f:
        json.dump([entity.model_dump(mode="json", by_alias=True) for entity in result.failed],
                  f, ensure_ascii=False, indent=2)
    with open(report_path, "w", encoding="utf-8") as f:
        f.write(report)

    paths = {"records": str(output_path), "failed": str(failed_path), "report": str(report_path)}
    logger.info("Output written", **paths)
    return paths


def log_progress(info: ProgressInfo):
    logger.info("Progress",
                current=info.current,
                total=info.total,
                percentage=info.percentage,
                entity_id=info.current_entity_id,
                eta_seconds=round(info.estimated_time_remaining, 1)
                if info.estimated_time_remaining is not None else None)


async def run(config: ProcessingConfig) -> int:
    entries = apply_filter(load_entries(config.entity_list_path), config.entity_filter)
    plugin = get_plugin(
        config.entity_kind,
        attribute_extractor=AttributeExtractor(language_priority=config.language_priority)
    )

    async with HoyoWikiClient() as client:
        pipeline = BatchPipeline(
            plugin,
            client,
            config=BatchProcessorConfig.from_processing_config(config),
            progress_callback=log_progress
        )

        try:
            result = await pipeline.run(entries)
        except BatchAbortedError as e:
            result = e.result if isinstance(e.result, BatchResult) else BatchResult()
            write_output(config, result, pipeline.generate_processing_report(result))
            logger.error("Run aborted",
                         reason=e.reason,
                         processed=e.processed,
                         total=e.total,
                         failed_ids=e.failed_ids)
            return EXIT_ABORTED

        if config.retry_failed and result.failed:
            result = await pipeline.retry_failed(result, entries)

        write_output(config, result, pipeline.generate_processing_report(result))
        if result.aborted:
            logger.error("Retry pass aborted",
                         reason=result.abort_reason,
                         failed_ids=result.failed_ids)
            return EXIT_ABORTED

        stats = result.statistics
        logger.info("Run finished",
                    total=stats.total,
                    succeeded=stats.succeeded,
                    partial=stats.partial_succeeded,
                    failed=stats.failed,
                    skipped=stats.skipped,
                    success_rate=round(stats.success_rate, 4))

        try:
            pipeline.validate_processing_result(result, config.min_success_rate)
        except BatchProcessingError as e:
            logger.error("Run below required success rate",
                         error=e.message,
                         failed_ids=e.failed_ids)
            return EXIT_BELOW_SUCCESS_RATE

    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    try:
        config = load_processing_config(args.config, overrides_from_args(args))
    except ConfigurationError as e:
        logger.error("Invalid configuration", error=e.message, details=e.details)
        return EXIT_CONFIG_ERROR

    logging.getLogger().setLevel(config.log_level)
    try:
        return asyncio.run(run(config))
    except (ConfigurationError, EntityListError) as e:
        logger.error("Run could not start", error=e.message, error_code=e.error_code, details=e.details)
        return EXIT_CONFIG_ERROR


if __name__ == "__main__":
    sys.exit(main())
