"""
Application configuration
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog
import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings

from wiki_ingest.core.exceptions import ConfigurationError

logger = structlog.get_logger(__name__)


class Settings(BaseSettings):
    """Application settings"""

    # Logging Settings
    LOG_LEVEL: str = "INFO"

    PROJECT_NAME: str = "HoYoWiki Ingest"

    # Content API
    HOYOWIKI_API_BASE: str = "https://sg-wiki-api-static.hoyolab.com/hoyowiki/zzz/wapi"
    HOYOWIKI_WIKI_APP: str = "zzz"
    USER_AGENT: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    PRIMARY_LOCALE: str = "ja-jp"
    SECONDARY_LOCALE: str = "en-us"

    # API Timeouts (seconds)
    REQUEST_TIMEOUT: float = 30.0
    MAX_RETRIES: int = 3
    RETRY_DELAY: float = 1.0
    MAX_RETRY_DELAY: float = 30.0

    # Batch Processing
    BATCH_SIZE: int = 5
    INTER_ITEM_DELAY_MS: int = 200
    MIN_SUCCESS_RATE: float = 0.8
    ABORT_FAILURE_RATE: float = 0.5
    FAILURE_CHECK_MIN_ITEMS: int = 10

    # Attribute extraction
    LANGUAGE_PRIORITY: List[str] = ["ja", "en"]
    MAX_TEXT_LENGTH: int = 10000

    # Field Mapping
    FIELD_MAPPING_CONFIG_PATH: Optional[str] = None  # extra label aliases (YAML)
    FUZZY_MATCH_THRESHOLD: int = 80  # fuzzywuzzy score, 0-100

    # Fallback data
    ATTACK_TYPE_LIST_PATH: str = "./json/data/list.json"

    # Output
    OUTPUT_DIRECTORY: str = "./output"

    class Config:
        env_file = ".env"
        case_sensitive = True


# Create global settings instance
settings = Settings()


class EntityFilter(BaseModel):
    """Restricts which entries of the entity list are processed"""
    include_ids: List[str] = Field(default_factory=list)
    exclude_ids: List[str] = Field(default_factory=list)
    max_entities: Optional[int] = None

    @field_validator("max_entities")
    @classmethod
    def _positive_limit(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value <= 0:
            raise ValueError("max_entities must be greater than 0")
        return value


class ProcessingConfig(BaseModel):
    """Per-run processing configuration"""
    entity_kind: str = "character"
    entity_list_path: str = "Scraping.md"
    output_path: str = Field(default_factory=lambda: str(Path(settings.OUTPUT_DIRECTORY) / "records.json"))
    report_path: Optional[str] = None

    batch_size: int = settings.BATCH_SIZE
    inter_item_delay_ms: int = settings.INTER_ITEM_DELAY_MS
    max_retries: int = settings.MAX_RETRIES
    retry_delay_seconds: float = settings.RETRY_DELAY
    min_success_rate: float = settings.MIN_SUCCESS_RATE
    abort_failure_rate: float = settings.ABORT_FAILURE_RATE
    failure_check_min_items: int = settings.FAILURE_CHECK_MIN_ITEMS
    allow_degraded_output: bool = False
    retry_failed: bool = False
    language_priority: List[str] = Field(default_factory=lambda: list(settings.LANGUAGE_PRIORITY))

    entity_filter: EntityFilter = Field(default_factory=EntityFilter)
    log_level: str = settings.LOG_LEVEL

    @field_validator("batch_size", "failure_check_min_items")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be greater than 0")
        return value

    @field_validator("inter_item_delay_ms", "max_retries")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must be 0 or greater")
        return value

    @field_validator("min_success_rate", "abort_failure_rate")
    @classmethod
    def _unit_interval(cls, value: float) -> float:
        if not 0.0 <= value <= 1.0:
            raise ValueError("must be between 0 and 1")
        return value

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level: {value}")
        return level

    @property
    def inter_item_delay_seconds(self) -> float:
        return self.inter_item_delay_ms / 1000.0

    @property
    def max_attempts(self) -> int:
        """Total fetch attempts: the first call plus max_retries retries"""
        return self.max_retries + 1


def load_processing_config(
    config_path: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None
) -> ProcessingConfig:
    """
    Load a run configuration from YAML and merge it over the defaults

    Args:
        config_path: Optional path to a YAML file
        overrides: Values that win over both file and defaults (e.g. CLI flags)

    Returns:
        Validated processing configuration

    Raises:
        ConfigurationError: If the file is unreadable or a value is out of range
    """
    config_data: Dict[str, Any] = {}

    if config_path:
        config_file = Path(config_path)
        if not config_file.exists():
            raise ConfigurationError(
                f"Configuration file not found: {config_path}",
                error_code="CONFIG_NOT_FOUND",
                details={"path": config_path}
            )
        try:
            with open(config_file, "r", encoding="utf-8") as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Configuration file is not valid YAML: {config_path}",
                error_code="CONFIG_PARSE_ERROR",
                details={"path": config_path, "error": str(e)}
            ) from e

        if not isinstance(config_data, dict):
            raise ConfigurationError(
                "Configuration root must be a mapping",
                error_code="CONFIG_PARSE_ERROR",
                details={"path": config_path}
            )
        logger.info("Processing config loaded", path=config_path)

    if overrides:
        config_data.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return ProcessingConfig(**config_data)
    except ValidationError as e:
        raise ConfigurationError(
            "Invalid processing configuration",
            error_code="CONFIG_INVALID",
            details={"errors": [
                {"field": ".".join(str(loc) for loc in err["loc"]), "message": err["msg"]}
                for err in e.errors()
            ]}
        ) from e
