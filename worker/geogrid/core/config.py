"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ("serpapi", "dataforseo")


class ConfigError(RuntimeError):
    """Raised when mandatory configuration is missing."""


@dataclass(frozen=True)
class Settings:
    rank_provider: str = "serpapi"
    serpapi_api_key: str = ""
    dataforseo_login: str = ""
    dataforseo_password: str = ""
    dataforseo_location_code: int = 2380
    dataforseo_language_code: str = "it"
    database_url: str = ""
    worker_port: int = 9000
    scan_batch_size: int = 5
    inter_batch_delay_ms: int = 200
    search_depth: int = 20
    retry_backoff_seconds: float = 5.0
    word_overlap_ratio: float = 0.5
    competitor_limit: int = 5
    max_concurrent_scans: int = 4
    stats_history_limit: int = 10


@dataclass(frozen=True)
class ScanConfig:
    """Tuning knobs injected into the search client and the batch orchestrator."""

    batch_size: int = 5
    inter_batch_delay: float = 0.2
    search_depth: int = 20
    retry_backoff: float = 5.0

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ConfigError("batch_size must be at least 1")
        if self.search_depth < 1:
            raise ConfigError("search_depth must be at least 1")
        if self.inter_batch_delay < 0 or self.retry_backoff < 0:
            raise ConfigError("delays must not be negative")

    @classmethod
    def from_settings(cls, settings: Settings) -> "ScanConfig":
        return cls(
            batch_size=settings.scan_batch_size,
            inter_batch_delay=settings.inter_batch_delay_ms / 1000.0,
            search_depth=settings.search_depth,
            retry_backoff=settings.retry_backoff_seconds,
        )


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    rank_provider = os.getenv("RANK_PROVIDER", "serpapi").strip().lower()
    if rank_provider not in SUPPORTED_PROVIDERS:
        raise ConfigError(f"RANK_PROVIDER must be one of {', '.join(SUPPORTED_PROVIDERS)}, got {rank_provider!r}")

    serpapi_api_key = os.getenv("SERPAPI_API_KEY", "")
    dataforseo_login = os.getenv("DATAFORSEO_LOGIN", "")
    dataforseo_password = os.getenv("DATAFORSEO_PASSWORD", "")
    database_url = os.getenv("DATABASE_URL", "")

    if not database_url:
        logger.warning("DATABASE_URL is not set; database operations will fail.")
    if rank_provider == "serpapi" and not serpapi_api_key:
        logger.warning("SERPAPI_API_KEY is not configured; SerpAPI rank searches will fail.")
    if rank_provider == "dataforseo" and not (dataforseo_login and dataforseo_password):
        logger.warning("DATAFORSEO_LOGIN/DATAFORSEO_PASSWORD are not configured; DataForSEO rank searches will fail.")

    return Settings(
        rank_provider=rank_provider,
        serpapi_api_key=serpapi_api_key,
        dataforseo_login=dataforseo_login,
        dataforseo_password=dataforseo_password,
        dataforseo_location_code=_get_int("DATAFORSEO_LOCATION_CODE", 2380),
        dataforseo_language_code=os.getenv("DATAFORSEO_LANGUAGE_CODE", "it"),
        database_url=database_url,
        worker_port=_get_int("WORKER_PORT", 9000),
        scan_batch_size=_get_int("SCAN_BATCH_SIZE", 5),
        inter_batch_delay_ms=_get_int("SCAN_INTER_BATCH_DELAY_MS", 200),
        search_depth=_get_int("SCAN_SEARCH_DEPTH", 20),
        retry_backoff_seconds=_get_float("SCAN_RETRY_BACKOFF_SECONDS", 5.0),
        word_overlap_ratio=_get_float("MATCH_WORD_OVERLAP_RATIO", 0.5),
        competitor_limit=_get_int("MATCH_COMPETITOR_LIMIT", 5),
        max_concurrent_scans=_get_int("MAX_CONCURRENT_SCANS", 4),
        stats_history_limit=_get_int("STATS_HISTORY_LIMIT", 10),
    )
