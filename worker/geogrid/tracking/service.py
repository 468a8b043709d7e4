"""Entry points for starting rank scans and reading their statistics."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Dict, List, Optional, Tuple

from geogrid.core.config import ConfigError, ScanConfig, Settings, get_settings
from geogrid.core.db import PostgresLocationRepository, PostgresScanRepository, init_pool
from geogrid.core.errors import ValidationError
from geogrid.core.repository import LocationRepository, ScanRepository
from geogrid.geo.grid import generate_grid
from geogrid.models import AggregateStats, GeoPoint, Scan, ScanPointOutcome
from geogrid.tracking.client import RankSearchClient
from geogrid.tracking.matcher import EntityMatcher
from geogrid.tracking.orchestrator import BatchScanOrchestrator
from geogrid.tracking.stats import aggregate_scans
from geogrid.vendors.base import RankSearchProvider
from geogrid.vendors.dataforseo import DataForSEOMapsProvider
from geogrid.vendors.serpapi_maps import SerpApiMapsProvider

logger = logging.getLogger(__name__)

ALLOWED_GRID_SIZES = (3, 5, 7, 9)
MIN_RADIUS_METERS = 500
MAX_RADIUS_METERS = 10000
MIN_ZOOM = 10
MAX_ZOOM = 20
DEFAULT_ZOOM = 15
MIN_KEYWORD_LENGTH = 2


def validate_scan_request(keyword: str, grid_size: int, radius_meters: int, zoom: int) -> str:
    """Check scan parameters and return the cleaned keyword."""
    errors: Dict[str, str] = {}

    cleaned = (keyword or "").strip()
    if len(cleaned) < MIN_KEYWORD_LENGTH:
        errors["keyword"] = f"keyword must be at least {MIN_KEYWORD_LENGTH} characters"
    if not _is_int(grid_size) or grid_size not in ALLOWED_GRID_SIZES:
        errors["grid_size"] = f"grid_size must be one of {', '.join(map(str, ALLOWED_GRID_SIZES))}"
    if not _is_int(radius_meters) or not MIN_RADIUS_METERS <= radius_meters <= MAX_RADIUS_METERS:
        errors["radius_meters"] = f"radius_meters must be between {MIN_RADIUS_METERS} and {MAX_RADIUS_METERS}"
    if not _is_int(zoom) or not MIN_ZOOM <= zoom <= MAX_ZOOM:
        errors["zoom"] = f"zoom must be between {MIN_ZOOM} and {MAX_ZOOM}"

    if errors:
        raise ValidationError("Invalid scan parameters", errors)
    return cleaned


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class ScanTask:
    """Handle on a scan running in the background: joinable, pollable and cancellable."""

    def __init__(self, scan: Scan, future: "Future[Tuple[Scan, List[ScanPointOutcome]]]", cancel_event: threading.Event):
        self.scan = scan
        self.future = future
        self._cancel_event = cancel_event

    @property
    def scan_id(self) -> str:
        return self.scan.id

    def done(self) -> bool:
        return self.future.done()

    def cancel(self) -> None:
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def result(self, timeout: Optional[float] = None) -> Scan:
        final, _ = self.future.result(timeout=timeout)
        return final

    def outcomes(self, timeout: Optional[float] = None) -> List[ScanPointOutcome]:
        _, outcomes = self.future.result(timeout=timeout)
        return outcomes


class RankTrackerService:
    def __init__(
        self,
        locations: LocationRepository,
        scans: ScanRepository,
        provider: RankSearchProvider,
        *,
        config: Optional[ScanConfig] = None,
        matcher: Optional[EntityMatcher] = None,
        executor: Optional[ThreadPoolExecutor] = None,
        stats_history_limit: int = 10,
    ) -> None:
        self.locations = locations
        self.scans = scans
        self.config = config or ScanConfig()
        self.orchestrator = BatchScanOrchestrator(
            RankSearchClient(provider, self.config),
            matcher or EntityMatcher(),
            scans,
            self.config,
        )
        self._executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix="scan-task")
        self._tasks: Dict[str, ScanTask] = {}
        self._lock = threading.Lock()
        self.stats_history_limit = stats_history_limit

    def submit_scan(
        self,
        location_id: str,
        keyword: str,
        grid_size: int,
        radius_meters: int,
        zoom: int = DEFAULT_ZOOM,
    ) -> ScanTask:
        """Validate, create the pending scan and run it in the background."""
        keyword = validate_scan_request(keyword, grid_size, radius_meters, zoom)

        location = self.locations.get_location(location_id)
        if location is None:
            raise ValidationError("Location not found", {"location_id": "location not found"})
        if not location.has_coordinates:
            raise ValidationError(
                "Location has no coordinates",
                {"location_id": "location has no geographic coordinates"},
            )

        center = GeoPoint(latitude=location.latitude, longitude=location.longitude)
        try:
            points = generate_grid(center, radius_meters, grid_size)
        except ValueError as exc:
            # DegenerateCoordinateError at the poles, or a lattice reaching past one.
            raise ValidationError(
                "Grid cannot be laid out around this location",
                {"radius_meters": str(exc)},
            ) from exc
        scan = self.scans.create_scan(
            location_id=location_id,
            keyword=keyword,
            grid_size=grid_size,
            radius_meters=radius_meters,
            zoom=zoom,
            total_points=len(points),
        )
        logger.info("Created scan %s for location=%s keyword=%s", scan.id, location_id, keyword)

        cancel_event = threading.Event()
        future = self._executor.submit(
            self.orchestrator.run_scan, scan, points, keyword, zoom, location.target, cancel_event
        )
        task = ScanTask(scan, future, cancel_event)
        with self._lock:
            self._tasks[scan.id] = task
        future.add_done_callback(lambda done: self._on_scan_done(scan.id, done))
        return task

    def start_scan(
        self,
        location_id: str,
        keyword: str,
        grid_size: int,
        radius_meters: int,
        zoom: int = DEFAULT_ZOOM,
    ) -> Scan:
        """Run a scan to its terminal state and return it."""
        return self.submit_scan(location_id, keyword, grid_size, radius_meters, zoom).result()

    def get_task(self, scan_id: str) -> Optional[ScanTask]:
        with self._lock:
            return self._tasks.get(scan_id)

    def cancel_scan(self, scan_id: str) -> bool:
        """Request cancellation of an in-flight scan; False if it is not running here."""
        task = self.get_task(scan_id)
        if task is None:
            return False
        task.cancel()
        logger.info("Cancellation requested for scan %s", scan_id)
        return True

    def get_aggregate_stats(self, location_id: str, keyword: Optional[str] = None) -> AggregateStats:
        scans = self.scans.list_completed_scans(location_id, keyword=keyword, limit=self.stats_history_limit)
        return aggregate_scans(scans)

    def list_scans(self, location_id: str) -> List[Scan]:
        return self.scans.list_scans(location_id)

    def get_scan_results(self, scan_id: str) -> Tuple[Optional[Scan], List[ScanPointOutcome]]:
        scan = self.scans.get_scan(scan_id)
        if scan is None:
            return None, []
        outcomes = sorted(self.scans.get_outcomes(scan_id), key=lambda outcome: outcome.grid_index)
        return scan, outcomes

    def delete_scan(self, scan_id: str) -> bool:
        self.cancel_scan(scan_id)
        return self.scans.delete_scan(scan_id)

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            tasks = list(self._tasks.values())
        if not wait:
            for task in tasks:
                task.cancel()
        self._executor.shutdown(wait=wait)

    def _on_scan_done(self, scan_id: str, future: "Future[Tuple[Scan, List[ScanPointOutcome]]]") -> None:
        self._forget(scan_id)
        if future.cancelled():
            logger.warning("Scan %s was dropped before it started", scan_id)
            return
        exc = future.exception()
        if exc is not None:
            logger.error("Scan job %s failed: %s", scan_id, exc, exc_info=exc)
            self._mark_abandoned(scan_id, str(exc) or exc.__class__.__name__)

    def _mark_abandoned(self, scan_id: str, message: str) -> None:
        try:
            self.scans.mark_failed(scan_id, message)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to record failure of scan %s", scan_id)

    def _forget(self, scan_id: str) -> None:
        with self._lock:
            self._tasks.pop(scan_id, None)


def build_provider(settings: Settings) -> RankSearchProvider:
    if settings.rank_provider == "dataforseo":
        if not (settings.dataforseo_login and settings.dataforseo_password):
            raise ConfigError("DATAFORSEO_LOGIN and DATAFORSEO_PASSWORD are required for the dataforseo provider")
        return DataForSEOMapsProvider(
            settings.dataforseo_login,
            settings.dataforseo_password,
            location_code=settings.dataforseo_location_code,
            language_code=settings.dataforseo_language_code,
        )

    if not settings.serpapi_api_key:
        raise ConfigError("SERPAPI_API_KEY is required for the serpapi provider")
    return SerpApiMapsProvider(settings.serpapi_api_key)


def build_service(settings: Optional[Settings] = None) -> RankTrackerService:
    """Wire the service against PostgreSQL and the configured SERP provider."""
    settings = settings or get_settings()
    init_pool()
    return RankTrackerService(
        PostgresLocationRepository(),
        PostgresScanRepository(),
        build_provider(settings),
        config=ScanConfig.from_settings(settings),
        matcher=EntityMatcher(
            word_overlap_ratio=settings.word_overlap_ratio,
            competitor_limit=settings.competitor_limit,
        ),
        executor=ThreadPoolExecutor(max_workers=settings.max_concurrent_scans, thread_name_prefix="scan-task"),
        stats_history_limit=settings.stats_history_limit,
    )
