import threading

import pytest

from geogrid.core.config import ConfigError, ScanConfig, Settings
from geogrid.core.errors import ValidationError
from geogrid.models import Location, ScanStatus
from geogrid.tracking import service as service_module
from geogrid.tracking.service import RankTrackerService, build_provider, validate_scan_request
from geogrid.vendors.dataforseo import DataForSEOMapsProvider
from geogrid.vendors.serpapi_maps import SerpApiMapsProvider

from fakes import FakeProvider, InMemoryLocationRepository, InMemoryScanRepository, make_items


TURIN = Location(id="loc-1", business_name="Trattoria Da Luigi", place_id="pid-2", latitude=45.0703, longitude=7.6869)
NO_COORDS = Location(id="loc-2", business_name="Somewhere")


@pytest.fixture
def repo():
    return InMemoryScanRepository()


@pytest.fixture
def provider():
    return FakeProvider(items=make_items("Alpha", "Trattoria Da Luigi", "Charlie"))


@pytest.fixture
def service(repo, provider):
    svc = RankTrackerService(
        InMemoryLocationRepository(TURIN, NO_COORDS),
        repo,
        provider,
        config=ScanConfig(batch_size=5, inter_batch_delay=0, retry_backoff=0),
    )
    yield svc
    svc.shutdown()


def test_validate_scan_request_collects_field_errors():
    with pytest.raises(ValidationError) as exc:
        validate_scan_request(" x ", 4, 100, 25)
    assert set(exc.value.fields) == {"keyword", "grid_size", "radius_meters", "zoom"}

    assert validate_scan_request("  pizza  ", 3, 500, 10) == "pizza"
    assert validate_scan_request("pizza", 9, 10000, 20) == "pizza"
    with pytest.raises(ValidationError):
        validate_scan_request("pizza", True, 1000, 15)


def test_start_scan_runs_to_completion(service, repo, provider):
    scan = service.start_scan("loc-1", " trattoria ", 3, 1000)

    assert scan.status is ScanStatus.COMPLETED
    assert scan.keyword == "trattoria"
    assert scan.zoom == 15
    assert scan.total_points == 9
    assert scan.completed_points == 9
    assert scan.best_rank == 2
    assert len(provider.calls) == 9
    assert repo.scans[scan.id].status is ScanStatus.COMPLETED


def test_start_scan_rejects_unknown_location_and_missing_coordinates(service, repo):
    with pytest.raises(ValidationError, match="Location not found"):
        service.start_scan("nope", "pizza", 3, 1000)
    with pytest.raises(ValidationError, match="no coordinates"):
        service.start_scan("loc-2", "pizza", 3, 1000)
    assert repo.scans == {}


def test_start_scan_validation_happens_before_scan_creation(service, repo):
    with pytest.raises(ValidationError):
        service.start_scan("loc-1", "pizza", 4, 1000)
    assert repo.scans == {}


def test_submit_scan_returns_joinable_task(service):
    task = service.submit_scan("loc-1", "trattoria", 5, 2000, zoom=12)

    final = task.result(timeout=10)

    assert task.done()
    assert final.status is ScanStatus.COMPLETED
    assert len(task.outcomes()) == 25
    assert task.scan.status is ScanStatus.PENDING


def test_cancel_scan_marks_scan_failed(repo):
    started = threading.Event()
    release = threading.Event()

    class BlockingProvider(FakeProvider):
        def search(self, *args, **kwargs):
            started.set()
            release.wait(5)
            return []

    svc = RankTrackerService(
        InMemoryLocationRepository(TURIN),
        repo,
        BlockingProvider(),
        config=ScanConfig(batch_size=5, inter_batch_delay=0, retry_backoff=0),
    )
    try:
        task = svc.submit_scan("loc-1", "trattoria", 5, 2000)
        assert started.wait(5)
        assert svc.cancel_scan(task.scan_id) is True
        release.set()

        final = task.result(timeout=10)
    finally:
        release.set()
        svc.shutdown()

    assert final.status is ScanStatus.FAILED
    assert final.error_message == "Scan cancelled"
    assert repo.scans[task.scan_id].status is ScanStatus.FAILED


def test_aggregate_stats_and_history(service, repo):
    first = service.start_scan("loc-1", "trattoria", 3, 1000)
    second = service.start_scan("loc-1", "trattoria", 3, 1000)
    service.start_scan("loc-1", "pizza", 3, 1000)

    stats = service.get_aggregate_stats("loc-1", "trattoria")

    assert stats.total_scans == 2
    assert stats.best_rank == 2
    assert stats.average_rank == pytest.approx(2.0)
    assert stats.latest_scan.id == second.id
    assert service.get_aggregate_stats("loc-1").total_scans == 3
    assert [s.id for s in service.list_scans("loc-1")][-1] == first.id


def test_aggregate_stats_respects_history_limit(repo, provider):
    svc = RankTrackerService(
        InMemoryLocationRepository(TURIN),
        repo,
        provider,
        config=ScanConfig(batch_size=9, inter_batch_delay=0, retry_backoff=0),
        stats_history_limit=2,
    )
    try:
        for _ in range(3):
            svc.start_scan("loc-1", "trattoria", 3, 1000)
        assert svc.get_aggregate_stats("loc-1").total_scans == 2
    finally:
        svc.shutdown()


def test_scan_results_sorted_and_delete(service, repo):
    scan = service.start_scan("loc-1", "trattoria", 3, 1000)
    repo.outcomes[scan.id] = list(reversed(repo.outcomes[scan.id]))

    loaded, outcomes = service.get_scan_results(scan.id)

    assert loaded.id == scan.id
    assert [o.grid_index for o in outcomes] == list(range(9))
    assert service.delete_scan(scan.id) is True
    assert service.get_scan_results(scan.id) == (None, [])
    assert service.delete_scan(scan.id) is False


def test_build_provider_selects_vendor():
    assert isinstance(build_provider(Settings(serpapi_api_key="k")), SerpApiMapsProvider)
    provider = build_provider(
        Settings(rank_provider="dataforseo", dataforseo_login="l", dataforseo_password="p", dataforseo_language_code="en")
    )
    assert isinstance(provider, DataForSEOMapsProvider)
    assert provider.language_code == "en"

    with pytest.raises(ConfigError):
        build_provider(Settings(serpapi_api_key=""))
    with pytest.raises(ConfigError):
        build_provider(Settings(rank_provider="dataforseo"))


def test_build_service_wires_settings(monkeypatch):
    monkeypatch.setattr(service_module, "init_pool", lambda: None)
    settings = Settings(serpapi_api_key="k", scan_batch_size=3, inter_batch_delay_ms=500, competitor_limit=2)

    svc = service_module.build_service(settings)
    try:
        assert svc.config == ScanConfig(batch_size=3, inter_batch_delay=0.5, search_depth=20, retry_backoff=5.0)
        assert svc.orchestrator.matcher.competitor_limit == 2
        assert isinstance(svc.orchestrator.client.provider, SerpApiMapsProvider)
    finally:
        svc.shutdown()


def test_grid_wraps_across_the_antimeridian(repo, provider):
    fiji = Location(id="fiji", business_name="Trattoria Da Luigi", place_id="pid-2", latitude=-17.8, longitude=179.99)
    svc = RankTrackerService(
        InMemoryLocationRepository(fiji),
        repo,
        provider,
        config=ScanConfig(batch_size=9, inter_batch_delay=0, retry_backoff=0),
    )
    try:
        scan = svc.start_scan("fiji", "trattoria", 3, 2000)
    finally:
        svc.shutdown()

    assert scan.status is ScanStatus.COMPLETED
    longitudes = {call[2] for call in provider.calls}
    assert all(-180.0 <= lng <= 180.0 for lng in longitudes)
    assert any(lng < 0 for lng in longitudes)


@pytest.mark.parametrize("latitude", [90.0, 89.99])
def test_grid_reaching_a_pole_is_a_validation_error(repo, provider, latitude):
    pole = Location(id="pole", business_name="Igloo", latitude=latitude, longitude=0.0)
    svc = RankTrackerService(InMemoryLocationRepository(pole), repo, provider, config=ScanConfig(retry_backoff=0))
    try:
        with pytest.raises(ValidationError) as exc:
            svc.start_scan("pole", "pizza", 3, 2000)
    finally:
        svc.shutdown()

    assert "radius_meters" in exc.value.fields
    assert repo.scans == {}


def test_background_failure_is_logged_and_recorded(service, repo, caplog):
    repo.fail_on.add("mark_running")

    with caplog.at_level("ERROR"):
        task = service.submit_scan("loc-1", "trattoria", 3, 1000)
        service.shutdown()

    assert task.done()
    assert repo.scans[task.scan_id].status is ScanStatus.FAILED
    assert "mark_running exploded" in repo.scans[task.scan_id].error_message
    assert f"Scan job {task.scan_id} failed" in " ".join(caplog.messages)
