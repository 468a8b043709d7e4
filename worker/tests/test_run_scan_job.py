import pytest

from geogrid.core.config import ConfigError, ScanConfig
from geogrid.geo.grid import generate_grid
from geogrid.jobs import run_scan
from geogrid.models import GeoPoint, Location
from geogrid.tracking.service import RankTrackerService

from fakes import FakeProvider, InMemoryLocationRepository, InMemoryScanRepository, make_items, permanent_error


NAPLES = Location(id="loc-1", business_name="Pizzeria Sorbillo", place_id="pid-1", latitude=40.8518, longitude=14.2681)


def _service(provider):
    return RankTrackerService(
        InMemoryLocationRepository(NAPLES),
        InMemoryScanRepository(),
        provider,
        config=ScanConfig(batch_size=9, inter_batch_delay=0, retry_backoff=0),
    )


def test_build_parser_defaults():
    args = run_scan.build_parser().parse_args(["--location", "loc-1", "--keyword", "pizza"])
    assert args.location_id == "loc-1"
    assert args.keyword == "pizza"
    assert args.grid_size == 5
    assert args.radius_meters == 2000
    assert args.zoom == 15


def test_build_parser_rejects_unsupported_grid_size():
    with pytest.raises(SystemExit):
        run_scan.build_parser().parse_args(["--location", "loc-1", "--keyword", "pizza", "--grid-size", "4"])


def test_run_scan_job_completes(monkeypatch, caplog):
    provider = FakeProvider(items=make_items("Pizzeria Sorbillo"))
    monkeypatch.setattr(run_scan, "build_service", lambda: _service(provider))

    with caplog.at_level("INFO"):
        code = run_scan.run_scan_job(location_id="loc-1", keyword="pizza", grid_size=3, radius_meters=1000, zoom=14)

    assert code == 0
    assert len(provider.calls) == 9
    assert all(call[3] == 14 for call in provider.calls)
    assert "best_rank=1" in " ".join(caplog.messages)


def test_run_scan_job_reports_failure(monkeypatch):
    class ExplodingProvider(FakeProvider):
        def search(self, *args, **kwargs):
            raise KeyError("boom")

    monkeypatch.setattr(run_scan, "build_service", lambda: _service(ExplodingProvider()))

    assert run_scan.run_scan_job(location_id="loc-1", keyword="pizza", grid_size=3, radius_meters=1000, zoom=15) == 1


def test_point_errors_do_not_fail_the_job(monkeypatch):
    provider = FakeProvider(items=make_items("Pizzeria Sorbillo"))
    corner = generate_grid(GeoPoint(latitude=NAPLES.latitude, longitude=NAPLES.longitude), 1000, 3)[0]
    provider.failures = {(corner.latitude, corner.longitude): [permanent_error()]}
    monkeypatch.setattr(run_scan, "build_service", lambda: _service(provider))

    assert run_scan.run_scan_job(location_id="loc-1", keyword="pizza", grid_size=3, radius_meters=1000, zoom=15) == 0


def test_main_exit_codes(monkeypatch):
    monkeypatch.setattr(run_scan, "build_service", lambda: _service(FakeProvider()))
    assert run_scan.main(["--location", "missing", "--keyword", "pizza", "--grid-size", "3"]) == 2

    def broken_config():
        raise ConfigError("SERPAPI_API_KEY is required for the serpapi provider")

    monkeypatch.setattr(run_scan, "build_service", broken_config)
    assert run_scan.main(["--location", "loc-1", "--keyword", "pizza"]) == 2


def test_main_reports_unexpected_errors(monkeypatch, caplog):
    def missing_database():
        raise RuntimeError("DATABASE_URL is required for database connections")

    monkeypatch.setattr(run_scan, "build_service", missing_database)

    with caplog.at_level("ERROR"):
        assert run_scan.main(["--location", "loc-1", "--keyword", "pizza"]) == 1
    assert "DATABASE_URL is required" in " ".join(caplog.messages)


def test_main_exits_one_when_scan_cannot_start(monkeypatch):
    def service_with_store_down():
        svc = _service(FakeProvider())
        svc.scans.fail_on.add("mark_running")
        return svc

    monkeypatch.setattr(run_scan, "build_service", service_with_store_down)

    assert run_scan.main(["--location", "loc-1", "--keyword", "pizza", "--grid-size", "3"]) == 1
