"""CLI job to run one geo-grid rank scan for a location."""

import argparse
import logging
from typing import Optional, Sequence

from geogrid.core.config import ConfigError
from geogrid.core.errors import ValidationError
from geogrid.models import ScanStatus
from geogrid.tracking.service import ALLOWED_GRID_SIZES, DEFAULT_ZOOM, build_service

logger = logging.getLogger(__name__)


def run_scan_job(*, location_id: str, keyword: str, grid_size: int, radius_meters: int, zoom: int) -> int:
    """Run a scan to completion and return the process exit code."""
    service = build_service()
    try:
        scan = service.start_scan(location_id, keyword, grid_size, radius_meters, zoom)
        stats = service.get_aggregate_stats(location_id, keyword)
    finally:
        service.shutdown()

    if scan.status is not ScanStatus.COMPLETED:
        logger.error("Scan %s failed: %s", scan.id, scan.error_message)
        return 1

    logger.info(
        "Scan %s completed: points=%d/%d best_rank=%s average_rank=%s",
        scan.id,
        scan.completed_points,
        scan.total_points,
        scan.best_rank,
        f"{scan.average_rank:.2f}" if scan.average_rank is not None else "N/A",
    )
    logger.info(
        "Location %s history for %r: scans=%d average_rank=%s best_rank=%s",
        location_id,
        keyword,
        stats.total_scans,
        f"{stats.average_rank:.2f}" if stats.average_rank is not None else "N/A",
        stats.best_rank,
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run a geo-grid local rank scan")
    parser.add_argument("--location", dest="location_id", required=True, help="Location id to scan")
    parser.add_argument("--keyword", dest="keyword", required=True, help="Search keyword, e.g. 'ristorante italiano'")
    parser.add_argument(
        "--grid-size",
        dest="grid_size",
        type=int,
        default=5,
        choices=ALLOWED_GRID_SIZES,
        help="Points per grid side",
    )
    parser.add_argument("--radius", dest="radius_meters", type=int, default=2000, help="Grid radius in meters")
    parser.add_argument("--zoom", dest="zoom", type=int, default=DEFAULT_ZOOM, help="Map zoom level (10-20)")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    args = build_parser().parse_args(argv)

    try:
        return run_scan_job(
            location_id=args.location_id,
            keyword=args.keyword,
            grid_size=args.grid_size,
            radius_meters=args.radius_meters,
            zoom=args.zoom,
        )
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        return 2
    except ValidationError as exc:
        logger.error("Invalid scan request: %s %s", exc, exc.fields)
        return 2
    except Exception as exc:  # noqa: BLE001
        logger.error("Rank scan job failed: %s", exc, exc_info=True)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
