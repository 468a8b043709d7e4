"""Batched, paced fan-out of grid point searches for one scan."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence, Tuple

from geogrid.core.config import ScanConfig
from geogrid.core.errors import OrchestrationError, ProviderError, ScanCancelledError
from geogrid.core.repository import ScanRepository
from geogrid.models import GridPoint, RankSearchResult, Scan, ScanPointOutcome, TargetIdentity
from geogrid.tracking.client import RankSearchClient, raise_if_cancelled, wait_or_cancel
from geogrid.tracking.lifecycle import ScanLifecycle
from geogrid.tracking.matcher import EntityMatcher
from geogrid.tracking.stats import summarize_outcomes

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Scan cancelled"


def iter_batches(points: Sequence[GridPoint], batch_size: int):
    for start in range(0, len(points), batch_size):
        yield points[start : start + batch_size]


class BatchScanOrchestrator:
    """Runs a scan's grid points through search and matching, batch by batch.

    Points inside a batch are searched in parallel; the next batch starts only
    once the whole previous batch has resolved, followed by a fixed pacing
    delay. A provider failure at one point turns into a not-found outcome for
    that point and never stops the scan.
    """

    def __init__(
        self,
        client: RankSearchClient,
        matcher: EntityMatcher,
        scans: ScanRepository,
        config: Optional[ScanConfig] = None,
    ) -> None:
        self.client = client
        self.matcher = matcher
        self.scans = scans
        self.config = config or client.config

    def run_scan(
        self,
        scan: Scan,
        points: Sequence[GridPoint],
        keyword: str,
        zoom: int,
        target: TargetIdentity,
        cancel_event: Optional[threading.Event] = None,
    ) -> Tuple[Scan, List[ScanPointOutcome]]:
        """Execute the scan and return its terminal state with the point outcomes.

        The outcome list is empty whenever the scan ends up failed.
        """
        cancel_event = cancel_event or threading.Event()
        lifecycle = ScanLifecycle(scan, self.scans)
        lifecycle.start()
        logger.info(
            "Starting scan %s: keyword=%s grid=%sx%s points=%s target_place_id=%s target_name=%s",
            scan.id,
            keyword,
            scan.grid_size,
            scan.grid_size,
            len(points),
            target.place_id or "NOT SET",
            target.business_name or "NOT SET",
        )

        try:
            outcomes = self._collect(points, keyword, zoom, target, cancel_event)
            summary = summarize_outcomes(outcomes)
            try:
                self.scans.insert_outcomes(scan.id, outcomes)
            except Exception as exc:
                raise OrchestrationError(f"Failed to store results of scan {scan.id}: {exc}") from exc
            final = lifecycle.complete(summary)
        except ScanCancelledError:
            logger.warning("Scan %s cancelled", scan.id)
            return lifecycle.fail(CANCELLED_MESSAGE), []
        except Exception as exc:  # noqa: BLE001
            logger.exception("Scan %s failed: %s", scan.id, exc)
            return lifecycle.fail(str(exc) or exc.__class__.__name__), []

        logger.info(
            "Scan %s completed: points=%s found=%s not_found=%s best_rank=%s avg_rank=%s",
            scan.id,
            summary.total,
            summary.found,
            summary.not_found,
            summary.best_rank,
            f"{summary.average_rank:.1f}" if summary.average_rank is not None else "N/A",
        )
        return final, outcomes

    def _collect(
        self,
        points: Sequence[GridPoint],
        keyword: str,
        zoom: int,
        target: TargetIdentity,
        cancel_event: threading.Event,
    ) -> List[ScanPointOutcome]:
        # One slot per grid index; each worker writes only its own slot.
        slots: List[Optional[ScanPointOutcome]] = [None] * len(points)
        slot_of = {point.index: position for position, point in enumerate(points)}
        batch_size = self.config.batch_size
        batch_count = (len(points) + batch_size - 1) // batch_size

        with ThreadPoolExecutor(max_workers=batch_size, thread_name_prefix="rank-scan") as executor:
            for number, batch in enumerate(iter_batches(points, batch_size), start=1):
                raise_if_cancelled(cancel_event)
                futures = [
                    executor.submit(self._scan_point, point, keyword, zoom, target, cancel_event) for point in batch
                ]
                # Wait for every point of the batch before surfacing any error.
                errors = [future.exception() for future in futures]
                for error in errors:
                    if error is not None:
                        raise error
                for future in futures:
                    outcome = future.result()
                    slots[slot_of[outcome.grid_index]] = outcome

                logger.info("Scan batch %s/%s done (%s points)", number, batch_count, len(batch))
                if number < batch_count:
                    wait_or_cancel(self.config.inter_batch_delay, cancel_event)

        return [outcome for outcome in slots if outcome is not None]

    def _scan_point(
        self,
        point: GridPoint,
        keyword: str,
        zoom: int,
        target: TargetIdentity,
        cancel_event: threading.Event,
    ) -> ScanPointOutcome:
        try:
            items = self.client.fetch_rank(keyword, point, zoom, cancel_event=cancel_event)
            result = self.matcher.match(items, target)
        except ProviderError as exc:
            logger.warning("Grid point %s degraded to not found: %s", point.index, exc)
            result = RankSearchResult.not_found(error=str(exc))
        return ScanPointOutcome(
            grid_index=point.index,
            latitude=point.latitude,
            longitude=point.longitude,
            result=result,
        )
