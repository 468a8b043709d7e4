"""Status transitions of a scan record."""

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, FrozenSet

from geogrid.core.errors import InvalidTransitionError, OrchestrationError
from geogrid.core.repository import ScanRepository
from geogrid.models import OutcomeSummary, Scan, ScanStatus

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[ScanStatus, FrozenSet[ScanStatus]] = {
    ScanStatus.PENDING: frozenset({ScanStatus.RUNNING}),
    ScanStatus.RUNNING: frozenset({ScanStatus.COMPLETED, ScanStatus.FAILED}),
    ScanStatus.COMPLETED: frozenset(),
    ScanStatus.FAILED: frozenset(),
}


class ScanLifecycle:
    """Drives one scan through pending -> running -> completed/failed.

    ``start`` and ``complete`` are persisted before the in-memory scan is
    replaced. ``fail`` always reaches the failed state, even when the
    repository write does not go through.
    """

    def __init__(self, scan: Scan, repository: ScanRepository) -> None:
        self._scan = scan
        self._repository = repository

    @property
    def scan(self) -> Scan:
        return self._scan

    def start(self) -> Scan:
        self._check(ScanStatus.RUNNING)
        try:
            self._repository.mark_running(self._scan.id)
        except Exception as exc:
            raise OrchestrationError(f"Failed to mark scan {self._scan.id} as running: {exc}") from exc
        self._scan = replace(self._scan, status=ScanStatus.RUNNING)
        return self._scan

    def complete(self, summary: OutcomeSummary) -> Scan:
        self._check(ScanStatus.COMPLETED)
        completed_at = datetime.now(timezone.utc)
        try:
            self._repository.mark_completed(
                self._scan.id,
                completed_points=summary.total,
                average_rank=summary.average_rank,
                best_rank=summary.best_rank,
                completed_at=completed_at,
            )
        except Exception as exc:
            raise OrchestrationError(f"Failed to mark scan {self._scan.id} as completed: {exc}") from exc
        self._scan = replace(
            self._scan,
            status=ScanStatus.COMPLETED,
            completed_points=summary.total,
            average_rank=summary.average_rank,
            best_rank=summary.best_rank,
            completed_at=completed_at,
        )
        return self._scan

    def fail(self, message: str) -> Scan:
        self._check(ScanStatus.FAILED)
        try:
            self._repository.mark_failed(self._scan.id, message)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to persist failure of scan %s", self._scan.id)
        self._scan = replace(self._scan, status=ScanStatus.FAILED, error_message=message)
        return self._scan

    def _check(self, target: ScanStatus) -> None:
        current = self._scan.status
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransitionError(f"Scan {self._scan.id} cannot move from {current.value} to {target.value}")
