# Persistence contracts the scan engine relies on.
from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Protocol, Sequence

from geogrid.models import Location, Scan, ScanPointOutcome


class LocationRepository(Protocol):
    def get_location(self, location_id: str) -> Optional[Location]:
        """Coordinates and identity of a tracked business, or None if unknown."""
        ...


class ScanRepository(Protocol):
    def create_scan(
        self,
        *,
        location_id: str,
        keyword: str,
        grid_size: int,
        radius_meters: int,
        zoom: int,
        total_points: int,
    ) -> Scan:
        """Insert a new scan in the pending state and return it."""
        ...

    def mark_running(self, scan_id: str) -> None:
        ...

    def insert_outcomes(self, scan_id: str, outcomes: Sequence[ScanPointOutcome]) -> None:
        ...

    def mark_completed(
        self,
        scan_id: str,
        *,
        completed_points: int,
        average_rank: Optional[float],
        best_rank: Optional[int],
        completed_at: datetime,
    ) -> None:
        ...

    def mark_failed(self, scan_id: str, error_message: str) -> None:
        ...

    def get_scan(self, scan_id: str) -> Optional[Scan]:
        ...

    def list_scans(self, location_id: str) -> List[Scan]:
        """All scans of a location, newest first."""
        ...

    def list_completed_scans(
        self,
        location_id: str,
        keyword: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Scan]:
        """Completed scans of a location, newest first."""
        ...

    def get_outcomes(self, scan_id: str) -> List[ScanPointOutcome]:
        ...

    def delete_scan(self, scan_id: str) -> bool:
        """Delete a scan and its outcomes; False when it did not exist."""
        ...
