"""Core data models shared by the geo-grid rank tracking pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


@dataclass(frozen=True, slots=True)
class GeoPoint:
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"latitude {self.latitude} is outside [-90, 90]")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"longitude {self.longitude} is outside [-180, 180]")


@dataclass(frozen=True, slots=True)
class GridPoint(GeoPoint):
    """One sample coordinate of a scan grid, indexed row-major from the north-west corner."""

    index: int

    def row(self, grid_size: int) -> int:
        return self.index // grid_size

    def column(self, grid_size: int) -> int:
        return self.index % grid_size


@dataclass(frozen=True, slots=True)
class TargetIdentity:
    """The business we are looking for inside each ranked result list."""

    place_id: Optional[str] = None
    business_name: Optional[str] = None

    def __post_init__(self) -> None:
        # Blank values coming from the locations table behave as missing.
        if self.place_id is not None and not self.place_id.strip():
            object.__setattr__(self, "place_id", None)
        if self.business_name is not None and not self.business_name.strip():
            object.__setattr__(self, "business_name", None)


@dataclass(frozen=True, slots=True)
class RawRankedItem:
    """Normalized snapshot of one ranked listing returned by a SERP provider."""

    position: int
    title: str
    place_id: str
    address: Optional[str] = None
    rating: Optional[float] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


@dataclass(frozen=True, slots=True)
class Competitor:
    rank: int
    name: str
    place_id: str
    address: Optional[str] = None
    rating: Optional[float] = None

    @classmethod
    def from_item(cls, item: RawRankedItem) -> "Competitor":
        return cls(
            rank=item.position,
            name=item.title,
            place_id=item.place_id,
            address=item.address,
            rating=item.rating,
        )


class MatchMethod(str, Enum):
    PLACE_ID = "place_id"
    NAME_EXACT = "name_exact"
    NAME_CONTAINS = "name_contains"
    NAME_PARTIAL_WORDS = "name_partial_words"


@dataclass(frozen=True, slots=True)
class RankSearchResult:
    found: bool
    rank: Optional[int] = None
    matched_place_id: Optional[str] = None
    matched_title: Optional[str] = None
    competitors: List[Competitor] = field(default_factory=list)
    match_method: Optional[MatchMethod] = None
    # Provider failure that degraded this point to not-found, if any.
    error: Optional[str] = None

    @classmethod
    def not_found(cls, error: Optional[str] = None) -> "RankSearchResult":
        return cls(found=False, error=error)


@dataclass(frozen=True, slots=True)
class ScanPointOutcome:
    grid_index: int
    latitude: float
    longitude: float
    result: RankSearchResult


class ScanStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ScanStatus.COMPLETED, ScanStatus.FAILED)


@dataclass(frozen=True, slots=True)
class Scan:
    id: str
    location_id: str
    keyword: str
    grid_size: int
    radius_meters: int
    zoom: int
    status: ScanStatus = ScanStatus.PENDING
    total_points: int = 0
    completed_points: int = 0
    best_rank: Optional[int] = None
    average_rank: Optional[float] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


@dataclass(frozen=True, slots=True)
class Location:
    """Read-only view of a tracked business location."""

    id: str
    business_name: Optional[str] = None
    place_id: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def target(self) -> TargetIdentity:
        return TargetIdentity(place_id=self.place_id, business_name=self.business_name)


@dataclass(frozen=True, slots=True)
class OutcomeSummary:
    total: int
    found: int
    not_found: int
    best_rank: Optional[int] = None
    average_rank: Optional[float] = None


@dataclass(frozen=True, slots=True)
class AggregateStats:
    total_scans: int
    average_rank: Optional[float] = None
    best_rank: Optional[int] = None
    latest_scan: Optional[Scan] = None
