"""Database helpers for the worker."""

import logging
import uuid
from contextlib import contextmanager
from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import psycopg2
from psycopg2 import extras, pool

from geogrid.core.config import get_settings
from geogrid.models import (
    Competitor,
    Location,
    MatchMethod,
    RankSearchResult,
    Scan,
    ScanPointOutcome,
    ScanStatus,
)

logger = logging.getLogger(__name__)

_connection_pool: Optional[pool.ThreadedConnectionPool] = None

# Connections kept on top of one per concurrent scan, for HTTP request threads.
REQUEST_CONNECTIONS = 8


def init_pool(minconn: int = 1, maxconn: Optional[int] = None) -> pool.ThreadedConnectionPool:
    """Initialise and return the shared connection pool.

    Scan tasks and HTTP handlers run on different threads, so the pool is the
    thread-safe variant and holds one connection per concurrent scan plus
    ``REQUEST_CONNECTIONS``.
    """
    global _connection_pool
    if _connection_pool is None:
        settings = get_settings()
        if not settings.database_url:
            raise RuntimeError("DATABASE_URL is required for database connections")
        if maxconn is None:
            maxconn = settings.max_concurrent_scans + REQUEST_CONNECTIONS
        _connection_pool = pool.ThreadedConnectionPool(
            minconn,
            maxconn,
            dsn=settings.database_url,
            connect_timeout=10,
        )
        logger.info("Database connection pool initialised (maxconn=%d)", maxconn)
    return _connection_pool


@contextmanager
def get_connection():
    """Context manager yielding a pooled connection."""
    pg_pool = init_pool()
    conn = pg_pool.getconn()
    try:
        yield conn
    finally:
        pg_pool.putconn(conn)


def _execute(sql: str, params: Any) -> int:
    with get_connection() as conn:
        try:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                rowcount = cur.rowcount
            conn.commit()
        except psycopg2.Error:
            conn.rollback()
            raise
    return rowcount


def _fetch(sql: str, params: Any) -> List[Dict[str, Any]]:
    with get_connection() as conn:
        try:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute(sql, params)
                rows = list(cur.fetchall())
            conn.commit()
        except psycopg2.Error:
            conn.rollback()
            raise
    return rows


_SCAN_COLUMNS = """
    id,
    location_id,
    keyword,
    grid_size,
    radius_meters,
    zoom,
    status,
    total_points,
    completed_points,
    best_rank,
    average_rank,
    error_message,
    created_at,
    completed_at
"""


def _row_to_scan(row: Dict[str, Any]) -> Scan:
    average_rank = row.get("average_rank")
    return Scan(
        id=str(row["id"]),
        location_id=str(row["location_id"]),
        keyword=row["keyword"],
        grid_size=row["grid_size"],
        radius_meters=row["radius_meters"],
        zoom=row["zoom"],
        status=ScanStatus(row["status"]),
        total_points=row.get("total_points") or 0,
        completed_points=row.get("completed_points") or 0,
        best_rank=row.get("best_rank"),
        average_rank=float(average_rank) if average_rank is not None else None,
        error_message=row.get("error_message"),
        created_at=row.get("created_at"),
        completed_at=row.get("completed_at"),
    )


def _row_to_outcome(row: Dict[str, Any]) -> ScanPointOutcome:
    competitors = [Competitor(**entry) for entry in row.get("competitors") or []]
    rank = row.get("rank")
    method = row.get("match_method")
    return ScanPointOutcome(
        grid_index=row["grid_index"],
        latitude=float(row["latitude"]),
        longitude=float(row["longitude"]),
        result=RankSearchResult(
            found=rank is not None,
            rank=rank,
            matched_place_id=row.get("found_place_id"),
            matched_title=row.get("found_title"),
            competitors=competitors,
            match_method=MatchMethod(method) if method else None,
            error=row.get("error_message"),
        ),
    )


def _prepare_outcome_params(scan_id: str, outcome: ScanPointOutcome) -> Dict[str, Any]:
    result = outcome.result
    return {
        "scan_id": scan_id,
        "grid_index": outcome.grid_index,
        "latitude": outcome.latitude,
        "longitude": outcome.longitude,
        "rank": result.rank if result.found else None,
        "found_place_id": result.matched_place_id,
        "found_title": result.matched_title,
        "match_method": result.match_method.value if result.match_method else None,
        "competitors": extras.Json([asdict(competitor) for competitor in result.competitors]),
        "error_message": result.error,
    }


class PostgresLocationRepository:
    _SELECT = """
    SELECT id, business_name, place_id, latitude, longitude
    FROM locations
    WHERE id = %(id)s;
    """

    def get_location(self, location_id: str) -> Optional[Location]:
        rows = _fetch(self._SELECT, {"id": location_id})
        if not rows:
            return None
        row = rows[0]
        return Location(
            id=str(row["id"]),
            business_name=row.get("business_name"),
            place_id=row.get("place_id"),
            latitude=float(row["latitude"]) if row.get("latitude") is not None else None,
            longitude=float(row["longitude"]) if row.get("longitude") is not None else None,
        )


_INSERT_SCAN = f"""
INSERT INTO rank_scans (
    id,
    location_id,
    keyword,
    grid_size,
    radius_meters,
    zoom,
    status,
    total_points,
    completed_points,
    created_at
) VALUES (
    %(id)s,
    %(location_id)s,
    %(keyword)s,
    %(grid_size)s,
    %(radius_meters)s,
    %(zoom)s,
    'pending',
    %(total_points)s,
    0,
    NOW()
)
RETURNING {_SCAN_COLUMNS};
"""

_INSERT_RESULT = """
INSERT INTO rank_results (
    scan_id,
    grid_index,
    latitude,
    longitude,
    rank,
    found_place_id,
    found_title,
    match_method,
    competitors,
    error_message
) VALUES (
    %(scan_id)s,
    %(grid_index)s,
    %(latitude)s,
    %(longitude)s,
    %(rank)s,
    %(found_place_id)s,
    %(found_title)s,
    %(match_method)s,
    %(competitors)s,
    %(error_message)s
);
"""

# Terminal scans are never touched again, hence the status guards.
_MARK_RUNNING = "UPDATE rank_scans SET status = 'running' WHERE id = %(id)s AND status = 'pending';"

_MARK_COMPLETED = """
UPDATE rank_scans SET
    status = 'completed',
    completed_points = %(completed_points)s,
    average_rank = %(average_rank)s,
    best_rank = %(best_rank)s,
    completed_at = %(completed_at)s
WHERE id = %(id)s AND status = 'running';
"""

_MARK_FAILED = """
UPDATE rank_scans SET
    status = 'failed',
    error_message = %(error_message)s
WHERE id = %(id)s AND status IN ('pending', 'running');
"""


class PostgresScanRepository:
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
        params = {
            "id": str(uuid.uuid4()),
            "location_id": location_id,
            "keyword": keyword,
            "grid_size": grid_size,
            "radius_meters": radius_meters,
            "zoom": zoom,
            "total_points": total_points,
        }
        with get_connection() as conn:
            try:
                with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                    cur.execute(_INSERT_SCAN, params)
                    row = cur.fetchone()
                conn.commit()
            except psycopg2.Error:
                conn.rollback()
                raise
        logger.debug("Created scan %s", params["id"])
        return _row_to_scan(row)

    def mark_running(self, scan_id: str) -> None:
        if _execute(_MARK_RUNNING, {"id": scan_id}) != 1:
            raise RuntimeError(f"scan {scan_id} is not pending")

    def insert_outcomes(self, scan_id: str, outcomes: Sequence[ScanPointOutcome]) -> None:
        if not outcomes:
            return
        rows = [_prepare_outcome_params(scan_id, outcome) for outcome in outcomes]
        with get_connection() as conn:
            try:
                with conn.cursor() as cur:
                    extras.execute_batch(cur, _INSERT_RESULT, rows)
                conn.commit()
            except psycopg2.Error:
                conn.rollback()
                raise
        logger.debug("Inserted %d rank results for scan %s", len(rows), scan_id)

    def mark_completed(
        self,
        scan_id: str,
        *,
        completed_points: int,
        average_rank: Optional[float],
        best_rank: Optional[int],
        completed_at: datetime,
    ) -> None:
        params = {
            "id": scan_id,
            "completed_points": completed_points,
            "average_rank": average_rank,
            "best_rank": best_rank,
            "completed_at": completed_at,
        }
        if _execute(_MARK_COMPLETED, params) != 1:
            raise RuntimeError(f"scan {scan_id} is not running")

    def mark_failed(self, scan_id: str, error_message: str) -> None:
        _execute(_MARK_FAILED, {"id": scan_id, "error_message": error_message})

    def get_scan(self, scan_id: str) -> Optional[Scan]:
        rows = _fetch(f"SELECT {_SCAN_COLUMNS} FROM rank_scans WHERE id = %(id)s;", {"id": scan_id})
        return _row_to_scan(rows[0]) if rows else None

    def list_scans(self, location_id: str) -> List[Scan]:
        rows = _fetch(
            f"SELECT {_SCAN_COLUMNS} FROM rank_scans WHERE location_id = %(location_id)s ORDER BY created_at DESC;",
            {"location_id": location_id},
        )
        return [_row_to_scan(row) for row in rows]

    def list_completed_scans(
        self,
        location_id: str,
        keyword: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Scan]:
        sql = f"SELECT {_SCAN_COLUMNS} FROM rank_scans WHERE location_id = %(location_id)s AND status = 'completed'"
        params: Dict[str, Any] = {"location_id": location_id}
        if keyword:
            sql += " AND keyword = %(keyword)s"
            params["keyword"] = keyword
        sql += " ORDER BY created_at DESC"
        if limit:
            sql += " LIMIT %(limit)s"
            params["limit"] = limit
        return [_row_to_scan(row) for row in _fetch(sql + ";", params)]

    def get_outcomes(self, scan_id: str) -> List[ScanPointOutcome]:
        rows = _fetch(
            "SELECT * FROM rank_results WHERE scan_id = %(scan_id)s ORDER BY grid_index ASC;",
            {"scan_id": scan_id},
        )
        return [_row_to_outcome(row) for row in rows]

    def delete_scan(self, scan_id: str) -> bool:
        with get_connection() as conn:
            try:
                with conn.cursor() as cur:
                    cur.execute("DELETE FROM rank_results WHERE scan_id = %(id)s;", {"id": scan_id})
                    cur.execute("DELETE FROM rank_scans WHERE id = %(id)s;", {"id": scan_id})
                    deleted = cur.rowcount
                conn.commit()
            except psycopg2.Error:
                conn.rollback()
                raise
        return deleted > 0
