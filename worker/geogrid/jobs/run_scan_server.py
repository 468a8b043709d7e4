"""HTTP entrypoint that triggers geo-grid rank scans (Cloud Run friendly)."""

from __future__ import annotations

import logging
import os
from dataclasses import asdict
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request

from geogrid.core.config import get_settings
from geogrid.core.errors import ValidationError
from geogrid.models import Scan, ScanPointOutcome
from geogrid.tracking.service import DEFAULT_ZOOM, RankTrackerService, build_service

# ---------- Logging ----------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ---------- App & service ----------
app = Flask(__name__)
_service: Optional[RankTrackerService] = None


def get_service() -> RankTrackerService:
    global _service
    if _service is None:
        _service = build_service()
    return _service


# ---------- Routes ----------


@app.get("/")
def root() -> Any:
    """Simple root to avoid 404 on GET /"""
    return "ok", 200


@app.get("/healthz")
def healthcheck() -> Any:
    """Lightweight health endpoint; reads settings only, no database round trip."""
    settings = get_settings()
    return (
        jsonify(
            {
                "status": "ok",
                "rank_provider": settings.rank_provider,
                "worker_port_config": settings.worker_port,
                "revision": os.getenv("K_REVISION", "unknown"),
            }
        ),
        200,
    )


@app.post("/scans")
def enqueue_scan() -> Any:
    """
    Start a rank scan in the background.
    Required JSON fields: location_id, keyword, grid_size, radius_meters
    Optional: zoom (int, default 15)
    """
    payload: Dict[str, Any] = request.get_json(silent=True) or {}

    required = ("location_id", "keyword", "grid_size", "radius_meters")
    missing = [f for f in required if payload.get(f) in (None, "")]
    if missing:
        return jsonify({"error": f"missing fields: {', '.join(missing)}"}), 400

    numbers: Dict[str, int] = {}
    for name, default in (("grid_size", None), ("radius_meters", None), ("zoom", DEFAULT_ZOOM)):
        raw = payload.get(name, default)
        # JSON integers only; 5.7, "5" and true are rejected rather than coerced.
        if not isinstance(raw, int) or isinstance(raw, bool):
            return jsonify({"error": f"{name} must be an integer"}), 400
        numbers[name] = raw

    try:
        task = get_service().submit_scan(
            str(payload["location_id"]),
            str(payload["keyword"]),
            numbers["grid_size"],
            numbers["radius_meters"],
            numbers["zoom"],
        )
    except ValidationError as exc:
        return jsonify({"error": str(exc), "details": exc.fields}), 400

    logger.info("Queued scan %s for location=%s", task.scan_id, payload["location_id"])
    return jsonify({"data": _scan_json(task.scan)}), 202


@app.get("/scans/<scan_id>")
def scan_results(scan_id: str) -> Any:
    scan, outcomes = get_service().get_scan_results(scan_id)
    if scan is None:
        return jsonify({"error": "scan not found"}), 404
    return jsonify({"data": {"scan": _scan_json(scan), "results": [_outcome_json(o, scan.grid_size) for o in outcomes]}}), 200


@app.delete("/scans/<scan_id>")
def delete_scan(scan_id: str) -> Any:
    if not get_service().delete_scan(scan_id):
        return jsonify({"error": "scan not found"}), 404
    return jsonify({"data": {"deleted": scan_id}}), 200


@app.post("/scans/<scan_id>/cancel")
def cancel_scan(scan_id: str) -> Any:
    if not get_service().cancel_scan(scan_id):
        return jsonify({"error": "scan is not running"}), 404
    return jsonify({"data": {"status": "cancelling"}}), 202


@app.get("/locations/<location_id>/scans")
def location_scans(location_id: str) -> Any:
    scans = get_service().list_scans(location_id)
    return jsonify({"data": [_scan_json(scan) for scan in scans]}), 200


@app.get("/locations/<location_id>/stats")
def location_stats(location_id: str) -> Any:
    keyword = request.args.get("keyword") or None
    stats = get_service().get_aggregate_stats(location_id, keyword)
    return (
        jsonify(
            {
                "data": {
                    "total_scans": stats.total_scans,
                    "average_rank": stats.average_rank,
                    "best_rank": stats.best_rank,
                    "latest_scan": _scan_json(stats.latest_scan) if stats.latest_scan else None,
                }
            }
        ),
        200,
    )


# ---------- Internals ----------


def _scan_json(scan: Scan) -> Dict[str, Any]:
    data = asdict(scan)
    data["status"] = scan.status.value
    for key in ("created_at", "completed_at"):
        if data[key] is not None:
            data[key] = data[key].isoformat()
    return data


def _outcome_json(outcome: ScanPointOutcome, grid_size: int) -> Dict[str, Any]:
    data = asdict(outcome)
    data["row"] = outcome.grid_index // grid_size
    data["column"] = outcome.grid_index % grid_size
    method = outcome.result.match_method
    data["result"]["match_method"] = method.value if method else None
    return data


def main() -> None:
    """Cloud Run injects PORT; fall back to WORKER_PORT locally."""
    port = int(os.getenv("PORT") or get_settings().worker_port)
    logger.info("[BOOT] Binding on 0.0.0.0:%d", port)
    app.run(host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
