"""Rank statistics over scan outcomes and scan history."""

from typing import Iterable, List, Optional, Sequence

from geogrid.models import AggregateStats, OutcomeSummary, Scan, ScanPointOutcome, ScanStatus


def summarize_outcomes(outcomes: Sequence[ScanPointOutcome]) -> OutcomeSummary:
    """Best and mean rank over the points where the target was found."""
    ranks = [o.result.rank for o in outcomes if o.result.found and o.result.rank is not None]
    return OutcomeSummary(
        total=len(outcomes),
        found=len(ranks),
        not_found=len(outcomes) - len(ranks),
        best_rank=min(ranks) if ranks else None,
        average_rank=_mean(ranks),
    )


def aggregate_scans(scans: Iterable[Scan]) -> AggregateStats:
    """Roll completed scans up into location-level statistics.

    Scans without an average or best rank are left out of that figure entirely
    rather than counted as zero.
    """
    completed = [scan for scan in scans if scan.status is ScanStatus.COMPLETED]
    if not completed:
        return AggregateStats(total_scans=0)

    averages = [scan.average_rank for scan in completed if scan.average_rank is not None]
    bests = [scan.best_rank for scan in completed if scan.best_rank is not None]
    return AggregateStats(
        total_scans=len(completed),
        average_rank=_mean(averages),
        best_rank=min(bests) if bests else None,
        latest_scan=_latest(completed),
    )


def _mean(values: List[float]) -> Optional[float]:
    if not values:
        return None
    return sum(values) / len(values)


def _latest(scans: List[Scan]) -> Scan:
    dated = [scan for scan in scans if scan.created_at is not None]
    if not dated:
        return scans[0]
    return max(dated, key=lambda scan: scan.created_at)
