"""Single-point ranked search with one retry on transient provider errors."""

from __future__ import annotations

import logging
import threading
from typing import List, Optional

from geogrid.core.config import ScanConfig
from geogrid.core.errors import ProviderError, ScanCancelledError
from geogrid.models import GeoPoint, RawRankedItem
from geogrid.vendors.base import RankSearchProvider

logger = logging.getLogger(__name__)

RETRY_LIMIT = 1


class RankSearchClient:
    def __init__(self, provider: RankSearchProvider, config: Optional[ScanConfig] = None) -> None:
        self.provider = provider
        self.config = config or ScanConfig()

    def fetch_rank(
        self,
        keyword: str,
        point: GeoPoint,
        zoom: int,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[RawRankedItem]:
        """Return the provider's ranked list at ``point``, capped to the configured depth.

        A transient ProviderError is retried once after ``config.retry_backoff``
        seconds; the second failure (or any permanent failure) propagates.
        """
        attempt = 0
        while True:
            attempt += 1
            raise_if_cancelled(cancel_event)
            try:
                items = self.provider.search(
                    keyword,
                    point.latitude,
                    point.longitude,
                    zoom,
                    depth=self.config.search_depth,
                )
                return list(items)[: self.config.search_depth]
            except ProviderError as exc:
                if not exc.transient or attempt > RETRY_LIMIT:
                    raise
                logger.warning(
                    "Transient %s error at %s,%s (attempt %s/%s), retrying in %.1fs: %s",
                    self.provider.provider_name,
                    point.latitude,
                    point.longitude,
                    attempt,
                    RETRY_LIMIT + 1,
                    self.config.retry_backoff,
                    exc,
                )
                wait_or_cancel(self.config.retry_backoff, cancel_event)


def raise_if_cancelled(cancel_event: Optional[threading.Event]) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise ScanCancelledError("Scan cancelled")


def wait_or_cancel(seconds: float, cancel_event: Optional[threading.Event]) -> None:
    """Sleep for ``seconds`` unless cancellation is requested first."""
    event = cancel_event or threading.Event()
    if seconds > 0 and event.wait(seconds):
        raise ScanCancelledError("Scan cancelled")
    raise_if_cancelled(cancel_event)
