# Provider interface shared by the SERP vendors.
from __future__ import annotations

from typing import List, Protocol

from geogrid.models import RawRankedItem


class RankSearchProvider(Protocol):
    provider_name: str

    def search(
        self,
        keyword: str,
        latitude: float,
        longitude: float,
        zoom: int,
        *,
        depth: int = 20,
    ) -> List[RawRankedItem]:
        """
        Returns the ranked local results seen at (latitude, longitude), best first.
        Raises ProviderError (with `transient` set for throttling/outages) on failure.
        """
        ...
