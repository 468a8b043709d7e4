"""SerpAPI Google Maps provider for geo-grid rank scans."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List

import requests
from serpapi import GoogleSearch

from geogrid.core.errors import ProviderError
from geogrid.etl.transform import to_ranked_items
from geogrid.models import RawRankedItem

logger = logging.getLogger(__name__)

# SerpAPI reports "no results" through the error field; for ranking that is just an empty list.
_EMPTY_RESULT_MARKERS = ("hasn't returned any results",)
_TRANSIENT_MARKERS = ("throughput", "too many requests", "rate limit", "try again", "timed out", "temporarily")


def build_serpapi_params(api_key: str, keyword: str, latitude: float, longitude: float, zoom: int) -> Dict[str, Any]:
    """Construct SerpAPI request parameters for the Google Maps engine at one grid point."""
    if not keyword or not keyword.strip():
        raise ValueError("Keyword must be provided for SerpAPI lookups.")

    return {
        "engine": "google_maps",
        "q": keyword.strip(),
        "api_key": api_key,
        "type": "search",
        "ll": f"@{latitude},{longitude},{zoom}z",
    }


class SerpApiMapsProvider:
    """Ranked Google Maps listings through SerpAPI.

    SerpAPI charges per request, so each call here is exactly one search;
    retries belong to RankSearchClient.
    """

    provider_name = "serpapi"

    def __init__(self, api_key: str) -> None:
        self.api_key = api_key

    def search(
        self,
        keyword: str,
        latitude: float,
        longitude: float,
        zoom: int,
        *,
        depth: int = 20,
    ) -> List[RawRankedItem]:
        if not self.api_key:
            raise ProviderError("SERPAPI_API_KEY is not configured", transient=False)

        params = build_serpapi_params(self.api_key, keyword, latitude, longitude, zoom)
        logger.info("Calling SerpAPI for keyword=%s ll=%s", keyword, params["ll"])
        try:
            data = GoogleSearch(params).get_dict()
        except requests.RequestException as exc:
            raise ProviderError(f"SerpAPI request failed: {exc}", transient=True) from exc
        except ValueError as exc:
            raise ProviderError(f"SerpAPI returned a malformed payload: {exc}", transient=False) from exc

        if not data:
            raise ProviderError("SerpAPI returned an empty payload.", transient=True)
        if not isinstance(data, dict):
            raise ProviderError(f"SerpAPI returned an unexpected payload type: {type(data).__name__}", transient=False)
        if "error" in data:
            message = str(data.get("error") or data)
            lowered = message.lower()
            if any(marker in lowered for marker in _EMPTY_RESULT_MARKERS):
                return []
            transient = any(marker in lowered for marker in _TRANSIENT_MARKERS)
            raise ProviderError(f"SerpAPI returned an error response: {message}", transient=transient)

        try:
            items = to_ranked_items(_extract_items(data), position_keys=("position",))
        except (AttributeError, TypeError, ValueError) as exc:
            raise ProviderError(f"SerpAPI returned malformed results: {exc}", transient=False) from exc
        return items[:depth]


def _extract_items(data: Dict[str, Any]) -> Iterable[Any]:
    """SerpAPI sometimes returns local_results as a list or nested dict, or a single place_results."""
    local_results = data.get("local_results")
    if isinstance(local_results, list):
        return local_results
    if isinstance(local_results, dict):
        logger.debug("local_results is dict with keys: %s", list(local_results.keys())[:10])
        for maybe in (local_results.get("places"), local_results.get("results"), local_results.get("local_results")):
            if isinstance(maybe, list):
                return maybe

    # A query that resolves to a single business comes back as place_results.
    place_results = data.get("place_results")
    if isinstance(place_results, list):
        return place_results
    if isinstance(place_results, dict):
        return [place_results]
    return []
