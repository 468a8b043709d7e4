"""Client utilities for the DataForSEO Google Maps SERP API."""

import logging
from typing import Any, Dict, List, Optional

import requests

from geogrid.core.errors import ProviderError
from geogrid.etl.transform import to_ranked_items
from geogrid.models import RawRankedItem

logger = logging.getLogger(__name__)
_SESSION = requests.Session()
_BASE_URL = "https://api.dataforseo.com/v3"
_MAPS_LIVE_ENDPOINT = "serp/google/maps/live/advanced"

STATUS_OK = 20000
# Rate limit per minute exceeded / internal error: both clear up on their own.
_TRANSIENT_STATUS_CODES = {40202, 50000}
_TRANSIENT_HTTP_CODES = {429, 500, 502, 503, 504}


class DataForSEOMapsProvider:
    """Ranked Google Maps listings through DataForSEO's live advanced endpoint."""

    provider_name = "dataforseo"

    def __init__(
        self,
        login: str,
        password: str,
        *,
        location_code: int = 2380,
        language_code: str = "it",
        timeout: float = 30.0,
    ) -> None:
        self.login = login
        self.password = password
        self.location_code = location_code
        self.language_code = language_code
        self.timeout = timeout

    def build_task(self, keyword: str, latitude: float, longitude: float, zoom: int, depth: int) -> Dict[str, Any]:
        return {
            "keyword": keyword.strip(),
            "location_coordinate": f"{latitude},{longitude},{zoom}z",
            "location_code": self.location_code,
            "language_code": self.language_code,
            "depth": depth,
        }

    def search(
        self,
        keyword: str,
        latitude: float,
        longitude: float,
        zoom: int,
        *,
        depth: int = 20,
    ) -> List[RawRankedItem]:
        if not self.login or not self.password:
            raise ProviderError("DataForSEO credentials are not configured", transient=False)

        body = [self.build_task(keyword, latitude, longitude, zoom, depth)]
        logger.info("Calling DataForSEO for keyword=%s coordinate=%s", keyword, body[0]["location_coordinate"])
        try:
            response = _SESSION.post(
                f"{_BASE_URL}/{_MAPS_LIVE_ENDPOINT}",
                json=body,
                auth=(self.login, self.password),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise ProviderError(f"DataForSEO request failed: {exc}", transient=True) from exc

        if response.status_code != 200:
            raise ProviderError(
                f"DataForSEO API error ({response.status_code}): {response.text[:500]}",
                transient=response.status_code in _TRANSIENT_HTTP_CODES,
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderError(f"DataForSEO returned a malformed payload: {exc}", transient=False) from exc
        if not isinstance(payload, dict):
            raise ProviderError(
                f"DataForSEO returned an unexpected payload type: {type(payload).__name__}",
                transient=False,
            )

        _raise_for_status(payload)
        task = _first(payload.get("tasks"))
        if task is None:
            return []
        _raise_for_status(task)

        result = _first(task.get("result"))
        if result is None:
            return []
        items = result.get("items") or []
        if not isinstance(items, list):
            logger.warning("DataForSEO result items is not a list: %s", type(items).__name__)
            return []

        try:
            ranked = to_ranked_items(items, position_keys=("rank_group", "rank_absolute"))
        except (AttributeError, TypeError, ValueError) as exc:
            raise ProviderError(f"DataForSEO returned malformed items: {exc}", transient=False) from exc
        return ranked[:depth]


def _first(value: Any) -> Optional[Dict[str, Any]]:
    if isinstance(value, list) and value and isinstance(value[0], dict):
        return value[0]
    return None


def _raise_for_status(block: Dict[str, Any]) -> None:
    status = block.get("status_code")
    if status == STATUS_OK:
        return
    message = block.get("status_message") or "Unknown error"
    logger.error("DataForSEO returned status=%s message=%s", status, message)
    raise ProviderError(
        f"DataForSEO returned error: {message}",
        transient=status in _TRANSIENT_STATUS_CODES,
        status_code=status,
    )
