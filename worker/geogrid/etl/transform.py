"""Utilities for transforming SERP provider payloads into ranked items."""

import logging
from typing import Any, Dict, Iterable, List, Optional

from geogrid.models import RawRankedItem

logger = logging.getLogger(__name__)


def to_ranked_item(
    raw: Dict[str, Any],
    *,
    fallback_position: int,
    position_keys: Iterable[str] = ("position",),
) -> Optional[RawRankedItem]:
    """Normalize one provider listing, returning None when it cannot be ranked.

    Listings without a title or a stable place identifier are dropped because
    the matcher can neither name nor identify them.
    """
    if not isinstance(raw, dict):
        return None

    title = _strip_or_none(raw.get("title") or raw.get("name"))
    place_id = _strip_or_none(raw.get("place_id"))
    if not title or not place_id:
        logger.debug("Skipping ranked item without title/place_id: keys=%s", list(raw.keys())[:10])
        return None

    position = None
    for key in position_keys:
        position = _safe_int(raw.get(key))
        if position is not None:
            break
    if position is None or position < 1:
        position = fallback_position

    gps = raw.get("gps_coordinates")
    if not isinstance(gps, dict):
        gps = {}
    return RawRankedItem(
        position=position,
        title=title,
        place_id=place_id,
        address=_strip_or_none(raw.get("address")),
        rating=_extract_rating(raw.get("rating")),
        latitude=_safe_float(gps.get("latitude", raw.get("latitude"))),
        longitude=_safe_float(gps.get("longitude", raw.get("longitude"))),
    )


def to_ranked_items(raw_items: Iterable[Any], position_keys: Iterable[str] = ("position",)) -> List[RawRankedItem]:
    """Normalize a provider result list, keeping provider order."""
    keys = tuple(position_keys)
    items: List[RawRankedItem] = []
    for offset, raw in enumerate(raw_items or [], start=1):
        item = to_ranked_item(raw, fallback_position=offset, position_keys=keys)
        if item is not None:
            items.append(item)
    return items


def _extract_rating(value: Any) -> Optional[float]:
    # DataForSEO nests the score as {"rating_type": ..., "value": 4.5, ...}.
    if isinstance(value, dict):
        value = value.get("value")
    return _safe_float(value)


def _strip_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    value_str = str(value).strip()
    return value_str or None


def _safe_float(value: Any) -> Optional[float]:
    try:
        if value is None:
            return None
        return float(value)
    except (TypeError, ValueError):
        return None


def _safe_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None
