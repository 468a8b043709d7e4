"""Locate a target business inside a provider's ranked list."""

import logging
import math
from typing import Callable, List, Optional, Sequence, Tuple

from geogrid.models import Competitor, MatchMethod, RankSearchResult, RawRankedItem, TargetIdentity

logger = logging.getLogger(__name__)

MIN_WORD_LENGTH = 3


def normalize_name(value: str) -> str:
    return value.casefold().strip()


class EntityMatcher:
    """Run an ordered cascade of matching strategies, strongest first.

    1. place id equality (when the target has one)
    2. exact normalized name
    3. normalized name containment, either direction
    4. partial word overlap: enough of the target's significant words
       (longer than two characters) appear in the item title

    The first strategy that finds anything wins, and within a strategy the
    first item in provider order wins.
    """

    def __init__(self, word_overlap_ratio: float = 0.5, competitor_limit: int = 5) -> None:
        if not 0 < word_overlap_ratio <= 1:
            raise ValueError("word_overlap_ratio must be in (0, 1]")
        if competitor_limit < 0:
            raise ValueError("competitor_limit must not be negative")
        self.word_overlap_ratio = word_overlap_ratio
        self.competitor_limit = competitor_limit

    def match(self, items: Sequence[RawRankedItem], target: TargetIdentity) -> RankSearchResult:
        competitors = [Competitor.from_item(item) for item in items[: self.competitor_limit]]
        if not items:
            return RankSearchResult(found=False, competitors=competitors)

        for method, strategy in self._strategies(target):
            found = next((item for item in items if strategy(item)), None)
            if found is not None:
                logger.debug("Target found via %s at rank %s: %r", method.value, found.position, found.title)
                return RankSearchResult(
                    found=True,
                    rank=found.position,
                    matched_place_id=found.place_id,
                    matched_title=found.title,
                    competitors=competitors,
                    match_method=method,
                )

        return RankSearchResult(found=False, competitors=competitors)

    def _strategies(self, target: TargetIdentity) -> List[Tuple[MatchMethod, Callable[[RawRankedItem], bool]]]:
        strategies: List[Tuple[MatchMethod, Callable[[RawRankedItem], bool]]] = []
        if target.place_id:
            place_id = target.place_id
            strategies.append((MatchMethod.PLACE_ID, lambda item: item.place_id == place_id))

        if target.business_name:
            name = normalize_name(target.business_name)
            strategies.append((MatchMethod.NAME_EXACT, lambda item: normalize_name(item.title) == name))
            strategies.append((MatchMethod.NAME_CONTAINS, lambda item: _contains_either_way(normalize_name(item.title), name)))

            words = significant_words(name)
            required = self.required_word_matches(len(words))
            if required:
                strategies.append(
                    (MatchMethod.NAME_PARTIAL_WORDS, lambda item: _count_word_hits(words, item.title) >= required)
                )
        return strategies

    def required_word_matches(self, word_count: int) -> Optional[int]:
        """Minimum overlapping words for a partial match, or None when the name has no usable words."""
        if word_count == 0:
            return None
        return max(1, math.ceil(word_count * self.word_overlap_ratio))


def significant_words(normalized_name: str) -> List[str]:
    return [word for word in normalized_name.split() if len(word) >= MIN_WORD_LENGTH]


def _contains_either_way(title: str, name: str) -> bool:
    return name in title or title in name


def _count_word_hits(target_words: Sequence[str], title: str) -> int:
    item_words = normalize_name(title).split()
    return sum(1 for word in target_words if any(_contains_either_way(item_word, word) for item_word in item_words))
