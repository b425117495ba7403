"""Match filter: dynamic relative-distance thresholding over search candidates.

A fixed global distance cutoff either misses true matches under hard
lighting or pose, or admits look-alikes under easy conditions. The filter
anchors the cutoff to the best distance of the current query
(``best + margin``) and keeps an absolute ``hard_cap`` so that a query with
no real match (best distance already poor) returns nothing.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Sequence

from facesearch.config import Config
from facesearch.interfaces import MatchCandidate, PhotoMatch, SearchResult
from facesearch.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class MatchFilterSettings:
    """Tunable constants of the match filter.

    These depend on the embedding model's distance distribution; the
    defaults suit 128-D dlib descriptors under cosine distance.
    ``from_config`` picks up the per-backend values of ``Config``.

    Attributes:
        limit: Candidates requested from vector search (K)
        search_ceiling: Permissive ceiling passed to vector search
        margin: Allowed distance above the best candidate
        hard_cap: Absolute cap; candidates at or above it are rejected
    """

    limit: int = 50
    search_ceiling: float = 0.2
    margin: float = 0.08
    hard_cap: float = 0.25

    def __post_init__(self) -> None:
        if self.limit < 1:
            raise ValueError(f"limit must be >= 1, got {self.limit}")
        for name in ("search_ceiling", "margin", "hard_cap"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0, got {getattr(self, name)}")

    @classmethod
    def from_config(cls, config: Config) -> MatchFilterSettings:
        return cls(
            limit=config.match_limit,
            search_ceiling=config.search_ceiling,
            margin=config.match_margin,
            hard_cap=config.match_hard_cap,
        )


class MatchFilter:
    """Narrows ranked vector search candidates to confident photo matches.

    Example:
        >>> f = MatchFilter(MatchFilterSettings(margin=0.08, hard_cap=0.25))
        >>> result = f.apply([MatchCandidate("a", 0.05), MatchCandidate("b", 0.09),
        ...                   MatchCandidate("c", 0.20)])
        >>> result.photo_ids
        ['a', 'b']
    """

    def __init__(self, settings: MatchFilterSettings | None = None):
        self.settings = settings or MatchFilterSettings()

    def apply(self, candidates: Sequence[MatchCandidate]) -> SearchResult:
        """Filter, deduplicate by photo and sort candidates.

        Returns:
            SearchResult with one entry per photo (its minimum distance),
            ascending by distance. Empty if no candidate qualifies.
        """
        if not candidates:
            return SearchResult()

        ordered = sorted(candidates, key=lambda c: c.distance)
        best = ordered[0].distance
        relative_limit = best + self.settings.margin

        best_per_photo: Dict[str, float] = {}
        for candidate in ordered:
            if candidate.distance > relative_limit:
                break
            if candidate.distance >= self.settings.hard_cap:
                break
            current = best_per_photo.get(candidate.photo_id)
            if current is None or candidate.distance < current:
                best_per_photo[candidate.photo_id] = candidate.distance

        matches = [
            PhotoMatch(photo_id=photo_id, distance=distance)
            for photo_id, distance in best_per_photo.items()
        ]
        matches.sort(key=lambda m: (m.distance, m.photo_id))

        logger.debug(
            f"Match filter: {len(candidates)} candidate(s), best={best:.4f}, "
            f"limit={relative_limit:.4f}, cap={self.settings.hard_cap} "
            f"-> {len(matches)} photo(s)"
        )
        return SearchResult(matches=matches)

    def __repr__(self) -> str:
        s = self.settings
        return f"MatchFilter(margin={s.margin}, hard_cap={s.hard_cap}, limit={s.limit})"
