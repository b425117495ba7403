"""Face search service: selfie in, matching photos out."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from facesearch.config import Config
from facesearch.exceptions import SearchCancelled
from facesearch.interfaces import SearchResult, VectorSearch
from facesearch.logging_config import get_logger
from facesearch.matching import MatchFilter, MatchFilterSettings
from facesearch.progress import SEARCHING
from facesearch.services.query import QueryPipeline
from facesearch.utils import ImageInput

logger = get_logger(__name__)

NO_FACE_MESSAGE = (
    "We couldn't find a face in your photo. Try a well-lit, front-facing selfie."
)
NO_MATCHES_MESSAGE = "No photos of you were found."


class SearchStatus(str, Enum):
    NO_FACE = "no_face"
    NO_MATCHES = "no_matches"
    MATCHED = "matched"


@dataclass
class FaceSearchOutcome:
    """Result of one face search.

    ``NO_FACE`` (nothing to search with) and ``NO_MATCHES`` (the face is
    not in the library) are kept distinct so the UI can tell them apart.
    """

    status: SearchStatus
    result: SearchResult = field(default_factory=SearchResult)
    message: str = ""
    model_version: Optional[str] = None

    @property
    def photo_ids(self):
        return self.result.photo_ids


class FaceSearchService:
    """Runs the query pipeline, vector search and match filter in sequence.

    Example:
        >>> service = FaceSearchService(pipeline, ResilientVectorSearch(search), MatchFilter())
        >>> outcome = service.search(selfie_bytes)
        >>> for match in outcome.result:
        ...     print(match.photo_id, f"{match.distance:.3f}")
    """

    def __init__(
        self,
        query_pipeline: QueryPipeline,
        vector_search: VectorSearch,
        match_filter: Optional[MatchFilter] = None,
        config: Optional[Config] = None,
    ):
        self.query_pipeline = query_pipeline
        self.vector_search = vector_search
        if match_filter is None:
            settings = MatchFilterSettings.from_config(config) if config is not None else None
            match_filter = MatchFilter(settings)
        self.match_filter = match_filter

    def search(
        self,
        image: ImageInput,
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> FaceSearchOutcome:
        """Find indexed photos containing the person in ``image``.

        Raises:
            ModelLoadFailure: If the precise tier cannot be loaded.
            InvalidImage: If the image cannot be decoded.
            VectorSearchUnavailable: If vector search keeps failing.
            SearchCancelled: If ``cancel_event`` was set.
        """
        query = self.query_pipeline.embed_query(image, cancel_event=cancel_event)
        if query is None:
            return FaceSearchOutcome(status=SearchStatus.NO_FACE, message=NO_FACE_MESSAGE)

        settings = self.match_filter.settings
        self.query_pipeline.progress.emit(SEARCHING, "Searching your photos...")

        candidates = self.vector_search.search(
            query.embedding,
            settings.search_ceiling,
            settings.limit,
            query.model_version,
        )

        if cancel_event is not None and cancel_event.is_set():
            logger.info("Search cancelled after vector search")
            raise SearchCancelled("Search cancelled after vector search")

        result = self.match_filter.apply(candidates)

        logger.info(
            f"Face search: {len(candidates)} candidate(s) -> {len(result)} photo(s) "
            f"({query.model_version})"
        )

        if not result.matches:
            return FaceSearchOutcome(
                status=SearchStatus.NO_MATCHES,
                result=result,
                message=NO_MATCHES_MESSAGE,
                model_version=query.model_version,
            )

        return FaceSearchOutcome(
            status=SearchStatus.MATCHED,
            result=result,
            message=f"Found {len(result)} photo(s) with your face.",
            model_version=query.model_version,
        )
