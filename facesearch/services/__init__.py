"""High-level services for face indexing and face search.

This package contains the services that orchestrate model loading,
detection, descriptor extraction, vector search and match filtering.
"""

from facesearch.services.indexer import IndexingService, IndexReport
from facesearch.services.query import QueryEmbedding, QueryPipeline
from facesearch.services.search import FaceSearchOutcome, FaceSearchService, SearchStatus

__all__ = [
    "IndexingService",
    "IndexReport",
    "QueryEmbedding",
    "QueryPipeline",
    "FaceSearchOutcome",
    "FaceSearchService",
    "SearchStatus",
]
