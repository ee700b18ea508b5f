from .filters import matches_filter
from .retry import backoff_delay, with_retry
from .schemas import (
    SCHEMA_VERSION,
    CodeChunkPayload,
    ReviewInsightPayload,
    payload_from_chunk,
    validate_payload,
)
from .vector_store import (
    CollectionInfo,
    CollectionSchema,
    InMemoryVectorStore,
    SearchHit,
    VectorPoint,
    VectorStore,
    build_vector_store,
)

__all__ = [
    "SCHEMA_VERSION",
    "CodeChunkPayload",
    "CollectionInfo",
    "CollectionSchema",
    "InMemoryVectorStore",
    "ReviewInsightPayload",
    "SearchHit",
    "VectorPoint",
    "VectorStore",
    "backoff_delay",
    "build_vector_store",
    "matches_filter",
    "payload_from_chunk",
    "validate_payload",
    "with_retry",
]
