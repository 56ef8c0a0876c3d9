"""
paperlm Schemas

Persisted document models (pydantic) and request-scoped retrieval results.
"""

from .document import (
    Chunk,
    ChunkPayload,
    ContentType,
    DocumentSource,
    OwnerScope,
    SourceType,
    VectorRecord,
)
from .retrieval import RAGMetadata, RAGResult

__all__ = [
    "Chunk",
    "ChunkPayload",
    "ContentType",
    "DocumentSource",
    "OwnerScope",
    "SourceType",
    "VectorRecord",
    "RAGMetadata",
    "RAGResult",
]
