"""Request-scoped retrieval results. Never cached across requests."""

from dataclasses import dataclass, field
from typing import Optional

from .document import ChunkPayload


@dataclass
class RAGMetadata:
    """Payload fields of a retrieved chunk plus scoring."""
    document_id: str
    chunk_id: str
    chunk_index: int = 0
    start_char: int = 0
    end_char: int = 0
    file_name: str = ""
    file_type: str = ""
    file_size: int = 0
    source_url: str = ""
    author: str = ""
    content_type: str = "paragraph"
    quality_score: float = 0.5
    user_id: str = ""
    session_id: str = ""
    uploaded_at: str = ""
    confidence: Optional[float] = None  # vector similarity
    rank_score: Optional[float] = None  # hybrid score from the orchestrator
    page_number: Optional[int] = None
    section_title: Optional[str] = None
    paragraph_index: Optional[int] = None

    @classmethod
    def from_payload(cls, payload: ChunkPayload, confidence: Optional[float] = None) -> "RAGMetadata":
        return cls(
            document_id=payload.document_id,
            chunk_id=payload.chunk_id,
            chunk_index=payload.chunk_index,
            start_char=payload.start_char,
            end_char=payload.end_char,
            file_name=payload.file_name,
            file_type=payload.file_type,
            file_size=payload.file_size,
            source_url=payload.source_url,
            author=payload.author,
            content_type=payload.content_type,
            quality_score=payload.quality_score,
            user_id=payload.user_id,
            session_id=payload.session_id,
            uploaded_at=payload.uploaded_at,
            confidence=confidence,
        )


@dataclass
class RAGResult:
    """A retrieved chunk"""
    page_content: str
    metadata: RAGMetadata = field(default_factory=lambda: RAGMetadata(document_id="", chunk_id=""))

    @property
    def chunk_id(self) -> str:
        return self.metadata.chunk_id

    @classmethod
    def from_payload(cls, payload: ChunkPayload, confidence: Optional[float] = None) -> "RAGResult":
        return cls(
            page_content=payload.content,
            metadata=RAGMetadata.from_payload(payload, confidence),
        )
