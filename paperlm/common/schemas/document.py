"""
Document and Vector Record Schemas

A document is split into Chunks; every Chunk gets exactly one VectorRecord
whose payload is flat (scalar values only) so any vector backend can store it.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ============================================================================
# Enums
# ============================================================================

class ContentType(str, Enum):
    """Structural classification of a chunk"""
    HEADER = "header"
    NUMBERED_LIST = "numbered-list"
    BULLET_LIST = "bullet-list"
    TABLE = "table"
    FIGURE_REFERENCE = "figure-reference"
    SUMMARY = "summary"
    INTRODUCTION = "introduction"
    PARAGRAPH = "paragraph"


class SourceType(str, Enum):
    """Origin of a cited document"""
    PDF = "pdf"
    WORD = "word"
    TEXT = "text"
    WEB = "web"
    UNKNOWN = "unknown"


# ============================================================================
# Ownership
# ============================================================================

class OwnerScope(BaseModel):
    """Who a record belongs to: a user, a session, or nobody. Never both."""
    model_config = ConfigDict(frozen=True)

    user_id: Optional[str] = None
    session_id: Optional[str] = None

    @model_validator(mode="after")
    def _single_owner(self) -> "OwnerScope":
        if self.user_id and self.session_id:
            raise ValueError("OwnerScope accepts user_id or session_id, not both")
        return self

    @property
    def arena_key(self) -> str:
        if self.user_id:
            return f"user:{self.user_id}"
        if self.session_id:
            return f"session:{self.session_id}"
        return "_unscoped"

    @property
    def filter_field(self) -> Optional[Tuple[str, str]]:
        """(payload field, value) to filter on, or None when unscoped."""
        if self.user_id:
            return ("userId", self.user_id)
        if self.session_id:
            return ("sessionId", self.session_id)
        return None

    @property
    def is_session(self) -> bool:
        return bool(self.session_id) and not self.user_id


# ============================================================================
# Documents and chunks
# ============================================================================

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocumentSource(BaseModel):
    """A document handed over by the ingestion caller"""
    document_id: str = Field(..., min_length=1)
    content: str
    file_name: str = Field(default="", description="Original file name, e.g. report.pdf")
    file_type: str = Field(default="", description="MIME type or extension")
    file_size: int = Field(default=0, ge=0)
    source_url: str = ""
    author: str = ""
    owner: OwnerScope = Field(default_factory=OwnerScope)
    uploaded_at: datetime = Field(default_factory=_utcnow)


class Chunk(BaseModel):
    """A contiguous span of a document's text. Immutable once created."""
    model_config = ConfigDict(frozen=True)

    id: str
    document_id: str
    content: str
    chunk_index: int = Field(ge=0)
    start_char: int = Field(ge=0)
    end_char: int = Field(ge=0)
    content_type: ContentType = ContentType.PARAGRAPH
    quality_score: float = Field(ge=0.0, le=1.0, default=0.5)
    word_count: int = 0
    has_structure: bool = False


class ChunkPayload(BaseModel):
    """Flat payload stored beside each vector.

    Serialized with camelCase keys; unknown optional values are empty strings.
    """
    model_config = ConfigDict(populate_by_name=True)

    content: str
    document_id: str = Field(alias="documentId")
    chunk_id: str = Field(alias="chunkId")
    chunk_index: int = Field(default=0, alias="chunkIndex")
    start_char: int = Field(default=0, alias="startChar")
    end_char: int = Field(default=0, alias="endChar")
    file_name: str = Field(default="", alias="fileName")
    file_type: str = Field(default="", alias="fileType")
    file_size: int = Field(default=0, alias="fileSize")
    source_url: str = Field(default="", alias="sourceUrl")
    author: str = ""
    content_type: str = Field(default=ContentType.PARAGRAPH.value, alias="contentType")
    quality_score: float = Field(default=0.5, alias="qualityScore")
    user_id: str = Field(default="", alias="userId")
    session_id: str = Field(default="", alias="sessionId")
    uploaded_at: str = Field(default="", alias="uploadedAt")

    @classmethod
    def from_chunk(cls, chunk: Chunk, source: DocumentSource) -> "ChunkPayload":
        return cls(
            content=chunk.content,
            document_id=chunk.document_id,
            chunk_id=chunk.id,
            chunk_index=chunk.chunk_index,
            start_char=chunk.start_char,
            end_char=chunk.end_char,
            file_name=source.file_name,
            file_type=source.file_type,
            file_size=source.file_size,
            source_url=source.source_url,
            author=source.author,
            content_type=chunk.content_type.value,
            quality_score=chunk.quality_score,
            user_id=source.owner.user_id or "",
            session_id=source.owner.session_id or "",
            uploaded_at=source.uploaded_at.isoformat(),
        )

    @classmethod
    def from_flat(cls, data: Dict[str, Any]) -> "ChunkPayload":
        # Backends may hand back None for fields they never stored
        cleaned = {k: v for k, v in data.items() if v is not None}
        return cls.model_validate(cleaned)

    def to_flat(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class VectorRecord(BaseModel):
    """A stored point: vector plus flat payload, keyed by a random point id"""
    point_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    vector: List[float]
    payload: ChunkPayload

    @property
    def dimension(self) -> int:
        return len(self.vector)
