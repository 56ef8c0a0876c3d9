"""
Document Indexer

Ingestion path: chunk -> embed -> build flat vector records -> upsert.
Each chunk gets a fresh random point id; the chunk id travels in the payload.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..common.embedding_service import EmbeddingService
from ..common.errors import ConfigurationError
from ..common.schemas import ChunkPayload, DocumentSource, VectorRecord
from ..common.vector_store import VectorStore
from .chunker import TextChunker

logger = logging.getLogger("paperlm.ingest.indexer")


@dataclass
class IngestReport:
    """Outcome of ingesting one document"""
    document_id: str
    chunk_count: int = 0
    fallback_count: int = 0
    backend: str = "none"  # "milvus", "memory", or "none" when nothing was stored
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "document_id": self.document_id,
            "ok": self.ok,
            "chunk_count": self.chunk_count,
            "fallback_count": self.fallback_count,
            "backend": self.backend,
            "error": self.error,
        }


class DocumentIndexer:
    """
    Indexes documents into the vector store.

    Args:
        chunker: Text chunker
        embeddings: Embedding service
        store: Vector store
        concurrency: Maximum documents ingested at once
    """

    def __init__(
        self,
        chunker: TextChunker,
        embeddings: EmbeddingService,
        store: VectorStore,
        concurrency: int = 3,
    ):
        self.chunker = chunker
        self.embeddings = embeddings
        self.store = store
        self.concurrency = max(1, concurrency)

    async def index_document(self, source: DocumentSource) -> IngestReport:
        """
        Chunk, embed and store one document.

        Raises:
            ConfigurationError: embedding or record dimension mismatch
        """
        chunks = self.chunker.chunk(source.document_id, source.content)
        report = IngestReport(document_id=source.document_id, chunk_count=len(chunks))
        if not chunks:
            logger.info("Document %s has no content to index", source.document_id)
            return report

        embedded = await self.embeddings.aembed_detailed([c.content for c in chunks])
        records = [
            VectorRecord(vector=vector, payload=ChunkPayload.from_chunk(chunk, source))
            for chunk, vector in zip(chunks, embedded.vectors)
        ]

        report.fallback_count = embedded.fallback_count
        report.backend = await asyncio.to_thread(self.store.upsert, records)
        logger.info(
            "Indexed document %s: %d chunks (%d fallback vectors) into %s",
            source.document_id, len(chunks), report.fallback_count, report.backend,
        )
        return report

    async def index_documents(self, sources: List[DocumentSource]) -> List[IngestReport]:
        """
        Index several documents, a bounded number at a time.

        A failing document is reported and does not stop the others, except
        for ConfigurationError which aborts the whole call.
        """
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _one(source: DocumentSource) -> IngestReport:
            async with semaphore:
                try:
                    return await self.index_document(source)
                except ConfigurationError:
                    raise
                except Exception as e:
                    logger.error("Failed to index document %s: %s", source.document_id, e)
                    return IngestReport(document_id=source.document_id, error=str(e))

        return list(await asyncio.gather(*(_one(s) for s in sources)))

    def delete_document(self, document_id: str) -> Dict[str, Any]:
        result = self.store.delete_document(document_id)
        logger.info("Deleted document %s (memory removed %d)", document_id, result.get("memory_removed", 0))
        return result
