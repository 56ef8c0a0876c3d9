"""
paperlm

Retrieval-augmented question answering over a user's own documents.

Pipeline:
1. Chunk uploaded documents and embed each chunk
2. Store vectors in Milvus (mirrored in memory as a fallback)
3. Enhance the question (HyDE, refined sub-queries, conversation expansion)
4. Search every strategy concurrently, deduplicate and rank
5. Condense the passages into a context with citations

Usage:
    from paperlm.common import load_config, EmbeddingService, VectorStore
    from paperlm.ingest import TextChunker, DocumentIndexer
    from paperlm.retriever import RAGPipeline
"""

__version__ = "0.1.0"
