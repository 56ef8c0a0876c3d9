"""
Ingestion - Document chunking and indexing

Key Components:
- TextChunker: Structure-aware overlapping chunks with quality scores
- DocumentIndexer: Chunk -> embed -> upsert into the vector store
"""

from .chunker import QualityHeuristic, TextChunker
from .indexer import DocumentIndexer, IngestReport

__all__ = [
    "QualityHeuristic",
    "TextChunker",
    "DocumentIndexer",
    "IngestReport",
]
