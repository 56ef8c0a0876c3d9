"""
paperlm Common Module

Shared infrastructure for ingestion and retrieval.
"""

from .config import PaperLMConfig, load_config
from .embedding_service import EmbeddingService
from .errors import ConfigurationError, TransientProviderError
from .llm_client import LLMClient
from .vector_client import MilvusVectorClient
from .vector_store import MemoryVectorStore, VectorStore, cosine_similarity

__all__ = [
    "PaperLMConfig",
    "load_config",
    "EmbeddingService",
    "ConfigurationError",
    "TransientProviderError",
    "LLMClient",
    "MilvusVectorClient",
    "MemoryVectorStore",
    "VectorStore",
    "cosine_similarity",
]
