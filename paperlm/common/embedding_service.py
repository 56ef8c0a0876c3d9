"""
Embedding Service

Turns text into fixed-dimension vectors in batches. Supports the OpenAI
embeddings API and on-device fastembed, or any injected provider callable.

A failed batch degrades to random fallback vectors drawn from an injectable
``numpy.random.Generator`` so ingestion and retrieval keep running; a vector
of the wrong dimension is a deployment error and always raises.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

import numpy as np

from .errors import ConfigurationError, TransientProviderError

logger = logging.getLogger("paperlm.common.embedding_service")

EmbedFn = Callable[[List[str]], Sequence[Sequence[float]]]


@dataclass
class EmbeddingBatchResult:
    """Vectors in input order plus the indices that got fallback vectors"""
    vectors: List[List[float]] = field(default_factory=list)
    fallback_indices: List[int] = field(default_factory=list)

    @property
    def fallback_count(self) -> int:
        return len(self.fallback_indices)


class EmbeddingService:
    """
    Batched embedding generation with random-vector fallback.

    Construct one per deployment and pass it to the components that need it.
    """

    def __init__(
        self,
        mode: str = "openai",
        model: str = "text-embedding-3-small",
        dimension: int = 1536,
        batch_size: int = 10,
        concurrency: int = 4,
        timeout: float = 30.0,
        api_key: Optional[str] = None,
        provider: Optional[EmbedFn] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        if dimension <= 0:
            raise ConfigurationError(f"Embedding dimension must be positive, got {dimension}")
        if batch_size <= 0:
            raise ConfigurationError(f"Embedding batch size must be positive, got {batch_size}")

        self.mode = mode
        self.model = model
        self.dimension = dimension
        self.batch_size = batch_size
        self.concurrency = max(1, concurrency)
        self.timeout = timeout
        self._rng = rng if rng is not None else np.random.default_rng()
        self._provider: Optional[EmbedFn] = provider

        if self._provider is None:
            self._provider = self._init_provider(mode, model, api_key)

    def _init_provider(self, mode: str, model: str, api_key: Optional[str]) -> Optional[EmbedFn]:
        if mode == "openai":
            if not api_key:
                logger.info("OpenAI API key not provided, embeddings will use fallback vectors")
                return None
            try:
                from openai import OpenAI

                client = OpenAI(api_key=api_key)
            except ImportError:
                logger.warning("openai package not installed")
                return None

            def _openai_embed(batch: List[str]) -> List[List[float]]:
                response = client.embeddings.create(model=model, input=batch, timeout=self.timeout)
                return [d.embedding for d in sorted(response.data, key=lambda d: d.index)]

            logger.info("Embedding provider: openai, model=%s", model)
            return _openai_embed

        if mode == "femb":
            try:
                from fastembed import TextEmbedding

                encoder = TextEmbedding(model_name=model)
            except ImportError:
                logger.warning("fastembed package not installed (pip install paperlm[local])")
                return None
            except Exception as e:
                logger.warning("Failed to initialize fastembed model %s: %s", model, e)
                return None

            def _fastembed_embed(batch: List[str]) -> List[List[float]]:
                return [np.asarray(v).tolist() for v in encoder.embed(batch)]

            logger.info("Embedding provider: fastembed, model=%s", model)
            return _fastembed_embed

        raise ConfigurationError(f"Unsupported embedding mode: {mode}")

    @property
    def is_available(self) -> bool:
        """Check if a real embedding provider is configured"""
        return self._provider is not None

    def fallback_vector(self) -> List[float]:
        """Random vector in [-1, 1) of the configured dimension."""
        return self._rng.uniform(-1.0, 1.0, self.dimension).tolist()

    def _batches(self, texts: List[str]) -> List[List[str]]:
        return [texts[i:i + self.batch_size] for i in range(0, len(texts), self.batch_size)]

    def _embed_batch(self, batch: List[str]) -> List[List[float]]:
        """Embed one batch with the provider. Validates shape."""
        if self._provider is None:
            raise TransientProviderError("Embedding provider is not available")

        raw = self._provider(batch)
        if isinstance(raw, np.ndarray):
            raw = raw.tolist()
        vectors = [list(map(float, v)) for v in raw]

        if len(vectors) != len(batch):
            raise TransientProviderError(
                f"Provider returned {len(vectors)} vectors for {len(batch)} texts"
            )
        for vec in vectors:
            if len(vec) != self.dimension:
                raise ConfigurationError(
                    f"Embedding dimension mismatch: provider returned {len(vec)}, "
                    f"configured {self.dimension}"
                )
        return vectors

    def _assemble(self, batches: List[List[str]], outcomes: List[Optional[List[List[float]]]]) -> EmbeddingBatchResult:
        result = EmbeddingBatchResult()
        offset = 0
        for batch, vectors in zip(batches, outcomes):
            if vectors is None:
                for i in range(len(batch)):
                    result.vectors.append(self.fallback_vector())
                    result.fallback_indices.append(offset + i)
            else:
                result.vectors.extend(vectors)
            offset += len(batch)
        if result.fallback_indices:
            logger.warning(
                "Used %d fallback embedding vector(s) out of %d",
                len(result.fallback_indices), len(result.vectors),
            )
        return result

    def embed_detailed(self, texts: List[str]) -> EmbeddingBatchResult:
        """
        Embed texts batch by batch, reporting which ones fell back.

        Raises:
            ConfigurationError: a real vector has the wrong dimension
        """
        if not texts:
            return EmbeddingBatchResult()

        batches = self._batches(list(texts))
        outcomes: List[Optional[List[List[float]]]] = []
        for idx, batch in enumerate(batches):
            try:
                outcomes.append(self._embed_batch(batch))
            except ConfigurationError:
                raise
            except Exception as e:
                logger.warning("Embedding batch %d (%d texts) failed: %s", idx, len(batch), e)
                outcomes.append(None)
        return self._assemble(batches, outcomes)

    def embed(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for a list of texts.

        Args:
            texts: List of strings to embed

        Returns:
            One vector per input text, in input order
        """
        return self.embed_detailed(texts).vectors

    def embed_single(self, text: str) -> List[float]:
        if not text:
            raise ValueError("Cannot embed empty text")
        return self.embed([text])[0]

    async def aembed_detailed(self, texts: List[str]) -> EmbeddingBatchResult:
        """Async ``embed_detailed``: batches run concurrently, each under a timeout."""
        if not texts:
            return EmbeddingBatchResult()

        batches = self._batches(list(texts))
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _run(idx: int, batch: List[str]) -> Optional[List[List[float]]]:
            async with semaphore:
                try:
                    return await asyncio.wait_for(
                        asyncio.to_thread(self._embed_batch, batch),
                        timeout=self.timeout,
                    )
                except ConfigurationError:
                    raise
                except asyncio.TimeoutError:
                    logger.warning("Embedding batch %d timed out after %.1fs", idx, self.timeout)
                    return None
                except Exception as e:
                    logger.warning("Embedding batch %d (%d texts) failed: %s", idx, len(batch), e)
                    return None

        outcomes = await asyncio.gather(*(_run(i, b) for i, b in enumerate(batches)))
        # Fallback vectors are drawn after gathering so a seeded rng stays reproducible
        return self._assemble(batches, list(outcomes))

    async def aembed(self, texts: List[str]) -> List[List[float]]:
        return (await self.aembed_detailed(texts)).vectors
