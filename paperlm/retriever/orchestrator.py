"""
Retrieval Orchestrator

Fan-out/fan-in retrieval over every query strategy:
1. Enhance the question into strategies
2. Embed all strategies in one batched call
3. Search each strategy concurrently (bounded; the store times out the
   primary call and answers from memory)
4. Gather in strategy order, deduplicate by chunk id, rank, take top k
"""

import asyncio
import logging
import re
from dataclasses import dataclass, replace
from typing import List, Optional

from ..common.embedding_service import EmbeddingService
from ..common.errors import ConfigurationError
from ..common.schemas import OwnerScope, RAGResult
from ..common.vector_store import VectorStore
from .query_enhancer import ChatTurn, QueryEnhancer

logger = logging.getLogger("paperlm.retriever.orchestrator")


@dataclass
class RankingWeights:
    """Hybrid ranking: keyword overlap, vector similarity and length-based quality"""
    keyword: float = 0.4
    confidence: float = 0.4
    quality: float = 0.2
    quality_norm_length: int = 1000
    default_confidence: float = 0.5
    min_term_length: int = 3


def query_terms(query: str, min_length: int = 3) -> List[str]:
    """Lowercased word tokens of at least ``min_length`` characters, first occurrence order."""
    terms = []
    for word in re.findall(r"\w+", (query or "").lower()):
        if len(word) >= min_length and word not in terms:
            terms.append(word)
    return terms


def keyword_score(terms: List[str], text: str) -> float:
    if not terms:
        return 0.0
    lower = text.lower()
    return sum(1 for t in terms if t in lower) / len(terms)


def score_result(result: RAGResult, terms: List[str], weights: RankingWeights) -> float:
    confidence = result.metadata.confidence
    if confidence is None:
        confidence = weights.default_confidence
    quality = min(len(result.page_content) / weights.quality_norm_length, 1.0) if weights.quality_norm_length > 0 else 0.0
    return (
        weights.keyword * keyword_score(terms, result.page_content)
        + weights.confidence * confidence
        + weights.quality * quality
    )


def dedupe_results(results: List[RAGResult]) -> List[RAGResult]:
    """One result per chunk id; the first occurrence wins."""
    seen = set()
    unique = []
    for result in results:
        if result.chunk_id in seen:
            continue
        seen.add(result.chunk_id)
        unique.append(result)
    return unique


def rank_results(
    results: List[RAGResult],
    query: str,
    weights: Optional[RankingWeights] = None,
    k: Optional[int] = None,
) -> List[RAGResult]:
    """
    Score and sort results, best first.

    Returns copies carrying the combined score in ``metadata.rank_score``;
    ties are broken by chunk id so the order never depends on arrival order.
    """
    weights = weights or RankingWeights()
    terms = query_terms(query, weights.min_term_length)
    scored = []
    for result in results:
        score = score_result(result, terms, weights)
        scored.append(replace(result, metadata=replace(result.metadata, rank_score=score)))
    scored.sort(key=lambda r: (-r.metadata.rank_score, r.chunk_id))
    return scored[:k] if k is not None else scored


class RetrievalOrchestrator:
    """
    Multi-strategy retrieval.

    Args:
        enhancer: Query enhancer producing strategies
        embeddings: Embedding service for strategy vectors
        store: Vector store to search
        concurrency: Maximum concurrent strategy searches
        weights: Ranking weights
    """

    def __init__(
        self,
        enhancer: QueryEnhancer,
        embeddings: EmbeddingService,
        store: VectorStore,
        concurrency: int = 5,
        weights: Optional[RankingWeights] = None,
    ):
        self.enhancer = enhancer
        self.embeddings = embeddings
        self.store = store
        self.concurrency = max(1, concurrency)
        self.weights = weights or RankingWeights()

    async def retrieve(
        self,
        query: str,
        chat_history: Optional[List[ChatTurn]] = None,
        k: int = 10,
        owner: Optional[OwnerScope] = None,
    ) -> List[RAGResult]:
        """
        Retrieve the top-k chunks for a question.

        Returns:
            Ranked, de-duplicated results; [] for a blank question
        """
        if not query or not query.strip() or k <= 0:
            return []

        enhanced = await self.enhancer.enhance(query, chat_history)
        strategies = enhanced.strategies or [query.strip()]
        vectors = await self.embeddings.aembed(strategies)

        semaphore = asyncio.Semaphore(self.concurrency)

        async def _search(idx: int, vector: List[float]) -> List[RAGResult]:
            async with semaphore:
                # asearch times out the primary call and answers from memory
                try:
                    return await self.store.asearch(vector, k, owner)
                except ConfigurationError:
                    raise
                except Exception as e:
                    logger.warning("Strategy %d search failed: %s", idx, e)
                    return []

        per_strategy = await asyncio.gather(
            *(_search(i, v) for i, v in enumerate(vectors)), return_exceptions=True
        )

        gathered: List[RAGResult] = []
        for results in per_strategy:
            if isinstance(results, BaseException):
                raise results
            gathered.extend(results)

        unique = dedupe_results(gathered)
        ranked = rank_results(unique, query, self.weights, k)
        logger.info(
            "Retrieved %d results from %d strategies (%d candidates, %d unique)",
            len(ranked), len(strategies), len(gathered), len(unique),
        )
        return ranked
