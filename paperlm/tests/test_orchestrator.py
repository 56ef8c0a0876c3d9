"""Tests for RetrievalOrchestrator: fan-out, dedup and ranking"""

from unittest.mock import AsyncMock, Mock

import asyncio
import time

import numpy as np
import pytest

from paperlm.common.embedding_service import EmbeddingService
from paperlm.common.errors import ConfigurationError
from paperlm.common.schemas import ChunkPayload, OwnerScope, RAGMetadata, RAGResult, VectorRecord
from paperlm.common.vector_store import VectorStore
from paperlm.retriever.orchestrator import (
    RankingWeights,
    RetrievalOrchestrator,
    dedupe_results,
    keyword_score,
    query_terms,
    rank_results,
)
from paperlm.retriever.query_enhancer import EnhancedQuery, QueryEnhancer


DIM = 4


def result(chunk_id, content, confidence=None):
    return RAGResult(
        page_content=content,
        metadata=RAGMetadata(document_id="d1", chunk_id=chunk_id, confidence=confidence),
    )


class TestRanking:
    def test_query_terms_skip_short_words(self):
        assert query_terms("Why is the Q3 revenue up?") == ["why", "the", "revenue"]

    def test_keyword_score(self):
        assert keyword_score(["revenue", "margin"], "Revenue rose") == 0.5
        assert keyword_score([], "anything") == 0.0

    def test_combined_score_formula(self):
        r = result("c1", "revenue " * 125, confidence=0.6)  # 1000 chars
        ranked = rank_results([r], "revenue")
        assert ranked[0].metadata.rank_score == pytest.approx(0.4 * 1.0 + 0.4 * 0.6 + 0.2 * 1.0)

    def test_missing_confidence_defaults(self):
        ranked = rank_results([result("c1", "x" * 500)], "revenue")
        assert ranked[0].metadata.rank_score == pytest.approx(0.4 * 0.5 + 0.2 * 0.5)

    def test_inputs_not_mutated(self):
        r = result("c1", "text", confidence=0.9)
        rank_results([r], "text")
        assert r.metadata.rank_score is None
        assert r.metadata.confidence == 0.9

    def test_order_independent_of_input_order(self):
        items = [result(f"c{i}", "same text", confidence=0.5) for i in range(4)]
        forward = [r.chunk_id for r in rank_results(items, "text", k=3)]
        backward = [r.chunk_id for r in rank_results(list(reversed(items)), "text", k=3)]
        assert forward == backward == ["c0", "c1", "c2"]

    def test_custom_weights(self):
        weights = RankingWeights(keyword=0.0, confidence=1.0, quality=0.0)
        ranked = rank_results(
            [result("low", "revenue", 0.2), result("high", "nothing", 0.9)], "revenue", weights
        )
        assert [r.chunk_id for r in ranked] == ["high", "low"]

    def test_dedupe_first_occurrence_wins(self):
        first = result("c1", "first", confidence=0.1)
        dup = result("c1", "second", confidence=0.9)
        unique = dedupe_results([first, result("c2", "other"), dup])
        assert [r.page_content for r in unique] == ["first", "other"]


def make_enhancer(strategies):
    enhancer = Mock(spec=QueryEnhancer)
    enhancer.enhance = AsyncMock(
        return_value=EnhancedQuery(original=strategies[0], strategies=list(strategies))
    )
    return enhancer


def keyed_embeddings():
    """Each strategy maps to a fixed unit vector so searches are predictable."""
    table = {
        "revenue growth": [1.0, 0.0, 0.0, 0.0],
        "subscription revenue": [0.0, 1.0, 0.0, 0.0],
        "regional sales": [0.0, 0.0, 1.0, 0.0],
    }
    return EmbeddingService(
        provider=lambda batch: [table.get(t, [0.0, 0.0, 0.0, 1.0]) for t in batch],
        dimension=DIM,
        rng=np.random.default_rng(0),
    )


def seeded_store(client=None):
    store = VectorStore(client, DIM)
    docs = [
        ("c-rev", [1.0, 0.0, 0.0, 0.0], "Revenue growth was 12% this year."),
        ("c-sub", [0.0, 1.0, 0.0, 0.0], "Subscription revenue doubled."),
        ("c-reg", [0.0, 0.0, 1.0, 0.0], "Regional sales expanded into Asia."),
        ("c-mix", [0.7, 0.7, 0.0, 0.0], "Revenue growth came from subscription revenue."),
    ]
    store.upsert([
        VectorRecord(vector=v, payload=ChunkPayload(content=c, document_id="d1", chunk_id=cid, file_name="d1.pdf"))
        for cid, v, c in docs
    ])
    return store


class TestRetrieve:
    @pytest.mark.asyncio
    async def test_blank_query_returns_empty(self):
        orchestrator = RetrievalOrchestrator(make_enhancer(["x"]), keyed_embeddings(), seeded_store())
        assert await orchestrator.retrieve("   ") == []

    @pytest.mark.asyncio
    async def test_merges_strategies_without_duplicates(self):
        strategies = ["revenue growth", "subscription revenue", "regional sales"]
        orchestrator = RetrievalOrchestrator(make_enhancer(strategies), keyed_embeddings(), seeded_store())

        results = await orchestrator.retrieve("revenue growth", k=10)

        ids = [r.chunk_id for r in results]
        assert len(ids) == len(set(ids)) == 4
        assert all(r.metadata.rank_score is not None for r in results)
        scores = [r.metadata.rank_score for r in results]
        assert scores == sorted(scores, reverse=True)

    @pytest.mark.asyncio
    async def test_top_k_independent_of_strategy_order(self):
        # all strategies embed identically, so duplicates carry equal scores
        same_vector = EmbeddingService(
            provider=lambda batch: [[0.6, 0.8, 0.0, 0.0] for _ in batch], dimension=DIM
        )
        strategies = ["revenue growth", "subscription revenue", "regional sales"]
        a = RetrievalOrchestrator(make_enhancer(strategies), same_vector, seeded_store())
        b = RetrievalOrchestrator(make_enhancer(list(reversed(strategies))), same_vector, seeded_store())

        first = await a.retrieve("revenue growth", k=2)
        second = await b.retrieve("revenue growth", k=2)

        assert [r.chunk_id for r in first] == [r.chunk_id for r in second]
        assert [r.metadata.rank_score for r in first] == [r.metadata.rank_score for r in second]

    @pytest.mark.asyncio
    async def test_vector_db_failure_uses_memory(self):
        client = Mock()
        client.upsert.return_value = {"ok": True, "count": 4}
        client.search.side_effect = ConnectionError("milvus down")
        orchestrator = RetrievalOrchestrator(
            make_enhancer(["revenue growth", "subscription revenue"]),
            keyed_embeddings(),
            seeded_store(client),
        )

        results = await orchestrator.retrieve("revenue growth", k=3)

        assert client.search.call_count == 2
        assert [r.chunk_id for r in results][0] in {"c-rev", "c-mix"}
        assert len(results) == 3

    @pytest.mark.asyncio
    async def test_search_exception_isolated_per_strategy(self):
        store = seeded_store()
        calls = {"n": 0}
        real = store.asearch

        async def flaky(vector, k, owner=None):
            calls["n"] += 1
            if vector[1] == 1.0:
                raise RuntimeError("boom")
            return await real(vector, k, owner)

        store.asearch = flaky
        orchestrator = RetrievalOrchestrator(
            make_enhancer(["revenue growth", "subscription revenue"]), keyed_embeddings(), store
        )
        results = await orchestrator.retrieve("revenue growth", k=4)

        assert calls["n"] == 2
        assert len(results) == 4

    @pytest.mark.asyncio
    async def test_owner_passed_to_store(self):
        store = seeded_store()
        store.asearch = AsyncMock(return_value=[])
        owner = OwnerScope(session_id="s1")
        orchestrator = RetrievalOrchestrator(make_enhancer(["revenue growth"]), keyed_embeddings(), store)

        assert await orchestrator.retrieve("revenue growth", k=5, owner=owner) == []
        store.asearch.assert_awaited_once()
        assert store.asearch.await_args.args[2] == owner

    @pytest.mark.asyncio
    async def test_hanging_vector_db_still_answers_from_memory(self):
        client = Mock()
        client.upsert.return_value = {"ok": True, "count": 4}

        def hang(*args):
            time.sleep(0.5)
            return {"ok": True, "results": []}

        client.search.side_effect = hang
        store = seeded_store(client)
        store.search_timeout = 0.1
        orchestrator = RetrievalOrchestrator(make_enhancer(["revenue growth"]), keyed_embeddings(), store)

        results = await orchestrator.retrieve("revenue growth", k=2)

        assert [r.chunk_id for r in results][0] in {"c-rev", "c-mix"}
        assert len(results) == 2

    @pytest.mark.asyncio
    async def test_configuration_error_raised_after_all_searches_finish(self):
        store = seeded_store()
        finished = []

        async def search(vector, k, owner=None):
            if vector[0] == 1.0:
                raise ConfigurationError("dimension mismatch")
            await asyncio.sleep(0.05)
            finished.append(vector)
            return []

        store.asearch = search
        orchestrator = RetrievalOrchestrator(
            make_enhancer(["revenue growth", "subscription revenue"]), keyed_embeddings(), store
        )

        with pytest.raises(ConfigurationError):
            await orchestrator.retrieve("revenue growth", k=3)
        assert finished == [[0.0, 1.0, 0.0, 0.0]]
