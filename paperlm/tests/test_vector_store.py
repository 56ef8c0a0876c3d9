"""Tests for cosine similarity, the in-memory store, the VectorStore facade and Milvus helpers"""

import asyncio
import time
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import Mock

import pytest

from paperlm.common.errors import ConfigurationError
from paperlm.common.schemas import ChunkPayload, OwnerScope, VectorRecord
from paperlm.common.vector_client import MilvusVectorClient, build_filter
from paperlm.common.vector_store import MemoryVectorStore, VectorStore, cosine_similarity


DIM = 3


def record(chunk_id, vector, document_id="doc1", user_id="", session_id="", content=None):
    return VectorRecord(
        vector=vector,
        payload=ChunkPayload(
            content=content or f"content of {chunk_id}",
            document_id=document_id,
            chunk_id=chunk_id,
            file_name=f"{document_id}.pdf",
            user_id=user_id,
            session_id=session_id,
        ),
    )


class FakeClock:
    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now


class TestCosineSimilarity:
    def test_self_similarity_is_one(self):
        v = [0.3, -1.2, 4.0]
        assert cosine_similarity(v, v) == pytest.approx(1.0, abs=1e-6)

    def test_symmetric(self):
        a, b = [1.0, 2.0, 3.0], [-2.0, 0.5, 1.0]
        assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a))

    def test_zero_vector_does_not_divide_by_zero(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0

    def test_dimension_mismatch(self):
        with pytest.raises(ValueError, match="mismatch"):
            cosine_similarity([1.0], [1.0, 2.0])


class TestOwnerScope:
    def test_both_ids_rejected(self):
        with pytest.raises(ValueError):
            OwnerScope(user_id="u1", session_id="s1")

    def test_arena_keys_and_filters(self):
        assert OwnerScope(user_id="u1").arena_key == "user:u1"
        assert OwnerScope(session_id="s1").filter_field == ("sessionId", "s1")
        assert OwnerScope().arena_key == "_unscoped"
        assert OwnerScope().filter_field is None


class TestMemoryVectorStore:
    def test_search_orders_by_similarity(self):
        store = MemoryVectorStore()
        store.upsert([
            record("c1", [1.0, 0.0, 0.0]),
            record("c2", [0.0, 1.0, 0.0]),
            record("c3", [0.9, 0.1, 0.0]),
        ])
        hits = store.search([1.0, 0.0, 0.0], k=2)
        assert [r.payload.chunk_id for _, r in hits] == ["c1", "c3"]

    def test_ties_keep_insertion_order(self):
        store = MemoryVectorStore()
        store.upsert([record(f"c{i}", [1.0, 1.0, 0.0]) for i in range(5)])
        hits = store.search([1.0, 1.0, 0.0], k=5)
        assert [r.payload.chunk_id for _, r in hits] == ["c0", "c1", "c2", "c3", "c4"]

    def test_upsert_overwrites_by_point_id(self):
        store = MemoryVectorStore()
        original = record("c1", [1.0, 0.0, 0.0])
        store.upsert([original])
        updated = VectorRecord(point_id=original.point_id, vector=[0.0, 1.0, 0.0], payload=original.payload)
        store.upsert([updated])
        assert store.count() == 1
        assert store.search([0.0, 1.0, 0.0], k=1)[0][0] == pytest.approx(1.0)

    def test_owner_scoping(self):
        store = MemoryVectorStore()
        store.upsert([
            record("mine", [1.0, 0.0, 0.0], user_id="alice"),
            record("theirs", [1.0, 0.0, 0.0], user_id="bob"),
            record("anon", [1.0, 0.0, 0.0], session_id="s1"),
        ])
        hits = store.search([1.0, 0.0, 0.0], k=10, owner=OwnerScope(user_id="alice"))
        assert [r.payload.chunk_id for _, r in hits] == ["mine"]
        assert store.count() == 3

    def test_expire_sessions_only_drops_old_session_entries(self):
        start = datetime(2026, 1, 1, tzinfo=timezone.utc)
        clock = FakeClock(start)
        store = MemoryVectorStore(clock=clock)
        store.upsert([record("old", [1.0, 0.0, 0.0], session_id="s1")])
        store.upsert([record("user", [1.0, 0.0, 0.0], user_id="u1")])
        clock.now = start + timedelta(hours=1, minutes=30)
        store.upsert([record("new", [1.0, 0.0, 0.0], session_id="s1")])

        clock.now = start + timedelta(hours=2, minutes=1)
        removed = store.expire_sessions(max_age=timedelta(hours=2))

        assert removed == 1
        remaining = {r.payload.chunk_id for _, r in store.search([1.0, 0.0, 0.0], k=10)}
        assert remaining == {"user", "new"}

    def test_delete_document_and_drop_owner(self):
        store = MemoryVectorStore()
        store.upsert([
            record("a", [1.0, 0.0, 0.0], document_id="d1", user_id="u1"),
            record("b", [1.0, 0.0, 0.0], document_id="d2", user_id="u1"),
            record("c", [1.0, 0.0, 0.0], document_id="d1", session_id="s1"),
        ])
        assert store.delete_document("d1") == 2
        assert store.drop_owner(OwnerScope(user_id="u1")) == 1
        assert store.count() == 0


class FailingClient:
    def __init__(self):
        self.upserts = 0

    def upsert(self, records):
        self.upserts += 1
        raise ConnectionError("milvus down")

    def search(self, vector, limit, owner_filter=None):
        raise ConnectionError("milvus down")

    def delete_document(self, document_id):
        return {"ok": False, "error": "milvus down"}

    def count(self):
        return {"ok": False, "error": "milvus down"}


class TestVectorStoreFacade:
    def test_upsert_rejects_wrong_dimension(self):
        store = VectorStore(None, DIM)
        with pytest.raises(ConfigurationError):
            store.upsert([record("c1", [1.0, 0.0])])

    def test_primary_failure_keeps_records_in_memory(self):
        client = FailingClient()
        store = VectorStore(client, DIM)
        backend = store.upsert([record("c1", [1.0, 0.0, 0.0])])

        assert backend == "memory"
        assert client.upserts == 1
        results = store.search([1.0, 0.0, 0.0], k=3)
        assert [r.chunk_id for r in results] == ["c1"]
        assert results[0].metadata.confidence == pytest.approx(1.0, abs=1e-6)

    def test_primary_results_preferred(self):
        client = Mock()
        client.upsert.return_value = {"ok": True, "count": 1}
        client.search.return_value = {
            "ok": True,
            "results": [{
                "id": "p1",
                "score": 0.87,
                "payload": {"content": "from milvus", "documentId": "d9", "chunkId": "d9-chunk-0",
                            "fileName": "d9.pdf", "qualityScore": 0.7},
            }],
        }
        store = VectorStore(client, DIM)
        assert store.upsert([record("c1", [1.0, 0.0, 0.0])]) == "milvus"

        results = store.search([1.0, 0.0, 0.0], k=3, owner=OwnerScope(user_id="u1"))

        assert results[0].chunk_id == "d9-chunk-0"
        assert results[0].metadata.confidence == pytest.approx(0.87)
        client.search.assert_called_once_with([1.0, 0.0, 0.0], 3, ("userId", "u1"))

    def test_empty_primary_falls_back_to_memory(self):
        client = Mock()
        client.upsert.return_value = {"ok": True, "count": 1}
        client.search.return_value = {"ok": True, "results": []}
        store = VectorStore(client, DIM)
        store.upsert([record("c1", [1.0, 0.0, 0.0])])

        assert [r.chunk_id for r in store.search([1.0, 0.0, 0.0], k=3)] == ["c1"]

    @pytest.mark.asyncio
    async def test_asearch_timeout_uses_memory(self):
        client = Mock()
        client.upsert.return_value = {"ok": True, "count": 1}

        def slow_search(*args):
            time.sleep(0.5)
            return {"ok": True, "results": []}

        client.search.side_effect = slow_search
        store = VectorStore(client, DIM, search_timeout=0.05)
        store.upsert([record("c1", [1.0, 0.0, 0.0])])

        results = await store.asearch([1.0, 0.0, 0.0], k=1)
        assert [r.chunk_id for r in results] == ["c1"]

    @pytest.mark.asyncio
    async def test_asearch_error_uses_memory(self):
        store = VectorStore(FailingClient(), DIM)
        store.upsert([record("c1", [0.0, 1.0, 0.0])])
        results = await store.asearch([0.0, 1.0, 0.0], k=1)
        assert results[0].chunk_id == "c1"

    def test_query_dimension_checked(self):
        store = VectorStore(None, DIM)
        with pytest.raises(ConfigurationError):
            store.search([1.0], k=1)

    def test_health_and_delete(self):
        store = VectorStore(FailingClient(), DIM)
        store.upsert([record("c1", [1.0, 0.0, 0.0], document_id="d1")])

        health = store.health()
        assert health["primary"] == "unavailable"
        assert health["memory_count"] == 1

        result = store.delete_document("d1")
        assert result["memory_removed"] == 1
        assert result["ok"] is False
        assert store.memory.count() == 0


class TestMilvusHelpers:
    def test_build_filter_escapes_values(self):
        assert build_filter(("userId", 'a"b')) == 'userId == "a\\"b"'
        assert build_filter(None) == ""
        with pytest.raises(ValueError):
            build_filter(("nope", "x"))

    def test_parse_search_results(self):
        entity = {"content": "hello", "documentId": "d1", "chunkId": "d1-chunk-0", "chunkIndex": 0,
                  "qualityScore": 0.5, "fileName": "d1.pdf"}
        hit = SimpleNamespace(id="p1", distance=0.91, entity=entity)
        parsed = MilvusVectorClient.parse_search_results([[hit]])

        assert parsed == [{"id": "p1", "score": pytest.approx(0.91), "payload": entity}]
        assert MilvusVectorClient.parse_search_results([]) == []

    def test_client_reports_errors_instead_of_raising(self):
        client = MilvusVectorClient(uri="http://127.0.0.1:1", dimension=DIM)
        client._ensure_initialized = Mock(side_effect=ConnectionError("refused"))

        assert client.search([1.0, 0.0, 0.0], 3)["ok"] is False
        assert client.upsert([record("c1", [1.0, 0.0, 0.0])])["ok"] is False
        assert client.count()["ok"] is False
        assert client.is_available is False
