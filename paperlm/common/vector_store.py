"""
Vector Store

Milvus as the primary backend with an in-memory store that mirrors every
upsert and answers searches whenever Milvus fails, times out, or comes back
empty.
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np

from .errors import ConfigurationError
from .schemas import ChunkPayload, OwnerScope, RAGResult, VectorRecord
from .vector_client import MilvusVectorClient

logger = logging.getLogger("paperlm.common.vector_store")

_EPSILON = 1e-8


def cosine_similarity(a: List[float], b: List[float]) -> float:
    """dot(a, b) / (|a| * |b| + 1e-8)"""
    v1 = np.asarray(a, dtype=float)
    v2 = np.asarray(b, dtype=float)
    if v1.shape != v2.shape:
        raise ValueError(f"Vector dimension mismatch: {v1.shape} vs {v2.shape}")
    return float(np.dot(v1, v2) / (np.linalg.norm(v1) * np.linalg.norm(v2) + _EPSILON))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def owner_of(payload: ChunkPayload) -> OwnerScope:
    return OwnerScope(user_id=payload.user_id or None, session_id=payload.session_id or None)


@dataclass(frozen=True)
class _Entry:
    record: VectorRecord
    seq: int
    stored_at: datetime


class MemoryVectorStore:
    """
    In-memory vector store partitioned into per-owner arenas.

    Arenas are replaced wholesale on every write, so a search iterating an
    arena snapshot never observes a half-applied write. Session arenas are
    dropped by calling ``expire_sessions``; nothing runs in the background.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._arenas: Dict[str, Dict[str, _Entry]] = {}
        self._seq = itertools.count()
        self._clock = clock or _utcnow

    def upsert(self, records: List[VectorRecord]) -> int:
        now = self._clock()
        by_arena: Dict[str, List[VectorRecord]] = {}
        for record in records:
            by_arena.setdefault(owner_of(record.payload).arena_key, []).append(record)

        for key, batch in by_arena.items():
            arena = dict(self._arenas.get(key, {}))
            for record in batch:
                previous = arena.get(record.point_id)
                seq = previous.seq if previous else next(self._seq)
                arena[record.point_id] = _Entry(record=record, seq=seq, stored_at=now)
            self._arenas[key] = arena
        return len(records)

    def _snapshot(self, owner: Optional[OwnerScope]) -> List[_Entry]:
        if owner is None:
            entries: List[_Entry] = []
            for arena in list(self._arenas.values()):
                entries.extend(arena.values())
            return entries
        return list(self._arenas.get(owner.arena_key, {}).values())

    def search(
        self,
        query_vector: List[float],
        k: int,
        owner: Optional[OwnerScope] = None,
    ) -> List[Tuple[float, VectorRecord]]:
        """
        Top-k by descending cosine similarity; ties keep insertion order.

        With no owner every arena is searched.
        """
        if k <= 0:
            return []
        scored = [
            (cosine_similarity(query_vector, e.record.vector), e.seq, e.record)
            for e in self._snapshot(owner)
        ]
        scored.sort(key=lambda item: (-item[0], item[1]))
        return [(score, record) for score, _, record in scored[:k]]

    def expire_sessions(self, max_age: timedelta = timedelta(hours=2), now: Optional[datetime] = None) -> int:
        """Remove session-owned entries stored before ``now - max_age``."""
        cutoff = (now or self._clock()) - max_age
        removed = 0
        for key in [k for k in self._arenas if k.startswith("session:")]:
            arena = self._arenas.get(key, {})
            kept = {pid: e for pid, e in arena.items() if e.stored_at >= cutoff}
            removed += len(arena) - len(kept)
            if kept:
                self._arenas[key] = kept
            else:
                self._arenas.pop(key, None)
        if removed:
            logger.info("Expired %d session-scoped vector(s)", removed)
        return removed

    def drop_owner(self, owner: OwnerScope) -> int:
        arena = self._arenas.pop(owner.arena_key, None)
        return len(arena) if arena else 0

    def delete_document(self, document_id: str) -> int:
        removed = 0
        for key in list(self._arenas):
            arena = self._arenas.get(key, {})
            kept = {pid: e for pid, e in arena.items() if e.record.payload.document_id != document_id}
            if len(kept) != len(arena):
                removed += len(arena) - len(kept)
                self._arenas[key] = kept
        return removed

    def count(self, owner: Optional[OwnerScope] = None) -> int:
        return len(self._snapshot(owner))


class VectorStore:
    """
    Facade over Milvus with in-memory fallback.

    Args:
        client: Milvus client, or None to run on memory alone
        dimension: Expected vector dimension
        memory: In-memory store (a fresh one by default)
        search_timeout: Seconds before an async primary search counts as failed
    """

    def __init__(
        self,
        client: Optional[MilvusVectorClient],
        dimension: int,
        memory: Optional[MemoryVectorStore] = None,
        search_timeout: float = 30.0,
    ) -> None:
        self.client = client
        self.dimension = dimension
        self.memory = memory if memory is not None else MemoryVectorStore()
        self.search_timeout = search_timeout

    def _check_dimension(self, vector: List[float], what: str) -> None:
        if len(vector) != self.dimension:
            raise ConfigurationError(
                f"{what} dimension {len(vector)} does not match configured dimension {self.dimension}"
            )

    def upsert(self, records: List[VectorRecord]) -> str:
        """
        Store records in memory and in Milvus.

        Returns:
            "milvus" when the primary accepted the records, otherwise "memory"

        Raises:
            ConfigurationError: a record's vector has the wrong dimension
        """
        for record in records:
            self._check_dimension(record.vector, "Record vector")
        if not records:
            return "memory"

        self.memory.upsert(records)

        if self.client is None:
            return "memory"
        try:
            result = self.client.upsert(records)
        except Exception as e:
            result = {"ok": False, "error": str(e)}
        if result.get("ok"):
            return "milvus"
        logger.warning(
            "Primary upsert of %d records failed, kept in memory: %s",
            len(records), result.get("error", "unknown error"),
        )
        return "memory"

    def _primary_results(self, result: Dict[str, Any]) -> List[RAGResult]:
        results = []
        for hit in result.get("results", []):
            payload = ChunkPayload.from_flat(hit.get("payload", {}))
            results.append(RAGResult.from_payload(payload, confidence=float(hit.get("score", 0.0))))
        return results

    def _memory_results(self, query_vector: List[float], k: int, owner: Optional[OwnerScope]) -> List[RAGResult]:
        return [
            RAGResult.from_payload(record.payload, confidence=score)
            for score, record in self.memory.search(query_vector, k, owner)
        ]

    def _search_primary(self, query_vector: List[float], k: int, owner: Optional[OwnerScope]) -> Dict[str, Any]:
        return self.client.search(query_vector, k, owner.filter_field if owner else None)

    def _resolve(
        self,
        result: Optional[Dict[str, Any]],
        query_vector: List[float],
        k: int,
        owner: Optional[OwnerScope],
    ) -> List[RAGResult]:
        if result is not None and result.get("ok"):
            try:
                primary = self._primary_results(result)
            except Exception as e:
                logger.warning("Could not parse primary search results: %s", e)
                primary = []
            if primary:
                return primary
        return self._memory_results(query_vector, k, owner)

    def search(
        self,
        query_vector: List[float],
        k: int,
        owner: Optional[OwnerScope] = None,
    ) -> List[RAGResult]:
        """Search Milvus, falling back to memory on failure or empty results."""
        self._check_dimension(query_vector, "Query vector")
        result = None
        if self.client is not None:
            try:
                result = self._search_primary(query_vector, k, owner)
            except Exception as e:
                logger.warning("Primary search failed, using memory: %s", e)
        return self._resolve(result, query_vector, k, owner)

    async def asearch(
        self,
        query_vector: List[float],
        k: int,
        owner: Optional[OwnerScope] = None,
    ) -> List[RAGResult]:
        """Async ``search``; a primary call exceeding the timeout counts as failed."""
        self._check_dimension(query_vector, "Query vector")
        result = None
        if self.client is not None:
            try:
                result = await asyncio.wait_for(
                    asyncio.to_thread(self._search_primary, query_vector, k, owner),
                    timeout=self.search_timeout,
                )
            except asyncio.TimeoutError:
                logger.warning("Primary search timed out after %.1fs, using memory", self.search_timeout)
            except Exception as e:
                logger.warning("Primary search failed, using memory: %s", e)
        return self._resolve(result, query_vector, k, owner)

    def delete_document(self, document_id: str) -> Dict[str, Any]:
        removed = self.memory.delete_document(document_id)
        primary: Dict[str, Any] = {"ok": True, "count": 0}
        if self.client is not None:
            try:
                primary = self.client.delete_document(document_id)
            except Exception as e:
                primary = {"ok": False, "error": str(e)}
        return {"ok": bool(primary.get("ok")), "memory_removed": removed, "primary": primary}

    def expire_sessions(self, max_age: timedelta = timedelta(hours=2), now: Optional[datetime] = None) -> int:
        return self.memory.expire_sessions(max_age=max_age, now=now)

    def health(self) -> Dict[str, Any]:
        status: Dict[str, Any] = {
            "dimension": self.dimension,
            "memory_count": self.memory.count(),
            "primary": "disabled",
        }
        if self.client is not None:
            count = self.client.count()
            status["primary"] = "ok" if count.get("ok") else "unavailable"
            if count.get("ok"):
                status["primary_count"] = count.get("count", 0)
            else:
                status["primary_error"] = count.get("error", "")
        return status
