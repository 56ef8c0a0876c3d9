"""
Milvus Client

Thin wrapper over a pymilvus collection holding chunk vectors and their flat
payload. Every operation returns ``{"ok": bool, ...}`` and never raises for
backend failures, so callers can fall back to the in-memory store.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from pymilvus import Collection, CollectionSchema, DataType, FieldSchema, connections, utility

from .schemas import VectorRecord

logger = logging.getLogger("paperlm.common.vector_client")

PAYLOAD_FIELDS = [
    "content", "documentId", "chunkId", "chunkIndex", "startChar", "endChar",
    "fileName", "fileType", "fileSize", "sourceUrl", "author", "contentType",
    "qualityScore", "userId", "sessionId", "uploadedAt",
]

_INT_FIELDS = {"chunkIndex", "startChar", "endChar", "fileSize"}
_FLOAT_FIELDS = {"qualityScore"}


def build_filter(field_value: Optional[Tuple[str, str]]) -> str:
    """Equality filter expression on a payload field, '' for none."""
    if not field_value:
        return ""
    key, value = field_value
    if key not in PAYLOAD_FIELDS:
        raise ValueError(f"Unknown payload field: {key}")
    return f"{key} == {json.dumps(value)}"


class MilvusVectorClient:
    """
    Direct client to a Milvus collection.

    The connection and collection are created lazily on first use.
    """

    def __init__(
        self,
        uri: str = "http://localhost:19530",
        token: str = "",
        collection_name: str = "paperlm_documents",
        dimension: int = 1536,
        alias: str = "paperlm",
    ):
        self._uri = uri
        self._token = token
        self.collection_name = collection_name
        self.dimension = dimension
        self._alias = alias
        self._collection: Optional[Collection] = None

    def _schema(self) -> CollectionSchema:
        fields = [
            FieldSchema(name="id", dtype=DataType.VARCHAR, is_primary=True, max_length=64),
            FieldSchema(name="vector", dtype=DataType.FLOAT_VECTOR, dim=self.dimension),
            FieldSchema(name="content", dtype=DataType.VARCHAR, max_length=65535),
            FieldSchema(name="documentId", dtype=DataType.VARCHAR, max_length=256),
            FieldSchema(name="chunkId", dtype=DataType.VARCHAR, max_length=320),
            FieldSchema(name="chunkIndex", dtype=DataType.INT64),
            FieldSchema(name="startChar", dtype=DataType.INT64),
            FieldSchema(name="endChar", dtype=DataType.INT64),
            FieldSchema(name="fileName", dtype=DataType.VARCHAR, max_length=1024),
            FieldSchema(name="fileType", dtype=DataType.VARCHAR, max_length=256),
            FieldSchema(name="fileSize", dtype=DataType.INT64),
            FieldSchema(name="sourceUrl", dtype=DataType.VARCHAR, max_length=2048),
            FieldSchema(name="author", dtype=DataType.VARCHAR, max_length=512),
            FieldSchema(name="contentType", dtype=DataType.VARCHAR, max_length=64),
            FieldSchema(name="qualityScore", dtype=DataType.FLOAT),
            FieldSchema(name="userId", dtype=DataType.VARCHAR, max_length=256),
            FieldSchema(name="sessionId", dtype=DataType.VARCHAR, max_length=256),
            FieldSchema(name="uploadedAt", dtype=DataType.VARCHAR, max_length=64),
        ]
        return CollectionSchema(fields=fields, description="paperlm document chunks")

    def _ensure_initialized(self) -> Collection:
        """Lazily connect and create/load the collection"""
        if self._collection is not None:
            return self._collection

        if not connections.has_connection(self._alias):
            kwargs = {"alias": self._alias, "uri": self._uri}
            if self._token:
                kwargs["token"] = self._token
            connections.connect(**kwargs)

        if not utility.has_collection(self.collection_name, using=self._alias):
            collection = Collection(self.collection_name, schema=self._schema(), using=self._alias)
            collection.create_index(
                field_name="vector",
                index_params={
                    "index_type": "IVF_FLAT",
                    "metric_type": "COSINE",
                    "params": {"nlist": 1024},
                },
            )
            logger.info("Created Milvus collection %s (dim=%d)", self.collection_name, self.dimension)
        else:
            collection = Collection(self.collection_name, using=self._alias)

        collection.load()
        self._collection = collection
        return collection

    @property
    def is_available(self) -> bool:
        try:
            self._ensure_initialized()
            return True
        except Exception as e:
            logger.debug("Milvus unavailable: %s", e)
            return False

    def upsert(self, records: List[VectorRecord]) -> Dict[str, Any]:
        """Upsert records keyed by point id."""
        if not records:
            return {"ok": True, "count": 0}
        try:
            collection = self._ensure_initialized()
            rows = []
            for record in records:
                row = record.payload.to_flat()
                row["id"] = record.point_id
                row["vector"] = record.vector
                rows.append(row)
            collection.upsert(rows)
            collection.flush()
            return {"ok": True, "count": len(rows)}
        except Exception as e:
            logger.warning("Milvus upsert of %d records failed: %s", len(records), e)
            return {"ok": False, "error": str(e)}

    def search(
        self,
        vector: List[float],
        limit: int,
        owner_filter: Optional[Tuple[str, str]] = None,
    ) -> Dict[str, Any]:
        """
        Nearest-neighbour search by cosine similarity.

        Returns:
            {"ok": True, "results": [{"id", "score", "payload"}, ...]} best first
        """
        try:
            collection = self._ensure_initialized()
            expr = build_filter(owner_filter)
            kwargs = {}
            if expr:
                kwargs["expr"] = expr
            raw = collection.search(
                data=[vector],
                anns_field="vector",
                param={"metric_type": "COSINE", "params": {"nprobe": 16}},
                limit=limit,
                output_fields=PAYLOAD_FIELDS,
                **kwargs,
            )
            return {"ok": True, "results": self.parse_search_results(raw)}
        except Exception as e:
            logger.warning("Milvus search failed: %s", e)
            return {"ok": False, "error": str(e)}

    @staticmethod
    def parse_search_results(raw: Any) -> List[Dict[str, Any]]:
        if not raw:
            return []
        hits = []
        for hit in raw[0]:
            payload = {}
            for name in PAYLOAD_FIELDS:
                value = hit.entity.get(name)
                if value is None:
                    continue
                if name in _INT_FIELDS:
                    value = int(value)
                elif name in _FLOAT_FIELDS:
                    value = float(value)
                payload[name] = value
            hits.append({"id": hit.id, "score": float(hit.distance), "payload": payload})
        return hits

    def delete_document(self, document_id: str) -> Dict[str, Any]:
        try:
            collection = self._ensure_initialized()
            result = collection.delete(expr=build_filter(("documentId", document_id)))
            return {"ok": True, "count": getattr(result, "delete_count", 0)}
        except Exception as e:
            logger.warning("Milvus delete of document %s failed: %s", document_id, e)
            return {"ok": False, "error": str(e)}

    def count(self) -> Dict[str, Any]:
        try:
            collection = self._ensure_initialized()
            return {"ok": True, "count": collection.num_entities}
        except Exception as e:
            return {"ok": False, "error": str(e)}
