"""
paperlm MCP Server

Exposes ingestion and grounded retrieval as MCP tools.

Transport: stdio.

Expected MCP Tool Return Format:
{
    "ok": bool,
    "results": Any,          # Present if ok is True
    "error": str            # Present if ok is False
}
"""

import argparse
import asyncio
import logging
import signal
import sys
from datetime import timedelta
from typing import Annotated, Any, Dict, List, Optional

import numpy as np
from dotenv import load_dotenv
from fastmcp import FastMCP
from mcp.types import ToolAnnotations
from pydantic import Field, ValidationError

from ..common.config import (
    PaperLMConfig,
    llm_model_for,
    load_config,
    resolve_llm_provider,
    validate_config,
)
from ..common.embedding_service import EmbeddingService
from ..common.errors import ConfigurationError
from ..common.llm_client import LLMClient
from ..common.schemas import DocumentSource, OwnerScope
from ..common.vector_client import MilvusVectorClient
from ..common.vector_store import VectorStore
from ..ingest.chunker import TextChunker
from ..ingest.indexer import DocumentIndexer
from ..retriever.citations import CitationBuilder
from ..retriever.orchestrator import RankingWeights, RetrievalOrchestrator
from ..retriever.pipeline import RAGPipeline
from ..retriever.query_enhancer import QueryEnhancer
from ..retriever.synthesizer import ContextSynthesizer

logger = logging.getLogger("paperlm.server")


class PaperLMServerApp:
    """
    Main application class for the MCP server.

    All components are injected; ``build_app`` wires them from configuration.
    """

    def __init__(
        self,
        pipeline: RAGPipeline,
        indexer: DocumentIndexer,
        store: VectorStore,
        mcp_server_name: str = "paperlm",
        default_topk: int = 10,
        session_ttl: timedelta = timedelta(hours=2),
        store_timeout: float = 30.0,
    ) -> None:
        self.pipeline = pipeline
        self.indexer = indexer
        self.store = store
        self.default_topk = default_topk
        self.session_ttl = session_ttl
        self.store_timeout = store_timeout
        self.mcp = FastMCP(name=mcp_server_name)

        # ---------- MCP Tools: Ingest Document ---------- #
        @self.mcp.tool(
            name="ingest_document",
            description=(
                "Chunk, embed and store a document's extracted text so it can be searched. "
                "Scope it to a user or to an anonymous session (not both)."
            ),
            annotations=ToolAnnotations(readOnlyHint=False, destructiveHint=False),
        )
        async def tool_ingest_document(
            document_id: Annotated[str, Field(description="unique document id")],
            content: Annotated[str, Field(description="extracted plain text of the document")],
            file_name: Annotated[str, Field(description="original file name, e.g. report.pdf")] = "",
            file_type: Annotated[str, Field(description="MIME type or extension")] = "",
            file_size: Annotated[int, Field(description="file size in bytes")] = 0,
            source_url: Annotated[str, Field(description="source URL for web documents")] = "",
            author: Annotated[str, Field(description="document author, used in citations")] = "",
            user_id: Annotated[Optional[str], Field(description="owning user id")] = None,
            session_id: Annotated[Optional[str], Field(description="owning anonymous session id")] = None,
        ) -> Dict[str, Any]:
            try:
                source = DocumentSource(
                    document_id=document_id,
                    content=content,
                    file_name=file_name,
                    file_type=file_type,
                    file_size=file_size,
                    source_url=source_url,
                    author=author,
                    owner=OwnerScope(user_id=user_id, session_id=session_id),
                )
                report = await self.indexer.index_document(source)
            except (ValidationError, ValueError) as e:
                return {"ok": False, "error": f"Invalid document: {e}"}
            except ConfigurationError as e:
                logger.error("Configuration error during ingestion: %s", e)
                return {"ok": False, "error": f"Configuration error: {e}"}
            except Exception as e:
                logger.error("Ingestion of %s failed: %s", document_id, e)
                return {"ok": False, "error": str(e)}
            return {"ok": True, "results": report.to_dict()}

        # ---------- MCP Tools: Retrieve Context ---------- #
        @self.mcp.tool(
            name="retrieve_context",
            description=(
                "Retrieve a grounded context with citations for a question over the "
                "caller's documents. Uses HyDE, refined sub-queries and conversation "
                "expansion, then ranks and condenses the matching passages."
            ),
            annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False),
        )
        async def tool_retrieve_context(
            query: Annotated[str, Field(description="natural-language question")],
            chat_history: Annotated[
                Optional[List[Dict[str, str]]],
                Field(description="recent turns as {role, content} objects, oldest first"),
            ] = None,
            topk: Annotated[Optional[int], Field(description="number of passages to return")] = None,
            user_id: Annotated[Optional[str], Field(description="restrict to this user's documents")] = None,
            session_id: Annotated[Optional[str], Field(description="restrict to this session's documents")] = None,
        ) -> Dict[str, Any]:
            try:
                owner = None
                if user_id or session_id:
                    owner = OwnerScope(user_id=user_id, session_id=session_id)
                context = await self.pipeline.answer_context(
                    query, chat_history or [], topk or self.default_topk, owner
                )
            except (ValidationError, ValueError) as e:
                return {"ok": False, "error": f"Invalid request: {e}"}
            except Exception as e:
                logger.error("Retrieval failed: %s", e)
                return {"ok": False, "error": str(e)}
            return {"ok": True, "results": context.to_dict()}

        # ---------- MCP Tools: Delete Document ---------- #
        @self.mcp.tool(
            name="delete_document",
            description="Delete every stored chunk of a document.",
            annotations=ToolAnnotations(readOnlyHint=False, destructiveHint=True),
        )
        async def tool_delete_document(
            document_id: Annotated[str, Field(description="document id to delete")],
        ) -> Dict[str, Any]:
            try:
                result = await self._offload(self.indexer.delete_document, document_id)
            except asyncio.TimeoutError:
                logger.warning("Delete of %s timed out after %.1fs", document_id, self.store_timeout)
                return {"ok": False, "error": f"Vector store did not respond within {self.store_timeout}s"}
            if not result.get("ok"):
                return {"ok": False, "error": result.get("primary", {}).get("error", "delete failed")}
            return {"ok": True, "results": {"memory_removed": result.get("memory_removed", 0)}}

        # ---------- MCP Tools: Expire Sessions ---------- #
        @self.mcp.tool(
            name="expire_sessions",
            description="Drop session-scoped documents older than the session lifetime from memory.",
            annotations=ToolAnnotations(readOnlyHint=False, destructiveHint=True),
        )
        async def tool_expire_sessions(
            max_age_hours: Annotated[
                Optional[float], Field(description="override the configured session lifetime (hours)")
            ] = None,
        ) -> Dict[str, Any]:
            max_age = timedelta(hours=max_age_hours) if max_age_hours is not None else self.session_ttl
            removed = self.store.expire_sessions(max_age=max_age)
            return {"ok": True, "results": {"removed": removed}}

        # ---------- MCP Tools: Store Status ---------- #
        @self.mcp.tool(
            name="store_status",
            description="Report vector store health: primary backend status and in-memory counts.",
            annotations=ToolAnnotations(readOnlyHint=True, destructiveHint=False),
        )
        async def tool_store_status() -> Dict[str, Any]:
            try:
                health = await self._offload(self.store.health)
            except asyncio.TimeoutError:
                logger.warning("Store status timed out after %.1fs", self.store_timeout)
                return {"ok": False, "error": f"Vector store did not respond within {self.store_timeout}s"}
            return {"ok": True, "results": health}

    async def _offload(self, fn, *args):
        """Run a blocking store call in a worker thread under ``store_timeout``."""
        return await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout=self.store_timeout)

    def run(self) -> None:
        """Runs the MCP server using stdio transport."""
        self.mcp.run(transport="stdio")


def build_app(config: PaperLMConfig, mcp_server_name: str = "paperlm", use_milvus: bool = True) -> PaperLMServerApp:
    """Wire every component from configuration."""
    validate_config(config)

    provider = resolve_llm_provider(config.llm)
    llm = LLMClient(
        provider=provider,
        model=llm_model_for(config.llm, provider),
        anthropic_api_key=config.llm.anthropic_api_key,
        openai_api_key=config.llm.openai_api_key,
        google_api_key=config.llm.google_api_key,
        timeout=config.llm.timeout,
    )

    rng = np.random.default_rng(config.embedding.seed) if config.embedding.seed >= 0 else None
    embeddings = EmbeddingService(
        mode=config.embedding.mode,
        model=config.embedding.model,
        dimension=config.embedding.dimension,
        batch_size=config.embedding.batch_size,
        concurrency=config.embedding.concurrency,
        timeout=config.embedding.timeout,
        api_key=config.llm.openai_api_key,
        rng=rng,
    )

    client = None
    if use_milvus:
        client = MilvusVectorClient(
            uri=config.milvus.uri,
            token=config.milvus.token,
            collection_name=config.milvus.collection,
            dimension=config.embedding.dimension,
        )
    store = VectorStore(client, config.embedding.dimension, search_timeout=config.milvus.timeout)

    retriever = config.retriever
    enhancer = QueryEnhancer(
        llm,
        max_strategies=retriever.max_strategies,
        use_hyde=retriever.use_hyde,
        use_expansion=retriever.use_expansion,
        history_turns=retriever.history_turns,
        timeout=config.llm.timeout,
    )
    weights = RankingWeights(
        keyword=retriever.keyword_weight,
        confidence=retriever.confidence_weight,
        quality=retriever.quality_weight,
        quality_norm_length=retriever.quality_norm_length,
    )
    orchestrator = RetrievalOrchestrator(
        enhancer,
        embeddings,
        store,
        concurrency=retriever.concurrency,
        weights=weights,
    )
    pipeline = RAGPipeline(
        orchestrator,
        ContextSynthesizer(llm, timeout=config.llm.timeout),
        CitationBuilder(min_confidence=retriever.min_citation_confidence),
        max_context_length=retriever.max_context_length,
    )
    chunker = TextChunker(
        chunk_size=config.chunking.chunk_size,
        chunk_overlap=config.chunking.chunk_overlap,
        preserve_structure=config.chunking.preserve_structure,
    )
    indexer = DocumentIndexer(chunker, embeddings, store)

    return PaperLMServerApp(
        pipeline=pipeline,
        indexer=indexer,
        store=store,
        mcp_server_name=mcp_server_name,
        default_topk=retriever.topk,
        session_ttl=timedelta(hours=config.session.ttl_hours),
        store_timeout=config.milvus.timeout,
    )


def main(argv: Optional[List[str]] = None) -> None:
    load_dotenv()

    parser = argparse.ArgumentParser(description="Run the paperlm MCP server (stdio).")
    parser.add_argument("--server-name", default="paperlm", help="Advertised MCP server name.")
    parser.add_argument("--milvus-uri", default=None, help="Milvus URI (overrides config).")
    parser.add_argument("--collection", default=None, help="Milvus collection name.")
    parser.add_argument(
        "--embedding-mode", default=None, choices=("openai", "femb"), help="Embedding backend.",
    )
    parser.add_argument("--embedding-model", default=None, help="Embedding model name.")
    parser.add_argument("--memory-only", action="store_true", help="Run without Milvus.")
    parser.add_argument("--log-level", default="INFO", help="Logging level.")
    args = parser.parse_args(argv)

    # stdout carries the MCP protocol
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = load_config()
    if args.milvus_uri:
        config.milvus.uri = args.milvus_uri
    if args.collection:
        config.milvus.collection = args.collection
    if args.embedding_mode:
        config.embedding.mode = args.embedding_mode
    if args.embedding_model:
        config.embedding.model = args.embedding_model

    try:
        app = build_app(config, mcp_server_name=args.server_name, use_milvus=not args.memory_only)
    except ConfigurationError as e:
        logger.error("Invalid configuration: %s", e)
        raise SystemExit(2)

    def _handle_shutdown(signum, frame):
        raise SystemExit(0)
    for sig in (signal.SIGINT, getattr(signal, "SIGTERM", None)):
        if sig is not None:
            signal.signal(sig, _handle_shutdown)

    app.run()


if __name__ == "__main__":
    main()
