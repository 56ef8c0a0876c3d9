"""
RAG Pipeline

Entry point for answer generation: retrieve -> synthesize -> cite.
Produces the RetrievalContext handed to the answer-generating model.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..common.schemas import OwnerScope, RAGResult
from .citations import CitationBuilder, EnhancedCitation, format_citation_for_display
from .orchestrator import RetrievalOrchestrator
from .query_enhancer import ChatTurn
from .synthesizer import ContextSynthesizer

logger = logging.getLogger("paperlm.retriever.pipeline")


@dataclass
class RetrievalContext:
    """Grounded context for one question"""
    query: str
    context_text: str = ""
    summary: str = ""
    relevance_score: float = 0.0
    citations: List[EnhancedCitation] = field(default_factory=list)
    results: List[RAGResult] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.results

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "context": self.context_text,
            "summary": self.summary,
            "relevance_score": self.relevance_score,
            "citations": [
                {
                    "id": c.id,
                    "document_id": c.metadata.document_id,
                    "display_title": c.display_title,
                    "exact_reference": c.exact_reference,
                    "page_number": c.page_number,
                    "section_title": c.section_title,
                    "snippet": c.contextual_snippet,
                    "confidence": c.confidence,
                    "source_type": c.source_type.value,
                    "apa": c.citation_format.apa,
                    "mla": c.citation_format.mla,
                    "chicago": c.citation_format.chicago,
                }
                for c in self.citations
            ],
        }


class RAGPipeline:
    """
    Wires retrieval, synthesis and citation building.

    Args:
        orchestrator: Multi-strategy retrieval
        synthesizer: Context condensation
        citations: Citation builder
        max_context_length: Characters of synthesized context
    """

    def __init__(
        self,
        orchestrator: RetrievalOrchestrator,
        synthesizer: ContextSynthesizer,
        citations: Optional[CitationBuilder] = None,
        max_context_length: int = 2000,
    ):
        self.orchestrator = orchestrator
        self.synthesizer = synthesizer
        self.citations = citations or CitationBuilder()
        self.max_context_length = max_context_length

    async def answer_context(
        self,
        query: str,
        chat_history: Optional[List[ChatTurn]] = None,
        k: int = 10,
        owner: Optional[OwnerScope] = None,
    ) -> RetrievalContext:
        """
        Build the grounded context for a question.

        No matching chunks is not an error: the returned context is empty.
        Citations that fail validation are dropped.
        """
        results = await self.orchestrator.retrieve(query, chat_history, k, owner)
        if not results:
            logger.info("No results for query (%d chars)", len(query or ""))
            return RetrievalContext(query=query)

        rewrite = await self.synthesizer.synthesize(
            [r.page_content for r in results], query, self.max_context_length
        )

        citations = []
        for citation in self.citations.build_all(results, query):
            validation = self.citations.validate(citation)
            if validation.is_valid:
                citations.append(citation)
            else:
                logger.debug("Dropped citation %s: %s", citation.id, "; ".join(validation.issues))

        return RetrievalContext(
            query=query,
            context_text=rewrite.rewritten_context,
            summary=rewrite.condensed_summary,
            relevance_score=rewrite.relevance_score,
            citations=citations,
            results=results,
        )


def format_context_for_display(context: RetrievalContext) -> str:
    """Markdown rendering of a context with numbered sources."""
    if context.is_empty:
        return f'## No sources found for: "{context.query}"'

    lines = [f'## Context for: "{context.query}"', ""]
    if context.summary:
        lines.extend([f"**Summary**: {context.summary}", ""])
    lines.extend([context.context_text, ""])
    if context.citations:
        lines.append("### Sources")
        for i, citation in enumerate(context.citations, 1):
            lines.append(f"{i}. {format_citation_for_display(citation)}")
    return "\n".join(lines)
