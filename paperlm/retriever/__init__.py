"""
Retriever - Grounded context for a question

Key Components:
- QueryEnhancer: HyDE, refined sub-queries and conversation expansion
- RetrievalOrchestrator: Concurrent multi-strategy search, dedup and ranking
- ContextSynthesizer: LLM condensation of the retrieved passages
- CitationBuilder: Page/section-aware citations in APA, MLA and Chicago
- RAGPipeline: retrieve -> synthesize -> cite
"""

from .query_enhancer import QueryEnhancer, EnhancedQuery, HyDEResult
from .orchestrator import RetrievalOrchestrator, RankingWeights, rank_results
from .synthesizer import ContextSynthesizer, ContextRewriteResult
from .citations import CitationBuilder, EnhancedCitation, CitationValidation, format_citation_for_display
from .pipeline import RAGPipeline, RetrievalContext, format_context_for_display

__all__ = [
    "QueryEnhancer",
    "EnhancedQuery",
    "HyDEResult",
    "RetrievalOrchestrator",
    "RankingWeights",
    "rank_results",
    "ContextSynthesizer",
    "ContextRewriteResult",
    "CitationBuilder",
    "EnhancedCitation",
    "CitationValidation",
    "format_citation_for_display",
    "RAGPipeline",
    "RetrievalContext",
    "format_context_for_display",
]
