"""
Context Synthesizer

Condenses retrieved passages into a coherent context for the answer
generator, with a one-to-two sentence summary.

Falls back to the raw passages when the LLM is unavailable or fails; the
relevance score is always computed locally from the final text.
"""

import logging
import re
from dataclasses import dataclass
from typing import List, Optional

from ..common.llm_client import LLMClient

logger = logging.getLogger("paperlm.retriever.synthesizer")

MAX_INPUT_CHARS = 4000
FALLBACK_SUMMARY_CHARS = 300


@dataclass
class ContextRewriteResult:
    """Synthesized context for one question"""
    rewritten_context: str
    relevance_score: float  # 0.0 to 1.0
    condensed_summary: str


REWRITE_PROMPT = """Rewrite and synthesize this content to directly answer the query: "{query}"

Content:
{content}

Instructions:
1. Extract only information relevant to the query
2. Rewrite in clear, coherent prose
3. Maintain factual accuracy
4. Remove redundancy and irrelevant details
5. Keep under {max_length} characters
6. Preserve important technical details and numbers

Rewritten content:"""

REWRITE_SYSTEM = "You condense retrieved document passages. Use only facts stated in them."

SUMMARY_PROMPT = """Summarize this content in 1-2 sentences:
{content}"""


def relevance_score(query: str, text: str) -> float:
    """Fraction of query keywords (longer than 3 chars) present in ``text``."""
    keywords = [w for w in re.findall(r"\w+", (query or "").lower()) if len(w) > 3]
    if not keywords:
        return 0.0
    lower = text.lower()
    return sum(1 for w in keywords if w in lower) / len(keywords)


def leading_sentences(text: str, limit: int = FALLBACK_SUMMARY_CHARS) -> str:
    """Whole leading sentences up to ``limit`` characters (hard cut if the first is longer)."""
    text = " ".join(text.split())
    if not text:
        return ""
    sentences = re.split(r"(?<=[.!?])\s+", text)
    summary = ""
    for sentence in sentences:
        candidate = f"{summary} {sentence}".strip()
        if len(candidate) > limit:
            break
        summary = candidate
    return summary or text[:limit].rstrip()


class ContextSynthesizer:
    """
    Rewrites retrieved chunks into a query-focused context.

    Args:
        llm_client: LLM used for rewriting and summarizing (optional)
        max_input_chars: Input budget for the concatenated chunks
        timeout: Seconds per LLM call
    """

    def __init__(
        self,
        llm_client: Optional[LLMClient] = None,
        max_input_chars: int = MAX_INPUT_CHARS,
        timeout: Optional[float] = None,
    ):
        self._llm = llm_client
        self.max_input_chars = max_input_chars
        self.timeout = timeout

    @property
    def has_llm(self) -> bool:
        return self._llm is not None and self._llm.is_available

    async def synthesize(self, chunks: List[str], query: str, max_length: int = 2000) -> ContextRewriteResult:
        """
        Synthesize a context from chunk texts.

        Args:
            chunks: Retrieved chunk texts, best first
            query: The user question
            max_length: Maximum characters of the returned context

        Returns:
            ContextRewriteResult; empty with score 0.0 when there are no chunks
        """
        chunks = [c for c in chunks if c and c.strip()]
        if not chunks:
            return ContextRewriteResult(rewritten_context="", relevance_score=0.0, condensed_summary="")

        combined = "\n\n".join(chunks)[: self.max_input_chars]

        context = await self._rewrite(combined, query, max_length)
        summary = await self._summarize(context)

        return ContextRewriteResult(
            rewritten_context=context,
            relevance_score=relevance_score(query, context),
            condensed_summary=summary,
        )

    async def _rewrite(self, combined: str, query: str, max_length: int) -> str:
        if self.has_llm:
            try:
                rewritten = await self._llm.agenerate(
                    REWRITE_PROMPT.format(query=query, content=combined, max_length=max_length),
                    system=REWRITE_SYSTEM,
                    max_tokens=max(1, min(800, max_length // 2)),
                    temperature=0.2,
                    timeout=self.timeout,
                )
                if rewritten:
                    return rewritten[:max_length]
            except Exception as e:
                logger.warning("Context rewrite failed (%d input chars): %s", len(combined), e)
        return combined[:max_length]

    async def _summarize(self, context: str) -> str:
        if self.has_llm:
            try:
                summary = await self._llm.agenerate(
                    SUMMARY_PROMPT.format(content=context),
                    max_tokens=100,
                    temperature=0.1,
                    timeout=self.timeout,
                )
                if summary:
                    return summary
            except Exception as e:
                logger.warning("Context summary failed (%d chars): %s", len(context), e)
        return leading_sentences(context)
