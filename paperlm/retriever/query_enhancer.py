"""
Query Enhancer

Turns one user question into several retrieval strategies:
- HyDE: an LLM-written hypothetical answer plus refined sub-queries
- Expansion: related search terms drawn from the recent conversation

Every LLM step degrades to the original question, so enhancement never
fails a request.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..common.llm_client import LLMClient
from ..common.llm_utils import parse_llm_list

logger = logging.getLogger("paperlm.retriever.query_enhancer")

ChatTurn = Dict[str, str]  # {"role": ..., "content": ...}

HYDE_SYSTEM = "You are an expert document generator."

HYDE_PROMPT = """Write a hypothetical document that would perfectly answer this query: "{query}"
{domain_line}
Write a factual document of 200-300 words that directly addresses the query. Focus on:
1. Specific details and facts
2. Technical accuracy
3. Comprehensive coverage of the topic
4. Natural language flow

Hypothetical Document:"""

REFINE_PROMPT = """Based on this query: "{query}"
And this hypothetical document: "{document}"

Generate 3 refined search queries that would help find relevant information. Make them:
1. More specific than the original
2. Cover different aspects of the topic
3. Use relevant technical terms
4. Be concise (5-10 words each)

Format as a simple list:
1. [refined query 1]
2. [refined query 2]
3. [refined query 3]"""

EXPANSION_PROMPT = """Given this conversation context:
{context}

Expand this query with 2-3 related search terms that would help find comprehensive information:
Query: "{query}"

Return only the expanded queries, one per line:"""

MAX_REFINED_QUERY_LENGTH = 100


@dataclass
class HyDEResult:
    """Hypothetical document and the sub-queries derived from it"""
    original_query: str
    hypothetical_document: str
    refined_queries: List[str] = field(default_factory=list)

    @classmethod
    def passthrough(cls, query: str) -> "HyDEResult":
        return cls(original_query=query, hypothetical_document=query, refined_queries=[query])


@dataclass
class EnhancedQuery:
    """Ordered, de-duplicated retrieval strategies for one question"""
    original: str
    strategies: List[str]
    hyde: Optional[HyDEResult] = None
    expansions: List[str] = field(default_factory=list)


def dedupe_queries(queries: List[str], limit: int = 0) -> List[str]:
    """Drop blanks and case-insensitive repeats, keeping the first spelling."""
    seen = set()
    result = []
    for q in queries:
        text = (q or "").strip()
        key = text.lower()
        if not text or key in seen:
            continue
        seen.add(key)
        result.append(text)
        if limit and len(result) >= limit:
            break
    return result


class QueryEnhancer:
    """
    Generates retrieval strategies with an LLM.

    Falls back to the original query alone if the LLM is unavailable or fails.
    """

    def __init__(
        self,
        llm_client: Optional[LLMClient] = None,
        max_strategies: int = 5,
        use_hyde: bool = True,
        use_expansion: bool = True,
        history_turns: int = 3,
        timeout: Optional[float] = None,
        domain: str = "",
    ):
        self._llm = llm_client
        self.max_strategies = max(1, max_strategies)
        self.use_hyde = use_hyde
        self.use_expansion = use_expansion
        self.history_turns = history_turns
        self.timeout = timeout
        self.domain = domain

    @property
    def has_llm(self) -> bool:
        return self._llm is not None and self._llm.is_available

    async def generate_hyde(self, query: str) -> HyDEResult:
        """Hypothetical answer plus up to 3 refined queries."""
        if not self.has_llm:
            return HyDEResult.passthrough(query)
        try:
            domain_line = f"\nDomain context: {self.domain}\n" if self.domain else ""
            document = await self._llm.agenerate(
                HYDE_PROMPT.format(query=query, domain_line=domain_line),
                system=HYDE_SYSTEM,
                max_tokens=400,
                temperature=0.3,
                timeout=self.timeout,
            )
        except Exception as e:
            logger.warning("HyDE generation failed (query %d chars): %s", len(query), e)
            return HyDEResult.passthrough(query)

        document = document or query
        refined = await self._refine_queries(query, document)
        return HyDEResult(original_query=query, hypothetical_document=document, refined_queries=refined)

    async def _refine_queries(self, query: str, document: str) -> List[str]:
        try:
            raw = await self._llm.agenerate(
                REFINE_PROMPT.format(query=query, document=document),
                max_tokens=150,
                temperature=0.4,
                timeout=self.timeout,
            )
        except Exception as e:
            logger.warning("Refined query generation failed: %s", e)
            return [query]
        refined = [q for q in parse_llm_list(raw) if len(q) < MAX_REFINED_QUERY_LENGTH][:3]
        return refined or [query]

    async def expand(self, query: str, chat_history: Optional[List[ChatTurn]] = None) -> List[str]:
        """Related search terms from the last few turns; [] on failure."""
        if not self.has_llm:
            return []
        turns = (chat_history or [])[-self.history_turns:] if self.history_turns > 0 else []
        context = "\n".join(str(turn.get("content", "")) for turn in turns)
        try:
            raw = await self._llm.agenerate(
                EXPANSION_PROMPT.format(context=context, query=query),
                max_tokens=100,
                temperature=0.3,
                timeout=self.timeout,
            )
        except Exception as e:
            logger.warning("Query expansion failed (%d history turns): %s", len(turns), e)
            return []
        return [q for q in parse_llm_list(raw) if q != query][:3]

    async def enhance(self, query: str, chat_history: Optional[List[ChatTurn]] = None) -> EnhancedQuery:
        """
        Build retrieval strategies for a question.

        Returns:
            EnhancedQuery whose strategies are
            [original, hypothetical, *refined, *expansions], de-duplicated
            case-insensitively and capped at ``max_strategies``
        """
        query = (query or "").strip()
        if not query:
            return EnhancedQuery(original="", strategies=[])

        hyde_task = self.generate_hyde(query) if self.use_hyde else None
        expand_task = self.expand(query, chat_history) if self.use_expansion else None

        hyde: Optional[HyDEResult] = None
        expansions: List[str] = []
        if hyde_task and expand_task:
            hyde, expansions = await asyncio.gather(hyde_task, expand_task)
        elif hyde_task:
            hyde = await hyde_task
        elif expand_task:
            expansions = await expand_task

        candidates = [query]
        if hyde is not None:
            candidates.append(hyde.hypothetical_document)
            candidates.extend(hyde.refined_queries)
        candidates.extend(expansions)

        strategies = dedupe_queries(candidates, self.max_strategies)
        logger.debug("Query enhanced into %d strategies", len(strategies))
        return EnhancedQuery(original=query, strategies=strategies, hyde=hyde, expansions=expansions)
