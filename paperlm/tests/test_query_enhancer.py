"""Tests for QueryEnhancer"""

from unittest.mock import AsyncMock, Mock

import pytest

from paperlm.common.errors import TransientProviderError
from paperlm.retriever.query_enhancer import QueryEnhancer, dedupe_queries


def make_llm(*responses, available=True):
    llm = Mock()
    llm.is_available = available
    llm.agenerate = AsyncMock(side_effect=list(responses))
    return llm


HYDE_DOC = "Revenue grew because subscription renewals increased across all regions."
REFINED = "1. subscription renewal rates by region\n2. revenue growth drivers 2024\n3. regional sales expansion"
EXPANDED = "annual recurring revenue\nchurn reduction"


class TestEnhance:
    @pytest.mark.asyncio
    async def test_llm_failure_returns_original_only(self):
        llm = Mock()
        llm.is_available = True
        llm.agenerate = AsyncMock(side_effect=TransientProviderError("down"))
        enhancer = QueryEnhancer(llm)

        enhanced = await enhancer.enhance("why did revenue grow?", [])

        assert enhanced.strategies == ["why did revenue grow?"]
        assert enhanced.expansions == []
        assert enhanced.hyde.hypothetical_document == "why did revenue grow?"

    @pytest.mark.asyncio
    async def test_no_llm_returns_original_only(self):
        enhancer = QueryEnhancer(None)
        enhanced = await enhancer.enhance("what is the margin?")
        assert enhanced.strategies == ["what is the margin?"]

    @pytest.mark.asyncio
    async def test_strategies_ordered_and_capped(self):
        enhancer = QueryEnhancer(make_llm(HYDE_DOC, REFINED, EXPANDED), use_expansion=False)
        enhanced = await enhancer.enhance("why did revenue grow?")

        assert enhanced.strategies == [
            "why did revenue grow?",
            HYDE_DOC,
            "subscription renewal rates by region",
            "revenue growth drivers 2024",
            "regional sales expansion",
        ]

    @pytest.mark.asyncio
    async def test_cap_applies_with_expansion(self):
        llm = Mock()
        llm.is_available = True

        async def respond(prompt, **kwargs):
            if "hypothetical document that would" in prompt:
                return HYDE_DOC
            if "refined search queries" in prompt:
                return REFINED
            return EXPANDED

        llm.agenerate = AsyncMock(side_effect=respond)
        enhancer = QueryEnhancer(llm, max_strategies=5)
        enhanced = await enhancer.enhance("why did revenue grow?", [{"role": "user", "content": "Q3 results"}])

        assert len(enhanced.strategies) == 5
        assert enhanced.strategies[0] == "why did revenue grow?"
        assert enhanced.expansions == ["annual recurring revenue", "churn reduction"]

    @pytest.mark.asyncio
    async def test_blank_query(self):
        enhanced = await QueryEnhancer(make_llm()).enhance("   ")
        assert enhanced.strategies == []


class TestHyDE:
    @pytest.mark.asyncio
    async def test_refine_failure_falls_back_to_original(self):
        llm = make_llm(HYDE_DOC, TransientProviderError("timeout"))
        hyde = await QueryEnhancer(llm).generate_hyde("revenue drivers")

        assert hyde.hypothetical_document == HYDE_DOC
        assert hyde.refined_queries == ["revenue drivers"]

    @pytest.mark.asyncio
    async def test_prompt_parameters(self):
        llm = make_llm(HYDE_DOC, REFINED)
        await QueryEnhancer(llm).generate_hyde("revenue drivers")

        first, second = llm.agenerate.call_args_list
        assert first.kwargs["temperature"] == 0.3
        assert first.kwargs["max_tokens"] == 400
        assert first.kwargs["system"] == "You are an expert document generator."
        assert "system" not in second.kwargs
        assert second.kwargs["temperature"] == 0.4
        assert second.kwargs["max_tokens"] == 150

    @pytest.mark.asyncio
    async def test_overlong_refined_queries_dropped(self):
        llm = make_llm(HYDE_DOC, "1. " + "x" * 150 + "\n2. short query")
        hyde = await QueryEnhancer(llm).generate_hyde("q")
        assert hyde.refined_queries == ["short query"]


class TestExpand:
    @pytest.mark.asyncio
    async def test_uses_last_three_turns(self):
        llm = make_llm(EXPANDED)
        history = [{"role": "user", "content": f"turn {i}"} for i in range(6)]
        await QueryEnhancer(llm).expand("q", history)

        prompt = llm.agenerate.call_args.args[0]
        assert "turn 5" in prompt and "turn 3" in prompt
        assert "turn 2" not in prompt

    @pytest.mark.asyncio
    async def test_failure_returns_empty(self):
        llm = make_llm(TransientProviderError("down"))
        assert await QueryEnhancer(llm).expand("q", []) == []


def test_dedupe_queries_case_insensitive():
    assert dedupe_queries(["Revenue", "revenue ", "", "Margin"]) == ["Revenue", "Margin"]
    assert dedupe_queries(["a", "b", "c"], limit=2) == ["a", "b"]
