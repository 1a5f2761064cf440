"""
Tests for ClassificationService and LLM reply parsing.

Tests cover:
- Empty input short-circuit
- Primary path (fenced JSON, plain JSON)
- Fallback on LLM errors, bad JSON, unknown categories
- Confidence clamping
"""

import pytest

from src.config import MessageCategory
from src.core import LLMException
from src.grouping.application import ClassificationService, parse_json_response
from tests.helpers.fakes import FakeLLMClient


class TestParseJsonResponse:
    def test_plain_json(self) -> None:
        assert parse_json_response('{"category": "bug"}') == {"category": "bug"}

    def test_json_fence(self) -> None:
        content = 'Here you go:\n```json\n{"category": "bug"}\n```\nanything else'
        assert parse_json_response(content) == {"category": "bug"}

    def test_bare_fence(self) -> None:
        assert parse_json_response('```\n{"a": 1}\n```') == {"a": 1}

    def test_non_object_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            parse_json_response("[1, 2]")

    def test_malformed_json_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            parse_json_response("not json at all")


class TestClassify:
    @pytest.mark.asyncio
    async def test_empty_text_is_irrelevant_without_llm_call(self) -> None:
        llm = FakeLLMClient()
        result = await ClassificationService(llm).classify("   ")

        assert result.is_relevant is False
        assert result.category == MessageCategory.IRRELEVANT
        assert result.confidence == 1.0
        assert llm.calls == []

    @pytest.mark.asyncio
    async def test_primary_path_uses_llm_category(self) -> None:
        llm = FakeLLMClient(classification={
            "category": "bug", "confidence": 0.92, "reasoning": "Export crashes"
        })
        result = await ClassificationService(llm).classify("The export button crashes on click")

        assert result.is_relevant is True
        assert result.category == MessageCategory.BUG
        assert result.confidence == 0.92
        assert result.reasoning == "Export crashes"
        assert result.model_used == "fake-model"
        assert result.used_fallback is False
        assert len(llm.calls_for("classification")) == 1

    @pytest.mark.asyncio
    async def test_irrelevant_category_sets_relevance_false(self) -> None:
        llm = FakeLLMClient(classification={"category": "irrelevant", "confidence": 0.7})
        result = await ClassificationService(llm).classify("lunch anyone at noon today?")

        assert result.is_relevant is False
        assert result.reasoning == ""

    @pytest.mark.asyncio
    async def test_category_is_case_insensitive(self) -> None:
        llm = FakeLLMClient(classification={"category": " Feature_Request ", "confidence": 0.6})
        result = await ClassificationService(llm).classify("Could we get dark mode please?")

        assert result.category == MessageCategory.FEATURE_REQUEST

    @pytest.mark.asyncio
    @pytest.mark.parametrize("confidence,expected", [(1.7, 1.0), (-0.2, 0.0), ("0.4", 0.4)])
    async def test_confidence_is_clamped(self, confidence, expected: float) -> None:
        llm = FakeLLMClient(classification={"category": "question", "confidence": confidence})
        result = await ClassificationService(llm).classify("How do I rotate an API key?")

        assert result.confidence == expected

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "reply",
        [
            LLMException("timeout"),
            "definitely a bug",
            {"category": "complaint", "confidence": 0.9},
            {"category": "bug", "confidence": "very"},
            {"category": "bug", "confidence": float("nan")},
            '{"category": "bug", "confidence": NaN, "reasoning": "x"}',
            '{"category": "bug", "confidence": Infinity}',
        ],
        ids=["llm-error", "not-json", "unknown-category", "bad-confidence", "nan", "raw-nan", "infinity"],
    )
    async def test_failures_fall_back_to_question(self, reply) -> None:
        llm = FakeLLMClient(classification=reply)
        result = await ClassificationService(llm).classify("The export button crashes on click")

        assert result.is_relevant is True
        assert result.category == MessageCategory.QUESTION
        assert result.confidence == 0.5
        assert result.used_fallback is True

    @pytest.mark.asyncio
    async def test_thanks_falls_back_to_irrelevant(self) -> None:
        llm = FakeLLMClient(classification=LLMException("service down"))
        result = await ClassificationService(llm).classify("thanks!")

        assert result.is_relevant is False
        assert result.category == MessageCategory.IRRELEVANT
        assert result.confidence == 0.8
        assert result.reasoning.startswith("Fallback:")

    @pytest.mark.asyncio
    async def test_no_llm_configured_uses_fallback(self) -> None:
        result = await ClassificationService(None).classify("Thank you!!")

        assert result.category == MessageCategory.IRRELEVANT
        assert result.confidence == 0.8
