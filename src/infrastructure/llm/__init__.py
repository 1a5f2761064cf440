"""
LLM Client Infrastructure
==========================

Wrappers for LLM providers (Z.AI, OpenAI-compatible) behind one interface.

The application layer depends on the ILLMClient abstraction only. Every
call is a single attempt bounded by settings.llm_timeout_seconds; callers
fall back to deterministic logic when it raises LLMException.
"""

import asyncio
import json
import time
from typing import List, Optional
from abc import ABC, abstractmethod

from openai import AsyncOpenAI
from zai import ZaiClient

from src.config import settings
from src.core import LLMException, ConfigurationException
from src.shared.infrastructure.grafana import get_grafana_exporter
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class ChatCompletionResult:
    """Result of a chat completion."""

    def __init__(
        self,
        content: str,
        model: str,
        prompt_tokens: int,
        completion_tokens: int,
        latency_ms: int
    ):
        self.content = content
        self.model = model
        self.prompt_tokens = prompt_tokens
        self.completion_tokens = completion_tokens
        self.total_tokens = prompt_tokens + completion_tokens
        self.latency_ms = latency_ms


class ILLMClient(ABC):
    """
    Interface for LLM client operations.

    Only the methods the application actually needs.
    """

    @abstractmethod
    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.2,
        max_tokens: int = 300,
        operation: str = "chat_completion"
    ) -> ChatCompletionResult:
        """Generate chat completion."""


async def _export_metrics(result: ChatCompletionResult, operation: str) -> None:
    """Push usage metrics to Grafana when an exporter is configured."""
    exporter = get_grafana_exporter()
    if exporter and exporter.is_enabled():
        await exporter.export_llm_metrics(
            model=result.model,
            prompt_tokens=result.prompt_tokens,
            completion_tokens=result.completion_tokens,
            latency_ms=result.latency_ms,
            operation=operation
        )


class ZAIILLMClient(ILLMClient):
    """
    Z.AI SDK client implementation for GLM models.

    The SDK is synchronous, so calls run in a worker thread.
    """

    def __init__(self, api_key: Optional[str] = None, timeout: Optional[float] = None):
        self._api_key = api_key or settings.zai_api_key
        if not self._api_key:
            raise ConfigurationException("Z.AI API key not configured")

        self._client = ZaiClient(api_key=self._api_key)
        self._model = settings.llm_model
        self._timeout = timeout or settings.llm_timeout_seconds

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.2,
        max_tokens: int = 300,
        operation: str = "chat_completion"
    ) -> ChatCompletionResult:
        """
        Generate chat completion using GLM.

        Args:
            messages: List of message dicts with 'role' and 'content'
            temperature: Sampling temperature (0-1)
            max_tokens: Maximum tokens to generate
            operation: Operation type for metrics (classification, topic_extraction)

        Returns:
            ChatCompletionResult with generated text

        Raises:
            LLMException: If completion fails or times out
        """
        start_time = time.perf_counter()

        try:
            response = await asyncio.wait_for(
                asyncio.to_thread(
                    self._client.chat.completions.create,
                    model=self._model,
                    messages=messages,
                    temperature=temperature,
                    max_tokens=max_tokens
                ),
                timeout=self._timeout
            )
            content = response.choices[0].message.content or ""
        except asyncio.TimeoutError:
            raise LLMException(f"Chat completion timed out after {self._timeout}s")
        except Exception as e:
            raise LLMException(f"Chat completion failed: {str(e)}")

        latency_ms = int((time.perf_counter() - start_time) * 1000)

        # Z.AI doesn't always return token usage, so we estimate
        usage = getattr(response, "usage", None)
        result = ChatCompletionResult(
            content=content,
            model=self._model,
            prompt_tokens=getattr(usage, "prompt_tokens", None) or len(str(messages)),
            completion_tokens=getattr(usage, "completion_tokens", None) or len(content),
            latency_ms=latency_ms
        )

        await _export_metrics(result, operation)
        return result


class OpenAILLMClient(ILLMClient):
    """
    OpenAI SDK client implementation.

    Works with any OpenAI-compatible endpoint (OpenAI, Gemini, Groq) via
    settings.openai_base_url.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None
    ):
        self._api_key = api_key or settings.openai_api_key
        if not self._api_key:
            raise ConfigurationException("OpenAI API key not configured")

        self._client = AsyncOpenAI(
            api_key=self._api_key,
            base_url=base_url or settings.openai_base_url,
            timeout=timeout or settings.llm_timeout_seconds,
            max_retries=0
        )
        self._model = settings.llm_model

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.2,
        max_tokens: int = 300,
        operation: str = "chat_completion"
    ) -> ChatCompletionResult:
        """
        Generate chat completion using an OpenAI-compatible model.

        Raises:
            LLMException: If completion fails
        """
        start_time = time.perf_counter()

        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens
            )
            content = response.choices[0].message.content or ""
        except Exception as e:
            raise LLMException(f"Chat completion failed: {str(e)}")

        latency_ms = int((time.perf_counter() - start_time) * 1000)

        usage = response.usage
        result = ChatCompletionResult(
            content=content,
            model=response.model or self._model,
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
            latency_ms=latency_ms
        )

        await _export_metrics(result, operation)
        return result


class MockLLMClient(ILLMClient):
    """
    Mock LLM client for local development.

    Returns predictable responses without calling external APIs.
    """

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.2,
        max_tokens: int = 300,
        operation: str = "chat_completion"
    ) -> ChatCompletionResult:
        """Return mock response based on operation type."""
        if operation == "classification":
            mock_response = {
                "category": "question",
                "confidence": 0.6,
                "reasoning": "Mock: every message is treated as a question."
            }
        elif operation == "topic_extraction":
            mock_response = {
                "group_key": "mock-topic",
                "summary": "Mock topic for local development"
            }
        else:
            mock_response = {"content": "This is a mock LLM response for testing purposes."}

        content = f"```json\n{json.dumps(mock_response, indent=2)}\n```"

        return ChatCompletionResult(
            content=content,
            model="mock-model",
            prompt_tokens=100,
            completion_tokens=len(content.split()),
            latency_ms=0
        )


def create_llm_client() -> Optional[ILLMClient]:
    """
    Build the configured LLM client.

    Returns:
        Client instance, or None when the provider has no credentials.
        Callers treat None as "use the deterministic fallbacks".
    """
    provider = "mock" if settings.mock_llm else settings.llm_provider

    if provider == "mock":
        return MockLLMClient()

    try:
        if provider == "openai":
            return OpenAILLMClient()
        return ZAIILLMClient()
    except ConfigurationException as e:
        logger.warning(
            "LLM client not configured - using deterministic fallbacks",
            extra={"provider": provider, "error": e.message}
        )
        return None
