"""
LLM Client Infrastructure
==========================

The triage classifier needs one capability: send a system + user prompt,
get text back. ``ILLMClient.chat_completion`` is that capability.

``OpenAILLMClient`` speaks the OpenAI chat API, so any compatible provider
(OpenAI, Groq, Gemini's OpenAI endpoint, a local gateway) is reachable by
setting ``llm_base_url``. ``MockLLMClient`` answers with a fixed verdict for
local development.
"""

import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from openai import AsyncOpenAI

from helpdesk.config import Settings, settings as default_settings
from helpdesk.core import ConfigurationException, LLMException
from helpdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ChatCompletionResult:
    content: str
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    latency_ms: int = 0


class ILLMClient(ABC):
    """Chat completion capability used by the classifier."""

    @abstractmethod
    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.2,
        max_tokens: int = 1000,
        operation: str = "chat_completion"
    ) -> ChatCompletionResult:
        """Return the assistant's text for ``messages``; raises LLMException."""


class OpenAILLMClient(ILLMClient):
    """OpenAI-compatible chat client (``openai.AsyncOpenAI``)."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        config: Optional[Settings] = None
    ):
        config = config or default_settings
        key = api_key or config.llm_api_key
        if not key:
            raise ConfigurationException("LLM API key not configured (set LLM_API_KEY or MOCK_LLM)")

        self._model = model or config.llm_model
        self._client = AsyncOpenAI(api_key=key, base_url=base_url or config.llm_base_url)

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.2,
        max_tokens: int = 1000,
        operation: str = "chat_completion"
    ) -> ChatCompletionResult:
        started = time.perf_counter()
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens
            )
        except Exception as e:
            raise LLMException(f"{operation} request failed: {e}") from e

        usage = response.usage
        result = ChatCompletionResult(
            content=response.choices[0].message.content or "",
            model=self._model,
            prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
            latency_ms=int((time.perf_counter() - started) * 1000),
        )

        logger.info(
            "LLM completion received",
            extra={
                "operation": operation,
                "model": result.model,
                "latency_ms": result.latency_ms,
                "prompt_tokens": result.prompt_tokens,
                "completion_tokens": result.completion_tokens,
            }
        )
        return result


MOCK_VERDICT = {
    "summary": "Mock: user reports an issue that needs a moderator.",
    "priority": "medium",
    "helpfulNotes": "Mock: reproduce the problem, check recent deploys and logs.",
    "relatedSkills": ["General Support"],
}


class MockLLMClient(ILLMClient):
    """Offline client: always answers with ``MOCK_VERDICT``."""

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.2,
        max_tokens: int = 1000,
        operation: str = "chat_completion"
    ) -> ChatCompletionResult:
        content = json.dumps(MOCK_VERDICT)
        return ChatCompletionResult(content=content, model="mock-model", latency_ms=1)


def create_llm_client(config: Optional[Settings] = None) -> ILLMClient:
    """Mock client when ``mock_llm`` is set, otherwise the OpenAI-compatible one."""
    config = config or default_settings
    if config.mock_llm:
        logger.info("Using mock LLM client")
        return MockLLMClient()
    return OpenAILLMClient(config=config)
