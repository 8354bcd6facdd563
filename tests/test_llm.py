from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from helpdesk.config import Settings
from helpdesk.core import ClassificationError, ConfigurationException, LLMException
from helpdesk.infrastructure.llm import MockLLMClient, OpenAILLMClient, create_llm_client
from helpdesk.triage.application import ClassificationService, parse_verdict


def completion(content, prompt_tokens=20, completion_tokens=5):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens),
    )


def test_missing_api_key_is_a_configuration_error():
    with pytest.raises(ConfigurationException):
        create_llm_client(Settings(llm_api_key=None, mock_llm=False))


def test_factory_selects_client():
    assert isinstance(create_llm_client(Settings(mock_llm=True)), MockLLMClient)
    assert isinstance(create_llm_client(Settings(llm_api_key="sk-test", mock_llm=False)), OpenAILLMClient)


@pytest.mark.asyncio
async def test_mock_client_answers_with_valid_verdict():
    result = await MockLLMClient().chat_completion([{"role": "user", "content": "hi"}])

    verdict = parse_verdict(result.content)
    assert verdict.related_skills == ["General Support"]


@pytest.mark.asyncio
async def test_openai_client_returns_content_and_usage():
    client = OpenAILLMClient(api_key="sk-test", model="test-model")
    create = AsyncMock(return_value=completion('{"summary": "s"}'))
    client._client.chat.completions.create = create

    result = await client.chat_completion([{"role": "user", "content": "hi"}], temperature=0.1, max_tokens=50)

    assert result.content == '{"summary": "s"}'
    assert result.model == "test-model"
    assert (result.prompt_tokens, result.completion_tokens) == (20, 5)
    kwargs = create.await_args.kwargs
    assert kwargs["model"] == "test-model"
    assert kwargs["temperature"] == 0.1
    assert kwargs["max_tokens"] == 50


@pytest.mark.asyncio
async def test_provider_errors_become_classification_errors():
    client = OpenAILLMClient(api_key="sk-test")
    client._client.chat.completions.create = AsyncMock(side_effect=RuntimeError("rate limited"))

    with pytest.raises(LLMException):
        await client.chat_completion([{"role": "user", "content": "hi"}])

    with pytest.raises(ClassificationError, match="rate limited"):
        await ClassificationService(client, timeout_seconds=1).analyze("t", "d")
