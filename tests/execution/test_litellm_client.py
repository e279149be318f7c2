"""Tests for LiteLLMExecutionClient error normalization and usage extraction."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import litellm
import pytest

from tiered_router.config import Environment, Settings
from tiered_router.execution.litellm_client import LiteLLMExecutionClient
from tiered_router.model_router.errors import (
    ExecutionProviderFailure,
    ExecutionTimeout,
    ExecutionUnavailable,
)
from tiered_router.model_router.models import HostedAPIProvider, LocalProvider, ModelDescriptor, Tier


def _make_mock_litellm_response(content: str, total_tokens: int = 150) -> MagicMock:
    """Create a mock LiteLLM completion response."""
    mock_message = MagicMock()
    mock_message.content = content
    mock_choice = MagicMock()
    mock_choice.message = mock_message
    mock_usage = MagicMock()
    mock_usage.total_tokens = total_tokens
    mock_response = MagicMock()
    mock_response.choices = [mock_choice]
    mock_response.usage = mock_usage
    return mock_response


@pytest.fixture
def settings() -> Settings:
    return Settings(environment=Environment.TEST, litellm_max_retries=1)


@pytest.fixture
def hosted_model() -> ModelDescriptor:
    return ModelDescriptor(
        provider=HostedAPIProvider(name="openai"),
        name="gpt-4-turbo",
        tier=Tier.LARGE,
        cost_per_1k_tokens=0.01,
    )


async def test_success_returns_content_and_tokens(settings, hosted_model, make_task):
    client = LiteLLMExecutionClient(settings)
    mock_resp = _make_mock_litellm_response("def f(): pass", total_tokens=321)

    with patch("litellm.acompletion", new_callable=AsyncMock, return_value=mock_resp) as mock_call:
        response = await client.execute(hosted_model, make_task("write f"), timeout=5.0)

    assert response.content == "def f(): pass"
    assert response.tokens_used == 321
    kwargs = mock_call.call_args.kwargs
    assert kwargs["model"] == "openai/gpt-4-turbo"
    assert kwargs["timeout"] == 5.0
    assert kwargs["messages"][-1]["content"].startswith("write f")
    assert "api_base" not in kwargs


async def test_proxy_settings_route_through_base_url(hosted_model, make_task):
    settings = Settings(
        environment=Environment.TEST,
        litellm_base_url="http://localhost:4000",
        litellm_api_key="sk-proxy",
        litellm_max_retries=1,
    )
    client = LiteLLMExecutionClient(settings)

    with patch(
        "litellm.acompletion", new_callable=AsyncMock, return_value=_make_mock_litellm_response("ok")
    ) as mock_call:
        await client.execute(hosted_model, make_task(), timeout=5.0)

    assert mock_call.call_args.kwargs["api_base"] == "http://localhost:4000"
    assert mock_call.call_args.kwargs["api_key"] == "sk-proxy"


async def test_local_provider_uses_its_api_base(settings, make_task):
    model = ModelDescriptor(
        provider=LocalProvider(runtime="ollama", api_base="http://localhost:11434"),
        name="codellama:7b",
        tier=Tier.SMALL,
    )
    client = LiteLLMExecutionClient(settings)

    with patch(
        "litellm.acompletion", new_callable=AsyncMock, return_value=_make_mock_litellm_response("ok")
    ) as mock_call:
        await client.execute(model, make_task(), timeout=5.0)

    assert mock_call.call_args.kwargs["model"] == "ollama/codellama:7b"
    assert mock_call.call_args.kwargs["api_base"] == "http://localhost:11434"


@pytest.mark.parametrize(
    ("error", "expected", "transient"),
    [
        (
            litellm.exceptions.Timeout(message="slow", model="gpt-4-turbo", llm_provider="openai"),
            ExecutionTimeout,
            True,
        ),
        (
            litellm.exceptions.ServiceUnavailableError(
                message="down", llm_provider="openai", model="gpt-4-turbo"
            ),
            ExecutionUnavailable,
            True,
        ),
        (
            litellm.exceptions.RateLimitError(message="slow down", llm_provider="openai", model="gpt-4-turbo"),
            ExecutionProviderFailure,
            True,
        ),
        (
            litellm.exceptions.BadRequestError(message="bad", model="gpt-4-turbo", llm_provider="openai"),
            ExecutionProviderFailure,
            False,
        ),
        (
            litellm.exceptions.AuthenticationError(message="no key", llm_provider="openai", model="gpt-4-turbo"),
            ExecutionProviderFailure,
            False,
        ),
    ],
)
async def test_litellm_errors_are_normalized(settings, hosted_model, make_task, error, expected, transient):
    client = LiteLLMExecutionClient(settings)

    with patch("litellm.acompletion", new_callable=AsyncMock, side_effect=error):
        with pytest.raises(expected) as exc_info:
            await client.execute(hosted_model, make_task(), timeout=5.0)

    assert exc_info.value.transient is transient
    assert exc_info.value.model_key == hosted_model.key
    assert exc_info.value.__cause__ is error


async def test_rate_limit_is_retried(hosted_model, make_task):
    settings = Settings(environment=Environment.TEST, litellm_max_retries=2)
    client = LiteLLMExecutionClient(settings)
    rate_limited = litellm.exceptions.RateLimitError(message="slow down", llm_provider="openai", model="gpt-4-turbo")

    with patch(
        "litellm.acompletion",
        new_callable=AsyncMock,
        side_effect=[rate_limited, _make_mock_litellm_response("ok")],
    ) as mock_call:
        response = await client.execute(hosted_model, make_task(), timeout=5.0)

    assert response.content == "ok"
    assert mock_call.await_count == 2


async def test_empty_completion_is_billed_provider_failure(settings, hosted_model, make_task):
    client = LiteLLMExecutionClient(settings)

    with patch(
        "litellm.acompletion",
        new_callable=AsyncMock,
        return_value=_make_mock_litellm_response("", total_tokens=40),
    ):
        with pytest.raises(ExecutionProviderFailure) as exc_info:
            await client.execute(hosted_model, make_task(), timeout=5.0)

    assert exc_info.value.tokens_used == 40
