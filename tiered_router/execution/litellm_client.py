"""LiteLLM execution client for hosted and local (Ollama etc.) models.

LiteLLM gives one interface over every provider in the catalog. The
model key "<provider>/<name>" is the LiteLLM model id. When
LITELLM_BASE_URL is set all calls go through that proxy with the proxy
key; otherwise each call goes to the provider's own api_base.

This module:
- Wraps litellm.acompletion() with a per-attempt timeout
- Retries upstream rate limiting with exponential backoff via tenacity
- Normalizes litellm errors into the execution taxonomy
- Logs token usage for billing/monitoring
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import litellm
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from tiered_router.config import Settings, get_settings
from tiered_router.execution.base import ExecutionClient, ExecutionResponse, build_messages
from tiered_router.model_router.errors import (
    ExecutionProviderFailure,
    ExecutionTimeout,
    ExecutionUnavailable,
)

if TYPE_CHECKING:
    from tiered_router.model_router.models import ModelDescriptor, Task

log = structlog.get_logger(__name__)

# Errors that end the tier for this model: retrying elsewhere in the tier won't help
_FATAL = (
    litellm.exceptions.BadRequestError,
    litellm.exceptions.AuthenticationError,
    litellm.exceptions.PermissionDeniedError,
    litellm.exceptions.NotFoundError,
)


class LiteLLMExecutionClient(ExecutionClient):
    """Thin wrapper around LiteLLM with retry logic and structured logging."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        temperature: float = 0.2,
        max_tokens: int = 2048,
    ) -> None:
        self._settings = settings or get_settings()
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def execute(self, model: ModelDescriptor, task: Task, timeout: float) -> ExecutionResponse:
        """Send the task as a chat completion to the model.

        Raises:
            ExecutionTimeout: The call exceeded its timeout
            ExecutionUnavailable: Provider unreachable or overloaded
            ExecutionProviderFailure: Any other provider error
        """
        messages = build_messages(task)
        log.debug(
            "litellm_client.completion_request",
            model=model.key,
            task_id=task.task_id,
            timeout=timeout,
        )

        try:
            response = await self._complete(model, messages, timeout)
        except litellm.exceptions.Timeout as exc:
            raise ExecutionTimeout(f"{model.key} timed out: {exc}", model_key=model.key) from exc
        except (
            litellm.exceptions.ServiceUnavailableError,
            litellm.exceptions.APIConnectionError,
        ) as exc:
            raise ExecutionUnavailable(f"{model.key} unavailable: {exc}", model_key=model.key) from exc
        except litellm.exceptions.RateLimitError as exc:
            raise ExecutionProviderFailure(
                f"Rate limit from {model.key}: {exc}", model_key=model.key, transient=True
            ) from exc
        except _FATAL as exc:
            raise ExecutionProviderFailure(
                f"{model.key} rejected the request: {exc}", model_key=model.key, transient=False
            ) from exc
        except Exception as exc:
            raise ExecutionProviderFailure(
                f"{model.key} completion failed: {exc}", model_key=model.key
            ) from exc

        content = self.extract_text(response)
        tokens = self.extract_tokens(response)
        if not content:
            raise ExecutionProviderFailure(
                f"{model.key} returned an empty completion", model_key=model.key, tokens_used=tokens
            )

        log.info(
            "litellm_client.completion_done",
            model=model.key,
            task_id=task.task_id,
            total_tokens=tokens,
        )
        return ExecutionResponse(content=content, tokens_used=tokens, raw=response)

    async def _complete(
        self,
        model: ModelDescriptor,
        messages: list[dict[str, str]],
        timeout: float,
    ) -> litellm.ModelResponse:
        kwargs: dict[str, Any] = {}
        if self._settings.litellm_base_url:
            kwargs["api_base"] = self._settings.litellm_base_url
            kwargs["api_key"] = self._settings.litellm_api_key.get_secret_value()
        elif model.provider.api_base:
            kwargs["api_base"] = model.provider.api_base

        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(litellm.exceptions.RateLimitError),
            stop=stop_after_attempt(self._settings.litellm_max_retries),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            reraise=True,
        ):
            with attempt:
                return await litellm.acompletion(
                    model=model.key,
                    messages=messages,
                    temperature=self._temperature,
                    max_tokens=self._max_tokens,
                    timeout=timeout,
                    **kwargs,
                )
        raise AssertionError("unreachable")  # pragma: no cover

    @staticmethod
    def extract_text(response: litellm.ModelResponse) -> str:
        """Extract the assistant text content from a completion response."""
        try:
            return response.choices[0].message.content or ""
        except (AttributeError, IndexError, KeyError):
            return ""

    @staticmethod
    def extract_tokens(response: litellm.ModelResponse) -> int:
        usage = getattr(response, "usage", None)
        if not usage:
            return 0
        return int(getattr(usage, "total_tokens", 0) or 0)
