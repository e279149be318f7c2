"""Execution client interface.

Every provider sits behind the same capability, `execute(model, task,
timeout)`, so the router never special-cases a provider. Clients raise
the execution taxonomy from tiered_router.model_router.errors:

- ExecutionTimeout: no answer within the timeout (never billed)
- ExecutionUnavailable: model/provider unreachable (never billed)
- ExecutionProviderFailure: the provider answered with an error; billed
  only for the tokens it reports as used
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from tiered_router.model_router.models import ModelDescriptor, Task

SYSTEM_PROMPT = (
    "You are a code generation assistant. Answer with the requested code only, "
    "without explanations unless they are asked for."
)


@dataclass(frozen=True)
class ExecutionResponse:
    """Successful output of one execution attempt.

    Attributes:
        content: Generated text
        tokens_used: Billable tokens (prompt + completion)
        quality_score: Optional 0.0-1.0 quality estimate from the client
        raw: Provider-specific response object, for callers that need it
    """

    content: str
    tokens_used: int = 0
    quality_score: float | None = None
    raw: Any = field(default=None, compare=False, repr=False)

    def __post_init__(self) -> None:
        if self.tokens_used < 0:
            raise ValueError("tokens_used cannot be negative")
        if self.quality_score is not None and not 0.0 <= self.quality_score <= 1.0:
            raise ValueError(f"quality_score must be 0.0-1.0, got {self.quality_score}")


class ExecutionClient(ABC):
    """Abstract interface all execution clients implement."""

    @abstractmethod
    async def execute(self, model: ModelDescriptor, task: Task, timeout: float) -> ExecutionResponse:
        """Run the task on a model.

        Raises:
            ExecutionError: One of the execution taxonomy subclasses
        """


def build_messages(task: Task) -> list[dict[str, str]]:
    """Chat messages (OpenAI format) for a task."""
    parts = [task.description.strip()]
    context = task.payload.get("context")
    if context:
        parts.append(f"Context:\n{context}")
    code = task.payload.get("code")
    if code:
        parts.append(f"Code:\n```\n{code}\n```")
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": "\n\n".join(parts)},
    ]
