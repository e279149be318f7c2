"""Deterministic execution client for tests and offline development.

Each model key gets a script of steps played in order; the last step
repeats once the script runs out. Models without a script get the
default step.

    client = ScriptedExecutionClient({
        "ollama/codellama:7b": [ScriptedStep.hang(5.0)],
        "together_ai/mistral": [ScriptedStep.ok("def f(): ...", tokens=120)],
    })
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

from tiered_router.execution.base import ExecutionClient, ExecutionResponse
from tiered_router.model_router.errors import ExecutionError

if TYPE_CHECKING:
    from tiered_router.model_router.models import ModelDescriptor, Task


@dataclass(frozen=True)
class ScriptedStep:
    """One scripted outcome: optional delay, then a response or an error."""

    response: ExecutionResponse | None = None
    error: ExecutionError | None = None
    delay: float = 0.0

    @classmethod
    def ok(cls, content: str = "ok", tokens: int = 100, quality: float | None = None) -> ScriptedStep:
        return cls(response=ExecutionResponse(content=content, tokens_used=tokens, quality_score=quality))

    @classmethod
    def fail(cls, error: ExecutionError) -> ScriptedStep:
        return cls(error=error)

    @classmethod
    def hang(cls, seconds: float) -> ScriptedStep:
        """Sleep past any reasonable timeout, then succeed."""
        return cls(response=ExecutionResponse(content="late"), delay=seconds)


class ScriptedExecutionClient(ExecutionClient):
    """Plays scripted steps per model and records every call."""

    def __init__(
        self,
        scripts: Mapping[str, Sequence[ScriptedStep]] | None = None,
        default: ScriptedStep | None = None,
    ) -> None:
        self._scripts = {key: list(steps) for key, steps in (scripts or {}).items()}
        self._default = default or ScriptedStep.ok()
        self._positions: dict[str, int] = {}
        self.calls: list[tuple[str, str]] = []

    def script(self, key: str, *steps: ScriptedStep) -> None:
        """Replace the script for one model."""
        self._scripts[key] = list(steps)
        self._positions.pop(key, None)

    def set_default(self, step: ScriptedStep) -> None:
        self._default = step

    async def execute(self, model: ModelDescriptor, task: Task, timeout: float) -> ExecutionResponse:
        self.calls.append((model.key, task.task_id))
        step = self._next_step(model.key)

        if step.delay:
            await asyncio.sleep(step.delay)
        if step.error is not None:
            raise step.error
        if step.response is None:
            raise ValueError(f"Scripted step for {model.key} has neither response nor error")
        return step.response

    def _next_step(self, key: str) -> ScriptedStep:
        steps = self._scripts.get(key)
        if not steps:
            return self._default
        position = self._positions.get(key, 0)
        self._positions[key] = position + 1
        return steps[min(position, len(steps) - 1)]

    def calls_for(self, key: str) -> int:
        return sum(1 for model_key, _ in self.calls if model_key == key)
