"""Tier-0 execution: resolve tasks from stored patterns/templates, no model."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from tiered_router.execution.base import ExecutionClient, ExecutionResponse
from tiered_router.model_router.errors import ExecutionProviderFailure

if TYPE_CHECKING:
    from tiered_router.model_router.models import ModelDescriptor, Task
    from tiered_router.model_router.templates import TemplateCatalog

log = structlog.get_logger(__name__)


class PatternExecutionClient(ExecutionClient):
    """Renders the stored template that matches the task.

    Output is deterministic, so a match is reported with full quality and
    no tokens. A task with no matching template, or with payload fields
    missing for the body, is a non-transient failure.
    """

    def __init__(self, templates: TemplateCatalog) -> None:
        self._templates = templates

    async def execute(self, model: ModelDescriptor, task: Task, timeout: float) -> ExecutionResponse:
        template = self._templates.find(task)
        if template is None:
            raise ExecutionProviderFailure(
                f"No stored template matches task {task.task_id}",
                model_key=model.key,
                transient=False,
            )

        try:
            content = template.render(task.payload)
        except (KeyError, ValueError) as exc:
            raise ExecutionProviderFailure(
                f"Template {template.name} could not be rendered: {exc}",
                model_key=model.key,
                transient=False,
            ) from exc

        log.debug("pattern_client.rendered", task_id=task.task_id, template=template.name)
        return ExecutionResponse(content=content, tokens_used=0, quality_score=1.0)
