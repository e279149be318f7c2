"""Provider dispatch: one execution client per provider variant."""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING

from tiered_router.execution.base import ExecutionClient, ExecutionResponse
from tiered_router.model_router.models import LocalProvider

if TYPE_CHECKING:
    from tiered_router.model_router.models import ModelDescriptor, Provider, Task


class ProviderDispatchClient(ExecutionClient):
    """Routes each call to the client registered for the model's provider.

    Local runtimes with a dedicated client (e.g. "pattern") use it; every
    other provider, hosted or local, goes to the default client.
    """

    def __init__(
        self,
        default: ExecutionClient,
        local: Mapping[str, ExecutionClient] | None = None,
    ) -> None:
        self._default = default
        self._local = dict(local or {})

    def client_for(self, provider: Provider) -> ExecutionClient:
        if isinstance(provider, LocalProvider):
            return self._local.get(provider.runtime, self._default)
        return self._default

    async def execute(self, model: ModelDescriptor, task: Task, timeout: float) -> ExecutionResponse:
        return await self.client_for(model.provider).execute(model, task, timeout)
