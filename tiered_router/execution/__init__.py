"""Execution clients: the providers behind the router's single `execute` capability."""

from __future__ import annotations

from tiered_router.execution.base import ExecutionClient, ExecutionResponse, build_messages
from tiered_router.execution.dispatch import ProviderDispatchClient
from tiered_router.execution.litellm_client import LiteLLMExecutionClient
from tiered_router.execution.pattern import PatternExecutionClient
from tiered_router.execution.scripted import ScriptedExecutionClient, ScriptedStep

__all__ = [
    "ExecutionClient",
    "ExecutionResponse",
    "LiteLLMExecutionClient",
    "PatternExecutionClient",
    "ProviderDispatchClient",
    "ScriptedExecutionClient",
    "ScriptedStep",
    "build_messages",
]
