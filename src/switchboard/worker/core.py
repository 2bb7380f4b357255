"""Provider-agnostic agent core protocol.

The worker runner delegates every invocation to an ``AgentCore``, keeping
model and tool code out of the runner itself. Cores are loaded inside the
worker process by dotted path (``package.module:ClassName``).
"""

from __future__ import annotations

import importlib
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from switchboard.worker.protocol import InvocationPayload


@dataclass
class AgentEvent:
    """Event emitted by a core while handling one request.

    The type field determines which data keys are relevant:

    - "typing": no data
    - "tool_activity": tool (str), status (str)
    - "thinking": kind (str), label (str), detail (str)
    - "task_created": task (dict)
    - "token_usage": input_tokens, output_tokens, cache_read_tokens,
      cache_creation_tokens, context_limit (int)
    - "result": text (str)

    Every run must end with exactly one "result" event.
    """

    type: str
    data: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class AgentCore(Protocol):
    async def start(self) -> None:
        """Acquire clients or other resources before the first request."""
        ...

    def invoke(self, payload: InvocationPayload) -> AsyncIterator[AgentEvent]:
        """Answer the conversation in *payload*."""
        ...

    def compact(self, payload: InvocationPayload) -> AsyncIterator[AgentEvent]:
        """Summarize the conversation in *payload*; the result text is the summary."""
        ...

    async def stop(self) -> None: ...


def create_agent_core(path: str) -> AgentCore:
    """Import and instantiate the core at ``package.module:ClassName``.

    Raises:
        ImportError: If the module cannot be imported
        AttributeError: If the class doesn't exist in the module
        TypeError: If the instance doesn't satisfy the AgentCore protocol
    """
    module_path, _, class_name = path.partition(":")
    try:
        module = importlib.import_module(module_path)
    except ImportError as exc:
        raise ImportError(f"Failed to import agent core module '{module_path}': {exc}") from exc

    try:
        cls = getattr(module, class_name)
    except AttributeError as exc:
        raise AttributeError(f"Module '{module_path}' has no class '{class_name}'") from exc

    instance = cls()
    if not isinstance(instance, AgentCore):
        raise TypeError(f"Class {path} does not satisfy AgentCore protocol")
    return instance
