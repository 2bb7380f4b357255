"""Echo core: answers without calling a model.

Used as the default core and in tests. It echoes the last user turn and
compacts a conversation by joining its transcript.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

from switchboard.worker.core import AgentEvent
from switchboard.worker.protocol import InvocationPayload


class EchoCore:
    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    async def invoke(self, payload: InvocationPayload) -> AsyncIterator[AgentEvent]:
        yield AgentEvent("typing")
        last = next(
            (m["content"] for m in reversed(payload.messages) if m.get("role") == "user"),
            "",
        )
        yield AgentEvent("thinking", {"kind": "text", "label": "echo", "detail": last})
        yield AgentEvent(
            "token_usage",
            {
                "input_tokens": sum(len(m.get("content", "")) for m in payload.messages),
                "output_tokens": len(last),
                "context_limit": payload.max_tokens,
            },
        )
        yield AgentEvent("result", {"text": last})

    async def compact(self, payload: InvocationPayload) -> AsyncIterator[AgentEvent]:
        lines = [f"{m.get('role', 'user')}: {m.get('content', '')}" for m in payload.messages]
        yield AgentEvent("result", {"text": "\n".join(lines)})
