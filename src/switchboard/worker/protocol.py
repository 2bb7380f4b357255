"""Worker boundary wire protocol.

Envelopes are the only thing that crosses between the coordinator and the
worker process: one JSON object per line, ``{"kind": ..., "request_id": ...,
"payload": {...}}``. Both directions are closed tagged unions validated with
pydantic, so a malformed or unknown envelope fails at the boundary instead of
deep inside a handler.

Inbound (coordinator → worker): ``invoke``, ``compact``.
Outbound (worker → coordinator): terminal ``response``, ``error``,
``compact-done``; progress ``typing``, ``tool-activity``, ``thinking-log``,
``task-created``, ``token-usage``.

Every invocation yields zero or more progress envelopes followed by exactly
one terminal envelope carrying the same ``request_id``.
"""

from __future__ import annotations

import json
from typing import Annotated, Any, Literal, TypeAlias

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError


class EnvelopeError(ValueError):
    """Raised when a line on the wire is not a valid envelope."""


class _WireModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------


class InvocationPayload(_WireModel):
    group_id: str
    messages: list[dict[str, str]] = []
    system_prompt: str = ""
    provider: Literal["anthropic", "ollama"] = "anthropic"
    api_key: str = Field(default="", repr=False)
    ollama_url: str = ""
    model: str = ""
    max_tokens: int = 0


class ResponsePayload(_WireModel):
    group_id: str
    text: str


class ErrorPayload(_WireModel):
    group_id: str
    error: str


class CompactDonePayload(_WireModel):
    group_id: str
    summary: str


class TypingPayload(_WireModel):
    group_id: str


class ToolActivityPayload(_WireModel):
    group_id: str
    tool: str
    status: str


class ThinkingLogEntry(_WireModel):
    group_id: str
    kind: Literal["info", "thinking", "tool-call", "tool-result", "text"] = "info"
    label: str = ""
    detail: str = ""
    timestamp: str = ""


class ThinkingLogPayload(_WireModel):
    entry: ThinkingLogEntry


class TaskCreatedPayload(_WireModel):
    task: dict[str, Any]


class TokenUsage(_WireModel):
    group_id: str
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0
    context_limit: int = 0


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------


class _Envelope(_WireModel):
    request_id: str


class InvokeEnvelope(_Envelope):
    kind: Literal["invoke"] = "invoke"
    payload: InvocationPayload


class CompactEnvelope(_Envelope):
    kind: Literal["compact"] = "compact"
    payload: InvocationPayload


class ResponseEnvelope(_Envelope):
    kind: Literal["response"] = "response"
    payload: ResponsePayload


class ErrorEnvelope(_Envelope):
    kind: Literal["error"] = "error"
    payload: ErrorPayload


class CompactDoneEnvelope(_Envelope):
    kind: Literal["compact-done"] = "compact-done"
    payload: CompactDonePayload


class TypingEnvelope(_Envelope):
    kind: Literal["typing"] = "typing"
    payload: TypingPayload


class ToolActivityEnvelope(_Envelope):
    kind: Literal["tool-activity"] = "tool-activity"
    payload: ToolActivityPayload


class ThinkingLogEnvelope(_Envelope):
    kind: Literal["thinking-log"] = "thinking-log"
    payload: ThinkingLogPayload


class TaskCreatedEnvelope(_Envelope):
    kind: Literal["task-created"] = "task-created"
    payload: TaskCreatedPayload


class TokenUsageEnvelope(_Envelope):
    kind: Literal["token-usage"] = "token-usage"
    payload: TokenUsage


InboundEnvelope: TypeAlias = InvokeEnvelope | CompactEnvelope
OutboundEnvelope: TypeAlias = (
    ResponseEnvelope
    | ErrorEnvelope
    | CompactDoneEnvelope
    | TypingEnvelope
    | ToolActivityEnvelope
    | ThinkingLogEnvelope
    | TaskCreatedEnvelope
    | TokenUsageEnvelope
)

TERMINAL_KINDS = frozenset({"response", "error", "compact-done"})

_inbound_adapter: TypeAdapter[Any] = TypeAdapter(
    Annotated[InvokeEnvelope | CompactEnvelope, Field(discriminator="kind")]
)
_outbound_adapter: TypeAdapter[Any] = TypeAdapter(
    Annotated[
        ResponseEnvelope
        | ErrorEnvelope
        | CompactDoneEnvelope
        | TypingEnvelope
        | ToolActivityEnvelope
        | ThinkingLogEnvelope
        | TaskCreatedEnvelope
        | TokenUsageEnvelope,
        Field(discriminator="kind"),
    ]
)


def is_terminal(envelope: OutboundEnvelope) -> bool:
    return envelope.kind in TERMINAL_KINDS


def encode_envelope(envelope: InboundEnvelope | OutboundEnvelope) -> str:
    """Serialize an envelope to a single JSON line (no trailing newline)."""
    return envelope.model_dump_json()


def _decode(adapter: TypeAdapter[Any], line: str | bytes) -> Any:
    try:
        data = json.loads(line)
    except json.JSONDecodeError as exc:
        raise EnvelopeError(f"Envelope is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise EnvelopeError(f"Envelope must be a JSON object, got {type(data).__name__}")
    try:
        return adapter.validate_python(data)
    except ValidationError as exc:
        raise EnvelopeError(f"Invalid {data.get('kind')!r} envelope: {exc}") from exc


def decode_inbound(line: str | bytes) -> InboundEnvelope:
    return _decode(_inbound_adapter, line)


def decode_outbound(line: str | bytes) -> OutboundEnvelope:
    return _decode(_outbound_adapter, line)
