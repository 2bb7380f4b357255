"""Worker process entry point.

Reads one inbound envelope per line from stdin, runs it through the agent
core, and writes progress envelopes followed by exactly one terminal envelope
per request to stdout. stdout carries envelopes only; logs go to stderr,
which the host forwards to its own log.

Requests are handled one at a time in arrival order.
"""

from __future__ import annotations

import asyncio
import json
import os
import sys

from switchboard.logger import configure_for_worker, logger
from switchboard.utils import now_iso
from switchboard.worker.core import AgentCore, AgentEvent, create_agent_core
from switchboard.worker.protocol import (
    CompactDoneEnvelope,
    CompactDonePayload,
    CompactEnvelope,
    EnvelopeError,
    ErrorEnvelope,
    ErrorPayload,
    InboundEnvelope,
    OutboundEnvelope,
    ResponseEnvelope,
    ResponsePayload,
    TaskCreatedEnvelope,
    TaskCreatedPayload,
    ThinkingLogEntry,
    ThinkingLogEnvelope,
    ThinkingLogPayload,
    TokenUsage,
    TokenUsageEnvelope,
    ToolActivityEnvelope,
    ToolActivityPayload,
    TypingEnvelope,
    TypingPayload,
    decode_inbound,
    encode_envelope,
)

CORE_ENV_VAR = "SWITCHBOARD_WORKER_CORE"
DEFAULT_CORE = "switchboard.worker.cores.echo:EchoCore"

# Large enough for a full context window in one line.
_LINE_LIMIT = 16 * 1024 * 1024


def write_envelope(envelope: OutboundEnvelope) -> None:
    sys.stdout.write(encode_envelope(envelope) + "\n")
    sys.stdout.flush()


def _progress_envelope(
    request_id: str, group_id: str, event: AgentEvent
) -> OutboundEnvelope | None:
    data = event.data
    match event.type:
        case "typing":
            return TypingEnvelope(request_id=request_id, payload=TypingPayload(group_id=group_id))
        case "tool_activity":
            return ToolActivityEnvelope(
                request_id=request_id,
                payload=ToolActivityPayload(
                    group_id=group_id, tool=data["tool"], status=data.get("status", "")
                ),
            )
        case "thinking":
            entry = ThinkingLogEntry(
                group_id=group_id,
                kind=data.get("kind", "info"),
                label=data.get("label", ""),
                detail=data.get("detail", ""),
                timestamp=now_iso(),
            )
            return ThinkingLogEnvelope(
                request_id=request_id, payload=ThinkingLogPayload(entry=entry)
            )
        case "task_created":
            return TaskCreatedEnvelope(
                request_id=request_id, payload=TaskCreatedPayload(task=data["task"])
            )
        case "token_usage":
            return TokenUsageEnvelope(
                request_id=request_id, payload=TokenUsage(group_id=group_id, **data)
            )
    logger.warning("Ignoring unknown agent event", type=event.type)
    return None


async def handle(core: AgentCore, envelope: InboundEnvelope) -> OutboundEnvelope:
    """Run one request, writing progress as it happens. Returns the terminal envelope."""
    payload = envelope.payload
    request_id = envelope.request_id
    is_compact = isinstance(envelope, CompactEnvelope)
    events = core.compact(payload) if is_compact else core.invoke(payload)

    result: str | None = None
    try:
        async for event in events:
            if event.type == "result":
                result = str(event.data.get("text", ""))
                break
            progress = _progress_envelope(request_id, payload.group_id, event)
            if progress is not None:
                write_envelope(progress)
    except Exception as exc:
        logger.exception("Agent core failed", request_id=request_id)
        return ErrorEnvelope(
            request_id=request_id,
            payload=ErrorPayload(group_id=payload.group_id, error=str(exc) or type(exc).__name__),
        )

    if result is None:
        return ErrorEnvelope(
            request_id=request_id,
            payload=ErrorPayload(group_id=payload.group_id, error="Agent produced no result"),
        )
    if is_compact:
        return CompactDoneEnvelope(
            request_id=request_id,
            payload=CompactDonePayload(group_id=payload.group_id, summary=result),
        )
    return ResponseEnvelope(
        request_id=request_id,
        payload=ResponsePayload(group_id=payload.group_id, text=result),
    )


def _reject(line: bytes, exc: EnvelopeError) -> None:
    """Answer an undecodable request with an error envelope when it can be correlated."""
    logger.error("Rejected inbound envelope", error=str(exc))
    try:
        data = json.loads(line)
        request_id = data["request_id"]
        group_id = data["payload"]["group_id"]
    except (ValueError, KeyError, TypeError):
        return
    write_envelope(
        ErrorEnvelope(
            request_id=str(request_id),
            payload=ErrorPayload(group_id=str(group_id), error=str(exc)),
        )
    )


async def _stdin_reader() -> asyncio.StreamReader:
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader(limit=_LINE_LIMIT)
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
    return reader


async def main() -> None:
    core_path = os.environ.get(CORE_ENV_VAR, DEFAULT_CORE)
    core = create_agent_core(core_path)
    await core.start()
    logger.info("Worker ready", core=core_path, pid=os.getpid())

    reader = await _stdin_reader()
    try:
        while line := await reader.readline():
            if not line.strip():
                continue
            try:
                envelope = decode_inbound(line)
            except EnvelopeError as exc:
                _reject(line, exc)
                continue
            write_envelope(await handle(core, envelope))
    finally:
        await core.stop()
    logger.info("Worker stdin closed, exiting")


def run() -> None:
    configure_for_worker()
    asyncio.run(main())
