"""Host side of the worker boundary.

``SubprocessWorker`` owns the worker child process. Envelopes go out as JSON
lines on the child's stdin; everything the child prints to stdout is decoded
as an outbound envelope and handed to the ``on_envelope`` callback in arrival
order. stderr is forwarded to the host log.

The child is started lazily and restarted on the next ``post`` after it dies.
When it exits with requests still outstanding, a terminal ``error`` envelope
is synthesized for each so no caller waits on a dead process.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import os
from collections.abc import Awaitable, Callable
from typing import Protocol

from switchboard.logger import logger
from switchboard.utils import create_background_task
from switchboard.worker.protocol import (
    EnvelopeError,
    ErrorEnvelope,
    ErrorPayload,
    InboundEnvelope,
    OutboundEnvelope,
    decode_outbound,
    encode_envelope,
    is_terminal,
)
from switchboard.worker.runner import CORE_ENV_VAR

OnEnvelope = Callable[[OutboundEnvelope], Awaitable[None] | None]

_LINE_LIMIT = 16 * 1024 * 1024
_STOP_TIMEOUT = 5.0


class WorkerBoundary(Protocol):
    """What the coordinator needs from a worker boundary."""

    async def start(self, on_envelope: OnEnvelope) -> None: ...

    async def post(self, envelope: InboundEnvelope) -> None: ...

    async def terminate(self) -> None: ...


class WorkerUnavailableError(RuntimeError):
    """The worker process could not accept an envelope."""


class _Child:
    """One worker process plus the requests sent to it that have not finished."""

    def __init__(self, proc: asyncio.subprocess.Process) -> None:
        self.proc = proc
        self.outstanding: dict[str, str] = {}  # request_id -> group_id
        self.stdout_task: asyncio.Task[None] | None = None
        self.stderr_task: asyncio.Task[None] | None = None


class SubprocessWorker:
    def __init__(self, command: list[str], *, core: str | None = None) -> None:
        if not command:
            raise ValueError("Worker command must not be empty")
        self._command = command
        self._core = core
        self._on_envelope: OnEnvelope | None = None
        self._child: _Child | None = None
        self._spawn_lock = asyncio.Lock()
        self._closing = False

    @property
    def running(self) -> bool:
        return self._child is not None and self._child.proc.returncode is None

    async def start(self, on_envelope: OnEnvelope) -> None:
        self._on_envelope = on_envelope
        self._closing = False
        await self._ensure_child()

    async def post(self, envelope: InboundEnvelope) -> None:
        """Send *envelope* to the child, starting it first if needed.

        Raises WorkerUnavailableError when the child cannot be reached.
        """
        if self._on_envelope is None:
            raise RuntimeError("SubprocessWorker.start() must be called before post()")
        child = await self._ensure_child()
        assert child.proc.stdin is not None

        child.outstanding[envelope.request_id] = envelope.payload.group_id
        try:
            child.proc.stdin.write((encode_envelope(envelope) + "\n").encode())
            await child.proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            child.outstanding.pop(envelope.request_id, None)
            raise WorkerUnavailableError(f"Worker stdin closed: {exc}") from exc

    async def terminate(self) -> None:
        """Stop the child. Outstanding requests are abandoned."""
        self._closing = True
        child, self._child = self._child, None
        if child is None:
            return
        proc = child.proc
        if proc.returncode is None:
            if proc.stdin is not None:
                with contextlib.suppress(BrokenPipeError, ConnectionResetError):
                    proc.stdin.close()
            try:
                await asyncio.wait_for(proc.wait(), timeout=_STOP_TIMEOUT)
            except TimeoutError:
                logger.warning("Worker did not exit on stdin close, killing", pid=proc.pid)
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
                await proc.wait()
        for task in (child.stdout_task, child.stderr_task):
            if task is not None:
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        logger.info("Worker terminated", returncode=proc.returncode)

    # -- internals ---------------------------------------------------------

    async def _ensure_child(self) -> _Child:
        async with self._spawn_lock:
            if self._child is not None and self._child.proc.returncode is None:
                return self._child
            if self._child is not None:
                logger.warning(
                    "Worker process exited, restarting",
                    returncode=self._child.proc.returncode,
                )
            self._child = await self._spawn()
            return self._child

    async def _spawn(self) -> _Child:
        env = dict(os.environ)
        if self._core:
            env[CORE_ENV_VAR] = self._core
        proc = await asyncio.create_subprocess_exec(
            *self._command,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
            limit=_LINE_LIMIT,
        )
        logger.info("Worker started", pid=proc.pid, command=self._command[0])
        child = _Child(proc)
        child.stdout_task = create_background_task(
            self._read_stdout(child), name=f"worker-stdout-{proc.pid}"
        )
        child.stderr_task = create_background_task(
            self._read_stderr(child), name=f"worker-stderr-{proc.pid}"
        )
        return child

    async def _read_stdout(self, child: _Child) -> None:
        assert child.proc.stdout is not None
        while line := await child.proc.stdout.readline():
            if not line.strip():
                continue
            try:
                envelope = decode_outbound(line)
            except EnvelopeError as exc:
                logger.warning("Discarding malformed worker output", error=str(exc))
                continue
            if is_terminal(envelope):
                child.outstanding.pop(envelope.request_id, None)
            await self._dispatch(envelope)

        returncode = await child.proc.wait()
        if self._closing or not child.outstanding:
            return
        logger.error(
            "Worker exited with requests outstanding",
            returncode=returncode,
            outstanding=len(child.outstanding),
        )
        pending, child.outstanding = child.outstanding, {}
        for request_id, group_id in pending.items():
            await self._dispatch(
                ErrorEnvelope(
                    request_id=request_id,
                    payload=ErrorPayload(
                        group_id=group_id,
                        error=f"Worker process exited unexpectedly (code {returncode})",
                    ),
                )
            )

    async def _read_stderr(self, child: _Child) -> None:
        assert child.proc.stderr is not None
        pid = child.proc.pid
        while line := await child.proc.stderr.readline():
            text = line.decode(errors="replace").rstrip()
            if text:
                logger.debug(text, worker=pid)

    async def _dispatch(self, envelope: OutboundEnvelope) -> None:
        if self._on_envelope is None:
            return
        try:
            result = self._on_envelope(envelope)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Envelope handler failed", kind=envelope.kind)
