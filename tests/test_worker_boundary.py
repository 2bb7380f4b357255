"""Tests for SubprocessWorker against real child processes."""

from __future__ import annotations

import asyncio
import sys

import pytest

from switchboard.worker.boundary import SubprocessWorker
from switchboard.worker.protocol import (
    CompactDoneEnvelope,
    CompactEnvelope,
    ErrorEnvelope,
    InvocationPayload,
    InvokeEnvelope,
    OutboundEnvelope,
    ResponseEnvelope,
    is_terminal,
)

ECHO_COMMAND = [sys.executable, "-m", "switchboard.worker"]
ECHO_CORE = "switchboard.worker.cores.echo:EchoCore"
# Reads one request, then dies without answering.
CRASH_COMMAND = [sys.executable, "-c", "import sys; sys.stdin.readline(); sys.exit(3)"]


class Collector:
    def __init__(self) -> None:
        self.envelopes: list[OutboundEnvelope] = []
        self._terminal = asyncio.Event()

    def __call__(self, envelope: OutboundEnvelope) -> None:
        self.envelopes.append(envelope)
        if is_terminal(envelope):
            self._terminal.set()

    async def wait_terminal(self, timeout: float = 15.0) -> OutboundEnvelope:
        await asyncio.wait_for(self._terminal.wait(), timeout)
        self._terminal.clear()
        return [e for e in self.envelopes if is_terminal(e)][-1]


def _invoke(request_id: str, text: str) -> InvokeEnvelope:
    return InvokeEnvelope(
        request_id=request_id,
        payload=InvocationPayload(
            group_id="br:main", messages=[{"role": "user", "content": text}]
        ),
    )


@pytest.fixture
async def echo_worker():
    worker = SubprocessWorker(ECHO_COMMAND, core=ECHO_CORE)
    collector = Collector()
    await worker.start(collector)
    yield worker, collector
    await worker.terminate()


class TestEchoWorker:
    async def test_round_trip(self, echo_worker):
        worker, collector = echo_worker

        await worker.post(_invoke("r1", "You: hello"))
        terminal = await collector.wait_terminal()

        assert isinstance(terminal, ResponseEnvelope)
        assert terminal.request_id == "r1"
        assert terminal.payload.text == "You: hello"
        kinds = [e.kind for e in collector.envelopes]
        assert kinds[0] == "typing"
        assert kinds[-1] == "response"

    async def test_requests_answered_in_order(self, echo_worker):
        worker, collector = echo_worker

        await worker.post(_invoke("a", "first"))
        await worker.post(_invoke("b", "second"))
        await collector.wait_terminal()
        if len([e for e in collector.envelopes if is_terminal(e)]) < 2:
            await collector.wait_terminal()

        terminals = [e for e in collector.envelopes if is_terminal(e)]
        assert [(t.request_id, t.payload.text) for t in terminals] == [
            ("a", "first"),
            ("b", "second"),
        ]

    async def test_compact(self, echo_worker):
        worker, collector = echo_worker

        await worker.post(
            CompactEnvelope(
                request_id="c1",
                payload=InvocationPayload(
                    group_id="tg:1",
                    messages=[
                        {"role": "user", "content": "Bob: hi"},
                        {"role": "assistant", "content": "hey"},
                    ],
                ),
            )
        )
        terminal = await collector.wait_terminal()

        assert isinstance(terminal, CompactDoneEnvelope)
        assert terminal.payload.group_id == "tg:1"
        assert terminal.payload.summary == "user: Bob: hi\nassistant: hey"

    async def test_terminate_stops_child(self, echo_worker):
        worker, _ = echo_worker
        assert worker.running is True

        await worker.terminate()

        assert worker.running is False


class TestCrashingWorker:
    async def test_exit_synthesizes_error_then_restarts(self):
        worker = SubprocessWorker(CRASH_COMMAND)
        collector = Collector()
        await worker.start(collector)
        try:
            await worker.post(_invoke("r1", "hello"))
            terminal = await collector.wait_terminal()

            assert isinstance(terminal, ErrorEnvelope)
            assert terminal.request_id == "r1"
            assert terminal.payload.group_id == "br:main"
            assert terminal.payload.error == "Worker process exited unexpectedly (code 3)"

            # The next post spawns a fresh child.
            await worker.post(_invoke("r2", "again"))
            terminal = await collector.wait_terminal()
            assert terminal.request_id == "r2"
        finally:
            await worker.terminate()

    async def test_post_before_start(self):
        worker = SubprocessWorker(ECHO_COMMAND)
        with pytest.raises(RuntimeError, match="start"):
            await worker.post(_invoke("r1", "x"))

    def test_empty_command_rejected(self):
        with pytest.raises(ValueError):
            SubprocessWorker([])
