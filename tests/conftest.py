"""Shared test fixtures for Switchboard."""

from __future__ import annotations

from collections.abc import Mapping

import pytest
from cryptography.fernet import Fernet
from pydantic import SecretStr

from switchboard.types import InboundMessage, OnInbound
from switchboard.worker.protocol import (
    CompactDoneEnvelope,
    CompactDonePayload,
    ErrorEnvelope,
    ErrorPayload,
    InboundEnvelope,
    OutboundEnvelope,
    ResponseEnvelope,
    ResponsePayload,
)

# ---------------------------------------------------------------------------
# Shared helpers (plain functions, importable by test files)
# ---------------------------------------------------------------------------

# Cached property names that must be set via __dict__ (not model_construct).
_CACHED_PROPERTY_NAMES = frozenset(
    {
        "project_root",
        "data_dir",
        "groups_dir",
        "database_path",
        "credential_key_path",
        "timezone",
    }
)


def make_settings(**overrides):
    """Create a Settings object with sensible defaults for testing.

    Accepts both model fields (agent, worker, etc.) and cached property
    overrides (data_dir, groups_dir, etc.).

    Usage::

        s = make_settings(data_dir=tmp_path)
        s = make_settings(scheduler=SchedulerConfig(poll_interval=1))
    """
    from switchboard.config import (
        AgentConfig,
        LoggingConfig,
        SchedulerConfig,
        SecretsConfig,
        Settings,
        WorkerConfig,
    )

    cached = {k: overrides.pop(k) for k in list(overrides) if k in _CACHED_PROPERTY_NAMES}

    defaults = {
        "agent": AgentConfig(),
        "scheduler": SchedulerConfig(),
        "worker": WorkerConfig(),
        "logging": LoggingConfig(),
        "secrets": SecretsConfig(),
        "plugins": {},
    }
    defaults.update(overrides)
    s = Settings.model_construct(**defaults)

    for key, value in cached.items():
        s.__dict__[key] = value

    return s


class FakeChannel:
    """In-memory ChannelAdapter that records everything sent to it."""

    def __init__(self, kind: str = "fake", credentials: Mapping[str, str] | None = None) -> None:
        self.kind = kind
        self.credentials = dict(credentials or {})
        self.sent: list[tuple[str, str]] = []
        self.typing: list[tuple[str, bool]] = []
        self.starts = 0
        self.stops = 0
        self._on_inbound: OnInbound | None = None

    def on_message(self, callback: OnInbound) -> None:
        self._on_inbound = callback

    async def start(self) -> None:
        self.starts += 1

    async def stop(self) -> None:
        self.stops += 1

    async def send(self, group_id: str, text: str) -> None:
        self.sent.append((group_id, text))

    def set_typing(self, group_id: str, typing: bool) -> None:
        self.typing.append((group_id, typing))

    def is_configured(self) -> bool:
        return True

    async def receive(self, msg: InboundMessage) -> None:
        assert self._on_inbound is not None
        await self._on_inbound(msg)


class FakeWorker:
    """WorkerBoundary double that records posted envelopes.

    Replies are pushed back explicitly with ``respond``/``fail``/``emit``.
    """

    def __init__(self) -> None:
        self.posted: list[InboundEnvelope] = []
        self.on_envelope = None
        self.started = False
        self.terminated = False

    async def start(self, on_envelope) -> None:
        self.on_envelope = on_envelope
        self.started = True

    async def post(self, envelope: InboundEnvelope) -> None:
        self.posted.append(envelope)

    async def terminate(self) -> None:
        self.terminated = True

    @property
    def last(self) -> InboundEnvelope:
        return self.posted[-1]

    async def emit(self, envelope: OutboundEnvelope) -> None:
        await self.on_envelope(envelope)

    async def respond(self, text: str, *, request_id: str | None = None) -> None:
        env = self.last
        await self.emit(
            ResponseEnvelope(
                request_id=request_id or env.request_id,
                payload=ResponsePayload(group_id=env.payload.group_id, text=text),
            )
        )

    async def fail(self, error: str) -> None:
        env = self.last
        await self.emit(
            ErrorEnvelope(
                request_id=env.request_id,
                payload=ErrorPayload(group_id=env.payload.group_id, error=error),
            )
        )

    async def compact_done(self, summary: str) -> None:
        env = self.last
        await self.emit(
            CompactDoneEnvelope(
                request_id=env.request_id,
                payload=CompactDonePayload(group_id=env.payload.group_id, summary=summary),
            )
        )


# ---------------------------------------------------------------------------
# Autouse fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def reset_settings(monkeypatch, tmp_path):
    """Each test gets pure default settings rooted in its own tmp dir.

    No config.toml, no .env. A fresh credential key per test.
    """
    from switchboard.config import SecretsConfig
    from switchboard.crypto import reset_crypto

    safe = make_settings(
        project_root=tmp_path,
        data_dir=tmp_path / "data",
        groups_dir=tmp_path / "groups",
        database_path=tmp_path / "data" / "switchboard.db",
        credential_key_path=tmp_path / "data" / "credential.key",
        timezone="UTC",
        secrets=SecretsConfig(credential_key=SecretStr(Fernet.generate_key().decode())),
    )
    monkeypatch.setattr("switchboard.config._settings", safe)
    reset_crypto()
    yield safe
    reset_crypto()


@pytest.fixture(autouse=True, scope="session")
def _close_test_database():
    """Close the aiosqlite connection after all tests complete.

    Sync fixture using ``stop()`` + thread join: the connection was created
    on a function-scoped event loop that no longer exists.
    """
    yield
    import switchboard.db._connection as db_conn

    if db_conn._db is not None:
        db_conn._db.stop()
        if db_conn._db._thread is not None and db_conn._db._thread.is_alive():
            db_conn._db._thread.join(timeout=2)
        db_conn._db = None


# ---------------------------------------------------------------------------
# Reusable fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
async def database():
    """Fresh in-memory database."""
    from switchboard.db import _init_test_database

    await _init_test_database()


@pytest.fixture
def make_msg():
    """Factory fixture for creating inbound messages with defaults."""
    counter = iter(range(1, 10_000))

    def _make(
        content: str = "hello",
        *,
        group_id: str = "br:main",
        sender: str = "Alice",
        channel: str = "local",
        timestamp: str | None = None,
        id: str | None = None,
    ) -> InboundMessage:
        n = next(counter)
        return InboundMessage(
            id=id or f"m{n}",
            group_id=group_id,
            sender=sender,
            content=content,
            timestamp=timestamp or f"2024-01-01T00:00:{n % 60:02d}.{n:06d}+00:00",
            channel=channel,
        )

    return _make
