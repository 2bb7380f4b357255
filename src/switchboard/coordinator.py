"""The coordinator: one state machine between channels and the worker.

Inbound messages from every channel are persisted, checked against the
trigger policy and, when they trigger, appended to a FIFO queue. The queue is
drained one invocation at a time: an invocation is dispatched to the worker
boundary and the coordinator stays ``thinking`` until that request's terminal
envelope has been delivered. Scheduled tasks go through the same queue.

Everything here runs on the event loop; no locks guard coordinator state.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Literal

from croniter import croniter

from switchboard.config import (
    DEFAULT_GROUP_ID,
    MEMORY_FILE,
    SCHEDULED_TASK_MARKER,
    SCHEDULER_SENDER,
    ConfigKey,
    RuntimeConfig,
    Settings,
)
from switchboard.crypto import CredentialDecodeError, decrypt_value, encrypt_value
from switchboard.db import (
    build_conversation_messages,
    clear_group_messages,
    delete_config,
    get_all_skills,
    get_all_tasks,
    get_config,
    get_enabled_skills,
    replace_group_history,
    save_message,
    save_task,
    set_config,
    update_skill_content,
)
from switchboard.db import delete_skill as db_delete_skill
from switchboard.db import delete_task as db_delete_task
from switchboard.db import save_skill as db_save_skill
from switchboard.db import set_skill_enabled as db_set_skill_enabled
from switchboard.db import set_task_enabled as db_set_task_enabled
from switchboard.event_bus import (
    ContextCompactedEvent,
    ErrorEvent,
    EventBus,
    MessageEvent,
    ReadyEvent,
    SessionResetEvent,
    StateChangeEvent,
    ThinkingLogEvent,
    TokenUsageEvent,
    ToolActivityEvent,
    TypingEvent,
)
from switchboard.logger import logger
from switchboard.notify import play_chime
from switchboard.plugin import ChannelSpec
from switchboard.prompt import build_system_prompt
from switchboard.router import ChannelRegistry, ChannelUnavailableError, strip_internal_tags
from switchboard.scheduler import TaskScheduler
from switchboard.storage import read_group_file
from switchboard.types import (
    ChannelAdapter,
    CoordinatorState,
    InboundMessage,
    QueuedInvocation,
    ScheduledTask,
    Skill,
    StoredMessage,
)
from switchboard.utils import IdleTimer, create_background_task, generate_message_id, now_iso
from switchboard.worker.boundary import WorkerBoundary
from switchboard.worker.protocol import (
    CompactDoneEnvelope,
    CompactEnvelope,
    ErrorEnvelope,
    ErrorPayload,
    InvocationPayload,
    InvokeEnvelope,
    OutboundEnvelope,
    ResponseEnvelope,
    TaskCreatedEnvelope,
    ThinkingLogEnvelope,
    TokenUsageEnvelope,
    ToolActivityEnvelope,
    TypingEnvelope,
    is_terminal,
)

COMPACTION_HEADER = "📝 **Context Compacted**"
_ENCRYPTED_KEYS = frozenset({ConfigKey.ANTHROPIC_API_KEY})


async def load_runtime_config(settings: Settings) -> RuntimeConfig:
    """Build the effective configuration from the config store.

    Stored values win over the static settings. A stored credential that
    cannot be decrypted is cleared and the provider treated as unconfigured.
    """
    base = RuntimeConfig.from_settings(settings)
    name = await get_config(ConfigKey.ASSISTANT_NAME) or base.assistant_name
    provider = await get_config(ConfigKey.PROVIDER) or base.provider
    if provider not in ("anthropic", "ollama"):
        logger.warning("Ignoring unknown stored provider", value=provider)
        provider = base.provider
    ollama_url = await get_config(ConfigKey.OLLAMA_URL) or base.ollama_url
    model = await get_config(ConfigKey.MODEL) or base.model
    max_tokens_raw = await get_config(ConfigKey.MAX_TOKENS)
    try:
        max_tokens = int(max_tokens_raw) if max_tokens_raw else base.max_tokens
    except ValueError:
        logger.warning("Ignoring invalid stored max_tokens", value=max_tokens_raw)
        max_tokens = base.max_tokens

    api_key = ""
    stored_key = await get_config(ConfigKey.ANTHROPIC_API_KEY)
    if stored_key:
        try:
            api_key = decrypt_value(stored_key)
        except CredentialDecodeError:
            logger.warning("Stored API key is unreadable, clearing it")
            await delete_config(ConfigKey.ANTHROPIC_API_KEY)

    return RuntimeConfig(
        assistant_name=name,
        provider=provider,
        ollama_url=ollama_url,
        api_key=api_key,
        model=model,
        max_tokens=max_tokens,
    )


@dataclass
class _InFlight:
    request_id: str
    group_id: str
    kind: Literal["invoke", "compact"]


class Coordinator:
    def __init__(
        self,
        *,
        config: RuntimeConfig,
        worker: WorkerBoundary,
        channel_specs: list[ChannelSpec],
        builtin_kind: str = "local",
        bus: EventBus | None = None,
        chime: Callable[[], None] = play_chime,
        context_window: int = 50,
        worker_timeout: float = 600.0,
        poll_interval: float = 60.0,
        timezone: str = "UTC",
    ) -> None:
        self.bus = bus or EventBus()
        self.registry = ChannelRegistry(builtin_kind)
        self._specs: dict[str, ChannelSpec] = {}
        for spec in channel_specs:
            self.registry.add_route(spec.prefix, spec.kind)
            self._specs[spec.kind] = spec
        self.scheduler = TaskScheduler(
            self._on_scheduled, poll_interval=poll_interval, timezone=timezone
        )

        self._config = config
        self._worker = worker
        self._chime = chime
        self._context_window = context_window
        self._worker_timeout = worker_timeout

        self._state = CoordinatorState.IDLE
        self._queue: deque[QueuedInvocation] = deque()
        self._draining = False
        self._in_flight: _InFlight | None = None
        self._watchdog: IdleTimer | None = None
        self._pending_chime: set[str] = set()

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> CoordinatorState:
        return self._state

    @property
    def config(self) -> RuntimeConfig:
        return self._config

    @property
    def queue(self) -> tuple[QueuedInvocation, ...]:
        return tuple(self._queue)

    @property
    def pending_chime(self) -> frozenset[str]:
        return frozenset(self._pending_chime)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        for spec in self._specs.values():
            credentials = await self._load_channel_credentials(spec)
            if credentials is None:
                logger.info("Channel not configured, skipping", channel=spec.kind)
                continue
            try:
                await self._attach_channel(spec, credentials)
            except Exception:
                logger.exception("Failed to start channel", channel=spec.kind)

        await self._worker.start(self._on_envelope)
        self.scheduler.start()
        logger.info(
            "Coordinator ready",
            assistant=self._config.assistant_name,
            provider=self._config.provider,
            channels=[a.kind for a in self.registry.adapters()],
        )
        self.bus.publish(ReadyEvent())

    async def shutdown(self) -> None:
        """Stop scheduler, channels and worker. In-flight work is abandoned."""
        await self.scheduler.stop()
        for adapter in self.registry.adapters():
            try:
                await adapter.stop()
            except Exception:
                logger.exception("Failed to stop channel", channel=adapter.kind)
        self._cancel_watchdog()
        await self._worker.terminate()
        logger.info("Coordinator shut down")

    # ------------------------------------------------------------------
    # Ingestion and the queue
    # ------------------------------------------------------------------

    def is_trigger(self, msg: InboundMessage) -> bool:
        if msg.group_id == DEFAULT_GROUP_ID:
            return True
        return self._config.trigger_pattern.search(msg.content.strip()) is not None

    async def ingest(self, msg: InboundMessage) -> StoredMessage:
        """Persist *msg*, then queue it if it triggers the assistant."""
        stored = StoredMessage.from_inbound(msg, is_trigger=self.is_trigger(msg))
        await save_message(stored)
        self.bus.publish(MessageEvent(stored))

        if stored.is_trigger:
            self._queue.append(QueuedInvocation(group_id=msg.group_id, content=msg.content))
            await self.drain()
        return stored

    async def _on_scheduled(self, group_id: str, prompt: str) -> None:
        self._queue.append(QueuedInvocation(group_id=group_id, content=prompt))
        await self.drain()

    async def drain(self) -> None:
        """Dispatch queued invocations while the coordinator is idle.

        Returns immediately when a drain is already running; that drain picks
        up anything queued meanwhile. Terminal delivery calls this again.
        """
        if self._draining:
            return
        self._draining = True
        try:
            while self._queue and self._state is CoordinatorState.IDLE:
                item = self._queue.popleft()
                if not self._config.is_configured():
                    # Only the head is discarded; later items wait for the next drain.
                    self.bus.publish(
                        ErrorEvent(item.group_id, self._config.not_configured_message())
                    )
                    break
                try:
                    await self.invoke_agent(item.group_id, item.content)
                except Exception:
                    logger.exception("Failed to invoke agent", group_id=item.group_id)
                    self._abort(item.group_id)
        finally:
            self._draining = False

    async def invoke_agent(self, group_id: str, content: str) -> str:
        """Dispatch one invocation. Returns once the envelope is sent."""
        self._set_state(CoordinatorState.THINKING)
        self._set_typing(group_id, True)

        if content.startswith(SCHEDULED_TASK_MARKER):
            self._pending_chime.add(group_id)
            synthetic = StoredMessage(
                id=generate_message_id("sched"),
                group_id=group_id,
                sender=SCHEDULER_SENDER,
                content=content,
                timestamp=now_iso(),
                channel=self.registry.kind_for(group_id),
                is_from_me=False,
                is_trigger=True,
            )
            await save_message(synthetic)
            self.bus.publish(MessageEvent(synthetic))

        payload = await self._build_payload(group_id)
        request_id = generate_message_id("invoke")
        self._dispatching(request_id, group_id, "invoke")
        await self._worker.post(InvokeEnvelope(request_id=request_id, payload=payload))
        logger.info("Invocation dispatched", group_id=group_id, request_id=request_id)
        return request_id

    async def _build_payload(self, group_id: str) -> InvocationPayload:
        cfg = self._config
        try:
            memory = await read_group_file(group_id, MEMORY_FILE)
        except FileNotFoundError:
            memory = ""
        skills = await get_enabled_skills()
        messages = await build_conversation_messages(group_id, self._context_window)
        return InvocationPayload(
            group_id=group_id,
            messages=messages,
            system_prompt=build_system_prompt(cfg.assistant_name, memory, skills),
            provider=cfg.provider,
            api_key=cfg.api_key.get_secret_value(),
            ollama_url=cfg.ollama_url,
            model=cfg.model,
            max_tokens=cfg.max_tokens,
        )

    def _dispatching(
        self, request_id: str, group_id: str, kind: Literal["invoke", "compact"]
    ) -> None:
        self._in_flight = _InFlight(request_id, group_id, kind)
        if self._worker_timeout > 0:
            self._watchdog = IdleTimer(self._worker_timeout, self._on_watchdog)
            self._watchdog.reset()

    def _abort(self, group_id: str) -> None:
        """Undo a dispatch that never reached the worker."""
        self._cancel_watchdog()
        self._in_flight = None
        self._pending_chime.discard(group_id)
        self._set_typing(group_id, False)
        self._set_state(CoordinatorState.IDLE)

    # ------------------------------------------------------------------
    # Worker envelopes
    # ------------------------------------------------------------------

    async def _on_envelope(self, envelope: OutboundEnvelope) -> None:
        current = self._in_flight
        is_current = current is not None and envelope.request_id == current.request_id

        if is_terminal(envelope):
            if not is_current:
                logger.warning(
                    "Dropping terminal envelope for unknown request",
                    kind=envelope.kind,
                    request_id=envelope.request_id,
                )
                return
            self._cancel_watchdog()
            self._in_flight = None
            match envelope:
                case ResponseEnvelope(payload=p):
                    await self.deliver(p.group_id, p.text)
                case ErrorEnvelope(payload=p):
                    logger.error("Worker reported error", group_id=p.group_id, error=p.error)
                    await self.deliver(p.group_id, f"⚠️ Error: {p.error}")
                case CompactDoneEnvelope(payload=p):
                    await self._complete_compaction(p.group_id, p.summary)
            await self.drain()
            return

        if isinstance(envelope, TaskCreatedEnvelope):
            await self._save_agent_task(envelope.payload.task)
            return
        if not is_current:
            logger.debug("Ignoring progress for finished request", kind=envelope.kind)
            return
        if self._watchdog is not None:
            self._watchdog.reset()

        match envelope:
            case TypingEnvelope(payload=p):
                self._set_typing(p.group_id, True)
            case ToolActivityEnvelope(payload=p):
                self.bus.publish(ToolActivityEvent(p.group_id, p.tool, p.status))
            case ThinkingLogEnvelope(payload=p):
                self.bus.publish(ThinkingLogEvent(p.entry))
            case TokenUsageEnvelope(payload=p):
                self.bus.publish(TokenUsageEvent(p))

    def _on_watchdog(self) -> None:
        current = self._in_flight
        if current is None:
            return
        logger.error(
            "Invocation timed out",
            group_id=current.group_id,
            request_id=current.request_id,
            timeout=self._worker_timeout,
        )
        create_background_task(
            self._on_envelope(
                ErrorEnvelope(
                    request_id=current.request_id,
                    payload=ErrorPayload(
                        group_id=current.group_id,
                        error=f"No response from the agent after {self._worker_timeout:g}s",
                    ),
                )
            ),
            name="invocation-timeout",
        )

    def _cancel_watchdog(self) -> None:
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None

    async def _save_agent_task(self, data: dict) -> None:
        try:
            task = ScheduledTask.from_dict(
                {"id": generate_message_id("task"), "created_at": now_iso(), **data}
            )
            if not croniter.is_valid(task.schedule):
                raise ValueError(f"Invalid cron expression: {task.schedule}")
            await save_task(task)
            logger.info("Saved task created by agent", task_id=task.id, group_id=task.group_id)
        except Exception:
            logger.exception("Failed to save task from agent")

    async def deliver(self, group_id: str, text: str) -> StoredMessage | None:
        """Persist and route a reply, then return to idle.

        Replies that are entirely internal reasoning are dropped. Returns the
        stored reply, or None when nothing was delivered.
        """
        text = strip_internal_tags(text)
        stored: StoredMessage | None = None
        try:
            if not text:
                logger.info("Reply had no visible text", group_id=group_id)
                self._pending_chime.discard(group_id)
                return None
            stored = StoredMessage(
                id=generate_message_id("reply"),
                group_id=group_id,
                sender=self._config.assistant_name,
                content=text,
                timestamp=now_iso(),
                channel=self.registry.kind_for(group_id),
                is_from_me=True,
                is_trigger=False,
            )
            await save_message(stored)
            try:
                await self.registry.send(group_id, text)
            except Exception:
                logger.exception("Failed to send reply", group_id=group_id)
            if group_id in self._pending_chime:
                self._pending_chime.discard(group_id)
                self._ring()
            self.bus.publish(MessageEvent(stored))
            return stored
        finally:
            self._set_typing(group_id, False)
            self._set_state(CoordinatorState.IDLE)

    def _ring(self) -> None:
        try:
            self._chime()
        except Exception:
            logger.exception("Notification chime failed")

    # ------------------------------------------------------------------
    # Compaction and sessions
    # ------------------------------------------------------------------

    async def compact(self, group_id: str = DEFAULT_GROUP_ID) -> bool:
        """Ask the worker to summarize *group_id*'s history.

        Returns False, after publishing an ErrorEvent, when the provider is
        unconfigured or an invocation is in progress.
        """
        cfg = self._config
        if not cfg.is_configured():
            what = "Ollama URL" if cfg.provider == "ollama" else "API key"
            self.bus.publish(
                ErrorEvent(group_id, f"{what} not configured. Cannot compact context.")
            )
            return False
        if self._state is not CoordinatorState.IDLE:
            self.bus.publish(
                ErrorEvent(
                    group_id,
                    "Cannot compact while processing. Wait for the current response to finish.",
                )
            )
            return False

        self._set_state(CoordinatorState.THINKING)
        self._set_typing(group_id, True)
        try:
            payload = await self._build_payload(group_id)
            request_id = generate_message_id("compact")
            self._dispatching(request_id, group_id, "compact")
            await self._worker.post(CompactEnvelope(request_id=request_id, payload=payload))
        except Exception:
            self._abort(group_id)
            raise
        logger.info("Compaction dispatched", group_id=group_id, request_id=request_id)
        return True

    async def _complete_compaction(self, group_id: str, summary: str) -> None:
        try:
            stored = StoredMessage(
                id=generate_message_id("compact"),
                group_id=group_id,
                sender=self._config.assistant_name,
                content=f"{COMPACTION_HEADER}\n\n{summary}",
                timestamp=now_iso(),
                channel=self.registry.kind_for(group_id),
                is_from_me=True,
                is_trigger=False,
            )
            await replace_group_history(group_id, stored)
            self.bus.publish(ContextCompactedEvent(group_id, summary))
            logger.info("Context compacted", group_id=group_id)
        finally:
            self._set_typing(group_id, False)
            self._set_state(CoordinatorState.IDLE)

    async def new_session(self, group_id: str = DEFAULT_GROUP_ID) -> None:
        await clear_group_messages(group_id)
        self.bus.publish(SessionResetEvent(group_id))
        logger.info("Session reset", group_id=group_id)

    # ------------------------------------------------------------------
    # Configuration setters
    # ------------------------------------------------------------------

    async def _update(self, key: ConfigKey, stored_value: str, **changes: object) -> None:
        # Persist first; a failed write leaves the current config in place.
        value = encrypt_value(stored_value) if key in _ENCRYPTED_KEYS else stored_value
        await set_config(key, value)
        self._config = self._config.evolve(**changes)
        logger.info("Configuration updated", key=str(key), version=self._config.version)

    async def set_assistant_name(self, name: str) -> None:
        name = name.strip()
        if not name:
            raise ValueError("Assistant name must not be empty")
        await self._update(ConfigKey.ASSISTANT_NAME, name, assistant_name=name)

    async def set_provider(self, provider: str) -> None:
        if provider not in ("anthropic", "ollama"):
            raise ValueError(f"Unknown provider: {provider!r}")
        await self._update(ConfigKey.PROVIDER, provider, provider=provider)

    async def set_ollama_url(self, url: str) -> None:
        await self._update(ConfigKey.OLLAMA_URL, url, ollama_url=url)

    async def set_api_key(self, key: str) -> None:
        await self._update(ConfigKey.ANTHROPIC_API_KEY, key, api_key=key)

    async def set_model(self, model: str) -> None:
        await self._update(ConfigKey.MODEL, model, model=model)

    async def set_max_tokens(self, max_tokens: int) -> None:
        if max_tokens < 1:
            raise ValueError("max_tokens must be positive")
        await self._update(ConfigKey.MAX_TOKENS, str(max_tokens), max_tokens=max_tokens)

    # ------------------------------------------------------------------
    # Channels
    # ------------------------------------------------------------------

    async def _load_channel_credentials(self, spec: ChannelSpec) -> dict[str, str] | None:
        """Stored credentials for *spec*, or None when it should not start."""
        if not spec.optional:
            return {}
        credentials: dict[str, str] = {}
        for key in spec.config_keys:
            stored = await get_config(key)
            if not stored:
                return None
            try:
                credentials[key] = decrypt_value(stored)
            except CredentialDecodeError:
                logger.warning("Stored channel credential is unreadable, clearing it", key=key)
                await delete_config(key)
                return None
        return credentials

    async def _attach_channel(
        self, spec: ChannelSpec, credentials: Mapping[str, str]
    ) -> ChannelAdapter:
        adapter = spec.factory(credentials)
        adapter.on_message(self.ingest)
        await adapter.start()
        self.registry.attach(adapter)
        logger.info("Channel started", channel=spec.kind, prefix=spec.prefix)
        return adapter

    async def configure_channel(self, kind: str, **credentials: str) -> ChannelAdapter:
        """Store credentials for a channel and (re)start it with them."""
        spec = self._specs.get(kind)
        if spec is None:
            raise ChannelUnavailableError(f"Unknown channel: {kind!r}")
        missing = [k for k in spec.config_keys if not credentials.get(k)]
        if missing:
            raise ValueError(f"Missing credentials for {kind}: {', '.join(missing)}")

        for key in spec.config_keys:
            await set_config(key, encrypt_value(credentials[key]))

        old = self.registry.detach(kind)
        if old is not None:
            try:
                await old.stop()
            except Exception:
                logger.exception("Failed to stop channel", channel=kind)
        return await self._attach_channel(spec, {k: credentials[k] for k in spec.config_keys})

    async def submit_message(self, text: str, group_id: str = DEFAULT_GROUP_ID) -> InboundMessage:
        """Submit text through the built-in channel, as if the user typed it."""
        local = self.registry.get(self.registry.builtin_kind)
        submit = getattr(local, "submit", None)
        if submit is None:
            raise ChannelUnavailableError("Built-in channel is not available")
        return await submit(text, group_id)

    # ------------------------------------------------------------------
    # Tasks and skills
    # ------------------------------------------------------------------

    async def create_task(self, group_id: str, schedule: str, prompt: str) -> ScheduledTask:
        if not croniter.is_valid(schedule):
            raise ValueError(f"Invalid cron expression: {schedule}")
        task = ScheduledTask(
            id=generate_message_id("task"),
            group_id=group_id,
            schedule=schedule,
            prompt=prompt,
            created_at=now_iso(),
        )
        await save_task(task)
        return task

    async def list_tasks(self) -> list[ScheduledTask]:
        return await get_all_tasks()

    async def set_task_enabled(self, task_id: str, enabled: bool) -> bool:
        return await db_set_task_enabled(task_id, enabled)

    async def delete_task(self, task_id: str) -> bool:
        return await db_delete_task(task_id)

    async def save_skill(self, name: str, content: str, description: str = "") -> Skill:
        skill = Skill(
            id=generate_message_id("skill"), name=name, content=content, description=description
        )
        await db_save_skill(skill)
        return skill

    async def list_skills(self) -> list[Skill]:
        return await get_all_skills()

    async def set_skill_enabled(self, skill_id: str, enabled: bool) -> bool:
        """Disabled skills stay stored but drop out of the system prompt."""
        return await db_set_skill_enabled(skill_id, enabled)

    async def update_skill(
        self, skill_id: str, content: str, description: str | None = None
    ) -> bool:
        return await update_skill_content(skill_id, content, description)

    async def delete_skill(self, skill_id: str) -> bool:
        return await db_delete_skill(skill_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _set_state(self, state: CoordinatorState) -> None:
        self._state = state
        self.bus.publish(StateChangeEvent(state))

    def _set_typing(self, group_id: str, typing: bool) -> None:
        try:
            self.registry.set_typing(group_id, typing)
        except Exception:
            logger.exception("Failed to set typing", group_id=group_id)
        self.bus.publish(TypingEvent(group_id, typing))
