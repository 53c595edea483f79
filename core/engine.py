"""
Flow Engine — the per-user conversation state machine.

  inbound event → load Session → classify event → step handler → Transition
               → apply (entry prompts, automatic hops) → persist Session
               → send outbound messages

Guarantees:
  - one event at a time per user (per-key asyncio.Lock); users run concurrently
  - duplicate or stale events are no-ops: nothing sent, nothing written
  - messages are sent only after the session write succeeded
  - a handler crash never strands a user: recoverable errors go through the
    ErrorPolicy, anything else resets the session to Idle with an apology
"""
from __future__ import annotations

import asyncio
import structlog
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from config.settings import SessionConfig, get_settings
from core.errors import FlowError, PersistenceError
from core.policy import ErrorPolicy
from database.store_base import BaseSessionStore
from flows import messages
from flows.menus import MenuBuilder
from flows.steps import StepContext, StepRegistry
from flows.transitions import Jump, Retry, Terminal, Transition, target_of, text
from models.schemas import (
    Action, EventKind, InboundEvent, OutboundMessage, Session, StepId,
)

logger = structlog.get_logger()

# (recipient, message) → transport result
Sender = Callable[[str, OutboundMessage], Awaitable[Any]]

RESTART_KEYWORDS = {"menu", "menú", "inicio", "reiniciar", "start"}


class EngineResultStatus:
    HANDLED = "handled"
    DUPLICATE = "duplicate"
    STALE = "stale"
    IGNORED = "ignored"
    PERSIST_FAILED = "persist_failed"


@dataclass
class EngineResult:
    status: str
    user_id: str
    step: Optional[StepId] = None
    path: list[StepId] = field(default_factory=list)
    outbound: list[OutboundMessage] = field(default_factory=list)
    sent: int = 0

    @property
    def is_noop(self) -> bool:
        return self.status in (EngineResultStatus.DUPLICATE, EngineResultStatus.STALE,
                               EngineResultStatus.IGNORED)


class AutoHopLimitExceeded(RuntimeError):
    pass


class FlowEngine:
    """Dispatches inbound events to registered steps and applies their transitions."""

    def __init__(
        self,
        store: BaseSessionStore,
        registry: StepRegistry,
        records,
        reports,
        notifier,
        sender: Sender,
        policy: ErrorPolicy = None,
        menus: MenuBuilder = None,
        config: SessionConfig = None,
    ):
        self.store = store
        self.registry = registry
        self.records = records
        self.reports = reports
        self.notifier = notifier
        self.sender = sender
        self.policy = policy or ErrorPolicy()
        self.menus = menus or MenuBuilder()
        self.config = config or get_settings().session
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    async def handle(self, event: InboundEvent) -> EngineResult:
        """Process one inbound event. Events of the same user are serialized."""
        async with self._lock_for(event.user_id):
            return await self._process(event)

    # ── Event classification ──────────────────────────────────

    @staticmethod
    def classify(event: InboundEvent, session: Session) -> InboundEvent:
        """Turn restart keywords and conversation openers into actions."""
        if event.kind == EventKind.ACTION:
            return event
        body = event.body.strip().lower()
        if body in RESTART_KEYWORDS:
            return event.model_copy(update={"kind": EventKind.ACTION, "action": Action.RESTART})
        if session.current_step == StepId.IDLE:
            return event.model_copy(update={"kind": EventKind.ACTION, "action": Action.START})
        return event

    # ── Processing ────────────────────────────────────────────

    async def _process(self, event: InboundEvent) -> EngineResult:
        user_id = event.user_id
        try:
            stored = await self.store.get(user_id)
        except PersistenceError as e:
            logger.error("session_load_failed", user_id=user_id, error=str(e))
            return EngineResult(EngineResultStatus.PERSIST_FAILED, user_id)

        if stored.has_processed(event.event_id):
            logger.info("duplicate_event_ignored", user_id=user_id, event_id=event.event_id)
            return EngineResult(EngineResultStatus.DUPLICATE, user_id, stored.current_step)

        if event.expected_step is not None and event.expected_step != stored.current_step:
            logger.info("stale_event_ignored", user_id=user_id,
                        expected=event.expected_step.value, current=stored.current_step.value)
            return EngineResult(EngineResultStatus.STALE, user_id, stored.current_step)

        session = stored.model_copy(deep=True)
        outbound: list[OutboundMessage] = []
        if session.is_expired(self.config.ttl_minutes):
            logger.info("session_expired", user_id=user_id, step=session.current_step.value)
            session.reset()
            outbound.append(text(messages.SESSION_EXPIRED))

        event = self.classify(event, session)
        restart = event.action == Action.RESTART
        if not restart and not self.registry.accepts(session.current_step, event):
            logger.info("action_not_accepted", user_id=user_id,
                        step=session.current_step.value, action=str(event.action))
            return EngineResult(EngineResultStatus.IGNORED, user_id, stored.current_step)

        ctx = StepContext(
            user_id=user_id,
            records=self.records,
            reports=self.reports,
            policy=self.policy,
            notifier=self.notifier,
            menus=self.menus,
            sender_name=event.sender_name,
        )
        path = [session.current_step]
        notices = list(outbound)

        try:
            if restart:
                transition: Transition = Jump(StepId.WELCOME, clear=True,
                                              replies=[text(messages.RESTARTING)])
            else:
                step = self.registry.get(session.current_step)
                try:
                    transition = await step.handle(event, session, ctx)
                except Exception as e:
                    transition = self._recover(e, session)
            await self._apply(transition, session, ctx, outbound, path)
        except Exception as e:
            logger.exception("flow_reset_after_error", user_id=user_id,
                             step=session.current_step.value, error=str(e))
            session.reset()
            outbound = notices + [text(messages.UNEXPECTED_ERROR)]
            path.append(StepId.IDLE)

        session.remember_event(event.event_id, self.config.max_processed_events)
        session.updated_at = datetime.now(timezone.utc)
        session.version = stored.version + 1

        try:
            await self.store.set(user_id, session)
        except PersistenceError as e:
            logger.error("session_persist_failed", user_id=user_id,
                         step=session.current_step.value, error=str(e))
            return EngineResult(EngineResultStatus.PERSIST_FAILED, user_id, stored.current_step, path)

        sent = await self._send_all(user_id, outbound)
        return EngineResult(EngineResultStatus.HANDLED, user_id, session.current_step,
                            path, outbound, sent)

    def _recover(self, error: Exception, session: Session) -> Transition:
        if not isinstance(error, FlowError):
            logger.exception("flow_handler_failed", user_id=session.user_id,
                             step=session.current_step.value, error=str(error))
        return self.policy.recover(error, session, session.current_step)

    async def _apply(
        self,
        transition: Transition,
        session: Session,
        ctx: StepContext,
        outbound: list[OutboundMessage],
        path: list[StepId],
    ):
        """Apply a transition, then run automatic steps until one waits for input."""
        hops = 0
        while True:
            current = session.current_step

            if isinstance(transition, Retry):
                if transition.message:
                    outbound.append(text(transition.message))
                if transition.reprompt:
                    outbound.extend(self.registry.get(current).entry(session, ctx))
                logger.debug("flow_retry", user_id=session.user_id, step=current.value)
                return

            if isinstance(transition, Terminal):
                outbound.extend(transition.replies)
                if transition.message:
                    outbound.append(text(transition.message))
                session.reset()
                path.append(StepId.IDLE)
                logger.info("flow_finished", user_id=session.user_id, from_step=current.value)
                return

            if isinstance(transition, Jump) and transition.clear:
                session.fields = {}
            session.merge(transition.fields)
            outbound.extend(transition.replies)

            target = target_of(transition, current)
            session.current_step = target
            path.append(target)
            logger.info("flow_transition", user_id=session.user_id,
                        from_step=current.value, to_step=target.value,
                        transition=type(transition).__name__)

            step = self.registry.get(target)
            outbound.extend(step.entry(session, ctx))
            if not step.automatic:
                return

            hops += 1
            if hops > self.config.max_auto_hops:
                raise AutoHopLimitExceeded(
                    f"More than {self.config.max_auto_hops} automatic steps in one event"
                )
            try:
                transition = await step.run(session, ctx)
            except Exception as e:
                transition = self._recover(e, session)

    async def _send_all(self, user_id: str, outbound: list[OutboundMessage]) -> int:
        """Send in order. A failed send is logged; the session is already committed."""
        sent = 0
        for message in outbound:
            recipient = message.to or user_id
            try:
                await self.sender(recipient, message)
                sent += 1
            except Exception as e:
                logger.error("outbound_send_failed", user_id=user_id,
                             recipient=recipient, error=str(e))
        return sent
