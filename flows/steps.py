"""
Flow Step abstraction and the step registry.

A step is a named state with:
  - entry(session, ctx)         prompt(s) sent when the step becomes current
  - handle(event, session, ctx) input handler returning exactly one Transition
  - run(session, ctx)           automatic steps only: executed right after entry,
                                without waiting for the user

Steps never call each other. They return transitions and the engine looks the
next step up in the registry, so every edge of the conversation is a value
that can be inspected and tested on its own.
"""
from __future__ import annotations

import abc
import structlog
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from flows import messages
from flows.menus import Menu, MenuBuilder
from flows.transitions import Retry, Transition, text
from flows.validators import Invalid, validate
from models.schemas import (
    ClientProcesses, EventKind, InboundEvent, OutboundMessage, Session, StepId,
)

if TYPE_CHECKING:
    from backend.connector import CaseRecordsClient
    from channels.notifier import LawyerNotifier
    from core.policy import ErrorPolicy
    from reports.orchestrator import ReportOrchestrator

logger = structlog.get_logger()


@dataclass
class StepContext:
    """Collaborators a step may use while handling one event."""
    user_id: str
    records: "CaseRecordsClient"
    reports: "ReportOrchestrator"
    policy: "ErrorPolicy"
    notifier: "LawyerNotifier"
    menus: MenuBuilder = field(default_factory=MenuBuilder)
    sender_name: str = ""
    extra: dict[str, Any] = field(default_factory=dict)


# ──────────────────────────────────────────────────────────────
#  Base classes
# ──────────────────────────────────────────────────────────────

class FlowStep(abc.ABC):
    """Base class for every conversation step."""

    step_id: StepId
    automatic: bool = False         # runs without waiting for input
    accepts_actions: bool = False   # action events other than restart

    def entry(self, session: Session, ctx: StepContext) -> list[OutboundMessage]:
        return []

    @abc.abstractmethod
    async def handle(self, event: InboundEvent, session: Session, ctx: StepContext) -> Transition:
        ...

    async def run(self, session: Session, ctx: StepContext) -> Transition:
        raise NotImplementedError(f"{self.step_id.value} is not an automatic step")

    def __repr__(self):
        return f"<{type(self).__name__} {self.step_id.value}>"


class AutomaticStep(FlowStep):
    """A step that does its work on entry (lookups, report generation)."""

    automatic = True

    @abc.abstractmethod
    async def run(self, session: Session, ctx: StepContext) -> Transition:
        ...

    async def handle(self, event: InboundEvent, session: Session, ctx: StepContext) -> Transition:
        # Only reachable when a previous run was interrupted before moving on
        return await self.run(session, ctx)


class MenuStep(FlowStep):
    """
    A step that shows a numbered menu and resolves the reply through the
    Menu Builder. Subclasses provide `menu()` and `on_select()`.
    """

    @abc.abstractmethod
    def menu(self, session: Session, ctx: StepContext) -> Menu:
        ...

    @abc.abstractmethod
    async def on_select(self, key: str, session: Session, ctx: StepContext) -> Transition:
        ...

    def entry(self, session: Session, ctx: StepContext) -> list[OutboundMessage]:
        return [text(self.menu(session, ctx).prompt)]

    async def handle(self, event: InboundEvent, session: Session, ctx: StepContext) -> Transition:
        menu = self.menu(session, ctx)
        result = validate(self.step_id, event.body, len(menu))
        if isinstance(result, Invalid):
            return Retry(message=messages.invalid_option(len(menu)))
        key = ctx.menus.resolve(menu.options, result.value)
        logger.debug("menu_option_selected", user_id=session.user_id,
                     step=self.step_id.value, option=str(key))
        return await self.on_select(key, session, ctx)


def client_processes(session: Session) -> Optional[ClientProcesses]:
    raw = session.fields.get("client_processes")
    return ClientProcesses.model_validate(raw) if raw else None


# ──────────────────────────────────────────────────────────────
#  Registry
# ──────────────────────────────────────────────────────────────

class StepRegistry:
    """Dispatch table keyed by StepId."""

    def __init__(self):
        self._steps: dict[StepId, FlowStep] = {}

    def register(self, step: FlowStep):
        if step.step_id in self._steps:
            raise ValueError(f"Step '{step.step_id.value}' registered twice")
        self._steps[step.step_id] = step

    def register_all(self, steps: list[FlowStep]):
        for step in steps:
            self.register(step)
        errors = self.validate()
        if errors:
            logger.error("invalid_step_registry", errors=errors)
            raise ValueError(f"Invalid step registry: {'; '.join(errors)}")
        logger.info("step_registry_loaded",
                    steps=len(self._steps),
                    automatic=[s.value for s, st in self._steps.items() if st.automatic])

    def validate(self) -> list[str]:
        """Every StepId needs a step so every transition is resolvable."""
        errors = []
        for step_id in StepId:
            if step_id not in self._steps:
                errors.append(f"no step registered for '{step_id.value}'")
        for step_id, step in self._steps.items():
            if step.automatic and type(step).run is FlowStep.run:
                errors.append(f"automatic step '{step_id.value}' has no run()")
        return errors

    def get(self, step_id: StepId) -> FlowStep:
        return self._steps[step_id]

    def __contains__(self, step_id: StepId) -> bool:
        return step_id in self._steps

    def __len__(self):
        return len(self._steps)

    def accepts(self, step_id: StepId, event: InboundEvent) -> bool:
        step = self._steps[step_id]
        if event.kind == EventKind.ACTION:
            return step.accepts_actions
        return True
