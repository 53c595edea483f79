"""
Transition vocabulary — the only values a step handler may return.

  Advance(next_step, fields)   record captured data and move forward
  Retry(message)               stay on the step and re-prompt
  Jump(step, fields)           move anywhere (back to a menu, skip a menu)
  Terminal(message)            end the interaction, session returns to Idle

Each transition may carry replies that are sent after the session has been
persisted, ahead of the target step's entry prompt.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Union

from models.schemas import OutboundMessage, StepId


def text(body: str, to: str = "") -> OutboundMessage:
    return OutboundMessage(to=to, text=body)


@dataclass
class Advance:
    next_step: StepId
    fields: dict[str, Any] = field(default_factory=dict)
    replies: list[OutboundMessage] = field(default_factory=list)

    def __repr__(self):
        return f"<Advance → {self.next_step.value}>"


@dataclass
class Retry:
    message: Optional[str] = None
    reprompt: bool = True

    def __repr__(self):
        return "<Retry>"


@dataclass
class Jump:
    step: StepId
    fields: dict[str, Any] = field(default_factory=dict)
    replies: list[OutboundMessage] = field(default_factory=list)
    clear: bool = False                 # drop every captured field first

    def __repr__(self):
        return f"<Jump → {self.step.value}>"


@dataclass
class Terminal:
    message: Optional[str] = None
    replies: list[OutboundMessage] = field(default_factory=list)

    def __repr__(self):
        return "<Terminal>"


Transition = Union[Advance, Retry, Jump, Terminal]


def target_of(transition: Transition, current: StepId) -> StepId:
    """The step a session lands on after applying `transition`."""
    if isinstance(transition, Advance):
        return transition.next_step
    if isinstance(transition, Jump):
        return transition.step
    if isinstance(transition, Terminal):
        return StepId.IDLE
    return current
