"""
Error/Retry Policy — turns a classified failure into a Transition.

Classification table:

  Validator Invalid                          → retry this step
  Records NotFound (no cases for a document) → empty result, back to document capture
  Records NotFound (single case)             → retry this step
  Records Connection / InvalidResponse       → error with retry, back to capture step
  Anything failing while generating a report → error with alternatives (ReportOptionsError)
  Session store failure                      → fatal for the event, nothing sent
  Anything else                              → reset to Idle
"""
from __future__ import annotations

import structlog
from enum import Enum
from typing import Optional

from core.errors import ErrorKind, FlowError, NotFoundError
from flows import messages
from flows.transitions import Jump, Retry, Terminal, Transition, text
from models.schemas import Session, StepId

logger = structlog.get_logger()


class Classification(str, Enum):
    RETRY_STEP = "retry_step"
    EMPTY_RESULT = "empty_result"
    ERROR_WITH_RETRY = "error_with_retry"
    ERROR_WITH_ALTERNATIVES = "error_with_alternatives"
    RESET_TO_IDLE = "reset_to_idle"
    FATAL = "fatal"


_REPORT_FAILURES = {
    ErrorKind.NOT_FOUND, ErrorKind.CONNECTION, ErrorKind.INVALID_RESPONSE,
    ErrorKind.EMPTY_RESULT, ErrorKind.RENDER,
}

# Where a user lands after a retryable error, per step that hit it
_CAPTURE_STEP = {
    StepId.LOOKUP_IN_PROGRESS: StepId.AWAITING_DOCUMENT_NUMBER,
}


class ErrorPolicy:
    """Stateless mapping from failures to user-visible recovery."""

    def classify(self, error: Exception, step_id: Optional[StepId] = None) -> Classification:
        if not isinstance(error, FlowError):
            return Classification.RESET_TO_IDLE

        kind = error.kind
        if kind == ErrorKind.PERSISTENCE:
            return Classification.FATAL
        if step_id == StepId.REPORT_GENERATE and kind in _REPORT_FAILURES:
            return Classification.ERROR_WITH_ALTERNATIVES
        if kind == ErrorKind.VALIDATION:
            return Classification.RETRY_STEP
        if kind == ErrorKind.NOT_FOUND:
            if isinstance(error, NotFoundError) and error.resource == "document":
                return Classification.EMPTY_RESULT
            return Classification.RETRY_STEP
        if kind in (ErrorKind.CONNECTION, ErrorKind.INVALID_RESPONSE):
            return Classification.ERROR_WITH_RETRY
        if kind in (ErrorKind.EMPTY_RESULT, ErrorKind.RENDER):
            return Classification.ERROR_WITH_ALTERNATIVES
        return Classification.RESET_TO_IDLE

    def recover(self, error: Exception, session: Session, step_id: StepId) -> Transition:
        """Build the transition that gets the user back to a next action."""
        classification = self.classify(error, step_id)
        logger.warning("flow_error_classified",
                       user_id=session.user_id,
                       step=step_id.value,
                       error_kind=getattr(error, "kind", ErrorKind.UNEXPECTED).value,
                       classification=classification.value,
                       error=str(error))

        if classification == Classification.FATAL:
            raise error

        if classification == Classification.RETRY_STEP:
            if isinstance(error, NotFoundError):
                return Retry(message=messages.process_not_found(error.identifier), reprompt=False)
            return Retry()

        if classification == Classification.EMPTY_RESULT:
            document = session.fields.get("document_number", "")
            return Jump(
                StepId.AWAITING_DOCUMENT_NUMBER,
                fields={"client_processes": None},
                replies=[text(messages.no_processes_found(document))],
            )

        if classification == Classification.ERROR_WITH_RETRY:
            message = (messages.INVALID_RESPONSE if error.kind == ErrorKind.INVALID_RESPONSE
                       else messages.CONNECTION_ERROR)
            target = _CAPTURE_STEP.get(step_id)
            if target is None:
                return Retry(message=message)
            return Jump(target, replies=[text(message)])

        if classification == Classification.ERROR_WITH_ALTERNATIVES:
            return Jump(
                StepId.REPORT_OPTIONS_ERROR,
                fields={"report_error": error.kind.value},
            )

        return Terminal(messages.UNEXPECTED_ERROR)
