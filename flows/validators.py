"""
Input Validator — pure grammar checks for raw user text.

`validate(step_id, raw_text)` never raises: it returns `Ok(value)` or
`Invalid(code, reason)` and the step decides whether to re-prompt.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable, Union

from models.schemas import StepId

DOCUMENT_NUMBER_PATTERN = re.compile(r"^\d{6,15}$", re.ASCII)

AFFIRMATIVE = {"1", "sí", "si", "yes", "y", "ok", "okay", "perfecto", "bien"}
NEGATIVE = {"2", "no", "n", "cancelar", "cancel"}
CONSENT_ACCEPT = {"1", "sí", "si", "acepto", "sí, acepto", "si, acepto", "sí acepto", "si acepto"}
CONSENT_REJECT = {"2", "no", "rechazo", "no acepto"}


@dataclass(frozen=True)
class Ok:
    value: Any

    def __bool__(self):
        return True


@dataclass(frozen=True)
class Invalid:
    code: str
    reason: str = ""

    def __bool__(self):
        return False


Result = Union[Ok, Invalid]


def _normalize(raw_text: str) -> str:
    return (raw_text or "").strip()


# ──────────────────────────────────────────────────────────────
#  Grammars
# ──────────────────────────────────────────────────────────────

def validate_menu_choice(raw_text: str, option_count: int) -> Result:
    """1-based integer within the number of offered options."""
    text = _normalize(raw_text)
    if not text:
        return Invalid("empty", "no option given")
    # isdigit() also accepts superscripts and other digits int() rejects
    if not (text.isascii() and text.isdecimal()):
        return Invalid("not_a_number", f"'{text}' is not an option number")
    choice = int(text)
    if choice < 1 or choice > option_count:
        return Invalid("out_of_range", f"{choice} is not between 1 and {option_count}")
    return Ok(choice)


def validate_document_number(raw_text: str, option_count: int = 0) -> Result:
    text = _normalize(raw_text)
    if not DOCUMENT_NUMBER_PATTERN.match(text):
        return Invalid("bad_document_number", "expected 6 to 15 digits")
    return Ok(text)


def validate_yes_no(raw_text: str, option_count: int = 2) -> Result:
    text = _normalize(raw_text).lower()
    if text in AFFIRMATIVE:
        return Ok(True)
    if text in NEGATIVE:
        return Ok(False)
    return Invalid("not_yes_no", "expected yes or no")


def validate_consent(raw_text: str, option_count: int = 2) -> Result:
    text = _normalize(raw_text).lower()
    if text in CONSENT_ACCEPT:
        return Ok(True)
    if text in CONSENT_REJECT:
        return Ok(False)
    return Invalid("not_consent", "expected accept or reject")


def validate_free_text(raw_text: str, option_count: int = 0) -> Result:
    text = _normalize(raw_text)
    if not text:
        return Invalid("empty", "no text given")
    return Ok(text)


Grammar = Callable[[str, int], Result]

STEP_GRAMMARS: dict[StepId, Grammar] = {
    StepId.WELCOME: validate_menu_choice,
    StepId.AWAITING_CONSENT: validate_consent,
    StepId.AWAITING_DOCUMENT_TYPE: validate_menu_choice,
    StepId.AWAITING_DOCUMENT_NUMBER: validate_document_number,
    StepId.PROCESS_SELECTION: validate_menu_choice,
    StepId.ACTIVE_PROCESS_LIST: validate_menu_choice,
    StepId.PDF_CONFIRMATION: validate_yes_no,
    StepId.FINALIZED_OPTIONS: validate_menu_choice,
    StepId.MAIN_OPTIONS: validate_menu_choice,
    StepId.REPORT_OPTIONS_SUCCESS: validate_menu_choice,
    StepId.REPORT_OPTIONS_ERROR: validate_menu_choice,
    StepId.NEW_PROCESS_PROFILE: validate_menu_choice,
}


def validate(step_id: StepId, raw_text: str, option_count: int = 0) -> Result:
    """Check raw text against the grammar the step expects."""
    grammar = STEP_GRAMMARS.get(step_id, validate_free_text)
    return grammar(raw_text, option_count)
