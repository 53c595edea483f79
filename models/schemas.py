"""
Core data models for the ELENA legal assistant.
These are the universal types shared across all modules.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps as UTC so aware and naive values compare."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class StepId(str, Enum):
    """Every state a conversation can be in."""
    IDLE = "idle"
    WELCOME = "welcome"
    AWAITING_CONSENT = "awaiting_consent"
    AWAITING_DOCUMENT_TYPE = "awaiting_document_type"
    AWAITING_DOCUMENT_NUMBER = "awaiting_document_number"
    LOOKUP_IN_PROGRESS = "lookup_in_progress"
    PROCESS_SELECTION = "process_selection"
    ACTIVE_PROCESS_LIST = "active_process_list"
    PDF_CONFIRMATION = "pdf_confirmation"
    FINALIZED_OPTIONS = "finalized_options"
    MAIN_OPTIONS = "main_options"
    REPORT_GENERATE = "report_generate"
    REPORT_OPTIONS_SUCCESS = "report_options_success"
    REPORT_OPTIONS_ERROR = "report_options_error"
    NEW_PROCESS_PROFILE = "new_process_profile"


class EventKind(str, Enum):
    TEXT = "text"           # free text typed by the user
    ACTION = "action"       # explicit trigger (conversation start, restart, button)


class Action(str, Enum):
    START = "start"
    CONSULT = "consult"
    RESTART = "restart"


# ──────────────────────────────────────────────────────────────
#  Session — durable per-user conversation state
# ──────────────────────────────────────────────────────────────

class Session(BaseModel):
    """
    Per-user conversation state owned by the flow engine.

    `fields` holds captured values (document number, cached case lists,
    selected process). Only JSON-compatible values go in there so every
    store backend can persist it.
    """
    user_id: str
    current_step: StepId = StepId.IDLE
    fields: dict[str, Any] = {}
    processed_events: list[str] = []
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    version: int = 0

    def merge(self, values: dict[str, Any]) -> None:
        """Merge captured values. None removes a key."""
        if not values:
            return
        new_document = values.get("document_number")
        if new_document is not None and new_document != self.fields.get("document_number"):
            # Cached lookups belong to the previous document
            self.fields.pop("client_processes", None)
            self.fields.pop("selected_process", None)
        for key, value in values.items():
            if value is None:
                self.fields.pop(key, None)
            else:
                self.fields[key] = value

    def has_processed(self, event_id: str) -> bool:
        return bool(event_id) and event_id in self.processed_events

    def remember_event(self, event_id: str, limit: int = 50) -> None:
        if not event_id:
            return
        self.processed_events.append(event_id)
        if len(self.processed_events) > limit:
            self.processed_events = self.processed_events[-limit:]

    def is_expired(self, ttl_minutes: int, now: Optional[datetime] = None) -> bool:
        if ttl_minutes <= 0 or self.current_step == StepId.IDLE:
            return False
        now = now or _utcnow()
        return now - self.updated_at > timedelta(minutes=ttl_minutes)

    def reset(self) -> None:
        self.current_step = StepId.IDLE
        self.fields = {}


# ──────────────────────────────────────────────────────────────
#  Case records — read-only data from the records service
# ──────────────────────────────────────────────────────────────

class Performance(BaseModel):
    """A procedural action (actuación) recorded on a case."""
    id: str = ""
    performance_type: str = ""
    responsible: str = ""
    observation: str = ""
    document: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ProceduralParts(BaseModel):
    plaintiffs: list[str] = []
    defendants: list[str] = []


class CaseRecord(BaseModel):
    internal_code: str
    state: str = ""
    updated_at: Optional[datetime] = None
    id: str = ""
    jurisdiction: Optional[str] = None
    process_type: Optional[str] = None
    settled: Optional[str] = None
    procedural_parts: ProceduralParts = Field(default_factory=ProceduralParts)
    performances: list[Performance] = []


class CaseDetail(BaseModel):
    """Detail lookup result for a single internal code."""
    record: CaseRecord
    message: str = ""


class MenuCounts(BaseModel):
    active: int = 0
    finalized: int = 0

    @property
    def total(self) -> int:
        return self.active + self.finalized


class ClientProcesses(BaseModel):
    """Active/finalized cases for one document number."""
    document_number: str
    active: list[CaseRecord] = []
    finalized: list[CaseRecord] = []
    total_active: int = 0
    total_finalized: int = 0

    @property
    def counts(self) -> MenuCounts:
        return MenuCounts(active=self.total_active, finalized=self.total_finalized)

    @property
    def total(self) -> int:
        return self.total_active + self.total_finalized


class DetailedCases(BaseModel):
    """All cases of a document with full detail."""
    active: list[CaseRecord] = []
    finalized: list[CaseRecord] = []

    @property
    def records(self) -> list[CaseRecord]:
        return [*self.active, *self.finalized]


# ──────────────────────────────────────────────────────────────
#  Reports
# ──────────────────────────────────────────────────────────────

class ProcessDetail(BaseModel):
    """Render-ready view of one case."""
    id: str = ""
    internal_code: str
    client_name: str = ""
    jurisdiction: str = "No especificada"
    process_type: str = "No especificado"
    settled: Optional[str] = None
    state: str = ""
    status: str = "Sin información"
    responsible: str = "No asignado"
    next_milestone: str = "Sin información disponible"
    updated_at: Optional[datetime] = None
    plaintiffs: list[str] = []
    defendants: list[str] = []
    performances: list[Performance] = []


class ReportModel(BaseModel):
    client_name: str
    document_number: str = ""
    generated_at: datetime = Field(default_factory=_utcnow)
    processes: list[ProcessDetail] = []


class Deliverable(BaseModel):
    reference: str                  # unique artifact name
    media_locator: str              # public URL the transport can fetch
    filename: str = ""
    mime_type: str = "application/pdf"
    dispose_at: Optional[datetime] = None


# ──────────────────────────────────────────────────────────────
#  Transport-neutral events and messages
# ──────────────────────────────────────────────────────────────

class InboundEvent(BaseModel):
    user_id: str
    kind: EventKind = EventKind.TEXT
    body: str = ""
    action: Optional[Action] = None
    event_id: str = ""                          # transport message id, used for dedup
    expected_step: Optional[StepId] = None      # step the sender believed was current
    sender_name: str = ""


class OutboundMessage(BaseModel):
    to: str = ""                                # empty → the user who sent the event
    text: str = ""
    media_url: Optional[str] = None
    filename: Optional[str] = None
    mime_type: Optional[str] = None

    @property
    def has_media(self) -> bool:
        return bool(self.media_url)
