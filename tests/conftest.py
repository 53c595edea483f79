"""Shared test fixtures for the ELENA flow engine."""
import pytest
from typing import Any

from backend.connector import MockCaseRecordsClient
from channels.notifier import LawyerNotifier
from config.settings import LawyerConfig, SessionConfig
from core.engine import FlowEngine
from database.store_memory import InMemorySessionStore
from flows.legal import build_registry
from models.schemas import InboundEvent, OutboundMessage
from reports.orchestrator import ReportOrchestrator
from reports.renderer import TextReportRenderer
from reports.storage import ArtifactStorage

CLIENT = "573001112233"
LAWYER_NEW = "573000000001"
LAWYER_EXISTING = "573000000002"


class RecordingSender:
    """Collects (recipient, message) pairs instead of talking to WhatsApp."""

    def __init__(self):
        self.sent: list[tuple[str, OutboundMessage]] = []

    async def __call__(self, to: str, message: OutboundMessage) -> dict[str, Any]:
        self.sent.append((to, message))
        return {"status": "sent"}

    def texts(self, to: str = None) -> list[str]:
        return [m.text for r, m in self.sent if to is None or r == to]

    def clear(self):
        self.sent.clear()


@pytest.fixture
def records() -> MockCaseRecordsClient:
    return MockCaseRecordsClient()


@pytest.fixture
def empty_records() -> MockCaseRecordsClient:
    return MockCaseRecordsClient(records={"7654321": {"active": [], "finalized": []}})


@pytest.fixture
def storage(tmp_path) -> ArtifactStorage:
    return ArtifactStorage(str(tmp_path / "reports"), "https://elena.example.co")


@pytest.fixture
def reports(storage) -> ReportOrchestrator:
    return ReportOrchestrator(TextReportRenderer(), storage, dispose_after_seconds=0)


@pytest.fixture
def notifier() -> LawyerNotifier:
    return LawyerNotifier(LawyerConfig(
        new_process_number=LAWYER_NEW,
        existing_process_number=LAWYER_EXISTING,
    ))


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def session_config() -> SessionConfig:
    return SessionConfig(ttl_minutes=30, max_processed_events=50, max_auto_hops=5)


@pytest.fixture
def engine(store, records, reports, notifier, sender, session_config) -> FlowEngine:
    return FlowEngine(
        store=store,
        registry=build_registry(),
        records=records,
        reports=reports,
        notifier=notifier,
        sender=sender,
        config=session_config,
    )


def event(body: str = "", user_id: str = CLIENT, **kwargs) -> InboundEvent:
    return InboundEvent(user_id=user_id, body=body, **kwargs)
