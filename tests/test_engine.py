"""
End-to-end tests for the flow engine with the legal-case step registry.

Covers:
  - happy path: consent → document → lookup → active list → detail → PDF
  - finalized-only clients and lawyer hand-off
  - unknown document, records service down, report failure and retry
  - session expiry, restart keywords, duplicate/stale/unaccepted events
  - persistence failure sends nothing; send failures do not roll back
  - registry completeness
"""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from backend.connector import MockCaseRecordsClient, SAMPLE_RECORDS
from conftest import CLIENT, LAWYER_EXISTING, LAWYER_NEW, event
from core.engine import EngineResultStatus, FlowEngine
from core.errors import ApiConnectionError, Failure, PersistenceError, RenderError
from database.store_memory import InMemorySessionStore
from flows import messages
from flows.legal import IdleStep, build_registry
from flows.steps import StepRegistry
from flows.transitions import Advance, Jump, Retry, Terminal, target_of
from models.schemas import Action, EventKind, InboundEvent, Session, StepId
from reports.orchestrator import ReportOrchestrator
from reports.renderer import ReportRenderer, TextReportRenderer

FINALIZED_ONLY = {
    "7654321": {"active": [], "finalized": SAMPLE_RECORDS["1234567"]["finalized"]},
}


class DownRecordsClient(MockCaseRecordsClient):
    async def find_by_document(self, document_number):
        return Failure(ApiConnectionError("/records/by-client"))


class TimeoutOnReportRecordsClient(MockCaseRecordsClient):
    async def find_all_with_detail_by_document(self, document_number):
        return Failure(ApiConnectionError("/records/detailed-by-client"))


class CrashingRecordsClient(MockCaseRecordsClient):
    async def find_by_document(self, document_number):
        raise RuntimeError("unexpected payload")


class FailingRenderer(ReportRenderer):
    async def render(self, model):
        raise RenderError("renderer down")


class BrokenWriteStore(InMemorySessionStore):
    async def set(self, user_id, session):
        raise PersistenceError("disk full")


class BrokenReadStore(InMemorySessionStore):
    async def get(self, user_id):
        raise PersistenceError("database gone")


async def say(engine, *bodies):
    result = None
    for body in bodies:
        result = await engine.handle(event(body))
    return result


def texts(result):
    return [m.text for m in result.outbound]


@pytest.fixture
def make_engine(store, records, reports, notifier, sender, session_config):
    def _make(**overrides):
        kwargs = dict(
            store=store, registry=build_registry(), records=records, reports=reports,
            notifier=notifier, sender=sender, config=session_config,
        )
        kwargs.update(overrides)
        return FlowEngine(**kwargs)
    return _make


async def reach_selection(engine, document="1234567"):
    """hola → existing process → accept consent → CC → document."""
    return await say(engine, "hola", "1", "1", "1", document)


# ══════════════════════════════════════════════════════════════
#  HAPPY PATH
# ══════════════════════════════════════════════════════════════

class TestExistingClientHappyPath:

    @pytest.mark.asyncio
    async def test_greeting_shows_welcome_menu(self, engine):
        result = await say(engine, "hola")
        assert result.status == EngineResultStatus.HANDLED
        assert result.path == [StepId.IDLE, StepId.WELCOME]
        assert texts(result)[0].startswith(messages.WELCOME)

    @pytest.mark.asyncio
    async def test_consent_then_document_type(self, engine, store):
        result = await say(engine, "hola", "1", "1")
        assert result.step == StepId.AWAITING_DOCUMENT_TYPE
        assert texts(result)[0] == messages.CONSENT_ACCEPTED
        assert texts(result)[1].startswith(messages.DOCUMENT_TYPE_HEADER)
        session = await store.get(CLIENT)
        assert session.fields["consent_accepted"] is True
        assert session.fields["intent"] == "existing"

    @pytest.mark.asyncio
    async def test_lookup_runs_automatically(self, engine, store):
        result = await reach_selection(engine)
        assert result.path == [StepId.AWAITING_DOCUMENT_NUMBER, StepId.LOOKUP_IN_PROGRESS,
                               StepId.PROCESS_SELECTION]
        assert texts(result)[0] == messages.LOOKUP_STARTED
        menu = texts(result)[1]
        assert "10 proceso(s) (9 activo(s) / 1 finalizado(s))" in menu
        assert "Ver procesos activos" in menu and "Ver procesos finalizados" in menu

        session = await store.get(CLIENT)
        assert session.fields["document_type"] == "cc"
        assert session.fields["document_number"] == "1234567"
        assert session.fields["client_processes"]["total_active"] == 9

    @pytest.mark.asyncio
    async def test_active_list_detail_and_pdf(self, engine, store, sender):
        await reach_selection(engine)
        listing = await say(engine, "1")
        assert listing.step == StepId.ACTIVE_PROCESS_LIST
        assert "1. Proceso #U003" in texts(listing)[0]
        assert "FINALIZADOS" in texts(listing)[1]

        detail = await say(engine, "2")
        assert detail.step == StepId.PDF_CONFIRMATION
        assert texts(detail)[0] == messages.DETAILS_LOADING
        assert "#D002" in texts(detail)[1]
        assert texts(detail)[2] == messages.PDF_QUESTION

        report = await say(engine, "sí")
        assert report.step == StepId.REPORT_OPTIONS_SUCCESS
        assert texts(report)[0] == messages.SINGLE_REPORT_STARTED
        media = report.outbound[1]
        assert media.has_media
        assert media.text == messages.REPORT_CAPTION
        assert "/public/reports/proceso-D002-" in media.media_url

        session = await store.get(CLIENT)
        assert engine.reports.storage.exists(session.fields["last_report"])
        assert all(to == CLIENT for to, _ in sender.sent)

    @pytest.mark.asyncio
    async def test_report_of_all_processes(self, engine, records):
        await reach_selection(engine)
        result = await say(engine, "3")
        assert result.path == [StepId.PROCESS_SELECTION, StepId.REPORT_GENERATE,
                               StepId.REPORT_OPTIONS_SUCCESS]
        assert texts(result)[0] == messages.REPORT_STARTED
        assert ("find_all_with_detail_by_document", "1234567") in records.calls

    @pytest.mark.asyncio
    async def test_pdf_command_from_active_list(self, engine):
        await reach_selection(engine)
        await say(engine, "1")
        result = await say(engine, "PDF")
        assert result.step == StepId.REPORT_OPTIONS_SUCCESS

    @pytest.mark.asyncio
    async def test_decline_pdf_then_finish(self, engine, store):
        await reach_selection(engine)
        await say(engine, "1", "1")
        declined = await say(engine, "no")
        assert declined.step == StepId.MAIN_OPTIONS
        assert texts(declined)[0] == messages.PDF_DECLINED
        assert "Finalizar conversación" in texts(declined)[1]

        done = await say(engine, "5")
        assert done.step == StepId.IDLE
        assert texts(done) == [messages.GOODBYE]
        assert (await store.get(CLIENT)).fields == {}

    @pytest.mark.asyncio
    async def test_other_document_clears_lookup(self, engine, store):
        await reach_selection(engine)
        await say(engine, "1", "1", "no")
        result = await say(engine, "4")
        assert result.step == StepId.AWAITING_DOCUMENT_TYPE
        fields = (await store.get(CLIENT)).fields
        assert "document_number" not in fields
        assert "client_processes" not in fields
        assert fields["consent_accepted"] is True

    @pytest.mark.asyncio
    async def test_version_increments_per_event(self, engine, store):
        await say(engine, "hola", "1", "1")
        assert (await store.get(CLIENT)).version == 3


# ══════════════════════════════════════════════════════════════
#  FINALIZED & LAWYER HAND-OFF
# ══════════════════════════════════════════════════════════════

class TestFinalizedAndLawyers:

    @pytest.mark.asyncio
    async def test_finalized_only_menu_starts_with_finalized(self, make_engine):
        engine = make_engine(records=MockCaseRecordsClient(FINALIZED_ONLY))
        result = await reach_selection(engine, "7654321")
        menu = texts(result)[1]
        assert "Ver procesos finalizados" in menu.splitlines()[1]
        assert "Ver procesos activos" not in menu

        finalized = await say(engine, "1")
        assert finalized.step == StepId.FINALIZED_OPTIONS
        assert "Proceso #D009" in texts(finalized)[0]

    @pytest.mark.asyncio
    async def test_finalized_lawyer_handoff(self, make_engine, sender, store):
        engine = make_engine(records=MockCaseRecordsClient(FINALIZED_ONLY))
        await reach_selection(engine, "7654321")
        await say(engine, "1")
        sender.clear()

        result = await say(engine, "3")
        assert result.step == StepId.IDLE
        lawyer = sender.texts(LAWYER_EXISTING)
        assert len(lawyer) == 1
        assert "7654321" in lawyer[0]
        assert "Consulta sobre procesos finalizados" in lawyer[0]
        assert sender.texts(CLIENT) == [messages.LAWYER_HANDOFF_FINALIZED]
        assert (await store.get(CLIENT)).current_step == StepId.IDLE

    @pytest.mark.asyncio
    async def test_finalizados_command(self, engine):
        await reach_selection(engine)
        await say(engine, "1")
        result = await say(engine, "finalizados")
        assert result.step == StepId.FINALIZED_OPTIONS

    @pytest.mark.asyncio
    async def test_new_process_company_notifies_lawyer(self, engine, sender):
        result = await say(engine, "hola", "2", "1")
        assert result.step == StepId.NEW_PROCESS_PROFILE

        done = await say(engine, "2")
        assert done.step == StepId.IDLE
        lawyer = sender.texts(LAWYER_NEW)
        assert len(lawyer) == 1 and "EMPRESA" in lawyer[0]
        assert sender.texts(CLIENT)[-1] == messages.COMPANY_WELCOME

    @pytest.mark.asyncio
    async def test_rappitendero_gets_form_without_lawyer(self, engine, sender):
        result = await say(engine, "hola", "2", "1", "1")
        assert texts(result) == [messages.RAPPITENDERO_WELCOME]
        assert sender.texts(LAWYER_NEW) == []


# ══════════════════════════════════════════════════════════════
#  FAILURES
# ══════════════════════════════════════════════════════════════

class TestFailures:

    @pytest.mark.asyncio
    async def test_unknown_document(self, engine):
        result = await reach_selection(engine, "9999999")
        assert result.step == StepId.AWAITING_DOCUMENT_NUMBER
        assert texts(result) == [
            messages.LOOKUP_STARTED,
            messages.no_processes_found("9999999"),
            messages.DOCUMENT_NUMBER_PROMPT,
        ]
        retry = await say(engine, "1234567")
        assert retry.step == StepId.PROCESS_SELECTION

    @pytest.mark.asyncio
    async def test_records_service_down(self, make_engine):
        engine = make_engine(records=DownRecordsClient())
        result = await reach_selection(engine)
        assert result.step == StepId.AWAITING_DOCUMENT_NUMBER
        assert messages.CONNECTION_ERROR in texts(result)

    @pytest.mark.asyncio
    async def test_handler_crash_resets_to_idle(self, make_engine, store):
        engine = make_engine(records=CrashingRecordsClient())
        result = await reach_selection(engine)
        assert result.status == EngineResultStatus.HANDLED
        assert result.step == StepId.IDLE
        assert texts(result)[-1] == messages.UNEXPECTED_ERROR
        assert (await store.get(CLIENT)).current_step == StepId.IDLE

    @pytest.mark.asyncio
    async def test_report_failure_then_retry(self, make_engine, storage, store):
        reports = ReportOrchestrator(FailingRenderer(), storage, dispose_after_seconds=0)
        engine = make_engine(reports=reports)
        await reach_selection(engine)

        failed = await say(engine, "3")
        assert failed.step == StepId.REPORT_OPTIONS_ERROR
        assert texts(failed)[-1].startswith(messages.REPORT_ERROR_HEADER)
        assert (await store.get(CLIENT)).fields["report_error"] == "render"

        reports.renderer = TextReportRenderer()
        retried = await say(engine, "1")
        assert retried.step == StepId.REPORT_OPTIONS_SUCCESS
        assert texts(retried)[0] == messages.REPORT_RETRYING
        assert "report_error" not in (await store.get(CLIENT)).fields

    @pytest.mark.asyncio
    async def test_report_error_lawyer_option(self, make_engine, storage, sender):
        reports = ReportOrchestrator(FailingRenderer(), storage, dispose_after_seconds=0)
        engine = make_engine(reports=reports)
        await reach_selection(engine)
        await say(engine, "3")
        result = await say(engine, "3")
        assert result.step == StepId.IDLE
        assert "Error generando el resumen de procesos" in sender.texts(LAWYER_EXISTING)[0]

    @pytest.mark.asyncio
    async def test_persist_failure_sends_nothing(self, make_engine, sender):
        engine = make_engine(store=BrokenWriteStore())
        result = await say(engine, "hola")
        assert result.status == EngineResultStatus.PERSIST_FAILED
        assert sender.sent == []

    @pytest.mark.asyncio
    async def test_load_failure_sends_nothing(self, make_engine, sender):
        engine = make_engine(store=BrokenReadStore())
        result = await say(engine, "hola")
        assert result.status == EngineResultStatus.PERSIST_FAILED
        assert sender.sent == []

    @pytest.mark.asyncio
    async def test_send_failure_keeps_committed_session(self, make_engine, store):
        async def broken_sender(to, message):
            raise ConnectionError("whatsapp down")

        engine = make_engine(sender=broken_sender)
        result = await say(engine, "hola")
        assert result.status == EngineResultStatus.HANDLED
        assert result.sent == 0
        assert (await store.get(CLIENT)).current_step == StepId.WELCOME

    @pytest.mark.asyncio
    async def test_lost_cache_returns_to_document_capture(self, engine, store):
        await store.set(CLIENT, Session(user_id=CLIENT, current_step=StepId.PROCESS_SELECTION))
        result = await say(engine, "1")
        assert result.step == StepId.AWAITING_DOCUMENT_NUMBER
        assert texts(result) == [messages.NO_PROCESSES_LOADED, messages.DOCUMENT_NUMBER_PROMPT]


# ══════════════════════════════════════════════════════════════
#  INPUT HANDLING
# ══════════════════════════════════════════════════════════════

class TestInputHandling:

    @pytest.mark.asyncio
    async def test_invalid_menu_option_reprompts(self, engine):
        result = await say(engine, "hola", "7")
        assert result.step == StepId.WELCOME
        assert texts(result)[0] == messages.invalid_option(2)
        assert texts(result)[1].startswith(messages.WELCOME)

    @pytest.mark.asyncio
    async def test_non_ascii_digit_reprompts(self, engine):
        result = await say(engine, "hola", "²")
        assert result.step == StepId.WELCOME
        assert texts(result)[0] == messages.invalid_option(2)

    @pytest.mark.asyncio
    async def test_non_ascii_digit_keeps_captured_fields(self, engine, store):
        await reach_selection(engine)
        before = dict((await store.get(CLIENT)).fields)
        result = await say(engine, "²")
        assert result.step == StepId.PROCESS_SELECTION
        assert (await store.get(CLIENT)).fields == before

    @pytest.mark.asyncio
    async def test_invalid_consent_does_not_reprompt(self, engine):
        result = await say(engine, "hola", "1", "quizás")
        assert result.step == StepId.AWAITING_CONSENT
        assert texts(result) == [messages.INVALID_CONSENT]

    @pytest.mark.asyncio
    async def test_consent_rejected_ends_conversation(self, engine, store):
        result = await say(engine, "hola", "1", "no acepto")
        assert result.step == StepId.IDLE
        assert texts(result) == [messages.CONSENT_REJECTED]
        assert (await store.get(CLIENT)).fields == {}

    @pytest.mark.asyncio
    async def test_invalid_document_number(self, engine):
        result = await say(engine, "hola", "1", "1", "1", "12ab")
        assert result.step == StepId.AWAITING_DOCUMENT_NUMBER
        assert texts(result) == [messages.INVALID_DOCUMENT_NUMBER, messages.DOCUMENT_NUMBER_PROMPT]

    @pytest.mark.asyncio
    async def test_process_number_out_of_range(self, engine):
        await reach_selection(engine)
        await say(engine, "1")
        result = await say(engine, "99")
        assert result.step == StepId.ACTIVE_PROCESS_LIST
        assert texts(result) == [messages.invalid_process_number(9)]

        result = await say(engine, "cualquiera")
        assert texts(result) == [messages.PICK_FROM_LIST]

    @pytest.mark.asyncio
    async def test_consent_is_not_asked_twice(self, engine, store):
        await store.set(CLIENT, Session(user_id=CLIENT, current_step=StepId.WELCOME,
                                        fields={"consent_accepted": True}))
        result = await say(engine, "1")
        assert result.step == StepId.AWAITING_DOCUMENT_TYPE


# ══════════════════════════════════════════════════════════════
#  EVENT SEMANTICS
# ══════════════════════════════════════════════════════════════

class TestEventSemantics:

    @pytest.mark.asyncio
    async def test_duplicate_event_is_noop(self, engine, sender, store):
        first = await engine.handle(event("hola", event_id="wamid.A"))
        sent = len(sender.sent)
        second = await engine.handle(event("hola", event_id="wamid.A"))
        assert first.status == EngineResultStatus.HANDLED
        assert second.status == EngineResultStatus.DUPLICATE
        assert second.is_noop
        assert len(sender.sent) == sent
        assert (await store.get(CLIENT)).version == 1

    @pytest.mark.asyncio
    async def test_stale_event_is_noop(self, engine, sender):
        await say(engine, "hola")
        sender.clear()
        result = await engine.handle(event("1", expected_step=StepId.PROCESS_SELECTION))
        assert result.status == EngineResultStatus.STALE
        assert result.step == StepId.WELCOME
        assert sender.sent == []

    @pytest.mark.asyncio
    async def test_unaccepted_action_is_ignored(self, engine):
        await say(engine, "hola")
        result = await engine.handle(InboundEvent(user_id=CLIENT, kind=EventKind.ACTION,
                                                  action=Action.CONSULT))
        assert result.status == EngineResultStatus.IGNORED

    @pytest.mark.asyncio
    async def test_consult_action_from_idle(self, engine):
        result = await engine.handle(InboundEvent(user_id=CLIENT, kind=EventKind.ACTION,
                                                  action=Action.CONSULT))
        assert result.step == StepId.AWAITING_CONSENT
        assert texts(result) == [messages.CONSENT]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("keyword", ["MENU", "menú", "Reiniciar"])
    async def test_restart_from_any_step(self, engine, store, keyword):
        await reach_selection(engine)
        await say(engine, "1")
        result = await say(engine, keyword)
        assert result.step == StepId.WELCOME
        assert texts(result)[0] == messages.RESTARTING
        assert texts(result)[1].startswith(messages.WELCOME)
        assert (await store.get(CLIENT)).fields == {}

    @pytest.mark.asyncio
    async def test_expired_session_starts_over(self, engine, store):
        stale = Session(user_id=CLIENT, current_step=StepId.MAIN_OPTIONS,
                        fields={"document_number": "1234567"})
        stale.updated_at = datetime.now(timezone.utc) - timedelta(minutes=31)
        await store.set(CLIENT, stale)

        result = await say(engine, "1")
        assert texts(result)[0] == messages.SESSION_EXPIRED
        assert result.step == StepId.WELCOME
        assert "document_number" not in (await store.get(CLIENT)).fields

    @pytest.mark.asyncio
    async def test_recent_session_is_kept(self, engine, store):
        recent = Session(user_id=CLIENT, current_step=StepId.MAIN_OPTIONS)
        recent.updated_at = datetime.now(timezone.utc) - timedelta(minutes=29)
        await store.set(CLIENT, recent)

        result = await say(engine, "2")
        assert texts(result) == [messages.GOODBYE]

    @pytest.mark.asyncio
    async def test_users_are_independent(self, engine, store):
        await asyncio.gather(
            engine.handle(event("hola", user_id="573000000010")),
            engine.handle(event("hola", user_id="573000000011")),
        )
        assert (await store.get("573000000010")).current_step == StepId.WELCOME
        assert (await store.get("573000000011")).current_step == StepId.WELCOME

    @pytest.mark.asyncio
    async def test_same_user_events_are_serialized(self, engine, store):
        await asyncio.gather(engine.handle(event("hola")), engine.handle(event("1")))
        session = await store.get(CLIENT)
        assert session.version == 2
        assert session.current_step == StepId.AWAITING_CONSENT

    def test_classify_turns_opener_into_start(self):
        session = Session(user_id=CLIENT)
        classified = FlowEngine.classify(event("buenas"), session)
        assert classified.action == Action.START
        session.current_step = StepId.WELCOME
        assert FlowEngine.classify(event("1"), session).kind == EventKind.TEXT


# ══════════════════════════════════════════════════════════════
#  REGISTRY & TRANSITIONS
# ══════════════════════════════════════════════════════════════

class TestRegistry:

    def test_every_step_is_registered(self):
        registry = build_registry()
        for step_id in StepId:
            assert step_id in registry
        assert len(registry) == len(StepId)

    def test_incomplete_registry_is_rejected(self):
        with pytest.raises(ValueError, match="no step registered"):
            StepRegistry().register_all([IdleStep()])

    def test_duplicate_step_is_rejected(self):
        registry = StepRegistry()
        registry.register(IdleStep())
        with pytest.raises(ValueError, match="registered twice"):
            registry.register(IdleStep())

    def test_automatic_steps(self):
        registry = build_registry()
        automatic = {s for s in StepId if registry.get(s).automatic}
        assert automatic == {StepId.LOOKUP_IN_PROGRESS, StepId.REPORT_GENERATE}

    @pytest.mark.parametrize("transition,expected", [
        (Advance(StepId.WELCOME), StepId.WELCOME),
        (Jump(StepId.MAIN_OPTIONS), StepId.MAIN_OPTIONS),
        (Terminal("bye"), StepId.IDLE),
        (Retry(), StepId.PDF_CONFIRMATION),
    ])
    def test_target_of(self, transition, expected):
        assert target_of(transition, StepId.PDF_CONFIRMATION) == expected


# ══════════════════════════════════════════════════════════════
#  REFERENCE SCENARIOS
# ══════════════════════════════════════════════════════════════

class TestReferenceScenarios:

    @pytest.mark.asyncio
    async def test_nine_active_one_finalized_offers_three_options(self, engine):
        selection = await reach_selection(engine)
        options = texts(selection)[1].splitlines()[1:]
        assert len(options) == 3
        assert "Ver procesos activos" in options[0]
        assert "Ver procesos finalizados" in options[1]
        assert "PDF" in options[2]

        result = await say(engine, "3")
        assert StepId.REPORT_GENERATE in result.path

    @pytest.mark.asyncio
    async def test_document_without_cases(self, make_engine, empty_records):
        engine = make_engine(records=empty_records)
        result = await reach_selection(engine, "7654321")
        assert result.step == StepId.AWAITING_DOCUMENT_NUMBER
        assert messages.no_processes_found("7654321") in texts(result)

    @pytest.mark.asyncio
    async def test_letters_in_document_number(self, engine):
        result = await say(engine, "hola", "1", "1", "1", "12AB")
        assert result.step == StepId.AWAITING_DOCUMENT_NUMBER
        assert texts(result)[-1] == messages.DOCUMENT_NUMBER_PROMPT

    @pytest.mark.asyncio
    async def test_records_timeout_during_report(self, make_engine, store):
        engine = make_engine(records=TimeoutOnReportRecordsClient())
        await reach_selection(engine)
        result = await say(engine, "3")
        assert result.step == StepId.REPORT_OPTIONS_ERROR
        assert (await store.get(CLIENT)).current_step == StepId.REPORT_OPTIONS_ERROR
        menu = texts(result)[-1]
        assert "intentarlo nuevamente" in menu and "abogado" in menu

    @pytest.mark.asyncio
    async def test_out_of_order_callback_is_noop(self, engine, store, sender):
        await reach_selection(engine)
        await engine.handle(event("1", event_id="wamid.sel", expected_step=StepId.PROCESS_SELECTION))
        before = await store.get(CLIENT)
        sender.clear()

        again = await engine.handle(event("1", event_id="wamid.sel",
                                          expected_step=StepId.PROCESS_SELECTION))
        assert again.is_noop
        assert sender.sent == []
        assert await store.get(CLIENT) == before
