"""
The legal-case conversation: one FlowStep per StepId.

  Idle → Welcome → AwaitingConsent → AwaitingDocumentType → AwaitingDocumentNumber
       → LookupInProgress (auto) → ProcessSelection → ActiveProcessList
       → PdfConfirmation → ReportGenerate (auto) → ReportOptionsSuccess | ReportOptionsError

Side branches: FinalizedOptions, MainOptions and NewProcessProfile.
`build_registry()` wires every step into a validated StepRegistry.
"""
from __future__ import annotations

import structlog
from typing import Optional

from core.errors import Failure
from flows import messages
from flows.menus import Menu, Option, OptionKey
from flows.steps import (
    AutomaticStep, FlowStep, MenuStep, StepContext, StepRegistry, client_processes,
)
from flows.transitions import Advance, Jump, Retry, Terminal, Transition, text
from flows.validators import Invalid, validate, validate_menu_choice
from models.schemas import (
    Action, CaseRecord, ClientProcesses, InboundEvent, MenuCounts, OutboundMessage,
    Session, StepId,
)
from reports.orchestrator import to_process_detail

logger = structlog.get_logger()

DOCUMENT_TYPES: list[Option] = [
    Option("cc", "Cédula de Ciudadanía"),
    Option("pep", "Permiso Especial de Permanencia"),
    Option("ppt", "Permiso de protección temporal"),
    Option("nit", "NIT"),
    Option("passport", "Pasaporte"),
    Option("ce", "Cédula de extranjería"),
]

# Fields that belong to one document lookup
_LOOKUP_FIELDS = ("document_number", "client_processes", "selected_process", "report_scope")


def _lost_cache() -> Jump:
    return Jump(StepId.AWAITING_DOCUMENT_NUMBER, replies=[text(messages.NO_PROCESSES_LOADED)])


def _view_transition(key: str, processes: ClientProcesses) -> Optional[Transition]:
    """Shared handling for the data-dependent options (active/finalized/report)."""
    if key == OptionKey.VIEW_ACTIVE:
        return Jump(StepId.ACTIVE_PROCESS_LIST)
    if key == OptionKey.VIEW_FINALIZED:
        return Jump(StepId.FINALIZED_OPTIONS)
    if key == OptionKey.REPORT:
        return Jump(StepId.REPORT_GENERATE, fields={"report_scope": "all"})
    return None


def _client_name(records: list[CaseRecord], ctx: StepContext) -> str:
    for record in records:
        if record.procedural_parts.plaintiffs:
            return record.procedural_parts.plaintiffs[0]
    return ctx.sender_name or "Cliente"


def _lawyer_handoff(session: Session, ctx: StepContext, request_type: str, message: str) -> Terminal:
    notices = ctx.notifier.existing_process(
        client_number=ctx.user_id,
        client_name=ctx.sender_name,
        document_number=session.fields.get("document_number", ""),
        request_type=request_type,
    )
    return Terminal(message, replies=notices)


# ──────────────────────────────────────────────────────────────
#  Entry & consent
# ──────────────────────────────────────────────────────────────

class IdleStep(FlowStep):
    step_id = StepId.IDLE
    accepts_actions = True

    async def handle(self, event: InboundEvent, session: Session, ctx: StepContext) -> Transition:
        if event.action == Action.CONSULT:
            if session.fields.get("consent_accepted"):
                return Advance(StepId.AWAITING_DOCUMENT_TYPE, fields={"intent": "existing"})
            return Advance(StepId.AWAITING_CONSENT, fields={"intent": "existing"})
        return Advance(StepId.WELCOME)


class WelcomeStep(MenuStep):
    step_id = StepId.WELCOME

    def menu(self, session: Session, ctx: StepContext) -> Menu:
        return Menu.static(messages.WELCOME, [
            Option(OptionKey.EXISTING_PROCESS, "¿Tienes actualmente un proceso con nosotros?"),
            Option(OptionKey.NEW_PROCESS, "¿Quieres iniciar un proceso con nosotros?"),
        ])

    async def on_select(self, key: str, session: Session, ctx: StepContext) -> Transition:
        intent = "new" if key == OptionKey.NEW_PROCESS else "existing"
        if session.fields.get("consent_accepted"):
            target = StepId.NEW_PROCESS_PROFILE if intent == "new" else StepId.AWAITING_DOCUMENT_TYPE
            return Advance(target, fields={"intent": intent})
        return Advance(StepId.AWAITING_CONSENT, fields={"intent": intent})


class ConsentStep(FlowStep):
    step_id = StepId.AWAITING_CONSENT

    def entry(self, session: Session, ctx: StepContext) -> list[OutboundMessage]:
        return [text(messages.CONSENT)]

    async def handle(self, event: InboundEvent, session: Session, ctx: StepContext) -> Transition:
        result = validate(self.step_id, event.body)
        if isinstance(result, Invalid):
            return Retry(messages.INVALID_CONSENT, reprompt=False)
        if not result.value:
            logger.info("consent_rejected", user_id=session.user_id)
            return Terminal(messages.CONSENT_REJECTED)

        logger.info("consent_accepted", user_id=session.user_id)
        target = (StepId.NEW_PROCESS_PROFILE if session.fields.get("intent") == "new"
                  else StepId.AWAITING_DOCUMENT_TYPE)
        return Advance(target, fields={"consent_accepted": True},
                       replies=[text(messages.CONSENT_ACCEPTED)])


# ──────────────────────────────────────────────────────────────
#  Identification & lookup
# ──────────────────────────────────────────────────────────────

class DocumentTypeStep(MenuStep):
    step_id = StepId.AWAITING_DOCUMENT_TYPE

    def menu(self, session: Session, ctx: StepContext) -> Menu:
        return Menu.static(messages.DOCUMENT_TYPE_HEADER, DOCUMENT_TYPES)

    async def on_select(self, key: str, session: Session, ctx: StepContext) -> Transition:
        label = next(o.label for o in DOCUMENT_TYPES if o.key == key)
        return Advance(StepId.AWAITING_DOCUMENT_NUMBER,
                       fields={"document_type": key, "document_type_label": label})


class DocumentNumberStep(FlowStep):
    step_id = StepId.AWAITING_DOCUMENT_NUMBER

    def entry(self, session: Session, ctx: StepContext) -> list[OutboundMessage]:
        return [text(messages.DOCUMENT_NUMBER_PROMPT)]

    async def handle(self, event: InboundEvent, session: Session, ctx: StepContext) -> Transition:
        result = validate(self.step_id, event.body)
        if isinstance(result, Invalid):
            logger.info("document_number_rejected", user_id=session.user_id, code=result.code)
            return Retry(messages.INVALID_DOCUMENT_NUMBER)
        return Advance(StepId.LOOKUP_IN_PROGRESS, fields={"document_number": result.value})


class LookupStep(AutomaticStep):
    step_id = StepId.LOOKUP_IN_PROGRESS

    def entry(self, session: Session, ctx: StepContext) -> list[OutboundMessage]:
        return [text(messages.LOOKUP_STARTED)]

    async def run(self, session: Session, ctx: StepContext) -> Transition:
        document = session.fields.get("document_number", "")
        result = await ctx.records.find_by_document(document)
        if isinstance(result, Failure):
            return ctx.policy.recover(result.error, session, self.step_id)

        logger.info("client_processes_loaded",
                    user_id=session.user_id,
                    active=result.total_active,
                    finalized=result.total_finalized)
        return Advance(StepId.PROCESS_SELECTION,
                       fields={"client_processes": result.model_dump(mode="json")})


# ──────────────────────────────────────────────────────────────
#  Case views
# ──────────────────────────────────────────────────────────────

class ProcessSelectionStep(MenuStep):
    step_id = StepId.PROCESS_SELECTION

    def menu(self, session: Session, ctx: StepContext) -> Menu:
        processes = client_processes(session)
        if processes is None:
            return ctx.menus.build(MenuCounts())
        header = messages.processes_found(
            processes.document_number, processes.total_active, processes.total_finalized,
        )
        return ctx.menus.build(processes.counts, header=header)

    async def handle(self, event: InboundEvent, session: Session, ctx: StepContext) -> Transition:
        if client_processes(session) is None:
            return _lost_cache()
        return await super().handle(event, session, ctx)

    async def on_select(self, key: str, session: Session, ctx: StepContext) -> Transition:
        return _view_transition(key, client_processes(session))


class ActiveProcessListStep(FlowStep):
    """Numbered list of active cases; accepts a number, PDF or FINALIZADOS."""

    step_id = StepId.ACTIVE_PROCESS_LIST

    def entry(self, session: Session, ctx: StepContext) -> list[OutboundMessage]:
        processes = client_processes(session)
        if processes is None or not processes.active:
            return [text(messages.NO_PROCESSES_LOADED)]
        return [
            text(messages.format_process_list(processes.active, "active")),
            text(messages.active_list_hint(len(processes.active), processes.total_finalized > 0)),
        ]

    async def handle(self, event: InboundEvent, session: Session, ctx: StepContext) -> Transition:
        processes = client_processes(session)
        if processes is None or not processes.active:
            return _lost_cache()

        command = event.body.strip().lower()
        if command == "pdf":
            return Advance(StepId.REPORT_GENERATE, fields={"report_scope": "all"})
        if command == "finalizados" and processes.total_finalized > 0:
            return Advance(StepId.FINALIZED_OPTIONS)

        result = validate_menu_choice(event.body, len(processes.active))
        if isinstance(result, Invalid):
            if result.code == "out_of_range":
                return Retry(messages.invalid_process_number(len(processes.active)), reprompt=False)
            return Retry(messages.PICK_FROM_LIST, reprompt=False)

        record = processes.active[result.value - 1]
        detail = await ctx.records.find_detail_by_code(record.internal_code)
        if isinstance(detail, Failure):
            return ctx.policy.recover(detail.error, session, self.step_id)

        view = to_process_detail(detail.record, ctx.sender_name)
        return Advance(
            StepId.PDF_CONFIRMATION,
            fields={"selected_process": detail.record.model_dump(mode="json")},
            replies=[text(messages.DETAILS_LOADING), text(messages.format_process_details(view))],
        )


class PdfConfirmationStep(FlowStep):
    step_id = StepId.PDF_CONFIRMATION

    def entry(self, session: Session, ctx: StepContext) -> list[OutboundMessage]:
        return [text(messages.PDF_QUESTION)]

    async def handle(self, event: InboundEvent, session: Session, ctx: StepContext) -> Transition:
        result = validate(self.step_id, event.body)
        if isinstance(result, Invalid):
            return Retry(messages.INVALID_YES_NO, reprompt=False)
        if result.value:
            return Advance(StepId.REPORT_GENERATE, fields={"report_scope": "selected"})
        return Jump(StepId.MAIN_OPTIONS, replies=[text(messages.PDF_DECLINED)])


class FinalizedOptionsStep(MenuStep):
    step_id = StepId.FINALIZED_OPTIONS

    def menu(self, session: Session, ctx: StepContext) -> Menu:
        processes = client_processes(session)
        header = ""
        if processes is not None:
            header = messages.finalized_summary(processes.finalized, processes.document_number)
        return Menu.static(header, [
            Option(OptionKey.NEW_PROCESS, "Quieres iniciar un nuevo proceso"),
            Option(OptionKey.OTHER_PROCESS_TYPE, "Quieres consultar otro proceso"),
            Option(OptionKey.TALK_TO_LAWYER, "¿Prefieres hablar directamente con un abogado?"),
        ])

    async def handle(self, event: InboundEvent, session: Session, ctx: StepContext) -> Transition:
        if client_processes(session) is None:
            return _lost_cache()
        return await super().handle(event, session, ctx)

    async def on_select(self, key: str, session: Session, ctx: StepContext) -> Transition:
        if key == OptionKey.NEW_PROCESS:
            return Jump(StepId.NEW_PROCESS_PROFILE,
                        replies=[text(messages.NEW_PROCESS_FROM_FINALIZED)])
        if key == OptionKey.OTHER_PROCESS_TYPE:
            return Jump(StepId.PROCESS_SELECTION,
                        replies=[text(messages.OTHER_PROCESS_TYPE_HEADER)])
        return _lawyer_handoff(session, ctx, "Consulta sobre procesos finalizados",
                               messages.LAWYER_HANDOFF_FINALIZED)


class MainOptionsStep(MenuStep):
    step_id = StepId.MAIN_OPTIONS

    def menu(self, session: Session, ctx: StepContext) -> Menu:
        processes = client_processes(session)
        counts = processes.counts if processes is not None else MenuCounts()
        return ctx.menus.build(
            counts,
            header=messages.MAIN_OPTIONS_HEADER,
            trailing=(OptionKey.OTHER_DOCUMENT, OptionKey.FINISH),
        )

    async def on_select(self, key: str, session: Session, ctx: StepContext) -> Transition:
        if key == OptionKey.OTHER_DOCUMENT:
            return Jump(StepId.AWAITING_DOCUMENT_TYPE,
                        fields={name: None for name in _LOOKUP_FIELDS})
        if key == OptionKey.FINISH:
            return Terminal(messages.GOODBYE)
        processes = client_processes(session)
        if processes is None:
            return _lost_cache()
        return _view_transition(key, processes)


# ──────────────────────────────────────────────────────────────
#  Reports
# ──────────────────────────────────────────────────────────────

class ReportGenerateStep(AutomaticStep):
    step_id = StepId.REPORT_GENERATE

    def entry(self, session: Session, ctx: StepContext) -> list[OutboundMessage]:
        if session.fields.get("report_scope") == "selected":
            return [text(messages.SINGLE_REPORT_STARTED)]
        return [text(messages.REPORT_STARTED)]

    async def _records(self, session: Session, ctx: StepContext):
        selected = session.fields.get("selected_process")
        if session.fields.get("report_scope") == "selected" and selected:
            return [CaseRecord.model_validate(selected)]
        result = await ctx.records.find_all_with_detail_by_document(
            session.fields["document_number"])
        if isinstance(result, Failure):
            return result
        return result.records

    async def run(self, session: Session, ctx: StepContext) -> Transition:
        document = session.fields.get("document_number")
        if not document:
            return Jump(StepId.AWAITING_DOCUMENT_NUMBER, replies=[text(messages.NO_DOCUMENT)])

        records = await self._records(session, ctx)
        if isinstance(records, Failure):
            return ctx.policy.recover(records.error, session, self.step_id)

        deliverable = await ctx.reports.generate(records, _client_name(records, ctx), document)
        if isinstance(deliverable, Failure):
            return ctx.policy.recover(deliverable.error, session, self.step_id)

        return Advance(
            StepId.REPORT_OPTIONS_SUCCESS,
            fields={"last_report": deliverable.reference, "report_error": None},
            replies=[OutboundMessage(
                text=messages.REPORT_CAPTION,
                media_url=deliverable.media_locator,
                filename=deliverable.filename,
                mime_type=deliverable.mime_type,
            )],
        )


class ReportOptionsSuccessStep(MenuStep):
    step_id = StepId.REPORT_OPTIONS_SUCCESS

    def menu(self, session: Session, ctx: StepContext) -> Menu:
        return Menu.static(messages.REPORT_NEXT_HEADER, [
            Option(OptionKey.OTHER_PROCESS_TYPE, "Consultar otro tipo de procesos"),
            Option(OptionKey.NEW_PROCESS, "Iniciar un nuevo proceso"),
            Option(OptionKey.TALK_TO_LAWYER, "Hablar con un abogado"),
        ])

    async def on_select(self, key: str, session: Session, ctx: StepContext) -> Transition:
        if key == OptionKey.OTHER_PROCESS_TYPE:
            if client_processes(session) is None:
                return _lost_cache()
            return Jump(StepId.PROCESS_SELECTION,
                        replies=[text(messages.OTHER_PROCESS_TYPE_HEADER)])
        if key == OptionKey.NEW_PROCESS:
            return Jump(StepId.NEW_PROCESS_PROFILE,
                        replies=[text(messages.NEW_PROCESS_STARTING)])
        return _lawyer_handoff(session, ctx, "Consulta sobre procesos existentes",
                               messages.LAWYER_HANDOFF)


class ReportOptionsErrorStep(MenuStep):
    step_id = StepId.REPORT_OPTIONS_ERROR

    def menu(self, session: Session, ctx: StepContext) -> Menu:
        return Menu.static(messages.REPORT_ERROR_HEADER, [
            Option(OptionKey.RETRY, "Quieres intentarlo nuevamente"),
            Option(OptionKey.NEW_PROCESS, "Iniciar un nuevo proceso"),
            Option(OptionKey.TALK_TO_LAWYER, "Hablar con un abogado"),
        ])

    async def on_select(self, key: str, session: Session, ctx: StepContext) -> Transition:
        if key == OptionKey.RETRY:
            return Jump(StepId.REPORT_GENERATE, fields={"report_error": None},
                        replies=[text(messages.REPORT_RETRYING)])
        if key == OptionKey.NEW_PROCESS:
            return Jump(StepId.NEW_PROCESS_PROFILE,
                        replies=[text(messages.NEW_PROCESS_STARTING)])
        return _lawyer_handoff(session, ctx, "Error generando el resumen de procesos",
                               messages.LAWYER_HANDOFF)


# ──────────────────────────────────────────────────────────────
#  New process
# ──────────────────────────────────────────────────────────────

class NewProcessProfileStep(MenuStep):
    step_id = StepId.NEW_PROCESS_PROFILE

    PROFILES = {
        OptionKey.COMPANY: ("Empresa", messages.COMPANY_WELCOME),
        OptionKey.OTHER_PROFILE: ("Otro perfil", messages.OTHER_PROFILE_WELCOME),
    }

    def menu(self, session: Session, ctx: StepContext) -> Menu:
        return Menu.static(messages.NEW_PROCESS_HEADER, [
            Option(OptionKey.RAPPITENDERO, "¿Eres Rappitendero?"),
            Option(OptionKey.COMPANY, "¿Eres una empresa?"),
            Option(OptionKey.OTHER_PROFILE, "¿Otro perfil? (independiente, particular, etc.)"),
        ])

    async def on_select(self, key: str, session: Session, ctx: StepContext) -> Transition:
        if key == OptionKey.RAPPITENDERO:
            return Terminal(messages.RAPPITENDERO_WELCOME)
        profile, welcome = self.PROFILES[key]
        notices = ctx.notifier.new_process(
            client_number=ctx.user_id,
            client_name=ctx.sender_name,
            profile=profile,
            request_type="Iniciar nuevo proceso",
        )
        return Terminal(welcome, replies=notices)


def build_registry() -> StepRegistry:
    registry = StepRegistry()
    registry.register_all([
        IdleStep(),
        WelcomeStep(),
        ConsentStep(),
        DocumentTypeStep(),
        DocumentNumberStep(),
        LookupStep(),
        ProcessSelectionStep(),
        ActiveProcessListStep(),
        PdfConfirmationStep(),
        FinalizedOptionsStep(),
        MainOptionsStep(),
        ReportGenerateStep(),
        ReportOptionsSuccessStep(),
        ReportOptionsErrorStep(),
        NewProcessProfileStep(),
    ])
    return registry
