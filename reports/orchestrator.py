"""
Report Orchestrator — builds the report model, renders it, stores the
artifact under a unique reference and schedules its disposal.

Provides:
- to_process_detail(): lossless CaseRecord → ProcessDetail mapping
- ReportOrchestrator.generate(): returns a Deliverable or a Failure
- create_report_orchestrator(): wiring from settings
"""
from __future__ import annotations

import asyncio
import structlog
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from config.settings import ReportsConfig, get_settings
from core.errors import EmptyInputError, Failure, FlowError, RenderError
from models.schemas import (
    CaseRecord, Deliverable, Performance, ProcessDetail, ReportModel, as_utc,
)
from reports.renderer import ReportRenderer, create_renderer
from reports.storage import ArtifactStorage

logger = structlog.get_logger()


def _latest_performance(performances: list[Performance]) -> Optional[Performance]:
    dated = [p for p in performances if p.updated_at or p.created_at]
    if not dated:
        return performances[-1] if performances else None
    return max(dated, key=lambda p: as_utc(p.updated_at or p.created_at))


def to_process_detail(record: CaseRecord, client_name: str = "") -> ProcessDetail:
    """Map a case record to its render-ready view without dropping data."""
    last = _latest_performance(record.performances)
    detail = ProcessDetail(
        id=record.id,
        internal_code=record.internal_code,
        client_name=client_name,
        settled=record.settled,
        state=record.state,
        updated_at=record.updated_at,
        plaintiffs=list(record.procedural_parts.plaintiffs),
        defendants=list(record.procedural_parts.defendants),
        performances=[p.model_copy() for p in record.performances],
    )
    if record.jurisdiction:
        detail.jurisdiction = record.jurisdiction
    if record.process_type:
        detail.process_type = record.process_type
    if last is not None:
        if last.performance_type:
            detail.status = last.performance_type
        if last.responsible:
            detail.responsible = last.responsible
        if last.observation:
            detail.next_milestone = last.observation
    return detail


class ReportOrchestrator:
    """Render → store → schedule disposal."""

    def __init__(
        self,
        renderer: ReportRenderer,
        storage: ArtifactStorage,
        dispose_after_seconds: float = 120.0,
    ):
        self.renderer = renderer
        self.storage = storage
        self.dispose_after_seconds = dispose_after_seconds
        self._disposals: dict[str, asyncio.Task] = {}

    @property
    def pending_disposals(self) -> list[str]:
        return [ref for ref, task in self._disposals.items() if not task.done()]

    def _reference(self, primary_code: str) -> str:
        # Timestamp plus random suffix: two reports in the same millisecond still differ
        stamp = int(datetime.now(timezone.utc).timestamp() * 1000)
        code = "".join(c for c in primary_code if c.isalnum() or c in "-_") or "reporte"
        return f"proceso-{code}-{stamp}-{uuid.uuid4().hex[:8]}.{self.renderer.extension}"

    async def generate(
        self,
        records: list[CaseRecord],
        client_name: str,
        document_number: str = "",
    ) -> Union[Deliverable, Failure]:
        if not records:
            return Failure(EmptyInputError("No case records to report on"))

        reference = self._reference(records[0].internal_code)
        try:
            model = ReportModel(
                client_name=client_name,
                document_number=document_number,
                processes=[to_process_detail(r, client_name) for r in records],
            )
        except (TypeError, ValueError) as e:
            logger.error("report_model_failed", reference=reference, error=str(e))
            return Failure(RenderError(f"Could not build report {reference}", cause=e))

        try:
            data = await self.renderer.render(model)
        except FlowError as e:
            logger.error("report_render_failed", reference=reference, error=str(e))
            return Failure(e)

        try:
            await self.storage.save(reference, data)
        except OSError as e:
            logger.error("report_store_failed", reference=reference, error=str(e))
            return Failure(RenderError(f"Could not store report {reference}", cause=e))

        dispose_at = None
        if self.dispose_after_seconds > 0:
            dispose_at = datetime.now(timezone.utc) + timedelta(seconds=self.dispose_after_seconds)
            self.schedule_disposal(reference, self.dispose_after_seconds)

        logger.info("report_generated",
                    reference=reference,
                    processes=len(records),
                    document_number=document_number)
        return Deliverable(
            reference=reference,
            media_locator=self.storage.locator(reference),
            filename=reference,
            mime_type=self.renderer.mime_type,
            dispose_at=dispose_at,
        )

    # ── Disposal ──────────────────────────────────────────────

    def schedule_disposal(self, reference: str, delay_seconds: float):
        task = asyncio.create_task(self._dispose_later(reference, delay_seconds))
        self._disposals[reference] = task
        task.add_done_callback(lambda _t, ref=reference: self._disposals.pop(ref, None))

    async def _dispose_later(self, reference: str, delay_seconds: float):
        await asyncio.sleep(delay_seconds)
        await self.dispose(reference)

    async def dispose(self, reference: str) -> bool:
        """Delete an artifact. Failures are logged, never raised."""
        try:
            return await self.storage.delete(reference)
        except (OSError, ValueError) as e:
            logger.warning("report_disposal_failed", reference=reference, error=str(e))
            return False

    async def sweep(self, max_age_minutes: int) -> int:
        """Remove artifacts left over from a previous run."""
        return await self.storage.cleanup_older_than(max_age_minutes)

    async def shutdown(self):
        tasks = list(self._disposals.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._disposals.clear()
        await self.renderer.close()


def create_report_orchestrator(config: ReportsConfig = None) -> ReportOrchestrator:
    settings = get_settings()
    config = config or settings.reports
    return ReportOrchestrator(
        renderer=create_renderer(settings.renderer),
        storage=ArtifactStorage(config.output_dir, config.public_base_url),
        dispose_after_seconds=config.dispose_after_seconds,
    )
