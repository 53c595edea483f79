"""
Report renderers — turn a ReportModel into a binary artifact.

  HttpReportRenderer   posts the model as JSON to a rendering service and
                       returns the document it answers with (PDF in production)
  TextReportRenderer   in-process plain-text summary for development and tests

`create_renderer()` picks the HTTP renderer when a service URL is configured.
"""
from __future__ import annotations

import abc
import structlog
from typing import Optional

import httpx

from config.settings import RendererConfig, get_settings
from core.errors import RenderError
from flows.messages import format_date
from models.schemas import ReportModel

logger = structlog.get_logger()


class ReportRenderer(abc.ABC):
    """Abstract base for all renderers."""

    extension: str = "pdf"
    mime_type: str = "application/pdf"

    @abc.abstractmethod
    async def render(self, model: ReportModel) -> bytes:
        """Render the model. Raises RenderError on any failure."""
        ...

    async def close(self):
        pass


class HttpReportRenderer(ReportRenderer):
    """Delegates rendering to an external HTTP service."""

    def __init__(self, config: RendererConfig):
        self.config = config
        self.client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self.client is None or self.client.is_closed:
            self.client = httpx.AsyncClient(timeout=self.config.timeout_seconds)
        return self.client

    async def render(self, model: ReportModel) -> bytes:
        client = await self._get_client()
        try:
            response = await client.post(self.config.url, json=model.model_dump(mode="json"))
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise RenderError("Rendering service timed out", cause=e)
        except httpx.HTTPError as e:
            raise RenderError(f"Rendering service failed: {e}", cause=e)

        if not response.content:
            raise RenderError("Rendering service returned an empty document")
        logger.info("report_rendered", renderer="http",
                    processes=len(model.processes), size_bytes=len(response.content))
        return response.content

    async def close(self):
        if self.client:
            await self.client.aclose()


class TextReportRenderer(ReportRenderer):
    """Plain-text summary, one block per process."""

    extension = "txt"
    mime_type = "text/plain"

    async def render(self, model: ReportModel) -> bytes:
        if not model.processes:
            raise RenderError("Nothing to render")

        lines = [
            "RESUMEN DE PROCESOS",
            f"Cliente: {model.client_name}",
        ]
        if model.document_number:
            lines.append(f"Documento: {model.document_number}")
        lines.append(f"Generado: {format_date(model.generated_at)}")
        lines.append(f"Total de procesos: {len(model.processes)}")

        for p in model.processes:
            lines += [
                "",
                "=" * 48,
                f"Proceso #{p.internal_code}",
                f"Estado: {p.status}",
                f"Responsable: {p.responsible}",
                f"Próximo hito: {p.next_milestone}",
                f"Jurisdicción: {p.jurisdiction}",
                f"Tipo: {p.process_type}",
                f"Demandantes: {', '.join(p.plaintiffs) or '-'}",
                f"Demandados: {', '.join(p.defendants) or '-'}",
            ]
            if p.performances:
                lines.append("Actuaciones:")
                for perf in p.performances:
                    when = format_date(perf.updated_at or perf.created_at)
                    lines.append(f"  - {when} {perf.performance_type}: {perf.observation}")

        body = "\n".join(lines) + "\n"
        logger.info("report_rendered", renderer="text", processes=len(model.processes))
        return body.encode("utf-8")


def create_renderer(config: RendererConfig = None) -> ReportRenderer:
    """Factory function to create the configured renderer."""
    config = config or get_settings().renderer
    if config.type == "http" and config.url:
        return HttpReportRenderer(config)
    if config.type == "http":
        logger.warning("using_text_renderer", reason="renderer url empty")
    return TextReportRenderer()
