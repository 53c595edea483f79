from reports.orchestrator import ReportOrchestrator, create_report_orchestrator, to_process_detail
from reports.renderer import ReportRenderer, HttpReportRenderer, TextReportRenderer, create_renderer
from reports.storage import ArtifactStorage

__all__ = [
    "ReportOrchestrator", "create_report_orchestrator", "to_process_detail",
    "ReportRenderer", "HttpReportRenderer", "TextReportRenderer", "create_renderer",
    "ArtifactStorage",
]
