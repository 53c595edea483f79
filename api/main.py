"""
FastAPI Application — webhooks, inbound API and session administration.

Provides:
- WhatsApp Cloud API webhook (verification + inbound messages)
- Transport-neutral inbound endpoint for other gateways and testing
- Session inspection/reset for support staff
- Static serving of generated reports under /public/reports
"""
from __future__ import annotations

import structlog
from datetime import datetime, timezone
from typing import Any, Optional
from contextlib import asynccontextmanager

# Load .env before any config is read
from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from config.settings import get_settings
from backend.connector import create_records_client
from channels.notifier import LawyerNotifier
from channels.whatsapp_adapter import WhatsAppAdapter
from core.engine import EngineResult, FlowEngine
from core.errors import PersistenceError
from database.session import close_db, init_db
from database.store_factory import create_store
from flows.legal import build_registry
from models.schemas import Action, EventKind, InboundEvent, StepId
from reports.orchestrator import create_report_orchestrator

logger = structlog.get_logger()

# ──────────────────────────────────────────────────────────────
#  Bootstrap
# ──────────────────────────────────────────────────────────────

_settings_boot = get_settings()

session_store = create_store({
    "store_backend": _settings_boot.database.store_backend,
    "store_file_dir": _settings_boot.database.store_file_dir,
})
records_client = create_records_client(_settings_boot.records_api)
report_orchestrator = create_report_orchestrator(_settings_boot.reports)
whatsapp_adapter = WhatsAppAdapter()

engine = FlowEngine(
    store=session_store,
    registry=build_registry(),
    records=records_client,
    reports=report_orchestrator,
    notifier=LawyerNotifier(_settings_boot.lawyers),
    sender=whatsapp_adapter.send_message,
    config=_settings_boot.session,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()

    whatsapp_cfg = settings.channels.get("whatsapp")
    await whatsapp_adapter.initialize(whatsapp_cfg.credentials if whatsapp_cfg else {})

    if settings.database.store_backend == "sql":
        await init_db()

    removed = await report_orchestrator.sweep(settings.reports.max_age_minutes)

    logger.info("elena_started",
                store=type(session_store).__name__,
                records_client=type(records_client).__name__,
                stale_reports_removed=removed)
    yield

    await report_orchestrator.shutdown()
    await records_client.close()
    await whatsapp_adapter.shutdown()
    if settings.database.store_backend == "sql":
        await close_db()
    logger.info("elena_stopped")


# ──────────────────────────────────────────────────────────────
#  App
# ──────────────────────────────────────────────────────────────

app = FastAPI(
    title="ELENA API",
    description="QPAlliance legal assistant: WhatsApp case consultation flows",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.mount(
    "/public/reports",
    StaticFiles(directory=report_orchestrator.storage.output_dir, check_dir=False),
    name="reports",
)


# ──────────────────────────────────────────────────────────────
#  Request/Response Models
# ──────────────────────────────────────────────────────────────

class InboundMessageRequest(BaseModel):
    user_id: str
    body: str = ""
    action: Optional[Action] = None
    event_id: str = ""
    expected_step: Optional[StepId] = None
    sender_name: str = ""


def _result_summary(result: EngineResult) -> dict[str, Any]:
    return {
        "status": result.status,
        "user_id": result.user_id,
        "step": result.step.value if result.step else None,
        "path": [s.value for s in result.path],
        "messages": [m.model_dump(exclude_none=True) for m in result.outbound],
        "sent": result.sent,
    }


# ══════════════════════════════════════════════════════════════
#  HEALTH
# ══════════════════════════════════════════════════════════════

@app.get("/health")
async def health():
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "store": type(session_store).__name__,
        "records_client": type(records_client).__name__,
        "pending_report_disposals": len(report_orchestrator.pending_disposals),
        "whatsapp": await whatsapp_adapter.health_check(),
    }


# ══════════════════════════════════════════════════════════════
#  INBOUND MESSAGES
# ══════════════════════════════════════════════════════════════

@app.post("/api/v1/messages/inbound")
async def receive_inbound_message(req: InboundMessageRequest):
    event = InboundEvent(
        user_id=req.user_id,
        kind=EventKind.ACTION if req.action else EventKind.TEXT,
        body=req.body,
        action=req.action,
        event_id=req.event_id,
        expected_step=req.expected_step,
        sender_name=req.sender_name,
    )
    return _result_summary(await engine.handle(event))


# ══════════════════════════════════════════════════════════════
#  WEBHOOKS — WhatsApp
# ══════════════════════════════════════════════════════════════

@app.get("/webhooks/whatsapp")
async def whatsapp_verify(request: Request):
    challenge = whatsapp_adapter.verify_webhook(dict(request.query_params))
    if challenge:
        return PlainTextResponse(challenge)
    raise HTTPException(403, "Verification failed")


@app.post("/webhooks/whatsapp")
async def whatsapp_webhook(request: Request):
    body = await request.json()
    events = whatsapp_adapter.handle_inbound(body)
    results = [_result_summary(await engine.handle(event)) for event in events]
    return {"status": "ok", "processed": len(results), "results": results}


# ══════════════════════════════════════════════════════════════
#  SESSIONS (support staff)
# ══════════════════════════════════════════════════════════════

@app.get("/api/v1/sessions")
async def list_sessions(limit: int = 100):
    try:
        sessions = await session_store.list_sessions(limit=limit)
    except PersistenceError as e:
        raise HTTPException(503, str(e))
    return [s.model_dump(mode="json") for s in sessions]


@app.get("/api/v1/sessions/{user_id}")
async def get_session(user_id: str):
    try:
        session = await session_store.get(user_id)
    except PersistenceError as e:
        raise HTTPException(503, str(e))
    return session.model_dump(mode="json")


@app.delete("/api/v1/sessions/{user_id}")
async def reset_session(user_id: str):
    try:
        removed = await session_store.delete(user_id)
    except PersistenceError as e:
        raise HTTPException(503, str(e))
    logger.info("session_reset_by_admin", user_id=user_id, existed=removed)
    return {"status": "reset", "user_id": user_id, "existed": removed}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
