"""
Response normalization for the case-records service.

Field names vary between deployments (`active` vs `activeRecords`, parties as
objects or plain strings, `_id` vs `id`). Everything is mapped onto the
models in models/schemas.py here so nothing upstream sees raw payloads.
"""
from __future__ import annotations

from typing import Any

from pydantic import ValidationError as PydanticValidationError

from core.errors import InvalidResponseShapeError
from models.schemas import CaseDetail, CaseRecord, ClientProcesses, DetailedCases, as_utc


def _first(raw: dict[str, Any], *names: str, default: Any = None) -> Any:
    for name in names:
        value = raw.get(name)
        if value not in (None, ""):
            return value
    return default


def _party_names(parties: Any) -> list[str]:
    names = []
    for party in parties or []:
        if isinstance(party, dict):
            name = party.get("name") or party.get("fullName") or ""
        else:
            name = str(party)
        if name:
            names.append(name)
    return names


def _performance(raw: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": str(_first(raw, "_id", "id", default="")),
        "performance_type": _first(raw, "performanceType", "performance_type", "type", default=""),
        "responsible": _first(raw, "responsible", default=""),
        "observation": _first(raw, "observation", default=""),
        "document": raw.get("document"),
        "created_at": _first(raw, "createdAt", "created_at"),
        "updated_at": _first(raw, "updatedAt", "updated_at"),
    }


def case_record(raw: dict[str, Any], endpoint: str) -> CaseRecord:
    if not isinstance(raw, dict):
        raise InvalidResponseShapeError(endpoint, "record")
    parts = raw.get("proceduralParts") or raw.get("procedural_parts") or {}
    data = {
        "id": str(_first(raw, "_id", "id", default="")),
        "internal_code": _first(raw, "internalCode", "internal_code"),
        "state": _first(raw, "state", default=""),
        "updated_at": _first(raw, "updatedAt", "updated_at"),
        "jurisdiction": _first(raw, "jurisdiction"),
        "process_type": _first(raw, "processType", "process_type"),
        "settled": _first(raw, "settled"),
        "procedural_parts": {
            "plaintiffs": _party_names(parts.get("plaintiffs")),
            "defendants": _party_names(parts.get("defendants")),
        },
        "performances": [_performance(p) for p in raw.get("performances") or [] if isinstance(p, dict)],
    }
    if data["internal_code"] is None:
        raise InvalidResponseShapeError(endpoint, "internalCode")
    try:
        record = CaseRecord.model_validate(data)
    except PydanticValidationError as e:
        raise InvalidResponseShapeError(endpoint, "record", cause=e)
    # Deployments mix "Z"-suffixed and bare timestamps
    record.updated_at = as_utc(record.updated_at)
    for performance in record.performances:
        performance.created_at = as_utc(performance.created_at)
        performance.updated_at = as_utc(performance.updated_at)
    return record


def _record_list(payload: dict[str, Any], endpoint: str, *names: str) -> list[CaseRecord]:
    raw = _first(payload, *names, default=[])
    if not isinstance(raw, list):
        raise InvalidResponseShapeError(endpoint, names[0])
    return [case_record(r, endpoint) for r in raw]


def client_processes(document_number: str, payload: Any, endpoint: str) -> ClientProcesses:
    if not isinstance(payload, dict):
        raise InvalidResponseShapeError(endpoint, "body")
    active = _record_list(payload, endpoint, "active", "activeRecords")
    finalized = _record_list(payload, endpoint, "finalized", "finalizedRecords")
    return ClientProcesses(
        document_number=document_number,
        active=active,
        finalized=finalized,
        total_active=int(payload.get("totalActive") or len(active)),
        total_finalized=int(payload.get("totalFinalized") or len(finalized)),
    )


def case_detail(payload: Any, endpoint: str) -> CaseDetail:
    if not isinstance(payload, dict) or not payload.get("record"):
        raise InvalidResponseShapeError(endpoint, "record")
    return CaseDetail(
        record=case_record(payload["record"], endpoint),
        message=payload.get("message", ""),
    )


def detailed_cases(payload: Any, endpoint: str) -> DetailedCases:
    if not isinstance(payload, dict):
        raise InvalidResponseShapeError(endpoint, "body")
    return DetailedCases(
        active=_record_list(payload, endpoint, "activeRecords", "active"),
        finalized=_record_list(payload, endpoint, "finalizedRecords", "finalized"),
    )
