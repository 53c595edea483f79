"""
Case Records Client — read-only access to the firm's case-records service.

Three logical operations:
  find_by_document(document)                 → ClientProcesses | Failure
  find_detail_by_code(code)                  → CaseDetail | Failure
  find_all_with_detail_by_document(document) → DetailedCases | Failure

Failures are classified here (NotFound / ApiConnection / InvalidResponseShape)
and returned as `Failure` values; raw httpx errors never leave this module.
"""
from __future__ import annotations

import abc
import structlog
from typing import Any, Optional, Union

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from backend import normalize
from config.settings import RecordsApiConfig, get_settings
from core.errors import (
    ApiConnectionError, Failure, FlowError, InvalidResponseShapeError, NotFoundError,
)
from models.schemas import CaseDetail, ClientProcesses, DetailedCases

logger = structlog.get_logger()


class CaseRecordsClient(abc.ABC):
    """Abstract base for all records clients."""

    @abc.abstractmethod
    async def find_by_document(self, document_number: str) -> Union[ClientProcesses, Failure]:
        """Active and finalized cases for a client document."""
        ...

    @abc.abstractmethod
    async def find_detail_by_code(self, internal_code: str) -> Union[CaseDetail, Failure]:
        """Full detail (parties, performances) of one case."""
        ...

    @abc.abstractmethod
    async def find_all_with_detail_by_document(self, document_number: str) -> Union[DetailedCases, Failure]:
        """Every case of a client with full detail, used for reports."""
        ...

    async def close(self):
        pass


class RESTCaseRecordsClient(CaseRecordsClient):
    """
    REST client for the records service.
    Every call is a JSON POST authenticated with an API key header.
    """

    def __init__(self, config: RecordsApiConfig = None, transport: httpx.AsyncBaseTransport = None):
        self.config = config or get_settings().records_api
        self.transport = transport
        self.client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self.client is None or self.client.is_closed:
            self.client = httpx.AsyncClient(
                base_url=self.config.base_url,
                headers={
                    self.config.api_key_header: self.config.api_key,
                    "Content-Type": "application/json",
                },
                timeout=self.config.timeout_seconds,
                transport=self.transport,
            )
        return self.client

    async def _post(self, endpoint: str, payload: dict[str, Any]) -> Optional[Any]:
        """POST to a named endpoint. Returns None on 404."""
        client = await self._get_client()
        path = self.config.endpoints.get(endpoint, endpoint)
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(httpx.TransportError),
                stop=stop_after_attempt(max(1, self.config.max_attempts)),
                wait=wait_exponential(multiplier=0.5, max=5),
                reraise=True,
            ):
                with attempt:
                    response = await client.post(path, json=payload)
        except httpx.TimeoutException as e:
            logger.error("records_api_timeout", endpoint=path, timeout=self.config.timeout_seconds)
            raise ApiConnectionError(path, cause=e)
        except httpx.TransportError as e:
            logger.error("records_api_unreachable", endpoint=path, error=str(e))
            raise ApiConnectionError(path, cause=e)

        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            logger.error("records_api_error_status", endpoint=path, status=response.status_code)
            raise ApiConnectionError(path, status_code=response.status_code)
        try:
            return response.json()
        except ValueError as e:
            raise InvalidResponseShapeError(path, "body", cause=e)

    async def find_by_document(self, document_number: str) -> Union[ClientProcesses, Failure]:
        endpoint = self.config.endpoints["by_client"]
        try:
            payload = await self._post("by_client", {"document": document_number})
            if payload is None:
                return Failure(NotFoundError("document", document_number))
            processes = normalize.client_processes(document_number, payload, endpoint)
        except FlowError as e:
            logger.error("records_lookup_failed", document=document_number, error=str(e))
            return Failure(e)

        if processes.total == 0:
            logger.info("records_not_found", document=document_number)
            return Failure(NotFoundError("document", document_number))
        return processes

    async def find_detail_by_code(self, internal_code: str) -> Union[CaseDetail, Failure]:
        endpoint = self.config.endpoints["by_internal_code"]
        try:
            payload = await self._post("by_internal_code", {"etiqueta": internal_code})
            if payload is None:
                return Failure(NotFoundError("process", internal_code))
            return normalize.case_detail(payload, endpoint)
        except FlowError as e:
            logger.error("records_detail_failed", internal_code=internal_code, error=str(e))
            return Failure(e)

    async def find_all_with_detail_by_document(self, document_number: str) -> Union[DetailedCases, Failure]:
        endpoint = self.config.endpoints["detailed_by_client"]
        try:
            payload = await self._post("detailed_by_client", {"document": document_number})
            if payload is None:
                return Failure(NotFoundError("document", document_number))
            cases = normalize.detailed_cases(payload, endpoint)
        except FlowError as e:
            logger.error("records_detailed_lookup_failed", document=document_number, error=str(e))
            return Failure(e)

        if not cases.records:
            return Failure(NotFoundError("document", document_number))
        return cases

    async def close(self):
        if self.client:
            await self.client.aclose()


# ──────────────────────────────────────────────────────────────
#  Mock
# ──────────────────────────────────────────────────────────────

def _sample_record(code: str, state: str, updated_at: str, process_type: str = "Proceso Verbal") -> dict[str, Any]:
    return {
        "_id": f"rec-{code.lower()}",
        "internalCode": code,
        "state": state,
        "updatedAt": updated_at,
        "jurisdiction": "CIVIL CIRCUITO",
        "processType": process_type,
        "settled": "NO",
        "proceduralParts": {
            "plaintiffs": [{"name": "Juan Pérez"}],
            "defendants": [{"name": "Empresa S.A."}],
        },
        "performances": [
            {
                "_id": f"perf-{code.lower()}-1",
                "performanceType": "RADICADO",
                "responsible": "Juan Pérez",
                "observation": "Radicación de demanda",
                "createdAt": "2025-08-15T14:48:08.689Z",
                "updatedAt": "2025-08-15T14:48:08.689Z",
                "document": None,
            },
            {
                "_id": f"perf-{code.lower()}-2",
                "performanceType": state,
                "responsible": "Juan Pérez",
                "observation": f"Actuación {state.lower()} registrada",
                "createdAt": updated_at,
                "updatedAt": updated_at,
                "document": None,
            },
        ],
    }


SAMPLE_RECORDS: dict[str, dict[str, list[dict[str, Any]]]] = {
    "1234567": {
        "active": [
            _sample_record("U003", "ADMITE", "2025-08-27T18:16:23.272Z"),
            _sample_record("D002", "RADICADO", "2025-08-28T05:27:14.661Z"),
            _sample_record("R014", "RADICADO", "2025-08-28T17:01:05.109Z"),
            _sample_record("D003", "RADICADO", "2025-09-01T10:54:56.739Z"),
            _sample_record("D004", "RADICADO", "2025-09-01T10:55:02.494Z"),
            _sample_record("D005", "RADICADO", "2025-09-02T05:52:46.690Z"),
            _sample_record("D006", "RADICADO", "2025-09-02T05:53:06.144Z"),
            _sample_record("D007", "NOTIFICACION_PERSONAL", "2025-09-10T03:12:27.230Z"),
            _sample_record("D010", "ADMITE", "2025-09-08T01:15:54.003Z"),
        ],
        "finalized": [
            _sample_record("D009", "ARCHIVADO", "2025-09-05T17:10:59.243Z", "Proceso Ejecutivo"),
        ],
    },
}


class MockCaseRecordsClient(CaseRecordsClient):
    """
    In-process records client for development and testing.
    Data is keyed by document number in the service's own wire format, so it
    goes through the same normalization as real responses.
    """

    def __init__(self, records: dict[str, dict[str, list[dict[str, Any]]]] = None):
        self._records = SAMPLE_RECORDS if records is None else records
        self.calls: list[tuple[str, str]] = []

    async def find_by_document(self, document_number: str) -> Union[ClientProcesses, Failure]:
        self.calls.append(("find_by_document", document_number))
        data = self._records.get(document_number)
        if not data:
            return Failure(NotFoundError("document", document_number))
        processes = normalize.client_processes(document_number, data, "mock")
        if processes.total == 0:
            return Failure(NotFoundError("document", document_number))
        return processes

    async def find_detail_by_code(self, internal_code: str) -> Union[CaseDetail, Failure]:
        self.calls.append(("find_detail_by_code", internal_code))
        for data in self._records.values():
            for raw in [*data.get("active", []), *data.get("finalized", [])]:
                if raw.get("internalCode") == internal_code:
                    return normalize.case_detail({"record": raw}, "mock")
        return Failure(NotFoundError("process", internal_code))

    async def find_all_with_detail_by_document(self, document_number: str) -> Union[DetailedCases, Failure]:
        self.calls.append(("find_all_with_detail_by_document", document_number))
        data = self._records.get(document_number)
        if not data:
            return Failure(NotFoundError("document", document_number))
        cases = normalize.detailed_cases(data, "mock")
        if not cases.records:
            return Failure(NotFoundError("document", document_number))
        return cases


def create_records_client(config: RecordsApiConfig = None) -> CaseRecordsClient:
    """Factory function to create the appropriate records client."""
    config = config or get_settings().records_api
    if config.api_key and config.base_url:
        return RESTCaseRecordsClient(config)
    logger.warning("using_mock_records_client", reason="no api key configured")
    return MockCaseRecordsClient()
