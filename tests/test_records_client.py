"""
Tests for the case-records clients.

Covers:
  - REST client against httpx.MockTransport: headers, payloads, normalization
  - failure classification: 404, timeout, transport error, bad status, bad shape
  - transport retries through tenacity
  - mock client and factory selection
"""
import json

import httpx
import pytest

from backend import normalize
from backend.connector import (
    MockCaseRecordsClient, RESTCaseRecordsClient, create_records_client,
)
from config.settings import RecordsApiConfig
from core.errors import (
    ApiConnectionError, ErrorKind, Failure, InvalidResponseShapeError, NotFoundError,
)
from models.schemas import CaseDetail, ClientProcesses, DetailedCases


def wire_record(code="D002", state="RADICADO"):
    return {
        "_id": f"id-{code}",
        "internalCode": code,
        "state": state,
        "updatedAt": "2025-08-28T05:27:14.661Z",
        "jurisdiction": "LABORAL",
        "processType": "Ordinario",
        "proceduralParts": {
            "plaintiffs": [{"name": "Ana Gómez"}],
            "defendants": ["Rappi S.A.S."],
        },
        "performances": [{
            "_id": "p1",
            "performanceType": "RADICADO",
            "responsible": "Laura",
            "observation": "Demanda radicada",
            "updatedAt": "2025-08-28T05:27:14.661Z",
        }],
    }


def make_client(handler, max_attempts=1):
    config = RecordsApiConfig(base_url="https://records.test/api", api_key="secret",
                              max_attempts=max_attempts)
    return RESTCaseRecordsClient(config, transport=httpx.MockTransport(handler))


# ──────────────────────────────────────────────────────────────
#  Normalization
# ──────────────────────────────────────────────────────────────

class TestNormalize:

    def test_case_record_maps_wire_names(self):
        record = normalize.case_record(wire_record(), "test")
        assert record.id == "id-D002"
        assert record.internal_code == "D002"
        assert record.process_type == "Ordinario"
        assert record.procedural_parts.plaintiffs == ["Ana Gómez"]
        assert record.procedural_parts.defendants == ["Rappi S.A.S."]
        assert record.performances[0].performance_type == "RADICADO"
        assert record.updated_at is not None

    def test_naive_timestamps_become_utc(self):
        raw = wire_record()
        raw["updatedAt"] = "2025-08-16T10:00:00"
        raw["performances"] = [
            {"performanceType": "RADICADO", "updatedAt": "2025-08-15T14:48:08Z"},
            {"performanceType": "ADMITE", "createdAt": "2025-08-16T10:00:00"},
        ]
        record = normalize.case_record(raw, "test")
        assert record.updated_at.tzinfo is not None
        assert all(p.updated_at or p.created_at for p in record.performances)
        assert record.performances[1].created_at.utcoffset().total_seconds() == 0
        assert record.performances[1].created_at > record.performances[0].updated_at

    def test_missing_internal_code_is_invalid_shape(self):
        raw = wire_record()
        del raw["internalCode"]
        with pytest.raises(InvalidResponseShapeError):
            normalize.case_record(raw, "test")

    def test_client_processes_accepts_both_key_styles(self):
        a = normalize.client_processes("1", {"active": [wire_record()], "finalized": []}, "t")
        b = normalize.client_processes("1", {"activeRecords": [wire_record()]}, "t")
        assert a.total_active == b.total_active == 1
        assert a.total_finalized == 0

    def test_totals_from_payload_win(self):
        payload = {"active": [wire_record()], "totalActive": 4, "totalFinalized": 2}
        processes = normalize.client_processes("1", payload, "t")
        assert processes.counts.active == 4
        assert processes.counts.finalized == 2

    def test_non_list_is_invalid_shape(self):
        with pytest.raises(InvalidResponseShapeError):
            normalize.client_processes("1", {"active": "nope"}, "t")

    def test_case_detail_requires_record(self):
        with pytest.raises(InvalidResponseShapeError):
            normalize.case_detail({"message": "ok"}, "t")


# ──────────────────────────────────────────────────────────────
#  REST client
# ──────────────────────────────────────────────────────────────

class TestRESTClient:

    @pytest.mark.asyncio
    async def test_find_by_document(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["path"] = request.url.path
            seen["key"] = request.headers.get("x-api-key")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "active": [wire_record("D002"), wire_record("D003")],
                "finalized": [wire_record("D009", "ARCHIVADO")],
            })

        client = make_client(handler)
        result = await client.find_by_document("1234567")
        await client.close()

        assert isinstance(result, ClientProcesses)
        assert result.total_active == 2
        assert result.total_finalized == 1
        assert seen == {"path": "/api/records/by-client", "key": "secret",
                        "body": {"document": "1234567"}}

    @pytest.mark.asyncio
    async def test_empty_lists_are_not_found(self):
        client = make_client(lambda r: httpx.Response(200, json={"active": [], "finalized": []}))
        result = await client.find_by_document("1234567")
        assert isinstance(result, Failure)
        assert isinstance(result.error, NotFoundError)
        assert result.error.resource == "document"

    @pytest.mark.asyncio
    async def test_404_is_not_found(self):
        client = make_client(lambda r: httpx.Response(404))
        result = await client.find_detail_by_code("X999")
        assert result.kind == ErrorKind.NOT_FOUND
        assert result.error.resource == "process"
        assert result.error.identifier == "X999"

    @pytest.mark.asyncio
    async def test_timeout_is_connection_error(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        result = await make_client(handler).find_by_document("1234567")
        assert isinstance(result.error, ApiConnectionError)
        assert result.kind == ErrorKind.CONNECTION

    @pytest.mark.asyncio
    async def test_server_error_is_connection_error(self):
        result = await make_client(lambda r: httpx.Response(503)).find_by_document("1234567")
        assert isinstance(result.error, ApiConnectionError)
        assert result.error.status_code == 503

    @pytest.mark.asyncio
    async def test_non_json_body_is_invalid_shape(self):
        client = make_client(lambda r: httpx.Response(200, text="<html>"))
        result = await client.find_by_document("1234567")
        assert result.kind == ErrorKind.INVALID_RESPONSE

    @pytest.mark.asyncio
    async def test_detail_without_record_is_invalid_shape(self):
        client = make_client(lambda r: httpx.Response(200, json={"message": "ok"}))
        result = await client.find_detail_by_code("D002")
        assert isinstance(result.error, InvalidResponseShapeError)

    @pytest.mark.asyncio
    async def test_detail_sends_etiqueta(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"message": "ok", "record": wire_record("D002")})

        result = await make_client(handler).find_detail_by_code("D002")
        assert isinstance(result, CaseDetail)
        assert result.record.internal_code == "D002"
        assert bodies == [{"etiqueta": "D002"}]

    @pytest.mark.asyncio
    async def test_detailed_by_document(self):
        def handler(request):
            assert request.url.path.endswith("/records/detailed-by-client")
            return httpx.Response(200, json={
                "activeRecords": [wire_record("D002")],
                "finalizedRecords": [wire_record("D009")],
            })

        result = await make_client(handler).find_all_with_detail_by_document("1234567")
        assert isinstance(result, DetailedCases)
        assert [r.internal_code for r in result.records] == ["D002", "D009"]

    @pytest.mark.asyncio
    async def test_transport_errors_are_retried(self):
        attempts = []

        def handler(request):
            attempts.append(1)
            if len(attempts) == 1:
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(200, json={"active": [wire_record()]})

        result = await make_client(handler, max_attempts=2).find_by_document("1234567")
        assert isinstance(result, ClientProcesses)
        assert len(attempts) == 2


# ──────────────────────────────────────────────────────────────
#  Mock client & factory
# ──────────────────────────────────────────────────────────────

class TestMockClient:

    @pytest.mark.asyncio
    async def test_sample_document(self, records):
        result = await records.find_by_document("1234567")
        assert result.total_active == 9
        assert result.total_finalized == 1
        assert records.calls == [("find_by_document", "1234567")]

    @pytest.mark.asyncio
    async def test_unknown_document(self, records):
        result = await records.find_by_document("0000000")
        assert result.kind == ErrorKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_detail_lookup(self, records):
        result = await records.find_detail_by_code("D009")
        assert result.record.state == "ARCHIVADO"
        assert len(result.record.performances) == 2

    @pytest.mark.asyncio
    async def test_all_with_detail(self, records):
        result = await records.find_all_with_detail_by_document("1234567")
        assert len(result.records) == 10


class TestFactory:

    def test_mock_without_api_key(self):
        assert isinstance(create_records_client(RecordsApiConfig(api_key="")), MockCaseRecordsClient)

    def test_rest_with_api_key(self):
        client = create_records_client(RecordsApiConfig(api_key="k", base_url="https://x.test"))
        assert isinstance(client, RESTCaseRecordsClient)
