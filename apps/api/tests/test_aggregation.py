"""Tests for the aggregation service and engine client."""

import asyncio
import base64
import json

import httpx
import pytest

from ledgerflow_api.coprocessor.engine import EngineClient, MockEngine
from ledgerflow_api.coprocessor.service import AggregationService
from ledgerflow_api.coprocessor.signing import canonical_body
from ledgerflow_api.dependencies import get_aggregation_service
from ledgerflow_api.errors import (
    ContentUnavailable,
    EngineUnreachable,
    UnsupportedCiphertextShape,
    ValidationError,
)
from ledgerflow_api.main import app
from ledgerflow_api.storage.content_store import InMemoryContentStore
from ledgerflow_sdk import verify_engine_request

ENGINE_URL = "http://engine.test/aggregate"
HMAC_KEY = "test-engine-key"


def _envelope(ciphertext: bytes, category: str = "food") -> bytes:
    return json.dumps(
        {"encryptedAmount": list(ciphertext), "metadata": {"category": category}}
    ).encode()


def _stored(store: InMemoryContentStore, *blobs: bytes) -> list[str]:
    return [asyncio.run(store.upload(blob)) for blob in blobs]


class RecordingEngine:
    """httpx handler that checks signatures and records every call."""

    def __init__(self, responses=None):
        self.requests: list[httpx.Request] = []
        self.responses = list(responses or [])

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.responses:
            return self.responses.pop(0)
        assert verify_engine_request(dict(request.headers), request.content, HMAC_KEY)
        body = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "resultCiphertext": "cmVzdWx0",
                "proof": "0xproof",
                "engineVersion": "engine-1.2",
                "meta": {"op": body["op"], "itemsCount": len(body["ciphertexts"])},
            },
        )


def _engine(handler, max_retries: int = 0) -> EngineClient:
    return EngineClient(
        url=ENGINE_URL,
        hmac_key=HMAC_KEY,
        max_retries=max_retries,
        retry_backoff_seconds=0,
        transport=httpx.MockTransport(handler),
    )


def test_empty_addresses_rejected():
    service = AggregationService(InMemoryContentStore(), engine=EngineClient(url=""))
    for op in ("sum", "max", "min", "avg", "invalid"):
        with pytest.raises(ValidationError):
            asyncio.run(service.aggregate([], op))


def test_invalid_operation_rejected():
    store = InMemoryContentStore()
    addresses = _stored(store, _envelope(b"\x01"))
    service = AggregationService(store, engine=EngineClient(url=""))
    with pytest.raises(ValidationError):
        asyncio.run(service.aggregate(addresses, "invalid"))


def test_remote_engine_result_returned_verbatim():
    store = InMemoryContentStore()
    addresses = _stored(store, _envelope(b"\x01\x02"), _envelope(b"\x03"))
    handler = RecordingEngine()
    service = AggregationService(store, engine=_engine(handler), allow_mock_engine=False)

    result = asyncio.run(service.aggregate(addresses, "sum"))

    assert result["result_ciphertext"] == "cmVzdWx0"
    assert result["proof"] == "0xproof"
    assert result["metadata"] == {
        "operation": "sum",
        "item_count": 2,
        "engine_version": "engine-1.2",
        "mode": "remote",
    }

    body = json.loads(handler.requests[0].content)
    assert body["ciphertexts"] == [
        base64.b64encode(b"\x01\x02").decode(),
        base64.b64encode(b"\x03").decode(),
    ]
    assert body["targetType"] == "euint64"
    assert body["outputFormat"] == "ciphertext"


def test_request_body_is_canonical():
    engine = EngineClient(url=ENGINE_URL, hmac_key=HMAC_KEY)
    body, headers = engine.build_request(["YQ=="], "max")
    assert body == canonical_body(
        {"ciphertexts": ["YQ=="], "op": "max", "targetType": "euint64", "outputFormat": "ciphertext"}
    )
    assert verify_engine_request(headers, body, HMAC_KEY)
    assert not verify_engine_request(headers, body, "wrong-key")


def test_fetch_failure_fails_whole_batch():
    """One missing blob rejects the batch; the engine is never called."""
    store = InMemoryContentStore()
    [present] = _stored(store, _envelope(b"\x01"))
    handler = RecordingEngine()
    service = AggregationService(store, engine=_engine(handler))

    with pytest.raises(ContentUnavailable) as exc_info:
        asyncio.run(service.aggregate([present, "bafkreimissing"], "sum"))

    assert exc_info.value.content_address == "bafkreimissing"
    assert handler.requests == []


def test_engine_unconfigured_without_mock_is_error():
    store = InMemoryContentStore()
    addresses = _stored(store, _envelope(b"\x01"))
    service = AggregationService(store, engine=EngineClient(url=""), allow_mock_engine=False)

    with pytest.raises(EngineUnreachable):
        asyncio.run(service.aggregate(addresses, "sum"))


def test_engine_failure_without_mock_is_error():
    store = InMemoryContentStore()
    addresses = _stored(store, _envelope(b"\x01"))
    handler = RecordingEngine(responses=[httpx.Response(502)])
    service = AggregationService(store, engine=_engine(handler), allow_mock_engine=False)

    with pytest.raises(EngineUnreachable):
        asyncio.run(service.aggregate(addresses, "sum"))
    assert len(handler.requests) == 1


def test_mock_engine_when_allowed():
    store = InMemoryContentStore()
    addresses = _stored(store, _envelope(b"\x01"), _envelope(b"\x02"))
    service = AggregationService(store, engine=EngineClient(url=""), allow_mock_engine=True)

    first = asyncio.run(service.aggregate(addresses, "max"))
    second = asyncio.run(service.aggregate(addresses, "max"))

    assert first == second
    assert first["metadata"]["engine_version"] == "v0.9-mock"
    assert first["metadata"]["mode"] == "mock"
    decoded = json.loads(base64.b64decode(first["result_ciphertext"]))
    assert decoded["type"] == "euint64"


def test_mock_engine_operations():
    engine = MockEngine(target_type="euint64")
    ciphertexts = ["YQ==", "Yg==", "Yw=="]
    amounts = [engine._pseudo_amount(c) for c in ciphertexts]

    def value(op):
        result = asyncio.run(engine.compute(ciphertexts, op))
        return json.loads(base64.b64decode(result.result_ciphertext))["value"]

    assert value("sum") == sum(amounts)
    assert value("max") == max(amounts)
    assert value("min") == min(amounts)
    assert value("avg") == sum(amounts) // 3


def test_engine_retries_with_same_body():
    store = InMemoryContentStore()
    addresses = _stored(store, _envelope(b"\x01"))
    handler = RecordingEngine(responses=[httpx.Response(503)])
    service = AggregationService(store, engine=_engine(handler, max_retries=2))

    result = asyncio.run(service.aggregate(addresses, "sum"))

    assert result["metadata"]["mode"] == "remote"
    assert len(handler.requests) == 2
    assert handler.requests[0].content == handler.requests[1].content


def test_engine_rejection_not_retried():
    store = InMemoryContentStore()
    addresses = _stored(store, _envelope(b"\x01"))
    handler = RecordingEngine(responses=[httpx.Response(401)])
    service = AggregationService(store, engine=_engine(handler, max_retries=3))

    with pytest.raises(EngineUnreachable):
        asyncio.run(service.aggregate(addresses, "sum"))
    assert len(handler.requests) == 1


@pytest.mark.parametrize(
    "payload",
    [
        [1, 2],
        {"resultCiphertext": "cmVzdWx0", "meta": "x"},
        {"resultCiphertext": "cmVzdWx0", "meta": {"itemsCount": "many"}},
    ],
)
def test_malformed_engine_response_is_unreachable(payload):
    store = InMemoryContentStore()
    addresses = _stored(store, _envelope(b"\x01"))
    handler = RecordingEngine(responses=[httpx.Response(200, json=payload)])
    service = AggregationService(store, engine=_engine(handler), allow_mock_engine=False)

    with pytest.raises(EngineUnreachable) as exc_info:
        asyncio.run(service.aggregate(addresses, "sum"))
    assert "malformed" in exc_info.value.message


def test_malformed_engine_response_falls_back_to_mock():
    store = InMemoryContentStore()
    addresses = _stored(store, _envelope(b"\x01"))
    handler = RecordingEngine(responses=[httpx.Response(200, json=[1, 2])])
    service = AggregationService(store, engine=_engine(handler), allow_mock_engine=True)

    result = asyncio.run(service.aggregate(addresses, "sum"))
    assert result["metadata"]["mode"] == "mock"


def test_malformed_engine_response_route_envelope(client, content_store):
    handler = RecordingEngine(responses=[httpx.Response(200, json=[1, 2])])
    service = AggregationService(content_store, engine=_engine(handler), allow_mock_engine=False)
    app.dependency_overrides[get_aggregation_service] = lambda: service
    [address] = _stored(content_store, _envelope(b"\x01"))

    response = client.post("/v1/aggregate", json={"content_addresses": [address]})
    assert response.status_code == 503
    assert response.headers["content-type"].startswith("application/json")
    assert response.json()["success"] is False
    assert response.json()["error_code"] == "ENGINE_UNREACHABLE"


def test_metadata_only_blob_rejected():
    store = InMemoryContentStore()
    addresses = _stored(store, json.dumps({"metadata": {"category": "food"}}).encode())
    service = AggregationService(store, engine=EngineClient(url=""), allow_mock_engine=True)

    with pytest.raises(UnsupportedCiphertextShape):
        asyncio.run(service.aggregate(addresses, "sum"))


def test_health_check_modes():
    unconfigured = AggregationService(InMemoryContentStore(), engine=EngineClient(url=""))
    assert asyncio.run(unconfigured.health_check()) == {
        "ok": False,
        "engine_version": None,
        "mode": "unconfigured",
    }

    mock = AggregationService(InMemoryContentStore(), engine=EngineClient(url=""), allow_mock_engine=True)
    assert asyncio.run(mock.health_check())["engine_version"] == "v0.9-mock"

    def healthy(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/health"
        return httpx.Response(200, json={"engineVersion": "engine-1.2"})

    remote = AggregationService(InMemoryContentStore(), engine=_engine(healthy))
    assert asyncio.run(remote.health_check()) == {
        "ok": True,
        "engine_version": "engine-1.2",
        "mode": "remote",
    }


def test_aggregate_route_errors(client, content_store):
    service = AggregationService(content_store, engine=EngineClient(url=""), allow_mock_engine=False)
    app.dependency_overrides[get_aggregation_service] = lambda: service

    empty = client.post("/v1/aggregate", json={"content_addresses": [], "operation": "sum"})
    assert empty.status_code == 400
    assert empty.json()["success"] is False

    invalid = client.post(
        "/v1/aggregate", json={"content_addresses": ["bafkreix"], "operation": "median"}
    )
    assert invalid.status_code == 400

    missing = client.post(
        "/v1/aggregate", json={"content_addresses": ["bafkreimissing"], "operation": "sum"}
    )
    assert missing.status_code == 502
    assert missing.json()["error_code"] == "CONTENT_UNAVAILABLE"

    [address] = _stored(content_store, _envelope(b"\x01"))
    unreachable = client.post("/v1/aggregate", json={"content_addresses": [address]})
    assert unreachable.status_code == 503
    assert unreachable.json()["error_code"] == "ENGINE_UNREACHABLE"


def test_aggregate_route_success(client, content_store):
    service = AggregationService(content_store, engine=EngineClient(url=""), allow_mock_engine=True)
    app.dependency_overrides[get_aggregation_service] = lambda: service
    addresses = _stored(content_store, _envelope(b"\x01"), _envelope(b"\x02"))

    response = client.post("/v1/aggregate", json={"content_addresses": addresses, "operation": "avg"})
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["metadata"]["item_count"] == 2
    assert data["metadata"]["operation"] == "avg"

    health = client.get("/v1/aggregate/health").json()
    assert health["mode"] == "mock"
