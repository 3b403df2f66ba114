"""Tests for the ingress handler, function-URL adapter and aiohttp app."""

import base64
import json
from datetime import datetime

import pytest
from aiohttp import test_utils

from relay.errors import MalformedInput
from relay.events import Event, EventRouter, RoutingRule, RoutingTable
from relay.ingress import IngressHandler, create_app, parse_body


class RecordingDestination:
    def __init__(self, name: str = "orders", fail: bool = False) -> None:
        self.name = name
        self.fail = fail
        self.events: list[Event] = []

    async def deliver(self, event: Event) -> str:
        if self.fail:
            raise ConnectionError("queue store unavailable")
        self.events.append(event)
        return f"msg-{len(self.events)}"


def _handler(destination: RecordingDestination, **kwargs) -> IngressHandler:
    rule = RoutingRule(
        name="orders",
        source_filter=frozenset({"myapp"}),
        type_filter=frozenset({"order"}),
        targets=(destination.name,),
    )
    router = EventRouter(RoutingTable.of([rule]), {destination.name: destination})
    return IngressHandler(router=router, **kwargs)


def _is_iso8601(value: str) -> bool:
    datetime.fromisoformat(value.replace("Z", "+00:00"))
    return True


class TestParseBody:

    @pytest.mark.parametrize("raw", [None, "", "   ", b""])
    def test_absent_body_is_empty_object(self, raw) -> None:
        assert parse_body(raw) == {}

    def test_valid_object(self) -> None:
        assert parse_body(b'{"orderId": "A1", "amount": 50, "note": "x"}') == {
            "orderId": "A1",
            "amount": 50,
            "note": "x",
        }

    @pytest.mark.parametrize(
        "raw",
        [
            "{not json",
            "[1, 2]",
            '"string"',
            b"\xff\xfe",
        ],
    )
    def test_malformed(self, raw) -> None:
        with pytest.raises(MalformedInput):
            parse_body(raw)

    @pytest.mark.parametrize(
        "body",
        [
            {"amount": "50"},
            {"orderId": 1.5},
            {"amount": True},
            {"orderId": ["A1"], "amount": None},
        ],
    )
    def test_any_json_value_passes_through(self, body: dict) -> None:
        assert parse_body(json.dumps(body)) == body


class TestBuildEvent:

    def test_defaults_applied_for_missing_fields(self) -> None:
        handler = _handler(RecordingDestination())
        event = handler.build_event({})
        assert event.source == "myapp"
        assert event.type == "order"
        assert event.detail["orderId"] == "12345"
        assert event.detail["amount"] == 100
        assert event.detail["timestamp"] == event.timestamp
        assert _is_iso8601(event.timestamp)

    def test_detail_is_superset_of_input(self) -> None:
        handler = _handler(RecordingDestination())
        body = {"orderId": "A1", "amount": 50, "customer": {"id": 7}, "timestamp": "client"}
        event = handler.build_event(body)
        for key, value in body.items():
            assert event.detail[key] == value
        assert event.timestamp != "client"

    def test_defaults_are_configurable(self) -> None:
        handler = _handler(
            RecordingDestination(),
            source="shop",
            detail_type="order",
            defaults={"currency": "EUR"},
        )
        event = handler.build_event({"orderId": "B2"})
        assert event.source == "shop"
        assert dict(event.detail) == {
            "currency": "EUR",
            "orderId": "B2",
            "timestamp": event.timestamp,
        }

    def test_event_detail_is_read_only(self) -> None:
        event = _handler(RecordingDestination()).build_event({"orderId": "A1"})
        with pytest.raises(TypeError):
            event.detail["orderId"] = "changed"  # type: ignore[index]


class TestHandle:

    @pytest.mark.asyncio
    async def test_success_echoes_event(self) -> None:
        destination = RecordingDestination()
        response = await _handler(destination).handle('{"orderId": "A1", "amount": 50}')

        assert response.status == 200
        assert response.payload["message"] == "Event sent successfully"
        assert response.payload["event"]["orderId"] == "A1"
        assert response.payload["event"]["amount"] == 50
        assert response.payload["result"]["entries"] == [
            {"rule": "orders", "destination": "orders", "messageId": "msg-1"}
        ]
        assert len(destination.events) == 1

    @pytest.mark.asyncio
    async def test_loosely_typed_fields_are_forwarded(self) -> None:
        destination = RecordingDestination()
        response = await _handler(destination).handle('{"orderId": 1.5, "amount": "50"}')

        assert response.status == 200
        assert response.payload["event"]["orderId"] == 1.5
        assert response.payload["event"]["amount"] == "50"
        [event] = destination.events
        assert event.detail["amount"] == "50"

    @pytest.mark.asyncio
    async def test_malformed_body_returns_500(self) -> None:
        destination = RecordingDestination()
        response = await _handler(destination).handle("{oops")
        assert response.status == 500
        assert response.payload["message"] == "Error sending event"
        assert "invalid JSON" in response.payload["error"]
        assert destination.events == []

    @pytest.mark.asyncio
    async def test_delivery_failure_returns_500(self) -> None:
        response = await _handler(RecordingDestination(fail=True)).handle("{}")
        assert response.status == 500
        assert "queue store unavailable" in response.payload["error"]


class TestFunctionUrl:

    @pytest.mark.asyncio
    async def test_plain_body(self) -> None:
        result = await _handler(RecordingDestination()).handle_function_url(
            {"body": json.dumps({"orderId": "A1"})}
        )
        assert result["statusCode"] == 200
        assert result["headers"]["Content-Type"] == "application/json"
        assert json.loads(result["body"])["event"]["orderId"] == "A1"

    @pytest.mark.asyncio
    async def test_base64_body(self) -> None:
        encoded = base64.b64encode(b'{"amount": 7}').decode()
        result = await _handler(RecordingDestination()).handle_function_url(
            {"body": encoded, "isBase64Encoded": True}
        )
        assert result["statusCode"] == 200
        assert json.loads(result["body"])["event"]["amount"] == 7

    @pytest.mark.asyncio
    async def test_no_body_uses_defaults(self) -> None:
        result = await _handler(RecordingDestination()).handle_function_url({})
        assert json.loads(result["body"])["event"]["orderId"] == "12345"

    @pytest.mark.asyncio
    async def test_bad_base64(self) -> None:
        result = await _handler(RecordingDestination()).handle_function_url(
            {"body": "***", "isBase64Encoded": True}
        )
        assert result["statusCode"] == 500


class TestHttpApp:

    @pytest.mark.asyncio
    async def test_post_event(self) -> None:
        destination = RecordingDestination()
        app = create_app(_handler(destination))
        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            resp = await client.post("/events", json={"orderId": "A1", "amount": 50})
            assert resp.status == 200
            data = await resp.json()

        assert data["event"]["orderId"] == "A1"
        assert destination.events[0].detail["amount"] == 50

    @pytest.mark.asyncio
    async def test_post_root_without_body(self) -> None:
        app = create_app(_handler(RecordingDestination()))
        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            resp = await client.post("/")
            assert resp.status == 200
            data = await resp.json()
        assert data["event"]["amount"] == 100

    @pytest.mark.asyncio
    async def test_post_malformed(self) -> None:
        app = create_app(_handler(RecordingDestination()))
        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            resp = await client.post("/", data="not json")
            assert resp.status == 500
            data = await resp.json()
        assert data["message"] == "Error sending event"
        assert "error" in data

    @pytest.mark.asyncio
    async def test_liveness(self) -> None:
        app = create_app(_handler(RecordingDestination()))
        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            resp = await client.get("/health/live")
            assert resp.status == 200
            assert await resp.json() == {"status": "alive"}
