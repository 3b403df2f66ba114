"""Ingress handler: turn a raw request body into an Event and hand it to the router."""

import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, ValidationError

from relay.errors import MalformedInput, RelayError
from relay.events.models import Event, utc_timestamp
from relay.events.router import Delivery, EventRouter

logger = logging.getLogger(__name__)

_JSON_HEADERS = {"Content-Type": "application/json"}


class IngressBody(BaseModel):
    """Typed core of an inbound order body; any other fields pass through untouched."""

    model_config = ConfigDict(extra="allow")

    # Any JSON value is forwarded as sent; only presence matters for defaults.
    orderId: Any = None
    amount: Any = None


@dataclass(frozen=True)
class IngressResponse:
    """HTTP status plus JSON payload returned to the caller."""

    status: int
    payload: dict[str, Any]

    def body(self) -> str:
        return json.dumps(self.payload, ensure_ascii=False)


def parse_body(raw: str | bytes | None) -> dict[str, Any]:
    """Absent or blank body is {}. Anything else must be a JSON object that validates."""
    if raw is None:
        return {}
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedInput(f"body is not UTF-8: {e}") from e
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise MalformedInput(f"invalid JSON body: {e.msg}") from e
    if not isinstance(data, dict):
        raise MalformedInput(f"JSON body must be an object, got {type(data).__name__}")
    try:
        IngressBody.model_validate(data)
    except ValidationError as e:
        raise MalformedInput(f"invalid body: {e.errors()[0]['msg']}") from e
    return data


@dataclass
class IngressHandler:
    """Stateless per request: parse, apply defaults, stamp, route, build the response."""

    router: EventRouter
    source: str = "myapp"
    detail_type: str = "order"
    defaults: Mapping[str, Any] = field(
        default_factory=lambda: {"orderId": "12345", "amount": 100}
    )

    def build_event(self, body: Mapping[str, Any]) -> Event:
        """Merge supplied fields over defaults; input fields always win."""
        timestamp = utc_timestamp()
        detail = {**self.defaults, "timestamp": timestamp, **body}
        return Event(
            source=self.source,
            type=self.detail_type,
            detail=detail,
            timestamp=timestamp,
        )

    async def handle(self, raw_body: str | bytes | None) -> IngressResponse:
        try:
            event = self.build_event(parse_body(raw_body))
            deliveries = await self.router.route(event)
        except RelayError as e:
            return self._error(e)
        except Exception as e:
            logger.exception("Unexpected ingress failure: %s", e)
            return self._error(e)
        return IngressResponse(
            status=200,
            payload={
                "message": "Event sent successfully",
                "event": dict(event.detail),
                "result": _result(deliveries),
            },
        )

    async def handle_function_url(self, request: Mapping[str, Any]) -> dict[str, Any]:
        """Function-URL style request in, {statusCode, headers, body} out."""
        raw = request.get("body")
        if raw is not None and request.get("isBase64Encoded"):
            try:
                raw = base64.b64decode(raw, validate=True)
            except (binascii.Error, ValueError) as e:
                response = self._error(MalformedInput(f"invalid base64 body: {e}"))
                return _function_url_response(response)
        response = await self.handle(raw)
        return _function_url_response(response)

    def _error(self, error: Exception) -> IngressResponse:
        logger.error("Error sending event: %s", error)
        return IngressResponse(
            status=500,
            payload={
                "message": "Error sending event",
                "error": str(error) or "Unknown error",
            },
        )


def _result(deliveries: list[Delivery]) -> dict[str, Any]:
    return {"entries": [d.to_dict() for d in deliveries]}


def _function_url_response(response: IngressResponse) -> dict[str, Any]:
    return {
        "statusCode": response.status,
        "headers": dict(_JSON_HEADERS),
        "body": response.body(),
    }
