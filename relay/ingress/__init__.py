"""Ingress: HTTP request -> canonical Event -> router."""

from relay.ingress.handler import IngressBody, IngressHandler, IngressResponse, parse_body
from relay.ingress.server import IngressServer, create_app

__all__ = [
    "IngressBody",
    "IngressHandler",
    "IngressResponse",
    "IngressServer",
    "create_app",
    "parse_body",
]
