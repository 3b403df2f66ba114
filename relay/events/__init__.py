"""Events: canonical event model, routing rules and the router."""

from relay.events.models import Event
from relay.events.router import Delivery, Destination, EventRouter, QueueDestination
from relay.events.rules import RoutingRule, RoutingTable

__all__ = [
    "Delivery",
    "Destination",
    "Event",
    "EventRouter",
    "QueueDestination",
    "RoutingRule",
    "RoutingTable",
]
