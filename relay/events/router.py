"""EventRouter: match events against the routing table and forward to destinations.

All matching rules fire, each target of a rule receives the event. Delivery is
synchronous from the caller's point of view; failures surface, nothing is
dropped silently.
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Mapping, Protocol, runtime_checkable

from relay.errors import DeliveryFailure, RoutingFailure
from relay.events.models import Event
from relay.events.rules import RoutingRule, RoutingTable

if TYPE_CHECKING:
    from relay.queue.store import QueueStore

logger = logging.getLogger(__name__)


@runtime_checkable
class Destination(Protocol):
    """Anything that can accept a routed event and return a delivery id."""

    name: str

    async def deliver(self, event: Event) -> str: ...


class QueueDestination:
    """Destination that enqueues the JSON-encoded event on a named queue."""

    def __init__(self, store: "QueueStore", queue_name: str) -> None:
        self.name = queue_name
        self._store = store

    async def deliver(self, event: Event) -> str:
        return await self._store.enqueue(event, queue=self.name)


@dataclass(frozen=True)
class Delivery:
    """One successful forward of an event."""

    rule: str
    destination: str
    message_id: str

    def to_dict(self) -> dict[str, str]:
        return {
            "rule": self.rule,
            "destination": self.destination,
            "messageId": self.message_id,
        }


class EventRouter:
    """Routes events using an immutable table passed in at construction."""

    def __init__(
        self, table: RoutingTable, destinations: Mapping[str, Destination]
    ) -> None:
        missing = table.destination_names() - set(destinations)
        if missing:
            raise RoutingFailure(
                f"routing rules reference unknown destinations: {sorted(missing)}"
            )
        self._table = table
        self._destinations = dict(destinations)

    @property
    def table(self) -> RoutingTable:
        return self._table

    def match(self, event: Event) -> list[RoutingRule]:
        return self._table.match(event)

    async def route(self, event: Event) -> list[Delivery]:
        """Forward event to every target of every matching rule.

        Returns [] when nothing matches. Raises RoutingFailure when every
        attempted delivery failed and DeliveryFailure when only some did.
        """
        rules = self.match(event)
        if not rules:
            logger.debug("No rule matched event %s/%s", event.source, event.type)
            return []

        delivered: list[Delivery] = []
        errors: list[str] = []
        for rule in rules:
            for target in rule.targets:
                destination = self._destinations[target]
                try:
                    message_id = await destination.deliver(event)
                except Exception as e:
                    errors.append(f"{target}: {e}")
                    logger.error(
                        "Rule %s failed to deliver %s/%s to %s: %s",
                        rule.name,
                        event.source,
                        event.type,
                        target,
                        e,
                    )
                    continue
                delivered.append(Delivery(rule.name, target, message_id))
                logger.info(
                    "Routed %s/%s via %s to %s as %s",
                    event.source,
                    event.type,
                    rule.name,
                    target,
                    message_id,
                )

        if errors:
            error_msg = "; ".join(errors)
            if not delivered:
                raise RoutingFailure(f"no destination reachable: {error_msg}")
            raise DeliveryFailure(f"partial delivery: {error_msg}", delivered)
        return delivered
