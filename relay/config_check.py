"""Settings validation run before the relay starts.

Reports every problem at once so a bad settings.yaml can be fixed in one pass.
"""

from typing import Any

from relay.events.rules import RoutingTable
from relay.settings import get_setting


def _check_queue(settings: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    if not get_setting(settings, "queue.name"):
        errors.append("queue.name not set")
    visibility = get_setting(settings, "queue.visibility_timeout", 0)
    if not isinstance(visibility, (int, float)) or visibility <= 0:
        errors.append("queue.visibility_timeout must be a positive number")
    max_receive = get_setting(settings, "queue.max_receive_count")
    if max_receive is not None and (not isinstance(max_receive, int) or max_receive < 1):
        errors.append("queue.max_receive_count must be a positive integer or null")
    return errors


def _check_consumer(settings: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    workers = get_setting(settings, "consumer.workers", 1)
    if not isinstance(workers, int) or workers < 0:
        errors.append("consumer.workers must be a non-negative integer")
    batch = get_setting(settings, "consumer.batch_size", 10)
    if not isinstance(batch, int) or batch < 1:
        errors.append("consumer.batch_size must be >= 1")
    handler_timeout = get_setting(settings, "consumer.handler_timeout", 60)
    visibility = get_setting(settings, "queue.visibility_timeout", 300)
    if (
        isinstance(handler_timeout, (int, float))
        and isinstance(visibility, (int, float))
        and handler_timeout >= visibility
    ):
        errors.append(
            f"consumer.handler_timeout ({handler_timeout}) must be shorter than "
            f"queue.visibility_timeout ({visibility})"
        )
    return errors


def _check_routing(settings: dict[str, Any]) -> list[str]:
    try:
        table = RoutingTable.from_settings(settings)
    except (ValueError, TypeError, AttributeError) as e:
        return [f"routing.rules invalid: {e}"]
    if not len(table):
        return ["routing.rules is empty; no event would be forwarded"]
    queue_name = get_setting(settings, "queue.name")
    workers = get_setting(settings, "consumer.workers", 1)
    if workers and queue_name and queue_name not in table.destination_names():
        return [
            f"no routing rule targets queue.name ({queue_name}); "
            "workers would never see routed events"
        ]
    return []


def check_settings(settings: dict[str, Any]) -> list[str]:
    """Return a list of problems; empty means the relay can start."""
    return _check_queue(settings) + _check_consumer(settings) + _check_routing(settings)


def is_configured(settings: dict[str, Any]) -> tuple[bool, str]:
    """Returns (ok, reason)."""
    errors = check_settings(settings)
    if errors:
        return False, "; ".join(errors)
    return True, "ok"
