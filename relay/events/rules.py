"""Routing rules: static source/type patterns loaded once at startup."""

import re
from dataclasses import dataclass
from typing import Any, Iterable, Iterator

from relay.events.models import Event
from relay.settings import get_setting

__all__ = ["RoutingRule", "RoutingTable"]

# A target written as ${queue.name} names whatever that setting holds.
_PLACEHOLDER = re.compile(r"^\$\{([\w.]+)\}$")


@dataclass(frozen=True)
class RoutingRule:
    """Match on source AND type; fire every target in order."""

    name: str
    source_filter: frozenset[str]
    type_filter: frozenset[str]
    targets: tuple[str, ...]

    def matches(self, event: Event) -> bool:
        return event.source in self.source_filter and event.type in self.type_filter

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RoutingRule":
        """Build from a settings entry: {name, sources, types, targets}."""
        name = data.get("name") or "rule"
        sources = _as_str_set(data.get("sources"), name, "sources")
        types = _as_str_set(data.get("types"), name, "types")
        targets = tuple(str(t) for t in (data.get("targets") or []))
        if not targets:
            raise ValueError(f"routing rule {name!r} has no targets")
        return cls(
            name=name,
            source_filter=sources,
            type_filter=types,
            targets=targets,
        )


def _as_str_set(value: Any, rule: str, key: str) -> frozenset[str]:
    if isinstance(value, str):
        value = [value]
    if not value:
        raise ValueError(f"routing rule {rule!r} has empty {key}")
    return frozenset(str(v) for v in value)


@dataclass(frozen=True)
class RoutingTable:
    """Ordered, immutable set of routing rules."""

    rules: tuple[RoutingRule, ...] = ()

    def __iter__(self) -> Iterator[RoutingRule]:
        return iter(self.rules)

    def __len__(self) -> int:
        return len(self.rules)

    def match(self, event: Event) -> list[RoutingRule]:
        return [rule for rule in self.rules if rule.matches(event)]

    def destination_names(self) -> set[str]:
        return {target for rule in self.rules for target in rule.targets}

    @classmethod
    def of(cls, rules: Iterable[RoutingRule]) -> "RoutingTable":
        return cls(rules=tuple(rules))

    @classmethod
    def from_settings(cls, settings: dict[str, Any]) -> "RoutingTable":
        """Read routing.rules from settings, resolving ${dotted.path} targets."""
        entries = (settings.get("routing") or {}).get("rules") or []
        rules = []
        for entry in entries:
            rule = RoutingRule.from_dict(entry)
            targets = tuple(_resolve_target(t, settings) for t in rule.targets)
            rules.append(
                RoutingRule(rule.name, rule.source_filter, rule.type_filter, targets)
            )
        return cls.of(rules)


def _resolve_target(target: str, settings: dict[str, Any]) -> str:
    match = _PLACEHOLDER.match(target)
    if not match:
        return target
    value = get_setting(settings, match.group(1))
    if not isinstance(value, str) or not value:
        raise ValueError(f"target {target!r} does not resolve to a queue name")
    return value
