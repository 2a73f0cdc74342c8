"""Event schema extracted from a contract ABI.

Only events matter here: each `EventSpec` carries the parameter layout needed
to split a raw log into indexed topics and ABI-encoded data, plus the topic0
used to filter `eth_getLogs`.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

from eth_utils import event_abi_to_log_topic

from .errors import SchemaMismatchError
from .value_types import Topic0


@dataclass(slots=True, frozen=True)
class EventParam:
    name: str
    type: str
    indexed: bool
    abi: dict[str, Any]  # original input entry (keeps tuple components)

    def canonical_type(self) -> str:
        """Solidity type string eth_abi understands (tuples expanded)."""
        return _canonical(self.abi)


@dataclass(slots=True, frozen=True)
class EventSpec:
    name: str
    params: tuple[EventParam, ...]
    topic0: Topic0
    anonymous: bool = False

    @property
    def indexed(self) -> tuple[EventParam, ...]:
        return tuple(p for p in self.params if p.indexed)

    @property
    def non_indexed(self) -> tuple[EventParam, ...]:
        return tuple(p for p in self.params if not p.indexed)


def _canonical(entry: dict[str, Any]) -> str:
    t = entry.get("type", "")
    if t.startswith("tuple"):
        inner = ",".join(_canonical(c) for c in entry.get("components", []))
        return f"({inner}){t[len('tuple'):]}"
    return t


def _event_spec(item: dict[str, Any]) -> EventSpec:
    params = tuple(
        EventParam(
            name=inp.get("name", "") or "",
            type=inp.get("type", ""),
            indexed=bool(inp.get("indexed", False)),
            abi=inp,
        )
        for inp in item.get("inputs", [])
    )
    topic0 = Topic0("0x" + event_abi_to_log_topic(item).hex())
    return EventSpec(name=item["name"], params=params, topic0=topic0, anonymous=bool(item.get("anonymous", False)))


class EventSchema:
    """Lookup of event specs by name; built from a raw ABI list."""

    def __init__(self, events: Sequence[EventSpec]) -> None:
        self._by_name: dict[str, EventSpec] = {}
        for ev in events:
            # overloaded events: first declaration wins, like contract.filters[name]
            self._by_name.setdefault(ev.name, ev)

    @classmethod
    def from_abi(cls, abi: Any) -> EventSchema:
        if isinstance(abi, dict):
            abi = abi.get("abi", [])
        if not isinstance(abi, list):
            raise SchemaMismatchError("ABI must be a JSON list of entries")
        return cls([_event_spec(item) for item in abi if isinstance(item, dict) and item.get("type") == "event"])

    def has_event(self, name: str) -> bool:
        return name in self._by_name

    def event(self, name: str) -> EventSpec:
        try:
            return self._by_name[name]
        except KeyError:
            raise SchemaMismatchError(f"Event {name} not found in contract ABI") from None
