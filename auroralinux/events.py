"""Normalized telemetry events and the provider interface."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol, runtime_checkable

EBPF_PROVIDER_NAME = "LinuxEBPF"
EVENT_ID_PROCESS_CREATION = 1
EVENT_ID_NETWORK_CONNECTION = 3
EVENT_ID_FILE_EVENT = 11
EVENT_ID_BPF_EVENT = 100

AUDIT_PROVIDER_NAME = "LinuxAudit"
AUDIT_SOURCE = "LinuxAudit:Auditd"
EVENT_ID_AUDIT = 0


@dataclass(frozen=True)
class EventIdentifier:
    """Uniquely identifies an event type from a provider."""

    provider_name: str = ""
    event_id: int = 0


@dataclass
class Event:
    """A telemetry event flowing through the pipeline.

    ``fields`` is the live mapping of field names to string values; enrichers
    may modify it directly.
    """

    id: EventIdentifier = field(default_factory=EventIdentifier)
    pid: int = 0
    source: str = ""
    time: datetime | None = None
    fields: dict[str, str] = field(default_factory=dict)

    def value(self, name: str) -> str | None:
        """Return the value of a field, or None when the field is absent."""
        return self.fields.get(name)

    def add_field(self, key: str, value: str) -> None:
        """Set a field, replacing any earlier value."""
        self.fields[key] = value

    def items(self) -> Iterator[tuple[str, str]]:
        """Yield every (key, value) pair of the event."""
        yield from self.fields.items()


@runtime_checkable
class EventProvider(Protocol):
    """Interface every telemetry provider implements."""

    name: str
    description: str

    def initialize(self) -> None: ...

    def close(self) -> None: ...

    def add_source(self, source: str) -> None: ...

    def send_events(self, callback: Callable[[Event], None]) -> None: ...

    def lost_events(self) -> int: ...