"""Event provider that replays recorded events from JSON Lines files."""

from __future__ import annotations

import json
import logging
import math
import os
import re
import threading
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from auroralinux.events import EBPF_PROVIDER_NAME, Event, EventIdentifier

logger = logging.getLogger(__name__)

MAX_REPLAY_LINE_BYTES = 4 * 1024 * 1024

_DIGITS = re.compile(r"[0-9]+")
_RFC3339 = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})(?:\.(\d{1,9}))?(Z|[+-]\d{2}:\d{2})"
)
_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)

_DEFAULT_SOURCES = {
    1: "LinuxEBPF:ProcessExec",
    3: "LinuxEBPF:NetConnect",
    11: "LinuxEBPF:FileCreate",
    100: "LinuxEBPF:BpfEvent",
}


def _reject_constant(name: str) -> Any:
    raise ValueError(f"invalid JSON constant {name}")


def _format_float(x: float) -> str:
    if math.isnan(x):
        return "NaN"
    if math.isinf(x):
        return "+Inf" if x > 0 else "-Inf"
    if x.is_integer() and abs(x) < 1e21:
        return str(int(x))
    return repr(x)


def _sprint(value: Any) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return _format_float(value)
    if isinstance(value, dict):
        inner = " ".join(f"{key}:{_sprint(value[key])}" for key in sorted(value))
        return f"map[{inner}]"
    if isinstance(value, (list, tuple)):
        return "[" + " ".join(_sprint(item) for item in value) + "]"
    return str(value)


def _parse_rfc3339(text: str) -> datetime | None:
    match = _RFC3339.fullmatch(text)
    if match is None:
        return None
    year, month, day, hour, minute, second, frac, zone = match.groups()
    if zone == "Z":
        tz = timezone.utc
    else:
        sign = 1 if zone[0] == "+" else -1
        tz = timezone(sign * timedelta(hours=int(zone[1:3]), minutes=int(zone[4:6])))
    micros = int((frac or "").ljust(6, "0")[:6])
    try:
        return datetime(
            int(year), int(month), int(day), int(hour), int(minute), int(second), micros, tzinfo=tz
        )
    except ValueError:
        return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def parse_event_id(value: Any) -> int:
    """Read an event id from a JSON number or decimal string; 0 when invalid."""
    if _is_number(value):
        if 0 <= value <= 0xFFFF and float(value).is_integer():
            return int(value)
    elif isinstance(value, str) and _DIGITS.fullmatch(value):
        number = int(value)
        if number <= 0xFFFF:
            return number
    return 0


def parse_uint32(value: Any) -> int | None:
    """Read an unsigned 32-bit number from a JSON number or decimal string."""
    if isinstance(value, str):
        if _DIGITS.fullmatch(value):
            number = int(value)
            if number <= 0xFFFFFFFF:
                return number
        return None
    if _is_number(value):
        if 0 <= value <= 0xFFFFFFFF and float(value).is_integer():
            return int(value)
    return None


def default_source_for_event(provider_name: str, event_id: int) -> str:
    """Source name implied by a provider's event id, or "" when there is none."""
    if provider_name != EBPF_PROVIDER_NAME:
        return ""
    return _DEFAULT_SOURCES.get(event_id, "")


def record_to_event(record: dict[str, Any]) -> Event:
    """Build an event from one decoded JSON record.

    Keys starting with an underscore (``_provider``, ``_eventID``,
    ``_source``, ``_timestamp``) describe the event; all other keys become
    string fields.
    """
    fields: dict[str, str] = {}
    provider_name = ""
    event_id = 0
    source = ""
    pid = 0
    timestamp: datetime | None = None

    for key, value in record.items():
        if key == "_provider":
            provider_name = value if isinstance(value, str) else ""
        elif key == "_eventID":
            event_id = parse_event_id(value)
        elif key == "_source":
            source = value if isinstance(value, str) else ""
        elif key == "_timestamp":
            timestamp = _parse_rfc3339(value) if isinstance(value, str) else None
        else:
            if key == "ProcessId":
                parsed = parse_uint32(value)
                if parsed is not None:
                    pid = parsed
            fields[key] = _sprint(value)

    provider_name = provider_name or EBPF_PROVIDER_NAME
    source = source or default_source_for_event(provider_name, event_id)
    if timestamp is None or timestamp == _ZERO_TIME:
        timestamp = datetime.now(timezone.utc)

    return Event(
        id=EventIdentifier(provider_name=provider_name, event_id=event_id),
        pid=pid,
        source=source,
        time=timestamp,
        fields=fields,
    )


class ReplayProvider:
    """Replays events recorded as JSON Lines, for use where live capture is unavailable."""

    name = "Replay"
    description = "Replay provider for pre-recorded events"

    def __init__(self, *files: str | os.PathLike[str]) -> None:
        self.files = list(files)
        self._sources: set[str] = set()
        self._sources_lock = threading.Lock()
        self._closed = threading.Event()

    def initialize(self) -> None:
        self._closed.clear()

    def close(self) -> None:
        self._closed.set()

    def add_source(self, source: str) -> None:
        with self._sources_lock:
            self._sources.add(source)

    def lost_events(self) -> int:
        return 0

    def send_events(self, callback: Callable[[Event], None]) -> None:
        """Replay every file in order, passing each event to ``callback``."""
        for path in self.files:
            if self._closed.is_set():
                return
            self._replay_file(path, callback)

    def _replay_file(self, path, callback: Callable[[Event], None]) -> None:
        try:
            stream = open(path, "rb")
        except OSError as exc:
            logger.warning("Failed to open replay input file %s: %s", path, exc)
            return

        with stream:
            for line_no, raw in enumerate(stream, start=1):
                if self._closed.is_set():
                    return
                line = raw[:-1] if raw.endswith(b"\n") else raw
                if line.endswith(b"\r"):
                    line = line[:-1]
                if len(line) > MAX_REPLAY_LINE_BYTES:
                    logger.warning(
                        "Failed while reading replay input file %s (max line size %d bytes)",
                        path,
                        MAX_REPLAY_LINE_BYTES,
                    )
                    return
                if not line:
                    continue

                try:
                    record = json.loads(line, parse_int=float, parse_constant=_reject_constant)
                except ValueError as exc:
                    logger.debug("Skipping invalid replay JSON line %s:%d: %s", path, line_no, exc)
                    continue
                if record is None:
                    record = {}
                if not isinstance(record, dict):
                    logger.debug("Skipping replay line %s:%d: not a JSON object", path, line_no)
                    continue

                event = record_to_event(record)
                if self._source_enabled(event.source):
                    callback(event)

    def _source_enabled(self, source: str) -> bool:
        with self._sources_lock:
            return not self._sources or source in self._sources