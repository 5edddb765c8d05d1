"""Log line formatters: JSON, syslog (RFC 5424-like) and plain text."""

from __future__ import annotations

import enum
import json
import math
import socket
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Union

TimestampFormat = Union[str, Callable[[datetime], str], None]


class Level(enum.IntEnum):
    """Log severity levels, most severe first."""

    PANIC = 0
    FATAL = 1
    ERROR = 2
    WARNING = 3
    INFO = 4
    DEBUG = 5
    TRACE = 6

    @property
    def text(self) -> str:
        return self.name.lower()

    def __str__(self) -> str:
        return self.text


@dataclass
class LogEntry:
    """One log record to be formatted."""

    time: datetime
    level: Level
    message: str = ""
    data: dict[str, Any] = field(default_factory=dict)


def _aware(dt: datetime) -> datetime:
    # Naive datetimes are taken to be UTC.
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def _offset_suffix(dt: datetime) -> str:
    offset = dt.utcoffset() or timedelta(0)
    if offset == timedelta(0):
        return "Z"
    total = int(offset.total_seconds())
    sign = "+" if total >= 0 else "-"
    total = abs(total)
    return f"{sign}{total // 3600:02d}:{(total % 3600) // 60:02d}"


def rfc3339(dt: datetime) -> str:
    """Format a datetime as RFC 3339 with whole seconds."""
    dt = _aware(dt)
    return dt.strftime("%Y-%m-%dT%H:%M:%S") + _offset_suffix(dt)


def rfc3339_nano(dt: datetime) -> str:
    """Format a datetime as RFC 3339 with trailing-zero-free fractional seconds."""
    dt = _aware(dt)
    frac = f"{dt.microsecond:06d}".rstrip("0")
    base = dt.strftime("%Y-%m-%dT%H:%M:%S")
    if frac:
        base += "." + frac
    return base + _offset_suffix(dt)


def _format_time(dt: datetime, fmt: TimestampFormat, default: Callable[[datetime], str]) -> str:
    if fmt is None or fmt == "":
        return default(dt)
    if callable(fmt):
        return fmt(dt)
    return _aware(dt).strftime(fmt)


_QUOTE_ESCAPES = {
    "\a": "\\a",
    "\b": "\\b",
    "\f": "\\f",
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\v": "\\v",
    "\\": "\\\\",
    '"': '\\"',
}


def _quote(s: str) -> str:
    parts = ['"']
    for ch in s:
        escaped = _QUOTE_ESCAPES.get(ch)
        if escaped is not None:
            parts.append(escaped)
        elif ch.isprintable():
            parts.append(ch)
        else:
            cp = ord(ch)
            if cp < 0x80:
                parts.append(f"\\x{cp:02x}")
            elif cp < 0x10000:
                parts.append(f"\\u{cp:04x}")
            else:
                parts.append(f"\\U{cp:08x}")
    parts.append('"')
    return "".join(parts)


def _format_float(x: float) -> str:
    if math.isnan(x):
        return "NaN"
    if math.isinf(x):
        return "+Inf" if x > 0 else "-Inf"
    if x.is_integer() and abs(x) < 1e21:
        return str(int(x))
    return repr(x)


def format_field_key(key: str) -> str:
    """Quote a field key when it holds control characters, spaces or '='."""
    for ch in key:
        cp = ord(ch)
        if cp < 0x20 or cp == 0x7F or ch in " =":
            return _quote(key)
    return key


def format_field_value(value: Any) -> str:
    """Render a field value: numbers and booleans bare, everything else quoted."""
    if isinstance(value, str):
        return _quote(value)
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return _format_float(value)
    return _quote(str(value))


def severity_for_level(level: Level) -> int:
    """Map a log level to a syslog severity."""
    if level in (Level.PANIC, Level.FATAL):
        return 2
    if level == Level.ERROR:
        return 3
    if level == Level.WARNING:
        return 4
    if level == Level.INFO:
        return 6
    if level in (Level.DEBUG, Level.TRACE):
        return 7
    return 6


def _field_pairs(data: dict[str, Any]) -> str:
    return "".join(
        f" {format_field_key(key)}={format_field_value(data[key])}" for key in sorted(data)
    )


_JSON_HTML_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


@dataclass
class JSONFormatter:
    """Formats entries as single-line JSON objects for SIEM ingestion."""

    timestamp_format: TimestampFormat = None

    def format(self, entry: LogEntry) -> str:
        data: dict[str, Any] = dict(entry.data)
        data["timestamp"] = _format_time(entry.time, self.timestamp_format, rfc3339_nano)
        data["level"] = entry.level.text
        if entry.message:
            data["message"] = entry.message
        try:
            serialized = json.dumps(
                data,
                sort_keys=True,
                ensure_ascii=False,
                allow_nan=False,
                separators=(",", ":"),
            )
        except (TypeError, ValueError) as exc:
            raise ValueError(f"failed to marshal fields to JSON: {exc}") from exc
        for raw, escaped in _JSON_HTML_ESCAPES.items():
            serialized = serialized.replace(raw, escaped)
        return serialized + "\n"


@dataclass
class SyslogFormatter:
    """Formats entries as RFC 5424-like syslog lines."""

    timestamp_format: TimestampFormat = None
    hostname: str = ""
    app_name: str = ""
    facility: int = 0

    def format(self, entry: LogEntry) -> str:
        timestamp = _format_time(entry.time, self.timestamp_format, rfc3339)

        hostname = self.hostname.strip()
        if not hostname:
            try:
                hostname = socket.gethostname().strip()
            except OSError:
                hostname = ""
            hostname = hostname or "-"

        app_name = self.app_name.strip() or "aurora"

        facility = self.facility
        if facility < 0 or facility > 23:
            facility = 1
        priority = facility * 8 + severity_for_level(entry.level)

        line = f"<{priority}>1 {timestamp} {hostname} {app_name} - - -"
        if entry.message:
            line += " " + entry.message
        return line + _field_pairs(entry.data) + "\n"


@dataclass
class TextFormatter:
    """Formats entries as human-readable single-line text."""

    timestamp_format: TimestampFormat = None

    def format(self, entry: LogEntry) -> str:
        timestamp = _format_time(entry.time, self.timestamp_format, rfc3339)
        line = f"{timestamp} {entry.level.text.upper()} {entry.message}"
        return line + _field_pairs(entry.data) + "\n"