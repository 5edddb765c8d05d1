"""Turning grouped audit records into events."""

from __future__ import annotations

import re

from auroralinux.audit.grouper import AuditRecord
from auroralinux.audit.parser import AuditLine, decode_hex_field
from auroralinux.events import (
    AUDIT_PROVIDER_NAME,
    AUDIT_SOURCE,
    EVENT_ID_AUDIT,
    Event,
    EventIdentifier,
)

_DIGITS = re.compile(r"[0-9]+")


def _parse_pid(fields: dict[str, str]) -> int:
    text = fields.get("pid")
    if text is None or not _DIGITS.fullmatch(text):
        return 0
    value = int(text)
    return value if value < 1 << 32 else 0


def should_decode_hex(record_type: str, key: str) -> bool:
    """Whether a field of this record type is commonly hex-encoded."""
    if record_type == "PROCTITLE":
        return key == "proctitle"
    if record_type == "EXECVE":
        return len(key) >= 2 and key[0] == "a" and key[1] in "0123456789"
    return False


def build_raw_fields(line: AuditLine, syscall_fields: dict[str, str] | None) -> dict[str, str]:
    """Build the field map of one line.

    ``type`` holds the record type; SYSCALL fields are merged in as context and
    the line's own fields take precedence over them.
    """
    fields = {"type": line.record_type}
    if syscall_fields is not None and line.record_type != "SYSCALL":
        fields.update(syscall_fields)
    for key, value in line.fields.items():
        if should_decode_hex(line.record_type, key):
            value = decode_hex_field(value)
        fields[key] = value
    return fields


def map_record_to_events(record: AuditRecord) -> list[Event]:
    """Produce one event per line of the record."""
    syscall = next((line for line in record.lines if line.record_type == "SYSCALL"), None)
    syscall_fields = syscall.fields if syscall is not None else None
    pid = _parse_pid(syscall.fields) if syscall is not None else 0

    return [
        Event(
            id=EventIdentifier(provider_name=AUDIT_PROVIDER_NAME, event_id=EVENT_ID_AUDIT),
            pid=pid or _parse_pid(line.fields),
            source=AUDIT_SOURCE,
            time=record.timestamp,
            fields=build_raw_fields(line, syscall_fields),
        )
        for line in record.lines
    ]