"""Parsing of single auditd log lines."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

_DIGITS = re.compile(r"[0-9]+")
_HEX = re.compile(r"[0-9a-fA-F]+")
_AUDIT_PREFIX = "msg=audit("


class AuditParseError(ValueError):
    """Raised for an audit line that cannot be parsed."""


@dataclass
class AuditLine:
    """One parsed line of an audit log."""

    record_type: str
    audit_id: str
    timestamp: float
    serial: int
    fields: dict[str, str] = field(default_factory=dict)


def _parse_float(text: str) -> float:
    if not text or text != text.strip() or "_" in text:
        raise ValueError(f"invalid float {text!r}")
    return float(text)


def _parse_uint(text: str, bits: int) -> int:
    if not _DIGITS.fullmatch(text):
        raise ValueError(f"invalid unsigned integer {text!r}")
    value = int(text)
    if value >= 1 << bits:
        raise ValueError(f"value out of range {text!r}")
    return value


def parse_line(line: str) -> AuditLine | None:
    """Parse an audit line; return None for a blank line.

    Raises AuditParseError for a malformed line.
    """
    line = line.strip()
    if not line:
        return None
    if not line.startswith("type="):
        raise AuditParseError("line does not start with type=")
    space = line.find(" ")
    if space < 0:
        raise AuditParseError("no space after type field")
    record_type = line[len("type="):space]
    rest = line[space + 1:]

    audit_id, timestamp, serial, after_msg = parse_audit_id(rest)
    return AuditLine(
        record_type=record_type,
        audit_id=audit_id,
        timestamp=timestamp,
        serial=serial,
        fields=parse_key_value_pairs(after_msg),
    )


def parse_audit_id(s: str) -> tuple[str, float, int, str]:
    """Split ``msg=audit(TIMESTAMP:SERIAL): rest``.

    Returns the raw id, the timestamp, the serial and the remaining text.
    """
    idx = s.find(_AUDIT_PREFIX)
    if idx < 0:
        raise AuditParseError("missing msg=audit( header")
    after = s[idx + len(_AUDIT_PREFIX):]
    close = after.find(")")
    if close < 0:
        raise AuditParseError("missing closing parenthesis in audit ID")

    id_str = after[:close]
    colon = id_str.find(":")
    if colon < 0:
        raise AuditParseError(f"missing colon in audit ID {id_str!r}")

    ts_text, serial_text = id_str[:colon], id_str[colon + 1:]
    try:
        timestamp = _parse_float(ts_text)
    except ValueError as exc:
        raise AuditParseError(f"parsing audit timestamp {ts_text!r}: {exc}") from exc
    try:
        serial = _parse_uint(serial_text, 64)
    except ValueError as exc:
        raise AuditParseError(f"parsing audit serial {serial_text!r}: {exc}") from exc

    rest = after[close + 1:].lstrip(": ")
    return id_str, timestamp, serial, rest


def parse_key_value_pairs(raw: str) -> dict[str, str]:
    """Parse the ``key=value`` part of an audit line (bare or double-quoted values)."""
    fields: dict[str, str] = {}
    raw = raw.strip()
    while raw:
        eq = raw.find("=")
        if eq < 0:
            break
        key = raw[:eq]
        raw = raw[eq + 1:]

        if raw.startswith('"'):
            end = raw.find('"', 1)
            if end < 0:
                value, raw = raw[1:], ""
            else:
                value, raw = raw[1:end], raw[end + 1:]
        else:
            space = raw.find(" ")
            if space < 0:
                value, raw = raw, ""
            else:
                value, raw = raw[:space], raw[space + 1:]

        raw = raw.lstrip(" ")
        fields[key] = value
    return fields


def decode_hex_field(s: str) -> str:
    """Decode a hex-encoded value; return it unchanged if it is not hex.

    NUL bytes become spaces and trailing spaces are removed.
    """
    if not s or len(s) % 2 != 0 or not _HEX.fullmatch(s):
        return s
    try:
        decoded = bytes.fromhex(s)
    except ValueError:
        return s
    decoded = decoded.replace(b"\x00", b" ")
    return decoded.decode("utf-8", errors="replace").rstrip(" ")