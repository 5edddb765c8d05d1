"""Grouping of consecutive audit lines that share an event id."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from auroralinux.audit.parser import AuditLine

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass
class AuditRecord:
    """A group of audit lines forming one logical event."""

    key: str
    timestamp: datetime | None
    lines: list[AuditLine] = field(default_factory=list)


def audit_timestamp_to_time(ts: float) -> datetime:
    """Convert an audit epoch timestamp in seconds to an aware UTC datetime."""
    sec = math.trunc(ts)
    nsec = round((ts - sec) * 1e9)
    return _EPOCH + timedelta(seconds=sec, microseconds=round(nsec / 1000))


class RecordGrouper:
    """Accumulates audit lines and hands out complete records.

    Lines of one event are consecutive in the log, so a record is complete
    as soon as the event id changes.
    """

    def __init__(self) -> None:
        self._key: str | None = None
        self._lines: list[AuditLine] = []

    def add_line(self, line: AuditLine) -> AuditRecord | None:
        """Add a line; return the previous record if this line starts a new one."""
        if self._key is not None and line.audit_id != self._key:
            completed = self._build_record()
            self._key = line.audit_id
            self._lines = [line]
            return completed
        self._key = line.audit_id
        self._lines.append(line)
        return None

    def flush(self) -> AuditRecord | None:
        """Return the pending record, if any."""
        if self._key is None or not self._lines:
            return None
        return self._build_record()

    def _build_record(self) -> AuditRecord:
        timestamp = audit_timestamp_to_time(self._lines[0].timestamp) if self._lines else None
        record = AuditRecord(key=self._key or "", timestamp=timestamp, lines=self._lines)
        self._lines = []
        self._key = None
        return record