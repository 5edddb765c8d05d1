"""Event provider that reads auditd log files."""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable
from typing import BinaryIO

from auroralinux.audit.grouper import AuditRecord, RecordGrouper
from auroralinux.audit.mapper import map_record_to_events
from auroralinux.audit.parser import AuditParseError, parse_line
from auroralinux.events import AUDIT_PROVIDER_NAME, Event

logger = logging.getLogger(__name__)

MAX_AUDIT_LINE_BYTES = 8 * 1024
TAIL_POLL_INTERVAL = 0.25


def read_line(stream: BinaryIO) -> str | None:
    """Read one line without its line ending; None at end of file.

    Lines longer than MAX_AUDIT_LINE_BYTES are truncated and the rest discarded.
    """
    raw = stream.readline(MAX_AUDIT_LINE_BYTES + 2)
    if not raw:
        return None
    if raw.endswith(b"\n"):
        raw = raw[:-1]
        if raw.endswith(b"\r"):
            raw = raw[:-1]
    elif len(raw) == MAX_AUDIT_LINE_BYTES + 2:
        while True:
            rest = stream.readline(64 * 1024)
            if not rest or rest.endswith(b"\n"):
                break
    return raw[:MAX_AUDIT_LINE_BYTES].decode("utf-8", errors="replace")


class AuditProvider:
    """Reads auditd logs and emits one event per record line.

    Lines that share ``TIMESTAMP:SERIAL`` are grouped; SYSCALL fields are
    merged into every event of the group. With ``follow`` set, the last file
    is tailed for new lines until :meth:`close` is called.
    """

    name = AUDIT_PROVIDER_NAME
    description = "Audit log provider for Linux auditd events"

    def __init__(self, *files: str | os.PathLike[str], follow: bool = True) -> None:
        self.files = list(files)
        self.follow = follow
        self._sources: set[str] = set()
        self._sources_lock = threading.Lock()
        self._closed = threading.Event()
        self._lost = 0
        self._lost_lock = threading.Lock()

    def initialize(self) -> None:
        self._closed.clear()

    def close(self) -> None:
        self._closed.set()

    def add_source(self, source: str) -> None:
        with self._sources_lock:
            self._sources.add(source)

    def lost_events(self) -> int:
        with self._lost_lock:
            return self._lost

    def send_events(self, callback: Callable[[Event], None]) -> None:
        """Read every file in order, passing each event to ``callback``."""
        last = len(self.files) - 1
        for index, path in enumerate(self.files):
            if self._closed.is_set():
                return
            self._process_file(path, self.follow and index == last, callback)

    def _process_file(self, path, follow: bool, callback: Callable[[Event], None]) -> None:
        try:
            stream = open(path, "rb")
        except OSError as exc:
            logger.warning("Failed to open audit log file %s: %s", path, exc)
            return

        with stream:
            if follow:
                try:
                    stream.seek(0, os.SEEK_END)
                except OSError as exc:
                    logger.warning(
                        "Failed to seek to end of audit log %s; reading from start: %s", path, exc
                    )
                else:
                    logger.info("Audit provider tailing %s for real-time events", path)

            line_no = 0
            grouper = RecordGrouper()
            while not self._closed.is_set():
                try:
                    line = read_line(stream)
                except OSError as exc:
                    logger.warning("Error reading audit log %s at line %d: %s", path, line_no, exc)
                    return

                if not line:
                    if not follow:
                        break
                    if line is None:
                        # auditd writes whole groups at once, so EOF ends a group.
                        final = grouper.flush()
                        if final is not None:
                            self._emit_record(final, callback)
                        self._closed.wait(TAIL_POLL_INTERVAL)
                        continue

                line_no += 1
                try:
                    parsed = parse_line(line)
                except AuditParseError as exc:
                    logger.debug("Skipping unparseable audit line %s:%d: %s", path, line_no, exc)
                    with self._lost_lock:
                        self._lost += 1
                    continue
                if parsed is None:
                    continue

                completed = grouper.add_line(parsed)
                if completed is not None:
                    self._emit_record(completed, callback)

            final = grouper.flush()
            if final is not None:
                self._emit_record(final, callback)

    def _emit_record(self, record: AuditRecord, callback: Callable[[Event], None]) -> None:
        for event in map_record_to_events(record):
            if self._source_enabled(event.source):
                callback(event)

    def _source_enabled(self, source: str) -> bool:
        with self._sources_lock:
            return not self._sources or source in self._sources