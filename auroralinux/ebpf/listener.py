"""Event provider fed by kernel tracepoint monitors."""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Optional, Protocol

from auroralinux.ebpf.fieldmap import (
    build_bpf_fields,
    build_exec_fields,
    build_file_fields,
    build_net_fields,
    format_ipv4,
    format_ipv6,
    join_cmdline,
)
from auroralinux.ebpf.procfs import (
    read_cmdline,
    read_cwd,
    read_exe_link,
    read_login_uid,
    resolve_filename,
)
from auroralinux.ebpf.records import (
    BPFError,
    BpfRecord,
    ExecRecord,
    FileRecord,
    NetRecord,
    boot_time_nanos,
    ktime_to_wall,
    load_monitor,
)
from auroralinux.ebpf.usercache import UserCache
from auroralinux.events import (
    EBPF_PROVIDER_NAME,
    EVENT_ID_BPF_EVENT,
    EVENT_ID_FILE_EVENT,
    EVENT_ID_NETWORK_CONNECTION,
    EVENT_ID_PROCESS_CREATION,
    Event,
    EventIdentifier,
)

logger = logging.getLogger(__name__)

SOURCE_PROCESS_EXEC = "LinuxEBPF:ProcessExec"
SOURCE_FILE_CREATE = "LinuxEBPF:FileCreate"
SOURCE_NET_CONNECT = "LinuxEBPF:NetConnect"
SOURCE_BPF_EVENT = "LinuxEBPF:BpfEvent"

READ_ERROR_BACKOFF = 0.1
USER_CACHE_SIZE = 256

# Sources in the order they are initialised, with their label and monitor program.
_SOURCES = (
    (SOURCE_PROCESS_EXEC, "exec", "exec_monitor"),
    (SOURCE_FILE_CREATE, "file", "file_monitor"),
    (SOURCE_NET_CONNECT, "net", "net_monitor"),
    (SOURCE_BPF_EVENT, "bpf", "bpf_monitor"),
)


class ReaderClosed(Exception):
    """Raised by a monitor handle's ``read`` once the handle has been closed."""


class MonitorHandle(Protocol):
    """A loaded and attached monitor: its ring buffer reader and lost counter."""

    def read(self) -> bytes: ...

    def close(self) -> None: ...

    def lost_events(self) -> int: ...


Initializer = Callable[[], Optional[MonitorHandle]]


@dataclass
class ProcessInfo:
    """What is remembered about a started process for later parent lookups."""

    pid: int
    image: str = ""
    command_line: str = ""
    user: str = ""
    current_directory: str = ""


class Correlator(Protocol):
    """Store of process information keyed by pid."""

    def lookup(self, pid: int) -> ProcessInfo | None: ...

    def store(self, pid: int, info: ProcessInfo) -> None: ...


def _default_initializer(program: str) -> Initializer:
    def initialize() -> MonitorHandle | None:
        return load_monitor(program)

    return initialize


class Listener:
    """Provider of process, file, network and bpf() events from kernel monitors.

    ``initializers`` maps a source name to a callable that loads and attaches
    its monitor and returns the handle to read from; sources without one use
    the built-in loader.
    """

    name = EBPF_PROVIDER_NAME
    description = "eBPF-based telemetry provider for Linux"

    def __init__(
        self,
        correlator: Correlator | None = None,
        *,
        initializers: Mapping[str, Initializer] | None = None,
    ) -> None:
        self.correlator = correlator
        self._initializers = dict(initializers or {})
        self._enabled: set[str] = set()
        self._handles: dict[str, MonitorHandle] = {}
        self._closed = threading.Event()
        self._close_lock = threading.Lock()
        self.boot_nanos = 0
        self.self_pid = 0
        self.user_cache = UserCache(USER_CACHE_SIZE)

    @property
    def enabled(self) -> frozenset[str]:
        """The sources currently enabled."""
        return frozenset(self._enabled)

    def add_source(self, source: str) -> None:
        """Enable a telemetry source. Raises ValueError for an unknown source."""
        if source not in {name for name, _, _ in _SOURCES}:
            raise ValueError(f"unknown source: {source}")
        self._enabled.add(source)

    def initialize(self) -> None:
        """Load and attach the monitors of every enabled source.

        A source whose monitor fails is disabled while the others carry on;
        BPFError is raised only when every requested monitor failed.
        """
        self.boot_nanos = boot_time_nanos()
        self_pid = os.getpid()
        if self_pid <= 0:
            raise BPFError(f"invalid process id: {self_pid}")
        self.self_pid = self_pid
        self.user_cache = UserCache(USER_CACHE_SIZE)

        requested = 0
        initialized = 0
        errors: list[str] = []
        for source, label, program in _SOURCES:
            if source not in self._enabled:
                continue
            requested += 1
            init = self._initializers.get(source) or _default_initializer(program)
            try:
                handle = init()
            except Exception as exc:  # noqa: BLE001 - any failure disables the source
                self._enabled.discard(source)
                errors.append(f"{label} monitor: {exc}")
                logger.warning("Failed to initialize %s monitor; source disabled: %s", label, exc)
                continue
            if handle is not None:
                self._handles[source] = handle
            initialized += 1

        if requested > 0 and initialized == 0:
            raise BPFError("failed to initialize any eBPF monitor: " + "\n".join(errors))
        if requested > initialized:
            logger.warning(
                "Some eBPF monitors were disabled due to initialization errors "
                "(requested=%d, initialized=%d)",
                requested,
                initialized,
            )

    def send_events(self, callback: Callable[[Event], None]) -> None:
        """Read all enabled monitors, passing each event to ``callback``.

        Blocks until every monitor has been closed.
        """
        parsers = {
            SOURCE_PROCESS_EXEC: self.parse_exec_event,
            SOURCE_FILE_CREATE: self.parse_file_event,
            SOURCE_NET_CONNECT: self.parse_net_event,
            SOURCE_BPF_EVENT: self.parse_bpf_event,
        }
        threads = []
        for source, label, _ in _SOURCES:
            handle = self._handles.get(source)
            if source not in self._enabled or handle is None:
                continue
            thread = threading.Thread(
                target=self._read_events,
                args=(label, handle, parsers[source], callback),
                name=f"ebpf-{label}-reader",
                daemon=True,
            )
            thread.start()
            threads.append(thread)
        for thread in threads:
            thread.join()

    def _read_events(
        self,
        label: str,
        handle: MonitorHandle,
        parser: Callable[[bytes], Event],
        callback: Callable[[Event], None],
    ) -> None:
        while True:
            try:
                data = handle.read()
            except ReaderClosed:
                return
            except Exception as exc:  # noqa: BLE001 - keep reading after transient errors
                logger.error("Reading %s ring buffer: %s", label, exc)
                if self._closed.is_set():
                    return
                self._closed.wait(READ_ERROR_BACKOFF)
                continue

            try:
                event = parser(data)
            except ValueError as exc:
                logger.debug("Parsing %s event: %s", label, exc)
                continue
            callback(event)

    def _image_for(self, pid: int) -> str:
        try:
            image = read_exe_link(pid)
        except OSError:
            image = ""
        if not image and self.correlator is not None:
            info = self.correlator.lookup(pid)
            if info is not None:
                image = info.image
        return image

    def parse_exec_event(self, data: bytes) -> Event:
        """Build a process creation event, completing it from /proc."""
        raw = ExecRecord.from_bytes(data)
        pid, ppid, uid = raw.pid, raw.ppid, raw.uid

        bpf_filename = raw.filename
        try:
            image = read_exe_link(pid)
        except OSError:
            image = bpf_filename

        cmdline, truncated = "", False
        try:
            cmdline, truncated = join_cmdline(read_cmdline(pid))
        except OSError:
            pass

        try:
            cwd = read_cwd(pid)
        except OSError:
            cwd = ""

        login_uid = read_login_uid(pid)
        username = self.user_cache.lookup(uid)

        parent_image = parent_cmdline = ""
        if self.correlator is not None:
            info = self.correlator.lookup(ppid)
            if info is not None:
                parent_image, parent_cmdline = info.image, info.command_line
        if not parent_image:
            try:
                parent_image = read_exe_link(ppid)
            except OSError:
                parent_image = ""
        if not parent_cmdline:
            try:
                parent_cmdline, _ = join_cmdline(read_cmdline(ppid))
            except OSError:
                pass

        fields = build_exec_fields(
            pid, ppid, uid, bpf_filename, image, cmdline, truncated,
            cwd, login_uid, username, parent_image, parent_cmdline,
        )

        if self.correlator is not None:
            self.correlator.store(
                pid,
                ProcessInfo(
                    pid=pid,
                    image=image,
                    command_line=cmdline,
                    user=username,
                    current_directory=cwd,
                ),
            )

        return self._event(EVENT_ID_PROCESS_CREATION, pid, SOURCE_PROCESS_EXEC,
                           raw.timestamp_ns, fields)

    def parse_file_event(self, data: bytes) -> Event:
        """Build a file event with an absolute target path."""
        raw = FileRecord.from_bytes(data)
        target = resolve_filename(raw.pid, raw.filename, raw.dfd)
        image = self._image_for(raw.pid)
        username = self.user_cache.lookup(raw.uid)
        fields = build_file_fields(raw.pid, raw.uid, target, image, username, raw.flags)
        return self._event(EVENT_ID_FILE_EVENT, raw.pid, SOURCE_FILE_CREATE,
                           raw.timestamp_ns, fields)

    def parse_net_event(self, data: bytes) -> Event:
        """Build a network connection event."""
        raw = NetRecord.from_bytes(data)
        image = self._image_for(raw.pid)
        username = self.user_cache.lookup(raw.uid)
        if raw.is_ipv4:
            src_ip, dst_ip = format_ipv4(raw.saddr), format_ipv4(raw.daddr)
        else:
            src_ip, dst_ip = format_ipv6(raw.saddr), format_ipv6(raw.daddr)
        fields = build_net_fields(
            raw.pid, raw.uid, image, username,
            src_ip, raw.sport, dst_ip, raw.dport, raw.initiated,
        )
        return self._event(EVENT_ID_NETWORK_CONNECTION, raw.pid, SOURCE_NET_CONNECT,
                           raw.timestamp_ns, fields)

    def parse_bpf_event(self, data: bytes) -> Event:
        """Build a bpf() system call event."""
        raw = BpfRecord.from_bytes(data)
        image = self._image_for(raw.pid)
        username = self.user_cache.lookup(raw.uid)
        fields = build_bpf_fields(
            raw.pid, raw.uid, image, username,
            raw.cmd, raw.prog_type, raw.ret_val, raw.prog_name,
        )
        return self._event(EVENT_ID_BPF_EVENT, raw.pid, SOURCE_BPF_EVENT,
                           raw.timestamp_ns, fields)

    def _event(self, event_id: int, pid: int, source: str, ktime_ns: int,
               fields: dict[str, str]) -> Event:
        return Event(
            id=EventIdentifier(provider_name=EBPF_PROVIDER_NAME, event_id=event_id),
            pid=pid,
            source=source,
            time=ktime_to_wall(self.boot_nanos, ktime_ns),
            fields=fields,
        )

    def lost_events(self) -> int:
        """Total number of events the monitors reported as lost."""
        total = 0
        for handle in self._handles.values():
            try:
                total += handle.lost_events()
            except OSError:
                continue
        return total

    def close(self) -> None:
        """Close every monitor; later calls do nothing.

        Raises BPFError listing the monitors that failed to close.
        """
        with self._close_lock:
            if self._closed.is_set():
                return
            self._closed.set()

        errors: list[str] = []
        for source, label, _ in _SOURCES:
            handle = self._handles.get(source)
            if handle is None:
                continue
            try:
                handle.close()
            except Exception as exc:  # noqa: BLE001 - collect every failure
                errors.append(f"closing {label} monitor: {exc}")
        if errors:
            raise BPFError("\n".join(errors))