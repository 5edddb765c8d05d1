"""Binary records from the kernel ring buffers and the helpers around them."""

from __future__ import annotations

import struct
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import ClassVar

AF_INET = 2

MONITOR_PROGRAMS = frozenset({"exec_monitor", "file_monitor", "net_monitor", "bpf_monitor"})

_UPTIME_PATH = "/proc/uptime"
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class BPFError(RuntimeError):
    """Raised when a kernel monitor program cannot be loaded or attached."""


def null_term_str(data: bytes, max_len: int) -> str:
    """Return the text of ``data`` up to its first NUL byte, looking at most ``max_len`` bytes.

    A ``max_len`` that is not positive or exceeds the data means the whole data.
    """
    data = bytes(data)
    if max_len <= 0 or max_len > len(data):
        max_len = len(data)
    window = data[:max_len]
    end = window.find(b"\x00")
    if end >= 0:
        window = window[:end]
    return window.decode("utf-8", errors="replace")


def _unpack(layout: struct.Struct, data: bytes, what: str) -> tuple:
    try:
        return layout.unpack_from(bytes(data))
    except struct.error as exc:
        raise ValueError(
            f"decoding {what} event: need {layout.size} bytes, got {len(data)}: {exc}"
        ) from exc


@dataclass(frozen=True)
class ExecRecord:
    """A process execution record."""

    LAYOUT: ClassVar[struct.Struct] = struct.Struct("<QIIII16s256sI")

    timestamp_ns: int
    pid: int
    ppid: int
    uid: int
    gid: int
    comm: bytes
    filename_data: bytes
    filename_len: int

    @classmethod
    def from_bytes(cls, data: bytes) -> ExecRecord:
        """Decode a little-endian exec record. Raises ValueError when too short."""
        return cls(*_unpack(cls.LAYOUT, data, "exec"))

    @property
    def filename(self) -> str:
        return null_term_str(self.filename_data, self.filename_len)

    @property
    def command(self) -> str:
        return null_term_str(self.comm, len(self.comm))


@dataclass(frozen=True)
class FileRecord:
    """A file open record."""

    LAYOUT: ClassVar[struct.Struct] = struct.Struct("<QIIiI256sI")

    timestamp_ns: int
    pid: int
    uid: int
    dfd: int
    flags: int
    filename_data: bytes
    filename_len: int

    @classmethod
    def from_bytes(cls, data: bytes) -> FileRecord:
        """Decode a little-endian file record. Raises ValueError when too short."""
        return cls(*_unpack(cls.LAYOUT, data, "file"))

    @property
    def filename(self) -> str:
        return null_term_str(self.filename_data, self.filename_len)


@dataclass(frozen=True)
class NetRecord:
    """A TCP connection state record."""

    LAYOUT: ClassVar[struct.Struct] = struct.Struct("<QIIHH16s16sBBH")

    timestamp_ns: int
    pid: int
    uid: int
    sport: int
    dport: int
    saddr: bytes
    daddr: bytes
    family: int
    initiated_flag: int
    pad: int

    @classmethod
    def from_bytes(cls, data: bytes) -> NetRecord:
        """Decode a little-endian network record. Raises ValueError when too short."""
        return cls(*_unpack(cls.LAYOUT, data, "net"))

    @property
    def initiated(self) -> bool:
        return self.initiated_flag == 1

    @property
    def is_ipv4(self) -> bool:
        return self.family == AF_INET


@dataclass(frozen=True)
class BpfRecord:
    """A bpf() system call record."""

    LAYOUT: ClassVar[struct.Struct] = struct.Struct("<QIIIIq16s")

    timestamp_ns: int
    pid: int
    uid: int
    cmd: int
    prog_type: int
    ret_val: int
    prog_name_data: bytes

    @classmethod
    def from_bytes(cls, data: bytes) -> BpfRecord:
        """Decode a little-endian bpf record. Raises ValueError when too short."""
        return cls(*_unpack(cls.LAYOUT, data, "bpf"))

    @property
    def prog_name(self) -> str:
        return null_term_str(self.prog_name_data, len(self.prog_name_data))


def _parse_uptime_ns(data: bytes) -> int | None:
    fields = data.split()
    if not fields:
        return None
    parts = fields[0].split(b".", 1)
    secs = 0
    for b in parts[0]:
        secs = secs * 10 + (b - 0x30)
    frac = 0
    if len(parts) > 1:
        frac_text = parts[1]
        for b in frac_text:
            frac = frac * 10 + (b - 0x30)
        scale = 10 ** max(0, 9 - len(frac_text))
        frac *= scale
    return secs * 1_000_000_000 + frac


def boot_time_nanos() -> int:
    """Wall-clock time of system boot in nanoseconds since the epoch.

    Computed as now minus the uptime; when the uptime cannot be read, now.
    """
    now = time.time_ns()
    try:
        with open(_UPTIME_PATH, "rb") as stream:
            data = stream.read()
    except OSError:
        return now
    uptime = _parse_uptime_ns(data)
    if uptime is None:
        return now
    return now - uptime


def ktime_to_wall(boot_nanos: int, ktime_ns: int) -> datetime:
    """Convert a kernel monotonic timestamp to an aware UTC datetime."""
    wall_ns = boot_nanos + ktime_ns
    return _EPOCH + timedelta(microseconds=wall_ns // 1000)


def classify_bpf_error(err: BaseException | str, program: str) -> BPFError:
    """Wrap a loading error in a BPFError whose message says what to do about it."""
    text = str(err)
    if "unknown func" in text or "BTF" in text:
        message = (
            f"loading {program}: kernel too old or BTF disabled. "
            f"eBPF requires kernel 5.2+ with BTF. {text}"
        )
    elif "EPERM" in text or "operation not permitted" in text:
        message = (
            f"loading {program}: insufficient privileges. "
            f"Requires CAP_BPF+CAP_PERFMON (5.8+) or CAP_SYS_ADMIN (5.2-5.7) or root. {text}"
        )
    elif "ENOMEM" in text:
        message = (
            f"loading {program}: memory limit too low. "
            f"Set LimitMEMLOCK=infinity in the systemd unit. {text}"
        )
    elif "EBUSY" in text:
        message = (
            f"loading {program}: tracepoint is busy. "
            f"Another eBPF agent may be running. {text}"
        )
    else:
        message = f"loading {program}: {text}"
    error = BPFError(message)
    if isinstance(err, BaseException):
        error.__cause__ = err
    return error


def load_monitor(program: str):
    """Load the kernel objects of a monitor program.

    No compiled BPF objects ship with this package, so loading always fails
    with a BPFError; an unknown program name raises ValueError.
    """
    if program not in MONITOR_PROGRAMS:
        raise ValueError(f"unknown monitor program: {program}")
    raise classify_bpf_error(
        BPFError("compiled BPF programs are not available in this build"), program
    )