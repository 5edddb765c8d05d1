import queue
from datetime import datetime, timedelta, timezone

import pytest

from auroralinux.ebpf.listener import (
    SOURCE_BPF_EVENT,
    SOURCE_FILE_CREATE,
    SOURCE_NET_CONNECT,
    SOURCE_PROCESS_EXEC,
    Listener,
    ProcessInfo,
    ReaderClosed,
)
from auroralinux.ebpf.records import BPFError, BpfRecord, ExecRecord, FileRecord, NetRecord

MISSING_PID = 4000000000
MISSING_PARENT = 4000000001
UNKNOWN_UID = 4294967290
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _fail(message):
    def init():
        raise RuntimeError(message)

    return init


def _ok():
    return None


def _returning(handle):
    def init():
        return handle

    return init


class FakeCorrelator:
    def __init__(self, entries=None):
        self.entries = dict(entries or {})

    def lookup(self, pid):
        return self.entries.get(pid)

    def store(self, pid, info):
        self.entries[pid] = info


class FakeHandle:
    def __init__(self, items=(), lost=0, close_error=None):
        self.items = queue.Queue()
        for item in items:
            self.items.put(item)
        self.lost = lost
        self.close_error = close_error
        self.close_calls = 0

    def read(self):
        try:
            item = self.items.get_nowait()
        except queue.Empty:
            raise ReaderClosed() from None
        if isinstance(item, Exception):
            raise item
        return item

    def close(self):
        self.close_calls += 1
        if self.close_error is not None:
            raise self.close_error

    def lost_events(self):
        if isinstance(self.lost, Exception):
            raise self.lost
        return self.lost


def _exec_bytes(ts=5_000_000_000, pid=MISSING_PID, ppid=MISSING_PARENT, uid=UNKNOWN_UID,
                filename=b"/usr/bin/curl"):
    return ExecRecord.LAYOUT.pack(ts, pid, ppid, uid, 0, b"curl", filename, len(filename))


def test_initialize_disables_failed_monitor_and_continues():
    listener = Listener(initializers={
        SOURCE_PROCESS_EXEC: _ok,
        SOURCE_FILE_CREATE: _fail("file init failed"),
        SOURCE_NET_CONNECT: _ok,
    })
    for source in (SOURCE_PROCESS_EXEC, SOURCE_FILE_CREATE, SOURCE_NET_CONNECT):
        listener.add_source(source)

    listener.initialize()

    assert listener.enabled == frozenset({SOURCE_PROCESS_EXEC, SOURCE_NET_CONNECT})


def test_initialize_fails_when_all_requested_monitors_fail():
    listener = Listener(initializers={
        SOURCE_PROCESS_EXEC: _fail("exec failed"),
        SOURCE_NET_CONNECT: _fail("net failed"),
    })
    listener.add_source(SOURCE_PROCESS_EXEC)
    listener.add_source(SOURCE_NET_CONNECT)

    with pytest.raises(BPFError, match="failed to initialize any eBPF monitor") as info:
        listener.initialize()

    assert "exec monitor: exec failed" in str(info.value)
    assert "net monitor: net failed" in str(info.value)
    assert listener.enabled == frozenset()


def test_initialize_with_builtin_loader_fails():
    listener = Listener()
    listener.add_source(SOURCE_BPF_EVENT)
    with pytest.raises(BPFError, match="bpf monitor: loading bpf_monitor"):
        listener.initialize()


def test_initialize_without_sources_sets_self_pid():
    listener = Listener()
    listener.initialize()
    assert listener.self_pid > 0


def test_add_source_rejects_unknown():
    listener = Listener()
    with pytest.raises(ValueError, match="unknown source: Bogus"):
        listener.add_source("Bogus")


def test_parse_exec_event_uses_fallbacks_and_correlator():
    parent = ProcessInfo(pid=MISSING_PARENT, image="/usr/sbin/sshd", command_line="sshd -D")
    correlator = FakeCorrelator({MISSING_PARENT: parent})
    listener = Listener(correlator)

    event = listener.parse_exec_event(_exec_bytes())

    assert event.id.provider_name == "LinuxEBPF"
    assert event.id.event_id == 1
    assert event.source == SOURCE_PROCESS_EXEC
    assert event.pid == MISSING_PID
    assert event.time == EPOCH + timedelta(seconds=5)
    assert event.value("Image") == "/usr/bin/curl"
    assert event.value("CommandLine") == ""
    assert event.value("ParentImage") == "/usr/sbin/sshd"
    assert event.value("ParentCommandLine") == "sshd -D"
    assert event.value("User") == str(UNKNOWN_UID)
    assert event.value("ProcessId") == str(MISSING_PID)
    assert event.value("ParentProcessId") == str(MISSING_PARENT)
    stored = correlator.entries[MISSING_PID]
    assert stored.image == "/usr/bin/curl"
    assert stored.user == str(UNKNOWN_UID)


def test_parse_exec_event_rejects_short_data():
    with pytest.raises(ValueError, match="decoding exec event"):
        Listener().parse_exec_event(b"\x00" * 10)


def test_parse_file_event_relative_name_for_missing_process():
    correlator = FakeCorrelator({MISSING_PID: ProcessInfo(pid=MISSING_PID, image="/bin/sh")})
    listener = Listener(correlator)
    data = FileRecord.LAYOUT.pack(1_000, MISSING_PID, UNKNOWN_UID, -100, 0x241, b"relative.txt", 12)

    event = listener.parse_file_event(data)

    assert event.id.event_id == 11
    assert event.source == SOURCE_FILE_CREATE
    assert event.value("TargetFilename") == "relative.txt"
    assert event.value("Image") == "/bin/sh"
    assert event.value("FileFlags") == str(0x241)


def test_parse_net_event_ipv4():
    saddr = bytes(10) + b"\xff\xff" + bytes([192, 168, 1, 100])
    daddr = bytes(10) + b"\xff\xff" + bytes([10, 0, 0, 1])
    data = NetRecord.LAYOUT.pack(0, MISSING_PID, UNKNOWN_UID, 45678, 4242, saddr, daddr, 2, 1, 0)

    event = Listener().parse_net_event(data)

    assert event.id.event_id == 3
    assert event.source == SOURCE_NET_CONNECT
    assert event.value("SourceIp") == "192.168.1.100"
    assert event.value("DestinationIp") == "10.0.0.1"
    assert event.value("SourcePort") == "45678"
    assert event.value("DestinationPort") == "4242"
    assert event.value("Initiated") == "true"


def test_parse_net_event_ipv6_inbound():
    daddr = bytes.fromhex("20010db8000000000000000000000001")
    data = NetRecord.LAYOUT.pack(0, MISSING_PID, UNKNOWN_UID, 22, 54321, bytes(16), daddr, 10, 0, 0)

    event = Listener().parse_net_event(data)

    assert event.value("SourceIp") == "::"
    assert event.value("DestinationIp") == "2001:db8::1"
    assert event.value("Initiated") == "false"


def test_parse_bpf_event():
    data = BpfRecord.LAYOUT.pack(0, MISSING_PID, UNKNOWN_UID, 5, 2, 42, b"")

    event = Listener().parse_bpf_event(data)

    assert event.id.event_id == 100
    assert event.source == SOURCE_BPF_EVENT
    assert event.value("BpfCommand") == "BPF_PROG_LOAD"
    assert event.value("BpfProgramType") == "KPROBE"
    assert event.value("BpfProgramId") == "42"
    assert event.value("BpfProgramName") == "-"


def test_send_events_reads_until_closed_and_skips_bad_records():
    handle = FakeHandle([OSError("transient"), b"short", _exec_bytes()])
    listener = Listener(initializers={SOURCE_PROCESS_EXEC: _returning(handle)})
    listener.add_source(SOURCE_PROCESS_EXEC)
    listener.initialize()

    events = []
    listener.send_events(events.append)

    assert [event.pid for event in events] == [MISSING_PID]
    assert events[0].value("Image") == "/usr/bin/curl"


def test_lost_events_sums_handles():
    handles = {
        SOURCE_PROCESS_EXEC: FakeHandle(lost=3),
        SOURCE_FILE_CREATE: FakeHandle(lost=4),
        SOURCE_NET_CONNECT: FakeHandle(lost=OSError("gone")),
    }
    initializers = {source: _returning(handle) for source, handle in handles.items()}
    listener = Listener(initializers=initializers)
    for source in handles:
        listener.add_source(source)
    listener.initialize()

    assert listener.lost_events() == 7


def test_close_reports_errors_once():
    handle = FakeHandle(close_error=OSError("busy"))
    listener = Listener(initializers={SOURCE_PROCESS_EXEC: _returning(handle)})
    listener.add_source(SOURCE_PROCESS_EXEC)
    listener.initialize()

    with pytest.raises(BPFError, match="closing exec monitor: busy"):
        listener.close()
    listener.close()

    assert handle.close_calls == 1