import io
import threading
import time

from auroralinux.audit.provider import MAX_AUDIT_LINE_BYTES, AuditProvider, read_line
from auroralinux.events import AUDIT_PROVIDER_NAME, AUDIT_SOURCE

SAMPLE_AUDIT_LOG = (
    'type=SYSCALL msg=audit(1775057805.797:696): arch=c000003e syscall=257 success=yes exit=3 '
    "a0=ffffff9c a1=56216e858220 a2=441 a3=1b6 items=2 ppid=3916329 pid=3916330 auid=1000 uid=0 "
    'gid=0 euid=0 suid=0 fsuid=0 egid=0 sgid=0 fsgid=0 tty=pts0 ses=3 comm="bash" '
    'exe="/usr/bin/bash" subj=unconfined key="etcwrite"\n'
    'type=CWD msg=audit(1775057805.797:696): cwd="/home/user/project"\n'
    'type=PATH msg=audit(1775057805.797:696): item=0 name="/etc/vim/" inode=32506126 dev=fe:01 '
    "mode=040755 ouid=0 ogid=0 rdev=00:00 nametype=PARENT cap_fp=0 cap_fi=0 cap_fe=0 cap_fver=0 "
    "cap_frootid=0\n"
    'type=PATH msg=audit(1775057805.797:696): item=1 name="/etc/vim/vimrc" inode=32506127 '
    "dev=fe:01 mode=0100644 ouid=0 ogid=0 rdev=00:00 nametype=NORMAL cap_fp=0 cap_fi=0 cap_fe=0 "
    "cap_fver=0 cap_frootid=0\n"
    'type=PROCTITLE msg=audit(1775057805.797:696): proctitle="-bash"\n'
)


def _collect(provider):
    events = []
    provider.send_events(events.append)
    return events


def test_full_provider_from_file(tmp_path):
    log_file = tmp_path / "audit.log"
    log_file.write_text(SAMPLE_AUDIT_LOG)

    provider = AuditProvider(log_file, follow=False)
    provider.add_source(AUDIT_SOURCE)
    provider.initialize()
    events = _collect(provider)

    assert len(events) == 5
    assert [evt.value("type") for evt in events] == ["SYSCALL", "CWD", "PATH", "PATH", "PROCTITLE"]
    assert all(evt.id.provider_name == AUDIT_PROVIDER_NAME for evt in events)
    assert events[3].value("name") == "/etc/vim/vimrc"


def test_source_filter_excludes_events(tmp_path):
    log_file = tmp_path / "audit.log"
    log_file.write_text(SAMPLE_AUDIT_LOG)
    provider = AuditProvider(log_file, follow=False)
    provider.add_source("Other:Source")
    assert _collect(provider) == []


def test_unparseable_lines_count_as_lost(tmp_path):
    log_file = tmp_path / "audit.log"
    log_file.write_text(
        "garbage line\n"
        "type=CWD msg=audit(1.0:1): cwd=/\n"
        "type=SYSCALL msg=audit(bad:1): pid=1\n"
    )
    provider = AuditProvider(log_file, follow=False)
    events = _collect(provider)
    assert [evt.value("cwd") for evt in events] == ["/"]
    assert provider.lost_events() == 2


def test_missing_file_yields_nothing(tmp_path):
    provider = AuditProvider(tmp_path / "missing.log", follow=False)
    assert _collect(provider) == []
    assert provider.lost_events() == 0


def test_multiple_files_in_order(tmp_path):
    first = tmp_path / "a.log"
    second = tmp_path / "b.log"
    first.write_text("type=CWD msg=audit(1.0:1): cwd=/first\n")
    second.write_text("type=CWD msg=audit(2.0:2): cwd=/second\n")
    provider = AuditProvider(first, second, follow=False)
    assert [evt.value("cwd") for evt in _collect(provider)] == ["/first", "/second"]


def test_close_stops_before_files(tmp_path):
    log_file = tmp_path / "audit.log"
    log_file.write_text(SAMPLE_AUDIT_LOG)
    provider = AuditProvider(log_file, follow=False)
    provider.close()
    assert _collect(provider) == []
    provider.initialize()
    assert len(_collect(provider)) == 5


def test_follow_mode_tails_new_lines(tmp_path):
    log_file = tmp_path / "audit.log"
    log_file.write_text(SAMPLE_AUDIT_LOG)
    provider = AuditProvider(log_file)
    events = []
    thread = threading.Thread(target=provider.send_events, args=(events.append,), daemon=True)
    thread.start()

    deadline = time.monotonic() + 5
    serial = 1000
    while not events and time.monotonic() < deadline:
        with open(log_file, "a") as fh:
            fh.write(f"type=CWD msg=audit(5.0:{serial}): cwd=/tailed\n")
        serial += 1
        time.sleep(0.1)

    provider.close()
    thread.join(timeout=5)
    assert not thread.is_alive()
    assert events
    assert all(evt.value("cwd") == "/tailed" for evt in events)


def test_read_line_strips_endings_and_signals_eof():
    stream = io.BytesIO(b"first\r\nsecond\n\nlast")
    assert read_line(stream) == "first"
    assert read_line(stream) == "second"
    assert read_line(stream) == ""
    assert read_line(stream) == "last"
    assert read_line(stream) is None


def test_read_line_truncates_oversized_line():
    stream = io.BytesIO(b"x" * (MAX_AUDIT_LINE_BYTES * 3) + b"\nnext\n")
    line = read_line(stream)
    assert len(line) == MAX_AUDIT_LINE_BYTES
    assert read_line(stream) == "next"