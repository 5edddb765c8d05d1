# auroralinux

Telemetry providers and log formatters for Linux host detection. The
package turns raw Linux activity into normalized events whose fields line up
with what Sigma rules expect, and renders log output as JSON, syslog or
plain text lines.

## What is inside

- `auroralinux.events` – the normalized `Event` (with `value`, `add_field`
  and `items`), its `EventIdentifier`, and the `EventProvider` protocol
  every provider follows (`initialize`, `close`, `add_source`,
  `send_events`, `lost_events`).
- `auroralinux.formatters` – `JSONFormatter`, `SyslogFormatter` and
  `TextFormatter` for `LogEntry` objects at a given `Level`.
- `auroralinux.audit.parser`, `.grouper`, `.mapper`, `.provider` – read
  auditd log files. Lines sharing one `TIMESTAMP:SERIAL` id are grouped into
  an `AuditRecord`, and each line of the record becomes one event.
  `SYSCALL` fields (such as `key`, `exe`, `pid`) are merged into every event
  of the record, and hex-encoded `PROCTITLE` and `EXECVE` arguments are
  decoded.
- `auroralinux.ebpf.fieldmap` – field construction for process creation,
  file, network and bpf-syscall events, plus IP address and bpf command /
  program type naming.
- `auroralinux.ebpf.procfs` – `/proc` helpers: executable, command line,
  working directory, login uid, file descriptor links, and resolution of
  `openat` path names.
- `auroralinux.ebpf.usercache` – `UserCache`, a bounded LRU map from uid
  to user name.
- `auroralinux.ebpf.records` – decoding of the binary ring buffer records
  (`ExecRecord`, `FileRecord`, `NetRecord`, `BpfRecord`), boot time and
  timestamp conversion, and `classify_bpf_error`.
- `auroralinux.ebpf.listener` – the `Listener` provider, which reads from
  monitor handles and builds events from their records.
- `auroralinux.replay` – `ReplayProvider` plays back events recorded as
  JSON lines, for testing and CI where no kernel tracing is available.

## Parsing audit lines

```python
from auroralinux.audit.parser import parse_line
from auroralinux.audit.grouper import RecordGrouper
from auroralinux.audit.mapper import map_record_to_events

lines = [
    'type=SYSCALL msg=audit(1775057806.000:700): syscall=59 pid=5000 exe="/usr/bin/ls"',
    'type=EXECVE msg=audit(1775057806.000:700): argc=2 a0="ls" a1="-la"',
]

grouper = RecordGrouper()
for text in lines:
    grouper.add_line(parse_line(text))

for event in map_record_to_events(grouper.flush()):
    print(event.value("type"), event.value("exe"))
```

A malformed line raises `AuditParseError`; a blank line gives `None`.

## Reading an audit log

`AuditProvider` reads one or more audit log files and calls a callback for
every event. By default it follows the last file like `tail -f` until
`close()` is called; pass `follow=False` (or set the `follow` attribute) to
read the files once and return.

```python
from auroralinux.audit.provider import AuditProvider

provider = AuditProvider("/var/log/audit/audit.log", follow=False)
provider.initialize()
provider.send_events(lambda event: print(event.value("type")))
print("unparseable lines:", provider.lost_events())
```

## Replaying recorded events

Each line of a replay file is a JSON object. The keys `_provider`,
`_eventID`, `_source` and `_timestamp` describe the event; every other key
becomes a string field. Calling `add_source` restricts playback to the
named sources; with no sources added, every event is played.

```python
from auroralinux.replay import ReplayProvider

replay = ReplayProvider("events.jsonl")
replay.add_source("LinuxEBPF:ProcessExec")
replay.send_events(lambda event: print(event.value("Image")))
```

## Formatting log output

```python
from datetime import datetime, timezone
from auroralinux.formatters import JSONFormatter, Level, LogEntry, SyslogFormatter

entry = LogEntry(
    time=datetime(2026, 2, 11, 12, 0, tzinfo=timezone.utc),
    level=Level.WARNING,
    message="Sigma match",
    data={"Image": "/usr/bin/bash"},
)

print(JSONFormatter().format(entry), end="")
print(SyslogFormatter(hostname="test-host", facility=1).format(entry), end="")
```

The syslog line reads
`<12>1 2026-02-11T12:00:00Z test-host aurora - - - Sigma match Image="/usr/bin/bash"`.
Field keys are sorted, string values are quoted and escaped, and unsafe keys
are quoted so that one entry always stays on one line. A facility outside
0–23 falls back to 1; an empty host name falls back to the machine's name.

## The kernel listener

`Listener` takes an optional correlator and a mapping of source names
(`LinuxEBPF:ProcessExec`, `LinuxEBPF:FileCreate`, `LinuxEBPF:NetConnect`,
`LinuxEBPF:BpfEvent`) to initializer callables. Each initializer returns a
handle with `read()` (raising `ReaderClosed` when done), `close()` and
`lost_events()`. `initialize()` disables any source whose initializer fails
and raises `BPFError` only when all requested sources failed.

## What this package does not do

- It does not load or attach kernel tracing programs. No compiled programs
  ship with it, so `load_monitor` always raises `BPFError`; a `Listener`
  source gets events only through an initializer you supply.
- It does not match events against Sigma rules, and it has no command-line
  program or service: it supplies the providers and formatters that such a
  program would use.

## Requirements

Python 3.10 or later, no third-party dependencies. The `/proc` helpers and
the user cache are meaningful on Linux only.