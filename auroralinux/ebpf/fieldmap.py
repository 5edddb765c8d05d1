"""Field maps for the events built from kernel telemetry records."""

from __future__ import annotations

import ipaddress

from auroralinux.ebpf.procfs import MAX_CMDLINE_BYTES

TRUNCATION_SUFFIX = " ...(truncated)"

# bpf() commands, in the kernel's numbering order.
_BPF_COMMANDS = """
    MAP_CREATE MAP_LOOKUP_ELEM MAP_UPDATE_ELEM MAP_DELETE_ELEM MAP_GET_NEXT_KEY
    PROG_LOAD OBJ_PIN OBJ_GET PROG_ATTACH PROG_DETACH PROG_TEST_RUN
    PROG_GET_NEXT_ID MAP_GET_NEXT_ID PROG_GET_FD_BY_ID MAP_GET_FD_BY_ID
    OBJ_GET_INFO_BY_FD PROG_QUERY RAW_TRACEPOINT_OPEN BTF_LOAD BTF_GET_FD_BY_ID
    TASK_FD_QUERY MAP_LOOKUP_AND_DELETE_ELEM MAP_FREEZE BTF_GET_NEXT_ID
    MAP_LOOKUP_BATCH MAP_LOOKUP_AND_DELETE_BATCH MAP_UPDATE_BATCH MAP_DELETE_BATCH
    LINK_CREATE LINK_UPDATE LINK_GET_FD_BY_ID LINK_GET_NEXT_ID ENABLE_STATS
    ITER_CREATE LINK_DETACH PROG_BIND_MAP
""".split()

# BPF program types, in the kernel's numbering order.
_BPF_PROG_TYPES = """
    UNSPEC SOCKET_FILTER KPROBE SCHED_CLS SCHED_ACT TRACEPOINT XDP PERF_EVENT
    CGROUP_SKB CGROUP_SOCK LWT_IN LWT_OUT LWT_XMIT SOCK_OPS SK_SKB CGROUP_DEVICE
    SK_MSG RAW_TRACEPOINT CGROUP_SOCK_ADDR LWT_SEG6LOCAL LIRC_MODE2 SK_REUSEPORT
    FLOW_DISSECTOR CGROUP_SYSCTL RAW_TRACEPOINT_WRITABLE CGROUP_SOCKOPT TRACING
    STRUCT_OPS EXT LSM SK_LOOKUP SYSCALL
""".split()

BPF_CMD_NAMES = {number: f"BPF_{name}" for number, name in enumerate(_BPF_COMMANDS)}
BPF_PROG_TYPE_NAMES = dict(enumerate(_BPF_PROG_TYPES))


def join_cmdline(data: bytes) -> tuple[str, bool]:
    """Turn NUL-separated cmdline bytes into a space-separated command line.

    Returns the command line and whether the data filled the whole read
    buffer, in which case a truncation marker is appended.
    """
    if not data:
        return "", False
    text = bytes(data).replace(b"\x00", b" ").decode("utf-8", errors="replace").rstrip(" ")
    truncated = len(data) >= MAX_CMDLINE_BYTES
    if truncated:
        text += TRUNCATION_SUFFIX
    return text, truncated


def build_exec_fields(
    pid: int,
    ppid: int,
    uid: int,
    bpf_filename: str,
    image: str,
    cmdline: str,
    truncated: bool,
    cwd: str,
    login_uid: str,
    username: str,
    parent_image: str,
    parent_cmdline: str,
) -> dict[str, str]:
    """Fields of a process creation event."""
    fields = dict(
        Image=image,
        CommandLine=cmdline,
        ParentImage=parent_image,
        ParentCommandLine=parent_cmdline,
        User=username,
        LogonId=login_uid,
        CurrentDirectory=cwd,
        ProcessId=str(pid),
        ParentProcessId=str(ppid),
    )
    if truncated:
        fields["CommandLineTruncated"] = "true"
    return fields


def build_file_fields(
    pid: int,
    uid: int,
    target_filename: str,
    image: str,
    username: str,
    flags: int,
) -> dict[str, str]:
    """Fields of a file event."""
    return dict(
        TargetFilename=target_filename,
        Image=image,
        User=username,
        ProcessId=str(pid),
        FileFlags=str(flags),
    )


def build_net_fields(
    pid: int,
    uid: int,
    image: str,
    username: str,
    src_ip: str,
    src_port: int,
    dst_ip: str,
    dst_port: int,
    initiated: bool,
) -> dict[str, str]:
    """Fields of a network connection event."""
    return dict(
        Image=image,
        DestinationIp=dst_ip,
        DestinationPort=str(dst_port),
        SourceIp=src_ip,
        SourcePort=str(src_port),
        User=username,
        ProcessId=str(pid),
        Protocol="tcp",
        DestinationHostname="",
        Initiated=str(bool(initiated)).lower(),
    )


def bpf_cmd_name(cmd: int) -> str:
    """Name of a bpf() command, or its number when unknown."""
    return BPF_CMD_NAMES.get(cmd, str(cmd))


def bpf_prog_type_name(prog_type: int) -> str:
    """Name of a BPF program type, or its number when unknown."""
    return BPF_PROG_TYPE_NAMES.get(prog_type, str(prog_type))


def build_bpf_fields(
    pid: int,
    uid: int,
    image: str,
    username: str,
    cmd: int,
    prog_type: int,
    ret_val: int,
    prog_name: str,
) -> dict[str, str]:
    """Fields of a bpf() syscall event."""
    return dict(
        Image=image,
        User=username,
        ProcessId=str(pid),
        BpfCommand=bpf_cmd_name(cmd),
        BpfProgramType=bpf_prog_type_name(prog_type),
        BpfProgramId=str(ret_val),
        BpfProgramName=prog_name or "-",
    )


def format_ipv4(addr: bytes) -> str:
    """Dotted-decimal form of the IPv4 part (bytes 12-15) of a 16-byte address."""
    return ".".join(map(str, bytes(addr)[12:16]))


def format_ipv6(addr: bytes) -> str:
    """Text form of a 16-byte IPv6 address."""
    ip = ipaddress.IPv6Address(bytes(addr))
    mapped = ip.ipv4_mapped
    if mapped is not None:
        return f"::ffff:{mapped}"
    return ip.compressed