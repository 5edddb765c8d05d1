"""Helpers that read process details from /proc."""

from __future__ import annotations

import os

MAX_CMDLINE_BYTES = 32768
LOGIN_UID_UNSET = "4294967295"
AT_FDCWD = -100

_DELETED_SUFFIX = " (deleted)"


def read_exe_link(pid: int) -> str:
    """Return the binary path behind /proc/PID/exe.

    The kernel's " (deleted)" marker for unlinked binaries is removed.
    Raises OSError when the link cannot be read.
    """
    return os.readlink(f"/proc/{pid}/exe").removesuffix(_DELETED_SUFFIX)


def read_cmdline(pid: int) -> bytes:
    """Return the raw NUL-separated bytes of /proc/PID/cmdline, capped in size."""
    with open(f"/proc/{pid}/cmdline", "rb") as stream:
        return stream.read(MAX_CMDLINE_BYTES)


def read_cwd(pid: int) -> str:
    """Return the working directory of a process. Raises OSError on failure."""
    return os.readlink(f"/proc/{pid}/cwd")


def read_login_uid(pid: int) -> str:
    """Return the login uid of a process, or "" when it is unset or unreadable."""
    try:
        with open(f"/proc/{pid}/loginuid", encoding="utf-8", errors="replace") as stream:
            value = stream.read().strip()
    except OSError:
        return ""
    return "" if value == LOGIN_UID_UNSET else value


def read_fd_link(pid: int, fd: int) -> str:
    """Return the target of /proc/PID/fd/FD. Raises OSError on failure."""
    return os.readlink(f"/proc/{pid}/fd/{fd}")


def _eval_symlinks(path: str) -> str:
    return os.path.realpath(path, strict=True)


def resolve_filename(pid: int, filename: str, dfd: int) -> str:
    """Turn a path passed to openat into an absolute path.

    Absolute names have their symlinks resolved. Relative names are joined to
    the process working directory when ``dfd`` is AT_FDCWD, otherwise to the
    directory that ``dfd`` refers to. Whatever cannot be resolved is returned
    as far as it got.
    """
    if os.path.isabs(filename):
        try:
            return _eval_symlinks(filename)
        except (OSError, RuntimeError):
            return filename

    try:
        base = read_cwd(pid) if dfd == AT_FDCWD else read_fd_link(pid, dfd)
    except OSError:
        return filename

    full = os.path.normpath(os.path.join(base, filename))
    try:
        return _eval_symlinks(full)
    except (OSError, RuntimeError):
        return full