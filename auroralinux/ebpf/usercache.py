"""Least-recently-used cache mapping user ids to user names."""

from __future__ import annotations

import pwd
import threading
from collections import OrderedDict


class UserCache:
    """Resolves uids to user names and remembers a bounded number of answers.

    A uid without a passwd entry resolves to its decimal string.
    """

    def __init__(self, size: int = 256) -> None:
        if size <= 0:
            raise ValueError("must provide a positive size")
        self.size = size
        self._entries: OrderedDict[int, str] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def lookup(self, uid: int) -> str:
        """Return the user name for ``uid``."""
        with self._lock:
            name = self._entries.get(uid)
            if name is not None:
                self._entries.move_to_end(uid)
                return name

        try:
            name = pwd.getpwuid(uid).pw_name
        except (KeyError, OverflowError):
            name = str(uid)

        with self._lock:
            self._entries[uid] = name
            self._entries.move_to_end(uid)
            while len(self._entries) > self.size:
                self._entries.popitem(last=False)
        return name