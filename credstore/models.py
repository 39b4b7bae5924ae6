"""
credstore/models.py -- In-memory state of a credential store.

Pattern: Data class (pure data container, zero logic). The store owns one
StoreSnapshot and mutates it in place; snapshot() hands callers a copy.

The stamps record the backing files as last seen by a reload:
(st_mtime_ns, st_ino, st_size). mtime alone is too coarse on most
filesystems -- two writes inside one clock tick share it -- but every write
replaces the file, so the inode changes even when the mtime does not.
None means the file has never been read (or did not exist).

Layer rule: no imports from core/ or main.py.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

FileStamp = tuple[int, int, int]


def file_stamp(st: os.stat_result) -> FileStamp:
    return (st.st_mtime_ns, st.st_ino, st.st_size)


@dataclass
class StoreSnapshot:
    """Users and groups mirrored from disk, plus the stamps they were read at.

    users maps username -> password hash (the comment field is not kept).
    groups maps group name -> member usernames, in file order.
    """

    users: dict[str, str] = field(default_factory=dict)
    groups: dict[str, list[str]] = field(default_factory=dict)
    users_stamp: FileStamp | None = None
    groups_stamp: FileStamp | None = None

    def copy(self) -> StoreSnapshot:
        return StoreSnapshot(
            users=dict(self.users),
            groups={name: list(members) for name, members in self.groups.items()},
            users_stamp=self.users_stamp,
            groups_stamp=self.groups_stamp,
        )
