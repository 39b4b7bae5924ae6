"""
credstore/store.py -- htpasswd/htgroup-backed credential store.

Pattern: Repository over two flat files. HtpasswdStore keeps an in-memory
mirror of both files (a StoreSnapshot) and coordinates codec, hashing and
locking to keep the files consistent when several processes edit them.

Caching:
  reload() / reload_groups() stat the backing file and only re-parse when its
  stamp (mtime, inode, size) changed since the last look. The parsed content
  is merged over the in-memory map. Mutations replace the map with a fresh
  parse instead, so their sanity checks see exactly what is on disk.

Mutations (add_user, add_user_to_groups) run this sequence, never reordered:
    per-path mutex -> advisory lock -> read -> parse -> validate -> write
    -> unlock -> forced reload -> release mutex
  The per-path asyncio.Lock keeps two coroutines of this process from
  polling the same flock; the flock keeps other processes out. The lock is
  released on every exit path, including validation failures after it was
  taken.

Errors:
  Sanity and validation errors (core.errors) are raised before any file is
  touched where possible and re-checked under the lock. OS errors surface
  unchanged after the lock is released. A failed write leaves the
  in-memory maps as they were on disk. Bytes that are not valid UTF-8 are
  carried through as surrogate escapes, so legacy files never make a read
  fail and existing lines are written back byte for byte. A missing backing
  file means "no users/groups yet" everywhere.

Usage:
    store = HtpasswdStore(Settings(file="htpasswd", group_file="htgroup"))
    await store.add_user("alice", "secret")
    await store.add_user_to_groups("alice", "admins dev")
    groups = await store.authenticate("alice", "secret")   # ["alice", "admins", "dev"]

Layer rule: imports from core/ and credstore/ only.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Literal, Optional, Union

from core.config import Settings
from core.errors import MissingInputError
from credstore.codec import (
    add_user_to_htgroup,
    ensure_uri_safe,
    get_groups_for_user,
    parse_htgroup,
    parse_htpasswd,
    sanity_check,
    sanity_check_groups,
    serialize_htgroups,
    serialize_user,
)
from credstore.hashing import hash_password, verify_password
from credstore.locking import locked_file, write_file
from credstore.models import FileStamp, StoreSnapshot, file_stamp


class HtpasswdStore:
    """Authenticate against, and register users into, htpasswd/htgroup files.

    One instance per pair of files. All public methods are coroutines; none
    of them spawn background work.
    """

    def __init__(self, settings: Settings, logger: Optional[logging.Logger] = None) -> None:
        self.settings = settings
        self.logger = logger or logging.getLogger("credstore.store")

        self.path: Path = settings.users_path
        self.group_path: Path = settings.groups_path
        self.max_users: Optional[int] = settings.max_users

        self._state = StoreSnapshot()
        self._mutexes: dict[Path, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def users(self) -> dict[str, str]:
        return self._state.users

    @property
    def groups(self) -> dict[str, list[str]]:
        return self._state.groups

    def snapshot(self) -> StoreSnapshot:
        """Return a copy of the in-memory users, groups and file stamps."""
        return self._state.copy()

    def _mutex(self, path: Path) -> asyncio.Lock:
        return self._mutexes.setdefault(path, asyncio.Lock())

    def _locked(self, path: Path):
        return locked_file(
            path,
            timeout=self.settings.lock_timeout,
            poll_interval=self.settings.lock_poll_interval,
        )

    # ------------------------------------------------------------------
    # Reload
    # ------------------------------------------------------------------

    async def _read_if_changed(
        self, path: Path, last_stamp: Optional[FileStamp], force: bool
    ) -> tuple[Optional[FileStamp], Optional[str]]:
        """Return (stamp, text) if path changed since last_stamp, else (last_stamp, None).

        A missing file reads as unchanged; callers keep what they have.
        """
        try:
            stats = await asyncio.to_thread(path.stat)
        except FileNotFoundError:
            self.logger.debug("%s not found -- nothing to reload", path)
            return last_stamp, None
        stamp = file_stamp(stats)
        if not force and stamp == last_stamp:
            self.logger.debug("%s unchanged -- reload skipped", path)
            return last_stamp, None
        try:
            text = await asyncio.to_thread(path.read_text, encoding="utf-8", errors="surrogateescape")
        except FileNotFoundError:
            return last_stamp, None
        return stamp, text

    async def reload(self, force: bool = False) -> bool:
        """Merge the htpasswd file into memory if it changed. Returns True if re-parsed."""
        stamp, text = await self._read_if_changed(self.path, self._state.users_stamp, force)
        if text is None:
            return False
        self._state.users_stamp = stamp
        self._state.users.update(parse_htpasswd(text))
        self.logger.debug("Reloaded %d users from %s", len(self._state.users), self.path)
        return True

    async def reload_groups(self, force: bool = False) -> bool:
        """Merge the htgroup file into memory if it changed. Returns True if re-parsed."""
        stamp, text = await self._read_if_changed(self.group_path, self._state.groups_stamp, force)
        if text is None:
            return False
        self._state.groups_stamp = stamp
        self._state.groups.update(parse_htgroup(text))
        self.logger.debug("Reloaded %d groups from %s", len(self._state.groups), self.group_path)
        return True

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    async def authenticate(self, user: str, password: str) -> Union[list[str], Literal[False]]:
        """Return the user's groups (own name first) on success, False otherwise.

        An unknown user and a wrong password are indistinguishable.
        """
        await self.reload()

        user_hash = self._state.users.get(user)
        if not user_hash:
            return False
        if not await asyncio.to_thread(verify_password, password, user_hash):
            return False

        await self.reload_groups()
        return get_groups_for_user(self._state.groups, user)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def _check_new_user(self, user: str, password: str) -> None:
        sanity_check(user, password, verify_password, self._state.users, self.max_users)
        ensure_uri_safe(user)

    async def add_user(self, user: str, password: str) -> bool:
        """Append a new user to the htpasswd file.

        Raises MissingInputError, DuplicateUserError, UnauthorizedError,
        CapacityError or ValidationError (core.errors) if the user cannot be
        added, LockTimeoutError if the lock is not acquired in time, and
        OSError for I/O failures.
        """
        # Cheap check against the cached map so obvious rejects never lock.
        self._check_new_user(user, password)

        async with self._mutex(self.path):
            async with self._locked(self.path) as locked:
                body = locked.text
                self._state.users = parse_htpasswd(body)

                # Same checks against what is on disk now -- another process
                # may have added this user since our cached copy was read.
                self._check_new_user(user, password)

                hashed = await asyncio.to_thread(
                    hash_password, password, self.settings.algorithm, self.settings.rounds
                )
                await write_file(self.path, serialize_user(body, user, hashed).encode("utf-8", "surrogateescape"))

            await self.reload(force=True)

        self.logger.info("Added user %s to %s", user, self.path)
        return True

    async def add_user_to_groups(self, user: str, groups: Any) -> bool:
        """Add user to each of groups, creating groups that do not exist yet.

        groups may be a space-separated string or a list of strings. Returns
        True if the group file was rewritten, False if there was nothing to
        change (empty input, or the user was already in every group).
        """
        names = sanity_check_groups(groups)
        if not names:
            return False

        if not user:
            raise MissingInputError("username is required")
        ensure_uri_safe(user)

        async with self._mutex(self.group_path):
            async with self._locked(self.group_path) as locked:
                # Work on a local copy; the in-memory map only takes the new
                # membership once the file write has succeeded.
                current = parse_htgroup(locked.text)
                modified = add_user_to_htgroup(current, user, names)
                if modified:
                    await write_file(self.group_path, serialize_htgroups(current).encode("utf-8", "surrogateescape"))
                self._state.groups = current

            if modified:
                await self.reload_groups(force=True)

        if modified:
            self.logger.info("Added user %s to groups %s", user, ", ".join(names))
        else:
            self.logger.debug("User %s already in groups %s -- no write", user, ", ".join(names))
        return modified
