"""
credstore/locking.py -- Advisory file locking, reads and whole-file writes.

Lock model:
  The lock is an exclusive fcntl.flock() on a sibling "<name>.flock" file, not
  on the data file itself. Two consequences:
    - the lock can be taken before the data file exists (first-run bootstrap)
    - write_file() can swap in a new data file with os.replace() without
      invalidating the lock other processes are waiting on

  The .flock file stays in place after release; its existence alone means
  nothing. The suffix keeps it apart from the "<name>.lock" files that
  exclusive-create lockfile tools use, which would read a leftover file as a
  lock held forever.

  flock() is advisory: only processes that take the same lock are excluded.
  It is held per open file description, so two handles opened in the same
  process also exclude each other.

Lifecycle:
  lock_and_read() acquires the lock and reads the data file, and returns a
  LockedFile that still holds the lock. The caller must release it with
  unlock(), normally via the locked_file() context manager, which releases on
  every exit path.

  A missing data file is not an error: LockedFile.found is False and data is
  None, and the caller starts from an empty store.

Timeouts:
  Acquisition polls with LOCK_NB and asyncio.sleep() so the event loop is
  never blocked. With timeout=None it waits indefinitely; otherwise
  LockTimeoutError is raised once the deadline passes.

Layer rule: imports from core/ only.
"""

from __future__ import annotations

import asyncio
import fcntl
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, BinaryIO, Optional

from core.errors import LockTimeoutError

logger = logging.getLogger("credstore.locking")

_DEFAULT_POLL_INTERVAL = 0.05


def lock_path_for(path: Path) -> Path:
    return path.with_name(path.name + ".flock")


class LockedFile:
    """A data file whose advisory lock is currently held.

    data is the file content read right after the lock was taken, or None if
    the file did not exist.
    """

    def __init__(self, path: Path, handle: BinaryIO, data: Optional[bytes]) -> None:
        self.path = path
        self.data = data
        self._handle: Optional[BinaryIO] = handle

    @property
    def found(self) -> bool:
        return self.data is not None

    @property
    def text(self) -> str:
        return (self.data or b"").decode("utf-8", "surrogateescape")

    @property
    def held(self) -> bool:
        return self._handle is not None

    def _release(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        finally:
            handle.close()


async def _acquire(handle: BinaryIO, path: Path, timeout: Optional[float], poll_interval: float) -> None:
    loop = asyncio.get_running_loop()
    deadline = None if timeout is None else loop.time() + timeout
    while True:
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            return
        except BlockingIOError:
            if deadline is not None and loop.time() >= deadline:
                raise LockTimeoutError(f"timed out waiting for lock on {path}") from None
            await asyncio.sleep(poll_interval)


async def lock_and_read(
    path: Path,
    timeout: Optional[float] = None,
    poll_interval: float = _DEFAULT_POLL_INTERVAL,
) -> LockedFile:
    """Lock path and read it. The lock stays held -- release with unlock()."""
    path = Path(path)
    lock_path = lock_path_for(path)
    handle = await asyncio.to_thread(open, lock_path, "ab")
    try:
        await _acquire(handle, path, timeout, poll_interval)
    except BaseException:
        handle.close()
        raise
    logger.debug("Acquired lock on %s", path)

    locked = LockedFile(path, handle, None)
    try:
        locked.data = await asyncio.to_thread(path.read_bytes)
    except FileNotFoundError:
        logger.debug("%s does not exist yet -- starting empty", path)
    except BaseException:
        locked._release()
        raise
    return locked


async def unlock(locked: LockedFile) -> None:
    """Release the lock held by locked and close its handle. Idempotent."""
    if locked.held:
        await asyncio.to_thread(locked._release)
        logger.debug("Released lock on %s", locked.path)


@asynccontextmanager
async def locked_file(
    path: Path,
    timeout: Optional[float] = None,
    poll_interval: float = _DEFAULT_POLL_INTERVAL,
) -> AsyncIterator[LockedFile]:
    """Hold the lock on path for the duration of the block.

    Release failures are logged and swallowed so they never mask the outcome
    of the block itself.
    """
    locked = await lock_and_read(path, timeout=timeout, poll_interval=poll_interval)
    try:
        yield locked
    finally:
        try:
            await unlock(locked)
        except OSError:
            logger.warning("Could not release lock on %s", path, exc_info=True)


def _replace_contents(path: Path, data: bytes) -> None:
    tmp = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    try:
        with open(tmp, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        try:
            os.chmod(tmp, path.stat().st_mode & 0o7777)
        except FileNotFoundError:
            pass
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


async def write_file(path: Path, data: bytes) -> None:
    """Replace the whole content of path with data.

    The new content is written to a temporary sibling and renamed over path,
    so readers see either the old file or the new one, never a mix.
    """
    await asyncio.to_thread(_replace_contents, Path(path), data)
