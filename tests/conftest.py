"""
tests/conftest.py -- Shared fixtures for credential store tests.

This module provides:
  - settings: Settings pointing at htpasswd/htgroup files under tmp_path
  - store: an HtpasswdStore built from those settings
  - write_users / write_groups: helpers that seed the backing files

Design: every test gets its own tmp_path, so stores never share files or
in-memory state. Coroutines are driven with asyncio.run() directly -- each
store is created per test, so its per-path asyncio locks never outlive the
event loop that used them.

The backing files are NOT created up front; tests that need the
"file does not exist yet" bootstrap path get it by default.
"""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from core.config import Settings
from credstore.store import HtpasswdStore


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings with relative file names resolved against tmp_path."""
    return Settings(file="htpasswd", group_file="htgroup", base_dir=tmp_path, lock_timeout=5)


@pytest.fixture
def store(settings: Settings) -> HtpasswdStore:
    return HtpasswdStore(settings)


@pytest.fixture
def write_users(settings: Settings):
    """Return a function that writes raw htpasswd content."""

    def _write(content: str) -> Path:
        settings.users_path.write_text(content, encoding="utf-8")
        return settings.users_path

    return _write


@pytest.fixture
def write_groups(settings: Settings):
    """Return a function that writes raw htgroup content."""

    def _write(content: str) -> Path:
        settings.groups_path.write_text(content, encoding="utf-8")
        return settings.groups_path

    return _write


@pytest.fixture
def backdate():
    """Return a function that moves a file's mtime into the past.

    Lets tests tell "file rewritten" from "file untouched" without relying on
    the filesystem's timestamp granularity. The function returns the new
    st_mtime_ns.
    """

    def _backdate(path: Path, seconds: int = 10) -> int:
        st = path.stat()
        os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns - seconds * 1_000_000_000))
        return path.stat().st_mtime_ns

    return _backdate
