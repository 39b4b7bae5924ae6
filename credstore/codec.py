"""
credstore/codec.py -- Parsers, serializers and sanity checks for htpasswd/htgroup.

These are pure functions (no I/O, no store state) so they can be tested by
calling them directly with inline file contents.

htpasswd format (one record per line):
    username:hash:comment
  The comment is optional and discarded on parse. Lines without a hash field
  are skipped. New records get an "autocreated <ISO timestamp>" comment.

htgroup format (one record per line):
    groupname: user1 user2 user3
  Exactly one colon ends the group name; members are single-space separated.
  The group name is kept verbatim. Empty member tokens (the one produced by
  the conventional space after the colon) are dropped.

Records are always written newline-terminated. Older writers concatenated
group records without a separator; a file written that way still parses as
one (malformed) group line, it is never rewritten into that shape.

Layer rule: imports from core/ only.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional
from urllib.parse import quote

from core.errors import (
    CapacityError,
    DuplicateUserError,
    MissingInputError,
    UnauthorizedError,
    ValidationError,
)

logger = logging.getLogger("credstore.codec")

# Characters encodeURIComponent leaves alone on top of quote()'s own safe set.
_URI_COMPONENT_SAFE = "!*'()"


def _lines(text: str) -> list[str]:
    return [line.rstrip("\r") for line in text.split("\n")]


# ---------------------------------------------------------------------------
# Username validation
# ---------------------------------------------------------------------------


def is_uri_safe(user: str) -> bool:
    """True if user is equal to its own percent-encoding."""
    return quote(user, safe=_URI_COMPONENT_SAFE) == user


def ensure_uri_safe(user: str) -> None:
    if not is_uri_safe(user):
        raise ValidationError("username should not contain non-uri-safe characters")


# ---------------------------------------------------------------------------
# htpasswd
# ---------------------------------------------------------------------------


def parse_htpasswd(text: str) -> dict[str, str]:
    """Convert htpasswd lines to a {username: hash} dict."""
    users: dict[str, str] = {}
    for line in _lines(text):
        if not line:
            continue
        fields = line.split(":", 2)
        if len(fields) > 1:
            users[fields[0]] = fields[1]
    return users


def _timestamp() -> str:
    # Same shape as JavaScript's Date.toJSON(): 2024-01-31T12:00:00.000Z
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def serialize_user(body: str, user: str, hashed: str) -> str:
    """Return body with a new `user:hash:comment` record appended.

    If body does not end in a newline one is inserted first, so the previous
    record is never glued to the new one.
    """
    record = f"{user}:{hashed}:autocreated {_timestamp()}\n"
    if body and not body.endswith("\n"):
        record = "\n" + record
    return body + record


def sanity_check(
    user: str,
    password: str,
    verify_fn: Callable[[str, str], bool],
    users: dict[str, str],
    max_users: Optional[int],
) -> None:
    """Raise if user cannot be registered against the given users map.

    Checks, in order: both inputs present, user not already registered
    (DuplicateUserError if the password matches the existing hash,
    UnauthorizedError otherwise), then the max_users capacity (None means
    unlimited).
    """
    if not user or not password:
        raise MissingInputError("username and password is required")

    if user in users:
        if verify_fn(password, users[user]):
            raise DuplicateUserError("username is already registered")
        raise UnauthorizedError("unauthorized access")

    if max_users is not None and len(users) >= max_users:
        raise CapacityError("maximum amount of users reached")


# ---------------------------------------------------------------------------
# htgroup
# ---------------------------------------------------------------------------


def parse_htgroup(text: str) -> dict[str, list[str]]:
    """Convert htgroup lines to a {group: [members]} dict.

    A line without a colon is a group with no members.
    """
    groups: dict[str, list[str]] = {}
    for line in _lines(text):
        if not line:
            continue
        fields = line.split(":", 1)
        members = [m for m in fields[1].split(" ") if m] if len(fields) > 1 else []
        groups[fields[0]] = members
    return groups


def serialize_htgroups(groups: dict[str, list[str]]) -> str:
    """Render groups back into htgroup lines, in dict order."""
    return "".join(f"{name}: {' '.join(members)}\n" for name, members in groups.items())


def add_user_to_htgroup(groups: dict[str, list[str]], user: str, names: list[str]) -> bool:
    """Add user to every group in names, creating missing groups.

    Mutates groups in place. Returns True if any membership changed.
    """
    ensure_uri_safe(user)

    modified = False
    for name in names:
        members = groups.setdefault(name, [])
        if user not in members:
            members.append(user)
            modified = True
    return modified


def get_groups_for_user(groups: dict[str, list[str]], user: str) -> list[str]:
    """Return every group user belongs to, with the user's own name first."""
    return [user] + [name for name, members in groups.items() if user in members]


def sanity_check_groups(groups: Any) -> list[str]:
    """Normalise a group argument to a list of group names.

    Accepts a space-separated string or a list/tuple of strings. Non-string
    entries are dropped with a warning; None, empty input and any other type
    give an empty list.
    """
    if not groups:
        return []
    if isinstance(groups, str):
        return [name for name in groups.split(" ") if name]
    if isinstance(groups, (list, tuple)):
        names: list[str] = []
        for name in groups:
            if not isinstance(name, str):
                logger.warning("Ignoring non-string group name %r", name)
                continue
            if name:
                names.append(name)
        return names
    logger.warning("Ignoring groups argument of type %s", type(groups).__name__)
    return []
