"""
tests/test_codec.py -- Unit tests for credstore/codec.py.

Parsers, serializers and sanity checks are pure functions, so every test
calls them directly with inline file content -- no fixtures, no disk.
"""

import re

import pytest

from core.errors import (
    CapacityError,
    DuplicateUserError,
    MissingInputError,
    UnauthorizedError,
    ValidationError,
)
from credstore.codec import (
    add_user_to_htgroup,
    ensure_uri_safe,
    get_groups_for_user,
    is_uri_safe,
    parse_htgroup,
    parse_htpasswd,
    sanity_check,
    sanity_check_groups,
    serialize_htgroups,
    serialize_user,
)


def _plain_verify(password: str, hashed: str) -> bool:
    return hashed == "{PLAIN}" + password


# ===========================================================================
# htpasswd
# ===========================================================================


class TestParseHtpasswd:
    def test_user_hash_comment(self):
        assert parse_htpasswd("bob:{PLAIN}hunter2:comment\n") == {"bob": "{PLAIN}hunter2"}

    def test_comment_is_optional(self):
        assert parse_htpasswd("alice:$apr1$x$y") == {"alice": "$apr1$x$y"}

    def test_lines_without_colon_are_skipped(self):
        assert parse_htpasswd("garbage\nalice:h1\n\n") == {"alice": "h1"}

    def test_colons_inside_comment_do_not_shift_fields(self):
        assert parse_htpasswd("alice:h1:created 12:30:00\n") == {"alice": "h1"}

    def test_crlf_line_endings(self):
        assert parse_htpasswd("alice:h1\r\nbob:h2\r\n") == {"alice": "h1", "bob": "h2"}

    def test_empty_input(self):
        assert parse_htpasswd("") == {}


class TestSerializeUser:
    def test_record_shape(self):
        body = serialize_user("", "alice", "hash")
        assert re.fullmatch(r"alice:hash:autocreated \d{4}-\d\d-\d\dT\d\d:\d\d:\d\d\.\d{3}Z\n", body)

    def test_round_trip(self):
        assert parse_htpasswd(serialize_user("", "alice", "hash")) == {"alice": "hash"}

    def test_appends_after_existing_newline(self):
        body = serialize_user("bob:h2:c\n", "alice", "hash")
        assert body.startswith("bob:h2:c\nalice:hash:")

    def test_inserts_newline_when_missing(self):
        body = serialize_user("bob:h2", "alice", "hash")
        assert body.startswith("bob:h2\nalice:hash:")
        assert parse_htpasswd(body) == {"bob": "h2", "alice": "hash"}


class TestUriSafe:
    @pytest.mark.parametrize("user", ["alice", "a.b-c_d~e", "o'neil", "x(1)!*"])
    def test_safe_names(self, user):
        assert is_uri_safe(user)

    @pytest.mark.parametrize("user", ["weird name", "a/b", "a:b", "ünï", "a%20b", "a@b"])
    def test_unsafe_names(self, user):
        assert not is_uri_safe(user)

    def test_ensure_raises_validation_error_with_409(self):
        with pytest.raises(ValidationError) as exc:
            ensure_uri_safe("weird name")
        assert exc.value.status == 409


class TestSanityCheck:
    users = {"bob": "{PLAIN}hunter2"}

    @pytest.mark.parametrize("user, password", [("", "pw"), ("alice", ""), (None, None)])
    def test_missing_input(self, user, password):
        with pytest.raises(MissingInputError) as exc:
            sanity_check(user, password, _plain_verify, self.users, None)
        assert exc.value.status == 400

    def test_existing_user_with_matching_password(self):
        with pytest.raises(DuplicateUserError) as exc:
            sanity_check("bob", "hunter2", _plain_verify, self.users, None)
        assert exc.value.status == 409

    def test_existing_user_with_other_password(self):
        with pytest.raises(UnauthorizedError) as exc:
            sanity_check("bob", "nope", _plain_verify, self.users, None)
        assert exc.value.status == 401

    def test_capacity_reached(self):
        with pytest.raises(CapacityError) as exc:
            sanity_check("alice", "pw", _plain_verify, self.users, 1)
        assert exc.value.status == 403

    def test_passes_under_capacity_and_unlimited(self):
        sanity_check("alice", "pw", _plain_verify, self.users, 2)
        sanity_check("alice", "pw", _plain_verify, self.users, None)


# ===========================================================================
# htgroup
# ===========================================================================


class TestParseHtgroup:
    def test_members_split_on_spaces(self):
        assert parse_htgroup("admins: bob carol") == {"admins": ["bob", "carol"]}

    def test_group_without_colon_has_no_members(self):
        assert parse_htgroup("empty\n") == {"empty": []}

    def test_group_with_colon_but_no_members(self):
        assert parse_htgroup("empty: \n") == {"empty": []}

    def test_group_name_is_not_trimmed(self):
        assert parse_htgroup(" admins : bob") == {" admins ": ["bob"]}

    def test_multiple_lines_keep_order(self):
        groups = parse_htgroup("a: x y\nb: y\n\nc:\n")
        assert list(groups) == ["a", "b", "c"]
        assert groups == {"a": ["x", "y"], "b": ["y"], "c": []}


class TestSerializeHtgroups:
    def test_records_are_newline_terminated(self):
        assert serialize_htgroups({"a": ["x", "y"], "b": []}) == "a: x y\nb: \n"

    def test_round_trip(self):
        assert parse_htgroup(serialize_htgroups({"g": ["a", "b"]})) == {"g": ["a", "b"]}

    def test_empty_map(self):
        assert serialize_htgroups({}) == ""


class TestAddUserToHtgroup:
    def test_adds_to_existing_group(self):
        groups = {"admins": ["bob"]}
        assert add_user_to_htgroup(groups, "carol", ["admins"]) is True
        assert groups == {"admins": ["bob", "carol"]}

    def test_creates_missing_group(self):
        groups = {}
        assert add_user_to_htgroup(groups, "carol", ["new"]) is True
        assert groups == {"new": ["carol"]}

    def test_already_member_is_not_modified(self):
        groups = {"admins": ["bob"]}
        assert add_user_to_htgroup(groups, "bob", ["admins"]) is False
        assert groups == {"admins": ["bob"]}

    def test_duplicate_names_in_request_add_once(self):
        groups = {}
        add_user_to_htgroup(groups, "bob", ["g", "g"])
        assert groups == {"g": ["bob"]}

    def test_rejects_unsafe_username(self):
        with pytest.raises(ValidationError):
            add_user_to_htgroup({}, "weird name", ["g"])


class TestGetGroupsForUser:
    def test_self_group_first(self):
        groups = {"admins": ["bob", "carol"], "dev": ["carol"], "ops": ["bob"]}
        assert get_groups_for_user(groups, "bob") == ["bob", "admins", "ops"]

    def test_no_memberships(self):
        assert get_groups_for_user({"dev": ["carol"]}, "bob") == ["bob"]


class TestSanityCheckGroups:
    def test_string_equals_list(self):
        assert sanity_check_groups("a b c") == sanity_check_groups(["a", "b", "c"]) == ["a", "b", "c"]

    def test_extra_spaces_ignored(self):
        assert sanity_check_groups(" a  b ") == ["a", "b"]

    @pytest.mark.parametrize("groups", [None, "", [], ()])
    def test_empty_input(self, groups):
        assert sanity_check_groups(groups) == []

    def test_non_string_entries_dropped_with_warning(self, caplog):
        with caplog.at_level("WARNING", logger="credstore.codec"):
            assert sanity_check_groups(["a", 1, None, "b"]) == ["a", "b"]
        assert "non-string" in caplog.text

    def test_unsupported_type(self, caplog):
        with caplog.at_level("WARNING", logger="credstore.codec"):
            assert sanity_check_groups(42) == []
        assert "int" in caplog.text
