"""Tests for structured-body path lookups."""

from reqflow.paths import lookup, parse_path


class TestParsePath:
    def test_mixed_segments(self):
        assert parse_path("data.items[0].id") == ["data", "items", 0, "id"]

    def test_body_prefix_and_leading_dot(self):
        assert parse_path("body.user.id") == ["user", "id"]
        assert parse_path(".user.id") == ["user", "id"]

    def test_iteration_slice_and_bracket_key(self):
        assert parse_path("a[].b") == ["a", None, "b"]
        assert parse_path("a[1:].b") == ["a", (1, None), "b"]
        assert parse_path("headers[Content-Type]") == ["headers", "Content-Type"]

    def test_numeric_dot_segment(self):
        assert parse_path("items.2") == ["items", 2]

    def test_bracket_key_may_hold_dots_and_colons(self):
        assert parse_path("headers[a.b]") == ["headers", "a.b"]
        assert parse_path("map[x:y]") == ["map", "x:y"]
        assert parse_path("items[ -2 ]") == ["items", -2]
        assert parse_path("items[:-1]") == ["items", (None, -1)]


class TestLookup:
    DATA = {
        "user": {"Name": "Ann", "roles": ["admin", "dev"]},
        "items": [{"id": 1}, {"id": 2, "tag": "x"}, {"id": 3, "tag": "y"}],
        "empty": None,
    }

    def test_nested_key(self):
        assert lookup(self.DATA, "user.roles[1]") == (True, "dev")

    def test_case_insensitive_key_fallback(self):
        assert lookup(self.DATA, "user.name") == (True, "Ann")

    def test_negative_index(self):
        assert lookup(self.DATA, "items[-1].id") == (True, 3)

    def test_first_match_across_iteration(self):
        assert lookup(self.DATA, "items[].tag") == (True, "x")

    def test_slice_first_match(self):
        assert lookup(self.DATA, "items[2:].tag") == (True, "y")

    def test_null_is_found(self):
        assert lookup(self.DATA, "empty") == (True, None)

    def test_missing(self):
        assert lookup(self.DATA, "user.age") == (False, None)
        assert lookup(self.DATA, "items[9].id") == (False, None)
        assert lookup("text", "id") == (False, None)

    def test_whole_document(self):
        assert lookup([1, 2], "") == (True, [1, 2])
