"""Tests for $NAME substitution and request rendering."""

import pytest

from reqflow.errors import UnresolvedVariable, ValidationError
from reqflow.project import RequestTemplate
from reqflow.render import render_request, substitute

# ── substitute ───────────────────────────────────────────────────────────


class TestSubstitute:
    def test_single_token(self):
        assert substitute("$NAME", {"NAME": "v"}) == "v"

    def test_escaped_symbol_is_literal(self):
        assert substitute("$$NAME", {"NAME": "v"}) == "$NAME"

    def test_escape_then_token(self):
        assert substitute("$$$NAME", {"NAME": "v"}) == "$v"

    def test_name_is_greedy(self):
        variables = {"id": "short", "id_2": "long"}
        assert substitute("/items/$id_2", variables) == "/items/long"

    def test_token_ends_at_non_name_char(self):
        assert substitute("$host/api?x=$id.json", {"host": "h", "id": "7"}) == "h/api?x=7.json"

    def test_lone_symbol_left_alone(self):
        assert substitute("costs $ 5", {}) == "costs $ 5"

    def test_trailing_symbol_left_alone(self):
        assert substitute("price$", {}) == "price$"

    def test_unresolved_raises_with_name(self):
        with pytest.raises(UnresolvedVariable) as exc:
            substitute("/users/$user_id", {})
        assert exc.value.name == "user_id"

    def test_unresolved_left_literal_in_preview(self):
        assert substitute("/users/$user_id", {}, leave_unresolved=True) == "/users/$user_id"

    def test_empty_value_is_substituted(self):
        assert substitute("[$X]", {"X": ""}) == "[]"

    def test_custom_symbol(self):
        assert substitute("@@host and @host", {"host": "h"}, symbol="@") == "@host and h"

    def test_custom_symbol_ignores_dollar(self):
        assert substitute("$host", {"host": "h"}, symbol="@") == "$host"

    def test_none_passthrough(self):
        assert substitute(None, {}) is None


# ── render_request ───────────────────────────────────────────────────────


class TestRenderRequest:
    def _template(self, **kw):
        data = {
            "name": "get-item",
            "method": "get",
            "url": "$base/item/$id",
            "headers": [("Authorization", "Bearer $token"), ("Accept", "application/json")],
            "body": '{"id": "$id"}',
        }
        data.update(kw)
        return RequestTemplate(**data)

    def test_renders_all_parts(self):
        req = render_request(self._template(), {"base": "http://x", "id": "42", "token": "t"})
        assert req.method == "GET"
        assert req.url == "http://x/item/42"
        assert req.headers == (("Authorization", "Bearer t"), ("Accept", "application/json"))
        assert req.body == '{"id": "42"}'

    def test_failure_in_header_aborts_whole_render(self):
        with pytest.raises(UnresolvedVariable) as exc:
            render_request(self._template(), {"base": "http://x", "id": "42"})
        assert exc.value.name == "token"

    def test_missing_method(self):
        with pytest.raises(ValidationError, match="no method"):
            render_request(self._template(method=""), {})

    def test_missing_url(self):
        with pytest.raises(ValidationError, match="no URL"):
            render_request(self._template(url=""), {})

    def test_header_dict_joins_repeats(self):
        tpl = self._template(headers=[("X-Tag", "a"), ("x-tag", "b")], url="/", body=None)
        req = render_request(tpl, {})
        assert req.header_dict() == {"X-Tag": "a, b"}
