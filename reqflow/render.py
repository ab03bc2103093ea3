"""reqflow render - variable substitution and request building."""

from __future__ import annotations

import functools
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from reqflow.errors import UnresolvedVariable, ValidationError

if TYPE_CHECKING:
    from reqflow.project import RequestTemplate

DEFAULT_SYMBOL = "$"


@functools.lru_cache(maxsize=8)
def _token_pattern(symbol: str) -> re.Pattern:
    # A doubled symbol is an escape; otherwise symbol + greedy name.
    sym = re.escape(symbol)
    return re.compile(rf"{sym}{sym}|{sym}([A-Za-z0-9_]+)")


def substitute(
    text: str | None,
    variables: Mapping[str, str],
    symbol: str = DEFAULT_SYMBOL,
    leave_unresolved: bool = False,
) -> str | None:
    """Replace every ``$NAME`` token in text with its value.

    ``$$`` renders as a literal ``$`` and never starts a token. A symbol
    not followed by a name character is left as is.

    Raises UnresolvedVariable for the first token with no value, unless
    leave_unresolved is set, in which case the token stays in the output.
    """
    if not text:
        return text
    if not symbol:
        raise ValueError("variable symbol cannot be empty")

    def _replace(m: re.Match) -> str:
        name = m.group(1)
        if name is None:
            return symbol
        if name in variables:
            return variables[name]
        if leave_unresolved:
            return m.group(0)
        raise UnresolvedVariable(name)

    return _token_pattern(symbol).sub(_replace, text)


@dataclass(frozen=True)
class RenderedRequest:
    method: str
    url: str
    headers: tuple[tuple[str, str], ...] = field(default_factory=tuple)
    body: str | None = None

    def header_dict(self) -> dict[str, str]:
        """Headers as a dict; repeated names are joined with ', '."""
        out: dict[str, str] = {}
        lower_to_key: dict[str, str] = {}
        for name, value in self.headers:
            key = lower_to_key.setdefault(name.lower(), name)
            out[key] = f"{out[key]}, {value}" if key in out else value
        return out

    def to_dict(self) -> dict:
        data: dict = {
            "method": self.method,
            "url": self.url,
            "headers": [list(h) for h in self.headers],
        }
        if self.body is not None:
            data["body"] = self.body
        return data

    @classmethod
    def from_dict(cls, data: Mapping) -> RenderedRequest:
        return cls(
            method=data.get("method", ""),
            url=data.get("url", ""),
            headers=tuple((str(n), str(v)) for n, v in data.get("headers") or []),
            body=data.get("body"),
        )


def validate_template(template: RequestTemplate) -> None:
    """A template must have a method and a URL before it can be sent."""
    if not template.method:
        raise ValidationError(f"request template {template.name} has no method set")
    if not template.url:
        raise ValidationError(f"request template {template.name} has no URL set")


def unrendered(template: RequestTemplate) -> RenderedRequest:
    """The template's request exactly as written, tokens and all."""
    return RenderedRequest(
        method=(template.method or "").upper(),
        url=template.url or "",
        headers=tuple(template.headers),
        body=template.body,
    )


def render_request(
    template: RequestTemplate,
    variables: Mapping[str, str],
    symbol: str = DEFAULT_SYMBOL,
    leave_unresolved: bool = False,
) -> RenderedRequest:
    """Build the concrete request for a template from a variable snapshot.

    URL, each header value and the body are substituted independently;
    the first unresolved variable in any of them aborts the whole render.
    """
    validate_template(template)

    def _sub(text):
        return substitute(text, variables, symbol, leave_unresolved)

    return RenderedRequest(
        method=template.method.upper(),
        url=_sub(template.url),
        headers=tuple((name, _sub(value)) for name, value in template.headers),
        body=_sub(template.body),
    )
