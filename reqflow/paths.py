"""reqflow paths - structured-body path expressions for captures.

A path is split into segments: a str looks up a mapping key, an int
indexes a list, None selects every list element and a (start, stop)
pair selects a slice of the list.
"""

from __future__ import annotations

import re
from typing import Any

# either a bracketed selector or a bare name between dots
_TOKEN_RE = re.compile(r"\[([^\]]*)\]|([^.\[\]]+)")

Segment = str | int | tuple[int | None, int | None] | None


def _as_int(text: str) -> int | None:
    text = text.strip()
    digits = text[1:] if text.startswith("-") else text
    if digits.isascii() and digits.isdigit():
        return int(text)
    return None


def _bracket_segment(content: str) -> Segment:
    content = content.strip()
    if not content:
        return None
    start, colon, stop = content.partition(":")
    if colon:
        lo, hi = _as_int(start), _as_int(stop)
        if (lo is not None or not start.strip()) and (hi is not None or not stop.strip()):
            return (lo, hi)
        return content
    index = _as_int(content)
    return content if index is None else index


def parse_path(path: str) -> list[Segment]:
    """Parse a path expression into segments.

    ``data.items[0].id``, ``items.0.id`` and ``items[-1]`` index lists;
    ``items[]`` walks every element and ``items[1:]`` a slice of them;
    ``headers[Content-Type]`` is a key that may contain dots or dashes.
    A leading ``body.`` or ``.`` is ignored.
    """
    path = path.strip()
    if path[:5].lower() == "body.":
        path = path[5:]

    segments: list[Segment] = []
    for m in _TOKEN_RE.finditer(path):
        bracket, name = m.groups()
        if bracket is not None:
            segments.append(_bracket_segment(bracket))
            continue
        name = name.strip()
        if name:
            index = _as_int(name)
            segments.append(name if index is None else index)
    return segments


def _ci_get(d: dict[str, Any], key: str) -> tuple[bool, Any]:
    if key in d:
        return True, d[key]
    lower = key.lower()
    for k, v in d.items():
        if isinstance(k, str) and k.lower() == lower:
            return True, v
    return False, None


def _walk(data: Any, segments: list[Any]) -> tuple[bool, Any]:
    """Follow segments through data, expanding lists depth-first.

    Collection segments (iteration or slice) try each selected element in
    order; the first element that resolves the rest of the path wins.
    """
    if not segments:
        return True, data

    seg, rest = segments[0], segments[1:]

    if isinstance(seg, str):
        if not isinstance(data, dict):
            return False, None
        found, child = _ci_get(data, seg)
        return _walk(child, rest) if found else (False, None)

    if not isinstance(data, list):
        return False, None

    if isinstance(seg, int):
        try:
            child = data[seg]
        except IndexError:
            return False, None
        return _walk(child, rest)

    candidates = data if seg is None else data[slice(*seg)]
    for item in candidates:
        found, value = _walk(item, rest)
        if found:
            return True, value
    return False, None


def lookup(data: Any, path: str) -> tuple[bool, Any]:
    """Return ``(found, value)`` for path in a parsed JSON document.

    A JSON ``null`` at the path counts as found.
    """
    segments = parse_path(path)
    if not segments:
        return data is not None, data
    return _walk(data, segments)
