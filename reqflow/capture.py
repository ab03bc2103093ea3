"""reqflow capture - pull values out of responses into the flow-run scope.

A template's captures map a variable name to a spec. In the project file a
spec is either a shorthand string or a mapping:

  token: body:data.access_token             # structured path into JSON body
  csrf: regex:name="csrf" value="([^"]+)"   # regex over the raw body text
  session: header:X-Session-Id              # whole response header value
  sid:
    from: header
    header: Set-Cookie
    regex: "sid=([^;]+)"
    on_missing: skip

Regexes must have exactly one capture group.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from reqflow.errors import CaptureMissing, ValidationError
from reqflow.paths import lookup
from reqflow.varstore import Scope, VarStore

logger = logging.getLogger(__name__)


class OnMissing(Enum):
    ERROR = "error"
    SKIP = "skip"


@dataclass(frozen=True)
class Regex:
    pattern: str

    def __post_init__(self):
        try:
            compiled = re.compile(self.pattern)
        except re.error as e:
            raise ValidationError(f"invalid capture regex {self.pattern!r}: {e}") from e
        if compiled.groups != 1:
            raise ValidationError(
                f"capture regex {self.pattern!r} must have exactly one capture group, "
                f"has {compiled.groups}",
            )

    def search(self, text: str) -> str | None:
        m = re.search(self.pattern, text)
        return m.group(1) if m else None


@dataclass(frozen=True)
class JSONPath:
    path: str


@dataclass(frozen=True)
class HeaderSource:
    name: str
    regex: Regex | None = None


@dataclass(frozen=True)
class BodySource:
    extract: Regex | JSONPath


CaptureSource = HeaderSource | BodySource


@dataclass(frozen=True)
class CaptureSpec:
    var_name: str
    source: CaptureSource
    on_missing: OnMissing = OnMissing.ERROR

    def to_dict(self) -> dict:
        data: dict[str, Any] = {}
        source = self.source
        if isinstance(source, HeaderSource):
            data["from"] = "header"
            data["header"] = source.name
            if source.regex is not None:
                data["regex"] = source.regex.pattern
        elif isinstance(source.extract, Regex):
            data["from"] = "body"
            data["regex"] = source.extract.pattern
        else:
            data["from"] = "body"
            data["path"] = source.extract.path
        if self.on_missing is not OnMissing.ERROR:
            data["on_missing"] = self.on_missing.value
        return data


# ── Parsing ──────────────────────────────────────────────────────────────


def parse_capture(var_name: str, raw: str | Mapping) -> CaptureSpec:
    """Build a CaptureSpec from its project-file form."""
    if not var_name:
        raise ValidationError("capture variable name cannot be empty")

    if isinstance(raw, str):
        kind, sep, arg = raw.partition(":")
        kind = kind.strip().lower()
        if not sep or not arg:
            raise ValidationError(
                f"capture {var_name!r}: expected 'header:NAME', 'body:PATH' or "
                f"'regex:PATTERN', got {raw!r}",
            )
        if kind == "header":
            return CaptureSpec(var_name, HeaderSource(arg.strip()))
        if kind == "body":
            return CaptureSpec(var_name, BodySource(JSONPath(arg.strip())))
        if kind == "regex":
            return CaptureSpec(var_name, BodySource(Regex(arg)))
        raise ValidationError(f"capture {var_name!r}: unknown source {kind!r}")

    if not isinstance(raw, Mapping):
        raise ValidationError(f"capture {var_name!r}: expected a string or mapping")

    try:
        on_missing = OnMissing(str(raw.get("on_missing", "error")).lower())
    except ValueError:
        raise ValidationError(
            f"capture {var_name!r}: on_missing must be 'error' or 'skip'",
        ) from None

    regex = Regex(raw["regex"]) if raw.get("regex") else None
    kind = str(raw.get("from", "header" if raw.get("header") else "body")).lower()

    if kind == "header":
        if not raw.get("header"):
            raise ValidationError(f"capture {var_name!r}: header source needs a header name")
        source: CaptureSource = HeaderSource(str(raw["header"]), regex)
    elif kind == "body":
        if regex is not None and raw.get("path"):
            raise ValidationError(f"capture {var_name!r}: give either path or regex, not both")
        if regex is not None:
            source = BodySource(regex)
        elif raw.get("path"):
            source = BodySource(JSONPath(str(raw["path"])))
        else:
            raise ValidationError(f"capture {var_name!r}: body source needs a path or regex")
    else:
        raise ValidationError(f"capture {var_name!r}: unknown source {kind!r}")

    return CaptureSpec(var_name, source, on_missing)


# ── Extraction ───────────────────────────────────────────────────────────


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value)


def _header(headers: Mapping[str, str], name: str) -> str | None:
    lower = name.lower()
    for k, v in (headers or {}).items():
        if k.lower() == lower:
            return v
    return None


def extract(spec: CaptureSpec, result) -> tuple[str | None, str]:
    """Extract one capture from a response.

    Returns ``(value, "")`` on success or ``(None, reason)`` when nothing
    matched.
    """
    source = spec.source

    if isinstance(source, HeaderSource):
        value = _header(result.headers, source.name)
        if value is None:
            return None, f"response has no {source.name} header"
        if source.regex is None:
            return value, ""
        matched = source.regex.search(value)
        if matched is None:
            return None, f"{source.name} header does not match {source.regex.pattern!r}"
        return matched, ""

    if isinstance(source.extract, Regex):
        text = result.raw_text or ""
        matched = source.extract.search(text)
        if matched is None:
            return None, f"body does not match {source.extract.pattern!r}"
        return matched, ""

    found, value = lookup(result.body, source.extract.path)
    if not found:
        return None, f"path {source.extract.path!r} not found in response body"
    return _stringify(value), ""


def apply_captures(
    result,
    specs: Iterable[CaptureSpec],
    store: VarStore,
) -> dict[str, str]:
    """Run specs against a response, writing hits into the flow-run scope.

    Specs run in ascending order of variable name. A miss with
    ``on_missing=skip`` leaves any previous value alone; a miss with
    ``on_missing=error`` raises CaptureMissing, after the captures that
    sorted before it have already been written.

    Returns the values captured.
    """
    captured: dict[str, str] = {}
    for spec in sorted(specs, key=lambda s: s.var_name):
        value, reason = extract(spec, result)
        if value is None:
            if spec.on_missing is OnMissing.SKIP:
                logger.debug("capture %s skipped: %s", spec.var_name, reason)
                continue
            raise CaptureMissing(spec.var_name, reason, captured)
        store.set(Scope.FLOW_RUN, spec.var_name, value)
        captured[spec.var_name] = value
        logger.debug("captured %s", spec.var_name)
    return captured
