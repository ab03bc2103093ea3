"""reqflow varstore - layered variable scopes.

Resolution order, highest precedence first:

  1. one-time overrides (``-V name:value``, never persisted)
  2. values captured so far in the current flow run
  3. the current environment
  4. the default environment, then globals loaded from the env file

Names are case-sensitive. An absent name and a name bound to "" are
different things: ``get`` reports them with the ``found`` flag.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator, Mapping
from enum import Enum
from types import MappingProxyType
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_ENV = ""


def as_text(value: Any) -> str:
    """Render a project-file value as variable text.

    A YAML null (``name:`` with nothing after it) is the empty string; other
    non-string values are written as JSON, so ``true`` stays ``true``.
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value)


class Scope(Enum):
    ONE_TIME = "one-time"
    FLOW_RUN = "flow-run"
    ENVIRONMENT = "environment"
    DEFAULT = "default"


class VarStore:
    """Layered name -> value mapping with scoped writes.

    Only the environment layers (``environments``) are persisted; one-time
    and flow-run values live for a single command invocation.
    """

    def __init__(
        self,
        environments: Mapping[str, Mapping[str, str]] | None = None,
        current: str = DEFAULT_ENV,
        globals_: Mapping[str, str] | None = None,
    ):
        self.environments: dict[str, dict[str, str]] = {DEFAULT_ENV: {}}
        for env_name, values in (environments or {}).items():
            self.environments[env_name] = {str(k): as_text(v) for k, v in (values or {}).items()}
        self.current = current
        self.globals: dict[str, str] = dict(globals_ or {})
        self.one_time: dict[str, str] = {}
        self.flow_run: dict[str, str] = {}

    def _layers(self) -> Iterator[Mapping[str, str]]:
        yield self.one_time
        yield self.flow_run
        if self.current != DEFAULT_ENV:
            yield self.environments.get(self.current, {})
        yield self.environments[DEFAULT_ENV]
        yield self.globals

    def get(self, name: str) -> tuple[str | None, bool]:
        """Return ``(value, found)`` for the highest-precedence binding of name."""
        for layer in self._layers():
            if name in layer:
                return layer[name], True
        return None, False

    def _scope_dict(self, scope: Scope, env: str | None = None) -> dict[str, str]:
        if scope is Scope.ONE_TIME:
            return self.one_time
        if scope is Scope.FLOW_RUN:
            return self.flow_run
        if scope is Scope.ENVIRONMENT:
            return self.environments.setdefault(env if env is not None else self.current, {})
        if scope is Scope.DEFAULT:
            return self.environments[DEFAULT_ENV]
        raise ValueError(f"unknown scope: {scope!r}")

    def set(self, scope: Scope, name: str, value: str, env: str | None = None) -> None:
        """Bind name in exactly one scope. Other scopes are untouched.

        ``env`` selects the environment for ``Scope.ENVIRONMENT``; it
        defaults to the current one.
        """
        logger.debug("set %s var %s", scope.value, name)
        self._scope_dict(scope, env)[name] = value

    def unset(self, scope: Scope, name: str, env: str | None = None) -> bool:
        """Remove name from one scope. Returns False if it wasn't bound there."""
        layer = self._scope_dict(scope, env)
        if name not in layer:
            return False
        del layer[name]
        return True

    def override(self, values: Mapping[str, str]) -> None:
        """Install one-time overrides, replacing any previous ones."""
        self.one_time = dict(values)

    def clear_flow_run(self) -> None:
        self.flow_run = {}

    def snapshot(self) -> Mapping[str, str]:
        """Immutable view of every visible name at current precedence."""
        resolved: dict[str, str] = {}
        for layer in reversed(list(self._layers())):
            resolved.update(layer)
        return MappingProxyType(resolved)

    def environment_names(self) -> list[str]:
        return sorted(self.environments)

    # ── Persistence ──────────────────────────────────────────────────────

    def to_dict(self) -> dict:
        return {
            "current": self.current,
            "environments": {
                name: dict(values)
                for name, values in sorted(self.environments.items())
                if values or name == DEFAULT_ENV
            },
        }

    @classmethod
    def from_dict(
        cls,
        data: Mapping | None,
        globals_: Mapping[str, str] | None = None,
    ) -> VarStore:
        data = data or {}
        return cls(
            environments=data.get("environments") or {},
            current=data.get("current") or DEFAULT_ENV,
            globals_=globals_,
        )
