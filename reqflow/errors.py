"""reqflow errors - every failure the engine reports to its caller."""

from __future__ import annotations

from typing import Any


class ReqflowError(Exception):
    """Base class for all reqflow errors."""


class ValidationError(ReqflowError):
    """A template, flow or edit argument is malformed or missing."""


class IndexOutOfRange(ReqflowError):
    """A step index fell outside the flow's current step list.

    ``partial`` holds the step list as it stood when the failing
    sub-operation was attempted (earlier sub-operations already applied).
    """

    def __init__(
        self,
        stage: str,
        index: int,
        length: int,
        partial: list[Any] | None = None,
    ):
        self.stage = stage
        self.index = index
        self.length = length
        self.partial = partial
        super().__init__(
            f"{stage}: step index {index} out of range (flow has {length} step"
            f"{'' if length == 1 else 's'})",
        )


class UnresolvedVariable(ReqflowError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"variable ${name} has no value")


class UnresolvedStep(ReqflowError):
    def __init__(self, index: int, template: str):
        self.index = index
        self.template = template
        super().__init__(f"step {index}: no request template named {template!r}")


class CaptureMissing(ReqflowError):
    """A capture with on_missing=error found nothing.

    ``captured`` holds the values written before this capture failed.
    """

    def __init__(self, var_name: str, reason: str, captured: dict[str, str] | None = None):
        self.var_name = var_name
        self.reason = reason
        self.captured = dict(captured or {})
        super().__init__(f"capture {var_name!r} failed: {reason}")


class TransportError(ReqflowError):
    """The request never produced an HTTP response."""
