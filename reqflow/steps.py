"""reqflow steps - compound edits of a flow's step list.

A compound edit always applies in this order, whatever order the caller
gave its parts in:

  1. removals, highest index first
  2. additions, lowest target index first (appends last, in given order)
  3. moves, exactly in the order given, each against the previous result

Every sub-operation sees the dense list left by the one before it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from reqflow.errors import IndexOutOfRange, ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StepRef:
    """A flow step: a reference to a template by name, not a copy of it."""

    template: str


@dataclass(frozen=True)
class StepAddition:
    template: str
    index: int | None = None  # None appends


@dataclass(frozen=True)
class StepMove:
    src: int
    dest: int


@dataclass
class StepEdit:
    removals: set[int] = field(default_factory=set)
    additions: list[StepAddition] = field(default_factory=list)
    moves: list[StepMove] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.removals or self.additions or self.moves)


def _check(stage: str, index: int, steps: list[StepRef]) -> None:
    if index < 0 or index >= len(steps):
        raise IndexOutOfRange(stage, index, len(steps), list(steps))


def _remove(steps: list[StepRef], removals: set[int]) -> None:
    for idx in sorted(set(removals), reverse=True):
        _check("remove", idx, steps)
        logger.debug("remove step %d (%s)", idx, steps[idx].template)
        del steps[idx]


def _add(steps: list[StepRef], additions: list[StepAddition]) -> None:
    indexed = sorted((a for a in additions if a.index is not None), key=lambda a: a.index)
    appended = [a for a in additions if a.index is None]
    for add in indexed + appended:
        if add.index is not None and add.index < 0:
            raise IndexOutOfRange("add", add.index, len(steps), list(steps))
        # An index past the end clamps to an append.
        idx = len(steps) if add.index is None else min(add.index, len(steps))
        logger.debug("add step %d (%s)", idx, add.template)
        steps.insert(idx, StepRef(add.template))


def _move(steps: list[StepRef], moves: list[StepMove]) -> None:
    for mv in moves:
        _check("move", mv.src, steps)
        _check("move", mv.dest, steps)
        if mv.src == mv.dest:
            continue
        logger.debug("move step %d -> %d", mv.src, mv.dest)
        steps.insert(mv.dest, steps.pop(mv.src))


def apply_edit(
    steps: list[StepRef],
    edit: StepEdit,
    rollback_on_error: bool = False,
) -> list[StepRef]:
    """Apply a compound edit to steps in place and return it.

    When a sub-operation fails with IndexOutOfRange, the sub-operations
    before it stay applied and ``steps`` is left in that partial state;
    the error's ``partial`` attribute carries the same list. Set
    rollback_on_error to restore the original list instead.
    """
    original = list(steps)
    try:
        _remove(steps, edit.removals)
        _add(steps, edit.additions)
        _move(steps, edit.moves)
    except IndexOutOfRange as e:
        if rollback_on_error:
            steps[:] = original
            e.partial = list(original)
        raise
    return steps


# ── Argument parsing ─────────────────────────────────────────────────────


def parse_addition(arg: str) -> StepAddition:
    """Parse ``[IDX]:REQ``.

    ``:REQ`` and a bare ``REQ`` append. A doubled leading colon escapes a
    template name that itself starts with a colon: ``::REQ`` appends
    ``:REQ``.
    """
    if arg.startswith(":"):
        # "::REQ" strips one colon, leaving ":REQ"
        template = arg[1:]
        index = None
    elif ":" in arg:
        idx_str, template = arg.split(":", 1)
        try:
            index = int(idx_str.strip())
        except ValueError:
            raise ValidationError(
                f"add step {arg!r}: index {idx_str!r} is not a number",
            ) from None
    else:
        template, index = arg, None

    if not template:
        raise ValidationError(f"add step {arg!r}: missing request template name")
    return StepAddition(template, index)


def parse_move(arg: str) -> StepMove:
    """Parse ``FROM:TO`` (``FROM->TO`` also accepted)."""
    sep = "->" if "->" in arg else ":"
    src, found, dest = arg.partition(sep)
    if not found:
        raise ValidationError(f"move step {arg!r}: expected FROM:TO")
    try:
        return StepMove(int(src.strip()), int(dest.strip()))
    except ValueError:
        raise ValidationError(f"move step {arg!r}: indexes must be numbers") from None
