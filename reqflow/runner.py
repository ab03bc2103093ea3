"""reqflow runner - send templates and run flows step by step.

Each send renders the template against a snapshot of the project's
variables, sends it through the HTTP sender with the project's cookie jar,
then applies the template's captures to the flow-run scope. Every
attempted send leaves exactly one history entry (when history is on).
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum

from reqflow import executor
from reqflow.capture import apply_captures
from reqflow.errors import (
    CaptureMissing,
    ReqflowError,
    TransportError,
    UnresolvedStep,
    ValidationError,
)
from reqflow.executor import RequestResult
from reqflow.project import (
    HistoryEntry,
    Project,
    ProjectStore,
    RequestTemplate,
    get_flow,
)
from reqflow.render import RenderedRequest, render_request, unrendered

logger = logging.getLogger(__name__)

Sender = Callable[..., RequestResult]


class RunState(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


@dataclass
class StepResult:
    index: int
    template: str
    request: RenderedRequest | None = None
    result: RequestResult | None = None
    captured: dict[str, str] = field(default_factory=dict)
    entry: HistoryEntry | None = None
    error: ReqflowError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class FlowRun:
    flow: str
    state: RunState = RunState.PENDING
    steps: list[StepResult] = field(default_factory=list)
    error: ReqflowError | None = None
    failed_step: int | None = None

    @property
    def captured(self) -> dict[str, str]:
        """Every value captured during the run; later steps win."""
        out: dict[str, str] = {}
        for step in self.steps:
            out.update(step.captured)
        return out


class Sending:
    """Shared send pipeline: render, send, capture, record."""

    def __init__(
        self,
        project: Project,
        store: ProjectStore | None = None,
        sender: Sender | None = None,
    ):
        self.project = project
        self.store = store
        self.sender = sender

    def _record(self, entry: HistoryEntry) -> None:
        if not self.project.settings.record_history:
            return
        self.project.history.append(entry)
        if self.store is not None:
            self.store.append_history(entry)

    def execute(self, template: RequestTemplate, index: int = 0) -> StepResult:
        """Send one template. Failures are returned on the StepResult, not raised."""
        step = StepResult(index, template.name)
        settings = self.project.settings

        try:
            step.request = render_request(
                template,
                self.project.vars.snapshot(),
                settings.var_symbol,
            )
        except ReqflowError as e:
            step.error = e
            step.entry = HistoryEntry(template.name, None, None, unrendered(template), error=str(e))
            self._record(step.entry)
            return step

        send = self.sender or executor.execute_request
        result = send(
            method=step.request.method,
            url=step.request.url,
            headers=step.request.header_dict(),
            body=step.request.body,
            cookie_jar=self.project.session,
            timeout=settings.timeout,
        )
        step.result = result

        if result.error:
            step.error = TransportError(result.error)
            step.entry = HistoryEntry(
                template.name,
                result.send_time,
                result.recv_time,
                step.request,
                error=result.error,
            )
            self._record(step.entry)
            return step

        try:
            step.captured = apply_captures(result, template.captures.values(), self.project.vars)
        except CaptureMissing as e:
            step.captured = e.captured
            step.error = e

        step.entry = HistoryEntry(
            template.name,
            result.send_time,
            result.recv_time,
            step.request,
            result.snapshot(),
            dict(step.captured),
            str(step.error) if step.error else None,
        )
        self._record(step.entry)
        return step


def send_template(
    project: Project,
    name: str,
    overrides: Mapping[str, str] | None = None,
    store: ProjectStore | None = None,
    sender: Sender | None = None,
) -> StepResult:
    """Send a single template by name.

    Raises the step's error (after recording history) if it failed.
    """
    template = project.template(name)
    if template is None:
        raise ValidationError(f"no request template {name}")

    project.vars.override(overrides or {})
    project.vars.clear_flow_run()
    try:
        step = Sending(project, store, sender).execute(template)
    finally:
        project.vars.override({})

    if step.error is not None:
        raise step.error
    return step


def preview_template(
    project: Project,
    name: str,
    overrides: Mapping[str, str] | None = None,
) -> RenderedRequest:
    """Render a template without sending; unresolved tokens stay literal."""
    template = project.template(name)
    if template is None:
        raise ValidationError(f"no request template {name}")
    project.vars.override(overrides or {})
    try:
        return render_request(
            template,
            project.vars.snapshot(),
            project.settings.var_symbol,
            leave_unresolved=True,
        )
    finally:
        project.vars.override({})


class FlowRunner:
    """Runs one flow at a time against a project, strictly in step order.

    A step that fails to render, fails to reach the server, or misses a
    capture with on_missing=error aborts the run; later steps are not
    attempted and history already recorded stays.
    """

    def __init__(
        self,
        project: Project,
        store: ProjectStore | None = None,
        sender: Sender | None = None,
    ):
        self.project = project
        self.sending = Sending(project, store, sender)

    def run(self, flow_name: str, overrides: Mapping[str, str] | None = None) -> FlowRun:
        flow = get_flow(self.project, flow_name)
        run = FlowRun(flow.name)

        self.project.vars.override(overrides or {})
        self.project.vars.clear_flow_run()
        run.state = RunState.RUNNING
        logger.info("flow %s: running %d steps", flow.name, len(flow.steps))

        try:
            for index, ref in enumerate(list(flow.steps)):
                template = self.project.template(ref.template)
                if template is None:
                    return self._abort(run, index, UnresolvedStep(index, ref.template))

                step = self.sending.execute(template, index)
                run.steps.append(step)
                if step.error is not None:
                    return self._abort(run, index, step.error)
        finally:
            self.project.vars.override({})

        run.state = RunState.COMPLETED
        logger.info("flow %s: completed", flow.name)
        return run

    def _abort(self, run: FlowRun, index: int, error: ReqflowError) -> FlowRun:
        run.state = RunState.ABORTED
        run.error = error
        run.failed_step = index
        logger.warning("flow %s: aborted at step %d: %s", run.flow, index, error)
        return run
