"""reqflow CLI - request templates and flows from a project file."""

import json
import logging
import sys
from pathlib import Path

import click

from reqflow.errors import IndexOutOfRange, ReqflowError

TOOL_HELP = """\
reqflow - project-based HTTP request templates and flows.

\b
PROJECT FILE
────────────
  reqflow init                       Scaffold .reqflow.yaml + .reqflow/

  Project file resolution:
    1. -F/--project-file flag
    2. .reqflow.yaml (or .yml, reqflow.yaml, reqflow.yml) in CWD
    3. ~/.reqflow/project.yaml

\b
TEMPLATES (templates: in the project file)
──────────────────────────────────────────
  \b
  templates:
    login:
      method: POST
      url: $base/auth/login
      headers:
        - "Content-Type: application/json"
      body: {"user": "$user", "password": "$pass"}
      captures:
        token: body:data.access_token
        session: header:X-Session-Id

  $NAME is replaced from variables; $$ is a literal $.

\b
SENDING
───────
  reqflow send login -V user:admin -V pass:secret
  reqflow send login --dry-run       Show the rendered request only

\b
FLOWS
─────
  reqflow flows                          List flows (! = not runnable)
  reqflow flows signup --new login create-user
  reqflow flows signup                   Show steps
  reqflow flows signup 1                 Template at step 1
  reqflow flows signup 1 other-req       Replace step 1
  reqflow flows signup name onboarding   Rename
  reqflow flows signup -r 2 -a 0:ping -m 1:3
  reqflow flows signup -d
  reqflow exec signup

  In one edit, removals apply highest index first, then adds lowest index
  first, then moves in the order given.
"""


@click.group(
    help=TOOL_HELP,
    context_settings={"max_content_width": 88},
)
@click.option(
    "-F",
    "--project-file",
    "project_file",
    default=None,
    help="Project file path. Default: .reqflow.yaml in CWD, then ~/.reqflow/project.yaml.",
)
@click.option(
    "--log-level",
    default="WARNING",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging level for diagnostics on stderr. Default: WARNING.",
)
@click.pass_context
def main(ctx, project_file, log_level):
    """Send request templates and run flows."""
    logging.basicConfig(level=log_level.upper(), format="%(levelname)s %(name)s: %(message)s")
    ctx.ensure_object(dict)
    ctx.obj["project_file"] = project_file


# ── Commands ─────────────────────────────────────────────────────────────


@main.command("init")
@click.argument("name", required=False, default="Unnamed Project")
@click.pass_context
def init_cmd(ctx, name):
    """Scaffold a project file and its .reqflow/ state directory."""
    from reqflow.project import DEFAULT_PROJECT_FILE, Project, YamlProjectStore

    if not name:
        _fail("project name cannot be empty")

    project_file = Path(ctx.obj["project_file"] or DEFAULT_PROJECT_FILE)
    state_dir = project_file.parent / ".reqflow"
    # saving the project writes the session file, which creates state_dir
    state_existed = state_dir.exists()

    if project_file.exists():
        click.echo(f"  {project_file} (skipped, already exists)")
    else:
        YamlProjectStore(project_file).save(Project(name=name))
        click.echo(f"  {project_file} (created)")

    if state_existed:
        click.echo(f"  {state_dir}/ (skipped, already exists)")
    else:
        state_dir.mkdir(parents=True, exist_ok=True)
        click.echo(f"  {state_dir}/ (created)")

    click.echo("\nProject initialized. Run 'reqflow --help' to get started.")


@main.command("send")
@click.argument("template_name")
@click.option(
    "-V",
    "--var",
    "var",
    multiple=True,
    help="One-time variable as name:value. Overrides every other scope. Repeatable.",
)
@click.option("--dry-run", is_flag=True, default=False, help="Render the request without sending.")
@click.option("--headers", "show_headers", is_flag=True, default=False, help="Include response headers.")
@click.pass_context
def send_cmd(ctx, template_name, var, dry_run, show_headers):
    """Send the request built from a template."""
    from reqflow.runner import preview_template, send_template

    store, project = _load(ctx)
    overrides = _parse_vars(var)

    try:
        if dry_run:
            request = preview_template(project, template_name, overrides)
            click.echo(_format_request(request))
            return
        step = send_template(project, template_name, overrides, store=store)
    except ReqflowError as e:
        store.save_session(project.session)
        _fail(str(e))

    store.save_session(project.session)
    click.echo(_format_result(step.result, show_headers))
    for name, value in sorted(step.captured.items()):
        click.echo(f"captured {name}={value}", err=True)


@main.command("exec")
@click.argument("flow_name")
@click.option(
    "-V",
    "--var",
    "var",
    multiple=True,
    help="One-time variable as name:value for every step. Repeatable.",
)
@click.pass_context
def exec_cmd(ctx, flow_name, var):
    """Run every step of a flow in order."""
    from reqflow.runner import FlowRunner, RunState

    store, project = _load(ctx)
    try:
        run = FlowRunner(project, store=store).run(flow_name, _parse_vars(var))
    except ReqflowError as e:
        _fail(str(e))
    store.save_session(project.session)

    for step in run.steps:
        if step.result is not None and not step.result.error:
            click.echo(
                f"[{step.index}] {step.template}: STATUS: {step.result.status_code} "
                f"({int(step.result.elapsed_ms)}ms)",
            )
        else:
            click.echo(f"[{step.index}] {step.template}: FAILED")
    for name, value in sorted(run.captured.items()):
        click.echo(f"captured {name}={value}", err=True)

    if run.state is RunState.ABORTED:
        _fail(f"flow {run.flow} aborted at step {run.failed_step}: {run.error}")
    click.echo(f"flow {run.flow} completed ({len(run.steps)} steps)")


@main.command("flows")
@click.argument("flow_name", required=False)
@click.argument("args", nargs=-1)
@click.option("--new", "is_new", is_flag=True, default=False, help="Create FLOW calling ARGS in order.")
@click.option("-d", "--delete", "is_delete", is_flag=True, default=False, help="Delete FLOW.")
@click.option(
    "-r",
    "--remove",
    "removals",
    multiple=True,
    type=int,
    metavar="IDX",
    help="Remove the step at IDX. Repeatable; applied highest index first.",
)
@click.option(
    "-a",
    "--add",
    "additions",
    multiple=True,
    metavar="[IDX]:REQ",
    help="Add a step calling REQ at IDX, or at the end if IDX is omitted. "
    "Repeatable; applied lowest index first, after removals.",
)
@click.option(
    "-m",
    "--move",
    "moves",
    multiple=True,
    metavar="FROM:TO",
    help="Move the step at FROM to TO. Repeatable; applied in order, after adds.",
)
@click.pass_context
def flows_cmd(ctx, flow_name, args, is_new, is_delete, removals, additions, moves):
    """List, show, create, delete or edit flows."""
    from reqflow.steps import StepEdit, parse_addition, parse_move

    has_edits = bool(removals or additions or moves)
    if sum([is_new, is_delete, has_edits]) > 1:
        _fail("--new, --delete and step edits (-r/-a/-m) are mutually exclusive.")
    if (is_new or is_delete or has_edits or args) and not flow_name:
        _fail("a flow name is required.")

    store, project = _load(ctx)

    try:
        if not flow_name:
            _cmd_list_flows(project)
            return
        if is_new:
            _cmd_new_flow(store, project, flow_name, args)
            return
        if is_delete:
            _cmd_delete_flow(store, project, flow_name, args)
            return
        if len(args) == 1 and not has_edits:
            _cmd_get_flow_item(project, flow_name, args[0])
            return
        if not args and not has_edits:
            _cmd_show_flow(project, flow_name)
            return

        edit = StepEdit(
            removals=set(removals),
            additions=[parse_addition(a) for a in additions],
            moves=[parse_move(m) for m in moves],
        )
        _cmd_edit_flow(store, project, flow_name, args, edit)
    except ReqflowError as e:
        _fail(str(e))


@main.command("vars")
@click.argument("name", required=False)
@click.argument("value", required=False)
@click.option("-e", "--env", "env", default=None, help="Environment to read/write. Default: current.")
@click.option("-d", "--delete", "is_delete", is_flag=True, default=False, help="Delete NAME.")
@click.option("--use", "use_env", default=None, metavar="ENV", help="Switch the current environment.")
@click.pass_context
def vars_cmd(ctx, name, value, env, is_delete, use_env):
    """List, get, set or delete variables."""
    from reqflow.varstore import DEFAULT_ENV, Scope

    store, project = _load(ctx)
    store_vars = project.vars

    if use_env is not None:
        store_vars.current = use_env
        store.save(project)
        click.echo(f"Using environment: {use_env or '(default)'}")
        return

    if not name:
        if env is not None:
            values = store_vars.environments.get(env, {})
        else:
            values = store_vars.snapshot()
        if not values:
            click.echo("(none)")
        for k in sorted(values):
            click.echo(f"{k}={values[k]}")
        return

    if is_delete:
        if not store_vars.unset(Scope.ENVIRONMENT, name, env):
            _fail(f"variable {name} is not set in environment {env or store_vars.current or '(default)'}")
        store.save(project)
        return

    if value is None:
        if env is not None:
            values = store_vars.environments.get(env, {})
            found, val = name in values, values.get(name)
        else:
            val, found = store_vars.get(name)
        if not found:
            _fail(f"variable {name} is not set")
        click.echo(val)
        return

    target = env if env is not None else store_vars.current
    store_vars.set(Scope.ENVIRONMENT if target != DEFAULT_ENV else Scope.DEFAULT, name, value, target)
    store.save(project)


@main.command("history")
@click.option("--clear", "do_clear", is_flag=True, default=False, help="Delete all history entries.")
@click.pass_context
def history_cmd(ctx, do_clear):
    """Show recorded sends."""
    store, project = _load(ctx)
    if do_clear:
        store.clear_history()
        click.echo("History cleared.")
        return
    if not project.history:
        click.echo("No request history.")
        return
    for i, entry in enumerate(project.history):
        status = entry.response.get("status_code") if entry.response else "ERR"
        ts = entry.send_time.isoformat() if entry.send_time else "-"
        click.echo(f"  [{i}] {entry.request.method:<6} {entry.template} {status}  ({ts})")


# ── Subcommand implementations ──────────────────────────────────────────


def _cmd_list_flows(project):
    from reqflow.project import list_flows

    flows = list_flows(project)
    if not flows:
        click.echo("(none)")
        return
    for flow, execable in flows:
        bang = "" if execable else "!"
        count = len(flow.steps)
        click.echo(f"{flow.name}:{bang} {count} request{'' if count == 1 else 's'}")


def _cmd_show_flow(project, flow_name):
    from reqflow.project import get_flow

    flow = get_flow(project, flow_name)
    if not flow.steps:
        click.echo("(no steps)")
        return
    for i, step in enumerate(flow.steps):
        missing = "" if project.template(step.template) else " (!)"
        click.echo(f"{i}: {step.template}{missing}")


def _cmd_new_flow(store, project, flow_name, args):
    from reqflow.project import create_flow

    if not args:
        raise click.UsageError("--new needs at least one request template name.")
    flow = create_flow(project, flow_name, list(args))
    store.save(project)
    click.echo(f"Created flow {flow.name} with {len(flow.steps)} steps")


def _cmd_delete_flow(store, project, flow_name, args):
    from reqflow.project import delete_flow

    if args:
        raise click.UsageError("-d takes only the flow name.")
    flow = delete_flow(project, flow_name)
    store.save(project)
    click.echo(f"Deleted flow {flow.name}")


def _cmd_get_flow_item(project, flow_name, item):
    from reqflow.project import get_flow_attr, get_step, parse_flow_key

    index = _as_index(item)
    if index is not None:
        click.echo(get_step(project, flow_name, index).template)
    else:
        click.echo(get_flow_attr(project, flow_name, parse_flow_key(item)))


def _cmd_edit_flow(store, project, flow_name, args, edit):
    """Apply ATTR/IDX VAL pairs, then the compound step edit, then save.

    A failing step edit still saves what it applied before failing.
    """
    from reqflow.project import (
        FlowKey,
        edit_flow_steps,
        get_flow,
        parse_flow_key,
        replace_step,
        set_flow_attr,
    )

    if len(args) % 2:
        raise click.UsageError(f"{args[-1]!r} is missing a value.")

    for item, value in zip(args[::2], args[1::2], strict=True):
        index = _as_index(item)
        if index is not None:
            old = replace_step(project, flow_name, index, value)
            click.echo(f"Step {index}: {old.template} -> {value}")
        else:
            key = parse_flow_key(item)
            set_flow_attr(project, flow_name, key, value)
            click.echo(f"Set {key.human} to {value}")
            if key is FlowKey.NAME:
                flow_name = value

    if not edit.is_empty():
        try:
            edit_flow_steps(project, flow_name, edit)
        except IndexOutOfRange:
            store.save(project)
            raise
        click.echo(f"Flow {flow_name} now has {len(get_flow(project, flow_name).steps)} steps")

    store.save(project)


# ── Helpers ──────────────────────────────────────────────────────────────


def _fail(message):
    click.echo(f"ERROR: {message}", err=True)
    sys.exit(1)


def _load(ctx):
    from reqflow.project import YamlProjectStore, resolve_project_path

    path = resolve_project_path(ctx.obj["project_file"])
    if path is None:
        _fail("No project file found. Run 'reqflow init' first or pass -F.")
    store = YamlProjectStore(path)
    try:
        return store, store.load()
    except ReqflowError as e:
        _fail(str(e))


def _parse_vars(var_specs):
    """Parse -V name:value pairs into a dict."""
    variables = {}
    for idx, spec in enumerate(var_specs):
        if ":" not in spec:
            _fail(f"var #{idx + 1} ({spec!r}) is not in format name:value")
        k, val = spec.split(":", 1)
        variables[k.strip()] = val
    return variables


def _as_index(item):
    try:
        return int(item)
    except ValueError:
        return None


def _format_request(request):
    lines = [f"{request.method} {request.url}"]
    for k, v in request.headers:
        lines.append(f"{k}: {v}")
    if request.body is not None:
        lines.append("")
        lines.append(request.body)
    return "\n".join(lines)


def _format_result(result, show_headers=False):
    lines = [f"STATUS: {result.status_code}", f"TIME: {int(result.elapsed_ms)}ms"]

    if show_headers and result.headers:
        lines.append("HEADERS:")
        for key, value in result.headers.items():
            lines.append(f"  {key}: {value}")

    body = result.body
    if body is None or body == "":
        lines.append("(no response body)")
    else:
        lines.append("BODY:")
        if isinstance(body, dict | list):
            lines.append(json.dumps(body, indent=2))
        else:
            lines.append(str(body))

    return "\n".join(lines)
