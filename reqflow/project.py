"""reqflow project - templates, flows, history, session and their storage."""

from __future__ import annotations

import datetime
import json
import logging
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

import yaml
from dotenv import dotenv_values
from requests.cookies import RequestsCookieJar

from reqflow.capture import CaptureSpec, parse_capture
from reqflow.errors import IndexOutOfRange, ValidationError
from reqflow.render import DEFAULT_SYMBOL, RenderedRequest
from reqflow.steps import StepEdit, StepRef, apply_edit
from reqflow.varstore import VarStore

logger = logging.getLogger(__name__)

GLOBAL_DIR = Path.home() / ".reqflow"
GLOBAL_PROJECT = GLOBAL_DIR / "project.yaml"

CWD_PROJECT_CANDIDATES = [
    ".reqflow.yaml",
    ".reqflow.yml",
    "reqflow.yaml",
    "reqflow.yml",
]

DEFAULT_PROJECT_FILE = ".reqflow.yaml"


# ── Model ────────────────────────────────────────────────────────────────


@dataclass
class RequestTemplate:
    name: str
    method: str = ""
    url: str = ""
    headers: list[tuple[str, str]] = field(default_factory=list)
    body: str | None = None
    captures: dict[str, CaptureSpec] = field(default_factory=dict)
    description: str = ""


@dataclass
class Flow:
    name: str
    steps: list[StepRef] = field(default_factory=list)


@dataclass(frozen=True)
class HistoryEntry:
    """One executed send. Never modified once recorded."""

    template: str
    send_time: datetime.datetime | None
    recv_time: datetime.datetime | None
    request: RenderedRequest
    response: Mapping[str, Any] | None = None
    captures: Mapping[str, str] = field(default_factory=dict)
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "template": self.template,
            "send_time": self.send_time.isoformat() if self.send_time else None,
            "recv_time": self.recv_time.isoformat() if self.recv_time else None,
            "request": self.request.to_dict(),
            "response": dict(self.response) if self.response is not None else None,
            "captures": dict(self.captures),
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> HistoryEntry:
        def _time(value):
            return datetime.datetime.fromisoformat(value) if value else None

        return cls(
            template=data.get("template", ""),
            send_time=_time(data.get("send_time")),
            recv_time=_time(data.get("recv_time")),
            request=RenderedRequest.from_dict(data.get("request") or {}),
            response=data.get("response"),
            captures=data.get("captures") or {},
            error=data.get("error"),
        )


@dataclass
class Settings:
    record_history: bool = True
    history_file: str = ".reqflow/history.json"
    session_file: str = ".reqflow/session.json"
    env_file: str | None = None
    var_symbol: str = DEFAULT_SYMBOL
    timeout: int = 30
    # seconds a session cookie is kept after it was set; 0 keeps it forever
    cookie_lifetime: int = 24 * 60 * 60


_TRUE = {"true", "yes", "on", "1"}
_FALSE = {"false", "no", "off", "0"}


def _setting_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValidationError(f"setting {key}: expected true or false, got {value!r}")


def _setting_int(key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"setting {key}: expected a whole number, got {value!r}")
    try:
        number = int(str(value).strip())
    except ValueError:
        raise ValidationError(f"setting {key}: expected a whole number, got {value!r}") from None
    if number < 0:
        raise ValidationError(f"setting {key}: must not be negative, got {number}")
    return number


def settings_from_dict(data: Mapping | None) -> Settings:
    """Build Settings from the project file, converting each value to its
    field's type. Unknown keys are ignored; a null keeps the default."""
    data = data or {}
    if not isinstance(data, Mapping):
        raise ValidationError("project settings must be a mapping")

    settings = Settings()
    for f in fields(Settings):
        value = data.get(f.name)
        if value is None:
            continue
        default = getattr(settings, f.name)
        if isinstance(default, bool):
            value = _setting_bool(f.name, value)
        elif isinstance(default, int):
            value = _setting_int(f.name, value)
        else:
            value = str(value)
        setattr(settings, f.name, value)

    if settings.timeout == 0:
        raise ValidationError("setting timeout: must be at least 1 second")
    if not settings.var_symbol:
        raise ValidationError("setting var_symbol: cannot be empty")
    return settings


@dataclass
class Project:
    name: str = "Unnamed Project"
    templates: dict[str, RequestTemplate] = field(default_factory=dict)
    flows: dict[str, Flow] = field(default_factory=dict)
    vars: VarStore = field(default_factory=VarStore)
    history: list[HistoryEntry] = field(default_factory=list)
    session: RequestsCookieJar = field(default_factory=RequestsCookieJar)
    settings: Settings = field(default_factory=Settings)

    def template(self, name: str) -> RequestTemplate | None:
        return self.templates.get(name.lower())

    def is_execable_flow(self, name: str) -> bool:
        flow = self.flows.get(name.lower())
        if flow is None:
            return False
        return all(step.template.lower() in self.templates for step in flow.steps)


# ── Template / flow registry ─────────────────────────────────────────────


def add_template(project: Project, template: RequestTemplate) -> RequestTemplate:
    if not template.name:
        raise ValidationError("request template name cannot be empty")
    if template.name.lower() in project.templates:
        raise ValidationError(f"request template {template.name!r} already exists")
    project.templates[template.name.lower()] = template
    return template


def get_flow(project: Project, name: str) -> Flow:
    flow = project.flows.get(name.lower())
    if flow is None:
        raise ValidationError(f"no flow named {name!r}")
    return flow


def list_flows(project: Project) -> list[tuple[Flow, bool]]:
    """All flows, alphabetical, each paired with whether it can execute."""
    return [
        (flow, project.is_execable_flow(key))
        for key, flow in sorted(project.flows.items())
    ]


def create_flow(project: Project, name: str, templates: list[str]) -> Flow:
    """Create a flow calling templates in order.

    Templates need not exist yet; a flow referencing a missing one is
    simply not execable.
    """
    if not name:
        raise ValidationError("flow name cannot be empty")
    if name.lower() in project.flows:
        raise ValidationError(f"flow {name!r} already exists")
    if not templates:
        raise ValidationError("a new flow needs at least one step")
    flow = Flow(name, [StepRef(t) for t in templates])
    project.flows[name.lower()] = flow
    return flow


def delete_flow(project: Project, name: str) -> Flow:
    flow = get_flow(project, name)
    del project.flows[name.lower()]
    return flow


def get_step(project: Project, name: str, index: int) -> StepRef:
    flow = get_flow(project, name)
    if index < 0 or index >= len(flow.steps):
        raise IndexOutOfRange("get", index, len(flow.steps))
    return flow.steps[index]


def replace_step(project: Project, name: str, index: int, template: str) -> StepRef:
    """Point the step at index to another template. Returns the old step."""
    flow = get_flow(project, name)
    if index < 0 or index >= len(flow.steps):
        raise IndexOutOfRange("replace", index, len(flow.steps))
    if not template:
        raise ValidationError("request template name cannot be empty")
    old = flow.steps[index]
    flow.steps[index] = StepRef(template)
    return old


def edit_flow_steps(
    project: Project,
    name: str,
    edit: StepEdit,
    rollback_on_error: bool = False,
) -> Flow:
    """Apply a compound step edit to a flow.

    On IndexOutOfRange the flow keeps whatever sub-operations succeeded
    before the failure (unless rollback_on_error) and the error is
    re-raised so the caller can save and report.
    """
    flow = get_flow(project, name)
    apply_edit(flow.steps, edit, rollback_on_error=rollback_on_error)
    return flow


class FlowKey(Enum):
    NAME = "NAME"

    @property
    def human(self) -> str:
        if self is FlowKey.NAME:
            return "flow name"
        raise AssertionError(self)


def parse_flow_key(s: str) -> FlowKey:
    try:
        return FlowKey(s.upper())
    except ValueError:
        valid = ", ".join(k.value for k in FlowKey)
        raise ValidationError(f"invalid attribute {s!r}; must be one of {valid}") from None


def get_flow_attr(project: Project, name: str, key: FlowKey) -> str:
    flow = get_flow(project, name)
    if key is FlowKey.NAME:
        return flow.name
    raise AssertionError(key)


def set_flow_attr(project: Project, name: str, key: FlowKey, value: str) -> Flow:
    flow = get_flow(project, name)
    if key is FlowKey.NAME:
        if not value:
            raise ValidationError("flow name cannot be empty")
        if value.lower() != name.lower() and value.lower() in project.flows:
            raise ValidationError(f"flow {value!r} already exists")
        del project.flows[name.lower()]
        flow.name = value
        project.flows[value.lower()] = flow
        return flow
    raise AssertionError(key)


# ── Config resolution ────────────────────────────────────────────────────


def resolve_path(
    candidates: list[Path],
    default: Path | None = None,
) -> Path | None:
    """Return the first existing path from candidates, else default."""
    for p in candidates:
        if p.exists():
            return p.resolve()
    return default


def resolve_project_path(project_file: str | None) -> Path | None:
    """Find the project file to use.

    Resolution order:
      1. Explicit -F flag (no fallthrough if missing)
      2. .reqflow.yaml (variants) in CWD
      3. ~/.reqflow/project.yaml
    """
    if project_file:
        return resolve_path([Path(project_file)])
    return resolve_path([Path(c) for c in CWD_PROJECT_CANDIDATES] + [GLOBAL_PROJECT])


def load_env_file(env_file: str | None, base_dir: Path) -> dict[str, str]:
    """Load a dotenv file; missing file or unset keys give nothing."""
    if not env_file:
        return {}
    dotenv_path = base_dir / env_file
    if not dotenv_path.exists():
        logger.debug("env file %s not found", dotenv_path)
        return {}
    values = dotenv_values(str(dotenv_path))
    return {k: v for k, v in values.items() if v is not None}


# ── Serialization ────────────────────────────────────────────────────────


def parse_header_line(line: str) -> tuple[str, str]:
    if ":" not in line:
        raise ValidationError(f"header {line!r} is not in 'Name: Value' form")
    k, v = line.split(":", 1)
    return k.strip(), v.strip()


def _parse_headers(raw: Any) -> list[tuple[str, str]]:
    if not raw:
        return []
    if isinstance(raw, Mapping):
        return [(str(k), str(v)) for k, v in raw.items()]
    headers = []
    for item in raw:
        if isinstance(item, str):
            headers.append(parse_header_line(item))
        else:
            name, value = item
            headers.append((str(name), str(value)))
    return headers


def template_from_dict(name: str, data: Mapping) -> RequestTemplate:
    data = data or {}
    body = data.get("body")
    if body is not None and not isinstance(body, str):
        body = json.dumps(body)
    return RequestTemplate(
        name=str(data.get("name") or name),
        method=str(data.get("method") or "").upper(),
        url=str(data.get("url") or ""),
        headers=_parse_headers(data.get("headers")),
        body=body,
        captures={
            str(var): parse_capture(str(var), spec)
            for var, spec in (data.get("captures") or {}).items()
        },
        description=str(data.get("description") or ""),
    )


def template_to_dict(template: RequestTemplate) -> dict:
    data: dict[str, Any] = {"method": template.method, "url": template.url}
    if template.description:
        data["description"] = template.description
    if template.headers:
        data["headers"] = [f"{k}: {v}" for k, v in template.headers]
    if template.body is not None:
        data["body"] = template.body
    if template.captures:
        data["captures"] = {var: spec.to_dict() for var, spec in sorted(template.captures.items())}
    return data


def project_from_dict(data: Mapping, globals_: Mapping[str, str] | None = None) -> Project:
    data = data or {}
    project = Project(
        name=str(data.get("name") or "Unnamed Project"),
        vars=VarStore.from_dict(data.get("vars"), globals_),
    )

    project.settings = settings_from_dict(data.get("settings"))

    for name, tdata in (data.get("templates") or {}).items():
        add_template(project, template_from_dict(str(name), tdata))

    for name, steps in (data.get("flows") or {}).items():
        name = str(name)
        if name.lower() in project.flows:
            raise ValidationError(f"flow {name!r} already exists")
        project.flows[name.lower()] = Flow(name, [StepRef(str(s)) for s in steps or []])

    return project


def project_to_dict(project: Project) -> dict:
    return {
        "name": project.name,
        "settings": asdict(project.settings),
        "vars": project.vars.to_dict(),
        "templates": {t.name: template_to_dict(t) for _, t in sorted(project.templates.items())},
        "flows": {f.name: [s.template for s in f.steps] for _, f in sorted(project.flows.items())},
    }


COOKIE_SET_TIME = "reqflow-set-time"


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def cookies_to_list(
    jar: RequestsCookieJar,
    now: datetime.datetime | None = None,
) -> list[dict]:
    """Session records for session.json. A cookie that arrived in a response
    since the last load has no set time yet and is stamped with now."""
    stamp = (now or _utcnow()).isoformat()
    return [
        {
            "domain": c.domain,
            "path": c.path,
            "name": c.name,
            "value": c.value,
            "secure": c.secure,
            "expires": c.expires,
            "set_time": c.get_nonstandard_attr(COOKIE_SET_TIME) or stamp,
        }
        for c in jar
    ]


def cookies_from_list(
    records: list[Mapping] | None,
    lifetime: int = 0,
    now: datetime.datetime | None = None,
) -> RequestsCookieJar:
    """Rebuild the session jar, dropping cookies set more than lifetime
    seconds ago. lifetime 0 keeps every cookie."""
    now = now or _utcnow()
    jar = RequestsCookieJar()
    for r in records or []:
        set_time = r.get("set_time") or now.isoformat()
        age = now - datetime.datetime.fromisoformat(set_time)
        if lifetime and age > datetime.timedelta(seconds=lifetime):
            logger.debug("session cookie %s expired (set %s)", r["name"], set_time)
            continue
        jar.set(
            r["name"],
            r.get("value"),
            domain=r.get("domain", ""),
            path=r.get("path", "/"),
            secure=bool(r.get("secure")),
            expires=r.get("expires"),
            rest={COOKIE_SET_TIME: set_time},
        )
    return jar


# ── Store ────────────────────────────────────────────────────────────────


class ProjectStore(Protocol):
    def load(self) -> Project: ...

    def save(self, project: Project) -> None: ...

    def append_history(self, entry: HistoryEntry) -> None: ...


class YamlProjectStore:
    """Project file in YAML; history and session as JSON beside it.

    History and session paths in the project settings are relative to
    the project file's directory.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._settings = Settings()

    @property
    def base_dir(self) -> Path:
        return self.path.resolve().parent

    def _file(self, relative: str) -> Path:
        p = Path(relative)
        return p if p.is_absolute() else self.base_dir / p

    @property
    def history_path(self) -> Path:
        return self._file(self._settings.history_file)

    @property
    def session_path(self) -> Path:
        return self._file(self._settings.session_file)

    def _read_json(self, path: Path) -> Any:
        try:
            return json.loads(path.read_text())
        except json.JSONDecodeError as e:
            raise ValidationError(f"{path} is not valid JSON: {e}") from e

    def load(self) -> Project:
        if not self.path.exists():
            raise ValidationError(f"project file {self.path} does not exist; run 'reqflow init'")
        try:
            with open(self.path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValidationError(f"project file {self.path} is not valid YAML: {e}") from e
        if not isinstance(data, dict):
            raise ValidationError(f"project file {self.path} is not a YAML mapping")

        env_file = settings_from_dict(data.get("settings")).env_file
        project = project_from_dict(data, load_env_file(env_file, self.base_dir))
        self._settings = project.settings

        if self.history_path.exists():
            try:
                project.history = [
                    HistoryEntry.from_dict(e) for e in self._read_json(self.history_path)
                ]
            except (AttributeError, TypeError, ValueError) as e:
                raise ValidationError(f"{self.history_path} has a malformed entry: {e}") from e
        if self.session_path.exists():
            try:
                project.session = cookies_from_list(
                    self._read_json(self.session_path),
                    project.settings.cookie_lifetime,
                )
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                raise ValidationError(f"{self.session_path} has a malformed cookie: {e}") from e

        logger.debug(
            "loaded project %s: %d templates, %d flows",
            self.path,
            len(project.templates),
            len(project.flows),
        )
        return project

    def save(self, project: Project) -> None:
        """Write the project file and session. History is append-only and
        written by append_history."""
        self._settings = project.settings
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            yaml.safe_dump(project_to_dict(project), f, sort_keys=False)
        self.save_session(project.session)

    def save_session(self, jar: RequestsCookieJar) -> None:
        self.session_path.parent.mkdir(parents=True, exist_ok=True)
        self.session_path.write_text(json.dumps(cookies_to_list(jar), indent=2))

    def append_history(self, entry: HistoryEntry) -> None:
        self.history_path.parent.mkdir(parents=True, exist_ok=True)
        hist = []
        if self.history_path.exists():
            hist = self._read_json(self.history_path)
        hist.append(entry.to_dict())
        self.history_path.write_text(json.dumps(hist, indent=2))

    def clear_history(self) -> None:
        if self.history_path.exists():
            self.history_path.write_text("[]")
