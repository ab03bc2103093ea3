"""Shared fixtures for reqflow tests."""

import datetime
import json
import os

import pytest
import yaml
from click.testing import CliRunner

from reqflow import project as project_mod
from reqflow.executor import RequestResult


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def tmp_project(tmp_path):
    """cd into a temp directory for the duration of the test."""
    original = os.getcwd()
    os.chdir(tmp_path)
    yield tmp_path
    os.chdir(original)


@pytest.fixture(autouse=True)
def global_reqflow_dir(tmp_path, monkeypatch):
    """Keep tests away from the real ~/.reqflow directory."""
    fake_global = tmp_path / "fake_home" / ".reqflow"
    fake_global.mkdir(parents=True)
    monkeypatch.setattr(project_mod, "GLOBAL_DIR", fake_global)
    monkeypatch.setattr(project_mod, "GLOBAL_PROJECT", fake_global / "project.yaml")
    return fake_global


def make_request_result(
    status_code=200,
    body=None,
    headers=None,
    elapsed_ms=42.0,
    error=None,
    raw_text="",
):
    """Factory for mock RequestResult objects."""
    r = RequestResult()
    r.status_code = status_code
    r.headers = headers or {}
    r.body = body
    r.elapsed_ms = elapsed_ms
    r.error = error
    r.raw_text = raw_text or (
        json.dumps(body) if isinstance(body, dict | list) else str(body or "")
    )
    r.send_time = datetime.datetime(2024, 1, 1, 12, 0, 0, tzinfo=datetime.timezone.utc)
    r.recv_time = r.send_time + datetime.timedelta(milliseconds=elapsed_ms)
    return r


class FakeSender:
    """Stands in for executor.execute_request; replays queued results."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    def __call__(self, **kwargs):
        self.calls.append(kwargs)
        return self.results.pop(0)

    @property
    def urls(self):
        return [c["url"] for c in self.calls]


def write_project(path, templates=None, flows=None, vars=None, settings=None, name="Test"):
    """Write a project YAML file and return its path."""
    data = {"name": name}
    if settings is not None:
        data["settings"] = settings
    if vars is not None:
        data["vars"] = vars
    data["templates"] = templates or {}
    data["flows"] = flows or {}
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.dump(data))
    return path
