"""CLI tests for the flows command."""

import yaml

from reqflow.cli import main
from tests.conftest import write_project

TEMPLATES = {
    "a": {"method": "GET", "url": "/a"},
    "b": {"method": "GET", "url": "/b"},
    "c": {"method": "GET", "url": "/c"},
}


def _setup(tmp_project, flows):
    return write_project(tmp_project / ".reqflow.yaml", templates=TEMPLATES, flows=flows)


def _saved_flows(path):
    return yaml.safe_load(path.read_text())["flows"]


# ── Listing and showing ──────────────────────────────────────────────────


class TestFlowsList:
    def test_list_marks_non_execable(self, runner, tmp_project):
        _setup(tmp_project, {"zeta": ["a", "b"], "Alpha": ["ghost"]})
        result = runner.invoke(main, ["flows"])
        assert result.exit_code == 0
        assert result.output.splitlines() == ["Alpha:! 1 request", "zeta: 2 requests"]

    def test_list_empty(self, runner, tmp_project):
        _setup(tmp_project, {})
        result = runner.invoke(main, ["flows"])
        assert result.output.strip() == "(none)"

    def test_show_steps(self, runner, tmp_project):
        _setup(tmp_project, {"f": ["a", "gone"]})
        result = runner.invoke(main, ["flows", "F"])
        assert result.exit_code == 0
        assert result.output.splitlines() == ["0: a", "1: gone (!)"]

    def test_get_step_and_attr(self, runner, tmp_project):
        _setup(tmp_project, {"Flow1": ["a", "b"]})
        assert runner.invoke(main, ["flows", "flow1", "1"]).output.strip() == "b"
        assert runner.invoke(main, ["flows", "flow1", "name"]).output.strip() == "Flow1"

    def test_unknown_attr(self, runner, tmp_project):
        _setup(tmp_project, {"f": ["a"]})
        result = runner.invoke(main, ["flows", "f", "color"])
        assert result.exit_code == 1
        assert "invalid attribute 'color'" in result.output

    def test_unknown_flow(self, runner, tmp_project):
        _setup(tmp_project, {})
        result = runner.invoke(main, ["flows", "nope"])
        assert result.exit_code == 1
        assert "ERROR: no flow named 'nope'" in result.output

    def test_no_project_file(self, runner, tmp_project):
        result = runner.invoke(main, ["flows"])
        assert result.exit_code == 1
        assert "No project file found" in result.output


# ── Create / delete ──────────────────────────────────────────────────────


class TestFlowsNewDelete:
    def test_new(self, runner, tmp_project):
        path = _setup(tmp_project, {})
        result = runner.invoke(main, ["flows", "signup", "--new", "a", "b"])
        assert result.exit_code == 0
        assert "Created flow signup with 2 steps" in result.output
        assert _saved_flows(path) == {"signup": ["a", "b"]}

    def test_new_duplicate(self, runner, tmp_project):
        _setup(tmp_project, {"f": ["a"]})
        result = runner.invoke(main, ["flows", "F", "--new", "b"])
        assert result.exit_code == 1
        assert "already exists" in result.output

    def test_new_needs_templates(self, runner, tmp_project):
        _setup(tmp_project, {})
        result = runner.invoke(main, ["flows", "f", "--new"])
        assert result.exit_code != 0

    def test_delete(self, runner, tmp_project):
        path = _setup(tmp_project, {"f": ["a"], "g": ["b"]})
        result = runner.invoke(main, ["flows", "f", "-d"])
        assert result.exit_code == 0
        assert _saved_flows(path) == {"g": ["b"]}

    def test_modes_are_exclusive(self, runner, tmp_project):
        _setup(tmp_project, {"f": ["a"]})
        result = runner.invoke(main, ["flows", "f", "-d", "-r", "0"])
        assert result.exit_code == 1
        assert "mutually exclusive" in result.output


# ── Editing ──────────────────────────────────────────────────────────────


class TestFlowsEdit:
    def test_replace_step(self, runner, tmp_project):
        path = _setup(tmp_project, {"f": ["a", "b"]})
        result = runner.invoke(main, ["flows", "f", "1", "c"])
        assert result.exit_code == 0
        assert "Step 1: b -> c" in result.output
        assert _saved_flows(path) == {"f": ["a", "c"]}

    def test_rename(self, runner, tmp_project):
        path = _setup(tmp_project, {"f": ["a"]})
        result = runner.invoke(main, ["flows", "f", "name", "Renamed"])
        assert result.exit_code == 0
        assert "Set flow name to Renamed" in result.output
        assert _saved_flows(path) == {"Renamed": ["a"]}

    def test_rename_then_edit_uses_new_name(self, runner, tmp_project):
        path = _setup(tmp_project, {"f": ["a"]})
        result = runner.invoke(main, ["flows", "f", "name", "g", "-a", "b"])
        assert result.exit_code == 0
        assert _saved_flows(path) == {"g": ["a", "b"]}

    def test_compound_edit(self, runner, tmp_project):
        path = _setup(tmp_project, {"f": ["a", "b", "c", "a", "b"]})
        result = runner.invoke(
            main,
            ["flows", "f", "-r", "3", "-r", "1", "-a", "0:x", "-m", "2:0"],
        )
        assert result.exit_code == 0
        assert "Flow f now has 4 steps" in result.output
        assert _saved_flows(path) == {"f": ["c", "x", "a", "b"]}

    def test_add_append_and_escaped_name(self, runner, tmp_project):
        path = _setup(tmp_project, {"f": ["a"]})
        result = runner.invoke(main, ["flows", "f", "-a", "b", "-a", "::odd"])
        assert result.exit_code == 0
        assert _saved_flows(path) == {"f": ["a", "b", ":odd"]}

    def test_failed_edit_saves_partial_result(self, runner, tmp_project):
        path = _setup(tmp_project, {"f": ["a", "b", "c"]})
        result = runner.invoke(main, ["flows", "f", "-r", "0", "-m", "0:1", "-m", "0:5"])
        assert result.exit_code == 1
        assert "move: step index 5 out of range (flow has 2 steps)" in result.output
        assert _saved_flows(path) == {"f": ["c", "b"]}

    def test_bad_add_argument(self, runner, tmp_project):
        path = _setup(tmp_project, {"f": ["a"]})
        result = runner.invoke(main, ["flows", "f", "-a", "x:b"])
        assert result.exit_code == 1
        assert "not a number" in result.output
        assert _saved_flows(path) == {"f": ["a"]}
