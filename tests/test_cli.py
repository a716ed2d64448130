"""Tests for the notedown CLI.

Commands run against real workspaces under tmp_path through CliRunner;
the language server command is covered by test_server.py.
"""

import json

import pytest

from notedown import __version__
from notedown.cli import cli, format_table


# ─────────────────────────────────────────────────────────────────────────────
# Group and help
# ─────────────────────────────────────────────────────────────────────────────


@pytest.mark.parametrize("cmd", ["serve", "query", "check", "resolve", "api", "mcp", "init"])
def test_command_has_working_help(runner, cmd):
    """Each subcommand should expose --help without error."""
    result = runner.invoke(cli, [cmd, "--help"])
    assert result.exit_code == 0
    assert "Usage" in result.output


def test_version_option(runner):
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_format_table():
    table = format_table([{"path": "a.md", "links": 2}], ["path", "links"])
    assert table.splitlines() == ["PATH  LINKS", "----  -----", "a.md  2    "]
    assert format_table([], ["path"]) == ""


# ─────────────────────────────────────────────────────────────────────────────
# query
# ─────────────────────────────────────────────────────────────────────────────


class TestQuery:
    def test_table_output(self, runner, sample_notes):
        result = runner.invoke(cli, ["query", "--ordered"])
        assert result.exit_code == 0, result.output
        lines = result.output.splitlines()
        assert lines[0].split() == ["PATH", "LINKS", "TASKS", "METADATA"]
        assert lines[2].split()[0] == "api/config.md"
        assert len(lines) == 7

    def test_filter_json(self, runner, sample_notes):
        expression = {"type": "metadata", "field": "author", "operator": "in", "value": ["Bob", "Charlie"]}
        result = runner.invoke(cli, ["query", "--filter", json.dumps(expression), "--ordered", "--json"])
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert [doc["path"] for doc in data["documents"]] == ["docs/config.md", "notes/idea.md"]

    def test_filter_file(self, runner, sample_notes, tmp_path):
        filter_file = tmp_path / "filter.json"
        filter_file.write_text('{"type": "metadata", "field": "title", "operator": "exists"}')
        result = runner.invoke(cli, ["query", "--filter-file", str(filter_file), "--json"])
        assert [doc["path"] for doc in json.loads(result.output)["documents"]] == ["index.md"]

    def test_no_matches(self, runner, sample_notes):
        expression = '{"type": "metadata", "field": "author", "operator": "equals", "value": "Zed"}'
        result = runner.invoke(cli, ["query", "--filter", expression])
        assert result.exit_code == 0
        assert "No matching documents." in result.output

    def test_invalid_json(self, runner, sample_notes):
        result = runner.invoke(cli, ["query", "--filter", "{not json"])
        assert result.exit_code == 2
        assert "not valid JSON" in result.output

    def test_filter_error(self, runner, sample_notes):
        result = runner.invoke(cli, ["query", "--filter", '{"type": "xor"}'])
        assert result.exit_code == 1
        assert "invalid filter" in result.output

    def test_filter_error_json(self, runner, sample_notes):
        result = runner.invoke(cli, ["query", "--filter", '{"type": "xor"}', "--json"])
        assert result.exit_code == 1
        data = json.loads(result.output)
        assert data["documents"] == []
        assert "invalid filter" in data["error"]

    def test_both_filter_options_rejected(self, runner, sample_notes, tmp_path):
        filter_file = tmp_path / "f.json"
        filter_file.write_text("{}")
        result = runner.invoke(cli, ["query", "--filter", "{}", "--filter-file", str(filter_file)])
        assert result.exit_code == 2

    def test_workspace_option(self, runner, sample_notes, tmp_path, monkeypatch):
        monkeypatch.delenv("NOTEDOWN_WORKSPACE")
        result = runner.invoke(cli, ["--workspace", str(sample_notes), "query", "--json"])
        assert len(json.loads(result.output)["documents"]) == 5

    def test_missing_workspace(self, runner, tmp_path):
        result = runner.invoke(cli, ["-w", str(tmp_path / "gone"), "query"])
        assert result.exit_code == 1
        assert "not a directory" in result.output


# ─────────────────────────────────────────────────────────────────────────────
# check / resolve
# ─────────────────────────────────────────────────────────────────────────────


class TestCheck:
    def test_reports_problems(self, runner, sample_notes):
        result = runner.invoke(cli, ["check"])
        assert result.exit_code == 1
        assert "daily.md:8:3: [invalid-task-state] Invalid task state 'wip'" in result.output
        assert "index.md:6:5: [ambiguous-wikilink]" in result.output
        assert "[non-existent-target] Wikilink target 'missing' does not exist" in result.output
        assert "5 file(s) checked, 3 problem(s) in 2 file(s)" in result.output

    def test_json(self, runner, sample_notes):
        result = runner.invoke(cli, ["check", "--json"])
        data = json.loads(result.output)
        assert data["file_count"] == 5
        assert [t["target"] for t in data["non_existent_targets"]] == ["missing"]

    def test_clean_workspace_exits_zero(self, runner, write_note):
        write_note("a.md", "# A\n")
        result = runner.invoke(cli, ["check"])
        assert result.exit_code == 0
        assert "0 problem(s)" in result.output


class TestResolve:
    def test_ambiguous(self, runner, sample_notes):
        result = runner.invoke(cli, ["resolve", "config"])
        assert result.exit_code == 0
        assert "[[config]] is ambiguous:" in result.output
        assert "  - api/config.md" in result.output
        assert "Referenced by 1 document(s)" in result.output

    def test_single(self, runner, sample_notes):
        result = runner.invoke(cli, ["resolve", "notes/idea"])
        assert "[[notes/idea]] -> notes/idea.md" in result.output

    def test_missing(self, runner, sample_notes):
        result = runner.invoke(cli, ["resolve", "brand-new"])
        assert "does not exist (would create brand-new.md)" in result.output

    def test_json(self, runner, sample_notes):
        result = runner.invoke(cli, ["resolve", "daily", "--json"])
        data = json.loads(result.output)
        assert data["matching_files"] == ["daily.md"]
        assert data["exists"] is True

    def test_invalid(self, runner, sample_notes):
        result = runner.invoke(cli, ["resolve", "../up"])
        assert result.exit_code == 1
        assert "invalid wikilink target" in result.output


# ─────────────────────────────────────────────────────────────────────────────
# init
# ─────────────────────────────────────────────────────────────────────────────


class TestInit:
    def test_creates_yaml_settings(self, runner, workspace_dir):
        result = runner.invoke(cli, ["init"])
        assert result.exit_code == 0
        settings = workspace_dir / ".notedown" / "settings.yaml"
        assert settings.exists()
        assert f"Created {settings}" in result.output

    def test_json_format(self, runner, workspace_dir):
        result = runner.invoke(cli, ["init", "--format", "json"])
        assert result.exit_code == 0
        data = json.loads((workspace_dir / ".notedown" / "settings.json").read_text())
        assert [s["value"] for s in data["tasks"]["states"]] == [" ", "x"]

    def test_refuses_overwrite(self, runner, workspace_dir):
        runner.invoke(cli, ["init"])
        result = runner.invoke(cli, ["init"])
        assert result.exit_code == 1
        assert "already exists" in result.output

    def test_force(self, runner, workspace_dir):
        runner.invoke(cli, ["init"])
        result = runner.invoke(cli, ["init", "--force"])
        assert result.exit_code == 0
