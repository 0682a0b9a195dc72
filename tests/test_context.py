"""Tests for workspace context analysis."""

import json
from unittest.mock import AsyncMock

import pytest

from companion.agent.context import (
    ContextAnalyzer,
    detect_project_type,
    language_for,
    parse_name_status_log,
    read_dependencies,
    read_scripts,
)
from companion.state import GitInfo, UserPreferences


LOG = """abc123|Ada|2024-05-01T10:00:00+00:00|Add parser
A\tsrc/parser.py
M\tREADME.md

def456|Ada|2024-05-01T09:00:00+00:00|Remove old code
D\tsrc/legacy.py
R100\told.py\tnew.py
"""


class TestParseNameStatusLog:
    """Tests for git log parsing."""

    def test_changes(self):
        changes = parse_name_status_log(LOG)
        assert [(c.file_path, c.change_type) for c in changes] == [
            ("src/parser.py", "created"),
            ("README.md", "modified"),
            ("src/legacy.py", "deleted"),
        ]

    def test_commit_metadata(self):
        changes = parse_name_status_log(LOG)
        assert changes[0].description == "Add parser"
        assert changes[2].description == "Remove old code"
        assert changes[2].timestamp.hour == 9

    def test_empty(self):
        assert parse_name_status_log("") == []


class TestProjectDetection:
    """Tests for project type, dependencies and scripts."""

    @pytest.mark.parametrize(
        "marker, expected",
        [
            ("package.json", "node"),
            ("pyproject.toml", "python"),
            ("Cargo.toml", "rust"),
            ("go.mod", "go"),
            ("app.csproj", "csharp"),
            ("Makefile", "cpp"),
        ],
    )
    def test_detect(self, tmp_path, marker, expected):
        (tmp_path / marker).write_text("")
        assert detect_project_type(tmp_path) == expected

    def test_unknown(self, tmp_path):
        assert detect_project_type(tmp_path) == "unknown"

    def test_node_wins_over_python(self, tmp_path):
        (tmp_path / "package.json").write_text("{}")
        (tmp_path / "requirements.txt").write_text("")
        assert detect_project_type(tmp_path) == "node"

    def test_dependencies_merged_and_deduped(self, tmp_path):
        (tmp_path / "package.json").write_text(
            json.dumps({"dependencies": {"react": "^18"}, "devDependencies": {"jest": "^29"}})
        )
        (tmp_path / "requirements.txt").write_text("# pinned\nhttpx==0.27\n-r dev.txt\nrich>=13\n\n")
        (tmp_path / "pyproject.toml").write_text(
            '[project]\ndependencies = ["httpx>=0.27", "typer"]\n'
            '[tool.poetry.dependencies]\npython = "^3.11"\nopenai = "^1"\n'
        )
        (tmp_path / "Cargo.toml").write_text('[dependencies]\nserde = "1"\n')
        assert read_dependencies(tmp_path) == ["react", "jest", "httpx", "rich", "typer", "openai", "serde"]

    def test_malformed_manifest_ignored(self, tmp_path):
        (tmp_path / "package.json").write_text("{oops")
        assert read_dependencies(tmp_path) == []

    def test_scripts_from_pyproject(self, tmp_path):
        (tmp_path / "pyproject.toml").write_text('[project.scripts]\ntool = "tool.cli:app"\n')
        assert read_scripts(tmp_path) == {"tool": "tool.cli:app"}

    def test_language_for(self):
        assert language_for("src/app.ts") == "typescript"
        assert language_for("main.PY") == "python"
        assert language_for("notes.txt") is None
        assert language_for(None) is None


class TestContextAnalyzer:
    """Tests for ContextAnalyzer.analyze."""

    @pytest.mark.asyncio
    async def test_outside_git(self, tmp_path, monkeypatch):
        (tmp_path / "requirements.txt").write_text("httpx\n")
        analyzer = ContextAnalyzer(tmp_path, preferences=UserPreferences(coding_style="oop"))
        monkeypatch.setattr(analyzer, "_git", AsyncMock(return_value=None))

        context = await analyzer.analyze({"filePath": "src/app.py"})

        assert context.workspace_root == str(tmp_path.resolve())
        assert context.current_file == "src/app.py"
        assert context.language == "python"
        assert context.project_type == "python"
        assert context.dependencies == ("httpx",)
        assert context.git_info is None
        assert context.recent_changes == ()
        assert context.open_files == ("src/app.py",)
        assert context.user_preferences.coding_style == "oop"

    @pytest.mark.asyncio
    async def test_language_override(self, tmp_path, monkeypatch):
        analyzer = ContextAnalyzer(tmp_path, current_file="main.go")
        monkeypatch.setattr(analyzer, "_git", AsyncMock(return_value=None))
        context = await analyzer.analyze({"language": "golang"})
        assert context.current_file == "main.go"
        assert context.language == "golang"

    @pytest.mark.asyncio
    async def test_git_info(self, tmp_path, monkeypatch):
        answers = {
            ("rev-parse", "--is-inside-work-tree"): "true",
            ("branch", "--show-current"): "main",
            ("log", "-1", "--format=%H"): "abc123",
            ("status", "--porcelain"): " M README.md",
            ("remote", "get-url", "origin"): None,
        }

        async def fake_git(*args):
            if args[:2] == ("log", "--name-status"):
                return LOG
            return answers[args]

        analyzer = ContextAnalyzer(tmp_path)
        monkeypatch.setattr(analyzer, "_git", fake_git)
        context = await analyzer.analyze({})

        assert context.git_info == GitInfo(
            branch="main", last_commit="abc123", has_uncommitted_changes=True, remote_url=None
        )
        assert len(context.recent_changes) == 3

    @pytest.mark.asyncio
    async def test_no_workspace(self):
        context = await ContextAnalyzer(None).analyze({})
        assert context.workspace_root is None
        assert context.project_type is None
        assert context.git_info is None
