"""Tests for the step executor and README synthesis."""

import json
from datetime import datetime, timezone

import pytest

from companion.agent.executor import Executor, render_diff
from companion.agent.readme import build_file_tree, generate_readme, load_manifest, readme_footer
from companion.exceptions import ExecutionError, SafetyViolation, UserInputError
from companion.state import StepType, TaskContext, TaskStep


def file_step(**params) -> TaskStep:
    return TaskStep(id="step_1", name="Write", type=StepType.FILE_OPERATION, parameters=params)


class Approver:
    """Confirm callback that records requests and answers with a fixed decision."""

    def __init__(self, answer: bool):
        self.answer = answer
        self.requests = []

    async def __call__(self, request):
        self.requests.append(request)
        return self.answer


class TestCodeGeneration:
    """Tests for code_generation steps."""

    @pytest.mark.asyncio
    async def test_returns_stripped_code(self, context, make_llm):
        executor = Executor(make_llm(["\n  def f():\n    pass  \n"]))
        step = TaskStep(id="step_1", name="Gen", type=StepType.CODE_GENERATION, parameters={"goal": "stub"})
        result = await executor.execute_step(step, context)
        assert result["generated_code"] == "def f():\n    pass"
        assert result["tokens"] > 0
        assert "duration_ms" in result


class TestFileOperations:
    """Tests for file_operation steps."""

    @pytest.mark.asyncio
    async def test_create(self, workspace, context, fake_llm):
        executor = Executor(fake_llm)
        result = await executor.execute_step(
            file_step(operation="create", file_path="src/new.py", content="x = 1\n"), context
        )
        assert result["operation"] == "created"
        assert (workspace / "src" / "new.py").read_text() == "x = 1\n"

    @pytest.mark.asyncio
    async def test_delete(self, workspace, context, fake_llm):
        target = workspace / "old.py"
        target.write_text("x")
        result = await Executor(fake_llm).execute_step(file_step(operation="delete", file_path="old.py"), context)
        assert result["operation"] == "deleted"
        assert not target.exists()

    @pytest.mark.asyncio
    async def test_delete_missing_file(self, context, fake_llm):
        with pytest.raises(ExecutionError):
            await Executor(fake_llm).execute_step(file_step(operation="delete", file_path="nope.py"), context)

    @pytest.mark.asyncio
    async def test_replace_approved(self, workspace, context, fake_llm):
        target = workspace / "a.py"
        target.write_text("old\n")
        approver = Approver(True)
        result = await Executor(fake_llm).execute_step(
            file_step(operation="replace", file_path="a.py", content="new\n"),
            context,
            confirm=approver,
            task_id="task_1",
        )
        assert result == {
            "success": True,
            "file_path": str(target),
            "operation": "replaced",
            "original_length": 4,
            "new_length": 4,
        }
        assert target.read_text() == "new\n"
        request = approver.requests[0]
        assert request.task_id == "task_1"
        assert request.step_id == "step_1"
        assert "-old" in request.diff
        assert "+new" in request.diff

    @pytest.mark.asyncio
    async def test_modify_appends(self, workspace, context, fake_llm):
        target = workspace / "a.py"
        target.write_text("first")
        result = await Executor(fake_llm, confirm_changes=False).execute_step(
            file_step(operation="modify", file_path="a.py", content="second"), context
        )
        assert result["operation"] == "modified"
        assert target.read_text() == "first\nsecond"

    @pytest.mark.asyncio
    async def test_declined_leaves_file(self, workspace, context, fake_llm):
        target = workspace / "a.py"
        target.write_text("keep")
        result = await Executor(fake_llm).execute_step(
            file_step(operation="replace", file_path="a.py", content="lose"), context, confirm=Approver(False)
        )
        assert result["cancelled"] is True
        assert target.read_text() == "keep"

    @pytest.mark.asyncio
    async def test_no_channel_declines(self, workspace, context, fake_llm):
        target = workspace / "a.py"
        target.write_text("keep")
        result = await Executor(fake_llm).execute_step(
            file_step(operation="replace", file_path="a.py", content="lose"), context
        )
        assert result["cancelled"] is True
        assert target.read_text() == "keep"

    @pytest.mark.asyncio
    async def test_missing_content(self, workspace, context, fake_llm):
        (workspace / "a.py").write_text("x")
        with pytest.raises(UserInputError, match="Content is required for replace operations"):
            await Executor(fake_llm).execute_step(file_step(operation="replace", file_path="a.py"), context)

    @pytest.mark.asyncio
    async def test_missing_path(self, context, fake_llm):
        with pytest.raises(UserInputError, match="File path is required"):
            await Executor(fake_llm).execute_step(file_step(operation="create", content="x"), context)

    @pytest.mark.asyncio
    async def test_falls_back_to_current_file(self, workspace, fake_llm):
        context = TaskContext(workspace_root=str(workspace), current_file=str(workspace / "cur.py"))
        await Executor(fake_llm).execute_step(file_step(operation="create", content="y"), context)
        assert (workspace / "cur.py").read_text() == "y"

    @pytest.mark.asyncio
    async def test_prompted_path(self, workspace, context, fake_llm):
        async def prompt(suggestion):
            return "asked.py"

        await Executor(fake_llm, path_prompt=prompt).execute_step(file_step(operation="create", content="z"), context)
        assert (workspace / "asked.py").read_text() == "z"

    @pytest.mark.asyncio
    async def test_prompted_path_outside_workspace(self, context, fake_llm):
        async def prompt(suggestion):
            return "/etc/passwd"

        with pytest.raises(SafetyViolation):
            await Executor(fake_llm, path_prompt=prompt).execute_step(file_step(operation="delete"), context)

    @pytest.mark.asyncio
    async def test_prompted_sensitive_path(self, workspace, context, fake_llm):
        (workspace / ".env.local").write_text("TOKEN=1")

        async def prompt(suggestion):
            return ".env.local"

        executor = Executor(fake_llm, confirm_changes=False, path_prompt=prompt)
        with pytest.raises(SafetyViolation, match="sensitive file"):
            await executor.execute_step(file_step(operation="replace", content="TOKEN=2"), context)
        assert (workspace / ".env.local").read_text() == "TOKEN=1"


class TestTerminalCommands:
    """Tests for terminal_command steps."""

    @pytest.mark.asyncio
    async def test_success(self, workspace, context, fake_llm):
        step = TaskStep(id="step_1", name="Echo", type=StepType.TERMINAL_COMMAND, parameters={"command": "echo hello"})
        result = await Executor(fake_llm).execute_step(step, context)
        assert result["success"] is True
        assert result["stdout"].strip() == "hello"
        assert result["exit_code"] == 0

    @pytest.mark.asyncio
    async def test_runs_in_workspace(self, workspace, context, fake_llm):
        (workspace / "marker.txt").write_text("x")
        step = TaskStep(id="step_1", name="List", type=StepType.TERMINAL_COMMAND, parameters={"command": "ls"})
        result = await Executor(fake_llm).execute_step(step, context)
        assert "marker.txt" in result["stdout"]

    @pytest.mark.asyncio
    async def test_non_zero_exit(self, context, fake_llm):
        step = TaskStep(
            id="step_1", name="Fail", type=StepType.TERMINAL_COMMAND, parameters={"command": "echo boom >&2; exit 3"}
        )
        with pytest.raises(ExecutionError) as exc_info:
            await Executor(fake_llm).execute_step(step, context)
        assert exc_info.value.exit_code == 3
        assert exc_info.value.message == "Command failed with exit code 3: boom"

    @pytest.mark.asyncio
    async def test_timeout(self, context, fake_llm):
        step = TaskStep(id="step_1", name="Slow", type=StepType.TERMINAL_COMMAND, parameters={"command": "exec sleep 5"})
        with pytest.raises(ExecutionError, match="timed out"):
            await Executor(fake_llm, command_timeout=0.2).execute_step(step, context)

    @pytest.mark.asyncio
    async def test_missing_command(self, context, fake_llm):
        step = TaskStep(id="step_1", name="Empty", type=StepType.TERMINAL_COMMAND, parameters={"command": "  "})
        with pytest.raises(UserInputError, match="Command is required"):
            await Executor(fake_llm).execute_step(step, context)


class TestOtherSteps:
    """Tests for analysis, design, test, documentation and unknown steps."""

    @pytest.mark.asyncio
    async def test_analysis(self, context, fake_llm):
        step = TaskStep(id="step_1", name="Look around")
        assert await Executor(fake_llm).execute_step(step, context) == {
            "analysis": "Analysis completed for: Look around"
        }

    @pytest.mark.asyncio
    async def test_design(self, context, fake_llm):
        step = TaskStep(id="step_1", name="Sketch", type=StepType.DESIGN)
        result = await Executor(fake_llm).execute_step(step, context)
        assert result["analysis"] == "Design completed for: Sketch"

    @pytest.mark.asyncio
    async def test_test_step_summary(self, context, fake_llm):
        step = TaskStep(id="step_1", name="Tests", type=StepType.TEST)
        result = await Executor(fake_llm).execute_step(step, context)
        assert result == {"pass_count": 5, "fail_count": 0, "coverage": "82%"}

    @pytest.mark.asyncio
    async def test_unknown_type(self, context, fake_llm):
        step = TaskStep(id="step_1", name="Deploy", type="deploy")
        result = await Executor(fake_llm).execute_step(step, context)
        assert result["analysis"] == "Analysis completed for: Deploy"

    @pytest.mark.asyncio
    async def test_documentation_creates_readme(self, workspace, context, fake_llm):
        (workspace / "package.json").write_text(json.dumps({"name": "demo", "scripts": {"test": "jest"}}))
        step = TaskStep(id="step_1", name="Docs", type=StepType.DOCUMENTATION)
        result = await Executor(fake_llm).execute_step(step, context)
        assert result["operation"] == "created"
        readme = (workspace / "README.md").read_text()
        assert readme.startswith("# demo")
        assert "_Updated by CodeCompanion on " in readme

    @pytest.mark.asyncio
    async def test_documentation_existing_readme_needs_approval(self, workspace, context, fake_llm):
        (workspace / "README.md").write_text("old readme")
        step = TaskStep(id="step_1", name="Docs", type=StepType.DOCUMENTATION, parameters={"content": "# New"})
        result = await Executor(fake_llm).execute_step(step, context, confirm=Approver(False))
        assert result["cancelled"] is True
        assert (workspace / "README.md").read_text() == "old readme"


class TestReadme:
    """Tests for README synthesis helpers."""

    def test_manifest_from_pyproject(self, workspace):
        (workspace / "pyproject.toml").write_text(
            '[project]\nname = "tool"\ndependencies = ["httpx>=0.27", "rich"]\n'
            '[project.optional-dependencies]\ntest = ["pytest>=8"]\n'
        )
        manifest = load_manifest(workspace)
        assert manifest.name == "tool"
        assert manifest.dependencies == ["httpx", "rich"]
        assert manifest.dev_dependencies == ["pytest"]
        assert manifest.install_command == "pip install -e ."

    def test_manifest_fallback(self, workspace):
        manifest = load_manifest(workspace)
        assert manifest.name == "proj"
        assert manifest.install_command is None

    def test_file_tree_skips_vendored(self, workspace):
        (workspace / "src").mkdir()
        (workspace / "src" / "main.py").write_text("")
        (workspace / "node_modules").mkdir()
        (workspace / "setup.cfg").write_text("")
        assert build_file_tree(workspace) == ["src/", "  main.py", "setup.cfg"]

    def test_file_tree_depth_limit(self, workspace):
        deep = workspace / "a" / "b" / "c" / "d"
        deep.mkdir(parents=True)
        lines = build_file_tree(workspace)
        assert "      d/" not in lines
        assert "    c/" in lines

    def test_generate_readme_sections(self, workspace):
        readme = generate_readme(workspace)
        assert "## Project Structure (depth 2)" in readme
        assert "_No runtime dependencies_" in readme

    def test_footer(self):
        stamp = datetime(2024, 1, 2, tzinfo=timezone.utc)
        assert readme_footer(stamp) == "\n\n---\n_Updated by CodeCompanion on 2024-01-02T00:00:00+00:00_"


def test_render_diff():
    diff = render_diff("a\nb\n", "a\nc\n", "x.py")
    assert diff.startswith("--- a/x.py")
    assert "-b" in diff
    assert "+c" in diff
