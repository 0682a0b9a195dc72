"""Tests for plan parsing, prompts and the planner fallback."""

import json

import pytest

from companion.agent.parser import extract_json_from_response, parse_plan_response
from companion.agent.planner import DEFAULT_PLAN_DURATION, Planner, build_steps, default_plan
from companion.agent.prompts import build_chat_prompt, build_code_generation_prompt, build_planning_prompt
from companion.exceptions import PlanParseError, ProviderConnectionError
from companion.state import FileOperation, StepStatus, StepType, TaskContext, TaskType


PLAN = {
    "steps": [
        {"id": "s1", "name": "Look", "description": "Read code", "type": "analysis", "parameters": {}},
        {"id": "s2", "name": "Run tests", "type": "terminal_command", "parameters": {"command": "pytest"}},
    ],
    "estimatedDuration": 120,
}


class TestExtractJson:
    """Tests for JSON extraction from model responses."""

    def test_plain_json(self):
        assert extract_json_from_response(json.dumps(PLAN)) == PLAN

    def test_fenced_block(self):
        response = f"Here is the plan:\n```json\n{json.dumps(PLAN)}\n```\nGood luck."
        assert extract_json_from_response(response) == PLAN

    def test_surrounding_prose(self):
        response = f"Sure! {json.dumps(PLAN)} Let me know."
        assert extract_json_from_response(response)["estimatedDuration"] == 120

    def test_braces_inside_strings(self):
        data = {"steps": [{"name": "Gen", "parameters": {"code": "def f(): return {'a': '}'}"}}]}
        response = f"plan: {json.dumps(data)}"
        assert extract_json_from_response(response) == data

    def test_no_json(self):
        with pytest.raises(PlanParseError):
            extract_json_from_response("I cannot help with that.")

    def test_array_is_not_an_object(self):
        with pytest.raises(PlanParseError):
            extract_json_from_response("[1, 2, 3]")


class TestParsePlanResponse:
    """Tests for parse_plan_response."""

    def test_steps_and_duration(self):
        steps, duration = parse_plan_response(json.dumps(PLAN))
        assert len(steps) == 2
        assert duration == 120

    def test_missing_duration(self):
        steps, duration = parse_plan_response(json.dumps({"steps": [{"name": "a"}]}))
        assert duration is None

    def test_invalid_duration(self):
        _, duration = parse_plan_response(json.dumps({"steps": [{}], "estimatedDuration": "soon"}))
        assert duration is None

    def test_empty_steps(self):
        with pytest.raises(PlanParseError):
            parse_plan_response(json.dumps({"steps": []}))

    def test_non_object_step(self):
        with pytest.raises(PlanParseError):
            parse_plan_response(json.dumps({"steps": ["do it"]}))


class TestBuildSteps:
    """Tests for raw step defaults."""

    def test_defaults(self):
        steps = build_steps([{}, {"name": "Second", "type": "design"}])
        assert [s.id for s in steps] == ["step_1", "step_2"]
        assert steps[0].name == "Step 1"
        assert steps[0].type == StepType.ANALYSIS
        assert steps[1].type == StepType.DESIGN
        assert all(s.status == StepStatus.PENDING for s in steps)


class TestDefaultPlan:
    """Tests for the deterministic fallback plans."""

    def test_refactor(self, context):
        plan = default_plan(TaskType.REFACTOR, {"code": "x=1", "filePath": "a.py"}, context)
        assert [s.name for s in plan.steps] == ["Analyze Code", "Generate Refactored Code", "Apply Changes"]
        assert plan.steps[2].parameters.operation == FileOperation.REPLACE
        assert plan.steps[2].parameters.file_path == "a.py"
        assert plan.estimated_duration == 180

    def test_implement(self, context):
        plan = default_plan(TaskType.IMPLEMENT, {"description": "add login"}, context)
        assert len(plan.steps) == 5
        assert plan.steps[4].type == StepType.DOCUMENTATION
        assert plan.estimated_duration == 300

    def test_fix(self, context):
        plan = default_plan(TaskType.FIX, {"errorMessage": "KeyError"}, context)
        assert [s.type for s in plan.steps] == [
            StepType.ANALYSIS,
            StepType.CODE_GENERATION,
            StepType.FILE_OPERATION,
        ]

    def test_review(self, context):
        plan = default_plan(TaskType.REVIEW, {"code": "x"}, context)
        assert len(plan.steps) == 2
        assert plan.estimated_duration == 120

    @pytest.mark.parametrize("task_type", [TaskType.TEST, TaskType.DOCUMENT])
    def test_generic(self, context, task_type):
        plan = default_plan(task_type, {}, context)
        assert [s.name for s in plan.steps] == ["Analyze Task", "Execute Task"]


class TestPlanner:
    """Tests for Planner.create_plan."""

    @pytest.mark.asyncio
    async def test_uses_model_plan(self, context, make_llm):
        planner = Planner(make_llm([json.dumps(PLAN)]))
        plan = await planner.create_plan(TaskType.TEST, {}, context)
        assert [s.id for s in plan.steps] == ["s1", "s2"]
        assert plan.steps[1].parameters.command == "pytest"
        assert plan.estimated_duration == 120

    @pytest.mark.asyncio
    async def test_missing_duration_defaults(self, context, make_llm):
        planner = Planner(make_llm([json.dumps({"steps": [{"name": "a"}]})]))
        plan = await planner.create_plan(TaskType.TEST, {}, context)
        assert plan.estimated_duration == DEFAULT_PLAN_DURATION

    @pytest.mark.asyncio
    async def test_non_json_falls_back(self, context, make_llm):
        planner = Planner(make_llm(["Sorry, no plan today."]))
        plan = await planner.create_plan(TaskType.REFACTOR, {"code": "x"}, context)
        assert len(plan.steps) == 3
        assert plan.estimated_duration == 180

    @pytest.mark.asyncio
    async def test_empty_steps_fall_back(self, context, make_llm):
        planner = Planner(make_llm(['{"steps": []}']))
        plan = await planner.create_plan(TaskType.REVIEW, {}, context)
        assert plan.estimated_duration == 60 * len(plan.steps)

    @pytest.mark.asyncio
    async def test_provider_error_falls_back(self, context, make_llm):
        planner = Planner(make_llm([ProviderConnectionError("Cannot connect")]))
        plan = await planner.create_plan(TaskType.FIX, {}, context)
        assert len(plan.steps) == 3

    @pytest.mark.asyncio
    async def test_bad_parameters_fall_back(self, context, make_llm):
        bad = {"steps": [{"type": "file_operation", "parameters": {"operation": "truncate"}}]}
        planner = Planner(make_llm([json.dumps(bad)]))
        plan = await planner.create_plan(TaskType.REVIEW, {}, context)
        assert plan.steps[0].name == "Code Analysis"

    @pytest.mark.asyncio
    async def test_prompt_includes_task(self, context, make_llm):
        llm = make_llm([json.dumps(PLAN)])
        await Planner(llm).create_plan(TaskType.FIX, {"errorMessage": "boom"}, context)
        assert "fix" in llm.prompts[0]
        assert "boom" in llm.prompts[0]


class TestPrompts:
    """Tests for prompt builders."""

    def test_planning_prompt(self, context):
        prompt = build_planning_prompt(TaskType.REVIEW, {"code": "x"}, context)
        assert "review" in prompt
        assert "python" in prompt

    def test_code_generation_prompt(self):
        prompt = build_code_generation_prompt(
            "Gen", "", {"goal": "speed"}, TaskContext(language="go", current_file="main.go")
        )
        assert "Step name: Gen" in prompt
        assert "Step description: N/A" in prompt
        assert "Language: go; File: main.go" in prompt

    def test_chat_prompt_with_context(self):
        prompt = build_chat_prompt("help", TaskContext(workspace_root="/w", language="rust"))
        assert prompt.startswith("You are CodeCompanion")
        assert "- Workspace: /w" in prompt
        assert "- Language: rust" in prompt
        assert "Current file" not in prompt

    def test_chat_prompt_without_context(self):
        assert "Context:" not in build_chat_prompt("help")
