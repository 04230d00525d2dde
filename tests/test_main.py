"""Tests for the agent entry point: factory, run_task, and CLI helpers.

``run_task`` tests drive the real executor, guard and file tools
against a project under ``tmp_path``; only the generation backend is
scripted.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any
from unittest.mock import patch

import httpx
import pytest

from codeplan_agent.config.settings import Settings
from codeplan_agent.core.errors import GenerationError
from codeplan_agent.core.generation import AnthropicBackend, GenerationBackend
from codeplan_agent.main import (
    CodePlanAgent,
    TaskResult,
    build_agent,
    build_parser,
    load_files,
    main,
    settings_from_args,
)
from codeplan_agent.models.events import AgentEvent, AgentEventType
from codeplan_agent.models.plan import StepStatus

# ------------------------------------------------------------------
# Scripted backend
# ------------------------------------------------------------------


class ScriptedBackend(GenerationBackend):
    """Returns a fixed plan for structured calls and fixed code for text."""

    def __init__(
        self,
        plan: dict[str, Any] | None = None,
        code: str = "export const x = 1;",
        error: Exception | None = None,
    ) -> None:
        self.plan = plan or {"summary": "nothing", "steps": []}
        self.code = code
        self.error = error
        self.text_calls = 0
        self.object_calls: list[str] = []

    async def generate_text(self, messages, system="", temperature=0.7, max_tokens=4096):
        self.text_calls += 1
        return self.code

    async def generate_object(self, messages, system, schema, temperature=0.3, max_tokens=4096):
        self.object_calls.append(messages[0].content)
        if self.error is not None:
            raise self.error
        return schema.parse(self.plan)


def _step(step_id: str, action: str, params: dict[str, Any], **extra: Any) -> dict[str, Any]:
    raw = {
        "stepId": step_id,
        "description": f"{action} {step_id}",
        "action": action,
        "tool": action,
        "params": params,
        "reasoning": "needed",
    }
    raw.update(extra)
    return raw


@pytest.fixture()
def project(tmp_path: Path) -> Path:
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "App.tsx").write_text(
        "export const App = () => null;\n", encoding="utf-8"
    )
    return tmp_path


def _make_agent(
    project: Path,
    backend: ScriptedBackend,
    events: list[AgentEvent] | None = None,
    **settings: Any,
) -> CodePlanAgent:
    cfg = Settings.from_dict({"project_root": str(project), **settings})
    return build_agent(
        settings=cfg,
        backend=backend,
        on_event=events.append if events is not None else None,
    )


# ==================================================================
# Factory
# ==================================================================


class TestBuildAgent:
    def test_wires_components(self, project: Path) -> None:
        agent = _make_agent(project, ScriptedBackend())
        assert isinstance(agent, CodePlanAgent)
        assert agent.registry.has_tool("read_file")
        assert agent.registry.has_tool("run_command")
        assert agent.service.backend is agent.backend

    def test_creates_backend_from_settings(self, project: Path) -> None:
        agent = build_agent(api_key="k", settings=Settings(project_root=str(project)))
        assert isinstance(agent.backend, AnthropicBackend)

    def test_unknown_provider(self) -> None:
        with pytest.raises(ValueError):
            build_agent(settings=Settings(llm_provider="nope"))


# ==================================================================
# run_task
# ==================================================================


class TestRunTask:
    def test_read_create_and_patch(self, project: Path) -> None:
        plan = {
            "summary": "Add a helper and use it",
            "steps": [
                _step("read", "read_file", {"path": "src/App.tsx"}),
                _step("create", "create_file",
                      {"path": "src/helper.ts", "codeDescription": "a helper"}),
                _step("patch", "apply_patch",
                      {"path": "src/App.tsx", "changeDescription": "use helper"},
                      dependencies=["read"]),
            ],
        }
        backend = ScriptedBackend(plan, code="export const helper = 1;")
        result = _make_agent(project, backend).run_task_sync("Add helper")

        assert result.success, result.error
        assert result.steps_total == 3
        assert result.steps_completed == 3
        assert backend.text_calls == 2
        assert (project / "src/helper.ts").read_text(encoding="utf-8") == (
            "export const helper = 1;"
        )
        assert (project / "src/App.tsx").read_text(encoding="utf-8") == (
            "export const helper = 1;"
        )
        assert all(s.status is StepStatus.COMPLETED for s in result.plan.steps)

    def test_preloaded_files_reach_planner(self, project: Path) -> None:
        backend = ScriptedBackend()
        agent = _make_agent(project, backend)
        agent.run_task_sync(
            "t", context="React app", files={"src/App.tsx": "export const App = 1;"}
        )
        prompt = backend.object_calls[0]
        assert "React app" in prompt
        assert "--- src/App.tsx ---\nexport const App = 1;" in prompt

    def test_patch_preloaded_file_without_read(self, project: Path) -> None:
        plan = {
            "summary": "patch",
            "steps": [
                _step("patch", "apply_patch",
                      {"path": "src/App.tsx", "changeDescription": "x"}),
            ],
        }
        agent = _make_agent(project, ScriptedBackend(plan, code="export {};"))
        result = agent.run_task_sync(
            "t", files={"src/App.tsx": "export const App = () => null;\n"}
        )
        assert result.success
        assert (project / "src/App.tsx").read_text(encoding="utf-8") == "export {};"

    def test_skipped_steps_counted(self, project: Path) -> None:
        plan = {
            "summary": "read missing",
            "steps": [_step("read", "read_file", {"path": "src/Missing.tsx"})],
        }
        result = _make_agent(project, ScriptedBackend(plan)).run_task_sync("t")
        assert result.success
        assert result.steps_skipped == 1
        assert result.steps_completed == 0

    def test_plan_only(self, project: Path) -> None:
        plan = {
            "summary": "create",
            "steps": [_step("c", "create_file", {"path": "src/new.ts"})],
        }
        backend = ScriptedBackend(plan)
        events: list[AgentEvent] = []
        result = _make_agent(project, backend, events).run_task_sync("t", plan_only=True)

        assert result.success
        assert result.outputs == []
        assert result.plan.steps[0].status is StepStatus.PENDING
        assert backend.text_calls == 0
        assert not (project / "src/new.ts").exists()
        assert [e.type for e in events] == [
            AgentEventType.TASK_STARTED,
            AgentEventType.PLANNING_STARTED,
            AgentEventType.PLANNING_COMPLETED,
            AgentEventType.TASK_COMPLETED,
        ]

    def test_planning_failure(self, project: Path) -> None:
        backend = ScriptedBackend(error=GenerationError("HTTP 401: bad key"))
        events: list[AgentEvent] = []
        result = _make_agent(project, backend, events).run_task_sync("t")
        assert not result.success
        assert result.plan is None
        assert result.error == "Planning failed: HTTP 401: bad key"
        assert events[-1].type is AgentEventType.TASK_FAILED

    def test_non_json_response_is_planning_failure(self, project: Path) -> None:
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, text="<html>proxy error</html>")
        )
        client = httpx.AsyncClient(transport=transport)
        cfg = Settings.from_dict({"project_root": str(project)})
        agent = build_agent(api_key="k", settings=cfg)
        with patch("httpx.AsyncClient", return_value=client):
            result = agent.run_task_sync("do it")
        assert not result.success
        assert result.plan is None
        assert result.error.startswith("Planning failed: Invalid JSON body")

    def test_invalid_plan_is_planning_failure(self, project: Path) -> None:
        backend = ScriptedBackend({"summary": 1, "steps": "x"})
        result = _make_agent(project, backend).run_task_sync("t")
        assert result.error.startswith("Planning failed: ")

    def test_dependency_error_reported(self, project: Path) -> None:
        plan = {
            "summary": "bad deps",
            "steps": [
                _step("a", "read_file", {"path": "src/App.tsx"}, dependencies=["ghost"]),
            ],
        }
        result = _make_agent(project, ScriptedBackend(plan)).run_task_sync("t")
        assert not result.success
        assert result.plan is not None
        assert "Missing dependency" in result.error
        assert result.outputs == []

    def test_halting_failure_rolls_back(self, project: Path) -> None:
        plan = {
            "summary": "create then clash",
            "steps": [
                _step("new", "create_file", {"path": "src/new.ts", "content": "export {};"}),
                _step("clash", "create_file",
                      {"path": "src/App.tsx", "content": "export {};"},
                      validation=[{"type": "syntax_valid", "required": True}]),
                _step("later", "read_file", {"path": "src/App.tsx"}),
            ],
        }
        events: list[AgentEvent] = []
        result = _make_agent(project, ScriptedBackend(plan), events).run_task_sync("t")

        assert not result.success
        assert result.error.startswith("File already exists: src/App.tsx")
        assert result.steps_completed == 1
        assert result.steps_failed == 1
        assert result.steps_skipped == 1
        assert len(result.rolled_back) == 1
        assert not (project / "src/new.ts").exists()
        assert AgentEventType.ROLLBACK_COMPLETED in [e.type for e in events]
        assert events[-1].type is AgentEventType.TASK_FAILED

    def test_rollback_disabled(self, project: Path) -> None:
        plan = {
            "summary": "create then clash",
            "steps": [
                _step("new", "create_file", {"path": "src/new.ts", "content": "export {};"}),
                _step("clash", "create_file",
                      {"path": "src/App.tsx", "content": "x"},
                      validation=[{"type": "syntax_valid", "required": True}]),
            ],
        }
        agent = _make_agent(project, ScriptedBackend(plan), rollback_on_failure=False)
        result = agent.run_task_sync("t")
        assert not result.success
        assert result.rolled_back == []
        assert (project / "src/new.ts").exists()

    def test_non_halting_failure_keeps_writes(self, project: Path) -> None:
        plan = {
            "summary": "create then clash",
            "steps": [
                _step("new", "create_file", {"path": "src/new.ts", "content": "export {};"}),
                _step("clash", "create_file", {"path": "src/App.tsx", "content": "x"}),
            ],
        }
        result = _make_agent(project, ScriptedBackend(plan)).run_task_sync("t")
        assert not result.success
        assert result.rolled_back == []
        assert (project / "src/new.ts").exists()

    def test_async_entry_point(self, project: Path) -> None:
        agent = _make_agent(project, ScriptedBackend())
        result = asyncio.run(agent.run_task("t"))
        assert isinstance(result, TaskResult)
        assert result.success


# ==================================================================
# CLI
# ==================================================================


class TestCli:
    def test_parser_defaults(self) -> None:
        args = build_parser().parse_args(["--task", "do it"])
        assert args.task == "do it"
        assert args.files == []
        assert args.project_root == "."
        assert args.provider == "anthropic"
        assert args.plan_only is False

    def test_parser_short_flags(self) -> None:
        args = build_parser().parse_args(
            ["-t", "x", "-f", "a.ts", "b.ts", "-p", "app", "-k", "key", "-v"]
        )
        assert args.files == ["a.ts", "b.ts"]
        assert args.project_root == "app"
        assert args.api_key == "key"
        assert args.verbose is True

    def test_task_required(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_settings_from_args(self) -> None:
        args = build_parser().parse_args(
            ["-t", "x", "--provider", "openai", "--model", "gpt-4o",
             "--base-url", "http://proxy", "-p", "app"]
        )
        settings = settings_from_args(args)
        assert settings.llm_provider == "openai"
        assert settings.model == "gpt-4o"
        assert settings.api_base_url == "http://proxy"
        assert settings.project_root == "app"
        assert settings.plan_temperature == 0.3

    def test_load_files_skips_missing(self, project: Path) -> None:
        files = load_files(str(project), ["src/App.tsx", "src/Nope.tsx"])
        assert list(files) == ["src/App.tsx"]

    def test_main_plan_only(self, project: Path, capsys: pytest.CaptureFixture[str]) -> None:
        plan = {
            "summary": "Read the app",
            "steps": [_step("read", "read_file", {"path": "src/App.tsx"})],
        }
        agent = _make_agent(project, ScriptedBackend(plan))
        with patch("codeplan_agent.main.build_agent", return_value=agent):
            with pytest.raises(SystemExit) as info:
                main(["-t", "read it", "-p", str(project), "--plan-only"])
        assert info.value.code == 0
        out = capsys.readouterr().out
        assert "Plan: Read the app" in out
        assert "read read_file" in out
        assert "SUCCESS" in out

    def test_main_failure_exit_code(self, project: Path) -> None:
        agent = _make_agent(project, ScriptedBackend(error=GenerationError("down")))
        with patch("codeplan_agent.main.build_agent", return_value=agent):
            with pytest.raises(SystemExit) as info:
                main(["-t", "x", "-p", str(project)])
        assert info.value.code == 1
