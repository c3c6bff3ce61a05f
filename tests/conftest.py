"""
Pytest fixtures for workflow-gate tests
"""

import pytest
from pathlib import Path
from unittest.mock import MagicMock

from workflow_gate.config import GateConfig
from workflow_gate.events import EventLog
from workflow_gate.hooks import HookRunner
from workflow_gate.notify import SystemEffects
from workflow_gate.schema import Phase, ToolInvocation, WorkflowState
from workflow_gate.state_store import InMemoryStateStore


@pytest.fixture
def config(tmp_path):
    """
    Configuration with every file location under tmp_path

    Returns:
        GateConfig that never touches the real home directory
    """
    cfg = GateConfig()
    cfg.paths.state_file = str(tmp_path / "state" / "current.json")
    cfg.paths.events_file = str(tmp_path / "results" / "workflow-events.jsonl")
    cfg.paths.violations_file = str(tmp_path / "results" / "workflow-violations.jsonl")
    cfg.paths.changes_dir = str(tmp_path / "changes")
    return cfg


@pytest.fixture
def limited_config(config):
    """Configuration with the main-agent edit restriction enabled"""
    config.main_agent_limits.enabled = True
    return config


@pytest.fixture
def effects():
    """SystemEffects double: clean git tree, nothing opens, notifications recorded"""
    fake = MagicMock(spec=SystemEffects)
    fake.git_is_clean.return_value = True
    fake.open_path.return_value = False
    fake.notify.return_value = True
    return fake


@pytest.fixture
def event_log(config):
    return EventLog.from_config(config)


@pytest.fixture
def store():
    return InMemoryStateStore()


@pytest.fixture
def runner(config, store, event_log, effects, tmp_path):
    """HookRunner wired to in-memory state and tmp_path files"""
    project = tmp_path / "project"
    project.mkdir()
    return HookRunner(config, store=store, events=event_log, effects=effects,
                      project_path=project)


@pytest.fixture
def make_state():
    """Factory for a state in a given phase with an active change"""
    def _make(phase: Phase = Phase.IDLE, change_id: str = "test-change", **task_flags) -> WorkflowState:
        state = WorkflowState(phase=phase, change_id=change_id if phase != Phase.IDLE else None)
        for name, value in task_flags.items():
            setattr(state.task, name, value)
        return state
    return _make


def task_call(subagent_type: str, prompt: str = "", output: str = "") -> ToolInvocation:
    """A Task delegation invocation"""
    return ToolInvocation(
        tool_name="Task",
        tool_input={"subagent_type": subagent_type, "prompt": prompt},
        tool_output=output,
    )


def edit_call(file_path: str, tool: str = "Edit") -> ToolInvocation:
    """An Edit/Write invocation"""
    return ToolInvocation(tool_name=tool, tool_input={"file_path": file_path})


def task_payload(subagent_type: str, prompt: str = "", output: str = "") -> dict:
    """A raw hook payload for a Task delegation"""
    return {
        "tool_name": "Task",
        "tool_input": {"subagent_type": subagent_type, "prompt": prompt},
        "tool_output": output,
    }


@pytest.fixture
def tasks_md(tmp_path) -> Path:
    """A checklist document with mixed statuses"""
    path = tmp_path / "project" / "openspec" / "tasks.md"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        "# Tasks\n"
        "\n"
        "## 1. Setup (sequential)\n"
        "- [ ] 1.1 Initialize project | files: package.json\n"
        "- [x] 1.2 Configure linting | files: .eslintrc.js\n"
        "\n"
        "## 2. Features (parallel, agent:developer, depends:1)\n"
        "- [~] 2.1 User dashboard | files: src/dashboard.tsx, src/api.ts | output: http://localhost:3000\n"
        "- [ ] 2.2 Settings page\n",
        encoding="utf-8",
    )
    return path
