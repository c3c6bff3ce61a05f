"""
Workflow Schema Definitions using Pydantic

This module defines the persisted workflow-state document, the event and
violation records of the audit streams, parsed checklist tasks, and the
values exchanged with the orchestrating agent over the hook protocol.

The state document uses camelCase keys on disk; Python code uses snake_case
attribute names.
"""

import json
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel
from typing import Any, Dict, List, Literal, Optional
from datetime import datetime
from enum import Enum

from .utils import utc_now, generate_adhoc_change_id, epoch_ms


STATE_DOCUMENT_VERSION = "2.0"


class Phase(str, Enum):
    """Lifecycle phases of the development workflow."""
    IDLE = "IDLE"
    PLANNING = "PLANNING"
    DESIGN = "DESIGN"
    MIGRATION_PLANNING = "MIGRATION_PLANNING"
    DEVELOP = "DEVELOP"
    SKILL_CREATE = "SKILL_CREATE"
    REVIEW = "REVIEW"
    TEST = "TEST"
    VALIDATE = "VALIDATE"
    DEBUG = "DEBUG"
    COMPLETING = "COMPLETING"
    DONE = "DONE"
    BLOCKED = "BLOCKED"
    PAUSED = "PAUSED"
    LOOP_PAUSED = "LOOP_PAUSED"
    LOOP_COMPLETING = "LOOP_COMPLETING"


class TransitionStatus(str, Enum):
    """Outcome of a completed role invocation."""
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    PASS = "PASS"
    FAIL = "FAIL"
    FIXED = "FIXED"
    PENDING = "PENDING"
    UNKNOWN = "UNKNOWN"


class TaskStatus(str, Enum):
    """Status of a checklist task."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class ExecutionMode(str, Enum):
    """How the tasks of a checklist group are meant to run."""
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"


class EventType(str, Enum):
    """Types of events recorded in the event stream."""
    EDIT = "edit"
    DEVELOPER_COMPLETE = "developer_complete"
    REVIEWER_COMPLETE = "reviewer_complete"
    TESTER_COMPLETE = "tester_complete"


class ViolationType(str, Enum):
    """Kinds of process violations."""
    MISSING_REVIEW = "missing_review"
    MAIN_AGENT_CODE_EDIT = "main_agent_code_edit"
    BLOCKED_EDIT = "blocked_edit"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class CamelModel(BaseModel):
    """Base for models serialized with camelCase keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Workflow State Document
# ============================================================================

class TaskPointer(CamelModel):
    """The task currently moving through D→R→T, plus its transient flags."""
    current: Optional[str] = None
    total: int = 0
    completed: int = 0
    reviewed: bool = False
    tested: bool = False
    test_failed: bool = False
    reviewed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    debugged_at: Optional[datetime] = None


class TaskSyncInfo(CamelModel):
    """Cache of the last checklist parse."""
    tasks_file: Optional[str] = None
    total_tasks: int = 0
    completed: int = 0
    in_progress: int = 0
    last_sync_at: Optional[datetime] = None


class DelegationCounters(CamelModel):
    """Lifetime counters of how work reached the codebase."""
    direct_edits: int = 0
    delegated: int = 0
    blocked: int = 0
    bypassed: int = 0


class CompletionRecord(CamelModel):
    """Result of the last closing-checklist evaluation."""
    checklist: Dict[str, bool] = Field(default_factory=dict)
    all_required_done: bool = False
    last_checked_at: Optional[datetime] = None
    deliverable_opened: bool = False
    deliverable_opened_at: Optional[datetime] = None

    def unmet_items(self) -> List[str]:
        return [action_id for action_id, done in self.checklist.items() if not done]


class Timestamps(CamelModel):
    workflow_started: Optional[datetime] = None
    state_changed: Optional[datetime] = None
    last_activity: datetime = Field(default_factory=utc_now)
    completed_at: Optional[datetime] = None


# Keys written by the original hook scripts, mapped to current names
_LEGACY_KEYS = {
    "state": "phase",
    "previousState": "previousPhase",
    "mainAgentOps": "delegationCounters",
    "taskSync": "taskSyncInfo",
}


class WorkflowState(CamelModel):
    """Complete persisted state of the active workflow."""
    version: str = STATE_DOCUMENT_VERSION
    phase: Phase = Phase.IDLE
    previous_phase: Optional[Phase] = None
    change_id: Optional[str] = None
    project_path: Optional[str] = None
    task: TaskPointer = Field(default_factory=TaskPointer)
    task_sync_info: TaskSyncInfo = Field(default_factory=TaskSyncInfo)
    delegation_counters: DelegationCounters = Field(default_factory=DelegationCounters)
    completion: CompletionRecord = Field(default_factory=CompletionRecord)
    timestamps: Timestamps = Field(default_factory=Timestamps)

    @model_validator(mode="before")
    @classmethod
    def _migrate_legacy_keys(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for old, new in _LEGACY_KEYS.items():
            if old in data and new not in data:
                data[new] = data.pop(old)
        # Sections removed by older writers are restored as defaults
        for key in ("task", "taskSyncInfo", "delegationCounters", "completion", "timestamps"):
            if key in data and data[key] is None:
                del data[key]
        return data

    def transition_to(self, phase: Phase, hint: str = "") -> None:
        """
        Move to a new phase, recording the previous one.

        Leaving IDLE without a change id generates an ad-hoc one from ``hint``.
        """
        now = utc_now()
        if phase != Phase.IDLE and not self.change_id:
            self.change_id = generate_adhoc_change_id(hint)
        self.previous_phase = self.phase
        self.phase = phase
        self.timestamps.state_changed = now
        if phase != Phase.IDLE and self.timestamps.workflow_started is None:
            self.timestamps.workflow_started = now
        if phase == Phase.DONE:
            self.timestamps.completed_at = now

    def start_change(self, change_id: Optional[str] = None, hint: str = "") -> None:
        """
        Reset to a fresh unit of work.

        Delegation counters are kept; they never decrease.
        """
        self.change_id = change_id or generate_adhoc_change_id(hint)
        self.phase = Phase.IDLE
        self.previous_phase = None
        self.task = TaskPointer()
        self.task_sync_info = TaskSyncInfo()
        self.completion = CompletionRecord()
        now = utc_now()
        self.timestamps = Timestamps(workflow_started=now, state_changed=now, last_activity=now)

    def touch(self) -> None:
        """Update the last-activity timestamp."""
        self.timestamps.last_activity = utc_now()

    def to_document(self) -> Dict[str, Any]:
        """JSON-compatible dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> "WorkflowState":
        return cls.model_validate(data)


# ============================================================================
# Event Log Schema
# ============================================================================

class WorkflowEvent(BaseModel):
    """A single line of the append-only event stream."""
    type: EventType
    timestamp: int = Field(default_factory=epoch_ms)
    iso_time: str = Field(default_factory=lambda: utc_now().isoformat())
    file: Optional[str] = None
    tool: Optional[str] = None
    executor: Optional[str] = None
    description: Optional[str] = None

    def to_json(self) -> str:
        return json.dumps(self.model_dump(mode="json", exclude_none=True), ensure_ascii=False)


class Violation(BaseModel):
    """A process violation derived from the event stream or the gate."""
    model_config = ConfigDict(populate_by_name=True)

    type: ViolationType
    severity: Severity = Severity.WARNING
    message: str
    files: List[str] = Field(default_factory=list)
    pending_edits: Optional[int] = Field(default=None, alias="pendingEdits")
    reason: Optional[str] = None
    timestamp: int = Field(default_factory=epoch_ms)
    iso_time: str = Field(default_factory=lambda: utc_now().isoformat())

    def to_json(self) -> str:
        data = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        return json.dumps(data, ensure_ascii=False)


class PendingWork(BaseModel):
    """Counters reconstructed by folding the unexpired event stream."""
    pending_edits: int = 0
    pending_developers: int = 0
    pending_reviewers: int = 0
    edit_files: List[str] = Field(default_factory=list)


# ============================================================================
# Checklist Schema
# ============================================================================

class ChecklistTask(CamelModel):
    """A task line parsed from the checklist document."""
    id: str
    title: str
    status: TaskStatus = TaskStatus.PENDING
    group: Optional[str] = None
    execution_mode: ExecutionMode = ExecutionMode.SEQUENTIAL
    agent: Optional[str] = None
    depends_on: List[str] = Field(default_factory=list)
    files: List[str] = Field(default_factory=list)
    output: Optional[str] = None


class TodoItem(CamelModel):
    """Entry of the orchestrator's todo-list representation."""
    content: str
    status: TaskStatus
    active_form: str


# ============================================================================
# Hook Protocol
# ============================================================================

class ToolInvocation(BaseModel):
    """A tool call as described by the orchestrating agent."""
    tool_name: str = ""
    tool_input: Dict[str, Any] = Field(default_factory=dict)
    tool_output: str = ""

    @classmethod
    def from_payload(cls, payload: Optional[Dict[str, Any]]) -> "ToolInvocation":
        """
        Build an invocation from a hook payload.

        Accepts ``tool_input``/``parameters``/``params`` for the arguments and
        ``tool_output``/``tool_response`` for the result; non-string results
        are flattened to text.
        """
        if not isinstance(payload, dict):
            return cls()
        tool_name = payload.get("tool_name") or payload.get("toolName") or ""
        tool_input = (payload.get("tool_input") or payload.get("parameters")
                      or payload.get("params") or {})
        if not isinstance(tool_input, dict):
            tool_input = {}
        raw_output = payload.get("tool_output")
        if raw_output is None:
            raw_output = payload.get("tool_response")
        return cls(tool_name=str(tool_name), tool_input=tool_input,
                   tool_output=_flatten_output(raw_output))

    @property
    def file_path(self) -> Optional[str]:
        return self.tool_input.get("file_path") or self.tool_input.get("notebook_path")

    @property
    def subagent_type(self) -> str:
        return str(self.tool_input.get("subagent_type") or "")

    @property
    def prompt(self) -> str:
        return str(self.tool_input.get("prompt") or self.tool_input.get("description") or "")

    @property
    def is_delegation(self) -> bool:
        return self.tool_name == "Task"

    @property
    def is_edit(self) -> bool:
        return self.tool_name in EDIT_TOOLS


EDIT_TOOLS = ("Edit", "Write", "MultiEdit", "NotebookEdit")


def _flatten_output(raw: Any) -> str:
    if raw is None:
        return ""
    if isinstance(raw, str):
        return raw
    if isinstance(raw, dict):
        content = raw.get("content")
        if content is not None:
            return _flatten_output(content)
        if "text" in raw:
            return str(raw["text"])
        return json.dumps(raw, ensure_ascii=False)
    if isinstance(raw, list):
        return "\n".join(_flatten_output(part) for part in raw)
    return str(raw)


class GateDecision(BaseModel):
    """Allow/block answer of the pre-invocation gate."""
    decision: Literal["allow", "block"] = "allow"
    reason: Optional[str] = None

    @classmethod
    def allow(cls) -> "GateDecision":
        return cls(decision="allow")

    @classmethod
    def block(cls, reason: str) -> "GateDecision":
        return cls(decision="block", reason=reason)

    @property
    def blocked(self) -> bool:
        return self.decision == "block"

    def to_output(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class TransitionResult(BaseModel):
    """What the transition engine decided for a completed invocation."""
    role: Optional[str] = None
    next_phase: Optional[Phase] = None
    status: TransitionStatus = TransitionStatus.UNKNOWN
    from_phase: Optional[Phase] = None
    to_phase: Optional[Phase] = None

    @property
    def changed(self) -> bool:
        return self.from_phase != self.to_phase
