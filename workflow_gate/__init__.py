"""
Workflow Gate - D→R→T Workflow Enforcement for Agent Tool Calls

Gates the tool calls of an orchestrating agent against a fixed development
lifecycle and advances that lifecycle from sub-agent results, so that code
changes pass through Developer -> Reviewer -> Tester.
"""

__version__ = "2.0.0"

from .schema import (
    Phase,
    TransitionStatus,
    TaskStatus,
    ExecutionMode,
    EventType,
    ViolationType,
    WorkflowState,
    WorkflowEvent,
    Violation,
    ChecklistTask,
    TodoItem,
    ToolInvocation,
    GateDecision,
    TransitionResult,
)

from .config import GateConfig, ConfigManager, load_config
from .errors import WorkflowGateError, ConfigurationError, StateStoreError
from .state_store import StateStore, FileStateStore, InMemoryStateStore
from .classifier import OutcomeClassifier, KeywordClassifier, Outcome
from .gate import Gate
from .engine import TransitionEngine
from .events import EventLog, fold_events
from .tasks import TaskSynchronizer, parse_tasks
from .completion import CompletionChecker
from .report import build_report
from .hooks import HookRunner, run_hook

__all__ = [
    # Schema
    "Phase",
    "TransitionStatus",
    "TaskStatus",
    "ExecutionMode",
    "EventType",
    "ViolationType",
    "WorkflowState",
    "WorkflowEvent",
    "Violation",
    "ChecklistTask",
    "TodoItem",
    "ToolInvocation",
    "GateDecision",
    "TransitionResult",
    # Configuration
    "GateConfig",
    "ConfigManager",
    "load_config",
    # Errors
    "WorkflowGateError",
    "ConfigurationError",
    "StateStoreError",
    # Components
    "StateStore",
    "FileStateStore",
    "InMemoryStateStore",
    "OutcomeClassifier",
    "KeywordClassifier",
    "Outcome",
    "Gate",
    "TransitionEngine",
    "EventLog",
    "fold_events",
    "TaskSynchronizer",
    "parse_tasks",
    "CompletionChecker",
    "build_report",
    "HookRunner",
    "run_hook",
]
