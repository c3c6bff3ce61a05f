"""
Hook handlers.

Each handler receives one tool-invocation payload (already parsed from
stdin) and returns the text to write to stdout, or None for no output.
The gate answers with a ``{"decision": ...}`` object; the post-invocation
handlers answer with plain text.

``post`` runs update, track, sync and complete against a single load and
save of the state; the individual handlers exist for setups that register
them separately.
"""

import json
import logging
import os
import select
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, TextIO

from .classifier import OutcomeClassifier
from .completion import CompletionChecker
from .config import GateConfig
from .engine import TransitionEngine, describe_transition
from .events import EventLog
from .gate import Gate
from .notify import SystemEffects
from .report import build_report, system_message
from .schema import GateDecision, ToolInvocation, TransitionResult, TransitionStatus, WorkflowState
from .state_store import FileStateStore, StateStore
from .tasks import TaskSynchronizer
from .transitions import normalize_role

logger = logging.getLogger(__name__)

MAX_INPUT_BYTES = 1024 * 1024
READ_CHUNK_BYTES = 64 * 1024


def read_stdin(timeout: float, stream: Optional[TextIO] = None) -> str:
    """
    Read the hook payload within ``timeout`` seconds.

    The pipe is read in chunks until EOF or the deadline, whichever comes
    first, so a writer that never closes its end cannot hold the hook.
    Returns whatever arrived before the deadline; an empty string on a
    terminal or on read errors.
    """
    stream = stream if stream is not None else sys.stdin
    try:
        fileno = stream.fileno()
    except (AttributeError, OSError, ValueError):
        # In-memory streams cannot block
        return stream.read(MAX_INPUT_BYTES)

    try:
        if stream.isatty():
            return ""
        return _read_until(fileno, time.monotonic() + timeout).decode("utf-8", errors="replace")
    except (OSError, ValueError) as e:
        logger.debug("Could not read hook input: %s", e)
        return ""


def _read_until(fileno: int, deadline: float) -> bytes:
    chunks: List[bytes] = []
    total = 0
    while total < MAX_INPUT_BYTES:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            logger.debug("Hook input still open at the deadline; using %d bytes", total)
            break
        ready, _, _ = select.select([fileno], [], [], remaining)
        if not ready:
            logger.debug("No more hook input before the deadline (%d bytes)", total)
            break
        chunk = os.read(fileno, min(READ_CHUNK_BYTES, MAX_INPUT_BYTES - total))
        if not chunk:
            break
        chunks.append(chunk)
        total += len(chunk)
    return b"".join(chunks)


def parse_payload(text: str) -> Optional[Dict[str, Any]]:
    """Decode a payload; anything but a JSON object yields None."""
    if not text or not text.strip():
        return None
    try:
        data = json.loads(text)
    except ValueError as e:
        logger.debug("Hook input is not JSON: %s", e)
        return None
    if not isinstance(data, dict):
        logger.debug("Hook input is not an object")
        return None
    return data


def _join(messages: List[str]) -> Optional[str]:
    parts = [m for m in messages if m]
    return "\n".join(parts) if parts else None


class HookRunner:
    """Wires the workflow components together for one hook process"""

    def __init__(self, config: GateConfig, store: Optional[StateStore] = None,
                 events: Optional[EventLog] = None, effects: Optional[SystemEffects] = None,
                 classifier: Optional[OutcomeClassifier] = None,
                 project_path: Optional[Path] = None):
        self.config = config
        self.store = store or FileStateStore(config.paths.resolve("state_file"))
        self.events = events or EventLog.from_config(config)
        self.effects = effects or SystemEffects(
            timeout=config.completion.command_timeout_seconds,
            notifications=config.notification.enabled,
            title=config.notification.title,
        )
        self.project_path = Path(project_path) if project_path else Path.cwd()
        self.gate = Gate(config, self.store, self.events)
        self.engine = TransitionEngine(classifier, self.effects)
        self.tasks = TaskSynchronizer(config.task_sync)
        self.completion = CompletionChecker(config, self.effects)

    # ------------------------------------------------------------------
    # Pre-invocation
    # ------------------------------------------------------------------

    def gate_decision(self, payload: Optional[Dict[str, Any]]) -> GateDecision:
        """Gate a proposed invocation; internal errors fail open."""
        if payload is None:
            return GateDecision.allow()
        try:
            return self.gate.check(ToolInvocation.from_payload(payload))
        except Exception:
            logger.exception("Gate failed; allowing the invocation")
            return GateDecision.allow()

    def handle_gate(self, payload: Optional[Dict[str, Any]]) -> str:
        return json.dumps(self.gate_decision(payload).to_output(), ensure_ascii=False)

    # ------------------------------------------------------------------
    # Post-invocation steps (mutate the loaded state in place)
    # ------------------------------------------------------------------

    def _load(self) -> WorkflowState:
        state = self.store.load()
        if state.project_path is None:
            state.project_path = str(self.project_path)
        return state

    def _update(self, state: WorkflowState, invocation: ToolInvocation,
                messages: List[str]) -> Optional[TransitionResult]:
        if invocation.is_delegation:
            result = self.engine.apply(state, invocation)
            messages.append(describe_transition(result))
            return result
        if invocation.is_edit:
            self.engine.record_direct_edit(state, invocation, self.config)
        return None

    def _track(self, invocation: ToolInvocation, messages: List[str]) -> None:
        if invocation.is_edit:
            in_subagent = self.config.main_agent_limits.in_subagent
            self.events.record_edit(invocation.tool_name, invocation.file_path,
                                    executor="subagent" if in_subagent else "main")
            if not in_subagent and self.config.is_code_file(invocation.file_path):
                self.events.record_main_agent_code_edit(invocation.tool_name, invocation.file_path)
        elif invocation.is_delegation:
            messages.append(self.events.record_completion(
                invocation.subagent_type, invocation.prompt or None))

    def _sync(self, state: WorkflowState, invocation: ToolInvocation,
              status: TransitionStatus, messages: List[str]) -> None:
        if not invocation.is_delegation:
            return
        role = normalize_role(invocation.subagent_type)
        if role == "architect":
            messages.append(self.tasks.on_architect_complete(
                state, invocation.tool_output, self.project_path))
        elif role == "developer":
            messages.append(self.tasks.on_developer_start(state, invocation.prompt))
        elif role == "tester" and status == TransitionStatus.PASS:
            messages.append(self.tasks.on_tester_pass(state, invocation.prompt))
        elif role == "debugger":
            messages.append(self.tasks.on_debugger_complete(state))

    def _complete(self, state: WorkflowState, invocation: ToolInvocation,
                  status: TransitionStatus, messages: List[str]) -> None:
        if invocation.tool_name not in ("Task", "Bash"):
            return
        if invocation.tool_name == "Bash":
            command = str(invocation.tool_input.get("command") or "")
            messages.append(self.completion.observe_command(state, command))

        tester_passed = (normalize_role(invocation.subagent_type) == "tester"
                         and status == TransitionStatus.PASS)
        all_done = tester_passed and self.tasks.all_completed(state)
        messages.append(self.completion.run(state, tester_passed, all_done,
                                            cwd=state.project_path))

    def _status_of(self, invocation: ToolInvocation,
                   result: Optional[TransitionResult] = None) -> TransitionStatus:
        if result is not None:
            return result.status
        if not invocation.is_delegation:
            return TransitionStatus.UNKNOWN
        return self.engine.decide(invocation.subagent_type, invocation.tool_output).status

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def handle_update(self, payload: Optional[Dict[str, Any]]) -> Optional[str]:
        """Advance the phase after a delegation; count direct edits."""
        if payload is None:
            return None
        invocation = ToolInvocation.from_payload(payload)
        if not (invocation.is_delegation or invocation.is_edit):
            return None
        state = self._load()
        messages: List[str] = []
        self._update(state, invocation, messages)
        self.store.save(state)
        return _join(messages)

    def handle_track(self, payload: Optional[Dict[str, Any]]) -> Optional[str]:
        """Append to the event log and remind of the next D→R→T step."""
        if payload is None:
            return None
        messages: List[str] = []
        self._track(ToolInvocation.from_payload(payload), messages)
        return _join(messages)

    def handle_sync(self, payload: Optional[Dict[str, Any]]) -> Optional[str]:
        """Keep the checklist document in step with the workflow."""
        if payload is None:
            return None
        invocation = ToolInvocation.from_payload(payload)
        if not invocation.is_delegation:
            return None
        state = self._load()
        messages: List[str] = []
        self._sync(state, invocation, self._status_of(invocation), messages)
        self.store.save(state)
        return _join(messages)

    def handle_complete(self, payload: Optional[Dict[str, Any]]) -> Optional[str]:
        """Evaluate the closing checklist."""
        if payload is None:
            return None
        invocation = ToolInvocation.from_payload(payload)
        if invocation.tool_name not in ("Task", "Bash"):
            return None
        state = self._load()
        messages: List[str] = []
        self._complete(state, invocation, self._status_of(invocation), messages)
        self.store.save(state)
        return _join(messages)

    def handle_post(self, payload: Optional[Dict[str, Any]]) -> Optional[str]:
        """All post-invocation steps with one state load and save."""
        if payload is None:
            return None
        invocation = ToolInvocation.from_payload(payload)
        relevant = invocation.is_delegation or invocation.is_edit or invocation.tool_name == "Bash"
        if not relevant:
            return None

        state = self._load()
        messages: List[str] = []
        result = self._update(state, invocation, messages)
        status = self._status_of(invocation, result)
        self._track(invocation, messages)
        self._sync(state, invocation, status, messages)
        self._complete(state, invocation, status, messages)
        self.store.save(state)
        return _join(messages)

    def handle_report(self, payload: Optional[Dict[str, Any]] = None) -> str:
        """Delegation statistics as a ``systemMessage`` envelope."""
        state = self.store.load()
        return system_message(build_report(state.delegation_counters, self.events.violations()))


HANDLERS = {
    "gate": HookRunner.handle_gate,
    "update": HookRunner.handle_update,
    "track": HookRunner.handle_track,
    "sync": HookRunner.handle_sync,
    "complete": HookRunner.handle_complete,
    "post": HookRunner.handle_post,
}


def run_hook(name: str, runner: HookRunner, stream: Optional[TextIO] = None) -> Optional[str]:
    """
    Read a payload and dispatch it to the named handler.

    Never raises: a failing post handler produces no output, a failing gate
    allows the invocation.
    """
    payload = parse_payload(read_stdin(runner.config.stdin_timeout_seconds, stream))
    handler = HANDLERS[name]
    try:
        return handler(runner, payload)
    except Exception:
        logger.exception("Hook %s failed", name)
        if name == "gate":
            return json.dumps(GateDecision.allow().to_output())
        return None


