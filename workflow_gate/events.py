"""
Workflow Event Log

Append-only JSON Lines record of edits and sub-agent completions. Current
pending counters are never stored; they are rebuilt on demand by folding the
unexpired part of the stream. Appends need no read-before-write, so
concurrent hook processes cannot lose each other's records.

Derived violations go to a second append-only stream.
"""

import json
import logging
import os
from pathlib import Path
from typing import Iterable, List, Optional

from pydantic import ValidationError

from .config import EventLogConfig, GateConfig
from .schema import EventType, PendingWork, Severity, Violation, ViolationType, WorkflowEvent
from .transitions import normalize_role
from .utils import atomic_write_text, epoch_ms

logger = logging.getLogger(__name__)


COMPLETION_EVENTS = {
    "developer": EventType.DEVELOPER_COMPLETE,
    "reviewer": EventType.REVIEWER_COMPLETE,
    "tester": EventType.TESTER_COMPLETE,
}

REMINDERS = {
    "developer": "🔄 D→R→T next step: call Task(reviewer) now",
    "reviewer": "🔄 D→R→T next step: call Task(tester) now",
}

_RULE = "━" * 50


def fold_events(events: Iterable[WorkflowEvent]) -> PendingWork:
    """
    Reduce an ordered event sequence to pending counters.

    Pure and order-sensitive: a review clears the edits before it, not after.
    """
    pending_edits = 0
    pending_developers = 0
    pending_reviewers = 0
    edit_files: List[str] = []

    for event in events:
        if event.type == EventType.EDIT:
            pending_edits += 1
            if event.file:
                edit_files.append(event.file)
        elif event.type == EventType.DEVELOPER_COMPLETE:
            pending_developers += 1
        elif event.type == EventType.REVIEWER_COMPLETE:
            pending_developers = max(0, pending_developers - 1)
            pending_reviewers += 1
            pending_edits = 0
            edit_files = []
        elif event.type == EventType.TESTER_COMPLETE:
            pending_reviewers = max(0, pending_reviewers - 1)
            pending_edits = 0
            edit_files = []

    return PendingWork(
        pending_edits=pending_edits,
        pending_developers=pending_developers,
        pending_reviewers=pending_reviewers,
        edit_files=list(dict.fromkeys(edit_files)),
    )


def format_reminder(text: str) -> str:
    return f"\n{_RULE}\n{text}\n{_RULE}\n"


class EventLog:
    """
    Event and violation streams.

    All operations are best-effort: I/O failures are logged at debug level
    and never propagate to the hook.
    """

    def __init__(self, events_file: Path, violations_file: Path,
                 settings: Optional[EventLogConfig] = None):
        self.events_file = Path(events_file).expanduser()
        self.violations_file = Path(violations_file).expanduser()
        self.settings = settings or EventLogConfig()

    @classmethod
    def from_config(cls, config: GateConfig) -> "EventLog":
        return cls(
            config.paths.resolve("events_file"),
            config.paths.resolve("violations_file"),
            config.event_log,
        )

    # ------------------------------------------------------------------
    # Appending
    # ------------------------------------------------------------------

    def _append_line(self, path: Path, line: str) -> bool:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, 'a', encoding='utf-8') as f:
                f.write(line + '\n')
                f.flush()
                os.fsync(f.fileno())
            return True
        except OSError as e:
            logger.debug("Could not append to %s: %s", path, e)
            return False

    def append(self, event: WorkflowEvent) -> bool:
        """Append one event, then truncate the stream if it grew too large."""
        written = self._append_line(self.events_file, event.to_json())
        if written:
            self.truncate_if_needed()
        return written

    def append_violation(self, violation: Violation) -> bool:
        logger.info("Workflow violation (%s): %s", violation.type.value, violation.message)
        return self._append_line(self.violations_file, violation.to_json())

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def _read_lines(self, path: Path) -> List[str]:
        if not path.exists():
            return []
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return [line for line in f.read().split('\n') if line.strip()]
        except (OSError, UnicodeDecodeError) as e:
            logger.debug("Could not read %s: %s", path, e)
            return []

    def read_recent(self, now_ms: Optional[int] = None) -> List[WorkflowEvent]:
        """
        Events inside the staleness window, in stream order.

        Unparseable lines and records without a timestamp are skipped.
        """
        now = epoch_ms() if now_ms is None else now_ms
        window_ms = self.settings.stale_timeout_seconds * 1000
        events = []

        for line in self._read_lines(self.events_file):
            try:
                data = json.loads(line)
            except ValueError:
                continue
            if not isinstance(data, dict):
                continue
            timestamp = data.get("timestamp")
            if not isinstance(timestamp, (int, float)) or now - timestamp >= window_ms:
                continue
            try:
                events.append(WorkflowEvent.model_validate(data))
            except ValidationError:
                continue

        return events

    def pending(self, now_ms: Optional[int] = None) -> PendingWork:
        """Current pending counters rebuilt from the stream."""
        return fold_events(self.read_recent(now_ms))

    def violations(self) -> List[Violation]:
        """All parseable records of the violation stream."""
        result = []
        for line in self._read_lines(self.violations_file):
            try:
                result.append(Violation.model_validate_json(line))
            except ValidationError:
                continue
        return result

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def truncate_if_needed(self) -> bool:
        """
        Keep only the newest records once the stream exceeds the byte ceiling.

        Returns:
            True if the stream was rewritten
        """
        try:
            if not self.events_file.exists():
                return False
            if self.events_file.stat().st_size <= self.settings.max_log_size_bytes:
                return False
        except OSError as e:
            logger.debug("Could not stat %s: %s", self.events_file, e)
            return False

        lines = self._read_lines(self.events_file)
        keep = self.settings.max_events_to_keep
        if len(lines) <= keep:
            return False

        try:
            atomic_write_text(self.events_file, '\n'.join(lines[-keep:]) + '\n')
        except OSError as e:
            logger.debug("Could not truncate %s: %s", self.events_file, e)
            return False

        logger.debug("Truncated event log to the newest %d records", keep)
        return True

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    def record_edit(self, tool: str, file_path: Optional[str],
                    executor: str = "main") -> Optional[Violation]:
        """
        Record an edit and check for unreviewed edits.

        Returns:
            The ``missing_review`` violation appended, if any
        """
        self.append(WorkflowEvent(
            type=EventType.EDIT,
            tool=tool,
            file=file_path or "unknown",
            executor=executor,
        ))

        state = self.pending()
        if state.pending_edits <= self.settings.warning_threshold_edits:
            return None

        violation = Violation(
            type=ViolationType.MISSING_REVIEW,
            severity=Severity.WARNING,
            message=f"{state.pending_edits} edits have not been reviewed",
            pending_edits=state.pending_edits,
            files=state.edit_files,
        )
        self.append_violation(violation)
        return violation

    def record_completion(self, subagent_type: Optional[str],
                          description: Optional[str] = None) -> Optional[str]:
        """
        Record a developer/reviewer/tester completion.

        Returns:
            Reminder of the next D→R→T step, if there is one
        """
        role = normalize_role(subagent_type)
        event_type = COMPLETION_EVENTS.get(role)
        if event_type is None:
            return None

        self.append(WorkflowEvent(type=event_type, description=description or "unknown"))
        reminder = REMINDERS.get(role)
        return format_reminder(reminder) if reminder else None

    def record_main_agent_code_edit(self, tool: str, file_path: str) -> Violation:
        violation = Violation(
            type=ViolationType.MAIN_AGENT_CODE_EDIT,
            severity=Severity.WARNING,
            message=f"Main agent edited code directly with {tool}; delegate to Task(developer)",
            files=[file_path],
        )
        self.append_violation(violation)
        return violation

    def record_blocked_edit(self, tool: str, file_path: Optional[str], reason: str) -> Violation:
        violation = Violation(
            type=ViolationType.BLOCKED_EDIT,
            severity=Severity.INFO,
            message=f"Blocked {tool} by the main agent",
            files=[file_path] if file_path else [],
            reason=reason,
        )
        self.append_violation(violation)
        return violation
