"""
Event log and violation tracker tests
"""

import json

from workflow_gate.config import EventLogConfig
from workflow_gate.events import EventLog, fold_events
from workflow_gate.schema import EventType, ViolationType, WorkflowEvent
from workflow_gate.utils import epoch_ms


def event(kind: EventType, file=None, timestamp=None) -> WorkflowEvent:
    kwargs = {"type": kind, "file": file}
    if timestamp is not None:
        kwargs["timestamp"] = timestamp
    return WorkflowEvent(**kwargs)


class TestFold:
    """Reconstruction of pending counters"""

    def test_edits_accumulate(self):
        state = fold_events([event(EventType.EDIT, "a.py"), event(EventType.EDIT, "b.py")])

        assert state.pending_edits == 2
        assert state.edit_files == ["a.py", "b.py"]

    def test_files_deduplicated(self):
        state = fold_events([event(EventType.EDIT, "a.py"), event(EventType.EDIT, "a.py")])

        assert state.pending_edits == 2
        assert state.edit_files == ["a.py"]

    def test_review_clears_edits(self):
        state = fold_events([
            event(EventType.EDIT, "a.py"),
            event(EventType.DEVELOPER_COMPLETE),
            event(EventType.REVIEWER_COMPLETE),
        ])

        assert state.pending_edits == 0
        assert state.edit_files == []
        assert state.pending_developers == 0
        assert state.pending_reviewers == 1

    def test_tester_closes_review(self):
        state = fold_events([event(EventType.REVIEWER_COMPLETE), event(EventType.TESTER_COMPLETE)])
        assert state.pending_reviewers == 0

    def test_counters_never_negative(self):
        state = fold_events([event(EventType.REVIEWER_COMPLETE), event(EventType.TESTER_COMPLETE),
                             event(EventType.TESTER_COMPLETE)])
        assert state.pending_developers == 0
        assert state.pending_reviewers == 0

    def test_order_sensitive(self):
        """Edits after a review stay pending"""
        before = fold_events([event(EventType.EDIT, "a.py"), event(EventType.REVIEWER_COMPLETE)])
        after = fold_events([event(EventType.REVIEWER_COMPLETE), event(EventType.EDIT, "a.py")])

        assert before.pending_edits == 0
        assert after.pending_edits == 1

    def test_idempotent(self):
        events = [event(EventType.EDIT, "a.py"), event(EventType.DEVELOPER_COMPLETE)]
        assert fold_events(events) == fold_events(events)


class TestAppendAndRead:

    def test_append_writes_json_line(self, event_log):
        event_log.append(event(EventType.EDIT, "a.py"))

        lines = event_log.events_file.read_text().splitlines()
        assert len(lines) == 1
        record = json.loads(lines[0])
        assert record["type"] == "edit"
        assert record["file"] == "a.py"
        assert isinstance(record["timestamp"], int)
        assert "iso_time" in record

    def test_stale_events_dropped(self, event_log):
        now = epoch_ms()
        event_log.append(event(EventType.EDIT, "old.py", timestamp=now - 2 * 3600 * 1000))
        event_log.append(event(EventType.EDIT, "new.py", timestamp=now))

        recent = event_log.read_recent(now_ms=now)
        assert [e.file for e in recent] == ["new.py"]

    def test_unparseable_lines_skipped(self, event_log):
        event_log.events_file.parent.mkdir(parents=True, exist_ok=True)
        now = epoch_ms()
        event_log.events_file.write_text(
            "not json\n"
            + json.dumps({"type": "edit", "file": "ok.py", "timestamp": now}) + "\n"
            + json.dumps({"type": "mystery", "timestamp": now}) + "\n"
            + json.dumps({"type": "edit", "file": "no-timestamp.py"}) + "\n"
        )

        assert [e.file for e in event_log.read_recent(now_ms=now)] == ["ok.py"]

    def test_missing_file(self, event_log):
        assert event_log.read_recent() == []
        assert event_log.violations() == []


class TestViolations:

    def test_two_edits_one_violation(self, event_log):
        """Two unreviewed edits exceed the threshold once"""
        assert event_log.record_edit("Edit", "a.py") is None
        violation = event_log.record_edit("Write", "b.py")

        assert violation.type == ViolationType.MISSING_REVIEW
        assert violation.pending_edits == 2
        assert violation.files == ["a.py", "b.py"]
        assert len(event_log.violations()) == 1

    def test_same_file_twice(self, event_log):
        event_log.record_edit("Edit", "a.py")
        violation = event_log.record_edit("Edit", "a.py")
        assert violation.files == ["a.py"]

    def test_review_resets(self, event_log):
        event_log.record_edit("Edit", "a.py")
        event_log.record_completion("reviewer")
        assert event_log.record_edit("Edit", "b.py") is None

    def test_violation_serialized_camel_case(self, event_log):
        event_log.record_edit("Edit", "a.py")
        event_log.record_edit("Edit", "b.py")

        record = json.loads(event_log.violations_file.read_text().splitlines()[0])
        assert record["pendingEdits"] == 2
        assert record["severity"] == "warning"

    def test_main_agent_code_edit(self, event_log):
        event_log.record_main_agent_code_edit("Edit", "src/app.py")

        violations = event_log.violations()
        assert violations[0].type == ViolationType.MAIN_AGENT_CODE_EDIT
        assert violations[0].files == ["src/app.py"]


class TestReminders:

    def test_developer_reminds_reviewer(self, event_log):
        assert "Task(reviewer)" in event_log.record_completion("developer", "Task 1.1")

    def test_reviewer_reminds_tester(self, event_log):
        assert "Task(tester)" in event_log.record_completion("workflow:reviewer")

    def test_tester_records_without_reminder(self, event_log):
        assert event_log.record_completion("tester") is None
        assert event_log.read_recent()[0].type == EventType.TESTER_COMPLETE

    def test_other_roles_ignored(self, event_log):
        assert event_log.record_completion("architect") is None
        assert event_log.read_recent() == []


class TestTruncation:

    def test_keeps_newest_records(self, tmp_path):
        """600 records over the ceiling leave the newest 500"""
        log = EventLog(tmp_path / "events.jsonl", tmp_path / "violations.jsonl",
                       EventLogConfig(max_log_size_bytes=1024, max_events_to_keep=500))
        log.events_file.write_text(
            "".join(json.dumps({"type": "edit", "file": f"f{i}.py", "timestamp": i}) + "\n"
                    for i in range(600))
        )

        assert log.truncate_if_needed()

        lines = log.events_file.read_text().splitlines()
        assert len(lines) == 500
        assert json.loads(lines[0])["file"] == "f100.py"
        assert json.loads(lines[-1])["file"] == "f599.py"

    def test_under_ceiling_untouched(self, event_log):
        event_log.append(event(EventType.EDIT, "a.py"))
        assert not event_log.truncate_if_needed()

    def test_append_truncates(self, tmp_path):
        log = EventLog(tmp_path / "events.jsonl", tmp_path / "violations.jsonl",
                       EventLogConfig(max_log_size_bytes=200, max_events_to_keep=2))
        for i in range(5):
            log.append(event(EventType.EDIT, f"f{i}.py"))

        assert len(log.events_file.read_text().splitlines()) <= 2
