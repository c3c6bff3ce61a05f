"""
Hook handler tests: payload parsing and end-to-end D→R→T flows
"""

import io
import json
import os
import time
from unittest.mock import MagicMock, patch

import pytest

from conftest import task_call, task_payload
from workflow_gate.hooks import HANDLERS, parse_payload, read_stdin, run_hook
from workflow_gate.schema import Phase, ViolationType
from workflow_gate.tasks import TODO_SYNC_OPEN


def edit_payload(file_path, tool="Edit"):
    return {"tool_name": tool, "tool_input": {"file_path": file_path}}


class TestPayload:

    def test_parse_object(self):
        assert parse_payload('{"tool_name": "Edit"}') == {"tool_name": "Edit"}

    @pytest.mark.parametrize("text", ["", "   ", "not json", "[1, 2]", "null"])
    def test_parse_rejects(self, text):
        assert parse_payload(text) is None

    def test_read_in_memory_stream(self):
        assert read_stdin(1.0, io.StringIO('{"a": 1}')) == '{"a": 1}'

    def test_read_terminal_gives_nothing(self):
        stream = MagicMock()
        stream.fileno.return_value = 0
        stream.isatty.return_value = True

        assert read_stdin(1.0, stream) == ""
        stream.read.assert_not_called()

    def test_read_pipe_until_eof(self):
        read_fd, write_fd = os.pipe()
        os.write(write_fd, b'{"a": 1}')
        os.close(write_fd)

        with os.fdopen(read_fd) as stream:
            assert read_stdin(1.0, stream) == '{"a": 1}'

    def test_read_open_pipe_stops_at_deadline(self):
        """A writer that never closes cannot hold the hook past its timeout"""
        read_fd, write_fd = os.pipe()
        try:
            os.write(write_fd, b'{"a": 1}')
            with os.fdopen(read_fd) as stream:
                started = time.monotonic()
                assert read_stdin(0.2, stream) == '{"a": 1}'
                assert time.monotonic() - started < 2.0
        finally:
            os.close(write_fd)


class TestGateHook:

    def test_empty_payload_allows(self, runner):
        assert json.loads(runner.handle_gate(None)) == {"decision": "allow"}

    def test_blocked_code_edit_is_recorded(self, limited_config, runner, store):
        """A blocked main-agent edit counts and leaves a violation record"""
        output = json.loads(runner.handle_gate(edit_payload("src/app.py")))

        assert output["decision"] == "block"
        assert "Task(developer)" in output["reason"]
        assert store.load().delegation_counters.blocked == 1
        violation = runner.events.violations()[0]
        assert violation.type == ViolationType.BLOCKED_EDIT
        assert violation.files == ["src/app.py"]

    def test_non_code_edit_allowed(self, limited_config, runner, store):
        assert json.loads(runner.handle_gate(edit_payload("README.md"))) == {"decision": "allow"}
        assert store.load().delegation_counters.blocked == 0

    def test_internal_error_fails_open(self, runner):
        with patch.object(runner.gate, "check", side_effect=RuntimeError("boom")):
            output = runner.handle_gate(task_payload("tester"))
        assert json.loads(output) == {"decision": "allow"}

    def test_run_hook_reads_stream(self, runner):
        stream = io.StringIO(json.dumps(task_payload("reviewer")))
        assert json.loads(run_hook("gate", runner, stream)) == {"decision": "allow"}

    def test_run_hook_gate_failure_allows(self, runner):
        failing = MagicMock(side_effect=RuntimeError("boom"))
        with patch.dict(HANDLERS, {"gate": failing}):
            output = run_hook("gate", runner, io.StringIO("{}"))
        assert json.loads(output) == {"decision": "allow"}

    def test_run_hook_post_failure_is_silent(self, runner):
        with patch.object(runner.store, "load", side_effect=RuntimeError("boom")):
            stream = io.StringIO(json.dumps(task_payload("developer")))
            assert run_hook("post", runner, stream) is None


class TestPostHook:

    def test_irrelevant_tool(self, runner, store):
        assert runner.handle_post({"tool_name": "Read", "tool_input": {"file_path": "a.py"}}) is None
        assert store.saves == 0

    def test_direct_non_code_edit_counted(self, runner, store):
        runner.handle_post(edit_payload("docs/notes.md"))
        assert store.load().delegation_counters.direct_edits == 1

    def test_direct_code_edit_tracked(self, runner):
        runner.handle_post(edit_payload("src/app.py"))

        violations = runner.events.violations()
        assert [v.type for v in violations] == [ViolationType.MAIN_AGENT_CODE_EDIT]

    def test_subagent_edit_not_flagged(self, config, runner):
        config.main_agent_limits.in_subagent = True
        runner.handle_post(edit_payload("src/app.py"))
        assert runner.events.violations() == []

    def test_report(self, runner, store):
        runner.handle_post(task_payload("developer", prompt="Fix it"))
        message = json.loads(runner.handle_report())["systemMessage"]

        assert "Delegated to sub-agents: 1" in message
        assert "Delegation rate: 1/1 (100%)" in message


class TestWorkflowFlow:
    """A change walked through planning, development, review and test"""

    def gate(self, runner, payload):
        return json.loads(runner.handle_gate(payload))

    def test_full_cycle(self, runner, store, tasks_md, effects):
        # Planning discovers the checklist
        output = runner.handle_post(task_payload("architect", prompt="Plan the settings page",
                                                 output="Plan written"))
        state = store.load()
        assert state.phase == Phase.PLANNING
        assert state.change_id.startswith("ad-hoc-plan-the-settings-")
        assert TODO_SYNC_OPEN in output
        assert state.task_sync_info.total_tasks == 4

        # Development of task 1.1
        assert self.gate(runner, task_payload("developer"))["decision"] == "allow"
        output = runner.handle_post(task_payload("developer", prompt="Implement Task 1.1"))
        state = store.load()
        assert state.phase == Phase.DEVELOP
        assert state.task.current == "1.1"
        assert "- [~] 1.1 " in tasks_md.read_text()
        assert "Task(reviewer)" in output

        # Testing before review is refused
        decision = self.gate(runner, task_payload("tester"))
        assert decision["decision"] == "block"
        assert "reviewer first" in decision["reason"]

        # Review approves
        assert self.gate(runner, task_payload("reviewer"))["decision"] == "allow"
        runner.handle_post(task_payload("reviewer", prompt="Review Task 1.1", output="LGTM, approved"))
        state = store.load()
        assert state.phase == Phase.TEST
        assert state.task.reviewed is True

        # Only the tester may follow an approved review
        decision = self.gate(runner, task_payload("developer"))
        assert decision["decision"] == "block"
        assert "Task(tester)" in decision["reason"]
        assert self.gate(runner, task_payload("tester"))["decision"] == "allow"

        # Code is frozen while testing
        assert self.gate(runner, edit_payload("src/settings.py"))["decision"] == "block"

        # Tests pass: the task is checked off and the clean tree closes the change
        output = runner.handle_post(task_payload("tester", prompt="Test Task 1.1",
                                                 output="All tests passed"))
        state = store.load()
        assert "- [x] 1.1 " in tasks_md.read_text()
        assert state.task.current is None
        assert state.phase == Phase.DONE
        assert state.previous_phase == Phase.COMPLETING
        assert "state is now DONE" in output
        assert state.delegation_counters.delegated == 4

    def test_next_change_keeps_syncing_checklist(self, runner, store, tasks_md):
        """The checklist found during planning is still updated after a change is done"""
        runner.handle_post(task_payload("architect", prompt="Plan the settings page", output="Plan written"))
        runner.handle_post(task_payload("developer", prompt="Implement Task 1.1"))
        runner.handle_post(task_payload("reviewer", prompt="Review Task 1.1", output="LGTM, approved"))
        runner.handle_post(task_payload("tester", prompt="Test Task 1.1", output="All tests passed"))
        assert store.load().phase == Phase.DONE

        # A second task starts a new change
        assert self.gate(runner, task_payload("developer"))["decision"] == "allow"
        output = runner.handle_post(task_payload("developer", prompt="Implement Task 2.2"))
        state = store.load()
        assert state.phase == Phase.DEVELOP
        assert state.task.current == "2.2"
        assert state.task_sync_info.tasks_file == str(tasks_md)
        assert "- [~] 2.2 " in tasks_md.read_text()
        assert "Task 2.2 in progress" in output

        runner.handle_post(task_payload("reviewer", prompt="Review Task 2.2", output="LGTM, approved"))
        output = runner.handle_post(task_payload("tester", prompt="Test Task 2.2",
                                                 output="All tests passed"))
        state = store.load()
        assert "- [x] 2.2 " in tasks_md.read_text()
        assert "Task 2.2 completed" in output
        assert state.phase == Phase.DONE

    def test_failure_requires_debugger(self, runner, store, make_state):
        store.save(make_state(Phase.TEST, current="2.1", reviewed=True))

        runner.handle_post(task_payload("tester", output="2 tests failed"))
        assert store.load().phase == Phase.DEBUG

        decision = self.gate(runner, task_payload("developer"))
        assert decision["decision"] == "block"
        assert "debugger" in decision["reason"]
        assert self.gate(runner, task_payload("debugger"))["decision"] == "allow"

        output = runner.handle_post(task_payload("debugger", output="Fixed the null check"))
        state = store.load()
        assert state.phase == Phase.DEVELOP
        assert state.task.test_failed is False
        assert "Task 2.1 debugged" in output

        # The reviewed fix goes straight back to the tester
        assert self.gate(runner, task_payload("developer"))["decision"] == "block"
        assert self.gate(runner, task_payload("tester"))["decision"] == "allow"

    def test_rejection_loops_back(self, runner, store, make_state):
        store.save(make_state(Phase.REVIEW))

        runner.handle_post(task_payload("reviewer", output="Request changes: missing tests"))

        assert store.load().phase == Phase.DEVELOP
        assert self.gate(runner, task_payload("developer"))["decision"] == "allow"

    def test_completing_blocks_new_work(self, runner, store, make_state, effects):
        store.save(make_state(Phase.COMPLETING))
        effects.git_is_clean.return_value = False

        runner.handle_post({"tool_name": "Bash", "tool_input": {"command": "git status"}})

        state = store.load()
        assert state.phase == Phase.COMPLETING
        assert state.completion.unmet_items() == ["git_commit"]
        assert self.gate(runner, task_payload("developer"))["decision"] == "block"
        assert "git_commit" in runner.gate.check_completion(task_call("developer"), state).reason
