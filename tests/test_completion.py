"""
Closing checklist tests
"""

import pytest

from workflow_gate.completion import CompletionChecker, format_checklist
from workflow_gate.schema import Phase, WorkflowState


@pytest.fixture
def checker(config, effects):
    return CompletionChecker(config, effects)


@pytest.fixture
def completing_state():
    return WorkflowState(phase=Phase.COMPLETING, change_id="add-dashboard")


def write_change(config, change_id, proposal):
    change_dir = config.paths.resolve("changes_dir") / change_id
    change_dir.mkdir(parents=True)
    (change_dir / "proposal.md").write_text(proposal, encoding="utf-8")
    return change_dir


class TestChecklist:

    def test_all_done_advances_to_done(self, checker, completing_state, effects):
        """Clean tree and archived change complete the workflow"""
        message = checker.run(completing_state)

        assert completing_state.phase == Phase.DONE
        assert completing_state.previous_phase == Phase.COMPLETING
        assert completing_state.completion.all_required_done is True
        assert completing_state.completion.checklist == {
            "git_commit": True, "archive_change": True, "cleanup_temp": True,
        }
        assert completing_state.timestamps.completed_at is not None
        assert "DONE" in message
        effects.notify.assert_called_once()

    def test_dirty_tree_blocks_done(self, checker, completing_state, effects):
        effects.git_is_clean.return_value = False

        checker.run(completing_state)

        assert completing_state.phase == Phase.COMPLETING
        assert completing_state.completion.unmet_items() == ["git_commit"]
        assert completing_state.completion.last_checked_at is not None

    def test_unarchived_change_blocks_done(self, checker, config, completing_state):
        write_change(config, "add-dashboard", "Backend only")

        checker.run(completing_state)

        assert completing_state.phase == Phase.COMPLETING
        assert completing_state.completion.checklist["archive_change"] is False

    def test_not_checked_outside_completing(self, checker):
        state = WorkflowState(phase=Phase.DEVELOP, change_id="x")
        assert checker.run(state) is None
        assert state.completion.checklist == {}

    def test_checked_when_last_task_passes(self, checker):
        """A passing tester on a fully checked-off list triggers the check early"""
        state = WorkflowState(phase=Phase.TEST, change_id="x")

        assert checker.run(state, tester_passed=True, all_tasks_complete=True) is not None
        assert state.completion.all_required_done is True
        assert state.phase == Phase.TEST


class TestDeliverable:

    def test_ui_change_requires_opening(self, checker, config, completing_state):
        write_change(config, "add-dashboard",
                     "Build the dashboard UI\n- [ ] 1.1 Page | files: /tmp/site/index.html\n")

        items = {i.id: i for i in checker.checklist(completing_state)}

        assert items["open_deliverable"].required
        assert not items["open_deliverable"].done
        assert items["open_deliverable"].command == "open /tmp/site/index.html"

    def test_backend_change_has_no_deliverable(self, checker, config):
        state = WorkflowState(phase=Phase.COMPLETING, change_id="backend")
        write_change(config, "backend", "Refactor the database layer")

        assert checker.find_deliverable(state) is None
        assert "open_deliverable" not in {i.id for i in checker.checklist(state)}

    def test_tilde_path_expanded(self, checker, config, completing_state, monkeypatch):
        monkeypatch.setenv("HOME", "/home/dev")
        write_change(config, "add-dashboard", "frontend | files: ~/site/index.html")

        assert checker.find_deliverable(completing_state) == "/home/dev/site/index.html"

    def test_opening_command_marks_opened(self, checker, config, completing_state):
        write_change(config, "add-dashboard", "frontend | files: /tmp/site/index.html")

        message = checker.observe_command(completing_state, "open /tmp/site/index.html")

        assert message is not None
        assert completing_state.completion.deliverable_opened is True
        assert completing_state.completion.deliverable_opened_at is not None

    def test_unrelated_open_ignored(self, checker, config, completing_state):
        write_change(config, "add-dashboard", "frontend | files: /tmp/site/index.html")
        assert checker.observe_command(completing_state, "open README.md") is None
        assert checker.observe_command(completing_state, "ls /tmp/site/index.html") is None

    def test_auto_open(self, config, effects, completing_state):
        config.completion.auto_open_deliverable = True
        effects.open_path.return_value = True
        write_change(config, "add-dashboard", "frontend | files: /tmp/site/index.html")

        CompletionChecker(config, effects).evaluate(completing_state)

        effects.open_path.assert_called_once_with("/tmp/site/index.html")
        assert completing_state.completion.checklist["open_deliverable"] is True


class TestFormat:

    def test_lists_pending_commands(self, checker, completing_state, effects):
        effects.git_is_clean.return_value = False
        items = checker.evaluate(completing_state)

        text = format_checklist(items, "add-dashboard", completing_state.completion)

        assert "Change ID: add-dashboard" in text
        assert "🔴 1. Commit the code changes [pending]" in text
        assert "git commit" in text
