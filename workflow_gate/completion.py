"""
Closing checklist for the COMPLETING phase.

Items:
    git_commit        working tree clean (required)
    archive_change    change directory moved out of the changes dir (required)
    open_deliverable  UI deliverable opened for the user (required only when
                      the change describes a UI with an .html deliverable)
    cleanup_temp      temporary files removed (optional, not checked)

When every required item is done while in COMPLETING, the workflow advances
to DONE.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .config import GateConfig
from .notify import SystemEffects
from .schema import CompletionRecord, Phase, WorkflowState
from .utils import utc_now

logger = logging.getLogger(__name__)


UI_KEYWORDS = (
    "index.html", ".html", "UI", "ui", "介面", "界面", "前端", "frontend",
    "web app", "webapp", "網頁", "calculator", "計算機", "dashboard", "儀表板",
)
DELIVERABLE_PATH_RE = re.compile(r'files?:\s*(~?/[^\s|]+\.html)', re.IGNORECASE)


@dataclass
class ChecklistItem:
    """One closing action and whether it is done"""
    id: str
    description: str
    required: bool
    done: bool
    command: Optional[str] = None
    target: Optional[str] = None


class CompletionChecker:
    """Evaluates the closing checklist and advances COMPLETING to DONE."""

    def __init__(self, config: GateConfig, effects: Optional[SystemEffects] = None):
        self.config = config
        self.changes_dir = config.paths.resolve("changes_dir")
        self.effects = effects or SystemEffects(timeout=config.completion.command_timeout_seconds)

    def change_dir(self, state: WorkflowState) -> Optional[Path]:
        if not state.change_id:
            return None
        return self.changes_dir / state.change_id

    def find_deliverable(self, state: WorkflowState) -> Optional[str]:
        """
        Path of the UI deliverable the change promises, if any.

        Read from the change's proposal.md and tasks.md; requires both a UI
        keyword and an absolute ``files: /path/x.html`` reference.
        """
        change_dir = self.change_dir(state)
        if change_dir is None:
            return None

        content = ""
        for name in ("proposal.md", "tasks.md"):
            path = change_dir / name
            try:
                if path.is_file():
                    content += path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                logger.debug("Could not read %s: %s", path, e)
                return None

        if not any(keyword in content for keyword in UI_KEYWORDS):
            return None
        match = DELIVERABLE_PATH_RE.search(content)
        if not match:
            return None
        return str(Path(match.group(1)).expanduser())

    def checklist(self, state: WorkflowState, cwd: Optional[str] = None) -> List[ChecklistItem]:
        """Evaluate every closing action against the current environment."""
        change_dir = self.change_dir(state)
        items = [
            ChecklistItem(
                id="git_commit",
                description="Commit the code changes",
                required=True,
                done=self.effects.git_is_clean(cwd),
                command='git add . && git commit -m "..."',
            ),
            ChecklistItem(
                id="archive_change",
                description="Archive the change directory",
                required=True,
                done=change_dir is None or not change_dir.exists(),
                command=f"mv {change_dir} <archive>/" if change_dir else None,
            ),
            ChecklistItem(
                id="cleanup_temp",
                description="Clean up temporary files (if any)",
                required=False,
                done=True,
            ),
        ]

        deliverable = self.find_deliverable(state)
        if deliverable:
            items.append(ChecklistItem(
                id="open_deliverable",
                description="Open the UI deliverable for the user to accept",
                required=True,
                done=state.completion.deliverable_opened,
                command=f"open {deliverable}",
                target=deliverable,
            ))

        return items

    def evaluate(self, state: WorkflowState, cwd: Optional[str] = None) -> List[ChecklistItem]:
        """Evaluate the checklist and record the result on the state."""
        items = self.checklist(state, cwd)

        deliverable_item = next((i for i in items if i.id == "open_deliverable"), None)
        if (deliverable_item and not deliverable_item.done
                and self.config.completion.auto_open_deliverable):
            if self.effects.open_path(deliverable_item.target):
                self.mark_deliverable_opened(state)
                deliverable_item.done = True

        record = state.completion
        record.checklist = {item.id: item.done for item in items}
        record.all_required_done = all(item.done for item in items if item.required)
        record.last_checked_at = utc_now()
        return items

    @staticmethod
    def mark_deliverable_opened(state: WorkflowState) -> None:
        state.completion.deliverable_opened = True
        state.completion.deliverable_opened_at = utc_now()

    def should_check(self, state: WorkflowState, tester_passed: bool = False,
                     all_tasks_complete: bool = False) -> bool:
        """Whether the checklist applies right now."""
        return state.phase == Phase.COMPLETING or (tester_passed and all_tasks_complete)

    def observe_command(self, state: WorkflowState, command: str) -> Optional[str]:
        """Record a shell ``open <deliverable>`` run by the agent."""
        if not (command.startswith("open ") or " open " in command):
            return None
        deliverable = self.find_deliverable(state)
        if not deliverable or deliverable not in command:
            return None
        self.mark_deliverable_opened(state)
        return "✅ UI deliverable opened; waiting for the user's acceptance"

    def run(self, state: WorkflowState, tester_passed: bool = False,
            all_tasks_complete: bool = False, cwd: Optional[str] = None) -> Optional[str]:
        """
        Evaluate the checklist if it applies and advance to DONE when satisfied.

        Returns:
            The checklist summary for the agent, or None if nothing was checked
        """
        if not self.should_check(state, tester_passed, all_tasks_complete):
            return None

        items = self.evaluate(state, cwd)
        message = format_checklist(items, state.change_id, state.completion)

        if state.completion.all_required_done and state.phase == Phase.COMPLETING:
            state.transition_to(Phase.DONE)
            self.effects.notify(f"Workflow {state.change_id} completed" if state.change_id
                                else "Workflow completed")
            message += "\n✅ Workflow complete; state is now DONE\n"

        return message


def format_checklist(items: List[ChecklistItem], change_id: Optional[str],
                     record: CompletionRecord) -> str:
    rule = "━" * 60
    headline = ("✅ Closing actions complete; ready for DONE" if record.all_required_done
                else "🚫 Closing actions still pending")
    lines = ["", rule, headline, rule, f"Change ID: {change_id or 'unknown'}", ""]
    for index, item in enumerate(items, 1):
        icon = "✅" if item.done else ("🔴" if item.required else "🟡")
        status = "done" if item.done else "pending"
        line = f"{icon} {index}. {item.description} [{status}]"
        if not item.done and item.command:
            line += f"\n      {item.command}"
        lines.append(line)
    lines.extend(["", rule])
    return "\n".join(lines)
