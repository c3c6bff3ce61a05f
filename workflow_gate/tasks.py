"""
Task checklist synchronization.

Keeps the Markdown checklist (``tasks.md``), the workflow state and the
orchestrator's todo list in step:

    ## 1. Setup (sequential)
    - [ ] 1.1 Initialize project | files: package.json
    - [x] 1.2 Configure linting | files: .eslintrc.js

    ## 2. Features (parallel, agent:developer, depends:1)
    - [~] 2.1 User dashboard | files: src/pages/dashboard.tsx | output: http://localhost:3000

Checkbox marks: ' ' pending, 'x'/'X' completed, '~'/'>' in progress.
Write-back only ever replaces the mark of one line.
"""

import json
import logging
import re
from pathlib import Path
from typing import Dict, List, Optional, Union

from .config import TaskSyncConfig
from .schema import (
    ChecklistTask, ExecutionMode, TaskPointer, TaskStatus, TodoItem, WorkflowState,
)
from .utils import atomic_write_text, utc_now

logger = logging.getLogger(__name__)


GROUP_RE = re.compile(r'^##\s+(?:(\d+)\.\s+)?(.+?)\s*(?:\(([^()]*)\))?\s*$')
TASK_RE = re.compile(
    r'^-\s+\[([ xX~>])\]\s+(\d+(?:\.\d+)*)\s+(.+?)'
    r'(?:\s*\|\s*files?:\s*(.+?))?'
    r'(?:\s*\|\s*output:\s*(.+?))?\s*$',
    re.IGNORECASE,
)
TASK_ID_RE = re.compile(r'Task\s+(\d+(?:\.\d+)*)', re.IGNORECASE)
TASKS_PATH_RE = re.compile(r'tasks\.md[:\s]+(\S+)', re.IGNORECASE)

TODO_SYNC_OPEN = "<!-- TODOWRITE_SYNC"
TODO_SYNC_CLOSE = "TODOWRITE_SYNC -->"

MARK_STATUS = {
    ' ': TaskStatus.PENDING,
    'x': TaskStatus.COMPLETED,
    'X': TaskStatus.COMPLETED,
    '~': TaskStatus.IN_PROGRESS,
    '>': TaskStatus.IN_PROGRESS,
}


def _parse_group_options(raw: str) -> Optional[Dict[str, object]]:
    """
    Parse ``parallel, agent:developer, depends:1`` style options.

    Returns None when nothing in the parentheses is a recognised option,
    in which case they belong to the title.
    """
    options: Dict[str, object] = {}
    depends: List[str] = []
    for part in raw.split(','):
        token = part.strip()
        lowered = token.lower()
        if lowered in ('parallel', 'sequential'):
            options['mode'] = ExecutionMode(lowered)
        elif lowered.startswith('agent:'):
            options['agent'] = token.split(':', 1)[1].strip() or None
        elif lowered.startswith('depends:'):
            depends.extend(d.strip() for d in token.split(':', 1)[1].split() if d.strip())
    if depends:
        options['depends_on'] = depends
    return options or None


def parse_tasks(content: str) -> List[ChecklistTask]:
    """Parse checklist text into tasks, in document order."""
    tasks = []
    group = None
    mode = ExecutionMode.SEQUENTIAL
    agent = None
    depends_on: List[str] = []

    for line in content.splitlines():
        group_match = GROUP_RE.match(line)
        if group_match:
            title = group_match.group(2).strip()
            options = _parse_group_options(group_match.group(3)) if group_match.group(3) else None
            if group_match.group(3) and options is None:
                title = f"{title} ({group_match.group(3)})"
            options = options or {}
            group = title
            mode = options.get('mode', ExecutionMode.SEQUENTIAL)
            agent = options.get('agent')
            depends_on = list(options.get('depends_on', []))
            continue

        task_match = TASK_RE.match(line)
        if not task_match:
            continue

        mark, task_id, title, files, output = task_match.groups()
        tasks.append(ChecklistTask(
            id=task_id,
            title=title.strip(),
            status=MARK_STATUS[mark],
            group=group,
            execution_mode=mode,
            agent=agent,
            depends_on=depends_on,
            files=[f.strip() for f in files.split(',') if f.strip()] if files else [],
            output=output.strip() if output else None,
        ))

    return tasks


def task_statistics(tasks: List[ChecklistTask]) -> Dict[str, int]:
    return {
        "total": len(tasks),
        "completed": sum(1 for t in tasks if t.status == TaskStatus.COMPLETED),
        "in_progress": sum(1 for t in tasks if t.status == TaskStatus.IN_PROGRESS),
        "pending": sum(1 for t in tasks if t.status == TaskStatus.PENDING),
    }


def to_todo_items(tasks: List[ChecklistTask]) -> List[TodoItem]:
    """Map tasks to the orchestrator's todo-list entries."""
    items = []
    for task in tasks:
        if task.status == TaskStatus.IN_PROGRESS:
            active_form = f"Working on Task {task.id}"
        elif task.status == TaskStatus.COMPLETED:
            active_form = f"Task {task.id} completed"
        else:
            active_form = f"Pending Task {task.id}"
        items.append(TodoItem(content=f"Task {task.id}: {task.title}",
                              status=task.status, active_form=active_form))
    return items


def format_todo_sync(tasks: List[ChecklistTask]) -> str:
    """Todo items as JSON inside the sync marker comment."""
    payload = [item.model_dump(mode="json", by_alias=True) for item in to_todo_items(tasks)]
    body = json.dumps(payload, indent=2, ensure_ascii=False)
    return f"{TODO_SYNC_OPEN}\n{body}\n{TODO_SYNC_CLOSE}"


def extract_task_id(text: Optional[str]) -> Optional[str]:
    """Task id from a ``Task 1.2`` reference."""
    match = TASK_ID_RE.search(text or '')
    return match.group(1) if match else None


def extract_tasks_path(output: Optional[str]) -> Optional[str]:
    """Checklist path announced as ``tasks.md: <path>``."""
    match = TASKS_PATH_RE.search(output or '')
    return match.group(1) if match else None


class TaskSynchronizer:
    """
    Reads and writes the checklist document and keeps the state's
    task pointer and sync cache current.
    """

    def __init__(self, config: Optional[TaskSyncConfig] = None):
        self.config = config or TaskSyncConfig()

    # ------------------------------------------------------------------
    # Document access
    # ------------------------------------------------------------------

    def load(self, tasks_file: Union[str, Path]) -> List[ChecklistTask]:
        """Parse the checklist file; unreadable files yield no tasks."""
        try:
            return parse_tasks(Path(tasks_file).read_text(encoding='utf-8'))
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Could not read checklist %s: %s", tasks_file, e)
            return []

    def find_tasks_file(self, project_path: Union[str, Path]) -> Optional[Path]:
        """
        Locate the checklist under a project.

        Searches each configured directory, then the immediate
        sub-directories of ``openspec``.
        """
        root = Path(project_path)
        for name in self.config.search_dirs:
            directory = root / name
            if not directory.is_dir():
                continue
            candidate = directory / self.config.filename
            if candidate.is_file():
                return candidate
            if name == "openspec":
                try:
                    subdirs = sorted(p for p in directory.iterdir() if p.is_dir())
                except OSError:
                    continue
                for sub in subdirs:
                    candidate = sub / self.config.filename
                    if candidate.is_file():
                        return candidate
        return None

    def _rewrite_mark(self, tasks_file: Union[str, Path], task_id: str,
                      from_marks: str, new_mark: str) -> bool:
        path = Path(tasks_file)
        if not path.is_file():
            return False

        pattern = re.compile(
            r'^(-\s+\[)[' + re.escape(from_marks) + r'](\]\s+' + re.escape(task_id) + r'\s)',
            re.MULTILINE,
        )
        try:
            with open(path, 'r', encoding='utf-8', newline='') as f:
                content = f.read()
            updated = pattern.sub(lambda m: f"{m.group(1)}{new_mark}{m.group(2)}", content, count=1)
            if updated == content:
                return False
            atomic_write_text(path, updated)
            return True
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Could not update checklist %s (task %s): %s", path, task_id, e)
            return False

    def mark_in_progress(self, tasks_file: Union[str, Path], task_id: str) -> bool:
        """Flip a pending task to in progress (``[ ]`` -> ``[~]``)."""
        return self._rewrite_mark(tasks_file, task_id, ' ', '~')

    def mark_completed(self, tasks_file: Union[str, Path], task_id: str,
                       state: WorkflowState) -> bool:
        """
        Flip a task to completed (any mark -> ``[x]``).

        Refused unless the task has been reviewed; the document is then
        left untouched.
        """
        if not self.is_reviewed(state, task_id):
            logger.info("Task %s not marked complete: it has not been reviewed", task_id)
            return False
        return self._rewrite_mark(tasks_file, task_id, ' xX~>', 'x')

    @staticmethod
    def is_reviewed(state: WorkflowState, task_id: str) -> bool:
        pointer = state.task
        return pointer.reviewed and pointer.current in (None, task_id)

    # ------------------------------------------------------------------
    # State bookkeeping
    # ------------------------------------------------------------------

    def sync(self, state: WorkflowState, tasks_file: Union[str, Path]) -> List[ChecklistTask]:
        """Parse the checklist and refresh the cached statistics."""
        tasks = self.load(tasks_file)
        stats = task_statistics(tasks)
        info = state.task_sync_info
        info.tasks_file = str(tasks_file)
        info.total_tasks = stats["total"]
        info.completed = stats["completed"]
        info.in_progress = stats["in_progress"]
        info.last_sync_at = utc_now()
        state.task.total = stats["total"]
        state.task.completed = stats["completed"]
        return tasks

    def resolve_tasks_file(self, state: WorkflowState) -> Optional[str]:
        """
        The cached checklist path, or one found again under the project.

        A new change starts with an empty cache while the checklist it
        continues still sits in the project.
        """
        cached = state.task_sync_info.tasks_file
        if cached:
            return cached
        if not state.project_path:
            return None
        found = self.find_tasks_file(state.project_path)
        if found is None:
            return None
        logger.debug("Re-attached checklist %s", found)
        self.sync(state, found)
        return str(found)

    def all_completed(self, state: WorkflowState) -> bool:
        """Whether a synced checklist exists and every task in it is done."""
        tasks_file = self.resolve_tasks_file(state)
        if not tasks_file:
            return False
        tasks = self.load(tasks_file)
        return bool(tasks) and all(t.status == TaskStatus.COMPLETED for t in tasks)

    # ------------------------------------------------------------------
    # Lifecycle handlers
    # ------------------------------------------------------------------

    def on_architect_complete(self, state: WorkflowState, output: str,
                              project_path: Union[str, Path]) -> Optional[str]:
        """Locate, parse and cache the checklist; return the todo sync block."""
        announced = extract_tasks_path(output)
        if announced:
            tasks_file: Optional[Path] = Path(announced).expanduser()
        else:
            tasks_file = self.find_tasks_file(state.project_path or project_path)

        if tasks_file is None or not tasks_file.is_file():
            logger.debug("No checklist found after planning")
            return None

        tasks = self.sync(state, tasks_file)
        return f"\n## 📋 Task sync: found {len(tasks)} tasks\n\n{format_todo_sync(tasks)}\n"

    def on_developer_start(self, state: WorkflowState, prompt: str) -> Optional[str]:
        """Mark the referenced task in progress and point the state at it."""
        if state.task.test_failed:
            return (f"🚫 Cannot start a new task: Task {state.task.current} failed its tests. "
                    "Call Task(debugger) first.")

        task_id = extract_task_id(prompt)
        tasks_file = self.resolve_tasks_file(state)
        if not task_id or not tasks_file:
            return None

        self.mark_in_progress(tasks_file, task_id)
        state.task = TaskPointer(current=task_id, total=state.task.total,
                                 completed=state.task.completed)
        self.sync(state, tasks_file)
        return f"\n## 🔄 tasks.md updated: Task {task_id} in progress"

    def on_tester_pass(self, state: WorkflowState, prompt: str) -> Optional[str]:
        """Mark the tested task completed if it was reviewed, then clear the pointer."""
        task_id = extract_task_id(prompt) or state.task.current
        tasks_file = self.resolve_tasks_file(state)
        if not task_id or not tasks_file:
            return None

        if not self.is_reviewed(state, task_id):
            return (f"⚠️ Task {task_id} passed its tests but has not been reviewed. "
                    "Call Task(reviewer) before it can be marked complete.")

        if not self.mark_completed(tasks_file, task_id, state):
            return None

        self.sync(state, tasks_file)
        state.task = TaskPointer(total=state.task.total, completed=state.task.completed)
        return f"\n## ✅ tasks.md updated: Task {task_id} completed"

    def on_debugger_complete(self, state: WorkflowState) -> Optional[str]:
        """Clear the test-failure flag so the tester may run again."""
        pointer = state.task
        if not pointer.test_failed and pointer.failed_at is None:
            return None
        pointer.test_failed = False
        pointer.failed_at = None
        pointer.debugged_at = utc_now()
        label = f"Task {pointer.current}" if pointer.current else "Current task"
        return f"🔧 {label} debugged; call Task(tester) to test it again"
