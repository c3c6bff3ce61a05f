"""
Workflow State Persistence

Loads and saves the single workflow-state document. Reads never fail: a
missing or corrupt document yields a fresh state. Writes are atomic
(temp file + fsync + rename) and never raise.

There is no lock across load -> save. Two hook processes racing on the same
document resolve as last-writer-wins.
"""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from .errors import StateStoreError
from .schema import WorkflowState
from .utils import atomic_write_text

logger = logging.getLogger(__name__)


class StateStore(ABC):
    """Persistence interface for the workflow state."""

    @abstractmethod
    def load(self) -> WorkflowState:
        """Return the persisted state, or a fresh one."""

    @abstractmethod
    def save(self, state: WorkflowState) -> bool:
        """Persist the state. Returns False if the write failed."""

    def reset(self) -> WorkflowState:
        """Replace the stored state with a fresh one, keeping counters."""
        current = self.load()
        fresh = WorkflowState(delegation_counters=current.delegation_counters)
        self.save(fresh)
        return fresh


class FileStateStore(StateStore):
    """JSON document on disk."""

    def __init__(self, state_file: Path):
        self.state_file = Path(state_file).expanduser()

    def exists(self) -> bool:
        return self.state_file.exists()

    def load(self) -> WorkflowState:
        if not self.state_file.exists():
            return WorkflowState()

        try:
            with open(self.state_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("state document is not an object")
            return WorkflowState.from_document(data)
        except (OSError, ValueError, ValidationError) as e:
            # json.JSONDecodeError is a ValueError
            logger.warning("Corrupt workflow state at %s, starting fresh: %s", self.state_file, e)
            return WorkflowState()

    def save(self, state: WorkflowState) -> bool:
        try:
            self._write(state)
            return True
        except StateStoreError as e:
            logger.error("%s", e)
            return False

    def _write(self, state: WorkflowState) -> None:
        content = json.dumps(state.to_document(), indent=2, ensure_ascii=False)
        try:
            atomic_write_text(self.state_file, content)
        except OSError as e:
            raise StateStoreError(f"Failed to save workflow state to {self.state_file}: {e}") from e


class InMemoryStateStore(StateStore):
    """Keeps a serialized copy in memory; used by tests."""

    def __init__(self, state: Optional[WorkflowState] = None):
        self._document = state.to_document() if state is not None else None
        self.saves = 0

    def load(self) -> WorkflowState:
        if self._document is None:
            return WorkflowState()
        return WorkflowState.from_document(self._document)

    def save(self, state: WorkflowState) -> bool:
        self._document = state.to_document()
        self.saves += 1
        return True
