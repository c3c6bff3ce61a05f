"""
Pre-invocation gate.

Decides whether a proposed tool call may proceed given the workflow phase.
Rules are evaluated in order and the first that matches decides:

1. Main-agent code edits are blocked when the restriction is enabled.
2. Sub-agent delegations follow D→R→T and the transition table.
3. Code edits are blocked while a review or test is in progress.
4. Delegations are blocked in COMPLETING until the closing checklist is done.
5. Everything else is allowed.

Blocks are return values, never exceptions.
"""

import logging
from pathlib import Path
from typing import Optional

from .config import GateConfig
from .events import EventLog
from .schema import GateDecision, Phase, ToolInvocation, WorkflowState
from .state_store import StateStore
from .transitions import ROLE_PHASES, is_reachable, normalize_role, valid_targets

logger = logging.getLogger(__name__)

BLOCKED_EDIT_REASON = "use Task(developer) instead"


class Gate:
    """Allow/block decisions for proposed tool invocations"""

    def __init__(self, config: GateConfig, store: Optional[StateStore] = None,
                 events: Optional[EventLog] = None):
        self.config = config
        self.store = store
        self.events = events

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def check_main_agent_limit(self, invocation: ToolInvocation) -> Optional[GateDecision]:
        limits = self.config.main_agent_limits
        if not limits.enabled or limits.test_mode or limits.in_subagent:
            return None
        if not invocation.is_edit:
            return None
        file_path = invocation.file_path
        if not self.config.is_code_file(file_path):
            return None
        return GateDecision.block(
            f"Main agent may not edit code files ({Path(file_path).suffix}) directly. "
            "Delegate the change with Task(developer)."
        )

    def check_delegation(self, invocation: ToolInvocation,
                         state: WorkflowState) -> Optional[GateDecision]:
        """
        D→R→T and transition-table rules for a sub-agent delegation.

        Returns an allow decision when a pending test failure or review
        settles who may run next, a block decision on a violation, or None
        when later rules should decide.
        """
        role = normalize_role(invocation.subagent_type)
        target = ROLE_PHASES.get(role)
        if target is None:
            return None

        phase = state.phase
        task = state.task
        task_label = f"Task {task.current}" if task.current else "The current task"

        if task.test_failed:
            if role == "debugger":
                return GateDecision.allow()
            return GateDecision.block(
                f"🚫 {task_label} failed its tests. Call Task(debugger) to fix it before Task({role})."
            )

        if task.reviewed and not task.tested:
            if role == "tester":
                return GateDecision.allow()
            return GateDecision.block(
                f"🚫 {task_label} passed review and has not been tested. "
                f"Call Task(tester) before Task({role})."
            )

        if phase == Phase.DEVELOP and role == "tester":
            return GateDecision.block(
                "❌ D→R→T violation: changes must use reviewer first. "
                "Call Task(reviewer) before Task(tester)."
            )

        if role == "reviewer" and phase not in (Phase.DEVELOP, Phase.IDLE):
            return GateDecision.block(
                f"❌ D→R→T violation: Task(reviewer) follows development, but the workflow is in {phase.value}."
            )

        if role == "tester" and phase not in (Phase.REVIEW, Phase.IDLE):
            return GateDecision.block(
                f"❌ D→R→T violation: Task(tester) follows review, but the workflow is in {phase.value}."
            )

        if not is_reachable(phase, target):
            targets = ", ".join(p.value for p in valid_targets(phase)) or "none"
            return GateDecision.block(
                f"Phase {phase.value} cannot transition to {target.value}. Valid targets: {targets}"
            )

        return None

    def check_frozen_code(self, invocation: ToolInvocation,
                          state: WorkflowState) -> Optional[GateDecision]:
        if not invocation.is_edit or not self.config.is_code_file(invocation.file_path):
            return None
        if state.phase == Phase.REVIEW:
            return GateDecision.block(
                "❌ Code cannot be modified during REVIEW. Finish the review "
                "(a rejection returns to DEVELOP) before changing it."
            )
        if state.phase == Phase.TEST:
            return GateDecision.block(
                "❌ Code cannot be modified during TEST. Wait for the test result "
                "and return to DEVELOP before changing it."
            )
        return None

    def check_completion(self, invocation: ToolInvocation,
                         state: WorkflowState) -> Optional[GateDecision]:
        if state.phase != Phase.COMPLETING or not invocation.is_delegation:
            return None
        record = state.completion
        if record.all_required_done:
            return None
        unmet = record.unmet_items()
        detail = ", ".join(unmet) if unmet else "checklist not evaluated yet"
        return GateDecision.block(
            f"🚫 Closing actions are not finished ({detail}). Complete them before delegating new work."
        )

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def evaluate(self, invocation: ToolInvocation, state: WorkflowState) -> GateDecision:
        """Decide for a proposed invocation without side effects."""
        for decision in (
            self.check_main_agent_limit(invocation),
            self.check_delegation(invocation, state) if invocation.is_delegation else None,
            self.check_frozen_code(invocation, state),
            self.check_completion(invocation, state),
        ):
            if decision is not None:
                return decision
        return GateDecision.allow()

    def check(self, invocation: ToolInvocation) -> GateDecision:
        """
        Decide against the persisted state.

        A blocked main-agent edit increments the ``blocked`` counter and is
        appended to the violation stream.
        """
        state = self.store.load() if self.store else WorkflowState()

        limit = self.check_main_agent_limit(invocation)
        if limit is not None:
            self._record_blocked_edit(invocation, state)
            logger.info("Blocked %s of %s", invocation.tool_name, invocation.file_path)
            return limit

        decision = self.evaluate(invocation, state)
        if decision.blocked:
            logger.info("Blocked %s: %s", invocation.tool_name, decision.reason)
        return decision

    def _record_blocked_edit(self, invocation: ToolInvocation, state: WorkflowState) -> None:
        state.delegation_counters.blocked += 1
        state.touch()
        if self.store:
            self.store.save(state)
        if self.events:
            self.events.record_blocked_edit(invocation.tool_name, invocation.file_path,
                                            BLOCKED_EDIT_REASON)
