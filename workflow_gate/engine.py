"""
Post-invocation transition engine.

Reads the result of a completed sub-agent delegation, decides the next
workflow phase and keeps the outcome flags and delegation counters current.
"""

import logging
from typing import Optional

from .classifier import KeywordClassifier, Outcome, OutcomeClassifier
from .config import GateConfig
from .notify import SystemEffects
from .schema import Phase, ToolInvocation, TransitionResult, TransitionStatus, WorkflowState
from .transitions import DETERMINISTIC_ROLES, ROLE_PHASES, normalize_role
from .utils import utc_now

logger = logging.getLogger(__name__)


ROLE_EMOJI = {
    "architect": "🏗️",
    "designer": "🎨",
    "migration": "🔀",
    "developer": "💻",
    "skills-agents": "📚",
    "reviewer": "🔍",
    "tester": "🧪",
    "debugger": "🐛",
}

NOTIFY_PHASES = (Phase.COMPLETING, Phase.DONE)


class TransitionEngine:
    """Applies completed delegations to the workflow state"""

    def __init__(self, classifier: Optional[OutcomeClassifier] = None,
                 effects: Optional[SystemEffects] = None):
        self.classifier = classifier or KeywordClassifier()
        self.effects = effects or SystemEffects()

    def decide(self, subagent_type: Optional[str], output: str) -> TransitionResult:
        """
        Next phase and status for a role's result, without touching state.

        Deterministic roles report their nominal phase as PENDING; reviewer
        and tester results are classified; the debugger always returns to
        development.
        """
        role = normalize_role(subagent_type)
        nominal = ROLE_PHASES.get(role)
        if nominal is None:
            return TransitionResult(role=role or None, status=TransitionStatus.UNKNOWN)

        if role in DETERMINISTIC_ROLES:
            return TransitionResult(role=role, next_phase=nominal, status=TransitionStatus.PENDING)

        if role == "debugger":
            return TransitionResult(role=role, next_phase=Phase.DEVELOP, status=TransitionStatus.FIXED)

        outcome = self.classifier.classify(output)
        if role == "reviewer":
            if outcome == Outcome.AFFIRMATIVE:
                return TransitionResult(role=role, next_phase=Phase.TEST, status=TransitionStatus.APPROVE)
            if outcome == Outcome.NEGATIVE:
                return TransitionResult(role=role, next_phase=Phase.DEVELOP, status=TransitionStatus.REJECT)
        elif role == "tester":
            if outcome == Outcome.AFFIRMATIVE:
                return TransitionResult(role=role, next_phase=Phase.COMPLETING, status=TransitionStatus.PASS)
            if outcome == Outcome.NEGATIVE:
                return TransitionResult(role=role, next_phase=Phase.DEBUG, status=TransitionStatus.FAIL)

        return TransitionResult(role=role, status=TransitionStatus.PENDING)

    def apply(self, state: WorkflowState, invocation: ToolInvocation) -> TransitionResult:
        """
        Apply a completed delegation to ``state`` in place.

        Unknown roles leave the state untouched.
        """
        result = self.decide(invocation.subagent_type, invocation.tool_output)
        result.from_phase = state.phase
        result.to_phase = state.phase
        if result.status == TransitionStatus.UNKNOWN:
            return result

        role = result.role
        if state.phase == Phase.DONE or (state.phase == Phase.IDLE and not state.change_id):
            state.start_change(hint=invocation.prompt)
            logger.info("Started change %s", state.change_id)

        state.delegation_counters.delegated += 1
        self._update_flags(state, role, result.status)

        target = result.next_phase or ROLE_PHASES[role]
        if state.phase != target:
            state.transition_to(target, hint=invocation.prompt)
            logger.info("Workflow %s -> %s (%s %s)", result.from_phase.value, target.value,
                        role, result.status.value)
            if target in NOTIFY_PHASES:
                self.effects.notify(f"{state.change_id}: {target.value}")

        result.to_phase = state.phase
        state.touch()
        return result

    @staticmethod
    def _update_flags(state: WorkflowState, role: str, status: TransitionStatus) -> None:
        task = state.task
        now = utc_now()
        if role == "developer":
            # A new development round has to be reviewed and tested again
            task.reviewed = False
            task.tested = False
        elif status == TransitionStatus.APPROVE:
            task.reviewed = True
            task.reviewed_at = now
        elif status == TransitionStatus.REJECT:
            task.reviewed = False
        elif status == TransitionStatus.PASS:
            task.tested = True
        elif status == TransitionStatus.FAIL:
            task.test_failed = True
            task.tested = False
            task.failed_at = now
        elif status == TransitionStatus.FIXED:
            task.test_failed = False
            task.debugged_at = now

    def record_direct_edit(self, state: WorkflowState, invocation: ToolInvocation,
                           config: GateConfig) -> bool:
        """Count a main-agent edit of a non-code file."""
        file_path = invocation.file_path
        if not invocation.is_edit or not file_path or config.is_code_file(file_path):
            return False
        state.delegation_counters.direct_edits += 1
        state.touch()
        return True


def describe_transition(result: TransitionResult) -> Optional[str]:
    """One-line summary of what a delegation did to the workflow."""
    if result.role is None or result.status == TransitionStatus.UNKNOWN:
        return None
    emoji = ROLE_EMOJI.get(result.role, "🤖")
    name = result.role.upper()
    status = result.status
    if status == TransitionStatus.APPROVE:
        return f"\n## ✅ {emoji} {name} approved → TEST"
    if status == TransitionStatus.REJECT:
        return f"\n## ❌ {emoji} {name} found problems → back to DEVELOP"
    if status == TransitionStatus.PASS:
        return f"\n## ✅ {emoji} {name} tests passed → task complete"
    if status == TransitionStatus.FAIL:
        return f"\n## ❌ {emoji} {name} tests failed → DEBUG"
    if result.changed:
        return f"\n## {emoji} {name}: {result.from_phase.value} → {result.to_phase.value}"
    return None
