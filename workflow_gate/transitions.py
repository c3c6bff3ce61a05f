"""
Workflow transition table and role mapping.

The lifecycle is fixed: roles map to the phase they work in, and the table
lists which phases may follow each phase.
"""

from typing import Dict, List, Optional, Tuple

from .schema import Phase


ROLE_PHASES: Dict[str, Phase] = {
    "architect": Phase.PLANNING,
    "designer": Phase.DESIGN,
    "migration": Phase.MIGRATION_PLANNING,
    "developer": Phase.DEVELOP,
    "skills-agents": Phase.SKILL_CREATE,
    "reviewer": Phase.REVIEW,
    "tester": Phase.TEST,
    "debugger": Phase.DEBUG,
}

# Roles whose completion is not judged from their output
DETERMINISTIC_ROLES = ("architect", "designer", "migration", "skills-agents", "developer")

TRANSITIONS: Dict[Phase, Tuple[Phase, ...]] = {
    Phase.IDLE: (Phase.PLANNING, Phase.DEVELOP, Phase.SKILL_CREATE),
    Phase.PLANNING: (Phase.DESIGN, Phase.MIGRATION_PLANNING, Phase.DEVELOP,
                     Phase.SKILL_CREATE, Phase.IDLE),
    Phase.DESIGN: (Phase.DEVELOP, Phase.IDLE),
    Phase.MIGRATION_PLANNING: (Phase.DEVELOP, Phase.IDLE),
    # Self-loop lets the developer be re-invoked after a rejection
    Phase.DEVELOP: (Phase.DEVELOP, Phase.REVIEW),
    Phase.SKILL_CREATE: (Phase.VALIDATE,),
    Phase.REVIEW: (Phase.TEST, Phase.DEVELOP),
    Phase.TEST: (Phase.COMPLETING, Phase.DEBUG, Phase.DEVELOP),
    Phase.VALIDATE: (Phase.COMPLETING, Phase.SKILL_CREATE),
    Phase.DEBUG: (Phase.DEVELOP, Phase.BLOCKED),
    Phase.COMPLETING: (Phase.DONE, Phase.IDLE),
    Phase.LOOP_PAUSED: (Phase.DEVELOP, Phase.REVIEW, Phase.TEST, Phase.DEBUG),
    Phase.LOOP_COMPLETING: (Phase.COMPLETING,),
    Phase.PAUSED: (Phase.IDLE, Phase.DEVELOP, Phase.REVIEW, Phase.TEST),
    Phase.BLOCKED: (Phase.IDLE,),
    Phase.DONE: (Phase.IDLE,),
}

# Phases from which any mapped role may start a new unit of work
OPEN_PHASES = (Phase.IDLE, Phase.DONE)


def normalize_role(subagent_type: Optional[str]) -> str:
    """
    Canonical role name for a sub-agent type.

    Matching is case-insensitive and drops any ``namespace:`` prefix, so
    ``"workflow:Reviewer"`` becomes ``"reviewer"``.
    """
    if not subagent_type:
        return ""
    return subagent_type.strip().split(":")[-1].strip().lower()


def role_phase(subagent_type: Optional[str]) -> Optional[Phase]:
    """Nominal phase of a role, or None for roles outside the workflow."""
    return ROLE_PHASES.get(normalize_role(subagent_type))


def valid_targets(phase: Phase) -> List[Phase]:
    return list(TRANSITIONS.get(phase, ()))


def can_transition(current: Phase, target: Phase) -> bool:
    """Whether the table allows moving from ``current`` to ``target``."""
    return target in TRANSITIONS.get(current, ())


def is_reachable(current: Phase, target: Phase) -> bool:
    """
    Whether a delegation targeting ``target`` may start in ``current``.

    IDLE and DONE accept any mapped role's phase.
    """
    if current in OPEN_PHASES:
        return True
    return can_transition(current, target)
