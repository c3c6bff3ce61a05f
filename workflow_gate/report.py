"""
Delegation statistics report.

Summarizes how work reached the codebase: direct edits by the main agent,
delegations to sub-agents and blocked attempts.
"""

import json
import logging
from typing import List, Tuple

from .schema import DelegationCounters, Violation, ViolationType
from .utils import shorten_path

logger = logging.getLogger(__name__)

SEPARATOR_LINE = "─" * 63
MAX_BLOCKED_DISPLAY = 5
DEFAULT_BLOCK_REASON = "use Task(developer) instead"

_BLOCKED_TYPES = (ViolationType.MAIN_AGENT_CODE_EDIT, ViolationType.BLOCKED_EDIT)


def blocked_edits(violations: List[Violation]) -> List[Tuple[str, str]]:
    """Unique (file, reason) pairs of blocked or direct code edits, first seen first."""
    seen = set()
    result = []
    for violation in violations:
        if violation.type not in _BLOCKED_TYPES:
            continue
        for file_path in violation.files:
            if file_path in seen:
                continue
            seen.add(file_path)
            result.append((file_path, violation.reason or DEFAULT_BLOCK_REASON))
    return result


def delegation_rate(delegated: int, direct_edits: int) -> str:
    total = delegated + direct_edits
    if total == 0:
        return "0/0 (N/A)"
    return f"{delegated}/{total} ({round(delegated / total * 100)}%)"


def build_report(counters: DelegationCounters, violations: List[Violation]) -> str:
    """Plain-text delegation report."""
    blocked = blocked_edits(violations)
    if counters.blocked > 0 and not blocked:
        logger.warning("Blocked count is %d but no blocked-edit records were found", counters.blocked)

    lines = [
        "## 📋 Delegation statistics",
        SEPARATOR_LINE,
        f"Direct edits by main agent: {counters.direct_edits} (allowed files)",
        f"Delegated to sub-agents: {counters.delegated}",
        f"Blocked attempts: {counters.blocked}",
    ]

    if counters.blocked > 0:
        for file_path, reason in blocked[:MAX_BLOCKED_DISPLAY]:
            lines.append(f"  - {shorten_path(file_path)} → {reason}")
        if len(blocked) > MAX_BLOCKED_DISPLAY:
            lines.append(f"  - ... {len(blocked) - MAX_BLOCKED_DISPLAY} more blocked attempts")

    if counters.bypassed > 0:
        lines.append(f"Bypass uses: {counters.bypassed}")

    lines.append(f"Delegation rate: {delegation_rate(counters.delegated, counters.direct_edits)}")
    lines.append(SEPARATOR_LINE)
    return "\n".join(lines)


def system_message(text: str) -> str:
    """Wrap text in the ``{"systemMessage": ...}`` envelope."""
    return json.dumps({"systemMessage": text}, ensure_ascii=False)
