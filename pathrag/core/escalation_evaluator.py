"""
Escalation Evaluator - decides whether a turn must be handed to a human

Three independent triggers, evaluated in order, first hit wins:
1. User uncertain (node flag + confusion phrase)
2. Screen mismatch (node flag + "looks different" phrase)
3. Retry exceeded (node flag + retry budget already used)

Reasons are for diagnostics only. Callers branch on should_escalate.
"""

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from pathrag.commands import EscalationTrigger, HistoryEntry
from pathrag.contracts import DiagnosticNode


UNCERTAIN_PHRASES: Tuple[str, ...] = (
    'not sure', "don't know", 'dont know', 'do not know', 'no idea',
    'confused', "can't tell", 'cannot tell', 'help', 'unsure',
    "i don't see", "don't see it", "can't find", 'cant find',
    'cannot find', 'can not find', "couldn't find", "where is it",
)

MISMATCH_PHRASES: Tuple[str, ...] = (
    "doesn't match", 'does not match', 'not the same', 'looks different',
    'different from', 'not what i see', 'not what i have', "don't see that",
    "that's not what", 'screen is different', 'page is different',
)

REASON_UNCERTAIN = "User expressed uncertainty"
REASON_MISMATCH = "Screen does not match expected layout"
REASON_RETRIES = "Maximum retries exceeded"


@dataclass(frozen=True)
class EscalationDecision:
    should_escalate: bool
    reason: Optional[str] = None
    trigger: Optional[str] = None


NO_ESCALATION = EscalationDecision(should_escalate=False)


def count_retries(history: Sequence[HistoryEntry], node_id: str) -> int:
    """Number of history entries already recorded against node_id."""
    return sum(1 for entry in history if entry.node_id == node_id)


def is_uncertain(normalized: str) -> bool:
    return any(phrase in normalized for phrase in UNCERTAIN_PHRASES)


def is_mismatch(normalized: str) -> bool:
    return any(phrase in normalized for phrase in MISMATCH_PHRASES)


def evaluate_escalation(node: DiagnosticNode,
                        normalized: str,
                        history: Sequence[HistoryEntry]) -> EscalationDecision:
    """
    Check a node's escalation conditions against one utterance.

    Args:
        node: Current node
        normalized: Case-folded, trimmed utterance
        history: Session history so far (before this turn)

    Returns:
        EscalationDecision
    """
    conditions = node.escalation_conditions

    if conditions.user_uncertain and is_uncertain(normalized):
        return EscalationDecision(True, REASON_UNCERTAIN, EscalationTrigger.USER_UNCERTAIN)

    if conditions.screen_mismatch and is_mismatch(normalized):
        return EscalationDecision(True, REASON_MISMATCH, EscalationTrigger.SCREEN_MISMATCH)

    if conditions.retry_exceeded and count_retries(history, node.node_id) >= conditions.max_retries:
        return EscalationDecision(True, REASON_RETRIES, EscalationTrigger.RETRY_EXCEEDED)

    return NO_ESCALATION
