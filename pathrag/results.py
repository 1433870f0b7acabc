"""
Result types returned by PathTraversalEngine.evaluate() and
DiagnosticDialogueManager.handle()

These are the ONLY return types from the engine and the command handler.
Expected conversational conditions (retry, escalation, unknown session)
are values here, never exceptions.
"""

from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Tuple

from pathrag.contracts import DiagnosticNode, RouterAsset


@dataclass(frozen=True)
class TraversalResult:
    """
    Outcome of evaluating one utterance against the current node.

    Attributes:
        next_node: Node to move to (the current node on retry), None on escalation
        should_escalate: Whether the session must be handed off
        escalation_reason: Human-readable reason when escalating
        escalation_trigger: EscalationTrigger value when escalating
        assets_to_show: Assets for next_node
        is_retry: True when the answer could not be resolved
        integrity_failure: True when the graph itself is broken at this point
        matched_answer: Resolved answer key, if any
    """
    next_node: Optional[DiagnosticNode]
    should_escalate: bool = False
    escalation_reason: Optional[str] = None
    escalation_trigger: Optional[str] = None
    assets_to_show: Tuple[RouterAsset, ...] = ()
    is_retry: bool = False
    integrity_failure: bool = False
    matched_answer: Optional[str] = None


@dataclass(frozen=True)
class SessionSnapshot:
    """
    Client-facing view of a session.

    Returned by: StartSession, GetState, RecordAction, EscalateSession, EndSession

    Attributes:
        session_id: Session identifier
        current_node: Node descriptor (None if unresolvable)
        phase: Phase value (e.g., 'PHASE_1')
        phase_label: Human label for the phase
        progress: 0..100
        status: SessionStatus value
        assets: Asset descriptors for the current node
        voice_context: Text for the speech collaborator
        session: Full session JSON (history, observations, actions)
        escalation_payload: Payload dict, only when escalated
    """
    session_id: str
    current_node: Optional[Dict[str, Any]]
    phase: str
    phase_label: str
    progress: int
    status: str
    assets: List[Dict[str, Any]]
    voice_context: str
    session: Dict[str, Any]
    escalation_payload: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'session_id': self.session_id,
            'current_node': self.current_node,
            'phase': self.phase,
            'phase_label': self.phase_label,
            'progress': self.progress,
            'status': self.status,
            'assets': self.assets,
            'voice_context': self.voice_context,
            'session': self.session,
        }
        if self.escalation_payload is not None:
            data['escalation_payload'] = self.escalation_payload
        return data


@dataclass(frozen=True)
class TurnResult:
    """
    Successful utterance processing result.

    Returned by: ProcessUtterance

    Attributes:
        snapshot: Session view after the turn
        should_escalate: Whether this turn escalated the session
        escalation_reason: Reason when escalating
        is_retry: Whether the same node is asked again
        debug: Debug information (matched answer, trigger, integrity)
    """
    snapshot: SessionSnapshot
    should_escalate: bool
    escalation_reason: Optional[str]
    is_retry: bool
    debug: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = self.snapshot.to_dict()
        data.update({
            'should_escalate': self.should_escalate,
            'escalation_reason': self.escalation_reason,
            'is_retry': self.is_retry,
        })
        return data


@dataclass(frozen=True)
class ContextResult:
    """
    Voice context for the current node.

    Returned by: GetContext
    """
    session_id: str
    voice_context: str

    def to_dict(self) -> Dict[str, Any]:
        return {'session_id': self.session_id, 'voice_context': self.voice_context}


@dataclass(frozen=True)
class IllegalCommand:
    """
    Command rejected by DM.

    Examples:
    - ProcessUtterance for an unknown or expired session
    - ProcessUtterance when the session is no longer active
    - RecordAction with an action the current node does not allow

    Attributes:
        reason: Human-readable explanation
        command_type: Name of rejected command type
        not_found: True when the session id is unknown
    """
    reason: str
    command_type: str
    not_found: bool = False
