"""
Session value object and command types for DiagnosticDialogueManager.

Commands are the ONLY public interface to DiagnosticDialogueManager.
No direct method calls. No state inspection. Commands only.

DiagnosticSession is the single piece of mutable-looking state in the
system. It is a frozen value: every engine operation returns a new
session with an incremented revision and never touches the old one.
"""

from dataclasses import dataclass, replace
from typing import Dict, Any, Optional, Tuple

from pathrag.contracts import DiagnosticPhase, VendorProfile


class SessionStatus:
    """Lifecycle status values. Transitions only leave ACTIVE."""
    ACTIVE = "active"
    RESOLVED = "resolved"
    ESCALATED = "escalated"
    ABANDONED = "abandoned"

    ALL = (ACTIVE, RESOLVED, ESCALATED, ABANDONED)


class Outcome:
    """Per-turn outcome recorded in history."""
    SUCCESS = "success"
    FAILURE = "failure"
    UNCERTAIN = "uncertain"


class EscalationTrigger:
    """Why a session was handed off."""
    USER_UNCERTAIN = "user_uncertain"
    SCREEN_MISMATCH = "screen_mismatch"
    RETRY_EXCEEDED = "retry_exceeded"
    MISSING_NODE = "missing_node"
    SCRIPTED = "scripted"
    VOICE_LOOP = "voice_loop"


@dataclass(frozen=True)
class HistoryEntry:
    node_id: str
    timestamp: float
    user_response: str
    action_taken: Optional[str] = None
    outcome: str = Outcome.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            'node_id': self.node_id,
            'timestamp': self.timestamp,
            'user_response': self.user_response,
            'action_taken': self.action_taken,
            'outcome': self.outcome,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "HistoryEntry":
        return HistoryEntry(
            node_id=data['node_id'],
            timestamp=data['timestamp'],
            user_response=data['user_response'],
            action_taken=data.get('action_taken'),
            outcome=data.get('outcome', Outcome.SUCCESS),
        )


@dataclass(frozen=True)
class ActionAttempt:
    action: str
    timestamp: float
    result: str
    notes: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'action': self.action,
            'timestamp': self.timestamp,
            'result': self.result,
            'notes': self.notes,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "ActionAttempt":
        return ActionAttempt(
            action=data['action'],
            timestamp=data['timestamp'],
            result=data['result'],
            notes=data.get('notes'),
        )


@dataclass(frozen=True)
class EscalationPayload:
    """
    Hand-off summary for a human agent.

    Created once per session, when the session enters ESCALATED.

    Attributes:
        trigger: EscalationTrigger value
        reason: Human-readable reason
        steps_completed: node_ids in history order
        observations: node_id -> latest user response
        actions_attempted: Actions tried before escalating
        suspected_fault_domain: Derived from the phase at escalation time
        timestamp: When the escalation happened
    """
    trigger: str
    reason: str
    steps_completed: Tuple[str, ...]
    observations: Tuple[Tuple[str, str], ...]
    actions_attempted: Tuple[ActionAttempt, ...]
    suspected_fault_domain: str
    timestamp: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'trigger': self.trigger,
            'reason': self.reason,
            'steps_completed': list(self.steps_completed),
            'observations': dict(self.observations),
            'actions_attempted': [a.to_dict() for a in self.actions_attempted],
            'suspected_fault_domain': self.suspected_fault_domain,
            'timestamp': self.timestamp,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "EscalationPayload":
        return EscalationPayload(
            trigger=data['trigger'],
            reason=data['reason'],
            steps_completed=tuple(data.get('steps_completed', [])),
            observations=tuple((data.get('observations') or {}).items()),
            actions_attempted=tuple(
                ActionAttempt.from_dict(a) for a in data.get('actions_attempted', [])
            ),
            suspected_fault_domain=data['suspected_fault_domain'],
            timestamp=data['timestamp'],
        )


@dataclass(frozen=True)
class DiagnosticSession:
    """
    Immutable snapshot of one troubleshooting conversation.

    Rules:
    - Only PathTraversalEngine produces new sessions (via evolve)
    - history and actions_attempted only grow
    - observations keeps one entry per node (latest response wins)
    - escalation_payload is set at most once
    - Serializable to/from JSON

    observations is held as an ordered tuple of (node_id, response)
    pairs to keep the value hashable; use observation_map for lookups.
    """
    session_id: str
    started_at: float
    current_node_id: str
    current_phase: DiagnosticPhase
    vendor_profile: Optional[VendorProfile] = None
    history: Tuple[HistoryEntry, ...] = ()
    observations: Tuple[Tuple[str, str], ...] = ()
    actions_attempted: Tuple[ActionAttempt, ...] = ()
    escalation_payload: Optional[EscalationPayload] = None
    status: str = SessionStatus.ACTIVE
    revision: int = 0

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE

    @property
    def observation_map(self) -> Dict[str, str]:
        return dict(self.observations)

    def evolve(self, **changes) -> "DiagnosticSession":
        """Return a copy with changes applied and the revision bumped."""
        changes.setdefault('revision', self.revision + 1)
        return replace(self, **changes)

    def with_observation(self, node_id: str, response: str) -> Tuple[Tuple[str, str], ...]:
        """Observation tuple with node_id set to response (order preserved)."""
        updated = self.observation_map
        updated[node_id] = response
        return tuple(updated.items())

    def to_json(self) -> Dict[str, Any]:
        """
        Serialize to a JSON-safe dict.

        Returns:
            dict: Fresh dict, safe to mutate
        """
        return {
            'session_id': self.session_id,
            'started_at': self.started_at,
            'current_node_id': self.current_node_id,
            'current_phase': self.current_phase.value,
            'vendor_profile': self.vendor_profile.to_dict() if self.vendor_profile else None,
            'history': [entry.to_dict() for entry in self.history],
            'observations': dict(self.observations),
            'actions_attempted': [a.to_dict() for a in self.actions_attempted],
            'escalation_payload': (
                self.escalation_payload.to_dict() if self.escalation_payload else None
            ),
            'status': self.status,
            'revision': self.revision,
        }

    @staticmethod
    def from_json(data: Dict[str, Any]) -> "DiagnosticSession":
        """
        Deserialize from JSON dict.

        Args:
            data: Raw session dict from the session store

        Returns:
            DiagnosticSession: Rebuilt value

        Raises:
            KeyError: If a required field is missing
            ValueError: If status or phase is unknown
        """
        status = data.get('status', SessionStatus.ACTIVE)
        if status not in SessionStatus.ALL:
            raise ValueError(f"Unknown session status: {status}")

        vendor = data.get('vendor_profile')
        payload = data.get('escalation_payload')
        return DiagnosticSession(
            session_id=data['session_id'],
            started_at=data['started_at'],
            current_node_id=data['current_node_id'],
            current_phase=DiagnosticPhase(data['current_phase']),
            vendor_profile=VendorProfile.from_dict(vendor) if vendor else None,
            history=tuple(HistoryEntry.from_dict(h) for h in data.get('history', [])),
            observations=tuple((data.get('observations') or {}).items()),
            actions_attempted=tuple(
                ActionAttempt.from_dict(a) for a in data.get('actions_attempted', [])
            ),
            escalation_payload=EscalationPayload.from_dict(payload) if payload else None,
            status=status,
            revision=data.get('revision', 0),
        )


# Command types

@dataclass(frozen=True)
class StartSession:
    """
    Open a new diagnostic session at the entry node.

    Returns: SessionSnapshot for the new session.
    """
    vendor_hint: Optional[str] = None


@dataclass(frozen=True)
class ProcessUtterance:
    """
    Feed one user answer into the session.

    Returns: TurnResult with the new snapshot.
    """
    session_id: str
    utterance: str


@dataclass(frozen=True)
class GetState:
    """Returns: SessionSnapshot (no mutation)."""
    session_id: str


@dataclass(frozen=True)
class GetContext:
    """Returns: ContextResult with the voice context for the current node."""
    session_id: str


@dataclass(frozen=True)
class RecordAction:
    """
    Record a corrective action the user performed.

    Returns: SessionSnapshot with the attempt appended.
    """
    session_id: str
    action: str
    result: str
    notes: Optional[str] = None


@dataclass(frozen=True)
class EscalateSession:
    """
    Hand the session off from outside the graph (voice loop escalation).

    Returns: SessionSnapshot in ESCALATED status.
    """
    session_id: str
    reason: str
    trigger: str = EscalationTrigger.VOICE_LOOP


@dataclass(frozen=True)
class EndSession:
    """Returns: SessionSnapshot in ABANDONED status (or unchanged if closed)."""
    session_id: str


# Command union type for type hints
Command = (StartSession | ProcessUtterance | GetState | GetContext
           | RecordAction | EscalateSession | EndSession)
