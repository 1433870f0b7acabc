"""
Path Traversal Engine - deterministic walk through the diagnostic graph

Responsibilities:
- Create sessions at the entry node
- Evaluate an utterance against the current node (escalate, retry or move)
- Apply an evaluation to produce the next session value
- Build escalation payloads for human hand-off
- Report progress and voice context for the current node

Design principles:
- Value semantics: sessions go in, new sessions come out, inputs untouched
- Expected conditions (no match, retry, escalation) are result values
- Escalation checks run before answer resolution
- Integrity failures (missing nodes) always escalate and are logged loudly
- No locking here: callers serialize transitions per session id
"""

import logging
import time
from typing import List, Optional

from pathrag.commands import (
    ActionAttempt,
    DiagnosticSession,
    EscalationPayload,
    EscalationTrigger,
    HistoryEntry,
    Outcome,
    SessionStatus,
)
from pathrag.contracts import (
    PROGRESS_PHASES,
    AllowedAction,
    DiagnosticNode,
    DiagnosticPhase,
    RouterAsset,
)
from pathrag.core.answer_resolver import resolve_answer
from pathrag.core.diagnostic_graph import DiagnosticGraph
from pathrag.core.escalation_evaluator import REASON_RETRIES, count_retries, evaluate_escalation
from pathrag.results import TraversalResult
from pathrag.utils.helpers import generate_session_id, normalize_utterance
from pathrag.utils.voice_context import VoiceContextBuilder

logger = logging.getLogger(__name__)


VENDOR_DETECTION_CATEGORY = "vendor_detection"

FAULT_DOMAINS = {
    DiagnosticPhase.PHYSICAL_LAYER: "Physical/Hardware",
    DiagnosticPhase.LOCAL_NETWORK: "Local Network/Device",
    DiagnosticPhase.ROUTER_LOGIN: "Router Access/Authentication",
    DiagnosticPhase.WAN_INSPECTION: "WAN/ISP Connection",
    DiagnosticPhase.CORRECTIVE_ACTIONS: "Configuration/Settings",
}
UNDETERMINED_FAULT_DOMAIN = "Undetermined"

ACTION_RESULTS = ("success", "failure", "pending")


class SessionClosedError(ValueError):
    """Raised when a transition is applied to a session that is no longer active."""

    def __init__(self, session_id: str, status: str):
        self.session_id = session_id
        self.status = status
        super().__init__(f"Session {session_id} is {status}, no further transitions allowed")


def suspected_fault_domain(phase: DiagnosticPhase) -> str:
    return FAULT_DOMAINS.get(phase, UNDETERMINED_FAULT_DOMAIN)


class PathTraversalEngine:
    """
    Stateless traversal over a DiagnosticGraph.

    The engine holds only read-only collaborators (graph, asset catalog,
    vendor detector) and is safe to share between threads.
    """

    def __init__(self, graph: DiagnosticGraph, asset_catalog=None, vendor_detector=None,
                 context_builder: Optional[VoiceContextBuilder] = None, clock=time.time):
        """
        Args:
            graph: Validated diagnostic graph
            asset_catalog: Object with assets_for(node_id, vendor_id=None), optional
            vendor_detector: Object with detect(text) -> VendorProfile, optional
            context_builder: Voice context builder (default VoiceContextBuilder)
            clock: Callable returning epoch seconds
        """
        self.graph = graph
        self.asset_catalog = asset_catalog
        self.vendor_detector = vendor_detector
        self.context_builder = context_builder or VoiceContextBuilder()
        self.clock = clock

    # =========================================================================
    # Public API
    # =========================================================================

    def create_session(self, vendor_hint: Optional[str] = None,
                       timestamp: Optional[float] = None) -> DiagnosticSession:
        """
        Create a new session at the entry node.

        Args:
            vendor_hint: Free-text brand hint (resolved via vendor detection)
            timestamp: Creation time in epoch seconds (defaults to now)

        Returns:
            DiagnosticSession with status active and empty history
        """
        started_at = self.clock() if timestamp is None else timestamp
        entry = self.graph.entry_node

        vendor_profile = None
        if vendor_hint and self.vendor_detector is not None:
            vendor_profile = self.vendor_detector.detect(vendor_hint)

        session = DiagnosticSession(
            session_id=generate_session_id(int(started_at * 1000)),
            started_at=started_at,
            current_node_id=entry.node_id,
            current_phase=entry.phase,
            vendor_profile=vendor_profile,
        )
        logger.info(f"Created session {session.session_id} at '{entry.node_id}'")
        return session

    def get_current_node(self, session: DiagnosticSession) -> Optional[DiagnosticNode]:
        return self.graph.get_node(session.current_node_id)

    def evaluate(self, session: DiagnosticSession, utterance: str) -> TraversalResult:
        """
        Decide what an utterance means at the session's current node.

        Does not modify the session. Never raises for expected conditions.

        Args:
            session: Current session
            utterance: Raw user utterance

        Returns:
            TraversalResult: move, retry (same node) or escalation
        """
        node = self.get_current_node(session)
        if node is None:
            logger.error(
                f"Session {session.session_id}: current node '{session.current_node_id}' missing from graph"
            )
            return TraversalResult(
                next_node=None,
                should_escalate=True,
                escalation_reason=f"Current node missing: '{session.current_node_id}'",
                escalation_trigger=EscalationTrigger.MISSING_NODE,
                integrity_failure=True,
            )

        normalized = normalize_utterance(utterance)

        # Escalation takes priority over answer resolution
        decision = evaluate_escalation(node, normalized, session.history)
        if decision.should_escalate:
            logger.info(f"Session {session.session_id}: escalating at '{node.node_id}' ({decision.reason})")
            return TraversalResult(
                next_node=None,
                should_escalate=True,
                escalation_reason=decision.reason,
                escalation_trigger=decision.trigger,
            )

        answer_key = resolve_answer(node.expected_answers, normalized)

        if answer_key is None:
            retries = count_retries(session.history, node.node_id)
            if retries >= node.max_retries:
                logger.info(
                    f"Session {session.session_id}: {retries} retries at '{node.node_id}', escalating"
                )
                return TraversalResult(
                    next_node=None,
                    should_escalate=True,
                    escalation_reason=REASON_RETRIES,
                    escalation_trigger=EscalationTrigger.RETRY_EXCEEDED,
                    assets_to_show=self._assets(node, session),
                )

            logger.debug(f"Session {session.session_id}: no match at '{node.node_id}', retry {retries + 1}")
            return TraversalResult(
                next_node=node,
                assets_to_show=self._assets(node, session),
                is_retry=True,
            )

        destination_id = node.next_node_for(answer_key)
        next_node = self.graph.get_node(destination_id)

        if next_node is None:
            logger.error(
                f"Graph integrity failure: node '{node.node_id}' answer '{answer_key}' "
                f"points to missing node '{destination_id}'"
            )
            return TraversalResult(
                next_node=None,
                should_escalate=True,
                escalation_reason=f"Next node '{destination_id}' not found in path",
                escalation_trigger=EscalationTrigger.MISSING_NODE,
                integrity_failure=True,
                matched_answer=answer_key,
            )

        return TraversalResult(
            next_node=next_node,
            assets_to_show=self._assets(next_node, session),
            matched_answer=answer_key,
        )

    def advance(self, session: DiagnosticSession, utterance: str, result: TraversalResult,
                timestamp: Optional[float] = None) -> DiagnosticSession:
        """
        Apply an evaluation result to produce the next session.

        Args:
            session: Session the result was evaluated against
            utterance: Raw utterance (recorded verbatim in history)
            result: Output of evaluate()
            timestamp: Turn time in epoch seconds (defaults to now)

        Returns:
            New DiagnosticSession (input is never modified)

        Raises:
            SessionClosedError: If the session is not active
        """
        self._require_active(session)
        now = self.clock() if timestamp is None else timestamp
        current = self.get_current_node(session)

        if result.should_escalate:
            outcome = (Outcome.UNCERTAIN
                       if result.escalation_trigger == EscalationTrigger.USER_UNCERTAIN
                       else Outcome.FAILURE)
        elif result.is_retry or result.next_node is None:
            outcome = Outcome.FAILURE
        else:
            outcome = Outcome.SUCCESS

        entry = HistoryEntry(
            node_id=session.current_node_id,
            timestamp=now,
            user_response=utterance,
            outcome=outcome,
        )
        changes = {
            'history': session.history + (entry,),
            'observations': session.with_observation(session.current_node_id, utterance),
        }

        if (not result.should_escalate and current is not None
                and current.category == VENDOR_DETECTION_CATEGORY
                and self.vendor_detector is not None):
            changes['vendor_profile'] = self.vendor_detector.detect(utterance)
            logger.info(
                f"Session {session.session_id}: vendor profile '{changes['vendor_profile'].vendor_id}'"
            )

        if result.should_escalate:
            changes['status'] = SessionStatus.ESCALATED
            changes['escalation_payload'] = self._build_payload(
                history=changes['history'],
                observations=changes['observations'],
                actions=session.actions_attempted,
                phase=session.current_phase,
                reason=result.escalation_reason or "Unable to proceed with diagnosis",
                trigger=result.escalation_trigger or EscalationTrigger.USER_UNCERTAIN,
                timestamp=now,
            )
        elif result.next_node is not None and not result.is_retry:
            next_node = result.next_node
            changes['current_node_id'] = next_node.node_id
            changes['current_phase'] = next_node.phase

            if next_node.node_id == self.graph.completion_node_id:
                changes['status'] = SessionStatus.RESOLVED
                logger.info(f"Session {session.session_id} resolved")
            elif next_node.terminal and next_node.phase == DiagnosticPhase.ESCALATION:
                changes['status'] = SessionStatus.ESCALATED
                changes['escalation_payload'] = self._build_payload(
                    history=changes['history'],
                    observations=changes['observations'],
                    actions=session.actions_attempted,
                    phase=session.current_phase,
                    reason=f"Scripted escalation at '{next_node.node_id}'",
                    trigger=EscalationTrigger.SCRIPTED,
                    timestamp=now,
                )
                logger.info(f"Session {session.session_id} reached '{next_node.node_id}'")
            elif next_node.terminal and next_node.phase == DiagnosticPhase.POST_SESSION:
                changes['status'] = SessionStatus.ABANDONED
                logger.info(f"Session {session.session_id} ended by user at '{session.current_node_id}'")

        return session.evolve(**changes)

    def process(self, session: DiagnosticSession, utterance: str,
                timestamp: Optional[float] = None):
        """
        evaluate() then advance() in one call.

        Returns:
            tuple: (TraversalResult, new DiagnosticSession)
        """
        result = self.evaluate(session, utterance)
        return result, self.advance(session, utterance, result, timestamp=timestamp)

    def escalate(self, session: DiagnosticSession, reason: str,
                 trigger: str = EscalationTrigger.VOICE_LOOP,
                 timestamp: Optional[float] = None) -> DiagnosticSession:
        """
        Escalate from outside the graph (voice loop, operator).

        Raises:
            SessionClosedError: If the session is not active
        """
        self._require_active(session)
        now = self.clock() if timestamp is None else timestamp
        payload = self._build_payload(
            history=session.history,
            observations=session.observations,
            actions=session.actions_attempted,
            phase=session.current_phase,
            reason=reason,
            trigger=trigger,
            timestamp=now,
        )
        logger.info(f"Session {session.session_id} escalated: {reason}")
        return session.evolve(status=SessionStatus.ESCALATED, escalation_payload=payload)

    def abandon(self, session: DiagnosticSession) -> DiagnosticSession:
        """
        Raises:
            SessionClosedError: If the session is not active
        """
        self._require_active(session)
        logger.info(f"Session {session.session_id} abandoned at '{session.current_node_id}'")
        return session.evolve(status=SessionStatus.ABANDONED)

    def record_action(self, session: DiagnosticSession, action: str, result: str,
                      notes: Optional[str] = None,
                      timestamp: Optional[float] = None) -> DiagnosticSession:
        """
        Append a corrective action attempt.

        Args:
            session: Active session
            action: AllowedAction value (e.g., 'POWER_CYCLE')
            result: 'success', 'failure' or 'pending'
            notes: Free-text notes

        Raises:
            SessionClosedError: If the session is not active
            ValueError: If the action is unknown, not allowed at the current
                node, or the result is invalid
        """
        self._require_active(session)

        allowed_action = AllowedAction(action)
        if result not in ACTION_RESULTS:
            raise ValueError(f"Invalid action result '{result}', expected one of {ACTION_RESULTS}")

        node = self.get_current_node(session)
        if node is None or allowed_action not in node.actions_allowed:
            raise ValueError(
                f"Action {allowed_action.value} not allowed at node '{session.current_node_id}'"
            )

        attempt = ActionAttempt(
            action=allowed_action.value,
            timestamp=self.clock() if timestamp is None else timestamp,
            result=result,
            notes=notes,
        )
        return session.evolve(actions_attempted=session.actions_attempted + (attempt,))

    def progress_percentage(self, session: DiagnosticSession) -> int:
        """0-100 over the ordered progress phases; other phases report 100."""
        if session.current_phase not in PROGRESS_PHASES:
            return 100
        index = PROGRESS_PHASES.index(session.current_phase)
        return round(index / (len(PROGRESS_PHASES) - 1) * 100)

    def generate_voice_context(self, session: DiagnosticSession) -> str:
        """Voice context for the current node, or '' if the node is unknown."""
        node = self.get_current_node(session)
        if node is None:
            return ""
        return self.context_builder.build(
            node,
            observations=session.observation_map,
            vendor_profile=session.vendor_profile,
        )

    def assets_for_session(self, session: DiagnosticSession) -> List[RouterAsset]:
        """Assets for the current node as a list (empty when unknown or no catalog)."""
        node = self.get_current_node(session)
        if node is None:
            return []
        return list(self._assets(node, session))

    # =========================================================================
    # Internal helpers
    # =========================================================================

    def _require_active(self, session: DiagnosticSession):
        if not session.is_active:
            raise SessionClosedError(session.session_id, session.status)

    def _assets(self, node: DiagnosticNode, session: DiagnosticSession):
        if self.asset_catalog is None:
            return ()
        vendor_id = session.vendor_profile.vendor_id if session.vendor_profile else None
        return tuple(self.asset_catalog.assets_for(node.node_id, vendor_id))

    def _build_payload(self, history, observations, actions, phase: DiagnosticPhase,
                       reason: str, trigger: str, timestamp: float) -> EscalationPayload:
        return EscalationPayload(
            trigger=trigger,
            reason=reason,
            steps_completed=tuple(entry.node_id for entry in history),
            observations=tuple(observations),
            actions_attempted=tuple(actions),
            suspected_fault_domain=suspected_fault_domain(phase),
            timestamp=timestamp,
        )
