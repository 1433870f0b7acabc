"""
Diagnostic Dialogue Manager - command handler for diagnostic sessions

Responsibilities:
- Accept commands (start, process, get state/context, record action, end)
- Load and save sessions through the session store
- Serialize transitions per session id
- Build client-facing snapshots

Design principles:
- Ephemeral per command (no session state held between commands)
- Thin orchestration layer (traversal logic lives in PathTraversalEngine)
- Expected failures (unknown session, closed session) are IllegalCommand
  values, never exceptions
"""

import logging

from pathrag.commands import (
    DiagnosticSession,
    EndSession,
    EscalateSession,
    GetContext,
    GetState,
    ProcessUtterance,
    RecordAction,
    SessionStatus,
    StartSession,
)
from pathrag.contracts import PHASE_LABELS
from pathrag.results import ContextResult, IllegalCommand, SessionSnapshot, TurnResult
from pathrag.utils.helpers import normalize_utterance

logger = logging.getLogger(__name__)


class DiagnosticDialogueManager:
    """
    Orchestrates diagnostic sessions on top of a PathTraversalEngine.

    Commands are the only public interface: handle(command) returns a
    SessionSnapshot, TurnResult, ContextResult or IllegalCommand.
    """

    # Commands that end the session early
    EXIT_COMMANDS = {"quit", "exit", "stop"}

    def __init__(self, engine, session_store):
        """
        Args:
            engine: PathTraversalEngine instance (stateless, safe to cache)
            session_store: SessionStore instance

        Raises:
            TypeError: If any required module is missing or wrong type
        """
        self._validate_modules(engine, session_store)
        self.engine = engine
        self.store = session_store
        logger.info("Diagnostic Dialogue Manager initialized")

    def _validate_modules(self, engine, session_store):
        """Validate module interfaces"""
        for method in ('create_session', 'evaluate', 'advance', 'escalate', 'abandon',
                       'record_action', 'progress_percentage', 'generate_voice_context'):
            if not callable(getattr(engine, method, None)):
                raise TypeError(f"engine must have callable {method}() method")

        for method in ('save', 'load', 'delete', 'touch', 'lock'):
            if not callable(getattr(session_store, method, None)):
                raise TypeError(f"session_store must have callable {method}() method")

    # =========================================================================
    # Public API
    # =========================================================================

    def handle(self, command):
        """
        Handle one command.

        Args:
            command: One of the command types in pathrag.commands

        Returns:
            SessionSnapshot | TurnResult | ContextResult | IllegalCommand
        """
        command_type = type(command).__name__

        if isinstance(command, StartSession):
            return self._start(command)
        if isinstance(command, ProcessUtterance):
            return self._process(command)
        if isinstance(command, GetState):
            return self._get_state(command)
        if isinstance(command, GetContext):
            return self._get_context(command)
        if isinstance(command, RecordAction):
            return self._record_action(command)
        if isinstance(command, EscalateSession):
            return self._escalate(command)
        if isinstance(command, EndSession):
            return self._end(command)

        logger.warning(f"Rejected unknown command {command_type}")
        return IllegalCommand(reason=f"Unknown command type: {command_type}", command_type=command_type)

    def build_snapshot(self, session: DiagnosticSession) -> SessionSnapshot:
        """Client-facing view of a session."""
        node = self.engine.get_current_node(session)
        escalated = session.status == SessionStatus.ESCALATED and session.escalation_payload
        return SessionSnapshot(
            session_id=session.session_id,
            current_node=node.to_dict() if node else None,
            phase=session.current_phase.value,
            phase_label=PHASE_LABELS.get(session.current_phase, session.current_phase.value),
            progress=self.engine.progress_percentage(session),
            status=session.status,
            assets=[asset.to_dict() for asset in self.engine.assets_for_session(session)],
            voice_context=self.engine.generate_voice_context(session),
            session=session.to_json(),
            escalation_payload=session.escalation_payload.to_dict() if escalated else None,
        )

    # =========================================================================
    # Command handlers
    # =========================================================================

    def _start(self, command: StartSession) -> SessionSnapshot:
        session = self.engine.create_session(vendor_hint=command.vendor_hint)
        self.store.save(session)
        return self.build_snapshot(session)

    def _process(self, command: ProcessUtterance):
        command_type = type(command).__name__
        with self.store.lock(command.session_id):
            session = self.store.load(command.session_id)
            rejection = self._reject_if_unavailable(session, command.session_id, command_type)
            if rejection:
                return rejection

            if normalize_utterance(command.utterance) in self.EXIT_COMMANDS:
                logger.info(f"User requested exit for {session.session_id}")
                ended = self.engine.abandon(session)
                self.store.save(ended)
                return TurnResult(
                    snapshot=self.build_snapshot(ended),
                    should_escalate=False,
                    escalation_reason=None,
                    is_retry=False,
                    debug={'exit_command': True},
                )

            result = self.engine.evaluate(session, command.utterance)
            updated = self.engine.advance(session, command.utterance, result)
            self.store.save(updated)

        logger.info(
            f"Session {updated.session_id}: '{session.current_node_id}' -> "
            f"'{updated.current_node_id}' ({updated.status})"
        )
        return TurnResult(
            snapshot=self.build_snapshot(updated),
            should_escalate=result.should_escalate,
            escalation_reason=result.escalation_reason,
            is_retry=result.is_retry,
            debug={
                'matched_answer': result.matched_answer,
                'escalation_trigger': result.escalation_trigger,
                'integrity_failure': result.integrity_failure,
                'previous_node_id': session.current_node_id,
            },
        )

    def _get_state(self, command: GetState):
        session = self.store.load(command.session_id)
        if session is None:
            return self._not_found(command.session_id, type(command).__name__)
        self.store.touch(command.session_id)
        return self.build_snapshot(session)

    def _get_context(self, command: GetContext):
        session = self.store.load(command.session_id)
        if session is None:
            return self._not_found(command.session_id, type(command).__name__)
        return ContextResult(
            session_id=session.session_id,
            voice_context=self.engine.generate_voice_context(session),
        )

    def _record_action(self, command: RecordAction):
        command_type = type(command).__name__
        with self.store.lock(command.session_id):
            session = self.store.load(command.session_id)
            rejection = self._reject_if_unavailable(session, command.session_id, command_type)
            if rejection:
                return rejection

            try:
                updated = self.engine.record_action(
                    session, command.action, command.result, notes=command.notes
                )
            except ValueError as e:
                logger.warning(f"Rejected action for {command.session_id}: {e}")
                return IllegalCommand(reason=str(e), command_type=command_type)

            self.store.save(updated)
        return self.build_snapshot(updated)

    def _escalate(self, command: EscalateSession):
        command_type = type(command).__name__
        with self.store.lock(command.session_id):
            session = self.store.load(command.session_id)
            rejection = self._reject_if_unavailable(session, command.session_id, command_type)
            if rejection:
                return rejection
            updated = self.engine.escalate(session, command.reason, trigger=command.trigger)
            self.store.save(updated)
        return self.build_snapshot(updated)

    def _end(self, command: EndSession):
        with self.store.lock(command.session_id):
            session = self.store.load(command.session_id)
            if session is None:
                return self._not_found(command.session_id, type(command).__name__)
            if not session.is_active:
                return self.build_snapshot(session)
            updated = self.engine.abandon(session)
            self.store.save(updated)
        return self.build_snapshot(updated)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _reject_if_unavailable(self, session, session_id: str, command_type: str):
        if session is None:
            return self._not_found(session_id, command_type)
        if not session.is_active:
            return IllegalCommand(
                reason=f"Session {session_id} is {session.status}",
                command_type=command_type,
            )
        return None

    def _not_found(self, session_id: str, command_type: str) -> IllegalCommand:
        logger.warning(f"{command_type}: session {session_id} not found or expired")
        return IllegalCommand(
            reason=f"Session {session_id} not found or expired",
            command_type=command_type,
            not_found=True,
        )
