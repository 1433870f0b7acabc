"""
Voice Session Driver - connects the control loop to audio and the dialogue manager

Responsibilities:
- Start a diagnostic session and speak its first node
- Forward audio collaborator signals into the control loop
- Execute loop commands: Speak -> audio, Advance -> ProcessUtterance,
  Escalate -> EscalateSession
- Feed the next node back into the loop after each turn

Design principles:
- The loop decides when to listen; the engine decides where to go
- The raw transcript is what reaches the engine, so uncertainty phrases
  are never hidden behind a matched token
"""

import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional

from pathrag.commands import EndSession, EscalateSession, ProcessUtterance, SessionStatus, StartSession
from pathrag.contracts import DiagnosticNode, DiagnosticPhase, InputType
from pathrag.core.expectation_window import DEFAULT_TIMEOUT_SECONDS
from pathrag.core.voice_control_loop import (
    Advance,
    ConnectionChanged,
    Escalate,
    NodeSet,
    Speak,
    SpeechComplete,
    StateChanged,
    TranscriptReceived,
    USER_ROLE,
    VoiceControlLoop,
    VoiceState,
)
from pathrag.results import IllegalCommand

logger = logging.getLogger(__name__)


HANDOFF_NODE = DiagnosticNode(
    node_id="voice_handoff",
    phase=DiagnosticPhase.ESCALATION,
    input_type=InputType.CONFIRMATION,
    question="Transferring to a specialist",
    voice_instruction=(
        "I'm going to connect you with a support specialist who can help further. "
        "They'll have a summary of everything we've checked."
    ),
    terminal=True,
)

GOODBYE_NODE = DiagnosticNode(
    node_id="voice_goodbye",
    phase=DiagnosticPhase.POST_SESSION,
    input_type=InputType.CONFIRMATION,
    question="Session ended",
    voice_instruction="Okay, we'll stop here. Call back any time. Goodbye!",
    terminal=True,
)


class AudioChannel(ABC):
    """Speech collaborator. Implementations own synthesis and recognition."""

    @abstractmethod
    def speak(self, text: str) -> None:
        """Start speaking text. Completion is signalled via on_speech_complete()."""

    def stop(self) -> None:
        """Stop any ongoing speech (optional)."""


class VoiceSessionDriver:
    """
    Runs one voice conversation.

    The audio transport calls on_speech_complete(), on_transcript() and
    on_connection_change(); everything else happens through loop commands.
    """

    def __init__(self, dialogue_manager, graph, audio: AudioChannel,
                 timeout: float = DEFAULT_TIMEOUT_SECONDS, use_timers: bool = True,
                 on_state_change: Optional[Callable[[VoiceState], None]] = None):
        """
        Args:
            dialogue_manager: DiagnosticDialogueManager
            graph: DiagnosticGraph used to turn snapshots back into nodes
            audio: AudioChannel implementation
            timeout: Listening timeout in seconds
            use_timers: Enforce the listening timeout with a background timer
            on_state_change: Optional observer for voice state changes
        """
        self.dm = dialogue_manager
        self.graph = graph
        self.audio = audio
        self.on_state_change = on_state_change
        self.loop = VoiceControlLoop(sink=self._execute, timeout=timeout, use_timers=use_timers)
        self.session_id: Optional[str] = None
        self.last_snapshot = None

    # =========================================================================
    # Public API
    # =========================================================================

    def start(self, vendor_hint: Optional[str] = None):
        """Open a session and speak the entry node. Returns the snapshot."""
        self.loop.reset()
        snapshot = self.dm.handle(StartSession(vendor_hint=vendor_hint))
        self.session_id = snapshot.session_id
        self.last_snapshot = snapshot
        logger.info(f"Voice session started: {self.session_id}")
        self._set_node_from_snapshot(snapshot)
        return snapshot

    def end(self):
        if self.session_id is None:
            return None
        snapshot = self.dm.handle(EndSession(self.session_id))
        if not isinstance(snapshot, IllegalCommand):
            self.last_snapshot = snapshot
        self.loop.reset()
        return snapshot

    def on_speech_complete(self):
        self.loop.dispatch(SpeechComplete())

    def on_transcript(self, text: str, role: str = USER_ROLE):
        self.loop.dispatch(TranscriptReceived(text=text, role=role))

    def on_connection_change(self, connected: bool):
        self.loop.dispatch(ConnectionChanged(connected=connected))

    @property
    def status(self) -> Optional[str]:
        if self.last_snapshot is None:
            return None
        return self.last_snapshot.status

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE

    # =========================================================================
    # Command execution
    # =========================================================================

    def _execute(self, command):
        if isinstance(command, Speak):
            self.audio.speak(command.text)
        elif isinstance(command, Advance):
            self._advance(command)
        elif isinstance(command, Escalate):
            self._escalate(command)
        elif isinstance(command, StateChanged):
            logger.debug(f"Voice state: {command.state.value}")
            if self.on_state_change is not None:
                self.on_state_change(command.state)

    def _advance(self, command: Advance):
        result = self.dm.handle(ProcessUtterance(self.session_id, command.utterance))
        if isinstance(result, IllegalCommand):
            logger.warning(f"Turn rejected: {result.reason}")
            self.loop.reset()
            return

        snapshot = result.snapshot
        self.last_snapshot = snapshot

        if snapshot.status == SessionStatus.ESCALATED and result.should_escalate:
            # Escalated on the current node; no scripted node to speak
            self.loop.dispatch(NodeSet(HANDOFF_NODE))
        elif snapshot.status == SessionStatus.ABANDONED and result.debug.get('exit_command'):
            self.loop.dispatch(NodeSet(GOODBYE_NODE))
        else:
            self._set_node_from_snapshot(snapshot)

    def _escalate(self, command: Escalate):
        logger.info(f"Voice loop escalation at '{command.node_id}': {command.reason}")
        result = self.dm.handle(EscalateSession(self.session_id, command.reason))
        if not isinstance(result, IllegalCommand):
            self.last_snapshot = result
        # Loop is ESCALATED (absorbing); speak the hand-off directly
        self.audio.speak(HANDOFF_NODE.voice_instruction)

    def _set_node_from_snapshot(self, snapshot):
        node_data = snapshot.current_node
        node = self.graph.get_node(node_data['node_id']) if node_data else None
        if node is None:
            logger.error(f"Session {snapshot.session_id}: no node to speak")
            self.loop.dispatch(NodeSet(HANDOFF_NODE))
            return
        self.loop.dispatch(NodeSet(node))
