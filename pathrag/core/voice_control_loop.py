"""
Voice Control Loop - turn gating between the speech collaborator and the engine

Contract:
    next_state, commands = reduce_loop(current_state, event)

Rules:
    1. Reducer is pure: commands are side-effect intents only.
    2. Never listen while speaking; listening starts on SpeechComplete only.
    3. Transcripts outside LISTENING, or from non-user speakers, are dropped.
    4. Noise is dropped with no state change and no retry increment.
    5. A new node never interrupts an instruction in flight; it is deferred
       and spoken on the next SpeechComplete.
    6. ESCALATED is absorbing until reset().
    7. Unexpected event orderings are ignored, never raised.

Transition table:

    State            x Event                -> Next State    + Commands
    ----------------------------------------------------------------------
    IDLE|LISTENING|   NodeSet                -> SPEAKING      + [CancelTimer] Speak
      ADVANCING
    SPEAKING|         NodeSet                -> (same)        + (deferred)
      REPROMPTING
    SPEAKING|         SpeechComplete         -> LISTENING     + StartTimer
      REPROMPTING                               (SPEAKING if a node was deferred,
                                                 IDLE if the node takes no answers)
    LISTENING         TranscriptReceived     -> LISTENING     (noise, no-op)
    LISTENING         TranscriptReceived     -> ADVANCING     + CancelTimer, Advance
    LISTENING         TranscriptReceived     -> SPEAKING      + CancelTimer, Speak
                        (invalid, retries left)
    LISTENING         TranscriptReceived|    -> ESCALATED     + CancelTimer, Escalate
                        Timeout (budget used)
    LISTENING         Timeout (retries left) -> SPEAKING      + Speak
    ANY               ConnectionChanged(off) -> IDLE          + [CancelTimer]
    IDLE              ConnectionChanged(on)  -> SPEAKING      + Speak (if a node is set)
    ESCALATED         ANY                    -> ESCALATED     (absorb)
    ----------------------------------------------------------------------

Every transition that changes voice_state also emits StateChanged.
"""

import logging
import threading
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, List, Optional, Tuple

from pathrag.contracts import DiagnosticNode, ExpectationWindow
from pathrag.core.expectation_window import (
    DEFAULT_TIMEOUT_SECONDS,
    build_expectation_window,
    is_noise,
    validate_input,
)

logger = logging.getLogger(__name__)


class VoiceState(str, Enum):
    IDLE = "idle"
    SPEAKING = "speaking"
    LISTENING = "listening"
    PROCESSING = "processing"
    ADVANCING = "advancing"
    REPROMPTING = "reprompting"
    ESCALATED = "escalated"


USER_ROLE = "user"

REASON_MAX_RETRIES = "Maximum voice retries reached"


# ── Events ───────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class NodeSet:
    node: DiagnosticNode


@dataclass(frozen=True)
class SpeechComplete:
    pass


@dataclass(frozen=True)
class TranscriptReceived:
    text: str
    role: str = USER_ROLE


@dataclass(frozen=True)
class Timeout:
    """Listening window elapsed. listen_seq pins it to one window."""
    node_id: str
    listen_seq: Optional[int] = None


@dataclass(frozen=True)
class ConnectionChanged:
    connected: bool


LoopEvent = NodeSet | SpeechComplete | TranscriptReceived | Timeout | ConnectionChanged


# ── Commands ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Speak:
    text: str
    node_id: str


@dataclass(frozen=True)
class StartTimer:
    node_id: str
    timeout: float
    listen_seq: int


@dataclass(frozen=True)
class CancelTimer:
    pass


@dataclass(frozen=True)
class Advance:
    """
    Hand a validated transcript to the traversal layer.

    Attributes:
        node_id: Node the answer belongs to
        utterance: Raw transcript, as spoken
        value: Matched allowed token, or the raw transcript when novel
        novel: True when no allowed token matched
    """
    node_id: str
    utterance: str
    value: str
    novel: bool = False


@dataclass(frozen=True)
class Escalate:
    node_id: str
    reason: str


@dataclass(frozen=True)
class StateChanged:
    state: VoiceState


LoopCommand = Speak | StartTimer | CancelTimer | Advance | Escalate | StateChanged


# ── State ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ControlLoopState:
    """
    Snapshot of the loop.

    Fields:
        voice_state: Current VoiceState
        node: Node being spoken or listened for
        expectation: Window derived from node (None before the first node)
        retry_count: Failed attempts at the current node
        last_valid_input: Last value handed to the traversal layer
        pending_node: Node deferred while an instruction was in flight
        connected: Audio connection status
        listen_seq: Increments every time listening starts
        timeout: Listening timeout used for new windows
    """
    voice_state: VoiceState = VoiceState.IDLE
    node: Optional[DiagnosticNode] = None
    expectation: Optional[ExpectationWindow] = None
    retry_count: int = 0
    last_valid_input: Optional[str] = None
    pending_node: Optional[DiagnosticNode] = None
    connected: bool = True
    listen_seq: int = 0
    timeout: float = DEFAULT_TIMEOUT_SECONDS

    def evolve(self, **kwargs) -> "ControlLoopState":
        return replace(self, **kwargs)


IN_FLIGHT_STATES = (VoiceState.SPEAKING, VoiceState.REPROMPTING)


def reduce_loop(state: ControlLoopState, event) -> Tuple[ControlLoopState, List]:
    """Pure reducer: (state, event) -> (next_state, commands)."""
    s = state

    # ── Escalated absorber ───────────────────────────────────────────
    if s.voice_state == VoiceState.ESCALATED:
        return s, []

    if isinstance(event, ConnectionChanged):
        return _on_connection(s, event)

    if isinstance(event, NodeSet):
        if s.voice_state in IN_FLIGHT_STATES:
            return s.evolve(pending_node=event.node), []
        if not s.connected:
            return s.evolve(node=event.node, pending_node=None,
                            expectation=build_expectation_window(event.node, timeout=s.timeout),
                            retry_count=0), []
        cmds = [CancelTimer()] if s.voice_state == VoiceState.LISTENING else []
        next_state, speak_cmds = _speak_node(s, event.node)
        return next_state, cmds + speak_cmds

    if isinstance(event, SpeechComplete):
        if s.voice_state not in IN_FLIGHT_STATES:
            return s, []
        if s.pending_node is not None:
            return _speak_node(s, s.pending_node)
        if s.node is None or not s.expectation or not s.expectation.allowed_values:
            return s.evolve(voice_state=VoiceState.IDLE), [StateChanged(VoiceState.IDLE)]
        seq = s.listen_seq + 1
        return (
            s.evolve(voice_state=VoiceState.LISTENING, listen_seq=seq),
            [
                StateChanged(VoiceState.LISTENING),
                StartTimer(s.node.node_id, s.expectation.timeout, seq),
            ],
        )

    if isinstance(event, TranscriptReceived):
        if s.voice_state != VoiceState.LISTENING or s.expectation is None:
            return s, []
        if event.role != USER_ROLE:
            return s, []
        if is_noise(event.text):
            logger.debug(f"Ignoring noise: {event.text!r}")
            return s, []

        validation = validate_input(event.text, s.expectation)
        if validation.valid:
            return (
                s.evolve(voice_state=VoiceState.ADVANCING, retry_count=0,
                         last_valid_input=validation.matched_value),
                [
                    CancelTimer(),
                    StateChanged(VoiceState.PROCESSING),
                    StateChanged(VoiceState.ADVANCING),
                    Advance(s.node.node_id, event.text, validation.matched_value, validation.novel),
                ],
            )
        return _failed_attempt(s, [CancelTimer(), StateChanged(VoiceState.PROCESSING)])

    if isinstance(event, Timeout):
        if s.voice_state != VoiceState.LISTENING or s.node is None:
            return s, []
        if event.node_id != s.node.node_id:
            return s, []
        if event.listen_seq is not None and event.listen_seq != s.listen_seq:
            return s, []
        logger.info(f"No answer within {s.expectation.timeout}s at '{s.node.node_id}'")
        return _failed_attempt(s, [])

    logger.warning(f"Unknown control loop event: {event!r}")
    return s, []


def _speak_node(s: ControlLoopState, node: DiagnosticNode):
    next_state = s.evolve(
        voice_state=VoiceState.SPEAKING,
        node=node,
        expectation=build_expectation_window(node, timeout=s.timeout),
        retry_count=0,
        pending_node=None,
    )
    return next_state, [StateChanged(VoiceState.SPEAKING), Speak(node.voice_instruction, node.node_id)]


def _failed_attempt(s: ControlLoopState, cmds: List):
    retry_count = s.retry_count + 1
    if retry_count >= s.expectation.retries:
        return (
            s.evolve(voice_state=VoiceState.ESCALATED, retry_count=retry_count),
            cmds + [StateChanged(VoiceState.ESCALATED), Escalate(s.node.node_id, REASON_MAX_RETRIES)],
        )
    return (
        s.evolve(voice_state=VoiceState.SPEAKING, retry_count=retry_count),
        cmds + [
            StateChanged(VoiceState.REPROMPTING),
            StateChanged(VoiceState.SPEAKING),
            Speak(s.node.voice_instruction, s.node.node_id),
        ],
    )


def _on_connection(s: ControlLoopState, event: ConnectionChanged):
    if not event.connected:
        cmds = [CancelTimer()] if s.voice_state == VoiceState.LISTENING else []
        if s.voice_state != VoiceState.IDLE:
            cmds.append(StateChanged(VoiceState.IDLE))
        return s.evolve(voice_state=VoiceState.IDLE, connected=False), cmds

    s = s.evolve(connected=True)
    if s.voice_state != VoiceState.IDLE:
        return s, []
    resume = s.pending_node or s.node
    if resume is None or not resume.answer_keys:
        return s, []
    return _speak_node(s, resume)


# ── Timer ────────────────────────────────────────────────────────────────

class ListenTimer:
    """One-shot listening timer that fires a Timeout back into the loop."""

    def __init__(self, on_expire: Callable[[Timeout], None]):
        self._on_expire = on_expire
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    def start(self, node_id: str, timeout: float, listen_seq: int):
        with self._lock:
            self._cancel_locked()
            self._timer = threading.Timer(timeout, self._on_expire, args=(Timeout(node_id, listen_seq),))
            self._timer.daemon = True
            self._timer.start()

    def cancel(self):
        with self._lock:
            self._cancel_locked()

    @property
    def active(self) -> bool:
        return self._timer is not None and self._timer.is_alive()

    def _cancel_locked(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


# ── Runtime wrapper ──────────────────────────────────────────────────────

class VoiceControlLoop:
    """
    Synchronous dispatcher around reduce_loop.

    dispatch() is serialized with a re-entrant lock, so a command sink may
    dispatch follow-up events (e.g. NodeSet after Advance) from inside its
    handler. Timer commands are executed here when use_timers is True;
    every command is also passed to the sink.
    """

    def __init__(self, sink: Optional[Callable[[object], None]] = None,
                 timeout: float = DEFAULT_TIMEOUT_SECONDS, use_timers: bool = False):
        self._sink = sink
        self._timeout = timeout
        self._lock = threading.RLock()
        self._state = ControlLoopState(timeout=timeout)
        self._timer = ListenTimer(self.dispatch) if use_timers else None

    @property
    def state(self) -> ControlLoopState:
        return self._state

    @property
    def voice_state(self) -> VoiceState:
        return self._state.voice_state

    def is_listening(self) -> bool:
        return self._state.voice_state == VoiceState.LISTENING

    def set_sink(self, sink: Callable[[object], None]):
        self._sink = sink

    def dispatch(self, event) -> List:
        """
        Feed one event through the reducer and execute its commands.

        Returns:
            List of commands emitted for this event
        """
        with self._lock:
            previous = self._state.voice_state
            self._state, commands = reduce_loop(self._state, event)
            if self._state.voice_state != previous:
                logger.debug(f"Voice state {previous.value} -> {self._state.voice_state.value}")

            for command in commands:
                self._execute(command)
            return commands

    def reset(self):
        """Return to IDLE with no node (leaves ESCALATED)."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._state = ControlLoopState(timeout=self._timeout)

    def _execute(self, command):
        if self._timer is not None:
            if isinstance(command, StartTimer):
                self._timer.start(command.node_id, command.timeout, command.listen_seq)
            elif isinstance(command, CancelTimer):
                self._timer.cancel()
        if self._sink is not None:
            self._sink(command)
