"""
Test Voice Control Loop - turn gating reducer, runtime wrapper and timer

Run with: pytest tests/test_voice_control_loop.py -v
"""

import threading

import pytest

from pathrag.core.voice_control_loop import (
    REASON_MAX_RETRIES,
    Advance,
    CancelTimer,
    ConnectionChanged,
    ControlLoopState,
    Escalate,
    ListenTimer,
    NodeSet,
    Speak,
    SpeechComplete,
    StartTimer,
    StateChanged,
    Timeout,
    TranscriptReceived,
    VoiceControlLoop,
    VoiceState,
    reduce_loop,
)


@pytest.fixture
def start_node(graph):
    return graph.get_node('entry_start')


@pytest.fixture
def led_node(graph):
    return graph.get_node('physical_power_led')


def run(state, *events):
    """Apply events in order; returns final state and the commands of the last event"""
    commands = []
    for event in events:
        state, commands = reduce_loop(state, event)
    return state, commands


def listening(node):
    state, _ = run(ControlLoopState(), NodeSet(node), SpeechComplete())
    assert state.voice_state == VoiceState.LISTENING
    return state


class TestSpeakAndListen:

    def test_node_set_speaks(self, start_node):
        state, commands = reduce_loop(ControlLoopState(), NodeSet(start_node))
        assert state.voice_state == VoiceState.SPEAKING
        assert state.expectation.slot == 'entry_start'
        assert commands == [
            StateChanged(VoiceState.SPEAKING),
            Speak(start_node.voice_instruction, 'entry_start'),
        ]

    def test_listen_only_after_speech_complete(self, start_node):
        state, _ = reduce_loop(ControlLoopState(), NodeSet(start_node))
        state, commands = reduce_loop(state, TranscriptReceived('yes'))
        assert state.voice_state == VoiceState.SPEAKING
        assert commands == []

        state, commands = reduce_loop(state, SpeechComplete())
        assert state.voice_state == VoiceState.LISTENING
        assert commands == [
            StateChanged(VoiceState.LISTENING),
            StartTimer('entry_start', 10.0, 1),
        ]

    def test_terminal_node_goes_idle(self, graph):
        state, commands = run(ControlLoopState(), NodeSet(graph.get_node('verification_complete')),
                              SpeechComplete())
        assert state.voice_state == VoiceState.IDLE
        assert commands == [StateChanged(VoiceState.IDLE)]

    def test_node_set_while_speaking_is_deferred(self, start_node, led_node):
        state, _ = reduce_loop(ControlLoopState(), NodeSet(start_node))
        state, commands = reduce_loop(state, NodeSet(led_node))
        assert commands == []
        assert state.node.node_id == 'entry_start'
        assert state.pending_node.node_id == 'physical_power_led'

        state, commands = reduce_loop(state, SpeechComplete())
        assert state.voice_state == VoiceState.SPEAKING
        assert state.pending_node is None
        assert commands[-1] == Speak(led_node.voice_instruction, 'physical_power_led')

    def test_node_set_while_listening_cancels_timer(self, start_node, led_node):
        state, commands = reduce_loop(listening(start_node), NodeSet(led_node))
        assert state.voice_state == VoiceState.SPEAKING
        assert commands[0] == CancelTimer()
        assert isinstance(commands[-1], Speak)


class TestTranscripts:

    @pytest.mark.parametrize('noise', ['uh', 'umm', '', '[background noise]'])
    def test_noise_never_advances(self, start_node, noise):
        state = listening(start_node)
        next_state, commands = reduce_loop(state, TranscriptReceived(noise))
        assert commands == []
        assert not any(isinstance(c, Advance) for c in commands)
        assert next_state == state

    def test_valid_answer_advances(self, led_node):
        state, commands = reduce_loop(listening(led_node), TranscriptReceived('It is ON'))
        assert state.voice_state == VoiceState.ADVANCING
        assert state.last_valid_input == 'on'
        assert commands == [
            CancelTimer(),
            StateChanged(VoiceState.PROCESSING),
            StateChanged(VoiceState.ADVANCING),
            Advance('physical_power_led', 'It is ON', 'on', False),
        ]

    def test_novel_answer_still_advances(self, led_node):
        _, commands = reduce_loop(listening(led_node), TranscriptReceived('purple'))
        assert commands[-1] == Advance('physical_power_led', 'purple', 'purple', True)

    def test_raw_utterance_kept_for_uncertainty(self, start_node):
        """'I don't know' contains 'no' but must reach the engine verbatim"""
        _, commands = reduce_loop(listening(start_node), TranscriptReceived("I don't know"))
        advance = commands[-1]
        assert advance.utterance == "I don't know"

    def test_assistant_transcripts_ignored(self, start_node):
        state = listening(start_node)
        next_state, commands = reduce_loop(state, TranscriptReceived('yes', role='assistant'))
        assert commands == []
        assert next_state == state

    def test_no_second_advance_while_advancing(self, start_node):
        state, _ = reduce_loop(listening(start_node), TranscriptReceived('yes'))
        state, commands = reduce_loop(state, TranscriptReceived('no'))
        assert commands == []
        assert state.voice_state == VoiceState.ADVANCING


class TestTimeoutAndEscalation:

    def test_timeout_reprompts_then_escalates(self, start_node):
        state = listening(start_node)

        for attempt in (1, 2):
            state, commands = reduce_loop(state, Timeout('entry_start', state.listen_seq))
            assert state.voice_state == VoiceState.SPEAKING, f"attempt {attempt}"
            assert state.retry_count == attempt
            assert StateChanged(VoiceState.REPROMPTING) in commands
            assert commands[-1] == Speak(start_node.voice_instruction, 'entry_start')
            state, _ = reduce_loop(state, SpeechComplete())

        state, commands = reduce_loop(state, Timeout('entry_start', state.listen_seq))
        assert state.voice_state == VoiceState.ESCALATED
        assert commands[-1] == Escalate('entry_start', REASON_MAX_RETRIES)

    def test_stale_timeouts_ignored(self, start_node):
        state = listening(start_node)
        assert reduce_loop(state, Timeout('other_node', state.listen_seq)) == (state, [])
        assert reduce_loop(state, Timeout('entry_start', state.listen_seq - 1)) == (state, [])

    def test_timeout_outside_listening_ignored(self, start_node):
        state, _ = reduce_loop(ControlLoopState(), NodeSet(start_node))
        assert reduce_loop(state, Timeout('entry_start')) == (state, [])

    def test_escalated_is_absorbing(self, start_node, led_node):
        state = ControlLoopState(voice_state=VoiceState.ESCALATED, node=start_node)
        for event in (NodeSet(led_node), SpeechComplete(), TranscriptReceived('yes'),
                      Timeout('entry_start'), ConnectionChanged(False)):
            assert reduce_loop(state, event) == (state, [])

    def test_retry_budget_reset_on_new_node(self, start_node, led_node):
        state = listening(start_node)
        state, _ = reduce_loop(state, Timeout('entry_start', state.listen_seq))
        assert state.retry_count == 1
        state, _ = reduce_loop(state, SpeechComplete())
        state, _ = reduce_loop(state, TranscriptReceived('yes'))
        state, _ = reduce_loop(state, NodeSet(led_node))
        assert state.retry_count == 0
        assert state.expectation.slot == 'physical_power_led'


class TestConnection:

    def test_disconnect_while_listening(self, start_node):
        state, commands = reduce_loop(listening(start_node), ConnectionChanged(False))
        assert state.voice_state == VoiceState.IDLE
        assert not state.connected
        assert commands == [CancelTimer(), StateChanged(VoiceState.IDLE)]

    def test_reconnect_respeaks_current_node(self, start_node):
        state, _ = run(listening(start_node), ConnectionChanged(False))
        state, commands = reduce_loop(state, ConnectionChanged(True))
        assert state.voice_state == VoiceState.SPEAKING
        assert commands[-1] == Speak(start_node.voice_instruction, 'entry_start')

    def test_node_set_while_disconnected_waits(self, start_node, led_node):
        state, _ = run(ControlLoopState(), ConnectionChanged(False), NodeSet(led_node))
        assert state.voice_state == VoiceState.IDLE
        state, commands = reduce_loop(state, ConnectionChanged(True))
        assert commands[-1] == Speak(led_node.voice_instruction, 'physical_power_led')


class TestVoiceControlLoop:

    def test_sink_receives_commands(self, start_node):
        received = []
        loop = VoiceControlLoop(sink=received.append)
        commands = loop.dispatch(NodeSet(start_node))
        assert received == commands
        assert loop.voice_state == VoiceState.SPEAKING
        assert not loop.is_listening()

        loop.dispatch(SpeechComplete())
        assert loop.is_listening()

    def test_reset_leaves_escalated(self, start_node):
        loop = VoiceControlLoop()
        loop.dispatch(NodeSet(start_node))
        loop.dispatch(SpeechComplete())
        for _ in range(3):
            loop.dispatch(Timeout('entry_start', loop.state.listen_seq))
            loop.dispatch(SpeechComplete())
        assert loop.voice_state == VoiceState.ESCALATED

        loop.reset()
        assert loop.voice_state == VoiceState.IDLE
        assert loop.state.node is None

    def test_sink_may_dispatch_follow_up(self, start_node, led_node):
        """Advance handler feeding the next node back into the loop"""
        loop = VoiceControlLoop()

        def sink(command):
            if isinstance(command, Advance):
                loop.dispatch(NodeSet(led_node))

        loop.set_sink(sink)
        loop.dispatch(NodeSet(start_node))
        loop.dispatch(SpeechComplete())
        loop.dispatch(TranscriptReceived('yes'))
        assert loop.voice_state == VoiceState.SPEAKING
        assert loop.state.node.node_id == 'physical_power_led'

    def test_timer_fires_timeout(self, start_node):
        fired = threading.Event()
        received = []

        def on_expire(event):
            received.append(event)
            fired.set()

        timer = ListenTimer(on_expire)
        timer.start('entry_start', 0.01, 7)
        assert fired.wait(2.0)
        assert received == [Timeout('entry_start', 7)]

    def test_cancelled_timer_does_not_fire(self):
        fired = threading.Event()
        timer = ListenTimer(lambda event: fired.set())
        timer.start('entry_start', 0.5, 1)
        timer.cancel()
        assert not timer.active
        assert not fired.wait(0.8)

    def test_loop_timer_reprompts(self, start_node):
        spoken = threading.Event()
        speaks = []

        def sink(command):
            if isinstance(command, Speak):
                speaks.append(command)
                if len(speaks) == 2:
                    spoken.set()

        loop = VoiceControlLoop(sink=sink, timeout=0.01, use_timers=True)
        loop.dispatch(NodeSet(start_node))
        loop.dispatch(SpeechComplete())
        assert spoken.wait(2.0)
        assert speaks[1] == Speak(start_node.voice_instruction, 'entry_start')
        assert loop.state.retry_count == 1
