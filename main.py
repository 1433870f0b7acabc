"""
Console Test Harness for the PathRAG Router Diagnosis System

Typed-text conversation through DiagnosticDialogueManager. With --voice,
turns are gated by the voice control loop and a console audio channel
stands in for speech synthesis and recognition.
"""

import argparse
import logging
import sys

from app import build_dialogue_manager, configure_logging
from pathrag.commands import ProcessUtterance, SessionStatus, StartSession
from pathrag.config import AppConfig
from pathrag.core.voice_session import AudioChannel, VoiceSessionDriver
from pathrag.results import IllegalCommand

logger = logging.getLogger(__name__)


def print_separator(char="=", length=60):
    """Print a separator line"""
    print(char * length)


def print_debug_info(turn_result):
    """Print debug information from TurnResult"""
    debug = turn_result.debug
    print("-" * 60)
    print(f"Matched answer: {debug.get('matched_answer')}")
    if turn_result.is_retry:
        print("Retry: answer not recognised")
    if turn_result.should_escalate:
        print(f"Escalation: {turn_result.escalation_reason} ({debug.get('escalation_trigger')})")
    if debug.get('integrity_failure'):
        print("ERROR: diagnostic graph integrity failure")
    print("-" * 60)


def print_outcome(snapshot):
    print_separator()
    print(f"SESSION {snapshot.status.upper()}")
    print_separator()
    if snapshot.escalation_payload:
        payload = snapshot.escalation_payload
        print(f"Reason: {payload['reason']}")
        print(f"Suspected fault domain: {payload['suspected_fault_domain']}")
        print(f"Steps taken: {len(payload['steps_completed'])}")


class ConsoleAudioChannel(AudioChannel):
    """Prints instead of speaking; speech completes once the line is printed."""

    def __init__(self):
        self.pending_completions = 0

    def speak(self, text: str) -> None:
        print(f"\nAssistant: {text}\n")
        self.pending_completions += 1


def run_text(dm, show_debug: bool) -> int:
    snapshot = dm.handle(StartSession())
    print(f"Session: {snapshot.session_id}")
    print("Type 'quit', 'exit', or 'stop' to end early\n")
    print(f"\nAssistant: {snapshot.current_node['voice_instruction']}\n")

    while snapshot.status == SessionStatus.ACTIVE:
        user_input = input("> ").strip()
        if not user_input:
            print("Please enter a response.\n")
            continue

        result = dm.handle(ProcessUtterance(snapshot.session_id, user_input))
        if isinstance(result, IllegalCommand):
            print(f"\nERROR: {result.reason}")
            return 1

        snapshot = result.snapshot
        if show_debug:
            print_debug_info(result)
        if snapshot.current_node:
            print(f"\nAssistant: {snapshot.current_node['voice_instruction']}\n")
        print(f"[{snapshot.phase_label}, {snapshot.progress}%]")

    print_outcome(snapshot)
    return 0


def run_voice(dm, timeout: float) -> int:
    audio = ConsoleAudioChannel()
    driver = VoiceSessionDriver(dm, dm.engine.graph, audio, timeout=timeout, use_timers=False)

    def flush_speech():
        while audio.pending_completions:
            audio.pending_completions -= 1
            driver.on_speech_complete()

    snapshot = driver.start()
    print(f"Session: {snapshot.session_id}")
    flush_speech()

    while driver.is_active:
        user_input = input("> ")
        driver.on_transcript(user_input)
        flush_speech()

    print_outcome(driver.last_snapshot)
    return 0


def main():
    """Run console session"""
    parser = argparse.ArgumentParser(description="PathRAG router diagnosis console")
    parser.add_argument('--voice', action='store_true', help="gate turns with the voice control loop")
    parser.add_argument('--debug', action='store_true', help="print per-turn debug info")
    args = parser.parse_args()

    config = AppConfig.from_env()
    configure_logging(config)

    print_separator()
    print("PATHRAG ROUTER DIAGNOSIS - CONSOLE")
    print_separator()

    try:
        dm = build_dialogue_manager(config)
    except (OSError, ValueError) as e:
        print(f"\nFailed to initialize: {e}")
        return 1

    try:
        if args.voice:
            return run_voice(dm, config.listen_timeout)
        return run_text(dm, args.debug)
    except (KeyboardInterrupt, EOFError):
        print("\n\nSession interrupted by user")
        return 0


if __name__ == '__main__':
    sys.exit(main())
