"""
Expectation Window - what the voice loop listens for after speaking a node

Responsibilities:
- Derive a fresh ExpectationWindow from a node
- Classify transcripts as noise (fillers, tags, too short)
- Validate transcripts against the window

Design principles:
- Pure functions, recomputed on every node change (never cached)
- Real speech is never swallowed: anything that is not recognised noise
  passes through as a novel answer for the traversal layer to judge
"""

import re
from dataclasses import dataclass
from typing import Optional

from pathrag.contracts import DiagnosticNode, ExpectationWindow

DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_NOISE_THRESHOLD = "medium"
NOISE_THRESHOLDS = ("low", "medium", "high")

MIN_TRANSCRIPT_LENGTH = 2

FILLER_PATTERN = re.compile(r"^(uh+|um+|hmm+|ah+|eh+|oh+)$")
TAG_PATTERN = re.compile(r"^\[.*\]$")
NON_SPEECH_PATTERN = re.compile(r"^(cough|laugh|sigh)$")


@dataclass(frozen=True)
class InputValidation:
    """
    Attributes:
        valid: Whether the transcript should reach the traversal layer
        matched_value: Allowed token that matched, or the raw transcript
            when novel, or None when invalid
        novel: True when no allowed token matched
    """
    valid: bool
    matched_value: Optional[str] = None
    novel: bool = False


INVALID = InputValidation(valid=False)


def build_expectation_window(node: DiagnosticNode,
                             timeout: float = DEFAULT_TIMEOUT_SECONDS,
                             noise_threshold: str = DEFAULT_NOISE_THRESHOLD) -> ExpectationWindow:
    """
    Derive the expectation window for a node about to be spoken.

    Args:
        node: Node whose instruction is about to be spoken
        timeout: Seconds to wait for an answer
        noise_threshold: 'low', 'medium' or 'high'

    Raises:
        ValueError: If noise_threshold or timeout is invalid
    """
    if noise_threshold not in NOISE_THRESHOLDS:
        raise ValueError(f"Unknown noise threshold '{noise_threshold}'")
    if timeout <= 0:
        raise ValueError(f"Timeout must be positive, got {timeout}")

    return ExpectationWindow(
        slot=node.node_id,
        allowed_values=node.answer_keys,
        timeout=timeout,
        noise_threshold=noise_threshold,
        retries=node.max_retries,
    )


def is_noise(transcript: Optional[str]) -> bool:
    """True for fillers, bracketed tags, non-speech sounds and near-empty input."""
    normalized = (transcript or "").strip().lower()

    if len(normalized) < MIN_TRANSCRIPT_LENGTH:
        return True
    if FILLER_PATTERN.match(normalized):
        return True
    if TAG_PATTERN.match(normalized) or NON_SPEECH_PATTERN.match(normalized):
        return True
    return False


def validate_input(transcript: Optional[str], window: ExpectationWindow) -> InputValidation:
    """
    Validate a transcript against an expectation window.

    Order:
    1. Too short or a bracketed tag ("[noise]") -> invalid
    2. Equals or contains an allowed token -> valid (before the filler
       check, so a short valid token like "ok" is never dropped)
    3. Filler -> invalid
    4. An allowed token contains the transcript -> valid (terse echoes)
    5. Otherwise -> valid novel answer, passed through unchanged
    """
    raw = transcript or ""
    normalized = raw.strip().lower()

    if len(normalized) < MIN_TRANSCRIPT_LENGTH or TAG_PATTERN.match(normalized):
        return INVALID

    for allowed in window.allowed_values:
        allowed_lower = allowed.lower()
        if normalized == allowed_lower or allowed_lower in normalized:
            return InputValidation(valid=True, matched_value=allowed)

    if FILLER_PATTERN.match(normalized):
        return INVALID

    for allowed in window.allowed_values:
        if normalized in allowed.lower():
            return InputValidation(valid=True, matched_value=allowed)

    return InputValidation(valid=True, matched_value=raw, novel=True)
