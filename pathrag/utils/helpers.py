"""
Utility helpers for router diagnosis system

Simple utility functions for ID generation, time and text normalisation.
"""

import secrets
import string
import time

_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_session_id(now_ms=None):
    """
    Generate unique session identifier

    Format: session_{epoch_ms}_{9 random chars}

    Args:
        now_ms (int): Millisecond timestamp to embed (defaults to now)

    Returns:
        str: Session ID

    Examples:
        >>> generate_session_id(1732634445123)
        'session_1732634445123_k3f7e2b9x'
    """
    if now_ms is None:
        now_ms = current_time_ms()
    suffix = ''.join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"session_{now_ms}_{suffix}"


def current_time_ms():
    """Current wall-clock time in whole milliseconds."""
    return int(time.time() * 1000)


def normalize_utterance(text):
    """
    Case-fold and trim an utterance for matching

    Curly apostrophes from speech-to-text are straightened so that
    "don’t know" and "don't know" match the same phrases.

    Args:
        text (str): Raw utterance (None is treated as empty)

    Returns:
        str: Normalized utterance
    """
    if not text:
        return ""
    return text.replace("’", "'").replace("‘", "'").strip().lower()
