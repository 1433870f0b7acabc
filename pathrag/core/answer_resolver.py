"""
Answer Resolver - maps a normalized utterance onto a node's answer keys

Responsibilities:
- Exact key matching
- Variant containment matching in answer-key order
- Last-resort affirmative/negative heuristic

Design principles:
- Stateless: operates only on its arguments
- Deterministic: first match wins, ties broken by answer order, no scoring
- Literal equality beats fuzzy containment, which beats yes/no inference,
  so nodes with explicit yes/no keys are never short-circuited
- Containment is raw substring matching with no word boundaries: short
  variants match inside longer words ("red" in "powered", "on" in
  "connection"), and answer order decides which key wins
"""

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)


# Lexical variants per answer key. Keys without an entry match themselves.
VARIANT_MAP: Dict[str, List[str]] = {
    # Confirmation
    'yes': [
        'yes', 'yeah', 'yep', 'yup', 'ok', 'okay', 'correct', 'right',
        'confirmed', 'done', 'i see it', 'ready', 'sure', 'absolutely',
        'definitely', "let's go", 'lets go', 'go ahead', 'start',
    ],
    'no': [
        'no', 'nope', 'nah', 'not now', 'no thanks', "can't", 'cannot',
        'wrong', 'not', "didn't", "isn't", "won't", 'failed',
    ],
    'confirmed': ['confirmed', 'done', 'worked', 'it works', 'connected', 'back online'],
    'failed': ['failed', "didn't work", 'did not work', 'not connected', 'disconnected', 'still', 'nothing happened', 'error'],

    # LED observations
    'blinking': ['blinking', 'flashing', 'flickering', 'blinks', 'flashes'],
    'off': ['off', 'no light', 'dark', 'not lit', 'not on', 'nothing'],
    'on': ['on', 'solid', 'steady', 'green', 'white', 'lit up', 'lit', 'yes'],
    'green': ['green', 'solid green', 'steady green'],
    'red': ['red', 'solid red', 'steady red'],
    'orange': ['orange', 'amber', 'solid orange', 'solid amber', 'yellow'],

    # Router brands
    'tplink': ['tp-link', 'tplink', 'tp link', 'mr600', 'archer'],
    'netgear': ['netgear', 'net gear', 'nighthawk', 'orbi'],
    'dlink': ['d-link', 'dlink', 'd link'],
    'asus': ['asus', 'rog'],
    'other': ['other', 'different brand', 'something else', 'another brand'],

    # Local connection
    'wifi': ['wifi', 'wi-fi', 'wi fi', 'wireless'],
    'cable': ['cable', 'ethernet', 'wired', 'lan', 'plugged in'],

    # WAN status
    'disconnected': ['disconnected', 'offline', 'not connected', 'not working', 'down'],
    'connecting': ['connecting', 'obtaining', 'trying', 'pending', 'waiting'],
    'connected': ['connected', 'online', 'working'],
    'zeros': ['0.0.0.0', 'zeros', 'zero', 'blank', 'empty', 'no ip', 'no address'],
    'valid': ['valid', 'number', 'address', 'ip', '192.', '10.', '172.', '100.'],
}

AFFIRMATIVE_WORDS: Tuple[str, ...] = ('yes', 'correct', 'right', 'confirmed', 'yeah', 'yep', 'sure')
NEGATIVE_WORDS: Tuple[str, ...] = ('no', 'wrong', "didn't work", 'nope', 'failed')

AFFIRMATIVE_KEYS: Tuple[str, ...] = ('yes', 'confirmed', 'correct')
NEGATIVE_KEYS: Tuple[str, ...] = ('no', 'failed', 'wrong')


def get_answer_variants(answer_key: str) -> List[str]:
    """Variants for an answer key (the key itself when none are defined)."""
    return VARIANT_MAP.get(answer_key, [answer_key])


def resolve_answer(expected_answers: Sequence[Tuple[str, str]],
                   normalized: str) -> Optional[str]:
    """
    Resolve a normalized utterance to an answer key.

    Args:
        expected_answers: Ordered (answer_key, next_node_id) pairs
        normalized: Case-folded, trimmed utterance

    Returns:
        Matching answer key, or None if nothing matched
    """
    keys = [key for key, _ in expected_answers]
    if not keys or not normalized:
        return None

    # Step 1: exact key
    if normalized in keys:
        return normalized

    # Step 2: variant containment, in answer order
    for key in keys:
        if any(variant in normalized for variant in get_answer_variants(key)):
            return key

    # Step 3: generic yes/no inference
    if _contains_any(normalized, AFFIRMATIVE_WORDS):
        fallback = _first_present(keys, AFFIRMATIVE_KEYS)
        if fallback:
            logger.debug(f"Affirmative fallback: '{normalized}' -> {fallback}")
            return fallback

    if _contains_any(normalized, NEGATIVE_WORDS):
        fallback = _first_present(keys, NEGATIVE_KEYS)
        if fallback:
            logger.debug(f"Negative fallback: '{normalized}' -> {fallback}")
            return fallback

    return None


def resolve_destination(expected_answers: Sequence[Tuple[str, str]],
                        normalized: str) -> Optional[str]:
    """Destination node_id for the utterance, or None."""
    key = resolve_answer(expected_answers, normalized)
    if key is None:
        return None
    return dict(expected_answers)[key]


def _contains_any(text: str, words: Iterable[str]) -> bool:
    return any(word in text for word in words)


def _first_present(keys: Sequence[str], candidates: Sequence[str]) -> Optional[str]:
    for candidate in candidates:
        if candidate in keys:
            return candidate
    return None
