"""Decoder for the ``topic:<T>: body:<B>: emotion:<E>:`` reply format.

Models follow the format loosely: markers go missing, values contain colons,
the emotion comes back in any case or wrapped in extra words. ``decode_response``
never raises; whatever it gets, it returns at least a body.
"""

import re
from typing import Dict, Optional

from ..models.message import DecodedResponse, Emotion

MARKERS = ("topic:", "body:", "emotion:")

_QUESTION_LABEL = re.compile(r"^QUESTION:\s*", re.IGNORECASE)
_FIRST_TOKEN = re.compile(r"\s*([^\s:]*)")
_NON_LETTERS = re.compile(r"[^A-Z]")


def _find_markers(raw: str) -> Dict[str, int]:
    positions = {}
    for marker in MARKERS:
        match = re.search(re.escape(marker), raw, re.IGNORECASE)
        if match:
            positions[marker] = match.start()
    return positions


def _field_value(raw: str, marker: str, positions: Dict[str, int]) -> str:
    """Text after ``marker`` up to the nearest later marker, cut at its last colon."""
    start = positions[marker] + len(marker)
    later = [pos for pos in positions.values() if pos > positions[marker]]
    end = min(later) if later else len(raw)
    segment = raw[start:end]
    last_colon = segment.rfind(":")
    if last_colon != -1:
        segment = segment[:last_colon]
    return segment.strip()


def _parse_emotion(raw: str, positions: Dict[str, int]) -> Optional[Emotion]:
    start = positions["emotion:"] + len("emotion:")
    token = _FIRST_TOKEN.match(raw, start).group(1)
    cleaned = _NON_LETTERS.sub("", token.upper())
    try:
        return Emotion(cleaned)
    except ValueError:
        pass

    # Only trust a colour that is mentioned alone
    lowered = raw.lower()
    found = [emotion for emotion in Emotion if emotion.value.lower() in lowered]
    if len(found) == 1:
        return found[0]
    return None


def strip_question_label(text: str) -> str:
    return _QUESTION_LABEL.sub("", text, count=1).strip()


def decode_response(raw: Optional[str]) -> DecodedResponse:
    """
    Extract topic, body and emotion from a raw model reply.

    Args:
        raw: Reply text as returned by the upstream

    Returns:
        DecodedResponse with the body always set
    """
    raw = raw if isinstance(raw, str) else ""
    positions = _find_markers(raw)

    topic = None
    if "topic:" in positions:
        topic = _field_value(raw, "topic:", positions) or None

    if "body:" in positions:
        body = _field_value(raw, "body:", positions)
    else:
        body = raw

    emotion = _parse_emotion(raw, positions) if "emotion:" in positions else None

    body = strip_question_label(body)
    if not body or body == raw:
        body = strip_question_label(raw)

    return DecodedResponse(body=body, topic=topic, emotion=emotion, raw=raw)
