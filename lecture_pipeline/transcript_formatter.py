"""
Transcript formatting utilities.

Recognisers return loosely spaced lower‑case text.  :func:`format_transcript`
tidies it into a sentence, and :func:`summarize` cuts a transcript down to a
bounded preview, preferring to stop at the end of a sentence.
"""

import re

_WHITESPACE = re.compile(r"\s+")
_TERMINALS = ".!?"


def format_transcript(text: str) -> str:
    """Normalise whitespace, capitalise and terminate a transcript.

    Args:
        text: Raw transcript text.

    Returns:
        The text with whitespace runs collapsed, surrounding whitespace
        removed, a trailing period added when it does not already end in
        ``.``, ``!`` or ``?``, and the first character upper‑cased.  Empty
        input returns an empty string.
    """
    if not text:
        return ""
    formatted = _WHITESPACE.sub(" ", text).strip()
    if not formatted:
        return ""
    if formatted[-1] not in _TERMINALS:
        formatted += "."
    return formatted[0].upper() + formatted[1:]


def summarize(text: str, max_length: int = 200) -> str:
    """Return at most ``max_length`` characters of ``text``.

    When the text is longer, it is cut at the last sentence end inside the
    limit if that lies beyond 70% of the limit; otherwise the cut text gets
    an ellipsis.
    """
    if not text:
        return ""
    if len(text) <= max_length:
        return text
    truncated = text[:max_length]
    last_end = max(truncated.rfind(mark) for mark in _TERMINALS)
    if last_end > max_length * 0.7:
        return truncated[: last_end + 1]
    return truncated + "..."
