"""
Moderation Gate: word-list content filter.

classify() decides whether a message may be relayed at all; redact() masks
listed words in text that is relayed anyway (for example when the list is
extended between the check and the relay). Both match case-insensitively
on substrings, so "Shitty" is caught by "shit".
"""

from __future__ import annotations

import re
from typing import Iterable, Optional

from chatmesh.core.config import DEFAULT_BLOCKED_WORDS


class ContentFilter:
    """
    Usage:
        gate = ContentFilter(["darn"])
        gate.classify("DARN it")   # True
        gate.redact("darn it")     # "**** it"
    """

    __slots__ = ("_words", "_pattern")

    def __init__(self, blocked_words: Optional[Iterable[str]] = None) -> None:
        words = blocked_words if blocked_words is not None else DEFAULT_BLOCKED_WORDS
        # Longest first so overlapping entries mask the widest match.
        self._words: tuple[str, ...] = tuple(sorted(
            {w.strip().lower() for w in words if w and w.strip()},
            key=lambda w: (-len(w), w),
        ))
        self._pattern: Optional[re.Pattern[str]] = (
            re.compile("|".join(re.escape(w) for w in self._words), re.IGNORECASE)
            if self._words else None
        )

    @property
    def words(self) -> tuple[str, ...]:
        return self._words

    def classify(self, text: str) -> bool:
        """True when the text contains any blocked word."""
        if self._pattern is None or not text:
            return False
        return self._pattern.search(text) is not None

    def redact(self, text: str) -> str:
        """Replace every blocked word with asterisks of the same length."""
        if self._pattern is None or not text:
            return text
        return self._pattern.sub(lambda m: "*" * len(m.group(0)), text)
