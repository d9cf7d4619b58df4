"""Classify execution-surface text into orchestration verdicts.

The confirmation classifier works on lowercased text, in this order:

1. an incomplete phrase ("still working", "in progress") or a negation within
   a couple of words before a completion word ("not finished") -> continue;
2. an affirmative completion phrase, when the previous engine message was the
   "are you done?" probe -> completed;
3. anything else -> continue, unless attempt or deadline limits are already
   exhausted, in which case -> failed.

The fallback detector runs before the classifier and reports text that asks
for a human decision.
"""

from __future__ import annotations

import re
from typing import Optional, Protocol

from .config import RuleSet
from .constants import NEGATION_WINDOW
from .models import Verdict
from .utils import keyword_pattern

_TOKEN_RE = re.compile(r"[^\W_][\w']*")
_APOSTROPHES = str.maketrans({"\u2019": "'", "\u2018": "'", "\u02bc": "'"})


def _normalize(text: Optional[str]) -> str:
    """Lowercase ``text`` and fold typographic apostrophes to '."""
    return (text or "").lower().translate(_APOSTROPHES)


class SignalClassifier(Protocol):
    def classify(self, text: str, *, probe_pending: bool, limits_exceeded: bool = False) -> Verdict:
        ...


class InputRequestDetector(Protocol):
    def detect(self, text: str) -> Optional[str]:
        ...


class ConfirmationClassifier:
    """Keyword classifier biased toward keeping the confirmation loop alive."""

    def __init__(self, rules: Optional[RuleSet] = None, negation_window: int = NEGATION_WINDOW) -> None:
        self.rules = rules or RuleSet()
        self.negation_window = negation_window
        self._completion_words = {_normalize(w) for w in self.rules.completion_words}
        self._negations = {_normalize(w) for w in self.rules.negation_words}

    def is_negated(self, text: str) -> bool:
        """True when a negation word sits within the window before a completion word."""
        tokens = _TOKEN_RE.findall(_normalize(text))
        for idx, token in enumerate(tokens):
            if token not in self._completion_words:
                continue
            window = tokens[max(0, idx - self.negation_window):idx]
            if any(w in self._negations for w in window):
                return True
        return False

    def is_incomplete(self, text: str) -> bool:
        text = _normalize(text)
        return any(keyword_pattern(p).search(text) for p in self.rules.incomplete_phrases)

    def is_affirmative(self, text: str) -> bool:
        text = _normalize(text)
        return any(keyword_pattern(p).search(text) for p in self.rules.completion_phrases)

    def classify(self, text: str, *, probe_pending: bool, limits_exceeded: bool = False) -> Verdict:
        lowered = _normalize(text)
        if self.is_incomplete(lowered) or self.is_negated(lowered):
            verdict = Verdict.CONTINUE
        elif probe_pending and self.is_affirmative(lowered):
            return Verdict.COMPLETED
        else:
            verdict = Verdict.CONTINUE
        if limits_exceeded:
            return Verdict.FAILED
        return verdict


class FallbackDetector:
    """Detect requests for human input that the engine cannot answer itself."""

    def __init__(self, rules: Optional[RuleSet] = None) -> None:
        self.rules = rules or RuleSet()

    def detect(self, text: str) -> Optional[str]:
        """Return the first input-request marker found in ``text``, or None."""
        lowered = _normalize(text)
        for marker in self.rules.input_request_markers:
            if keyword_pattern(marker).search(lowered):
                return marker
        return None
