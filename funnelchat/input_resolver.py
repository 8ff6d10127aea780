"""Deterministic matching of free text against a block's options."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

from funnelchat.funnel import FunnelBlockOption

SYNONYMS: Dict[str, Tuple[str, ...]] = {
    "yes": ("y", "yeah", "yep", "sure", "ok", "okay", "agree", "accept"),
    "no": ("n", "nope", "nah", "disagree", "decline", "reject"),
    "maybe": ("perhaps", "possibly", "might", "could be"),
    "continue": ("next", "proceed", "go on", "keep going"),
    "back": ("previous", "go back", "return", "undo"),
}

_NUMBER = re.compile(r"^\d+$")


@dataclass(frozen=True)
class InputMatch:
    """Outcome of :func:`resolve_input`."""

    matched: bool
    index: Optional[int] = None
    tier: Optional[str] = None


NO_MATCH = InputMatch(matched=False)


def resolve_input(text: str, options: Sequence[FunnelBlockOption]) -> InputMatch:
    """Map ``text`` to an option index.

    Tiers are tried in order and the first hit wins: exact text, 1-based
    position, substring in either direction, then the synonym table. The
    synonym key has to appear inside the option text for it to be chosen.
    """
    normalized = (text or "").strip().lower()
    if not normalized or not options:
        return NO_MATCH

    labels = [option.text.strip().lower() for option in options]

    for index, label in enumerate(labels):
        if label == normalized:
            return InputMatch(True, index, "exact")

    if _NUMBER.match(normalized):
        position = int(normalized)
        if 1 <= position <= len(options):
            return InputMatch(True, position - 1, "number")

    for index, label in enumerate(labels):
        if label and (normalized in label or label in normalized):
            return InputMatch(True, index, "substring")

    for key, synonyms in SYNONYMS.items():
        if normalized not in synonyms:
            continue
        for index, label in enumerate(labels):
            if key in label:
                return InputMatch(True, index, "synonym")

    return NO_MATCH


__all__ = ["InputMatch", "NO_MATCH", "SYNONYMS", "resolve_input"]
