from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterator, Optional, Sequence, Tuple


# [다음 화자: 민수] is what the proxy is instructed to emit; the English label is accepted as well.
_MARKER_BODY = r"\[(?:다음 화자|NEXT SPEAKER):\s*([^\]]+)\]"
NEXT_SPEAKER_MARKER = re.compile(_MARKER_BODY, re.IGNORECASE)
_FENCED_MARKER = re.compile(r"\n?```\n?" + _MARKER_BODY + r"\n?```", re.IGNORECASE)
_BARE_MARKER = re.compile(r"\n?" + _MARKER_BODY, re.IGNORECASE)


@dataclass(frozen=True)
class SuffixRule:
    """A Korean particle/ending that, attached to a name, addresses or refers to that person."""

    label: str
    suffix: str

    def compile(self, name: str) -> re.Pattern[str]:
        return re.compile(re.escape(name) + self.suffix)


SPEAKER_SUFFIX_RULES: Tuple[SuffixRule, ...] = (
    SuffixRule("vocative", r"[야아][,.]?"),
    SuffixRule("topic", r"(이)?는"),
    SuffixRule("dative", r"(이)?에게"),
    SuffixRule("additive", r"(이)?도"),
    SuffixRule("subject", r"(이)?가"),
    SuffixRule("dative_colloquial", r"(이)?한테"),
    SuffixRule("possessive", r"(이)?의"),
    SuffixRule("how_about", r"(아)?\s*어떻"),
    SuffixRule("starting_with", r"(이)?부터"),
    SuffixRule("first", r"(이)?먼저"),
    SuffixRule("story", r"(이)?(의)?\s*(이야기|얘기)"),
)


def _marker_name(text: str) -> Optional[str]:
    m = NEXT_SPEAKER_MARKER.search(text)
    return m.group(1).strip() if m else None


def _match_marker(marked: str, participants: Sequence[str]) -> Optional[str]:
    for name in participants:
        if marked == name:
            return name
    for name in participants:
        if name in marked or marked in name:
            return name
    return None


def iter_mentions(
    text: str,
    participants: Sequence[str],
    rules: Sequence[SuffixRule] = SPEAKER_SUFFIX_RULES,
) -> Iterator[Tuple[int, str]]:
    """Yield (offset, participant) for every suffix-rule hit in ``text``."""
    for name in participants:
        if not name:
            continue
        for rule in rules:
            for m in rule.compile(name).finditer(text):
                yield m.start(), name


def detect_next_speaker(
    text: str,
    participants: Sequence[str],
    rules: Sequence[SuffixRule] = SPEAKER_SUFFIX_RULES,
) -> Optional[str]:
    """Return the participant the AI reply hands the floor to, or None.

    An explicit marker wins when it resolves to a roster name (exact match,
    then containment either way). Otherwise the most recent suffix-rule
    mention in the text wins; on equal offsets the earlier roster entry wins.
    """
    if not text:
        return None

    marked = _marker_name(text)
    if marked:
        found = _match_marker(marked, participants)
        if found:
            return found

    best: Optional[str] = None
    best_offset = -1
    for offset, name in iter_mentions(text, participants, rules):
        if offset > best_offset:
            best_offset = offset
            best = name
    return best


def strip_next_speaker_marker(text: str) -> str:
    """Remove fenced and bare next-speaker markers from an AI reply."""
    cleaned = _FENCED_MARKER.sub("", text or "")
    cleaned = _BARE_MARKER.sub("", cleaned)
    return cleaned.strip()
