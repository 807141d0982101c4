from __future__ import annotations

from typing import Dict, Optional, Sequence


MIN_PARTICIPANTS = 2
MAX_PARTICIPANTS = 6

# Display palette; assigned in roster order
PARTICIPANT_COLORS = ("green", "blue", "magenta", "red", "yellow", "cyan")


def check_roster(participants: Sequence[str]) -> Optional[str]:
    """Return a reason the roster cannot start a session, or None if it can."""
    names = list(participants or [])
    if len(names) < MIN_PARTICIPANTS:
        return f"at least {MIN_PARTICIPANTS} participants required"
    if len(names) > MAX_PARTICIPANTS:
        return f"at most {MAX_PARTICIPANTS} participants allowed"
    for name in names:
        if not isinstance(name, str) or not name.strip():
            return "participant names must be non-empty"
        if name != name.strip():
            return f"participant name has surrounding whitespace: {name!r}"
    if len(set(names)) != len(names):
        return "participant names must be distinct"
    return None


def participant_colors(participants: Sequence[str]) -> Dict[str, str]:
    return {name: PARTICIPANT_COLORS[i % len(PARTICIPANT_COLORS)] for i, name in enumerate(participants)}
