from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Intent(str, Enum):
    UNKNOWN = "unknown"
    HELP = "help"
    LOOK = "look"
    GO = "go"
    TALK = "talk"
    EXAMINE = "examine"
    TAKE = "take"
    INVENTORY = "inventory"
    STATUS = "status"
    SAVE = "save"
    QUESTS = "quests"
    QUIT = "quit"
    PARTY = "party"
    VERSION = "version"
    VIRTUES = "virtues"
    REBUILD = "rebuild"
    NUMERIC = "numeric"


NUMERIC_VERB = "#numeric"

_VERBS: dict[str, Intent] = {
    "help": Intent.HELP,
    "look": Intent.LOOK,
    "observe": Intent.LOOK,
    "examine": Intent.EXAMINE,
    "inspect": Intent.EXAMINE,
    "go": Intent.GO,
    "walk": Intent.GO,
    "travel": Intent.GO,
    "move": Intent.GO,
    "enter": Intent.GO,
    "climb": Intent.GO,
    "board": Intent.GO,
    "mount": Intent.GO,
    "leave": Intent.GO,
    "depart": Intent.GO,
    "talk": Intent.TALK,
    "speak": Intent.TALK,
    "converse": Intent.TALK,
    "discuss": Intent.TALK,
    "take": Intent.TAKE,
    "grab": Intent.TAKE,
    "inventory": Intent.INVENTORY,
    "inv": Intent.INVENTORY,
    "i": Intent.INVENTORY,
    "status": Intent.STATUS,
    "stats": Intent.STATUS,
    "priory": Intent.STATUS,
    "save": Intent.SAVE,
    "quests": Intent.QUESTS,
    "journal": Intent.QUESTS,
    "quest": Intent.QUESTS,
    "quit": Intent.QUIT,
    "exit": Intent.QUIT,
    "party": Intent.PARTY,
    "companions": Intent.PARTY,
    "version": Intent.VERSION,
    "ver": Intent.VERSION,
    "virtue": Intent.VIRTUES,
    "virtues": Intent.VIRTUES,
    "v": Intent.VIRTUES,
    "rebuild": Intent.REBUILD,
    "build": Intent.REBUILD,
    "construct": Intent.REBUILD,
}

_STOP_WORDS = frozenset(
    {"to", "at", "the", "a", "an", "with", "in", "into", "on", "onto", "from", "out", "of"}
)


@dataclass(frozen=True)
class ParsedInput:
    intent: Intent
    target: Optional[str] = None
    number: int = 0
    verb: Optional[str] = None


def _parse_int(text: str) -> int | None:
    body = text[1:] if text[:1] in "+-" else text
    if not body.isascii() or not body.isdigit():
        return None
    return int(text)


def parse_input(raw: str | None) -> ParsedInput:
    """Turn one line of player text into an intent.

    Never raises. A bare integer is a numeric choice; otherwise the first
    word selects the intent and the remaining words, minus stop words,
    form the target.
    """
    text = (raw or "").strip()
    if not text:
        return ParsedInput(Intent.UNKNOWN)

    number = _parse_int(text)
    if number is not None:
        return ParsedInput(Intent.NUMERIC, number=number, verb=NUMERIC_VERB)

    parts = text.split()
    verb = parts[0].lower()
    intent = _VERBS.get(verb)
    if intent is None:
        return ParsedInput(Intent.UNKNOWN, verb=parts[0])

    # "exit cart" is movement, bare "exit" quits.
    if verb == "exit" and len(parts) > 1:
        intent = Intent.GO

    target = None
    if len(parts) > 1:
        filtered = [word for word in parts[1:] if word not in _STOP_WORDS]
        target = " ".join(filtered) or None

    return ParsedInput(intent, target=target, verb=verb)
