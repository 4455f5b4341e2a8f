from __future__ import annotations

from priory_engine.core.parser import NUMERIC_VERB, Intent, parse_input
from priory_engine.core.resolver import resolve_key


def test_verbs_and_targets():
    parsed = parse_input("go to the gate")
    assert parsed.intent is Intent.GO
    assert parsed.target == "gate"
    assert parsed.verb == "go"

    assert parse_input("Speak with Brother Martin").target == "Brother Martin"
    assert parse_input("inv").intent is Intent.INVENTORY
    assert parse_input("rebuild upgrade chapel roof").target == "upgrade chapel roof"


def test_numbers_are_numeric_choices():
    parsed = parse_input(" 3 ")
    assert parsed.intent is Intent.NUMERIC
    assert parsed.number == 3
    assert parsed.verb == NUMERIC_VERB
    assert parse_input("-2").number == -2
    assert parse_input("3rd").intent is Intent.UNKNOWN


def test_exit_quits_alone_and_moves_with_target():
    assert parse_input("exit").intent is Intent.QUIT
    parsed = parse_input("exit cart")
    assert parsed.intent is Intent.GO
    assert parsed.target == "cart"


def test_unknown_and_empty_input():
    assert parse_input("").intent is Intent.UNKNOWN
    assert parse_input(None).intent is Intent.UNKNOWN
    parsed = parse_input("dance wildly")
    assert parsed.intent is Intent.UNKNOWN
    assert parsed.verb == "dance"


def test_stop_words_only_target_is_none():
    assert parse_input("go to the").target is None


def test_resolve_exact_match_ignores_case_and_spacing():
    assert resolve_key(["Priory  Gate", "cart"], "priory gate") == "Priory  Gate"


def test_resolve_uses_aliases():
    assert resolve_key(["friar", "cart"], "franciscan") == "friar"
    assert resolve_key(["steward", "cart"], "wagon") == "cart"


def test_resolve_tie_keeps_first_key():
    assert resolve_key(["north gate", "south gate"], "gate") == "north gate"
    assert resolve_key(["south gate", "north gate"], "gate") == "south gate"


def test_resolve_no_match():
    assert resolve_key(["gate"], "cellar") is None
    assert resolve_key([], "gate") is None
    assert resolve_key(["gate"], None) is None
