from __future__ import annotations

from typing import Optional, Sequence

from .content import OptionDef, ScriptKind, TimedDef
from .normalize import clamp
from .types import ChoiceKey, GameState, Sex

ALREADY_CHOSEN = "already chosen"

_REPEATABLE_MENU_MARKERS = ("shop", "task_board", "pouch", "book_list", "watch_log")
_UNCONSUMED_SCRIPT_KINDS = (ScriptKind.TASK, ScriptKind.SHOP, ScriptKind.MINIGAME)

_MALE_LABELS = frozenset({"male", "man", "m"})
_FEMALE_LABELS = frozenset({"female", "woman", "f"})

# Offices closed to female players in the 1403 setting.
_CLERICAL_PHRASES = (
    "become a friar",
    "be ordained",
    "ordination",
    "take holy orders",
    "become a priest",
    "become priest",
    "become a deacon",
    "become deacon",
    "receive the diaconate",
    "receive priestly",
)


def is_repeatable_menu(menu_id: str | None) -> bool:
    if not menu_id:
        return False
    lowered = menu_id.lower()
    return any(marker in lowered for marker in _REPEATABLE_MENU_MARKERS)


def is_consequential(menu_id: str, option: OptionDef) -> bool:
    """Whether choosing ``option`` in ``menu_id`` should be consumed."""
    if is_repeatable_menu(menu_id):
        return False
    if option.script is not None and option.script.kind in _UNCONSUMED_SCRIPT_KINDS:
        return False
    return bool(
        option.priory_delta
        or option.virtue_delta
        or option.set_flags
        or option.clear_flags
        or option.counter_delta
        or option.start_quest
        or option.complete_quest
        or option.next_scene
        or option.next_menu
        or option.next_timed
    )


def is_current_sex(state: GameState, label: str) -> bool:
    lowered = (label or "").strip().lower()
    if lowered in _MALE_LABELS:
        return state.sex is Sex.MALE
    if lowered in _FEMALE_LABELS:
        return state.sex is Sex.FEMALE
    return False


def clerical_restriction(state: GameState, option: OptionDef) -> str | None:
    if state.sex is not Sex.FEMALE:
        return None
    text = (option.text or "").lower()
    if any(phrase in text for phrase in _CLERICAL_PHRASES):
        return "that clerical office is not open in this setting"
    return None


def check_option(
    state: GameState,
    option: OptionDef,
    menu_id: Optional[str] = None,
    option_index: Optional[int] = None,
) -> tuple[bool, str]:
    """Return ``(available, reason)`` for one option.

    ``menu_id``/``option_index`` are given for menu options only; timed
    options are never consumed.
    """
    if menu_id is not None and option_index is not None:
        if is_consequential(menu_id, option) and ChoiceKey(menu_id, option_index) in state.shared.consumed_choices:
            return False, ALREADY_CHOSEN

    for flag in option.require_flags:
        if flag not in state.flags:
            return False, f"missing flag '{flag}'"

    for flag in option.require_not_flags:
        if flag in state.flags:
            return False, f"blocked by flag '{flag}'"

    if option.require_sexes and not any(is_current_sex(state, label) for label in option.require_sexes):
        return False, "not available for your sex"

    if option.require_not_sexes and any(is_current_sex(state, label) for label in option.require_not_sexes):
        return False, "not available for your sex"

    restriction = clerical_restriction(state, option)
    if restriction:
        return False, restriction

    if option.coin_delta < 0 and state.coin < abs(option.coin_delta):
        return False, "insufficient coin"

    for item in option.remove_items:
        if item not in state.inventory:
            return False, f"missing item '{item}'"

    return True, ""


def available_options(
    state: GameState,
    options: Sequence[OptionDef],
    menu_id: Optional[str] = None,
) -> list[tuple[int, OptionDef]]:
    """Available options paired with their index in the authored list."""
    result = []
    for index, option in enumerate(options):
        ok, _ = check_option(state, option, menu_id, index if menu_id is not None else None)
        if ok:
            result.append((index, option))
    return result


def _keyword_score(state: GameState, text: str) -> int:
    t = text.lower()
    fortitude = state.virtue("fortitude")
    temperance = state.virtue("temperance")
    score = 0
    if "watch" in t or "scan" in t:
        score += 2 * state.virtue("hope")
    if "warn" in t or "call" in t:
        score += 2 * state.virtue("charity")
    if "seize" in t or "grab" in t or "ready" in t:
        score += 2 * fortitude
    if "jump" in t or "throw" in t or "kick" in t:
        score += fortitude - temperance
    if "pray" in t or "steady" in t:
        score += state.virtue("faith") + state.virtue("hope")
    if "yield" in t or "admit" in t:
        score += state.virtue("humility")
    return score


def choose_default_timed_index(state: GameState, timed: TimedDef) -> int:
    """Pick the option a hesitating player falls into.

    Keyword matches against the option text weigh the player's virtues;
    the first highest score wins. With nothing available the authored
    default index is returned unchanged.
    """
    available = available_options(state, timed.options)
    if not available:
        return timed.default_index

    best = available[clamp(timed.default_index, 0, len(available) - 1)][0]
    best_score: int | None = None
    for index, option in available:
        score = _keyword_score(state, option.text)
        if best_score is None or score > best_score:
            best_score = score
            best = index
    return best
