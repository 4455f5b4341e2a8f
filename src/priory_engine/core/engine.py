from __future__ import annotations

import logging
import random
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Callable, Mapping, Optional

from .clock import TimeClock
from .content import ActionKind, ActionTarget, ContentModel, MenuDef, OptionDef, SceneDef, Script, ScriptKind, TimedDef
from .gate import available_options, check_option, choose_default_timed_index, is_consequential
from .normalize import clamp, format_sterling, normalize_phrase
from .parser import Intent, ParsedInput, parse_input
from .party import append_lore, can_register, register_member
from .pastimes import MARK_COUNTER, Pastimes
from .ports import RandomSource
from .rebuild import RebuildScheduler
from .resolver import resolve_key
from .types import (
    ChoiceKey,
    EngineOutput,
    GameState,
    PartyMemberOverview,
    PartyOverview,
    PartyState,
    PlayerOverview,
    ResumeOutcome,
    Sex,
    TimedPrompt,
    VirtueGrantKey,
    canonical_virtue,
)

if TYPE_CHECKING:
    from ..persistence.party_store import PartyStore
    from ..persistence.save_store import SaveStore

OPENING_LORE = (
    "England, Anno Domini 1403.",
    "You arrive in Blackpine, Yorkshire, where abbey bells, guild quarrels, and lordly levies shape every day.",
    "Rebellion scars still mark the kingdom, roads are thick with rumor, and hungry winters test both faith and law.",
    "Saint Catherine Priory endures, but its walls are weary: stores run thin, roofs strain, and rival factions "
    "watch your choices.",
    "Here, mercy must be practical, piety must survive politics, and every promise has a cost.",
    "",
)

GAMEPLAY_PRIMER = (
    "How to play: this world uses a verb processor. Enter a verb first, then what you want to act on.",
    "Examples: 'look', 'go gate', 'enter cart', 'talk steward', 'examine ledger', 'take candles'.",
    "Use number choices when a menu appears. Type 'virtues' for your trait chart and 'help' for a quick refresher.",
)

HELP_LINES = (
    "How input works: start with a verb, then optionally a target. Examples: 'look', 'go priory gate', "
    "'talk steward', 'examine ledger', 'take wax candles'.",
    "Common actions: look, go/enter <place>, talk/speak <person>, examine <thing>, take <item>, inventory, "
    "status, virtues, rebuild, quests, party, save, version, quit.",
    "Tip: number choices (1, 2, 3...) select menu/timed options when they are shown.",
)

PERIODIC_TIPS = {
    2: "Tip: 'look' reprints your current scene and available exits if you feel lost.",
    4: "Tip: use 'quests' to review active objectives and 'status' to check priory health.",
    7: "Tip: use 'inventory' often, and type 'help' anytime for examples of command format.",
}

_UNCOUNTED_INTENTS = (Intent.HELP, Intent.SAVE, Intent.QUIT, Intent.VERSION, Intent.UNKNOWN)

_PEOPLE_TOKENS = (
    "father", "mother", "friar", "friars", "brother", "abbess", "prioress", "steward", "clerk", "guardian",
    "lector", "bishop", "masters", "master", "factor", "martin", "visitor", "prior",
)

_OUTSIDE_WORDS = frozenset({"outside", "out", "exit", "street"})

# (counter threshold, flag, quest, announcement), checked in order.
ARC_MILESTONES: tuple[tuple[int, str, Optional[str], str], ...] = (
    (8, "arc_village", "village_petitions",
     "Word spreads through Blackpine: the priory's labors are changing village life. "
     "New disputes and petitions arrive."),
    (16, "arc_orders", "orders_concord",
     "Franciscans, Carmelite travelers, and local Benedictine agents each seek influence in Blackpine."),
    (24, "arc_york", "york_deputation",
     "A Dominican courier arrives from York with letters on doctrine, debt, and disorder. The stakes rise."),
    (32, "arc_longwinter", "winter_mercy",
     "A hard winter sets in. Supplies tighten, rumors multiply, and Saint Catherine must decide what to "
     "protect first."),
    (40, "arc_final", None,
     "The first great rebuilding cycle is complete. The priory now faces consequences of everything you "
     "have chosen."),
    (48, "arc_avignon", "avignon_echoes",
     "Sealed letters tied to Avignon patronage arrive with elegant phrasing and perilous conditions."),
    (56, "arc_bohemia", "bohemian_spark",
     "Travelers carry troubling reports from Prague: controversy now rides rumor roads faster than carts."),
    (64, "arc_cloth", "cloth_and_candle",
     "Wool and candle prices convulse; guild delegates now court Saint Catherine with polished promises."),
    (72, "arc_shells", "road_of_shells",
     "Pilgrim bands begin to pass through Blackpine, forcing charity and logistics into the same narrow doorway."),
    (80, "arc_border", "border_of_ash",
     "A daughter-house near the northern marches begs aid: medicine, mediation, and a steady preacher."),
    (88, "arc_sealed_room", "sealed_room",
     "An internal breach at Saint Catherine forces discipline, truth, and mercy into painful collision."),
)

# script name -> (required flag, destination scene, message when locked)
ARC_GATES: dict[str, tuple[str, str, str]] = {
    "goto_village_arc": (
        "arc_village", "village_crisis",
        "Blackpine has not yet brought this dispute formally to Saint Catherine. Continue your ordinary labors.",
    ),
    "goto_york_arc": ("arc_york", "york_letters", "No summons from York has yet arrived."),
    "goto_winter_arc": (
        "arc_longwinter", "long_winter", "Winter has not yet forced the priory into emergency measures.",
    ),
    "goto_avignon_arc": (
        "arc_avignon", "avignon_chapterhouse", "No Avignon-linked patronal packet has yet reached Saint Catherine.",
    ),
    "goto_bohemia_arc": ("arc_bohemia", "bohemian_market", "No credible warning from Prague has yet reached Blackpine."),
    "goto_cloth_arc": (
        "arc_cloth", "cloth_ledger_house",
        "Trade pressure has not yet tightened enough to force new cloth arrangements.",
    ),
    "goto_shells_arc": ("arc_shells", "pilgrim_hostel", "The great pilgrim road has not yet opened through Blackpine."),
    "goto_border_arc": ("arc_border", "border_refuge", "No border deputation has yet asked Saint Catherine for aid."),
    "goto_sealed_room_arc": (
        "arc_sealed_room", "priory_sealed_room", "The priory's internal crisis has not yet broken into daylight.",
    ),
}

VIRTUE_CHART = (
    ("fortitude", "Fortitude", "\U0001F534"),
    ("temperance", "Temperance", "\U0001F7E2"),
    ("faith", "Faith", "\U0001F7E3"),
    ("hope", "Hope", "\U0001F535"),
    ("charity", "Charity", "\U0001F7E1"),
    ("humility", "Humility", "⚪"),
)

_LIFE_PATH_FLAVOUR = (
    ("Lay Aspirant", None, "service, prayer, and obedience"),
    ("Scholar's Son", ("Scholar's Son", "Scholar's Daughter"), "ink, argument, and memory"),
    ("Former Man-at-Arms", ("Man-at-Arms", "Woman-at-Arms"), "discipline, watchfulness, and scars"),
    ("Merchant's Apprentice", None, "bargains, ledgers, and leverage"),
    ("Farmer's Son", ("Farmer's Son", "Farmer's Daughter"), "soil, seasons, and endurance"),
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def coerce_sex(value: Sex | str | None) -> Sex:
    if isinstance(value, Sex):
        return value
    lowered = (value or "").strip().lower()
    if lowered in ("male", "man", "m"):
        return Sex.MALE
    if lowered in ("female", "woman", "f"):
        return Sex.FEMALE
    return Sex.UNKNOWN


def _signed(value: int) -> str:
    return f"+{value}" if value > 0 else str(value)


def virtue_diagram(state: GameState) -> str:
    max_bars = 10
    rows = ["Virtues"]
    for key, label, dot in VIRTUE_CHART:
        raw = state.virtues.get(key, 0)
        bars = clamp(raw + 5, 0, max_bars)
        bar = "█" * bars + "░" * (max_bars - bars)
        rows.append(f"{dot} {label:<10} [{bar}] {_signed(raw)}")
    return "\n".join(rows)


def format_virtue_changes(deltas: Mapping[str, int]) -> str:
    parts: list[str] = []
    for key, value in deltas.items():
        canonical = canonical_virtue(key)
        if value == 0 or not canonical:
            continue
        part = f"{canonical} {_signed(value)}"
        if part.lower() not in (p.lower() for p in parts):
            parts.append(part)
    return ", ".join(parts)


def _replace_ci(text: str, old: str, new: str) -> str:
    start = text.lower().find(old.lower())
    if start < 0:
        return text
    return text[:start] + new + text[start + len(old):]


class GameEngine:
    """One player's session: the narrative state machine.

    The session is in free-command mode, menu mode (``active_menu_id`` set)
    or timed mode (a timed prompt has been shown and awaits
    ``resolve_timed``). Party sessions reload the shared party document at
    the start of each turn and write it back at the end.
    """

    def __init__(
        self,
        content: ContentModel,
        saves: "SaveStore",
        parties: "PartyStore",
        rng: RandomSource | None = None,
        clock: Callable[[], datetime] | None = None,
        build_id: str = "dev",
        party_capacity: int = 6,
        lore_limit: int = 100,
        start_scene: str = "intro",
        home_scene: str = "house",
        life_path_menu: str = "life_path",
        main_quest: str = "main_rebuild_priory",
    ):
        self._content = content
        self._saves = saves
        self._parties = parties
        self._rng = rng or random.Random()
        self._clock = clock or _utcnow
        self._build_id = build_id
        self._party_capacity = party_capacity
        self._lore_limit = lore_limit
        self._start_scene = start_scene
        self._home_scene = home_scene
        self._life_path_menu = life_path_menu
        self._main_quest = main_quest
        self._logger = logging.getLogger(__name__)

        self._scheduler = RebuildScheduler(content.rebuild_nodes, self._rng)
        self._time = TimeClock(self._scheduler)
        self._pastimes = Pastimes(self._rng)

        self._state = GameState()
        self._party: PartyState | None = None
        self._party_code: str | None = None
        self._active_timed: TimedDef | None = None
        self._timed_indexes: list[int] | None = None
        self._ended = False

    # ------------------------------------------------------------------
    # Read-only accessors
    # ------------------------------------------------------------------

    @property
    def state(self) -> GameState:
        return self._state

    @property
    def is_ended(self) -> bool:
        return self._ended

    @property
    def is_party_mode(self) -> bool:
        return self._party is not None

    @property
    def active_party_code(self) -> str | None:
        return self._party_code

    def player_overview(self) -> PlayerOverview:
        s = self._state
        return PlayerOverview(
            player_name=s.player_name,
            sex=s.sex,
            life_path=s.life_path,
            inventory=tuple(sorted(s.inventory, key=str.lower)),
            coin=s.coin,
        )

    def party_overview(self) -> PartyOverview | None:
        if self._party is None:
            return None
        now = self._clock()
        members = tuple(
            PartyMemberOverview(
                name=m.name,
                last_scene_id=m.last_scene_id,
                last_seen=m.last_seen,
                seconds_since_seen=max(0, round((now - m.last_seen).total_seconds())),
            )
            for m in sorted(self._party.members.values(), key=lambda m: m.name)
        )
        return PartyOverview(party_code=self._parties.party_code(self._party.party_id), members=members)

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def create_party(self) -> str:
        party, code = self._parties.create_party()
        self._party = party
        self._party_code = code
        self._attach_shared()
        self._logger.info("Session created party %s", party.party_id)
        return code

    def join_party(self, party_code: str, prospective_name: str | None = None) -> tuple[bool, str]:
        party, message = self._parties.try_load_by_code(party_code)
        if party is None:
            return False, message

        name = (prospective_name or "").strip() or self._state.player_name
        full = f"That party is full (limit {self._party_capacity} members)."
        if not can_register(party, name, self._party_capacity):
            return False, full

        if prospective_name and prospective_name.strip():
            # claim the roster seat now so a racing join cannot take it
            party, admitted = self._parties.update(
                party.party_id,
                lambda p: register_member(p, name, self._state.scene_id, self._clock(), self._party_capacity),
            )
            if party is None:
                return False, "Party code verified, but no party file was found."
            if not admitted:
                return False, full

        self._party = party
        self._party_code = self._parties.party_code(party.party_id)
        self._attach_shared()
        self._logger.info("%s joined party %s", name, party.party_id)
        return True, message

    def use_solo_mode(self) -> None:
        self._party = None
        self._party_code = None
        self._state.party_id = None

    def start_new_game(
        self,
        player_name: str | None,
        sex: Sex | str = Sex.MALE,
        life_path: str | None = None,
    ) -> EngineOutput:
        self._state = GameState(
            player_name=(player_name or "").strip() or "Pilgrim",
            sex=coerce_sex(sex),
        )
        # companions may have played since this session joined
        self.reload_party()
        self._attach_shared()
        self._clear_timed()
        self._ended = False
        self._state.scene_id = self._start_scene
        self._state.active_menu_id = self._life_path_menu
        self._persist_party()

        lines = list(OPENING_LORE)
        lines.append(f"Welcome, {self._state.player_name}.")
        lines.append(f"You begin as a {self._state.sex.value} pilgrim.")
        if self._party is not None:
            lines.append(f"Party bound to Saint Catherine with code: {self._party_code}")
        lines.extend(GAMEPLAY_PRIMER)
        lines.append(self._scene().text)

        chosen = self._find_life_path(life_path) if life_path else None
        if chosen is not None:
            self._apply_life_path(chosen, lines)
            self._persist_party()
            return EngineOutput(lines, self._maybe_activate_timed(lines))

        if life_path:
            self._logger.warning("Unknown life path %r; offering the menu instead", life_path)
        menu = self._content.menus.get(self._life_path_menu)
        if menu is not None:
            lines.append(self._render_menu(menu))
        else:
            self._state.active_menu_id = None
        return EngineOutput(lines)

    def resume(self, code: str) -> ResumeOutcome:
        state, message = self._saves.load_by_code(code)
        if state is None:
            return ResumeOutcome(ok=False, message=message)

        if state.sex is Sex.UNKNOWN:
            state.sex = Sex.MALE
        self._state = state
        self._clear_timed()

        party = self._parties.load(state.party_id) if state.party_id else None
        if party is not None:
            self._party = party
            self._party_code = self._parties.party_code(party.party_id)
        else:
            self._party = None
            self._party_code = None
        self._attach_shared()
        self._persist_party()
        self._ended = False
        self._logger.info("Resumed %s (party=%s)", state.player_name, state.party_id)

        scene = self._scene()
        lines = [
            "Quick refresher: type a verb first (like 'look', 'go gate', or 'talk steward').",
            "Type 'help' anytime to see common world interactions.",
            scene.text,
            self._exit_line(scene),
            self._time_line(),
        ]
        menu = self._content.menus.get(state.active_menu_id) if state.active_menu_id else None
        if menu is not None:
            lines.append(self._render_menu(menu))
        return ResumeOutcome(ok=True, message=f"Resumed saved journey for {state.player_name}.", lines=lines)

    def save_game(self) -> tuple[str, str]:
        """Persist the party and write a new save slot; returns ``(code, fingerprint)``."""
        self.reload_party()
        self._persist_party()
        return self._saves.save(self._state)

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    def reload_party(self) -> None:
        """Re-read the party document and re-alias shared state to it."""
        if self._party is None:
            return
        party_id = self._party.party_id
        latest = self._parties.load(party_id)
        if latest is None:
            self._logger.warning("Party %s vanished from the store; keeping local copy", party_id)
            self._attach_shared()
            return
        self._party = latest
        self._attach_shared()
        self._register_member()

    def handle_input(self, raw: str) -> EngineOutput:
        self.reload_party()
        parsed = parse_input(raw)

        if self._state.active_menu_id is not None:
            return self._resolve_menu(parsed, self._state.active_menu_id)

        if self._active_timed is not None:
            return EngineOutput(["Timed prompt active. Enter a number."])

        lines: list[str] = []
        intent = parsed.intent
        if intent is Intent.HELP:
            lines.extend(HELP_LINES)
        elif intent is Intent.LOOK:
            scene = self._scene()
            lines.append(scene.text)
            lines.append(self._exit_line(scene))
            self._append_lore_rumours(lines)
            lines.append(self._time_line())
            self._add_context_tip(lines)
        elif intent is Intent.INVENTORY:
            lines.append(self._inventory_line())
        elif intent is Intent.STATUS:
            lines.append(self._time_line())
            lines.append(self._priory_status_line())
            lines.append(self._work_totals_line())
        elif intent is Intent.SAVE:
            lines.append(self._save_line())
        elif intent is Intent.PARTY:
            lines.append(self._party_status_line())
        elif intent is Intent.VERSION:
            lines.append(f"Version: {self._build_id}")
        elif intent is Intent.VIRTUES:
            lines.append(virtue_diagram(self._state))
        elif intent is Intent.REBUILD:
            self._scheduler.handle_command(self._state, parsed.target, lines)
        elif intent is Intent.QUESTS:
            lines.append(self._quest_log())
        elif intent is Intent.QUIT:
            self._ended = True
            lines.append("Leaving game.")
        elif intent is Intent.GO:
            self._handle_movement(parsed, lines)
        elif intent in (Intent.TALK, Intent.EXAMINE, Intent.TAKE):
            if (parsed.target or "").lower() == "quests":
                lines.append(self._quest_log())
            else:
                self._append_lore_rumours(lines)
                self._handle_action(parsed, lines)
        else:
            lines.append("That verb is not recognized here. Try 'help' for allowed commands.")

        self._maybe_add_periodic_tip(lines, intent)
        self._persist_party()
        return EngineOutput(lines, self._maybe_activate_timed(lines))

    def resolve_timed(self, choice: int | None) -> EngineOutput:
        """Resolve the shown timed prompt; ``None`` means the time ran out."""
        self.reload_party()
        timed = self._active_timed
        if timed is None:
            return EngineOutput(["No timed event is active."])

        lines: list[str] = []
        indexes = self._timed_indexes or []
        display = (choice - 1) if choice is not None else -1
        if 0 <= display < len(indexes):
            index = indexes[display]
        else:
            index = choose_default_timed_index(self._state, timed)
            lines.append("You hesitate. The moment chooses for you.")

        option = timed.options[index] if 0 <= index < len(timed.options) else None
        if option is not None:
            ok, why = check_option(self._state, option)
            if not ok:
                lines.append(f"That path is unavailable: {why}")
                index = choose_default_timed_index(self._state, timed)
                option = timed.options[index] if 0 <= index < len(timed.options) else None

        if option is not None:
            self._apply_option(option, lines, grant_key=VirtueGrantKey("timed", timed.id, index))
        else:
            self._logger.warning("Timed prompt %s has no option at default index %s", timed.id, index)
            lines.append("The moment passes.")

        # timed prompts do not chain: a next_timed set by the option is dropped here
        self._clear_timed()
        self._time.advance(self._state, lines, 1)
        self._persist_party()
        return EngineOutput(lines, self._maybe_activate_timed(lines))

    # ------------------------------------------------------------------
    # Menus
    # ------------------------------------------------------------------

    def _resolve_menu(self, parsed: ParsedInput, menu_id: str) -> EngineOutput:
        menu = self._content.menus.get(menu_id)
        if menu is None:
            self._logger.warning("Active menu %s is missing from content", menu_id)
            self._state.active_menu_id = None
            self._persist_party()
            return EngineOutput(["Menu missing; continuing."])

        if parsed.intent is Intent.SAVE:
            lines = [self._save_line(), self._render_menu(menu)]
            self._persist_party()
            return EngineOutput(lines)

        if parsed.intent is not Intent.NUMERIC:
            return EngineOutput(
                [
                    "Choose a number.",
                    "Tip: when a menu is open, enter 1, 2, 3... to pick an option.",
                    self._render_menu(menu),
                ]
            )

        available = available_options(self._state, menu.options, menu.id)
        display = parsed.number - 1
        if not 0 <= display < len(available):
            return EngineOutput(["That option is not available.", self._render_menu(menu)])

        index, option = available[display]
        lines: list[str] = []

        if menu.id == self._life_path_menu:
            keys = sorted(self._content.life_paths)
            if index >= len(keys):
                return EngineOutput(["That option is not available.", self._render_menu(menu)])
            self._apply_life_path(keys[index], lines)
            self._persist_party()
            return EngineOutput(lines, self._maybe_activate_timed(lines))

        self._state.active_menu_id = None
        self._apply_option(
            option,
            lines,
            grant_key=VirtueGrantKey("menu", menu.id, index),
            choice_key=ChoiceKey(menu.id, index),
        )

        if option.script is None or option.script.advances_time_on_menu:
            self._time.advance(self._state, lines, 1)

        if menu.id.lower().startswith("intro_") and self._state.active_menu_id is None:
            self._add_context_tip(lines)

        self._persist_party()
        return EngineOutput(lines, self._maybe_activate_timed(lines))

    def _render_menu(self, menu: MenuDef) -> str:
        rows = [menu.prompt]
        available = available_options(self._state, menu.options, menu.id)
        for display, (_, option) in enumerate(available, start=1):
            text = option.text
            if menu.id == self._life_path_menu:
                text = self._life_path_label(text)
            rows.append(f"{display}) {text}")
        if not available:
            rows.append("(No options currently available.)")
        return "\n".join(rows)

    def _life_path_label(self, text: str) -> str:
        for prefix, female_swap, flavour in _LIFE_PATH_FLAVOUR:
            if text.lower().startswith(prefix.lower()):
                label = text
                if female_swap is not None and self._state.sex is Sex.FEMALE:
                    label = _replace_ci(text, *female_swap)
                return f"{label} ({flavour})"
        return text

    def _append_menu_with_context(self, menu_id: str, lines: list[str], action_key: str | None = None) -> None:
        menu = self._content.menus.get(menu_id)
        if menu is None:
            self._logger.warning("Menu %s referenced but not defined", menu_id)
            self._state.active_menu_id = None
            lines.append("Menu missing; continuing.")
            return

        context = self._menu_context_line(menu_id, action_key)
        if context:
            lines.append(context)
        reminder = self._menu_choice_reminder(menu)
        if reminder:
            lines.append(reminder)
        lines.append(self._render_menu(menu))

    def _menu_context_line(self, menu_id: str, action_key: str | None) -> str | None:
        trigger = (action_key or "").strip().lower() or "scene"
        seen_key = (self._state.scene_id, menu_id, trigger.replace(" ", "_"))
        seen = self._state.shared.seen_menu_contexts
        if seen_key in seen:
            return None
        seen.add(seen_key)

        if menu_id == "franciscan_relief_menu":
            return (
                "A relief appeal has reached you because roads are unsafe, stores are thin, and every delay can "
                "cost lives. You are deciding how much risk Saint Catherine absorbs today."
            )
        if menu_id == "petition_menu":
            return (
                "Petitioners have queued since dawn. Each request competes for the same limited coin, labor, "
                "and credibility."
            )
        if menu_id == "task_board_menu":
            return (
                "The board reflects real shortages and obligations; each task advances one need while leaving "
                "another unattended."
            )
        if menu_id.lower().startswith("intro_"):
            return "These first choices shape your spiritual posture before your public duties begin."
        if action_key:
            return (
                f"You focus on the {action_key}. What you choose here can help or burden the people who rely "
                "on Saint Catherine."
            )
        return "You pause to weigh obligations, risks, and who will bear the cost of your decision."

    def _menu_choice_reminder(self, menu: MenuDef) -> str | None:
        taken = sorted(
            key.option_index
            for key in self._state.shared.consumed_choices
            if key.menu_id == menu.id and 0 <= key.option_index < len(menu.options)
        )
        if not taken:
            return None
        choice = normalize_phrase(menu.options[taken[0]].text)
        if not choice:
            return None
        return f"You already made this decision earlier ({choice}). That commitment still stands."

    # ------------------------------------------------------------------
    # Life paths
    # ------------------------------------------------------------------

    def _find_life_path(self, query: str) -> str | None:
        q = query.strip().lower()
        for key, lp in self._content.life_paths.items():
            if key.lower() == q or lp.name.lower() == q:
                return key
        return None

    def _apply_life_path(self, key: str, lines: list[str]) -> None:
        lp = self._content.life_paths[key]
        s = self._state
        s.active_menu_id = None
        s.life_path = lp.name

        for virtue, delta in lp.virtue_delta.items():
            s.add_virtue(virtue, delta)
        summary = format_virtue_changes(lp.virtue_delta)

        s.coin = self._rng.randint(lp.coin_min, lp.coin_max)
        for item in lp.starter_items:
            s.grant_item(item)

        lines.append(f"You have chosen: {lp.name}")
        lines.append(f"Starting coin: {s.coin} silver pennies.")
        lines.append("Starting items: " + ", ".join(dict.fromkeys(lp.starter_items)))
        if summary:
            lines.append(f"Virtues adjusted: {summary}")
        lines.append(virtue_diagram(s))

        s.scene_id = self._home_scene
        scene = self._scene()
        lines.append(scene.text)
        self._append_lore_rumours(lines)

        if lp.intro_menu:
            s.active_menu_id = lp.intro_menu
            self._append_menu_with_context(lp.intro_menu, lines)
        else:
            lines.append(self._exit_line(scene))
            self._add_context_tip(lines)

        self._start_quest(self._main_quest, lines)

    # ------------------------------------------------------------------
    # Effects
    # ------------------------------------------------------------------

    def _apply_option(
        self,
        option: OptionDef,
        lines: list[str],
        grant_key: VirtueGrantKey | None = None,
        choice_key: ChoiceKey | None = None,
    ) -> None:
        s = self._state
        if option.response:
            lines.append(option.response)

        if option.virtue_delta:
            grants = s.shared.virtue_grants
            if grant_key is not None and grant_key in grants:
                lines.append("You have already taken the spiritual fruit of this choice; no further virtue is gained.")
            else:
                for virtue, delta in option.virtue_delta.items():
                    s.add_virtue(virtue, delta)
                summary = format_virtue_changes(option.virtue_delta)
                if summary:
                    lines.append(f"Virtues adjusted: {summary}")
                lines.append(virtue_diagram(s))
                if grant_key is not None:
                    grants.add(grant_key)

        for key, delta in option.priory_delta.items():
            s.adjust_priory(key, delta)

        for key, delta in option.counter_delta.items():
            s.bump(key, delta)

        for flag in option.set_flags:
            if s.flags.insert(flag):
                self._record_lore(f"{s.player_name} set events in motion: {flag.replace('_', ' ')}")

        for flag in option.clear_flags:
            s.flags.discard(flag)

        s.coin += option.coin_delta

        for item in option.add_items:
            s.grant_item(item)
        for item in option.remove_items:
            if item in s.inventory:
                s.inventory.remove(item)

        if option.start_quest:
            self._start_quest(option.start_quest, lines)
        if option.complete_quest:
            self._complete_quest(option.complete_quest, lines)

        if choice_key is not None and is_consequential(choice_key.menu_id, option):
            s.shared.consumed_choices.add(choice_key)

        if option.script is not None:
            self._run_script(option.script, lines)

        if option.next_scene:
            self._move_to_scene(option.next_scene, lines)
            if self._scene().end_chapter:
                self._ended = True

        if option.next_menu:
            s.active_menu_id = option.next_menu
            self._append_menu_with_context(option.next_menu, lines)

        if option.next_timed:
            s.active_timed_id = option.next_timed

    def _run_script(self, script: Script, lines: list[str]) -> None:
        s = self._state
        segments = 0
        if script.kind is ScriptKind.TASK:
            segments = self._pastimes.run_task(s, script.arg, lines)
        elif script.kind is ScriptKind.SHOP:
            self._open_shop(script.arg, lines)
        elif script.kind is ScriptKind.MINIGAME:
            segments = self._pastimes.play_minigame(s, script.arg, lines)
        elif script.kind is ScriptKind.CHANCE:
            segments = self._pastimes.resolve_chance(s, script.arg, lines)
        elif script.kind is ScriptKind.REBUILD:
            self._scheduler.run_script(s, script.arg, lines)
        else:
            segments = self._run_named_script(script.arg, lines)
        if segments:
            self._time.advance(s, lines, segments)

    def _run_named_script(self, name: str, lines: list[str]) -> int:
        s = self._state
        if name in ARC_GATES:
            flag, scene_id, fallback = ARC_GATES[name]
            self._gate_arc(flag, scene_id, fallback, lines)
        elif name == "check_progress":
            self._check_progress(lines)
        elif name == "resolve_endgame":
            self._resolve_endgame(lines)
        elif name == "questlog":
            lines.append(self._quest_log())
        elif name == "start_hanse_arc":
            self._set_world_flag("arc_hanse_letters")
            self._start_quest("hanse_letters_packet", lines)
            lines.append("A sealed Hanse packet pulls Saint Catherine into coastal contracts and scrutiny.")
        elif name == "start_germany_arc":
            self._set_world_flag("arc_reich_letters")
            self._start_quest("reich_theology_letters", lines)
            lines.append("Letters from the Rhineland studia raise grave theological and pastoral questions.")
        elif name == "rebuild_overview":
            self._scheduler.render_overview(s, lines)
        elif name == "rebuild_plan":
            self._scheduler.render_plan(s, lines)
        elif name == "rebuild_assign_balanced":
            self._scheduler.assign_preset(s, "balanced", lines)
        elif self._pastimes.handles(name):
            return self._pastimes.run_named(s, name, lines)
        else:
            self._logger.warning("Unknown script %r ignored", name)
        return 0

    def _gate_arc(self, flag: str, scene_id: str, fallback: str, lines: list[str]) -> None:
        if flag not in self._state.flags:
            lines.append(fallback)
            return
        if scene_id not in self._content.scenes:
            self._logger.warning("Arc scene %s is missing from content", scene_id)
            lines.append(fallback)
            return
        self._state.scene_id = scene_id
        scene = self._scene()
        lines.append(scene.text)
        lines.append(self._exit_line(scene))
        self._add_context_tip(lines)

    def _check_progress(self, lines: list[str]) -> None:
        total = self._state.counter("task_total")
        for threshold, flag, quest_id, announcement in ARC_MILESTONES:
            if total >= threshold and flag not in self._state.flags:
                self._set_world_flag(flag)
                if quest_id:
                    self._start_quest(quest_id, lines)
                lines.append(announcement)
                return
        lines.append("The long arc continues to gather quietly.")

    def _resolve_endgame(self, lines: list[str]) -> None:
        p = self._state.priory
        score = sum(p.get(key, 0) for key in ("food", "morale", "piety", "security", "relations"))
        if score >= 350:
            lines.append(
                "Saint Catherine is renewed: chapel, school, infirmary, and alms-house all endure. "
                "Your governance joined truth with mercy."
            )
        elif score >= 290:
            lines.append(
                "Saint Catherine survives with scars. Some holdings are lost, but the priory remains a living "
                "witness in Blackpine."
            )
        else:
            lines.append(
                "Saint Catherine is diminished under debt and pressure. Yet fragments of doctrine, charity, and "
                "memory remain for another generation."
            )
        self._complete_quest(self._main_quest, lines)
        self._ended = True

    def _open_shop(self, shop_id: str, lines: list[str]) -> None:
        shop = self._content.shops.get(shop_id)
        if shop is None:
            self._logger.warning("Shop %s is missing from content", shop_id)
            lines.append("Shop data missing.")
            return
        lines.append(f"{shop.name}: {shop.description}")
        display = 1
        for stock in shop.stock:
            item = self._content.items.get(stock.item_id)
            if item is None:
                continue
            lines.append(f"  [{display}] {item.name} - {format_sterling(stock.price)} ({item.description})")
            display += 1
        lines.append("Type the shop action again using its purchase menu to buy specific goods.")

    # ------------------------------------------------------------------
    # Quests and lore
    # ------------------------------------------------------------------

    def _start_quest(self, quest_id: str, lines: list[str]) -> None:
        quest = self._content.quests.get(quest_id)
        s = self._state
        if quest is None or quest_id in s.completed_quests or quest_id in s.active_quests:
            return

        members = len(self._party.members) if self._party is not None else 1
        if quest.min_party_size > members:
            lines.append(f"[Quest Locked] {quest.title} requires at least {quest.min_party_size} companions in party.")
            return

        s.active_quests.add(quest_id)
        lines.append(f"[Quest Started] {quest.title}: {quest.description}")
        if quest.requires_synchronized_party:
            lines.append("[Co-op Hook] This quest can later enforce synchronized real-time party participation.")

    def _complete_quest(self, quest_id: str, lines: list[str]) -> None:
        s = self._state
        if quest_id not in s.active_quests:
            return
        s.active_quests.discard(quest_id)
        s.completed_quests.add(quest_id)
        quest = self._content.quests.get(quest_id)
        if quest is not None:
            lines.append(f"[Quest Completed] {quest.title}")

    def _quest_log(self) -> str:
        rows = ["Active Quests:"]
        active = sorted(self._state.active_quests)
        if not active:
            rows.append("  (none)")
        for quest_id in active:
            quest = self._content.quests.get(quest_id)
            rows.append(f"  - {quest.title}: {quest.description}" if quest else f"  - {quest_id}")

        rows.append("Completed Quests:")
        completed = sorted(self._state.completed_quests)
        if not completed:
            rows.append("  (none)")
        for quest_id in completed:
            quest = self._content.quests.get(quest_id)
            rows.append(f"  - {quest.title}" if quest else f"  - {quest_id}")
        return "\n".join(rows)

    def _set_world_flag(self, flag: str) -> None:
        if self._state.flags.insert(flag):
            self._record_lore(f"{self._state.player_name} changed the course of Blackpine: {flag.replace('_', ' ')}")

    def _record_lore(self, summary: str) -> None:
        if self._party is None:
            return
        append_lore(self._party, self._state.player_name, summary, self._clock(), self._lore_limit)

    def _append_lore_rumours(self, lines: list[str]) -> None:
        if self._party is None:
            return
        s = self._state
        shown = 0
        for event in self._party.lore_events:
            if shown >= 2:
                break
            if event.actor_name.lower() == s.player_name.lower() or event.id in s.seen_lore_event_ids:
                continue
            lines.append(f"A local quietly mentions that {event.summary}")
            s.seen_lore_event_ids.add(event.id)
            shown += 1

    # ------------------------------------------------------------------
    # Movement and scene actions
    # ------------------------------------------------------------------

    def _scene(self) -> SceneDef:
        scene = self._content.scenes.get(self._state.scene_id)
        if scene is None:
            self._logger.warning("Scene %s is missing from content", self._state.scene_id)
            return SceneDef(id=self._state.scene_id, text="The way ahead is unclear; this place is not yet written.")
        return scene

    def _available_exits(self, scene: SceneDef) -> dict[str, str]:
        return {key: value for key, value in scene.exits.items() if key.lower() != "outside"}

    def _exit_line(self, scene: SceneDef) -> str:
        exits = self._available_exits(scene)
        if not exits:
            return "Travel options: none from here."
        return "From here you can travel to: " + ", ".join(exits)

    def _move_to_scene(self, scene_id: str, lines: list[str]) -> bool:
        if scene_id not in self._content.scenes:
            self._logger.warning("Scene %s is missing from content; staying in %s", scene_id, self._state.scene_id)
            lines.append("That way is not yet open; you stay where you are.")
            return False

        s = self._state
        s.previous_scene_id = s.scene_id
        s.scene_id = scene_id
        scene = self._scene()
        lines.append(scene.text)

        if scene.enter_menu:
            s.active_menu_id = scene.enter_menu
            self._append_menu_with_context(scene.enter_menu, lines)
        else:
            lines.append(self._exit_line(scene))
            self._add_context_tip(lines)

        if scene.enter_timed:
            s.active_timed_id = scene.enter_timed
        return True

    def _is_outside_request(self, parsed: ParsedInput, target: str | None) -> bool:
        if parsed.verb == "exit":
            return True
        if not target:
            return False
        return normalize_phrase(target) in _OUTSIDE_WORDS

    def _try_move_outside(self, lines: list[str]) -> bool:
        scene = self._scene()
        for key, destination in scene.exits.items():
            if key.lower() == "outside":
                return self._move_to_scene(destination, lines)

        previous_id = self._state.previous_scene_id
        previous = self._content.scenes.get(previous_id) if previous_id else None
        if previous is None:
            return False
        linked = any(v.lower() == scene.id.lower() for v in previous.exits.values()) or any(
            v.lower() == previous.id.lower() for v in scene.exits.values()
        )
        if not linked:
            return False
        return self._move_to_scene(previous.id, lines)

    def _handle_movement(self, parsed: ParsedInput, lines: list[str]) -> None:
        scene = self._scene()
        exits = self._available_exits(scene)
        target = parsed.target

        if not target and parsed.verb in ("climb", "board", "mount") and "cart" in exits:
            target = "cart"
        if not target and parsed.verb in ("leave", "depart") and "leave cart" in exits:
            target = "leave cart"

        if self._is_outside_request(parsed, target) and self._try_move_outside(lines):
            self._time.advance(self._state, lines, 1)
            if self._scene().end_chapter:
                self._ended = True
            return

        if not target:
            lines.append("Go where? Try one of: " + (", ".join(exits) if exits else "nowhere yet"))
            return

        resolved = resolve_key(exits, target)
        if resolved is None:
            lines.append("You cannot travel there from this location.")
            lines.append("Available routes: " + (", ".join(exits) if exits else "none"))
            return

        if self._move_to_scene(exits[resolved], lines):
            self._time.advance(self._state, lines, 1)
            if self._scene().end_chapter:
                self._ended = True

    def _handle_action(self, parsed: ParsedInput, lines: list[str]) -> None:
        scene = self._scene()
        actions = dict(scene.actions)
        if not parsed.target:
            lines.append("Be specific. Example: 'talk friar' or 'examine cart'.")
            return

        resolved = resolve_key(actions, parsed.target)
        if resolved is None:
            lines.append("Nothing comes of it.")
            if actions:
                lines.append("Try one of: " + ", ".join(list(actions)[:5]))
            return

        action: ActionTarget = actions[resolved]

        if parsed.intent is Intent.TALK and action.kind is not ActionKind.MENU:
            lines.append("You cannot hold a conversation with that. Try 'examine' instead.")
            return

        if parsed.intent is Intent.TAKE:
            if action.kind is not ActionKind.TEXT:
                lines.append("You cannot take that.")
                return
            taken_key = (self._state.scene_id, resolved)
            if taken_key in self._state.shared.taken_actions:
                lines.append("You already took what you could there.")
                return
            self._state.shared.taken_actions.add(taken_key)

        if action.kind is ActionKind.MENU:
            self._state.active_menu_id = action.value
            self._append_menu_with_context(action.value, lines, resolved)
        elif action.kind is ActionKind.TIMED:
            self._state.active_timed_id = action.value
            lines.append("The moment tightens.")
        elif action.kind is ActionKind.SCENE:
            if self._move_to_scene(action.value, lines):
                self._time.advance(self._state, lines, 1)
        elif action.kind is ActionKind.SCRIPT:
            if action.script is not None:
                self._run_script(action.script, lines)
        else:
            lines.append(action.value)
            self._time.advance(self._state, lines, 1)

    # ------------------------------------------------------------------
    # Timed prompts
    # ------------------------------------------------------------------

    def _clear_timed(self) -> None:
        self._active_timed = None
        self._timed_indexes = None
        self._state.active_timed_id = None
        self._state.active_timed_deadline = None

    def _maybe_activate_timed(self, lines: list[str]) -> TimedPrompt | None:
        timed_id = self._state.active_timed_id
        if timed_id is None:
            return None
        timed = self._content.timed.get(timed_id)
        if timed is None:
            self._logger.warning("Timed prompt %s is missing from content", timed_id)
            self._clear_timed()
            lines.append("Timed event missing; continuing.")
            return None

        deadline = self._clock() + timedelta(seconds=timed.seconds)
        self._active_timed = timed
        self._state.active_timed_deadline = deadline
        lines.append(timed.prompt)

        self._timed_indexes = [index for index, _ in available_options(self._state, timed.options)]
        for display, index in enumerate(self._timed_indexes, start=1):
            lines.append(f"{display}) {timed.options[index].text}")
        if not self._timed_indexes:
            lines.append("(No options available; default will apply.)")

        return TimedPrompt(
            id=timed.id,
            prompt=timed.prompt,
            deadline=deadline,
            duration_seconds=timed.seconds,
            options=tuple(timed.options[i].text for i in self._timed_indexes),
        )

    # ------------------------------------------------------------------
    # Status lines and tips
    # ------------------------------------------------------------------

    def _time_line(self) -> str:
        return f"Day {self._state.day}, {self._state.segment.value}"

    def _inventory_line(self) -> str:
        s = self._state
        purse = format_sterling(s.coin)
        marks = s.counter(MARK_COUNTER)
        if marks > 0:
            purse = f"{purse} and {marks} Lübeck mark(s)"
        items = ", ".join(s.inventory) if s.inventory else "(empty)"
        return f"{s.player_name} | Purse: {purse}. Inventory: {items}"

    def _priory_status_line(self) -> str:
        p = self._state.priory
        return (
            f"Priory - Food {p.get('food', 0)}, Morale {p.get('morale', 0)}, Piety {p.get('piety', 0)}, "
            f"Security {p.get('security', 0)}, Relations {p.get('relations', 0)}, Treasury {p.get('treasury', 0)}"
        )

    def _work_totals_line(self) -> str:
        c = self._state.counter
        return (
            f"Work totals - Sermons {c('task_sermon')}, Study {c('task_study')}, Patrols {c('task_patrol')}, "
            f"Fields {c('task_fields')}, Charity {c('task_charity')}"
        )

    def _party_status_line(self) -> str:
        if self._party is None:
            return "You travel alone. Use multiplayer setup on launch to create or join a party."
        members = sorted(self._party.members)
        code = self._parties.party_code(self._party.party_id)
        return f"Party {code} | Members ({len(members)}/{self._party_capacity}): {', '.join(members)}"

    def _save_line(self) -> str:
        code, fingerprint = self.save_game()
        return f"SAVE CODE: {code} | FP: {fingerprint}"

    def _maybe_add_periodic_tip(self, lines: list[str], intent: Intent) -> None:
        if intent in _UNCOUNTED_INTENTS:
            return
        turns = self._state.bump("turn_count")
        tip = PERIODIC_TIPS.get(turns)
        if tip:
            lines.append(tip)

    def _add_context_tip(self, lines: list[str]) -> None:
        if self._state.active_menu_id is not None:
            return

        scene = self._scene()
        exits = sorted(self._available_exits(scene))
        tips: list[str] = []
        for key in sorted(scene.actions)[:5]:
            phrase = self._suggest_action_phrase(key, scene.actions[key])
            if phrase and phrase.lower() not in (t.lower() for t in tips):
                tips.append(phrase)

        has_outside = any(key.lower() == "outside" for key in scene.exits)
        if has_outside and "go outside" not in (t.lower() for t in tips):
            tips.append("go outside")

        if exits:
            hints = [key.lower() if key.lower().startswith(("leave ", "exit ")) else f"go {key}" for key in exits]
            lines.append(f"Available options: {' | '.join(hints)}.")
        if tips:
            lines.append(f"You can also try: {' | '.join(tips)}.")
        if not exits and not tips:
            lines.append("Available options: look | quests | status | help.")

    @staticmethod
    def _suggest_action_phrase(key: str, action: ActionTarget) -> str:
        if not key.strip():
            return ""
        if action.kind is ActionKind.MENU:
            lowered = key.strip().lower()
            if any(token in lowered for token in _PEOPLE_TOKENS):
                return f"talk {key}"
            return f"examine {key}"
        if action.kind is ActionKind.SCENE:
            return f"go {key}"
        if action.kind is ActionKind.SCRIPT:
            return ""
        return f"examine {key}"

    # ------------------------------------------------------------------
    # Party plumbing
    # ------------------------------------------------------------------

    def _attach_shared(self) -> None:
        if self._party is None:
            self._state.party_id = None
            return
        self._state.party_id = self._party.party_id
        self._state.shared = self._party.shared

    def _register_member(self) -> None:
        if self._party is None:
            return
        register_member(
            self._party,
            self._state.player_name,
            self._state.scene_id,
            self._clock(),
            self._party_capacity,
        )

    def _persist_party(self) -> None:
        if self._party is None:
            return
        self._register_member()
        self._parties.save(self._party)


__all__ = ["GameEngine", "coerce_sex", "format_virtue_changes", "virtue_diagram"]
