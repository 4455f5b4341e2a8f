from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional

from .ports import RandomSource
from .rebuild import reputation_score
from .types import GameState

MARK_COUNTER = "hanse_mark_lubec"
PENCE_PER_MARK_BUY = 160
PENCE_PER_MARK_SELL = 150

# Every handler returns how many time segments the activity consumed.


@dataclass(frozen=True)
class Outcome:
    line: str
    priory: Mapping[str, int] = field(default_factory=dict)
    virtues: Mapping[str, int] = field(default_factory=dict)
    coin: int = 0
    items: tuple[str, ...] = ()


def apply_outcome(state: GameState, outcome: Outcome, lines: list[str]) -> None:
    for key, delta in outcome.priory.items():
        state.adjust_priory(key, delta)
    for key, delta in outcome.virtues.items():
        state.add_virtue(key, delta)
    state.coin += outcome.coin
    for item in outcome.items:
        state.grant_item(item)
    lines.append(outcome.line)


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TaskDef:
    priory: Mapping[str, int]
    virtues: Mapping[str, int]
    flavour: tuple[str, ...]


TASKS: dict[str, TaskDef] = {
    "sermon": TaskDef(
        priory={"piety": 2, "relations": 1},
        virtues={},
        flavour=(
            "You preach at Blackpine's edge: mercy without softness, truth without cruelty.",
            "In the market lane, you answer questions on confession, debt, and conscience until dusk.",
            "At a roadside chapel, your sermon turns a brewing feud away from violence.",
        ),
    ),
    "study": TaskDef(
        priory={"piety": 1},
        virtues={"hope": 1, "humility": 1},
        flavour=(
            "You copy disputed texts with Dominican annotations and sharpen your judgment.",
            "Brother Martin drills you in logic and pastoral casuistry until night bells.",
            "You draft guidance on contracts and usury for Blackpine's guild elders.",
        ),
    ),
    "patrol": TaskDef(
        priory={"security": 2},
        virtues={"fortitude": 1},
        flavour=(
            "You walk the forest road at vespers. Trouble recedes before discipline.",
            "At the mill bend, you prevent a fight before knives clear sheaths.",
            "You escort nuns returning from infirmary service through dangerous timber routes.",
        ),
    ),
    "fields": TaskDef(
        priory={"food": 2, "treasury": 1},
        virtues={},
        flavour=(
            "You reorganize stores and catch theft in the tally before it ruins the week.",
            "You settle a boundary dispute and preserve both harvest and peace.",
            "You spend a wet day mending ditches; by evening the lower field drains cleanly.",
        ),
    ),
    "charity": TaskDef(
        priory={"morale": 2, "relations": 2, "treasury": -1},
        virtues={},
        flavour=(
            "You distribute bread, lamp oil, and medical herbs with disciplined compassion.",
            "A fevered child survives after coordinated care between priory brothers and local sisters.",
            "You mediate a crushing marriage debt and prevent a family collapse.",
        ),
    ),
}


# ---------------------------------------------------------------------------
# Minigames resolved by one d20 roll
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RollGame:
    intro: str
    items: tuple[str, ...]
    success: Outcome
    failure: Optional[Outcome] = None
    roll_virtues: tuple[str, str] = ("", "")
    threshold: Optional[int] = None


ROLL_GAMES: dict[str, RollGame] = {
    "ledger": RollGame(
        intro="You reconcile entries against stores while the steward watches the totals.",
        items=("Audit Stamp", "Inventory Token"),
        roll_virtues=("temperance", "humility"),
        threshold=17,
        success=Outcome("Your accounts reconcile cleanly. Coin +2, treasury +1.", priory={"treasury": 1}, coin=2),
        failure=Outcome("A discrepancy remains and confidence dips. Morale -1.", priory={"morale": -1}),
    ),
    "herbal": RollGame(
        intro="You sort herbs by scent and bruise, then prepare a careful remedy.",
        items=("Dried Yarrow", "Comfrey Bundle"),
        roll_virtues=("charity", "faith"),
        threshold=16,
        success=Outcome(
            "The remedy takes hold. Morale +1 and medicine stocked.",
            priory={"morale": 1},
            items=("Poultice", "Tincture"),
        ),
        failure=Outcome("The brew is weak this time; materials are consumed for limited relief."),
    ),
    "hunt": RollGame(
        intro="You follow broken brush and hoof grooves, choosing speed over certainty.",
        items=(),
        roll_virtues=("fortitude", "hope"),
        threshold=17,
        success=Outcome(
            "You return with proof and provisions. Security +1.",
            priory={"security": 1},
            items=("Meat Rations", "Wolf Pelt"),
        ),
        failure=Outcome("Tracks scatter at dusk; the road remains uneasy. Security -1.", priory={"security": -1}),
    ),
    "woodcut": RollGame(
        intro="You balance felling, hauling, and preserving what should not be stripped bare.",
        items=("Logs", "Timber Planks", "Charcoal Sack"),
        success=Outcome(
            "Materials delivered with minimal waste. Treasury +1.",
            priory={"treasury": 1},
            virtues={"temperance": 1},
        ),
    ),
    "masonry": RollGame(
        intro="You place labor and stone against weak joints before weather can find them.",
        items=("Cut Stone", "Lime Mortar", "Iron Nails"),
        roll_virtues=("temperance", "fortitude"),
        threshold=17,
        success=Outcome("Your plan holds through inspection. Security +2.", priory={"security": 2}),
        failure=Outcome("The plan is serviceable but costly; repairs will need another pass.", priory={"security": 1}),
    ),
    "sermon": RollGame(
        intro="You draft theme, tone, and rebuke level, then deliver before a divided crowd.",
        items=("Rumor (intel)", "Donation Coin"),
        roll_virtues=("faith", "humility"),
        threshold=17,
        success=Outcome("Your words steady both conscience and temper. Relations +2.", priory={"relations": 2}),
        failure=Outcome(
            "Some are moved, others resist; tension softens only slightly. Relations +1.",
            priory={"relations": 1},
        ),
    ),
    "queue": RollGame(
        intro="You assign ushers, triage urgency, and keep the line from turning into panic.",
        items=("Order Token", "Blessed Cloth"),
        roll_virtues=("temperance", "charity"),
        threshold=16,
        success=Outcome(
            "Fair ordering prevents a crush and earns trust. Relations +1, security +1.",
            priory={"relations": 1, "security": 1},
        ),
        failure=Outcome("You prevent the worst, but tempers flare and rumors linger."),
    ),
    "dispute": RollGame(
        intro="Thesis, objection, reply: each exchange tests clarity more than volume.",
        items=("Reference Manuscript", "Scholar's Note", "Seal of Approval"),
        roll_virtues=("faith", "humility"),
        threshold=18,
        success=Outcome(
            "You win by precision without pride. Piety +1.",
            priory={"piety": 1},
            virtues={"faith": 1, "humility": 1},
        ),
        failure=Outcome("The exchange remains unresolved, but no fracture follows."),
    ),
    "alms": RollGame(
        intro="You triage requests with thin stores: immediate hunger, long-term labor, and fairness all compete.",
        items=("Ration Card", "Favors (town)"),
        roll_virtues=("charity", "temperance"),
        threshold=17,
        success=Outcome(
            "The town is fed without complete disorder. Relations +2, treasury -1.",
            priory={"relations": 2, "treasury": -1},
        ),
        failure=Outcome(
            "Aid reaches many, but reserves take a heavy hit. Relations +1, treasury -2.",
            priory={"relations": 1, "treasury": -2},
        ),
    ),
    "stealth": RollGame(
        intro="You walk dark corridors and gate paths, checking locks before rumor picks a culprit.",
        items=("Recovered Tools", "Key Ring", "Contraband"),
        roll_virtues=("fortitude", "humility"),
        threshold=16,
        success=Outcome("You catch the breach cleanly and avoid false blame. Security +2.", priory={"security": 2}),
        failure=Outcome(
            "You deter repeat theft, though the full truth remains murky. Security +1.",
            priory={"security": 1},
        ),
    ),
}


class Pastimes:
    """Tasks, minigames, chance events and the self-contained named scripts."""

    def __init__(self, rng: RandomSource):
        self._rng = rng
        self._minigames: dict[str, Callable[[GameState, list[str]], int]] = {
            "tavern_dice": self._tavern_dice,
            "rosary": self._rosary,
            "fishing": self._fishing,
            "investigate": self._investigate,
        }
        self._named: dict[str, Callable[[GameState, list[str]], int]] = {
            "day_loop": self._day_loop,
            "monk_formation": self._monk_formation,
            "bulletin_board": self._bulletin_board,
            "reputation_check": self._reputation_check,
            "collections_review": self._collections_review,
            "travel_hazard": self._travel_hazard,
            "tight_crafting": self._tight_crafting,
            "virtue_trial": self._virtue_trial,
            "exchange_to_mark": self._exchange_to_mark,
            "exchange_to_pence": self._exchange_to_pence,
        }

    def d20(self) -> int:
        return self._rng.randint(1, 20)

    def d6(self) -> int:
        return self._rng.randint(1, 6)

    # -- tasks -----------------------------------------------------------

    def run_task(self, state: GameState, kind: str, lines: list[str]) -> int:
        task = TASKS.get(kind)
        if task is not None:
            state.bump(f"task_{kind}")
            state.bump("task_total")
            for key, delta in task.priory.items():
                state.adjust_priory(key, delta)
            for key, delta in task.virtues.items():
                state.add_virtue(key, delta)
            lines.append(self._rng.choice(task.flavour))
        return 1

    # -- minigames -------------------------------------------------------

    def play_minigame(self, state: GameState, name: str, lines: list[str]) -> int:
        handler = self._minigames.get(name)
        if handler is not None:
            return handler(state, lines)
        game = ROLL_GAMES.get(name)
        if game is None:
            lines.append("That pastime is not available.")
            return 0
        return self._roll_game(state, game, lines)

    def _roll_game(self, state: GameState, game: RollGame, lines: list[str]) -> int:
        lines.append(game.intro)
        for item in game.items:
            state.grant_item(item)
        if game.threshold is None:
            apply_outcome(state, game.success, lines)
            return 1
        first, second = game.roll_virtues
        score = self.d20() + state.virtue(first) + state.virtue(second)
        if score >= game.threshold:
            apply_outcome(state, game.success, lines)
        elif game.failure is not None:
            apply_outcome(state, game.failure, lines)
        return 1

    def _investigate(self, state: GameState, lines: list[str]) -> int:
        lines.append("You pin clues to the board, compare testimony, and test one hypothesis before chapter bell.")
        clarity = self.d20() + state.virtue("humility") + state.virtue("temperance")
        # Statements pile up; the ledger page is unique.
        state.inventory.append("Witness Statement")
        state.grant_item("Ledger Page")
        if clarity >= 18:
            state.adjust_priory("relations", 1)
            state.add_virtue("humility", 1)
            lines.append("Your board holds together under scrutiny. Relations +1.")
        else:
            lines.append("Some contradictions remain unresolved; the case can continue next session.")
        return 1

    def _tavern_dice(self, state: GameState, lines: list[str]) -> int:
        if state.coin <= 0:
            lines.append("You have no coin to wager at the table.")
            return 0

        wager = max(1, min(self._rng.randint(1, 3), state.coin))
        rounds = self._rng.randint(2, 4)
        wins = losses = 0
        lines.append(f"You sit for tavern dice: {rounds} rounds, {wager} pennies at risk each round.")

        steady_hand = 1 if state.virtue("temperance") > 2 else 0
        for r in range(1, rounds + 1):
            yours = self.d6() + self.d6() + steady_hand
            house = self.d6() + self.d6()
            if yours >= house:
                wins += 1
                lines.append(f"Round {r}: {yours} vs {house}, you take the pot.")
            else:
                losses += 1
                lines.append(f"Round {r}: {yours} vs {house}, the house takes it.")

        net = (wins - losses) * wager
        state.coin += net
        if net > 0:
            state.adjust_priory("morale", 1)
            lines.append(f"You leave up {net} pennies and with a little local goodwill.")
        elif net < 0:
            state.virtues["temperance"] = max(state.virtue("temperance") - 1, -10)
            lines.append(f"You lose {abs(net)} pennies. A costly lesson in appetite.")
        else:
            lines.append("You break even. Not triumph, not ruin.")
        return 1

    def _rosary(self, state: GameState, lines: list[str]) -> int:
        mystery = self._rng.choice(("Joyful", "Sorrowful", "Glorious"))
        lines.append(f"You pray a {mystery} Rosary with the friars.")

        focus = 0
        for decade in range(1, 6):
            recollection = self.d6() + max(0, state.virtue("faith")) + max(0, state.virtue("temperance"))
            distraction = self._rng.randint(1, 8) + (1 if state.day > 20 else 0)
            if recollection >= distraction:
                focus += 1
                lines.append(f"Decade {decade}: recollection holds.")
            else:
                lines.append(f"Decade {decade}: your mind wanders, then returns.")

        state.adjust_priory("piety", 1 + focus // 2)
        state.adjust_priory("morale", 1 if focus >= 3 else 0)
        state.add_virtue("temperance", 1)
        state.add_virtue("faith", 1)
        if focus >= 4:
            state.add_virtue("hope", 1)
            lines.append("Prayer steadies your judgment for the day.")
        else:
            lines.append("Prayer gives enough peace to continue faithfully.")
        return 1

    def _fishing(self, state: GameState, lines: list[str]) -> int:
        attempts = 3 + max(0, state.virtue("fortitude") // 3)
        if "Field Tool Set" in state.inventory:
            attempts += 1
        lines.append(f"You fish the cold water for {attempts} attempts.")

        caught = 0
        for attempt in range(1, attempts + 1):
            if self._rng.randint(1, 10) >= 6:
                caught += 1
                fish = self._rng.choice(("trout", "perch", "pike", "grayling"))
                lines.append(f"Attempt {attempt}: you land a {fish}.")
            else:
                lines.append(f"Attempt {attempt}: no strike.")

        if caught > 0:
            food = min(4, caught)
            state.adjust_priory("food", food)
            state.coin += caught
            lines.append(f"You return with {caught} fish. Priory food +{food}; coin +{caught} from surplus sale.")
        else:
            lines.append("You return empty-handed, but with clearer eyes.")
            state.add_virtue("temperance", 1)
        return 1

    # -- chance events ---------------------------------------------------

    def resolve_chance(self, state: GameState, event_id: str, lines: list[str]) -> int:
        if event_id == "church_alms_box":
            done_flag = "event:church_alms_box_done"
            if done_flag in state.flags:
                lines.append("You have already accounted for the alms box this week; the clerk waves you onward.")
                return 0
            score = self.d20() + state.virtue("charity") + state.virtue("humility")
            if score >= 18:
                lines.append(
                    "You reconcile the alms ledger against offerings and uncover skimmed coin before scandal can spread."
                )
                state.coin += 4
                state.adjust_priory("relations", 3)
                state.add_virtue("charity", 1)
                lines.append("Success: +4 coin, relations improved, and your charity and steadiness sharpen.")
            else:
                lines.append("You audit the alms box, but your read is inconclusive; the matter remains unsettled.")
                state.adjust_priory("relations", -1)
                lines.append("Outcome: no coin gained, minor local frustration.")
            state.flags.add(done_flag)
            return 0

        if event_id == "watch_patrol_scout":
            score = self.d20() + state.virtue("fortitude") + state.virtue("hope")
            if score >= 20:
                lines.append(
                    "You read the treeline before dusk and spot movement early enough to warn the road wardens."
                )
                state.adjust_priory("security", 2)
                state.bump("watch_scout_success")
                lines.append("Success: priory security improves.")
            else:
                lines.append("You patrol hard but find only old sign and wind-bent brush.")
                state.bump("watch_scout_attempt")
                lines.append("No decisive result this time. You can try again later.")
            return 0

        lines.append("Nothing comes of that attempt.")
        return 0

    # -- named scripts ---------------------------------------------------

    def handles(self, name: str) -> bool:
        return name in self._named

    def run_named(self, state: GameState, name: str, lines: list[str]) -> int:
        return self._named[name](state, lines)

    def _day_loop(self, state: GameState, lines: list[str]) -> int:
        elapsed = state.counter("segments_elapsed_today")
        lines.append(
            f"Day loop ledger: total labors {state.counter('task_total')}, segments elapsed today {elapsed}/5."
        )
        if elapsed >= 4:
            state.add_virtue("temperance", 1)
            state.adjust_priory("morale", 1)
            lines.append("You close the day in order: temperance +1, morale +1.")
        else:
            state.adjust_priory("security", -1)
            lines.append("Loose scheduling leaves gaps in supervision. Security -1.")
        state.counters["segments_elapsed_today"] = 0
        return 5

    def _monk_formation(self, state: GameState, lines: list[str]) -> int:
        if reputation_score(state) < 18:
            lines.append("Formation inquiry deferred: village trust and priory witness are not yet steady enough.")
            lines.append("Raise relations, piety, and humility before admitting more novices.")
            return 0
        novices = state.bump("formation_novices")
        state.adjust_priory("piety", 1)
        state.adjust_priory("morale", 1)
        lines.append(f"A novice is admitted to first formation conference. Novices in formation: {novices}.")
        lines.append("Piety +1, morale +1.")
        return 1

    def _bulletin_board(self, state: GameState, lines: list[str]) -> int:
        lines.append(
            "Bulletin board:"
            f" patrol quotas {state.counter('task_patrol')},"
            f" field quotas {state.counter('task_fields')},"
            f" charity queues {state.counter('task_charity')},"
            f" hazards resolved {state.counter('hazards_resolved')}."
        )
        if state.priory.get("food", 0) <= 25:
            lines.append("Notice: food stores critical. Prioritize fields or disciplined alms rationing.")
        if state.priory.get("security", 0) <= 25:
            lines.append("Notice: road watch thinning. Assign patrols before next market wave.")
        return 0

    def _reputation_check(self, state: GameState, lines: list[str]) -> int:
        score = reputation_score(state)
        lines.append(f"Reputation check: {score} (relations + piety + humility + charity).")
        if score >= 24:
            lines.append("Standing: Trusted. High-risk petitions and mediated disputes will usually open.")
        elif score >= 16:
            lines.append("Standing: Recognized. Ordinary requests proceed, but contentious appeals may resist.")
        else:
            lines.append("Standing: Fragile. Some doors remain closed until witness and prudence improve.")
        return 0

    def _collections_review(self, state: GameState, lines: list[str]) -> int:
        groups: dict[str, list[str]] = {}
        for item in state.inventory:
            groups.setdefault(item.lower(), []).append(item)
        if not groups:
            lines.append("Collections cabinet is empty. Recover evidence, tools, and devotional objects to stock it.")
            return 0

        top = sorted(groups.values(), key=lambda g: (-len(g), g[0].lower()))[:5]
        lines.append("Collections cabinet (top holdings):")
        for group in top:
            lines.append(f"  - {group[0]} x{len(group)}")
        state.bump("collection_reviews")
        return 0

    def _travel_hazard(self, state: GameState, lines: list[str]) -> int:
        roll = self.d20() + state.virtue("fortitude") + state.virtue("temperance")
        if roll >= 19:
            lines.append("Travel hazard contained: your escort spacing and route timing avert an ambush.")
            state.adjust_priory("security", 2)
            state.bump("hazards_resolved")
            lines.append("Security +2.")
        else:
            lines.append("Travel hazard strikes: wagon axle damage and frightened pilgrims slow the route.")
            state.adjust_priory("treasury", -1)
            state.adjust_priory("morale", -1)
            lines.append("Treasury -1, morale -1.")
        return 1

    def _tight_crafting(self, state: GameState, lines: list[str]) -> int:
        has_fiber = "Comfrey Bundle" in state.inventory or "Charcoal Sack" in state.inventory
        has_binding = "Blessed Cloth" in state.inventory or "Timber Planks" in state.inventory
        if not (has_fiber and has_binding):
            lines.append(
                "Tight crafting failed: you lack paired materials (fiber + binding). Try herbal/wood tasks first."
            )
            return 0
        state.grant_item("Field Bandage Kit")
        state.add_virtue("humility", 1)
        state.adjust_priory("morale", 1)
        lines.append("You craft a compact field bandage kit under tight constraints. Humility +1, morale +1.")
        return 1

    def _virtue_trial(self, state: GameState, lines: list[str]) -> int:
        trial = self._rng.randrange(3)
        if trial == 0:
            if state.virtue("charity") + state.virtue("temperance") + self.d6() >= 9:
                lines.append("Virtue trial (mercy vs reserves): you ration aid without abandoning the weakest.")
                state.adjust_priory("relations", 1)
                state.add_virtue("charity", 1)
            else:
                lines.append("Virtue trial (mercy vs reserves): your plan confuses both storekeepers and petitioners.")
                state.adjust_priory("relations", -1)
        elif trial == 1:
            if state.virtue("faith") + state.virtue("humility") + self.d6() >= 9:
                lines.append("Virtue trial (truth under pressure): you answer plainly and keep confidence intact.")
                state.adjust_priory("piety", 1)
            else:
                lines.append("Virtue trial (truth under pressure): your witness is sound, but poorly timed.")
                state.adjust_priory("morale", -1)
        else:
            if state.virtue("fortitude") + state.virtue("hope") + self.d6() >= 9:
                lines.append("Virtue trial (fear at dusk): you steady the line and complete the watch.")
                state.adjust_priory("security", 1)
            else:
                lines.append("Virtue trial (fear at dusk): order holds, but confidence thins.")
                state.adjust_priory("security", -1)
        return 1

    def _exchange_to_mark(self, state: GameState, lines: list[str]) -> int:
        if state.coin < PENCE_PER_MARK_BUY:
            lines.append("The factor shakes his head: one Lübeck mark requires 160 sterling pennies.")
            return 0
        state.coin -= PENCE_PER_MARK_BUY
        state.bump(MARK_COUNTER)
        lines.append("You exchange 160d for 1 Lübeck mark at Ravenscar's Hanse table.")
        return 0

    def _exchange_to_pence(self, state: GameState, lines: list[str]) -> int:
        if state.counter(MARK_COUNTER) <= 0:
            lines.append("You carry no Lübeck marks to redeem.")
            return 0
        state.bump(MARK_COUNTER, -1)
        state.coin += PENCE_PER_MARK_SELL
        lines.append("You redeem 1 Lübeck mark for 150d after tolls, weighing fees, and broker's cut.")
        return 0
