from __future__ import annotations

import logging
from typing import Mapping, Optional

from .content import RebuildLevelDef, RebuildNodeDef
from .normalize import clamp, normalize_material_name
from .ports import RandomSource
from .types import LABOR_POOLS, ActiveRebuildProject, GameState

BASE_VISITOR_CAPACITY = 4
MAX_LABOR_STRESS = 20
DELAY_CHANCE_PERCENT = 35

LABOR_PRESETS: dict[str, tuple[dict[str, int], int, str]] = {
    "aggressive": (
        {"monks": 3, "laybrothers": 2, "workers": 2},
        2,
        "Labor preset set to aggressive: fast progress, higher stress risk.",
    ),
    "cautious": (
        {"monks": 1, "laybrothers": 1, "workers": 0},
        -1,
        "Labor preset set to cautious: slower progress, lower stress.",
    ),
    "balanced": (
        {"monks": 2, "laybrothers": 1, "workers": 1},
        0,
        "Labor preset set to balanced.",
    ),
}


def reputation_score(state: GameState) -> int:
    return (
        state.priory.get("relations", 0) // 10
        + state.priory.get("piety", 0) // 10
        + max(0, state.virtue("humility"))
        + max(0, state.virtue("charity"))
    )


def count_material(inventory: list[str], material: str) -> int:
    target = normalize_material_name(material)
    return sum(1 for item in inventory if normalize_material_name(item) == target)


def remove_material(inventory: list[str], material: str, count: int) -> None:
    """Remove up to ``count`` matching entries, newest first."""
    target = normalize_material_name(material)
    index = len(inventory) - 1
    while index >= 0 and count > 0:
        if normalize_material_name(inventory[index]) == target:
            del inventory[index]
            count -= 1
        index -= 1


def collection_percent(inventory: list[str], group: str) -> int:
    g = group.lower()
    return min(100, 10 * sum(1 for item in inventory if g in item.lower()))


class RebuildScheduler:
    """Day-granular construction and hosting simulation for the priory."""

    def __init__(self, nodes: Mapping[str, RebuildNodeDef], rng: RandomSource):
        self._nodes = nodes
        self._rng = rng
        self._logger = logging.getLogger(__name__)

    # -- lookups ---------------------------------------------------------

    def node(self, node_id: str) -> RebuildNodeDef | None:
        found = self._nodes.get(node_id)
        if found is not None:
            return found
        for key, candidate in self._nodes.items():
            if key.lower() == node_id.lower():
                return candidate
        return None

    def node_label(self, node_id: str) -> str:
        found = self.node(node_id)
        return found.name if found is not None else node_id

    def find_node(self, query: str | None) -> RebuildNodeDef | None:
        q = (query or "").strip().lower()
        if not q:
            return None
        for candidate in self._nodes.values():
            node_id = candidate.node_id.lower()
            name = candidate.name.lower()
            if node_id == q or name == q or q in name or q in node_id:
                return candidate
        return None

    # -- daily simulation ------------------------------------------------

    def process_day(self, state: GameState, lines: list[str]) -> None:
        self._process_progress(state, lines)
        self._process_visitors(state, lines)
        self._process_complications(state, lines)

    def effective_labor(self, state: GameState) -> int:
        labor = state.rebuild.labor_assigned
        return (
            labor.get("monks", 0) * 2
            + labor.get("laybrothers", 0) * 2
            + labor.get("workers", 0)
            + max(0, state.rebuild.stat("economy"))
        )

    def _process_progress(self, state: GameState, lines: list[str]) -> None:
        rb = state.rebuild
        active = rb.active_project
        if active is None:
            return

        if self.effective_labor(state) >= active.required_labor_per_day:
            active.days_remaining -= 1
        elif self._rng.randrange(100) < DELAY_CHANCE_PERCENT:
            active.days_remaining += 1

        if active.days_remaining > 0:
            lines.append(
                f"Rebuild progress: {self.node_label(active.node_id)} needs {active.days_remaining} more day(s)."
            )
            return

        node = self.node(active.node_id)
        level = node.level(active.target_level) if node is not None else None
        if node is None or level is None:
            self._logger.warning(
                "Dropping rebuild project for unknown node/level %s L%s", active.node_id, active.target_level
            )
            rb.active_project = None
            return

        rb.node_levels[node.node_id] = active.target_level
        for key, delta in level.stat_delta.items():
            stat = key.lower()
            rb.stats[stat] = rb.stats.get(stat, 0) + delta
        rb.visitor_capacity = BASE_VISITOR_CAPACITY + rb.stat("hospitality")
        rb.active_project = None
        lines.append(f"[Project Complete] {node.name} L{level.level}: {level.name}.")
        if level.unlocks:
            lines.append("Unlocked: " + "; ".join(level.unlocks))

    def visitor_flow(self, state: GameState) -> int:
        rb = state.rebuild
        return max(0, rb.stat("hospitality") + rb.stat("sanctity") + reputation_score(state) // 2)

    def incident_risk(self, state: GameState) -> int:
        rb = state.rebuild
        return max(1, 14 - rb.stat("defense") - rb.stat("stability") - state.virtue("temperance"))

    def _process_visitors(self, state: GameState, lines: list[str]) -> None:
        rb = state.rebuild
        capacity = max(1, rb.visitor_capacity)
        visitors = clamp(self.visitor_flow(state) // 2 + self._rng.randint(0, 2), 0, capacity + 3)
        rb.visitors_today = min(visitors, capacity)
        overflow = max(0, visitors - capacity)
        if overflow > 0:
            lines.append(f"Visitor overflow: {overflow} traveler(s) could not be lodged.")

        donation = (
            rb.visitors_today * (1 + rb.stat("hospitality") // 3)
            + max(0, state.virtue("humility"))
            + max(0, state.virtue("temperance"))
        )
        if state.virtue("charity") >= 4:
            donation = max(0, donation - 1)

        if donation > 0:
            state.coin += donation
            rb.donations_total += donation
            lines.append(f"Hosting yields {donation}d in gifts and patron support.")

    def _process_complications(self, state: GameState, lines: list[str]) -> None:
        rb = state.rebuild
        active = rb.active_project
        if active is None:
            return
        if self._rng.randint(1, 20) > self.incident_risk(state):
            return

        complication = self._rng.randrange(3)
        if complication == 0:
            lines.append("Complication: a storm tears part of the scaffolding.")
            if count_material(state.inventory, "logs") > 0:
                remove_material(state.inventory, "logs", 1)
                lines.append("You consume 1 Logs to patch quickly and keep the schedule.")
            else:
                active.days_remaining += 1
                lines.append("No spare timber; project delayed by 1 day.")
        elif complication == 1:
            lines.append("Complication: worker injury on site.")
            if state.coin >= 4:
                state.coin -= 4
                lines.append("You pay the healer (4d), avoiding stoppage.")
            else:
                rb.labor_stress = clamp(rb.labor_stress + 2, 0, MAX_LABOR_STRESS)
                active.days_remaining += 1
                lines.append("Without coin for quick treatment, morale and pace dip (delay +1 day).")
        else:
            lines.append("Complication: diocesan inspection requests records and witness.")
            check = (
                state.virtue("humility")
                + state.virtue("faith")
                + rb.stat("sanctity")
                + self._rng.randint(1, 6)
            )
            if check >= 8:
                lines.append("Inspection clears with minimal disruption.")
                state.adjust_priory("relations", 1)
            else:
                lines.append("Inspection finds irregularities; paperwork slows labor (+1 day).")
                active.days_remaining += 1

    # -- player commands -------------------------------------------------

    def start_upgrade(self, state: GameState, query: str, lines: list[str]) -> bool:
        rb = state.rebuild
        if rb.active_project is not None:
            lines.append("A project is already underway. Complete it or wait for completion before starting another.")
            return False

        node = self.find_node(query)
        if node is None:
            lines.append("Unknown node. Use 'rebuild plan' to see available nodes.")
            return False

        level = node.level(rb.node_level(node.node_id) + 1)
        if level is None:
            lines.append(f"{node.name} is already at maximum level.")
            return False

        if not self._check_gating(state, node, lines):
            return False
        if not self._pay_cost(state, level, lines):
            return False

        rb.active_project = ActiveRebuildProject(
            node_id=node.node_id,
            target_level=level.level,
            days_remaining=level.time_days,
            required_labor_per_day=max(1, level.labor_per_day),
        )
        self._logger.debug("Started rebuild project %s L%s", node.node_id, level.level)
        lines.append(f"Project started: {node.name} L{level.level} - {level.name}. Estimated {level.time_days} day(s).")
        if level.unlocks:
            lines.append("On completion unlocks: " + "; ".join(level.unlocks))
        return True

    def _check_gating(self, state: GameState, node: RebuildNodeDef, lines: list[str]) -> bool:
        rb = state.rebuild
        for required_node, required_level in node.requires_node_levels.items():
            if rb.node_level(required_node) < required_level:
                lines.append(f"Locked: requires {self.node_label(required_node)} level {required_level}.")
                return False

        for stat, minimum in node.min_stats.items():
            have = rb.stat(stat)
            if have < minimum:
                lines.append(f"Locked: requires {stat} {minimum} (current {have}).")
                return False
        return True

    def _pay_cost(self, state: GameState, level: RebuildLevelDef, lines: list[str]) -> bool:
        """Check the whole cost before deducting any of it."""
        coin_need = 0
        materials: dict[str, int] = {}
        for key, amount in level.cost.items():
            if key.lower() == "coin":
                coin_need += amount
            else:
                materials[key] = amount

        if state.coin < coin_need:
            lines.append(f"Insufficient coin: need {coin_need}d, have {state.coin}d.")
            return False

        for material, need in materials.items():
            have = count_material(state.inventory, material)
            if have < need:
                lines.append(f"Insufficient {material}: need {need}, have {have}.")
                return False

        state.coin -= coin_need
        for material, need in materials.items():
            remove_material(state.inventory, material, need)

        paid_materials = ", ".join(f"{k} x{v}" for k, v in materials.items())
        lines.append(f"Construction cost paid: {coin_need}d and {paid_materials}.")
        return True

    def assign_preset(self, state: GameState, preset: str, lines: list[str]) -> None:
        key = (preset or "").strip().lower()
        labor, stress_delta, message = LABOR_PRESETS.get(key, LABOR_PRESETS["balanced"])
        rb = state.rebuild
        for pool in LABOR_POOLS:
            rb.labor_assigned[pool] = labor[pool]
        if stress_delta:
            rb.labor_stress = clamp(rb.labor_stress + stress_delta, 0, MAX_LABOR_STRESS)
        lines.append(message)

    def render_overview(self, state: GameState, lines: list[str]) -> None:
        rb = state.rebuild
        lines.append("Saint Catherine Rebuild Planner")
        lines.append(
            "Stats: "
            f"Stability {rb.stat('stability')}, Defense {rb.stat('defense')}, "
            f"Hospitality {rb.stat('hospitality')}, Sanctity {rb.stat('sanctity')}, "
            f"Scholarship {rb.stat('scholarship')}, Economy {rb.stat('economy')}"
        )
        flow = self.visitor_flow(state)
        lines.append(
            f"Derived: VisitorFlow {flow}, DonationRate baseline {max(1, flow // 2)}, "
            f"IncidentRisk d20<={self.incident_risk(state)}."
        )

        active = rb.active_project
        if active is None:
            lines.append("Active Project: none")
        else:
            lines.append(
                f"Active Project: {self.node_label(active.node_id)} L{active.target_level} "
                f"({active.days_remaining} day(s) remaining, labor/day {active.required_labor_per_day})."
            )

        labor = rb.labor_assigned
        lines.append(
            f"Labor: monks {labor.get('monks', 0)}, lay brothers {labor.get('laybrothers', 0)}, "
            f"hired workers {labor.get('workers', 0)}, stress {rb.labor_stress}."
        )
        lines.append(
            f"Visitors today: {rb.visitors_today}/{rb.visitor_capacity}. "
            f"Lifetime donations generated by hosting: {rb.donations_total}d."
        )
        lines.append(
            f"Collections: Books {collection_percent(state.inventory, 'book')}% | "
            f"Relics {collection_percent(state.inventory, 'relic')}%."
        )
        lines.append("Use 'rebuild plan' to inspect upgrade trees.")

    def render_plan(self, state: GameState, lines: list[str]) -> None:
        if not self._nodes:
            lines.append("No rebuild node data is loaded.")
            return

        lines.append("Build Menu (node -> next level)")
        for node in sorted(self._nodes.values(), key=lambda n: n.name.lower()):
            current = state.rebuild.node_level(node.node_id)
            upcoming: Optional[RebuildLevelDef] = node.level(current + 1)
            if upcoming is None:
                lines.append(f"- {node.name}: complete (level {current}/{len(node.levels)}).")
                continue
            cost = ", ".join(
                f"{v}d" if k.lower() == "coin" else f"{k} x{v}" for k, v in upcoming.cost.items()
            )
            deltas = ", ".join(f"{k}+{v}" for k, v in upcoming.stat_delta.items())
            lines.append(
                f"- {node.name}: next L{upcoming.level} '{upcoming.name}' | {upcoming.time_days} day(s), "
                f"labor/day {upcoming.labor_per_day} | Cost: {cost} | Stats: {deltas}"
            )
        lines.append("Command: rebuild upgrade <node name or id>")

    def handle_command(self, state: GameState, target: str | None, lines: list[str]) -> None:
        """Dispatch the free-text ``rebuild ...`` command."""
        text = (target or "").strip()
        lowered = text.lower()
        if not text or lowered == "overview":
            self.render_overview(state, lines)
            lines.append("Tip: 'rebuild plan', 'rebuild upgrade <node>', or 'rebuild assign <balanced|aggressive|cautious>'.")
        elif lowered.startswith("plan"):
            self.render_plan(state, lines)
        elif lowered.startswith("upgrade"):
            self.start_upgrade(state, text[len("upgrade"):].strip(), lines)
        elif lowered.startswith("assign"):
            self.assign_preset(state, text[len("assign"):].strip() or "balanced", lines)
        else:
            lines.append("Unknown rebuild command. Use: rebuild, rebuild plan, rebuild upgrade <node>, rebuild assign <preset>.")

    def run_script(self, state: GameState, verb: str, lines: list[str]) -> None:
        """Dispatch a ``rebuild:`` option script."""
        lowered = (verb or "").strip().lower()
        if not lowered or lowered == "overview":
            self.render_overview(state, lines)
        elif lowered == "plan":
            self.render_plan(state, lines)
        elif lowered.startswith("upgrade/"):
            self.start_upgrade(state, verb.strip()[len("upgrade/"):], lines)
        elif lowered.startswith("assign/"):
            self.assign_preset(state, verb.strip()[len("assign/"):], lines)
        else:
            lines.append("Rebuild script call was invalid.")
