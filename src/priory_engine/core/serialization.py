from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping

from .types import (
    REBUILD_STATS,
    ActiveRebuildProject,
    CaseInsensitiveSet,
    ChoiceKey,
    GameState,
    LoreEvent,
    PartyMember,
    PartyState,
    RebuildState,
    Sex,
    SharedState,
    TimeSegment,
    VirtueGrantKey,
)


def _dt_to_str(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _dt_from_str(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _int_map(value: Any) -> dict[str, int]:
    if not isinstance(value, Mapping):
        return {}
    return {str(k): int(v) for k, v in value.items()}


def shared_to_dict(shared: SharedState) -> dict[str, Any]:
    return {
        "priory": dict(shared.priory),
        "counters": dict(shared.counters),
        "flags": sorted(shared.flags, key=str.lower),
        "active_quests": sorted(shared.active_quests, key=str.lower),
        "completed_quests": sorted(shared.completed_quests, key=str.lower),
        "consumed_choices": [
            {"menu_id": key.menu_id, "option_index": key.option_index} for key in sorted(shared.consumed_choices)
        ],
        "virtue_grants": [
            {"source": key.source, "source_id": key.source_id, "option_index": key.option_index}
            for key in sorted(shared.virtue_grants)
        ],
        "taken_actions": [list(pair) for pair in sorted(shared.taken_actions)],
        "seen_menu_contexts": [list(triple) for triple in sorted(shared.seen_menu_contexts)],
    }


def shared_from_dict(data: Mapping[str, Any]) -> SharedState:
    shared = SharedState()
    if isinstance(data.get("priory"), Mapping):
        shared.priory.update(_int_map(data["priory"]))
    shared.counters = _int_map(data.get("counters"))
    shared.flags = CaseInsensitiveSet(data.get("flags") or ())
    shared.active_quests = CaseInsensitiveSet(data.get("active_quests") or ())
    shared.completed_quests = CaseInsensitiveSet(data.get("completed_quests") or ())
    shared.consumed_choices = {
        ChoiceKey(str(row["menu_id"]), int(row["option_index"])) for row in data.get("consumed_choices") or ()
    }
    shared.virtue_grants = {
        VirtueGrantKey(str(row["source"]), str(row["source_id"]), int(row["option_index"]))
        for row in data.get("virtue_grants") or ()
    }
    shared.taken_actions = {(str(a), str(b)) for a, b in data.get("taken_actions") or ()}
    shared.seen_menu_contexts = {(str(a), str(b), str(c)) for a, b, c in data.get("seen_menu_contexts") or ()}
    return shared


def rebuild_to_dict(rebuild: RebuildState) -> dict[str, Any]:
    project = rebuild.active_project
    return {
        "node_levels": dict(rebuild.node_levels),
        "stats": dict(rebuild.stats),
        "labor_assigned": dict(rebuild.labor_assigned),
        "labor_stress": rebuild.labor_stress,
        "visitors_today": rebuild.visitors_today,
        "visitor_capacity": rebuild.visitor_capacity,
        "donations_total": rebuild.donations_total,
        "active_project": None
        if project is None
        else {
            "node_id": project.node_id,
            "target_level": project.target_level,
            "days_remaining": project.days_remaining,
            "required_labor_per_day": project.required_labor_per_day,
        },
    }


def rebuild_from_dict(data: Mapping[str, Any]) -> RebuildState:
    rebuild = RebuildState()
    rebuild.node_levels = _int_map(data.get("node_levels"))
    stats = _int_map(data.get("stats"))
    rebuild.stats = {key: stats.get(key, 0) for key in REBUILD_STATS}
    rebuild.stats.update({k.lower(): v for k, v in stats.items()})
    rebuild.labor_assigned.update(_int_map(data.get("labor_assigned")))
    rebuild.labor_stress = int(data.get("labor_stress", 0))
    rebuild.visitors_today = int(data.get("visitors_today", 0))
    rebuild.visitor_capacity = max(1, int(data.get("visitor_capacity", rebuild.visitor_capacity)))
    rebuild.donations_total = int(data.get("donations_total", 0))
    project = data.get("active_project")
    if isinstance(project, Mapping):
        rebuild.active_project = ActiveRebuildProject(
            node_id=str(project["node_id"]),
            target_level=int(project["target_level"]),
            days_remaining=int(project["days_remaining"]),
            required_labor_per_day=int(project.get("required_labor_per_day", 3)),
        )
    return rebuild


def state_to_dict(state: GameState) -> dict[str, Any]:
    return {
        "player_name": state.player_name,
        "sex": state.sex.value,
        "party_id": state.party_id,
        "scene_id": state.scene_id,
        "previous_scene_id": state.previous_scene_id,
        "life_path": state.life_path,
        "coin": state.coin,
        "day": state.day,
        "segment": state.segment.value,
        "virtues": dict(state.virtues),
        "inventory": list(state.inventory),
        "shared": shared_to_dict(state.shared),
        "active_menu_id": state.active_menu_id,
        "active_timed_id": state.active_timed_id,
        "active_timed_deadline": _dt_to_str(state.active_timed_deadline),
        "seen_lore_event_ids": sorted(state.seen_lore_event_ids),
        "rebuild": rebuild_to_dict(state.rebuild),
    }


def state_from_dict(data: Mapping[str, Any]) -> GameState:
    state = GameState()
    state.player_name = str(data.get("player_name") or state.player_name)
    try:
        state.sex = Sex(data.get("sex", Sex.UNKNOWN.value))
    except ValueError:
        state.sex = Sex.UNKNOWN
    state.party_id = data.get("party_id")
    state.scene_id = str(data.get("scene_id") or state.scene_id)
    state.previous_scene_id = data.get("previous_scene_id")
    state.life_path = data.get("life_path")
    state.coin = int(data.get("coin", 0))
    state.day = int(data.get("day", 1))
    try:
        state.segment = TimeSegment(data.get("segment", TimeSegment.PRIME.value))
    except ValueError:
        state.segment = TimeSegment.PRIME
    state.virtues.update(_int_map(data.get("virtues")))
    state.inventory = [str(item) for item in data.get("inventory") or ()]
    state.shared = shared_from_dict(data.get("shared") or {})
    state.active_menu_id = data.get("active_menu_id")
    state.active_timed_id = data.get("active_timed_id")
    state.active_timed_deadline = _dt_from_str(data.get("active_timed_deadline"))
    state.seen_lore_event_ids = CaseInsensitiveSet(data.get("seen_lore_event_ids") or ())
    state.rebuild = rebuild_from_dict(data.get("rebuild") or {})
    return state


def party_to_dict(party: PartyState) -> dict[str, Any]:
    return {
        "party_id": party.party_id,
        "created_at": _dt_to_str(party.created_at),
        "shared": shared_to_dict(party.shared),
        "lore_events": [
            {
                "id": event.id,
                "actor_name": event.actor_name,
                "summary": event.summary,
                "occurred_at": _dt_to_str(event.occurred_at),
            }
            for event in party.lore_events
        ],
        "members": {
            name: {
                "name": member.name,
                "last_scene_id": member.last_scene_id,
                "last_seen": _dt_to_str(member.last_seen),
            }
            for name, member in party.members.items()
        },
    }


def party_from_dict(data: Mapping[str, Any]) -> PartyState:
    epoch = datetime.fromtimestamp(0, tz=timezone.utc)
    party = PartyState(
        party_id=str(data["party_id"]),
        created_at=_dt_from_str(data.get("created_at")) or epoch,
        shared=shared_from_dict(data.get("shared") or {}),
    )
    for row in data.get("lore_events") or ():
        party.lore_events.append(
            LoreEvent(
                id=str(row["id"]),
                actor_name=str(row.get("actor_name") or "A companion"),
                summary=str(row.get("summary") or "A choice changed Blackpine."),
                occurred_at=_dt_from_str(row.get("occurred_at")) or epoch,
            )
        )
    for name, row in (data.get("members") or {}).items():
        party.members[str(name)] = PartyMember(
            name=str(row.get("name") or name),
            last_scene_id=str(row.get("last_scene_id") or ""),
            last_seen=_dt_from_str(row.get("last_seen")) or epoch,
        )
    return party
