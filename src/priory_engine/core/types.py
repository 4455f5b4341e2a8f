from __future__ import annotations

from collections.abc import Iterable, Iterator, MutableSet
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import NamedTuple, Optional

from .normalize import clamp


class TimeSegment(str, Enum):
    MATINS = "Matins"
    PRIME = "Prime"
    SEXT = "Sext"
    VESPERS = "Vespers"
    COMPLINE = "Compline"


SEGMENT_ORDER: tuple[TimeSegment, ...] = tuple(TimeSegment)


class Sex(str, Enum):
    UNKNOWN = "unknown"
    MALE = "male"
    FEMALE = "female"


VIRTUES = ("fortitude", "temperance", "faith", "hope", "charity", "humility")
PRIORY_STATS = ("food", "morale", "piety", "security", "relations", "treasury")
REBUILD_STATS = ("stability", "defense", "hospitality", "sanctity", "scholarship", "economy")
LABOR_POOLS = ("monks", "laybrothers", "workers")

VIRTUE_ALIASES = {
    "prudence": "humility",
    "justice": "charity",
}


def canonical_virtue(key: str | None) -> str:
    normalized = (key or "").strip().lower()
    return VIRTUE_ALIASES.get(normalized, normalized)


class CaseInsensitiveSet(MutableSet):
    """Set of strings compared case-insensitively, keeping first spelling."""

    def __init__(self, values: Iterable[str] = ()):
        self._items: dict[str, str] = {}
        for value in values:
            self.add(value)

    def __contains__(self, value: object) -> bool:
        return isinstance(value, str) and value.lower() in self._items

    def __iter__(self) -> Iterator[str]:
        return iter(self._items.values())

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        return f"CaseInsensitiveSet({sorted(self._items.values())!r})"

    def add(self, value: str) -> None:
        self._items.setdefault(value.lower(), value)

    def discard(self, value: str) -> None:
        self._items.pop(value.lower(), None)

    def insert(self, value: str) -> bool:
        """Add ``value`` and report whether it was new."""
        if value in self:
            return False
        self.add(value)
        return True


class ChoiceKey(NamedTuple):
    """A consequential menu decision, consumed at most once."""

    menu_id: str
    option_index: int


class VirtueGrantKey(NamedTuple):
    """Origin of a virtue grant: ``source`` is ``"menu"`` or ``"timed"``."""

    source: str
    source_id: str
    option_index: int


def _default_priory() -> dict[str, int]:
    return {"food": 50, "morale": 50, "piety": 50, "security": 50, "relations": 50, "treasury": 30}


@dataclass
class SharedState:
    """Fields a session shares with its party when it has one."""

    priory: dict[str, int] = field(default_factory=_default_priory)
    counters: dict[str, int] = field(default_factory=dict)
    flags: CaseInsensitiveSet = field(default_factory=CaseInsensitiveSet)
    active_quests: CaseInsensitiveSet = field(default_factory=CaseInsensitiveSet)
    completed_quests: CaseInsensitiveSet = field(default_factory=CaseInsensitiveSet)
    consumed_choices: set[ChoiceKey] = field(default_factory=set)
    virtue_grants: set[VirtueGrantKey] = field(default_factory=set)
    # (scene_id, action_key) pairs already taken
    taken_actions: set[tuple[str, str]] = field(default_factory=set)
    # (scene_id, menu_id, trigger) flavour lines already shown
    seen_menu_contexts: set[tuple[str, str, str]] = field(default_factory=set)


@dataclass
class ActiveRebuildProject:
    node_id: str
    target_level: int
    days_remaining: int
    required_labor_per_day: int = 3


@dataclass
class RebuildState:
    node_levels: dict[str, int] = field(default_factory=dict)
    stats: dict[str, int] = field(default_factory=lambda: {key: 0 for key in REBUILD_STATS})
    labor_assigned: dict[str, int] = field(default_factory=lambda: {"monks": 2, "laybrothers": 1, "workers": 0})
    labor_stress: int = 0
    visitors_today: int = 0
    visitor_capacity: int = 4
    donations_total: int = 0
    active_project: Optional[ActiveRebuildProject] = None

    def node_level(self, node_id: str) -> int:
        for key, value in self.node_levels.items():
            if key.lower() == node_id.lower():
                return value
        return 0

    def stat(self, key: str) -> int:
        return self.stats.get(key.lower(), 0)


@dataclass
class GameState:
    player_name: str = "Pilgrim"
    sex: Sex = Sex.UNKNOWN
    party_id: Optional[str] = None
    scene_id: str = "intro"
    previous_scene_id: Optional[str] = None
    life_path: Optional[str] = None
    coin: int = 0
    day: int = 1
    segment: TimeSegment = TimeSegment.PRIME
    virtues: dict[str, int] = field(default_factory=lambda: {key: 0 for key in VIRTUES})
    inventory: list[str] = field(default_factory=list)
    shared: SharedState = field(default_factory=SharedState)
    active_menu_id: Optional[str] = None
    active_timed_id: Optional[str] = None
    active_timed_deadline: Optional[datetime] = None
    seen_lore_event_ids: CaseInsensitiveSet = field(default_factory=CaseInsensitiveSet)
    rebuild: RebuildState = field(default_factory=RebuildState)

    @property
    def priory(self) -> dict[str, int]:
        return self.shared.priory

    @property
    def counters(self) -> dict[str, int]:
        return self.shared.counters

    @property
    def flags(self) -> CaseInsensitiveSet:
        return self.shared.flags

    @property
    def active_quests(self) -> CaseInsensitiveSet:
        return self.shared.active_quests

    @property
    def completed_quests(self) -> CaseInsensitiveSet:
        return self.shared.completed_quests

    def virtue(self, key: str) -> int:
        return self.virtues.get(canonical_virtue(key), 0)

    def add_virtue(self, key: str, delta: int) -> None:
        canonical = canonical_virtue(key)
        if not canonical or delta == 0:
            return
        self.virtues[canonical] = self.virtues.get(canonical, 0) + delta

    def adjust_priory(self, key: str, delta: int) -> int:
        value = clamp(self.priory.get(key, 0) + delta, 0, 100)
        self.priory[key] = value
        return value

    def counter(self, key: str) -> int:
        return self.counters.get(key, 0)

    def bump(self, key: str, delta: int = 1) -> int:
        value = self.counters.get(key, 0) + delta
        self.counters[key] = value
        return value

    def grant_item(self, item: str) -> bool:
        """Add ``item`` unless it is already carried."""
        if item in self.inventory:
            return False
        self.inventory.append(item)
        return True


@dataclass
class LoreEvent:
    id: str
    actor_name: str
    summary: str
    occurred_at: datetime


@dataclass
class PartyMember:
    name: str
    last_scene_id: str
    last_seen: datetime


@dataclass
class PartyState:
    party_id: str
    created_at: datetime
    shared: SharedState = field(default_factory=SharedState)
    lore_events: list[LoreEvent] = field(default_factory=list)
    members: dict[str, PartyMember] = field(default_factory=dict)

    def member(self, name: str) -> PartyMember | None:
        for key, member in self.members.items():
            if key.lower() == name.lower():
                return member
        return None


@dataclass(frozen=True)
class TimedPrompt:
    id: str
    prompt: str
    deadline: datetime
    duration_seconds: int
    options: tuple[str, ...]


@dataclass
class EngineOutput:
    lines: list[str]
    timed_prompt: Optional[TimedPrompt] = None


@dataclass
class ResumeOutcome:
    ok: bool
    message: str
    lines: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class PlayerOverview:
    player_name: str
    sex: Sex
    life_path: Optional[str]
    inventory: tuple[str, ...]
    coin: int


@dataclass(frozen=True)
class PartyMemberOverview:
    name: str
    last_scene_id: str
    last_seen: datetime
    seconds_since_seen: int


@dataclass(frozen=True)
class PartyOverview:
    party_code: str
    members: tuple[PartyMemberOverview, ...]
