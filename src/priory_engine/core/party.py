from __future__ import annotations

import uuid
from datetime import datetime

from .types import LoreEvent, PartyMember, PartyState

DEFAULT_PARTY_CAPACITY = 6
DEFAULT_LORE_LIMIT = 100


def can_register(party: PartyState, name: str, capacity: int = DEFAULT_PARTY_CAPACITY) -> bool:
    return len(party.members) < capacity or party.member(name) is not None


def register_member(
    party: PartyState,
    name: str,
    scene_id: str,
    now: datetime,
    capacity: int = DEFAULT_PARTY_CAPACITY,
) -> bool:
    """Add or refresh a roster entry; refused when the party is full."""
    if not can_register(party, name, capacity):
        return False
    existing = party.member(name)
    key = existing.name if existing is not None else name
    party.members[key] = PartyMember(name=key, last_scene_id=scene_id, last_seen=now)
    return True


def append_lore(
    party: PartyState,
    actor_name: str,
    summary: str,
    now: datetime,
    limit: int = DEFAULT_LORE_LIMIT,
) -> LoreEvent:
    """Record a world-changing event, keeping only the newest ``limit``."""
    event = LoreEvent(id=uuid.uuid4().hex, actor_name=actor_name, summary=summary, occurred_at=now)
    party.lore_events.append(event)
    if len(party.lore_events) > limit:
        del party.lore_events[: len(party.lore_events) - limit]
    return event
