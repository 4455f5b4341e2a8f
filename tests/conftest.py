from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from priory_engine.core.codec import SaveCodec
from priory_engine.core.content import load_content
from priory_engine.core.engine import GameEngine
from priory_engine.persistence.party_store import PartyStore
from priory_engine.persistence.save_store import SaveStore
from priory_engine.persistence.sqlalchemy.db import build_engine, build_session_factory, create_schema
from priory_engine.persistence.sqlalchemy.uow import SQLAlchemyUnitOfWork

TEST_SECRET = "test-secret"


class StubRandom:
    """Returns the low end of every range unless values are queued."""

    def __init__(self, ints=(), ranges=()):
        self.ints = list(ints)
        self.ranges = list(ranges)

    def randint(self, a, b):
        if self.ints:
            return max(a, min(b, self.ints.pop(0)))
        return a

    def randrange(self, stop):
        if self.ranges:
            return self.ranges.pop(0) % stop
        return 0

    def choice(self, seq):
        return seq[0]


class StubClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(1403, 3, 25, 6, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def tick(self, seconds: int) -> None:
        self.now += timedelta(seconds=seconds)


class StubBlobStore:
    def __init__(self):
        self.docs: dict[str, bytes] = {}
        self.writes = 0

    def read(self, doc_id):
        return self.docs.get(doc_id)

    def write(self, doc_id, payload):
        self.writes += 1
        self.docs[doc_id] = payload

    def exists(self, doc_id):
        return doc_id in self.docs


SAMPLE_CONTENT = {
    "scenes": [
        {"id": "intro", "text": "A cart rattles north toward Blackpine."},
        {
            "id": "house",
            "text": "The guest house of Saint Catherine is quiet.",
            "exits": {"gate": "gate", "outside": "yard"},
            "actions": {
                "steward": "menu:steward_menu",
                "ledger": "The ledger lists debts in a careful hand.",
                "candles": "Wax candles rest in a box by the door.",
                "bell": "timed:bell_alarm",
                "chapel door": "scene:chapel",
                "alms box": "script:chance:church_alms_box",
            },
        },
        {
            "id": "gate",
            "text": "Saint Catherine's gate stands open to the lane.",
            "exits": {"house": "house", "cart": "cart", "road": "road_end"},
            "actions": {
                "petitions": "menu:petition_menu",
                "chandler stall": "script:shop:chandler",
                "notice": "script:check_progress",
                "village path": "script:goto_village_arc",
            },
        },
        {
            "id": "yard",
            "text": "Mud and straw cover the yard.",
            "exits": {"house": "house"},
            "actions": {
                "silence": "timed:empty_timed",
                "shrine": "menu:ghost_menu",
                "board": "menu:task_board_menu",
            },
        },
        {"id": "cart", "text": "You sit among sacks of grain.", "exits": {"leave cart": "gate"}},
        {
            "id": "chapel",
            "text": "Candles gutter in the chapel.",
            "exits": {"house": "house"},
            "actions": {"vigil": "menu:vigil_menu", "echo": "timed:echo_alarm"},
        },
        {"id": "road_end", "text": "The road runs south, out of the story.", "endChapter": True},
        {"id": "village_crisis", "text": "Villagers crowd the green.", "exits": {"gate": "gate"}},
    ],
    "menus": [
        {
            "id": "life_path",
            "prompt": "Choose your life path:",
            "options": [{"text": "Farmer's Son"}, {"text": "Lay Aspirant"}, {"text": "Merchant's Apprentice"}],
        },
        {
            "id": "intro_house",
            "prompt": "How do you begin?",
            "options": [
                {"text": "Pray at the window", "response": "You pray.", "virtueDelta": {"faith": 1}},
                {"text": "Unpack quietly", "response": "You unpack."},
            ],
        },
        {
            "id": "steward_menu",
            "prompt": "The steward waits.",
            "options": [
                {
                    "text": "Pledge grain to the village",
                    "response": "The steward nods.",
                    "priory_delta": {"food": -5, "relations": 3},
                    "set_flags": ["grain_pledged"],
                    "virtue_delta": {"justice": 1},
                },
                {"text": "Ask about the accounts", "response": "He shows you the accounts."},
                {"text": "Become a friar", "response": "You kneel for the habit."},
                {"text": "Pay the carter", "response": "Paid.", "coin_delta": -50},
            ],
        },
        {
            "id": "petition_menu",
            "prompt": "Petitioners wait.",
            "options": [
                {
                    "text": "Organize a joint night watch",
                    "response": "You call for volunteers.",
                    "start_quest": "coop_watch",
                }
            ],
        },
        {
            "id": "vigil_menu",
            "prompt": "The chapel is empty.",
            "options": [
                {"text": "Keep the night vigil", "response": "You keep watch until Lauds.", "set_flags": ["vigil_kept"]},
            ],
        },
        {
            "id": "task_board_menu",
            "prompt": "The task board:",
            "options": [
                {"text": "Preach a sermon", "script": "task:sermon"},
                {"text": "Hear the bells", "response": "Bells ring.", "next_timed": "bell_alarm"},
            ],
        },
    ],
    "timed": [
        {
            "id": "bell_alarm",
            "prompt": "The alarm bell rings!",
            "seconds": 10,
            "default_index": 1,
            "options": [
                {
                    "text": "Ring the bell and warn the village",
                    "response": "You warn them.",
                    "virtue_delta": {"charity": 1},
                },
                {"text": "Watch the treeline", "response": "You watch."},
                {"text": "Seize the ledger", "response": "Seized.", "require_flags": ["never_set"]},
            ],
        },
        {
            "id": "echo_alarm",
            "prompt": "A shout echoes under the vault!",
            "seconds": 10,
            "options": [{"text": "Answer the shout", "response": "No one answers.", "next_timed": "bell_alarm"}],
        },
        {"id": "empty_timed", "prompt": "Nothing stirs.", "seconds": 5, "default_index": 0, "options": []},
    ],
    "life_paths": [
        {
            "id": "farmer_son",
            "name": "Farmer's Son",
            "virtue_delta": {"fortitude": 1},
            "coin_min": 2,
            "coin_max": 4,
            "starter_items": ["Sickle"],
        },
        {
            "id": "lay_aspirant",
            "name": "Lay Aspirant",
            "virtue_delta": {"faith": 1, "humility": 1},
            "coin_min": 5,
            "coin_max": 9,
            "starter_items": ["Rosary", "Rosary", "Psalter"],
            "intro_menu": "intro_house",
        },
        {
            "id": "merchant_apprentice",
            "name": "Merchant's Apprentice",
            "virtue_delta": {"temperance": 1},
            "coin_min": 20,
            "coin_max": 20,
            "starter_items": ["Ledger"],
        },
    ],
    "quests": [
        {"id": "main_rebuild_priory", "title": "Rebuild the Priory", "description": "Restore Saint Catherine."},
        {
            "id": "coop_watch",
            "title": "Joint Night Watch",
            "description": "Keep the lane safe together.",
            "min_party_size": 2,
            "requires_synchronized_party": True,
        },
        {"id": "village_petitions", "title": "Village Petitions", "description": "Hear the village."},
    ],
    "items": [{"id": "candles", "name": "Wax Candles", "description": "Tallow-free wax", "value": 3}],
    "shops": [
        {
            "id": "chandler",
            "name": "Chandler",
            "description": "Candles and wax",
            "stock": [{"item_id": "candles", "price": 14}, {"item_id": "missing", "price": 1}],
        }
    ],
    "rebuild_nodes": [
        {
            "node_id": "chapel_roof",
            "name": "Chapel Roof",
            "levels": [
                {
                    "level": 1,
                    "name": "Patched Roof",
                    "cost": {"coin": 10, "Logs": 2},
                    "time_days": 2,
                    "labor_per_day": 3,
                    "stat_delta": {"sanctity": 1},
                }
            ],
        }
    ],
}


@pytest.fixture()
def session_factory():
    engine = build_engine("sqlite+pysqlite:///:memory:")
    create_schema(engine)
    return build_session_factory(engine)


@pytest.fixture()
def uow_factory(session_factory):
    def _factory():
        return SQLAlchemyUnitOfWork(session_factory)

    return _factory


@pytest.fixture()
def content():
    return load_content(SAMPLE_CONTENT)


@pytest.fixture()
def codec():
    return SaveCodec(TEST_SECRET)


@pytest.fixture()
def clock():
    return StubClock()


@pytest.fixture()
def save_blobs():
    return StubBlobStore()


@pytest.fixture()
def party_blobs():
    return StubBlobStore()


@pytest.fixture()
def make_engine(content, codec, clock, save_blobs, party_blobs):
    """Engines built here share stores, as sessions in one process do."""

    def _make(rng=None, **kwargs):
        return GameEngine(
            content=content,
            saves=SaveStore(save_blobs, codec),
            parties=PartyStore(party_blobs, codec, clock),
            rng=rng or StubRandom(),
            clock=clock,
            build_id="test-build",
            **kwargs,
        )

    return _make


@pytest.fixture()
def engine(make_engine):
    return make_engine()
