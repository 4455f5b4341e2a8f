from __future__ import annotations

import pytest

from priory_engine.core.party import append_lore, register_member
from priory_engine.core.types import PartyState
from priory_engine.persistence.party_store import PartyStore


@pytest.fixture()
def party(make_engine):
    host = make_engine()
    code = host.create_party()
    host.start_new_game("Ada", "female", life_path="merchant_apprentice")

    guest = make_engine()
    ok, message = guest.join_party(code, "Bede")
    assert ok, message
    guest.start_new_game("Bede", "male", life_path="merchant_apprentice")

    # the turn counter is shared, so park it past the tutorial tips for both
    guest.state.counters["turn_count"] = 10
    guest.save_game()
    return host, guest, code


def test_create_party_announces_code(make_engine):
    host = make_engine()
    code = host.create_party()
    out = host.start_new_game("Ada")

    assert code.startswith("PT-")
    assert host.is_party_mode
    assert host.active_party_code == code
    assert f"Party bound to Saint Catherine with code: {code}" in out.lines


def test_flags_set_in_one_session_reach_the_other(party):
    host, guest, _ = party

    host.handle_input("talk steward")
    host.handle_input("1")
    assert "grain_pledged" in host.state.flags

    out = guest.handle_input("look")
    assert "grain_pledged" in guest.state.flags
    assert guest.state.priory["food"] == 45
    assert "A local quietly mentions that Ada set events in motion: grain pledged" in out.lines

    # rumours are shown once per reader
    assert not any(line.startswith("A local quietly") for line in guest.handle_input("look").lines)

    out = guest.handle_input("talk steward")
    assert out.lines[-1] == "The steward waits.\n1) Ask about the accounts\n2) Become a friar"


def test_take_is_shared_across_the_party(party):
    host, guest, _ = party
    host.handle_input("take candles")
    assert guest.handle_input("take candles").lines[0] == "You already took what you could there."


def test_party_status_and_overview(party, clock):
    host, _, code = party
    assert host.handle_input("party").lines == [f"Party {code} | Members (2/6): Ada, Bede"]

    clock.tick(30)
    overview = host.party_overview()
    assert overview.party_code == code
    assert [m.name for m in overview.members] == ["Ada", "Bede"]
    assert all(m.seconds_since_seen == 30 for m in overview.members)


def test_join_refuses_full_party_but_readmits_members(party, make_engine):
    _, _, code = party
    late = make_engine(party_capacity=2)
    assert late.join_party(code, "Cuthbert") == (False, "That party is full (limit 2 members).")
    assert late.join_party(code, "bede")[0] is True


def test_join_with_bad_code(make_engine):
    eng = make_engine()
    assert eng.join_party("PT-NOPE") == (False, "Could not verify party code.")
    assert not eng.is_party_mode


def test_party_quest_starts_with_enough_companions(party):
    host, _, _ = party
    host.handle_input("go gate")
    host.handle_input("talk petitions")
    out = host.handle_input("1")
    assert out.lines[:3] == [
        "You call for volunteers.",
        "[Quest Started] Joint Night Watch: Keep the lane safe together.",
        "[Co-op Hook] This quest can later enforce synchronized real-time party participation.",
    ]


def test_resume_reattaches_party(party, make_engine):
    host, guest, code = party
    line = host.handle_input("save").lines[0]
    save = line.split(" ")[2]

    later = make_engine()
    outcome = later.resume(save)
    assert outcome.ok
    assert later.is_party_mode
    assert later.active_party_code == code
    assert later.state.shared is not host.state.shared


def test_solo_mode_detaches(party):
    host, _, _ = party
    host.use_solo_mode()
    assert not host.is_party_mode
    assert host.party_overview() is None
    assert host.handle_input("party").lines == [
        "You travel alone. Use multiplayer setup on launch to create or join a party."
    ]


def test_register_member_respects_capacity(clock):
    party = PartyState(party_id="P1", created_at=clock())
    assert register_member(party, "Ada", "house", clock(), capacity=1)
    assert not register_member(party, "Bede", "house", clock(), capacity=1)
    assert register_member(party, "ADA", "gate", clock(), capacity=1)
    assert list(party.members) == ["Ada"]
    assert party.members["Ada"].last_scene_id == "gate"


def test_lore_log_keeps_newest_entries(clock):
    party = PartyState(party_id="P1", created_at=clock())
    for n in range(5):
        append_lore(party, "Ada", f"event {n}", clock(), limit=3)
    assert [e.summary for e in party.lore_events] == ["event 2", "event 3", "event 4"]


def test_starting_a_game_keeps_companion_changes(make_engine):
    host = make_engine()
    code = host.create_party()
    host.start_new_game("Ada", "female", life_path="merchant_apprentice")

    guest = make_engine()
    assert guest.join_party(code, "Bede")[0]

    host.handle_input("talk steward")
    host.handle_input("1")
    guest.start_new_game("Bede", life_path="merchant_apprentice")

    assert "grain_pledged" in guest.state.flags
    host.handle_input("look")
    assert "grain_pledged" in host.state.flags


def test_saving_keeps_companion_changes(party):
    host, guest, _ = party
    host.handle_input("talk steward")
    host.handle_input("1")

    guest.save_game()

    host.handle_input("look")
    assert "grain_pledged" in host.state.flags
    assert "grain_pledged" in guest.state.flags


def test_flags_from_both_sessions_survive(party):
    host, guest, _ = party
    host.handle_input("talk steward")
    host.handle_input("1")

    guest.handle_input("examine chapel door")
    guest.handle_input("talk vigil")
    guest.handle_input("1")

    host.handle_input("look")
    guest.handle_input("look")
    for session in (host, guest):
        assert "grain_pledged" in session.state.flags
        assert "vigil_kept" in session.state.flags


def test_join_claims_a_roster_seat(party, make_engine, party_blobs, codec):
    _, _, code = party
    cuthbert = make_engine()
    assert cuthbert.join_party(code, "Cuthbert") == (True, "Joined party.")

    stored = PartyStore(party_blobs, codec).load(codec.verify_party_code(code))
    assert sorted(stored.members) == ["Ada", "Bede", "Cuthbert"]


def test_join_refused_when_seat_taken_by_a_racing_join(party, make_engine, party_blobs, codec, monkeypatch):
    _, _, code = party
    late = make_engine(party_capacity=3)
    store = PartyStore(party_blobs, codec)
    party_id = codec.verify_party_code(code)

    # another session takes the last seat after this one read the document
    stale = store.load(party_id)
    store.update(party_id, lambda p: register_member(p, "Cuthbert", "house", p.created_at, 3))
    monkeypatch.setattr(PartyStore, "try_load_by_code", lambda self, _code: (stale, "Joined party."))

    assert late.join_party(code, "Dunstan") == (False, "That party is full (limit 3 members).")
    assert not late.is_party_mode
    assert sorted(store.load(party_id).members) == ["Ada", "Bede", "Cuthbert"]


def test_party_store_update_writes_only_when_changed(party_blobs, codec, clock):
    store = PartyStore(party_blobs, codec, clock)
    party, _ = store.create_party()
    writes = party_blobs.writes

    _, changed = store.update(party.party_id, lambda p: False)
    assert not changed
    assert party_blobs.writes == writes

    updated, changed = store.update(party.party_id, lambda p: register_member(p, "Ada", "house", clock()))
    assert changed
    assert "Ada" in updated.members
    assert store.update("MISSING", lambda p: True) == (None, False)
